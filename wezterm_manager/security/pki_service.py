"""
PKI authority for the WezTerm mux server.

Manages exactly one certificate authority, the server identity it signs, and
a flat namespace of named client certificates. Revocation quarantines the
certificate and records its serial in a ledger; the client's private key is
deleted and the name becomes free for reissue.
"""
import logging
import re
from datetime import datetime, timezone
from typing import Callable, Dict, Iterator, List, Optional, Set

from cryptography import x509

from ..models.errors import (
    AlreadyExists, AlreadyInitialized, CryptoFailure, InvalidName, NotFound, NotInitialized
)
from ..models.layout import (
    CA_CERT, CA_KEY, CA_SERIAL, CERTS_DIR, CLIENTS_DIR, REVOCATION_LEDGER, REVOKED_DIR,
    SERVER_CERT, SERVER_KEY, client_cert_path, client_key_path
)
from ..models.store import Store
from .backend import CertificateAuthorityBackend, CryptographyBackend, USAGE_CLIENT, USAGE_SERVER
from .host_identity import HostIdentity, discover_host_identity
from .models import (
    AuthenticationResult, CertificateFields, CertificateInfo, CertificateRecord,
    CertificateStatus, CertificateType, RevocationEntry
)

NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")

CA_DAYS = 3650
SERVER_DAYS = 3650
CLIENT_DAYS = 365

KEY_MODE = 0o600
CERT_MODE = 0o644

ORGANIZATION = "Unraid"
CA_SUBJECT = [("CN", "WezTerm-Unraid-CA"), ("O", ORGANIZATION), ("OU", "WezTerm")]


def validate_name(name: str) -> str:
    """Return the name unchanged if it is a legal client name, else raise InvalidName."""
    if not isinstance(name, str) or not NAME_PATTERN.fullmatch(name):
        raise InvalidName(
            f"Invalid certificate name: {name!r}. "
            "Use 1-64 letters, numbers, dashes, and underscores."
        )
    return name


class PKIAuthority:
    """Creates the CA, issues the server identity, and issues/revokes client certificates."""

    def __init__(self, store: Store, backend: Optional[CertificateAuthorityBackend] = None,
                 key_size: int = 4096,
                 identity_provider: Callable[[], HostIdentity] = discover_host_identity):
        self.store = store
        self.backend = backend or CryptographyBackend()
        self.key_size = key_size
        self.identity_provider = identity_provider
        self.logger = logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def is_initialized(self) -> bool:
        return self.store.exists(CA_KEY) and self.store.exists(CA_CERT)

    def is_active(self, name: str) -> bool:
        """True if an unrevoked certificate or key exists under this name."""
        cert_pem = self.store.load(client_cert_path(name))
        if cert_pem is None:
            return self.store.exists(client_key_path(name))
        fields = self._try_read_fields(cert_pem)
        if fields is None:
            return True
        return fields.serial_number not in self._revoked_serials()

    def get_ca_certificate(self) -> bytes:
        ca_cert = self.store.load(CA_CERT)
        if ca_cert is None:
            raise NotInitialized("Certificate Authority not initialized. Please initialize CA first.")
        return ca_cert

    def get_client_material(self, name: str) -> Dict[str, bytes]:
        """Certificate and private key of an active client."""
        validate_name(name)
        cert_pem = self.store.load(client_cert_path(name))
        key_pem = self.store.load(client_key_path(name))
        if cert_pem is None or key_pem is None or not self.is_active(name):
            raise NotFound(f"Certificate for '{name}' not found")
        return {'cert': cert_pem, 'key': key_pem}

    def contains_ca_private_key(self, data: bytes) -> bool:
        """Check whether data embeds the CA private key, raw or as its PEM body."""
        ca_key = self.store.load(CA_KEY)
        if not ca_key:
            return False
        body = b"".join(line.strip() for line in ca_key.splitlines()
                        if line.strip() and not line.startswith(b"-----"))
        return ca_key in data or (bool(body) and body in b"".join(data.split()))

    def list_certificates(self) -> Iterator[CertificateRecord]:
        """
        List the CA, the server and every client certificate.

        The listing is a snapshot taken when this is called; later changes to
        the store are not reflected in the returned iterator.

        Returns:
            Iterator of CertificateRecord: CA, server, current clients newest
            first, then revoked clients most recently revoked first
        """
        now = datetime.now(timezone.utc)
        revoked_serials = self._revoked_serials()
        records: List[CertificateRecord] = []

        for name, key, cert_type in (("ca", CA_CERT, CertificateType.CA),
                                     ("server", SERVER_CERT, CertificateType.SERVER)):
            fields = self._try_read_fields(self.store.load(key))
            if fields is not None:
                records.append(self._record(name, cert_type, fields, now, revoked_serials))

        clients = []
        for key in self.store.list(CLIENTS_DIR, ".crt"):
            fields = self._try_read_fields(self.store.load(key))
            if fields is None:
                self.logger.warning(f"Skipping unreadable certificate: {key}")
                continue
            name = key.rsplit("/", 1)[-1][:-len(".crt")]
            clients.append(self._record(name, CertificateType.CLIENT, fields, now, revoked_serials))
        clients.sort(key=lambda record: record.created_at, reverse=True)

        ledger = {entry.serial_number: entry for entry in self._read_ledger()}
        revoked = []
        for key in self.store.list(REVOKED_DIR, ".crt"):
            fields = self._try_read_fields(self.store.load(key))
            if fields is None:
                continue
            entry = ledger.get(fields.serial_number)
            name = entry.name if entry else (fields.common_name or key.rsplit("/", 1)[-1])
            record = self._record(name, CertificateType.CLIENT, fields, now, revoked_serials)
            record.status = CertificateStatus.REVOKED
            revoked.append((entry.revoked_at if entry else fields.not_before, record))
        revoked.sort(key=lambda item: item[0], reverse=True)

        return iter(records + clients + [record for _, record in revoked])

    def get_certificate_detail(self, name: str,
                               cert_type: CertificateType = CertificateType.CLIENT) -> CertificateInfo:
        """
        Get subject, issuer, validity, serial and fingerprint of a certificate.

        Args:
            name: Client name; ignored for the CA and server certificates
            cert_type: Which certificate to describe

        Raises:
            NotFound: If the certificate does not exist
        """
        if cert_type == CertificateType.CA:
            key, name = CA_CERT, "ca"
        elif cert_type == CertificateType.SERVER:
            key, name = SERVER_CERT, "server"
        else:
            key = client_cert_path(validate_name(name))

        cert_pem = self.store.load(key)
        if cert_pem is None:
            raise NotFound(f"Certificate for '{name}' not found")

        fields = self.backend.read_fields(cert_pem)
        now = datetime.now(timezone.utc)
        status = self._status(fields, now, self._revoked_serials())
        return CertificateInfo(
            name=name,
            type=cert_type,
            subject=fields.subject,
            issuer=fields.issuer,
            serial_number=f"{fields.serial_number:X}",
            not_before=fields.not_before,
            not_after=fields.not_after,
            is_valid=status == CertificateStatus.ACTIVE,
            fingerprint=fields.fingerprint,
            status=status
        )

    def validate_client_certificate(self, cert_pem: str) -> AuthenticationResult:
        """Validate a presented client certificate against the CA and the revocation ledger."""
        try:
            data = cert_pem.encode() if isinstance(cert_pem, str) else cert_pem
            fields = self.backend.read_fields(data)
            now = datetime.now(timezone.utc)

            if not fields.not_before <= now <= fields.not_after:
                return AuthenticationResult(
                    is_authenticated=False,
                    client_id=None,
                    error_message="Certificate has expired"
                )

            if not self.backend.verify_issued_by(data, self.get_ca_certificate()):
                return AuthenticationResult(
                    is_authenticated=False,
                    client_id=None,
                    error_message="Certificate not signed by trusted CA"
                )

            if fields.serial_number in self._revoked_serials():
                return AuthenticationResult(
                    is_authenticated=False,
                    client_id=fields.common_name,
                    error_message="Certificate has been revoked"
                )

            client_id = fields.common_name or str(fields.serial_number)
            self.logger.info(f"Successfully authenticated client: {client_id}")
            return AuthenticationResult(is_authenticated=True, client_id=client_id, error_message=None)

        except (CryptoFailure, NotInitialized) as e:
            self.logger.error(f"Certificate validation failed: {e}")
            return AuthenticationResult(
                is_authenticated=False,
                client_id=None,
                error_message=f"Certificate validation error: {e}"
            )

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def initialize_ca(self) -> CertificateInfo:
        """
        Create the certificate authority and the server identity.

        Raises:
            AlreadyInitialized: If the CA key or certificate already exists
            CryptoFailure: If key generation or signing fails
        """
        with self.store.lock():
            if self.store.exists(CA_KEY) or self.store.exists(CA_CERT):
                raise AlreadyInitialized(
                    "Certificate Authority already exists. "
                    f"To recreate it, delete {self.store.path(CA_KEY)} and {self.store.path(CA_CERT)} manually."
                )

            self.store.ensure_dir(CERTS_DIR, 0o700)
            self.store.ensure_dir(CLIENTS_DIR, 0o700)

            self.logger.info("Generating CA private key...")
            serial = x509.random_serial_number() >> 32
            ca_key = self.backend.generate_private_key(self.key_size)
            ca_cert = self.backend.self_sign(ca_key, CA_SUBJECT, CA_DAYS, serial)

            identity = self.identity_provider()
            self.logger.info(f"Generating server certificate for {identity.hostname} ({identity.primary_ip})")
            server_key = self.backend.generate_private_key(self.key_size)
            server_csr = self.backend.create_csr(
                server_key,
                [("CN", identity.hostname), ("O", ORGANIZATION), ("OU", "WezTerm Server")]
            )
            server_cert = self.backend.sign_csr(
                server_csr, ca_cert, ca_key, SERVER_DAYS, serial + 1, USAGE_SERVER,
                dns_names=identity.dns_names, ip_addresses=identity.ip_addresses
            )

            # Nothing is written until every signing step has succeeded
            self.store.save(CA_KEY, ca_key, KEY_MODE)
            self.store.save(CA_CERT, ca_cert, CERT_MODE)
            self.store.save_text(CA_SERIAL, f"{serial + 1:X}\n", KEY_MODE)
            self.store.save(SERVER_KEY, server_key, KEY_MODE)
            self.store.save(SERVER_CERT, server_cert, CERT_MODE)

            self.logger.info("Certificate Authority and server certificate created successfully")

        return self.get_certificate_detail("ca", CertificateType.CA)

    def issue_client_certificate(self, name: str) -> datetime:
        """
        Issue a client certificate bound to a name.

        Returns:
            Creation timestamp of the issued certificate

        Raises:
            InvalidName: If the name does not match the naming pattern
            NotInitialized: If no CA exists
            AlreadyExists: If an active certificate with this name exists
            CryptoFailure: If key generation or signing fails
        """
        validate_name(name)

        with self.store.lock():
            if not self.is_initialized():
                raise NotInitialized("Certificate Authority not initialized. Please initialize CA first.")

            if self.is_active(name):
                raise AlreadyExists(
                    f"Certificate for '{name}' already exists. Revoke it first to issue a new one."
                )

            self.logger.info(f"Generating client certificate for: {name}")
            ca_key = self.store.load(CA_KEY)
            ca_cert = self.store.load(CA_CERT)

            key = self.backend.generate_private_key(self.key_size)
            csr = self.backend.create_csr(
                key, [("CN", name), ("O", ORGANIZATION), ("OU", "WezTerm Client")]
            )
            cert = self.backend.sign_csr(csr, ca_cert, ca_key, CLIENT_DAYS, self._next_serial(), USAGE_CLIENT)

            # A stale certificate left by an interrupted revoke is replaced here
            self.store.save(client_key_path(name), key, KEY_MODE)
            self.store.save(client_cert_path(name), cert, CERT_MODE)

        created_at = self.backend.read_fields(cert).not_before
        self.logger.info(f"Client certificate created successfully: {name}")
        return created_at

    def revoke_client_certificate(self, name: str) -> RevocationEntry:
        """
        Revoke an active client certificate.

        The serial is appended to the revocation ledger before any file is
        moved, the private key is deleted, and the certificate is kept under
        clients/revoked/ for audit.

        Raises:
            InvalidName: If the name does not match the naming pattern
            NotFound: If there is no active certificate for the name
        """
        validate_name(name)

        with self.store.lock():
            if not self.is_active(name):
                raise NotFound(f"Certificate for '{name}' not found")

            cert_pem = self.store.load(client_cert_path(name))
            fields = self._try_read_fields(cert_pem)

            if fields is not None:
                entry = RevocationEntry(
                    serial_number=fields.serial_number,
                    name=name,
                    revoked_at=datetime.now(timezone.utc)
                )
                self._append_ledger(entry)
                self.store.ensure_dir(REVOKED_DIR, 0o700)
                self.store.move(client_cert_path(name),
                                f"{REVOKED_DIR}/{name}-{fields.serial_number:x}.crt")
            else:
                # Only a key (or an unreadable certificate) is left; nothing to record
                entry = RevocationEntry(serial_number=0, name=name, revoked_at=datetime.now(timezone.utc))
                self.store.delete(client_cert_path(name))

            self.store.delete(client_key_path(name))

        self.logger.warning(f"Certificate for '{name}' has been revoked")
        return entry

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _next_serial(self) -> int:
        """Allocate the next serial from the CA serial file; caller holds the lock."""
        text = self.store.load_text(CA_SERIAL)
        try:
            current = int(text.strip(), 16) if text else None
        except ValueError:
            current = None

        if current is None:
            # Serial file lost: continue above every serial this CA has signed
            keys = [CA_CERT, SERVER_CERT]
            keys += self.store.list(CLIENTS_DIR, ".crt") + self.store.list(REVOKED_DIR, ".crt")
            known = [fields.serial_number for fields in
                     (self._try_read_fields(self.store.load(key)) for key in keys) if fields is not None]
            current = max(known, default=0)

        serial = current + 1
        self.store.save_text(CA_SERIAL, f"{serial:X}\n", KEY_MODE)
        return serial

    def _read_ledger(self) -> List[RevocationEntry]:
        text = self.store.load_text(REVOCATION_LEDGER) or ""
        entries = []
        for line in text.splitlines():
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            entry = RevocationEntry.from_line(line)
            if entry is None:
                self.logger.warning(f"Ignoring malformed revocation ledger line: {line}")
                continue
            entries.append(entry)
        return entries

    def _revoked_serials(self) -> Set[int]:
        return {entry.serial_number for entry in self._read_ledger()}

    def _append_ledger(self, entry: RevocationEntry) -> None:
        text = self.store.load_text(REVOCATION_LEDGER) or "# serial name revoked_at\n"
        if not text.endswith("\n"):
            text += "\n"
        self.store.save_text(REVOCATION_LEDGER, text + entry.to_line() + "\n", CERT_MODE)

    def _try_read_fields(self, cert_pem: Optional[bytes]) -> Optional[CertificateFields]:
        if cert_pem is None:
            return None
        try:
            return self.backend.read_fields(cert_pem)
        except CryptoFailure as e:
            self.logger.warning(f"Unreadable certificate: {e}")
            return None

    @staticmethod
    def _status(fields: CertificateFields, now: datetime, revoked_serials: Set[int]) -> CertificateStatus:
        if fields.serial_number in revoked_serials:
            return CertificateStatus.REVOKED
        if fields.not_after < now:
            return CertificateStatus.EXPIRED
        return CertificateStatus.ACTIVE

    def _record(self, name: str, cert_type: CertificateType, fields: CertificateFields,
                now: datetime, revoked_serials: Set[int]) -> CertificateRecord:
        return CertificateRecord(
            name=name,
            type=cert_type,
            created_at=fields.not_before,
            status=self._status(fields, now, revoked_serials),
            expires_at=fields.not_after,
            serial_number=f"{fields.serial_number:X}"
        )
