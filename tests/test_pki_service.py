"""
Tests for the PKI authority: CA creation, issuance, revocation and listing.
"""
import hashlib
import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from wezterm_manager.models.errors import (
    AlreadyExists, AlreadyInitialized, CryptoFailure, InvalidName, NotFound, NotInitialized
)
from wezterm_manager.models.layout import (
    CA_CERT, CA_KEY, CA_SERIAL, REVOCATION_LEDGER, SERVER_CERT, SERVER_KEY,
    client_cert_path, client_key_path
)
from wezterm_manager.models.store import MemoryStore
from wezterm_manager.security.backend import CryptographyBackend
from wezterm_manager.security.host_identity import HostIdentity
from wezterm_manager.security.models import CertificateStatus, CertificateType
from wezterm_manager.security.pki_service import PKIAuthority

TEST_KEY_SIZE = 2048


def make_authority(store=None, backend=None):
    return PKIAuthority(
        store or MemoryStore(),
        backend=backend,
        key_size=TEST_KEY_SIZE,
        identity_provider=lambda: HostIdentity(hostname="tower", primary_ip="192.168.1.10")
    )


class TestInitializeCA(unittest.TestCase):
    """Test cases for CA and server identity creation."""

    def setUp(self):
        self.store = MemoryStore()
        self.pki = make_authority(self.store)

    def test_initialize_writes_four_files_with_permissions(self):
        """Keys are owner-only, certificates world-readable."""
        self.pki.initialize_ca()

        self.assertEqual(self.store.mode(CA_KEY), 0o600)
        self.assertEqual(self.store.mode(SERVER_KEY), 0o600)
        self.assertEqual(self.store.mode(CA_CERT), 0o644)
        self.assertEqual(self.store.mode(SERVER_CERT), 0o644)
        self.assertTrue(self.pki.is_initialized())

    def test_ca_certificate_is_self_signed_authority(self):
        """The CA certificate is a CA with a ten year lifetime."""
        self.pki.initialize_ca()
        ca = x509.load_pem_x509_certificate(self.store.load(CA_CERT))

        self.assertEqual(ca.subject, ca.issuer)
        self.assertTrue(ca.extensions.get_extension_for_class(x509.BasicConstraints).value.ca)
        lifetime = ca.not_valid_after_utc - ca.not_valid_before_utc
        self.assertEqual(lifetime.days, 3650)
        self.assertEqual(ca.subject.get_attributes_for_oid(NameOID.COMMON_NAME)[0].value, "WezTerm-Unraid-CA")

    def test_server_certificate_has_subject_alternative_names(self):
        """Server identity is bound to hostname, .local, localhost, primary and loopback IPs."""
        self.pki.initialize_ca()
        server = x509.load_pem_x509_certificate(self.store.load(SERVER_CERT))
        ca = x509.load_pem_x509_certificate(self.store.load(CA_CERT))

        san = server.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
        self.assertEqual(san.get_values_for_type(x509.DNSName), ["tower", "tower.local", "localhost"])
        self.assertEqual([str(ip) for ip in san.get_values_for_type(x509.IPAddress)],
                         ["192.168.1.10", "127.0.0.1"])
        self.assertEqual(server.issuer, ca.subject)
        server.verify_directly_issued_by(ca)

        eku = server.extensions.get_extension_for_class(x509.ExtendedKeyUsage).value
        self.assertIn(ExtendedKeyUsageOID.SERVER_AUTH, list(eku))

    def test_initialize_twice_fails(self):
        """A second initialization refuses to overwrite the CA."""
        self.pki.initialize_ca()
        ca_before = self.store.load(CA_CERT)

        with self.assertRaises(AlreadyInitialized):
            self.pki.initialize_ca()
        self.assertEqual(self.store.load(CA_CERT), ca_before)

    def test_initialize_fails_if_only_key_exists(self):
        """A stray CA key alone blocks initialization."""
        self.store.save(CA_KEY, b"stray", 0o600)

        with self.assertRaises(AlreadyInitialized):
            self.pki.initialize_ca()
        self.assertFalse(self.store.exists(CA_CERT))

    def test_crypto_failure_writes_nothing(self):
        """A signing failure surfaces as CryptoFailure and leaves no CA behind."""
        backend = Mock(wraps=CryptographyBackend())
        backend.self_sign.side_effect = CryptoFailure("CA self-signing failed", output="boom")
        pki = make_authority(self.store, backend=backend)

        with self.assertRaises(CryptoFailure) as cm:
            pki.initialize_ca()
        self.assertIn("boom", str(cm.exception))
        self.assertFalse(self.store.exists(CA_KEY))
        self.assertFalse(pki.is_initialized())

    def test_initialize_takes_store_lock(self):
        """Mutating operations run under the store lock."""
        self.pki.initialize_ca()
        self.assertGreaterEqual(self.store.lock_count, 1)


class TestClientCertificates(unittest.TestCase):
    """Test cases for issuing and revoking client certificates."""

    def setUp(self):
        self.store = MemoryStore()
        self.pki = make_authority(self.store)
        self.pki.initialize_ca()

    def _client_cert(self, name):
        return x509.load_pem_x509_certificate(self.store.load(client_cert_path(name)))

    def test_issue_requires_ca(self):
        """Issuance without a CA fails with NotInitialized."""
        pki = make_authority()
        with self.assertRaises(NotInitialized):
            pki.issue_client_certificate("laptop")

    def test_invalid_names_rejected_before_store_access(self):
        """Names outside the pattern are rejected without touching the store."""
        store = Mock(wraps=MemoryStore())
        pki = make_authority(store)

        for name in ["", "a" * 65, "../etc", "name with space", "semi;colon", "ümlaut", "laptop\n", None]:
            with self.assertRaises(InvalidName):
                pki.issue_client_certificate(name)
        store.lock.assert_not_called()
        store.load.assert_not_called()

    def test_boundary_name_lengths_accepted(self):
        """Names of length 1 and 64 are valid."""
        self.pki.issue_client_certificate("a")
        self.pki.issue_client_certificate("b" * 64)
        self.assertTrue(self.pki.is_active("a"))
        self.assertTrue(self.pki.is_active("b" * 64))

    def test_issue_then_list_reports_active(self):
        """A freshly issued certificate is listed as active."""
        created = self.pki.issue_client_certificate("laptop")

        records = {r.name: r for r in self.pki.list_certificates() if r.type == CertificateType.CLIENT}
        self.assertEqual(records["laptop"].status, CertificateStatus.ACTIVE)
        self.assertEqual(records["laptop"].created_at, created)

    def test_client_certificate_fields(self):
        """Client certificates carry the name as CN, last a year and are signed by the CA."""
        self.pki.issue_client_certificate("laptop")
        cert = self._client_cert("laptop")
        ca = x509.load_pem_x509_certificate(self.store.load(CA_CERT))

        self.assertEqual(cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)[0].value, "laptop")
        self.assertEqual((cert.not_valid_after_utc - cert.not_valid_before_utc).days, 365)
        cert.verify_directly_issued_by(ca)
        eku = cert.extensions.get_extension_for_class(x509.ExtendedKeyUsage).value
        self.assertIn(ExtendedKeyUsageOID.CLIENT_AUTH, list(eku))
        self.assertEqual(self.store.mode(client_key_path("laptop")), 0o600)
        self.assertEqual(self.store.mode(client_cert_path("laptop")), 0o644)

    def test_issue_twice_fails_and_keeps_one_certificate(self):
        """Second issuance for an active name fails; the first certificate is untouched."""
        self.pki.issue_client_certificate("laptop")
        first = self.store.load(client_cert_path("laptop"))

        with self.assertRaises(AlreadyExists):
            self.pki.issue_client_certificate("laptop")

        self.assertEqual(self.store.load(client_cert_path("laptop")), first)
        clients = [r for r in self.pki.list_certificates() if r.name == "laptop"]
        self.assertEqual(len(clients), 1)

    def test_serials_are_unique_and_increasing(self):
        """Serial numbers come from the CA serial file and increase."""
        for name in ["one", "two", "three"]:
            self.pki.issue_client_certificate(name)
        serials = [self._client_cert(name).serial_number for name in ["one", "two", "three"]]
        server = x509.load_pem_x509_certificate(self.store.load(SERVER_CERT))

        self.assertEqual(serials, sorted(serials))
        self.assertEqual(len(set(serials + [server.serial_number])), 4)
        self.assertEqual(int(self.store.load_text(CA_SERIAL).strip(), 16), serials[-1])

    def test_lost_serial_file_continues_above_known_serials(self):
        """Without ca.srl the next serial exceeds every issued one."""
        self.pki.issue_client_certificate("one")
        before = self._client_cert("one").serial_number
        self.store.delete(CA_SERIAL)

        self.pki.issue_client_certificate("two")
        self.assertGreater(self._client_cert("two").serial_number, before)

    def test_revoke_unknown_name_fails_and_leaves_store_unchanged(self):
        """Revoking a missing certificate raises NotFound without side effects."""
        self.pki.issue_client_certificate("laptop")
        snapshot = dict(self.store._files)

        with self.assertRaises(NotFound):
            self.pki.revoke_client_certificate("desktop")
        self.assertEqual(self.store._files, snapshot)

    def test_revoke_removes_active_status(self):
        """After revocation the name is no longer listed as active."""
        self.pki.issue_client_certificate("laptop")
        entry = self.pki.revoke_client_certificate("laptop")

        statuses = [r.status for r in self.pki.list_certificates() if r.name == "laptop"]
        self.assertEqual(statuses, [CertificateStatus.REVOKED])
        self.assertFalse(self.pki.is_active("laptop"))
        self.assertFalse(self.store.exists(client_key_path("laptop")))
        self.assertIn(f"{entry.serial_number:x} laptop", self.store.load_text(REVOCATION_LEDGER))

    def test_revoke_twice_fails(self):
        """A revoked name cannot be revoked again."""
        self.pki.issue_client_certificate("laptop")
        self.pki.revoke_client_certificate("laptop")

        with self.assertRaises(NotFound):
            self.pki.revoke_client_certificate("laptop")

    def test_reissue_after_revoke_gets_new_serial(self):
        """issue desktop, revoke, issue again: the second certificate has a different serial."""
        self.pki.issue_client_certificate("desktop")
        first_serial = self._client_cert("desktop").serial_number
        self.pki.revoke_client_certificate("desktop")

        self.pki.issue_client_certificate("desktop")
        second_serial = self._client_cert("desktop").serial_number

        self.assertNotEqual(first_serial, second_serial)
        statuses = sorted(r.status.value for r in self.pki.list_certificates() if r.name == "desktop")
        self.assertEqual(statuses, ["active", "revoked"])

    def test_list_orders_ca_server_then_newest_clients(self):
        """Listing starts with CA and server, then clients newest first."""
        self.pki.issue_client_certificate("older")
        self.pki.issue_client_certificate("newer")
        records = list(self.pki.list_certificates())
        self.assertEqual([r.type for r in records[:2]], [CertificateType.CA, CertificateType.SERVER])
        client_times = [r.created_at for r in records[2:]]
        self.assertEqual(client_times, sorted(client_times, reverse=True))

    def test_list_is_snapshot(self):
        """Certificates issued after list_certificates() is called are not in its iterator."""
        listing = self.pki.list_certificates()
        self.pki.issue_client_certificate("late")

        self.assertNotIn("late", [r.name for r in listing])

    def test_list_without_ca_is_empty(self):
        """An uninitialized store lists nothing."""
        self.assertEqual(list(make_authority().list_certificates()), [])

    def test_expired_certificate_reported_as_expired(self):
        """A client certificate past its not-after date is listed as expired."""
        ca_key = serialization.load_pem_private_key(self.store.load(CA_KEY), password=None)
        ca = x509.load_pem_x509_certificate(self.store.load(CA_CERT))
        key = rsa.generate_private_key(public_exponent=65537, key_size=TEST_KEY_SIZE)
        past = datetime.now(timezone.utc) - timedelta(days=400)
        cert = x509.CertificateBuilder().subject_name(
            x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "old")])
        ).issuer_name(ca.subject).public_key(key.public_key()).serial_number(
            x509.random_serial_number()
        ).not_valid_before(past).not_valid_after(past + timedelta(days=365)).sign(ca_key, hashes.SHA256())
        self.store.save(client_cert_path("old"), cert.public_bytes(serialization.Encoding.PEM))

        records = {r.name: r for r in self.pki.list_certificates()}
        self.assertEqual(records["old"].status, CertificateStatus.EXPIRED)
        # Expired is not revoked: the name stays taken until revoked
        with self.assertRaises(AlreadyExists):
            self.pki.issue_client_certificate("old")

        result = self.pki.validate_client_certificate(cert.public_bytes(serialization.Encoding.PEM).decode())
        self.assertFalse(result.is_authenticated)
        self.assertEqual(result.error_message, "Certificate has expired")


class TestCertificateDetailAndValidation(unittest.TestCase):
    """Test cases for certificate details and client validation."""

    def setUp(self):
        self.store = MemoryStore()
        self.pki = make_authority(self.store)
        self.pki.initialize_ca()
        self.pki.issue_client_certificate("laptop")

    def test_detail_fields(self):
        """Detail reports subject, issuer, serial and SHA-256 fingerprint of the DER encoding."""
        detail = self.pki.get_certificate_detail("laptop")
        cert = x509.load_pem_x509_certificate(self.store.load(client_cert_path("laptop")))
        expected = hashlib.sha256(cert.public_bytes(serialization.Encoding.DER)).hexdigest().upper()

        self.assertEqual(detail.fingerprint.replace(":", ""), expected)
        self.assertEqual(detail.serial_number, f"{cert.serial_number:X}")
        self.assertIn("CN=laptop", detail.subject)
        self.assertIn("CN=WezTerm-Unraid-CA", detail.issuer)
        self.assertTrue(detail.is_valid)
        self.assertEqual(detail.status, CertificateStatus.ACTIVE)

    def test_detail_for_ca_and_server(self):
        """The CA and server certificates can be described by type."""
        ca = self.pki.get_certificate_detail("ca", CertificateType.CA)
        server = self.pki.get_certificate_detail("server", CertificateType.SERVER)

        self.assertEqual(ca.subject, ca.issuer)
        self.assertIn("CN=tower", server.subject)

    def test_detail_missing_raises(self):
        """Unknown names raise NotFound."""
        with self.assertRaises(NotFound):
            self.pki.get_certificate_detail("ghost")

    def test_validate_issued_certificate(self):
        """A certificate issued by this CA authenticates as its name."""
        pem = self.store.load_text(client_cert_path("laptop"))
        result = self.pki.validate_client_certificate(pem)

        self.assertTrue(result.is_authenticated)
        self.assertEqual(result.client_id, "laptop")

    def test_validate_revoked_certificate_fails(self):
        """A revoked certificate no longer authenticates."""
        pem = self.store.load_text(client_cert_path("laptop"))
        self.pki.revoke_client_certificate("laptop")

        result = self.pki.validate_client_certificate(pem)
        self.assertFalse(result.is_authenticated)
        self.assertEqual(result.error_message, "Certificate has been revoked")

    def test_validate_certificate_from_other_ca_fails(self):
        """Certificates from a recreated CA do not validate against each other."""
        other_store = MemoryStore()
        other = make_authority(other_store)
        other.initialize_ca()
        other.issue_client_certificate("laptop")

        result = self.pki.validate_client_certificate(other_store.load_text(client_cert_path("laptop")))
        self.assertFalse(result.is_authenticated)
        self.assertEqual(result.error_message, "Certificate not signed by trusted CA")

    def test_validate_garbage(self):
        """Unparseable input is reported, not raised."""
        result = self.pki.validate_client_certificate("not a certificate")
        self.assertFalse(result.is_authenticated)
        self.assertIn("Certificate validation error", result.error_message)

    def test_contains_ca_private_key(self):
        """The CA key is detected raw and with different line wrapping."""
        ca_key = self.store.load(CA_KEY)
        body = b"".join(line for line in ca_key.splitlines() if not line.startswith(b"-----"))

        self.assertTrue(self.pki.contains_ca_private_key(b"prefix" + ca_key))
        self.assertTrue(self.pki.contains_ca_private_key(body))
        self.assertFalse(self.pki.contains_ca_private_key(self.store.load(client_key_path("laptop"))))


if __name__ == '__main__':
    unittest.main()
