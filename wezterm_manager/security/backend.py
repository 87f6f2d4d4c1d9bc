"""
Certificate authority backend: key generation, signing and field extraction.

The PKI authority only talks to this narrow interface, exchanging PEM bytes,
so the signing implementation can be replaced without touching its control
logic.
"""
import ipaddress
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Sequence, Tuple

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from ..models.errors import CryptoFailure
from .models import CertificateFields

# Subject attributes as (short name, value) pairs, e.g. ("CN", "laptop")
Subject = Sequence[Tuple[str, str]]

USAGE_SERVER = "server"
USAGE_CLIENT = "client"

_NAME_OIDS = {
    "CN": NameOID.COMMON_NAME,
    "O": NameOID.ORGANIZATION_NAME,
    "OU": NameOID.ORGANIZATIONAL_UNIT_NAME,
    "C": NameOID.COUNTRY_NAME,
    "ST": NameOID.STATE_OR_PROVINCE_NAME,
    "L": NameOID.LOCALITY_NAME,
}


class CertificateAuthorityBackend(ABC):
    """Capability to generate keys and sign certificates."""

    @abstractmethod
    def generate_private_key(self, key_size: int) -> bytes:
        """Return a new unencrypted PEM private key."""

    @abstractmethod
    def self_sign(self, key_pem: bytes, subject: Subject, days: int, serial_number: int) -> bytes:
        """Return a PEM self-signed CA certificate."""

    @abstractmethod
    def create_csr(self, key_pem: bytes, subject: Subject) -> bytes:
        """Return a PEM certificate signing request."""

    @abstractmethod
    def sign_csr(self, csr_pem: bytes, ca_cert_pem: bytes, ca_key_pem: bytes, days: int,
                 serial_number: int, usage: str, dns_names: Optional[List[str]] = None,
                 ip_addresses: Optional[List[str]] = None) -> bytes:
        """Return a PEM leaf certificate signed by the CA."""

    @abstractmethod
    def read_fields(self, cert_pem: bytes) -> CertificateFields:
        ...

    @abstractmethod
    def verify_issued_by(self, cert_pem: bytes, ca_cert_pem: bytes) -> bool:
        """True if the certificate's signature was made by the CA's key."""


def _build_name(subject: Subject) -> x509.Name:
    try:
        return x509.Name([x509.NameAttribute(_NAME_OIDS[attr], value) for attr, value in subject])
    except KeyError as e:
        raise CryptoFailure(f"Unsupported subject attribute: {e}")


class CryptographyBackend(CertificateAuthorityBackend):
    """Backend implemented natively with the ``cryptography`` package."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def generate_private_key(self, key_size: int) -> bytes:
        try:
            private_key = rsa.generate_private_key(
                public_exponent=65537,
                key_size=key_size,
                backend=default_backend()
            )
            return private_key.private_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PrivateFormat.TraditionalOpenSSL,
                encryption_algorithm=serialization.NoEncryption()
            )
        except (ValueError, TypeError) as e:
            raise CryptoFailure("Private key generation failed", output=str(e))

    def _load_key(self, key_pem: bytes):
        try:
            return serialization.load_pem_private_key(key_pem, password=None, backend=default_backend())
        except (ValueError, TypeError) as e:
            raise CryptoFailure("Could not load private key", output=str(e))

    def _load_cert(self, cert_pem: bytes) -> x509.Certificate:
        try:
            return x509.load_pem_x509_certificate(cert_pem, default_backend())
        except ValueError as e:
            raise CryptoFailure("Could not parse certificate", output=str(e))

    def self_sign(self, key_pem: bytes, subject: Subject, days: int, serial_number: int) -> bytes:
        key = self._load_key(key_pem)
        name = _build_name(subject)
        now = datetime.now(timezone.utc)

        try:
            cert = x509.CertificateBuilder().subject_name(
                name
            ).issuer_name(
                name
            ).public_key(
                key.public_key()
            ).serial_number(
                serial_number
            ).not_valid_before(
                now
            ).not_valid_after(
                now + timedelta(days=days)
            ).add_extension(
                x509.BasicConstraints(ca=True, path_length=0),
                critical=True,
            ).add_extension(
                x509.KeyUsage(
                    digital_signature=True, content_commitment=False, key_encipherment=False,
                    data_encipherment=False, key_agreement=False, key_cert_sign=True,
                    crl_sign=True, encipher_only=False, decipher_only=False
                ),
                critical=True,
            ).add_extension(
                x509.SubjectKeyIdentifier.from_public_key(key.public_key()),
                critical=False,
            ).sign(key, hashes.SHA256(), default_backend())
        except (ValueError, TypeError) as e:
            raise CryptoFailure("CA self-signing failed", output=str(e))

        return cert.public_bytes(serialization.Encoding.PEM)

    def create_csr(self, key_pem: bytes, subject: Subject) -> bytes:
        key = self._load_key(key_pem)
        try:
            csr = x509.CertificateSigningRequestBuilder().subject_name(
                _build_name(subject)
            ).sign(key, hashes.SHA256(), default_backend())
        except (ValueError, TypeError) as e:
            raise CryptoFailure("CSR creation failed", output=str(e))
        return csr.public_bytes(serialization.Encoding.PEM)

    def sign_csr(self, csr_pem: bytes, ca_cert_pem: bytes, ca_key_pem: bytes, days: int,
                 serial_number: int, usage: str, dns_names: Optional[List[str]] = None,
                 ip_addresses: Optional[List[str]] = None) -> bytes:
        ca_key = self._load_key(ca_key_pem)
        ca_cert = self._load_cert(ca_cert_pem)
        try:
            csr = x509.load_pem_x509_csr(csr_pem, default_backend())
        except ValueError as e:
            raise CryptoFailure("Could not parse certificate signing request", output=str(e))

        if not csr.is_signature_valid:
            raise CryptoFailure("Certificate signing request has an invalid signature")

        now = datetime.now(timezone.utc)
        eku = ExtendedKeyUsageOID.SERVER_AUTH if usage == USAGE_SERVER else ExtendedKeyUsageOID.CLIENT_AUTH

        try:
            builder = x509.CertificateBuilder().subject_name(
                csr.subject
            ).issuer_name(
                ca_cert.subject
            ).public_key(
                csr.public_key()
            ).serial_number(
                serial_number
            ).not_valid_before(
                now
            ).not_valid_after(
                now + timedelta(days=days)
            ).add_extension(
                x509.BasicConstraints(ca=False, path_length=None),
                critical=True,
            ).add_extension(
                x509.KeyUsage(
                    digital_signature=True, content_commitment=False, key_encipherment=True,
                    data_encipherment=False, key_agreement=False, key_cert_sign=False,
                    crl_sign=False, encipher_only=False, decipher_only=False
                ),
                critical=True,
            ).add_extension(
                x509.ExtendedKeyUsage([eku]),
                critical=False,
            ).add_extension(
                x509.AuthorityKeyIdentifier.from_issuer_public_key(ca_cert.public_key()),
                critical=False,
            )

            alt_names = [x509.DNSName(name) for name in dns_names or []]
            alt_names += [x509.IPAddress(ipaddress.ip_address(ip)) for ip in ip_addresses or []]
            if alt_names:
                builder = builder.add_extension(x509.SubjectAlternativeName(alt_names), critical=False)

            cert = builder.sign(ca_key, hashes.SHA256(), default_backend())
        except (ValueError, TypeError) as e:
            raise CryptoFailure("Certificate signing failed", output=str(e))

        return cert.public_bytes(serialization.Encoding.PEM)

    def read_fields(self, cert_pem: bytes) -> CertificateFields:
        cert = self._load_cert(cert_pem)

        common_names = cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
        dns_names: List[str] = []
        ip_addresses: List[str] = []
        try:
            san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
            dns_names = san.get_values_for_type(x509.DNSName)
            ip_addresses = [str(ip) for ip in san.get_values_for_type(x509.IPAddress)]
        except x509.ExtensionNotFound:
            pass

        fingerprint = cert.fingerprint(hashes.SHA256()).hex().upper()

        return CertificateFields(
            subject=cert.subject.rfc4514_string(),
            issuer=cert.issuer.rfc4514_string(),
            common_name=common_names[0].value if common_names else None,
            serial_number=cert.serial_number,
            not_before=cert.not_valid_before_utc,
            not_after=cert.not_valid_after_utc,
            fingerprint=":".join(fingerprint[i:i + 2] for i in range(0, len(fingerprint), 2)),
            dns_names=dns_names,
            ip_addresses=ip_addresses
        )

    def verify_issued_by(self, cert_pem: bytes, ca_cert_pem: bytes) -> bool:
        cert = self._load_cert(cert_pem)
        ca_cert = self._load_cert(ca_cert_pem)
        try:
            cert.verify_directly_issued_by(ca_cert)
            return True
        except (ValueError, TypeError, InvalidSignature) as e:
            self.logger.debug(f"Signature verification failed: {e}")
            return False
