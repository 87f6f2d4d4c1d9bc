"""
Security package for the certificate lifecycle of the WezTerm mux server.
"""
from .models import (
    AuthenticationResult, CertificateInfo, CertificateRecord, CertificateStatus,
    CertificateType, RevocationEntry
)
from .backend import CertificateAuthorityBackend, CryptographyBackend
from .pki_service import PKIAuthority
from .bundle_service import BundlePackager

__all__ = [
    'AuthenticationResult',
    'CertificateInfo',
    'CertificateRecord',
    'CertificateStatus',
    'CertificateType',
    'RevocationEntry',
    'CertificateAuthorityBackend',
    'CryptographyBackend',
    'PKIAuthority',
    'BundlePackager'
]
