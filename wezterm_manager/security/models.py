"""
Security models for certificate lifecycle management.
"""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class CertificateType(str, Enum):
    CA = "ca"
    SERVER = "server"
    CLIENT = "client"


class CertificateStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    REVOKED = "revoked"


@dataclass
class CertificateFields:
    """Fields read back from a signed certificate."""
    subject: str
    issuer: str
    common_name: Optional[str]
    serial_number: int
    not_before: datetime
    not_after: datetime
    fingerprint: str
    dns_names: List[str]
    ip_addresses: List[str]


@dataclass
class CertificateRecord:
    """One entry of a certificate listing."""
    name: str
    type: CertificateType
    created_at: datetime
    status: CertificateStatus
    expires_at: Optional[datetime] = None
    serial_number: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'type': self.type.value,
            'created': self.created_at.isoformat(),
            'expiry': self.expires_at.isoformat() if self.expires_at else None,
            'status': self.status.value,
            'serial': self.serial_number
        }


@dataclass
class CertificateInfo:
    """Information about a certificate."""
    name: str
    type: CertificateType
    subject: str
    issuer: str
    serial_number: str
    not_before: datetime
    not_after: datetime
    is_valid: bool
    fingerprint: str
    status: CertificateStatus

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'type': self.type.value,
            'subject': self.subject,
            'issuer': self.issuer,
            'serial': self.serial_number,
            'valid_from': self.not_before.isoformat(),
            'valid_to': self.not_after.isoformat(),
            'is_valid': self.is_valid,
            'fingerprint': self.fingerprint,
            'status': self.status.value
        }


@dataclass
class RevocationEntry:
    """A line of the revocation ledger: ``<serial hex> <name> <revoked at>``."""
    serial_number: int
    name: str
    revoked_at: datetime

    def to_line(self) -> str:
        return f"{self.serial_number:x} {self.name} {self.revoked_at.isoformat()}"

    @classmethod
    def from_line(cls, line: str) -> Optional["RevocationEntry"]:
        parts = line.split()
        if len(parts) != 3:
            return None
        try:
            return cls(
                serial_number=int(parts[0], 16),
                name=parts[1],
                revoked_at=datetime.fromisoformat(parts[2])
            )
        except ValueError:
            return None


@dataclass
class AuthenticationResult:
    """Result of client certificate authentication."""
    is_authenticated: bool
    client_id: Optional[str]
    error_message: Optional[str]
