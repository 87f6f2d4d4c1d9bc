"""
Error taxonomy and structured results for host management operations.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


class ManagerError(Exception):
    """Base class for all failures reported across the component boundary."""

    kind = "Error"

    def __init__(self, message: str, output: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.output = output

    def __str__(self):
        if self.output:
            return f"{self.message}: {self.output}"
        return self.message


class InvalidInput(ManagerError):
    kind = "InvalidInput"


class InvalidName(InvalidInput):
    kind = "InvalidName"


class NotInitialized(ManagerError):
    kind = "NotInitialized"


class AlreadyExists(ManagerError):
    kind = "AlreadyExists"


class AlreadyInitialized(ManagerError):
    kind = "AlreadyInitialized"


class NotFound(ManagerError):
    kind = "NotFound"


class CryptoFailure(ManagerError):
    kind = "CryptoFailure"


class BinaryMissing(ManagerError):
    kind = "BinaryMissing"


class StartFailed(ManagerError):
    kind = "StartFailed"


class StopFailed(ManagerError):
    kind = "StopFailed"


class InstallFailed(ManagerError):
    kind = "InstallFailed"


class BundleRefused(ManagerError):
    """A certificate bundle was refused because a member would expose the CA private key."""

    kind = "BundleRefused"


class ValidationFailed(ManagerError):
    """Configuration save rejected; ``fields`` names every offending field."""

    kind = "ValidationFailed"

    def __init__(self, errors: List[Any]):
        self.errors = errors
        self.fields = [error.field for error in errors]
        summary = "; ".join(str(error) for error in errors)
        super().__init__(f"Configuration validation failed: {summary}")


@dataclass
class CommandResult:
    """Result of one command invoked through the command surface."""
    success: bool
    message: str
    payload: Optional[Any] = None
    error: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, message: str, payload: Any = None) -> "CommandResult":
        return cls(success=True, message=message, payload=payload)

    @classmethod
    def failure(cls, error: ManagerError) -> "CommandResult":
        details = {}
        if isinstance(error, ValidationFailed):
            details['fields'] = error.fields
        return cls(success=False, message=str(error), error=error.kind, details=details)

    def to_dict(self) -> Dict[str, Any]:
        data = {'success': self.success, 'message': self.message}
        if self.payload is not None:
            data['payload'] = self.payload
        if self.error:
            data['error'] = self.error
        if self.details:
            data.update(self.details)
        return data
