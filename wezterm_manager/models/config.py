"""
Configuration data models for the WezTerm server settings.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional


LOG_LEVELS = ["error", "warn", "info", "debug", "trace"]

DEFAULT_LISTEN_ADDRESS = "0.0.0.0"
DEFAULT_LISTEN_PORT = 8080
DEFAULT_LOG_LEVEL = "info"

# Keys recognised in wezterm.cfg, in the order they are written
CONFIG_KEYS = ["SERVICE", "LISTEN_ADDRESS", "LISTEN_PORT", "LOG_LEVEL", "VERSION"]


@dataclass
class ServiceConfiguration:
    """User-chosen settings for the supervised mux server."""

    listen_address: str = DEFAULT_LISTEN_ADDRESS
    listen_port: int = DEFAULT_LISTEN_PORT
    log_level: str = DEFAULT_LOG_LEVEL
    autostart: bool = False
    version: str = ""

    @property
    def bind_address(self) -> str:
        """Address in the ``host:port`` form the mux server expects."""
        if ":" in self.listen_address:
            return f"[{self.listen_address}]:{self.listen_port}"
        return f"{self.listen_address}:{self.listen_port}"

    def to_entries(self) -> Dict[str, str]:
        """Convert to the KEY/VALUE pairs stored in wezterm.cfg."""
        return {
            "SERVICE": "enable" if self.autostart else "disable",
            "LISTEN_ADDRESS": self.listen_address,
            "LISTEN_PORT": str(self.listen_port),
            "LOG_LEVEL": self.log_level,
            "VERSION": self.version,
        }

    def to_dict(self) -> Dict[str, object]:
        return {
            "address": self.listen_address,
            "port": self.listen_port,
            "log_level": self.log_level,
            "autostart": self.autostart,
            "version": self.version,
        }


@dataclass
class ConfigValidationError:
    """Represents a configuration validation error."""
    field: str
    message: str

    def __str__(self):
        return f"{self.field} - {self.message}"


@dataclass
class ConfigValidationResult:
    """Result of configuration validation."""
    errors: List[ConfigValidationError] = field(default_factory=list)
    config: Optional[ServiceConfiguration] = None

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def has_errors(self) -> bool:
        """Check if there are any validation errors."""
        return len(self.errors) > 0

    def get_error_summary(self) -> str:
        """Get a formatted summary of all errors."""
        if not self.errors:
            return "Configuration is valid"
        lines = ["Configuration Errors:"]
        for error in self.errors:
            lines.append(f"  - {error}")
        return "\n".join(lines)
