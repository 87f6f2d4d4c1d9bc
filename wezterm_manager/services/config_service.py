"""
Configuration service for reading, validating and saving the server settings.
"""
import ipaddress
import logging
import re
from datetime import datetime
from typing import Any, Dict, Mapping, Optional, Union

from ..models.config import (
    CONFIG_KEYS, DEFAULT_LISTEN_ADDRESS, DEFAULT_LISTEN_PORT, DEFAULT_LOG_LEVEL, LOG_LEVELS,
    ConfigValidationError, ConfigValidationResult, ServiceConfiguration
)
from ..models.errors import ValidationFailed
from ..models.layout import CA_CERT, CONFIG_FILE, LUA_FILE, SERVER_CERT, SERVER_KEY
from ..models.store import Store
from .lua_config import render_default_config, render_server_config

LINE_PATTERN = re.compile(r'^([A-Z_]+)="(.*)"\s*$')

TRUE_VALUES = ("true", "yes", "1", "on", "enable", "enabled")
FALSE_VALUES = ("false", "no", "0", "off", "disable", "disabled")

# Accepted spellings of each field in a save candidate
FIELD_ALIASES = {
    "address": "listen_address",
    "listen_address": "listen_address",
    "port": "listen_port",
    "listen_port": "listen_port",
    "log_level": "log_level",
    "log": "log_level",
    "autostart": "autostart",
    "service": "autostart",
    "version": "version",
}


class ConfigService:
    """Service for the persisted ServiceConfiguration and its derived wezterm.lua."""

    def __init__(self, store: Store):
        self.store = store
        self.logger = logging.getLogger(__name__)

    @property
    def lua_path(self) -> str:
        return str(self.store.path(LUA_FILE))

    def read(self) -> ServiceConfiguration:
        """
        Read the saved configuration.

        Never fails: a missing file yields defaults and every field that is
        absent or unparseable falls back to its default.
        """
        try:
            text = self.store.load_text(CONFIG_FILE)
        except UnicodeDecodeError:
            self.logger.warning(f"{CONFIG_FILE} is not valid UTF-8, using defaults")
            text = None
        if text is None:
            return ServiceConfiguration()

        entries: Dict[str, str] = {}
        for line in text.splitlines():
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            match = LINE_PATTERN.match(line)
            if match and match.group(1) in CONFIG_KEYS:
                entries[match.group(1)] = match.group(2)

        config = ServiceConfiguration()

        address = entries.get("LISTEN_ADDRESS", DEFAULT_LISTEN_ADDRESS)
        config.listen_address = address if self._valid_address(address) else DEFAULT_LISTEN_ADDRESS

        try:
            port = int(entries.get("LISTEN_PORT", DEFAULT_LISTEN_PORT))
            config.listen_port = port if 1 <= port <= 65535 else DEFAULT_LISTEN_PORT
        except ValueError:
            self.logger.warning(f"Ignoring invalid LISTEN_PORT in {CONFIG_FILE}")

        level = entries.get("LOG_LEVEL", DEFAULT_LOG_LEVEL)
        config.log_level = level if level in LOG_LEVELS else DEFAULT_LOG_LEVEL

        config.autostart = entries.get("SERVICE", "disable").lower() in TRUE_VALUES
        config.version = entries.get("VERSION", "")
        return config

    def validate(self, candidate: Mapping[str, Any],
                 base: Optional[ServiceConfiguration] = None) -> ConfigValidationResult:
        """
        Validate a candidate against the current settings.

        Args:
            candidate: Field values to change, keyed by field name or alias
            base: Settings the candidate is applied on; defaults to read()

        Returns:
            ConfigValidationResult listing each rejected field, carrying the
            merged ServiceConfiguration when there are none
        """
        merged = base or self.read()
        values = merged.__dict__.copy()
        errors = []

        for raw_key, raw_value in candidate.items():
            field = FIELD_ALIASES.get(raw_key)
            if field is None:
                errors.append(ConfigValidationError(raw_key, "Unknown configuration field"))
                continue

            if field == "listen_address":
                address = str(raw_value).strip()
                if not self._valid_address(address):
                    errors.append(ConfigValidationError("address", "Invalid IP address format"))
                else:
                    values[field] = address

            elif field == "listen_port":
                port = self._parse_port(raw_value)
                if port is None:
                    errors.append(ConfigValidationError(
                        "port", "Invalid port number. Must be between 1 and 65535"
                    ))
                else:
                    values[field] = port

            elif field == "log_level":
                level = str(raw_value).strip().lower()
                if level not in LOG_LEVELS:
                    errors.append(ConfigValidationError(
                        "log_level", f"Invalid log level. Must be one of: {', '.join(LOG_LEVELS)}"
                    ))
                else:
                    values[field] = level

            elif field == "autostart":
                enabled = self.parse_bool(raw_value)
                if enabled is None:
                    errors.append(ConfigValidationError(
                        "autostart", "Invalid service setting. Must be enable or disable"
                    ))
                else:
                    values[field] = enabled

            elif field == "version":
                version = "" if raw_value is None else str(raw_value).strip()
                if '"' in version or "\n" in version:
                    errors.append(ConfigValidationError("version", "Invalid version string"))
                else:
                    values[field] = version

        if errors:
            return ConfigValidationResult(errors=errors)
        return ConfigValidationResult(config=ServiceConfiguration(**values))

    def save(self, candidate: Union[Mapping[str, Any], ServiceConfiguration]) -> ServiceConfiguration:
        """
        Validate and persist settings, regenerating wezterm.lua with them.

        Fields not present in the candidate keep their saved values. The
        derived file is replaced before the settings file, both under the
        store lock, so saved settings are never newer than wezterm.lua.

        Raises:
            ValidationFailed: If any field is invalid; nothing is written
        """
        if isinstance(candidate, ServiceConfiguration):
            candidate = {
                "address": candidate.listen_address,
                "port": candidate.listen_port,
                "log_level": candidate.log_level,
                "autostart": candidate.autostart,
                "version": candidate.version,
            }

        with self.store.lock():
            validation = self.validate(candidate)
            if validation.has_errors():
                self.logger.warning(validation.get_error_summary())
                raise ValidationFailed(validation.errors)

            result = validation.config
            self.store.save_text(LUA_FILE, self._render_lua(result))
            self.store.save_text(CONFIG_FILE, self._render_cfg(result))

        self.logger.info(
            f"Configuration saved: {result.bind_address}, log level {result.log_level}, "
            f"autostart {'enabled' if result.autostart else 'disabled'}"
        )
        return result

    def regenerate_lua(self) -> str:
        """Rewrite wezterm.lua from the saved settings and return its path."""
        with self.store.lock():
            self.store.save_text(LUA_FILE, self._render_lua(self.read()))
        return self.lua_path

    def ensure_lua(self) -> str:
        """
        Return the path of wezterm.lua, recreating it if it is missing.

        Saved settings are rendered into it; only a host that never saved any
        gets the unix-domain-only default.
        """
        with self.store.lock():
            if not self.store.exists(LUA_FILE):
                if self.store.exists(CONFIG_FILE):
                    self.logger.warning(f"Lua config not found at {self.lua_path}, regenerating from saved settings")
                    self.store.save_text(LUA_FILE, self._render_lua(self.read()))
                else:
                    self.logger.warning(f"Lua config not found at {self.lua_path}, creating default configuration")
                    self.store.save_text(LUA_FILE, render_default_config())
        return self.lua_path

    def _render_lua(self, config: ServiceConfiguration) -> str:
        return render_server_config(config, {
            'cert': str(self.store.path(SERVER_CERT)),
            'key': str(self.store.path(SERVER_KEY)),
            'ca': str(self.store.path(CA_CERT)),
        })

    @staticmethod
    def _render_cfg(config: ServiceConfiguration) -> str:
        lines = [
            "# WezTerm Server Configuration",
            f"# Generated on {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
            "",
        ]
        for key, value in config.to_entries().items():
            lines.append(f'{key}="{value}"')
        return "\n".join(lines) + "\n"

    @staticmethod
    def _valid_address(address: str) -> bool:
        if address == DEFAULT_LISTEN_ADDRESS:
            return True
        try:
            ipaddress.ip_address(address)
            return True
        except ValueError:
            return False

    @staticmethod
    def _parse_port(value: Any) -> Optional[int]:
        if isinstance(value, bool):
            return None
        if isinstance(value, int):
            port = value
        elif isinstance(value, str) and value.strip().isdigit():
            port = int(value.strip())
        else:
            return None
        return port if 1 <= port <= 65535 else None

    @staticmethod
    def parse_bool(value: Any) -> Optional[bool]:
        """Parse boolean value from bool, 0/1 or string."""
        if isinstance(value, bool):
            return value
        if isinstance(value, int) and value in (0, 1):
            return bool(value)
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in TRUE_VALUES:
                return True
            if lowered in FALSE_VALUES:
                return False
        return None
