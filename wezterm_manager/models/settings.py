"""
Host paths and supervision timeouts for the manager itself.

These are installation-level settings, distinct from the user-facing
ServiceConfiguration stored in wezterm.cfg.
"""
import configparser
import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional


ENV_CONFIG_PATH = "WEZTERM_MANAGER_CONFIG"


@dataclass
class ManagerSettings:
    """Filesystem layout and policy knobs for one managed host."""

    # Filesystem layout
    config_root: str = "/boot/config/plugins/wezterm"
    runtime_root: str = "/var/run/wezterm"
    wezterm_bin: str = "/usr/local/bin/wezterm"
    mux_server_bin: str = "/usr/local/bin/wezterm-mux-server"
    boot_script: str = "/boot/config/go"
    daemon_log_file: str = "/var/log/wezterm-mux-server.log"
    installer_script: str = "/usr/local/emhttp/plugins/wezterm/scripts/install.sh"
    autostart_command: str = "/usr/local/bin/wezterm-manager start"

    # Supervision
    service_name: str = "wezterm-mux-server"
    stop_timeout: float = 10.0
    start_poll_seconds: float = 5.0
    restart_delay: float = 2.0
    poll_interval: float = 0.25
    command_timeout: float = 60.0

    # PKI
    key_size: int = 4096

    # Manager logging
    log_level: str = "INFO"
    log_file_path: str = "/var/log/wezterm-manager/manager.log"

    def __post_init__(self):
        """Validate settings after initialization."""
        for name in ("stop_timeout", "start_poll_seconds", "poll_interval"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")

        if self.restart_delay < 0:
            raise ValueError("restart_delay must not be negative")

        if self.key_size < 2048:
            raise ValueError("key_size must be at least 2048 bits")

        if self.log_level.upper() not in ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
            raise ValueError("log_level must be one of: DEBUG, INFO, WARNING, ERROR, CRITICAL")

    @property
    def config_file(self) -> Path:
        return Path(self.config_root) / "wezterm.cfg"

    @property
    def lua_file(self) -> Path:
        return Path(self.config_root) / "wezterm.lua"

    @property
    def certs_dir(self) -> Path:
        return Path(self.config_root) / "certs"

    @property
    def pid_file(self) -> Path:
        return Path(self.runtime_root) / f"{self.service_name}.pid"

    @classmethod
    def from_file(cls, config_path: Optional[str] = None) -> "ManagerSettings":
        """
        Load settings from a properties file.

        Args:
            config_path: Path to the file; falls back to $WEZTERM_MANAGER_CONFIG

        Returns:
            ManagerSettings with defaults for every key the file does not set

        Raises:
            ValueError: If the file cannot be parsed or holds invalid values
        """
        config_path = config_path or os.environ.get(ENV_CONFIG_PATH)
        if not config_path or not os.path.exists(config_path):
            return cls()

        parser = configparser.ConfigParser()
        try:
            parser.read(config_path)
        except configparser.Error as e:
            raise ValueError(f"Failed to parse settings file: {e}")

        # Sections are only for readability; keys are flat
        raw: Dict[str, str] = dict(parser.defaults())
        for section in parser.sections():
            for key, value in parser.items(section):
                raw[key] = value

        kwargs: Dict[str, Any] = {}
        for setting in fields(cls):
            if setting.name not in raw:
                continue
            value = raw[setting.name]
            try:
                if setting.type in (float, "float"):
                    kwargs[setting.name] = float(value)
                elif setting.type in (int, "int"):
                    kwargs[setting.name] = int(value)
                else:
                    kwargs[setting.name] = value
            except (TypeError, ValueError) as e:
                raise ValueError(f"Invalid value for {setting.name}: {value} ({e})")

        logging.getLogger(__name__).debug(f"Loaded manager settings from {config_path}")
        return cls(**kwargs)
