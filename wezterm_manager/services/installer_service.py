"""
Delegation of WezTerm installation to the external installer script.
"""
import logging
import os
import re
import subprocess
from typing import Callable

from ..models.errors import InstallFailed, InvalidInput
from ..models.settings import ManagerSettings
from .config_service import ConfigService

# "latest", a WezTerm release tag such as 20240203-110809-5046fc22, or dotted semver
VERSION_PATTERN = re.compile(r"^(latest|\d{8}-\d{6}-[0-9a-f]{8}|\d+\.\d+\.\d+)$")

INSTALL_TIMEOUT_SECONDS = 900


class InstallerService:
    """Runs the installer script and records the installed version selector."""

    def __init__(self, settings: ManagerSettings, config_service: ConfigService,
                 runner: Callable[..., subprocess.CompletedProcess] = subprocess.run):
        self.settings = settings
        self.config_service = config_service
        self.runner = runner
        self.logger = logging.getLogger(__name__)

    def install(self, version: str = "latest") -> str:
        """
        Install or update the WezTerm binary.

        Returns:
            Combined installer output

        Raises:
            InvalidInput: If the version selector is malformed
            InstallFailed: If the installer is missing or exits non-zero
        """
        version = (version or "latest").strip()
        if not VERSION_PATTERN.fullmatch(version):
            raise InvalidInput(
                'Invalid version format. Use "latest" or a release tag (e.g., "20240203-110809-5046fc22").'
            )

        script = self.settings.installer_script
        if not os.path.isfile(script):
            raise InstallFailed(f"Installer script not found: {script}")

        self.logger.info(f"Installing WezTerm version {version}")
        try:
            result = self.runner(
                [script, version],
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                timeout=INSTALL_TIMEOUT_SECONDS
            )
        except subprocess.TimeoutExpired as e:
            output = e.output.decode(errors="replace") if isinstance(e.output, bytes) else (e.output or "")
            raise InstallFailed(f"Installer timed out after {INSTALL_TIMEOUT_SECONDS} seconds",
                                output=output.strip() or None)
        except OSError as e:
            raise InstallFailed("Failed to run installer", output=str(e))

        output = (result.stdout or "").strip()
        if result.returncode != 0:
            raise InstallFailed(f"Installer exited with code {result.returncode}", output=output)

        self.config_service.save({"version": version})
        self.logger.info(f"WezTerm {version} installed successfully")
        return output
