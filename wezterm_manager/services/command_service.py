"""
Command surface consumed by the web UI and the CLI.

Every command returns a CommandResult; no exception crosses this boundary.
"""
import logging
from contextlib import nullcontext
from typing import Any, Callable, Mapping, Optional

from ..models.errors import CommandResult, InvalidInput, ManagerError
from ..models.layout import client_cert_path
from ..models.settings import ManagerSettings
from ..models.store import FileStore
from ..security.bundle_service import BundlePackager
from ..security.models import CertificateType
from ..security.pki_service import PKIAuthority
from .config_service import ConfigService
from .installer_service import InstallerService
from .supervisor_service import ProcessSupervisor


class CommandService:
    """One synchronous entry point per administrative action."""

    def __init__(self, pki: PKIAuthority, packager: BundlePackager, supervisor: ProcessSupervisor,
                 config_service: ConfigService, installer: InstallerService, logging_service=None):
        self.pki = pki
        self.packager = packager
        self.supervisor = supervisor
        self.config_service = config_service
        self.installer = installer
        self.logging_service = logging_service
        self.logger = logging.getLogger(__name__)

    @classmethod
    def from_settings(cls, settings: ManagerSettings, logging_service=None) -> "CommandService":
        """Wire every component against the filesystem layout in settings."""
        store = FileStore(settings.config_root)
        config_service = ConfigService(store)
        pki = PKIAuthority(store, key_size=settings.key_size)
        return cls(
            pki=pki,
            packager=BundlePackager(pki, config_service),
            supervisor=ProcessSupervisor(settings, config_service),
            config_service=config_service,
            installer=InstallerService(settings, config_service),
            logging_service=logging_service
        )

    def _run(self, operation: str, action: Callable[[], CommandResult]) -> CommandResult:
        measure = self.logging_service.measure_command(operation) if self.logging_service else nullcontext()
        try:
            with measure:
                return action()
        except ManagerError as e:
            self.logger.warning(f"{operation} failed ({e.kind}): {e}")
            return CommandResult.failure(e)
        except Exception as e:
            self.logger.error(f"Unexpected error in {operation}: {e}", exc_info=True)
            return CommandResult(success=False, message=f"Unexpected error: {e}", error="InternalError")

    # Service control

    def start(self) -> CommandResult:
        return self._run("start", lambda: CommandResult.ok(
            "WezTerm server started successfully", self.supervisor.start().to_dict()))

    def stop(self) -> CommandResult:
        return self._run("stop", lambda: CommandResult.ok(
            "WezTerm server stopped successfully", self.supervisor.stop().to_dict()))

    def restart(self) -> CommandResult:
        return self._run("restart", lambda: CommandResult.ok(
            "WezTerm server restarted successfully", self.supervisor.restart().to_dict()))

    def status(self) -> CommandResult:
        def action():
            payload = self.supervisor.status().to_dict()
            config = self.config_service.read()
            payload.update({
                'version': self.supervisor.get_version(),
                'address': config.listen_address,
                'port': config.listen_port,
                'ca_initialized': self.pki.is_initialized(),
                'autostart': config.autostart
            })
            return CommandResult.ok("running" if payload['running'] else "stopped", payload)
        return self._run("status", action)

    def set_autostart(self, enabled: Any) -> CommandResult:
        def action():
            flag = ConfigService.parse_bool(enabled)
            if flag is None:
                raise InvalidInput("Invalid service setting. Must be enable or disable.")
            self.supervisor.set_autostart(flag)
            return CommandResult.ok(f"WezTerm Server {'enabled' if flag else 'disabled'} at boot",
                                    {'autostart': flag})
        return self._run("set_autostart", action)

    # Certificates

    def init_ca(self) -> CommandResult:
        return self._run("init_ca", lambda: CommandResult.ok(
            "Certificate Authority initialized successfully", self.pki.initialize_ca().to_dict()))

    def generate_cert(self, name: str) -> CommandResult:
        def action():
            created_at = self.pki.issue_client_certificate(name)
            return CommandResult.ok(f"Client certificate '{name}' generated successfully",
                                    {'name': name, 'created': created_at.isoformat()})
        return self._run("generate_cert", action)

    def revoke_cert(self, name: str) -> CommandResult:
        def action():
            entry = self.pki.revoke_client_certificate(name)
            return CommandResult.ok(f"Client certificate '{name}' revoked successfully",
                                    {'name': name, 'revoked': entry.revoked_at.isoformat()})
        return self._run("revoke_cert", action)

    def list_certs(self) -> CommandResult:
        return self._run("list_certs", lambda: CommandResult.ok(
            "Certificates listed", [record.to_dict() for record in self.pki.list_certificates()]))

    def cert_info(self, name: str) -> CommandResult:
        def action():
            if name in (CertificateType.CA.value, CertificateType.SERVER.value) \
                    and not self.pki.store.exists(client_cert_path(name)):
                detail = self.pki.get_certificate_detail(name, CertificateType(name))
            else:
                detail = self.pki.get_certificate_detail(name)
            return CommandResult.ok(f"Certificate details for '{name}'", detail.to_dict())
        return self._run("cert_info", action)

    def verify_cert(self, cert_pem: str) -> CommandResult:
        def action():
            result = self.pki.validate_client_certificate(cert_pem)
            payload = {'authenticated': result.is_authenticated, 'client_id': result.client_id}
            if not result.is_authenticated:
                return CommandResult(success=False, message=result.error_message,
                                     payload=payload, error="NotAuthenticated")
            return CommandResult.ok(f"Certificate valid for '{result.client_id}'", payload)
        return self._run("verify_cert", action)

    def download_cert(self, name: str, output_path: Optional[str] = None) -> CommandResult:
        """Bundle bytes, or the archive path when output_path is given."""
        def action():
            if output_path:
                path = self.packager.build_bundle(name, output_path)
                return CommandResult.ok(f"Certificate bundle created: {path}",
                                        {'bundle': str(path), 'name': path.name})
            return CommandResult.ok(f"Certificate bundle for '{name}'",
                                    self.packager.build_bundle_bytes(name))
        return self._run("download_cert", action)

    # Configuration

    def get_config(self) -> CommandResult:
        return self._run("get_config", lambda: CommandResult.ok(
            "Configuration loaded", self.config_service.read().to_dict()))

    def save_config(self, fields: Mapping[str, Any]) -> CommandResult:
        def action():
            config = self.config_service.save(fields)
            self.supervisor.set_autostart(config.autostart, persist=False)
            return CommandResult.ok(
                "Configuration saved successfully. Restart the service for changes to take effect.",
                config.to_dict()
            )
        return self._run("save_config", action)

    # Installation and diagnostics

    def install(self, version: str = "latest") -> CommandResult:
        return self._run("install", lambda: CommandResult.ok(
            "WezTerm installed successfully", {'output': self.installer.install(version)}))

    def get_logs(self, lines: Any = 100) -> CommandResult:
        def action():
            try:
                count = int(lines)
            except (TypeError, ValueError):
                raise InvalidInput("lines must be an integer")
            return CommandResult.ok("Logs loaded", {'logs': self.supervisor.get_logs(count)})
        return self._run("get_logs", action)

    def command_stats(self) -> CommandResult:
        """Timing summary of the commands run by this process."""
        def action():
            stats = self.logging_service.command_stats() if self.logging_service else {}
            return CommandResult.ok("Command statistics", stats)
        return self._run("command_stats", action)
