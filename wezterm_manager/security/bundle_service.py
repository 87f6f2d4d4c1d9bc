"""
Packaging of issued client credentials into a downloadable archive.
"""
import io
import logging
import os
import tempfile
import zipfile
from pathlib import Path
from typing import Callable, Dict, Optional

from ..models.config import DEFAULT_LISTEN_ADDRESS
from ..models.errors import BundleRefused
from ..services.config_service import ConfigService
from ..services.lua_config import render_client_config
from .host_identity import get_primary_ip
from .pki_service import PKIAuthority, validate_name

CLIENT_CONFIG_NAME = "wezterm-client.lua"

WILDCARD_ADDRESSES = (DEFAULT_LISTEN_ADDRESS, "::")


class BundlePackager:
    """Builds the archive handed to a client device."""

    def __init__(self, pki: PKIAuthority, config_service: ConfigService,
                 primary_ip: Callable[[], str] = get_primary_ip):
        self.pki = pki
        self.config_service = config_service
        self.primary_ip = primary_ip
        self.logger = logging.getLogger(__name__)

    def remote_address(self) -> str:
        """Address clients should dial: the bind address, or the host IP for a wildcard bind."""
        config = self.config_service.read()
        address = config.listen_address
        if address in WILDCARD_ADDRESSES:
            address = self.primary_ip()
        if ":" in address:
            return f"[{address}]:{config.listen_port}"
        return f"{address}:{config.listen_port}"

    def bundle_entries(self, name: str) -> Dict[str, bytes]:
        """
        Collect the archive members for an active client.

        Raises:
            NotFound: If no active certificate exists for the name
        """
        validate_name(name)
        material = self.pki.get_client_material(name)
        folder = f"wezterm-certs-{name}"
        entries = {
            f"{folder}/ca.crt": self.pki.get_ca_certificate(),
            f"{folder}/client.crt": material['cert'],
            f"{folder}/client.key": material['key'],
            f"{folder}/{CLIENT_CONFIG_NAME}": render_client_config(self.remote_address()).encode("utf-8"),
        }

        for member, data in entries.items():
            if self.pki.contains_ca_private_key(data):
                raise BundleRefused(f"Refusing to package {member}: it contains the CA private key")
        return entries

    def build_bundle(self, name: str, output_path: Optional[str] = None) -> Path:
        """
        Write the bundle archive for a client.

        The caller owns the archive and must delete it after transfer.

        Args:
            name: Client certificate name
            output_path: Destination file; written into a fresh temporary directory if omitted

        Returns:
            Path of the written zip archive
        """
        entries = self.bundle_entries(name)

        if output_path is None:
            output_path = os.path.join(tempfile.mkdtemp(prefix="wezterm-bundle-"), f"wezterm-certs-{name}.zip")

        path = Path(output_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        # The archive carries a private key
        path.touch(mode=0o600)
        os.chmod(path, 0o600)
        with zipfile.ZipFile(path, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for member, data in entries.items():
                archive.writestr(member, data)

        self.logger.info(f"Certificate bundle created for {name}: {path}")
        return path

    def build_bundle_bytes(self, name: str) -> bytes:
        """Archive bytes for a client, without leaving a file behind."""
        entries = self.bundle_entries(name)
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for member, data in entries.items():
                archive.writestr(member, data)
        self.logger.info(f"Certificate bundle streamed for {name}")
        return buffer.getvalue()
