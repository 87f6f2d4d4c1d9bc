#!/usr/bin/env python3
"""
Example script walking through the certificate and configuration workflow
against a throwaway config root.
"""
import tempfile

from wezterm_manager.models.errors import ManagerError
from wezterm_manager.models.store import FileStore
from wezterm_manager.security.bundle_service import BundlePackager
from wezterm_manager.security.pki_service import PKIAuthority
from wezterm_manager.services.config_service import ConfigService


def main():
    """Demonstrate CA setup, client issuance, bundling and settings validation."""
    config_root = tempfile.mkdtemp(prefix="wezterm-demo-")
    store = FileStore(config_root)
    config_service = ConfigService(store)
    pki = PKIAuthority(store, key_size=2048)
    packager = BundlePackager(pki, config_service)

    print("=== WezTerm Host Manager Demo ===\n")
    print(f"Config root: {config_root}\n")

    # Example 1: Save server settings
    print("1. Saving server settings...")
    config = config_service.save({"address": "0.0.0.0", "port": 8080, "log_level": "info"})
    print(f"✓ Listening on {config.bind_address}, Lua config at {config_service.lua_path}")

    # Example 2: Reject invalid settings
    print("\n2. Testing configuration validation...")
    try:
        config_service.save({"port": 99999, "log_level": "loud"})
    except ManagerError as e:
        print(f"✗ {e}")

    # Example 3: Create the certificate authority
    print("\n3. Initializing certificate authority...")
    ca = pki.initialize_ca()
    print(f"✓ {ca.subject}, valid until {ca.not_after:%Y-%m-%d}")

    # Example 4: Issue, bundle and revoke a client certificate
    print("\n4. Issuing client certificate 'laptop'...")
    pki.issue_client_certificate("laptop")
    bundle = packager.build_bundle("laptop")
    print(f"✓ Bundle written to {bundle}")

    pki.revoke_client_certificate("laptop")
    for record in pki.list_certificates():
        print(f"  - {record.name:10} {record.type.value:7} {record.status.value}")

    print("\n=== Demo Complete ===")


if __name__ == "__main__":
    main()
