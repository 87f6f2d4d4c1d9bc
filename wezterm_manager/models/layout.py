"""
Store keys of the on-disk layout, relative to the configuration root.

The front-end and the installer depend on these locations.
"""

CONFIG_FILE = "wezterm.cfg"
LUA_FILE = "wezterm.lua"

CERTS_DIR = "certs"
CA_KEY = f"{CERTS_DIR}/ca.key"
CA_CERT = f"{CERTS_DIR}/ca.crt"
CA_SERIAL = f"{CERTS_DIR}/ca.srl"
SERVER_KEY = f"{CERTS_DIR}/server.key"
SERVER_CERT = f"{CERTS_DIR}/server.crt"
CLIENTS_DIR = f"{CERTS_DIR}/clients"
REVOKED_DIR = f"{CLIENTS_DIR}/revoked"
REVOCATION_LEDGER = f"{CERTS_DIR}/revoked.txt"


def client_key_path(name: str) -> str:
    return f"{CLIENTS_DIR}/{name}.key"


def client_cert_path(name: str) -> str:
    return f"{CLIENTS_DIR}/{name}.crt"
