"""
Rendering of the Lua configuration files consumed by WezTerm.
"""
from datetime import datetime
from typing import Dict

from ..models.config import ServiceConfiguration


def lua_string(value: str) -> str:
    """Quote a value as a Lua string literal."""
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")
    return f'"{escaped}"'


def render_server_config(config: ServiceConfiguration, cert_paths: Dict[str, str]) -> str:
    """
    Render the mux server configuration derived from the saved settings.

    Args:
        config: Saved service configuration
        cert_paths: Absolute paths keyed by ``cert``, ``key`` and ``ca``
    """
    return f"""-- WezTerm Multiplexer Server Configuration
-- Generated on {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}; regenerated on every save, do not edit

local wezterm = require 'wezterm'
local config = {{}}

config.unix_domains = {{}}
config.ssh_domains = {{}}

-- TLS listener; clients must present a certificate signed by the CA
config.tls_servers = {{
  {{
    bind_address = {lua_string(config.bind_address)},
    pem_cert = {lua_string(cert_paths['cert'])},
    pem_private_key = {lua_string(cert_paths['key'])},
    pem_ca = {lua_string(cert_paths['ca'])},
    pem_root_certs = {{ {lua_string(cert_paths['ca'])} }},
  }},
}}

return config
"""


def render_default_config() -> str:
    """Unix-domain only configuration used when no settings were ever saved."""
    return """-- WezTerm Server Configuration
local wezterm = require 'wezterm'
local config = {}

-- Use config builder if available (WezTerm 20220101+)
if wezterm.config_builder then
  config = wezterm.config_builder()
end

config.unix_domains = {
  {
    name = 'unix',
  },
}

config.default_gui_startup_args = { 'connect', 'unix' }

return config
"""


def render_client_config(remote_address: str, domain_name: str = "unraid") -> str:
    """Client snippet shipped in certificate bundles; paths are placeholders."""
    return f"""-- WezTerm Client Configuration
-- Add this to your ~/.wezterm.lua or ~/.config/wezterm/wezterm.lua

local wezterm = require 'wezterm'
local config = wezterm.config_builder()

-- IMPORTANT: Update the paths below to where you extracted the certificates
config.tls_clients = {{
  {{
    name = {lua_string(domain_name)},
    remote_address = {lua_string(remote_address)},

    pem_private_key = "/path/to/client.key",
    pem_cert = "/path/to/client.crt",
    pem_ca = "/path/to/ca.crt",
  }},
}}

-- Then connect with: wezterm connect {domain_name}

return config
"""
