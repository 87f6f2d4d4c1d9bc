"""
WezTerm host manager: certificate authority, process supervision and
configuration for wezterm-mux-server.
"""

__version__ = "1.0.0"
