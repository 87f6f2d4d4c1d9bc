"""
Discovery of the names and addresses the server certificate is bound to.
"""
import logging
import socket
from dataclasses import dataclass
from typing import List

LOOPBACK_IP = "127.0.0.1"

logger = logging.getLogger(__name__)


@dataclass
class HostIdentity:
    hostname: str
    primary_ip: str

    @property
    def dns_names(self) -> List[str]:
        return [self.hostname, f"{self.hostname}.local", "localhost"]

    @property
    def ip_addresses(self) -> List[str]:
        addresses = [self.primary_ip]
        if LOOPBACK_IP not in addresses:
            addresses.append(LOOPBACK_IP)
        return addresses


def get_primary_ip() -> str:
    """Address of the interface used for outbound traffic, or loopback."""
    try:
        # No packet is sent; connecting a UDP socket only selects a route
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.connect(("8.8.8.8", 80))
            return s.getsockname()[0]
    except OSError as e:
        logger.warning(f"Could not determine primary IP, using loopback: {e}")
        return LOOPBACK_IP


def discover_host_identity() -> HostIdentity:
    return HostIdentity(hostname=socket.gethostname(), primary_ip=get_primary_ip())
