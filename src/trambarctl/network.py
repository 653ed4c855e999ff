"""Host network inspection used to pick installation defaults."""
from __future__ import annotations

import ipaddress
import socket
from collections.abc import Iterable, Mapping, Sequence

import psutil

LOCAL_NETWORKS = (
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("169.254.0.0/16"),
)


def external_ipv4_addresses(
    interfaces: Mapping[str, Sequence[object]] | None = None,
) -> list[str]:
    """Return IPv4 addresses bound to non-loopback interfaces."""
    table = psutil.net_if_addrs() if interfaces is None else interfaces
    addresses: list[str] = []
    for entries in table.values():
        for entry in entries:
            if getattr(entry, "family", None) != socket.AF_INET:
                continue
            address = str(getattr(entry, "address", "") or "")
            if not address:
                continue
            try:
                ip = ipaddress.IPv4Address(address)
            except ValueError:
                continue
            if ip.is_loopback:
                continue
            addresses.append(address)
    return addresses


def is_public_address(address: str) -> bool:
    """Return True unless *address* is on a home LAN or link-local network.

    The other private ranges (10/8, 172.16/12) count as public.
    """
    ip = ipaddress.ip_address(address)
    if ip.is_loopback:
        return False
    return not any(ip in network for network in LOCAL_NETWORKS)


def is_public_server(addresses: Iterable[str] | None = None) -> bool:
    """Return True when the host has at least one public IPv4 address."""
    candidates = external_ipv4_addresses() if addresses is None else addresses
    return any(is_public_address(address) for address in candidates)


def host_name() -> str:
    """Return the host name, falling back to ``localhost``."""
    try:
        name = socket.gethostname().strip()
    except OSError:
        return "localhost"
    return name or "localhost"


def is_port_available(port: int, host: str = "0.0.0.0") -> bool:  # noqa: S104
    """Return True when a TCP listener could bind *port* right now."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind((host, port))
        except OSError:
            return False
    return True


__all__ = [
    "external_ipv4_addresses",
    "host_name",
    "is_port_available",
    "is_public_address",
    "is_public_server",
]
