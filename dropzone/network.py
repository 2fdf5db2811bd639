"""
LAN address discovery for the startup banner.
"""

import fcntl
import ipaddress
import logging
import os
import socket
import struct

logger = logging.getLogger(__name__)

SYS_CLASS_NET = "/sys/class/net"
SIOCGIFADDR = 0x8915
LOOPBACK = "127.0.0.1"
WILDCARD_HOSTS = ("0.0.0.0", "::", "")

# Physical NICs first; VPN and container bridges last.
PREFERRED_PREFIXES = ("eth", "en", "wl")
VIRTUAL_PREFIXES = ("tun", "tap", "docker", "br-", "veth", "virbr")


def is_lan_address(ip: str) -> bool:
    try:
        addr = ipaddress.ip_address(ip)
    except ValueError:
        return False
    return not (addr.is_loopback or addr.is_link_local or addr.is_unspecified)

def _get_iface_ipv4_linux(ifname: str) -> str | None:
    """Return the IPv4 address for an interface name on Linux, or None if unavailable."""
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            ifreq = struct.pack("256s", ifname.encode("utf-8")[:15])
            res = fcntl.ioctl(s.fileno(), SIOCGIFADDR, ifreq)
    except OSError:
        # Down, or no IPv4 address assigned.
        return None
    return socket.inet_ntoa(res[20:24])

def list_interfaces() -> list[str]:
    try:
        return sorted(os.listdir(SYS_CLASS_NET))
    except OSError as e:
        logger.debug("Cannot enumerate network interfaces: %s", e)
        return []

def _interface_rank(ifname: str) -> int:
    if ifname.startswith(PREFERRED_PREFIXES):
        return 0
    if ifname.startswith(VIRTUAL_PREFIXES):
        return 2
    return 1

def interface_addresses() -> list[tuple[str, str]]:
    out: list[tuple[str, str]] = []
    for ifname in list_interfaces():
        if ifname == "lo":
            continue
        ip = _get_iface_ipv4_linux(ifname)
        if ip and is_lan_address(ip):
            out.append((ifname, ip))
    out.sort(key=lambda item: _interface_rank(item[0]))
    return out

def _guess_fallback_ip() -> str | None:
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.connect(("8.8.8.8", 80))  # no packets need to be sent
            ip = s.getsockname()[0]
    except OSError as e:
        logger.debug("Cannot determine the outbound address: %s", e)
        return None
    return ip if is_lan_address(ip) else None

def discover_lan_addresses(bound_host: str = "0.0.0.0") -> list[str]:
    """
    Addresses other devices can use to reach this machine.

    A listener bound to a specific host is only reachable there. For wildcard
    binds the interface addresses are used, then the routing guess, and as a
    last resort loopback so the operator can at least open it locally.
    """
    if bound_host not in WILDCARD_HOSTS:
        return [bound_host]

    ips: list[str] = []
    for _, ip in interface_addresses():
        if ip not in ips:
            ips.append(ip)

    if not ips:
        guess = _guess_fallback_ip()
        if guess:
            ips.append(guess)

    if not ips:
        logger.warning("No LAN address found; the server is only reachable from this machine")
        ips.append(LOOPBACK)
    return ips
