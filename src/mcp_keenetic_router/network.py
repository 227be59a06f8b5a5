"""Match configured routers and local interfaces to the current network.

The machine's interfaces are read fresh on every call: a laptop can move
between networks between two polls.
"""

from __future__ import annotations

import ipaddress
import logging
import socket
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import psutil

from .auth import KeeneticSession
from .config import RouterConfig
from .errors import RouterError
from .reconcile import ClientRecord

# Configure module logger
logger = logging.getLogger(__name__)

NOT_AVAILABLE = "N/A"

Connect = Callable[[str, str, str], KeeneticSession]
PasswordLookup = Callable[[str], Optional[str]]


class InterfaceType(str, Enum):
    """Kind of network adapter, guessed from its name."""

    WIFI = "Wi-Fi"
    ETHERNET = "Ethernet"
    UNKNOWN = "Unknown"


@dataclass
class LocalInterface:
    """A network interface of this machine."""

    name: str
    mac: Optional[str] = None
    ipv4: List[str] = field(default_factory=list)
    networks: List[ipaddress.IPv4Network] = field(default_factory=list)
    is_loopback: bool = False


@dataclass
class InterfaceInfo:
    """A local interface as seen by the active router."""

    name: str
    display_name: str
    mac: str
    ip: str
    type: InterfaceType
    online: bool = False
    policy_name: Optional[str] = None
    deny: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "name": self.name,
            "display_name": self.display_name,
            "mac": self.mac,
            "ip": self.ip,
            "type": self.type.value,
            "online": self.online,
            "policy": self.policy_name,
            "deny": self.deny,
        }


def _normalize_mac(value: str) -> Optional[str]:
    mac = value.strip().lower().replace("-", ":")
    if not mac or mac == "00:00:00:00:00:00":
        return None
    return mac


def local_interfaces() -> List[LocalInterface]:
    """Enumerate the network interfaces of this machine.

    Returns:
        Interfaces in the order reported by the operating system.
    """
    stats = psutil.net_if_stats()
    out: List[LocalInterface] = []

    for ifname, addrs in psutil.net_if_addrs().items():
        iface = LocalInterface(name=ifname)
        st = stats.get(ifname)
        flags = getattr(st, "flags", "") or ""
        iface.is_loopback = ifname.lower() in ("lo", "lo0") or "loopback" in flags

        for addr in addrs:
            if addr.family == psutil.AF_LINK:
                iface.mac = iface.mac or _normalize_mac(addr.address or "")
            elif addr.family == socket.AF_INET and addr.address:
                iface.ipv4.append(addr.address)
                if addr.netmask:
                    try:
                        net = ipaddress.IPv4Network(f"{addr.address}/{addr.netmask}", strict=False)
                    except ValueError:
                        continue
                    iface.networks.append(net)
                    if net.network_address.is_loopback:
                        iface.is_loopback = True

        out.append(iface)
    return out


def local_networks(interfaces: Optional[Iterable[LocalInterface]] = None) -> List[ipaddress.IPv4Network]:
    """Get the IPv4 networks this machine is attached to.

    Args:
        interfaces: Interfaces to read; defaults to the current ones.

    Returns:
        Networks in interface order.
    """
    if interfaces is None:
        interfaces = local_interfaces()
    return [net for iface in interfaces for net in iface.networks]


def ip_in_networks(ip: str, networks: Sequence[ipaddress.IPv4Network]) -> bool:
    """Check whether an address belongs to one of the given networks."""
    try:
        addr = ipaddress.ip_address(ip.strip())
    except ValueError:
        return False
    return any(addr in net for net in networks)


def extract_host(address: str) -> str:
    """Get the host part of a router address.

    Args:
        address: URL, host:port or bare host.

    Returns:
        The host without scheme, port or path.
    """
    value = address.strip()
    if "://" in value:
        value = value.split("://", 1)[1]
    value = value.split("/", 1)[0]
    if value.startswith("["):
        return value[1:].split("]", 1)[0]
    if value.count(":") == 1:
        value = value.split(":", 1)[0]
    return value


def router_candidates(
    routers: Iterable[RouterConfig],
    networks: Sequence[ipaddress.IPv4Network],
) -> List[Tuple[RouterConfig, str]]:
    """Find the configured routers reachable from the current networks.

    The last known LAN address of a router is preferred; its configured
    address is used when that host is on a local network instead.

    Args:
        routers: Configured routers, in priority order.
        networks: Networks this machine is attached to.

    Returns:
        (router, address to use) pairs, in router order.
    """
    candidates: List[Tuple[RouterConfig, str]] = []
    for router in routers:
        if router.network_ip and ip_in_networks(router.network_ip, networks):
            candidates.append((router, router.network_ip))
            continue
        host = extract_host(router.address)
        if host and ip_in_networks(host, networks):
            candidates.append((router, router.address))
        else:
            logger.debug("Router %s is not on a local network", router.name)
    return candidates


def select_active_router(
    candidates: Iterable[Tuple[RouterConfig, str]],
    get_password: PasswordLookup,
    connect: Connect,
) -> Optional[Tuple[RouterConfig, str, KeeneticSession]]:
    """Log in to the candidates in order and stop at the first success.

    Args:
        candidates: (router, address) pairs from router_candidates().
        get_password: Returns the password of a router, or None.
        connect: Creates an authenticated session from address, login
            and password; raises RouterError on failure.

    Returns:
        (router, address, session) for the first router that accepted
        the login, or None when none did.
    """
    for router, address in candidates:
        password = get_password(router.name)
        if password is None:
            logger.debug("No password for router %s, skipping", router.name)
            continue
        try:
            session = connect(address, router.login, password)
        except RouterError as e:
            logger.warning("Login to %s at %s failed: %s", router.name, address, e)
            continue
        logger.info("Active router: %s (%s)", router.name, address)
        return router, address, session
    return None


def interface_type(name: str) -> InterfaceType:
    """Guess the kind of an interface from its name."""
    lname = name.lower()
    if lname.startswith(("wl", "wlan", "wifi")):
        return InterfaceType.WIFI
    if lname.startswith(("en", "eth")):
        return InterfaceType.ETHERNET
    return InterfaceType.UNKNOWN


def correlate_interfaces(
    clients: Dict[str, ClientRecord],
    interfaces: Optional[Iterable[LocalInterface]] = None,
) -> List[InterfaceInfo]:
    """Join local interfaces with the router's client table by MAC.

    When the router knows any client, only the interfaces it knows are
    kept; with an empty table every interface is kept.

    Args:
        clients: Reconciled client table of the active router.
        interfaces: Interfaces to read; defaults to the current ones.

    Returns:
        Interface views, in interface order.
    """
    if interfaces is None:
        interfaces = local_interfaces()
    by_mac = {mac.lower(): client for mac, client in clients.items()}

    out: List[InterfaceInfo] = []
    for iface in interfaces:
        if iface.is_loopback or not iface.mac:
            continue
        mac = iface.mac.lower()
        if by_mac and mac not in by_mac:
            continue

        info = InterfaceInfo(
            name=iface.name,
            display_name=iface.name,
            mac=mac,
            ip=iface.ipv4[0] if iface.ipv4 else NOT_AVAILABLE,
            type=interface_type(iface.name),
        )
        client = by_mac.get(mac)
        if client is not None:
            if client.name:
                info.display_name = client.name
            info.policy_name = client.policy_name
            info.deny = client.deny
            info.online = client.online
        out.append(info)
    return out


def pick_active_interface(interfaces: Sequence[InterfaceInfo]) -> Optional[InterfaceInfo]:
    """Get the first online interface, or the first one if none is online."""
    for iface in interfaces:
        if iface.online:
            return iface
    return interfaces[0] if interfaces else None
