"""Keenetic RCI API client.

Typed operations on top of an authenticated KeeneticSession. Every
operation logs in first; the login is a single GET when the session
cookie is still valid, so callers never manage the login lifecycle.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from .auth import KeeneticSession
from .reconcile import ClientRecord, reconcile

# Configure module logger
logger = logging.getLogger(__name__)

CERTIFICATES_ENDPOINT = "rci/ip/http/ssl/acme/list/certificate"
BRIDGE_IP_ENDPOINT = "rci/sc/interface/Bridge0/ip/address"
POLICIES_ENDPOINT = "rci/show/rc/ip/policy"
HOSTS_ENDPOINT = "rci/show/ip/hotspot/host"
HOST_WRITE_ENDPOINT = "rci/ip/hotspot/host"


@dataclass(frozen=True)
class PolicyInfo:
    """Traffic policy profile configured on the router."""

    name: str
    description: Optional[str] = None

    @property
    def label(self) -> str:
        """Human readable name: the description, or the policy id."""
        return self.description or self.name

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {"name": self.name, "description": self.description}


@dataclass(frozen=True)
class NamedPolicy:
    """Assign a named policy to a client."""

    name: str


@dataclass(frozen=True)
class ClearPolicy:
    """Remove any policy from a client, restoring the default one."""


PolicyChoice = Union[NamedPolicy, ClearPolicy]


def policy_from_name(name: Optional[str]) -> PolicyChoice:
    """Build a policy choice from an optional policy name."""
    return NamedPolicy(name) if name else ClearPolicy()


def encode_policy(choice: PolicyChoice) -> Union[str, bool]:
    """Encode a policy choice for the hotspot host "policy" field.

    The router expects the policy id as a string, and the boolean false
    to clear it.
    """
    if isinstance(choice, NamedPolicy):
        return choice.name
    return False


class KeeneticClient:
    """Client for the subset of the Keenetic RCI API used for policies.

    Attributes:
        session: The session every request goes through.

    Example:
        >>> with login('192.168.1.1', 'admin', 'secret') as session:
        ...     client = KeeneticClient(session)
        ...     clients = client.list_clients()
        ...     print(f"Found {len(clients)} devices")
    """

    def __init__(self, session: KeeneticSession) -> None:
        """Initialize the client.

        Args:
            session: Session bound to the router to talk to.
        """
        self.session = session

    def _get(self, endpoint: str) -> Any:
        self.session.login()
        return self.session.request(endpoint)

    def _post(self, endpoint: str, payload: Dict[str, Any]) -> Any:
        self.session.login()
        return self.session.request(endpoint, payload)

    def list_certificates(self) -> List[str]:
        """Get the KeenDNS domains the router holds certificates for.

        Returns:
            Domain names, in router order.
        """
        data = self._get(CERTIFICATES_ENDPOINT)
        if not isinstance(data, list):
            return []
        return [
            item["domain"]
            for item in data
            if isinstance(item, dict) and isinstance(item.get("domain"), str)
        ]

    def get_bridge_ip(self) -> Optional[str]:
        """Get the LAN bridge (Bridge0) address of the router.

        Returns:
            The address, or None if the router did not report one.
        """
        data = self._get(BRIDGE_IP_ENDPOINT)
        if not isinstance(data, dict):
            return None
        address = data.get("address")
        return address if isinstance(address, str) else None

    def list_policies(self) -> Dict[str, PolicyInfo]:
        """Get the traffic policies configured on the router.

        Returns:
            Policies keyed by policy id.
        """
        data = self._get(POLICIES_ENDPOINT)
        policies: Dict[str, PolicyInfo] = {}
        if not isinstance(data, dict):
            return policies
        for name, info in data.items():
            description = info.get("description") if isinstance(info, dict) else None
            policies[name] = PolicyInfo(
                name=name,
                description=description if isinstance(description, str) else None,
            )
        logger.debug("Got %d policies", len(policies))
        return policies

    def list_raw_clients(self) -> List[Dict[str, Any]]:
        """Get the hotspot host table as returned by the router.

        Returns:
            Host rows; a MAC may appear in several rows.
        """
        data = self._get(HOSTS_ENDPOINT)
        if not isinstance(data, list):
            return []
        return [row for row in data if isinstance(row, dict)]

    def list_clients(self) -> Dict[str, ClientRecord]:
        """Get the host table merged into one record per MAC.

        Returns:
            Records keyed by lower-cased MAC.
        """
        rows = self.list_raw_clients()
        clients = reconcile(rows)
        logger.debug("Reconciled %d host rows into %d clients", len(rows), len(clients))
        return clients

    def set_client_policy(self, mac: str, policy: Union[PolicyChoice, str, None]) -> Any:
        """Assign a policy to a client, or restore its default policy.

        Args:
            mac: Client MAC address.
            policy: A PolicyChoice, a policy id, or None for the default.

        Returns:
            The router's JSON response.
        """
        if not isinstance(policy, (NamedPolicy, ClearPolicy)):
            policy = policy_from_name(policy)
        payload = {
            "mac": mac,
            "policy": encode_policy(policy),
            "permit": True,
            "schedule": False,
        }
        result = self._post(HOST_WRITE_ENDPOINT, payload)
        logger.info("Set policy %s for %s", payload["policy"], mac)
        return result

    def apply_default_policy(self, mac: str) -> Any:
        """Restore the default policy for a client."""
        return self.set_client_policy(mac, ClearPolicy())

    def block_client(self, mac: str) -> Any:
        """Deny network access to a client.

        Args:
            mac: Client MAC address.

        Returns:
            The router's JSON response.
        """
        result = self._post(HOST_WRITE_ENDPOINT, {"mac": mac, "schedule": False, "deny": True})
        logger.info("Blocked %s", mac)
        return result
