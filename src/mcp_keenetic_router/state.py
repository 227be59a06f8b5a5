"""Query pipeline: find the active router and build the interface view.

Each call to build_active_state() starts from scratch: it reads the local
networks, logs in to the first reachable router, fetches its policies and
clients, and joins them with the local interfaces. Nothing is cached
between calls; callers that want to compare two runs keep the results.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional

from .auth import login
from .client import KeeneticClient, PolicyInfo
from .config import CredentialStore, RouterConfig
from .errors import AuthFailed, RouterError
from .labels import policy_label, policy_menu, policy_short
from .network import (
    Connect,
    InterfaceInfo,
    LocalInterface,
    correlate_interfaces,
    local_interfaces,
    local_networks,
    pick_active_interface,
    router_candidates,
    select_active_router,
)

# Configure module logger
logger = logging.getLogger(__name__)


class PipelineStatus(str, Enum):
    """Outcome of a query cycle."""

    NO_ROUTERS_CONFIGURED = "no_routers_configured"
    NO_REACHABLE_ROUTER = "no_reachable_router"
    REACHABLE = "reachable"


@dataclass
class ActiveState:
    """The active router and this machine's interfaces as it sees them."""

    router: RouterConfig
    interfaces: List[InterfaceInfo]
    policies: Dict[str, PolicyInfo]
    active_interface: Optional[InterfaceInfo]
    active_address: str

    def label_for(self, iface: InterfaceInfo) -> str:
        """Get the policy label of an interface."""
        return policy_label(iface.policy_name, iface.deny, self.policies)

    def find_interface(self, mac: str) -> Optional[InterfaceInfo]:
        mac = mac.lower()
        return next((iface for iface in self.interfaces if iface.mac == mac), None)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary, with policy labels for every interface."""

        def describe(iface: InterfaceInfo) -> Dict[str, Any]:
            label = self.label_for(iface)
            return {
                **iface.to_dict(),
                "label": label,
                "short_label": policy_short(label),
                "choices": policy_menu(self.policies, label),
            }

        return {
            "router": self.router.to_dict(),
            "active_address": self.active_address,
            "active_interface": describe(self.active_interface) if self.active_interface else None,
            "interfaces": [describe(iface) for iface in self.interfaces],
            "policies": {name: info.to_dict() for name, info in self.policies.items()},
        }


@dataclass
class PipelineResult:
    """Result of build_active_state()."""

    status: PipelineStatus
    state: Optional[ActiveState] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        result: Dict[str, Any] = {"status": self.status.value}
        if self.state is not None:
            result.update(self.state.to_dict())
        return result


def build_active_state(
    routers: Iterable[RouterConfig],
    credentials: CredentialStore,
    *,
    interfaces: Optional[List[LocalInterface]] = None,
    connect: Connect = login,
) -> PipelineResult:
    """Run one query cycle.

    Args:
        routers: Configured routers, in priority order.
        credentials: Source of router passwords.
        interfaces: Local interfaces; defaults to the current ones.
        connect: Creates an authenticated session from address, login
            and password.

    Returns:
        The pipeline result. Its status tells apart "no routers
        configured" from "no configured router reachable".

    Raises:
        RouterError: If fetching policies or clients from the active
            router fails after a successful login.
    """
    routers = list(routers)
    if not routers:
        return PipelineResult(PipelineStatus.NO_ROUTERS_CONFIGURED)

    if interfaces is None:
        interfaces = local_interfaces()
    candidates = router_candidates(routers, local_networks(interfaces))

    selected = select_active_router(candidates, credentials.get_password, connect)
    if selected is None:
        logger.info("No configured router is reachable on the current network")
        return PipelineResult(PipelineStatus.NO_REACHABLE_ROUTER)

    router, address, session = selected
    with session:
        client = KeeneticClient(session)
        policies = client.list_policies()
        clients = client.list_clients()

    views = correlate_interfaces(clients, interfaces)
    state = ActiveState(
        router=router,
        interfaces=views,
        policies=policies,
        active_interface=pick_active_interface(views),
        active_address=address,
    )
    return PipelineResult(PipelineStatus.REACHABLE, state)


@dataclass(frozen=True)
class PolicyOverride:
    """Access state written to the router but not yet reported back."""

    policy_name: Optional[str] = None
    deny: bool = False


@dataclass
class PolicyOverrides:
    """Pending writes, overlaid on fresh pipeline results.

    The router can take a moment to report a change it accepted. Until it
    does, the written state is shown instead of the stale one.
    """

    pending: Dict[str, PolicyOverride] = field(default_factory=dict)

    def record(self, mac: str, override: PolicyOverride) -> None:
        self.pending[mac.lower()] = override

    def apply(self, state: ActiveState) -> ActiveState:
        """Overlay pending writes on a pipeline result, in place.

        Overrides the router now confirms are dropped. The active
        interface is one of state.interfaces and is updated with them.

        Returns:
            The same state object.
        """
        for iface in state.interfaces:
            override = self.pending.get(iface.mac)
            if override is None:
                continue
            if iface.policy_name == override.policy_name and iface.deny == override.deny:
                del self.pending[iface.mac]
                logger.debug("Router confirmed pending change for %s", iface.mac)
            else:
                iface.policy_name = override.policy_name
                iface.deny = override.deny
        return state


def _mutate(
    state: ActiveState,
    credentials: CredentialStore,
    connect: Connect,
    action: Callable[[KeeneticClient], Any],
) -> None:
    router = state.router
    password = credentials.get_password(router.name)
    if password is None:
        raise AuthFailed(f"No password stored for router {router.name}")
    with connect(state.active_address, router.login, password) as session:
        action(KeeneticClient(session))


def apply_policy(
    state: ActiveState,
    mac: str,
    policy_name: Optional[str],
    credentials: CredentialStore,
    *,
    connect: Connect = login,
) -> PolicyOverride:
    """Assign a policy to a client of the active router.

    Args:
        state: Result of the most recent pipeline run.
        mac: Client MAC address.
        policy_name: Policy id, or None to restore the default policy.
        credentials: Source of router passwords.
        connect: Creates an authenticated session.

    Returns:
        The access state the client should now have.

    Raises:
        RouterError: If the router cannot be reached or rejects the write.
    """
    _mutate(state, credentials, connect, lambda client: client.set_client_policy(mac, policy_name))
    return PolicyOverride(policy_name=policy_name or None, deny=False)


def apply_default(
    state: ActiveState,
    mac: str,
    credentials: CredentialStore,
    *,
    connect: Connect = login,
) -> PolicyOverride:
    """Restore the default policy of a client of the active router."""
    _mutate(state, credentials, connect, lambda client: client.apply_default_policy(mac))
    return PolicyOverride(policy_name=None, deny=False)


def block(
    state: ActiveState,
    mac: str,
    credentials: CredentialStore,
    *,
    connect: Connect = login,
) -> PolicyOverride:
    """Deny network access to a client of the active router."""
    _mutate(state, credentials, connect, lambda client: client.block_client(mac))
    return PolicyOverride(policy_name=None, deny=True)


def register_router(
    name: str,
    address: str,
    login_name: str,
    password: str,
    routers: Iterable[RouterConfig],
    *,
    original_name: Optional[str] = None,
    connect: Connect = login,
) -> RouterConfig:
    """Validate a new or edited router and collect its network details.

    Args:
        name: Router name, unique among the configured routers.
        address: Router address.
        login_name: Router admin login.
        password: Router admin password.
        routers: Currently configured routers.
        original_name: Name of the router being edited, if any.
        connect: Creates an authenticated session.

    Returns:
        The configuration to store, with network_ip and keendns_urls
        filled in when the router reports them.

    Raises:
        ValueError: If another router already uses the name.
        RouterError: If the login fails.
    """
    if name != original_name and any(r.name == name for r in routers):
        raise ValueError("Router with this name already exists")

    config = RouterConfig(name=name, address=address, login=login_name)

    with connect(config.address, login_name, password) as session:
        client = KeeneticClient(session)
        try:
            network_ip = client.get_bridge_ip()
        except RouterError as e:
            logger.warning("Could not read LAN address of %s: %s", name, e)
            network_ip = None
        try:
            keendns_urls: Optional[List[str]] = client.list_certificates()
        except RouterError as e:
            logger.warning("Could not read KeenDNS domains of %s: %s", name, e)
            keendns_urls = None

    return replace(config, network_ip=network_ip, keendns_urls=keendns_urls)
