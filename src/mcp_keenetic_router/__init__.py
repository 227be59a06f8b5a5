"""MCP server for Keenetic router client policy management.

This package logs in to Keenetic routers over their local RCI API, finds
which configured router is reachable on the current network, and assigns
traffic policies to its clients. The MCP (Model Context Protocol) server
exposes this to AI assistants.

Example usage:
    >>> from mcp_keenetic_router import KeeneticClient, login
    >>> with login('192.168.1.1', 'admin', 'my_password') as session:
    ...     clients = KeeneticClient(session).list_clients()
    ...     print(f"Found {len(clients)} devices")

For MCP server usage, run:
    $ mcp-keenetic-router
"""

from .auth import KeeneticSession, compute_auth_hash, login, normalize_address
from .client import (
    ClearPolicy,
    KeeneticClient,
    NamedPolicy,
    PolicyInfo,
    encode_policy,
    policy_from_name,
)
from .config import (
    CredentialStore,
    EnvCredentialStore,
    KeyringCredentialStore,
    MemoryCredentialStore,
    MutableCredentialStore,
    RouterConfig,
    RouterStore,
    ServerConfig,
)
from .errors import AuthFailed, InvalidResponse, RouterError, TransportError
from .labels import decode_mac, encode_mac, policy_label, policy_menu, policy_short
from .network import (
    InterfaceInfo,
    InterfaceType,
    LocalInterface,
    correlate_interfaces,
    extract_host,
    interface_type,
    ip_in_networks,
    local_interfaces,
    local_networks,
    pick_active_interface,
    router_candidates,
    select_active_router,
)
from .reconcile import ClientRecord, is_online, reconcile
from .server import StateManager, get_state_manager, main
from .state import (
    ActiveState,
    PipelineResult,
    PipelineStatus,
    PolicyOverride,
    PolicyOverrides,
    apply_default,
    apply_policy,
    block,
    build_active_state,
    register_router,
)

__version__ = "0.1.0"

__all__ = [
    # Main entry point
    "main",
    # Session and API client
    "KeeneticSession",
    "KeeneticClient",
    "login",
    "compute_auth_hash",
    "normalize_address",
    # Pipeline
    "ActiveState",
    "PipelineResult",
    "PipelineStatus",
    "PolicyOverride",
    "PolicyOverrides",
    "build_active_state",
    "apply_policy",
    "apply_default",
    "block",
    "register_router",
    # Network matching
    "InterfaceInfo",
    "InterfaceType",
    "LocalInterface",
    "correlate_interfaces",
    "extract_host",
    "interface_type",
    "ip_in_networks",
    "local_interfaces",
    "local_networks",
    "pick_active_interface",
    "router_candidates",
    "select_active_router",
    # Client table
    "ClientRecord",
    "is_online",
    "reconcile",
    # Policies
    "PolicyInfo",
    "NamedPolicy",
    "ClearPolicy",
    "encode_policy",
    "policy_from_name",
    "policy_label",
    "policy_short",
    "policy_menu",
    "encode_mac",
    "decode_mac",
    # Configuration
    "RouterConfig",
    "RouterStore",
    "ServerConfig",
    "CredentialStore",
    "EnvCredentialStore",
    "KeyringCredentialStore",
    "MemoryCredentialStore",
    "MutableCredentialStore",
    "StateManager",
    "get_state_manager",
    # Exceptions
    "RouterError",
    "TransportError",
    "InvalidResponse",
    "AuthFailed",
]
