"""MCP Server for Keenetic Router Management.

This module provides an MCP (Model Context Protocol) server for managing
client access policies on Keenetic routers through AI assistants. It
exposes the active-router pipeline and the policy mutations as MCP tools.
"""

from __future__ import annotations

import asyncio
import functools
import json
import logging
import re
from typing import Any, Dict, List, Optional

from keyring.errors import KeyringError
from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from .auth import login
from .config import (
    EnvCredentialStore,
    KeyringCredentialStore,
    MutableCredentialStore,
    RouterConfig,
    RouterStore,
    ServerConfig,
)
from .errors import RouterError
from .labels import decode_mac
from .network import Connect
from .state import (
    ActiveState,
    PipelineResult,
    PolicyOverrides,
    apply_default,
    apply_policy,
    block,
    build_active_state,
    register_router,
)

# Configure module logger
logger = logging.getLogger(__name__)

_MAC_PATTERN = re.compile(r"^([0-9a-f]{2}:){5}[0-9a-f]{2}$")


class StateManager:
    """Owns the router list, stored passwords and pending policy writes.

    Tool calls are serialized through the lock so that two pipelines never
    share a router session at the same time.

    Attributes:
        config: Server configuration.
    """

    def __init__(
        self,
        config: Optional[ServerConfig] = None,
        credentials: Optional[MutableCredentialStore] = None,
    ) -> None:
        """Initialize the state manager.

        Args:
            config: Optional server configuration. If not provided,
                    configuration is loaded from environment variables.
            credentials: Store for passwords saved through add_router.
                    Defaults to the system keyring.
        """
        self._config = config or ServerConfig.from_env()
        self._store = RouterStore(self._config.routers_file)
        self._saved_passwords = credentials if credentials is not None else KeyringCredentialStore()
        self._env_passwords = EnvCredentialStore()
        self._overrides = PolicyOverrides()
        self._last: Optional[PipelineResult] = None
        self._connect: Connect = functools.partial(login, timeout=self._config.timeout)
        self.lock = asyncio.Lock()

    @property
    def config(self) -> ServerConfig:
        """Get the server configuration."""
        return self._config

    @property
    def overrides(self) -> PolicyOverrides:
        return self._overrides

    def get_password(self, name: str) -> Optional[str]:
        """Get a router password, preferring ones saved through add_router."""
        return self._saved_passwords.get_password(name) or self._env_passwords.get_password(name)

    def routers(self) -> List[RouterConfig]:
        return self._store.load()

    def refresh(self) -> PipelineResult:
        """Run the pipeline and overlay pending policy writes.

        Returns:
            The pipeline result.
        """
        result = build_active_state(self.routers(), self, connect=self._connect)
        if result.state is not None:
            self._overrides.apply(result.state)
        self._last = result
        return result

    def _active_state(self) -> ActiveState:
        result = self._last
        if result is None or result.state is None:
            result = self.refresh()
        if result.state is None:
            raise ValueError(f"No active router ({result.status.value})")
        return result.state

    def change_policy(self, mac: str, action: str, policy: Optional[str] = None) -> PipelineResult:
        """Apply a policy action to a client of the active router.

        Args:
            mac: Client MAC address, with colons, dashes or no separators.
            action: "set", "default" or "blocked".
            policy: Policy id, required for "set".

        Returns:
            A fresh pipeline result.

        Raises:
            ValueError: If the MAC or action is invalid, or no router is active.
            RouterError: If the router rejects the change.
        """
        mac = decode_mac(mac.strip().lower())
        if not _MAC_PATTERN.match(mac):
            raise ValueError(f"Invalid MAC address: {mac}")
        state = self._active_state()

        if action == "set":
            if not policy:
                raise ValueError("Missing policy")
            override = apply_policy(state, mac, policy, self, connect=self._connect)
        elif action == "default":
            override = apply_default(state, mac, self, connect=self._connect)
        elif action == "blocked":
            override = block(state, mac, self, connect=self._connect)
        else:
            raise ValueError(f"Unknown policy action: {action}")

        self._overrides.record(mac, override)
        return self.refresh()

    def add_router(
        self,
        name: str,
        address: str,
        login_name: str,
        password: str,
        original_name: Optional[str] = None,
    ) -> RouterConfig:
        """Validate a router and add it to the router list.

        Returns:
            The stored configuration.

        Raises:
            ValueError: If another router already uses the name.
            RouterError: If the login fails.
            KeyringError: If the password cannot be saved.
        """
        router = register_router(
            name,
            address,
            login_name,
            password,
            self.routers(),
            original_name=original_name,
            connect=self._connect,
        )
        if original_name:
            self._saved_passwords.delete_password(original_name)
        self._saved_passwords.set_password(name, password)
        self._store.upsert(router, original_name=original_name)
        self._last = None
        logger.info("Saved router %s", name)
        return router

    def delete_router(self, name: str) -> List[RouterConfig]:
        routers = self._store.delete(name)
        self._saved_passwords.delete_password(name)
        self._last = None
        logger.info("Deleted router %s", name)
        return routers


# Global state manager instance
_state_manager: Optional[StateManager] = None


def get_state_manager() -> StateManager:
    """Get the global state manager, creating it on first use.

    Returns:
        The global StateManager instance.
    """
    global _state_manager
    if _state_manager is None:
        _state_manager = StateManager()
    return _state_manager


# Initialize MCP server
server = Server("mcp-keenetic-router")

_MAC_PROPERTY = {
    "type": "string",
    "description": "MAC address of the client (colons optional)"
}


def _get_tool_definitions() -> List[Tool]:
    """Get the list of available tool definitions.

    Returns:
        List of Tool definitions for the MCP server.
    """
    return [
        Tool(
            name="router_status",
            description="Find the active router on the current network and show this machine's interfaces with their policies",
            inputSchema={
                "type": "object",
                "properties": {},
                "required": []
            }
        ),
        Tool(
            name="list_routers",
            description="List the configured routers",
            inputSchema={
                "type": "object",
                "properties": {},
                "required": []
            }
        ),
        Tool(
            name="list_policies",
            description="List the traffic policies of the active router",
            inputSchema={
                "type": "object",
                "properties": {},
                "required": []
            }
        ),
        Tool(
            name="list_interfaces",
            description="List this machine's interfaces as seen by the active router",
            inputSchema={
                "type": "object",
                "properties": {},
                "required": []
            }
        ),
        Tool(
            name="apply_policy",
            description="Assign a traffic policy to a client of the active router",
            inputSchema={
                "type": "object",
                "properties": {
                    "mac": _MAC_PROPERTY,
                    "policy": {
                        "type": "string",
                        "description": "Policy id, as listed by list_policies"
                    }
                },
                "required": ["mac", "policy"]
            }
        ),
        Tool(
            name="apply_default_policy",
            description="Restore the default policy of a client of the active router",
            inputSchema={
                "type": "object",
                "properties": {"mac": _MAC_PROPERTY},
                "required": ["mac"]
            }
        ),
        Tool(
            name="block_client",
            description="Block network access for a client of the active router",
            inputSchema={
                "type": "object",
                "properties": {"mac": _MAC_PROPERTY},
                "required": ["mac"]
            }
        ),
        Tool(
            name="add_router",
            description="Add or edit a router; the credentials are checked before saving",
            inputSchema={
                "type": "object",
                "properties": {
                    "name": {
                        "type": "string",
                        "description": "Unique router name"
                    },
                    "address": {
                        "type": "string",
                        "description": "Router address, e.g. 192.168.1.1 or https://my.keenetic.link"
                    },
                    "login": {
                        "type": "string",
                        "description": "Router admin login"
                    },
                    "password": {
                        "type": "string",
                        "description": "Router admin password"
                    },
                    "original_name": {
                        "type": "string",
                        "description": "Current name of the router when editing it"
                    }
                },
                "required": ["name", "address", "login", "password"]
            }
        ),
        Tool(
            name="delete_router",
            description="Remove a router from the configuration",
            inputSchema={
                "type": "object",
                "properties": {
                    "name": {
                        "type": "string",
                        "description": "Name of the router to remove"
                    }
                },
                "required": ["name"]
            }
        ),
    ]


def _handle_tool_call(
    manager: StateManager,
    name: str,
    arguments: Dict[str, Any]
) -> Any:
    """Handle a tool call and return the result.

    Args:
        manager: The StateManager instance.
        name: The tool name.
        arguments: The tool arguments.

    Returns:
        The result of the tool call.

    Raises:
        ValueError: If the tool name is unknown.
    """
    if name == "router_status":
        return manager.refresh().to_dict()

    elif name == "list_routers":
        return [router.to_dict() for router in manager.routers()]

    elif name == "list_policies":
        result = manager.refresh()
        if result.state is None:
            return {"status": result.status.value, "policies": {}}
        return {
            "status": result.status.value,
            "policies": {pid: info.to_dict() for pid, info in result.state.policies.items()},
        }

    elif name == "list_interfaces":
        result = manager.refresh()
        if result.state is None:
            return {"status": result.status.value, "interfaces": []}
        return {
            "status": result.status.value,
            "interfaces": [iface.to_dict() for iface in result.state.interfaces],
        }

    elif name == "apply_policy":
        return manager.change_policy(arguments["mac"], "set", arguments.get("policy")).to_dict()

    elif name == "apply_default_policy":
        return manager.change_policy(arguments["mac"], "default").to_dict()

    elif name == "block_client":
        return manager.change_policy(arguments["mac"], "blocked").to_dict()

    elif name == "add_router":
        router = manager.add_router(
            name=arguments["name"],
            address=arguments["address"],
            login_name=arguments["login"],
            password=arguments["password"],
            original_name=arguments.get("original_name"),
        )
        return router.to_dict()

    elif name == "delete_router":
        return [router.to_dict() for router in manager.delete_router(arguments["name"])]

    else:
        raise ValueError(f"Unknown tool: {name}")


@server.list_tools()
async def list_tools() -> List[Tool]:
    """List available tools.

    Returns:
        List of available Tool definitions.
    """
    return _get_tool_definitions()


@server.call_tool()
async def call_tool(name: str, arguments: Dict[str, Any]) -> List[TextContent]:
    """Handle tool calls.

    Args:
        name: The tool name to call.
        arguments: The arguments for the tool.

    Returns:
        List containing a single TextContent with the JSON result.
    """
    manager = get_state_manager()

    try:
        async with manager.lock:
            result = await asyncio.to_thread(_handle_tool_call, manager, name, arguments)
        return [TextContent(type="text", text=json.dumps(result, indent=2))]
    except (ValueError, KeyError) as e:
        logger.warning("Invalid tool call: %s", e)
        return [TextContent(type="text", text=json.dumps({"error": str(e)}, indent=2))]
    except (RouterError, KeyringError) as e:
        logger.error("%s failed: %s", name, e)
        return [TextContent(
            type="text",
            text=json.dumps({"error": str(e), "type": type(e).__name__}, indent=2)
        )]


def main() -> None:
    """Main entry point for the MCP server."""
    # Configure logging
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    async def run() -> None:
        """Run the MCP server."""
        logger.info("Starting MCP Keenetic Router server")
        async with stdio_server() as (read_stream, write_stream):
            await server.run(
                read_stream,
                write_stream,
                server.create_initialization_options()
            )

    asyncio.run(run())


if __name__ == "__main__":
    main()
