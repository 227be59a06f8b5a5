"""Tests for the MCP server module."""

import ipaddress
import json
import os
from pathlib import Path
from unittest.mock import patch

import pytest
from keyring.errors import KeyringError

from conftest import FakeRouter
from mcp_keenetic_router.client import HOST_WRITE_ENDPOINT, HOSTS_ENDPOINT, POLICIES_ENDPOINT
from mcp_keenetic_router.config import RouterConfig, ServerConfig
from mcp_keenetic_router.errors import AuthFailed
from mcp_keenetic_router.network import LocalInterface
from mcp_keenetic_router.server import (
    StateManager,
    _get_tool_definitions,
    _handle_tool_call,
    call_tool,
    get_state_manager,
)
from mcp_keenetic_router.state import PipelineStatus

MAC = "aa:bb:cc:dd:ee:ff"
HOME = ipaddress.IPv4Network("192.168.1.0/24")


@pytest.fixture
def manager(tmp_path: Path) -> StateManager:
    """A state manager with an empty routers file."""
    return StateManager(ServerConfig(routers_file=tmp_path / "routers.json", timeout=1.0))


def use_router(manager: StateManager, router: FakeRouter) -> None:
    manager._connect = router.connect


def home_router() -> FakeRouter:
    return FakeRouter(routes={
        POLICIES_ENDPOINT: {"Policy0": {"description": "VPN"}},
        HOSTS_ENDPOINT: [{"mac": MAC, "name": "Laptop", "link": "up"}],
    })


def on_home_network():
    wlan = LocalInterface("wlan0", mac=MAC, ipv4=["192.168.1.50"], networks=[HOME])
    return patch("mcp_keenetic_router.state.local_interfaces", return_value=[wlan])


class TestStateManager:
    """Tests for StateManager class."""

    def test_init(self, manager: StateManager) -> None:
        """Test manager initialization with custom config."""
        assert manager.config.timeout == 1.0
        assert manager.routers() == []
        assert manager.overrides.pending == {}

    def test_refresh_without_routers(self, manager: StateManager) -> None:
        """Test refresh reports that no router is configured."""
        assert manager.refresh().status is PipelineStatus.NO_ROUTERS_CONFIGURED

    def test_add_and_delete_router(self, manager: StateManager) -> None:
        """Test a router is validated, saved with its password, then removed."""
        use_router(manager, FakeRouter())
        router = manager.add_router("home", "192.168.1.1", "admin", "secret")
        assert router.address == "http://192.168.1.1"
        assert manager.routers() == [router]
        assert manager.get_password("home") == "secret"

        assert manager.delete_router("home") == []
        assert manager._saved_passwords.get_password("home") is None

    def test_add_router_rejected(self, manager: StateManager) -> None:
        """Test a router with wrong credentials is not saved."""
        use_router(manager, FakeRouter())
        with pytest.raises(AuthFailed):
            manager.add_router("home", "192.168.1.1", "admin", "wrong")
        assert manager.routers() == []

    def test_rename_router(self, manager: StateManager) -> None:
        """Test editing a router replaces the old entry and password."""
        use_router(manager, FakeRouter())
        manager.add_router("home", "192.168.1.1", "admin", "secret")
        manager.add_router("house", "192.168.1.1", "admin", "secret", original_name="home")
        assert [r.name for r in manager.routers()] == ["house"]
        assert manager._saved_passwords.get_password("home") is None

    def test_change_policy_records_override(self, manager: StateManager) -> None:
        """Test a policy change is written and overlaid until confirmed."""
        router = FakeRouter(routes={
            POLICIES_ENDPOINT: {"Policy0": {"description": "VPN"}},
            HOSTS_ENDPOINT: [{"mac": MAC, "name": "Laptop", "link": "up"}],
        })
        use_router(manager, router)
        manager.add_router("home", "192.168.1.1", "admin", "secret")
        wlan = LocalInterface("wlan0", mac=MAC, ipv4=["192.168.1.50"], networks=[HOME])

        with patch("mcp_keenetic_router.state.local_interfaces", return_value=[wlan]):
            result = manager.change_policy("AABBCCDDEEFF", "set", "Policy0")

        assert ("rci/ip/hotspot/host", {
            "mac": MAC,
            "policy": "Policy0",
            "permit": True,
            "schedule": False,
        }) in router.posts
        assert result.state.interfaces[0].policy_name == "Policy0"
        assert MAC in manager.overrides.pending

    def test_change_policy_unknown_action(self, manager: StateManager) -> None:
        """Test an unknown action is rejected without contacting a router."""
        manager._store.save([RouterConfig("home", "192.168.1.1", "admin")])
        wlan = LocalInterface("wlan0", mac=MAC, networks=[HOME])
        router = FakeRouter(routes={POLICIES_ENDPOINT: {}, HOSTS_ENDPOINT: []})
        use_router(manager, router)
        manager._saved_passwords.set_password("home", "secret")

        with patch("mcp_keenetic_router.state.local_interfaces", return_value=[wlan]):
            with pytest.raises(ValueError, match="Unknown policy action"):
                manager.change_policy(MAC, "reboot")
        assert router.posts == []

    def test_saved_password_survives_restart(self, tmp_path: Path) -> None:
        """Test a router added before a restart is still reachable after it."""
        config = ServerConfig(routers_file=tmp_path / "routers.json", timeout=1.0)
        router = home_router()
        first = StateManager(config)
        use_router(first, router)
        first.add_router("home", "192.168.1.1", "admin", "secret")

        restarted = StateManager(config)
        use_router(restarted, router)
        with patch.dict(os.environ, {}, clear=True), on_home_network():
            result = restarted.refresh()

        assert [r.name for r in restarted.routers()] == ["home"]
        assert result.status is PipelineStatus.REACHABLE
        assert result.state.router.name == "home"

    def test_env_password_fallback(self, manager: StateManager) -> None:
        """Test an environment password is used when none was saved."""
        with patch.dict(os.environ, {"KEENETIC_PASSWORD_HOME": "from-env"}, clear=True):
            assert manager.get_password("home") == "from-env"
            manager._saved_passwords.set_password("home", "saved")
            assert manager.get_password("home") == "saved"

    def test_password_not_saved_router_not_saved(self, manager: StateManager) -> None:
        """Test a keyring failure leaves the router list unchanged."""
        use_router(manager, FakeRouter())
        with patch("keyring.set_password", side_effect=KeyringError("locked")):
            with pytest.raises(KeyringError):
                manager.add_router("home", "192.168.1.1", "admin", "secret")
        assert manager.routers() == []

    def test_change_policy_dash_separated_mac(self, manager: StateManager) -> None:
        """Test a dash-separated MAC addresses the same client."""
        router = home_router()
        use_router(manager, router)
        manager.add_router("home", "192.168.1.1", "admin", "secret")

        with on_home_network():
            manager.change_policy("AA-BB-CC-DD-EE-FF", "blocked")

        assert (HOST_WRITE_ENDPOINT, {"mac": MAC, "schedule": False, "deny": True}) in router.posts

    def test_change_policy_invalid_mac(self, manager: StateManager) -> None:
        with pytest.raises(ValueError, match="Invalid MAC address"):
            manager.change_policy("not-a-mac", "blocked")

    def test_change_policy_without_active_router(self, manager: StateManager) -> None:
        """Test policy changes need an active router."""
        with pytest.raises(ValueError, match="no_routers_configured"):
            manager.change_policy(MAC, "blocked")


class TestHandleToolCall:
    """Tests for _handle_tool_call."""

    def test_router_status_no_routers(self, manager: StateManager) -> None:
        assert _handle_tool_call(manager, "router_status", {}) == {"status": "no_routers_configured"}

    def test_list_routers(self, manager: StateManager) -> None:
        manager._store.save([RouterConfig("home", "192.168.1.1", "admin")])
        result = _handle_tool_call(manager, "list_routers", {})
        assert result[0]["name"] == "home"
        assert result[0]["address"] == "http://192.168.1.1"

    def test_list_policies_no_routers(self, manager: StateManager) -> None:
        result = _handle_tool_call(manager, "list_policies", {})
        assert result == {"status": "no_routers_configured", "policies": {}}

    def test_list_interfaces_no_routers(self, manager: StateManager) -> None:
        result = _handle_tool_call(manager, "list_interfaces", {})
        assert result == {"status": "no_routers_configured", "interfaces": []}

    def test_list_policies_reachable(self, manager: StateManager) -> None:
        """Test policies come with the pipeline status."""
        use_router(manager, home_router())
        manager.add_router("home", "192.168.1.1", "admin", "secret")
        with on_home_network():
            result = _handle_tool_call(manager, "list_policies", {})
        assert result == {
            "status": "reachable",
            "policies": {"Policy0": {"name": "Policy0", "description": "VPN"}},
        }

    def test_list_interfaces_reachable(self, manager: StateManager) -> None:
        """Test interfaces come with the pipeline status."""
        use_router(manager, home_router())
        manager.add_router("home", "192.168.1.1", "admin", "secret")
        with on_home_network():
            result = _handle_tool_call(manager, "list_interfaces", {})
        assert result["status"] == "reachable"
        assert [iface["mac"] for iface in result["interfaces"]] == [MAC]

    def test_unknown_tool(self, manager: StateManager) -> None:
        with pytest.raises(ValueError, match="Unknown tool"):
            _handle_tool_call(manager, "reboot_router", {})

    def test_missing_argument(self, manager: StateManager) -> None:
        with pytest.raises(KeyError):
            _handle_tool_call(manager, "block_client", {})


class TestCallTool:
    """Tests for the call_tool MCP handler."""

    @pytest.mark.asyncio
    async def test_error_returned_as_json(self, manager: StateManager) -> None:
        """Test errors are returned as a JSON payload."""
        with patch("mcp_keenetic_router.server._state_manager", manager):
            result = await call_tool("nonexistent", {})
        assert json.loads(result[0].text) == {"error": "Unknown tool: nonexistent"}

    @pytest.mark.asyncio
    async def test_router_error_returned_as_json(self, manager: StateManager) -> None:
        """Test router errors carry their type."""
        use_router(manager, FakeRouter())
        arguments = {"name": "home", "address": "192.168.1.1", "login": "admin", "password": "wrong"}
        with patch("mcp_keenetic_router.server._state_manager", manager):
            result = await call_tool("add_router", arguments)
        payload = json.loads(result[0].text)
        assert payload["type"] == "AuthFailed"

    @pytest.mark.asyncio
    async def test_success(self, manager: StateManager) -> None:
        with patch("mcp_keenetic_router.server._state_manager", manager):
            result = await call_tool("list_routers", {})
        assert json.loads(result[0].text) == []


class TestGetStateManager:
    """Tests for get_state_manager function."""

    def test_returns_same_manager(self) -> None:
        """Test get_state_manager returns the same instance."""
        manager1 = get_state_manager()
        manager2 = get_state_manager()
        assert isinstance(manager1, StateManager)
        assert manager1 is manager2


class TestToolDefinitions:
    """Tests for tool definitions."""

    def test_all_tools_have_input_schema(self) -> None:
        """Test all tools have an object input schema and a description."""
        for tool in _get_tool_definitions():
            assert tool.description
            assert tool.inputSchema["type"] == "object"

    def test_expected_tools_exist(self) -> None:
        """Test expected tools are defined."""
        tool_names = {tool.name for tool in _get_tool_definitions()}
        assert tool_names == {
            "router_status",
            "list_routers",
            "list_policies",
            "list_interfaces",
            "apply_policy",
            "apply_default_policy",
            "block_client",
            "add_router",
            "delete_router",
        }

    def test_required_arguments_are_properties(self) -> None:
        for tool in _get_tool_definitions():
            for name in tool.inputSchema["required"]:
                assert name in tool.inputSchema["properties"]
