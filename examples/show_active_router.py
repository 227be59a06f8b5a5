#!/usr/bin/env python3
"""Show the active Keenetic router and this machine's interfaces."""

import json
import os
from pathlib import Path

from dotenv import load_dotenv

from mcp_keenetic_router import (
    EnvCredentialStore,
    PipelineStatus,
    RouterStore,
    build_active_state,
    policy_label,
)

# Load environment variables from .env file
load_dotenv()


def main():
    routers_file = Path(os.getenv("KEENETIC_ROUTERS_FILE", "routers.json"))
    routers = RouterStore(routers_file).load()

    if not routers:
        print(f"No routers configured in {routers_file}")
        print("Create it with:")
        print('  [{"name": "home", "address": "192.168.1.1", "login": "admin"}]')
        print("and set KEENETIC_PASSWORD (or KEENETIC_PASSWORD_HOME) in .env")
        return

    result = build_active_state(routers, EnvCredentialStore())

    if result.status is PipelineStatus.NO_REACHABLE_ROUTER:
        print("No available routers in the current network.")
        return

    state = result.state
    print(f"Router: {state.router.name} ({state.active_address})")
    print("-" * 80)
    print(f"{'Name':<24} {'Interface':<12} {'IP':<16} {'Type':<10} {'State':<8} {'Policy':<10}")
    print("-" * 80)

    for iface in state.interfaces:
        marker = "*" if iface is state.active_interface else " "
        label = policy_label(iface.policy_name, iface.deny, state.policies)
        print(f"{marker}{iface.display_name:<23} "
              f"{iface.name:<12} "
              f"{iface.ip:<16} "
              f"{iface.type.value:<10} "
              f"{'Online' if iface.online else 'Offline':<8} "
              f"{label:<10}")

    # Also print as JSON for debugging
    print("\n\nRaw JSON output:")
    print(json.dumps(result.to_dict(), indent=2))


if __name__ == "__main__":
    main()
