"""Human readable policy labels and compact MAC identifiers."""

from __future__ import annotations

from typing import Dict, List, Optional

from .client import PolicyInfo

DEFAULT_LABEL = "Default"
BLOCKED_LABEL = "Blocked"
CURRENT_MARK = "• "


def policy_label(policy_name: Optional[str], deny: bool, policies: Dict[str, PolicyInfo]) -> str:
    """Describe the access state of a client.

    Args:
        policy_name: Policy id assigned to the client, if any.
        deny: Whether the client is blocked.
        policies: Policies known to the router.

    Returns:
        "Blocked", "Default", or the policy description (falling back to
        its id).
    """
    if deny:
        return BLOCKED_LABEL
    if not policy_name:
        return DEFAULT_LABEL
    info = policies.get(policy_name)
    if info is not None and info.description:
        return info.description
    return policy_name


def policy_short(label: str) -> str:
    """Abbreviate a label to three characters, for tray titles and tooltips."""
    return label[:3]


def encode_mac(mac: str) -> str:
    return mac.replace(":", "")


def decode_mac(value: str) -> str:
    """Re-insert colons into a MAC produced by encode_mac().

    Colon and dash separated MACs come back colon separated.
    """
    cleaned = value.replace(":", "").replace("-", "")
    return ":".join(cleaned[i:i + 2] for i in range(0, len(cleaned), 2))


def policy_menu(policies: Dict[str, PolicyInfo], current_label: str) -> List[Dict[str, object]]:
    """List the access choices for a client.

    Args:
        policies: Policies known to the router.
        current_label: Label of the client's current state.

    Returns:
        Choices in display order (Default, Blocked, then each policy),
        each with an "action", "policy", "label", "title" and a
        "current" flag.
    """
    choices: List[Dict[str, object]] = [
        {"action": "default", "policy": None, "label": DEFAULT_LABEL},
        {"action": "blocked", "policy": None, "label": BLOCKED_LABEL},
    ]
    for name, info in policies.items():
        choices.append({"action": "set", "policy": name, "label": info.label})

    for choice in choices:
        current = choice["label"] == current_label
        choice["current"] = current
        choice["title"] = f"{CURRENT_MARK}{choice['label']}" if current else choice["label"]
    return choices
