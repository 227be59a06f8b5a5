"""Merge the router's hotspot host table into one record per device.

The router can list the same MAC several times (once per address family
or per mesh hop), each row carrying a different subset of fields.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional

# Configure module logger
logger = logging.getLogger(__name__)


def is_online(payload: Any) -> bool:
    """Check whether a hotspot host payload reports an active link.

    Args:
        payload: Raw host row as returned by the router.

    Returns:
        True if the top-level "link" or the mesh "mws.link" is "up".
    """
    if not isinstance(payload, dict):
        return False
    if payload.get("link") == "up":
        return True
    mws = payload.get("mws")
    return isinstance(mws, dict) and mws.get("link") == "up"


@dataclass
class ClientRecord:
    """Canonical view of one device known to the router."""

    mac: str
    name: Optional[str] = None
    ip: Optional[str] = None
    policy_name: Optional[str] = None
    deny: bool = False
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def online(self) -> bool:
        """Check whether the latest router report shows the device online."""
        return is_online(self.raw)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary, without the raw payload."""
        return {
            "mac": self.mac,
            "name": self.name,
            "ip": self.ip,
            "policy": self.policy_name,
            "deny": self.deny,
            "online": self.online,
        }


def _text(row: Dict[str, Any], key: str) -> Optional[str]:
    value = row.get(key)
    return value if isinstance(value, str) else None


def reconcile(rows: Iterable[Any]) -> Dict[str, ClientRecord]:
    """Merge raw host rows into one ClientRecord per lower-cased MAC.

    name, ip and policy keep the first non-null value seen for a MAC.
    deny and the raw payload follow the last row that carries them.

    Args:
        rows: Host rows in the order the router returned them.

    Returns:
        Records keyed by MAC, in order of first sighting.
    """
    records: Dict[str, ClientRecord] = {}
    skipped = 0

    for row in rows:
        if not isinstance(row, dict):
            skipped += 1
            continue
        mac = (_text(row, "mac") or "").lower()
        if not mac:
            skipped += 1
            continue

        record = records.get(mac)
        if record is None:
            record = records[mac] = ClientRecord(mac=mac)

        if record.name is None:
            record.name = _text(row, "name")
        if record.ip is None:
            record.ip = _text(row, "ip")
        if record.policy_name is None:
            record.policy_name = _text(row, "policy")

        deny = row.get("deny")
        if isinstance(deny, bool):
            record.deny = deny

        record.raw = row

    if skipped:
        logger.debug("Skipped %d host rows without a MAC", skipped)
    return records
