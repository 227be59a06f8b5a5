"""Router list, credentials and server settings."""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Tuple

import keyring
from dotenv import load_dotenv
from keyring.errors import KeyringError, PasswordDeleteError

from .auth import KeeneticSession, normalize_address

# Load environment variables
load_dotenv()

# Configure module logger
logger = logging.getLogger(__name__)

DEFAULT_ROUTERS_FILE = "routers.json"
PASSWORD_ENV_PREFIX = "KEENETIC_PASSWORD"
KEYRING_SERVICE = "router_manager"


@dataclass(frozen=True)
class RouterConfig:
    """A router the user has configured.

    The password is never part of the configuration; it comes from a
    CredentialStore keyed by the router name.
    """

    name: str
    address: str
    login: str
    network_ip: Optional[str] = None
    keendns_urls: Optional[Tuple[str, ...]] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "address", normalize_address(self.address))
        if self.keendns_urls is not None:
            object.__setattr__(self, "keendns_urls", tuple(self.keendns_urls))

    def with_name(self, name: str) -> RouterConfig:
        """Return a copy of this configuration under another name."""
        return replace(self, name=name)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the JSON shape stored in the routers file."""
        return {
            "name": self.name,
            "address": self.address,
            "login": self.login,
            "network_ip": self.network_ip,
            "keendns_urls": list(self.keendns_urls) if self.keendns_urls is not None else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> RouterConfig:
        """Create a configuration from a routers file entry.

        Unknown keys are ignored.
        """
        return cls(
            name=data["name"],
            address=data["address"],
            login=data["login"],
            network_ip=data.get("network_ip"),
            keendns_urls=data.get("keendns_urls"),
        )


class CredentialStore(Protocol):
    """Source of router passwords, keyed by router name."""

    def get_password(self, name: str) -> Optional[str]:
        ...


@dataclass
class MemoryCredentialStore:
    """Credential store backed by a dictionary."""

    passwords: Dict[str, str] = field(default_factory=dict)

    def get_password(self, name: str) -> Optional[str]:
        return self.passwords.get(name)

    def set_password(self, name: str, password: str) -> None:
        self.passwords[name] = password

    def delete_password(self, name: str) -> None:
        self.passwords.pop(name, None)


class MutableCredentialStore(CredentialStore, Protocol):
    """Credential store that can also save and forget passwords."""

    def set_password(self, name: str, password: str) -> None:
        ...

    def delete_password(self, name: str) -> None:
        ...


class KeyringCredentialStore:
    """Credential store backed by the system keyring.

    Each router gets one entry under the "router_manager" service, keyed
    by the router name, so saved passwords survive a restart.
    """

    def __init__(self, service: str = KEYRING_SERVICE) -> None:
        self.service = service

    def get_password(self, name: str) -> Optional[str]:
        try:
            return keyring.get_password(self.service, name)
        except KeyringError as e:
            logger.warning("Could not read password of %s from keyring: %s", name, e)
            return None

    def set_password(self, name: str, password: str) -> None:
        keyring.set_password(self.service, name, password)

    def delete_password(self, name: str) -> None:
        try:
            keyring.delete_password(self.service, name)
        except PasswordDeleteError:
            logger.debug("No keyring entry for router %s", name)


def password_env_var(name: str) -> str:
    """Get the environment variable holding the password of a router.

    Args:
        name: Router name, e.g. "Home Giga".

    Returns:
        The variable name, e.g. KEENETIC_PASSWORD_HOME_GIGA.
    """
    suffix = re.sub(r"[^A-Za-z0-9]", "_", name).upper()
    return f"{PASSWORD_ENV_PREFIX}_{suffix}"


class EnvCredentialStore:
    """Credential store reading passwords from environment variables.

    Looks up KEENETIC_PASSWORD_<NAME> first, then the shared
    KEENETIC_PASSWORD.
    """

    def get_password(self, name: str) -> Optional[str]:
        return os.getenv(password_env_var(name)) or os.getenv(PASSWORD_ENV_PREFIX) or None


class RouterStore:
    """Ordered router list persisted as a JSON file.

    Attributes:
        path: Location of the routers file.
    """

    def __init__(self, path: Path) -> None:
        """Initialize the store.

        Args:
            path: Location of the routers file. It is created on save.
        """
        self.path = Path(path)

    def load(self) -> List[RouterConfig]:
        """Load the router list.

        Returns:
            Configured routers in file order; an empty list when the file
            is missing or unreadable.
        """
        try:
            data = json.loads(self.path.read_text())
        except FileNotFoundError:
            return []
        except (OSError, ValueError) as e:
            logger.warning("Could not read routers file %s: %s", self.path, e)
            return []

        if not isinstance(data, list):
            logger.warning("Routers file %s does not hold a list", self.path)
            return []

        routers: List[RouterConfig] = []
        for entry in data:
            try:
                routers.append(RouterConfig.from_dict(entry))
            except (KeyError, TypeError, AttributeError) as e:
                logger.warning("Skipping malformed router entry: %s", e)
        return routers

    def save(self, routers: List[RouterConfig]) -> None:
        """Write the router list, replacing the file contents."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps([r.to_dict() for r in routers], indent=2))
        logger.debug("Saved %d routers to %s", len(routers), self.path)

    def upsert(self, router: RouterConfig, original_name: Optional[str] = None) -> List[RouterConfig]:
        """Add a router, or replace the one named original_name.

        Returns:
            The saved router list.
        """
        replaced = original_name or router.name
        routers = [r for r in self.load() if r.name != replaced]
        routers.append(router)
        self.save(routers)
        return routers

    def delete(self, name: str) -> List[RouterConfig]:
        """Remove a router by name.

        Returns:
            The saved router list.
        """
        routers = [r for r in self.load() if r.name != name]
        self.save(routers)
        return routers


@dataclass
class ServerConfig:
    """Configuration for the MCP server."""

    routers_file: Path
    timeout: float = KeeneticSession.DEFAULT_TIMEOUT

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Create configuration from environment variables.

        Returns:
            ServerConfig with values from environment.
        """
        return cls(
            routers_file=Path(os.getenv("KEENETIC_ROUTERS_FILE", DEFAULT_ROUTERS_FILE)),
            timeout=float(os.getenv("KEENETIC_TIMEOUT", KeeneticSession.DEFAULT_TIMEOUT)),
        )
