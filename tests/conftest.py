"""Shared fixtures: an in-memory Keenetic router behind httpx.MockTransport."""

import json
from typing import Any, Dict, List, Optional, Tuple

import httpx
import keyring
import pytest
from keyring.backend import KeyringBackend
from keyring.errors import PasswordDeleteError

from mcp_keenetic_router.auth import KeeneticSession, compute_auth_hash, login

REALM = "Keenetic Ultra"
CHALLENGE = "ABCDEF0123456789"
SESSION_COOKIE = "session=ok"


class FakeRouter:
    """Emulates the NDM /auth handshake and a few RCI endpoints."""

    def __init__(
        self,
        login: str = "admin",
        password: str = "secret",
        routes: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.login = login
        self.password = password
        self.routes: Dict[str, Any] = dict(routes or {})
        self.requests: List[httpx.Request] = []
        self.posts: List[Tuple[str, Dict[str, Any]]] = []
        self.auth_headers: Dict[str, str] = {
            "X-NDM-Realm": REALM,
            "X-NDM-Challenge": CHALLENGE,
        }

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.lstrip("/")
        authenticated = SESSION_COOKIE in request.headers.get("cookie", "")

        if path == "auth":
            if request.method == "GET":
                if authenticated:
                    return httpx.Response(200, json={})
                return httpx.Response(401, headers=self.auth_headers)
            body = json.loads(request.content)
            expected = compute_auth_hash(self.login, REALM, self.password, CHALLENGE)
            if body == {"login": self.login, "password": expected}:
                return httpx.Response(200, json={}, headers={"Set-Cookie": f"{SESSION_COOKIE}; Path=/"})
            return httpx.Response(401, headers=self.auth_headers)

        if not authenticated:
            return httpx.Response(401, headers=self.auth_headers)

        if request.method == "POST":
            self.posts.append((path, json.loads(request.content)))
            return httpx.Response(200, json={"status": [{"status": "message"}]})

        if path in self.routes:
            return httpx.Response(200, json=self.routes[path])
        return httpx.Response(404, json={"error": "not found"})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    @property
    def auth_posts(self) -> int:
        return sum(1 for r in self.requests if r.url.path == "/auth" and r.method == "POST")

    def session(self, address: str = "192.168.1.1", password: Optional[str] = None) -> KeeneticSession:
        return KeeneticSession(
            address,
            self.login,
            self.password if password is None else password,
            transport=self.transport,
        )

    def connect(self, address: str, username: str, password: str) -> KeeneticSession:
        return login(address, username, password, transport=self.transport)


@pytest.fixture
def fake_router() -> FakeRouter:
    """A router accepting admin/secret with no data."""
    return FakeRouter()


class MemoryKeyring(KeyringBackend):
    """Keyring backend keeping passwords in a dictionary."""

    priority = 1

    def __init__(self) -> None:
        super().__init__()
        self.passwords: Dict[Tuple[str, str], str] = {}

    def get_password(self, service: str, username: str) -> Optional[str]:
        return self.passwords.get((service, username))

    def set_password(self, service: str, username: str, password: str) -> None:
        self.passwords[(service, username)] = password

    def delete_password(self, service: str, username: str) -> None:
        if self.passwords.pop((service, username), None) is None:
            raise PasswordDeleteError("Password not found")


@pytest.fixture(autouse=True)
def memory_keyring():
    """Keep every test away from the system keyring."""
    previous = keyring.get_keyring()
    backend = MemoryKeyring()
    keyring.set_keyring(backend)
    yield backend
    keyring.set_keyring(previous)
