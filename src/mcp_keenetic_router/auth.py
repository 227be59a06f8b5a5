"""Keenetic NDM challenge-response authentication.

Implements the login handshake used by the Keenetic web interface and
its RCI API:

1. GET /auth - a 2xx answer means the session cookie is still valid
2. On 401, read the X-NDM-Realm and X-NDM-Challenge response headers
3. Hash credentials: MD5("login:realm:password")
4. Hash again: SHA256(challenge + md5_hex)
5. POST /auth with { login: <login>, password: <sha_hex> }

The router answers the POST with a session cookie, which the underlying
httpx client keeps in its cookie jar for all subsequent requests.
"""

from __future__ import annotations

import hashlib
import logging
from typing import Any, Dict, Optional

import httpx

from .errors import AuthFailed, InvalidResponse, TransportError

# Configure module logger
logger = logging.getLogger(__name__)

REALM_HEADER = "X-NDM-Realm"
CHALLENGE_HEADER = "X-NDM-Challenge"
AUTH_ENDPOINT = "auth"


def normalize_address(address: str) -> str:
    """Normalize a router address into a base URL.

    Args:
        address: Host, host:port or URL of the router.

    Returns:
        The address without trailing slashes, with http:// prepended
        when no scheme was given.
    """
    base = address.strip().rstrip("/")
    if not base.startswith(("http://", "https://")):
        base = f"http://{base}"
    return base


def compute_auth_hash(username: str, realm: str, password: str, challenge: str) -> str:
    """Compute the password hash expected by POST /auth.

    Args:
        username: Router admin login.
        realm: Value of the X-NDM-Realm header.
        password: Plain text password.
        challenge: Value of the X-NDM-Challenge header.

    Returns:
        The SHA256 hex digest of the challenge followed by the MD5 hex
        digest of "username:realm:password".
    """
    md5_hex = hashlib.md5(f"{username}:{realm}:{password}".encode()).hexdigest()
    return hashlib.sha256(f"{challenge}{md5_hex}".encode()).hexdigest()


class KeeneticSession:
    """Authenticated HTTP session against a single Keenetic router.

    The session owns an httpx client whose cookie jar carries the router
    session token. It is meant to be short-lived: create one per poll or
    mutation, and close it afterwards.

    Attributes:
        base_url: Normalized router URL.
        username: Router admin login.

    Example:
        >>> with KeeneticSession('192.168.1.1', 'admin', 'secret') as session:
        ...     session.login()
        ...     policies = session.request('rci/show/rc/ip/policy')
    """

    DEFAULT_TIMEOUT = 10.0

    def __init__(
        self,
        address: str,
        username: str,
        password: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        """Initialize the session without contacting the router.

        Args:
            address: Router address (host, host:port or URL).
            username: Router admin login.
            password: Router admin password.
            timeout: HTTP request timeout in seconds.
            transport: Optional httpx transport, used by tests.
        """
        self.base_url = normalize_address(address)
        self.username = username
        self._password = password
        self._client = httpx.Client(timeout=timeout, transport=transport)
        self._authenticated = False

    @property
    def is_authenticated(self) -> bool:
        """Check whether the last login attempt succeeded."""
        return self._authenticated

    def _url(self, endpoint: str) -> str:
        return f"{self.base_url}/{endpoint.lstrip('/')}"

    def _send(self, method: str, endpoint: str, payload: Optional[Dict[str, Any]] = None) -> httpx.Response:
        url = self._url(endpoint)
        try:
            return self._client.request(method, url, json=payload)
        except httpx.RequestError as e:
            raise TransportError(f"Request to {url} failed: {e}") from e

    def login(self) -> None:
        """Authenticate with the router.

        Safe to call repeatedly: when the session cookie is still valid
        the router accepts the first GET and no credentials are sent.

        Raises:
            TransportError: If the router cannot be reached.
            InvalidResponse: If the router does not speak the NDM dialect.
            AuthFailed: If the router rejects the credentials.
        """
        resp = self._send("GET", AUTH_ENDPOINT)

        if resp.is_success:
            logger.debug("Session for %s is already authenticated", self.base_url)
            self._authenticated = True
            return

        if resp.status_code != httpx.codes.UNAUTHORIZED:
            self._authenticated = False
            raise InvalidResponse(f"Unexpected auth status: {resp.status_code}")

        realm = resp.headers.get(REALM_HEADER)
        if realm is None:
            raise InvalidResponse("Missing realm header")
        challenge = resp.headers.get(CHALLENGE_HEADER)
        if challenge is None:
            raise InvalidResponse("Missing challenge header")

        logger.debug("Got auth challenge from %s (realm: %s)", self.base_url, realm)

        auth_data = {
            "login": self.username,
            "password": compute_auth_hash(self.username, realm, self._password, challenge),
        }
        resp = self._send("POST", AUTH_ENDPOINT, auth_data)

        logger.debug("Login response status: %d", resp.status_code)

        if not resp.is_success:
            self._authenticated = False
            raise AuthFailed(f"Authentication failed for {self.username}@{self.base_url}")

        self._authenticated = True
        logger.info("Login successful: %s", self.base_url)

    def request(self, endpoint: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        """Make a JSON request to the router.

        Sends a GET when no payload is given, and a POST with a JSON body
        otherwise.

        Args:
            endpoint: API path relative to the router URL.
            payload: Optional JSON body.

        Returns:
            The decoded JSON response.

        Raises:
            TransportError: If the request fails.
            InvalidResponse: On a non-2xx status or a non-JSON body.
        """
        method = "GET" if payload is None else "POST"
        resp = self._send(method, endpoint, payload)

        if not resp.is_success:
            raise InvalidResponse(f"Status {resp.status_code} from {endpoint}")

        try:
            return resp.json()
        except ValueError as e:
            raise InvalidResponse(f"Invalid JSON from {endpoint}: {e}") from e

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self._client.close()
        self._authenticated = False

    def __enter__(self) -> KeeneticSession:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


def login(
    address: str,
    username: str,
    password: str,
    *,
    timeout: float = KeeneticSession.DEFAULT_TIMEOUT,
    transport: Optional[httpx.BaseTransport] = None,
) -> KeeneticSession:
    """Create a session and authenticate it.

    Args:
        address: Router address (host, host:port or URL).
        username: Router admin login.
        password: Router admin password.
        timeout: HTTP request timeout in seconds.
        transport: Optional httpx transport, used by tests.

    Returns:
        An authenticated KeeneticSession. The caller owns it and must
        close it.

    Raises:
        TransportError: If the router cannot be reached.
        InvalidResponse: If the router does not speak the NDM dialect.
        AuthFailed: If the router rejects the credentials.
    """
    session = KeeneticSession(address, username, password, timeout=timeout, transport=transport)
    try:
        session.login()
    except Exception:
        session.close()
        raise
    return session
