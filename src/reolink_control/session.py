"""Session and request layer for the Reolink HTTP API.

Every command reaches the device through ``ReolinkSession``. The session owns
the connection parameters, the login token and its expiry, and the single
request path that re-logs in and retries once when the device reports that
the token is no longer valid.

Wire format: a JSON array of ``{cmd, action, param}`` envelopes is POSTed to
``/cgi-bin/api.cgi``. The query string carries ``cmd`` plus either
``token`` (token mode) or ``user``/``password`` (per-request mode). The device
answers with one ``{code, value}`` or ``{code, error}`` envelope per request,
in the same order.
"""

import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any, TypeVar

import httpx
from pydantic import ValidationError

from .config import ReolinkConfig
from .events import EventPoller
from .exceptions import (
    AuthError,
    ClientClosedError,
    DeviceError,
    InvalidResponseError,
    ReolinkConnectionError,
    ReolinkError,
)
from .logging_config import log_debug, log_info, log_warning
from .models import CommandRequest, ConnectionMode, ResponseEnvelope

T = TypeVar("T")

API_PATH = "/cgi-bin/api.cgi"

# Sentinel the device expects in the query string when no token exists yet
NO_TOKEN = "null"
DEFAULT_LEASE_SECONDS = 3600
TOKEN_REFRESH_MARGIN = 60

# -1: "not exist"/invalid token on most firmware, -6: "please login first"
TOKEN_ERROR_CODES = frozenset({-1, -6})


def is_token_error(error: DeviceError) -> bool:
    """Decide whether a device error means the session token is unusable.

    Vendor codes and HTTP 401 are the primary signal. The substring match on
    the detail text catches firmware that reports expiry with other codes.

    Args:
        error: Error raised for a request.

    Returns:
        True if a relogin could fix the failure.
    """
    if error.code == 401 or error.rsp_code in TOKEN_ERROR_CODES:
        return True
    detail = (error.detail or "").lower()
    return "token" in detail or "session" in detail


class ReolinkSession:
    """Connection to one Reolink camera or NVR.

    Attributes:
        host: Device IP address or hostname.
        username: Login user name.
        mode: Token session or per-request credentials.

    Example:
        >>> async with ReolinkSession("192.168.1.50", "admin", "secret") as session:
        ...     info = await session.call("GetDevInfo")
        ...     print(info["DevInfo"]["model"])
    """

    def __init__(
        self,
        host: str,
        username: str,
        password: str,
        mode: ConnectionMode = ConnectionMode.TOKEN,
        ssl_verify: bool = False,
        timeout: float = 10.0,
        use_https: bool = True,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the session. No request is made until the first call.

        Args:
            host: Device IP address or hostname.
            username: Login user name.
            password: Login password.
            mode: Token session or per-request credentials.
            ssl_verify: Verify TLS certificates.
            timeout: Per-request timeout in seconds.
            use_https: Use HTTPS rather than HTTP.
            transport: Optional httpx transport (used by tests).
        """
        self.host = host
        self.username = username
        self._password = password
        self.mode = ConnectionMode(mode)
        self.timeout = timeout

        scheme = "https" if use_https else "http"
        self._client = httpx.AsyncClient(
            base_url=f"{scheme}://{host}",
            verify=ssl_verify,
            timeout=timeout,
            transport=transport,
        )

        self._token = NO_TOKEN
        self._lease_seconds = DEFAULT_LEASE_SECONDS
        self._expires_at = 0.0
        self._closed = False
        self._pollers: list[EventPoller] = []

    @classmethod
    def from_config(
        cls,
        config: ReolinkConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "ReolinkSession":
        """Create a session from connection settings."""
        return cls(
            host=config.host,
            username=config.user,
            password=config.password,
            mode=config.mode,
            ssl_verify=config.ssl_verify,
            timeout=config.timeout,
            use_https=config.use_https,
            transport=transport,
        )

    async def __aenter__(self) -> "ReolinkSession":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # -------------------------------------------------------------------------
    # Token state
    # -------------------------------------------------------------------------

    @property
    def token(self) -> str:
        """Current token, or ``"null"`` when not logged in."""
        return self._token

    @property
    def token_expires_at(self) -> float:
        """Unix time at which the current token expires (0 when none)."""
        return self._expires_at

    @property
    def lease_seconds(self) -> int:
        return self._lease_seconds

    @property
    def is_closed(self) -> bool:
        return self._closed

    def token_needs_refresh(self) -> bool:
        """True when there is no token or it expires within the refresh margin."""
        return self._token == NO_TOKEN or time.time() >= self._expires_at - TOKEN_REFRESH_MARGIN

    def _invalidate_token(self) -> None:
        self._token = NO_TOKEN
        self._expires_at = 0.0

    def _check_open(self) -> None:
        if self._closed:
            raise ClientClosedError(f"Session to {self.host} is closed")

    async def _ensure_token(self) -> None:
        if self.token_needs_refresh():
            log_debug(f"Token for {self.host} missing or expiring, logging in")
            await self.login()

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def login(self) -> str:
        """Log in and store a fresh token.

        Returns:
            The new token string.

        Raises:
            AuthError: If the device rejects the credentials.
            InvalidResponseError: If the login answer has no token.
            ReolinkConnectionError: On network failure.
        """
        self._check_open()
        request = CommandRequest(
            cmd="Login",
            param={"User": {"userName": self.username, "password": self._password}},
        )
        envelope = (await self._post("Login", [request], {"token": NO_TOKEN}))[0]
        if not envelope.ok:
            error = envelope.to_error("Login")
            raise AuthError(error.code, error.rsp_code, error.detail, "Login")

        token_info = envelope.value.get("Token") if isinstance(envelope.value, dict) else None
        if not isinstance(token_info, dict) or not token_info.get("name"):
            raise InvalidResponseError("Login response did not contain a token")

        lease = token_info.get("leaseTime")
        self._token = str(token_info["name"])
        self._lease_seconds = lease if isinstance(lease, int) and lease > 0 else DEFAULT_LEASE_SECONDS
        self._expires_at = time.time() + self._lease_seconds
        log_info(f"Logged in to {self.host} as {self.username} (lease {self._lease_seconds}s)")
        return self._token

    async def call(self, command: str, params: dict[str, Any] | None = None, action: int = 0) -> Any:
        """Send one command and return its value.

        Args:
            command: Command name, e.g. "GetPtzGuard".
            params: Command parameters.
            action: 0 for values only, 1 to also request ranges.

        Returns:
            The ``value`` of the response envelope.

        Raises:
            ClientClosedError: If the session is closed.
            DeviceError: If the device reports failure (after at most one relogin).
            ReolinkConnectionError: On network failure.
        """
        request = CommandRequest(cmd=command, action=action, param=params or {})

        async def send() -> Any:
            envelopes = await self._post(command, [request], self._auth_params())
            return envelopes[0].unwrap(command)

        return await self._with_auth_retry(send, command)

    async def call_many(self, requests: list[CommandRequest]) -> list[Any]:
        """Send several commands in one HTTP request.

        An auth failure on any member resends the whole batch once.

        Args:
            requests: Commands to send, in order.

        Returns:
            The values, in request order.

        Raises:
            DeviceError: For the first failing member.
        """
        if not requests:
            return []
        label = requests[0].cmd

        async def send() -> list[ResponseEnvelope]:
            envelopes = await self._post(label, requests, self._auth_params())
            for request, envelope in zip(requests, envelopes):
                if not envelope.ok:
                    error = envelope.to_error(request.cmd)
                    if is_token_error(error):
                        raise error
            return envelopes

        envelopes = await self._with_auth_retry(send, f"batch of {len(requests)}")
        return [env.unwrap(req.cmd) for req, env in zip(requests, envelopes)]

    async def call_binary(self, command: str, params: dict[str, Any] | None = None) -> bytes:
        """Fetch a command whose answer is a raw body (e.g. ``Snap``).

        Args:
            command: Command name.
            params: Query parameters.

        Returns:
            Response body bytes.

        Raises:
            DeviceError: If the device answers with a JSON error envelope.
        """

        async def send() -> bytes:
            query = {"cmd": command, **(params or {}), **self._auth_params()}
            response = await self._request("GET", command, params=query)
            body = response.content
            if body[:1] in (b"[", b"{"):
                self._raise_json_error(command, response)
            return body

        return await self._with_auth_retry(send, command)

    async def logout(self) -> None:
        """Invalidate the token on the device. Best effort, never raises."""
        if self._closed or self._token == NO_TOKEN:
            return
        await self._logout()

    async def close(self) -> None:
        """Stop pollers, log out and release the HTTP client. Idempotent."""
        if self._closed:
            return
        self._closed = True

        for poller in self._pollers:
            poller.stop()
        self._pollers.clear()

        try:
            await self._logout()
        finally:
            await self._client.aclose()
        log_debug(f"Session to {self.host} closed")

    def create_poller(self, interval: float = 1.0, channels: list[int] | None = None) -> EventPoller:
        """Create an event poller bound to this session.

        The poller is stopped automatically when the session closes.

        Args:
            interval: Seconds between polls.
            channels: Channels to watch. None asks the device.

        Returns:
            A stopped EventPoller; call ``start()`` to begin polling.
        """
        self._check_open()
        poller = EventPoller(self, interval=interval, channels=channels)
        self._pollers.append(poller)
        return poller

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _auth_params(self) -> dict[str, str]:
        if self.mode is ConnectionMode.PER_REQUEST:
            return {"user": self.username, "password": self._password}
        return {"token": self._token}

    async def _with_auth_retry(self, send: Callable[[], Awaitable[T]], description: str) -> T:
        self._check_open()
        if self.mode is ConnectionMode.PER_REQUEST:
            return await send()

        await self._ensure_token()
        try:
            return await send()
        except DeviceError as e:
            if not is_token_error(e):
                raise
            log_warning(f"{description}: token rejected ({e.detail}), logging in again")
            self._invalidate_token()

        await self._ensure_token()
        return await send()

    async def _logout(self) -> None:
        if self._token == NO_TOKEN:
            return
        try:
            envelopes = await self._post("Logout", [CommandRequest(cmd="Logout")], {"token": self._token})
            envelopes[0].unwrap("Logout")
            log_info(f"Logged out of {self.host}")
        except ReolinkError as e:
            log_debug(f"Logout from {self.host} failed, ignoring: {e}")
        finally:
            self._invalidate_token()

    async def _request(self, method: str, command: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, API_PATH, **kwargs)
        except httpx.TimeoutException as e:
            raise ReolinkConnectionError(f"{command} timed out after {self.timeout}s") from e
        except httpx.TransportError as e:
            raise ReolinkConnectionError(f"{command} failed: {e}") from e

        if response.status_code == 401:
            raise AuthError(401, 401, "Unauthorized", command)
        if not response.is_success:
            raise DeviceError(
                response.status_code,
                response.status_code,
                response.reason_phrase or f"HTTP {response.status_code}",
                command,
            )
        return response

    async def _post(
        self,
        command: str,
        requests: list[CommandRequest],
        auth: dict[str, str],
    ) -> list[ResponseEnvelope]:
        log_debug(f"-> {command} ({len(requests)} envelope(s)) to {self.host}")
        response = await self._request(
            "POST",
            command,
            params={"cmd": command, **auth},
            json=[r.model_dump() for r in requests],
        )
        envelopes = self._parse_envelopes(command, response)
        if len(envelopes) != len(requests):
            raise InvalidResponseError(
                f"{command}: expected {len(requests)} response envelope(s), got {len(envelopes)}"
            )
        return envelopes

    @staticmethod
    def _parse_envelopes(command: str, response: httpx.Response) -> list[ResponseEnvelope]:
        try:
            data = response.json()
        except ValueError as e:
            raise InvalidResponseError(f"{command}: response is not JSON") from e
        if isinstance(data, dict):
            data = [data]
        if not isinstance(data, list):
            raise InvalidResponseError(f"{command}: response is not an envelope array")
        try:
            return [ResponseEnvelope.model_validate(item) for item in data]
        except ValidationError as e:
            raise InvalidResponseError(f"{command}: malformed response envelope") from e

    def _raise_json_error(self, command: str, response: httpx.Response) -> None:
        for envelope in self._parse_envelopes(command, response):
            if not envelope.ok:
                raise envelope.to_error(command)
        raise InvalidResponseError(f"{command}: expected binary body, got JSON")


@asynccontextmanager
async def connect_session(
    config: ReolinkConfig,
    transport: httpx.AsyncBaseTransport | None = None,
) -> AsyncIterator[ReolinkSession]:
    """Async context manager yielding a ready session.

    Logs in up front in token mode so bad credentials fail immediately, and
    always closes (stopping pollers and logging out) on exit.

    Args:
        config: Connection settings.
        transport: Optional httpx transport.

    Yields:
        Connected ReolinkSession.

    Example:
        >>> async with connect_session(ReolinkConfig.from_env()) as session:
        ...     guard = await get_guard(session, 0)
    """
    session = ReolinkSession.from_config(config, transport=transport)
    try:
        if session.mode is ConnectionMode.TOKEN:
            await session.login()
        yield session
    finally:
        await session.close()
