"""Pytest configuration and shared fixtures.

HTTP traffic is served by ``FakeDevice`` through ``httpx.MockTransport``, so
sessions run their real request path without a network.
"""

import json
from collections import defaultdict
from collections.abc import AsyncIterator, Generator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import httpx
import pytest
import pytest_asyncio

from reolink_control.config import load_raw_config
from reolink_control.models import ConnectionMode
from reolink_control.session import ReolinkSession

JPEG_BYTES = b"\xff\xd8\xff\xe0" + b"\x00" * 32 + b"\xff\xd9"


def ok(value: Any = None) -> dict[str, Any]:
    """Build a success envelope."""
    return {"code": 0, "value": value if value is not None else {"rspCode": 200}}


def err(rsp_code: int, detail: str = "error") -> dict[str, Any]:
    """Build a failure envelope."""
    return {"code": 1, "error": {"rspCode": rsp_code, "detail": detail}}


@dataclass
class RecordedRequest:
    """One HTTP request seen by the fake device."""

    method: str
    query: dict[str, str]
    body: list[dict[str, Any]] = field(default_factory=list)

    @property
    def commands(self) -> list[str]:
        if self.method == "GET":
            return [self.query.get("cmd", "")]
        return [env["cmd"] for env in self.body]


class FakeDevice:
    """Scriptable stand-in for a camera's ``/cgi-bin/api.cgi`` endpoint.

    Replies are queued per command name. A queued item is an envelope dict,
    an int (HTTP status for the whole request), raw bytes (binary body) or an
    ``httpx.Response``. Unqueued commands get a plain success envelope, and
    Login hands out ``tok-1``, ``tok-2``, ...
    """

    def __init__(self) -> None:
        self.requests: list[RecordedRequest] = []
        self._queued: dict[str, list[Any]] = defaultdict(list)
        self._always: dict[str, Any] = {}
        self.logins = 0

    def queue(self, command: str, *replies: Any) -> None:
        self._queued[command].extend(replies)

    def always(self, command: str, reply: Any) -> None:
        self._always[command] = reply

    def calls(self, command: str) -> list[RecordedRequest]:
        return [r for r in self.requests if command in r.commands]

    def params(self, command: str) -> list[dict[str, Any]]:
        """``param`` objects sent for ``command``, in order."""
        return [env["param"] for r in self.requests for env in r.body if env["cmd"] == command]

    @property
    def command_log(self) -> list[str]:
        return [cmd for r in self.requests for cmd in r.commands]

    def _next(self, command: str) -> Any:
        if self._queued[command]:
            return self._queued[command].pop(0)
        if command in self._always:
            return self._always[command]
        if command == "Login":
            self.logins += 1
            return ok({"Token": {"name": f"tok-{self.logins}", "leaseTime": 3600}})
        if command == "Snap":
            return JPEG_BYTES
        return ok()

    def __call__(self, request: httpx.Request) -> httpx.Response:
        query = dict(request.url.params)
        if request.method == "GET":
            self.requests.append(RecordedRequest("GET", query))
            reply = self._next(query.get("cmd", ""))
            if isinstance(reply, bytes):
                return httpx.Response(200, content=reply, headers={"content-type": "image/jpeg"})
            if isinstance(reply, int):
                return httpx.Response(reply)
            if isinstance(reply, httpx.Response):
                return reply
            return httpx.Response(200, json=[reply])

        body = json.loads(request.content)
        self.requests.append(RecordedRequest(request.method, query, body))
        envelopes = []
        for envelope in body:
            reply = self._next(envelope["cmd"])
            if isinstance(reply, int):
                return httpx.Response(reply)
            if isinstance(reply, httpx.Response):
                return reply
            envelopes.append(reply)
        return httpx.Response(200, json=envelopes)


@pytest.fixture
def device() -> FakeDevice:
    """Create a fake device with default replies."""
    return FakeDevice()


@pytest_asyncio.fixture
async def session(device: FakeDevice) -> AsyncIterator[ReolinkSession]:
    """Create a token-mode session bound to the fake device."""
    s = ReolinkSession(
        "192.168.1.50", "admin", "secret123", transport=httpx.MockTransport(device)
    )
    yield s
    await s.close()


@pytest_asyncio.fixture
async def per_request_session(device: FakeDevice) -> AsyncIterator[ReolinkSession]:
    """Create a per-request session bound to the fake device."""
    s = ReolinkSession(
        "192.168.1.50",
        "admin",
        "secret123",
        mode=ConnectionMode.PER_REQUEST,
        transport=httpx.MockTransport(device),
    )
    yield s
    await s.close()


@pytest.fixture
def temp_config_dir(tmp_path: Path) -> Generator[Path, None, None]:
    """Create a temporary config directory and reset the YAML cache."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    load_raw_config.cache_clear()
    yield config_dir
    load_raw_config.cache_clear()


@pytest.fixture
def sample_config_yaml(temp_config_dir: Path) -> Path:
    """Create a sample device inventory."""
    config_file = temp_config_dir / "config.yaml"
    config_file.write_text(
        """
devices:
  - name: Driveway
    address: 192.168.1.50
    username: admin
    password: secret123
    model: RLC-823A
    channels: [0]

  - name: Garage NVR
    host: 192.168.1.60
    user: viewer
    password: secret456
    mode: per-request
"""
    )
    return config_file


@pytest.fixture
def sample_config_yaml_with_env_vars(temp_config_dir: Path) -> Path:
    """Create a device inventory that references environment variables."""
    config_file = temp_config_dir / "config.yaml"
    config_file.write_text(
        """
devices:
  - name: Driveway
    address: 192.168.1.50
    username: ${CAM_USER}
    password: ${CAM_PASS}
"""
    )
    return config_file
