"""Playback stream control.

Many NVR firmwares answer PlaybackStart/Stop/Seek with vendor code -9 even
when the web UI can play recordings; that case is reported as
UnsupportedOperationError.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from .exceptions import DeviceError, UnsupportedOperationError
from .record import parse_timestamp, validate_channel
from .session import ReolinkSession


@contextmanager
def _unsupported_as_error(command: str) -> Iterator[None]:
    try:
        yield
    except DeviceError as e:
        if e.rsp_code != -9 or isinstance(e, UnsupportedOperationError):
            raise
        raise UnsupportedOperationError(
            e.code,
            e.rsp_code,
            f"{command} is not supported on this device; use record download instead",
            command,
        ) from e


class PlaybackController:
    """Start, stop and seek recorded playback on an NVR or camera.

    Attributes:
        session: Device session.
    """

    def __init__(self, session: ReolinkSession) -> None:
        self.session = session

    async def start(self, channel: int, start_time: str) -> Any:
        """Start playback on ``channel`` from ``start_time`` (ISO-8601)."""
        validate_channel(channel)
        parse_timestamp(start_time)
        with _unsupported_as_error("PlaybackStart"):
            return await self.session.call("PlaybackStart", {"channel": channel, "startTime": start_time})

    async def stop(self, channel: int | None = None) -> Any:
        """Stop playback on one channel, or on all channels when None."""
        params: dict[str, Any] = {}
        if channel is not None:
            validate_channel(channel)
            params["channel"] = channel
        with _unsupported_as_error("PlaybackStop"):
            return await self.session.call("PlaybackStop", params)

    async def seek(self, channel: int, seek_time: str) -> Any:
        """Seek the current playback on ``channel`` to ``seek_time`` (ISO-8601)."""
        validate_channel(channel)
        parse_timestamp(seek_time)
        with _unsupported_as_error("PlaybackSeek"):
            return await self.session.call("PlaybackSeek", {"channel": channel, "seekTime": seek_time})
