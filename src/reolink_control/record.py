"""Recording search and download.

Timestamps are taken as ISO-8601 strings with an explicit offset
(``2025-11-10T09:00:00Z``) and sent to the device as Unix seconds.
"""

import re
from datetime import datetime
from typing import Any

from .exceptions import ReolinkValidationError
from .models import StreamType
from .session import ReolinkSession

ISO_8601_PATTERN = re.compile(
    r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(\.\d{1,6})?(Z|[+-]\d{2}:\d{2})$"
)


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp with a timezone.

    Args:
        value: Timestamp such as "2025-11-10T09:00:00Z".

    Returns:
        Timezone-aware datetime.

    Raises:
        ReolinkValidationError: If the format or the date itself is invalid.
    """
    if not isinstance(value, str) or not ISO_8601_PATTERN.match(value):
        raise ReolinkValidationError(
            f"Invalid timestamp format: {value!r}. Expected ISO 8601, e.g. 2025-11-10T09:00:00Z"
        )
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as e:
        raise ReolinkValidationError(f"Invalid timestamp: {value!r} ({e})") from e


def to_unix_seconds(value: str) -> int:
    """Convert an ISO-8601 timestamp to whole Unix seconds."""
    return int(parse_timestamp(value).timestamp())


def validate_channel(channel: int) -> None:
    if not isinstance(channel, int) or isinstance(channel, bool) or channel < 0:
        raise ReolinkValidationError(f"Invalid channel: {channel!r}. Must be a non-negative integer")


async def search(
    session: ReolinkSession,
    channel: int,
    start: str,
    end: str,
    stream_type: StreamType = StreamType.MAIN,
) -> Any:
    """Search for recordings between two timestamps.

    Raises:
        ReolinkValidationError: On a malformed timestamp or if ``end`` precedes ``start``.
    """
    validate_channel(channel)
    start_time = to_unix_seconds(start)
    end_time = to_unix_seconds(end)
    if end_time < start_time:
        raise ReolinkValidationError("Search end time is before start time")
    return await session.call(
        "Search",
        {
            "channel": channel,
            "startTime": start_time,
            "endTime": end_time,
            "streamType": StreamType(stream_type).wire_value,
        },
    )


async def download(
    session: ReolinkSession,
    channel: int,
    file_name: str,
    stream_type: StreamType = StreamType.MAIN,
) -> Any:
    """Request a recorded file by the name returned from ``search``."""
    validate_channel(channel)
    if not file_name:
        raise ReolinkValidationError("A recording file name is required")
    return await session.call(
        "Download",
        {
            "channel": channel,
            "fileName": file_name,
            "streamType": StreamType(stream_type).wire_value,
        },
    )
