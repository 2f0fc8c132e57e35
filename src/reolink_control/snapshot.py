"""Still image capture.

``Snap`` answers with a raw JPEG body rather than a JSON envelope, so the
bytes are checked for the JPEG start-of-image marker before being trusted.
"""

import secrets
from pathlib import Path

from .exceptions import InvalidSnapshotError
from .logging_config import log_debug, log_info
from .session import ReolinkSession

JPEG_MAGIC = b"\xff\xd8"


def is_jpeg(data: bytes) -> bool:
    """Return True if ``data`` starts with the JPEG SOI marker."""
    return len(data) >= 2 and data[:2] == JPEG_MAGIC


async def snap_to_bytes(session: ReolinkSession, channel: int = 0) -> bytes:
    """Capture a JPEG snapshot.

    Args:
        session: Device session.
        channel: Camera channel (0-based).

    Returns:
        JPEG bytes.

    Raises:
        InvalidSnapshotError: If the body is not a JPEG.
        DeviceError: If the device answers with an error envelope.
    """
    # rs defeats intermediate caches; the device ignores its value
    data = await session.call_binary("Snap", {"channel": channel, "rs": secrets.token_hex(8)})
    if not is_jpeg(data):
        raise InvalidSnapshotError(
            f"Snapshot from channel {channel} is not a JPEG ({len(data)} bytes)"
        )
    log_debug(f"Captured {len(data)} byte snapshot from channel {channel}")
    return data


async def snap_to_file(session: ReolinkSession, path: Path | str, channel: int = 0) -> Path:
    """Capture a snapshot and write it to ``path``.

    Returns:
        The path written.
    """
    data = await snap_to_bytes(session, channel)
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    log_info(f"Snapshot saved to {path}")
    return path
