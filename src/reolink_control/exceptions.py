"""Exception hierarchy for the Reolink client.

Every error raised by this package derives from ReolinkError so callers can
catch the whole family in one place. Device-reported failures carry the
vendor response code and detail string unchanged.
"""


class ReolinkError(Exception):
    """Base class for all Reolink client errors."""

    pass


class DeviceError(ReolinkError):
    """The device rejected a command or answered with a non-success status.

    Attributes:
        code: Envelope code (or HTTP status for transport-level rejections).
        rsp_code: Vendor response code (e.g. -1, -4, -9).
        detail: Vendor detail text.
        command: Command name that failed.
    """

    def __init__(self, code: int, rsp_code: int, detail: str, command: str = "") -> None:
        self.code = code
        self.rsp_code = rsp_code
        self.detail = detail
        self.command = command
        super().__init__(f"{command or 'Request'} ERROR: {detail} ({rsp_code})")


class AuthError(DeviceError):
    """Login was rejected or the device answered HTTP 401."""

    pass


class PtzError(DeviceError):
    """A PTZ guard or patrol command failed on the device."""

    pass


class InvalidPositionError(PtzError):
    """Vendor code -1 on a PTZ command: unknown preset or position."""

    pass


class MalformedParametersError(PtzError):
    """Vendor code -4 on a PTZ command: parameter format error."""

    pass


class UnsupportedOperationError(PtzError):
    """Vendor code -9: the operation is not supported by this model."""

    pass


class ReolinkValidationError(ReolinkError, ValueError):
    """Caller-supplied data failed a local check before any request was sent."""

    pass


class GridSizeMismatchError(ReolinkValidationError):
    """A detection grid's bit string does not match width * height."""

    def __init__(self, width: int, height: int, length: int) -> None:
        self.width = width
        self.height = height
        self.length = length
        super().__init__(
            f"Grid size mismatch: expected {width * height} cells "
            f"({width}x{height}), got {length}"
        )


class InvalidResponseError(ReolinkError):
    """The device answered with data that cannot be interpreted."""

    pass


class InvalidSnapshotError(InvalidResponseError):
    """Snapshot bytes do not start with a JPEG header."""

    pass


class ReolinkConnectionError(ReolinkError):
    """Network failure or timeout talking to the device."""

    pass


class ClientClosedError(ReolinkError):
    """The session was used after close()."""

    pass
