"""Pydantic models for the Reolink client.

This module contains the request/response envelopes and the canonical
in-memory shapes that the PTZ and zone helpers normalize device payloads
into. Device payloads use inconsistent field names across firmware, so the
models accept the wire spelling through aliases and serialize back with it.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .exceptions import DeviceError, GridSizeMismatchError, InvalidResponseError

PRESET_ID_MIN = 1
PRESET_ID_MAX = 64
PTZ_SPEED_MIN = 1
PTZ_SPEED_MAX = 64
PATROL_ROUTE_MIN = 0
PATROL_ROUTE_MAX = 5
PRESET_NAME_MAX = 31
GUARD_TIMEOUT_SECONDS = 60


class ConnectionMode(str, Enum):
    """How credentials reach the device."""

    TOKEN = "token"
    PER_REQUEST = "per-request"


class AiType(str, Enum):
    """AI detection classes that own a detection grid."""

    PEOPLE = "people"
    VEHICLE = "vehicle"
    DOG_CAT = "dog_cat"
    FACE = "face"


class PatrolFormat(str, Enum):
    """Wire shapes accepted for a patrol route."""

    NATIVE = "native"
    LEGACY_NAMED = "legacy_named"
    POINTS = "points"
    PATH = "path"
    GENERIC = "generic"


class StreamType(str, Enum):
    """Recording stream selector."""

    MAIN = "main"
    SUB = "sub"

    @property
    def wire_value(self) -> int:
        """Numeric stream type used by Search/Download."""
        return 1 if self is StreamType.SUB else 0


# =============================================================================
# Protocol Envelopes
# =============================================================================


class CommandRequest(BaseModel):
    """One command envelope in a request body.

    Attributes:
        cmd: Command name (e.g. "GetPtzGuard").
        action: 0 for plain values, 1 to also request ranges/initial values.
        param: Command parameters.
    """

    model_config = ConfigDict(frozen=True)

    cmd: str
    action: int = Field(default=0, ge=0, le=1)
    param: dict[str, Any] = Field(default_factory=dict)


class ErrorDetail(BaseModel):
    """Error body of a failed response envelope."""

    model_config = ConfigDict(populate_by_name=True)

    rsp_code: int = Field(default=-1, alias="rspCode")
    detail: str = "Unknown error"


class ResponseEnvelope(BaseModel):
    """One response envelope, either ``{code: 0, value}`` or ``{code, error}``.

    Attributes:
        cmd: Echoed command name, when the device includes it.
        code: 0 on success.
        value: Command result on success.
        error: Vendor error on failure.
    """

    model_config = ConfigDict(extra="ignore")

    cmd: str | None = None
    code: int
    value: Any = None
    error: ErrorDetail | None = None

    @property
    def ok(self) -> bool:
        """True when the envelope carries a value."""
        return self.code == 0

    def to_error(self, command: str) -> DeviceError:
        """Build the DeviceError describing this failed envelope."""
        error = self.error or ErrorDetail()
        return DeviceError(self.code, error.rsp_code, error.detail, self.cmd or command)

    def unwrap(self, command: str) -> Any:
        """Return the value or raise the envelope's DeviceError.

        Args:
            command: Command name used in the error message when the
                envelope does not echo one.

        Raises:
            DeviceError: If the envelope reports failure.
        """
        if not self.ok:
            raise self.to_error(command)
        return self.value


# =============================================================================
# PTZ Guard Models
# =============================================================================


class GuardConfig(BaseModel):
    """Canonical guard (home position) configuration for a channel.

    Attributes:
        channel: Camera channel (0-based).
        enabled: Whether the camera returns to the guard position.
        timeout: Idle seconds before returning (fixed at 60).
        bind_existing_position: Device flag telling whether a guard pose is saved.
        reported_timeout: Timeout as the device reported it, when present.
    """

    model_config = ConfigDict(frozen=True)

    channel: int = 0
    enabled: bool = False
    timeout: int = GUARD_TIMEOUT_SECONDS
    bind_existing_position: bool | None = None
    reported_timeout: int | None = None

    @classmethod
    def from_payload(cls, channel: int, payload: Any) -> "GuardConfig":
        """Build from a ``PtzGuard`` object, tolerating missing fields.

        ``timeout`` is always 60; whatever the device sent is kept in
        ``reported_timeout``.
        """
        if not isinstance(payload, dict):
            return cls(channel=channel)
        exist = payload.get("bexistPos", payload.get("bExistPos"))
        timeout = payload.get("timeout")
        return cls(
            channel=channel,
            enabled=bool(payload.get("benable", 0)),
            bind_existing_position=None if exist is None else bool(exist),
            reported_timeout=timeout if isinstance(timeout, int) and not isinstance(timeout, bool) else None,
        )


class GuardOptions(BaseModel):
    """Requested guard change.

    ``timeout_sec`` is deliberately unconstrained here so that set_guard can
    report an unsupported value as a validation error before any request.
    """

    enabled: bool = False
    timeout_sec: int = GUARD_TIMEOUT_SECONDS
    bind_existing_position: bool | None = None
    go_to_guard_now: bool = False


# =============================================================================
# PTZ Patrol Models
# =============================================================================


class PatrolWaypoint(BaseModel):
    """One stop on a patrol route.

    Attributes:
        id: Preset id to visit (1-64).
        speed: Travel speed (1-64).
        dwell_time: Seconds to stay at the preset.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: int = Field(..., ge=0, le=PRESET_ID_MAX)
    speed: int = 32
    dwell_time: int = Field(default=10, alias="dwellTime")

    def to_wire(self) -> dict[str, int]:
        """Serialize as ``{id, speed, dwellTime}``."""
        return {"id": self.id, "speed": self.speed, "dwellTime": self.dwell_time}


class PatrolConfig(BaseModel):
    """Canonical patrol route. Waypoint order is execution order.

    Attributes:
        channel: Camera channel (0-based).
        id: Route index (0-5).
        enabled: Whether the route is enabled.
        running: Whether the device reports the route as running.
        name: Route name on firmware that names routes.
        waypoints: Ordered stops.
    """

    model_config = ConfigDict(frozen=True)

    channel: int = 0
    id: int = Field(default=0, ge=PATROL_ROUTE_MIN, le=PATROL_ROUTE_MAX)
    enabled: bool = False
    running: bool | None = None
    name: str | None = None
    waypoints: list[PatrolWaypoint] = Field(default_factory=list)

    @classmethod
    def from_payload(cls, channel: int, payload: dict[str, Any]) -> "PatrolConfig":
        """Fold any known device patrol shape into the canonical model.

        Args:
            channel: Channel used when the payload omits one.
            payload: A ``PtzPatrol`` object in native, named, points or path form.

        Returns:
            Canonical PatrolConfig.

        Raises:
            InvalidResponseError: If a field cannot be coerced, e.g. a route
                id above 5 or a non-numeric speed.
        """
        try:
            raw_points = payload.get("preset")
            if isinstance(raw_points, list) and raw_points:
                waypoints = [_waypoint_from_preset(p) for p in raw_points if isinstance(p, dict)]
            else:
                raw_points = payload.get("points") or payload.get("path") or []
                waypoints = [_waypoint_from_point(p) for p in raw_points if isinstance(p, dict)]

            running = payload.get("running")
            return cls(
                channel=_field(payload, "channel", channel),
                id=_field(payload, "id", 0),
                enabled=bool(payload.get("enable", 0)),
                running=None if running is None else bool(running),
                name=payload.get("name"),
                waypoints=waypoints,
            )
        except ValidationError as e:
            raise InvalidResponseError(f"PtzPatrol: malformed route: {e}") from e

    def to_wire(self) -> dict[str, Any]:
        """Serialize to the native ``PtzPatrol`` shape."""
        wire: dict[str, Any] = {
            "channel": self.channel,
            "id": self.id,
            "enable": int(self.enabled),
            "preset": [w.to_wire() for w in self.waypoints],
        }
        if self.name is not None:
            wire["name"] = self.name
        return wire


def _field(entry: dict[str, Any], key: str, default: Any) -> Any:
    # Firmware sends null for unset fields
    value = entry.get(key)
    return default if value is None else value


def _waypoint_from_preset(entry: dict[str, Any]) -> PatrolWaypoint:
    return PatrolWaypoint(
        id=_field(entry, "id", 0),
        speed=_field(entry, "speed", 32),
        dwell_time=_field(entry, "dwellTime", 10),
    )


def _waypoint_from_point(entry: dict[str, Any]) -> PatrolWaypoint:
    return PatrolWaypoint(
        id=_field(entry, "presetId", 0),
        speed=_field(entry, "speed", 32),
        dwell_time=_field(entry, "stayTime", 10),
    )


# =============================================================================
# Preset and Zone Models
# =============================================================================


class GridArea(BaseModel):
    """A width x height detection grid as a row-major '0'/'1' string.

    The length check lives in ``ensure_consistent`` rather than a model
    validator so callers get a GridSizeMismatchError, not a pydantic error.
    """

    model_config = ConfigDict(frozen=True)

    width: int = Field(..., ge=1)
    height: int = Field(..., ge=1)
    bits: str = Field(..., pattern=r"^[01]*$")

    @property
    def cell_count(self) -> int:
        return self.width * self.height

    def ensure_consistent(self) -> "GridArea":
        """Raise GridSizeMismatchError unless ``len(bits) == width * height``."""
        if len(self.bits) != self.cell_count:
            raise GridSizeMismatchError(self.width, self.height, len(self.bits))
        return self

    @classmethod
    def from_device(cls, width: Any, height: Any, bits: Any, source: str) -> "GridArea":
        """Build from device data, raising InvalidResponseError on bad shape."""
        if not isinstance(width, int) or not isinstance(height, int) or not isinstance(bits, str):
            raise InvalidResponseError(f"{source}: grid fields missing or malformed")
        if width < 1 or height < 1 or len(bits) != width * height:
            raise InvalidResponseError(
                f"{source}: grid is {width}x{height} but has {len(bits)} cells"
            )
        try:
            return cls(width=width, height=height, bits=bits)
        except ValueError as e:
            raise InvalidResponseError(f"{source}: {e}") from e


class ScreenSize(BaseModel):
    """Reference frame size a mask is expressed in."""

    model_config = ConfigDict(frozen=True)

    width: int
    height: int


class MaskBlock(BaseModel):
    """Rectangle covered by a privacy mask."""

    model_config = ConfigDict(frozen=True)

    x: int
    y: int
    width: int
    height: int


class PrivacyMask(BaseModel):
    """One privacy mask rectangle and the frame it is relative to."""

    model_config = ConfigDict(frozen=True)

    screen: ScreenSize
    block: MaskBlock


class PresetZones(BaseModel):
    """Zone bundle held by the caller and reapplied after a preset recall.

    Attributes:
        md: Motion detection grid.
        ai: Per AI type detection grids.
        masks: Privacy masks. None leaves masks untouched; an empty list clears them.
    """

    model_config = ConfigDict(frozen=True)

    md: GridArea | None = None
    ai: dict[AiType, GridArea] = Field(default_factory=dict)
    masks: list[PrivacyMask] | None = None

    @property
    def is_empty(self) -> bool:
        return self.md is None and not self.ai and self.masks is None


class PresetInfo(BaseModel):
    """A PTZ preset as reported by GetPtzPreset.

    Attributes:
        id: Preset id (0 is the firmware default on some models).
        name: Preset name (max 31 characters).
        enabled: Whether the preset slot is in use.
        channel: Camera channel.
    """

    model_config = ConfigDict(frozen=True)

    id: int = Field(..., ge=0, le=PRESET_ID_MAX)
    name: str = Field(default="", max_length=PRESET_NAME_MAX)
    enabled: bool = False
    channel: int = 0

    @field_validator("name", mode="before")
    @classmethod
    def truncate_name(cls, v: Any) -> str:
        """Devices occasionally report over-long names; keep the first 31 chars."""
        if v is None:
            return ""
        return str(v)[:PRESET_NAME_MAX]


class PtzMoveOptions(BaseModel):
    """Options for moving to a preset.

    Attributes:
        speed: Move speed, clamped to 1-64 when sent.
        settle_seconds: Delay after the move command so the head stops moving.
    """

    model_config = ConfigDict(frozen=True)

    speed: int | None = None
    settle_seconds: float = Field(default=0.4, ge=0)

    @property
    def clamped_speed(self) -> int | None:
        if self.speed is None:
            return None
        return max(PTZ_SPEED_MIN, min(PTZ_SPEED_MAX, self.speed))


# =============================================================================
# Event and Capability Models
# =============================================================================


class MotionEvent(BaseModel):
    """Motion state change on a channel."""

    model_config = ConfigDict(frozen=True)

    channel: int
    active: bool
    timestamp: datetime = Field(default_factory=datetime.now)


class AiEvent(BaseModel):
    """AI detection state change on a channel.

    Attributes:
        channel: Camera channel.
        active: Whether any AI class is currently detected.
        types: AI classes currently detected (people, vehicle, dog_cat, face, package).
        timestamp: When the change was observed.
    """

    model_config = ConfigDict(frozen=True)

    channel: int
    active: bool
    types: list[str] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=datetime.now)


class DeviceCapabilities(BaseModel):
    """Feature flags derived from GetAbility."""

    model_config = ConfigDict(frozen=True)

    ptz: bool = False
    ai: bool = False
    motion_detection: bool = False
    recording: bool = False

    def supported(self) -> list[str]:
        """Names of the features reported as supported."""
        return [name for name, value in self.model_dump().items() if value]
