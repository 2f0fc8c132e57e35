"""PTZ guard, patrol and preset helpers.

Guard and patrol payloads differ between firmware families. The helpers here
read any known shape into the canonical models in ``models`` and write the
shape the device expects, translating the vendor codes -1, -4 and -9 into
named PtzError subclasses.
"""

import asyncio
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from .exceptions import (
    AuthError,
    DeviceError,
    InvalidPositionError,
    InvalidResponseError,
    MalformedParametersError,
    PtzError,
    ReolinkValidationError,
    UnsupportedOperationError,
)
from .logging_config import log_debug, log_info
from .models import (
    GUARD_TIMEOUT_SECONDS,
    PATROL_ROUTE_MAX,
    PATROL_ROUTE_MIN,
    PRESET_ID_MAX,
    PRESET_ID_MIN,
    PRESET_NAME_MAX,
    PTZ_SPEED_MAX,
    PTZ_SPEED_MIN,
    GuardConfig,
    GuardOptions,
    PatrolConfig,
    PatrolFormat,
    PresetInfo,
    PtzMoveOptions,
)
from .session import ReolinkSession

PTZ_ERRORS: dict[int, tuple[type[PtzError], str]] = {
    -1: (InvalidPositionError, "Invalid preset or position"),
    -4: (MalformedParametersError, "Parameter format error"),
    -9: (UnsupportedOperationError, "Not supported on this model"),
}


@contextmanager
def map_ptz_errors(command: str) -> Iterator[None]:
    """Re-raise PTZ device errors as named PtzError subclasses.

    Auth failures and unmapped vendor codes propagate unchanged.
    """
    try:
        yield
    except AuthError:
        raise
    except DeviceError as e:
        mapped = PTZ_ERRORS.get(e.rsp_code)
        if mapped is None or isinstance(e, PtzError):
            raise
        error_cls, detail = mapped
        raise error_cls(e.code, e.rsp_code, detail, command) from e


def _check_range(value: int, low: int, high: int, label: str) -> None:
    if not isinstance(value, int) or isinstance(value, bool) or not low <= value <= high:
        raise ReolinkValidationError(f"{label} must be between {low} and {high}, got {value!r}")


# =============================================================================
# Guard
# =============================================================================


async def get_guard(session: ReolinkSession, channel: int) -> GuardConfig:
    """Read the guard configuration for a channel.

    Args:
        session: Device session.
        channel: Camera channel (0-based).

    Returns:
        GuardConfig, disabled with a 60 s timeout when the device says nothing useful.
    """
    with map_ptz_errors("GetPtzGuard"):
        value = await session.call("GetPtzGuard", {"channel": channel})
    payload = value.get("PtzGuard") if isinstance(value, dict) else None
    return GuardConfig.from_payload(channel, payload)


async def set_guard(session: ReolinkSession, channel: int, options: GuardOptions) -> None:
    """Write the guard configuration for a channel.

    The directive fields ``cmdStr`` and ``bSaveCurrentPos`` are always sent;
    some firmware silently ignores the request without them. With
    ``go_to_guard_now`` the camera moves to the saved guard pose instead of
    saving the current pose.

    Args:
        session: Device session.
        channel: Camera channel (0-based).
        options: Requested settings.

    Raises:
        ReolinkValidationError: If the timeout is not 60 seconds.
        PtzError: On vendor codes -1, -4 or -9.
    """
    if options.timeout_sec != GUARD_TIMEOUT_SECONDS:
        raise ReolinkValidationError(
            f"Guard timeout must be {GUARD_TIMEOUT_SECONDS} seconds, got {options.timeout_sec}"
        )

    guard: dict[str, Any] = {
        "channel": channel,
        "benable": int(options.enabled),
        "timeout": GUARD_TIMEOUT_SECONDS,
        "cmdStr": "toPos" if options.go_to_guard_now else "setPos",
        "bSaveCurrentPos": 0 if options.go_to_guard_now else 1,
    }
    if options.bind_existing_position is not None:
        guard["bexistPos"] = int(options.bind_existing_position)

    with map_ptz_errors("SetPtzGuard"):
        await session.call("SetPtzGuard", {"channel": channel, "PtzGuard": guard})
    log_info(f"Guard on channel {channel} set to enabled={options.enabled}")


async def toggle_guard(session: ReolinkSession, channel: int) -> GuardConfig:
    """Flip the guard enabled flag. The 60 s timeout is always written.

    Read and write are separate requests, so a concurrent change between
    them is lost.

    Returns:
        The configuration that was written.
    """
    current = await get_guard(session, channel)
    await set_guard(
        session,
        channel,
        GuardOptions(enabled=not current.enabled, timeout_sec=GUARD_TIMEOUT_SECONDS),
    )
    return current.model_copy(
        update={"enabled": not current.enabled, "timeout": GUARD_TIMEOUT_SECONDS}
    )


# =============================================================================
# Patrol
# =============================================================================


async def get_patrol(session: ReolinkSession, channel: int) -> list[PatrolConfig]:
    """Read every patrol route for a channel.

    Accepts a single ``PtzPatrol`` object or a list, skipping non-object entries.
    """
    with map_ptz_errors("GetPtzPatrol"):
        value = await session.call("GetPtzPatrol", {"channel": channel})
    raw = value.get("PtzPatrol") if isinstance(value, dict) else None
    if raw is None:
        return []
    entries = raw if isinstance(raw, list) else [raw]
    return [PatrolConfig.from_payload(channel, entry) for entry in entries if isinstance(entry, dict)]


def _is_native_preset(entry: Any) -> bool:
    return isinstance(entry, dict) and all(key in entry for key in ("id", "speed", "dwellTime"))


def detect_patrol_format(config: dict[str, Any]) -> PatrolFormat:
    """Classify a patrol payload.

    A non-empty ``preset`` array always wins over ``points``/``path``.
    """
    presets = config.get("preset")
    if isinstance(presets, list) and presets:
        if "name" not in config and all(_is_native_preset(p) for p in presets):
            return PatrolFormat.NATIVE
        if "name" in config:
            return PatrolFormat.LEGACY_NAMED
    if isinstance(config.get("points"), list):
        return PatrolFormat.POINTS
    if isinstance(config.get("path"), list):
        return PatrolFormat.PATH
    return PatrolFormat.GENERIC


def _validate_waypoints(waypoints: list[Any]) -> None:
    for index, point in enumerate(waypoints):
        if not isinstance(point, dict):
            raise ReolinkValidationError(f"Waypoint {index} is not an object")
        preset_id = point.get("id", point.get("presetId"))
        _check_range(preset_id, PRESET_ID_MIN, PRESET_ID_MAX, f"Waypoint {index} preset id")
        if "speed" in point:
            _check_range(point["speed"], PTZ_SPEED_MIN, PTZ_SPEED_MAX, f"Waypoint {index} speed")


def _enable_flag(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    return value if isinstance(value, int) else 0


def build_patrol_payload(channel: int, config: dict[str, Any]) -> dict[str, Any]:
    """Build the ``SetPtzPatrol`` parameters for any accepted patrol shape.

    Args:
        channel: Camera channel (0-based).
        config: Patrol in native, legacy named, points, path or generic form.

    Returns:
        Parameters for SetPtzPatrol.

    Raises:
        ReolinkValidationError: If the route id, a preset id or a speed is out of range.

    Example:
        >>> build_patrol_payload(0, {"id": 0, "enable": 1,
        ...     "points": [{"presetId": 1, "speed": 5, "stayTime": 3}]})["PtzPatrol"]["preset"]
        [{'id': 1, 'speed': 5, 'dwellTime': 3}]
    """
    route_id = config.get("id", 0)
    _check_range(route_id, PATROL_ROUTE_MIN, PATROL_ROUTE_MAX, "Patrol route id")

    patrol_format = detect_patrol_format(config)
    log_debug(f"SetPtzPatrol channel {channel} using {patrol_format.value} format")

    if patrol_format is PatrolFormat.NATIVE:
        _validate_waypoints(config["preset"])
        return {
            "channel": channel,
            "PtzPatrol": {
                "channel": config.get("channel", channel),
                "id": route_id,
                "enable": _enable_flag(config.get("enable", 0)),
                "preset": [
                    {"id": p["id"], "speed": p["speed"], "dwellTime": p["dwellTime"]}
                    for p in config["preset"]
                ],
            },
        }

    if patrol_format in (PatrolFormat.POINTS, PatrolFormat.PATH):
        points = config["points"] if patrol_format is PatrolFormat.POINTS else config["path"]
        _validate_waypoints(points)
        try:
            canonical = PatrolConfig.from_payload(
                channel,
                {"id": route_id, "enable": _enable_flag(config.get("enable", 0)), patrol_format.value: points},
            )
        except InvalidResponseError as e:
            raise ReolinkValidationError(f"Invalid patrol waypoints: {e}") from e
        wire = canonical.to_wire()
        wire["channel"] = channel
        return {"channel": channel, "PtzPatrol": wire}

    # Legacy named and generic payloads are forwarded as given
    if patrol_format is PatrolFormat.LEGACY_NAMED:
        _validate_waypoints(config["preset"])
    payload = {**config, "channel": channel}
    if "enable" in payload:
        payload["enable"] = _enable_flag(payload["enable"])
    return payload


async def set_patrol(
    session: ReolinkSession,
    channel: int,
    config: PatrolConfig | dict[str, Any],
) -> None:
    """Write a patrol route.

    Args:
        session: Device session.
        channel: Camera channel (0-based).
        config: Canonical PatrolConfig or a raw payload in any accepted shape.

    Raises:
        ReolinkValidationError: On out-of-range ids or speeds.
        PtzError: On vendor codes -1, -4 or -9.
    """
    raw = config.to_wire() if isinstance(config, PatrolConfig) else config
    params = build_patrol_payload(channel, raw)
    with map_ptz_errors("SetPtzPatrol"):
        await session.call("SetPtzPatrol", params)


async def start_patrol(session: ReolinkSession, channel: int, patrol_id: int) -> None:
    """Start patrol route ``patrol_id`` (0-5)."""
    await _patrol_ctrl(session, channel, patrol_id, "StartPatrol")


async def stop_patrol(session: ReolinkSession, channel: int, patrol_id: int) -> None:
    """Stop patrol route ``patrol_id`` (0-5)."""
    await _patrol_ctrl(session, channel, patrol_id, "StopPatrol")


async def _patrol_ctrl(session: ReolinkSession, channel: int, patrol_id: int, op: str) -> None:
    _check_range(patrol_id, PATROL_ROUTE_MIN, PATROL_ROUTE_MAX, "Patrol route id")
    with map_ptz_errors("PtzCtrl"):
        await session.call("PtzCtrl", {"channel": channel, "op": op, "id": patrol_id})
    log_info(f"{op} route {patrol_id} on channel {channel}")


# =============================================================================
# Movement and Presets
# =============================================================================


async def ptz_ctrl(
    session: ReolinkSession,
    channel: int,
    op: str,
    speed: int | None = None,
    preset_id: int | None = None,
) -> None:
    """Send a raw PtzCtrl operation (e.g. "Left", "Stop", "ToPos").

    Args:
        session: Device session.
        channel: Camera channel (0-based).
        op: Operation name as the device spells it.
        speed: Optional speed, clamped to 1-64.
        preset_id: Preset id for "ToPos".
    """
    params: dict[str, Any] = {"channel": channel, "op": op}
    if speed is not None:
        params["speed"] = max(PTZ_SPEED_MIN, min(PTZ_SPEED_MAX, speed))
    if preset_id is not None:
        params["id"] = preset_id
    with map_ptz_errors("PtzCtrl"):
        await session.call("PtzCtrl", params)


async def list_presets(session: ReolinkSession, channel: int) -> list[PresetInfo]:
    """List the PTZ presets configured on a channel."""
    with map_ptz_errors("GetPtzPreset"):
        value = await session.call("GetPtzPreset", {"channel": channel}, action=1)
    raw = value.get("PtzPreset") if isinstance(value, dict) else None
    if not isinstance(raw, list):
        return []
    presets: list[PresetInfo] = []
    for entry in raw:
        if not isinstance(entry, dict) or not isinstance(entry.get("id"), int):
            continue
        presets.append(
            PresetInfo(
                id=entry["id"],
                name=entry.get("name", ""),
                enabled=bool(entry.get("enable", 0)),
                channel=entry.get("channel", channel),
            )
        )
    return presets


async def set_preset(
    session: ReolinkSession,
    channel: int,
    preset_id: int,
    name: str | None = None,
) -> None:
    """Save the current position as a preset.

    Raises:
        ReolinkValidationError: If the id is outside 1-64 or the name exceeds 31 characters.
    """
    _check_range(preset_id, PRESET_ID_MIN, PRESET_ID_MAX, "Preset id")
    name = name or f"Preset {preset_id}"
    if len(name) > PRESET_NAME_MAX:
        raise ReolinkValidationError(f"Preset name must be at most {PRESET_NAME_MAX} characters")
    with map_ptz_errors("SetPtzPreset"):
        await session.call(
            "SetPtzPreset",
            {"PtzPreset": {"channel": channel, "id": preset_id, "name": name, "enable": 1}},
        )


async def goto_preset(
    session: ReolinkSession,
    channel: int,
    preset_id: int,
    options: PtzMoveOptions | None = None,
) -> None:
    """Move to a preset and wait for the head to settle.

    Args:
        session: Device session.
        channel: Camera channel (0-based).
        preset_id: Preset id (0-64).
        options: Speed and settle delay.
    """
    options = options or PtzMoveOptions()
    _check_range(preset_id, 0, PRESET_ID_MAX, "Preset id")
    await ptz_ctrl(session, channel, "ToPos", speed=options.clamped_speed, preset_id=preset_id)
    if options.settle_seconds > 0:
        await asyncio.sleep(options.settle_seconds)
