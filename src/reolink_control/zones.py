"""Motion/AI detection grids, privacy masks and preset zone workflows.

Detection zones are grids of ``width * height`` cells encoded as a row-major
'0'/'1' string. Zones are not stored per preset on the device, so callers
keep a ``PresetZones`` bundle per preset and push it after each recall with
``goto_preset_with_zones``.
"""

import inspect
from collections.abc import Awaitable, Callable
from typing import Any

from .exceptions import (
    InvalidResponseError,
    ReolinkConnectionError,
    ReolinkError,
    ReolinkValidationError,
)
from .logging_config import log_debug, log_info, log_warning
from .models import AiType, GridArea, PresetZones, PrivacyMask, PtzMoveOptions
from .ptz import goto_preset
from .session import ReolinkSession

ZoneProvider = Callable[[int], PresetZones | None | Awaitable[PresetZones | None]]


def _coerce_ai_type(ai_type: AiType | str) -> AiType:
    try:
        return AiType(ai_type)
    except ValueError as e:
        allowed = ", ".join(t.value for t in AiType)
        raise ReolinkValidationError(f"Unknown AI type '{ai_type}', expected one of {allowed}") from e


def _scope_payload(area: GridArea) -> dict[str, Any]:
    # Firmware reads either cols/rows or width/height
    return {
        "width": area.width,
        "height": area.height,
        "cols": area.width,
        "rows": area.height,
        "table": area.bits,
    }


# =============================================================================
# Motion Detection Grid
# =============================================================================


async def get_motion_zone(session: ReolinkSession, channel: int) -> GridArea:
    """Read the motion detection grid for a channel.

    Raises:
        InvalidResponseError: If the device grid is missing or inconsistent.
    """
    value = await session.call("GetMdAlarm", {"channel": channel})
    if not isinstance(value, dict):
        raise InvalidResponseError("GetMdAlarm: no motion alarm configuration")
    alarm = value.get("MdAlarm") or value.get("Alarm") or value
    scope = alarm.get("scope") or alarm.get("Scope") or alarm if isinstance(alarm, dict) else None
    if not isinstance(scope, dict):
        raise InvalidResponseError("GetMdAlarm: scope is not an object")
    return GridArea.from_device(
        scope.get("cols", scope.get("width")),
        scope.get("rows", scope.get("height")),
        scope.get("table", scope.get("area", scope.get("bits"))),
        "GetMdAlarm",
    )


async def set_motion_zone(session: ReolinkSession, channel: int, area: GridArea) -> None:
    """Write the motion detection grid, keeping the other alarm settings.

    The current ``MdAlarm`` configuration (sensitivity, schedules, ...) is read
    first and the new grid merged into it. If that read fails for a
    transport or parse reason, a payload holding only the grid is sent
    instead, which may reset the other fields on some firmware. Device errors
    from the read are raised.

    Args:
        session: Device session.
        channel: Camera channel (0-based).
        area: New grid.

    Raises:
        GridSizeMismatchError: If ``len(bits) != width * height``.
        DeviceError: If the device rejects the read or the write.
    """
    area.ensure_consistent()
    scope = _scope_payload(area)
    payload: dict[str, Any] = {"channel": channel, "scope": scope, "table": area.bits}

    try:
        current = await session.call("GetMdAlarm", {"channel": channel})
    except (ReolinkConnectionError, InvalidResponseError) as e:
        log_warning(f"GetMdAlarm failed on channel {channel}, sending grid only: {e}")
    else:
        alarm = current.get("MdAlarm", current) if isinstance(current, dict) else None
        if isinstance(alarm, dict):
            existing_scope = alarm.get("scope") if isinstance(alarm.get("scope"), dict) else {}
            payload = {
                **alarm,
                "channel": channel,
                "scope": {**existing_scope, **scope},
                "table": area.bits,
            }

    await session.call("SetMdAlarm", {"MdAlarm": payload})
    log_info(f"Motion grid {area.width}x{area.height} written to channel {channel}")


# =============================================================================
# AI Detection Grids
# =============================================================================


async def get_ai_zone(session: ReolinkSession, channel: int, ai_type: AiType | str) -> GridArea:
    """Read the detection grid for one AI class."""
    ai_type = _coerce_ai_type(ai_type)
    value = await session.call("GetAiAlarm", {"channel": channel, "ai_type": ai_type.value})
    alarm = value.get("AiAlarm", value) if isinstance(value, dict) else None
    if not isinstance(alarm, dict):
        raise InvalidResponseError("GetAiAlarm: no AI alarm configuration")
    scope = alarm.get("scope") or alarm.get("Scope") or alarm
    if not isinstance(scope, dict):
        raise InvalidResponseError("GetAiAlarm: scope is not an object")
    return GridArea.from_device(
        scope.get("width"),
        scope.get("height"),
        scope.get("area", scope.get("table", scope.get("bits"))),
        "GetAiAlarm",
    )


async def set_ai_zone(
    session: ReolinkSession,
    channel: int,
    ai_type: AiType | str,
    area: GridArea,
) -> None:
    """Write the detection grid for one AI class.

    Raises:
        ReolinkValidationError: If the AI type is unknown.
        GridSizeMismatchError: If the grid is inconsistent.
    """
    ai_type = _coerce_ai_type(ai_type)
    area.ensure_consistent()
    await session.call(
        "SetAlarmArea",
        {
            "channel": channel,
            "ai_type": ai_type.value,
            "width": area.width,
            "height": area.height,
            "area": area.bits,
        },
    )
    log_info(f"{ai_type.value} grid written to channel {channel}")


# =============================================================================
# Privacy Masks
# =============================================================================


async def get_masks(session: ReolinkSession, channel: int) -> list[PrivacyMask]:
    """Read the privacy masks for a channel."""
    value = await session.call("GetMask", {"channel": channel})
    mask = value.get("Mask", value) if isinstance(value, dict) else None
    areas = mask.get("area", []) if isinstance(mask, dict) else []
    if not isinstance(areas, list):
        raise InvalidResponseError("GetMask: area is not a list")
    try:
        return [PrivacyMask.model_validate(a) for a in areas if isinstance(a, dict)]
    except ValueError as e:
        raise InvalidResponseError(f"GetMask: malformed mask: {e}") from e


async def set_masks(session: ReolinkSession, channel: int, masks: list[PrivacyMask]) -> None:
    """Replace the privacy masks. An empty list disables masking."""
    await session.call(
        "SetMask",
        {
            "Mask": {
                "channel": channel,
                "enable": 1 if masks else 0,
                "area": [m.model_dump() for m in masks],
            }
        },
    )


# =============================================================================
# Preset Workflows
# =============================================================================


async def apply_zones_for_preset(
    session: ReolinkSession,
    channel: int,
    preset_id: int,
    zones: PresetZones,
) -> None:
    """Push a preset's zones: masks first, then the motion grid, then AI grids.

    Masks go first because some firmware resets detection state when masks
    change after the grids.
    """
    log_debug(f"Applying zones for preset {preset_id} on channel {channel}")
    # Validate every grid before the first write
    for area in [zones.md, *zones.ai.values()]:
        if area is not None:
            area.ensure_consistent()
    if zones.masks is not None:
        await set_masks(session, channel, zones.masks)
    if zones.md is not None:
        await set_motion_zone(session, channel, zones.md)
    for ai_type in AiType:
        area = zones.ai.get(ai_type)
        if area is not None:
            await set_ai_zone(session, channel, ai_type, area)


async def goto_preset_with_zones(
    session: ReolinkSession,
    channel: int,
    preset_id: int,
    zone_provider: ZoneProvider,
    move_options: PtzMoveOptions | None = None,
) -> PresetZones | None:
    """Move to a preset, then apply the zones the provider has for it.

    Args:
        session: Device session.
        channel: Camera channel (0-based).
        preset_id: Preset to recall.
        zone_provider: Sync or async callable returning the zones for a preset id, or None.
        move_options: Speed and settle delay for the move.

    Returns:
        The zones that were applied, or None when the preset has none.
    """
    await goto_preset(session, channel, preset_id, move_options)

    zones = zone_provider(preset_id)
    if inspect.isawaitable(zones):
        zones = await zones
    if zones is None or zones.is_empty:
        log_debug(f"No stored zones for preset {preset_id}")
        return None

    await apply_zones_for_preset(session, channel, preset_id, zones)
    return zones


# =============================================================================
# AI Support Detection
# =============================================================================


def _ai_flags(source: Any) -> set[AiType]:
    if not isinstance(source, dict):
        return set()
    supported: set[AiType] = set()
    for ai_type in AiType:
        name = ai_type.value
        flag = source.get(name, source.get(f"support{name}", source.get(f"support{name.upper()}")))
        if isinstance(flag, dict):
            flag = flag.get("permit", flag.get("ver"))
        if flag is True or flag == 1:
            supported.add(ai_type)
    return supported


def _channel_ability(ability: Any, channel: int) -> Any:
    if not isinstance(ability, dict):
        return None
    root = ability.get("Ability") or ability.get("ability") or ability
    channels = root.get("abilityChn")
    if isinstance(channels, list):
        if 0 <= channel < len(channels) and isinstance(channels[channel], dict):
            return channels[channel]
        return None
    if isinstance(channels, dict):
        return channels.get(str(channel)) or channels.get(f"chn{channel}")
    return root


class ZoneAbilityCache:
    """Per-session cache of supported AI types by channel."""

    def __init__(self) -> None:
        self._supported: dict[int, list[AiType]] = {}

    def get(self, channel: int) -> list[AiType] | None:
        return self._supported.get(channel)

    def put(self, channel: int, types: list[AiType]) -> None:
        self._supported[channel] = types

    def clear(self) -> None:
        self._supported.clear()


async def get_supported_ai_types(
    session: ReolinkSession,
    channel: int,
    cache: ZoneAbilityCache | None = None,
) -> list[AiType]:
    """Work out which AI classes a channel can detect.

    Uses the per-channel ability flags from GetAbility and falls back to
    GetAiCfg. Failed lookups count as "no support" rather than errors.

    Returns:
        Supported AI types in enum order.
    """
    if cache is not None and (cached := cache.get(channel)) is not None:
        return cached

    supported: set[AiType] = set()
    try:
        ability = await session.call("GetAbility", {"User": {"userName": session.username}})
        chn = _channel_ability(ability, channel)
        if isinstance(chn, dict):
            supported = _ai_flags(chn.get("supportAi", chn.get("supportAI", chn.get("ai", chn))))
    except ReolinkError as e:
        log_debug(f"GetAbility lookup failed on channel {channel}: {e}")

    if not supported:
        try:
            cfg = await session.call("GetAiCfg", {"channel": channel}, action=1)
            info = cfg.get("AiCfg", cfg) if isinstance(cfg, dict) else None
            if isinstance(info, dict):
                supported = _ai_flags(info.get("ability", info.get("Ability", info)))
        except ReolinkError as e:
            log_debug(f"GetAiCfg lookup failed on channel {channel}: {e}")

    result = [t for t in AiType if t in supported]
    if cache is not None:
        cache.put(channel, result)
    return result
