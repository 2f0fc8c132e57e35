"""Device capability detection from GetAbility."""

from typing import Any

from .exceptions import ReolinkError, ReolinkValidationError
from .logging_config import log_debug
from .models import DeviceCapabilities
from .session import ReolinkSession

# Ability keys that indicate each feature, across firmware spellings
CAPABILITY_KEYS: dict[str, tuple[str, ...]] = {
    "ptz": ("Ptz", "ptz", "ptzCtrl", "ptzPreset"),
    "ai": ("AI", "ai", "Person", "supportAi"),
    "motion_detection": ("Md", "md", "Motion", "mdAlarm", "alarmMd"),
    "recording": ("Rec", "rec", "Record", "recCfg", "recDownload"),
}


def _collect_keys(ability: Any) -> set[str]:
    """Flatten the top-level and per-channel ability keys."""
    if not isinstance(ability, dict):
        return set()
    root = ability.get("Ability") or ability.get("ability") or ability
    if not isinstance(root, dict):
        return set()
    keys = set(root)
    channels = root.get("abilityChn")
    if isinstance(channels, list):
        for chn in channels:
            if isinstance(chn, dict):
                keys.update(chn)
    return keys


def capabilities_from_ability(ability: Any) -> DeviceCapabilities:
    """Derive feature flags from a GetAbility value."""
    keys = _collect_keys(ability)
    return DeviceCapabilities(
        **{feature: any(k in keys for k in names) for feature, names in CAPABILITY_KEYS.items()}
    )


async def detect_capabilities(session: ReolinkSession) -> DeviceCapabilities:
    """Query GetAbility and derive feature flags.

    A device error yields an empty capability set rather than an exception.
    """
    try:
        ability = await session.call("GetAbility", {"User": {"userName": session.username}})
    except ReolinkError as e:
        log_debug(f"GetAbility failed, assuming no optional features: {e}")
        return DeviceCapabilities()
    return capabilities_from_ability(ability)


def require_capability(capabilities: DeviceCapabilities, feature: str) -> None:
    """Raise if ``feature`` is not supported.

    Raises:
        ReolinkValidationError: If the feature is unknown or unsupported.
    """
    if feature not in CAPABILITY_KEYS:
        raise ReolinkValidationError(f"Unknown feature '{feature}'")
    if not getattr(capabilities, feature):
        available = ", ".join(capabilities.supported()) or "none"
        raise ReolinkValidationError(
            f"Feature '{feature}' is not supported on this device. Available: {available}"
        )


async def check_feature(session: ReolinkSession, feature: str) -> bool:
    """Return True if the device reports ``feature``."""
    capabilities = await detect_capabilities(session)
    return bool(getattr(capabilities, feature, False))
