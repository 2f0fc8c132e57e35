"""Tests for detection grids, privacy masks and preset zone workflows."""

import httpx
import pytest
from conftest import FakeDevice, err, ok

from reolink_control.exceptions import (
    DeviceError,
    GridSizeMismatchError,
    InvalidResponseError,
    ReolinkValidationError,
)
from reolink_control.models import (
    AiType,
    GridArea,
    MaskBlock,
    PresetZones,
    PrivacyMask,
    PtzMoveOptions,
    ScreenSize,
)
from reolink_control.session import ReolinkSession
from reolink_control.zones import (
    ZoneAbilityCache,
    apply_zones_for_preset,
    get_ai_zone,
    get_masks,
    get_motion_zone,
    get_supported_ai_types,
    goto_preset_with_zones,
    set_ai_zone,
    set_masks,
    set_motion_zone,
)

NO_SETTLE = PtzMoveOptions(settle_seconds=0)


def _mask() -> PrivacyMask:
    return PrivacyMask(
        screen=ScreenSize(width=640, height=360),
        block=MaskBlock(x=10, y=20, width=100, height=50),
    )


class TestMotionZone:
    """Tests for reading and writing the motion grid."""

    @pytest.mark.asyncio
    async def test_mismatch_rejected_before_any_request(
        self, session: ReolinkSession, device: FakeDevice
    ) -> None:
        with pytest.raises(GridSizeMismatchError) as exc_info:
            await set_motion_zone(session, 0, GridArea(width=4, height=2, bits="1010"))

        assert exc_info.value.length == 4
        assert device.requests == []

    @pytest.mark.asyncio
    async def test_merges_into_existing_alarm(
        self, session: ReolinkSession, device: FakeDevice
    ) -> None:
        """Test that sensitivity and schedule survive a grid write."""
        device.queue(
            "GetMdAlarm",
            ok(
                {
                    "MdAlarm": {
                        "channel": 0,
                        "sens": [{"sensitivity": 40}],
                        "scope": {"cols": 2, "rows": 2, "table": "0000", "mode": "grid"},
                    }
                }
            ),
        )

        await set_motion_zone(session, 0, GridArea(width=2, height=2, bits="1100"))

        sent = device.params("SetMdAlarm")[0]["MdAlarm"]
        assert sent["sens"] == [{"sensitivity": 40}]
        assert sent["table"] == "1100"
        assert sent["scope"] == {
            "cols": 2,
            "rows": 2,
            "width": 2,
            "height": 2,
            "table": "1100",
            "mode": "grid",
        }

    @pytest.mark.asyncio
    async def test_falls_back_to_grid_only_on_unreadable_alarm(
        self, session: ReolinkSession, device: FakeDevice
    ) -> None:
        device.queue("GetMdAlarm", httpx.Response(200, content=b"<html>oops</html>"))

        await set_motion_zone(session, 1, GridArea(width=2, height=1, bits="01"))

        assert device.params("SetMdAlarm") == [
            {
                "MdAlarm": {
                    "channel": 1,
                    "scope": {"width": 2, "height": 1, "cols": 2, "rows": 1, "table": "01"},
                    "table": "01",
                }
            }
        ]

    @pytest.mark.asyncio
    async def test_device_error_on_read_is_raised(
        self, session: ReolinkSession, device: FakeDevice
    ) -> None:
        device.queue("GetMdAlarm", err(-9, "not support"))

        with pytest.raises(DeviceError):
            await set_motion_zone(session, 0, GridArea(width=1, height=1, bits="1"))

        assert device.calls("SetMdAlarm") == []

    @pytest.mark.asyncio
    async def test_get_motion_zone(self, session: ReolinkSession, device: FakeDevice) -> None:
        device.queue("GetMdAlarm", ok({"MdAlarm": {"scope": {"cols": 3, "rows": 2, "table": "101010"}}}))

        area = await get_motion_zone(session, 0)

        assert area == GridArea(width=3, height=2, bits="101010")

    @pytest.mark.asyncio
    async def test_get_motion_zone_inconsistent_grid(
        self, session: ReolinkSession, device: FakeDevice
    ) -> None:
        device.queue("GetMdAlarm", ok({"MdAlarm": {"scope": {"cols": 3, "rows": 2, "table": "10"}}}))

        with pytest.raises(InvalidResponseError):
            await get_motion_zone(session, 0)


class TestAiZone:
    """Tests for per-class AI grids."""

    @pytest.mark.asyncio
    async def test_set_ai_zone_payload(self, session: ReolinkSession, device: FakeDevice) -> None:
        await set_ai_zone(session, 0, "vehicle", GridArea(width=2, height=2, bits="0110"))

        assert device.params("SetAlarmArea") == [
            {"channel": 0, "ai_type": "vehicle", "width": 2, "height": 2, "area": "0110"}
        ]

    @pytest.mark.asyncio
    async def test_unknown_ai_type(self, session: ReolinkSession, device: FakeDevice) -> None:
        with pytest.raises(ReolinkValidationError, match="Unknown AI type"):
            await set_ai_zone(session, 0, "bicycle", GridArea(width=1, height=1, bits="1"))

        assert device.requests == []

    @pytest.mark.asyncio
    async def test_set_ai_zone_mismatch(self, session: ReolinkSession, device: FakeDevice) -> None:
        with pytest.raises(GridSizeMismatchError):
            await set_ai_zone(session, 0, AiType.PEOPLE, GridArea(width=3, height=3, bits="1"))

    @pytest.mark.asyncio
    async def test_get_ai_zone(self, session: ReolinkSession, device: FakeDevice) -> None:
        device.queue("GetAiAlarm", ok({"AiAlarm": {"scope": {"width": 2, "height": 1, "area": "11"}}}))

        area = await get_ai_zone(session, 0, AiType.DOG_CAT)

        assert area.bits == "11"
        assert device.params("GetAiAlarm") == [{"channel": 0, "ai_type": "dog_cat"}]


class TestMasks:
    """Tests for privacy masks."""

    @pytest.mark.asyncio
    async def test_set_masks(self, session: ReolinkSession, device: FakeDevice) -> None:
        await set_masks(session, 0, [_mask()])

        mask = device.params("SetMask")[0]["Mask"]
        assert mask["enable"] == 1
        assert mask["area"] == [
            {"screen": {"width": 640, "height": 360}, "block": {"x": 10, "y": 20, "width": 100, "height": 50}}
        ]

    @pytest.mark.asyncio
    async def test_empty_list_disables(self, session: ReolinkSession, device: FakeDevice) -> None:
        await set_masks(session, 0, [])
        assert device.params("SetMask") == [{"Mask": {"channel": 0, "enable": 0, "area": []}}]

    @pytest.mark.asyncio
    async def test_get_masks(self, session: ReolinkSession, device: FakeDevice) -> None:
        device.queue("GetMask", ok({"Mask": {"enable": 1, "area": [_mask().model_dump()]}}))

        assert await get_masks(session, 0) == [_mask()]


class TestPresetZones:
    """Tests for applying zones after a preset recall."""

    @pytest.mark.asyncio
    async def test_apply_order(self, session: ReolinkSession, device: FakeDevice) -> None:
        """Test that masks go first, then motion, then AI grids in enum order."""
        zones = PresetZones(
            md=GridArea(width=2, height=1, bits="10"),
            ai={
                AiType.VEHICLE: GridArea(width=1, height=1, bits="1"),
                AiType.PEOPLE: GridArea(width=1, height=1, bits="0"),
            },
            masks=[],
        )

        await apply_zones_for_preset(session, 0, 4, zones)

        assert device.command_log[1:] == [
            "SetMask",
            "GetMdAlarm",
            "SetMdAlarm",
            "SetAlarmArea",
            "SetAlarmArea",
        ]
        assert [p["ai_type"] for p in device.params("SetAlarmArea")] == ["people", "vehicle"]

    @pytest.mark.asyncio
    async def test_masks_untouched_when_none(
        self, session: ReolinkSession, device: FakeDevice
    ) -> None:
        zones = PresetZones(md=GridArea(width=1, height=1, bits="1"))

        await apply_zones_for_preset(session, 0, 1, zones)

        assert device.calls("SetMask") == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "zones",
        [
            PresetZones(md=GridArea(width=4, height=2, bits="1010"), masks=[_mask()]),
            PresetZones(
                md=GridArea(width=1, height=1, bits="1"),
                ai={AiType.DOG_CAT: GridArea(width=2, height=2, bits="1")},
                masks=[_mask()],
            ),
        ],
    )
    async def test_bad_grid_rejected_before_any_request(
        self, session: ReolinkSession, device: FakeDevice, zones: PresetZones
    ) -> None:
        with pytest.raises(GridSizeMismatchError):
            await apply_zones_for_preset(session, 0, 1, zones)

        assert device.requests == []

    @pytest.mark.asyncio
    async def test_goto_with_sync_provider(self, session: ReolinkSession, device: FakeDevice) -> None:
        stored = {2: PresetZones(ai={AiType.FACE: GridArea(width=1, height=1, bits="1")})}

        applied = await goto_preset_with_zones(session, 0, 2, stored.get, NO_SETTLE)

        assert applied is stored[2]
        assert device.command_log[1:] == ["PtzCtrl", "SetAlarmArea"]
        assert device.params("PtzCtrl") == [{"channel": 0, "op": "ToPos", "id": 2}]

    @pytest.mark.asyncio
    async def test_goto_with_async_provider(self, session: ReolinkSession, device: FakeDevice) -> None:
        seen: list[int] = []

        async def provider(preset_id: int) -> PresetZones | None:
            seen.append(preset_id)
            return PresetZones(masks=[_mask()])

        applied = await goto_preset_with_zones(session, 0, 7, provider, NO_SETTLE)

        assert seen == [7]
        assert applied is not None
        assert device.command_log[1:] == ["PtzCtrl", "SetMask"]

    @pytest.mark.asyncio
    async def test_goto_without_zones(self, session: ReolinkSession, device: FakeDevice) -> None:
        applied = await goto_preset_with_zones(session, 0, 3, lambda _: None, NO_SETTLE)

        assert applied is None
        assert device.command_log[1:] == ["PtzCtrl"]

    @pytest.mark.asyncio
    async def test_goto_with_empty_bundle(self, session: ReolinkSession, device: FakeDevice) -> None:
        applied = await goto_preset_with_zones(session, 0, 3, lambda _: PresetZones(), NO_SETTLE)

        assert applied is None
        assert device.command_log[1:] == ["PtzCtrl"]


class TestSupportedAiTypes:
    """Tests for AI support detection."""

    @pytest.mark.asyncio
    async def test_from_channel_ability(self, session: ReolinkSession, device: FakeDevice) -> None:
        device.queue(
            "GetAbility",
            ok(
                {
                    "Ability": {
                        "abilityChn": [
                            {
                                "supportAi": {
                                    "people": {"permit": 1},
                                    "vehicle": {"permit": 0},
                                    "dog_cat": {"permit": 1},
                                }
                            }
                        ]
                    }
                }
            ),
        )

        types = await get_supported_ai_types(session, 0)

        assert types == [AiType.PEOPLE, AiType.DOG_CAT]
        assert device.params("GetAbility") == [{"User": {"userName": "admin"}}]

    @pytest.mark.asyncio
    async def test_falls_back_to_ai_cfg(self, session: ReolinkSession, device: FakeDevice) -> None:
        device.queue("GetAbility", err(-9, "not support"))
        device.queue("GetAiCfg", ok({"AiCfg": {"ability": {"people": 1, "face": 1}}}))

        types = await get_supported_ai_types(session, 0)

        assert types == [AiType.PEOPLE, AiType.FACE]
        assert device.calls("GetAiCfg")[0].body[0]["action"] == 1

    @pytest.mark.asyncio
    async def test_both_lookups_fail(self, session: ReolinkSession, device: FakeDevice) -> None:
        device.queue("GetAbility", err(-9, "not support"))
        device.queue("GetAiCfg", err(-9, "not support"))

        assert await get_supported_ai_types(session, 0) == []

    @pytest.mark.asyncio
    async def test_cache_skips_second_lookup(
        self, session: ReolinkSession, device: FakeDevice
    ) -> None:
        device.queue(
            "GetAbility",
            ok({"Ability": {"abilityChn": [{"supportAi": {"vehicle": {"permit": 1}}}]}}),
        )
        cache = ZoneAbilityCache()

        first = await get_supported_ai_types(session, 0, cache)
        second = await get_supported_ai_types(session, 0, cache)

        assert first == second == [AiType.VEHICLE]
        assert len(device.calls("GetAbility")) == 1
