"""Tests for Pydantic models.

This module tests the protocol envelopes and the canonical guard, patrol,
grid and preset models in reolink_control.models.
"""

import pytest
from pydantic import ValidationError

from reolink_control.exceptions import (
    DeviceError,
    GridSizeMismatchError,
    InvalidResponseError,
)
from reolink_control.models import (
    CommandRequest,
    DeviceCapabilities,
    GridArea,
    GuardConfig,
    PatrolConfig,
    PresetInfo,
    PresetZones,
    PtzMoveOptions,
    ResponseEnvelope,
    StreamType,
)


class TestEnvelopes:
    """Tests for request and response envelopes."""

    def test_command_request_defaults(self) -> None:
        request = CommandRequest(cmd="GetDevInfo")
        assert request.model_dump() == {"cmd": "GetDevInfo", "action": 0, "param": {}}

    def test_command_request_action_range(self) -> None:
        with pytest.raises(ValidationError):
            CommandRequest(cmd="GetPtzPreset", action=2)

    def test_success_unwrap(self) -> None:
        envelope = ResponseEnvelope.model_validate({"cmd": "GetDevInfo", "code": 0, "value": {"DevInfo": {}}})
        assert envelope.ok
        assert envelope.unwrap("GetDevInfo") == {"DevInfo": {}}

    def test_error_unwrap(self) -> None:
        """Test that vendor code and detail are preserved."""
        envelope = ResponseEnvelope.model_validate(
            {"cmd": "SetPtzGuard", "code": 1, "error": {"rspCode": -4, "detail": "param error"}}
        )

        with pytest.raises(DeviceError) as exc_info:
            envelope.unwrap("Fallback")

        assert exc_info.value.rsp_code == -4
        assert exc_info.value.detail == "param error"
        assert str(exc_info.value) == "SetPtzGuard ERROR: param error (-4)"

    def test_error_without_body(self) -> None:
        error = ResponseEnvelope(code=1).to_error("Snap")
        assert (error.command, error.rsp_code, error.detail) == ("Snap", -1, "Unknown error")


class TestGuardConfig:
    """Tests for guard payload parsing."""

    def test_from_payload(self) -> None:
        guard = GuardConfig.from_payload(1, {"benable": 1, "timeout": 60, "bExistPos": 0})
        assert guard == GuardConfig(
            channel=1, enabled=True, timeout=60, bind_existing_position=False, reported_timeout=60
        )

    def test_other_device_timeout_is_normalized(self) -> None:
        guard = GuardConfig.from_payload(0, {"benable": 1, "timeout": 30})
        assert guard.timeout == 60
        assert guard.reported_timeout == 30

    @pytest.mark.parametrize("payload", [None, {}, {"timeout": 0}, {"timeout": "60"}])
    def test_defaults(self, payload: object) -> None:
        guard = GuardConfig.from_payload(0, payload)
        assert guard.enabled is False
        assert guard.timeout == 60


class TestPatrolConfig:
    """Tests for patrol normalization."""

    def test_from_native(self) -> None:
        patrol = PatrolConfig.from_payload(
            0,
            {"id": 1, "enable": 1, "running": 1, "preset": [{"id": 5, "speed": 10, "dwellTime": 4}]},
        )
        assert patrol.running is True
        assert patrol.to_wire() == {
            "channel": 0,
            "id": 1,
            "enable": 1,
            "preset": [{"id": 5, "speed": 10, "dwellTime": 4}],
        }

    def test_points_keep_order(self) -> None:
        patrol = PatrolConfig.from_payload(
            0, {"points": [{"presetId": 3, "stayTime": 2}, {"presetId": 1, "stayTime": 7}]}
        )
        assert [(w.id, w.speed, w.dwell_time) for w in patrol.waypoints] == [(3, 32, 2), (1, 32, 7)]

    def test_named_route_keeps_name(self) -> None:
        patrol = PatrolConfig.from_payload(0, {"id": 0, "name": "Yard", "preset": []})
        assert patrol.to_wire()["name"] == "Yard"

    def test_route_id_range(self) -> None:
        with pytest.raises(ValidationError):
            PatrolConfig(id=6)

    def test_null_fields_take_defaults(self) -> None:
        patrol = PatrolConfig.from_payload(
            0,
            {
                "id": None,
                "channel": None,
                "preset": [{"id": 1, "speed": None, "dwellTime": None}],
                "points": [],
            },
        )
        assert (patrol.id, patrol.channel) == (0, 0)
        assert [(w.id, w.speed, w.dwell_time) for w in patrol.waypoints] == [(1, 32, 10)]

    @pytest.mark.parametrize(
        "payload",
        [
            {"id": 9, "preset": []},
            {"id": 0, "preset": [{"id": 1, "speed": "fast", "dwellTime": 3}]},
            {"points": [{"presetId": 99, "stayTime": 2}]},
        ],
    )
    def test_malformed_route_is_invalid_response(self, payload: dict) -> None:
        with pytest.raises(InvalidResponseError, match="PtzPatrol"):
            PatrolConfig.from_payload(0, payload)


class TestGridArea:
    """Tests for detection grids."""

    def test_consistent(self) -> None:
        area = GridArea(width=4, height=2, bits="10100101")
        assert area.ensure_consistent() is area
        assert area.cell_count == 8

    def test_mismatch(self) -> None:
        with pytest.raises(GridSizeMismatchError, match="expected 8 cells"):
            GridArea(width=4, height=2, bits="1010").ensure_consistent()

    def test_rejects_non_binary(self) -> None:
        with pytest.raises(ValidationError):
            GridArea(width=1, height=2, bits="12")

    @pytest.mark.parametrize(
        ("width", "height", "bits"),
        [(None, 2, "11"), (2, 2, "111"), (0, 0, ""), (1, 1, 1), (1, 2, "1x")],
    )
    def test_from_device_invalid(self, width: object, height: object, bits: object) -> None:
        with pytest.raises(InvalidResponseError):
            GridArea.from_device(width, height, bits, "GetMdAlarm")


class TestPresetModels:
    """Tests for preset and movement models."""

    def test_preset_name_truncated(self) -> None:
        preset = PresetInfo(id=1, name="x" * 40)
        assert len(preset.name) == 31

    def test_preset_id_range(self) -> None:
        with pytest.raises(ValidationError):
            PresetInfo(id=65)

    @pytest.mark.parametrize(("speed", "expected"), [(None, None), (0, 1), (32, 32), (99, 64)])
    def test_speed_clamp(self, speed: int | None, expected: int | None) -> None:
        assert PtzMoveOptions(speed=speed).clamped_speed == expected

    def test_preset_zones_empty(self) -> None:
        assert PresetZones().is_empty
        assert not PresetZones(masks=[]).is_empty


class TestMisc:
    def test_stream_wire_value(self) -> None:
        assert StreamType.MAIN.wire_value == 0
        assert StreamType("sub").wire_value == 1

    def test_capabilities_supported(self) -> None:
        caps = DeviceCapabilities(ptz=True, recording=True)
        assert caps.supported() == ["ptz", "recording"]
