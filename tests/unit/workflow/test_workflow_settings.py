"""Unit tests for WorkflowSettings and the typed config helpers."""

from pathlib import Path

from checkpost_verify.camera.types import Facing
from checkpost_verify.core.typed_config import get_bool, get_float, get_int, get_path, get_str
from checkpost_verify.workflow.settings import WorkflowSettings


class TestTypedConfig:

    def test_get_int(self):
        data = {"a": "42", "b": "7.9", "c": "x", "d": True}

        assert get_int(data, "a", 0) == 42
        assert get_int(data, "b", 0) == 7
        assert get_int(data, "c", 5) == 5
        assert get_int(data, "d", 5) == 5
        assert get_int(data, "missing", 3) == 3
        assert get_int(data, "a", 0, max_value=10) == 10

    def test_get_float(self):
        assert get_float({"a": "0.25"}, "a", 1.0) == 0.25
        assert get_float({"a": "-1"}, "a", 1.0, min_value=0.0) == 0.0
        assert get_float({"a": "fast"}, "a", 1.0) == 1.0

    def test_get_str_and_bool(self):
        assert get_str({"a": "  "}, "a", "default") == "default"
        assert get_bool({"a": "Yes"}, "a", False) is True
        assert get_bool({"a": "nope"}, "a", True) is False

    def test_get_path(self):
        assert get_path({"a": "/tmp/x.log"}, "a", None) == Path("/tmp/x.log")
        assert get_path({}, "a", None) is None


class TestWorkflowSettings:

    def test_defaults(self):
        settings = WorkflowSettings()

        assert settings.scan_constraints.resolution == (640, 480)
        assert settings.capture_constraints.resolution == (1920, 1080)
        assert settings.scan_window.width == 250
        assert settings.confirm_delay == 1.0

    def test_from_mapping(self):
        settings = WorkflowSettings.from_mapping(
            {
                "preferred_facing": "USER",
                "scan_width": "800",
                "scan_height": "600",
                "decode_rate_hz": "5",
                "confirm_delay": "0.25",
                "jpeg_quality": "150",
            }
        )

        assert settings.preferred_facing is Facing.USER
        assert settings.scan_resolution == (800, 600)
        assert settings.decode_rate_hz == 5.0
        assert settings.confirm_delay == 0.25
        assert settings.jpeg_quality == 100

    def test_malformed_values_keep_defaults(self):
        settings = WorkflowSettings.from_mapping(
            {"preferred_facing": "sideways", "capture_width": "wide", "capture_flash_delay": "soon"}
        )

        assert settings == WorkflowSettings()

    def test_round_trip_through_dict(self):
        settings = WorkflowSettings(preferred_facing=Facing.USER, jpeg_quality=60)

        assert WorkflowSettings.from_mapping(settings.to_dict()) == settings
