import pytest

from zway_pump.errors import MalformedResponseError
from zway_pump.models import DeviceSnapshot
from zway_pump.state import TrackedAccessory
from zway_pump.telemetry import DEBOUNCE_SECONDS, interpret

from conftest import make_device

NOW = 1_700_000_000.0


def snapshot(**kwargs):
    return DeviceSnapshot.from_json(7, make_device(**kwargs))


def test_switch_off_is_never_empty():
    accessory = TrackedAccessory(7, "Pump", last_power_change=NOW - 3600)
    for watts in (0.0, 2.0, 500.0, None):
        result = interpret(accessory, snapshot(level=0, watts=watts), 5, NOW)
        assert result.is_on is False
        assert result.is_empty is False
        assert result.shutoff_required is False


def test_debounce_window_suppresses_empty():
    accessory = TrackedAccessory(7, "Pump", last_power_change=NOW - 10)
    for watts in (0.0, 2.0, 100.0):
        result = interpret(accessory, snapshot(level=255, watts=watts), 5, NOW)
        assert result.is_on is True
        assert result.is_empty is False
        assert result.shutoff_required is False


def test_low_draw_after_debounce_requires_shutoff():
    accessory = TrackedAccessory(7, "Pump", last_power_change=NOW - 40)
    result = interpret(accessory, snapshot(level=255, watts=2.0), 5, NOW)
    assert result.is_on is True
    assert result.is_empty is True
    assert result.shutoff_required is True


def test_normal_draw_is_not_empty():
    accessory = TrackedAccessory(7, "Pump", last_power_change=NOW - 40)
    result = interpret(accessory, snapshot(level=255, watts=350.0), 5, NOW)
    assert result == (True, False, False)


def test_debounce_boundary():
    accessory = TrackedAccessory(7, "Pump", last_power_change=NOW - DEBOUNCE_SECONDS)
    assert interpret(accessory, snapshot(level=255, watts=1.0), 5, NOW).is_empty is True


def test_missing_meter_is_not_empty():
    accessory = TrackedAccessory(7, "Pump")
    result = interpret(accessory, snapshot(level=255, watts=None), 5, NOW)
    assert result == (True, False, False)


def test_missing_switch_is_malformed():
    raw = make_device()
    del raw["instances"]["0"]["commandClasses"]["37"]
    with pytest.raises(MalformedResponseError):
        interpret(TrackedAccessory(7, "Pump"), DeviceSnapshot.from_json(7, raw), 5, NOW)
