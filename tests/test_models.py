import pytest

from zway_pump.errors import MalformedResponseError
from zway_pump.models import (
    CommandClassId, DeviceSnapshot, GenericCommandClassData, MeterData, SnapshotSet, SwitchBinaryData,
)

from conftest import make_device, make_payload


def test_device_snapshot_parses_command_classes():
    device = DeviceSnapshot.from_json(7, make_device(name="Well pump", level=255, watts=312.5, meter_time=1234))

    assert device.given_name == "Well pump"
    assert device.vendor == "Elexa Consumer Products Inc."
    assert isinstance(device.switch, SwitchBinaryData)
    assert device.switch.level == 255
    assert device.switch.is_on
    assert isinstance(device.meter, MeterData)
    assert device.meter.watts == 312.5
    assert device.meter.update_time == 1234


def test_boolean_switch_level_is_normalised():
    raw = make_device()
    raw["instances"]["0"]["commandClasses"]["37"]["data"]["level"]["value"] = False
    assert DeviceSnapshot.from_json(7, raw).switch.level == 0


def test_unknown_command_class_is_kept_generic():
    raw = make_device()
    raw["instances"]["0"]["commandClasses"]["112"] = {"data": {"updateTime": 5}}
    device = DeviceSnapshot.from_json(7, raw)
    generic = device.command_class(112)
    assert isinstance(generic, GenericCommandClassData)
    assert generic.raw == {"data": {"updateTime": 5}}


def test_meter_without_watts_scale():
    raw = make_device()
    raw["instances"]["0"]["commandClasses"]["50"] = {"data": {"0": {"val": {"value": 12.1}}}}
    meter = DeviceSnapshot.from_json(7, raw).command_class(CommandClassId.METER)
    assert meter.watts is None


def test_snapshot_set_isolates_malformed_devices():
    payload = make_payload({7: make_device(), 8: "garbage", 9: make_device()}, update_time=4321)
    payload["devices"]["9"]["instances"]["0"]["commandClasses"]["37"]["data"]["level"]["value"] = "on"

    snapshot = SnapshotSet.from_json(payload)

    assert list(snapshot.devices) == [7]
    assert set(snapshot.malformed) == {8, 9}
    assert snapshot.malformed[9].node_id == 9
    assert snapshot.update_time == 4321
    assert snapshot.controller_vendor == "RaZberry"


def test_snapshot_without_devices_is_malformed():
    with pytest.raises(MalformedResponseError):
        SnapshotSet.from_json({"updateTime": 1})
    with pytest.raises(MalformedResponseError):
        SnapshotSet.from_json([1, 2, 3])
