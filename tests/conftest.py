import pytest

from zway_pump.models import SnapshotSet

ELEXA = "Elexa Consumer Products Inc."
BINARY_POWER_SWITCH = "Binary Power Switch"


def make_device(name="Well pump", vendor=ELEXA, device_type=BINARY_POWER_SWITCH,
                level=255, watts=2.0, meter_time=100):
    classes = {
        "37": {"data": {"level": {"value": level, "updateTime": 90}}},
    }
    if watts is not None:
        classes["50"] = {"data": {"2": {"val": {"value": watts, "updateTime": meter_time}}}}
    return {
        "data": {
            "givenName": {"value": name},
            "vendorString": {"value": vendor},
            "deviceTypeString": {"value": device_type},
        },
        "instances": {"0": {"commandClasses": classes}},
    }


def make_payload(devices, update_time=1000):
    return {
        "controller": {"data": {"vendor": {"value": "RaZberry"}}},
        "devices": {str(node_id): raw for node_id, raw in devices.items()},
        "updateTime": update_time,
    }


class FakeClient:
    """Stands in for ZWayClient; replays payloads and records commands."""

    def __init__(self, *payloads):
        self.payloads = list(payloads)
        self.commands = []
        self.fetches = 0
        self.closed = False
        self.state = _State()

    def push(self, payload):
        self.payloads.append(payload)

    async def fetch_snapshot(self):
        self.fetches += 1
        payload = self.payloads.pop(0) if len(self.payloads) > 1 else self.payloads[0]
        if isinstance(payload, Exception):
            raise payload
        return SnapshotSet.from_json(payload)

    async def run_command(self, device_id, instance, command_class, action):
        self.commands.append((device_id, instance, command_class, action))
        return True

    async def close(self):
        self.closed = True


class _State:
    value = "valid"


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "zway-pump.db")
