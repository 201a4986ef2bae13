import asyncio
import json

import pytest

from zway_pump.api import CharacteristicKind, PumpOutletAPI


def drain(queue):
    events = []
    while not queue.empty():
        events.append(json.loads(queue.get_nowait()[len("data: "):]))
    return events


def test_changes_are_broadcast_once():
    sink = PumpOutletAPI()
    queue = asyncio.Queue()
    sink.event_listeners.append(queue)

    sink.create_accessory(7, "Well pump")
    assert sink.update_characteristic(7, CharacteristicKind.LEAK_DETECTED, True) is True
    assert sink.update_characteristic(7, CharacteristicKind.LEAK_DETECTED, True) is False

    events = drain(queue)
    assert [e["type"] for e in events] == ["accessory_added", "characteristic"]
    assert events[1]["characteristic"] == "leak_detected"
    assert events[1]["value"] is True


def test_update_for_unknown_accessory_is_ignored():
    sink = PumpOutletAPI()
    assert sink.update_characteristic(3, CharacteristicKind.ACTIVE, True) is False


def test_destroy_removes_characteristics():
    sink = PumpOutletAPI()
    sink.create_accessory(7, "Well pump")
    sink.destroy_accessory(7)
    assert sink.get_accessory(7) is None
    assert sink.list_accessories() == []


def test_set_without_handler():
    sink = PumpOutletAPI()
    sink.create_accessory(7, "Well pump")
    with pytest.raises(RuntimeError):
        asyncio.run(sink.set_characteristic(7, CharacteristicKind.ACTIVE, True))
    with pytest.raises(KeyError):
        asyncio.run(sink.set_characteristic(8, CharacteristicKind.ACTIVE, True))


def test_cleanup_signals_listeners():
    sink = PumpOutletAPI()
    queue = asyncio.Queue()
    sink.event_listeners.append(queue)
    asyncio.run(sink.cleanup())
    assert queue.get_nowait() is None
    assert sink.event_listeners == []
