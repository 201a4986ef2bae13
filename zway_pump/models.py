#
# Copyright 2025 The TadoLocal and AmpScm contributors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#

"""Snapshot data model for the Z-Way ZWaveAPI/Data payload.

The controller reports every value as a small record of the form
``{"value": ..., "updateTime": ...}``. Command class payloads are parsed into
typed variants keyed by command class id; anything we do not understand is
kept as a :class:`GenericCommandClassData` so a new class never breaks a poll.
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, Optional, Type

from .errors import MalformedResponseError


class CommandClassId(IntEnum):
    """Z-Wave command class identifiers this bridge understands."""
    SWITCH_BINARY = 37
    METER = 50


# Meter scale index reporting instantaneous power in watts
METER_SCALE_WATTS = 2


def _value(record: Any, default: Any = None) -> Any:
    """Return ``record['value']`` from a Z-Way data record."""
    if isinstance(record, dict):
        return record.get('value', default)
    return default


def _update_time(record: Any) -> float:
    if isinstance(record, dict):
        try:
            return float(record.get('updateTime') or 0)
        except (TypeError, ValueError):
            return 0.0
    return 0.0


@dataclass(frozen=True)
class CommandClassData:
    """Base for parsed command class data."""
    class_id: int
    update_time: float = 0.0

    @classmethod
    def from_json(cls, class_id: int, raw: Dict[str, Any]) -> 'CommandClassData':
        raise NotImplementedError


@dataclass(frozen=True)
class GenericCommandClassData(CommandClassData):
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_json(cls, class_id: int, raw: Dict[str, Any]) -> 'GenericCommandClassData':
        return cls(class_id=class_id, update_time=_update_time(raw), raw=raw)


@dataclass(frozen=True)
class SwitchBinaryData(CommandClassData):
    level: int = 0

    @property
    def is_on(self) -> bool:
        return bool(self.level)

    @classmethod
    def from_json(cls, class_id: int, raw: Dict[str, Any]) -> 'SwitchBinaryData':
        data = raw.get('data')
        if not isinstance(data, dict) or 'level' not in data:
            raise MalformedResponseError("switch binary class has no level")
        level = _value(data['level'])
        # Z-Way reports the level either as 0/255 or as a boolean
        if isinstance(level, bool):
            level = 255 if level else 0
        try:
            level = int(level or 0)
        except (TypeError, ValueError):
            raise MalformedResponseError(f"switch binary level {level!r} is not numeric")
        return cls(class_id=class_id, update_time=_update_time(data['level']), level=level)


@dataclass(frozen=True)
class MeterData(CommandClassData):
    watts: Optional[float] = None

    @classmethod
    def from_json(cls, class_id: int, raw: Dict[str, Any]) -> 'MeterData':
        data = raw.get('data')
        if not isinstance(data, dict):
            raise MalformedResponseError("meter class has no data")
        scale = data.get(str(METER_SCALE_WATTS))
        if not isinstance(scale, dict):
            # Meter without a watts scale (e.g. kWh only) is not an error
            return cls(class_id=class_id)
        val = scale.get('val')
        watts = _value(val)
        try:
            watts = float(watts) if watts is not None else None
        except (TypeError, ValueError):
            raise MalformedResponseError(f"meter reading {watts!r} is not numeric")
        return cls(class_id=class_id, update_time=_update_time(val), watts=watts)


# command class id -> variant used to parse it
COMMAND_CLASS_REGISTRY: Dict[int, Type[CommandClassData]] = {
    CommandClassId.SWITCH_BINARY: SwitchBinaryData,
    CommandClassId.METER: MeterData,
}


def parse_command_class(class_id: int, raw: Dict[str, Any]) -> CommandClassData:
    variant = COMMAND_CLASS_REGISTRY.get(class_id, GenericCommandClassData)
    return variant.from_json(class_id, raw)


@dataclass(frozen=True)
class DeviceSnapshot:
    """Immutable view of one physical device at one point in time."""
    node_id: int
    given_name: str
    vendor: str
    device_type: str
    instances: Dict[int, Dict[int, CommandClassData]] = field(default_factory=dict)

    def command_class(self, class_id: int, instance: int = 0) -> Optional[CommandClassData]:
        return self.instances.get(instance, {}).get(int(class_id))

    @property
    def switch(self) -> Optional[SwitchBinaryData]:
        cc = self.command_class(CommandClassId.SWITCH_BINARY)
        return cc if isinstance(cc, SwitchBinaryData) else None

    @property
    def meter(self) -> Optional[MeterData]:
        cc = self.command_class(CommandClassId.METER)
        return cc if isinstance(cc, MeterData) else None

    @classmethod
    def from_json(cls, node_id: int, raw: Any) -> 'DeviceSnapshot':
        """Parse one entry of the ``devices`` mapping.

        Raises:
            MalformedResponseError: if the device record is not shaped like a
                Z-Way device.
        """
        if not isinstance(raw, dict) or not isinstance(raw.get('data'), dict):
            raise MalformedResponseError("device record has no data", node_id)

        data = raw['data']
        instances: Dict[int, Dict[int, CommandClassData]] = {}
        for instance_key, instance in (raw.get('instances') or {}).items():
            try:
                instance_id = int(instance_key)
            except (TypeError, ValueError):
                raise MalformedResponseError(f"instance key {instance_key!r} is not numeric", node_id)
            classes: Dict[int, CommandClassData] = {}
            for class_key, class_raw in ((instance or {}).get('commandClasses') or {}).items():
                try:
                    class_id = int(class_key)
                except (TypeError, ValueError):
                    raise MalformedResponseError(f"command class key {class_key!r} is not numeric", node_id)
                if not isinstance(class_raw, dict):
                    raise MalformedResponseError(f"command class {class_id} is not an object", node_id)
                try:
                    classes[class_id] = parse_command_class(class_id, class_raw)
                except MalformedResponseError as e:
                    raise MalformedResponseError(str(e), node_id) from e
            instances[instance_id] = classes

        return cls(
            node_id=node_id,
            given_name=str(_value(data.get('givenName'), '') or ''),
            vendor=str(_value(data.get('vendorString'), '') or ''),
            device_type=str(_value(data.get('deviceTypeString'), '') or ''),
            instances=instances,
        )


@dataclass
class SnapshotSet:
    """Everything one ``ZWaveAPI/Data/0`` fetch returned."""
    devices: Dict[int, DeviceSnapshot]
    update_time: float
    controller_vendor: Optional[str] = None
    malformed: Dict[int, MalformedResponseError] = field(default_factory=dict)

    @classmethod
    def from_json(cls, payload: Any) -> 'SnapshotSet':
        if not isinstance(payload, dict) or not isinstance(payload.get('devices'), dict):
            raise MalformedResponseError("snapshot has no devices mapping")

        devices: Dict[int, DeviceSnapshot] = {}
        malformed: Dict[int, MalformedResponseError] = {}
        for node_key, raw in payload['devices'].items():
            try:
                node_id = int(node_key)
            except (TypeError, ValueError):
                continue
            try:
                devices[node_id] = DeviceSnapshot.from_json(node_id, raw)
            except MalformedResponseError as e:
                malformed[node_id] = e

        controller = payload.get('controller') or {}
        vendor = _value((controller.get('data') or {}).get('vendor')) if isinstance(controller, dict) else None

        try:
            update_time = float(payload.get('updateTime') or 0)
        except (TypeError, ValueError):
            update_time = 0.0

        return cls(devices=devices, update_time=update_time,
                   controller_vendor=vendor, malformed=malformed)
