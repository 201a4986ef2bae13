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

"""Accessory sink: publishes pump outlets as valve + leak sensor accessories."""

import asyncio
import json
import logging
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

logger = logging.getLogger('zway-pump')


class CharacteristicKind(str, Enum):
    """Characteristics exposed per accessory.

    ACTIVE, IN_USE and VALVE_TYPE belong to the valve service, LEAK_DETECTED
    to the leak sensor service (asserted when the tank is empty).
    """
    ACTIVE = "active"
    IN_USE = "in_use"
    VALVE_TYPE = "valve_type"
    LEAK_DETECTED = "leak_detected"


# Generic valve
VALVE_TYPE_GENERIC = 0

SetHandler = Callable[[int, CharacteristicKind, Any], Awaitable[Any]]


class PumpOutletAPI:
    """In-process accessory registry that streams changes to SSE clients."""

    def __init__(self):
        self.accessories: Dict[int, Dict[str, Any]] = {}
        self.characteristics: Dict[int, Dict[CharacteristicKind, Any]] = {}
        self.event_listeners: List[asyncio.Queue] = []
        self.on_set: Optional[SetHandler] = None
        self.engine = None
        self.last_update: Optional[float] = None

    def create_accessory(self, node_id: int, display_name: str):
        self.accessories[node_id] = {
            'id': node_id,
            'name': display_name,
            'services': ['valve', 'leak_sensor'],
        }
        self.characteristics[node_id] = {
            CharacteristicKind.ACTIVE: False,
            CharacteristicKind.IN_USE: False,
            CharacteristicKind.VALVE_TYPE: VALVE_TYPE_GENERIC,
            CharacteristicKind.LEAK_DETECTED: False,
        }
        logger.info(f"Configuring accessory {display_name} with node ID {node_id}")
        self._publish({'type': 'accessory_added', 'id': node_id, 'name': display_name})

    def destroy_accessory(self, node_id: int):
        if self.accessories.pop(node_id, None) is None:
            logger.debug(f"Accessory #{node_id} was not registered")
        self.characteristics.pop(node_id, None)
        logger.info(f"Pump #{node_id} removed")
        self._publish({'type': 'accessory_removed', 'id': node_id})

    def update_characteristic(self, node_id: int, kind: CharacteristicKind, value: Any) -> bool:
        """Set a characteristic value. Returns True if the value changed."""
        chars = self.characteristics.get(node_id)
        if chars is None:
            logger.warning(f"Update for unknown accessory #{node_id} ignored")
            return False
        if chars.get(kind) == value:
            return False

        chars[kind] = value
        self.last_update = time.time()
        self._publish({
            'type': 'characteristic',
            'id': node_id,
            'characteristic': kind.value,
            'value': value,
        })
        return True

    def get_accessory(self, node_id: int) -> Optional[Dict[str, Any]]:
        accessory = self.accessories.get(node_id)
        if accessory is None:
            return None
        chars = self.characteristics.get(node_id, {})
        return accessory | {'characteristics': {kind.value: value for kind, value in chars.items()}}

    def list_accessories(self) -> List[Dict[str, Any]]:
        return [self.get_accessory(node_id) for node_id in self.accessories]

    async def set_characteristic(self, node_id: int, kind: CharacteristicKind, value: Any):
        """Inbound set from a client; relayed to the registered handler."""
        if node_id not in self.accessories:
            raise KeyError(node_id)
        if self.on_set is None:
            raise RuntimeError("No set handler registered")
        return await self.on_set(node_id, kind, value)

    def identify(self, node_id: int):
        if node_id not in self.accessories:
            raise KeyError(node_id)
        logger.info(f"#{node_id} identified!")

    def _publish(self, event: Dict[str, Any]):
        event = event | {'timestamp': time.time()}
        message = f"data: {json.dumps(event)}\n\n"
        for listener in list(self.event_listeners):
            try:
                listener.put_nowait(message)
            except asyncio.QueueFull:
                logger.warning("Dropping event for slow SSE listener")

    async def cleanup(self):
        """Close all event listener queues."""
        if self.event_listeners:
            logger.info(f"Closing {len(self.event_listeners)} event listener queues")
            for queue in self.event_listeners:
                try:
                    queue.put_nowait(None)
                except asyncio.QueueFull:
                    logger.debug("Event listener queue full during shutdown")
            self.event_listeners.clear()
