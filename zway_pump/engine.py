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

"""State-synchronization engine and poll scheduler.

Poll Strategy:
==============
- One poll task awaits a full cycle (fetch, reconcile, query, interpret,
  shutoff) and only then sleeps POLL_DELAY before the next one, so slow
  controller responses never cause overlapping cycles.
- Explicit Get() queries for devices listed in ``to_poll`` are held back for
  the first ANTI_STARTUP_FLOOD_COUNT cycles so passive device reports can
  catch up; after that ``num_polls`` is parked at STEADY_STATE_POLLS.
- Queries are deduplicated through the pending query ledger, which also
  retries queries the controller silently dropped.
- No error escapes a cycle; the loop reschedules itself regardless so the
  bridge recovers once the controller is reachable again.
"""

import asyncio
import logging
import time
from typing import Callable, Dict, List, Optional, Tuple

from .api import CharacteristicKind, PumpOutletAPI
from .client import CommandAction, ZWayClient
from .config import PumpOutletConfig
from .errors import AuthError, MalformedResponseError, TransportError, ZWayError
from .ledger import PendingQueryLedger, QueryKey
from .models import METER_SCALE_WATTS, CommandClassId, DeviceSnapshot, SnapshotSet
from .reconcile import Delta, discover, reconcile
from .state import AccessoryStateManager
from .telemetry import interpret

logger = logging.getLogger(__name__)

ANTI_STARTUP_FLOOD_COUNT = 120
STEADY_STATE_POLLS = 999
POLL_DELAY = 0.5
DEFAULT_NAME = "Pump"

SWITCH_ON = 255
SWITCH_OFF = 0


class PumpOutletEngine:
    """Owns the client, tracked state, ledger and sink for one controller."""

    def __init__(self, config: PumpOutletConfig, client: ZWayClient,
                 state: AccessoryStateManager, sink: PumpOutletAPI,
                 ledger: Optional[PendingQueryLedger] = None,
                 clock: Callable[[], float] = time.time,
                 poll_delay: float = POLL_DELAY):
        self.config = config
        self.client = client
        self.state = state
        self.sink = sink
        self.ledger = ledger or PendingQueryLedger()
        self.clock = clock
        self.poll_delay = poll_delay

        self.snapshots: Dict[int, DeviceSnapshot] = {}
        self.num_polls = 0
        self.discovered = False
        self.last_poll: Optional[float] = None
        self.last_error: Optional[str] = None

        self._poll_task: Optional[asyncio.Task] = None

        sink.on_set = self.handle_set
        sink.engine = self

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def start(self):
        """Restore accessories, run discovery and start the poll loop."""
        for accessory in self.state.accessories.values():
            self.sink.create_accessory(accessory.node_id, accessory.name)

        await self.initial_contact()

        self._poll_task = asyncio.create_task(self._poll_loop())
        logger.info("Poll loop started")

    async def initial_contact(self, snapshot: Optional[SnapshotSet] = None) -> bool:
        """Enumerate devices once and reconcile them against tracked accessories.

        Args:
            snapshot: Already fetched snapshot to discover from, fetched if omitted

        Returns:
            True if discovery completed, False if it must be retried
        """
        if snapshot is None:
            logger.info("Sending initial request to enumerate devices...")
            try:
                snapshot = await self.client.fetch_snapshot()
            except ZWayError as e:
                self.last_error = str(e)
                logger.error(f"Initial device enumeration failed: {e}")
                return False

        if snapshot.controller_vendor:
            logger.info(f"Your controller appears to be a {snapshot.controller_vendor}!")

        discovered = discover(snapshot.devices, self.config.ignore)
        for node_id in discovered:
            self.snapshots[node_id] = snapshot.devices[node_id]

        delta = reconcile(self.state.ids(), discovered, self.config.ignore, nuke=self.config.nuke)
        self.apply_delta(delta)
        self.discovered = True

        await self.dispatch_shutoffs(self.update_values(self.clock()))
        return True

    def apply_delta(self, delta: Delta):
        for node_id in delta.added:
            snapshot = self.snapshots.get(node_id)
            name = snapshot.given_name if snapshot else ""
            if not name:
                logger.warning(f"Device #{node_id} does not have a name set in Z-Way, defaulting to {DEFAULT_NAME}")
                name = DEFAULT_NAME
            logger.info(f"Creating accessory for outlet #{node_id}")
            self.state.add(node_id, name)
            self.sink.create_accessory(node_id, name)

        for node_id in delta.removed:
            logger.info(f"Pump #{node_id} removed")
            self.sink.destroy_accessory(node_id)
            self.state.remove(node_id)
            self.snapshots.pop(node_id, None)
            self.ledger.evict_device(node_id)

        self.ledger.prune(self.state.ids())

    # ------------------------------------------------------------------
    # Poll loop
    # ------------------------------------------------------------------

    async def _poll_loop(self):
        while True:
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.last_error = str(e)
                logger.exception(f"Unexpected error in poll cycle: {e}")
            await asyncio.sleep(self.poll_delay)

    def _advance_poll_count(self):
        if self.num_polls < ANTI_STARTUP_FLOOD_COUNT:
            self.num_polls += 1
        if self.num_polls == ANTI_STARTUP_FLOOD_COUNT:
            logger.info("Startup anti-flood is finished")
            self.num_polls = STEADY_STATE_POLLS

    def in_anti_flood_window(self) -> bool:
        return 1 < self.num_polls < ANTI_STARTUP_FLOOD_COUNT

    async def poll_once(self):
        """Run one full poll cycle."""
        self._advance_poll_count()

        try:
            snapshot = await self.client.fetch_snapshot()
        except TransportError as e:
            self.last_error = str(e)
            logger.error(f"Poll failed, controller unreachable: {e}")
            return
        except AuthError as e:
            if str(e) != self.last_error:
                logger.error(f"Poll failed, not authenticated: {e}")
            else:
                logger.debug(f"Poll failed, still not authenticated: {e}")
            self.last_error = str(e)
            return
        except MalformedResponseError as e:
            self.last_error = str(e)
            logger.error(f"Poll failed, unexpected snapshot: {e}")
            return

        self.last_poll = self.clock()
        self.last_error = None

        if not self.discovered:
            await self.initial_contact(snapshot)

        # Malformed devices are still reported, only devices gone from both maps are removed
        reported = list(snapshot.devices) + list(snapshot.malformed)
        vanished = reconcile(self.state.ids(), reported).removed
        if vanished:
            logger.warning(f"Devices no longer reported by the controller: {list(vanished)}")
            self.apply_delta(Delta(added=(), removed=vanished))

        for node_id in self.state.ids():
            device = snapshot.devices.get(node_id)
            if device is None:
                logger.warning(f"Keeping previous state for #{node_id}: {snapshot.malformed[node_id]}")
                continue
            self.snapshots[node_id] = device

        for key, request_time in self.build_queries():
            if self.in_anti_flood_window():
                continue
            if not self.ledger.should_dispatch(key, request_time, snapshot.update_time):
                continue
            logger.info(f"Querying {key}")
            await self.client.run_command(key.device, key.instance, key.command_class,
                                          CommandAction.get(key.param))

        await self.dispatch_shutoffs(self.update_values(self.clock()))

    def build_queries(self) -> List[Tuple[QueryKey, float]]:
        """Candidate meter refresh queries for devices configured for active polling."""
        queries = []
        for node_id in self.state.ids():
            if node_id not in self.config.to_poll:
                continue
            snapshot = self.snapshots.get(node_id)
            if snapshot is None:
                continue
            logger.warning(f"#{node_id} is actively polled; use the lifeline group and/or "
                           "update parameter 2 to increase the reporting delta instead of polling")
            meter = snapshot.meter
            request_time = meter.update_time if meter else 0.0
            key = QueryKey(node_id, 0, int(CommandClassId.METER), str(METER_SCALE_WATTS))
            queries.append((key, request_time))
        return queries

    # ------------------------------------------------------------------
    # Derived state
    # ------------------------------------------------------------------

    def update_values(self, now: float) -> List[int]:
        """Recompute derived state for every accessory and push it to the sink.

        Returns:
            Node ids whose pumps must be shut off
        """
        shutoffs = []
        for accessory in list(self.state.accessories.values()):
            snapshot = self.snapshots.get(accessory.node_id)
            if snapshot is None:
                continue
            try:
                telemetry = interpret(accessory, snapshot, self.config.threshold_wattage, now)
            except MalformedResponseError as e:
                logger.warning(f"Cannot interpret telemetry: {e}")
                continue

            changed = (accessory.is_on, accessory.is_empty) != (telemetry.is_on, telemetry.is_empty)
            accessory.is_on = telemetry.is_on
            accessory.is_empty = telemetry.is_empty

            self.sink.update_characteristic(accessory.node_id, CharacteristicKind.ACTIVE, accessory.is_on)
            self.sink.update_characteristic(accessory.node_id, CharacteristicKind.IN_USE, accessory.is_on)
            self.sink.update_characteristic(accessory.node_id, CharacteristicKind.LEAK_DETECTED, accessory.is_empty)

            if telemetry.shutoff_required:
                logger.warning(f"Shutting off #{accessory.node_id}, tank appears empty")
                accessory.last_power_change = now
                shutoffs.append(accessory.node_id)
                changed = True

            if changed:
                self.state.save(accessory)

        return shutoffs

    async def dispatch_shutoffs(self, node_ids: List[int]):
        for node_id in node_ids:
            await self.client.run_command(node_id, 0, int(CommandClassId.SWITCH_BINARY),
                                          CommandAction.set(SWITCH_OFF))

    # ------------------------------------------------------------------
    # Commands from the sink
    # ------------------------------------------------------------------

    async def handle_set(self, node_id: int, kind: CharacteristicKind, value) -> bool:
        """Relay a user-initiated valve change to the controller."""
        accessory = self.state.get(node_id)
        if accessory is None:
            raise KeyError(node_id)
        if kind != CharacteristicKind.ACTIVE:
            raise ValueError(f"Characteristic {kind.value} is read-only")

        on = bool(value)
        logger.info(f"Setting #{node_id} to {'on' if on else 'off'}")
        accessory.last_power_change = self.clock()
        accessory.is_on = on
        self.state.save(accessory)
        self.sink.update_characteristic(node_id, CharacteristicKind.ACTIVE, on)
        self.sink.update_characteristic(node_id, CharacteristicKind.IN_USE, on)

        return await self.client.run_command(node_id, 0, int(CommandClassId.SWITCH_BINARY),
                                             CommandAction.set(SWITCH_ON if on else SWITCH_OFF))

    # ------------------------------------------------------------------
    # Shutdown / status
    # ------------------------------------------------------------------

    async def stop(self):
        if self._poll_task and not self._poll_task.done():
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            logger.info("Stopped poll loop")
        await self.client.close()

    def status(self) -> Dict[str, object]:
        return {
            'session': self.client.state.value,
            'num_polls': self.num_polls,
            'anti_flood_active': self.in_anti_flood_window(),
            'tracked_accessories': len(self.state),
            'pending_queries': len(self.ledger),
            'last_poll': self.last_poll,
            'last_error': self.last_error,
        }
