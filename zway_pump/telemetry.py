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

"""Derive pump outlet state from switch and power meter telemetry.

Wattage alone cannot tell "just switched on, meter has not reported yet"
apart from "pump is running dry", so the empty inference is held off for a
debounce window after every commanded power change.
"""

import logging
from typing import NamedTuple

from .errors import MalformedResponseError
from .models import DeviceSnapshot
from .state import TrackedAccessory

logger = logging.getLogger(__name__)

DEBOUNCE_SECONDS = 30


class Telemetry(NamedTuple):
    is_on: bool
    is_empty: bool
    shutoff_required: bool


def interpret(accessory: TrackedAccessory, snapshot: DeviceSnapshot,
              threshold_wattage: float, now: float) -> Telemetry:
    """Compute on/empty state for one accessory.

    Raises:
        MalformedResponseError: if the snapshot has no binary switch class.
    """
    switch = snapshot.switch
    if switch is None:
        raise MalformedResponseError("no binary switch command class on instance 0", snapshot.node_id)

    is_on = switch.is_on
    if not is_on:
        return Telemetry(is_on=False, is_empty=False, shutoff_required=False)

    if now - accessory.last_power_change < DEBOUNCE_SECONDS:
        logger.info(f"#{accessory.node_id}: waiting to evaluate empty state so switch power can propagate")
        is_empty = False
    else:
        meter = snapshot.meter
        if meter is None or meter.watts is None:
            logger.debug(f"#{accessory.node_id}: no wattage reading available")
            is_empty = False
        else:
            is_empty = meter.watts < threshold_wattage

    return Telemetry(is_on=True, is_empty=is_empty, shutoff_required=is_empty)
