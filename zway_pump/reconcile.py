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

"""Reconcile tracked accessories against devices found on the controller."""

import logging
from typing import Iterable, List, Mapping, NamedTuple, Tuple

from .models import DeviceSnapshot

logger = logging.getLogger(__name__)

# The only hardware profile this bridge drives
SUPPORTED_VENDOR = "Elexa Consumer Products Inc."
SUPPORTED_DEVICE_TYPE = "Binary Power Switch"


class Delta(NamedTuple):
    added: Tuple[int, ...]
    removed: Tuple[int, ...]


def is_supported_device(snapshot: DeviceSnapshot) -> bool:
    return snapshot.vendor == SUPPORTED_VENDOR and snapshot.device_type == SUPPORTED_DEVICE_TYPE


def discover(snapshots: Mapping[int, DeviceSnapshot], ignore: Iterable[int] = ()) -> List[int]:
    """Return ids of eligible pump outlets, in controller order."""
    ignore = set(ignore)
    found = []
    for node_id, device in snapshots.items():
        logger.info(f"Found #{node_id}: {device.given_name} ({device.vendor} {device.device_type})")
        if node_id in ignore:
            logger.info(f"Ignoring #{node_id}")
            continue
        if not is_supported_device(device):
            continue
        logger.info(f"Identified #{node_id} as an outlet to be served by this bridge")
        found.append(node_id)
    return found


def reconcile(tracked_ids: Iterable[int], discovered_ids: Iterable[int],
              ignore: Iterable[int] = (), nuke: bool = False) -> Delta:
    """Order-preserving set difference between tracked and discovered ids.

    ``added`` is discovered minus tracked with ignored ids taken out,
    ``removed`` is tracked minus discovered. In nuke mode discovery is
    bypassed and everything tracked is removed.
    """
    tracked = list(dict.fromkeys(tracked_ids))

    if nuke:
        logger.warning("NUKING all tracked accessories")
        return Delta(added=(), removed=tuple(tracked))

    discovered = list(dict.fromkeys(discovered_ids))
    tracked_set = set(tracked)
    discovered_set = set(discovered)
    ignore = set(ignore)

    added = []
    for node_id in discovered:
        if node_id in tracked_set:
            continue
        if node_id in ignore:
            logger.info(f"Ignoring #{node_id}")
            continue
        added.append(node_id)

    removed = [node_id for node_id in tracked if node_id not in discovered_set]
    return Delta(added=tuple(added), removed=tuple(removed))
