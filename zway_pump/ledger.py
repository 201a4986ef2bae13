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

"""Ledger of outstanding controller queries."""

import logging
from typing import Dict, Iterable, Iterator, NamedTuple

from .errors import StaleQueryError

logger = logging.getLogger(__name__)


class QueryKey(NamedTuple):
    """Identifies one Get() query against a device command class."""
    device: int
    instance: int
    command_class: int
    param: str

    def __str__(self) -> str:
        return f"devices[{self.device}].instances[{self.instance}].commandClasses[{self.command_class}].Get({self.param})"


class PendingQueryLedger:
    """Tracks when each query was last dispatched.

    A query is held back while an entry for it exists that is at least as new
    as the reading that prompted it, unless that entry has been waiting for
    ``stale_after`` seconds of controller time, in which case it is retried.
    """

    STALE_AFTER = 100

    def __init__(self, stale_after: float = STALE_AFTER):
        self.stale_after = stale_after
        self._pending: Dict[QueryKey, float] = {}

    def should_dispatch(self, key: QueryKey, request_time: float, current_time: float) -> bool:
        recorded = self._pending.get(key)
        if recorded is not None and recorded >= request_time:
            age = current_time - recorded
            if age < self.stale_after:
                return False
            logger.info(str(StaleQueryError(key, age)))

        self._pending[key] = current_time
        return True

    def evict_device(self, device_id: int) -> int:
        """Drop every entry for a device. Returns the number removed."""
        stale = [key for key in self._pending if key.device == device_id]
        for key in stale:
            del self._pending[key]
        if stale:
            logger.debug(f"Evicted {len(stale)} pending queries for #{device_id}")
        return len(stale)

    def prune(self, tracked_ids: Iterable[int]) -> int:
        """Drop entries for devices that are no longer tracked."""
        keep = set(tracked_ids)
        removed = 0
        for device_id in {key.device for key in self._pending if key.device not in keep}:
            removed += self.evict_device(device_id)
        return removed

    def get(self, key: QueryKey):
        return self._pending.get(key)

    def __len__(self) -> int:
        return len(self._pending)

    def __iter__(self) -> Iterator[QueryKey]:
        return iter(self._pending)
