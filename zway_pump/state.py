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

"""Tracked accessory state and its persistence."""

import logging
import sqlite3
from dataclasses import dataclass
from typing import Dict, List, Optional

from .database import ensure_schema_and_migrate

logger = logging.getLogger(__name__)


@dataclass
class TrackedAccessory:
    """The bridge's durable view of one pump outlet."""
    node_id: int
    name: str
    is_on: bool = False
    is_empty: bool = False
    last_power_change: float = 0.0  # epoch seconds of the last commanded switch change

    def to_dict(self) -> Dict[str, object]:
        return {
            'id': self.node_id,
            'name': self.name,
            'is_on': self.is_on,
            'is_empty': self.is_empty,
            'last_power_change': self.last_power_change,
        }


class AccessoryStateManager:
    """Keeps tracked accessories in memory, mirrored to sqlite.

    Accessories are restored at startup so that devices that vanished from the
    controller while we were down can be reconciled away.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        self.accessories: Dict[int, TrackedAccessory] = {}

        ensure_schema_and_migrate(self.db_path)
        self._load_accessories()

    def _load_accessories(self):
        conn = sqlite3.connect(self.db_path)
        cursor = conn.execute("""
            SELECT node_id, name, is_on, is_empty, last_power_change
            FROM accessories
            ORDER BY created_at, node_id
        """)
        for node_id, name, is_on, is_empty, last_power_change in cursor.fetchall():
            self.accessories[node_id] = TrackedAccessory(
                node_id=node_id,
                name=name,
                is_on=bool(is_on),
                is_empty=bool(is_empty),
                last_power_change=last_power_change or 0.0,
            )
        conn.close()
        logger.info(f"Loaded {len(self.accessories)} accessories from cache")

    def ids(self) -> List[int]:
        return list(self.accessories)

    def get(self, node_id: int) -> Optional[TrackedAccessory]:
        return self.accessories.get(node_id)

    def __contains__(self, node_id: int) -> bool:
        return node_id in self.accessories

    def __len__(self) -> int:
        return len(self.accessories)

    def add(self, node_id: int, name: str) -> TrackedAccessory:
        if node_id in self.accessories:
            raise ValueError(f"Accessory #{node_id} is already tracked")

        accessory = TrackedAccessory(node_id=node_id, name=name)
        conn = sqlite3.connect(self.db_path)
        conn.execute("""
            INSERT INTO accessories (node_id, name, is_on, is_empty, last_power_change)
            VALUES (?, ?, ?, ?, ?)
        """, (node_id, name, 0, 0, 0.0))
        conn.commit()
        conn.close()

        self.accessories[node_id] = accessory
        logger.info(f"Created accessory #{node_id} ({name})")
        return accessory

    def save(self, accessory: TrackedAccessory):
        """Persist the current state of an accessory."""
        conn = sqlite3.connect(self.db_path)
        conn.execute("""
            UPDATE accessories
            SET name = ?, is_on = ?, is_empty = ?, last_power_change = ?, updated_at = CURRENT_TIMESTAMP
            WHERE node_id = ?
        """, (accessory.name, int(accessory.is_on), int(accessory.is_empty),
              accessory.last_power_change, accessory.node_id))
        conn.commit()
        conn.close()

    def remove(self, node_id: int) -> Optional[TrackedAccessory]:
        accessory = self.accessories.pop(node_id, None)
        conn = sqlite3.connect(self.db_path)
        conn.execute("DELETE FROM accessories WHERE node_id = ?", (node_id,))
        conn.commit()
        conn.close()
        return accessory

    def clear(self):
        conn = sqlite3.connect(self.db_path)
        conn.execute("DELETE FROM accessories")
        conn.commit()
        conn.close()
        self.accessories.clear()
