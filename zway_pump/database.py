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

"""Database schema for the Z-Way pump outlet bridge."""

import sqlite3

DB_SCHEMA = """
CREATE TABLE IF NOT EXISTS accessories (
    node_id INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    is_on BOOLEAN DEFAULT 0,
    is_empty BOOLEAN DEFAULT 0,
    last_power_change REAL DEFAULT 0,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
"""

SESSION_SCHEMA = """
CREATE TABLE IF NOT EXISTS zway_session (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    session TEXT,
    host TEXT,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
"""

# Supported schema version for this codebase
SUPPORTED_SCHEMA_VERSION = 2


def ensure_schema_and_migrate(db_path: str):
    """Ensure all schemas exist and run DB migrations using PRAGMA user_version.

    Migration to user_version 2 adds the ``last_power_change`` column to
    accessory tables created by 0.1 releases, which did not persist the
    debounce timestamp across restarts.
    """
    conn = sqlite3.connect(db_path)
    try:
        cur_v = conn.execute("PRAGMA user_version").fetchone()
        current_version = cur_v[0] if cur_v else 0
        if current_version > SUPPORTED_SCHEMA_VERSION:
            raise RuntimeError(f"Database schema version ({current_version}) is newer than supported ({SUPPORTED_SCHEMA_VERSION})")

        conn.executescript(DB_SCHEMA)
        conn.executescript(SESSION_SCHEMA)

        if current_version < 2:
            try:
                conn.execute("BEGIN IMMEDIATE")
                cols = [row[1] for row in conn.execute("PRAGMA table_info(accessories)").fetchall()]
                if 'last_power_change' not in cols:
                    conn.execute("ALTER TABLE accessories ADD COLUMN last_power_change REAL DEFAULT 0")
                conn.execute("UPDATE accessories SET last_power_change = 0 WHERE last_power_change IS NULL")
                conn.execute("PRAGMA user_version = 2")
                conn.commit()
            except Exception:
                conn.rollback()
                raise
    finally:
        conn.close()
