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
"""Z-Way Pump Outlet - bridge Z-Wave pump outlets from a Z-Way controller."""

from .__version__ import __version__

__author__ = "Z-Way Pump Outlet Contributors"
__description__ = "Bridge Z-Wave pump outlets from a Z-Way controller"

from .errors import AuthError, MalformedResponseError, StaleQueryError, TransportError, ZWayError
from .models import CommandClassId, DeviceSnapshot, SnapshotSet
from .client import ZWayClient, SessionState, CommandAction
from .ledger import PendingQueryLedger, QueryKey
from .reconcile import Delta, reconcile, discover, is_supported_device
from .state import AccessoryStateManager, TrackedAccessory
from .telemetry import Telemetry, interpret
from .api import PumpOutletAPI, CharacteristicKind
from .config import PumpOutletConfig, ConfigError
from .engine import PumpOutletEngine

__all__ = [
    "__version__",
    "ZWayError",
    "TransportError",
    "AuthError",
    "StaleQueryError",
    "MalformedResponseError",
    "CommandClassId",
    "DeviceSnapshot",
    "SnapshotSet",
    "ZWayClient",
    "SessionState",
    "CommandAction",
    "PendingQueryLedger",
    "QueryKey",
    "Delta",
    "reconcile",
    "discover",
    "is_supported_device",
    "AccessoryStateManager",
    "TrackedAccessory",
    "Telemetry",
    "interpret",
    "PumpOutletAPI",
    "CharacteristicKind",
    "PumpOutletConfig",
    "ConfigError",
    "PumpOutletEngine",
]
