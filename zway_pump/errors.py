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

"""Error taxonomy for the Z-Way pump outlet bridge."""

from typing import Optional


class ZWayError(Exception):
    """Base class for all bridge errors."""


class TransportError(ZWayError):
    """Network or connection failure talking to the controller.

    Logged by the poll loop; the cycle is aborted and retried on the next tick.
    """


class AuthError(ZWayError):
    """Login was rejected or re-authentication failed.

    No session is established until the configuration is corrected.
    """

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class StaleQueryError(ZWayError):
    """A pending controller query has waited too long without an update.

    Soft condition: it is formatted into a retry log line and never raised
    out of the ledger.
    """

    def __init__(self, key, age: float):
        super().__init__(f"Query {key} has been waiting {age:.0f}s with no update, retrying")
        self.key = key
        self.age = age


class MalformedResponseError(ZWayError):
    """Unexpected snapshot shape, scoped to one device where possible."""

    def __init__(self, message: str, node_id: Optional[int] = None):
        if node_id is not None:
            message = f"#{node_id}: {message}"
        super().__init__(message)
        self.node_id = node_id
