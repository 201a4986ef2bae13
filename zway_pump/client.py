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

"""Z-Way controller REST client.

Session Management:
-------------------
- Z-Way authenticates with a ``ZWAYSession`` token, sent both as a cookie and
  as a header on every request.
- The token is persisted in the state database and reused across restarts.
  On first use a persisted token is validated with a cheap status call.
- If there is no usable token we log in with the configured credentials and
  then ask the controller to make the token non-expiring. That last step is
  best-effort: without it the session still works, it just expires later.
- A request rejected with 401/403 triggers exactly one re-login and replay.
- A rejected login is remembered: until reset_auth() is called every request
  fails with AuthError without contacting the controller again.

Endpoints:
----------
- ZAutomation/api/v1/{status,login,profiles/...}: session handling
- ZWaveAPI/Data/0: full device snapshot
- ZWave.zway/Run/devices[n].instances[i].commandClasses[c].Set(v)/Get(p)
"""

import asyncio
import json
import logging
import sqlite3
from enum import Enum
from typing import Any, Dict, Optional

import aiohttp
from yarl import URL

from .__version__ import __version__
from .database import SESSION_SCHEMA
from .errors import AuthError, MalformedResponseError, TransportError, ZWayError
from .models import SnapshotSet

logger = logging.getLogger('zway-pump')

SESSION_COOKIE = 'ZWAYSession'


class SessionState(Enum):
    NO_SESSION = "no_session"
    VALIDATING = "validating"
    LOGGING_IN = "logging_in"
    VALID = "valid"


class CommandAction:
    """Builds the action suffix of a ZWave.zway Run request."""

    @staticmethod
    def set(value: int) -> str:
        return f"Set({int(value)})"

    @staticmethod
    def get(param: Any) -> str:
        return f"Get({param})"


def _short(token: Optional[str]) -> str:
    return f"{token[:6]}..." if token else "<none>"


class ZWayClient:
    """Client for the Z-Way HTTP API with persisted session handling."""

    ZAUTOMATION_BASE = "ZAutomation/api/v1"
    ZWAVE_API_BASE = "ZWaveAPI"
    ZWAVE_RUN_BASE = "ZWave.zway"
    USER_AGENT = f"zway-pump/{__version__}"

    def __init__(self, host: str, user: str, password: str, db_path: str,
                 http: Optional[aiohttp.ClientSession] = None, timeout: float = 30):
        """Initialize the Z-Way client.

        Args:
            host: Base URL of the controller, e.g. ``http://192.168.1.10:8083/``
            user: Z-Way login
            password: Z-Way password (may be empty once a non-expiring session exists)
            db_path: Path to SQLite database for session storage
            http: Optional externally managed aiohttp session
            timeout: Total timeout for each request in seconds
        """
        self.host = host if host.endswith('/') else host + '/'
        self.user = user
        self.password = password
        self.db_path = db_path
        self.timeout = timeout

        self.session_token: Optional[str] = None
        self.state = SessionState.NO_SESSION

        self._http = http
        self._owns_http = http is None
        self._auth_lock = asyncio.Lock()
        self._persisted_checked = False
        self._login_error: Optional[AuthError] = None

        self._ensure_schema()

    # ------------------------------------------------------------------
    # Session persistence
    # ------------------------------------------------------------------

    def _ensure_schema(self):
        conn = sqlite3.connect(self.db_path)
        conn.executescript(SESSION_SCHEMA)
        conn.commit()
        conn.close()

    def _load_session(self) -> Optional[str]:
        """Load the persisted session token, treating anything odd as no session."""
        try:
            conn = sqlite3.connect(self.db_path)
            try:
                row = conn.execute("SELECT session FROM zway_session WHERE id = 1").fetchone()
            finally:
                conn.close()
        except sqlite3.Error as e:
            logger.warning(f"Could not read persisted Z-Way session: {e}")
            return None

        if not row or not isinstance(row[0], str) or not row[0].strip():
            return None
        return row[0].strip()

    def _save_session(self, token: str):
        conn = sqlite3.connect(self.db_path)
        conn.execute("""
            INSERT OR REPLACE INTO zway_session (id, session, host, updated_at)
            VALUES (1, ?, ?, CURRENT_TIMESTAMP)
        """, (token, self.host))
        conn.commit()
        conn.close()
        logger.info(f"Saved Z-Way session {_short(token)}")

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    def _get_http(self) -> aiohttp.ClientSession:
        if self._http is None or self._http.closed:
            # Cookies are sent by hand, a jar would leak stale sessions between logins
            self._http = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                cookie_jar=aiohttp.DummyCookieJar(),
            )
            self._owns_http = True
        return self._http

    def _url(self, base: str, path: str) -> URL:
        # Z-Way expects the brackets of Run paths unescaped
        return URL(f"{self.host}{base}/{path}", encoded=True)

    def _headers(self, token: Optional[str] = None) -> Dict[str, str]:
        headers = {
            'Content-Type': 'application/json',
            'User-Agent': self.USER_AGENT,
        }
        if token:
            headers['Cookie'] = f"{SESSION_COOKIE}={token}"
            headers[SESSION_COOKIE] = token
        return headers

    async def close(self):
        if self._http is not None and self._owns_http and not self._http.closed:
            await self._http.close()

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    def is_authenticated(self) -> bool:
        return self.state == SessionState.VALID and self.session_token is not None

    def reset_auth(self):
        """Allow new login attempts after a rejected login, e.g. once credentials changed."""
        if self._login_error is not None:
            logger.info("Login failure cleared, the next request will log in again")
        self._login_error = None

    async def ensure_session(self):
        """Make sure a usable session exists, logging in if required.

        Raises:
            AuthError: if the controller rejects the credentials
            TransportError: if the controller cannot be reached during login
        """
        if self.is_authenticated():
            return

        async with self._auth_lock:
            if self.is_authenticated():
                return

            if not self._persisted_checked:
                self._persisted_checked = True
                logger.info("No requests have been made so far, looking for a session")
                token = self._load_session()
                if token:
                    logger.info(f"Got persisted session {_short(token)}, testing access")
                    self.state = SessionState.VALIDATING
                    if await self._validate_session(token):
                        self.session_token = token
                        self.state = SessionState.VALID
                        logger.info("Success, session is valid")
                        return
                    self.state = SessionState.NO_SESSION

            await self._login()

    async def _validate_session(self, token: str) -> bool:
        http = self._get_http()
        try:
            async with http.get(self._url(self.ZAUTOMATION_BASE, 'status'),
                                headers=self._headers(token)) as resp:
                if resp.status < 300:
                    return True
                logger.info(f"Persisted session rejected: HTTP {resp.status}")
                return False
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"Could not validate persisted session: {e}")
            return False

    async def _login(self):
        """Log in with the configured credentials and persist the session."""
        if self._login_error is not None:
            raise AuthError(f"Not logging in again after earlier failure ({self._login_error}), "
                            "fix the credentials and restart", status=self._login_error.status)

        logger.info("No session exists or session is invalid, trying to log in")
        self.state = SessionState.LOGGING_IN
        self.session_token = None
        http = self._get_http()

        try:
            async with http.post(
                self._url(self.ZAUTOMATION_BASE, 'login'),
                data=json.dumps({'login': self.user, 'password': self.password}),
                headers=self._headers(),
            ) as resp:
                logger.info(f"Got a login response {resp.status} ({resp.reason})")

                if resp.status != 200:
                    self.state = SessionState.NO_SESSION
                    logger.error("=" * 70)
                    logger.error(f"Z-Way login failed: HTTP {resp.status}")
                    logger.error("Please check the configured user and password")
                    logger.error("=" * 70)
                    self._login_error = AuthError(f"Login rejected: HTTP {resp.status}", status=resp.status)
                    raise self._login_error

                cookie = resp.cookies.get(SESSION_COOKIE)
                try:
                    body = await resp.json(content_type=None)
                except ValueError:
                    body = None
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self.state = SessionState.NO_SESSION
            raise TransportError(f"Login request failed: {e}") from e

        data = (body or {}).get('data') if isinstance(body, dict) else None
        data = data if isinstance(data, dict) else {}

        token = cookie.value if cookie is not None else data.get('sid')
        if not token:
            self.state = SessionState.NO_SESSION
            self._login_error = AuthError("Login succeeded but no session was returned", status=200)
            raise self._login_error

        self.session_token = token
        self.state = SessionState.VALID
        self._save_session(token)

        await self._extend_session(data.get('id'), token)

    async def _extend_session(self, user_id: Optional[int], token: str):
        """Ask Z-Way to mark the session token as non-expiring (best-effort)."""
        if user_id is None:
            logger.warning("Login response did not include a profile id, cannot make session non-expiring")
            return

        logger.info("Trying to set session as non-expiring...")
        http = self._get_http()
        try:
            async with http.put(
                self._url(self.ZAUTOMATION_BASE, f"profiles/{user_id}/token/{_short(token)}"),
                data=json.dumps({}),
                headers=self._headers(token),
            ) as resp:
                if resp.status < 300:
                    logger.info("Session is now non-expiring")
                    logger.info("If you would like, you can remove your password from the configuration")
                    return
                logger.warning(f"Unable to set session as non-expiring: HTTP {resp.status}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"Unable to set session as non-expiring: {e}")
        logger.warning("The bridge may experience delays when it needs to re-authenticate")

    async def _relogin(self, rejected_token: Optional[str]):
        async with self._auth_lock:
            # Another request may already have logged in again
            if self.is_authenticated() and self.session_token != rejected_token:
                return
            self.state = SessionState.NO_SESSION
            await self._login()

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def _request(self, method: str, base: str, path: str,
                       body: Optional[Dict[str, Any]] = None, expect_json: bool = True) -> Any:
        """Issue an authenticated request, re-logging in once on rejection."""
        await self.ensure_session()
        http = self._get_http()
        url = self._url(base, path)

        for attempt in range(2):
            token = self.session_token
            try:
                async with http.request(method, url, data=json.dumps(body or {}),
                                        headers=self._headers(token)) as resp:
                    if resp.status in (401, 403):
                        if attempt == 0:
                            logger.warning(f"Session {_short(token)} rejected (HTTP {resp.status}), logging in again")
                            await self._relogin(token)
                            continue
                        raise AuthError(f"{method} {base}/{path} still rejected after re-login", status=resp.status)

                    if resp.status >= 400:
                        text = await resp.text()
                        raise TransportError(f"{method} {base}/{path} failed: HTTP {resp.status} - {text[:200]}")

                    if not expect_json:
                        return await resp.text()

                    try:
                        return await resp.json(content_type=None)
                    except ValueError as e:
                        raise MalformedResponseError(f"{base}/{path} did not return JSON: {e}") from e
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                raise TransportError(f"{method} {base}/{path} failed: {e}") from e

        raise AuthError(f"{method} {base}/{path} could not be authenticated")

    async def fetch_snapshot(self) -> SnapshotSet:
        """Fetch the full device snapshot from the controller.

        Raises:
            TransportError: on network failure
            AuthError: if re-authentication also fails
            MalformedResponseError: if the payload is not a snapshot
        """
        payload = await self._request('GET', self.ZWAVE_API_BASE, 'Data/0')
        snapshot = SnapshotSet.from_json(payload)
        for node_id, error in snapshot.malformed.items():
            logger.warning(f"Skipping malformed device: {error}")
        return snapshot

    async def run_command(self, device_id: int, instance: int, command_class: int, action: str) -> bool:
        """Run a command class action on a device.

        Fire-and-forget: failures are logged and reported through the return
        value, never raised. The poll loop will retry if state does not converge.
        """
        path = f"Run/devices[{device_id}].instances[{instance}].commandClasses[{int(command_class)}].{action}"
        try:
            await self._request('POST', self.ZWAVE_RUN_BASE, path, expect_json=False)
            logger.debug(f"Dispatched {path}")
            return True
        except ZWayError as e:
            logger.warning(f"Command {path} failed: {e}")
            return False
