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

"""FastAPI route handlers for the pump outlet bridge."""

import asyncio
import logging
import os
import time
from typing import Optional

from fastapi import FastAPI, HTTPException, Depends, status
from fastapi.responses import StreamingResponse
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from .__version__ import __version__
from .api import CharacteristicKind

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)

# Multiple keys can be specified, space-separated
API_KEYS_RAW = os.environ.get('ZWAY_PUMP_API_KEYS', '').strip()
API_KEYS = set(key.strip() for key in API_KEYS_RAW.split() if key.strip()) if API_KEYS_RAW else set()


def get_api_key(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> Optional[str]:
    """
    Validate API key from Authorization header.

    If API keys are configured (ZWAY_PUMP_API_KEYS environment variable), checks
    the Bearer token. Otherwise authentication is disabled.

    Raises:
        HTTPException 401 if authentication fails
    """
    if not API_KEYS:
        return None

    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if credentials.credentials not in API_KEYS:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return credentials.credentials


def create_app():
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Z-Way Pump Outlet",
        description="Pump outlet accessories bridged from a Z-Way controller",
        version=__version__
    )

    if API_KEYS:
        logger.info(f"API authentication enabled ({len(API_KEYS)} key(s) configured)")
    else:
        logger.info("API authentication disabled (no ZWAY_PUMP_API_KEYS configured)")

    return app


def register_routes(app: FastAPI, get_api):
    """Register all API routes.

    Args:
        app: FastAPI application instance
        get_api: Callable that returns the current PumpOutletAPI instance
    """

    def require_api():
        api = get_api()
        if not api:
            raise HTTPException(status_code=503, detail="Bridge not initialized")
        return api

    @app.get("/status", tags=["Status"])
    async def get_status(api_key: Optional[str] = Depends(get_api_key)):
        """Get overall bridge status."""
        api = require_api()

        result = {
            "version": __version__,
            "accessories": len(api.accessories),
            "active_listeners": len(api.event_listeners),
            "last_update": api.last_update,
        }
        if api.engine is not None:
            result |= api.engine.status()
        return result

    @app.get("/accessories", tags=["Accessories"])
    async def get_accessories(api_key: Optional[str] = Depends(get_api_key)):
        """Get all pump outlet accessories and their characteristics."""
        api = require_api()
        return {"accessories": api.list_accessories()}

    @app.get("/accessories/{accessory_id}", tags=["Accessories"])
    async def get_accessory(accessory_id: int, api_key: Optional[str] = Depends(get_api_key)):
        api = require_api()
        accessory = api.get_accessory(accessory_id)
        if accessory is None:
            raise HTTPException(status_code=404, detail=f"Accessory {accessory_id} not found")
        return {"accessory": accessory}

    @app.post("/accessories/{accessory_id}/set", tags=["Accessories"])
    async def set_accessory(accessory_id: int, active: bool, api_key: Optional[str] = Depends(get_api_key)):
        """
        Turn a pump outlet on or off.

        Args:
            accessory_id: Z-Wave node id of the outlet
            active: True to open the valve (switch the outlet on)

        Notes:
            - The command is relayed fire-and-forget; `dispatched` is False if
              the controller could not be reached. The next poll reports the
              state the controller actually has.
        """
        api = require_api()
        try:
            dispatched = await api.set_characteristic(accessory_id, CharacteristicKind.ACTIVE, active)
        except KeyError:
            raise HTTPException(status_code=404, detail=f"Accessory {accessory_id} not found")

        return {
            "success": True,
            "id": accessory_id,
            "active": active,
            "dispatched": bool(dispatched),
        }

    @app.post("/identify/{accessory_id}", tags=["Accessories"])
    async def identify(accessory_id: int, api_key: Optional[str] = Depends(get_api_key)):
        api = require_api()
        try:
            api.identify(accessory_id)
        except KeyError:
            raise HTTPException(status_code=404, detail=f"Accessory {accessory_id} not found")
        return {"success": True, "id": accessory_id}

    @app.get("/events", tags=["Events"])
    async def get_events(api_key: Optional[str] = Depends(get_api_key)):
        """
        Server-Sent Events (SSE) endpoint for real-time updates.

        Event Types:

        1. Accessory added / removed:
           {"type": "accessory_added", "id": 7, "name": "Well pump", "timestamp": ...}
           {"type": "accessory_removed", "id": 7, "timestamp": ...}

        2. Characteristic change:
           {"type": "characteristic", "id": 7, "characteristic": "leak_detected",
            "value": true, "timestamp": ...}

        3. Keepalive (every 90 seconds):
           {"type": "keepalive", "timestamp": ...}
        """
        api = require_api()

        async def event_publisher():
            client_queue = asyncio.Queue()
            api.event_listeners.append(client_queue)
            keepalive_interval = 90

            try:
                while True:
                    try:
                        event_data = await asyncio.wait_for(client_queue.get(), timeout=keepalive_interval)
                        if event_data is None:
                            logger.debug("SSE stream received shutdown signal")
                            break
                        yield event_data
                    except asyncio.TimeoutError:
                        yield f'data: {{"type": "keepalive", "timestamp": {time.time()}}}\n\n'
            finally:
                if client_queue in api.event_listeners:
                    api.event_listeners.remove(client_queue)

        return StreamingResponse(
            event_publisher(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
        )
