"""
OpenAI Realtime WebSocket client.
Opens one dialogue-service connection per call.
"""

import json
import logging
from typing import AsyncIterator, Optional, Union

import websockets
from websockets.asyncio.client import ClientConnection

from .config import RealtimeConfig

logger = logging.getLogger(__name__)


class RealtimeConnection:
    """A single open Realtime socket."""

    def __init__(self, websocket: ClientConnection):
        self.websocket = websocket

    async def send_json(self, message: dict) -> None:
        await self.websocket.send(json.dumps(message))

    async def messages(self) -> AsyncIterator[Union[str, bytes]]:
        """
        Yield raw server events until the socket closes.

        A clean close ends iteration; an abnormal close raises
        ``websockets.exceptions.ConnectionClosedError``.
        """
        async for raw in self.websocket:
            yield raw

    async def close(self) -> None:
        await self.websocket.close()


class RealtimeConnector:
    """Factory for Realtime connections."""

    def __init__(self, config: RealtimeConfig, open_timeout: Optional[float] = 10.0):
        self.config = config
        self.open_timeout = open_timeout

    async def connect(self) -> RealtimeConnection:
        headers = {
            "Authorization": f"Bearer {self.config.api_key}",
            "OpenAI-Beta": "realtime=v1",
        }
        logger.info(f"Connecting to Realtime model {self.config.model}")
        websocket = await websockets.connect(
            self.config.endpoint,
            additional_headers=headers,
            open_timeout=self.open_timeout,
            ping_interval=20,
            ping_timeout=20,
        )
        logger.info("Connected to Realtime API")
        return RealtimeConnection(websocket)
