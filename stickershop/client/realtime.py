"""
Client side of the `/ws` chat channel.

The socket is not authenticated by the transport: after connecting, the
client announces its user id and the server checks it against the session
cookie sent with the handshake.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, List, Optional

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed

from stickershop.client.models import Message
from stickershop.constants import MESSAGE_TEXT

logger = logging.getLogger(__name__)

MessageListener = Callable[[Message], None]


class RealtimeChannel:
    def __init__(self, url: str, user_id: int, cookie: Optional[str] = None, connector: Callable[..., Any] = connect) -> None:
        self.url = url
        self.user_id = user_id
        self.cookie = cookie
        self.authenticated = False
        self._connector = connector
        self._ws: Optional[ClientConnection] = None
        self._listeners: List[MessageListener] = []

    def subscribe(self, listener: MessageListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def connect(self) -> None:
        headers = {"Cookie": self.cookie} if self.cookie else None
        self._ws = await self._connector(self.url, additional_headers=headers)
        logger.info("WebSocket connected to %s", self.url)
        await self._send({"type": "authenticate", "data": {"userId": self.user_id}})

    async def _send(self, frame: Dict[str, Any]) -> None:
        if self._ws is None:
            raise RuntimeError("Realtime channel is not connected")
        await self._ws.send(json.dumps(frame))

    async def send_chat_message(
        self,
        conversation_id: int,
        content: str,
        message_type: str = MESSAGE_TEXT,
        image_url: Optional[str] = None,
    ) -> None:
        await self._send(
            {
                "type": "chat_message",
                "data": {
                    "conversationId": conversation_id,
                    "content": content,
                    "messageType": message_type,
                    "imageUrl": image_url,
                },
            }
        )

    def handle_raw(self, raw: Any) -> bool:
        """Dispatches one inbound frame. Malformed frames are logged and skipped."""
        try:
            frame = json.loads(raw)
            kind = frame["type"]
            data = frame.get("data") or {}
            if not isinstance(data, dict):
                raise ValueError("frame data must be an object")
        except (ValueError, TypeError, KeyError, AttributeError) as exc:
            logger.error("Error parsing WebSocket message: %s", exc)
            return False

        if kind == "auth_success":
            self.authenticated = True
            logger.info("WebSocket authenticated as user %s", data.get("userId"))
            return True
        if kind == "error":
            logger.warning("WebSocket error from server: %s", data.get("message"))
            return True
        if kind != "new_message":
            logger.debug("Ignoring WebSocket frame of type %s", kind)
            return False

        try:
            message = Message.from_api(data)
        except (KeyError, TypeError, ValueError) as exc:
            logger.error("Malformed new_message payload: %s", exc)
            return False

        for listener in list(self._listeners):
            listener(message)
        return True

    async def run(self) -> None:
        if self._ws is None:
            raise RuntimeError("Realtime channel is not connected")
        try:
            async for raw in self._ws:
                self.handle_raw(raw)
        except ConnectionClosed as exc:
            logger.info("WebSocket closed: %s", exc)
        finally:
            self.authenticated = False

    async def close(self) -> None:
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
        self.authenticated = False
