from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Set

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Open sockets per authenticated user id; one user may have several tabs."""

    def __init__(self) -> None:
        self._connections: Dict[int, List[WebSocket]] = {}

    def register(self, user_id: int, websocket: WebSocket) -> None:
        conns = self._connections.setdefault(user_id, [])
        if websocket not in conns:
            conns.append(websocket)
        logger.info("WebSocket authenticated for user %s (%d connections)", user_id, len(conns))

    def unregister(self, user_id: int, websocket: WebSocket) -> None:
        conns = self._connections.get(user_id, [])
        if websocket in conns:
            conns.remove(websocket)
        if not conns:
            self._connections.pop(user_id, None)
            logger.info("Removed all connections for user %s", user_id)

    def connection_count(self, user_id: int) -> int:
        return len(self._connections.get(user_id, []))

    async def send_to_users(self, user_ids: Iterable[int], payload: Dict[str, Any]) -> int:
        sent = 0
        for user_id in set(user_ids):
            for websocket in list(self._connections.get(user_id, [])):
                try:
                    await websocket.send_json(payload)
                    sent += 1
                except Exception as exc:
                    # socket went away between receive loops
                    logger.info("Dropping dead connection for user %s: %s", user_id, exc)
                    self.unregister(user_id, websocket)
        return sent


def recipients_for(conversation: Dict[str, Any], sender: Dict[str, Any], admin_ids: Iterable[int]) -> Set[int]:
    """Sender, the buyer who owns the chat, and the shop admins when a buyer writes."""
    ids = {int(sender["id"])}
    if conversation.get("is_direct_chat"):
        ids.add(int(conversation["user_id"]))
    elif conversation.get("order") and conversation["order"].get("user_id") is not None:
        ids.add(int(conversation["order"]["user_id"]))
    if not sender.get("is_admin"):
        ids.update(int(a) for a in admin_ids)
    return ids


manager = ConnectionManager()
