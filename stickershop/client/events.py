from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from stickershop.client.models import ItemId

logger = logging.getLogger(__name__)

QUANTITY_CHANGING = "quantity_changing"
ITEM_REMOVING = "item_removing"
CLEARING = "clearing"


@dataclass(frozen=True)
class PendingChange:
    """Announced before the cart applies it, so summaries can update ahead of the server."""

    kind: str
    item_id: Optional[ItemId] = None
    quantity: Optional[int] = None


Listener = Callable[[PendingChange], None]


class ChangeFeed:
    def __init__(self) -> None:
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def publish(self, change: PendingChange) -> None:
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:
                # listeners never block the mutation
                logger.exception("Pending-change listener failed for %s", change.kind)
