"""
Shopping cart for both sides of the login boundary.

Signed in, the server copy is authoritative and the local list is a cache
refreshed from every response. As a guest, the whole cart lives in local
storage under one key and is rewritten after each mutation.

Every mutation bumps a generation counter; a load that finishes after a
newer load or mutation started is dropped instead of overwriting newer state.
"""
from __future__ import annotations

import logging
import uuid
from typing import Any, Callable, Dict, List, Optional

from stickershop.client.errors import ApiError
from stickershop.client.events import CLEARING, ITEM_REMOVING, QUANTITY_CHANGING, ChangeFeed, Listener, PendingChange
from stickershop.client.models import CartItem, CartSummary, ItemId, Product
from stickershop.client.notify import Notifier
from stickershop.client.storage import LocalStorage
from stickershop.constants import GUEST_CART_KEY
from stickershop.services import pricing
from stickershop.utils.validators import require_positive_int

logger = logging.getLogger(__name__)


def _temp_id() -> str:
    return f"local-{uuid.uuid4().hex[:12]}"


class CartStore:
    def __init__(
        self,
        api: Any,
        storage: LocalStorage,
        notifier: Notifier,
        user_id: Optional[int] = None,
    ) -> None:
        self.api = api
        self.storage = storage
        self.notifier = notifier
        self.user_id = user_id
        self.items: List[CartItem] = []
        self.loading = False
        self.new_item_id: Optional[ItemId] = None
        self._generation = 0
        self._loading_gen = 0
        self._changes = ChangeFeed()

    @property
    def authenticated(self) -> bool:
        return self.user_id is not None

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        return self._changes.subscribe(listener)

    def set_user(self, user_id: Optional[int]) -> None:
        """Switches mode; the caller reloads afterwards."""
        self.user_id = user_id
        self.items = []
        self.new_item_id = None
        self._bump()

    def _bump(self) -> int:
        self._generation += 1
        return self._generation

    # ---------------- guest persistence ----------------

    def _read_local(self) -> List[CartItem]:
        raw = self.storage.get(GUEST_CART_KEY) or []
        items = []
        for entry in raw:
            try:
                items.append(CartItem.from_api(entry))
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping unreadable stored cart entry: %s", exc)
        return items

    def _persist(self) -> None:
        if not self.authenticated:
            self.storage.set(GUEST_CART_KEY, [it.to_api() for it in self.items])

    # ---------------- lookups ----------------

    def find(self, item_id: ItemId) -> Optional[CartItem]:
        return next((it for it in self.items if it.id == item_id), None)

    def _index(self, item_id: ItemId) -> int:
        for i, it in enumerate(self.items):
            if it.id == item_id:
                return i
        raise ValueError(f"Cart item {item_id} not found")

    @property
    def count(self) -> int:
        return sum(it.quantity for it in self.items)

    def summary(self) -> CartSummary:
        return pricing.order_totals(it.line_total for it in self.items)

    def payload(self) -> List[Dict[str, Any]]:
        return [{"productId": it.product_id, "quantity": it.quantity, "options": dict(it.options)} for it in self.items]

    # ---------------- operations ----------------

    async def load(self) -> None:
        gen = self._bump()
        self._loading_gen = gen
        self.loading = True
        try:
            if self.authenticated:
                items = [CartItem.from_api(d) for d in await self.api.get_cart()]
            else:
                items = self._read_local()
        except ApiError as exc:
            self.notifier.error(f"Failed to load cart: {exc.message}")
            raise
        finally:
            if gen == self._loading_gen:
                self.loading = False

        if gen != self._generation:
            logger.info("Discarding stale cart load (generation %s, now %s)", gen, self._generation)
            return
        self.items = items

    async def add(self, product_id: int, quantity: int = 1, options: Optional[Dict[str, Any]] = None) -> CartItem:
        require_positive_int(quantity, "quantity")
        options = dict(options or {})

        if self.authenticated:
            try:
                item = CartItem.from_api(await self.api.add_cart_item(product_id, quantity, options))
            except ApiError as exc:
                self.notifier.error(f"Failed to add item to cart: {exc.message}")
                raise
            self._bump()
            # the server merges equal lines, so the id may already be here
            existing = self.find(item.id)
            if existing:
                self.items[self._index(item.id)] = item
            else:
                self.items.append(item)
        else:
            try:
                product = Product.from_api(await self.api.get_product(product_id))
            except ApiError as exc:
                self.notifier.error(f"Product {product_id} is not available: {exc.message}")
                raise
            self._bump()
            item = next((it for it in self.items if it.same_line(product_id, options)), None)
            if item:
                item.quantity += quantity
            else:
                item = CartItem(id=_temp_id(), product_id=product_id, quantity=quantity, options=options, product=product)
                self.items.append(item)
            self._persist()

        self.new_item_id = item.id
        self.notifier.info("Item added to cart")
        return item

    async def update(self, item_id: ItemId, quantity: int) -> CartItem:
        require_positive_int(quantity, "quantity")
        idx = self._index(item_id)
        self._changes.publish(PendingChange(QUANTITY_CHANGING, item_id, quantity))

        if self.authenticated:
            try:
                fresh = CartItem.from_api(await self.api.update_cart_item(item_id, quantity))
            except ApiError as exc:
                self.notifier.error(f"Failed to update cart: {exc.message}")
                raise
            self._bump()
            # the list may have moved while the request was out
            idx = self._index(item_id)
            self.items[idx] = fresh
            return fresh

        self._bump()
        self.items[idx].quantity = quantity
        self._persist()
        return self.items[idx]

    async def remove(self, item_id: ItemId) -> None:
        """Local removal always happens; a failed server delete is still reported."""
        idx = self._index(item_id)
        self._changes.publish(PendingChange(ITEM_REMOVING, item_id))
        self._bump()
        del self.items[idx]
        if self.new_item_id == item_id:
            self.new_item_id = None

        if not self.authenticated:
            self._persist()
            return
        try:
            await self.api.remove_cart_item(item_id)
        except ApiError as exc:
            self.notifier.error(f"Failed to remove item from cart: {exc.message}")
            raise

    async def clear(self) -> None:
        self._changes.publish(PendingChange(CLEARING))
        if self.authenticated:
            try:
                await self.api.clear_cart()
            except ApiError as exc:
                self.notifier.error(f"Failed to clear cart: {exc.message}")
                raise
        self._bump()
        self.items = []
        self.new_item_id = None
        self._persist()
