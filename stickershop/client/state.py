"""
Explicit container for the client-side stores.

`start()` and `login()` bind the stores to the signed-in user (or to guest
mode) and open the realtime channel; `logout()` tears all of it down.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, Optional

from websockets.exceptions import WebSocketException

from stickershop.client.admin_import import AdminImportFlow
from stickershop.client.api import ApiClient
from stickershop.client.cart import CartStore
from stickershop.client.chat import ChatStore
from stickershop.client.checkout import CheckoutFlow, PaymentProcessor, StripePaymentProcessor
from stickershop.client.errors import ApiError, AuthRequiredError
from stickershop.client.notify import Notifier
from stickershop.client.realtime import RealtimeChannel
from stickershop.client.storage import LocalStorage

logger = logging.getLogger(__name__)

ChannelFactory = Callable[[int, Optional[str]], RealtimeChannel]


class AppState:
    def __init__(
        self,
        api: Optional[Any] = None,
        storage: Optional[LocalStorage] = None,
        notifier: Optional[Notifier] = None,
        processor: Optional[PaymentProcessor] = None,
        channel_factory: Optional[ChannelFactory] = None,
    ) -> None:
        self.api = api or ApiClient()
        self.notifier = notifier or Notifier()
        self.processor = processor or StripePaymentProcessor()
        self.cart = CartStore(self.api, storage or LocalStorage(), self.notifier)
        self.chat = ChatStore(self.api, self.notifier)
        self.user: Optional[Dict[str, Any]] = None
        self.channel: Optional[RealtimeChannel] = None
        self._channel_factory = channel_factory
        self._channel_task: Optional[asyncio.Task] = None
        self._unsubscribe: Optional[Callable[[], None]] = None

    @property
    def user_id(self) -> Optional[int]:
        return int(self.user["id"]) if self.user else None

    @property
    def is_admin(self) -> bool:
        return bool(self.user and self.user.get("isAdmin"))

    def _default_channel(self, user_id: int, cookie: Optional[str]) -> RealtimeChannel:
        return RealtimeChannel(self.api.ws_url, user_id, cookie)

    # ---------------- lifecycle ----------------

    async def start(self) -> None:
        try:
            user = await self.api.me()
        except ApiError as exc:
            if exc.status != 401:
                raise
            user = None
        await self._bind(user)

    async def login(self, username: str, password: str) -> Dict[str, Any]:
        try:
            user = await self.api.login(username, password)
        except ApiError as exc:
            self.notifier.error(f"Login failed: {exc.message}")
            raise
        await self.teardown()
        await self._bind(user)
        return user

    async def logout(self) -> None:
        try:
            await self.api.logout()
        finally:
            await self.teardown()
            await self._bind(None)

    async def teardown(self) -> None:
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None
        if self.channel is not None:
            await self.channel.close()
            self.channel = None
        if self._channel_task is not None:
            self._channel_task.cancel()
            try:
                await self._channel_task
            except asyncio.CancelledError:
                pass
            self._channel_task = None
        self.chat.reset()

    async def _bind(self, user: Optional[Dict[str, Any]]) -> None:
        self.user = user
        self.cart.set_user(self.user_id)
        self.chat.set_user(self.user_id)
        logger.info("App state bound to %s", f"user {self.user_id}" if user else "guest")

        try:
            await self.cart.load()
        except ApiError:
            logger.warning("Cart unavailable for %s", f"user {self.user_id}" if user else "guest")
        if self.user_id is None:
            return
        try:
            await self.chat.load_conversations()
        except ApiError:
            logger.warning("Conversations unavailable for user %s", self.user_id)
        await self._open_channel()

    async def _open_channel(self) -> None:
        factory = self._channel_factory or self._default_channel
        channel = factory(self.user_id, self.api.cookie_header())
        unsubscribe = channel.subscribe(self.chat.receive_message)
        try:
            await channel.connect()
        except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
            unsubscribe()
            logger.warning("Realtime channel failed to connect: %s", exc)
            self.notifier.error("Chat is offline. Live messages will not arrive until you sign in again")
            return
        self._unsubscribe = unsubscribe
        self.channel = channel
        self._channel_task = asyncio.create_task(channel.run())

    # ---------------- flows ----------------

    def checkout(self) -> CheckoutFlow:
        return CheckoutFlow(self.api, self.cart, self.processor, self.notifier)

    def admin_import(self) -> AdminImportFlow:
        if not self.is_admin:
            self.notifier.error("Admin access required")
            raise AuthRequiredError("Admin access required")
        return AdminImportFlow(self.api, self.notifier)
