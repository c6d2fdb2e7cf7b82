"""
Conversation list plus the single active conversation.

Activation only records which id is active. Fetching is a separate step,
`sync_active()`, so activating and loading never feed back into each other.
Responses that land after the active id moved on are dropped.
"""
from __future__ import annotations

import enum
import logging
from typing import Any, List, Optional

from stickershop.client.errors import ApiError, AuthRequiredError, ChatBusyError
from stickershop.client.models import Conversation, Message
from stickershop.client.notify import Notifier
from stickershop.constants import MESSAGE_IMAGE, MESSAGE_TEXT, MESSAGE_TYPES
from stickershop.utils.formatters import truncate
from stickershop.utils.validators import require_text

logger = logging.getLogger(__name__)


class LoadState(str, enum.Enum):
    IDLE = "idle"
    LOADING = "loading"
    LOADED = "loaded"
    FAILED = "failed"


class ChatStore:
    def __init__(self, api: Any, notifier: Notifier, user_id: Optional[int] = None) -> None:
        self.api = api
        self.notifier = notifier
        self.user_id = user_id
        self.reset(keep_user=True)

    def reset(self, keep_user: bool = False) -> None:
        if not keep_user:
            self.user_id = None
        self.conversations: List[Conversation] = []
        self.active_id: Optional[int] = None
        self.active: Optional[Conversation] = None
        self.load_state = LoadState.IDLE
        self.unread_count = 0
        self.sending = False
        self.creating = False
        self.loading_list = False
        self._loading_id: Optional[int] = None
        self._list_generation = 0

    def set_user(self, user_id: Optional[int]) -> None:
        self.reset()
        self.user_id = user_id

    def _require_auth(self, action: str) -> None:
        if self.user_id is None:
            self.notifier.error(f"Please log in to {action}")
            raise AuthRequiredError(f"Login required to {action}")

    def _find(self, conversation_id: int) -> Optional[Conversation]:
        return next((c for c in self.conversations if c.id == conversation_id), None)

    def _count_unread(self) -> int:
        return sum(
            1
            for c in self.conversations
            if c.last_message and not c.last_message.read and c.last_message.user_id != self.user_id
        )

    # ---------------- loading ----------------

    async def load_conversations(self) -> List[Conversation]:
        self._require_auth("view conversations")
        self._list_generation += 1
        gen = self._list_generation
        self.loading_list = True
        try:
            data = await self.api.list_conversations()
        except ApiError as exc:
            self.notifier.error(f"Failed to load conversations: {exc.message}")
            raise
        finally:
            if gen == self._list_generation:
                self.loading_list = False

        if gen != self._list_generation:
            logger.info("Discarding stale conversation list")
            return self.conversations
        self.conversations = [Conversation.from_api(d) for d in data]
        self.unread_count = self._count_unread()
        return self.conversations

    async def load_conversation(self, conversation_id: int) -> Optional[Conversation]:
        """No request when this id is already loading or already shown."""
        if self._loading_id == conversation_id:
            return None
        if self.active is not None and self.active.id == conversation_id:
            return self.active

        self._loading_id = conversation_id
        self.load_state = LoadState.LOADING
        try:
            data = await self.api.get_conversation(conversation_id)
        except ApiError as exc:
            if self._loading_id == conversation_id:
                self._loading_id = None
                self.load_state = LoadState.FAILED
                self.notifier.error(f"Failed to load conversation: {exc.message}")
            raise

        if self._loading_id != conversation_id or self.active_id not in (None, conversation_id):
            logger.info("Discarding conversation %s, active is now %s", conversation_id, self.active_id)
            if self._loading_id == conversation_id:
                # no newer load took over, so the id must be loadable again
                self._loading_id = None
                self.load_state = LoadState.IDLE
            return None

        self._loading_id = None
        conversation = Conversation.from_api(data)
        self.active_id = conversation.id
        self.active = conversation
        self.load_state = LoadState.LOADED
        return conversation

    def activate_conversation(self, conversation_id: Optional[int]) -> bool:
        """Pure state change. Returns False when the id was already active."""
        if conversation_id == self.active_id:
            return False
        self.active_id = conversation_id
        if self.active is not None and self.active.id != conversation_id:
            self.active = None
        self.load_state = LoadState.IDLE
        return True

    async def sync_active(self) -> Optional[Conversation]:
        if self.active_id is None:
            return None
        if self.active is not None and self.active.id == self.active_id:
            return self.active
        return await self.load_conversation(self.active_id)

    # ---------------- mutations ----------------

    async def send_message(
        self,
        conversation_id: int,
        content: str,
        message_type: str = MESSAGE_TEXT,
        image_url: Optional[str] = None,
    ) -> Message:
        self._require_auth("send messages")
        if message_type not in MESSAGE_TYPES:
            raise ValueError(f"Unknown message type: {message_type}")
        if message_type == MESSAGE_IMAGE and not image_url:
            raise ValueError("imageUrl is required for image messages")
        if self.sending:
            raise ChatBusyError("A message is already being sent")

        self.sending = True
        try:
            data = await self.api.post_message(conversation_id, content, message_type, image_url)
        except ApiError as exc:
            self.notifier.error(f"Failed to send message: {exc.message}")
            raise
        finally:
            self.sending = False

        message = Message.from_api(data)
        self._apply(message)
        return message

    async def create_new_conversation(self, subject: str) -> Conversation:
        self._require_auth("start a conversation")
        subject = require_text(subject, "subject")
        if self.creating:
            raise ChatBusyError("A conversation is already being created")

        self.creating = True
        try:
            data = await self.api.create_conversation(subject)
        except ApiError as exc:
            self.notifier.error(f"Failed to create conversation: {exc.message}")
            raise
        finally:
            self.creating = False

        conversation = Conversation.from_api(data)
        self.conversations.insert(0, conversation)
        self.active_id = conversation.id
        self.active = conversation
        self.load_state = LoadState.LOADED
        self.notifier.info("Conversation created")
        return conversation

    # ---------------- realtime ----------------

    def _apply(self, message: Message) -> bool:
        """Adds a message to the active thread and list. False if it was already known."""
        known = False
        if self.active is not None and self.active.id == message.conversation_id:
            if any(m.id == message.id for m in self.active.messages):
                known = True
            else:
                self.active.messages.append(message)
            self.active.last_message = message

        conversation = self._find(message.conversation_id)
        if conversation is not None:
            if conversation.last_message is not None and conversation.last_message.id == message.id:
                known = True
            conversation.last_message = message
            # most recent activity first
            self.conversations.remove(conversation)
            self.conversations.insert(0, conversation)
        return not known

    def receive_message(self, message: Message) -> None:
        """Applies a pushed `new_message` event."""
        if not self._apply(message):
            return
        if message.user_id != self.user_id:
            self.unread_count += 1
        if message.conversation_id != self.active_id:
            if self._find(message.conversation_id) is None:
                logger.info("Message %s for conversation %s not in list", message.id, message.conversation_id)
            self.notifier.info(f"New message: {truncate(message.content, 40)}")
