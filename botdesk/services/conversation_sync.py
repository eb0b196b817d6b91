# botdesk/services/conversation_sync.py
"""
Conversation sync engine - live inbox state for one dashboard session.

Keeps the conversation list, the open chat's messages and the customer's
inferred presence consistent with:
- REST snapshots (conversation list, message list)
- realtime events (new-message, message-status-update, customer-typing)
- manual replies sent from the dashboard (optimistic, reconciled on echo)

Presence decays back to offline 20s after the last inbound customer
message, or 15s after the customer stops typing.
"""
from __future__ import annotations

import logging
import threading
import uuid
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from pydantic import ValidationError

from botdesk.core.config import PRESENCE_ONLINE_SECONDS, PRESENCE_TYPING_SECONDS
from botdesk.core.exceptions import ApiError, InvalidEvent, SessionExpired
from botdesk.core.session import SessionContext
from botdesk.schemas.message import (
    OPTIMISTIC_PREFIX,
    Conversation,
    Message,
    MessageStatus,
    Presence,
    RoomPayload,
    SendManualRequest,
    Sender,
    StatusUpdateEvent,
    TypingEvent,
    WhatsAppNumber,
)
from botdesk.ws.channel import (
    EVENT_CUSTOMER_TYPING,
    EVENT_JOIN_CONVERSATION,
    EVENT_JOIN_USER_ROOM,
    EVENT_LEAVE_CONVERSATION,
    EVENT_NEW_MESSAGE,
    EVENT_STATUS_UPDATE,
    RealtimeChannel,
)

log = logging.getLogger("botdesk.conversation_sync")

Listener = Callable[[str, Dict[str, Any]], None]
TimerFactory = Callable[[float, Callable[[], None]], Any]


def thread_timer(seconds: float, callback: Callable[[], None]) -> threading.Timer:
    """Default timer: daemon threading.Timer, already started"""
    timer = threading.Timer(seconds, callback)
    timer.daemon = True
    timer.start()
    return timer


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ConversationSyncEngine:
    """In-memory projection of the inbox, driven by snapshots and realtime events"""

    def __init__(
        self,
        session: SessionContext,
        api_client,
        channel: RealtimeChannel,
        timer_factory: TimerFactory = thread_timer,
        online_seconds: float = PRESENCE_ONLINE_SECONDS,
        typing_seconds: float = PRESENCE_TYPING_SECONDS,
    ):
        """
        Args:
            session: Token + user id of the dashboard user
            api_client: REST collaborator (BotDeskApiClient or a test double)
            channel: Realtime channel carrying inbound events and room emits
            timer_factory: ``(seconds, callback) -> timer`` with ``cancel()``
            online_seconds: Presence decay after an inbound customer message
            typing_seconds: Presence decay after the customer stops typing
        """
        self.session = session
        self.api = api_client
        self.channel = channel
        self._timer_factory = timer_factory
        self.online_seconds = online_seconds
        self.typing_seconds = typing_seconds

        self._lock = threading.RLock()
        self._conversations: "OrderedDict[str, Conversation]" = OrderedDict()
        self._messages: List[Message] = []
        self._open: Optional[Tuple[str, str]] = None
        self._presence = Presence.OFFLINE
        self._presence_timer = None
        self._presence_generation = 0
        self._listeners: List[Listener] = []
        self._started = False

        self.whatsapp_numbers: List[WhatsAppNumber] = []
        self.active_number_id: Optional[str] = None

    # ────────────────────────────────────────────
    # Read-only views
    # ────────────────────────────────────────────

    @property
    def presence(self) -> Presence:
        return self._presence

    @property
    def open_conversation(self) -> Optional[Tuple[str, str]]:
        return self._open

    @property
    def messages(self) -> List[Message]:
        with self._lock:
            return list(self._messages)

    def get_conversation(self, customer_wa_id: str) -> Optional[Conversation]:
        return self._conversations.get(customer_wa_id)

    def conversation_list(self) -> List[Conversation]:
        """Summaries, most recently updated first"""
        with self._lock:
            return list(self._conversations.values())

    def total_unread(self) -> int:
        with self._lock:
            return sum(c.unread_count for c in self._conversations.values())

    def snapshot(self) -> Dict[str, Any]:
        """JSON-ready projection for the render layer"""
        with self._lock:
            open_conv = None
            if self._open:
                open_conv = {"customerWaId": self._open[0], "whatsAppNumberId": self._open[1]}
            return {
                "conversations": [c.model_dump(by_alias=True, mode="json") for c in self._conversations.values()],
                "openConversation": open_conv,
                "messages": [m.model_dump(by_alias=True, mode="json") for m in self._messages],
                "presence": self._presence.value,
                "totalUnread": self.total_unread(),
                "activeNumberId": self.active_number_id,
            }

    # ────────────────────────────────────────────
    # Listeners
    # ────────────────────────────────────────────

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _changed(self, event: str) -> None:
        if not self._listeners:
            return
        state = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(event, state)
            except Exception as e:
                log.error(f"❌ Listener failed on {event}: {e}", exc_info=True)

    # ────────────────────────────────────────────
    # Lifecycle
    # ────────────────────────────────────────────

    def start(self) -> None:
        """Subscribe to inbound events and join the user's room"""
        if self._started:
            return
        self.channel.subscribe(EVENT_NEW_MESSAGE, self._handle_new_message)
        self.channel.subscribe(EVENT_STATUS_UPDATE, self._handle_status_update)
        self.channel.subscribe(EVENT_CUSTOMER_TYPING, self._handle_typing)
        self._started = True
        if self.session.user_id:
            self.channel.emit(EVENT_JOIN_USER_ROOM, {"userId": self.session.user_id})
        log.info(f"🟢 Conversation sync started for user {self.session.user_id}")

    def stop(self) -> None:
        """Unsubscribe, cancel presence decay and leave the open room"""
        if not self._started:
            return
        self.channel.unsubscribe(EVENT_NEW_MESSAGE, self._handle_new_message)
        self.channel.unsubscribe(EVENT_STATUS_UPDATE, self._handle_status_update)
        self.channel.unsubscribe(EVENT_CUSTOMER_TYPING, self._handle_typing)
        self._started = False
        with self._lock:
            self._cancel_presence_timer()
            previous = self._open
            self._open = None
            self._messages = []
            self._presence = Presence.OFFLINE
        if previous:
            self.channel.emit(EVENT_LEAVE_CONVERSATION, self._room_payload(*previous))
        log.info(f"🔴 Conversation sync stopped for user {self.session.user_id}")

    # ────────────────────────────────────────────
    # Snapshots
    # ────────────────────────────────────────────

    def _fetch(self, what: str, call: Callable[[], list]) -> list:
        try:
            return call()
        except SessionExpired:
            log.warning(f"🔒 Session expired while loading {what}")
            raise
        except ApiError as e:
            log.error(f"❌ Failed to load {what}: {e}")
            return []

    def load_whatsapp_numbers(self) -> List[WhatsAppNumber]:
        """Fetch connected numbers; the first one becomes active"""
        numbers = self._fetch("whatsapp numbers", self.api.get_whatsapp_numbers)
        with self._lock:
            self.whatsapp_numbers = numbers
            self.active_number_id = numbers[0].id if numbers else None
        log.info(f"📱 {len(numbers)} WhatsApp number(s), active={self.active_number_id}")
        if numbers:
            self.load_conversations()
        return numbers

    def load_conversations(self) -> List[Conversation]:
        conversations = self._fetch("conversations", self.api.get_conversations)
        with self._lock:
            self._conversations = OrderedDict((c.customer_wa_id, c) for c in conversations)
        log.info(f"💬 Loaded {len(conversations)} conversations")
        self._changed("conversations-loaded")
        return conversations

    def load_messages(self, customer_wa_id: str, whats_app_number_id: str) -> List[Message]:
        messages = self._fetch(
            f"messages for {customer_wa_id}",
            lambda: self.api.get_messages(customer_wa_id, whats_app_number_id),
        )
        with self._lock:
            # a later open_conversation_view wins over a slow snapshot
            if self._open != (customer_wa_id, whats_app_number_id):
                log.debug(f"Discarding stale message snapshot for {customer_wa_id}")
                return messages
            self._messages = list(messages)
        self._changed("messages-loaded")
        return messages

    # ────────────────────────────────────────────
    # Open chat
    # ────────────────────────────────────────────

    def _room_payload(self, customer_wa_id: str, whats_app_number_id: str) -> Dict[str, Any]:
        return RoomPayload(
            user_id=self.session.user_id or "",
            customer_wa_id=customer_wa_id,
            whats_app_number_id=whats_app_number_id,
        ).model_dump(by_alias=True)

    def _is_open(self, customer_wa_id: Optional[str], whats_app_number_id: Optional[str]) -> bool:
        return self._open is not None and self._open == (customer_wa_id, whats_app_number_id)

    def open_conversation_view(self, customer_wa_id: str, whats_app_number_id: str) -> List[Message]:
        """Show a chat: join its room, reset unread and presence, load messages"""
        with self._lock:
            previous = self._open
            self._cancel_presence_timer()
            self._open = (customer_wa_id, whats_app_number_id)
            self._messages = []
            self._presence = Presence.OFFLINE
            conversation = self._conversations.get(customer_wa_id)
            if conversation is not None:
                conversation.unread_count = 0

        if previous and previous != self._open:
            self.channel.emit(EVENT_LEAVE_CONVERSATION, self._room_payload(*previous))
        self.channel.emit(EVENT_JOIN_CONVERSATION, self._room_payload(customer_wa_id, whats_app_number_id))
        log.info(f"👁️ Opened conversation {customer_wa_id} on {whats_app_number_id}")
        self._changed("conversation-opened")

        return self.load_messages(customer_wa_id, whats_app_number_id)

    def close_conversation_view(self) -> None:
        with self._lock:
            previous = self._open
            self._cancel_presence_timer()
            self._open = None
            self._messages = []
            self._presence = Presence.OFFLINE
        if previous:
            self.channel.emit(EVENT_LEAVE_CONVERSATION, self._room_payload(*previous))
            self._changed("conversation-closed")

    # ────────────────────────────────────────────
    # Sending
    # ────────────────────────────────────────────

    def send_message(self, text: str) -> Optional[Message]:
        """
        Optimistically append a business message to the open chat, then send it.

        Returns:
            The optimistic placeholder, or None when the text is blank or too long
            or no chat is open (state untouched)
        """
        text = (text or "").strip()
        with self._lock:
            if not text or self._open is None:
                log.debug("send_message ignored (blank text or no open conversation)")
                return None
            customer_wa_id, whats_app_number_id = self._open
            try:
                request = SendManualRequest(
                    whats_app_number_id=whats_app_number_id,
                    customer_wa_id=customer_wa_id,
                    message=text,
                )
            except ValidationError as e:
                log.warning(f"⚠️ Manual reply to {customer_wa_id} rejected: {e.errors()[0]['msg']}")
                return None
            optimistic = Message(
                message_id=f"{OPTIMISTIC_PREFIX}{uuid.uuid4().hex}",
                content={"body": text},
                timestamp=_now_iso(),
                sender=Sender.BUSINESS,
                status=MessageStatus.SENT,
                customer_wa_id=customer_wa_id,
                whats_app_number_id=whats_app_number_id,
            )
            self._messages.append(optimistic)
            self._touch_conversation(optimistic)
        self._changed("message-sent")

        try:
            self.api.send_manual(request)
            log.info(f"📤 Manual reply sent to {customer_wa_id}")
        except SessionExpired:
            raise
        except ApiError as e:
            # the placeholder stays; the backend echo never arrives
            log.error(f"❌ Failed to send manual reply to {customer_wa_id}: {e}")
        return optimistic

    # ────────────────────────────────────────────
    # Inbound events
    # ────────────────────────────────────────────

    @staticmethod
    def _parse(model, payload: Any):
        if not isinstance(payload, dict):
            raise InvalidEvent(f"Expected an object, got {type(payload).__name__}")
        try:
            return model.model_validate(payload)
        except ValidationError as e:
            raise InvalidEvent(str(e)) from e

    def _handle_new_message(self, payload: Dict[str, Any]) -> None:
        self.on_inbound_message(payload)

    def _handle_status_update(self, payload: Dict[str, Any]) -> None:
        try:
            event = self._parse(StatusUpdateEvent, payload)
            if not event.message_id:
                raise InvalidEvent("status update without messageId")
        except InvalidEvent as e:
            log.warning(f"⚠️ Dropped malformed {EVENT_STATUS_UPDATE}: {e}")
            return
        self.on_status_update(event.message_id, event.status, event.customer_wa_id)

    def _handle_typing(self, payload: Dict[str, Any]) -> None:
        try:
            event = self._parse(TypingEvent, payload)
        except InvalidEvent as e:
            log.warning(f"⚠️ Dropped malformed {EVENT_CUSTOMER_TYPING}: {e}")
            return
        self.on_typing_event(event.customer_wa_id, event.whats_app_number_id, event.typing)

    def on_inbound_message(self, message: Union[Message, Dict[str, Any]]) -> None:
        """Apply a ``new-message`` event (customer message or business echo)"""
        try:
            if not isinstance(message, Message):
                message = self._parse(Message, message)
            if not message.customer_wa_id or not message.whats_app_number_id:
                raise InvalidEvent("new-message without customerWaId/whatsAppNumberId")
        except InvalidEvent as e:
            log.warning(f"⚠️ Dropped malformed {EVENT_NEW_MESSAGE}: {e}")
            return

        with self._lock:
            is_open = self._open is not None and message.belongs_to(*self._open)
            from_customer = message.sender == Sender.CUSTOMER

            if is_open:
                if from_customer:
                    self._set_presence(Presence.ONLINE, self.online_seconds)
                else:
                    self._drop_optimistic(message.customer_wa_id)
                self._messages.append(message)

            conversation = self._touch_conversation(message)
            if from_customer and not is_open and message.whats_app_number_id == self.active_number_id:
                conversation.unread_count += 1

        log.debug(f"📨 {message.sender.value} message for {message.customer_wa_id} (open={is_open})")
        self._changed("message-received")

    def _drop_optimistic(self, customer_wa_id: str) -> None:
        """Remove the oldest optimistic placeholder of this conversation"""
        for index, existing in enumerate(self._messages):
            if (existing.is_optimistic and existing.sender == Sender.BUSINESS
                    and existing.customer_wa_id == customer_wa_id):
                del self._messages[index]
                return

    def _touch_conversation(self, message: Message) -> Conversation:
        """Update the summary for a message and move it to the front"""
        conversation = self._conversations.get(message.customer_wa_id)
        if conversation is None:
            conversation = Conversation(
                customer_wa_id=message.customer_wa_id,
                customer_phone=message.customer_wa_id,
                customer_profile_pic=message.customer_profile_pic,
            )
            self._conversations[message.customer_wa_id] = conversation
            log.info(f"🆕 New conversation {message.customer_wa_id}")

        conversation.last_message = message.content.body or message.content.caption or ""
        conversation.last_message_time = message.timestamp or _now_iso()
        conversation.last_message_from = message.sender
        conversation.last_message_status = message.status
        conversation.message_count += 1
        if message.customer_profile_pic:
            conversation.customer_profile_pic = message.customer_profile_pic
        self._conversations.move_to_end(message.customer_wa_id, last=False)
        return conversation

    def on_status_update(
        self,
        message_id: str,
        status: Union[MessageStatus, str],
        customer_wa_id: Optional[str] = None,
    ) -> None:
        """Apply a ``message-status-update`` event"""
        try:
            status = MessageStatus(status)
        except ValueError:
            log.warning(f"⚠️ Dropped status update with unknown status {status!r}")
            return

        with self._lock:
            for message in self._messages:
                if message.message_id == message_id or message.id == message_id:
                    message.status = status

            if customer_wa_id is None:
                log.warning(f"⚠️ Status update for {message_id} has no customerWaId, conversation not updated")
            else:
                conversation = self._conversations.get(customer_wa_id)
                if conversation is not None:
                    conversation.last_message_status = status
                    conversation.last_message_from = Sender.BUSINESS

        log.debug(f"✔️ Message {message_id} -> {status.value}")
        self._changed("status-updated")

    def on_typing_event(self, customer_wa_id: str, whats_app_number_id: str, typing: bool) -> None:
        """Apply a ``customer-typing`` event; ignored unless it targets the open chat"""
        with self._lock:
            if not self._is_open(customer_wa_id, whats_app_number_id):
                return
            if typing:
                self._cancel_presence_timer()
                self._presence = Presence.TYPING
            else:
                self._set_presence(Presence.ONLINE, self.typing_seconds)
        self._changed("presence-changed")

    # ────────────────────────────────────────────
    # Presence timers
    # ────────────────────────────────────────────

    def _cancel_presence_timer(self) -> None:
        self._presence_generation += 1
        if self._presence_timer is not None:
            self._presence_timer.cancel()
            self._presence_timer = None

    def _set_presence(self, presence: Presence, decay_seconds: float) -> None:
        """Set presence and (re)arm the single decay timer back to offline"""
        self._cancel_presence_timer()
        self._presence = presence
        generation = self._presence_generation
        self._presence_timer = self._timer_factory(decay_seconds, lambda: self._decay_presence(generation))

    def _decay_presence(self, generation: int) -> None:
        with self._lock:
            # a newer event re-armed or cancelled the timer
            if generation != self._presence_generation:
                return
            self._presence_timer = None
            self._presence = Presence.OFFLINE
        log.debug("💤 Presence decayed to offline")
        self._changed("presence-changed")
