# botdesk/ws/channel.py
"""
Realtime channel seam for the conversation engine.

The engine only needs subscribe / unsubscribe / emit. Production wiring
plugs a socket client behind this interface; EventHub is the in-process
implementation used by the dashboard service and the tests.
"""
from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List

log = logging.getLogger("botdesk.ws")

# Inbound (backend -> dashboard)
EVENT_NEW_MESSAGE = "new-message"
EVENT_STATUS_UPDATE = "message-status-update"
EVENT_CUSTOMER_TYPING = "customer-typing"

# Outbound room scoping (dashboard -> backend)
EVENT_JOIN_USER_ROOM = "join-user-room"
EVENT_JOIN_CONVERSATION = "join-conversation"
EVENT_LEAVE_CONVERSATION = "leave-conversation"

Handler = Callable[[Dict[str, Any]], None]


class RealtimeChannel(ABC):
    """Narrow pub/sub interface the engine is built against"""

    @abstractmethod
    def subscribe(self, event: str, handler: Handler) -> None:
        ...

    @abstractmethod
    def unsubscribe(self, event: str, handler: Handler) -> None:
        ...

    @abstractmethod
    def emit(self, event: str, payload: Dict[str, Any]) -> None:
        ...


class EventHub(RealtimeChannel):
    """
    In-process channel: ``emit`` delivers the payload to every subscriber
    of that event, in subscription order.

    A failing handler is logged and does not stop delivery to the others.
    """

    def __init__(self) -> None:
        self._handlers: Dict[str, List[Handler]] = {}
        self._lock = threading.Lock()

    def subscribe(self, event: str, handler: Handler) -> None:
        with self._lock:
            handlers = self._handlers.setdefault(event, [])
            if handler not in handlers:
                handlers.append(handler)
        log.debug(f"📡 Subscribed to {event} ({self.subscriber_count(event)} handlers)")

    def unsubscribe(self, event: str, handler: Handler) -> None:
        with self._lock:
            handlers = self._handlers.get(event)
            if handlers and handler in handlers:
                handlers.remove(handler)
            if not handlers:
                self._handlers.pop(event, None)

    def emit(self, event: str, payload: Dict[str, Any]) -> None:
        with self._lock:
            handlers = list(self._handlers.get(event, []))

        if not handlers:
            log.debug(f"📭 No subscribers for {event}")
            return

        for handler in handlers:
            try:
                handler(payload)
            except Exception as e:
                log.error(f"❌ Handler for {event} failed: {e}", exc_info=True)

    def subscriber_count(self, event: str) -> int:
        with self._lock:
            return len(self._handlers.get(event, []))
