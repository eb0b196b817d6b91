# tests/conftest.py
"""Shared fakes: scripted API client, recording channel, manual timers, fake WebSocket"""
from typing import Any, Dict, List, Optional

import pytest

from botdesk.core.session import SessionContext
from botdesk.schemas.message import Conversation, Message, WhatsAppNumber
from botdesk.ws.channel import EventHub


class FakeApiClient:
    """Returns canned snapshots and records every write"""

    def __init__(self):
        self.numbers: List[WhatsAppNumber] = []
        self.conversations: List[Conversation] = []
        self.messages: Dict[tuple, List[Message]] = {}
        self.sent = []
        self.saved = []
        self.save_response: Dict[str, Any] = {"success": True}
        self.error: Optional[Exception] = None

    def _maybe_fail(self):
        if self.error is not None:
            raise self.error

    def get_whatsapp_numbers(self):
        self._maybe_fail()
        return list(self.numbers)

    def get_conversations(self):
        self._maybe_fail()
        return [c.model_copy(deep=True) for c in self.conversations]

    def get_messages(self, customer_wa_id, whats_app_number_id):
        self._maybe_fail()
        return [m.model_copy(deep=True) for m in self.messages.get((customer_wa_id, whats_app_number_id), [])]

    def send_manual(self, request):
        self.sent.append(request)
        self._maybe_fail()
        return {"success": True}

    def update_bot_settings(self, document):
        self.saved.append(document)
        self._maybe_fail()
        return self.save_response


class RecordingHub(EventHub):
    """EventHub that also remembers every emit"""

    def __init__(self):
        super().__init__()
        self.emitted = []

    def emit(self, event, payload):
        self.emitted.append((event, payload))
        super().emit(event, payload)


class ManualTimer:
    def __init__(self, seconds, callback):
        self.seconds = seconds
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if not self.cancelled:
            self.callback()


class ManualTimers:
    """timer_factory whose timers only fire when told to"""

    def __init__(self):
        self.created: List[ManualTimer] = []

    def __call__(self, seconds, callback):
        timer = ManualTimer(seconds, callback)
        self.created.append(timer)
        return timer

    @property
    def pending(self) -> List[ManualTimer]:
        return [t for t in self.created if not t.cancelled]

    def fire_all(self):
        for timer in list(self.pending):
            timer.fire()


class FakeWebSocket:
    def __init__(self, broken: bool = False):
        self.accepted = False
        self.broken = broken
        self.sent = []

    async def accept(self):
        self.accepted = True

    async def send_json(self, data):
        if self.broken:
            raise RuntimeError("connection closed")
        self.sent.append(data)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def session():
    return SessionContext(token="token-abc", user_id="user-1")


@pytest.fixture
def api():
    return FakeApiClient()


@pytest.fixture
def hub():
    return RecordingHub()


@pytest.fixture
def timers():
    return ManualTimers()


@pytest.fixture
def make_ws():
    return FakeWebSocket
