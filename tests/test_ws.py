# tests/test_ws.py
import anyio
import pytest

from botdesk.services.conversation_sync import ConversationSyncEngine
from botdesk.ws.channel import EventHub
from botdesk.ws.manager import ProjectionBroadcaster


class TestEventHub:
    def test_delivers_in_subscription_order(self):
        hub = EventHub()
        calls = []
        hub.subscribe("new-message", lambda p: calls.append(("a", p)))
        hub.subscribe("new-message", lambda p: calls.append(("b", p)))

        hub.emit("new-message", {"n": 1})

        assert calls == [("a", {"n": 1}), ("b", {"n": 1})]

    def test_duplicate_subscription_is_ignored(self):
        hub = EventHub()
        handler = lambda p: None
        hub.subscribe("x", handler)
        hub.subscribe("x", handler)
        assert hub.subscriber_count("x") == 1

    def test_unsubscribe(self):
        hub = EventHub()
        calls = []
        handler = calls.append
        hub.subscribe("x", handler)
        hub.unsubscribe("x", handler)
        hub.emit("x", {})
        assert calls == []

    def test_failing_handler_does_not_stop_delivery(self):
        hub = EventHub()
        calls = []

        def broken(payload):
            raise KeyError("customerWaId")

        hub.subscribe("x", broken)
        hub.subscribe("x", calls.append)
        hub.emit("x", {"ok": True})
        assert calls == [{"ok": True}]


class TestProjectionBroadcaster:
    @pytest.mark.anyio
    async def test_connect_and_notify(self, make_ws):
        broadcaster = ProjectionBroadcaster()
        ws = make_ws()
        await broadcaster.connect("user-1", ws)

        sent = await broadcaster.notify_clients("user-1", {"event": "presence-changed"})

        assert ws.accepted
        assert sent == 1
        assert ws.sent == [{"event": "presence-changed"}]

    @pytest.mark.anyio
    async def test_stale_connections_are_dropped(self, make_ws):
        broadcaster = ProjectionBroadcaster()
        good, broken = make_ws(), make_ws(broken=True)
        await broadcaster.connect("user-1", good)
        await broadcaster.connect("user-1", broken)

        assert await broadcaster.notify_clients("user-1", {"event": "x"}) == 1
        assert broadcaster.connection_count("user-1") == 1

    @pytest.mark.anyio
    async def test_disconnect(self, make_ws):
        broadcaster = ProjectionBroadcaster()
        ws = make_ws()
        await broadcaster.connect("user-1", ws)
        broadcaster.disconnect("user-1", ws)
        assert broadcaster.connection_count() == 0
        assert await broadcaster.notify_clients("user-1", {"event": "x"}) == 0

    @pytest.mark.anyio
    async def test_engine_changes_reach_clients_from_worker_thread(self, make_ws, session, api, timers):
        broadcaster = ProjectionBroadcaster()
        ws = make_ws()
        await broadcaster.connect("user-1", ws)

        hub = EventHub()
        engine = ConversationSyncEngine(session, api, hub, timer_factory=timers)
        broadcaster.attach("user-1", engine)
        engine.start()

        payload = {
            "messageId": "wamid.1", "content": {"body": "hola"}, "from": "customer",
            "customerWaId": "521", "whatsAppNumberId": "n1",
        }
        await anyio.to_thread.run_sync(hub.emit, "new-message", payload)

        assert ws.sent[-1]["event"] == "message-received"
        assert ws.sent[-1]["data"]["conversations"][0]["customerWaId"] == "521"
