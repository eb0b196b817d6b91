# tests/test_conversation_sync.py
import pytest

from botdesk.core.exceptions import ApiError, SessionExpired
from botdesk.schemas.message import (
    Conversation,
    Message,
    MessageStatus,
    Presence,
    Sender,
    WhatsAppNumber,
)
from botdesk.services.conversation_sync import ConversationSyncEngine

NUMBER = "num-1"
OTHER_NUMBER = "num-2"
ANA = "5215550001"
LUIS = "5215550002"


def inbound(customer_wa_id=ANA, number=NUMBER, sender="customer", body="hola", message_id="wamid.1"):
    return {
        "_id": f"db-{message_id}",
        "messageId": message_id,
        "content": {"body": body},
        "from": sender,
        "timestamp": "2024-05-01T10:00:00Z",
        "customerWaId": customer_wa_id,
        "whatsAppNumberId": number,
        "status": "delivered" if sender == "business" else None,
    }


@pytest.fixture
def engine(session, api, hub, timers):
    api.numbers = [
        WhatsAppNumber.model_validate({"_id": NUMBER, "displayName": "Principal"}),
        WhatsAppNumber.model_validate({"_id": OTHER_NUMBER, "displayName": "Sucursal"}),
    ]
    api.conversations = [
        Conversation.model_validate({"customerWaId": ANA, "customerName": "Ana", "unreadCount": 2}),
        Conversation.model_validate({"customerWaId": LUIS, "customerName": "Luis"}),
    ]
    api.messages[(ANA, NUMBER)] = [
        Message.model_validate({
            "_id": "db-0", "messageId": "wamid.0", "content": {"body": "buenas"},
            "from": "business", "status": "sent", "customerWaId": ANA, "whatsAppNumberId": NUMBER,
        }),
    ]
    engine = ConversationSyncEngine(session, api, hub, timer_factory=timers)
    engine.start()
    engine.load_whatsapp_numbers()
    return engine


class TestLifecycle:
    def test_start_joins_user_room(self, engine, hub):
        assert hub.emitted[0] == ("join-user-room", {"userId": "user-1"})
        assert hub.subscriber_count("new-message") == 1

    def test_stop_unsubscribes_and_leaves(self, engine, hub, timers):
        engine.open_conversation_view(ANA, NUMBER)
        hub.emit("new-message", inbound())
        engine.stop()

        assert hub.subscriber_count("new-message") == 0
        assert hub.emitted[-1][0] == "leave-conversation"
        assert timers.pending == []
        assert engine.open_conversation is None

    def test_first_number_becomes_active(self, engine):
        assert engine.active_number_id == NUMBER
        assert [c.customer_wa_id for c in engine.conversation_list()] == [ANA, LUIS]


class TestSnapshots:
    def test_api_error_gives_empty_list(self, engine, api):
        api.error = ApiError("Not modified")
        assert engine.load_conversations() == []
        assert engine.conversation_list() == []

    def test_expired_session_propagates(self, engine, api, session):
        api.error = SessionExpired(session)
        with pytest.raises(SessionExpired):
            engine.load_conversations()

    def test_no_numbers(self, session, api, hub, timers):
        engine = ConversationSyncEngine(session, api, hub, timer_factory=timers)
        assert engine.load_whatsapp_numbers() == []
        assert engine.active_number_id is None


class TestOpenConversation:
    def test_open_joins_room_and_resets_unread(self, engine, hub):
        messages = engine.open_conversation_view(ANA, NUMBER)

        assert hub.emitted[-1] == ("join-conversation", {
            "userId": "user-1", "customerWaId": ANA, "whatsAppNumberId": NUMBER,
        })
        assert engine.get_conversation(ANA).unread_count == 0
        assert [m.message_id for m in messages] == ["wamid.0"]
        assert engine.messages == messages
        assert engine.presence == Presence.OFFLINE

    def test_switching_leaves_previous_room(self, engine, hub):
        engine.open_conversation_view(ANA, NUMBER)
        engine.open_conversation_view(LUIS, NUMBER)

        events = [event for event, _ in hub.emitted]
        assert events[-2:] == ["leave-conversation", "join-conversation"]
        assert hub.emitted[-2][1]["customerWaId"] == ANA
        assert engine.messages == []

    def test_close(self, engine, hub):
        engine.open_conversation_view(ANA, NUMBER)
        engine.close_conversation_view()
        assert engine.open_conversation is None
        assert hub.emitted[-1][0] == "leave-conversation"


class TestUnreadAccounting:
    def test_three_messages_to_closed_conversation(self, engine, hub):
        engine.open_conversation_view(ANA, NUMBER)
        engine.close_conversation_view()

        for n in range(3):
            hub.emit("new-message", inbound(message_id=f"wamid.{n + 10}"))

        assert engine.get_conversation(ANA).unread_count == 3
        assert engine.total_unread() == 3

        engine.open_conversation_view(ANA, NUMBER)
        assert engine.get_conversation(ANA).unread_count == 0

    def test_open_conversation_does_not_count(self, engine, hub):
        engine.open_conversation_view(ANA, NUMBER)
        hub.emit("new-message", inbound())
        assert engine.get_conversation(ANA).unread_count == 0

    def test_other_number_does_not_count(self, engine, hub):
        hub.emit("new-message", inbound(customer_wa_id=LUIS, number=OTHER_NUMBER))
        assert engine.get_conversation(LUIS).unread_count == 0

    def test_business_messages_do_not_count(self, engine, hub):
        hub.emit("new-message", inbound(customer_wa_id=LUIS, sender="business"))
        assert engine.get_conversation(LUIS).unread_count == 0


class TestConversationSummaries:
    def test_inbound_updates_summary_and_moves_to_front(self, engine, hub):
        hub.emit("new-message", inbound(customer_wa_id=LUIS, body="¿Tienen cita hoy?"))

        conversation = engine.conversation_list()[0]
        assert conversation.customer_wa_id == LUIS
        assert conversation.last_message == "¿Tienen cita hoy?"
        assert conversation.last_message_from == Sender.CUSTOMER

    def test_unknown_conversation_is_inserted_first(self, engine, hub):
        hub.emit("new-message", inbound(customer_wa_id="5215559999"))
        first = engine.conversation_list()[0]
        assert first.customer_wa_id == "5215559999"
        assert first.unread_count == 1

    def test_messages_for_closed_chat_are_not_listed(self, engine, hub):
        engine.open_conversation_view(ANA, NUMBER)
        hub.emit("new-message", inbound(customer_wa_id=LUIS))
        assert [m.message_id for m in engine.messages] == ["wamid.0"]


class TestOptimisticSend:
    def test_send_appends_placeholder(self, engine, api):
        engine.open_conversation_view(ANA, NUMBER)
        placeholder = engine.send_message("  Claro, te agendo  ")

        assert placeholder.is_optimistic
        assert placeholder.content.body == "Claro, te agendo"
        assert placeholder.status == MessageStatus.SENT
        assert engine.messages[-1].message_id == placeholder.message_id
        assert api.sent[0].message == "Claro, te agendo"
        assert api.sent[0].customer_wa_id == ANA

        conversation = engine.get_conversation(ANA)
        assert conversation.last_message == "Claro, te agendo"
        assert conversation.last_message_from == Sender.BUSINESS
        assert conversation.last_message_status == MessageStatus.SENT

    def test_echo_replaces_placeholder(self, engine, hub):
        engine.open_conversation_view(ANA, NUMBER)
        engine.send_message("Claro")
        count = len(engine.messages)

        hub.emit("new-message", inbound(sender="business", body="Claro", message_id="wamid.echo"))

        messages = engine.messages
        assert len(messages) == count
        assert not any(m.is_optimistic for m in messages)
        assert messages[-1].message_id == "wamid.echo"

    def test_echo_removes_only_one_placeholder(self, engine, hub):
        engine.open_conversation_view(ANA, NUMBER)
        first = engine.send_message("uno")
        second = engine.send_message("dos")

        hub.emit("new-message", inbound(sender="business", body="uno", message_id="wamid.echo"))

        ids = [m.message_id for m in engine.messages]
        assert first.message_id not in ids
        assert second.message_id in ids

    def test_customer_message_keeps_placeholder(self, engine, hub):
        engine.open_conversation_view(ANA, NUMBER)
        placeholder = engine.send_message("Claro")
        hub.emit("new-message", inbound())
        assert placeholder.message_id in [m.message_id for m in engine.messages]

    def test_requires_open_conversation_and_text(self, engine, api):
        assert engine.send_message("hola") is None
        engine.open_conversation_view(ANA, NUMBER)
        assert engine.send_message("   ") is None
        assert api.sent == []

    def test_send_failure_keeps_placeholder(self, engine, api):
        engine.open_conversation_view(ANA, NUMBER)
        api.error = ApiError("WhatsApp rejected", status_code=502)
        placeholder = engine.send_message("hola")
        assert engine.messages[-1].message_id == placeholder.message_id

    def test_too_long_reply_leaves_state_untouched(self, engine, api):
        engine.open_conversation_view(ANA, NUMBER)
        before = engine.snapshot()

        assert engine.send_message("x" * 5000) is None

        assert engine.snapshot() == before
        assert not any(m.is_optimistic for m in engine.messages)
        assert api.sent == []


class TestStatusUpdates:
    def test_updates_message_and_conversation(self, engine, hub):
        engine.open_conversation_view(ANA, NUMBER)
        hub.emit("message-status-update", {"messageId": "wamid.0", "status": "read", "customerWaId": ANA})

        assert engine.messages[0].status == MessageStatus.READ
        conversation = engine.get_conversation(ANA)
        assert conversation.last_message_status == MessageStatus.READ
        assert conversation.last_message_from == Sender.BUSINESS

    def test_missing_customer_is_tolerated(self, engine, hub):
        engine.open_conversation_view(ANA, NUMBER)
        hub.emit("message-status-update", {"messageId": "wamid.0", "status": "delivered"})

        assert engine.messages[0].status == MessageStatus.DELIVERED
        assert engine.get_conversation(ANA).last_message_status is None


class TestPresence:
    def test_customer_message_sets_online_then_decays(self, engine, hub, timers):
        engine.open_conversation_view(ANA, NUMBER)
        hub.emit("new-message", inbound())

        assert engine.presence == Presence.ONLINE
        assert [t.seconds for t in timers.pending] == [20]

        timers.fire_all()
        assert engine.presence == Presence.OFFLINE

    def test_new_message_rearms_timer(self, engine, hub, timers):
        engine.open_conversation_view(ANA, NUMBER)
        hub.emit("new-message", inbound())
        first = timers.pending[0]
        hub.emit("new-message", inbound(message_id="wamid.2"))

        assert first.cancelled
        assert len(timers.pending) == 1

    def test_typing_cycle(self, engine, hub, timers):
        engine.open_conversation_view(ANA, NUMBER)
        hub.emit("new-message", inbound())
        hub.emit("customer-typing", {"customerWaId": ANA, "whatsAppNumberId": NUMBER, "typing": True})

        assert engine.presence == Presence.TYPING
        assert timers.pending == []

        hub.emit("customer-typing", {"customerWaId": ANA, "whatsAppNumberId": NUMBER, "typing": False})
        assert engine.presence == Presence.ONLINE
        assert [t.seconds for t in timers.pending] == [15]

        timers.fire_all()
        assert engine.presence == Presence.OFFLINE

    def test_typing_elsewhere_is_ignored(self, engine, hub, timers):
        engine.open_conversation_view(ANA, NUMBER)
        hub.emit("customer-typing", {"customerWaId": LUIS, "whatsAppNumberId": NUMBER, "typing": True})
        assert engine.presence == Presence.OFFLINE

    def test_closed_view_ignores_presence(self, engine, hub):
        hub.emit("new-message", inbound())
        assert engine.presence == Presence.OFFLINE

    def test_switching_conversation_resets_presence(self, engine, hub, timers):
        engine.open_conversation_view(ANA, NUMBER)
        hub.emit("new-message", inbound())
        engine.open_conversation_view(LUIS, NUMBER)

        assert engine.presence == Presence.OFFLINE
        assert timers.pending == []

    def test_stale_timer_callback_is_ignored(self, engine, hub, timers):
        engine.open_conversation_view(ANA, NUMBER)
        hub.emit("new-message", inbound())
        stale = timers.created[-1]
        hub.emit("new-message", inbound(message_id="wamid.2"))

        # fires even though it was cancelled, as a racing thread timer could
        stale.callback()
        assert engine.presence == Presence.ONLINE


class TestMalformedEvents:
    @pytest.mark.parametrize("event, payload", [
        ("new-message", {"content": {"body": "hola"}, "from": "customer", "whatsAppNumberId": NUMBER}),
        ("new-message", {"content": {"body": "hola"}, "customerWaId": ANA, "whatsAppNumberId": NUMBER}),
        ("new-message", "not an object"),
        ("message-status-update", {"status": "read", "customerWaId": ANA}),
        ("message-status-update", {"messageId": "wamid.0", "status": "seen", "customerWaId": ANA}),
        ("customer-typing", {"customerWaId": ANA, "whatsAppNumberId": NUMBER}),
    ])
    def test_dropped_without_state_change(self, engine, hub, event, payload):
        engine.open_conversation_view(ANA, NUMBER)
        before = engine.snapshot()

        hub.emit(event, payload)

        assert engine.snapshot() == before

    @pytest.mark.parametrize("payload", [
        {"content": {"body": "hola"}, "from": "customer"},
        {"content": {"body": "hola"}, "from": "customer", "customerWaId": ANA},
        {"content": {"body": "hola"}, "from": "customer", "whatsAppNumberId": NUMBER},
    ])
    def test_direct_inbound_without_ids_is_dropped(self, engine, payload):
        engine.open_conversation_view(ANA, NUMBER)
        before = engine.snapshot()

        engine.on_inbound_message(payload)

        assert engine.snapshot() == before


class TestListeners:
    def test_listener_receives_snapshots(self, engine, hub):
        received = []
        engine.add_listener(lambda event, state: received.append((event, state)))

        hub.emit("new-message", inbound(customer_wa_id=LUIS))

        event, state = received[-1]
        assert event == "message-received"
        assert state["totalUnread"] == 3
        assert state["conversations"][0]["customerWaId"] == LUIS

    def test_failing_listener_does_not_break_engine(self, engine, hub):
        def broken(event, state):
            raise RuntimeError("render failed")

        engine.add_listener(broken)
        hub.emit("new-message", inbound(customer_wa_id=LUIS))
        assert engine.get_conversation(LUIS).unread_count == 1
