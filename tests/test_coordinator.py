import pytest

from skipper_chat.errors import ValidationError
from skipper_chat.server.coordinator import DeliveryCoordinator, sanitize_for_log
from skipper_chat.server.hub import ConnectionHub
from skipper_chat.server.store import JsonFileMessageStore
from tests.helpers import RecordingSession


def make_coordinator(tmp_path):
    store = JsonFileMessageStore(tmp_path)
    hub = ConnectionHub()
    coordinator = DeliveryCoordinator(store, hub)
    hub.set_message_handler(coordinator.handle_session_message)
    return store, hub, coordinator


def test_sanitize_for_log():
    assert sanitize_for_log("a\r\nb" + "x" * 200) == ("a  b" + "x" * 200)[:100]


class TestUserMessages:
    @pytest.mark.asyncio
    async def test_rest_send_persists_queues_and_broadcasts_to_all(self, tmp_path):
        store, hub, coordinator = make_coordinator(tmp_path)
        a, b = RecordingSession(), RecordingSession()
        await hub.on_connect(a)
        await hub.on_connect(b)

        message = await coordinator.accept_user_message("Call VIO accountant")

        assert store.history().messages == [message]
        assert [p.id for p in store.list_pending()] == [message.id]
        for s in (a, b):
            [event] = s.of_type("chat:message")
            assert event["payload"]["id"] == message.id
            assert not s.of_type("chat:message:ack")

    @pytest.mark.asyncio
    async def test_live_send_acks_origin_and_broadcasts_to_others(self, tmp_path):
        store, hub, coordinator = make_coordinator(tmp_path)
        origin, other = RecordingSession(), RecordingSession()
        await hub.on_connect(origin)
        await hub.on_connect(other)

        await hub.on_inbound_envelope(origin, {
            "type": "chat:message", "payload": {"content": "hello", "clientId": "temp_1"},
        })

        [ack] = origin.of_type("chat:message:ack")
        assert ack["payload"]["content"] == "hello"
        assert ack["payload"]["clientId"] == "temp_1"
        assert ack["payload"]["status"] == "sent"
        assert not origin.of_type("chat:message")
        [event] = other.of_type("chat:message")
        assert event["payload"]["id"] == ack["payload"]["id"]
        assert store.total == 1

    @pytest.mark.asyncio
    async def test_repeated_client_id_is_idempotent(self, tmp_path):
        store, hub, coordinator = make_coordinator(tmp_path)
        first = await coordinator.accept_user_message("hello", client_id="temp_1")
        again = await coordinator.accept_user_message("hello", client_id="temp_1")

        assert again.id == first.id
        assert store.total == 1
        assert len(store.list_pending()) == 1

    @pytest.mark.asyncio
    async def test_invalid_message_touches_nothing(self, tmp_path):
        store, hub, coordinator = make_coordinator(tmp_path)
        session = RecordingSession()
        await hub.on_connect(session)

        with pytest.raises(ValidationError):
            await coordinator.accept_user_message("x" * 5001)
        with pytest.raises(ValidationError):
            await coordinator.accept_user_message("")

        assert store.total == 0
        assert store.list_pending() == []
        assert session.types() == ["connected"]

    @pytest.mark.asyncio
    async def test_invalid_live_message_is_reported_to_sender(self, tmp_path):
        store, hub, coordinator = make_coordinator(tmp_path)
        origin, other = RecordingSession(), RecordingSession()
        await hub.on_connect(origin)
        await hub.on_connect(other)

        await hub.on_inbound_envelope(origin, {"type": "chat:message", "payload": {"content": "   "}})

        assert origin.of_type("error")[0]["payload"]["code"] == "validation_error"
        assert other.types() == ["connected"]
        assert store.total == 0


class TestAssistantMessages:
    @pytest.mark.asyncio
    async def test_response_clears_pending_and_broadcasts(self, tmp_path):
        store, hub, coordinator = make_coordinator(tmp_path)
        session = RecordingSession()
        await hub.on_connect(session)
        question = await coordinator.accept_user_message("Call VIO accountant")

        reply, removed = await coordinator.accept_assistant_message("On it", reply_to=question.id)

        assert removed == 1
        assert store.list_pending() == []
        assert reply.reply_to == question.id
        [event] = session.of_type("chat:response")
        assert event["payload"]["replyTo"] == question.id
        assert "status" not in event["payload"]

    @pytest.mark.asyncio
    async def test_response_without_reply_to_leaves_queue(self, tmp_path):
        store, hub, coordinator = make_coordinator(tmp_path)
        await coordinator.accept_user_message("a")
        _, removed = await coordinator.accept_assistant_message("unprompted")
        assert removed == 0
        assert len(store.list_pending()) == 1

    @pytest.mark.asyncio
    async def test_publish_status(self, tmp_path):
        _, hub, coordinator = make_coordinator(tmp_path)
        session = RecordingSession()
        await hub.on_connect(session)
        assert await coordinator.publish_status({"state": "thinking"}) == 1
        assert session.of_type("status:update")[0]["payload"] == {"state": "thinking"}
