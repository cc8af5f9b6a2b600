import json

import pytest

from skipper_chat.errors import ParseError, ValidationError
from skipper_chat.models.envelope import build_envelope, parse_envelope
from skipper_chat.models.message import (
    MAX_MESSAGE_LENGTH,
    DeliveryState,
    Message,
    PendingEnvelope,
    Role,
    validate_content,
)


class TestValidateContent:
    def test_exact_limit_is_accepted(self):
        text = "x" * MAX_MESSAGE_LENGTH
        assert validate_content(text) == text

    def test_one_over_limit_is_rejected(self):
        with pytest.raises(ValidationError) as exc:
            validate_content("x" * (MAX_MESSAGE_LENGTH + 1))
        assert exc.value.details == {"length": 5001, "max_length": 5000}

    @pytest.mark.parametrize("text", ["", "   ", "\n\t", None, 42])
    def test_empty_or_non_string_is_rejected(self, text):
        with pytest.raises(ValidationError):
            validate_content(text)

    def test_content_is_trimmed(self):
        assert validate_content("  hello \n") == "hello"

    def test_custom_limit(self):
        with pytest.raises(ValidationError):
            validate_content("abcdef", max_length=5)


class TestMessage:
    def test_wire_uses_camel_case_and_drops_nulls(self):
        msg = Message(id="msg_1", role=Role.ASSISTANT, content="hi", timestamp="t", reply_to="msg_0")
        assert msg.to_wire() == {
            "id": "msg_1", "role": "assistant", "content": "hi", "timestamp": "t", "replyTo": "msg_0",
        }

    def test_parses_wire_form(self):
        msg = Message.model_validate({
            "id": "msg_1", "role": "user", "content": "hi", "timestamp": "t",
            "status": "sent", "clientId": "temp_1",
        })
        assert msg.client_id == "temp_1"
        assert msg.status == DeliveryState.SENT.value
        assert msg.role == Role.USER

    def test_with_status_returns_copy(self):
        msg = Message(id="temp_1", role=Role.USER, content="hi", timestamp="t",
                      status=DeliveryState.PENDING_LOCAL)
        assert msg.is_provisional
        failed = msg.with_status(DeliveryState.FAILED)
        assert failed.status == "failed"
        assert msg.status == "pending-local"

    def test_pending_envelope_is_flat_on_the_wire(self):
        msg = Message(id="msg_1", role=Role.USER, content="hi", timestamp="t", status=DeliveryState.SENT)
        env = PendingEnvelope.wrap(msg, enqueued_at="later")
        wire = env.to_wire()
        assert wire["id"] == "msg_1"
        assert wire["enqueuedAt"] == "later"
        assert env.unwrap() == msg


class TestEnvelope:
    def test_round_trip_of_text(self):
        env = parse_envelope(build_envelope("ping").dumps())
        assert env.type == "ping"
        assert env.payload == {}

    def test_accepts_bytes_and_dicts(self):
        assert parse_envelope(b'{"type": "chat:typing", "payload": {"a": 1}}').payload == {"a": 1}
        assert parse_envelope({"type": "ping", "payload": None}).payload == {}

    def test_error_envelope_carries_message(self):
        text = build_envelope("error", {"code": "parse_error"}, message="nope").dumps()
        assert json.loads(text)["message"] == "nope"

    @pytest.mark.parametrize("raw", [
        "not json",
        "[1, 2]",
        '{"payload": {}}',
        '{"type": ""}',
        '{"type": 7}',
        '{"type": "ping", "payload": "text"}',
        b"\xff\xfe",
    ])
    def test_malformed_input_raises_parse_error(self, raw):
        with pytest.raises(ParseError):
            parse_envelope(raw)
