"""Basic unit tests for skipper-chat package."""

from skipper_chat import (
    AsyncSkipperChat,
    SkipperChat,
    SkipperChatError,
    ValidationError,
    ParseError,
    StoreIOError,
    TransportError,
    AckTimeoutError,
    HttpError,
    C2SEvent,
    S2CEvent,
    __version__,
)
from skipper_chat.models.events import ENVELOPE_EVENT, INBOUND_TYPES


def test_version():
    assert __version__ == "0.1.0"


def test_public_exports():
    assert SkipperChat is not None
    assert AsyncSkipperChat is not None


def test_error_hierarchy():
    for cls in (ValidationError, ParseError, StoreIOError, TransportError, AckTimeoutError, HttpError):
        assert issubclass(cls, SkipperChatError)


def test_error_attributes():
    err = SkipperChatError(code="test_code", message="something broke")
    assert err.code == "test_code"
    assert str(err) == "something broke"
    assert err.details is None

    err_with_details = ValidationError("too long", details={"length": 5001})
    assert err_with_details.code == "validation_error"
    assert err_with_details.details == {"length": 5001}

    assert StoreIOError("disk full").code == "io_error"
    assert ParseError("bad", code="unknown_type").code == "unknown_type"
    assert HttpError(503, "unavailable").status_code == 503


def test_event_constants():
    assert C2SEvent.CHAT_MESSAGE == "chat:message"
    assert S2CEvent.CHAT_MESSAGE_ACK == "chat:message:ack"
    assert S2CEvent.CHAT_RESPONSE == "chat:response"
    assert S2CEvent.CONNECTED == "connected"
    assert ENVELOPE_EVENT == "envelope"
    assert S2CEvent.ERROR not in INBOUND_TYPES
