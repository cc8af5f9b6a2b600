"""
Envelope type names for the live channel.
"""


class C2SEvent:
    """Client-to-server envelope types."""
    CHAT_MESSAGE = "chat:message"
    CHAT_TYPING = "chat:typing"
    PING = "ping"


class S2CEvent:
    """Server-to-client envelope types."""
    CONNECTED = "connected"
    CHAT_MESSAGE = "chat:message"
    CHAT_MESSAGE_ACK = "chat:message:ack"
    CHAT_RESPONSE = "chat:response"
    CHAT_TYPING = "chat:typing"
    STATUS_UPDATE = "status:update"
    PONG = "pong"
    ERROR = "error"


INBOUND_TYPES = frozenset({C2SEvent.CHAT_MESSAGE, C2SEvent.CHAT_TYPING, C2SEvent.PING})

# Socket.IO event name every envelope travels on, in both directions.
ENVELOPE_EVENT = "envelope"
