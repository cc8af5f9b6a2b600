"""
skipper-chat: message relay between a human client and an out-of-band assistant.

Socket.IO live channel + REST fallback, with a disk-backed pending queue the
assistant drains on its own schedule.
"""

__version__ = "0.1.0"

from skipper_chat.client.client import SkipperChat, AsyncSkipperChat
from skipper_chat.client.api import ChatAPI
from skipper_chat.client.connection import ConnectionManager, ConnectionStatus
from skipper_chat.client.reconciler import DeliveryReconciler
from skipper_chat.errors import (
    SkipperChatError,
    ValidationError,
    ParseError,
    StoreIOError,
    TransportError,
    AckTimeoutError,
    HttpError,
)
from skipper_chat.models.events import C2SEvent, S2CEvent
from skipper_chat.models.message import Message, PendingEnvelope, DeliveryState, Role

__all__ = [
    "SkipperChat",
    "AsyncSkipperChat",
    "ChatAPI",
    "ConnectionManager",
    "ConnectionStatus",
    "DeliveryReconciler",
    "SkipperChatError",
    "ValidationError",
    "ParseError",
    "StoreIOError",
    "TransportError",
    "AckTimeoutError",
    "HttpError",
    "C2SEvent",
    "S2CEvent",
    "Message",
    "PendingEnvelope",
    "DeliveryState",
    "Role",
]
