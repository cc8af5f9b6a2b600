"""
Chat message models shared by the server, the REST client and the reconciler.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from skipper_chat.errors import ValidationError

MAX_MESSAGE_LENGTH = 5000


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class DeliveryState(str, Enum):
    PENDING_LOCAL = "pending-local"
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def validate_content(text: Any, max_length: int = MAX_MESSAGE_LENGTH) -> str:
    """Return the trimmed content, or raise ValidationError.

    The length limit applies to the raw text as submitted.
    """
    if not isinstance(text, str) or not text.strip():
        raise ValidationError("Message is required and must be a non-empty string")
    if len(text) > max_length:
        raise ValidationError(
            f"Message too long. Maximum {max_length} characters.",
            details={"length": len(text), "max_length": max_length},
        )
    return text.strip()


class Message(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, use_enum_values=True)

    id: str
    role: Role
    content: str
    timestamp: str
    status: Optional[DeliveryState] = None
    reply_to: Optional[str] = Field(default=None, alias="replyTo")
    client_id: Optional[str] = Field(default=None, alias="clientId")

    @property
    def is_provisional(self) -> bool:
        return self.status == DeliveryState.PENDING_LOCAL.value

    def with_status(self, status: Optional[DeliveryState]) -> "Message":
        value = status.value if isinstance(status, DeliveryState) else status
        return self.model_copy(update={"status": value})

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class PendingEnvelope(Message):
    """A user message waiting for the assistant. Flattened on the wire."""

    enqueued_at: str = Field(alias="enqueuedAt")

    @classmethod
    def wrap(cls, message: Message, enqueued_at: Optional[str] = None) -> "PendingEnvelope":
        data = message.model_dump()
        data["enqueued_at"] = enqueued_at or utc_now_iso()
        return cls(**data)

    def unwrap(self) -> Message:
        return Message(**self.model_dump(exclude={"enqueued_at"}))


class HistoryPage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    messages: list[Message]
    total: int
    returned: int
    has_more: bool = Field(alias="hasMore")

    def to_wire(self) -> dict[str, Any]:
        return {
            "messages": [m.to_wire() for m in self.messages],
            "total": self.total,
            "returned": self.returned,
            "hasMore": self.has_more,
        }
