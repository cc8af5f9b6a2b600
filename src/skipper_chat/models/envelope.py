"""
Live-channel envelope: {"type": str, "payload": object}.
"""

from __future__ import annotations

import json
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, field_validator

from skipper_chat.errors import ParseError


class Envelope(BaseModel):
    type: str
    payload: dict[str, Any] = Field(default_factory=dict)
    message: Optional[str] = None  # human readable text, only set on "error"

    @field_validator("type")
    @classmethod
    def _type_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("type must be a non-empty string")
        return v

    @field_validator("payload", mode="before")
    @classmethod
    def _payload_default(cls, v: Any) -> Any:
        return {} if v is None else v

    def dumps(self) -> str:
        return json.dumps(self.model_dump(exclude_none=True), ensure_ascii=False)


def build_envelope(event_type: str, payload: Optional[dict[str, Any]] = None,
                   message: Optional[str] = None) -> Envelope:
    return Envelope(type=event_type, payload=payload or {}, message=message)


def parse_envelope(raw: Any) -> Envelope:
    """Parse raw bytes, text or an already-decoded dict. Raises ParseError."""
    data = raw
    if isinstance(raw, (bytes, bytearray)):
        try:
            data = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ParseError(f"Envelope is not valid UTF-8: {e}")
    if isinstance(data, str):
        try:
            data = json.loads(data)
        except json.JSONDecodeError as e:
            raise ParseError(f"Invalid JSON: {e.msg}")
    if not isinstance(data, dict):
        raise ParseError("Envelope must be a JSON object")
    try:
        return Envelope.model_validate(data)
    except PydanticValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        loc = ".".join(str(p) for p in first.get("loc", ()))
        raise ParseError(f"Invalid envelope: {loc} {first.get('msg', '')}".strip())
