"""
Skipper chat error types.

Transport-level failures (TransportError, AckTimeoutError) are recovered by the
client automatically. Store failures (StoreIOError) always reach the caller.
"""

from typing import Any, Optional


class SkipperChatError(Exception):
    def __init__(self, code: str, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details


class ValidationError(SkipperChatError):
    """Empty or over-length input. Rejected before anything is persisted."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__("validation_error", message, details)


class ParseError(SkipperChatError):
    """Malformed envelope. Reported to the sender only."""

    def __init__(self, message: str, code: str = "parse_error"):
        super().__init__(code, message)


class StoreIOError(SkipperChatError):
    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__("io_error", message, details)


class TransportError(SkipperChatError):
    def __init__(self, message: str):
        super().__init__("transport_error", message)


class AckTimeoutError(SkipperChatError):
    def __init__(self, message: str):
        super().__init__("timeout", message)


class HttpError(SkipperChatError):
    def __init__(self, status_code: int, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__("http_error", message, details)
        self.status_code = status_code
