"""
Message store: durable chat history plus the pending handoff queue.

History is an append-only JSON Lines file. The pending queue is a small JSON
array rewritten atomically on every change. A message is always written to
history before it can be enqueued.
"""

from __future__ import annotations

import abc
import json
import logging
import os
import secrets
import tempfile
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Any, Iterator, Optional

from pydantic import ValidationError as PydanticValidationError

from skipper_chat.errors import StoreIOError
from skipper_chat.models.message import (
    MAX_MESSAGE_LENGTH,
    DeliveryState,
    HistoryPage,
    Message,
    PendingEnvelope,
    Role,
    utc_now_iso,
    validate_content,
)

logger = logging.getLogger(__name__)

HISTORY_FILE = "chat-messages.jsonl"
PENDING_FILE = "mobile-chat-pending.json"
LOCK_FILE = ".store.lock"

DEFAULT_HISTORY_LIMIT = 50
MAX_HISTORY_LIMIT = 200


def clamp_limit(limit: Optional[int]) -> int:
    if not limit or limit < 1:
        return DEFAULT_HISTORY_LIMIT
    return min(limit, MAX_HISTORY_LIMIT)


def window(messages: list[Message], limit: Optional[int] = None,
           before: Optional[str] = None, after: Optional[str] = None) -> list[Message]:
    """Cursor windowing over an ordered list. Unknown cursor ids are ignored."""
    result = messages
    if after:
        idx = next((i for i, m in enumerate(result) if m.id == after), -1)
        if idx != -1:
            result = result[idx + 1:]
    if before:
        idx = next((i for i, m in enumerate(result) if m.id == before), -1)
        if idx != -1:
            result = result[:idx]
    return result[-clamp_limit(limit):]


class MessageIdGenerator:
    """Ids of the form msg_<epoch ms>_<hex>, strictly increasing in the ms part."""

    def __init__(self, last_ms: int = 0):
        self._last_ms = last_ms

    def observe(self, message_id: str) -> None:
        ms = parse_id_ms(message_id)
        if ms is not None and ms > self._last_ms:
            self._last_ms = ms

    def next_id(self) -> str:
        ms = max(int(time.time() * 1000), self._last_ms + 1)
        self._last_ms = ms
        return f"msg_{ms:013d}_{secrets.token_hex(5)}"


def parse_id_ms(message_id: str) -> Optional[int]:
    parts = message_id.split("_")
    if len(parts) >= 2 and parts[0] == "msg" and parts[1].isdigit():
        return int(parts[1])
    return None


class MessageStore(abc.ABC):
    """Durable owner of chat history and the pending queue.

    Concurrency contract: every public method is atomic with respect to every
    other public method on the same store. Implementations must hold that even
    when called from several threads.
    """

    @abc.abstractmethod
    def append(self, role: Role, content: str, *, reply_to: Optional[str] = None,
               client_id: Optional[str] = None) -> Message: ...

    @abc.abstractmethod
    def history(self, limit: Optional[int] = DEFAULT_HISTORY_LIMIT, before: Optional[str] = None,
                after: Optional[str] = None) -> HistoryPage: ...

    @abc.abstractmethod
    def get(self, message_id: str) -> Optional[Message]: ...

    @abc.abstractmethod
    def find_by_client_id(self, client_id: str) -> Optional[Message]: ...

    @abc.abstractmethod
    def clear(self) -> int: ...

    @abc.abstractmethod
    def enqueue_pending(self, message: Message) -> PendingEnvelope: ...

    @abc.abstractmethod
    def list_pending(self) -> list[PendingEnvelope]: ...

    @abc.abstractmethod
    def remove_pending(self, message_id: str) -> int: ...

    @abc.abstractmethod
    def clear_pending(self) -> int: ...

    @property
    @abc.abstractmethod
    def total(self) -> int: ...


def _atomic_write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=path.name + ".", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    finally:
        if os.path.exists(tmp):
            os.unlink(tmp)


class JsonFileMessageStore(MessageStore):
    def __init__(self, data_dir: Path, max_message_length: int = MAX_MESSAGE_LENGTH):
        self._dir = Path(data_dir)
        self._history_path = self._dir / HISTORY_FILE
        self._pending_path = self._dir / PENDING_FILE
        self._lock_path = self._dir / LOCK_FILE
        self._max_length = max_message_length
        self._lock = threading.RLock()
        self._ids = MessageIdGenerator()
        self._messages: list[Message] = []
        self._by_id: dict[str, Message] = {}
        self._by_client_id: dict[str, Message] = {}
        self._torn_tail = False
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreIOError(f"Cannot create data dir {self._dir}: {e}")
        self._load_history()

    @property
    def data_dir(self) -> Path:
        return self._dir

    @property
    def total(self) -> int:
        with self._lock:
            return len(self._messages)

    # -- locking ---------------------------------------------------------------

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        """Thread lock plus an advisory file lock for other processes."""
        with self._lock:
            handle = self._acquire_file_lock()
            try:
                yield
            finally:
                self._release_file_lock(handle)

    def _acquire_file_lock(self) -> Optional[IO[bytes]]:
        if os.name == "nt":
            return None
        import fcntl

        try:
            f = self._lock_path.open("a+b")
            fcntl.flock(f.fileno(), fcntl.LOCK_EX)
        except OSError as e:
            raise StoreIOError(f"Cannot lock store: {e}")
        return f

    @staticmethod
    def _release_file_lock(handle: Optional[IO[bytes]]) -> None:
        if handle is None:
            return
        import fcntl

        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
        finally:
            handle.close()

    # -- history ---------------------------------------------------------------

    def _load_history(self) -> None:
        try:
            text = self._history_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return
        except (OSError, UnicodeDecodeError) as e:
            raise StoreIOError(f"Cannot read history: {e}")
        # A torn final write leaves no newline; the next append must start a fresh line.
        self._torn_tail = bool(text) and not text.endswith("\n")
        for lineno, line in enumerate(text.splitlines(), 1):
            if not line.strip():
                continue
            try:
                message = Message.model_validate(json.loads(line))
            except (json.JSONDecodeError, PydanticValidationError):
                logger.warning("Skipping unreadable history line %d in %s", lineno, self._history_path)
                continue
            self._index(message)
        logger.info("Loaded %d chat messages from disk", len(self._messages))

    def _index(self, message: Message) -> None:
        self._messages.append(message)
        self._by_id[message.id] = message
        if message.client_id:
            self._by_client_id[message.client_id] = message
        self._ids.observe(message.id)

    def append(self, role: Role, content: str, *, reply_to: Optional[str] = None,
               client_id: Optional[str] = None) -> Message:
        text = validate_content(content, self._max_length)
        with self._exclusive():
            message = Message(
                id=self._ids.next_id(),
                role=role,
                content=text,
                timestamp=utc_now_iso(),
                status=DeliveryState.SENT if Role(role) == Role.USER else None,
                reply_to=reply_to,
                client_id=client_id,
            )
            line = json.dumps(message.to_wire(), ensure_ascii=False) + "\n"
            if self._torn_tail:
                line = "\n" + line
            try:
                with self._history_path.open("a", encoding="utf-8") as f:
                    f.write(line)
                    f.flush()
                    os.fsync(f.fileno())
            except OSError as e:
                raise StoreIOError(f"Cannot append to history: {e}")
            self._torn_tail = False
            self._index(message)
            return message

    def history(self, limit: Optional[int] = DEFAULT_HISTORY_LIMIT, before: Optional[str] = None,
                after: Optional[str] = None) -> HistoryPage:
        with self._lock:
            total = len(self._messages)
            messages = window(self._messages, limit, before=before, after=after)
        return HistoryPage(messages=messages, total=total, returned=len(messages),
                           has_more=len(messages) < total)

    def get(self, message_id: str) -> Optional[Message]:
        with self._lock:
            return self._by_id.get(message_id)

    def find_by_client_id(self, client_id: str) -> Optional[Message]:
        with self._lock:
            return self._by_client_id.get(client_id)

    def clear(self) -> int:
        with self._exclusive():
            count = len(self._messages)
            try:
                _atomic_write_text(self._history_path, "")
            except OSError as e:
                raise StoreIOError(f"Cannot clear history: {e}")
            self._torn_tail = False
            self._messages = []
            self._by_id = {}
            self._by_client_id = {}
            return count

    # -- pending queue ---------------------------------------------------------

    def _read_pending(self) -> list[PendingEnvelope]:
        try:
            raw = json.loads(self._pending_path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return []
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise StoreIOError(f"Cannot read pending queue: {e}")
        if not isinstance(raw, list):
            raise StoreIOError("Pending queue file is not a JSON array")
        try:
            return [PendingEnvelope.model_validate(item) for item in raw]
        except PydanticValidationError as e:
            raise StoreIOError(f"Pending queue file is corrupt: {e}")

    def _write_pending(self, pending: list[PendingEnvelope]) -> None:
        body: list[dict[str, Any]] = [p.to_wire() for p in pending]
        try:
            _atomic_write_text(self._pending_path, json.dumps(body, ensure_ascii=False, indent=2))
        except OSError as e:
            raise StoreIOError(f"Cannot write pending queue: {e}")

    def enqueue_pending(self, message: Message) -> PendingEnvelope:
        with self._exclusive():
            if message.id not in self._by_id:
                raise StoreIOError(f"Message {message.id} is not in history", details={"id": message.id})
            pending = self._read_pending()
            envelope = PendingEnvelope.wrap(message)
            pending.append(envelope)
            self._write_pending(pending)
            logger.info("Message added to pending queue (%d total)", len(pending))
            return envelope

    def list_pending(self) -> list[PendingEnvelope]:
        with self._lock:
            return self._read_pending()

    def remove_pending(self, message_id: str) -> int:
        with self._exclusive():
            pending = self._read_pending()
            remaining = [p for p in pending if p.id != message_id]
            removed = len(pending) - len(remaining)
            if removed:
                self._write_pending(remaining)
            return removed

    def clear_pending(self) -> int:
        with self._exclusive():
            count = len(self._read_pending())
            self._write_pending([])
            return count
