"""
Operator console output for received messages and stored files.
"""

import sys
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import TextIO

from .storage import StoredFile, format_bytes


@dataclass(frozen=True)
class Message:
    text: str
    sender: str | None = None
    received_at: datetime = field(default_factory=datetime.now)


def _printable(text: str) -> str:
    # Keep clients from sending terminal escape sequences to the operator.
    return "".join(ch if ch.isprintable() or ch in "\n\t" else "\ufffd" for ch in text)


class MessageRelay:
    """Writes events to the operator's console, one block at a time."""

    def __init__(self, stream: TextIO | None = None):
        self._stream = stream
        self._lock = threading.Lock()

    @property
    def stream(self) -> TextIO:
        return self._stream if self._stream is not None else sys.stdout

    def _emit(self, text: str) -> None:
        with self._lock:
            print(text, file=self.stream, flush=True)

    def deliver(self, message: Message) -> None:
        ts = message.received_at.strftime("%H:%M:%S")
        sender = f" from {message.sender}" if message.sender else ""
        body = "\n".join(f"  {line}" for line in _printable(message.text).splitlines())
        self._emit(f"[{ts}] MESSAGE{sender}\n{body}")

    def file_stored(self, stored: StoredFile, sender: str | None = None) -> None:
        ts = stored.created_at.strftime("%H:%M:%S")
        origin = f" from {sender}" if sender else ""
        self._emit(f"[{ts}] FILE {stored.name} ({format_bytes(stored.size)}){origin}")
