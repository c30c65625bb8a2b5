"""
Delivery sinks: where the interpreter hands outbound bot turns.

Delivery is fire-and-forget from the interpreter's point of view; a sink that
raises is logged by the caller and the conversation carries on.
"""
from __future__ import annotations

import threading
import time
from collections import defaultdict
from typing import Callable, Dict, List, Protocol

from .models import OutboundMessage


class DeliverySink(Protocol):
    def emit(self, conversation_id: str, message: OutboundMessage) -> None:
        ...


class CollectingSink:
    """Keeps messages per conversation until the host drains them (HTTP outbox, tests)"""

    def __init__(self) -> None:
        self._outbox: Dict[str, List[OutboundMessage]] = defaultdict(list)
        self._lock = threading.Lock()

    def emit(self, conversation_id: str, message: OutboundMessage) -> None:
        with self._lock:
            self._outbox[conversation_id].append(message)

    def peek(self, conversation_id: str) -> List[OutboundMessage]:
        with self._lock:
            return list(self._outbox.get(conversation_id, []))

    def drain(self, conversation_id: str) -> List[OutboundMessage]:
        with self._lock:
            return self._outbox.pop(conversation_id, [])


class PacedSink:
    """Waits ``typing_delay_ms`` before each message, like a person typing"""

    def __init__(self, inner: DeliverySink, typing_delay_ms: int = 1000,
                 sleep: Callable[[float], None] = time.sleep):
        self.inner = inner
        self.typing_delay_ms = typing_delay_ms
        self._sleep = sleep

    def emit(self, conversation_id: str, message: OutboundMessage) -> None:
        if self.typing_delay_ms > 0:
            self._sleep(self.typing_delay_ms / 1000.0)
        self.inner.emit(conversation_id, message)


class PrintSink:
    """Writes bot turns to stdout; used by the interactive simulator"""

    def __init__(self, prefix: str = "🤖 Bot") -> None:
        self.prefix = prefix

    def emit(self, conversation_id: str, message: OutboundMessage) -> None:
        if message.media_url:
            print(f"{self.prefix}: {message.text} <{message.media_url}>")
        else:
            print(f"{self.prefix}: {message.text}")
