"""Sinks for coalesced watch events."""

from __future__ import annotations

import threading
from typing import Any, Protocol, TextIO

from pydantic import BaseModel


class Emitter(Protocol):
    def emit(self, event_name: str, event: BaseModel) -> None: ...


class EmittedEvent(BaseModel):
    event: str
    payload: dict[str, Any]


class JsonLinesEmitter:
    """Writes one `{"event": ..., "payload": ...}` JSON object per line."""

    def __init__(self, stream: TextIO):
        self._stream = stream
        # Workers for different watches emit from their own threads
        self._lock = threading.Lock()

    def emit(self, event_name: str, event: BaseModel) -> None:
        envelope = EmittedEvent(event=event_name, payload=event.model_dump(mode="json", by_alias=True))
        line = envelope.model_dump_json()
        with self._lock:
            self._stream.write(line + "\n")
            self._stream.flush()
