# Copyright (c) PhiTable Contributors. All rights reserved.
# Licensed under the MIT License.
"""
Audit Sinks

The sink is the persistence target behind the emitter. Its only contract
is ``append(event)``, raising on failure. The in-memory sink keeps a
hash chain so tampering with stored events is detectable offline.
"""

from __future__ import annotations

import json
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from phitable.audit.events import AuditAction, AuditEvent


class AuditSink(ABC):
    """Persistence target for audit events."""

    @abstractmethod
    def append(self, event: AuditEvent) -> None:
        """Persist ``event``; raise any exception to signal failure."""


@dataclass(frozen=True)
class ChainedEvent:
    """An accepted event with its position in the hash chain."""

    event: AuditEvent
    previous_hash: str
    entry_hash: str


class InMemoryAuditSink(AuditSink):
    """
    Append-only, hash-chained in-memory sink.

    Each stored entry hashes the event's canonical JSON together with the
    previous entry's hash, so any modification breaks ``verify_chain``.
    """

    def __init__(self) -> None:
        self._entries: list[ChainedEvent] = []
        self._lock = threading.Lock()

    def append(self, event: AuditEvent) -> None:
        with self._lock:
            previous = self._entries[-1].entry_hash if self._entries else ""
            self._entries.append(
                ChainedEvent(
                    event=event,
                    previous_hash=previous,
                    entry_hash=event.compute_hash(previous),
                )
            )

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def events(self) -> list[AuditEvent]:
        return [e.event for e in self._entries]

    @property
    def head_hash(self) -> Optional[str]:
        return self._entries[-1].entry_hash if self._entries else None

    def query(
        self,
        action: Optional[AuditAction] = None,
        principal_id: Optional[str] = None,
        emergency_override: Optional[bool] = None,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Query stored events; all filters are ANDed.

        Returns:
            Matching events, most recent last.
        """
        results = self.events
        if action is not None:
            results = [e for e in results if e.action == action]
        if principal_id is not None:
            results = [e for e in results if e.principal_id == principal_id]
        if emergency_override is not None:
            results = [e for e in results if e.emergency_override == emergency_override]
        return results[-limit:]

    def verify_chain(self) -> tuple[bool, Optional[str]]:
        """Verify every entry's hash and its link to the previous entry.

        Returns:
            ``(is_valid, error_message)``; the message is None when intact.
        """
        previous_hash = ""
        for i, entry in enumerate(self._entries):
            if entry.previous_hash != previous_hash:
                return False, f"Entry {i} chain broken"
            if entry.entry_hash != entry.event.compute_hash(previous_hash):
                return False, f"Entry {i} hash mismatch"
            previous_hash = entry.entry_hash
        return True, None


class CallbackAuditSink(AuditSink):
    """Adapts a plain callable (e.g. the UI's audit hook) to the sink contract."""

    def __init__(self, callback: Callable[[AuditEvent], object]) -> None:
        self._callback = callback

    def append(self, event: AuditEvent) -> None:
        self._callback(event)


class JsonLinesAuditSink(AuditSink):
    """Appends one canonical JSON document per event to a file."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def append(self, event: AuditEvent) -> None:
        line = event.canonical_json()
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(line + "\n")

    def read(self) -> list[dict]:
        if not self.path.exists():
            return []
        with open(self.path, "r", encoding="utf-8") as f:
            return [json.loads(line) for line in f if line.strip()]
