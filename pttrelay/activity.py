"""
Client activity log (the comms log shown to the user).
"""

import itertools
import logging
import threading
from typing import Callable, Optional

from .models import LogEntry, LogKind

logger = logging.getLogger(__name__)


class ActivityLog:
    """
    Append-only, insertion-ordered list of LogEntry.

    Safe to append from capability callbacks running on worker threads.
    Listeners are called with each new entry after it is stored.
    """

    def __init__(self):
        self._entries: list[LogEntry] = []
        self._ids = itertools.count(1)
        self._lock = threading.Lock()
        self._listeners: list[Callable[[LogEntry], None]] = []

    def subscribe(self, listener: Callable[[LogEntry], None]):
        self._listeners.append(listener)

    def append(
        self,
        kind: LogKind,
        message: str,
        sender: Optional[str] = None,
        transcription: Optional[str] = None,
    ) -> LogEntry:
        with self._lock:
            entry = LogEntry(
                id=next(self._ids),
                kind=kind,
                message=message,
                sender=sender,
                transcription=transcription,
            )
            self._entries.append(entry)

        for listener in self._listeners:
            try:
                listener(entry)
            except Exception as e:
                logger.error(f"Error in activity listener: {e}")
        return entry

    def system(self, message: str) -> LogEntry:
        return self.append(LogKind.SYSTEM, message)

    def error(self, message: str) -> LogEntry:
        return self.append(LogKind.ERROR, message)

    def voice(self, message: str, sender: str, transcription: Optional[str] = None) -> LogEntry:
        return self.append(LogKind.VOICE, message, sender=sender, transcription=transcription)

    def entries(self, kind: Optional[LogKind] = None) -> list[LogEntry]:
        with self._lock:
            if kind is None:
                return list(self._entries)
            return [e for e in self._entries if e.kind == kind]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
