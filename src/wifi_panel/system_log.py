"""Bounded event log for connectivity operations.

Entries are kept in memory and, when a path is configured, appended to a
JSON-lines file so the history survives restarts.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Deque


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SystemLogEntry:
    timestamp: float
    category: str
    event: str
    message: str
    metadata: dict[str, object] | None = None

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "timestamp": self.timestamp,
            "category": self.category,
            "event": self.event,
            "message": self.message,
        }
        if self.metadata:
            payload["metadata"] = self.metadata
        return payload

    @classmethod
    def from_dict(cls, payload: object) -> "SystemLogEntry | None":
        if not isinstance(payload, dict):
            return None
        event = payload.get("event")
        message = payload.get("message")
        if not isinstance(event, str) or not isinstance(message, str):
            return None
        category = payload.get("category")
        try:
            timestamp = float(payload.get("timestamp"))
        except (TypeError, ValueError):
            timestamp = time.time()
        metadata = payload.get("metadata")
        return cls(
            timestamp=timestamp,
            category=category if isinstance(category, str) and category else "general",
            event=event,
            message=message,
            metadata=metadata if isinstance(metadata, dict) else None,
        )


class SystemLog:
    """Thread-safe ring buffer of :class:`SystemLogEntry` records."""

    def __init__(self, path: Path | str | None = None, *, max_entries: int = 500) -> None:
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self._entries: Deque[SystemLogEntry] = deque(maxlen=max_entries)
        self._lock = threading.Lock()
        self._path = Path(path) if path is not None else None
        if self._path is not None:
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as exc:  # pragma: no cover - filesystem errors are rare
                logger.warning("Event log persistence disabled: %s", exc)
                self._path = None
            else:
                self._restore()

    @property
    def path(self) -> Path | None:
        return self._path

    def record(
        self,
        category: str,
        event: str,
        message: str,
        *,
        metadata: dict[str, object | None] | None = None,
    ) -> SystemLogEntry:
        cleaned = {key: value for key, value in (metadata or {}).items() if value is not None}
        entry = SystemLogEntry(
            timestamp=time.time(),
            category=category.strip() or "general",
            event=event,
            message=message,
            metadata=cleaned or None,
        )
        with self._lock:
            self._entries.append(entry)
            if self._path is not None:
                try:
                    with self._path.open("a", encoding="utf-8") as handle:
                        handle.write(json.dumps(entry.to_dict(), separators=(",", ":")) + "\n")
                except (OSError, TypeError, ValueError) as exc:
                    logger.warning("Unable to persist event log entry: %s", exc)
        return entry

    def tail(self, limit: int | None = None, *, category: str | None = None) -> list[SystemLogEntry]:
        """Return the newest entries, oldest first."""

        with self._lock:
            entries = list(self._entries)
        if category:
            entries = [entry for entry in entries if entry.category == category]
        if limit is not None and limit >= 0:
            entries = entries[-limit:] if limit else []
        return entries

    def _restore(self) -> None:
        assert self._path is not None
        if not self._path.exists():
            return
        try:
            lines = self._path.read_text(encoding="utf-8").splitlines()
        except OSError as exc:  # pragma: no cover - best effort logging
            logger.warning("Unable to load event log: %s", exc)
            return
        for line in lines:
            if not line.strip():
                continue
            try:
                entry = SystemLogEntry.from_dict(json.loads(line))
            except ValueError:
                continue
            if entry is not None:
                self._entries.append(entry)


__all__ = ["SystemLog", "SystemLogEntry"]
