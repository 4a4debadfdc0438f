"""CSV journal of discovery session activity."""
from __future__ import annotations

import contextlib
import contextvars
import csv
import json
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, Mapping, Optional, Sequence


JOURNAL_FIELDS: Sequence[str] = ("timestamp", "event", "address", "status", "message", "extra")

# Fields bound by SessionJournal.scope(); follows the current task or thread.
_bound: contextvars.ContextVar[Optional[Mapping[str, Any]]] = contextvars.ContextVar(
    "btmanager_journal_fields", default=None
)


class SessionJournal:
    """Append-only CSV log of session lifecycle and device changes.

    Every row is flushed as it is written so the file can be tailed while a
    session runs. ``static_extra`` and the fields bound with :meth:`scope`
    end up JSON-encoded in the ``extra`` column.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        static_extra: Mapping[str, Any] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.path = Path(path)
        self.static_extra: Dict[str, Any] = dict(static_extra or {})
        self._now = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.Lock()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if not self.path.exists() or self.path.stat().st_size == 0:
            self._append(None)

    def log(
        self,
        event: str,
        *,
        address: Optional[str] = None,
        status: Optional[str] = None,
        message: Optional[str] = None,
        extra: Optional[Mapping[str, Any]] = None,
    ) -> None:
        fields = {**self.static_extra, **(_bound.get() or {}), **(extra or {})}
        self._append(
            {
                "timestamp": self._stamp(),
                "event": event,
                "address": address or "",
                "status": status or "",
                "message": message or "",
                "extra": json.dumps(fields, sort_keys=True, separators=(",", ":"), default=str) if fields else "",
            }
        )

    @contextlib.contextmanager
    def scope(self, **fields: Any) -> Iterator[None]:
        """Attach ``fields`` to every row logged inside the block."""
        token = _bound.set({**(_bound.get() or {}), **fields})
        try:
            yield
        finally:
            _bound.reset(token)

    def _stamp(self) -> str:
        now = self._now()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return now.astimezone(timezone.utc).isoformat(timespec="milliseconds")

    def _append(self, row: Optional[Dict[str, Any]]) -> None:
        with self._lock, self.path.open("a", newline="", encoding="utf-8") as handle:
            writer = csv.DictWriter(handle, fieldnames=JOURNAL_FIELDS)
            if row is None:
                writer.writeheader()
            else:
                writer.writerow(row)
            handle.flush()


__all__ = ["SessionJournal", "JOURNAL_FIELDS"]
