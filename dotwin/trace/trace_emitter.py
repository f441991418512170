from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from .trace_store_jsonl import TraceStoreJSONL


class TraceEmitter:
    """
    Audit trail of a run: one JSON line per event.

    With no store the emitter only counts events, so call sites never branch
    on whether tracing is enabled.
    """

    def __init__(self, store: TraceStoreJSONL | None, run_id: str):
        self._store = store
        self._run_id = run_id
        self.emitted = 0

    def emit(
        self,
        event_type: str,
        *,
        item: str | None = None,
        item_type: str | None = None,
        message: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> None:
        event: dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "run_id": self._run_id,
            "event_type": event_type,
        }
        if item is not None:
            event["item"] = item
        if item_type is not None:
            event["item_type"] = item_type
        if message is not None:
            event["message"] = message
        if data is not None:
            event["data"] = data

        self.emitted += 1
        if self._store is not None:
            self._store.append(event)
