from __future__ import annotations

import json
from collections import deque
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional


class Replay:
    """
    Reads a trace file back, optionally narrowed to one run, item or event type.

    Lines that are not JSON objects are skipped and counted in ``skipped``.
    """

    def __init__(self, path: Path):
        self._path = Path(path).expanduser()
        self.skipped = 0

    def iter_events(
        self,
        *,
        event_type: Optional[str] = None,
        run_id: Optional[str] = None,
        item: Optional[str] = None,
    ) -> Iterator[Dict[str, Any]]:
        self.skipped = 0
        if not self._path.exists():
            return
        with self._path.open("r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    event = json.loads(line)
                except json.JSONDecodeError:
                    self.skipped += 1
                    continue
                if not isinstance(event, dict):
                    self.skipped += 1
                    continue
                if event_type is not None and event.get("event_type") != event_type:
                    continue
                if run_id is not None and event.get("run_id") != run_id:
                    continue
                if item is not None and event.get("item") != item:
                    continue
                yield event

    def tail(self, n: int, **filters: Any) -> List[Dict[str, Any]]:
        if n <= 0:
            return []
        return list(deque(self.iter_events(**filters), maxlen=n))

    def run_ids(self) -> List[str]:
        """Run ids in order of first appearance."""
        seen: Dict[str, None] = {}
        for event in self.iter_events():
            rid = event.get("run_id")
            if isinstance(rid, str):
                seen.setdefault(rid, None)
        return list(seen)

    def run_summary(self, run_id: str) -> Optional[Dict[str, Any]]:
        finished = self.tail(1, event_type="run_finished", run_id=run_id)
        if not finished:
            return None
        data = finished[0].get("data") or {}
        return data.get("summary") if isinstance(data, dict) else None
