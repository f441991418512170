from __future__ import annotations

import json
from pathlib import Path
from typing import Any


REQUIRED_KEYS = ("ts", "run_id", "event_type")


class TraceStoreJSONL:
    """
    Append-only JSONL file shared by every run that points at it.

    Each line is one event object carrying at least ``ts``, ``run_id`` and
    ``event_type``; runs are told apart by ``run_id`` when read back.
    """

    def __init__(self, path: Path):
        self._path = Path(path).expanduser()
        self.appended = 0

    @property
    def path(self) -> Path:
        return self._path

    def append(self, event: dict[str, Any]) -> None:
        missing = [k for k in REQUIRED_KEYS if not event.get(k)]
        if missing:
            raise ValueError("trace event is missing {}".format(", ".join(missing)))
        self._path.parent.mkdir(parents=True, exist_ok=True)
        line = json.dumps(event, ensure_ascii=False, default=str)
        with self._path.open("a", encoding="utf-8") as f:
            f.write(line + "\n")
        self.appended += 1
