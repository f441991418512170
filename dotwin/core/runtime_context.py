from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from rich.console import Console

from dotwin.log_sink import LogSink
from dotwin.progress import ProgressStack, Renderer, select_renderer


@dataclass(frozen=True)
class RuntimeContext:
    """
    Everything a run needs, passed explicitly to every call site.

    Hard rules:
    - one sink and one progress stack per logical run (no process-wide singletons).
    - dry_run means zero side effects; output shapes stay identical.
    - workers in the parallel test path never receive the context.
    """

    run_id: str
    sink: LogSink
    progress: ProgressStack
    dry_run: bool = False
    continue_on_error: bool = True
    trace_path: Optional[Path] = None
    meta: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        run_id: str,
        *,
        console: Optional[Console] = None,
        renderer: Optional[Renderer] = None,
        log_path: Optional[Path] = None,
        verbose: bool = False,
        debug: bool = False,
        strict_progress: bool = False,
        retention: int = 100,
        dry_run: bool = False,
        continue_on_error: bool = True,
        trace_path: Optional[Path] = None,
        meta: Optional[dict[str, Any]] = None,
    ) -> "RuntimeContext":
        sink = LogSink(console=console, log_path=log_path, verbose=verbose, debug=debug)
        if renderer is None:
            renderer = select_renderer(sink.console)
        progress = ProgressStack(renderer=renderer, strict=strict_progress, retention=retention)
        sink.attach(progress)
        return cls(
            run_id=run_id,
            sink=sink,
            progress=progress,
            dry_run=dry_run,
            continue_on_error=continue_on_error,
            trace_path=trace_path,
            meta=dict(meta or {}),
        )

    def close(self) -> None:
        self.progress.force_complete_all()
        self.sink.close()
