from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol, Sequence

from rich.console import Console, RenderableType
from rich.live import Live
from rich.progress_bar import ProgressBar
from rich.table import Table
from rich.text import Text

from .node import RenderLine


class Renderer(Protocol):
    def draw(self, lines: Sequence[RenderLine]) -> None:  # pragma: no cover - protocol
        ...

    def clear(self) -> None:  # pragma: no cover - protocol
        ...

    def close(self) -> None:  # pragma: no cover - protocol
        ...


class NullRenderer:
    """Console-only mode: progress is tracked but never drawn."""

    def draw(self, lines: Sequence[RenderLine]) -> None:
        return None

    def clear(self) -> None:
        return None

    def close(self) -> None:
        return None


def _format_metrics(metrics: Dict[str, Any], limit: int) -> str:
    parts: List[str] = []
    for key in sorted(metrics.keys())[:limit]:
        value = metrics[key]
        if isinstance(value, float):
            value = f"{value:.2f}"
        parts.append(f"{key}={value}")
    return " ".join(parts)


class RichRenderer:
    """
    Draws the nested progress forest in place using rich.live.Live.

    The display is transient: once closed, nothing of it remains in the
    terminal scrollback. Log lines printed through the same Console while the
    display is live end up above it.
    """

    def __init__(self, console: Console, *, bar_width: int = 28, metrics_limit: int = 3):
        self._console = console
        self._bar_width = bar_width
        self._metrics_limit = metrics_limit
        self._live: Optional[Live] = None

    @property
    def active(self) -> bool:
        return self._live is not None

    def _renderable(self, lines: Sequence[RenderLine]) -> RenderableType:
        table = Table.grid(padding=(0, 1))
        table.add_column(no_wrap=True)
        table.add_column(no_wrap=True)
        table.add_column(justify="right", no_wrap=True)
        table.add_column(overflow="ellipsis")
        for line in lines:
            label = Text("  " * line.depth + line.activity, style="dim" if line.completed else "bold")
            bar = ProgressBar(total=100, completed=line.percent_complete, width=self._bar_width)
            percent = Text(f"{line.percent_complete:3d}%")
            detail = [p for p in (line.steps, line.status, _format_metrics(line.metrics, self._metrics_limit)) if p]
            table.add_row(label, bar, percent, Text("  ".join(detail), style="cyan"))
        return table

    def draw(self, lines: Sequence[RenderLine]) -> None:
        if self._live is None:
            self._live = Live(
                console=self._console,
                auto_refresh=False,
                transient=True,
                redirect_stdout=False,
                redirect_stderr=False,
            )
            self._live.start()
        self._live.update(self._renderable(lines), refresh=True)

    def clear(self) -> None:
        if self._live is not None:
            self._live.update(Text(""), refresh=True)

    def close(self) -> None:
        if self._live is not None:
            live, self._live = self._live, None
            live.stop()


def select_renderer(console: Console) -> Renderer:
    """Draw in place only on interactive terminals; redirected output stays plain."""
    if console.is_terminal:
        return RichRenderer(console)
    return NullRenderer()
