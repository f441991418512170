from __future__ import annotations

import itertools
import logging
import math
from collections import deque
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Deque, Dict, Iterator, List, Optional, Type

from dotwin.core.errors import DotWinError, InvalidParent, UnknownProgressId, ValidationError

from .node import ProgressNode, RenderLine, clamp_percent, utc_now
from .renderer import NullRenderer, Renderer

if TYPE_CHECKING:  # pragma: no cover
    from dotwin.log_sink import LogSink


_FALLBACK_LOGGER = logging.getLogger(__name__)


class ProgressStack:
    """
    Registry of live progress nodes plus the console rendering policy.

    Rules:
    - ids are opaque and never reused while the stack is alive.
    - bookkeeping errors (unknown id, dangling parent) are soft: a warning is
      logged and the call becomes a no-op, unless `strict=True`.
    - the display is recomputed from scratch after every mutation.
    - a completed node stays visible while any of its descendants is live;
      a finished branch is pruned into a bounded retention buffer.
    """

    def __init__(
        self,
        *,
        renderer: Optional[Renderer] = None,
        sink: Optional["LogSink"] = None,
        strict: bool = False,
        retention: int = 100,
    ):
        self._renderer: Renderer = renderer if renderer is not None else NullRenderer()
        self.sink = sink
        self.strict = strict
        self._ids = itertools.count(1)
        self._nodes: Dict[str, ProgressNode] = {}
        self._retained: Deque[ProgressNode] = deque(maxlen=max(0, int(retention)))
        self._rendering = False
        self._suspended = False

    def __enter__(self) -> "ProgressStack":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.force_complete_all()

    def __len__(self) -> int:
        return sum(1 for n in self._nodes.values() if not n.is_completed)

    @property
    def renderer(self) -> Renderer:
        return self._renderer

    # ----------------------------------------------------------------- lifecycle

    def start(
        self,
        activity: str,
        status: Optional[str] = None,
        parent_id: Optional[str] = None,
        total_operations: Optional[int] = None,
        initial_metrics: Optional[Dict[str, Any]] = None,
    ) -> str:
        if not isinstance(activity, str) or not activity.strip():
            raise ValidationError(code="progress.activity_invalid", message="activity must be a non-empty string")

        if parent_id:
            parent = self._nodes.get(parent_id)
            if parent is None or parent.is_completed:
                self._bookkeeping(
                    InvalidParent,
                    "progress.invalid_parent",
                    f"Parent progress id not found: {parent_id}; starting '{activity}' as a root",
                    {"parent_id": parent_id, "activity": activity},
                )
                parent_id = None
        else:
            parent_id = None

        total: Optional[int] = None
        if total_operations is not None and int(total_operations) > 0:
            total = int(total_operations)

        sequence = next(self._ids)
        node_id = "pg-{:06d}".format(sequence)
        node = ProgressNode(
            id=node_id,
            activity=activity.strip(),
            sequence=sequence,
            status=status or "",
            parent_id=parent_id,
            total_operations=total,
        )
        node.merge_metrics(initial_metrics)
        self._nodes[node_id] = node
        self.render()
        return node_id

    def update(
        self,
        progress_id: str,
        percent_complete: Optional[float] = None,
        status: Optional[str] = None,
        metrics: Optional[Dict[str, Any]] = None,
        completed_operations: Optional[int] = None,
    ) -> None:
        node = self._live_node(progress_id, "update")
        if node is None:
            return

        if status is not None:
            node.status = status
        if completed_operations is not None:
            node.completed_operations = max(0, int(completed_operations))
            if percent_complete is None and node.total_operations:
                percent_complete = node.completed_operations * 100.0 / node.total_operations
        if percent_complete is not None:
            if math.isfinite(percent_complete):
                node.percent_complete = clamp_percent(percent_complete)
            else:
                self._warn(f"Ignoring non-finite percent {percent_complete!r} for progress id '{progress_id}'")
        node.merge_metrics(metrics)
        self.render()

    def complete(
        self,
        progress_id: str,
        status: Optional[str] = None,
        final_metrics: Optional[Dict[str, Any]] = None,
    ) -> None:
        node = self._live_node(progress_id, "complete")
        if node is None:
            return

        node.completed_at = max(utc_now(), node.started_at)
        node.percent_complete = 100
        if node.total_operations:
            node.completed_operations = max(node.completed_operations, node.total_operations)
        if status is not None:
            node.status = status
        elif not node.status:
            node.status = "Completed"
        node.merge_metrics(final_metrics)

        self._prune(node.id)
        if self.has_live_nodes():
            self.render()
        else:
            self._close_renderer()

    def force_complete_all(self, status: str = "Abandoned") -> int:
        """Complete every live node, leaves first. Returns the number of nodes completed."""
        live = [n for n in self._nodes.values() if not n.is_completed]
        live.sort(key=lambda n: (self.depth(n.id), n.sequence), reverse=True)
        for node in live:
            self.complete(node.id, status=status)
        if not live:
            self._close_renderer()
        return len(live)

    # ----------------------------------------------------------------- queries

    def get(self, progress_id: str) -> Optional[ProgressNode]:
        node = self._nodes.get(progress_id)
        if node is not None:
            return node
        for old in self._retained:
            if old.id == progress_id:
                return old
        return None

    def has_live_nodes(self) -> bool:
        return any(not n.is_completed for n in self._nodes.values())

    def live_nodes(self) -> List[ProgressNode]:
        return sorted((n for n in self._nodes.values() if not n.is_completed), key=lambda n: n.sequence)

    def tracked_count(self) -> int:
        return len(self._nodes)

    def recent(self) -> List[ProgressNode]:
        return list(self._retained)

    def depth(self, progress_id: str) -> int:
        depth = 0
        seen = {progress_id}
        node = self._nodes.get(progress_id)
        while node is not None and node.parent_id is not None:
            if node.parent_id in seen:
                break
            seen.add(node.parent_id)
            node = self._nodes.get(node.parent_id)
            if node is None:
                break
            depth += 1
        return depth

    # ----------------------------------------------------------------- rendering

    def render(self) -> List[RenderLine]:
        lines = self._compute_lines()
        self._draw(lines)
        return lines

    @contextmanager
    def suspended(self) -> Iterator[None]:
        """Clear the in-place display for the duration of the block, then redraw."""
        if self._suspended or self._rendering:
            yield
            return
        self._suspended = True
        try:
            self._call_renderer("clear")
            yield
        finally:
            self._suspended = False
            if self.has_live_nodes():
                self.render()

    def _compute_lines(self) -> List[RenderLine]:
        by_parent: Dict[Optional[str], List[ProgressNode]] = {}
        for node in sorted(self._nodes.values(), key=lambda n: n.sequence):
            key = node.parent_id if node.parent_id in self._nodes else None
            by_parent.setdefault(key, []).append(node)

        lines: List[RenderLine] = []
        pending: List[ProgressNode] = list(reversed(by_parent.get(None, [])))
        while pending:
            node = pending.pop()
            lines.append(
                RenderLine(
                    node_id=node.id,
                    depth=self.depth(node.id),
                    activity=node.activity,
                    status=node.status,
                    percent_complete=node.percent_complete,
                    completed=node.is_completed,
                    total_operations=node.total_operations,
                    completed_operations=node.completed_operations,
                    metrics=dict(node.metrics),
                )
            )
            pending.extend(reversed(by_parent.get(node.id, [])))
        return lines

    def _draw(self, lines: List[RenderLine]) -> None:
        if self._rendering or self._suspended:
            return
        if not lines:
            self._close_renderer()
            return
        self._rendering = True
        try:
            self._call_renderer("draw", lines)
        finally:
            self._rendering = False

    def _close_renderer(self) -> None:
        self._call_renderer("close")

    def _call_renderer(self, method: str, *args: Any) -> None:
        try:
            getattr(self._renderer, method)(*args)
        except Exception as e:  # noqa: BLE001
            # Degrade to console-only output; progress bookkeeping continues.
            self._renderer = NullRenderer()
            self._warn(f"Progress rendering failed ({method}: {e!r}); continuing without progress display")

    # ----------------------------------------------------------------- internals

    def _live_node(self, progress_id: str, operation: str) -> Optional[ProgressNode]:
        node = self._nodes.get(progress_id) if isinstance(progress_id, str) else None
        if node is None or node.is_completed:
            state = "already completed" if node is not None or self._was_retained(progress_id) else "unknown"
            self._bookkeeping(
                UnknownProgressId,
                "progress.unknown_id",
                f"Cannot {operation} progress id {progress_id!r}: {state}",
                {"progress_id": progress_id, "operation": operation},
            )
            return None
        return node

    def _was_retained(self, progress_id: Any) -> bool:
        return any(n.id == progress_id for n in self._retained)

    def _has_children(self, progress_id: str) -> bool:
        return any(n.parent_id == progress_id for n in self._nodes.values())

    def _prune(self, progress_id: Optional[str]) -> None:
        current = progress_id
        while current is not None:
            node = self._nodes.get(current)
            if node is None or not node.is_completed or self._has_children(current):
                return
            del self._nodes[current]
            self._retained.append(node)
            current = node.parent_id

    def _bookkeeping(self, exc_type: Type[DotWinError], code: str, message: str, data: Dict[str, Any]) -> None:
        if self.strict:
            raise exc_type(code=code, message=message, data=data)
        self._warn(message)

    def _warn(self, message: str) -> None:
        if self.sink is not None:
            self.sink.warning(message)
        else:
            _FALLBACK_LOGGER.warning(message)
