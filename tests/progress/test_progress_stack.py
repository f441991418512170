import io
import unittest
from typing import List, Sequence

from rich.console import Console

from dotwin.core.errors import InvalidParent, UnknownProgressId, ValidationError
from dotwin.log_sink import LogSink
from dotwin.progress import ProgressStack, RenderLine


class RecordingRenderer:
    def __init__(self) -> None:
        self.frames: List[List[RenderLine]] = []
        self.clears = 0
        self.closes = 0

    def draw(self, lines: Sequence[RenderLine]) -> None:
        self.frames.append(list(lines))

    def clear(self) -> None:
        self.clears += 1

    def close(self) -> None:
        self.closes += 1

    @property
    def last(self) -> List[RenderLine]:
        return self.frames[-1] if self.frames else []


class ExplodingRenderer(RecordingRenderer):
    def draw(self, lines: Sequence[RenderLine]) -> None:
        raise RuntimeError("terminal went away")


def _stack(**kwargs):
    buf = io.StringIO()
    sink = LogSink(console=Console(file=buf, width=200))
    renderer = kwargs.pop("renderer", None) or RecordingRenderer()
    stack = ProgressStack(renderer=renderer, **kwargs)
    sink.attach(stack)
    return stack, renderer, buf


class TestProgressStackLifecycle(unittest.TestCase):
    def test_start_assigns_unique_ids(self) -> None:
        stack, _, _ = _stack()
        ids = [stack.start(f"op {i}") for i in range(5)]
        self.assertEqual(len(set(ids)), 5)
        self.assertEqual(len(stack), 5)

    def test_ids_are_not_reused_after_completion(self) -> None:
        stack, _, _ = _stack()
        first = stack.start("one")
        stack.complete(first)
        second = stack.start("two")
        self.assertNotEqual(first, second)

    def test_blank_activity_is_rejected(self) -> None:
        stack, _, _ = _stack()
        with self.assertRaises(ValidationError):
            stack.start("   ")

    def test_update_merges_metrics_and_status(self) -> None:
        stack, _, _ = _stack()
        pid = stack.start("Download", initial_metrics={"files": 1})
        stack.update(pid, percent_complete=40, status="halfway", metrics={"bytes": 10})
        node = stack.get(pid)
        self.assertEqual(node.percent_complete, 40)
        self.assertEqual(node.status, "halfway")
        self.assertEqual(node.metrics, {"files": 1, "bytes": 10})

    def test_percent_is_clamped(self) -> None:
        stack, _, _ = _stack()
        pid = stack.start("Clamp")
        stack.update(pid, percent_complete=-10)
        self.assertEqual(stack.get(pid).percent_complete, 0)
        stack.update(pid, percent_complete=150)
        self.assertEqual(stack.get(pid).percent_complete, 100)

    def test_non_finite_percent_is_ignored_with_warning(self) -> None:
        stack, _, buf = _stack()
        pid = stack.start("Copy")
        stack.update(pid, percent_complete=30)
        stack.update(pid, percent_complete=float("nan"))
        stack.update(pid, percent_complete=float("inf"), status="still going")
        node = stack.get(pid)
        self.assertEqual(node.percent_complete, 30)
        self.assertEqual(node.status, "still going")
        self.assertIn("non-finite", buf.getvalue())

    def test_step_counts_drive_percent(self) -> None:
        stack, _, _ = _stack()
        pid = stack.start("Steps", total_operations=4)
        stack.update(pid, completed_operations=1)
        self.assertEqual(stack.get(pid).percent_complete, 25)
        stack.update(pid, completed_operations=3, percent_complete=10)
        self.assertEqual(stack.get(pid).percent_complete, 10)

    def test_complete_sets_final_state(self) -> None:
        stack, _, _ = _stack()
        pid = stack.start("Finish", status="working")
        stack.complete(pid, status="done", final_metrics={"items": 3})
        node = stack.get(pid)
        self.assertTrue(node.is_completed)
        self.assertEqual(node.percent_complete, 100)
        self.assertEqual(node.status, "done")
        self.assertEqual(node.metrics["items"], 3)
        self.assertGreaterEqual(node.completed_at, node.started_at)
        self.assertEqual(len(stack), 0)

    def test_renderer_closed_when_last_node_completes(self) -> None:
        stack, renderer, _ = _stack()
        pid = stack.start("Only")
        self.assertEqual(renderer.closes, 0)
        stack.complete(pid)
        self.assertEqual(renderer.closes, 1)


class TestProgressStackSoftFailures(unittest.TestCase):
    def test_unknown_id_update_is_noop_with_warning(self) -> None:
        stack, renderer, buf = _stack()
        pid = stack.start("Live")
        before = stack.get(pid).to_dict()
        frames = len(renderer.frames)

        stack.update("pg-999999", percent_complete=50)
        stack.complete("pg-999999")

        self.assertEqual(stack.get(pid).to_dict(), before)
        self.assertEqual(stack.tracked_count(), 1)
        self.assertIn("unknown", buf.getvalue())
        self.assertIn("[WARNING]", buf.getvalue())
        # The warning redraws the display but never changes its content.
        self.assertTrue(all(f == renderer.frames[frames - 1] for f in renderer.frames[frames - 1 :]))

    def test_double_complete_is_noop_with_warning(self) -> None:
        stack, _, buf = _stack()
        pid = stack.start("Once")
        stack.complete(pid, status="first")
        stack.complete(pid, status="second")
        self.assertEqual(stack.get(pid).status, "first")
        self.assertIn("already completed", buf.getvalue())

    def test_unknown_parent_creates_root_and_warns(self) -> None:
        stack, _, buf = _stack()
        pid = stack.start("Orphan", parent_id="nonexistent")
        node = stack.get(pid)
        self.assertIsNone(node.parent_id)
        self.assertEqual(stack.depth(pid), 0)
        self.assertIn("nonexistent", buf.getvalue())

    def test_completed_parent_is_not_a_valid_parent(self) -> None:
        stack, _, _ = _stack()
        parent = stack.start("Parent")
        stack.complete(parent)
        child = stack.start("Late child", parent_id=parent)
        self.assertIsNone(stack.get(child).parent_id)

    def test_strict_mode_raises(self) -> None:
        stack, _, _ = _stack(strict=True)
        with self.assertRaises(InvalidParent):
            stack.start("Orphan", parent_id="missing")
        with self.assertRaises(UnknownProgressId):
            stack.update("missing", percent_complete=1)
        with self.assertRaises(UnknownProgressId):
            stack.complete("missing")

    def test_renderer_failure_falls_back_to_null_renderer(self) -> None:
        stack, _, buf = _stack(renderer=ExplodingRenderer())
        pid = stack.start("Fragile")
        stack.update(pid, percent_complete=50)
        stack.complete(pid)
        self.assertEqual(type(stack.renderer).__name__, "NullRenderer")
        self.assertEqual(buf.getvalue().count("Progress rendering failed"), 1)
        self.assertTrue(stack.get(pid).is_completed)


class TestProgressStackNesting(unittest.TestCase):
    def test_render_orders_by_creation_and_indents_by_depth(self) -> None:
        stack, _, _ = _stack()
        root = stack.start("Root")
        a = stack.start("A", parent_id=root)
        b = stack.start("B", parent_id=root)
        a1 = stack.start("A1", parent_id=a)
        other = stack.start("Other root")

        lines = stack.render()
        self.assertEqual([l.node_id for l in lines], [root, a, a1, b, other])
        self.assertEqual([l.depth for l in lines], [0, 1, 2, 1, 0])

    def test_children_stay_visible_after_parent_completion(self) -> None:
        stack, renderer, _ = _stack()
        parent = stack.start("Parent")
        c1 = stack.start("Child 1", parent_id=parent)
        c2 = stack.start("Child 2", parent_id=parent)

        stack.complete(parent)
        visible = {l.node_id: l for l in renderer.last}
        self.assertIn(c1, visible)
        self.assertIn(c2, visible)
        self.assertTrue(visible[parent].completed)
        self.assertEqual(visible[c1].depth, 1)

        stack.complete(c1)
        ids = [l.node_id for l in renderer.last]
        self.assertEqual(ids, [parent, c2])

        stack.complete(c2)
        self.assertEqual(stack.tracked_count(), 0)
        self.assertEqual(len(stack), 0)

    def test_force_complete_all_completes_leaves_first(self) -> None:
        stack, _, _ = _stack()
        root = stack.start("Root")
        mid = stack.start("Mid", parent_id=root)
        leaf = stack.start("Leaf", parent_id=mid)

        count = stack.force_complete_all()
        self.assertEqual(count, 3)
        nodes = {n.id: n for n in stack.recent()}
        self.assertLessEqual(nodes[leaf].completed_at, nodes[mid].completed_at)
        self.assertLessEqual(nodes[mid].completed_at, nodes[root].completed_at)
        self.assertEqual(nodes[root].status, "Abandoned")
        self.assertEqual(len(stack), 0)

    def test_context_manager_force_completes(self) -> None:
        stack, renderer, _ = _stack()
        with stack:
            stack.start("Leaked")
        self.assertEqual(len(stack), 0)
        self.assertGreaterEqual(renderer.closes, 1)

    def test_forest_invariant_holds_across_random_walk(self) -> None:
        stack, _, _ = _stack()
        live: List[str] = []
        for i in range(200):
            if live and i % 3 == 0:
                stack.complete(live.pop(i % len(live)))
            else:
                parent = live[i % len(live)] if live and i % 2 else None
                live.append(stack.start(f"op {i}", parent_id=parent))
            for node in stack.live_nodes():
                chain = set()
                current = node
                while current.parent_id is not None:
                    self.assertNotIn(current.id, chain)
                    chain.add(current.id)
                    current = stack.get(current.parent_id)
                    self.assertIsNotNone(current)
        stack.force_complete_all()
        self.assertEqual(len(stack), 0)


class TestProgressScenarios(unittest.TestCase):
    def test_scenario_root_with_two_children(self) -> None:
        stack, _, _ = _stack()
        root = stack.start("Root", total_operations=2)
        child1 = stack.start("Child1", parent_id=root)
        stack.complete(child1)
        child2 = stack.start("Child2", parent_id=root)
        stack.complete(child2)
        stack.complete(root)

        self.assertEqual(len(stack), 0)
        for pid in (root, child1, child2):
            node = stack.get(pid)
            self.assertIsNotNone(node)
            self.assertGreaterEqual(node.completed_at, node.started_at)

    def test_scenario_nonexistent_parent(self) -> None:
        stack, _, buf = _stack()
        pid = stack.start("Detached", parent_id="nonexistent")
        self.assertIsNone(stack.get(pid).parent_id)
        self.assertIn("[WARNING]", buf.getvalue())

    def test_scenario_thousand_pairs_bounded_memory(self) -> None:
        stack, _, _ = _stack(retention=50)
        for i in range(1000):
            stack.complete(stack.start(f"op {i}"))
        self.assertEqual(len(stack), 0)
        self.assertEqual(stack.tracked_count(), 0)
        self.assertEqual(len(stack.recent()), 50)


if __name__ == "__main__":
    unittest.main()
