from __future__ import annotations

import time
from concurrent.futures import BrokenExecutor, ProcessPoolExecutor, as_completed
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from dotwin.configuration import ConfigurationDocument, ItemSpec
from dotwin.registry.item_registry import ItemRegistry, resolve_import_path
from dotwin.items.system import SystemAdapters
from dotwin.trace.trace_emitter import TraceEmitter
from dotwin.trace.trace_store_jsonl import TraceStoreJSONL

from .errors import DotWinError, ItemExecutionError
from .runtime_context import RuntimeContext


@dataclass
class ItemResult:
    name: str
    type: str
    success: bool
    in_desired_state: bool = False
    message: str = ""
    error: Optional[str] = None
    duration_s: float = 0.0
    changed: bool = False
    skipped: bool = False
    would_apply: bool = False
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def status(self) -> str:
        if self.skipped:
            return "skipped"
        if not self.success:
            return "failed"
        if self.would_apply:
            return "would_apply"
        return "passed" if self.in_desired_state else "drifted"

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["status"] = self.status
        return out

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "ItemResult":
        keys = cls.__dataclass_fields__.keys()
        return cls(**{k: v for k, v in raw.items() if k in keys})


@dataclass
class RunReport:
    run_id: str
    mode: str
    configuration: str
    dry_run: bool = False
    results: List[ItemResult] = field(default_factory=list)
    aborted: bool = False
    duration_s: float = 0.0

    def summary(self) -> Dict[str, int]:
        counts = {"total": len(self.results), "passed": 0, "failed": 0, "skipped": 0, "changed": 0, "drifted": 0, "would_apply": 0}
        for r in self.results:
            counts[r.status] += 1
            if r.changed:
                counts["changed"] += 1
        return counts

    @property
    def ok(self) -> bool:
        return not self.aborted and all(r.success for r in self.results)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "mode": self.mode,
            "configuration": self.configuration,
            "dry_run": self.dry_run,
            "aborted": self.aborted,
            "duration_s": round(self.duration_s, 3),
            "summary": self.summary(),
            "results": [r.to_dict() for r in self.results],
        }


def _error_text(e: BaseException) -> str:
    if isinstance(e, DotWinError):
        return str(e)
    return f"{type(e).__name__}: {e}"


def _test_item_in_worker(spec_dict: Dict[str, Any], kind_paths: Dict[str, str]) -> Dict[str, Any]:
    """
    Process-pool entry point. Rebuilds the item from its raw spec and returns a
    fully formed result dict; the parent alone touches progress and logging.
    """
    spec = ItemSpec.from_dict(spec_dict)
    started = time.perf_counter()
    result = ItemResult(name=spec.name, type=spec.type, success=False)
    try:
        registry = ItemRegistry()
        path = kind_paths.get(spec.type)
        if path is not None:
            registry.register(spec.type, resolve_import_path(path))
        item = registry.create(spec)
        result.in_desired_state = bool(item.test())
        result.success = True
        result.message = "In desired state" if result.in_desired_state else "Not in desired state"
    except Exception as e:  # noqa: BLE001
        result.error = _error_text(e)
        result.message = "Test failed"
    result.duration_s = time.perf_counter() - started
    return result.to_dict()


class Orchestrator:
    """
    Runs test/apply over the items of a configuration document.

    Hard rules:
    - per-item failures are recorded, never raised, unless fail-fast is requested.
    - dry-run never calls apply(); result shapes are identical.
    - every item produces trace events.
    """

    def __init__(self, item_registry: ItemRegistry, adapters: Optional[SystemAdapters] = None):
        self._items = item_registry
        self._adapters = adapters

    def _trace(self, ctx: RuntimeContext) -> TraceEmitter:
        store = TraceStoreJSONL(ctx.trace_path) if ctx.trace_path else None
        return TraceEmitter(store=store, run_id=ctx.run_id)

    @staticmethod
    def _continue_on_error(ctx: RuntimeContext, config: ConfigurationDocument) -> bool:
        return bool(ctx.continue_on_error) and bool(config.setting("continueOnError", True))

    # ---------------------------------------------------------------- test

    def test_configuration(
        self,
        ctx: RuntimeContext,
        config: ConfigurationDocument,
        parallel: bool = False,
        max_workers: Optional[int] = None,
    ) -> RunReport:
        if parallel and len(config.items) > 1:
            return self._test_parallel(ctx, config, max_workers)
        return self._run(ctx, config, mode="test")

    def _test_parallel(self, ctx: RuntimeContext, config: ConfigurationDocument, max_workers: Optional[int]) -> RunReport:
        trace = self._trace(ctx)
        report = RunReport(run_id=ctx.run_id, mode="test", configuration=config.name, dry_run=ctx.dry_run)
        started = time.perf_counter()
        total = len(config.items)
        run_node = ctx.progress.start(
            f"Testing '{config.name}'",
            status=f"0/{total} items (parallel)",
            total_operations=total,
            initial_metrics={"parallel": True},
        )
        trace.emit("run_started", message="Parallel test started", data={"mode": "test", "items": total, "parallel": True})
        ctx.sink.info(f"Testing {total} items in parallel", progress_id=run_node)

        kind_paths = self._items.import_paths(importable_only=True)
        # Kinds a worker cannot re-import are tested here; unknown types still go to the pool and fail there.
        local = [idx for idx, spec in enumerate(config.items) if spec.type in self._items and spec.type not in kind_paths]
        slots: List[Optional[ItemResult]] = [None] * total
        done = 0
        with ProcessPoolExecutor(max_workers=max_workers) as pool:
            futures = {
                pool.submit(_test_item_in_worker, spec.to_dict(), kind_paths): idx
                for idx, spec in enumerate(config.items)
                if idx not in local
            }
            for idx in local:
                slots[idx] = self._run_item(ctx, trace, config.items[idx], mode="test", parent_id=run_node)
                done += 1
                ctx.progress.update(run_node, completed_operations=done, status=f"{done}/{total} items (parallel)")
            for fut in as_completed(futures):
                idx = futures[fut]
                spec = config.items[idx]
                try:
                    result = ItemResult.from_dict(fut.result())
                except (BrokenExecutor, OSError) as e:
                    result = ItemResult(name=spec.name, type=spec.type, success=False, message="Worker failed", error=_error_text(e))
                slots[idx] = result
                done += 1
                self._record_test(ctx, trace, result, run_node)
                ctx.progress.update(run_node, completed_operations=done, status=f"{done}/{total} items (parallel)")

        report.results = [r for r in slots if r is not None]
        report.duration_s = time.perf_counter() - started
        self._finish(ctx, trace, report, run_node)
        return report

    def _record_test(self, ctx: RuntimeContext, trace: TraceEmitter, result: ItemResult, run_node: str) -> None:
        if result.success:
            trace.emit(
                "item_tested",
                item=result.name,
                item_type=result.type,
                message=result.message,
                data={"in_desired_state": result.in_desired_state, "duration_s": result.duration_s},
            )
            log = ctx.sink.success if result.in_desired_state else ctx.sink.warning
            log(f"{result.name}: {result.message}", progress_id=run_node)
        else:
            trace.emit("item_failed", item=result.name, item_type=result.type, message=result.message, data={"error": result.error})
            ctx.sink.error(f"{result.name}: {result.error}", progress_id=run_node)

    # ---------------------------------------------------------------- invoke

    def invoke_configuration(self, ctx: RuntimeContext, config: ConfigurationDocument) -> RunReport:
        return self._run(ctx, config, mode="apply")

    # ---------------------------------------------------------------- shared

    def _run(self, ctx: RuntimeContext, config: ConfigurationDocument, *, mode: str) -> RunReport:
        trace = self._trace(ctx)
        report = RunReport(run_id=ctx.run_id, mode=mode, configuration=config.name, dry_run=ctx.dry_run)
        started = time.perf_counter()
        total = len(config.items)
        verb = "Testing" if mode == "test" else ("Previewing" if ctx.dry_run else "Applying")
        run_node = ctx.progress.start(
            f"{verb} '{config.name}'",
            status=f"0/{total} items",
            total_operations=total,
            initial_metrics={"dry_run": ctx.dry_run},
        )
        trace.emit("run_started", message=f"{verb} configuration", data={"mode": mode, "items": total, "dry_run": ctx.dry_run})
        continue_on_error = self._continue_on_error(ctx, config)

        failed: Optional[ItemResult] = None
        for idx, spec in enumerate(config.items):
            if failed is not None:
                report.results.append(
                    ItemResult(name=spec.name, type=spec.type, success=True, skipped=True, message=f"Skipped after failure of '{failed.name}'")
                )
                trace.emit("item_skipped", item=spec.name, item_type=spec.type, message="Skipped (fail-fast)")
                continue

            result = self._run_item(ctx, trace, spec, mode=mode, parent_id=run_node)
            report.results.append(result)
            ctx.progress.update(run_node, completed_operations=idx + 1, status=f"{idx + 1}/{total} items")
            if not result.success and not continue_on_error:
                failed = result
                report.aborted = True
                ctx.sink.error(f"Stopping after failure of '{spec.name}'", progress_id=run_node)

        report.duration_s = time.perf_counter() - started
        self._finish(ctx, trace, report, run_node)
        if failed is not None:
            raise ItemExecutionError(
                code="run.aborted",
                message=f"Item '{failed.name}' failed: {failed.error}",
                data={"item": failed.name, "summary": report.summary(), "report": report.to_dict()},
            )
        return report

    def _run_item(self, ctx: RuntimeContext, trace: TraceEmitter, spec: ItemSpec, *, mode: str, parent_id: str) -> ItemResult:
        node = ctx.progress.start(spec.name, status="Testing", parent_id=parent_id, initial_metrics={"type": spec.type})
        trace.emit("item_started", item=spec.name, item_type=spec.type, message=f"{mode} started")
        started = time.perf_counter()
        result = ItemResult(name=spec.name, type=spec.type, success=False)
        try:
            item = self._items.create(spec, self._adapters)
            result.in_desired_state = bool(item.test())
            trace.emit(
                "item_tested",
                item=spec.name,
                item_type=spec.type,
                message="Tested",
                data={"in_desired_state": result.in_desired_state},
            )

            if mode == "test" or result.in_desired_state:
                result.success = True
                result.message = "In desired state" if result.in_desired_state else "Not in desired state"
            elif ctx.dry_run:
                result.success = True
                result.would_apply = True
                result.message = "Would apply"
                result.details = {"current": item.get_current_state()}
            else:
                ctx.progress.update(node, percent_complete=50, status="Applying")
                item.ensure_can_apply()
                result.details = item.apply() or {}
                result.changed = True
                result.in_desired_state = bool(item.test())
                result.success = result.in_desired_state
                result.message = "Applied" if result.success else "Applied but still not in desired state"
                if not result.success:
                    result.error = "item.not_converged: desired state not reached after apply"
                trace.emit(
                    "item_applied",
                    item=spec.name,
                    item_type=spec.type,
                    message=result.message,
                    data={"in_desired_state": result.in_desired_state, "details": result.details},
                )
        except Exception as e:  # noqa: BLE001
            result.success = False
            result.error = _error_text(e)
            result.message = "Test failed" if mode == "test" else "Apply failed"
            trace.emit("item_failed", item=spec.name, item_type=spec.type, message=result.message, data={"error": result.error})

        result.duration_s = time.perf_counter() - started
        if not result.success:
            ctx.sink.error(f"{result.message}: {result.error}", progress_id=node)
        elif result.changed:
            ctx.sink.success(result.message, progress_id=node)
        elif result.in_desired_state:
            ctx.sink.verbose(result.message, progress_id=node)
        else:
            ctx.sink.warning(result.message, progress_id=node)
        ctx.progress.complete(node, status=result.status, final_metrics={"duration_s": round(result.duration_s, 3)})
        return result

    def _finish(self, ctx: RuntimeContext, trace: TraceEmitter, report: RunReport, run_node: str) -> None:
        summary = report.summary()
        trace.emit("run_finished", message="Run finished", data={"ok": report.ok, "summary": summary})
        ctx.progress.complete(run_node, status="Aborted" if report.aborted else "Done", final_metrics=summary)
        text = "{passed} passed, {failed} failed, {skipped} skipped, {changed} changed".format(**summary)
        (ctx.sink.success if report.ok else ctx.sink.warning)(f"{report.configuration}: {text}")
