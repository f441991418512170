from __future__ import annotations

import argparse
import json
import sys
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotwin.bootstrap_items import build_item_registry
from dotwin.configuration import load_configuration
from dotwin.core.errors import ConfigurationLoadError, DotWinError, ExportError, ItemExecutionError, ValidationError
from dotwin.core.orchestrator import Orchestrator, RunReport
from dotwin.core.runtime_context import RuntimeContext
from dotwin.environment import validate_environment
from dotwin.export import export_recommendations, export_test_results
from dotwin.profiler import SystemProfile, SystemProfiler
from dotwin.recommend import RecommendationEngine, builtin_rules, filter_recommendations
from dotwin.registry.item_registry import ItemRegistry
from dotwin.registry.plugin_registry import PluginManager
from dotwin.resources import plugins_dir
from dotwin.schema_store import SchemaStore
from dotwin.settings import Settings, maybe_load_dotenv
from dotwin.trace.replay import Replay


def _load_json(path: Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8"))


def _print_json(obj: Any) -> None:
    print(json.dumps(obj, ensure_ascii=False, indent=2, default=str))


def _format_cli_error(e: Exception) -> str:
    """
    Print-friendly error formatting for CLI commands.
    - Always includes code/message (via __str__) when it's a DotWinError
    - Includes structured `data` payload when present
    """
    if isinstance(e, DotWinError) and isinstance(e.data, dict) and e.data:
        data = dict(e.data)
        # The full report is printed on its own; keep the error body short.
        data.pop("report", None)
        return str(e) + "\n" + json.dumps(data, ensure_ascii=False, indent=2, default=str)
    return str(e)


def _new_run_id() -> str:
    return "run_" + uuid.uuid4().hex[:12]


def _context(args: argparse.Namespace, *, dry_run: bool = False, continue_on_error: bool = True) -> RuntimeContext:
    settings = Settings.from_env()
    log_path = Path(args.log_path) if args.log_path else settings.log_path
    trace_path = Path(args.trace) if args.trace else settings.trace_path
    return RuntimeContext.create(
        args.run_id or _new_run_id(),
        log_path=log_path,
        verbose=bool(args.verbose or settings.verbose),
        debug=bool(args.debug or settings.debug),
        retention=settings.progress_retention,
        dry_run=dry_run,
        continue_on_error=continue_on_error,
        trace_path=trace_path,
    )


def _load_plugins(ctx: Optional[RuntimeContext], items: ItemRegistry, engine: Optional[RecommendationEngine]) -> PluginManager:
    manager = PluginManager(item_registry=items, engine=engine, context=ctx)
    manager.load_from_dir(plugins_dir())
    extra = Settings.from_env().plugins_dir
    if extra is not None:
        manager.load_from_dir(extra)
    return manager


def _report_exit_code(report: RunReport) -> int:
    return 0 if report.ok else 1


def _export_report(ctx: RuntimeContext, report: RunReport, export: Optional[str]) -> bool:
    if not export:
        return True
    try:
        path = export_test_results(report, Path(export))
    except ExportError as e:
        ctx.sink.error(str(e))
        return False
    ctx.sink.info(f"Results exported to {path}")
    return True


def cmd_test(args: argparse.Namespace) -> int:
    validate_environment()
    ctx = _context(args)
    try:
        items = build_item_registry()
        manager = _load_plugins(ctx, items, None)
        config = load_configuration(Path(args.config))
        report = Orchestrator(items).test_configuration(ctx, config, parallel=bool(args.parallel), max_workers=args.max_workers)
        exported = _export_report(ctx, report, args.export)
        _print_json(report.to_dict())
        manager.unload_all()
        return _report_exit_code(report) if exported else 1
    finally:
        ctx.close()


def cmd_apply(args: argparse.Namespace) -> int:
    if not args.dry_run:
        validate_environment()
    ctx = _context(args, dry_run=bool(args.dry_run), continue_on_error=not args.fail_fast)
    try:
        items = build_item_registry()
        manager = _load_plugins(ctx, items, None)
        config = load_configuration(Path(args.config))
        try:
            report = Orchestrator(items).invoke_configuration(ctx, config)
        except ItemExecutionError as e:
            if not (e.data and "report" in e.data):
                raise
            ctx.sink.error(str(e))
            _print_json(e.data["report"])
            manager.unload_all()
            return 1
        exported = _export_report(ctx, report, args.export)
        _print_json(report.to_dict())
        manager.unload_all()
        return _report_exit_code(report) if exported else 1
    finally:
        ctx.close()


def _profile(args: argparse.Namespace, ctx: RuntimeContext) -> SystemProfile:
    if args.profile_json:
        raw = _load_json(Path(args.profile_json))
        if not isinstance(raw, dict):
            raise ValidationError(code="profile.invalid", message="Profile JSON must be an object")
        return SystemProfile.from_dict(raw)
    node = ctx.progress.start("Profiling system")
    try:
        return SystemProfiler(sink=ctx.sink).collect(progress_id=node)
    finally:
        ctx.progress.complete(node)


def cmd_recommend(args: argparse.Namespace) -> int:
    if args.apply and not args.dry_run:
        validate_environment()
    ctx = _context(args, dry_run=bool(args.dry_run))
    try:
        items = build_item_registry()
        engine = RecommendationEngine(items, rules=builtin_rules())
        manager = _load_plugins(ctx, items, engine)

        profile = _profile(args, ctx)
        recs = engine.generate_recommendations(profile, ctx)
        recs = filter_recommendations(recs, category=args.category, priority=args.priority, max_results=args.max_results)
        ctx.sink.info(f"{len(recs)} recommendations")

        out: Dict[str, Any] = {"recommendations": [r.to_dict() for r in recs]}
        ok = True
        if args.apply:
            applied: List[Dict[str, Any]] = []
            for rec in recs:
                if not rec.automated:
                    continue
                result = engine.apply_recommendation(rec, ctx)
                applied.append({"title": rec.title, **result})
                ok = ok and bool(result["success"])
            out["applied"] = applied

        if args.export:
            try:
                path = export_recommendations(recs, Path(args.export))
                ctx.sink.info(f"Recommendations exported to {path}")
            except ExportError as e:
                ctx.sink.error(str(e))
                ok = False

        _print_json(out)
        manager.unload_all()
        return 0 if ok else 1
    finally:
        ctx.close()


def cmd_profile(args: argparse.Namespace) -> int:
    ctx = _context(args)
    try:
        profile = SystemProfiler(sink=ctx.sink).collect()
        _print_json(profile.to_dict())
        if args.output:
            out = Path(args.output)
            out.parent.mkdir(parents=True, exist_ok=True)
            out.write_text(json.dumps(profile.to_dict(), ensure_ascii=False, indent=2) + "\n", encoding="utf-8")
        return 0
    finally:
        ctx.close()


def cmd_list_kinds(args: argparse.Namespace) -> int:
    items = build_item_registry()
    _load_plugins(None, items, None)
    kinds = items.list_kinds()
    if args.json:
        _print_json(kinds)
    else:
        for k in kinds:
            print("{kind} - {class} ({origin})".format(**k))
    return 0


def cmd_list_plugins(args: argparse.Namespace) -> int:
    items = build_item_registry()
    engine = RecommendationEngine(items, rules=builtin_rules())
    manager = _load_plugins(None, items, engine)
    plugins = manager.list_plugins()
    if args.json:
        _print_json(plugins)
    else:
        for p in plugins:
            print("{name} {version} - kinds: {kinds}, rules: {rules}".format(
                name=p["name"], version=p["version"], kinds=", ".join(p["item_kinds"]) or "-", rules=p["rules"]
            ))
    return 0


def cmd_check_schemas(args: argparse.Namespace) -> int:
    store = SchemaStore()
    store.load()

    schema_errors = store.check_schemas()
    if schema_errors:
        print("Schema validation failed:")
        for name, err in schema_errors:
            print("- {}: {}".format(name, err))
        return 1

    if args.config:
        try:
            load_configuration(Path(args.config), store=store)
        except ConfigurationLoadError as e:
            print("Configuration {} failed validation:".format(args.config))
            for err in (e.data or {}).get("errors", [e.message]):
                print("  - {}".format(err))
            return 1

    print("Schemas OK ({})".format(len(store.list_schema_names())))
    return 0


def cmd_show_trace(args: argparse.Namespace) -> int:
    replay = Replay(Path(args.trace))

    if args.runs:
        for rid in replay.run_ids():
            summary = replay.run_summary(rid)
            print("{} {}".format(rid, json.dumps(summary, ensure_ascii=False) if summary else "(unfinished)"))
        return 0

    filters = {"event_type": args.event_type, "run_id": args.run_id, "item": args.item}
    if args.tail is not None:
        events = replay.tail(args.tail, **filters)
    else:
        events = list(replay.iter_events(**filters))

    for e in events:
        print(json.dumps(e, ensure_ascii=False, indent=2 if args.pretty else None))
    if replay.skipped:
        print("Skipped {} unreadable trace lines".format(replay.skipped), file=sys.stderr)
    return 0


def _add_common(p: argparse.ArgumentParser) -> None:
    p.add_argument("--verbose", action="store_true", help="Show verbose log lines")
    p.add_argument("--debug", action="store_true", help="Show debug log lines (implies --verbose)")
    p.add_argument("--log-path", default=None, help="Also write log lines to this file")
    p.add_argument("--trace", default=None, help="Append JSONL trace events to this file")
    p.add_argument("--run-id", default=None, help="Run identifier (default: generated)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="dotwin", description="DotWin: declarative Windows configuration")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_test = sub.add_parser("test", help="Test whether the machine matches a configuration")
    p_test.add_argument("config", help="Configuration file (.json, .yml, .yaml)")
    p_test.add_argument("--parallel", action="store_true", help="Test items in worker processes")
    p_test.add_argument("--max-workers", type=int, default=None)
    p_test.add_argument("--export", default=None, help="Write results JSON to this path")
    _add_common(p_test)
    p_test.set_defaults(func=cmd_test)

    p_apply = sub.add_parser("apply", help="Apply a configuration")
    p_apply.add_argument("config", help="Configuration file (.json, .yml, .yaml)")
    p_apply.add_argument("--dry-run", action="store_true", help="Test only and report what would change")
    p_apply.add_argument("--fail-fast", action="store_true", help="Stop at the first failing item")
    p_apply.add_argument("--export", default=None, help="Write results JSON to this path")
    _add_common(p_apply)
    p_apply.set_defaults(func=cmd_apply)

    p_rec = sub.add_parser("recommend", help="Generate recommendations for this machine")
    p_rec.add_argument("--category", default=None)
    p_rec.add_argument("--priority", default=None, choices=["critical", "high", "medium", "low"], help="Minimum priority")
    p_rec.add_argument("--max-results", type=int, default=None)
    p_rec.add_argument("--export", default=None, help="Write recommendations JSON to this path")
    p_rec.add_argument("--profile-json", default=None, help="Use a saved profile instead of profiling this machine")
    p_rec.add_argument("--apply", action="store_true", help="Apply automated recommendations")
    p_rec.add_argument("--dry-run", action="store_true", help="With --apply: report only")
    _add_common(p_rec)
    p_rec.set_defaults(func=cmd_recommend)

    p_prof = sub.add_parser("profile", help="Print the system profile as JSON")
    p_prof.add_argument("--output", default=None, help="Also write the profile to this path")
    _add_common(p_prof)
    p_prof.set_defaults(func=cmd_profile)

    p_kinds = sub.add_parser("list-kinds", help="List configuration item kinds")
    p_kinds.add_argument("--json", action="store_true")
    p_kinds.set_defaults(func=cmd_list_kinds)

    p_plugins = sub.add_parser("list-plugins", help="List loaded plugins")
    p_plugins.add_argument("--json", action="store_true")
    p_plugins.set_defaults(func=cmd_list_plugins)

    p_check = sub.add_parser("check-schemas", help="Validate shipped schemas (and optionally a configuration)")
    p_check.add_argument("--config", default=None)
    p_check.set_defaults(func=cmd_check_schemas)

    p_show_trace = sub.add_parser("show-trace", help="Show trace events from a JSONL file")
    p_show_trace.add_argument("--trace", required=True)
    p_show_trace.add_argument("--event-type", default=None)
    p_show_trace.add_argument("--run-id", default=None)
    p_show_trace.add_argument("--item", default=None)
    p_show_trace.add_argument("--runs", action="store_true", help="List run ids with their summaries")
    p_show_trace.add_argument("--tail", type=int, default=None)
    p_show_trace.add_argument("--pretty", action="store_true")
    p_show_trace.set_defaults(func=cmd_show_trace)

    return parser


def main(argv=None) -> int:
    maybe_load_dotenv()
    parser = build_parser()
    ns = parser.parse_args(argv)
    try:
        return int(ns.func(ns))
    except Exception as e:  # noqa: BLE001
        print(_format_cli_error(e))
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
