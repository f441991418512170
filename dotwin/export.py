from __future__ import annotations

import json
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable

from dotwin.core.errors import ExportError
from dotwin.core.orchestrator import RunReport
from dotwin.recommend.engine import Recommendation


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def recommendations_document(recs: Iterable[Recommendation]) -> Dict[str, Any]:
    items = list(recs)
    return {
        "generatedAt": _now_iso(),
        "summary": {
            "total": len(items),
            "byPriority": dict(Counter(r.priority.value for r in items)),
            "byCategory": dict(Counter(r.category for r in items)),
        },
        "recommendations": [r.to_dict() for r in items],
    }


def test_results_document(report: RunReport) -> Dict[str, Any]:
    summary: Dict[str, Any] = dict(report.summary())
    summary["byType"] = dict(Counter(r.type for r in report.results))
    return {
        "generatedAt": _now_iso(),
        "configuration": report.configuration,
        "mode": report.mode,
        "runId": report.run_id,
        "dryRun": report.dry_run,
        "summary": summary,
        "results": [r.to_dict() for r in report.results],
    }


def write_json(document: Dict[str, Any], path: Path) -> Path:
    """
    Write an export artifact. Failures raise ExportError; the caller's
    in-memory results are untouched.
    """
    p = Path(path).expanduser()
    try:
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(json.dumps(document, ensure_ascii=False, indent=2, default=str) + "\n", encoding="utf-8")
    except OSError as e:
        raise ExportError(
            code="export.write_failed",
            message=f"Could not write export file: {p}",
            data={"path": str(p), "error": repr(e)},
        ) from e
    return p


def export_recommendations(recs: Iterable[Recommendation], path: Path) -> Path:
    return write_json(recommendations_document(recs), path)


def export_test_results(report: RunReport, path: Path) -> Path:
    return write_json(test_results_document(report), path)
