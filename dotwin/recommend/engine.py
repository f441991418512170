from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from dotwin.configuration import ItemSpec
from dotwin.core.errors import DotWinError, ValidationError
from dotwin.core.runtime_context import RuntimeContext
from dotwin.items.system import SystemAdapters
from dotwin.profiler import SystemProfile
from dotwin.registry.item_registry import ItemRegistry


class Priority(str, enum.Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]

    @classmethod
    def parse(cls, value: Any) -> "Priority":
        if isinstance(value, Priority):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as e:
            raise ValidationError(
                code="recommendation.priority_invalid",
                message=f"Unknown priority: {value}",
                data={"allowed": [p.value for p in cls]},
            ) from e


_PRIORITY_RANK = {Priority.CRITICAL: 0, Priority.HIGH: 1, Priority.MEDIUM: 2, Priority.LOW: 3}


@dataclass
class Recommendation:
    """
    A generated suggestion.

    ``implementation`` is an item spec (``{"name", "type", "properties"}``)
    when the recommendation can be applied automatically, else empty.
    ``metadata["effects"]`` maps a setting key to the value the recommendation
    would put in place; it drives conflict resolution.
    """

    title: str
    description: str
    category: str
    priority: Priority = Priority.MEDIUM
    confidence_score: float = 0.5
    implementation: Dict[str, Any] = field(default_factory=dict)
    prerequisites: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not isinstance(self.title, str) or not self.title.strip():
            raise ValidationError(code="recommendation.invalid", message="title must be a non-empty string")
        self.priority = Priority.parse(self.priority)
        self.confidence_score = max(0.0, min(1.0, float(self.confidence_score)))

    @property
    def effects(self) -> Dict[str, Any]:
        v = self.metadata.get("effects")
        return v if isinstance(v, dict) else {}

    @property
    def automated(self) -> bool:
        return bool(self.implementation.get("type"))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "priority": self.priority.value,
            "confidenceScore": round(self.confidence_score, 3),
            "implementation": dict(self.implementation),
            "prerequisites": list(self.prerequisites),
            "metadata": dict(self.metadata),
        }


Rule = Callable[[SystemProfile], Iterable[Recommendation]]


def deduplicate_recommendations(recs: Iterable[Recommendation]) -> List[Recommendation]:
    """Keep one recommendation per title (highest confidence; first seen on ties)."""
    best: Dict[str, Recommendation] = {}
    order: List[str] = []
    for r in recs:
        key = r.title.strip().lower()
        if key not in best:
            best[key] = r
            order.append(key)
        elif r.confidence_score > best[key].confidence_score:
            best[key] = r
    return [best[k] for k in order]


def prioritize_recommendations(recs: Iterable[Recommendation]) -> List[Recommendation]:
    return sorted(recs, key=lambda r: (r.priority.rank, -r.confidence_score))


def resolve_conflicts(recs: Iterable[Recommendation]) -> List[Recommendation]:
    """
    Walk the list in order and drop any recommendation whose effects assign a
    different value to a key already claimed by a selected one.
    """
    claimed: Dict[str, Any] = {}
    out: List[Recommendation] = []
    for r in recs:
        effects = r.effects
        if any(k in claimed and claimed[k] != v for k, v in effects.items()):
            continue
        for k, v in effects.items():
            claimed.setdefault(k, v)
        out.append(r)
    return out


def filter_recommendations(
    recs: Iterable[Recommendation],
    *,
    category: Optional[str] = None,
    priority: Optional[str] = None,
    max_results: Optional[int] = None,
) -> List[Recommendation]:
    """
    ``priority`` is a threshold: "high" keeps critical and high.
    """
    out = list(recs)
    if category:
        out = [r for r in out if r.category.lower() == category.strip().lower()]
    if priority:
        threshold = Priority.parse(priority).rank
        out = [r for r in out if r.priority.rank <= threshold]
    if max_results is not None and max_results >= 0:
        out = out[:max_results]
    return out


class RecommendationEngine:
    """
    Rule-based recommendations over a SystemProfile.

    Rules are plain callables ``profile -> iterable[Recommendation]``; plugins
    add their own through ``add_rule``. A failing rule is logged and skipped.
    """

    def __init__(
        self,
        item_registry: ItemRegistry,
        *,
        rules: Optional[Iterable[Rule]] = None,
        adapters: Optional[SystemAdapters] = None,
    ):
        self._items = item_registry
        self._adapters = adapters
        self._rules: List[Tuple[str, Rule]] = [("builtin", r) for r in (rules or [])]

    def add_rule(self, rule: Rule, *, origin: str = "builtin") -> None:
        self._rules.append((origin, rule))

    def remove_rules(self, origin: str) -> int:
        before = len(self._rules)
        self._rules = [(o, r) for o, r in self._rules if o != origin]
        return before - len(self._rules)

    @property
    def rule_count(self) -> int:
        return len(self._rules)

    def generate_recommendations(
        self, profile: SystemProfile, ctx: Optional[RuntimeContext] = None
    ) -> List[Recommendation]:
        node = ctx.progress.start("Generating recommendations", total_operations=len(self._rules)) if ctx else None
        found: List[Recommendation] = []
        for idx, (origin, rule) in enumerate(self._rules, start=1):
            try:
                found.extend(rule(profile) or [])
            except Exception as e:  # noqa: BLE001
                if ctx is not None:
                    ctx.sink.warning(f"Rule {getattr(rule, '__name__', rule)!s} ({origin}) failed: {e}", progress_id=node)
            if node is not None:
                ctx.progress.update(node, completed_operations=idx, metrics={"found": len(found)})

        out = resolve_conflicts(prioritize_recommendations(deduplicate_recommendations(found)))
        if node is not None:
            ctx.progress.complete(node, status=f"{len(out)} recommendations", final_metrics={"kept": len(out)})
        return out

    def resolve_conflicts(self, recs: Iterable[Recommendation]) -> List[Recommendation]:
        return resolve_conflicts(recs)

    def prioritize_recommendations(self, recs: Iterable[Recommendation]) -> List[Recommendation]:
        return prioritize_recommendations(recs)

    def apply_recommendation(self, rec: Recommendation, ctx: RuntimeContext) -> Dict[str, Any]:
        if not rec.automated:
            return {"success": False, "message": f"'{rec.title}' has no automated implementation"}

        impl = dict(rec.implementation)
        impl.setdefault("name", rec.title)
        spec = ItemSpec.from_dict(impl)
        node = ctx.progress.start(f"Recommendation: {rec.title}", status="Testing")
        try:
            item = self._items.create(spec, self._adapters)
            if item.test():
                out = {"success": True, "message": f"'{rec.title}' is already in place"}
            elif ctx.dry_run:
                out = {"success": True, "message": f"Would apply '{rec.title}' ({spec.type})"}
            else:
                ctx.progress.update(node, percent_complete=50, status="Applying")
                item.ensure_can_apply()
                item.apply()
                out = {"success": True, "message": f"Applied '{rec.title}'"}
        except DotWinError as e:
            out = {"success": False, "message": str(e)}
        except Exception as e:  # noqa: BLE001
            out = {"success": False, "message": f"{type(e).__name__}: {e}"}

        (ctx.sink.success if out["success"] else ctx.sink.error)(out["message"], progress_id=node)
        ctx.progress.complete(node, status="Done" if out["success"] else "Failed")
        return out
