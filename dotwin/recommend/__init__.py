from .engine import (
  Priority,
  Recommendation,
  RecommendationEngine,
  Rule,
  deduplicate_recommendations,
  filter_recommendations,
  prioritize_recommendations,
  resolve_conflicts,
)
from .rules import builtin_rules

__all__ = [
  "Priority",
  "Recommendation",
  "RecommendationEngine",
  "Rule",
  "builtin_rules",
  "deduplicate_recommendations",
  "filter_recommendations",
  "prioritize_recommendations",
  "resolve_conflicts",
]
