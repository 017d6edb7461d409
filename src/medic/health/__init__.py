"""Health analysis: per-module scoring and workspace aggregation."""

from medic.health.analyzer import HealthAnalyzer
from medic.health.checks import CheckReport
from medic.health.recommendations import recommend_strategy, recommendations_for

__all__ = [
    "CheckReport",
    "HealthAnalyzer",
    "recommend_strategy",
    "recommendations_for",
]
