"""Deterministic remediation advice derived from issue categories."""

from __future__ import annotations

from medic.core import constants
from medic.models.module import IssueCategory, RecoveryStrategy

# Fixed order; each entry fires when any of its categories was observed.
_RECOMMENDATION_RULES: tuple[tuple[frozenset[IssueCategory], str], ...] = (
    (
        frozenset({IssueCategory.MISSING_DIRECTORY}),
        "Run module reset to recreate the complete module structure",
    ),
    (
        frozenset({IssueCategory.MISSING_FILE}),
        "Run module rebuild to restore missing source files",
    ),
    (
        frozenset({IssueCategory.INVALID_PACKAGE_JSON, IssueCategory.MISSING_DEPENDENCY}),
        "Repair package.json configuration and reinstall dependencies",
    ),
    (
        frozenset({IssueCategory.COMPILATION, IssueCategory.INVALID_TSCONFIG}),
        "Fix TypeScript configuration and resolve compilation errors",
    ),
    (
        frozenset({IssueCategory.BUILD}),
        "Check build configuration and resolve build errors",
    ),
    (
        frozenset({IssueCategory.TESTS}),
        "Investigate failing tests after dependency repair",
    ),
    (
        frozenset({IssueCategory.WORKSPACE_DEPENDENCY}),
        "Resolve workspace dependency conflicts between modules",
    ),
)

FALLBACK_RECOMMENDATION = "Run comprehensive module repair to resolve detected issues"

_CONFIGURATION_CATEGORIES = frozenset({
    IssueCategory.INVALID_PACKAGE_JSON,
    IssueCategory.MISSING_DEPENDENCY,
    IssueCategory.INVALID_TSCONFIG,
    IssueCategory.WORKSPACE_DEPENDENCY,
})


def recommendations_for(categories: list[IssueCategory], has_issues: bool) -> list[str]:
    """Map observed categories to recommendations, in fixed rule order."""
    observed = set(categories)
    recommendations = [text for cats, text in _RECOMMENDATION_RULES if cats & observed]
    if has_issues and not recommendations:
        recommendations.append(FALLBACK_RECOMMENDATION)
    return recommendations


def recommend_strategy(
    categories: list[IssueCategory],
    score: int,
    error_count: int,
    target_score: int = constants.DEFAULT_TARGET_HEALTH_SCORE,
) -> RecoveryStrategy | None:
    """Pick the least intrusive strategy that addresses the findings.

    Returns None for a healthy module (score at target and no issues).
    """
    observed = set(categories)
    if error_count == 0 and score >= target_score:
        return None
    if IssueCategory.MISSING_DIRECTORY in observed:
        return RecoveryStrategy.RESET
    if (
        score < constants.REBUILD_SCORE_THRESHOLD
        or error_count > constants.REBUILD_ERROR_COUNT_THRESHOLD
    ):
        return RecoveryStrategy.REBUILD
    if observed & _CONFIGURATION_CATEGORIES:
        return RecoveryStrategy.REPAIR
    if IssueCategory.BUILD in observed:
        return RecoveryStrategy.REBUILD
    return RecoveryStrategy.REPAIR


__all__ = [
    "FALLBACK_RECOMMENDATION",
    "recommend_strategy",
    "recommendations_for",
]
