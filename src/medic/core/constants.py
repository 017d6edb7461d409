"""Global constants for Medic.

Centralizes the scoring weights, recovery yields, and timing defaults used
throughout the engine, making them discoverable, consistent, and easy to
modify.
"""

# =============================================================================
# Health Scoring Penalties
# =============================================================================

MAX_HEALTH_SCORE = 100
"""Score of a module with no detected issues."""

MIN_HEALTH_SCORE = 0
"""Floor for every computed health score."""

MISSING_DIRECTORY_PENALTY = 50
"""Penalty when the module directory is absent. Short-circuits all other checks."""

MISSING_FILE_PENALTY = 5
"""Penalty per missing required file for regular modules."""

MISSING_FILE_PENALTY_LARGE = 4
"""Penalty per missing required file for modules with many required files."""

MISSING_DEPENDENCY_PENALTY = 3
"""Penalty per missing required dependency declaration."""

MISSING_DEPENDENCY_PENALTY_LARGE = 2
"""Penalty per missing dependency for modules with many required dependencies."""

LARGE_MODULE_FILE_THRESHOLD = 12
"""Modules with more required files than this use the reduced file penalty."""

LARGE_MODULE_DEPENDENCY_THRESHOLD = 5
"""Modules with more required dependencies than this use the reduced penalty."""

INVALID_PACKAGE_JSON_PENALTY = 10
"""Penalty when package.json parses but lacks name or version."""

UNPARSEABLE_PACKAGE_JSON_PENALTY = 15
"""Penalty when package.json is not valid JSON."""

INVALID_TSCONFIG_PENALTY = 5
"""Penalty when tsconfig.json lacks compilerOptions or is not valid JSON."""

COMPILATION_FAILURE_PENALTY = 20
"""Penalty when the type-check command fails."""

BUILD_FAILURE_PENALTY = 15
"""Penalty when the build command fails."""

TEST_FAILURE_PENALTY = 10
"""Penalty when the test command fails."""

WORKSPACE_DEPENDENCY_PENALTY = 5
"""Penalty per unresolved workspace-level dependency issue (missing/conflicted/circular)."""

# =============================================================================
# Status Thresholds
# =============================================================================

HEALTHY_THRESHOLD = 90
"""Minimum score for ``healthy`` module status."""

WARNING_THRESHOLD = 70
"""Minimum score for ``warning`` module status."""

CRITICAL_THRESHOLD = 40
"""Minimum score for ``critical`` module status (below is ``failed``)."""

DEFAULT_TARGET_HEALTH_SCORE = 85
"""Score at which a module no longer needs recovery."""

REBUILD_SCORE_THRESHOLD = 40
"""Modules scoring below this are recommended for rebuild rather than repair."""

REBUILD_ERROR_COUNT_THRESHOLD = 10
"""Modules with more issues than this are recommended for rebuild."""

LAYER_WEIGHTS: dict[int, int] = {0: 3, 1: 2, 2: 1}
"""Weights for the workspace score: core modules count most."""

# =============================================================================
# Recovery Step Yields (health improvement points)
# =============================================================================

REPAIR_IMPROVEMENT = 25
CLEAN_ARTIFACTS_IMPROVEMENT = 10
RESTORE_STRUCTURE_IMPROVEMENT = 30
RESTORE_SERVICE_CONFIG_IMPROVEMENT = 20
REBUILD_DEPENDENCIES_IMPROVEMENT = 40
BACKUP_CONFIGURATION_IMPROVEMENT = 5
RESET_TO_DEFAULT_IMPROVEMENT = 50
RESTORE_CONFIGURATION_IMPROVEMENT = 20

BACKUP_DIR_NAME = ".recovery-backup"
"""Transient backup location inside a module directory used by reset."""

BUILD_ARTIFACT_PATHS: tuple[str, ...] = ("dist", "build", "node_modules/.cache")
"""Paths removed by the rebuild clean step."""

RESET_REMOVAL_PATHS: tuple[str, ...] = ("src", "dist", "node_modules", "package-lock.json")
"""Paths wiped by the reset-to-default step."""

BACKUP_CONFIG_FILES: tuple[str, ...] = ("package.json", "tsconfig.json", ".env.local")
"""Configuration files preserved across a reset."""

MERGED_PACKAGE_SECTIONS: tuple[str, ...] = ("dependencies", "devDependencies", "scripts")
"""package.json sections unioned (not overwritten) when restoring a backup."""

# =============================================================================
# Strategy Duration Estimates (seconds)
# =============================================================================

STRATEGY_DURATION_SECONDS: dict[str, int] = {
    "repair": 60,
    "rebuild": 180,
    "reset": 300,
}
"""Rough wall-clock estimates used for readiness and ticket responses."""

BUILD_TICKET_DURATION_SECONDS = 180
TEST_TICKET_DURATION_SECONDS = 120

# =============================================================================
# Scheduler Defaults
# =============================================================================

PHASE_COUNT = 5
"""Number of stages in the workspace recovery pipeline."""

DEFAULT_MAX_CONCURRENCY = 3
MIN_CONCURRENCY = 1
MAX_CONCURRENCY = 10

DEFAULT_TASK_TIMEOUT_SECONDS = 600.0
DEFAULT_PHASE_TIMEOUT_SECONDS = 1800.0
DEFAULT_SESSION_TIMEOUT_SECONDS = 7200.0
DEFAULT_SYNC_WAIT_SECONDS = 2.0
DEFAULT_CANCEL_GRACE_SECONDS = 5.0

STABILIZATION_MAX_CONFIG_ERRORS = 5
"""Stabilization refuses to start when the workspace reports more errors than this."""

IMPLEMENTATION_MIN_PRIOR_IMPROVEMENT = 20
"""Health improvement earlier phases must have produced before implementation runs."""

# =============================================================================
# Output Limits
# =============================================================================

COMMAND_OUTPUT_TRUNCATE_CHARS = 2000
"""Maximum command output kept in logs and error details."""

# =============================================================================
# Request Layer Cache Hints
# =============================================================================

MODULE_LIST_MAX_AGE_SECONDS = 60
MODULE_DETAIL_MAX_AGE_SECONDS = 30
