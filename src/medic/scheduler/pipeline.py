"""The fixed five-phase workspace recovery pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from medic.models.session import (
    PhaseType,
    RecoveryPhase,
    RecoverySession,
    RecoveryTask,
    TaskAction,
)
from medic.modules.catalogue import ModuleRegistry
from medic.modules.descriptor import ModuleDescriptor


@dataclass(frozen=True)
class PhaseDefinition:
    """Static definition of one pipeline phase."""

    phase_id: int
    name: str
    description: str
    phase_type: PhaseType
    estimated_duration: int
    action: TaskAction
    mandatory: bool = True
    critical_only: bool = False

    def targets(self, registry: ModuleRegistry) -> list[ModuleDescriptor]:
        """Modules this phase schedules a task for, in layer order."""
        if self.critical_only:
            return registry.critical()
        return registry.all_descriptors()

    def build_tasks(self, registry: ModuleRegistry) -> list[RecoveryTask]:
        return [
            RecoveryTask(
                task_id=f"phase{self.phase_id}-{self.action.value}-{d.module_id}",
                phase_id=self.phase_id,
                module_id=d.module_id,
                layer=d.layer,
                action=self.action,
                mandatory=self.mandatory,
            )
            for d in self.targets(registry)
        ]


PIPELINE: tuple[PhaseDefinition, ...] = (
    PhaseDefinition(
        phase_id=1,
        name="Emergency Stabilization",
        description="Repair the critical core modules so the rest of the workspace can resolve",
        phase_type=PhaseType.STABILIZATION,
        estimated_duration=60,
        action=TaskAction.REPAIR,
        critical_only=True,
    ),
    PhaseDefinition(
        phase_id=2,
        name="Dependency Resolution",
        description="Repair configuration and reinstall dependencies of every module",
        phase_type=PhaseType.ANALYSIS,
        estimated_duration=120,
        action=TaskAction.REPAIR,
    ),
    PhaseDefinition(
        phase_id=3,
        name="Build Recovery",
        description="Rebuild every module from a clean state",
        phase_type=PhaseType.IMPLEMENTATION,
        estimated_duration=180,
        action=TaskAction.REBUILD,
    ),
    PhaseDefinition(
        phase_id=4,
        name="Integration Testing",
        description="Run each module's test suite",
        phase_type=PhaseType.VALIDATION,
        estimated_duration=90,
        action=TaskAction.TEST,
        mandatory=False,
    ),
    PhaseDefinition(
        phase_id=5,
        name="Validation and Completion",
        description="Re-analyze every module and confirm it reached the target health score",
        phase_type=PhaseType.MONITORING,
        estimated_duration=60,
        action=TaskAction.VALIDATE,
    ),
)


def get_definition(phase_id: int) -> PhaseDefinition:
    return PIPELINE[phase_id - 1]


def build_session(
    registry: ModuleRegistry,
    workspace_path: str,
    initial_health_score: int,
    deadline: datetime,
) -> RecoverySession:
    """Create a session with every phase and its tasks in ``pending``."""
    phases = [
        RecoveryPhase(
            phase_id=definition.phase_id,
            name=definition.name,
            description=definition.description,
            phase_type=definition.phase_type,
            estimated_duration=definition.estimated_duration,
            tasks=definition.build_tasks(registry),
        )
        for definition in PIPELINE
    ]
    return RecoverySession(
        workspace_path=workspace_path,
        initial_health_score=initial_health_score,
        current_health_score=initial_health_score,
        deadline=deadline,
        phases=phases,
    )


__all__ = [
    "PIPELINE",
    "PhaseDefinition",
    "build_session",
    "get_definition",
]
