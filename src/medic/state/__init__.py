"""Process-scoped module state ownership."""

from medic.state.store import ModuleStateStore

__all__ = ["ModuleStateStore"]
