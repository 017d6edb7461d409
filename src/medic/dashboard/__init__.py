"""HTTP request layer over the recovery engine."""

from medic.dashboard.app import create_app, get_engine

__all__ = ["create_app", "get_engine"]
