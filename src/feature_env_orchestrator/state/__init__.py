"""Local record stores for projects and feature environments."""

from feature_env_orchestrator.state.records import EnvironmentRecord, ProjectRecord
from feature_env_orchestrator.state.store import EnvironmentStore, ProjectStore

__all__ = [
    "EnvironmentRecord",
    "EnvironmentStore",
    "ProjectRecord",
    "ProjectStore",
]
