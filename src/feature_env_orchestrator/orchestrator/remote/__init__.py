"""Remote collaborators reached through the command gateway."""

from feature_env_orchestrator.orchestrator.remote.compute import (
    ComputeProvider,
    Instance,
    InstanceNotReady,
)
from feature_env_orchestrator.orchestrator.remote.database import DatabaseBranchService
from feature_env_orchestrator.orchestrator.remote.workspace import RemoteWorkspace

__all__ = [
    "ComputeProvider",
    "DatabaseBranchService",
    "Instance",
    "InstanceNotReady",
    "RemoteWorkspace",
]
