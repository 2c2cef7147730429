"""Feature Environment Orchestrator.

Provisions one ephemeral development environment per feature branch:
- a compute instance with the project checked out on a new git branch
- a pair of database branches (primary and test) wired into the checkout
- a local record under the per-user state directory so the environment can be
  listed and torn down later
"""

__version__ = "0.1.0"

from feature_env_orchestrator.orchestrator.config import EnvSettings

__all__ = ["__version__", "EnvSettings"]
