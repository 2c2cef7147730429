"""Module alias for the CLI entrypoint in `feature_env_orchestrator.orchestrator.main`."""

from __future__ import annotations

from feature_env_orchestrator.orchestrator.main import main

__all__ = ["main"]


if __name__ == "__main__":
    raise SystemExit(main())
