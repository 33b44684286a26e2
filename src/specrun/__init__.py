"""Resumable execution state and isolated git worktrees for long-running builds."""

__version__ = "0.1.0"

__all__ = ["__version__"]
