"""FastMCP server bootstrap for specrun."""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from fastmcp import FastMCP

from . import __version__
from .config import SpecrunSettings, get_settings
from .state import ExecutionStateStore
from .tools import register_tools
from .worktree import GitCommandError, RegistryError, WorktreeManager, get_repo_root


def configure_logging(level: str) -> None:
    """Configure root logging for specrun entry points."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def build_manager(settings: SpecrunSettings, repo_root: Path | str) -> WorktreeManager:
    return WorktreeManager(settings.worktree_config(), settings.state_dir, repo_root)


def create_server(
    settings: Optional[SpecrunSettings] = None,
    *,
    store: ExecutionStateStore | None = None,
    manager: WorktreeManager | None = None,
) -> FastMCP:
    """Instantiate the FastMCP server with specrun tools and a status resource."""

    settings = settings or get_settings()
    store = store or ExecutionStateStore(settings.state_dir)

    repo_metadata = {"root": None, "error": None}
    if manager is None:
        try:
            repo_root = get_repo_root(Path.cwd())
        except (GitCommandError, OSError) as exc:
            repo_metadata["error"] = str(exc)
        else:
            repo_metadata["root"] = repo_root
            manager = build_manager(settings, repo_root)

    server = FastMCP(
        name="specrun",
        version=__version__,
        instructions=(
            "specrun keeps long-running spec builds resumable. Use the worktree tools to get an "
            "isolated checkout per concurrent task, and the retry/progress tools to checkpoint "
            "completed phases and tasks and to enforce retry limits."
        ),
    )

    handles = register_tools(server, settings=settings, store=store, manager=manager)

    def status_resource() -> str:
        document = store.load_document()

        worktrees: list[dict[str, str]] = []
        worktree_error: str | None = None
        if manager is not None:
            try:
                worktrees = [
                    {"name": wt.name, "branch": wt.branch, "status": wt.status.value}
                    for wt in manager.list()
                ]
            except RegistryError as exc:
                worktree_error = str(exc)

        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "server_version": __version__,
            "state_dir": str(store.state_dir),
            "max_retries": settings.max_retries,
            "repository": repo_metadata,
            "state": {
                "retries": len(document.retries),
                "exhausted": sorted(
                    key for key, record in document.retries.items()
                    if record.count >= settings.max_retries
                ),
                "stage_states": len(document.stage_states),
                "task_states": len(document.task_states),
            },
            "worktrees": worktrees,
            "worktree_error": worktree_error,
        }
        return json.dumps(payload)

    server.resource(
        "resource://specrun/status",
        name="specrun_status",
        description="Current state directory, retry/progress counts and tracked worktrees.",
        mime_type="application/json",
    )(status_resource)

    setattr(server, "state_store", store)
    setattr(server, "worktree_manager", manager)
    setattr(server, "tool_handles", handles)
    setattr(server, "status_resource", status_resource)
    return server


def main() -> None:
    """Entry point for running the specrun MCP server."""

    settings = get_settings()
    configure_logging(settings.log_level)

    server = create_server(settings)
    logging.getLogger(__name__).info(
        "Launching specrun MCP server",
        extra={
            "version": __version__,
            "state_dir": str(settings.state_dir),
            "worktrees_available": getattr(server, "worktree_manager", None) is not None,
        },
    )
    server.run()


if __name__ == "__main__":
    main()
