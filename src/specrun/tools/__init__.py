"""MCP tool registration for specrun."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from fastmcp import Context, FastMCP

from ..config import SpecrunSettings
from ..state import ExecutionStateStore, RetryExhaustedError
from ..worktree import UnsafeRemovalError, Worktree, WorktreeManager


@dataclass(slots=True)
class ToolHandles:
    worktree_create: Any
    worktree_setup: Any
    worktree_list: Any
    worktree_remove: Any
    worktree_prune: Any
    worktree_update_status: Any
    retry_status: Any
    retry_increment: Any
    retry_reset: Any
    stage_progress: Any
    mark_phase_complete: Any
    task_progress: Any
    mark_task_complete: Any


def _worktree_summary(worktree: Worktree) -> dict[str, Any]:
    return worktree.model_dump(mode="json")


def register_tools(
    server: FastMCP,
    *,
    settings: SpecrunSettings,
    store: ExecutionStateStore,
    manager: WorktreeManager | None,
) -> ToolHandles:
    """Register specrun's MCP tools on the server."""

    def _require_manager() -> WorktreeManager:
        if manager is None:
            raise RuntimeError("Worktree manager is unavailable; start the server inside a git repository")
        return manager

    def _max_retries(value: int | None) -> int:
        return settings.max_retries if value is None else value

    def _worktree_create(
        name: str,
        branch: str,
        path: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Create an isolated worktree for a unit of work."""

        worktree = _require_manager().create(name, branch, path)
        _emit_log(
            context,
            "info",
            "Created worktree",
            extra={"worktree": name, "branch": branch, "path": worktree.path},
        )
        return _worktree_summary(worktree)

    def _worktree_setup(
        path: str,
        track: bool = False,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Prepare a worktree that was created outside specrun."""

        worktree = _require_manager().setup(path, track=track)
        _emit_log(
            context,
            "info",
            "Set up worktree",
            extra={"worktree": worktree.name, "path": worktree.path, "tracked": track},
        )
        return _worktree_summary(worktree)

    def _worktree_list(context: Context | None = None) -> list[dict[str, Any]]:
        worktrees = _require_manager().list()
        _emit_log(context, "debug", "Listing worktrees", extra={"count": len(worktrees)})
        return [_worktree_summary(worktree) for worktree in worktrees]

    def _worktree_remove(
        name: str,
        force: bool = False,
        context: Context | None = None,
    ) -> dict[str, Any]:
        try:
            _require_manager().remove(name, force=force)
        except UnsafeRemovalError as exc:
            _emit_log(
                context,
                "warning",
                "Worktree removal blocked",
                extra={"worktree": name, "reason": exc.reason},
            )
            return {"name": name, "removed": False, "reason": exc.reason, "message": str(exc)}
        _emit_log(context, "info", "Removed worktree", extra={"worktree": name, "force": force})
        return {"name": name, "removed": True}

    def _worktree_prune(context: Context | None = None) -> dict[str, Any]:
        pruned = _require_manager().prune()
        _emit_log(context, "info", "Pruned worktrees", extra={"count": pruned})
        return {"pruned": pruned}

    def _worktree_update_status(
        name: str,
        status: str,
        context: Context | None = None,
    ) -> dict[str, Any]:
        worktree = _require_manager().update_status(name, status)
        _emit_log(
            context,
            "info",
            "Updated worktree status",
            extra={"worktree": name, "status": worktree.status.value},
        )
        return _worktree_summary(worktree)

    tool_create = server.tool(
        name="worktree_create",
        description=(
            "Create a git worktree for concurrent work. Copies configured local directories "
            "and runs the project setup script. Returns the tracked worktree record."
        ),
    )(_worktree_create)

    tool_setup = server.tool(
        name="worktree_setup",
        description=(
            "Copy configured local directories into an existing git worktree and run the "
            "setup script. Pass track=true to add it to the registry."
        ),
    )(_worktree_setup)

    tool_list = server.tool(
        name="worktree_list",
        description="List tracked worktrees; entries whose path is gone are reported as stale.",
    )(_worktree_list)

    tool_remove = server.tool(
        name="worktree_remove",
        description=(
            "Remove a tracked worktree. Refuses when it has uncommitted changes or unpushed "
            "commits unless force=true."
        ),
        annotations={
            "safety": {
                "level": "caution",
                "notes": "force=true discards uncommitted work in the worktree",
            }
        },
    )(_worktree_remove)

    tool_prune = server.tool(
        name="worktree_prune",
        description="Drop tracking entries for worktrees whose directory no longer exists.",
    )(_worktree_prune)

    tool_update_status = server.tool(
        name="worktree_update_status",
        description="Set a worktree's status to active, merged, abandoned or stale.",
    )(_worktree_update_status)

    def _retry_status(
        spec: str,
        phase: str,
        max_retries: int | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        record = store.load_retry(spec, phase, _max_retries(max_retries))
        payload = record.model_dump(mode="json")
        payload["can_retry"] = record.can_retry()
        return payload

    def _retry_increment(
        spec: str,
        phase: str,
        max_retries: int | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Consume one attempt; reports exhaustion as data rather than failing."""

        try:
            record = store.increment_retry(spec, phase, _max_retries(max_retries))
        except RetryExhaustedError as exc:
            _emit_log(
                context,
                "warning",
                "Retry limit exhausted",
                extra={"spec": spec, "phase": phase, "count": exc.count},
            )
            return {
                "exhausted": True,
                "spec_name": exc.spec_name,
                "phase": exc.phase,
                "count": exc.count,
                "max_retries": exc.max_retries,
            }
        payload = record.model_dump(mode="json")
        payload["exhausted"] = False
        payload["can_retry"] = record.can_retry()
        return payload

    def _retry_reset(spec: str, phase: str, context: Context | None = None) -> dict[str, Any]:
        store.reset_retry(spec, phase)
        _emit_log(context, "info", "Reset retry counter", extra={"spec": spec, "phase": phase})
        return {"spec_name": spec, "phase": phase, "count": 0}

    tool_retry_status = server.tool(
        name="retry_status",
        description="Show the retry counter for a spec and phase.",
    )(_retry_status)

    tool_retry_increment = server.tool(
        name="retry_increment",
        description=(
            "Record one attempt for a spec and phase. Returns exhausted=true once the "
            "configured maximum has been reached."
        ),
    )(_retry_increment)

    tool_retry_reset = server.tool(
        name="retry_reset",
        description="Reset the retry counter for a spec and phase.",
    )(_retry_reset)

    def _stage_progress(spec: str, context: Context | None = None) -> dict[str, Any] | None:
        progress = store.load_stage_progress(spec)
        return progress.model_dump(mode="json") if progress else None

    def _mark_phase_complete(
        spec: str,
        phase_index: int,
        context: Context | None = None,
    ) -> dict[str, Any]:
        progress = store.mark_phase_complete(spec, phase_index)
        _emit_log(
            context,
            "info",
            "Phase complete",
            extra={"spec": spec, "phase_index": phase_index},
        )
        return progress.model_dump(mode="json")

    def _task_progress(spec: str, context: Context | None = None) -> dict[str, Any] | None:
        progress = store.load_task_progress(spec)
        return progress.model_dump(mode="json") if progress else None

    def _mark_task_complete(
        spec: str,
        task_id: str,
        context: Context | None = None,
    ) -> dict[str, Any]:
        progress = store.mark_task_complete(spec, task_id)
        _emit_log(context, "info", "Task complete", extra={"spec": spec, "task_id": task_id})
        return progress.model_dump(mode="json")

    tool_stage_progress = server.tool(
        name="stage_progress",
        description="Show which phases of a spec have completed.",
    )(_stage_progress)

    tool_mark_phase = server.tool(
        name="mark_phase_complete",
        description="Checkpoint a completed phase so a resumed run can skip it.",
    )(_mark_phase_complete)

    tool_task_progress = server.tool(
        name="task_progress",
        description="Show which tasks of a spec have completed.",
    )(_task_progress)

    tool_mark_task = server.tool(
        name="mark_task_complete",
        description="Checkpoint a completed task id so a resumed run can skip it.",
    )(_mark_task_complete)

    return ToolHandles(
        worktree_create=tool_create,
        worktree_setup=tool_setup,
        worktree_list=tool_list,
        worktree_remove=tool_remove,
        worktree_prune=tool_prune,
        worktree_update_status=tool_update_status,
        retry_status=tool_retry_status,
        retry_increment=tool_retry_increment,
        retry_reset=tool_retry_reset,
        stage_progress=tool_stage_progress,
        mark_phase_complete=tool_mark_phase,
        task_progress=tool_task_progress,
        mark_task_complete=tool_mark_task,
    )


__all__ = ["register_tools", "ToolHandles"]

logger = logging.getLogger(__name__)


def _emit_log(
    context: Context | None,
    level: str,
    message: str,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    """Best-effort logging that prefers the MCP context logger when available."""

    payload = extra or {}

    if context is not None:
        ctx_logger = getattr(context, "logger", None)
        if ctx_logger is not None:
            log_method = getattr(ctx_logger, level, None)
            if callable(log_method):
                log_method(message, extra=payload)
                return

    fallback = getattr(logger, level, logger.info)
    fallback(message, extra=payload)
