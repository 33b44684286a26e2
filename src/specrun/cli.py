"""Command-line front end for worktree management and execution state."""

from __future__ import annotations

import argparse
import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Sequence

from .config import SpecrunSettings, load_settings
from .server import configure_logging
from .state import (
    EXIT_RETRY_EXHAUSTED,
    ExecutionStateStore,
    RetryExhaustedError,
    StateStoreError,
)
from .worktree import (
    GitCommandError,
    RegistryError,
    UnsafeRemovalError,
    Worktree,
    WorktreeError,
    WorktreeManager,
    WorktreeStatus,
    get_repo_root,
    write_default_setup_script,
)

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_INVALID_ARGUMENTS = 3

DEFAULT_SCRIPT_PATH = Path(".specrun/scripts/setup-worktree.sh")


class CommandError(Exception):
    """Raised by command handlers to abort with a message and exit code."""

    def __init__(self, message: str, exit_code: int = EXIT_FAILURE) -> None:
        self.exit_code = exit_code
        super().__init__(message)


class _ArgumentParser(argparse.ArgumentParser):
    # argparse exits with 2 on usage errors, which is reserved for retry exhaustion.
    def error(self, message: str) -> None:  # type: ignore[override]
        self.print_usage(sys.stderr)
        self.exit(EXIT_INVALID_ARGUMENTS, f"{self.prog}: error: {message}\n")


def load_store(settings: SpecrunSettings) -> ExecutionStateStore:
    return ExecutionStateStore(settings.state_dir)


def load_manager(settings: SpecrunSettings) -> WorktreeManager:
    try:
        repo_root = get_repo_root(Path.cwd())
    except (GitCommandError, OSError) as exc:
        raise CommandError(f"Not inside a git repository: {exc}") from exc
    return WorktreeManager(
        settings.worktree_config(),
        settings.state_dir,
        repo_root,
        stdout=sys.stdout,
    )


def relative_time(moment: datetime | None, now: datetime | None = None) -> str:
    if moment is None:
        return "unknown"
    now = now or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    seconds = (now - moment).total_seconds()
    if seconds < 60:
        return "just now"
    if seconds < 3600:
        return f"{int(seconds // 60)} min ago"
    if seconds < 86400:
        return f"{int(seconds // 3600)} hours ago"
    if seconds < 7 * 86400:
        return f"{int(seconds // 86400)} days ago"
    return moment.strftime("%b %d, %Y")


def format_worktree_table(worktrees: Sequence[Worktree], now: datetime | None = None) -> str:
    lines = [
        f"{'NAME':<20} {'PATH':<40} {'BRANCH':<25} {'STATUS':<10} CREATED",
        "-" * 110,
    ]
    for worktree in worktrees:
        path = worktree.path
        if len(path) > 38:
            path = "..." + path[-35:]
        branch = worktree.branch
        if len(branch) > 23:
            branch = branch[:20] + "..."
        lines.append(
            f"{worktree.name:<20} {path:<40} {branch:<25} "
            f"{worktree.status.value:<10} {relative_time(worktree.created_at, now)}"
        )
    return "\n".join(lines)


def cmd_worktree_create(args: argparse.Namespace) -> int:
    manager = load_manager(load_settings())
    worktree = manager.create(args.name, args.branch, args.path)
    print(f"Created worktree: {worktree.name}")
    print(f"  Path: {worktree.path}")
    print(f"  Branch: {worktree.branch}")
    if worktree.setup_completed:
        print("  Setup: completed")
    else:
        print("  Setup: failed (run 'specrun worktree setup' to retry)")
    return EXIT_SUCCESS


def cmd_worktree_list(args: argparse.Namespace) -> int:
    manager = load_manager(load_settings())
    worktrees = manager.list()
    if args.json:
        print(json.dumps([worktree.model_dump(mode="json") for worktree in worktrees], indent=2))
        return EXIT_SUCCESS
    if not worktrees:
        print("No worktrees tracked.")
        print("Create one with: specrun worktree create <name> --branch <branch>")
        return EXIT_SUCCESS
    print(format_worktree_table(worktrees))
    return EXIT_SUCCESS


def cmd_worktree_remove(args: argparse.Namespace) -> int:
    manager = load_manager(load_settings())
    try:
        manager.remove(args.name, force=args.force)
    except UnsafeRemovalError as exc:
        raise CommandError(f"Cannot remove worktree '{args.name}': {exc}") from exc
    print(f"Removed worktree: {args.name}")
    return EXIT_SUCCESS


def cmd_worktree_setup(args: argparse.Namespace) -> int:
    manager = load_manager(load_settings())
    worktree = manager.setup(args.path, track=args.track)
    print(f"Setup complete for: {worktree.path}")
    print(f"  Setup script: {'completed' if worktree.setup_completed else 'failed'}")
    if args.track:
        print(f"  Tracked as: {worktree.name}")
    return EXIT_SUCCESS


def cmd_worktree_prune(args: argparse.Namespace) -> int:
    manager = load_manager(load_settings())
    pruned = manager.prune()
    if pruned == 0:
        print("No stale worktree entries found.")
    else:
        print(f"Pruned {pruned} stale worktree {'entry' if pruned == 1 else 'entries'}")
    return EXIT_SUCCESS


def cmd_worktree_status(args: argparse.Namespace) -> int:
    manager = load_manager(load_settings())
    worktree = manager.update_status(args.name, args.status)
    print(f"Worktree {worktree.name} is now {worktree.status.value}")
    return EXIT_SUCCESS


def cmd_worktree_init_script(args: argparse.Namespace) -> int:
    target = Path(args.path)
    if target.exists() and not args.force:
        raise CommandError(f"{target} already exists (use --force to overwrite)")
    write_default_setup_script(target)
    print(f"Wrote setup script: {target}")
    print(f"Enable it with SPECRUN_WORKTREE_SETUP_SCRIPT={target}")
    return EXIT_SUCCESS


def cmd_state_show(args: argparse.Namespace) -> int:
    settings = load_settings()
    document = load_store(settings).load_document()
    retries = [record for record in document.retries.values() if not args.spec or record.spec_name == args.spec]
    stages = [p for name, p in document.stage_states.items() if not args.spec or name == args.spec]
    tasks = [p for name, p in document.task_states.items() if not args.spec or name == args.spec]

    if args.json:
        payload = {
            "retries": [record.model_dump(mode="json") for record in retries],
            "stage_states": [progress.model_dump(mode="json") for progress in stages],
            "task_states": [progress.model_dump(mode="json") for progress in tasks],
        }
        print(json.dumps(payload, indent=2))
        return EXIT_SUCCESS

    if not (retries or stages or tasks):
        print("No execution state recorded.")
        return EXIT_SUCCESS
    for record in retries:
        last = record.last_attempt.isoformat() if record.last_attempt else "never"
        print(f"retry  {record.key}  {record.count}/{settings.max_retries}  last={last}")
    for progress in stages:
        completed = ",".join(str(index) for index in sorted(progress.completed_phases)) or "-"
        print(
            f"stage  {progress.spec_name}  phase {progress.current_phase}/{progress.total_phases}"
            f"  completed={completed}"
        )
    for progress in tasks:
        completed = ",".join(progress.completed_task_ids) or "-"
        print(
            f"tasks  {progress.spec_name}  {len(progress.completed_task_ids)}/{progress.total_tasks}"
            f"  current={progress.current_task_id or '-'}  completed={completed}"
        )
    return EXIT_SUCCESS


def cmd_state_increment(args: argparse.Namespace) -> int:
    settings = load_settings()
    max_retries = settings.max_retries if args.max_retries is None else args.max_retries
    record = load_store(settings).increment_retry(args.spec, args.phase, max_retries)
    print(f"{record.key}: attempt {record.count}/{record.max_retries}")
    return EXIT_SUCCESS


def cmd_state_reset(args: argparse.Namespace) -> int:
    store = load_store(load_settings())
    reset_all = not (args.phase or args.stages or args.tasks)

    if args.phase:
        store.reset_retry(args.spec, args.phase)
    elif reset_all:
        for record in list(store.load_document().retries.values()):
            if record.spec_name == args.spec:
                store.reset_retry(record.spec_name, record.phase)
    if args.stages or reset_all:
        store.reset_stage_progress(args.spec)
    if args.tasks or reset_all:
        store.reset_task_progress(args.spec)
    print(f"Reset execution state for {args.spec}")
    return EXIT_SUCCESS


def cmd_state_complete_phase(args: argparse.Namespace) -> int:
    progress = load_store(load_settings()).mark_phase_complete(args.spec, args.index)
    print(f"{args.spec}: completed phases {sorted(progress.completed_phases)}")
    return EXIT_SUCCESS


def cmd_state_complete_task(args: argparse.Namespace) -> int:
    progress = load_store(load_settings()).mark_task_complete(args.spec, args.task_id)
    print(f"{args.spec}: {len(progress.completed_task_ids)} task(s) completed")
    return EXIT_SUCCESS


def build_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog="specrun",
        description="Resumable execution state and isolated git worktrees",
    )
    parser.add_argument("--log-level", help="Override SPECRUN_LOG_LEVEL")
    sub = parser.add_subparsers(dest="cmd", parser_class=_ArgumentParser)

    worktree = sub.add_parser("worktree", help="Manage git worktrees with project-aware setup")
    wt_sub = worktree.add_subparsers(dest="worktree_cmd", parser_class=_ArgumentParser)

    p_create = wt_sub.add_parser("create", help="Create a new worktree with automatic setup")
    p_create.add_argument("name")
    p_create.add_argument("-b", "--branch", required=True, help="Branch for the worktree")
    p_create.add_argument("-p", "--path", help="Custom path for the worktree")
    p_create.set_defaults(func=cmd_worktree_create)

    p_list = wt_sub.add_parser("list", help="List tracked worktrees")
    p_list.add_argument("--json", action="store_true", help="Output JSON")
    p_list.set_defaults(func=cmd_worktree_list)

    p_remove = wt_sub.add_parser("remove", aliases=["rm"], help="Remove a tracked worktree")
    p_remove.add_argument("name")
    p_remove.add_argument(
        "-f", "--force", action="store_true", help="Bypass uncommitted/unpushed checks"
    )
    p_remove.set_defaults(func=cmd_worktree_remove)

    p_setup = wt_sub.add_parser("setup", help="Run setup on an existing worktree")
    p_setup.add_argument("path")
    p_setup.add_argument("--track", action="store_true", help="Add the worktree to tracking")
    p_setup.set_defaults(func=cmd_worktree_setup)

    p_prune = wt_sub.add_parser("prune", help="Remove entries whose path no longer exists")
    p_prune.set_defaults(func=cmd_worktree_prune)

    p_status = wt_sub.add_parser("status", help="Update the status of a tracked worktree")
    p_status.add_argument("name")
    p_status.add_argument("status", choices=WorktreeStatus.values())
    p_status.set_defaults(func=cmd_worktree_status)

    p_script = wt_sub.add_parser("init-script", help="Write a template setup script")
    p_script.add_argument("--path", default=str(DEFAULT_SCRIPT_PATH))
    p_script.add_argument("--force", action="store_true", help="Overwrite an existing script")
    p_script.set_defaults(func=cmd_worktree_init_script)

    state = sub.add_parser("state", help="Inspect and update execution state")
    st_sub = state.add_subparsers(dest="state_cmd", parser_class=_ArgumentParser)

    p_show = st_sub.add_parser("show", help="Show retry counters and progress")
    p_show.add_argument("spec", nargs="?")
    p_show.add_argument("--json", action="store_true", help="Output JSON")
    p_show.set_defaults(func=cmd_state_show)

    p_increment = st_sub.add_parser("increment", help="Record one attempt for a spec phase")
    p_increment.add_argument("spec")
    p_increment.add_argument("phase")
    p_increment.add_argument("--max-retries", type=int, default=None)
    p_increment.set_defaults(func=cmd_state_increment)

    p_reset = st_sub.add_parser("reset", help="Reset retry counters and progress for a spec")
    p_reset.add_argument("spec")
    p_reset.add_argument("--phase", help="Reset only this phase's retry counter")
    p_reset.add_argument("--stages", action="store_true", help="Reset stage progress")
    p_reset.add_argument("--tasks", action="store_true", help="Reset task progress")
    p_reset.set_defaults(func=cmd_state_reset)

    p_phase = st_sub.add_parser("complete-phase", help="Mark a phase as completed")
    p_phase.add_argument("spec")
    p_phase.add_argument("index", type=int)
    p_phase.set_defaults(func=cmd_state_complete_phase)

    p_task = st_sub.add_parser("complete-task", help="Mark a task as completed")
    p_task.add_argument("spec")
    p_task.add_argument("task_id")
    p_task.set_defaults(func=cmd_state_complete_task)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return EXIT_INVALID_ARGUMENTS

    configure_logging(args.log_level.upper() if args.log_level else load_settings().log_level)

    try:
        return args.func(args)
    except RetryExhaustedError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_RETRY_EXHAUSTED
    except CommandError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return exc.exit_code
    except (WorktreeError, RegistryError, StateStoreError, GitCommandError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_FAILURE


if __name__ == "__main__":
    raise SystemExit(main())
