"""Safety policy for executor plans. Every check runs before any action executes."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path, PurePath
from typing import Any, Dict, FrozenSet

from janus.errors import PlanValidationError
from janus.executor.plan import ExecutorAction, ExecutorPlan, RunCommand, WriteFile

DENY_FRAGMENTS = ("rm ", " del ", "sudo", "mkfs", "dd ", ":(){", "shutdown", "reboot")
DEFAULT_ALLOWED_COMMANDS = ("python", "python3", "pytest", "ruff", "git")
DEFAULT_ALLOWED_GIT_SUBCOMMANDS = ("status", "diff", "log", "rev-parse", "show")


@dataclass(frozen=True)
class ExecutorSafety:
    repo_root: Path
    max_actions: int = 8
    max_command_ms: int = 120_000
    max_file_bytes: int = 200_000
    allowed_commands: FrozenSet[str] = field(default_factory=lambda: frozenset(DEFAULT_ALLOWED_COMMANDS))
    allowed_git_subcommands: FrozenSet[str] = field(
        default_factory=lambda: frozenset(DEFAULT_ALLOWED_GIT_SUBCOMMANDS)
    )

    @classmethod
    def from_config(cls, config: Dict[str, Any], repo_root: Path | None = None) -> "ExecutorSafety":
        root = repo_root or Path(config.get("repo_root") or Path.cwd())
        return cls(
            repo_root=Path(root),
            max_actions=int(config.get("max_actions", 8)),
            max_command_ms=int(config.get("max_command_ms", 120_000)),
            max_file_bytes=int(config.get("max_file_bytes", 200_000)),
            allowed_commands=frozenset(config.get("allowed_commands") or DEFAULT_ALLOWED_COMMANDS),
            allowed_git_subcommands=frozenset(
                config.get("allowed_git_subcommands") or DEFAULT_ALLOWED_GIT_SUBCOMMANDS
            ),
        )


def resolve_repo_path(repo_root: Path, rel: str) -> Path:
    """Resolve ``rel`` inside ``repo_root``; absolute paths and ``..`` segments are rejected."""
    candidate = PurePath(rel.replace("\\", "/"))
    if candidate.is_absolute() or rel.startswith(("/", "\\")):
        raise PlanValidationError(f"Absolute paths blocked: {rel}")
    if ".." in candidate.parts:
        raise PlanValidationError(f"Path traversal blocked: {rel}")
    root = Path(repo_root).resolve()
    resolved = (root / candidate).resolve()
    if resolved != root and not resolved.is_relative_to(root):
        raise PlanValidationError(f"Path escapes repo root: {rel}")
    return resolved


def validate_action(action: ExecutorAction, safety: ExecutorSafety) -> None:
    if isinstance(action, WriteFile):
        resolve_repo_path(safety.repo_root, action.path)
        size = len(action.content.encode("utf-8"))
        if size > safety.max_file_bytes:
            raise PlanValidationError(
                f"write_file too large (> {safety.max_file_bytes} bytes): {action.path}"
            )
        return

    if isinstance(action, RunCommand):
        cmd = action.command[0] if action.command else ""
        if not cmd:
            raise PlanValidationError("run_command missing command[0]")
        if cmd not in safety.allowed_commands:
            raise PlanValidationError(f"Command not allowed by policy: {cmd}")
        if cmd == "git":
            sub = action.command[1] if len(action.command) > 1 else ""
            if sub not in safety.allowed_git_subcommands:
                raise PlanValidationError(f"git subcommand not allowed: {sub or '(missing)'}")
        joined = " ".join(action.command)
        if any(fragment in joined for fragment in DENY_FRAGMENTS):
            raise PlanValidationError(f"Destructive pattern blocked: {joined}")
        timeout = action.timeout_ms if action.timeout_ms is not None else safety.max_command_ms
        if timeout > safety.max_command_ms:
            raise PlanValidationError(f"Command timeout exceeds policy max ({safety.max_command_ms}ms)")
        return

    raise PlanValidationError(f"Unsupported action: {type(action).__name__}")


def validate_plan(plan: ExecutorPlan, safety: ExecutorSafety) -> None:
    if plan.version != 1:
        raise PlanValidationError(f"Unsupported plan version: {plan.version}")
    if not plan.actions:
        raise PlanValidationError("Plan has zero actions")
    if len(plan.actions) > safety.max_actions:
        raise PlanValidationError(f"Plan exceeds maxActions ({safety.max_actions})")
    for action in plan.actions:
        validate_action(action, safety)
