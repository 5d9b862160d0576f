"""Sandboxed plan execution."""
from __future__ import annotations

from janus.executor.plan import ExecutorPlan, RunCommand, WriteFile, parse_plan
from janus.executor.runner import CommandResult, run_command
from janus.executor.safety import ExecutorSafety, validate_plan
from janus.executor.swarm import ExecutorResult, ExecutorSwarm

__all__ = [
    "CommandResult",
    "ExecutorPlan",
    "ExecutorResult",
    "ExecutorSafety",
    "ExecutorSwarm",
    "RunCommand",
    "WriteFile",
    "parse_plan",
    "run_command",
    "validate_plan",
]
