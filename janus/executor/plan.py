"""Executor plan types and schema parsing."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from janus.errors import PlanValidationError
from janus.parsing import parse_json_object

PLAN_VERSION = 1


@dataclass(frozen=True)
class WriteFile:
    path: str
    content: str
    description: str = ""
    type: str = field(default="write_file", init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "description": self.description, "path": self.path, "content": self.content}


@dataclass(frozen=True)
class RunCommand:
    command: List[str]
    timeout_ms: Optional[int] = None
    description: str = ""
    type: str = field(default="run_command", init=False)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"type": self.type, "description": self.description, "command": list(self.command)}
        if self.timeout_ms is not None:
            data["timeoutMs"] = self.timeout_ms
        return data


ExecutorAction = Union[WriteFile, RunCommand]


@dataclass
class ExecutorPlan:
    goal: str
    actions: List[ExecutorAction]
    success_criteria: List[str] = field(default_factory=list)
    version: int = PLAN_VERSION

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "goal": self.goal,
            "actions": [action.to_dict() for action in self.actions],
            "successCriteria": list(self.success_criteria),
        }


def _optional_text(record: Dict[str, Any], key: str, where: str) -> str:
    value = record.get(key, "")
    if value is None:
        return ""
    if not isinstance(value, str):
        raise PlanValidationError(f"{where}.{key} must be a string")
    return value


def _parse_action(record: Any, index: int) -> ExecutorAction:
    where = f"actions[{index}]"
    if not isinstance(record, dict):
        raise PlanValidationError(f"{where} must be an object")
    kind = record.get("type")
    description = _optional_text(record, "description", where)

    if kind == "write_file":
        path = record.get("path")
        content = record.get("content")
        if not isinstance(path, str) or not path:
            raise PlanValidationError(f"{where}.path must be a non-empty string")
        if not isinstance(content, str):
            raise PlanValidationError(f"{where}.content must be a string")
        return WriteFile(path=path, content=content, description=description)

    if kind == "run_command":
        command = record.get("command")
        if not isinstance(command, list) or not command:
            raise PlanValidationError(f"{where}.command must be a non-empty array")
        if not all(isinstance(part, str) for part in command):
            raise PlanValidationError(f"{where}.command must contain only strings")
        timeout = record.get("timeoutMs")
        if timeout is not None:
            if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
                raise PlanValidationError(f"{where}.timeoutMs must be a positive number")
            timeout = int(timeout)
        return RunCommand(command=list(command), timeout_ms=timeout, description=description)

    raise PlanValidationError(f"{where}.type is not supported: {kind!r}")


def plan_from_dict(data: Dict[str, Any]) -> ExecutorPlan:
    """Validate the plan schema. Any deviation raises :class:`PlanValidationError`."""
    version = data.get("version")
    if version != PLAN_VERSION or isinstance(version, bool):
        raise PlanValidationError(f"Unsupported plan version: {version!r}")
    actions = data.get("actions")
    if not isinstance(actions, list):
        raise PlanValidationError("Plan.actions must be an array")
    if not actions:
        raise PlanValidationError("Plan has zero actions")
    criteria = data.get("successCriteria")
    if not isinstance(criteria, list):
        raise PlanValidationError("Plan.successCriteria must be an array")
    goal = data.get("goal", "")
    if not isinstance(goal, str):
        raise PlanValidationError("Plan.goal must be a string")
    return ExecutorPlan(
        goal=goal,
        actions=[_parse_action(record, index) for index, record in enumerate(actions)],
        success_criteria=[str(item) for item in criteria],
        version=PLAN_VERSION,
    )


def parse_plan(text: str) -> ExecutorPlan:
    data = parse_json_object(text)
    if data is None:
        raise PlanValidationError("Model did not return a JSON object.")
    return plan_from_dict(data)
