"""Executor: request a bounded plan, validate it, then run it step by step."""
from __future__ import annotations

import hashlib
import logging
import re
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from janus.audit import AuditLog
from janus.costs import estimate_tokens
from janus.errors import BudgetExceededError
from janus.executor.plan import ExecutorPlan, RunCommand, WriteFile, parse_plan
from janus.executor.prompts import build_plan_prompt
from janus.executor.runner import run_command
from janus.executor.safety import ExecutorSafety, resolve_repo_path, validate_plan

logger = logging.getLogger(__name__)

PLAN_OPERATION = "executor-plan"
EXCERPT_CHARS = 2000
_UNSAFE = re.compile(r"[^a-zA-Z0-9._-]+")
MAX_LABEL_CHARS = 80


def safe_artifact_name(value: str) -> str:
    """File-name-safe label for ``value``; long labels are cut and suffixed with a hash."""
    name = _UNSAFE.sub("_", value)
    if len(name) <= MAX_LABEL_CHARS:
        return name
    digest = hashlib.sha1(value.encode("utf-8")).hexdigest()[:10]
    return f"{name[:MAX_LABEL_CHARS]}-{digest}"


@dataclass
class ExecutorResult:
    task_id: str
    success: bool
    output_summary: str
    executor_id: str
    model_key: str
    provider: str
    model_id: str
    artifacts: List[str] = field(default_factory=list)
    error: Optional[str] = None
    latency_ms: int = 0
    cost_usd: float = 0.0
    input_tokens: int = 0
    output_tokens: int = 0

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "taskId": self.task_id,
            "success": self.success,
            "artifacts": list(self.artifacts),
            "output": self.output_summary,
            "error": self.error,
            "executorId": self.executor_id,
            "latencyMs": self.latency_ms,
            "costUsd": self.cost_usd,
            "inputTokens": self.input_tokens,
            "outputTokens": self.output_tokens,
            "modelKey": self.model_key,
            "provider": self.provider,
            "model": self.model_id,
        }
        return {key: value for key, value in data.items() if value is not None}


class _Run:
    """Mutable state for one executor run."""

    def __init__(self, store: Any, session_id: str, task_id: str) -> None:
        self.store = store
        self.session_id = session_id
        self.task_id = task_id
        self.artifacts: List[str] = []
        self.action_results: List[Dict[str, Any]] = []
        self.plan: ExecutorPlan | None = None
        self.prompt: str | None = None
        self.raw_response: str | None = None
        self.validated = False
        self.cost_usd = 0.0
        self.input_tokens = 0
        self.output_tokens = 0
        self._held: List[Tuple[str, str]] = []

    def text(self, name: str, text: str) -> None:
        self.artifacts.append(self.store.write_artifact_text(self.session_id, self.task_id, name, text))

    def json(self, name: str, data: Any) -> None:
        self.artifacts.append(self.store.write_artifact_json(self.session_id, self.task_id, name, data))

    def hold(self, name: str, text: str) -> None:
        """Queue a planning artifact; it is written only once the plan validates."""
        self._held.append((name, text))

    def release(self) -> None:
        self.validated = True
        for name, text in self._held:
            self.text(name, text)
        self._held = []

    def receipt(self, success: bool, error: str | None = None) -> None:
        data: Dict[str, Any] = {
            "success": success,
            "plan": self.plan.to_dict() if self.plan else None,
            "actionResults": self.action_results,
        }
        if error:
            data["error"] = error
        if not self.validated:
            if self.prompt is not None:
                data["prompt"] = self.prompt
            if self.raw_response is not None:
                data["rawResponse"] = self.raw_response
        self.json("executor-run.json", data)


class ExecutorSwarm:
    def __init__(
        self,
        router: Any,
        store: Any,
        safety: ExecutorSafety,
        plan_max_tokens: int = 1800,
        peer_rater: Any = None,
    ) -> None:
        self.router = router
        self.store = store
        self.safety = safety
        self.plan_max_tokens = plan_max_tokens
        self.peer_rater = peer_rater
        self.executor_id = f"executor-{uuid.uuid4().hex[:8]}"

    async def run(
        self,
        session_id: str,
        task_id: str,
        goal: str,
        prior_context: str = "",
        routing: Any = None,
    ) -> ExecutorResult:
        """Plan and execute ``goal``.

        Raises :class:`BudgetExceededError` before any call when the plan request
        cannot fit the remaining budget. Every other failure (malformed or unsafe
        plan, provider error, failing command) is returned as an unsuccessful
        result with a receipt artifact. A plan that fails validation leaves the
        receipt as its only artifact.
        """
        started = time.perf_counter()
        prompt = build_plan_prompt(goal, prior_context, self.safety.max_actions, self.safety.allowed_commands)
        routing = routing or self.router.route(prompt, "planning")
        model = self.router.model(routing.model_key)
        self._check_budget(routing, prompt)

        audit = AuditLog.for_run(self.store, session_id, task_id, self.executor_id)
        audit.log("executor_start", {"goal": goal, "modelKey": routing.model_key})
        run = _Run(self.store, session_id, task_id)

        def result(success: bool, summary: str, error: str | None = None) -> ExecutorResult:
            return ExecutorResult(
                task_id=task_id,
                success=success,
                output_summary=summary,
                executor_id=self.executor_id,
                model_key=routing.model_key,
                provider=routing.provider,
                model_id=routing.model_id,
                artifacts=list(run.artifacts),
                error=error,
                latency_ms=int((time.perf_counter() - started) * 1000),
                cost_usd=run.cost_usd,
                input_tokens=run.input_tokens,
                output_tokens=run.output_tokens,
            )

        if self.peer_rater is not None:
            await self.peer_rater.maybe_rate_previous(routing, session_id)

        run.prompt = prompt
        try:
            run.hold("executor-plan.prompt.txt", prompt)
            response = await self.router.invoke(routing, prompt, max_tokens=self.plan_max_tokens, temperature=0)
            run.input_tokens = response.input_tokens
            run.output_tokens = response.output_tokens
            if model is not None:
                run.cost_usd = self.router.charge(model, response, PLAN_OPERATION)
            run.raw_response = response.text
            run.hold("executor-plan.raw.txt", response.text)
            self.store.write_last_model_run({
                "sessionId": session_id,
                "taskId": task_id,
                "modelKey": routing.model_key,
                "operation": PLAN_OPERATION,
                "costUsd": run.cost_usd,
                "latencyMs": response.latency_ms,
                "resultExcerpt": response.text[:EXCERPT_CHARS],
            })

            run.plan = parse_plan(response.text)
            validate_plan(run.plan, self.safety)
            run.release()
            run.json("executor-plan.json", run.plan.to_dict())
            audit.log("plan_validated", {"actions": len(run.plan.actions)})

            for index, action in enumerate(run.plan.actions):
                error = await self._execute(run, index, action)
                if error:
                    audit.log("action_failed", {"index": index, "error": error})
                    run.receipt(False, error)
                    return result(False, "Executor failed during command execution.", error)
                audit.log("action_complete", {"index": index, "type": action.type})

            run.receipt(True)
            audit.log("executor_complete", {"success": True, "costUsd": run.cost_usd})
            return result(True, f"Executor completed {len(run.plan.actions)} actions successfully.")
        except BudgetExceededError:
            raise
        except Exception as exc:
            message = str(exc) or type(exc).__name__
            logger.warning("Executor %s failed: %s", self.executor_id, message)
            audit.log("executor_failed", {"error": message})
            run.receipt(False, message)
            return result(False, "Executor failed.", message)

    def _check_budget(self, routing: Any, prompt: str) -> None:
        ledger = self.router.ledger
        remaining = ledger.remaining_usd
        if remaining <= 0:
            raise BudgetExceededError("Blocked: monthly budget exhausted")
        capped = self.router.estimate_cost_for_key(routing.model_key, estimate_tokens(prompt), self.plan_max_tokens)
        estimate = max(routing.estimated_cost_usd, capped)
        if not ledger.fits(estimate):
            raise BudgetExceededError(
                f"Blocked: estimated executor cost ${estimate:.6f} exceeds remaining ${remaining:.6f}"
            )

    async def _execute(self, run: _Run, index: int, action: Any) -> str | None:
        """Run one action. Returns an error message when the plan must halt."""
        label = f"{index + 1:02d}"
        if isinstance(action, WriteFile):
            target = resolve_repo_path(self.safety.repo_root, action.path)
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(action.content, encoding="utf-8")
            run.text(f"actions/{label}-write_file-{safe_artifact_name(action.path)}.txt", action.content)
            run.action_results.append({
                "index": index,
                "type": action.type,
                "path": action.path,
                "bytes": len(action.content.encode("utf-8")),
            })
            return None

        if isinstance(action, RunCommand):
            timeout_ms = action.timeout_ms if action.timeout_ms is not None else self.safety.max_command_ms
            outcome = await run_command(action.command, self.safety.repo_root, timeout_ms)
            name = f"commands/{label}-{safe_artifact_name('_'.join(action.command))}"
            run.text(f"{name}.stdout.log", outcome.stdout)
            run.text(f"{name}.stderr.log", outcome.stderr)
            run.json(f"{name}.json", outcome.to_dict())
            run.action_results.append({"index": index, "type": action.type, **outcome.to_dict()})
            joined = " ".join(action.command)
            if outcome.timed_out:
                return f"Command timed out: {joined}"
            if outcome.exit_code != 0:
                return f"Command failed (exit {outcome.exit_code}): {joined}"
            return None

        raise TypeError(f"Unsupported action: {type(action).__name__}")
