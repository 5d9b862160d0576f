"""Council deliberation: parallel advisors, budget fitting and a synthesis pass."""
from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List

from janus.audit import AuditLog
from janus.costs import estimate_tokens
from janus.council.parse import parse_proposal, parse_synthesis
from janus.council.prompts import build_advisor_prompt, build_synthesis_prompt
from janus.council.types import Deliberation, Proposal
from janus.errors import BudgetExceededError, CouncilConfigError
from janus.models.catalog import ModelConfig

logger = logging.getLogger(__name__)

EXCERPT_CHARS = 2000


@dataclass
class AdvisorSpec:
    id: str
    model_key: str


DEFAULT_ADVISORS = [
    AdvisorSpec("claude", "sonnet"),
    AdvisorSpec("gpt", "gpt-4-turbo"),
    AdvisorSpec("gemini", "gemini-pro"),
]


@dataclass
class CouncilSettings:
    advisors: List[AdvisorSpec] = field(default_factory=lambda: list(DEFAULT_ADVISORS))
    synthesis_model_key: str = "sonnet"
    advisor_max_tokens: int = 700
    synthesis_max_tokens: int = 700
    temperature: float = 0.0
    advisor_timeout_seconds: float | None = 180.0

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "CouncilSettings":
        advisors = []
        for entry in config.get("advisors") or []:
            if isinstance(entry, dict) and entry.get("id") and entry.get("model_key"):
                advisors.append(AdvisorSpec(str(entry["id"]), str(entry["model_key"])))
        max_tokens = config.get("max_tokens") or {}
        timeout = config.get("advisor_timeout_seconds", 180)
        return cls(
            advisors=advisors or list(DEFAULT_ADVISORS),
            synthesis_model_key=str(config.get("synthesis_model_key", "sonnet")),
            advisor_max_tokens=int(max_tokens.get("advisor", 700)),
            synthesis_max_tokens=int(max_tokens.get("synthesis", 700)),
            temperature=float(config.get("temperature", 0)),
            advisor_timeout_seconds=float(timeout) if timeout else None,
        )


@dataclass
class AdvisorPlan:
    advisor_id: str
    model: ModelConfig
    prompt: str
    estimated_cost: float


@dataclass
class CouncilRunResult:
    deliberation: Deliberation
    synthesis_meta: Dict[str, Any]
    dropped_advisors: List[str] = field(default_factory=list)
    artifacts: List[str] = field(default_factory=list)


class CouncilSwarm:
    """Runs one deliberation over a fixed advisor roster.

    Every advisor call and the synthesis call go through the router and are
    charged to the shared ledger only after they complete.
    """

    def __init__(
        self,
        router: Any,
        settings: CouncilSettings | None = None,
        store: Any = None,
        manifesto: str = "",
    ) -> None:
        self.router = router
        self.settings = settings or CouncilSettings()
        self.store = store
        self.manifesto = manifesto

    async def run(
        self,
        task: str,
        context: str | None = None,
        session_id: str | None = None,
        task_id: str | None = None,
    ) -> CouncilRunResult:
        deliberation_id = str(uuid.uuid4())
        recording = self.store is not None and bool(session_id)
        task_id = task_id or f"council-{deliberation_id[:8]}"
        audit = AuditLog.for_run(self.store, session_id, task_id, deliberation_id) if recording else None
        artifacts: List[str] = []

        def write_text(name: str, text: str) -> None:
            if recording:
                artifacts.append(self.store.write_artifact_text(session_id, task_id, name, text))

        synthesis_model = self._resolve_synthesis_model()
        plans = self._plan_advisors(task, (context or "").strip())
        if audit:
            audit.log("council_start", {"task": task, "advisors": [p.advisor_id for p in plans]})

        plans, dropped = self._fit_budget(plans, synthesis_model, task)
        if dropped:
            logger.info("Council: dropped advisors to fit budget (%s)", ", ".join(dropped))
            if audit:
                audit.log("advisors_dropped", {"advisors": dropped})

        for plan in plans:
            write_text(f"council/{plan.advisor_id}.prompt.txt", plan.prompt)

        outcomes = await asyncio.gather(
            *(self._call_advisor_with_timeout(plan) for plan in plans),
            return_exceptions=True,
        )

        proposals: List[Proposal] = []
        total_tokens = 0
        total_cost = 0.0
        for plan, outcome in zip(plans, outcomes):
            if isinstance(outcome, BaseException):
                if isinstance(outcome, asyncio.TimeoutError):
                    message = f"timed out after {self.settings.advisor_timeout_seconds}s"
                else:
                    message = str(outcome) or type(outcome).__name__
                logger.warning("Council advisor %s failed: %s", plan.advisor_id, message)
                if audit:
                    audit.log("advisor_failed", {"advisor": plan.advisor_id, "error": message})
                proposals.append(Proposal.failed(plan.advisor_id, message))
                continue
            proposal, raw_text = outcome
            write_text(f"council/{plan.advisor_id}.raw.txt", raw_text)
            proposals.append(proposal)
            total_tokens += proposal.token_count
            total_cost += proposal.cost_usd

        synthesis_prompt = build_synthesis_prompt(task, proposals, self.manifesto)
        write_text("council/synthesis.prompt.txt", synthesis_prompt)
        response = await self.router.invoke(
            synthesis_model,
            synthesis_prompt,
            max_tokens=self.settings.synthesis_max_tokens,
            temperature=self.settings.temperature,
        )
        synthesis_cost = self.router.charge(synthesis_model, response, "council-synthesis")
        write_text("council/synthesis.raw.txt", response.text)
        total_tokens += response.input_tokens + response.output_tokens
        total_cost += synthesis_cost

        parsed = parse_synthesis(response.text, [p.advisor_id for p in plans])
        deliberation = Deliberation(
            id=deliberation_id,
            task=task,
            proposals=proposals,
            disagreements=parsed.disagreements,
            consensus_text=parsed.consensus,
            synthesized_answer=parsed.synthesized_answer,
            total_tokens=total_tokens,
            total_cost_usd=total_cost,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )
        synthesis_meta = {
            "modelKey": synthesis_model.key,
            "provider": synthesis_model.provider,
            "model": synthesis_model.model_id,
            "inputTokens": response.input_tokens,
            "outputTokens": response.output_tokens,
            "latencyMs": response.latency_ms,
            "costUsd": synthesis_cost,
        }

        if recording:
            artifacts.append(self.store.write_artifact_json(session_id, task_id, "deliberation.json", deliberation.to_dict()))
            self.store.write_last_model_run({
                "sessionId": session_id,
                "taskId": task_id,
                "modelKey": synthesis_model.key,
                "operation": "council-synthesis",
                "costUsd": synthesis_cost,
                "latencyMs": response.latency_ms,
                "resultExcerpt": parsed.synthesized_answer[:EXCERPT_CHARS],
            })
        if audit:
            audit.log("council_complete", {
                "proposals": len(proposals),
                "disagreements": len(parsed.disagreements),
                "totalCost": total_cost,
            })
        return CouncilRunResult(deliberation, synthesis_meta, dropped, artifacts)

    def _resolve_synthesis_model(self) -> ModelConfig:
        key = self.settings.synthesis_model_key
        model = self.router.model(key)
        if model is None:
            raise CouncilConfigError(f'Council synthesis model "{key}" not found.')
        if not self.router.is_provider_available(model.provider):
            raise CouncilConfigError(f'Provider "{model.provider}" is not configured.')
        return model

    def _plan_advisors(self, task: str, context: str) -> List[AdvisorPlan]:
        resolved = []
        for advisor in self.settings.advisors:
            model = self.router.model(advisor.model_key)
            if model is None:
                raise CouncilConfigError(f'Council advisor model "{advisor.model_key}" not found.')
            resolved.append((advisor, model))

        available = [(a, m) for a, m in resolved if self.router.is_provider_available(m.provider)]
        if not available:
            raise CouncilConfigError("No council advisors available. Configure provider API keys.")
        if len(available) < len(resolved):
            missing = [f"{a.id}:{m.provider}" for a, m in resolved if (a, m) not in available]
            logger.info("Council: skipping advisors without API keys (%s)", ", ".join(missing))

        plans = []
        for advisor, model in available:
            prompt = build_advisor_prompt(advisor.id, task, context, self.manifesto)
            cost = self.router.estimate_cost_for_key(
                model.key, estimate_tokens(prompt), self.settings.advisor_max_tokens
            )
            plans.append(AdvisorPlan(advisor.id, model, prompt, cost))
        return plans

    def estimate_total(self, plans: List[AdvisorPlan], synthesis_model: ModelConfig, task: str) -> float:
        base_tokens = estimate_tokens(build_synthesis_prompt(task, [], self.manifesto))
        synthesis_input = base_tokens + len(plans) * self.settings.advisor_max_tokens
        synthesis_cost = self.router.estimate_cost_for_key(
            synthesis_model.key, synthesis_input, self.settings.synthesis_max_tokens
        )
        return sum(plan.estimated_cost for plan in plans) + synthesis_cost

    def _fit_budget(self, plans: List[AdvisorPlan], synthesis_model: ModelConfig, task: str):
        ledger = self.router.ledger
        remaining = ledger.remaining_usd
        selected = list(plans)
        dropped: List[str] = []
        estimate = self.estimate_total(selected, synthesis_model, task)
        if not ledger.fits(estimate):
            # Most expensive first; roster order breaks ties.
            selected.sort(key=lambda plan: plan.estimated_cost, reverse=True)
            while len(selected) > 1 and not ledger.fits(estimate):
                dropped.append(selected.pop(0).advisor_id)
                estimate = self.estimate_total(selected, synthesis_model, task)
            order = {id(plan): index for index, plan in enumerate(plans)}
            selected.sort(key=lambda plan: order[id(plan)])
        if not ledger.fits(estimate):
            raise BudgetExceededError(
                f"Blocked: estimated council cost ${estimate:.6f} exceeds remaining ${remaining:.6f}"
            )
        return selected, dropped

    async def _call_advisor_with_timeout(self, plan: AdvisorPlan):
        timeout = self.settings.advisor_timeout_seconds
        if timeout:
            return await asyncio.wait_for(self._call_advisor(plan), timeout)
        return await self._call_advisor(plan)

    async def _call_advisor(self, plan: AdvisorPlan):
        response = await self.router.invoke(
            plan.model,
            plan.prompt,
            max_tokens=self.settings.advisor_max_tokens,
            temperature=self.settings.temperature,
        )
        cost = self.router.charge(plan.model, response, "council-advisor")
        proposal = parse_proposal(response.text, plan.advisor_id)
        proposal.token_count = response.input_tokens + response.output_tokens
        proposal.cost_usd = cost
        proposal.latency_ms = response.latency_ms
        return proposal, response.text
