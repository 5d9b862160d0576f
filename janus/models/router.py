"""Budget-aware router: picks a catalog model for a task and ranks fallbacks."""
from __future__ import annotations

import logging
import math
from functools import cmp_to_key
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List

from janus.costs import estimate_cost, estimate_tokens
from janus.errors import ProviderUnavailableError
from janus.models.catalog import Catalog, ModelConfig, default_catalog, load_catalog, tier_rank
from janus.models.freshness import CatalogStatus
from janus.models.providers import InvokeResult, ProviderClient, build_clients

logger = logging.getLogger(__name__)

DEFAULT_FRONTIER_TASKS = ("planning", "council", "model-rating")
OUTPUT_TOKEN_RATIO = 0.5
COST_EPSILON = 1e-9


@dataclass(frozen=True)
class RouteOption:
    provider: str
    model_id: str
    model_key: str
    quality: str
    estimated_cost_usd: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider,
            "model": self.model_id,
            "modelKey": self.model_key,
            "quality": self.quality,
            "estimatedCost": self.estimated_cost_usd,
        }


@dataclass
class RoutingDecision:
    provider: str
    model_id: str
    model_key: str
    quality: str
    rationale: str
    estimated_cost_usd: float
    fallbacks: List[RouteOption] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider,
            "model": self.model_id,
            "modelKey": self.model_key,
            "quality": self.quality,
            "rationale": self.rationale,
            "estimatedCost": self.estimated_cost_usd,
            "fallbacks": [option.to_dict() for option in self.fallbacks],
        }


@dataclass
class _Candidate:
    config: ModelConfig
    estimated_cost: float

    def option(self) -> RouteOption:
        return RouteOption(
            provider=self.config.provider,
            model_id=self.config.model_id,
            model_key=self.config.key,
            quality=self.config.quality_tier,
            estimated_cost_usd=self.estimated_cost,
        )


def _build_rationale(base: str, constraints: List[str], notes: List[str]) -> str:
    text = base
    if constraints:
        text += f" Constraints: {', '.join(constraints)}."
    if notes:
        text += f" Notes: {' '.join(notes)}"
    return text


class ModelRouter:
    """Routes prompts to catalog models.

    Routing never raises for an imperfect candidate set: each filter that would
    leave nothing is skipped and the compromise is recorded in the rationale.
    Budget is only consulted to choose among candidates; enforcement happens at
    the call site through the shared :class:`~janus.budget.BudgetLedger`.
    """

    def __init__(
        self,
        store: Any,
        ledger: Any,
        clients: Dict[str, ProviderClient],
        cost_optimization: bool = True,
        min_quality: str = "balanced",
        frontier_tasks: Iterable[str] = DEFAULT_FRONTIER_TASKS,
    ) -> None:
        self.store = store
        self.ledger = ledger
        self.clients = clients
        self.cost_optimization = cost_optimization
        self.min_quality = min_quality
        self.frontier_tasks = set(frontier_tasks)
        self._catalog: Catalog | None = None
        self._status: CatalogStatus | None = None

    @classmethod
    def from_config(cls, config: Any, store: Any, ledger: Any, http_client: Any = None) -> "ModelRouter":
        router_cfg = config.router
        clients = build_clients(
            config.providers,
            timeout=config.provider_timeout_seconds,
            http_client=http_client,
        )
        return cls(
            store=store,
            ledger=ledger,
            clients=clients,
            cost_optimization=bool(router_cfg.get("cost_optimization", True)),
            min_quality=str(router_cfg.get("min_quality", "balanced")),
            frontier_tasks=router_cfg.get("frontier_tasks") or DEFAULT_FRONTIER_TASKS,
        )

    # --- catalog ---

    def catalog(self) -> Catalog:
        if self._catalog is None:
            self._catalog = load_catalog(self.store)
            self._status = CatalogStatus.from_dict(self.store.read_catalog_status())
        return self._catalog

    def refresh_catalog(self) -> None:
        self._catalog = None
        self._status = None

    def catalog_status(self) -> CatalogStatus | None:
        self.catalog()
        return self._status

    def model(self, key: str) -> ModelConfig | None:
        return self.catalog().get(key)

    def is_provider_available(self, provider: str) -> bool:
        client = self.clients.get(provider)
        return client is not None and client.available

    def estimate_cost_for_key(self, model_key: str, input_tokens: int, output_tokens: int) -> float:
        model = self.model(model_key)
        if model is None:
            return 0.0
        return estimate_cost(model, input_tokens, output_tokens)

    # --- routing ---

    def route(
        self,
        prompt: str,
        task: str,
        preferred_model: str | None = None,
        min_quality: str | None = None,
        max_cost: float | None = None,
    ) -> RoutingDecision:
        min_quality = min_quality or self.min_quality
        input_tokens = estimate_tokens(prompt)
        output_tokens = math.ceil(input_tokens * OUTPUT_TOKEN_RATIO)

        catalog = self.catalog()
        preference = catalog.provider_preference or list(default_catalog().provider_preference)
        candidates = self._candidates(catalog.models, input_tokens, output_tokens)
        notes: List[str] = []

        available = [c for c in candidates if self.is_provider_available(c.config.provider)]
        if available:
            candidates = available
        else:
            notes.append("No provider API keys found; using configured models anyway.")

        if preferred_model:
            pinned = [c for c in candidates if c.config.key == preferred_model]
            if pinned:
                candidates = pinned
            else:
                notes.append(f'Preferred model "{preferred_model}" not found; using available models.')

        floor = tier_rank(min_quality)
        qualified = [c for c in candidates if tier_rank(c.config.quality_tier) >= floor]
        if qualified:
            candidates = qualified
        else:
            notes.append(f'No models meet minQuality "{min_quality}"; using available models.')

        if max_cost is not None:
            affordable = [c for c in candidates if c.estimated_cost <= max_cost]
            if affordable:
                candidates = affordable
            else:
                notes.append(f"No models meet maxCost ${max_cost:.6f}; using available models.")

        if task in self.frontier_tasks:
            candidates = self._apply_frontier(candidates, notes)

        if not candidates:
            candidates = self._candidates(default_catalog().models, input_tokens, output_tokens)
            notes.append("No candidates available after filtering; using fallback catalog.")
        if not candidates:
            raise ProviderUnavailableError("No models available for routing.")

        ranked = self._sort(candidates, preference)

        constraints = [f"minQuality={min_quality}"]
        if max_cost is not None:
            constraints.append(f"maxCost=${max_cost:.6f}")
        if preferred_model:
            constraints.append(f"preferredModel={preferred_model}")

        if not self.cost_optimization:
            chosen = ranked[0]
            base = f'Cost optimization disabled; selected {chosen.config.key} for task "{task}".'
        else:
            remaining = self.ledger.remaining_usd
            within = [c for c in ranked if c.estimated_cost <= remaining]
            chosen = within[0] if within else ranked[0]
            if not within:
                notes.append(
                    f"Estimated cost ${chosen.estimated_cost:.6f} exceeds remaining ${remaining:.6f}."
                )
            base = f'Cost-aware routing selected {chosen.config.key} for task "{task}".'

        decision = RoutingDecision(
            provider=chosen.config.provider,
            model_id=chosen.config.model_id,
            model_key=chosen.config.key,
            quality=chosen.config.quality_tier,
            rationale=_build_rationale(base, constraints, notes),
            estimated_cost_usd=chosen.estimated_cost,
            fallbacks=[c.option() for c in ranked if c is not chosen],
        )
        logger.debug("Routed task %s to %s (%s)", task, decision.model_key, decision.rationale)
        return decision

    def _apply_frontier(self, candidates: List[_Candidate], notes: List[str]) -> List[_Candidate]:
        status = self.catalog_status()
        if status is None:
            notes.append("Model freshness status missing; frontier routing skipped.")
            return candidates
        if not status.allows_frontier:
            notes.append("Model freshness is stale; frontier routing skipped.")
            return candidates
        critical = set(status.critical_keys)
        frontier = [c for c in candidates if c.config.key in critical]
        if not frontier:
            notes.append("No frontier candidates available; using all models.")
            return candidates
        notes.append("Frontier-only routing applied for critical task.")
        return frontier

    @staticmethod
    def _candidates(models: Iterable[ModelConfig], input_tokens: int, output_tokens: int) -> List[_Candidate]:
        return [_Candidate(model, estimate_cost(model, input_tokens, output_tokens)) for model in models]

    @staticmethod
    def _sort(candidates: List[_Candidate], preference: List[str]) -> List[_Candidate]:
        rank = {provider: index for index, provider in enumerate(preference)}

        def compare(a: _Candidate, b: _Candidate) -> int:
            delta = a.estimated_cost - b.estimated_cost
            if abs(delta) > COST_EPSILON:
                return -1 if delta < 0 else 1
            return rank.get(a.config.provider, len(preference)) - rank.get(b.config.provider, len(preference))

        return sorted(candidates, key=cmp_to_key(compare))

    # --- calls ---

    async def invoke(
        self,
        selection: Any,
        prompt: str,
        max_tokens: int = 250,
        temperature: float = 0.0,
    ) -> InvokeResult:
        """Call the provider behind ``selection`` (anything with ``provider`` and ``model_id``).

        Token counts the provider does not report are estimated from text length.
        """
        client = self.clients.get(selection.provider)
        if client is None or not client.available:
            raise ProviderUnavailableError(f'Provider "{selection.provider}" is not configured.')
        result = await client.generate(selection.model_id, prompt, max_tokens=max_tokens, temperature=temperature)
        if result.input_tokens <= 0:
            result.input_tokens = estimate_tokens(prompt)
        if result.output_tokens <= 0:
            result.output_tokens = estimate_tokens(result.text)
        return result

    def charge(self, model: ModelConfig, result: InvokeResult, operation: str) -> float:
        """Charge the ledger for a completed call and return the cost."""
        cost = estimate_cost(model, result.input_tokens, result.output_tokens)
        self.ledger.charge(
            cost,
            model=model.model_id,
            model_key=model.key,
            provider=model.provider,
            input_tokens=result.input_tokens,
            output_tokens=result.output_tokens,
            latency_ms=result.latency_ms,
            operation=operation,
        )
        return cost
