"""Budget ledger: process-wide remaining spend for the calendar month."""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from janus.parsing import coerce_number

logger = logging.getLogger(__name__)


def month_key(now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    return now.strftime("%Y-%m")


@dataclass
class CostEntry:
    timestamp: str
    model: str
    cost: float
    operation: str
    input_tokens: int = 0
    output_tokens: int = 0
    model_key: Optional[str] = None
    provider: Optional[str] = None
    latency_ms: Optional[int] = None
    id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "timestamp": self.timestamp,
            "model": self.model,
            "modelKey": self.model_key,
            "provider": self.provider,
            "inputTokens": self.input_tokens,
            "outputTokens": self.output_tokens,
            "latencyMs": self.latency_ms,
            "cost": self.cost,
            "operation": self.operation,
        }
        return {key: value for key, value in data.items() if value is not None}


def monthly_limit(store: Any, default_usd: float) -> float:
    """Persisted override from the store wins over the configured value."""
    override = store.read_budget_override()
    if override:
        return float(override["monthlyBudget"])
    return float(default_usd)


def spent_this_month(store: Any, now: datetime | None = None) -> float:
    key = month_key(now)
    total = 0.0
    for session in store.list_session_costs():
        for entry in session.get("entries") or []:
            if not isinstance(entry, dict):
                continue
            if str(entry.get("timestamp", ""))[:7] != key:
                continue
            try:
                total += float(entry.get("cost") or 0)
            except (TypeError, ValueError):
                logger.warning("Ignoring malformed cost entry in session %s", session.get("sessionId"))
    return total


def summarize_costs(session_id: str, entries: List[Dict[str, Any]]) -> Dict[str, Any]:
    by_model: Dict[str, float] = {}
    by_operation: Dict[str, float] = {}
    total = 0.0
    for entry in entries:
        cost = coerce_number(entry.get("cost")) or 0.0
        model = str(entry.get("model") or "unknown")
        operation = str(entry.get("operation") or "unknown")
        by_model[model] = by_model.get(model, 0.0) + cost
        by_operation[operation] = by_operation.get(operation, 0.0) + cost
        total += cost
    return {
        "sessionId": session_id,
        "entries": entries,
        "totalCost": total,
        "byModel": by_model,
        "byOperation": by_operation,
    }


@dataclass
class BudgetLedger:
    """Remaining spend shared by every routed call in this process.

    ``remaining_usd`` is only ever decremented by :meth:`charge`. It may go
    negative, which signals an overrun; it is never reset during the process.
    """

    monthly_limit_usd: float
    remaining_usd: float
    session_id: str | None = None
    entries: List[CostEntry] = field(default_factory=list)

    @classmethod
    def from_store(cls, store: Any, monthly_usd: float, session_id: str | None = None) -> "BudgetLedger":
        limit = monthly_limit(store, monthly_usd)
        spent = spent_this_month(store)
        return cls(monthly_limit_usd=limit, remaining_usd=limit - spent, session_id=session_id)

    def fits(self, estimated_cost: float) -> bool:
        return estimated_cost <= self.remaining_usd

    def charge(
        self,
        cost: float,
        *,
        model: str = "unknown",
        model_key: str | None = None,
        provider: str | None = None,
        input_tokens: int = 0,
        output_tokens: int = 0,
        latency_ms: int | None = None,
        operation: str = "api-call",
    ) -> CostEntry:
        cost = max(0.0, float(cost))
        self.remaining_usd -= cost
        entry = CostEntry(
            id=f"{model_key or model}-{uuid.uuid4().hex[:8]}",
            timestamp=datetime.now(timezone.utc).isoformat(),
            model=model,
            model_key=model_key,
            provider=provider,
            input_tokens=int(input_tokens or 0),
            output_tokens=int(output_tokens or 0),
            latency_ms=latency_ms,
            cost=cost,
            operation=operation,
        )
        self.entries.append(entry)
        if self.remaining_usd < 0:
            logger.warning(
                "Monthly budget exceeded: remaining $%.6f after %s on %s",
                self.remaining_usd,
                operation,
                model_key or model,
            )
        return entry

    def session_costs(self) -> Dict[str, Any]:
        return summarize_costs(self.session_id or "unknown", [entry.to_dict() for entry in self.entries])

    def persist(self, store: Any):
        """Merge this process's entries into the session's cost file.

        Entries already on disk are kept, so a session id reused across runs
        accumulates spend. No-op without a session or entries.
        """
        if not self.session_id or not self.entries:
            return None
        existing = store.read_session_costs(self.session_id) or {}
        merged = [entry for entry in existing.get("entries") or [] if isinstance(entry, dict)]
        seen = {entry.get("id") for entry in merged if entry.get("id")}
        for entry in self.entries:
            if entry.id in seen:
                continue
            merged.append(entry.to_dict())
            seen.add(entry.id)
        return store.write_session_costs(self.session_id, summarize_costs(self.session_id, merged))

    def status(self) -> Dict[str, float]:
        spent = self.monthly_limit_usd - self.remaining_usd
        if self.monthly_limit_usd > 0:
            percentage = min(100.0, spent / self.monthly_limit_usd * 100)
        else:
            percentage = 0.0
        return {
            "monthlyBudget": self.monthly_limit_usd,
            "spent": max(0.0, spent),
            "remaining": max(0.0, self.remaining_usd),
            "percentageUsed": max(0.0, percentage),
        }
