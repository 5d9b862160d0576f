"""Council data types: proposals, disagreements and the assembled deliberation."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

SEVERITIES = ("minor", "moderate", "significant")
DELEGATION_TARGETS = ("scout-swarm", "executor-swarm")


@dataclass
class Alternative:
    description: str
    rejection_reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"description": self.description, "rejectionReason": self.rejection_reason}


@dataclass
class Delegation:
    task: str
    target_swarm: str
    rationale: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"task": self.task, "targetSwarm": self.target_swarm, "rationale": self.rationale}


@dataclass
class Proposal:
    advisor_id: str
    response_text: str
    confidence: int = 50
    uncertainties: List[str] = field(default_factory=list)
    assumptions: List[str] = field(default_factory=list)
    alternatives: List[Alternative] = field(default_factory=list)
    delegations: List[Delegation] = field(default_factory=list)
    reasoning_text: str = ""
    token_count: int = 0
    cost_usd: float = 0.0
    latency_ms: int = 0

    @classmethod
    def failed(cls, advisor_id: str, message: str) -> "Proposal":
        """Low-confidence stand-in for an advisor whose call or parse failed."""
        return cls(
            advisor_id=advisor_id,
            response_text=f"Advisor failed: {message}",
            confidence=10,
            uncertainties=["advisor_call_failed"],
            reasoning_text="Advisor call failed before producing a proposal.",
        )

    def compact(self) -> Dict[str, Any]:
        return {
            "advisor": self.advisor_id,
            "response": self.response_text,
            "confidence": self.confidence,
            "uncertainties": list(self.uncertainties),
            "assumptions": list(self.assumptions),
            "alternatives": [a.to_dict() for a in self.alternatives],
            "delegations": [d.to_dict() for d in self.delegations],
            "reasoning": self.reasoning_text,
        }

    def to_dict(self) -> Dict[str, Any]:
        data = self.compact()
        data.update({
            "tokenCount": self.token_count,
            "cost": self.cost_usd,
            "latencyMs": self.latency_ms,
        })
        return data


@dataclass
class Position:
    advisor_id: str
    position: str
    confidence: int = 50

    def to_dict(self) -> Dict[str, Any]:
        return {"advisor": self.advisor_id, "position": self.position, "confidence": self.confidence}


@dataclass
class Disagreement:
    topic: str
    positions: List[Position]
    severity: str = "moderate"
    resolution: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "topic": self.topic,
            "positions": [p.to_dict() for p in self.positions],
            "severity": self.severity,
        }
        if self.resolution:
            data["resolution"] = self.resolution
        return data


@dataclass(frozen=True)
class Deliberation:
    id: str
    task: str
    proposals: List[Proposal]
    disagreements: List[Disagreement]
    consensus_text: Optional[str]
    synthesized_answer: str
    total_tokens: int
    total_cost_usd: float
    timestamp: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "task": self.task,
            "proposals": [p.to_dict() for p in self.proposals],
            "disagreements": [d.to_dict() for d in self.disagreements],
            "consensus": self.consensus_text,
            "synthesizedAnswer": self.synthesized_answer,
            "totalTokens": self.total_tokens,
            "totalCost": self.total_cost_usd,
            "timestamp": self.timestamp,
        }
