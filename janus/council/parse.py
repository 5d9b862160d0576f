"""Lenient parsing of advisor and synthesis responses."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional

from janus.council.types import (
    DELEGATION_TARGETS,
    SEVERITIES,
    Alternative,
    Delegation,
    Disagreement,
    Position,
    Proposal,
)
from janus.parsing import (
    coerce_string,
    first_present,
    normalize_confidence,
    parse_json_object,
    to_string_list,
)


@dataclass
class ParsedSynthesis:
    consensus: Optional[str]
    synthesized_answer: str
    disagreements: List[Disagreement] = field(default_factory=list)


def normalize_severity(value: Any) -> str:
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in SEVERITIES:
            return lowered
        if lowered in ("high", "major", "critical"):
            return "significant"
        if lowered == "low":
            return "minor"
    return "moderate"


def _records(value: Any) -> Iterable[dict]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def _alternatives(value: Any) -> List[Alternative]:
    result = []
    for record in _records(value):
        description = coerce_string(record.get("description"))
        if not description:
            continue
        reason = coerce_string(first_present(record, "rejectionReason", "reason"))
        result.append(Alternative(description, reason))
    return result


def _delegations(value: Any) -> List[Delegation]:
    result = []
    for record in _records(value):
        task = coerce_string(record.get("task"))
        target = coerce_string(record.get("targetSwarm"))
        if not task or target not in DELEGATION_TARGETS:
            continue
        result.append(Delegation(task, target, coerce_string(record.get("rationale"))))
    return result


def _positions(value: Any, advisor_ids: Optional[set]) -> List[Position]:
    result = []
    for record in _records(value):
        advisor = record.get("advisor")
        position = coerce_string(first_present(record, "position", "view"))
        if not isinstance(advisor, str) or not position:
            continue
        if advisor_ids is not None and advisor not in advisor_ids:
            continue
        result.append(Position(advisor, position, normalize_confidence(record.get("confidence"), 50)))
    return result


def _disagreements(value: Any, advisor_ids: Optional[set]) -> List[Disagreement]:
    result = []
    for record in _records(value):
        topic = coerce_string(first_present(record, "topic", "issue"))
        positions = _positions(record.get("positions"), advisor_ids)
        if not topic or not positions:
            continue
        result.append(Disagreement(
            topic=topic,
            positions=positions,
            severity=normalize_severity(record.get("severity")),
            resolution=coerce_string(record.get("resolution")) or None,
        ))
    return result


def parse_proposal(text: str, advisor_id: str) -> Proposal:
    """Build a proposal from an advisor reply. A reply without JSON becomes a raw-text proposal."""
    trimmed = (text or "").strip()
    fallback = trimmed or f"No response from {advisor_id}."
    parsed = parse_json_object(text)
    if parsed is None:
        return Proposal(advisor_id=advisor_id, response_text=fallback)

    return Proposal(
        advisor_id=advisor_id,
        response_text=coerce_string(first_present(parsed, "response", "proposal", "answer"), fallback),
        confidence=normalize_confidence(parsed.get("confidence"), 50),
        uncertainties=to_string_list(parsed.get("uncertainties")),
        assumptions=to_string_list(parsed.get("assumptions")),
        alternatives=_alternatives(parsed.get("alternatives")),
        delegations=_delegations(parsed.get("delegations")),
        reasoning_text=coerce_string(first_present(parsed, "reasoning", "rationale")),
    )


def parse_synthesis(text: str, advisor_ids: Iterable[str] | None = None) -> ParsedSynthesis:
    trimmed = (text or "").strip()
    known = set(advisor_ids) if advisor_ids is not None else None
    parsed = parse_json_object(text)
    if parsed is None:
        return ParsedSynthesis(consensus=None, synthesized_answer=trimmed)

    consensus = coerce_string(first_present(parsed, "consensus", "summary")) or None
    answer = coerce_string(first_present(parsed, "synthesizedAnswer", "answer", "recommendation"), trimmed)
    return ParsedSynthesis(
        consensus=consensus,
        synthesized_answer=answer,
        disagreements=_disagreements(first_present(parsed, "disagreements", "conflicts"), known),
    )
