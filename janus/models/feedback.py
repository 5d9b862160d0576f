"""Peer-rating tier learning.

Every routed model run can be rated 1-5 (by another model or by a human).
The full rating history is periodically folded into a :class:`TierSnapshot`
that overrides the catalog's default quality tiers:

1. Each model gets a time-decayed mean rating, cost and latency
   (``weight = exp(-ln2 * age / half_life)``).
2. Its score is ``mean_rating / (cost / median_cost + latency / median_latency + eps)``
   where the medians are taken over all rating events.
3. Models with at least ``min_ratings`` ratings are ranked by score and cut
   into three buckets (quality / balanced / fast). A bucket is downgraded one
   step when the model's mean rating is below the quality or balanced floor.
4. No tier moves more than one rank away from the previous snapshot.

With fewer than three eligible models the snapshot just carries the base
tiers forward.
"""
from __future__ import annotations

import logging
import math
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from janus.models.catalog import Catalog, default_catalog, tier_from_rank, tier_rank
from janus.parsing import coerce_number, coerce_string, parse_json_object

logger = logging.getLogger(__name__)

ALGORITHM = "peer-rating-v1"
SCORE_EPSILON = 1e-6
EXCERPT_CHARS = 1500
RATING_OPERATION = "model-rating"


@dataclass
class FeedbackSettings:
    peer_ratings: bool = True
    min_ratings: int = 3
    half_life_days: float = 30.0
    quality_min_rating: float = 4.0
    balanced_min_rating: float = 3.0

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "FeedbackSettings":
        return cls(
            peer_ratings=bool(config.get("peer_ratings", True)),
            min_ratings=int(config.get("min_ratings", 3)),
            half_life_days=float(config.get("half_life_days", 30)),
            quality_min_rating=float(config.get("quality_min_rating", 4)),
            balanced_min_rating=float(config.get("balanced_min_rating", 3)),
        )


@dataclass
class RatingEvent:
    session_id: str
    from_model_key: str
    to_model_key: str
    to_task_id: str
    rating: int
    method: str = "auto"
    rationale: Optional[str] = None
    to_cost_usd: Optional[float] = None
    to_latency_ms: Optional[float] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RatingEvent | None":
        rating = coerce_number(data.get("rating"))
        if rating is None or rating != int(rating) or not 1 <= rating <= 5:
            return None
        to_key = data.get("toModelKey")
        if not isinstance(to_key, str) or not to_key:
            return None
        return cls(
            id=str(data.get("id") or uuid.uuid4()),
            timestamp=str(data.get("timestamp") or ""),
            session_id=str(data.get("sessionId") or "unknown"),
            from_model_key=str(data.get("fromModelKey") or "unknown"),
            to_model_key=to_key,
            to_task_id=str(data.get("toTaskId") or ""),
            rating=int(rating),
            rationale=data.get("rationale") or None,
            method=str(data.get("method") or "auto"),
            to_cost_usd=coerce_number(data.get("toCostUsd")),
            to_latency_ms=coerce_number(data.get("toLatencyMs")),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "timestamp": self.timestamp,
            "sessionId": self.session_id,
            "fromModelKey": self.from_model_key,
            "toModelKey": self.to_model_key,
            "toTaskId": self.to_task_id,
            "rating": self.rating,
            "rationale": self.rationale,
            "method": self.method,
            "toCostUsd": self.to_cost_usd,
            "toLatencyMs": self.to_latency_ms,
        }
        return {key: value for key, value in data.items() if value is not None}


@dataclass
class TierSnapshot:
    tiers: Dict[str, str]
    scores: Dict[str, float] = field(default_factory=dict)
    avg_ratings: Dict[str, float] = field(default_factory=dict)
    rating_counts: Dict[str, int] = field(default_factory=dict)
    generated_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    algorithm: str = ALGORITHM
    version: int = 1

    @classmethod
    def from_dict(cls, data: Dict[str, Any] | None) -> "TierSnapshot | None":
        if not isinstance(data, dict) or not isinstance(data.get("tiers"), dict):
            return None
        return cls(
            tiers=dict(data["tiers"]),
            scores=dict(data.get("scores") or {}),
            avg_ratings=dict(data.get("avgRatings") or {}),
            rating_counts=dict(data.get("ratingCounts") or {}),
            generated_at=str(data.get("generatedAt") or ""),
            algorithm=str(data.get("algorithm") or ALGORITHM),
            version=int(data.get("version") or 1),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "generatedAt": self.generated_at,
            "algorithm": self.algorithm,
            "tiers": dict(self.tiers),
            "scores": dict(self.scores),
            "avgRatings": dict(self.avg_ratings),
            "ratingCounts": dict(self.rating_counts),
        }


def _median(values: List[float]) -> float | None:
    cleaned = sorted(v for v in values if math.isfinite(v))
    if not cleaned:
        return None
    mid = len(cleaned) // 2
    if len(cleaned) % 2 == 1:
        return cleaned[mid]
    return (cleaned[mid - 1] + cleaned[mid]) / 2


def decay_weight(age_seconds: float, half_life_days: float) -> float:
    if not math.isfinite(age_seconds) or age_seconds < 0 or half_life_days <= 0:
        return 1.0
    half_life = half_life_days * 86400
    return math.exp(-math.log(2) * age_seconds / half_life)


def clamp_tier_change(previous: str, proposed: str) -> str:
    delta = tier_rank(proposed) - tier_rank(previous)
    if abs(delta) <= 1:
        return proposed
    return tier_from_rank(tier_rank(previous) + (1 if delta > 0 else -1))


def _age_seconds(timestamp: str, now: datetime) -> float:
    try:
        ts = datetime.fromisoformat(timestamp.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        return 0.0
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return (now - ts).total_seconds()


def recompute_tier_snapshot(
    catalog: Catalog,
    ratings: List[RatingEvent],
    previous: TierSnapshot | None = None,
    settings: FeedbackSettings | None = None,
    now: datetime | None = None,
) -> TierSnapshot:
    settings = settings or FeedbackSettings()
    now = now or datetime.now(timezone.utc)
    previous_tiers = previous.tiers if previous else {}

    median_cost = _median([e.to_cost_usd for e in ratings if e.to_cost_usd is not None]) or 1.0
    median_latency = _median([e.to_latency_ms for e in ratings if e.to_latency_ms is not None]) or 1.0

    avg_ratings: Dict[str, float] = {}
    scores: Dict[str, float] = {}
    counts: Dict[str, int] = {}

    for model in catalog.models:
        events = [e for e in ratings if e.to_model_key == model.key]
        counts[model.key] = len(events)
        if not events:
            avg_ratings[model.key] = 0.0
            scores[model.key] = 0.0
            continue

        rating_sum = cost_sum = latency_sum = weight_sum = 0.0
        for event in events:
            weight = decay_weight(_age_seconds(event.timestamp, now), settings.half_life_days)
            rating_sum += event.rating * weight
            cost_sum += (event.to_cost_usd if event.to_cost_usd is not None else median_cost) * weight
            latency_sum += (event.to_latency_ms if event.to_latency_ms is not None else median_latency) * weight
            weight_sum += weight

        if weight_sum > 0:
            mean_rating = rating_sum / weight_sum
            mean_cost = cost_sum / weight_sum
            mean_latency = latency_sum / weight_sum
        else:
            mean_rating, mean_cost, mean_latency = 0.0, median_cost, median_latency

        avg_ratings[model.key] = mean_rating
        norm = mean_cost / median_cost + mean_latency / median_latency
        scores[model.key] = mean_rating / (norm + SCORE_EPSILON)

    base_tiers = {m.key: previous_tiers.get(m.key, m.quality_tier) for m in catalog.models}
    eligible = [m.key for m in catalog.models if counts[m.key] >= settings.min_ratings]

    snapshot = TierSnapshot(
        tiers=dict(base_tiers),
        scores=scores,
        avg_ratings=avg_ratings,
        rating_counts=counts,
        generated_at=now.isoformat(),
    )
    if len(eligible) < 3:
        return snapshot

    eligible.sort(key=lambda key: scores[key], reverse=True)
    bucket = max(1, len(eligible) // 3)
    quality_keys = set(eligible[:bucket])
    fast_keys = set(eligible[-bucket:])

    for key in eligible:
        if key in quality_keys:
            proposed = "quality"
        elif key in fast_keys:
            proposed = "fast"
        else:
            proposed = "balanced"
        if proposed == "quality" and avg_ratings[key] < settings.quality_min_rating:
            proposed = "balanced"
        if proposed == "balanced" and avg_ratings[key] < settings.balanced_min_rating:
            proposed = "fast"
        prior = previous_tiers.get(key)
        snapshot.tiers[key] = clamp_tier_change(prior, proposed) if prior else proposed

    return snapshot


def build_peer_rating_prompt(last_run: Dict[str, Any]) -> str:
    excerpt = str(last_run.get("resultExcerpt") or "")[:EXCERPT_CHARS]
    return "\n".join([
        "You are rating the previous model run in the Janus system.",
        "Give a 1-5 score that reflects quality relative to cost and latency.",
        "5 = excellent quality for the cost/latency, 1 = poor value for cost/latency.",
        "",
        f"Previous model key: {last_run.get('modelKey')}",
        f"Operation: {last_run.get('operation')}",
        f"Task ID: {last_run.get('taskId')}",
        f"Session ID: {last_run.get('sessionId')}",
        f"Cost (USD): {last_run.get('costUsd') or 0}",
        f"Latency (ms): {last_run.get('latencyMs') or 0}",
        "",
        "Output excerpt:",
        excerpt or "(no output recorded)",
        "",
        'Respond with JSON only: {"rating": 1-5, "rationale": "<short reason>"}',
    ])


_BARE_RATING = re.compile(r"\b([1-5])\b")


def parse_peer_rating_response(text: str | None) -> Tuple[int, str | None] | None:
    """Return ``(rating, rationale)`` or None. JSON is tried first, then a bare digit."""
    if not text:
        return None
    parsed = parse_json_object(text)
    if parsed is not None:
        rating = coerce_number(parsed.get("rating"))
        if rating is not None and rating == int(rating) and 1 <= rating <= 5:
            rationale = coerce_string(parsed.get("rationale")) or coerce_string(parsed.get("reason"))
            return int(rating), rationale or None
    match = _BARE_RATING.search(text)
    if match:
        return int(match.group(1)), None
    return None


def load_ratings(store: Any) -> List[RatingEvent]:
    events = []
    for raw in store.list_ratings():
        event = RatingEvent.from_dict(raw)
        if event is not None:
            events.append(event)
    return events


def base_catalog(store: Any) -> Catalog:
    data = store.read_catalog()
    if data:
        catalog = Catalog.from_dict(data)
        if catalog.models:
            return catalog
    return default_catalog()


def record_rating(store: Any, event: RatingEvent, settings: FeedbackSettings | None = None) -> TierSnapshot:
    """Append ``event`` to the rating log and rewrite the tier snapshot."""
    store.append_rating(event.to_dict())
    return recompute_and_save(store, settings)


def recompute_and_save(store: Any, settings: FeedbackSettings | None = None) -> TierSnapshot:
    previous = TierSnapshot.from_dict(store.read_tier_snapshot())
    snapshot = recompute_tier_snapshot(base_catalog(store), load_ratings(store), previous, settings)
    store.write_tier_snapshot(snapshot.to_dict())
    return snapshot


class PeerRater:
    """Asks the currently routed model to rate the previous model run of the session."""

    def __init__(self, router: Any, store: Any, settings: FeedbackSettings | None = None) -> None:
        self.router = router
        self.store = store
        self.settings = settings or FeedbackSettings()

    def _should_rate(self, last_run: Dict[str, Any] | None, rater_key: str, session_id: str) -> bool:
        if not self.settings.peer_ratings or not last_run:
            return False
        if not last_run.get("modelKey") or not last_run.get("taskId"):
            return False
        if last_run.get("sessionId") != session_id:
            return False
        if last_run.get("operation") == RATING_OPERATION:
            return False
        return last_run.get("modelKey") != rater_key

    async def maybe_rate_previous(self, rater: Any, session_id: str) -> RatingEvent | None:
        """Rate the previous run with ``rater`` (a routing decision). Never raises."""
        try:
            last_run = self.store.read_last_model_run()
            if not self._should_rate(last_run, rater.model_key, session_id):
                return None

            result = await self.router.invoke(
                rater, build_peer_rating_prompt(last_run), max_tokens=120, temperature=0
            )
            model = self.router.model(rater.model_key)
            if model is not None:
                self.router.charge(model, result, RATING_OPERATION)

            parsed = parse_peer_rating_response(result.text)
            if parsed is None:
                logger.info("Peer rating from %s was not parseable", rater.model_key)
                return None
            rating, rationale = parsed

            event = RatingEvent(
                session_id=session_id,
                from_model_key=rater.model_key,
                to_model_key=str(last_run["modelKey"]),
                to_task_id=str(last_run["taskId"]),
                rating=rating,
                rationale=rationale,
                method="auto",
                to_cost_usd=coerce_number(last_run.get("costUsd")),
                to_latency_ms=coerce_number(last_run.get("latencyMs")),
            )
            record_rating(self.store, event, self.settings)
            self.router.refresh_catalog()
            logger.info("%s rated %s: %d", rater.model_key, event.to_model_key, rating)
            return event
        except Exception:
            logger.warning("Peer rating skipped", exc_info=True)
            return None
