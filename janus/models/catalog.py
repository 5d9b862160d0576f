"""Model catalog: routable model configs plus provider preference."""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Optional
import logging

logger = logging.getLogger(__name__)

QUALITY_TIERS = ("fast", "balanced", "quality")
VALID_PROVIDERS = ("anthropic", "openai", "gemini", "openrouter")
DEFAULT_PROVIDER_PREFERENCE = ["anthropic", "openai", "gemini", "openrouter"]


def tier_rank(tier: str) -> int:
    if tier == "fast":
        return 1
    if tier == "balanced":
        return 2
    return 3


def tier_from_rank(rank: int) -> str:
    if rank <= 1:
        return "fast"
    if rank == 2:
        return "balanced"
    return "quality"


@dataclass(frozen=True)
class ModelConfig:
    key: str
    provider: str
    model_id: str
    quality_tier: str
    cost_per_mtok_in: float
    cost_per_mtok_out: float

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Optional["ModelConfig"]:
        """Build a config from the catalog file shape, or None if the entry is invalid."""
        if not isinstance(data, dict):
            return None
        key = data.get("key")
        provider = data.get("provider")
        model_id = data.get("model")
        quality = data.get("quality")
        cost_in = data.get("costPerMTokIn")
        cost_out = data.get("costPerMTokOut")
        if not isinstance(key, str) or not key:
            return None
        if provider not in VALID_PROVIDERS:
            return None
        if not isinstance(model_id, str) or quality not in QUALITY_TIERS:
            return None
        if isinstance(cost_in, bool) or isinstance(cost_out, bool):
            return None
        if not isinstance(cost_in, (int, float)) or not isinstance(cost_out, (int, float)):
            return None
        return cls(key, provider, model_id, quality, float(cost_in), float(cost_out))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "provider": self.provider,
            "model": self.model_id,
            "quality": self.quality_tier,
            "costPerMTokIn": self.cost_per_mtok_in,
            "costPerMTokOut": self.cost_per_mtok_out,
        }


@dataclass
class Catalog:
    provider_preference: List[str]
    models: List[ModelConfig] = field(default_factory=list)

    def get(self, key: str) -> ModelConfig | None:
        for model in self.models:
            if model.key == key:
                return model
        return None

    def keys(self) -> List[str]:
        return [model.key for model in self.models]

    def with_tiers(self, tiers: Dict[str, str]) -> "Catalog":
        """Return a copy where each model's tier is replaced by ``tiers[key]`` when present."""
        models = []
        for model in self.models:
            override = tiers.get(model.key)
            if override in QUALITY_TIERS and override != model.quality_tier:
                model = replace(model, quality_tier=override)
            models.append(model)
        return Catalog(list(self.provider_preference), models)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Catalog":
        preference = [p for p in (data.get("providerPreference") or []) if p in VALID_PROVIDERS]
        models: List[ModelConfig] = []
        seen: set[str] = set()
        for entry in data.get("models") or []:
            model = ModelConfig.from_dict(entry)
            if model is None:
                logger.warning("Skipping invalid catalog entry: %r", entry)
                continue
            if model.key in seen:
                logger.warning("Skipping duplicate catalog key: %s", model.key)
                continue
            seen.add(model.key)
            models.append(model)
        return cls(preference or list(DEFAULT_PROVIDER_PREFERENCE), models)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "providerPreference": list(self.provider_preference),
            "models": [model.to_dict() for model in self.models],
        }


def _default_models() -> Iterable[ModelConfig]:
    return (
        ModelConfig("haiku", "anthropic", "claude-3-5-haiku-20241022", "fast", 0.8, 4.0),
        ModelConfig("sonnet", "anthropic", "claude-3-5-sonnet-20241022", "balanced", 3.0, 15.0),
        ModelConfig("opus", "anthropic", "claude-opus-4-5-20251101", "quality", 15.0, 75.0),
        ModelConfig("gpt-4", "openai", "gpt-4-turbo", "quality", 10.0, 30.0),
        ModelConfig("gpt-4-turbo", "openai", "gpt-4-turbo-preview", "balanced", 10.0, 30.0),
        ModelConfig("gemini-pro", "gemini", "gemini-1.5-pro", "balanced", 10.0, 30.0),
    )


def default_catalog() -> Catalog:
    return Catalog(list(DEFAULT_PROVIDER_PREFERENCE), list(_default_models()))


def load_catalog(store: Any) -> Catalog:
    """Load the base catalog from the store and apply the learned tier snapshot.

    A missing or empty catalog file falls back to the built-in default catalog.
    """
    base: Catalog | None = None
    data = store.read_catalog()
    if data:
        base = Catalog.from_dict(data)
        if not base.models:
            base = None
    if base is None:
        base = default_catalog()
    snapshot = store.read_tier_snapshot()
    if snapshot:
        tiers = snapshot.get("tiers") or {}
        if isinstance(tiers, dict):
            return base.with_tiers(tiers)
    return base
