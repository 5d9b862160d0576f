"""Catalog freshness: TTL status and refresh through the external oracle."""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from janus.models.catalog import VALID_PROVIDERS, Catalog, ModelConfig
from janus.parsing import coerce_number, coerce_string, parse_json_object, to_string_list

logger = logging.getLogger(__name__)

DEFAULT_TTL_HOURS = 48
STATUS_VALUES = ("fresh", "stale", "unknown")


def _parse_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class CatalogStatus:
    ttl_hours: float = DEFAULT_TTL_HOURS
    status: str = "unknown"
    critical_keys: List[str] = field(default_factory=list)
    critical_ok: bool = False
    last_verified_at: Optional[str] = None
    notes: Optional[str] = None
    source: str = "oracle"
    version: int = 1

    @classmethod
    def from_dict(cls, data: Dict[str, Any] | None) -> "CatalogStatus | None":
        if not isinstance(data, dict):
            return None
        status = data.get("status")
        ttl_hours = coerce_number(data.get("ttlHours"))
        version = coerce_number(data.get("version"))
        return cls(
            ttl_hours=ttl_hours if ttl_hours and ttl_hours > 0 else DEFAULT_TTL_HOURS,
            status=status if status in STATUS_VALUES else "unknown",
            critical_keys=to_string_list(data.get("criticalKeys")),
            critical_ok=bool(data.get("criticalOk")),
            last_verified_at=coerce_string(data.get("lastVerifiedAt")) or None,
            notes=coerce_string(data.get("notes")) or None,
            source=str(data.get("source") or "oracle"),
            version=int(version) if version else 1,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "version": self.version,
            "lastVerifiedAt": self.last_verified_at,
            "ttlHours": self.ttl_hours,
            "status": self.status,
            "source": self.source,
            "criticalKeys": list(self.critical_keys),
            "criticalOk": self.critical_ok,
            "notes": self.notes,
        }
        return {key: value for key, value in data.items() if value is not None}

    def within_ttl(self, now: datetime | None = None) -> bool:
        verified = _parse_iso(self.last_verified_at)
        if verified is None:
            return False
        now = now or datetime.now(timezone.utc)
        return now - verified <= timedelta(hours=self.ttl_hours)

    @property
    def allows_frontier(self) -> bool:
        return self.status == "fresh" and self.critical_ok


def critical_keys_ok(catalog: Catalog, keys: List[str]) -> bool:
    available = set(catalog.keys())
    return all(key in available for key in keys)


def parse_oracle_response(text: str) -> Dict[str, Any] | None:
    """Pull a catalog proposal out of oracle output; ``None`` if it has no valid model."""
    parsed = parse_json_object(text)
    if parsed is None:
        return None
    models = []
    for entry in parsed.get("models") or []:
        model = ModelConfig.from_dict(entry)
        if model is not None:
            models.append(model)
    if not models:
        return None
    preference = parsed.get("providerPreference")
    if isinstance(preference, list):
        preference = [p for p in preference if p in VALID_PROVIDERS] or None
    else:
        preference = None
    return {
        "providerPreference": preference,
        "models": models,
        "notes": coerce_string(parsed.get("notes")),
    }


def merge_catalog(
    current: Catalog,
    models: List[ModelConfig],
    provider_preference: List[str] | None = None,
) -> Tuple[Catalog, List[Dict[str, Any]]]:
    """Replace entries by key and append new keys. Returns the merged catalog and the change list."""
    incoming = {}
    for model in models:
        incoming[model.key] = model
    merged: List[ModelConfig] = []
    changes: List[Dict[str, Any]] = []

    for existing in current.models:
        replacement = incoming.get(existing.key, existing)
        merged.append(replacement)
        if replacement != existing:
            changes.append({
                "modelKey": existing.key,
                "provider": replacement.provider,
                "before": existing.to_dict(),
                "after": replacement.to_dict(),
            })

    existing_keys = set(current.keys())
    for key, model in incoming.items():
        if key in existing_keys:
            continue
        merged.append(model)
        changes.append({
            "modelKey": key,
            "provider": model.provider,
            "before": model.to_dict(),
            "after": model.to_dict(),
            "reason": "new model key from oracle refresh",
        })

    preference = provider_preference or list(current.provider_preference)
    return Catalog(preference, merged), changes


def build_oracle_prompt(critical_keys: List[str]) -> str:
    return "\n".join([
        "You are updating the Janus model catalog.",
        "Return JSON only. Do not include markdown or commentary.",
        "",
        "Task:",
        "- Use the attached models.json as the base.",
        "- Update ONLY the model ids and pricing so that the critical keys map to current frontier models.",
        "- Keep existing keys unless a key must be added to represent a frontier replacement.",
        "- Use OpenRouter pricing if known; otherwise keep the current pricing.",
        "",
        f"Critical keys: {', '.join(critical_keys)}",
        "",
        "Required JSON schema:",
        "{",
        '  "providerPreference": ["anthropic","openai","gemini","openrouter"],',
        '  "models": [',
        '    {"key": "...", "provider": "anthropic|openai|gemini|openrouter", "model": "...",',
        '     "quality": "fast|balanced|quality", "costPerMTokIn": 0.0, "costPerMTokOut": 0.0}',
        "  ],",
        '  "notes": "<short rationale>"',
        "}",
    ])


def ensure_catalog_freshness(
    store: Any,
    runner: Any,
    critical_keys: List[str],
    ttl_hours: float = DEFAULT_TTL_HOURS,
    session_id: str | None = None,
    force: bool = False,
    now: datetime | None = None,
) -> Tuple[CatalogStatus, bool]:
    """Return ``(status, updated)``, refreshing the stored catalog via the oracle when stale.

    A stored status within TTL with all critical keys present is returned as is
    unless ``force`` is set. ``runner`` is an :class:`~janus.models.oracle.OracleRunner`.
    """
    now = now or datetime.now(timezone.utc)
    now_iso = now.isoformat()

    current_status = CatalogStatus.from_dict(store.read_catalog_status())
    if not force and current_status and current_status.critical_ok and current_status.within_ttl(now):
        return current_status, False

    raw_catalog = store.read_catalog()
    if not raw_catalog:
        status = CatalogStatus(
            ttl_hours=ttl_hours,
            status="unknown",
            critical_keys=list(critical_keys),
            critical_ok=False,
            notes="models.json missing",
        )
        store.write_catalog_status(status.to_dict())
        return status, False

    current = Catalog.from_dict(raw_catalog)
    audit_base = {
        "id": str(uuid.uuid4()),
        "timestamp": now_iso,
        "sessionId": session_id,
        "source": "oracle",
        "ttlHours": ttl_hours,
        "criticalKeys": list(critical_keys),
    }

    result = runner.run(build_oracle_prompt(critical_keys), store.root / "state" / "models.json")
    proposal = parse_oracle_response(result.text) if result.ok else None
    if proposal is None:
        error = result.error if not result.ok else "oracle returned no usable catalog"
        if result.stderr:
            error = f"{error}: {result.stderr[:500]}"
        logger.warning("Catalog refresh failed: %s", error)
        status = CatalogStatus(
            ttl_hours=ttl_hours,
            status="stale",
            critical_keys=list(critical_keys),
            critical_ok=False,
            last_verified_at=current_status.last_verified_at if current_status else None,
            notes=error,
        )
        store.write_catalog_status(status.to_dict())
        store.append_catalog_audit({**audit_base, "status": "failed", "changes": [], "error": error})
        return status, False

    merged, changes = merge_catalog(current, proposal["models"], proposal["providerPreference"])
    ok = critical_keys_ok(merged, critical_keys)
    status = CatalogStatus(
        ttl_hours=ttl_hours,
        status="fresh" if ok else "stale",
        critical_keys=list(critical_keys),
        critical_ok=ok,
        last_verified_at=now_iso,
        notes=proposal["notes"] or None,
    )
    store.write_catalog(merged.to_dict())
    store.write_catalog_status(status.to_dict())
    store.append_catalog_audit({
        **audit_base,
        "status": "updated" if changes else "skipped",
        "changes": changes,
        "notes": proposal["notes"],
    })
    logger.info("Catalog refresh %s: %d change(s)", status.status, len(changes))
    return status, bool(changes)
