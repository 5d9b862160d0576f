"""File-backed context store for catalog, ratings, tier snapshots and artifacts."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List
from datetime import datetime, timezone
import json
import logging
import re
try:
    import fcntl  # type: ignore
except Exception:  # pragma: no cover - non-POSIX environments
    fcntl = None

logger = logging.getLogger(__name__)

_UNSAFE_SEGMENT = re.compile(r"[^a-zA-Z0-9._-]+")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class ContextStore:
    root: Path

    def _state_dir(self) -> Path:
        return self.root / "state"

    def _catalog_path(self) -> Path:
        return self._state_dir() / "models.json"

    def _snapshot_path(self) -> Path:
        return self._state_dir() / "model-tiers.json"

    def _status_path(self) -> Path:
        return self._state_dir() / "model-catalog-status.json"

    def _catalog_audit_path(self) -> Path:
        return self._state_dir() / "model-catalog-audit.jsonl"

    def _ratings_path(self) -> Path:
        return self._state_dir() / "model-ratings.jsonl"

    def _last_run_path(self) -> Path:
        return self._state_dir() / "last-model-run.json"

    def _budget_path(self) -> Path:
        return self._state_dir() / "budget.json"

    def _costs_dir(self) -> Path:
        return self.root / "costs"

    def artifacts_dir(self, session_id: str, task_id: str) -> Path:
        return self.root / "artifacts" / _safe_segment(session_id) / _safe_segment(task_id)

    def audit_path(self, session_id: str, task_id: str) -> Path:
        return self.root / "audit" / _safe_segment(session_id) / f"{_safe_segment(task_id)}.jsonl"

    # --- catalog ---

    def read_catalog(self) -> Dict[str, Any] | None:
        return self._read_json(self._catalog_path())

    def write_catalog(self, catalog: Dict[str, Any]) -> None:
        self._write_json(self._catalog_path(), catalog)

    def read_catalog_status(self) -> Dict[str, Any] | None:
        return self._read_json(self._status_path())

    def write_catalog_status(self, status: Dict[str, Any]) -> None:
        self._write_json(self._status_path(), status)

    def append_catalog_audit(self, event: Dict[str, Any]) -> None:
        self._append_jsonl(self._catalog_audit_path(), event)

    # --- ratings and tiers ---

    def append_rating(self, event: Dict[str, Any]) -> None:
        self._append_jsonl(self._ratings_path(), event)

    def list_ratings(self, limit: int | None = None) -> List[Dict[str, Any]]:
        path = self._ratings_path()
        if not path.exists():
            return []
        events: List[Dict[str, Any]] = []
        for line in path.read_text(encoding="utf-8").splitlines():
            line = line.strip()
            if not line:
                continue
            try:
                payload = json.loads(line)
            except json.JSONDecodeError:
                logger.warning("Skipping malformed rating line in %s", path)
                continue
            if isinstance(payload, dict):
                events.append(payload)
        if limit is not None and limit > 0:
            return events[-limit:]
        return events

    def read_tier_snapshot(self) -> Dict[str, Any] | None:
        return self._read_json(self._snapshot_path())

    def write_tier_snapshot(self, snapshot: Dict[str, Any]) -> None:
        self._write_json(self._snapshot_path(), snapshot)

    def clear_tier_snapshot(self) -> None:
        path = self._snapshot_path()
        if path.exists():
            path.unlink()

    # --- runs, budget, costs ---

    def read_last_model_run(self) -> Dict[str, Any] | None:
        return self._read_json(self._last_run_path())

    def write_last_model_run(self, run: Dict[str, Any]) -> None:
        self._write_json(self._last_run_path(), {"timestamp": _now_iso(), **run})

    def read_budget_override(self) -> Dict[str, Any] | None:
        data = self._read_json(self._budget_path())
        if not data:
            return None
        monthly = data.get("monthlyBudget")
        if isinstance(monthly, bool) or not isinstance(monthly, (int, float)):
            return None
        return data

    def write_budget_override(self, monthly_budget: float) -> Dict[str, Any]:
        payload = {"monthlyBudget": float(monthly_budget), "updatedAt": _now_iso()}
        self._write_json(self._budget_path(), payload)
        return payload

    def clear_budget_override(self) -> None:
        path = self._budget_path()
        if path.exists():
            path.unlink()

    def _session_costs_path(self, session_id: str) -> Path:
        return self._costs_dir() / f"{_safe_segment(session_id)}.json"

    def read_session_costs(self, session_id: str) -> Dict[str, Any] | None:
        return self._read_json(self._session_costs_path(session_id))

    def write_session_costs(self, session_id: str, payload: Dict[str, Any]) -> Path:
        path = self._session_costs_path(session_id)
        self._write_json(path, payload)
        return path

    def list_session_costs(self) -> List[Dict[str, Any]]:
        costs_dir = self._costs_dir()
        if not costs_dir.exists():
            return []
        sessions = []
        for path in sorted(costs_dir.glob("*.json")):
            data = self._read_json(path)
            if data:
                sessions.append(data)
        return sessions

    # --- artifacts ---

    def write_artifact(self, session_id: str, task_id: str, name: str, data: bytes) -> str:
        """Write one artifact file and return its reference relative to the context root."""
        rel = _safe_relative(name)
        base = self.artifacts_dir(session_id, task_id)
        path = base.joinpath(*rel.parts)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return path.relative_to(self.root).as_posix()

    def write_artifact_text(self, session_id: str, task_id: str, name: str, text: str) -> str:
        return self.write_artifact(session_id, task_id, name, text.encode("utf-8"))

    def write_artifact_json(self, session_id: str, task_id: str, name: str, data: Any) -> str:
        return self.write_artifact_text(session_id, task_id, name, json.dumps(data, indent=2, default=str))

    # --- helpers ---

    def _read_json(self, path: Path) -> Dict[str, Any] | None:
        if not path.exists():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except Exception:
            logger.warning("Failed to read %s", path, exc_info=True)
            return None
        return data if isinstance(data, dict) else None

    def _write_json(self, path: Path, payload: Dict[str, Any]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        tmp.replace(path)

    def _append_jsonl(self, path: Path, payload: Dict[str, Any]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        line = json.dumps(payload) + "\n"
        with path.open("a", encoding="utf-8") as handle:
            if fcntl is not None:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
            try:
                handle.write(line)
                handle.flush()
            finally:
                if fcntl is not None:
                    fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


def _safe_segment(value: str) -> str:
    cleaned = _UNSAFE_SEGMENT.sub("_", str(value)).strip("._")
    return cleaned or "unknown"


def _safe_relative(name: str) -> PurePosixPath:
    normalized = str(name).replace("\\", "/")
    rel = PurePosixPath(normalized)
    if rel.is_absolute():
        raise ValueError(f"Artifact path must be relative: {name}")
    if ".." in rel.parts:
        raise ValueError(f"Artifact path traversal blocked: {name}")
    if not rel.parts:
        raise ValueError("Artifact name is empty")
    return rel
