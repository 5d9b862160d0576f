"""Structured audit logging for council and executor runs."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List
import json
import time


@dataclass
class AuditLog:
    path: Path
    run_id: str | None = None

    @classmethod
    def for_run(cls, store: Any, session_id: str, task_id: str, run_id: str | None = None) -> "AuditLog":
        path = store.audit_path(session_id, task_id)
        return cls(path=path, run_id=run_id)

    def log(self, event: str, data: Dict[str, Any] | None = None) -> None:
        payload = {
            "timestamp": time.strftime("%Y-%m-%dT%H:%M:%S"),
            "event": event,
            "data": data or {},
        }
        if self.run_id:
            payload["runId"] = self.run_id
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(payload, default=str) + "\n")

    def events(self) -> List[Dict[str, Any]]:
        if not self.path.exists():
            return []
        return [json.loads(line) for line in self.path.read_text(encoding="utf-8").splitlines() if line.strip()]
