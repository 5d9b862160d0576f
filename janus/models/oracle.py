"""Subprocess runner for the external catalog oracle."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional
import logging
import os
import subprocess
import tempfile
import time
import uuid

logger = logging.getLogger(__name__)


@dataclass
class OracleResult:
    text: str
    duration_ms: float
    ok: bool
    error: Optional[str] = None
    stderr: Optional[str] = None
    retries: int = 0


class OracleRunner:
    """Runs ``<command> --wait --slug ... --prompt ... --file ... --write-output ...``.

    The oracle writes its answer to a temporary output file, which is read back
    and removed. Transient failures are retried with exponential backoff;
    timeouts are not retried.
    """

    def __init__(
        self,
        command: List[str] | None = None,
        model: str | None = None,
        timeout_seconds: int = 120,
        max_retries: int = 1,
        retry_delay: float = 2.0,
        retry_backoff: float = 2.0,
    ):
        self.command = list(command or ["oracle"])
        self.model = model
        self.timeout_seconds = timeout_seconds
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.retry_backoff = retry_backoff

    def run(self, prompt: str, attachment: Path, cwd: Optional[str] = None) -> OracleResult:
        if not self.command:
            return OracleResult(text="", duration_ms=0.0, ok=False, error="missing command")

        max_attempts = self.max_retries + 1
        last_result: Optional[OracleResult] = None
        total_duration = 0.0

        for attempt in range(max_attempts):
            if attempt > 0:
                delay = self.retry_delay * (self.retry_backoff ** (attempt - 1))
                logger.info("Oracle retry %d/%d after %.1fs delay", attempt, max_attempts - 1, delay)
                time.sleep(delay)

            result = self._run_once(prompt, attachment, cwd)
            total_duration += result.duration_ms
            last_result = result

            if result.ok:
                result.retries = attempt
                result.duration_ms = total_duration
                return result

            if result.error == "timeout":
                logger.warning("Oracle timeout after %ss, not retrying", self.timeout_seconds)
                break
            if not self._is_retryable(result):
                logger.warning("Oracle error not retryable: %s", result.error)
                break
            logger.warning("Oracle attempt %d failed: %s", attempt + 1, result.error)

        if last_result:
            last_result.retries = max_attempts - 1
            last_result.duration_ms = total_duration
            return last_result
        return OracleResult(text="", duration_ms=total_duration, ok=False, error="no attempts made")

    def build_args(self, prompt: str, attachment: Path, output_path: Path) -> List[str]:
        slug = f"janus-model-refresh-{uuid.uuid4().hex[:8]}"
        args = list(self.command) + [
            "--wait",
            "--slug", slug,
            "--prompt", prompt,
            "--file", str(attachment),
            "--write-output", str(output_path),
            "--timeout", str(self.timeout_seconds),
        ]
        if self.model:
            args += ["--model", self.model]
        return args

    def _run_once(self, prompt: str, attachment: Path, cwd: Optional[str]) -> OracleResult:
        fd, tmp_name = tempfile.mkstemp(prefix="janus-oracle-models-", suffix=".json")
        os.close(fd)
        output_path = Path(tmp_name)
        cmd = self.build_args(prompt, attachment, output_path)

        start = time.perf_counter()
        try:
            # Grace period on top of the oracle's own --timeout.
            proc = subprocess.run(
                cmd,
                text=True,
                capture_output=True,
                timeout=self.timeout_seconds + 30,
                cwd=cwd,
            )
            duration = (time.perf_counter() - start) * 1000
            if proc.returncode != 0:
                return OracleResult(
                    text="",
                    duration_ms=duration,
                    ok=False,
                    error=f"exit {proc.returncode}",
                    stderr=(proc.stderr or "").strip() or None,
                )
            text = output_path.read_text(encoding="utf-8") if output_path.exists() else ""
            if not text.strip():
                text = (proc.stdout or "").strip()
            return OracleResult(text=text, duration_ms=duration, ok=True)
        except subprocess.TimeoutExpired:
            duration = (time.perf_counter() - start) * 1000
            return OracleResult(text="", duration_ms=duration, ok=False, error="timeout")
        except OSError as exc:
            duration = (time.perf_counter() - start) * 1000
            return OracleResult(text="", duration_ms=duration, ok=False, error=str(exc))
        finally:
            output_path.unlink(missing_ok=True)

    def _is_retryable(self, result: OracleResult) -> bool:
        if result.ok:
            return False
        error = result.error or ""
        stderr = (result.stderr or "").lower()
        if error in ("exit 1", "exit 137", "exit 143"):
            permanent = ("invalid api key", "unauthorized", "forbidden", "not found", "invalid model")
            return not any(marker in stderr for marker in permanent)
        transient = ("connection refused", "connection reset", "temporary failure", "rate limit", "too many requests")
        combined = f"{error} {stderr}".lower()
        return any(marker in combined for marker in transient)
