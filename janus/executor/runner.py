"""Child-process runner with output capture and a hard timeout."""
from __future__ import annotations

import asyncio
import logging
import os
import signal
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

MAX_OUTPUT_CHARS = 200_000


@dataclass
class CommandResult:
    command: List[str]
    exit_code: Optional[int]
    signal: Optional[str]
    stdout: str
    stderr: str
    latency_ms: int
    timed_out: bool

    @property
    def ok(self) -> bool:
        return not self.timed_out and self.exit_code == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "command": list(self.command),
            "exitCode": self.exit_code,
            "signal": self.signal,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "latencyMs": self.latency_ms,
            "timedOut": self.timed_out,
        }


def truncate(text: str, limit: int = MAX_OUTPUT_CHARS) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + f"\n... (truncated to {limit} chars)"


def _kill_group(proc: asyncio.subprocess.Process) -> None:
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass
    except OSError:
        proc.kill()


def _signal_name(returncode: Optional[int]) -> Optional[str]:
    if returncode is None or returncode >= 0:
        return None
    try:
        return signal.Signals(-returncode).name
    except ValueError:
        return str(-returncode)


async def run_command(
    command: List[str],
    cwd: Path,
    timeout_ms: int,
    env: Optional[Dict[str, str]] = None,
) -> CommandResult:
    """Run ``command`` without a shell. On timeout the whole process group is SIGKILLed."""
    start = time.perf_counter()
    try:
        proc = await asyncio.create_subprocess_exec(
            *command,
            cwd=str(cwd),
            env=env,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=True,
        )
    except OSError as exc:
        return CommandResult(
            command=list(command),
            exit_code=None,
            signal=None,
            stdout="",
            stderr=str(exc),
            latency_ms=int((time.perf_counter() - start) * 1000),
            timed_out=False,
        )

    stdout_task = asyncio.ensure_future(proc.stdout.read())
    stderr_task = asyncio.ensure_future(proc.stderr.read())
    timed_out = False
    try:
        await asyncio.wait_for(proc.wait(), timeout_ms / 1000)
    except asyncio.TimeoutError:
        timed_out = True
        logger.warning("Command timed out after %dms: %s", timeout_ms, " ".join(command))
        _kill_group(proc)
        await proc.wait()

    stdout = (await stdout_task).decode("utf-8", errors="replace")
    stderr = (await stderr_task).decode("utf-8", errors="replace")
    return CommandResult(
        command=list(command),
        exit_code=proc.returncode,
        signal=_signal_name(proc.returncode),
        stdout=truncate(stdout),
        stderr=truncate(stderr),
        latency_ms=int((time.perf_counter() - start) * 1000),
        timed_out=timed_out,
    )
