"""Process supervision for task scripts.

The scheduler never spawns processes itself; it talks to a ProcessSupervisor.
The supervisor owns timeout enforcement and is the only component able to
terminate a running script.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import shutil
import sys
import uuid
from collections.abc import Awaitable
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from taskwarden.process.errors import ProcessExecutionError, ProcessTimeoutError

logger = logging.getLogger(__name__)

# Interpreter per script suffix; anything else is executed directly
INTERPRETERS: dict[str, list[str]] = {
    ".py": [sys.executable],
    ".sh": ["bash"],
    ".js": ["node"],
    ".mjs": ["node"],
    ".cjs": ["node"],
}

# Grace period between SIGTERM and SIGKILL on terminate
TERMINATE_GRACE_SECONDS = 5.0


@dataclass
class ProcessResult:
    exit_code: int
    stdout: str
    stderr: str


@dataclass
class ScriptProcess:
    """Handle returned by ProcessSupervisor.start_script()."""

    process_id: str
    # Resolves to ProcessResult; raises ProcessTimeoutError on timeout and
    # ProcessExecutionError on a non-zero exit
    result: Awaitable[ProcessResult]
    pid: int | None = None


class ProcessSupervisor(Protocol):
    """Interface the scheduler uses to run scripts."""

    async def start_script(
        self,
        *,
        script_path: Path,
        args: list[str],
        timeout_ms: int | None,
        task_id: str,
    ) -> ScriptProcess: ...

    def terminate(self, process_id: str) -> bool: ...


def build_command(script_path: Path, args: list[str]) -> list[str]:
    """Command line for a script, choosing an interpreter by suffix."""
    interpreter = INTERPRETERS.get(script_path.suffix.lower())
    if interpreter is None:
        return [str(script_path), *args]
    program = interpreter[0]
    resolved = shutil.which(program) or program
    return [resolved, *interpreter[1:], str(script_path), *args]


class SubprocessSupervisor:
    """ProcessSupervisor backed by asyncio child processes."""

    def __init__(
        self,
        *,
        cwd: Path | None = None,
        environment: dict[str, str] | None = None,
        default_timeout_ms: int | None = None,
    ) -> None:
        self._cwd = cwd
        self._environment = environment or {}
        self._default_timeout_ms = default_timeout_ms
        self._processes: dict[str, asyncio.subprocess.Process] = {}

    @property
    def running(self) -> list[str]:
        return list(self._processes)

    async def start_script(
        self,
        *,
        script_path: Path,
        args: list[str],
        timeout_ms: int | None,
        task_id: str,
    ) -> ScriptProcess:
        command = build_command(script_path, list(args))
        process_id = f"{task_id}-{uuid.uuid4().hex[:8]}"
        env = {**os.environ, **self._environment, "TASKWARDEN_TASK_ID": task_id}
        cwd = self._cwd or Path.cwd()

        try:
            proc = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(cwd),
                env=env,
            )
        except (FileNotFoundError, PermissionError) as e:
            raise ProcessExecutionError(
                f"cannot start {command[0]}: {e}", stderr=str(e)
            ) from e

        self._processes[process_id] = proc
        logger.info(
            "process_started",
            extra={
                "task.id": task_id,
                "process.id": process_id,
                "process.pid": proc.pid,
                "process.command": " ".join(command),
            },
        )
        timeout = timeout_ms or self._default_timeout_ms
        result = asyncio.ensure_future(self._wait(process_id, proc, timeout))
        return ScriptProcess(process_id=process_id, result=result, pid=proc.pid)

    def terminate(self, process_id: str) -> bool:
        proc = self._processes.get(process_id)
        if proc is None or proc.returncode is not None:
            return False
        with contextlib.suppress(ProcessLookupError):
            proc.terminate()
        asyncio.get_running_loop().call_later(
            TERMINATE_GRACE_SECONDS, self._kill_if_alive, proc
        )
        logger.info("process_terminated", extra={"process.id": process_id})
        return True

    async def _wait(
        self,
        process_id: str,
        proc: asyncio.subprocess.Process,
        timeout_ms: int | None,
    ) -> ProcessResult:
        timeout = timeout_ms / 1000 if timeout_ms else None
        try:
            try:
                stdout_b, stderr_b = await asyncio.wait_for(
                    proc.communicate(), timeout=timeout
                )
            except TimeoutError:
                self._kill_if_alive(proc)
                await proc.wait()
                raise ProcessTimeoutError(
                    f"script timed out after {timeout_ms}ms",
                    exit_code=-1,
                    stderr="timeout",
                ) from None
        finally:
            self._processes.pop(process_id, None)

        stdout, stderr = _decode(stdout_b), _decode(stderr_b)
        exit_code = proc.returncode if proc.returncode is not None else -1
        if exit_code != 0:
            raise ProcessExecutionError(
                f"script exited with code {exit_code}",
                exit_code=exit_code,
                stdout=stdout,
                stderr=stderr,
            )
        return ProcessResult(exit_code=exit_code, stdout=stdout, stderr=stderr)

    @staticmethod
    def _kill_if_alive(proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                proc.kill()


def _decode(data: bytes | None) -> str:
    return (data or b"").decode("utf-8", errors="replace")
