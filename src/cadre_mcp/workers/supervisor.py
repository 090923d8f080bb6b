"""Async tmux-backed supervisor for long-running worker processes."""

from __future__ import annotations

import asyncio
import shlex
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Literal, Protocol

from ..roles import WorkerRole, resolve_role, role_spec
from .utils import sanitize_environment


class WorkerSupervisorError(RuntimeError):
    """Base class for worker supervisor errors."""


class TmuxNotFoundError(WorkerSupervisorError):
    """Raised when the tmux executable cannot be located."""


@dataclass(slots=True)
class TmuxResult:
    """Holds the outcome of a tmux invocation."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


@dataclass(slots=True)
class WorkerConfig:
    command: str = "claude --model sonnet"
    skills: list[str] = field(default_factory=list)
    memory_file: str | None = None


@dataclass(slots=True)
class SpawnResult:
    role: WorkerRole
    session_name: str
    status: Literal["running", "exists", "error"]
    error: str | None = None


class WorkerSupervisor(Protocol):
    """Worker lifecycle capability consumed by the orchestrator."""

    async def spawn(self, role: WorkerRole, config: WorkerConfig | None = None) -> SpawnResult:
        ...

    async def kill(self, role: WorkerRole) -> bool:
        ...

    async def is_running(self, role: WorkerRole) -> bool:
        ...

    async def dispatch(self, role: WorkerRole, instruction: str) -> None:
        ...

    async def list_running(self) -> list[WorkerRole]:
        ...


class TmuxWorkerSupervisor:
    """Run each worker role inside its own detached tmux session."""

    def __init__(
        self,
        executable: Path | None = None,
        *,
        worker_command: str = "claude --model sonnet",
        startup_delay_seconds: float = 5.0,
    ) -> None:
        self._executable_path = self._resolve_executable(executable)
        self._worker_command = worker_command
        self._startup_delay_seconds = startup_delay_seconds

    @staticmethod
    def _resolve_executable(explicit: Path | None) -> Path:
        if explicit is not None:
            candidate = Path(explicit)
            if candidate.exists() and candidate.is_file():
                return candidate
            raise TmuxNotFoundError(f"tmux executable not found at {candidate}")

        binary = shutil.which("tmux")
        if binary is None:
            raise TmuxNotFoundError("tmux executable not found on PATH")
        return Path(binary)

    @property
    def executable(self) -> Path:
        return self._executable_path

    async def spawn(self, role: WorkerRole, config: WorkerConfig | None = None) -> SpawnResult:
        role = resolve_role(role)
        session = role_spec(role).session_name
        config = config or WorkerConfig(command=self._worker_command)

        if await self.is_running(role):
            return SpawnResult(role=role, session_name=session, status="exists")

        created = await self._invoke("new-session", "-d", "-s", session, "-x", "200", "-y", "50")
        if not created.ok:
            return SpawnResult(
                role=role,
                session_name=session,
                status="error",
                error=created.stderr.strip() or f"tmux exited with {created.returncode}",
            )

        command = config.command
        if config.memory_file:
            command = f"{command} --append-system-prompt {shlex.quote(config.memory_file)}"
        await self._send_keys(session, command)
        if self._startup_delay_seconds:
            await asyncio.sleep(self._startup_delay_seconds)
        for skill in config.skills:
            await self._send_keys(session, f"/skill {skill}")

        return SpawnResult(role=role, session_name=session, status="running")

    async def kill(self, role: WorkerRole) -> bool:
        result = await self._invoke("kill-session", "-t", role_spec(role).session_name)
        return result.ok

    async def is_running(self, role: WorkerRole) -> bool:
        result = await self._invoke("has-session", "-t", role_spec(role).session_name)
        return result.ok

    async def dispatch(self, role: WorkerRole, instruction: str) -> None:
        session = role_spec(role).session_name
        result = await self._send_keys(session, instruction)
        if not result.ok:
            raise WorkerSupervisorError(
                f"Failed to dispatch to {session}: {result.stderr.strip() or result.returncode}"
            )

    async def list_running(self) -> list[WorkerRole]:
        result = await self._invoke("list-sessions", "-F", "#{session_name}")
        if not result.ok:
            return []
        names = {line.strip() for line in result.stdout.splitlines() if line.strip()}
        return [role for role in WorkerRole if role_spec(role).session_name in names]

    async def _send_keys(self, session: str, text: str) -> TmuxResult:
        return await self._invoke("send-keys", "-t", session, text, "Enter")

    async def _invoke(self, *args: str) -> TmuxResult:
        cmd = [str(self._executable_path), *args]
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=sanitize_environment(),
        )
        stdout_bytes, stderr_bytes = await process.communicate()
        stdout = stdout_bytes.decode("utf-8", errors="replace")
        stderr = stderr_bytes.decode("utf-8", errors="replace")
        return TmuxResult(args=tuple(cmd), returncode=process.returncode, stdout=stdout, stderr=stderr)


class FakeWorkerSupervisor:
    """Test double that keeps worker state in memory."""

    def __init__(
        self,
        running: Iterable[WorkerRole] | None = None,
        *,
        fail_dispatch: Iterable[WorkerRole] | None = None,
    ) -> None:
        self._running: set[WorkerRole] = set(running or [])
        self._fail_dispatch: set[WorkerRole] = set(fail_dispatch or [])
        self.spawned: list[WorkerRole] = []
        self.dispatched: list[tuple[WorkerRole, str]] = []

    async def spawn(self, role: WorkerRole, config: WorkerConfig | None = None) -> SpawnResult:
        role = resolve_role(role)
        session = role_spec(role).session_name
        if role in self._running:
            return SpawnResult(role=role, session_name=session, status="exists")
        self._running.add(role)
        self.spawned.append(role)
        return SpawnResult(role=role, session_name=session, status="running")

    async def kill(self, role: WorkerRole) -> bool:
        role = resolve_role(role)
        if role not in self._running:
            return False
        self._running.discard(role)
        return True

    async def is_running(self, role: WorkerRole) -> bool:
        return resolve_role(role) in self._running

    async def dispatch(self, role: WorkerRole, instruction: str) -> None:
        role = resolve_role(role)
        if role in self._fail_dispatch:
            raise WorkerSupervisorError(f"Failed to dispatch to {role_spec(role).session_name}")
        self.dispatched.append((role, instruction))

    async def list_running(self) -> list[WorkerRole]:
        return [role for role in WorkerRole if role in self._running]


__all__ = [
    "FakeWorkerSupervisor",
    "SpawnResult",
    "TmuxNotFoundError",
    "TmuxResult",
    "TmuxWorkerSupervisor",
    "WorkerConfig",
    "WorkerSupervisor",
    "WorkerSupervisorError",
]
