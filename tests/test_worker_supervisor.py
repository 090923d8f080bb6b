from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from cadre_mcp.roles import WorkerRole
from cadre_mcp.workers import (
    FakeWorkerSupervisor,
    TmuxNotFoundError,
    TmuxWorkerSupervisor,
    WorkerConfig,
    WorkerSupervisorError,
)
from cadre_mcp.workers.utils import sanitize_environment


def _fake_tmux(tmp_path: Path, *, sessions: str = "", fail_send: bool = False) -> tuple[Path, Path]:
    """Write a shell script that logs its arguments and mimics a few tmux subcommands."""

    log = tmp_path / "tmux.log"
    script = tmp_path / "tmux"
    send_exit = "exit 1" if fail_send else "exit 0"
    script.write_text(
        "#!/bin/sh\n"
        f'echo "$@" >> "{log}"\n'
        'case "$1" in\n'
        f'  has-session) for name in {sessions}; do [ "$3" = "$name" ] && exit 0; done; exit 1 ;;\n'
        f'  list-sessions) for name in {sessions}; do echo "$name"; done; exit 0 ;;\n'
        f"  send-keys) echo 'no session' >&2; {send_exit} ;;\n"
        "  *) exit 0 ;;\n"
        "esac\n",
        encoding="utf-8",
    )
    script.chmod(0o755)
    return script, log


def test_spawn_creates_session_and_types_command(tmp_path: Path) -> None:
    script, log = _fake_tmux(tmp_path)
    supervisor = TmuxWorkerSupervisor(script, startup_delay_seconds=0)

    result = asyncio.run(
        supervisor.spawn(WorkerRole.BACKEND, WorkerConfig(command="worker-cli", skills=["plan-execute"]))
    )

    assert result.status == "running"
    assert result.session_name == "cadre-backend"
    lines = log.read_text(encoding="utf-8").splitlines()
    assert lines[0] == "has-session -t cadre-backend"
    assert lines[1] == "new-session -d -s cadre-backend -x 200 -y 50"
    assert lines[2] == "send-keys -t cadre-backend worker-cli Enter"
    assert lines[3] == "send-keys -t cadre-backend /skill plan-execute Enter"


def test_spawn_reports_existing_session(tmp_path: Path) -> None:
    script, log = _fake_tmux(tmp_path, sessions="cadre-qa")
    supervisor = TmuxWorkerSupervisor(script, startup_delay_seconds=0)

    result = asyncio.run(supervisor.spawn(WorkerRole.QA))

    assert result.status == "exists"
    assert "new-session" not in log.read_text(encoding="utf-8")


def test_list_running_maps_sessions_to_roles(tmp_path: Path) -> None:
    script, _ = _fake_tmux(tmp_path, sessions="cadre-review other cadre-qa")
    supervisor = TmuxWorkerSupervisor(script)

    running = asyncio.run(supervisor.list_running())

    assert running == [WorkerRole.REVIEW, WorkerRole.QA]


def test_dispatch_failure_raises(tmp_path: Path) -> None:
    script, _ = _fake_tmux(tmp_path, fail_send=True)
    supervisor = TmuxWorkerSupervisor(script)

    with pytest.raises(WorkerSupervisorError):
        asyncio.run(supervisor.dispatch(WorkerRole.FRONTEND, "/skill plan-execute --task T-1"))


def test_tmux_not_found(tmp_path: Path) -> None:
    with pytest.raises(TmuxNotFoundError):
        TmuxWorkerSupervisor(tmp_path / "missing")


def test_fake_supervisor_records_activity() -> None:
    fake = FakeWorkerSupervisor(fail_dispatch=[WorkerRole.QA])

    async def scenario() -> None:
        assert (await fake.spawn(WorkerRole.BACKEND)).status == "running"
        assert (await fake.spawn(WorkerRole.BACKEND)).status == "exists"
        await fake.dispatch(WorkerRole.BACKEND, "go")
        with pytest.raises(WorkerSupervisorError):
            await fake.dispatch(WorkerRole.QA, "go")
        assert await fake.kill(WorkerRole.BACKEND)
        assert not await fake.is_running(WorkerRole.BACKEND)

    asyncio.run(scenario())

    assert fake.spawned == [WorkerRole.BACKEND]
    assert fake.dispatched == [(WorkerRole.BACKEND, "go")]


def test_sanitize_environment_strips_virtualenv(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PYTHONPATH", "value")
    monkeypatch.setenv("VIRTUAL_ENV", "/venv")
    env = sanitize_environment({"EXTRA": "1"})
    assert "PYTHONPATH" not in env
    assert "VIRTUAL_ENV" not in env
    assert env["EXTRA"] == "1"


def test_sanitize_environment_disables_git_prompts(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("GIT_TERMINAL_PROMPT", raising=False)
    assert sanitize_environment(non_interactive=True)["GIT_TERMINAL_PROMPT"] == "0"
    assert "GIT_TERMINAL_PROMPT" not in sanitize_environment()
