"""Worker lifecycle supervision."""

from .supervisor import (
    FakeWorkerSupervisor,
    SpawnResult,
    TmuxNotFoundError,
    TmuxResult,
    TmuxWorkerSupervisor,
    WorkerConfig,
    WorkerSupervisor,
    WorkerSupervisorError,
)

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
