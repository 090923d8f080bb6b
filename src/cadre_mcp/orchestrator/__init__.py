"""Orchestrator loop and the stores it drives."""

from .assignments import ASSIGNMENTS_DOCUMENT, AssignmentStore
from .entry_points import EntryPoint, InboxEntryPoint, PolledSubmission, TaskSubmission
from .loop import Orchestrator, build_instruction
from .notifier import LoggingNotifier, Notifier
from .progress import ProgressStore, progress_document

__all__ = [
    "ASSIGNMENTS_DOCUMENT",
    "AssignmentStore",
    "EntryPoint",
    "InboxEntryPoint",
    "LoggingNotifier",
    "Notifier",
    "Orchestrator",
    "PolledSubmission",
    "ProgressStore",
    "TaskSubmission",
    "build_instruction",
    "progress_document",
]
