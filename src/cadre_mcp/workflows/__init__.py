"""Workflow models and loader exports."""

from .loader import Workflow, WorkflowLoadError, WorkflowLoader, load_workflows
from .models import DEFAULT_WORKFLOW

__all__ = [
    "DEFAULT_WORKFLOW",
    "Workflow",
    "WorkflowLoadError",
    "WorkflowLoader",
    "load_workflows",
]
