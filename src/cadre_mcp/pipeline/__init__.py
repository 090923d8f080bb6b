"""Pipeline routing and handoffs."""

from .handoff import HANDOFF_DIR, HandoffStore, handoff_stem, render_markdown
from .router import PipelineRouter, StageInfo, StageResult

__all__ = [
    "HANDOFF_DIR",
    "HandoffStore",
    "PipelineRouter",
    "StageInfo",
    "StageResult",
    "handoff_stem",
    "render_markdown",
]
