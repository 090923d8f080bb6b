"""Workflow models describing fixed, linear stage pipelines."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..roles import UnknownRoleError, WorkerRole, resolve_role


class Workflow(BaseModel):
    """A named, ordered list of stages plus review gating and a retry ceiling."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Unique workflow name.")
    pipeline: tuple[WorkerRole, ...] = Field(
        ...,
        min_length=1,
        description="Ordered stages; each stage is served by one worker role.",
    )
    review_threshold: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Minimum confidence required to leave the review stage.",
    )
    max_retries: int = Field(
        default=3,
        ge=0,
        description="Retry ceiling consumed by whichever collaborator retries failed stages.",
    )
    description: str = Field(default="", description="Human-friendly summary.")

    @field_validator("name")
    @classmethod
    def _normalize_name(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Workflow name must not be empty")
        return normalized

    @field_validator("pipeline", mode="before")
    @classmethod
    def _resolve_stages(cls, value: Any):
        if value is None:
            return ()
        if not isinstance(value, (list, tuple)):
            raise TypeError("Workflow pipeline must be a sequence of role names")
        try:
            stages = tuple(resolve_role(item) for item in value)
        except UnknownRoleError as exc:
            raise ValueError(str(exc)) from exc
        if len(set(stages)) != len(stages):
            raise ValueError("Workflow pipeline must not repeat a stage")
        return stages

    def index_of(self, stage: str | WorkerRole) -> int:
        """Return the stage index, or -1 when the stage is not part of this pipeline."""

        try:
            role = resolve_role(stage)
        except UnknownRoleError:
            return -1
        try:
            return self.pipeline.index(role)
        except ValueError:
            return -1

    @property
    def entry_stage(self) -> WorkerRole:
        return self.pipeline[0]


DEFAULT_WORKFLOW = Workflow(
    name="default",
    pipeline=(WorkerRole.BACKEND, WorkerRole.REVIEW, WorkerRole.FRONTEND, WorkerRole.QA),
    review_threshold=0.7,
    max_retries=3,
    description="Implement, review, integrate, verify.",
)


__all__ = ["DEFAULT_WORKFLOW", "Workflow"]
