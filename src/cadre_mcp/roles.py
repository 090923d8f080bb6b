"""Closed set of worker roles and the registry that resolves them."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class WorkerRole(str, Enum):
    """Roles a pipeline stage can be assigned to."""

    BACKEND = "backend"
    REVIEW = "review"
    FRONTEND = "frontend"
    QA = "qa"


REVIEW_STAGE = WorkerRole.REVIEW


class UnknownRoleError(ValueError):
    """Raised when a role name does not resolve to a registered worker role."""


@dataclass(frozen=True, slots=True)
class RoleSpec:
    role: WorkerRole
    session_name: str
    description: str


ROLE_REGISTRY: dict[WorkerRole, RoleSpec] = {
    WorkerRole.BACKEND: RoleSpec(
        WorkerRole.BACKEND, "cadre-backend", "Implements server-side changes."
    ),
    WorkerRole.REVIEW: RoleSpec(
        WorkerRole.REVIEW, "cadre-review", "Reviews changes and scores confidence."
    ),
    WorkerRole.FRONTEND: RoleSpec(
        WorkerRole.FRONTEND, "cadre-frontend", "Integrates client-side changes."
    ),
    WorkerRole.QA: RoleSpec(WorkerRole.QA, "cadre-qa", "Verifies the integrated result."),
}

CORE_ROLES: tuple[WorkerRole, ...] = tuple(ROLE_REGISTRY)


def resolve_role(value: str | WorkerRole) -> WorkerRole:
    """Return the registered role for ``value`` or raise :class:`UnknownRoleError`."""

    if isinstance(value, WorkerRole):
        return value
    normalized = str(value).strip().lower()
    try:
        return WorkerRole(normalized)
    except ValueError as exc:
        known = ", ".join(role.value for role in CORE_ROLES)
        raise UnknownRoleError(f"Unknown worker role '{value}' (known: {known})") from exc


def role_spec(value: str | WorkerRole) -> RoleSpec:
    return ROLE_REGISTRY[resolve_role(value)]


__all__ = [
    "CORE_ROLES",
    "REVIEW_STAGE",
    "ROLE_REGISTRY",
    "RoleSpec",
    "UnknownRoleError",
    "WorkerRole",
    "resolve_role",
    "role_spec",
]
