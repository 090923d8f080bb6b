"""Registry of known projects."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from ..results import CoordinatorResult, ErrorCode, coordinator_operation
from ..storage import ChromaStore, Project, ProjectsDocument, RecordStore, generate_id, record_audit

logger = logging.getLogger(__name__)

PROJECTS_DOCUMENT = "registry/projects.json"


class ProjectRegistry:
    """Persist projects in ``registry/projects.json`` and resolve them by id or name."""

    def __init__(
        self,
        store: RecordStore,
        *,
        audit: ChromaStore | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._audit = audit
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _load(self) -> ProjectsDocument:
        return self._store.read(PROJECTS_DOCUMENT, ProjectsDocument, ProjectsDocument)

    def _save(self, document: ProjectsDocument) -> None:
        document.last_updated = self._clock()
        self._store.write(PROJECTS_DOCUMENT, document)

    def list_projects(self) -> list[Project]:
        return list(self._load().projects)

    def find(self, key: str | None) -> Project | None:
        """Return the project whose id or name equals ``key``."""

        if not key:
            return None
        for project in self._load().projects:
            if project.id == key or project.name == key:
                return project
        return None

    @coordinator_operation
    def add_project(
        self,
        name: str | None,
        path: str | Path | None,
        remote: str | None = None,
    ) -> CoordinatorResult:
        if not path:
            return CoordinatorResult.fail(ErrorCode.MISSING_ARGS, "Project path is required")

        resolved = Path(path).expanduser().resolve()
        name = (name or resolved.name).strip()
        if not name:
            return CoordinatorResult.fail(ErrorCode.MISSING_ARGS, "Project name is required")

        document = self._load()
        for existing in document.projects:
            if existing.name == name or Path(existing.path) == resolved:
                return CoordinatorResult.fail(
                    ErrorCode.DUPLICATE_PROJECT,
                    f"Project already registered: {existing.name}",
                    project=existing,
                )

        project = Project(
            id=generate_id("proj", clock=self._clock),
            name=name,
            path=str(resolved),
            remote=remote,
            added_at=self._clock(),
        )
        document.projects.append(project)
        self._save(document)

        logger.info("Project added", extra={"project_id": project.id, "project_name": name})
        record_audit(
            self._audit,
            "project_added",
            actor="SYSTEM",
            data={"project_id": project.id, "name": name, "path": project.path},
        )
        return CoordinatorResult.ok(f"Project added: {name}", project=project)

    def touch(self, project_id: str) -> None:
        document = self._load()
        for project in document.projects:
            if project.id == project_id:
                project.last_accessed = self._clock()
                self._save(document)
                return


__all__ = ["PROJECTS_DOCUMENT", "ProjectRegistry"]
