"""Workflow loading utilities."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable

import yaml
from pydantic import ValidationError

from .models import DEFAULT_WORKFLOW, Workflow


class WorkflowLoadError(RuntimeError):
    """Raised when one or more workflow files cannot be parsed."""


def _documents(document: Any) -> list[dict[str, Any]]:
    # A file holds either one workflow or a ``workflows:`` mapping of name -> config.
    if isinstance(document, dict) and isinstance(document.get("workflows"), dict):
        entries = []
        for name, config in document["workflows"].items():
            entry = dict(config or {})
            entry.setdefault("name", name)
            entries.append(entry)
        return entries
    return [document]


class WorkflowLoader:
    """Loads workflow definitions from YAML files on disk."""

    def __init__(self, search_paths: Iterable[Path] | None = None) -> None:
        paths = [Path(path) for path in (search_paths or [])]
        self._search_paths: list[Path] = [path for path in paths if path.exists()]
        self._cache: dict[str, Workflow] | None = None

    @property
    def search_paths(self) -> list[Path]:
        """Return the normalized search paths."""

        return list(self._search_paths)

    def load_all(self) -> dict[str, Workflow]:
        """Load workflows from all configured search paths.

        Later search paths override earlier ones when workflow names collide.
        The built-in ``default`` workflow is present unless a file redefines it.
        """

        workflows: dict[str, Workflow] = {DEFAULT_WORKFLOW.name: DEFAULT_WORKFLOW}
        errors: list[str] = []

        for base in self._search_paths:
            for path in sorted(base.glob("*.yml")) + sorted(base.glob("*.yaml")):
                try:
                    document = yaml.safe_load(path.read_text(encoding="utf-8"))
                except yaml.YAMLError as exc:  # pragma: no cover - library type
                    errors.append(f"Failed to parse YAML in {path}: {exc}")
                    continue

                if document is None:
                    continue

                for entry in _documents(document):
                    try:
                        workflow = Workflow.model_validate(entry)
                    except ValidationError as exc:
                        errors.append(f"Workflow validation error in {path}: {exc}")
                        continue
                    workflows[workflow.name] = workflow

        if errors:
            raise WorkflowLoadError("; ".join(errors))

        return workflows

    def _loaded(self) -> dict[str, Workflow]:
        if self._cache is None:
            self._cache = self.load_all()
        return self._cache

    def reload(self) -> dict[str, Workflow]:
        self._cache = None
        return self._loaded()

    def get(self, name: str | None = None) -> Workflow:
        """Return the named workflow, falling back to ``default`` for unknown names."""

        workflows = self._loaded()
        return workflows.get(name or "default") or workflows["default"]


def load_workflows(search_paths: Iterable[Path] | None = None) -> dict[str, Workflow]:
    """Convenience wrapper for loading workflows from the provided paths."""

    loader = WorkflowLoader(search_paths)
    return loader.load_all()


__all__ = ["Workflow", "WorkflowLoadError", "WorkflowLoader", "load_workflows"]
