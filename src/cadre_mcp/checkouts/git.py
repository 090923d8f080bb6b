"""Isolated per-task working copies backed by ``git worktree``."""

from __future__ import annotations

import logging
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from ..storage import is_valid_task_id
from ..workers.utils import sanitize_environment

logger = logging.getLogger(__name__)


class CheckoutError(RuntimeError):
    """Raised when a working copy cannot be created or removed."""


@dataclass(slots=True)
class CheckoutInfo:
    path: Path
    branch: str
    task_id: str = ""
    project_name: str = ""
    exists: bool = True


class CheckoutProvider(Protocol):
    """Working-copy provisioning consumed by the coordinator."""

    def create_checkout(
        self,
        project_path: Path,
        project_name: str,
        task_id: str,
        branch: str | None = None,
    ) -> CheckoutInfo:
        ...

    def remove_checkout(self, project_path: Path, path: Path, force: bool = False) -> str:
        ...

    def has_uncommitted_changes(self, path: Path) -> bool:
        ...

    def list_checkouts(self, project_path: Path) -> list[CheckoutInfo]:
        ...


class GitCheckoutProvider:
    """Create one worktree per task under ``<root>/<project>/<task>``."""

    def __init__(self, root: Path, git_executable: str | None = None) -> None:
        self._root = Path(root)
        self._git = git_executable or shutil.which("git") or "git"

    @property
    def root(self) -> Path:
        return self._root

    def checkout_path(self, project_name: str, task_id: str) -> Path:
        if not is_valid_task_id(task_id):
            raise CheckoutError(f"Invalid task id: {task_id!r}")
        return self._root / project_name / task_id

    def create_checkout(
        self,
        project_path: Path,
        project_name: str,
        task_id: str,
        branch: str | None = None,
    ) -> CheckoutInfo:
        project_path = Path(project_path)
        if not self._is_repository(project_path):
            raise CheckoutError(f"Not a git repository: {project_path}")

        target = self.checkout_path(project_name, task_id)
        branch = branch or f"feature/{task_id}"
        if target.exists():
            return CheckoutInfo(path=target, branch=branch, task_id=task_id, project_name=project_name)

        target.parent.mkdir(parents=True, exist_ok=True)
        if self._branch_exists(project_path, branch):
            args = ["worktree", "add", str(target), branch]
        else:
            args = ["worktree", "add", str(target), "-b", branch]

        result = self._run(args, cwd=project_path)
        if result.returncode != 0:
            raise CheckoutError(f"Failed to create worktree: {result.stderr.strip()}")

        logger.info(
            "Created checkout",
            extra={"project": project_name, "task_id": task_id, "path": str(target)},
        )
        return CheckoutInfo(path=target, branch=branch, task_id=task_id, project_name=project_name)

    def remove_checkout(self, project_path: Path, path: Path, force: bool = False) -> str:
        path = Path(path)
        if not path.exists():
            return "Worktree does not exist"

        args = ["worktree", "remove", str(path)]
        if force:
            args.append("--force")
        result = self._run(args, cwd=Path(project_path))
        if result.returncode != 0:
            if not force:
                return self.remove_checkout(project_path, path, force=True)
            raise CheckoutError(f"Failed to remove worktree: {result.stderr.strip()}")
        return f"Worktree removed: {path}"

    def has_uncommitted_changes(self, path: Path) -> bool:
        try:
            result = self._run(["status", "--porcelain"], cwd=Path(path))
        except CheckoutError:
            return False
        return result.returncode == 0 and bool(result.stdout.strip())

    def list_checkouts(self, project_path: Path) -> list[CheckoutInfo]:
        project_path = Path(project_path)
        if not self._is_repository(project_path):
            return []
        result = self._run(["worktree", "list", "--porcelain"], cwd=project_path)
        if result.returncode != 0:
            return []
        return self._parse_porcelain(result.stdout)

    def _parse_porcelain(self, output: str) -> list[CheckoutInfo]:
        checkouts: list[CheckoutInfo] = []
        current_path: str | None = None
        current_branch = ""
        # Porcelain blocks are separated by blank lines; make sure the last one is flushed.
        for line in [*output.splitlines(), ""]:
            if line.startswith("worktree "):
                current_path = line[len("worktree "):]
            elif line.startswith("branch "):
                current_branch = line[len("branch "):].removeprefix("refs/heads/")
            elif not line and current_path:
                path = Path(current_path)
                if self._is_managed(path):
                    checkouts.append(
                        CheckoutInfo(
                            path=path,
                            branch=current_branch or "detached",
                            task_id=path.name,
                            project_name=path.parent.name,
                            exists=path.exists(),
                        )
                    )
                current_path = None
                current_branch = ""
        return checkouts

    def _is_managed(self, path: Path) -> bool:
        try:
            path.resolve().relative_to(self._root.resolve())
        except ValueError:
            return False
        return True

    def _is_repository(self, project_path: Path) -> bool:
        if not project_path.is_dir():
            return False
        try:
            result = self._run(["rev-parse", "--git-dir"], cwd=project_path)
        except CheckoutError:
            return False
        return result.returncode == 0

    def _branch_exists(self, project_path: Path, branch: str) -> bool:
        result = self._run(["rev-parse", "--verify", "--quiet", branch], cwd=project_path)
        return result.returncode == 0

    def _run(self, args: list[str], *, cwd: Path) -> subprocess.CompletedProcess[str]:
        try:
            return subprocess.run(
                [self._git, *args],
                cwd=cwd,
                capture_output=True,
                text=True,
                env=sanitize_environment(non_interactive=True),
                check=False,
            )
        except OSError as exc:
            raise CheckoutError(f"Unable to run git in {cwd}: {exc}") from exc


__all__ = ["CheckoutError", "CheckoutInfo", "CheckoutProvider", "GitCheckoutProvider"]
