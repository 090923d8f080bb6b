"""Filesystem-backed store of JSON documents with atomic replace-on-write."""

from __future__ import annotations

import fcntl
import logging
import os
import tempfile
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterator, TypeVar
from uuid import uuid4

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

DocumentT = TypeVar("DocumentT", bound=BaseModel)


class RecordStoreError(RuntimeError):
    """Raised when a document cannot be written to disk."""


def generate_id(prefix: str, *, clock: Callable[[], datetime] | None = None) -> str:
    """Return an id such as ``LOCK-20250101120000A1B2C3``."""

    now = (clock or (lambda: datetime.now(timezone.utc)))()
    return f"{prefix}-{now.strftime('%Y%m%d%H%M%S')}{uuid4().hex[:6]}".upper()


def _atomic_write(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)
            if not text.endswith("\n"):
                handle.write("\n")
        os.replace(tmp_name, path)
    except Exception:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


class RecordStore:
    """Read and write whole documents under a single state directory.

    Readers never observe a partially written document because every write
    goes to a temporary sibling file that is then renamed into place. There is
    no isolation between concurrent writers beyond that; callers that need a
    read-modify-write cycle to be exclusive wrap it in :meth:`exclusive`.
    """

    def __init__(self, root: Path) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def path(self, relative: str | Path) -> Path:
        return self._root / relative

    def exists(self, relative: str | Path) -> bool:
        return self.path(relative).exists()

    def read(
        self,
        relative: str | Path,
        model: type[DocumentT],
        default: Callable[[], DocumentT],
    ) -> DocumentT:
        """Return the parsed document, or ``default()`` when missing or unreadable."""

        target = self.path(relative)
        try:
            raw = target.read_text(encoding="utf-8")
        except FileNotFoundError:
            return default()
        except OSError as exc:
            logger.warning("Unable to read document", extra={"path": str(target), "error": str(exc)})
            return default()

        try:
            return model.model_validate_json(raw)
        except ValidationError as exc:
            logger.warning(
                "Discarding unreadable document",
                extra={"path": str(target), "error": str(exc)},
            )
            return default()

    def write(self, relative: str | Path, document: BaseModel) -> Path:
        return self.write_text(relative, document.model_dump_json(indent=2))

    def write_text(self, relative: str | Path, text: str) -> Path:
        target = self.path(relative)
        try:
            _atomic_write(target, text)
        except OSError as exc:
            raise RecordStoreError(f"Failed to write {target}: {exc}") from exc
        return target

    def list_documents(self, relative_dir: str | Path, pattern: str = "*.json") -> list[Path]:
        directory = self.path(relative_dir)
        if not directory.is_dir():
            return []
        return sorted(path for path in directory.glob(pattern) if path.is_file())

    @contextmanager
    def exclusive(self, relative: str | Path) -> Iterator[None]:
        """Hold an advisory lock on ``<relative>.lock`` for the duration of the block."""

        lock_path = self.path(f"{relative}.lock")
        try:
            lock_path.parent.mkdir(parents=True, exist_ok=True)
            handle = open(lock_path, "a", encoding="utf-8")
        except OSError as exc:
            raise RecordStoreError(f"Failed to open {lock_path}: {exc}") from exc
        with handle:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


__all__ = ["RecordStore", "RecordStoreError", "generate_id"]
