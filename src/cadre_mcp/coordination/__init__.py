"""Session, lock, project and queue coordination."""

from .cleanup import CleanupService
from .locks import LOCKS_DOCUMENT, LockCoordinator
from .projects import PROJECTS_DOCUMENT, ProjectRegistry
from .queues import QueueManager, queue_document
from .sessions import REGISTRY_DOCUMENT, SessionManager, is_session_old, session_document

__all__ = [
    "CleanupService",
    "LOCKS_DOCUMENT",
    "LockCoordinator",
    "PROJECTS_DOCUMENT",
    "ProjectRegistry",
    "QueueManager",
    "REGISTRY_DOCUMENT",
    "SessionManager",
    "is_session_old",
    "queue_document",
    "session_document",
]
