"""Storage backends for workflows, documents, participants and activity."""

from __future__ import annotations

from typing import Callable, Optional

from ..config import DocrouteConfig, load_config
from .inmemory import InMemoryWorkflowRepository
from .postgres import PostgresWorkflowRepository
from .repository import WorkflowRepository
from .sqlite import SQLiteWorkflowRepository

_repository_instance: WorkflowRepository | None = None


def _sqlite_from_url(url: str) -> SQLiteWorkflowRepository:
    # sqlite:///abs/path and sqlite://relative/path are both accepted
    return SQLiteWorkflowRepository(url.split("://", 1)[1])


_BACKENDS: dict[str, Callable[[str], WorkflowRepository]] = {
    "sqlite": _sqlite_from_url,
    "postgres": PostgresWorkflowRepository,
    "postgresql": PostgresWorkflowRepository,
}


def reset_repository() -> None:
    """Forget the cached repository so the next lookup re-reads configuration."""
    global _repository_instance
    _repository_instance = None


def get_repository(
    database_url: Optional[str] = None, config: Optional[DocrouteConfig] = None
) -> WorkflowRepository:
    """Return the process-wide repository, creating it on first use.

    ``database_url`` wins over ``config.database_url``, which already folds in
    ``DOCROUTE_DATABASE_URL``/``DATABASE_URL``. Without any URL the state
    lives in memory and is lost when the process exits.
    """

    global _repository_instance
    if _repository_instance is not None and database_url is None and config is None:
        return _repository_instance

    url = database_url or (config or load_config()).database_url
    if not url:
        _repository_instance = InMemoryWorkflowRepository()
        return _repository_instance

    scheme = url.split("://", 1)[0].lower() if "://" in url else ""
    factory = _BACKENDS.get(scheme)
    if factory is None:
        raise ValueError(f"Unsupported database backend: {url}")
    _repository_instance = factory(url)
    return _repository_instance


__all__ = [
    "WorkflowRepository",
    "SQLiteWorkflowRepository",
    "PostgresWorkflowRepository",
    "InMemoryWorkflowRepository",
    "get_repository",
    "reset_repository",
]
