"""Transaction helpers.

Services do all guard-then-mutate work inside one session transaction and
finish with ``commit_or_conflict``. Optimistic version mismatches, lost
unique-constraint races and serialization failures all surface as
``StorageConflictError`` so callers (and the HTTP layer) see a single
"retry this operation" signal.
"""
from __future__ import annotations

from typing import Any

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from incentive_engine.utils.logger import get_logger

logger = get_logger(__name__)


class StorageConflictError(Exception):
    """The store rejected a transaction; the whole operation may be retried."""

    def __init__(self, operation: str, message: str = "Storage transaction conflict"):
        super().__init__(f"{message} during {operation}")
        self.operation = operation


def _conflict(session: Session, exc: Exception, operation: str, context: dict) -> StorageConflictError:
    session.rollback()
    logger.warning(
        "Transaction rolled back on storage conflict",
        operation=operation,
        error_type=type(exc).__name__,
        error=str(exc),
        **context,
    )
    return StorageConflictError(operation)


def commit_or_conflict(session: Session, *, operation: str, **context: Any) -> None:
    try:
        session.commit()
    except (StaleDataError, IntegrityError, OperationalError) as exc:
        raise _conflict(session, exc, operation, context) from exc


def flush_or_conflict(session: Session, *, operation: str, **context: Any) -> None:
    """Flush mid-transaction (to obtain ids); a conflict rolls the whole transaction back."""
    try:
        session.flush()
    except (StaleDataError, IntegrityError, OperationalError) as exc:
        raise _conflict(session, exc, operation, context) from exc


__all__ = ["StorageConflictError", "commit_or_conflict", "flush_or_conflict"]
