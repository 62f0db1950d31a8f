"""
Mutation outcomes and the unit-of-work helper shared by the write-side services.

Recoverable validation failures are returned, never raised: every mutation
entry point answers with a MutationResult. Writes go through atomic() so a
batch either commits once or leaves no trace.
"""

import functools
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


@dataclass
class MutationResult:
    success: bool
    error: Optional[str] = None
    data: Any = None

    @property
    def is_not_found(self) -> bool:
        return bool(self.error) and "not found" in self.error.lower()

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"success": self.success}
        if self.error is not None:
            result["error"] = self.error
        if self.data is not None:
            result["data"] = self.data
        return result


def ok(data: Any = None) -> MutationResult:
    return MutationResult(success=True, data=data)


def fail(error: str) -> MutationResult:
    return MutationResult(success=False, error=error)


@contextmanager
def atomic(db: Session) -> Iterator[Session]:
    """Commit once on success, roll back everything on any error."""
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise


def mutation(action: str):
    """
    Wrap a service method so persistence errors become a failed result.

    The session is rolled back and the error logged; callers get
    "Failed to <action>" instead of a stack trace.
    """
    def decorator(func):
        @functools.wraps(func)
        def wrapper(self, *args, **kwargs) -> MutationResult:
            try:
                return func(self, *args, **kwargs)
            except SQLAlchemyError:
                self.db.rollback()
                logger.exception(f"Failed to {action}")
                return fail(f"Failed to {action}")
        return wrapper
    return decorator
