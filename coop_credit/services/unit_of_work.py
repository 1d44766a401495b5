"""All-or-nothing transaction boundary shared by every engine operation"""

import logging
from typing import Callable, TypeVar

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from coop_credit.domain.exceptions import TransientStorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _is_transient(error: DBAPIError) -> bool:
    return isinstance(error, OperationalError) or error.connection_invalidated


class UnitOfWork:
    """
    Runs an operation in its own session and transaction.

    - Commit on success, rollback on any error: no partial mutation persists
    - PostgreSQL gets a bounded lock/statement timeout per transaction
    - Transient storage failures are retried, then surfaced as TransientStorageError
    """

    def __init__(self, session_factory: sessionmaker, timeout_ms: int = 5000, max_retries: int = 3):
        self.session_factory = session_factory
        self.timeout_ms = timeout_ms
        self.max_retries = max_retries

    def _apply_timeout(self, db: Session) -> None:
        if db.get_bind().dialect.name == "postgresql":
            db.execute(text(f"SET LOCAL lock_timeout = {int(self.timeout_ms)}"))
            db.execute(text(f"SET LOCAL statement_timeout = {int(self.timeout_ms)}"))

    def run(self, operation: Callable[[Session], T]) -> T:
        attempt = 0
        while True:
            db = self.session_factory()
            try:
                self._apply_timeout(db)
                result = operation(db)
                db.commit()
                return result
            except DBAPIError as e:
                db.rollback()
                if not _is_transient(e):
                    raise
                attempt += 1
                if attempt > self.max_retries:
                    raise TransientStorageError(f"Storage unavailable after {attempt} attempts: {e}") from e
                logger.warning(f"Transient storage error, retrying (attempt {attempt}): {e}")
            except Exception:
                db.rollback()
                raise
            finally:
                db.close()

    def read(self, operation: Callable[[Session], T]) -> T:
        """Run a read-only operation; nothing is committed"""
        db = self.session_factory()
        try:
            return operation(db)
        except OperationalError as e:
            raise TransientStorageError(f"Storage unavailable: {e}") from e
        finally:
            db.close()
