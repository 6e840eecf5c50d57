"""
Atomic unit-of-work runner.

Every read-modify-write on the balance, request and workflow rows goes
through ``run_atomically``. The callable receives the session, performs its
reads and writes, and the runner commits. A concurrent writer shows up as one
of the conflict signals below; the runner then rolls back and replays the
whole callable against fresh state, up to a bounded number of attempts.

Conflict signals:
- ``StaleDataError``: a version_id_col check failed (optimistic lock).
- ``WriteConflict``: raised by services on a unique-key race.
- ``OperationalError`` / ``DBAPIError`` carrying a lock, deadlock or
  serialization failure from the driver.
"""
import logging
from typing import Callable, Optional, TypeVar

from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError
from tenacity import (
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_random_exponential,
)

from leave_ledger.core.config import settings
from leave_ledger.core.exceptions import ReservationConflictError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# PostgreSQL serialization_failure / deadlock_detected / lock_not_available
_RETRYABLE_PGCODES = {"40001", "40P01", "55P03"}
_RETRYABLE_MESSAGES = ("database is locked", "database table is locked", "deadlock")


class WriteConflict(Exception):
    """A concurrent writer won a race the current attempt cannot recover from in place."""


def is_conflict(exc: BaseException) -> bool:
    if isinstance(exc, (StaleDataError, WriteConflict)):
        return True
    if isinstance(exc, DBAPIError) and not exc.connection_invalidated:
        pgcode = getattr(exc.orig, "pgcode", None)
        if pgcode in _RETRYABLE_PGCODES:
            return True
        text = str(exc.orig).lower()
        return any(marker in text for marker in _RETRYABLE_MESSAGES)
    return False


def _log_retry(retry_state) -> None:
    exc = retry_state.outcome.exception()
    logger.warning(
        "transaction_conflict_retry",
        extra={
            "attempt": retry_state.attempt_number,
            "error": type(exc).__name__,
        },
    )


def run_atomically(
    db: Session,
    operation: Callable[[Session], T],
    description: str,
    max_attempts: Optional[int] = None,
) -> T:
    """
    Run ``operation`` and commit it as a single transaction.

    Non-conflict exceptions roll back and propagate unchanged on the first
    attempt. Conflicts are retried; exhaustion raises ReservationConflictError.
    """
    attempts = max_attempts or settings.ledger.max_attempts
    retryer = Retrying(
        stop=stop_after_attempt(attempts),
        wait=wait_random_exponential(multiplier=0.01, max=settings.ledger.retry_wait_max),
        retry=retry_if_exception(is_conflict),
        before_sleep=_log_retry,
        reraise=True,
    )

    result = None
    try:
        for attempt in retryer:
            with attempt:
                try:
                    result = operation(db)
                    db.commit()
                except Exception:
                    db.rollback()
                    raise
    except Exception as exc:
        if is_conflict(exc):
            logger.error(
                "transaction_conflict_exhausted",
                extra={"operation": description, "attempts": attempts},
            )
            raise ReservationConflictError(description, attempts) from exc
        raise
    return result
