import logging
from contextlib import contextmanager

from django.db import OperationalError, transaction

from freight.services.exceptions import ConcurrencyContention

logger = logging.getLogger(__name__)

# lock_not_available, deadlock_detected, serialization_failure
CONTENTION_SQLSTATES = {"55P03", "40P01", "40001"}


def is_contention(exc):
    cause = exc.__cause__
    sqlstate = getattr(cause, "sqlstate", None) or getattr(cause, "pgcode", None)
    if sqlstate in CONTENTION_SQLSTATES:
        return True
    # SQLite reports a busy writer this way
    return "database is locked" in str(exc)


@contextmanager
def unit_of_work():
    """
    One all-or-nothing transaction for a single engine operation.

    Anything raised inside rolls the whole unit back. Lock timeouts and
    deadlocks come out as ConcurrencyContention so callers can retry.
    """
    try:
        with transaction.atomic():
            yield
    except OperationalError as exc:
        if is_contention(exc):
            raise ConcurrencyContention(f"Could not acquire lock: {exc}") from exc
        raise


def retry_on_contention(operation, *args, attempts=3, **kwargs):
    """
    Run ``operation`` again when it loses a lock race.

    Safe because every engine operation re-reads committed state inside its
    own unit of work.
    """
    for attempt in range(1, attempts + 1):
        try:
            return operation(*args, **kwargs)
        except ConcurrencyContention:
            if attempt == attempts:
                raise
            logger.warning(
                "%s hit lock contention (attempt %d/%d), retrying",
                getattr(operation, "__name__", operation),
                attempt,
                attempts,
            )
