import logging
import time
from functools import wraps

from django.db import DatabaseError

logger = logging.getLogger("shop")

# PostgreSQL: serialization_failure / deadlock_detected
PG_RETRY_ERRCODES = {"40001", "40P01"}
RETRY_MESSAGES = (
    "deadlock detected",
    "could not serialize access",
    # SQLite file / shared-cache in-memory databases
    "database is locked",
    "database table is locked",
)


def _pgcode_from(exc: Exception):
    return getattr(exc, "pgcode", None) or getattr(getattr(exc, "__cause__", None), "pgcode", None)


def is_retryable(exc: Exception) -> bool:
    if not isinstance(exc, DatabaseError):
        return False
    code = _pgcode_from(exc)
    if code and code in PG_RETRY_ERRCODES:
        return True
    msg = str(exc).lower()
    return any(k in msg for k in RETRY_MESSAGES)


def retry_on_tx_failure(max_attempts=3, backoff=0.05):
    """Re-run a whole transaction that lost a lock race.

    Only for functions that open their own atomic block and are idempotent.
    """
    def deco(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            attempt = 0
            while True:
                attempt += 1
                try:
                    return fn(*args, **kwargs)
                except DatabaseError as e:
                    if attempt >= max_attempts or not is_retryable(e):
                        raise
                    logger.warning("[retry] %s failed (%d/%d): %s", fn.__name__, attempt, max_attempts, e)
                    time.sleep(backoff * attempt)
        return wrapper
    return deco
