import pytest
from django.db import DatabaseError, IntegrityError, OperationalError

from .transactions import is_retryable, retry_on_tx_failure


class SerializationFailure(OperationalError):
    pgcode = "40001"


def test_is_retryable():
    assert is_retryable(SerializationFailure("could not serialize"))
    assert is_retryable(OperationalError("deadlock detected"))
    assert is_retryable(OperationalError("database is locked"))
    assert is_retryable(OperationalError("database table is locked"))
    assert not is_retryable(IntegrityError("duplicate key"))
    assert not is_retryable(ValueError("deadlock detected"))


def test_retry_until_success():
    calls = []

    @retry_on_tx_failure(max_attempts=3, backoff=0)
    def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise OperationalError("deadlock detected")
        return "ok"

    assert flaky() == "ok"
    assert len(calls) == 3


def test_retry_gives_up_after_max_attempts():
    calls = []

    @retry_on_tx_failure(max_attempts=2, backoff=0)
    def always_locked():
        calls.append(1)
        raise OperationalError("database is locked")

    with pytest.raises(OperationalError):
        always_locked()
    assert len(calls) == 2


def test_non_retryable_error_is_raised_at_once():
    calls = []

    @retry_on_tx_failure(max_attempts=5, backoff=0)
    def broken():
        calls.append(1)
        raise DatabaseError("syntax error")

    with pytest.raises(DatabaseError):
        broken()
    assert len(calls) == 1
