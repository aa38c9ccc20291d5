"""
Tests for retry_sync_with_backoff.
"""
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from chargeup.core.errors import NotReserved, Unavailable
from chargeup.core.retry import retry_sync_with_backoff, should_retry_error


def db_down():
    return OperationalError("SELECT 1", {}, Exception("database is locked"))


@patch("chargeup.core.retry.time.sleep")
def test_retries_transient_database_error(sleep):
    func = MagicMock(side_effect=[db_down(), "ok"])
    rollback = MagicMock()

    assert retry_sync_with_backoff(func, before_retry=rollback) == "ok"
    assert func.call_count == 2
    rollback.assert_called_once()
    sleep.assert_called_once()


@patch("chargeup.core.retry.time.sleep")
def test_precondition_errors_are_not_retried(sleep):
    func = MagicMock(side_effect=NotReserved())

    with pytest.raises(NotReserved):
        retry_sync_with_backoff(func)
    assert func.call_count == 1
    sleep.assert_not_called()


@patch("chargeup.core.retry.time.sleep")
def test_exhaustion_raises_unavailable(sleep):
    func = MagicMock(side_effect=db_down())

    with pytest.raises(Unavailable) as exc:
        retry_sync_with_backoff(func, max_attempts=3)
    assert func.call_count == 3
    assert isinstance(exc.value.__cause__, OperationalError)


@patch("chargeup.core.retry.time.sleep")
def test_backoff_is_capped(sleep):
    func = MagicMock(side_effect=[db_down()] * 4 + ["ok"])

    retry_sync_with_backoff(func, max_attempts=5, initial_delay=1.0, max_delay=2.0, jitter=False)
    assert [c.args[0] for c in sleep.call_args_list] == [1.0, 2.0, 2.0, 2.0]


def test_should_retry_error():
    assert should_retry_error(Unavailable())
    assert should_retry_error(db_down())
    assert not should_retry_error(ValueError("bad input"))
