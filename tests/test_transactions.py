import pytest
from django.db import OperationalError

from freight.models import Customer
from freight.services.exceptions import ConcurrencyContention
from freight.services.transactions import is_contention, retry_on_contention, unit_of_work

pytestmark = pytest.mark.django_db


class DriverError(Exception):
    """Stands in for the database driver's exception behind OperationalError."""

    def __init__(self, message, sqlstate=None):
        super().__init__(message)
        self.sqlstate = sqlstate


def operational_error(message, sqlstate=None):
    try:
        raise DriverError(message, sqlstate)
    except DriverError as cause:
        try:
            raise OperationalError(message) from cause
        except OperationalError as exc:
            return exc


@pytest.mark.parametrize("sqlstate", ["55P03", "40P01", "40001"])
def test_lock_sqlstates_are_contention(sqlstate):
    assert is_contention(operational_error("lock trouble", sqlstate))


def test_sqlite_busy_writer_is_contention():
    assert is_contention(OperationalError("database is locked"))


def test_other_operational_errors_are_not_contention():
    assert not is_contention(operational_error("relation does not exist", "42P01"))
    assert not is_contention(OperationalError("no such table: freight_load"))


def test_deadlock_inside_unit_of_work_becomes_contention_and_rolls_back():
    with pytest.raises(ConcurrencyContention) as exc_info:
        with unit_of_work():
            Customer.objects.create(company_name="Rolled Back Freight")
            raise operational_error("deadlock detected", "40P01")

    assert exc_info.value.http_status == 503
    assert isinstance(exc_info.value.__cause__, OperationalError)
    assert not Customer.objects.filter(company_name="Rolled Back Freight").exists()


def test_unrelated_operational_error_passes_through():
    with pytest.raises(OperationalError):
        with unit_of_work():
            raise operational_error("relation does not exist", "42P01")


def test_retry_succeeds_on_a_later_attempt():
    calls = []

    def flaky(value):
        calls.append(value)
        if len(calls) == 1:
            raise ConcurrencyContention("Could not acquire lock")
        return value * 2

    assert retry_on_contention(flaky, 21, attempts=3) == 42
    assert calls == [21, 21]


def test_retry_gives_up_after_the_last_attempt():
    calls = []

    def always_locked():
        calls.append(1)
        raise ConcurrencyContention("Could not acquire lock")

    with pytest.raises(ConcurrencyContention):
        retry_on_contention(always_locked, attempts=3)
    assert len(calls) == 3


def test_retry_does_not_repeat_other_errors():
    calls = []

    def broken():
        calls.append(1)
        raise ValueError("bad input")

    with pytest.raises(ValueError):
        retry_on_contention(broken, attempts=3)
    assert len(calls) == 1
