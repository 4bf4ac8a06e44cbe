from datetime import datetime, timedelta
from datetime import timezone as dt_timezone

import pytest

from freight import factories

# fixed, timezone-aware reference day so window arithmetic is predictable
BASE_DAY = datetime(2025, 1, 15, tzinfo=dt_timezone.utc)


@pytest.fixture
def at():
    """at(10) -> 10:00 on the reference day; at(9, day=1) -> 09:00 the day after."""

    def make(hour, day=0, minute=0):
        return BASE_DAY + timedelta(days=day, hours=hour, minutes=minute)

    return make


@pytest.fixture
def user_factory():
    return factories.UserFactory


@pytest.fixture
def customer_factory():
    return factories.CustomerFactory


@pytest.fixture
def carrier_factory():
    return factories.CarrierFactory


@pytest.fixture
def driver_factory():
    return factories.DriverFactory


@pytest.fixture
def tractor_factory():
    return factories.TractorFactory


@pytest.fixture
def trailer_factory():
    return factories.TrailerFactory


@pytest.fixture
def load_factory():
    return factories.LoadFactory


@pytest.fixture
def accessorial_type_factory():
    return factories.AccessorialTypeFactory


@pytest.fixture
def deduction_factory():
    return factories.DriverDeductionFactory


@pytest.fixture
def load_with_window(load_factory):
    """Load whose first stop starts at ``start`` and last stop ends at ``end``."""

    def make(start, end, **kwargs):
        return factories.with_window(load_factory(**kwargs), start, end)

    return make


@pytest.fixture
def dispatcher(user_factory):
    return user_factory(username="dispatcher", role="dispatcher")


@pytest.fixture
def accountant(user_factory):
    return user_factory(username="accountant", role="accountant")
