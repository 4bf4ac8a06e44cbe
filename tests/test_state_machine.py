from datetime import datetime
from datetime import timezone as dt_timezone
from decimal import Decimal

import pytest

from freight.models import Carrier, Load
from freight.services import state_machine as sm
from freight.services.exceptions import BusinessRuleViolation, InvalidTransition

S = Load.Status
NOW = datetime(2025, 1, 15, 12, tzinfo=dt_timezone.utc)


def make_load(status=S.OPEN, **kwargs):
    return Load(reference_number="SM-TEST", status=status, **kwargs)


@pytest.mark.parametrize(
    "current, new",
    [
        (S.OPEN, S.SCHEDULED),
        (S.OPEN, S.BROKERED),
        (S.OPEN, S.TONU),
        (S.OPEN, S.CANCELLED),
        (S.SCHEDULED, S.IN_PICKUP_YARD),
        (S.IN_PICKUP_YARD, S.IN_TRANSIT),
        (S.IN_TRANSIT, S.COMPLETED),
        (S.COMPLETED, S.INVOICED),
        (S.BROKERED, S.SCHEDULED),
        (S.BROKERED, S.CANCELLED),
    ],
)
def test_valid_transitions(current, new):
    assert sm.is_valid_transition(current, new)


@pytest.mark.parametrize(
    "current, new",
    [
        (S.OPEN, S.COMPLETED),
        (S.OPEN, S.IN_TRANSIT),
        (S.SCHEDULED, S.OPEN),
        (S.IN_TRANSIT, S.CANCELLED),
        (S.COMPLETED, S.COMPLETED),
        (S.BROKERED, S.TONU),
    ],
)
def test_invalid_transitions(current, new):
    assert not sm.is_valid_transition(current, new)


@pytest.mark.parametrize("status", [S.TONU, S.CANCELLED, S.INVOICED])
def test_terminal_statuses_have_no_exits(status):
    assert sm.is_terminal(status)
    assert sm.available_transitions(status) == []
    assert not any(sm.is_valid_transition(status, target) for target in S.values)


def test_available_transitions_for_open():
    assert set(sm.available_transitions(S.OPEN)) == {
        S.SCHEDULED,
        S.BROKERED,
        S.TONU,
        S.CANCELLED,
    }


def test_scheduling_requires_a_driver():
    load = make_load()
    with pytest.raises(BusinessRuleViolation):
        sm.check_transition(load, S.SCHEDULED)
    assert sm.validate_transition(load, S.SCHEDULED) == (
        "Cannot schedule load without an assigned driver"
    )


def test_scheduling_with_driver_is_valid():
    load = make_load(driver_id=1)
    assert sm.validate_transition(load, S.SCHEDULED) is None


def test_completion_requires_loaded_miles():
    load = make_load(S.IN_TRANSIT, loaded_miles=0)
    with pytest.raises(BusinessRuleViolation):
        sm.check_transition(load, S.COMPLETED)

    load.loaded_miles = 850
    sm.check_transition(load, S.COMPLETED)


def test_table_violation_raises_invalid_transition():
    with pytest.raises(InvalidTransition):
        sm.check_transition(make_load(S.OPEN), S.COMPLETED)


def test_delivery_stamp_is_kept_on_repeat():
    earlier = datetime(2025, 1, 14, 8, tzinfo=dt_timezone.utc)
    load = make_load(S.IN_TRANSIT, delivered_at=earlier)
    sm.apply_side_effects(load, S.COMPLETED, sm.TransitionContext(now=NOW))
    assert load.delivered_at == earlier


def test_pickup_and_transit_stamp_pickup_time_once():
    load = make_load(S.SCHEDULED)
    sm.apply_side_effects(load, S.IN_PICKUP_YARD, sm.TransitionContext(now=NOW))
    assert load.picked_up_at == NOW

    later = datetime(2025, 1, 15, 18, tzinfo=dt_timezone.utc)
    sm.apply_side_effects(load, S.IN_TRANSIT, sm.TransitionContext(now=later))
    assert load.picked_up_at == NOW


def test_cancellation_records_reason():
    load = make_load(S.SCHEDULED)
    sm.apply_side_effects(
        load, S.CANCELLED, sm.TransitionContext(now=NOW, reason="Shipper cancelled")
    )
    assert load.cancellation_reason == "Shipper cancelled"


def test_brokering_requires_carrier():
    with pytest.raises(BusinessRuleViolation):
        sm.apply_side_effects(make_load(), S.BROKERED, sm.TransitionContext(now=NOW))


@pytest.mark.parametrize("status", [Carrier.Status.SUSPENDED, Carrier.Status.INACTIVE])
def test_brokering_rejects_blocked_carriers(status):
    carrier = Carrier(company_name="Blocked Co", status=status)
    with pytest.raises(BusinessRuleViolation):
        sm.apply_side_effects(
            make_load(), S.BROKERED, sm.TransitionContext(now=NOW, carrier=carrier)
        )


def test_brokering_records_carrier_and_rate():
    carrier = Carrier(pk=7, company_name="Good Co", status=Carrier.Status.PROSPECT)
    load = make_load()
    sm.apply_side_effects(
        load,
        S.BROKERED,
        sm.TransitionContext(now=NOW, carrier=carrier, carrier_rate=Decimal("1800.00")),
    )
    assert load.carrier_id == 7
    assert load.carrier_rate == Decimal("1800.00")
