"""
Load status state machine.

The validator is pure: it only says whether a move is legal. What a move
*does* to the load (timestamps, clearing assignments, releasing drivers)
lives in SIDE_EFFECTS, keyed by target status, and is applied by the
assignment coordinator inside its unit of work.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional

from freight.models import Carrier, Driver, Load
from freight.services.exceptions import (
    BusinessRuleViolation,
    InvalidTransition,
    ServiceError,
)

S = Load.Status

VALID_TRANSITIONS = {
    S.OPEN: (S.SCHEDULED, S.BROKERED, S.TONU, S.CANCELLED),
    S.SCHEDULED: (S.IN_PICKUP_YARD, S.TONU, S.CANCELLED),
    S.IN_PICKUP_YARD: (S.IN_TRANSIT, S.TONU, S.CANCELLED),
    S.IN_TRANSIT: (S.COMPLETED,),
    S.COMPLETED: (S.INVOICED,),
    # BROKERED -> SCHEDULED does not re-run the availability check that
    # assign_driver does for OPEN -> SCHEDULED. Kept as-is pending product review.
    S.BROKERED: (S.SCHEDULED, S.CANCELLED),
    S.TONU: (),
    S.CANCELLED: (),
    S.INVOICED: (),
}

# Undo of an assignment or a brokering; handled by assignment.revert_to_open,
# not by change_status.
REVERSIBLE_TO_OPEN = (S.SCHEDULED, S.BROKERED)


def is_valid_transition(current_status, new_status) -> bool:
    return new_status in VALID_TRANSITIONS.get(current_status, ())


def available_transitions(current_status) -> list[str]:
    return list(VALID_TRANSITIONS.get(current_status, ()))


def is_terminal(status) -> bool:
    return not VALID_TRANSITIONS.get(status, ())


def check_transition(load, new_status):
    """
    Raise if ``load`` may not move to ``new_status``.

    InvalidTransition when the table forbids it, BusinessRuleViolation when
    the table allows it but a guard does not.
    """
    if not is_valid_transition(load.status, new_status):
        raise InvalidTransition(f"Cannot transition from {load.status} to {new_status}")

    if new_status == S.SCHEDULED and not load.driver_id:
        raise BusinessRuleViolation("Cannot schedule load without an assigned driver")

    if new_status == S.COMPLETED and not (load.loaded_miles and load.loaded_miles > 0):
        raise BusinessRuleViolation("Must enter loaded miles before completing the load")


def validate_transition(load, new_status) -> Optional[str]:
    """None when the move is valid, otherwise the reason it is not."""
    try:
        check_transition(load, new_status)
    except ServiceError as exc:
        return exc.message
    return None


# ============================================================================
# SIDE EFFECTS
# ============================================================================


@dataclass
class TransitionContext:
    now: datetime
    carrier: Optional[Carrier] = None
    carrier_rate: Optional[Decimal] = None
    reason: str = ""
    # filled by _release_drivers; the coordinator releases them after saving the load
    drivers_to_release: list[Driver] = field(default_factory=list)


def _record_carrier(load, ctx):
    if ctx.carrier is None:
        raise BusinessRuleViolation("Must select a carrier to broker this load")
    if ctx.carrier.status in Carrier.BLOCKED_STATUSES:
        raise BusinessRuleViolation(
            f"Carrier {ctx.carrier} is {ctx.carrier.get_status_display()} "
            "and cannot accept brokered loads"
        )
    load.carrier = ctx.carrier
    if ctx.carrier_rate is not None:
        load.carrier_rate = ctx.carrier_rate


def _stamp_pickup(load, ctx):
    if load.picked_up_at is None:
        load.picked_up_at = ctx.now


def _stamp_delivery(load, ctx):
    if load.delivered_at is None:
        load.delivered_at = ctx.now


def _record_reason(load, ctx):
    if ctx.reason:
        load.cancellation_reason = ctx.reason


def _release_drivers(load, ctx):
    for driver in (load.driver, load.team_driver):
        if driver is not None:
            ctx.drivers_to_release.append(driver)


def _clear_assignment(load, ctx):
    _release_drivers(load, ctx)
    load.driver = None
    load.team_driver = None
    load.truck = None
    load.trailer = None
    load.carrier = None
    load.carrier_rate = None
    load.assigned_at = None


SIDE_EFFECTS = {
    S.OPEN: [_clear_assignment],
    S.BROKERED: [_record_carrier],
    S.IN_PICKUP_YARD: [_stamp_pickup],
    S.IN_TRANSIT: [_stamp_pickup],
    S.COMPLETED: [_stamp_delivery, _release_drivers],
    S.CANCELLED: [_record_reason, _release_drivers],
    S.TONU: [_record_reason, _release_drivers],
}


def apply_side_effects(load, new_status, ctx):
    for effect in SIDE_EFFECTS.get(new_status, ()):
        effect(load, ctx)
