"""
Assignment coordinator.

Every write that touches a load's driver slots or status lives here, each in
one unit of work:

- load row is locked first, then driver rows in primary-key order, so two
  coordinators never wait on each other in opposite orders
- the conflict check reads the driver's other loads after the driver lock
  is held, so a concurrent assignment of the same driver has either
  committed (and is seen) or is blocked behind us
"""

import logging

from django.utils import timezone

from freight.models import Carrier, Driver, Load, Vehicle
from freight.services.conflicts import (
    active_loads_for_driver,
    active_loads_for_truck,
    check_availability,
    release_driver_if_idle,
)
from freight.services.exceptions import (
    BusinessRuleViolation,
    InvalidTransition,
    NotFound,
    SchedulingConflict,
    ValidationError,
)
from freight.services.rates import round_money
from freight.services.state_machine import (
    REVERSIBLE_TO_OPEN,
    TransitionContext,
    apply_side_effects,
    check_transition,
)
from freight.services.transactions import unit_of_work

logger = logging.getLogger(__name__)

# assignment may (re)crew a load only before it leaves for pickup
ASSIGNABLE_STATUSES = (Load.Status.OPEN, Load.Status.SCHEDULED, Load.Status.BROKERED)


def _lock_load(load_id):
    # no select_related: FOR UPDATE cannot lock the nullable side of an outer join
    try:
        return Load.objects.select_for_update().get(pk=load_id)
    except Load.DoesNotExist:
        raise NotFound(f"Load {load_id} not found")


def _lock_drivers(driver_ids):
    drivers = {
        d.pk: d
        for d in Driver.objects.select_for_update().filter(pk__in=driver_ids).order_by("pk")
    }
    for pk in driver_ids:
        if pk not in drivers:
            raise NotFound(f"Driver {pk} not found")
    return drivers


def _ensure_assignable(driver):
    if driver.status in Driver.UNASSIGNABLE_STATUSES:
        raise BusinessRuleViolation(
            f"Cannot assign driver {driver} who is {driver.get_status_display()}"
        )


def _get_vehicle(vehicle_id, vehicle_type):
    if vehicle_id is None:
        return None
    try:
        vehicle = Vehicle.objects.get(pk=vehicle_id)
    except Vehicle.DoesNotExist:
        raise NotFound(f"Vehicle {vehicle_id} not found")

    if vehicle.vehicle_type != vehicle_type:
        raise ValidationError(
            f"Unit {vehicle.unit_number} is not a {vehicle_type.label.lower()}"
        )
    if vehicle.status in Vehicle.UNASSIGNABLE_STATUSES:
        raise BusinessRuleViolation(
            f"Unit {vehicle.unit_number} is {vehicle.get_status_display()}"
        )
    return vehicle


def _get_carrier(carrier_id):
    if carrier_id is None:
        return None
    try:
        return Carrier.objects.get(pk=carrier_id)
    except Carrier.DoesNotExist:
        raise NotFound(f"Carrier {carrier_id} not found")


def _carrier_rate(value):
    if value is None:
        return None
    try:
        rate = round_money(value)
    except ArithmeticError:
        rate = None
    if rate is None or not rate.is_finite():
        raise ValidationError("carrier_rate must be a number")
    if rate < 0:
        raise ValidationError("carrier_rate cannot be negative")
    return rate


def _mark_en_route(drivers):
    for driver in drivers:
        if driver.status != Driver.Status.EN_ROUTE:
            driver.status = Driver.Status.EN_ROUTE
            driver.save(update_fields=["status", "updated_at"])


def _transition(load, new_status, ctx):
    """Apply side effects, persist, then release whoever the move freed."""
    old_status = load.status
    apply_side_effects(load, new_status, ctx)
    load.status = new_status
    load.save()

    for driver in ctx.drivers_to_release:
        release_driver_if_idle(driver, exclude_load=load)

    logger.info("Load %s: %s -> %s", load.reference_number, old_status, new_status)
    return load


# ============================================================================
# ASSIGNMENT
# ============================================================================


def assign_driver(
    load_id,
    driver_id,
    *,
    truck_id=None,
    trailer_id=None,
    team_driver_id=None,
    assigned_by=None,
):
    """
    Put a driver (and optionally a team partner and equipment) on a load.

    The call defines the crew: the team slot is set to ``team_driver_id``,
    so omitting it clears a previous partner. Truck and trailer are only
    replaced when given. An OPEN load moves to SCHEDULED.

    Raises SchedulingConflict when either driver, or the truck, is already
    on an active load whose window overlaps this one.
    """
    if team_driver_id is not None and team_driver_id == driver_id:
        raise ValidationError("Team driver must be a different driver")

    with unit_of_work():
        load = _lock_load(load_id)
        if load.status not in ASSIGNABLE_STATUSES:
            raise InvalidTransition(
                f"Cannot assign a driver to a load in {load.status} status"
            )

        crew_ids = [driver_id] + ([team_driver_id] if team_driver_id is not None else [])
        drivers = _lock_drivers(crew_ids)
        driver = drivers[driver_id]
        team_driver = drivers.get(team_driver_id)
        crew = [d for d in (driver, team_driver) if d is not None]
        for member in crew:
            _ensure_assignable(member)

        truck = _get_vehicle(truck_id, Vehicle.VehicleType.TRACTOR)
        trailer = _get_vehicle(trailer_id, Vehicle.VehicleType.TRAILER)

        start, end = load.window
        conflicts = []
        for member in crew:
            availability = check_availability(
                active_loads_for_driver(member, exclude_load=load), start, end
            )
            conflicts.extend(availability.conflicts)
        if truck is not None:
            availability = check_availability(
                active_loads_for_truck(truck, exclude_load=load), start, end
            )
            conflicts.extend(availability.conflicts)

        if conflicts:
            logger.warning(
                "Assignment of driver %s to load %s refused: %d conflicting load(s)",
                driver_id,
                load.reference_number,
                len(conflicts),
            )
            raise SchedulingConflict(
                "Driver has conflicting loads in this time window", conflicts
            )

        replaced = [
            d
            for d in (load.driver, load.team_driver)
            if d is not None and d.pk not in crew_ids
        ]

        load.driver = driver
        load.team_driver = team_driver
        if truck is not None:
            load.truck = truck
        if trailer is not None:
            load.trailer = trailer
        load.assigned_at = timezone.now()
        if assigned_by is not None:
            load.dispatcher = assigned_by

        if load.status == Load.Status.OPEN:
            check_transition(load, Load.Status.SCHEDULED)
            load.status = Load.Status.SCHEDULED
        load.save()

        # a BROKERED load is not active yet; its crew goes en route once it is SCHEDULED
        if load.status in Load.ACTIVE_STATUSES:
            _mark_en_route(crew)

        for old in replaced:
            release_driver_if_idle(old, exclude_load=load)

    logger.info(
        "Load %s assigned to driver %s%s",
        load.reference_number,
        driver_id,
        f" with team driver {team_driver_id}" if team_driver_id else "",
    )
    return load


def change_status(load_id, new_status, *, carrier_id=None, carrier_rate=None, reason=""):
    """
    Move a load through the state machine and run the move's side effects.

    BROKERED needs ``carrier_id``; TONU and CANCELLED record ``reason``.
    COMPLETED, TONU and CANCELLED free the load's drivers once they have no
    other active load. SCHEDULED (out of BROKERED) puts the crew en route.
    """
    if new_status not in Load.Status.values:
        raise ValidationError(f"Unknown load status {new_status!r}")

    with unit_of_work():
        load = _lock_load(load_id)
        check_transition(load, new_status)

        ctx = TransitionContext(
            now=timezone.now(),
            carrier=_get_carrier(carrier_id),
            carrier_rate=_carrier_rate(carrier_rate),
            reason=reason or "",
        )
        # lock order: load, then drivers by pk
        crew = {}
        if load.driver_ids and new_status in (
            Load.Status.SCHEDULED,
            Load.Status.COMPLETED,
            Load.Status.TONU,
            Load.Status.CANCELLED,
        ):
            crew = _lock_drivers(sorted(load.driver_ids))

        load = _transition(load, new_status, ctx)
        if new_status == Load.Status.SCHEDULED:
            _mark_en_route(crew.values())
        return load


def revert_to_open(load_id):
    """
    Undo an assignment or a brokering: SCHEDULED or BROKERED back to OPEN.

    Clears drivers, equipment and carrier, and releases the drivers.
    """
    with unit_of_work():
        load = _lock_load(load_id)
        if load.status not in REVERSIBLE_TO_OPEN:
            raise InvalidTransition(f"Cannot revert a {load.status} load to OPEN")
        if load.driver_ids:
            _lock_drivers(sorted(load.driver_ids))
        return _transition(load, Load.Status.OPEN, TransitionContext(now=timezone.now()))


def check_driver_availability(driver_id, start, end, exclude_load_id=None):
    """Read-only availability lookup for a proposed window."""
    try:
        driver = Driver.objects.get(pk=driver_id)
    except Driver.DoesNotExist:
        raise NotFound(f"Driver {driver_id} not found")
    if start is not None and end is not None and end <= start:
        raise ValidationError("Window end must be after its start")

    loads = active_loads_for_driver(driver)
    if exclude_load_id is not None:
        loads = loads.exclude(pk=exclude_load_id)
    return check_availability(loads, start, end)


# ============================================================================
# TEAM PAIRING
# ============================================================================


def pair_team_drivers(driver_id, partner_id):
    """
    Pair two drivers as a team; both rows point at each other afterwards.

    Any previous partner of either driver is unpaired in the same unit.
    """
    if driver_id == partner_id:
        raise ValidationError("A driver cannot be paired with themselves")

    with unit_of_work():
        drivers = _lock_drivers(sorted([driver_id, partner_id]))
        driver, partner = drivers[driver_id], drivers[partner_id]

        stale = {driver.team_driver_id, partner.team_driver_id} - {None, driver.pk, partner.pk}
        if stale:
            _lock_drivers(sorted(stale))
            Driver.objects.filter(pk__in=stale).update(
                team_driver=None, updated_at=timezone.now()
            )

        driver.team_driver = partner
        partner.team_driver = driver
        driver.save(update_fields=["team_driver", "updated_at"])
        partner.save(update_fields=["team_driver", "updated_at"])

    logger.info("Drivers %s and %s paired as a team", driver_id, partner_id)
    return driver, partner


def unpair_team_driver(driver_id):
    with unit_of_work():
        try:
            partner_id = Driver.objects.values_list("team_driver_id", flat=True).get(
                pk=driver_id
            )
        except Driver.DoesNotExist:
            raise NotFound(f"Driver {driver_id} not found")
        if partner_id is None:
            return Driver.objects.get(pk=driver_id)

        drivers = _lock_drivers(sorted([driver_id, partner_id]))
        driver, partner = drivers[driver_id], drivers[partner_id]
        driver.team_driver = None
        driver.save(update_fields=["team_driver", "updated_at"])
        if partner.team_driver_id == driver.pk:
            partner.team_driver = None
            partner.save(update_fields=["team_driver", "updated_at"])

    logger.info("Driver %s unpaired from %s", driver_id, partner_id)
    return driver
