"""
Conflict detection - is a driver (or tractor) free over a time window?

Windows are half-open: a load ending at 14:00 and another starting at 14:00
do not conflict.
"""

import logging
from dataclasses import dataclass

from django.db.models import Q
from django.utils import timezone

from freight.models import Driver, Load

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Conflict:
    load_id: int
    reference_number: str
    status: str
    start: object
    end: object
    origin: str = ""
    destination: str = ""

    @classmethod
    def from_load(cls, load, start, end):
        stops = list(load.stops.all())
        return cls(
            load_id=load.pk,
            reference_number=load.reference_number,
            status=load.status,
            start=start,
            end=end,
            origin=_place(stops[0]) if stops else "",
            destination=_place(stops[-1]) if stops else "",
        )

    def as_dict(self):
        return {
            "load_id": self.load_id,
            "reference_number": self.reference_number,
            "status": self.status,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "origin": self.origin,
            "destination": self.destination,
        }


@dataclass(frozen=True)
class Availability:
    available: bool
    conflicts: tuple = ()

    def as_dict(self):
        return {
            "available": self.available,
            "conflicts": [c.as_dict() for c in self.conflicts],
        }


def _place(stop):
    return ", ".join(part for part in (stop.city, stop.state) if part)


def windows_overlap(start_a, end_a, start_b, end_b):
    return start_a < end_b and end_a > start_b


def check_availability(other_loads, candidate_start, candidate_end):
    """
    Compare a candidate window against loads the resource is already on.

    ``other_loads`` should already exclude the candidate load itself; loads
    outside ACTIVE_STATUSES are ignored, as are loads with no usable window.
    """
    if candidate_start is None or candidate_end is None:
        return Availability(available=True)

    conflicts = []
    for load in other_loads:
        if load.status not in Load.ACTIVE_STATUSES:
            continue
        start, end = load.window
        if start is None or end is None:
            logger.warning(
                "Load %s has no complete stop window, skipped in conflict check",
                load.reference_number,
            )
            continue
        if windows_overlap(candidate_start, candidate_end, start, end):
            conflicts.append(Conflict.from_load(load, start, end))

    return Availability(available=not conflicts, conflicts=tuple(conflicts))


def active_loads_for_driver(driver, exclude_load=None):
    """Active loads with ``driver`` in either the primary or the team slot."""
    qs = Load.objects.filter(
        Q(driver=driver) | Q(team_driver=driver),
        status__in=Load.ACTIVE_STATUSES,
    )
    if exclude_load is not None:
        qs = qs.exclude(pk=exclude_load.pk)
    return qs.prefetch_related("stops")


def active_loads_for_truck(truck, exclude_load=None):
    qs = Load.objects.filter(truck=truck, status__in=Load.ACTIVE_STATUSES)
    if exclude_load is not None:
        qs = qs.exclude(pk=exclude_load.pk)
    return qs.prefetch_related("stops")


def release_driver_if_idle(driver, exclude_load=None):
    """
    Put an EN_ROUTE driver back to AVAILABLE once nothing active holds them.

    OUT_OF_SERVICE and INACTIVE drivers are left alone. Returns True when the
    driver was released.
    """
    if driver is None:
        return False
    if active_loads_for_driver(driver, exclude_load=exclude_load).exists():
        return False

    released = Driver.objects.filter(
        pk=driver.pk, status=Driver.Status.EN_ROUTE
    ).update(status=Driver.Status.AVAILABLE, updated_at=timezone.now())
    if released:
        driver.status = Driver.Status.AVAILABLE
        logger.info("Driver %s released to AVAILABLE", driver.pk)
    return bool(released)


def driver_stats(driver):
    completed = Load.objects.filter(
        Q(driver=driver) | Q(team_driver=driver),
        status__in=Load.SETTLEABLE_STATUSES,
    )
    return {
        "active_loads": active_loads_for_driver(driver).count(),
        "completed_loads": completed.count(),
        "completed_miles": sum(completed.values_list("loaded_miles", flat=True)),
    }
