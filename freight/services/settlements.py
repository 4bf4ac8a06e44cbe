"""
Driver settlements.

A settlement claims every eligible load of one driver in a closed period
(COMPLETED or INVOICED, delivered inside the period, not yet settled, not
excluded) and nets the driver's active deductions against the pay.

The eligible loads are locked while they are claimed. A second generation
for the same driver and period waits, then finds every load already
settled and produces nothing.
"""

import logging
from dataclasses import dataclass, field
from datetime import date

from django.db.models import Q
from django.utils import timezone
from django.utils.dateparse import parse_date

from freight.conf import resolve
from freight.models import Driver, DriverDeduction, Load, Settlement, SettlementLineItem
from freight.services.exceptions import (
    InvalidTransition,
    NotFound,
    ServiceError,
    ValidationError,
)
from freight.services.numbering import create_numbered
from freight.services.rates import ZERO, driver_pay, round_money
from freight.services.transactions import retry_on_contention, unit_of_work

logger = logging.getLogger(__name__)

SETTLEMENT_TRANSITIONS = {
    Settlement.Status.DRAFT: (Settlement.Status.APPROVED,),
    Settlement.Status.APPROVED: (Settlement.Status.PAID,),
    Settlement.Status.PAID: (),
}


@dataclass
class BatchResult:
    generated: list = field(default_factory=list)
    skipped: list = field(default_factory=list)
    errors: list = field(default_factory=list)

    def as_dict(self):
        return {
            "generated": [
                {
                    "driver_id": s.driver_id,
                    "settlement_id": s.pk,
                    "settlement_number": s.settlement_number,
                    "net_pay": s.net_pay,
                }
                for s in self.generated
            ],
            "skipped": self.skipped,
            "errors": self.errors,
        }


def _as_date(value, name):
    if isinstance(value, date):
        return value
    parsed = parse_date(value) if isinstance(value, str) else None
    if parsed is None:
        raise ValidationError(f"{name} must be a date (YYYY-MM-DD)")
    return parsed


def _period(period_start, period_end):
    start = _as_date(period_start, "period_start")
    end = _as_date(period_end, "period_end")
    if end < start:
        raise ValidationError("period_end must not be before period_start")
    return start, end


def _place(stop):
    return f"{stop.city}, {stop.state}" if stop.state else stop.city


def _describe_load(load):
    stops = list(load.stops.all())
    description = f"Load #{load.pk} - {load.reference_number}"
    if stops:
        description += f" ({_place(stops[0])} to {_place(stops[-1])})"
    return description


def active_deductions(driver, period_start, period_end):
    """Deductions switched on for the driver whose date range touches the period."""
    return (
        DriverDeduction.objects.filter(driver=driver, is_active=True)
        .filter(Q(start_date__isnull=True) | Q(start_date__lte=period_end))
        .filter(Q(end_date__isnull=True) | Q(end_date__gte=period_start))
        .select_related("deduction_type")
    )


def generate_settlement(driver_id, period_start, period_end, requested_by=None, *, config=None):
    """
    Build one DRAFT settlement for ``driver_id`` over the inclusive period.

    Returns None when the driver has no eligible loads; nothing is written
    in that case. Only loads where the driver is in the primary slot count.
    """
    config = resolve(config)
    start, end = _period(period_start, period_end)
    try:
        driver = Driver.objects.get(pk=driver_id)
    except Driver.DoesNotExist:
        raise NotFound(f"Driver {driver_id} not found")

    with unit_of_work():
        # delivered_at is matched by calendar date so the whole end day counts
        loads = list(
            Load.objects.select_for_update()
            .filter(
                driver=driver,
                status__in=Load.SETTLEABLE_STATUSES,
                settlement__isnull=True,
                exclude_from_settlement=False,
                delivered_at__date__gte=start,
                delivered_at__date__lte=end,
            )
            .order_by("delivered_at", "pk")
        )
        if not loads:
            logger.info(
                "No eligible loads for driver %s in %s..%s", driver.pk, start, end
            )
            return None

        lines = []
        gross = ZERO
        miles = 0
        for load in loads:
            pay = driver_pay(load, driver)
            gross += pay
            miles += load.loaded_miles
            lines.append(
                SettlementLineItem(
                    load=load,
                    description=_describe_load(load),
                    line_type=SettlementLineItem.LineType.LOAD_PAY,
                    amount=pay,
                    miles=load.loaded_miles,
                )
            )

        deducted = ZERO
        for deduction in active_deductions(driver, start, end):
            amount = round_money(abs(deduction.amount))
            deducted += amount
            description = deduction.deduction_type.name
            if deduction.notes:
                description += f" - {deduction.notes}"
            lines.append(
                SettlementLineItem(
                    description=description,
                    line_type=SettlementLineItem.LineType.DEDUCTION,
                    amount=-amount,
                )
            )

        settlement = create_numbered(
            Settlement,
            "settlement_number",
            config.settlement_prefix,
            driver=driver,
            period_start=start,
            period_end=end,
            status=Settlement.Status.DRAFT,
            gross_pay=round_money(gross),
            total_deductions=round_money(deducted),
            net_pay=round_money(gross - deducted),
            total_miles=miles,
            total_loads=len(loads),
            created_by=requested_by,
        )
        for line in lines:
            line.settlement = settlement
        SettlementLineItem.objects.bulk_create(lines)
        Load.objects.filter(pk__in=[load.pk for load in loads]).update(
            settlement=settlement, updated_at=timezone.now()
        )

    logger.info(
        "Settlement %s generated for driver %s: %d loads, net %s",
        settlement.settlement_number,
        driver.pk,
        len(loads),
        settlement.net_pay,
    )
    return settlement


def generate_settlements(period_start, period_end, requested_by=None, *, driver_ids=None, config=None):
    """
    Generate settlements for many drivers, one unit of work each.

    One driver failing never stops the batch; the failure is reported in
    ``errors`` next to what was generated and skipped.
    """
    config = resolve(config)
    start, end = _period(period_start, period_end)

    drivers = Driver.objects.order_by("full_name", "pk")
    if driver_ids is not None:
        drivers = drivers.filter(pk__in=driver_ids)

    result = BatchResult()
    for driver in drivers:
        try:
            settlement = retry_on_contention(
                generate_settlement,
                driver.pk,
                start,
                end,
                requested_by,
                config=config,
                attempts=config.contention_retries,
            )
        except ServiceError as exc:
            logger.warning("Settlement for driver %s failed: %s", driver.pk, exc.message)
            result.errors.append(
                {"driver_id": driver.pk, "driver_name": driver.full_name, "error": exc.message}
            )
            continue
        except Exception as exc:
            logger.exception("Settlement for driver %s failed", driver.pk)
            result.errors.append(
                {"driver_id": driver.pk, "driver_name": driver.full_name, "error": str(exc)}
            )
            continue

        if settlement is None:
            result.skipped.append(
                {
                    "driver_id": driver.pk,
                    "driver_name": driver.full_name,
                    "reason": "No eligible loads in period",
                }
            )
        else:
            result.generated.append(settlement)

    logger.info(
        "Settlement batch %s..%s: %d generated, %d skipped, %d errors",
        start,
        end,
        len(result.generated),
        len(result.skipped),
        len(result.errors),
    )
    return result


# ============================================================================
# LIFECYCLE
# ============================================================================


def _lock_settlement(settlement_id):
    try:
        return Settlement.objects.select_for_update().get(pk=settlement_id)
    except Settlement.DoesNotExist:
        raise NotFound(f"Settlement {settlement_id} not found")


def _check_settlement_transition(settlement, new_status):
    if new_status not in SETTLEMENT_TRANSITIONS.get(settlement.status, ()):
        raise InvalidTransition(
            f"Cannot move settlement from {settlement.status} to {new_status}"
        )


def approve_settlement(settlement_id, approved_by=None):
    with unit_of_work():
        settlement = _lock_settlement(settlement_id)
        _check_settlement_transition(settlement, Settlement.Status.APPROVED)
        settlement.status = Settlement.Status.APPROVED
        settlement.approved_by = approved_by
        settlement.approved_at = timezone.now()
        settlement.save()
    logger.info("Settlement %s approved", settlement.settlement_number)
    return settlement


def mark_settlement_paid(settlement_id):
    with unit_of_work():
        settlement = _lock_settlement(settlement_id)
        _check_settlement_transition(settlement, Settlement.Status.PAID)
        settlement.status = Settlement.Status.PAID
        settlement.paid_at = timezone.now()
        settlement.save()
    logger.info("Settlement %s paid", settlement.settlement_number)
    return settlement


def delete_settlement(settlement_id):
    """Throw away a DRAFT settlement; its loads become settleable again."""
    with unit_of_work():
        settlement = _lock_settlement(settlement_id)
        if settlement.status != Settlement.Status.DRAFT:
            raise InvalidTransition("Only draft settlements can be deleted")
        number = settlement.settlement_number
        Load.objects.filter(settlement=settlement).update(
            settlement=None, updated_at=timezone.now()
        )
        settlement.delete()
    logger.info("Settlement %s deleted", number)
