import logging

from django.db.models import Sum
from django.utils import timezone

from freight.models import AccessorialType, Customer, Load, LoadAccessorial, Stop
from freight.services.exceptions import BusinessRuleViolation, NotFound, ValidationError
from freight.services.rates import (
    ZERO,
    accessorial_total,
    fuel_surcharge,
    load_total,
    round_money,
    to_decimal,
)
from freight.services.transactions import unit_of_work

logger = logging.getLogger(__name__)

STOP_FIELDS = (
    "stop_type",
    "facility_name",
    "address",
    "city",
    "state",
    "zip_code",
    "appointment_start",
    "appointment_end",
)


def _validate_stops(stops):
    """
    Sanity checks before anything is saved:
    - at least 2 stops
    - at least one pickup and one delivery
    - appointment windows do not end before they start
    """
    if len(stops) < 2:
        raise ValidationError("At least 2 stops (Pickup and Delivery) are required.")

    types = {s.get("stop_type") for s in stops}
    if Stop.StopType.PICKUP not in types or Stop.StopType.DELIVERY not in types:
        raise ValidationError("Route must include at least 1 Pickup and 1 Delivery stop.")

    for s in stops:
        start, end = s.get("appointment_start"), s.get("appointment_end")
        if start and end and end < start:
            raise ValidationError(
                f"Stop in {s.get('city') or 'unknown city'} ends before it starts."
            )


def _number(value, name):
    try:
        number = to_decimal(value)
    except ArithmeticError:
        number = None
    if number is None or not number.is_finite():
        raise ValidationError(f"{name} must be a number")
    return number


def _money(value, name):
    try:
        amount = round_money(_number(value, name))
    except ArithmeticError:
        raise ValidationError(f"{name} is out of range")
    if amount < 0:
        raise ValidationError(f"{name} cannot be negative")
    return amount


def _lock_load(load_id):
    try:
        return Load.objects.select_for_update().get(pk=load_id)
    except Load.DoesNotExist:
        raise NotFound(f"Load {load_id} not found")


def create_load(
    *,
    customer_id,
    rate_amount,
    stops,
    reference_number=None,
    rate_type=Load.RateType.FLAT,
    fuel_surcharge_amount=None,
    fuel_surcharge_pct=None,
    loaded_miles=0,
    empty_miles=0,
    dispatcher=None,
    special_instructions="",
    confidence_score=None,
    source_document="",
):
    """
    Atomic create: Load + Stops, status OPEN.

    ``stops`` is an ordered list of dicts keyed by STOP_FIELDS; sequence is
    taken from the list order. A fuel surcharge percentage, when given, wins
    over a fixed amount.
    """
    _validate_stops(stops)
    rate = _money(rate_amount, "rate_amount")
    if fuel_surcharge_pct is not None:
        fsc = fuel_surcharge(rate, _number(fuel_surcharge_pct, "fuel_surcharge_pct"))
    else:
        fsc = _money(fuel_surcharge_amount or 0, "fuel_surcharge_amount")

    try:
        customer = Customer.objects.get(pk=customer_id)
    except Customer.DoesNotExist:
        raise NotFound(f"Customer {customer_id} not found")

    with unit_of_work():
        load = Load.objects.create(
            reference_number=reference_number
            or f"LD-{timezone.now():%Y%m%d%H%M%S%f}",
            customer=customer,
            status=Load.Status.OPEN,
            rate_amount=rate,
            rate_type=rate_type,
            fuel_surcharge_amount=fsc,
            total_amount=load_total(rate, fsc, ZERO),
            loaded_miles=loaded_miles or 0,
            empty_miles=empty_miles or 0,
            dispatcher=dispatcher,
            special_instructions=special_instructions,
            confidence_score=confidence_score,
            source_document=source_document,
        )
        Stop.objects.bulk_create(
            [
                Stop(
                    load=load,
                    sequence=i,
                    **{k: s[k] for k in STOP_FIELDS if s.get(k) is not None},
                )
                for i, s in enumerate(stops, start=1)
            ]
        )

    logger.info("Load %s created for customer %s", load.reference_number, customer.pk)
    return load


def recalculate_total(load):
    """total = rate + fuel surcharge + sum of accessorial totals."""
    accessorials = load.accessorials.aggregate(s=Sum("total"))["s"] or ZERO
    load.total_amount = load_total(load.rate_amount, load.fuel_surcharge_amount, accessorials)
    load.save(update_fields=["total_amount", "updated_at"])
    return load.total_amount


def update_load(
    load_id,
    *,
    rate_amount=None,
    fuel_surcharge_amount=None,
    fuel_surcharge_pct=None,
    loaded_miles=None,
    empty_miles=None,
    exclude_from_settlement=None,
    special_instructions=None,
):
    """
    Change rate, miles or settlement flags on an existing load.

    A load already on an invoice or a settlement cannot have its rate
    zeroed, since the rollup was computed from it.
    """
    with unit_of_work():
        load = _lock_load(load_id)

        if rate_amount is not None:
            rate = _money(rate_amount, "rate_amount")
            if rate == 0 and (load.invoice_id or load.settlement_id):
                raise BusinessRuleViolation(
                    "Cannot zero the rate on a load that is invoiced or settled"
                )
            load.rate_amount = rate

        if fuel_surcharge_pct is not None:
            load.fuel_surcharge_amount = fuel_surcharge(
                load.rate_amount, _number(fuel_surcharge_pct, "fuel_surcharge_pct")
            )
        elif fuel_surcharge_amount is not None:
            load.fuel_surcharge_amount = _money(fuel_surcharge_amount, "fuel_surcharge_amount")

        for name, value in (
            ("loaded_miles", loaded_miles),
            ("empty_miles", empty_miles),
        ):
            if value is not None:
                try:
                    value = int(value)
                except (TypeError, ValueError):
                    raise ValidationError(f"{name} must be a whole number")
                if value < 0:
                    raise ValidationError(f"{name} cannot be negative")
                setattr(load, name, value)

        if exclude_from_settlement is not None:
            load.exclude_from_settlement = bool(exclude_from_settlement)
        if special_instructions is not None:
            load.special_instructions = special_instructions

        load.save()
        recalculate_total(load)
    return load


def add_accessorial(load_id, accessorial_type_id, *, rate=None, quantity=1, description=""):
    """Attach a charge; rate defaults to the type's default amount."""
    with unit_of_work():
        load = _lock_load(load_id)
        if load.invoice_id:
            raise BusinessRuleViolation("Cannot change charges on an invoiced load")
        try:
            acc_type = AccessorialType.objects.get(pk=accessorial_type_id, is_active=True)
        except AccessorialType.DoesNotExist:
            raise NotFound(f"Accessorial type {accessorial_type_id} not found")

        rate = _number(acc_type.default_amount if rate is None else rate, "rate")
        quantity = _number(quantity, "quantity")
        if quantity <= 0:
            raise ValidationError("quantity must be positive")
        accessorial = LoadAccessorial.objects.create(
            load=load,
            accessorial_type=acc_type,
            description=description,
            quantity=quantity,
            rate=round_money(rate),
            total=accessorial_total(quantity, rate),
        )
        recalculate_total(load)

    logger.info(
        "Accessorial %s (%s) added to load %s",
        acc_type.code,
        accessorial.total,
        load.reference_number,
    )
    return accessorial


def remove_accessorial(load_id, accessorial_id):
    with unit_of_work():
        load = _lock_load(load_id)
        if load.invoice_id:
            raise BusinessRuleViolation("Cannot change charges on an invoiced load")
        deleted, _ = LoadAccessorial.objects.filter(pk=accessorial_id, load=load).delete()
        if not deleted:
            raise NotFound(f"Accessorial {accessorial_id} not found on load {load_id}")
        recalculate_total(load)
    return load


def delete_load(load_id):
    """Hard delete, only for OPEN or CANCELLED loads that were never billed or settled."""
    with unit_of_work():
        load = _lock_load(load_id)
        if load.status not in Load.DELETABLE_STATUSES:
            raise BusinessRuleViolation(
                f"Cannot delete load with status {load.status}. "
                "Only OPEN or CANCELLED loads can be deleted."
            )
        if load.invoice_id or load.settlement_id:
            raise BusinessRuleViolation("Cannot delete a load linked to an invoice or settlement")
        reference = load.reference_number
        load.delete()
    logger.info("Load %s deleted", reference)
