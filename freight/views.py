"""
JSON endpoints over the freight services.

Views stay thin: parse the request, call one service, serialize the result.
Every ServiceError becomes a JSON error body with the error's HTTP status.
"""

import json
import logging
from functools import wraps

from django.contrib.auth.decorators import login_required
from django.http import JsonResponse
from django.utils.dateparse import parse_date, parse_datetime
from django.views.decorators.http import require_GET, require_POST

from freight.models import Driver, Load
from freight.policies import can_dispatch, can_settle
from freight.services import assignment, invoices, loads, settlements
from freight.services.conflicts import driver_stats
from freight.services.exceptions import NotFound, ServiceError, ValidationError
from freight.services.state_machine import available_transitions

logger = logging.getLogger(__name__)


def service_view(permission=None):
    """Login, role check and ServiceError -> JSON translation for one view."""

    def decorator(view):
        @wraps(view)
        def wrapped(request, *args, **kwargs):
            if permission is not None and not permission(request.user):
                return JsonResponse(
                    {"error": "You are not allowed to do this.", "code": "forbidden"},
                    status=403,
                )
            try:
                return view(request, *args, **kwargs)
            except ServiceError as exc:
                logger.info(
                    "%s refused (%s): %s", view.__name__, exc.code, exc.message
                )
                return JsonResponse(exc.as_dict(), status=exc.http_status)

        return login_required(wrapped)

    return decorator


# ============================================================================
# REQUEST PARSING
# ============================================================================


def _payload(request):
    if not request.body:
        return {}
    try:
        data = json.loads(request.body)
    except json.JSONDecodeError:
        raise ValidationError("Request body must be valid JSON")
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _int(data, key, required=False):
    value = data.get(key)
    if value in (None, ""):
        if required:
            raise ValidationError(f"{key} is required")
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{key} must be an integer")


def _int_list(data, key):
    values = data.get(key)
    if values is None:
        return None
    if not isinstance(values, list):
        raise ValidationError(f"{key} must be a list")
    return [_int({key: v}, key, required=True) for v in values]


def _datetime(value, key, required=False):
    if not value:
        if required:
            raise ValidationError(f"{key} is required")
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be an ISO 8601 datetime")
    try:
        parsed = parse_datetime(value)
    except ValueError:
        parsed = None
    if parsed is None:
        raise ValidationError(f"{key} must be an ISO 8601 datetime")
    return parsed


def _date(value, key):
    if not value:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a date (YYYY-MM-DD)")
    try:
        parsed = parse_date(value)
    except ValueError:
        parsed = None
    if parsed is None:
        raise ValidationError(f"{key} must be a date (YYYY-MM-DD)")
    return parsed


# ============================================================================
# SERIALIZERS
# ============================================================================


def serialize_load(load):
    start, end = load.window
    return {
        "id": load.pk,
        "reference_number": load.reference_number,
        "status": load.status,
        "available_transitions": available_transitions(load.status),
        "customer_id": load.customer_id,
        "driver_id": load.driver_id,
        "team_driver_id": load.team_driver_id,
        "truck_id": load.truck_id,
        "trailer_id": load.trailer_id,
        "carrier_id": load.carrier_id,
        "carrier_rate": load.carrier_rate,
        "rate_amount": load.rate_amount,
        "fuel_surcharge_amount": load.fuel_surcharge_amount,
        "total_amount": load.total_amount,
        "loaded_miles": load.loaded_miles,
        "window_start": start,
        "window_end": end,
        "assigned_at": load.assigned_at,
        "picked_up_at": load.picked_up_at,
        "delivered_at": load.delivered_at,
        "cancellation_reason": load.cancellation_reason,
        "invoice_id": load.invoice_id,
        "settlement_id": load.settlement_id,
    }


def serialize_settlement(settlement, with_lines=False):
    data = {
        "id": settlement.pk,
        "settlement_number": settlement.settlement_number,
        "driver_id": settlement.driver_id,
        "period_start": settlement.period_start,
        "period_end": settlement.period_end,
        "status": settlement.status,
        "gross_pay": settlement.gross_pay,
        "total_deductions": settlement.total_deductions,
        "net_pay": settlement.net_pay,
        "total_miles": settlement.total_miles,
        "total_loads": settlement.total_loads,
        "approved_at": settlement.approved_at,
        "paid_at": settlement.paid_at,
    }
    if with_lines:
        data["line_items"] = [
            {
                "load_id": line.load_id,
                "line_type": line.line_type,
                "description": line.description,
                "amount": line.amount,
                "miles": line.miles,
            }
            for line in settlement.line_items.all()
        ]
    return data


def serialize_invoice(invoice, with_lines=False):
    data = {
        "id": invoice.pk,
        "invoice_number": invoice.invoice_number,
        "customer_id": invoice.customer_id,
        "customer_name": invoice.customer.company_name,
        "status": invoice.status,
        "issue_date": invoice.issue_date,
        "due_date": invoice.due_date,
        "subtotal": invoice.subtotal,
        "fuel_surcharge_total": invoice.fuel_surcharge_total,
        "accessorial_total": invoice.accessorial_total,
        "total_amount": invoice.total_amount,
        "amount_paid": invoice.amount_paid,
        "balance_due": invoice.balance_due,
        "sent_at": invoice.sent_at,
        "paid_at": invoice.paid_at,
    }
    if with_lines:
        data["line_items"] = [
            {
                "load_id": line.load_id,
                "line_type": line.line_type,
                "description": line.description,
                "quantity": line.quantity,
                "unit_price": line.unit_price,
                "amount": line.amount,
            }
            for line in invoice.line_items.all()
        ]
    return data


# ============================================================================
# LOADS
# ============================================================================


@require_POST
@service_view(can_dispatch)
def load_create(request):
    data = _payload(request)
    stops = data.get("stops") or []
    if not isinstance(stops, list):
        raise ValidationError("stops must be a list")
    parsed_stops = []
    for stop in stops:
        if not isinstance(stop, dict):
            raise ValidationError("each stop must be a JSON object")
        stop = dict(stop)
        stop["appointment_start"] = _datetime(stop.get("appointment_start"), "appointment_start")
        stop["appointment_end"] = _datetime(stop.get("appointment_end"), "appointment_end")
        parsed_stops.append(stop)

    if data.get("rate_amount") in (None, ""):
        raise ValidationError("rate_amount is required")

    load = loads.create_load(
        customer_id=_int(data, "customer_id", required=True),
        rate_amount=data["rate_amount"],
        stops=parsed_stops,
        reference_number=data.get("reference_number"),
        fuel_surcharge_amount=data.get("fuel_surcharge_amount"),
        fuel_surcharge_pct=data.get("fuel_surcharge_pct"),
        loaded_miles=_int(data, "loaded_miles") or 0,
        empty_miles=_int(data, "empty_miles") or 0,
        dispatcher=request.user,
        special_instructions=data.get("special_instructions", ""),
    )
    return JsonResponse(serialize_load(load), status=201)


@require_GET
@service_view()
def load_detail(request, load_id):
    try:
        load = Load.objects.prefetch_related("stops").get(pk=load_id)
    except Load.DoesNotExist:
        raise NotFound(f"Load {load_id} not found")
    return JsonResponse(serialize_load(load))


@require_POST
@service_view(can_dispatch)
def load_assign(request, load_id):
    data = _payload(request)
    load = assignment.assign_driver(
        load_id,
        _int(data, "driver_id", required=True),
        truck_id=_int(data, "truck_id"),
        trailer_id=_int(data, "trailer_id"),
        team_driver_id=_int(data, "team_driver_id"),
        assigned_by=request.user,
    )
    return JsonResponse(serialize_load(load))


@require_POST
@service_view(can_dispatch)
def load_change_status(request, load_id):
    data = _payload(request)
    if not data.get("status"):
        raise ValidationError("status is required")
    load = assignment.change_status(
        load_id,
        data["status"],
        carrier_id=_int(data, "carrier_id"),
        carrier_rate=data.get("carrier_rate"),
        reason=data.get("reason", ""),
    )
    return JsonResponse(serialize_load(load))


@require_POST
@service_view(can_dispatch)
def load_revert(request, load_id):
    load = assignment.revert_to_open(load_id)
    return JsonResponse(serialize_load(load))


@require_POST
@service_view(can_dispatch)
def load_delete(request, load_id):
    loads.delete_load(load_id)
    return JsonResponse({"deleted": load_id})


# ============================================================================
# DRIVERS
# ============================================================================


@require_GET
@service_view()
def driver_availability(request, driver_id):
    start = _datetime(request.GET.get("start"), "start", required=True)
    end = _datetime(request.GET.get("end"), "end", required=True)
    availability = assignment.check_driver_availability(
        driver_id, start, end, exclude_load_id=_int(request.GET, "exclude_load_id")
    )
    return JsonResponse(availability.as_dict())


@require_GET
@service_view()
def driver_summary(request, driver_id):
    try:
        driver = Driver.objects.get(pk=driver_id)
    except Driver.DoesNotExist:
        raise NotFound(f"Driver {driver_id} not found")
    return JsonResponse(
        {
            "id": driver.pk,
            "full_name": driver.full_name,
            "status": driver.status,
            "team_driver_id": driver.team_driver_id,
            **driver_stats(driver),
        }
    )


@require_POST
@service_view(can_dispatch)
def driver_pair(request, driver_id):
    data = _payload(request)
    driver, partner = assignment.pair_team_drivers(
        driver_id, _int(data, "partner_id", required=True)
    )
    return JsonResponse({"driver_id": driver.pk, "team_driver_id": partner.pk})


@require_POST
@service_view(can_dispatch)
def driver_unpair(request, driver_id):
    driver = assignment.unpair_team_driver(driver_id)
    return JsonResponse({"driver_id": driver.pk, "team_driver_id": None})


# ============================================================================
# SETTLEMENTS
# ============================================================================


@require_POST
@service_view(can_settle)
def settlements_generate(request):
    data = _payload(request)
    result = settlements.generate_settlements(
        data.get("period_start"),
        data.get("period_end"),
        request.user,
        driver_ids=_int_list(data, "driver_ids"),
    )
    return JsonResponse(result.as_dict(), status=201 if result.generated else 200)


@require_POST
@service_view(can_settle)
def settlement_approve(request, settlement_id):
    settlement = settlements.approve_settlement(settlement_id, approved_by=request.user)
    return JsonResponse(serialize_settlement(settlement))


@require_POST
@service_view(can_settle)
def settlement_pay(request, settlement_id):
    settlement = settlements.mark_settlement_paid(settlement_id)
    return JsonResponse(serialize_settlement(settlement))


@require_POST
@service_view(can_settle)
def settlement_delete(request, settlement_id):
    settlements.delete_settlement(settlement_id)
    return JsonResponse({"deleted": settlement_id})


# ============================================================================
# INVOICES
# ============================================================================


@require_GET
@service_view(can_settle)
def invoice_list(request):
    qs = invoices.list_invoices(
        status=request.GET.get("status"),
        customer_id=_int(request.GET, "customer_id"),
    )
    return JsonResponse({"invoices": [serialize_invoice(i) for i in qs]})


@require_POST
@service_view(can_settle)
def invoice_create(request):
    data = _payload(request)
    invoice = invoices.generate_invoice(
        _int(data, "customer_id", required=True),
        _int_list(data, "load_ids"),
        request.user,
        notes=data.get("notes", ""),
    )
    invoice = invoices.get_invoice(invoice.pk)
    return JsonResponse(serialize_invoice(invoice, with_lines=True), status=201)


@require_GET
@service_view(can_settle)
def invoice_detail(request, invoice_id):
    invoice = invoices.get_invoice(invoice_id)
    return JsonResponse(serialize_invoice(invoice, with_lines=True))


@require_POST
@service_view(can_settle)
def invoice_update(request, invoice_id):
    data = _payload(request)
    changes = {}
    if "notes" in data:
        changes["notes"] = data["notes"] or ""
    for key in ("issue_date", "due_date"):
        if data.get(key):
            changes[key] = _date(data[key], key)
    invoice = invoices.update_invoice(invoice_id, **changes)
    return JsonResponse(serialize_invoice(invoice))


@require_POST
@service_view(can_settle)
def invoice_change_status(request, invoice_id):
    data = _payload(request)
    if not data.get("status"):
        raise ValidationError("status is required")
    invoice = invoices.change_invoice_status(invoice_id, data["status"])
    return JsonResponse(serialize_invoice(invoice))


@require_POST
@service_view(can_settle)
def invoice_payment(request, invoice_id):
    data = _payload(request)
    if data.get("amount") in (None, ""):
        raise ValidationError("Valid payment amount is required")
    invoice = invoices.apply_payment(invoice_id, data["amount"])
    return JsonResponse(serialize_invoice(invoice))


@require_POST
@service_view(can_settle)
def invoice_delete(request, invoice_id):
    invoices.delete_invoice(invoice_id)
    return JsonResponse({"deleted": invoice_id})


@require_GET
@service_view(can_settle)
def invoice_aging(request):
    return JsonResponse({"customers": invoices.aging_report()})
