"""
Customer invoicing: generation, status lifecycle, payments and aging.
"""

import logging
from datetime import timedelta

from django.utils import timezone

from freight.conf import resolve
from freight.models import Customer, Invoice, InvoiceLineItem, Load
from freight.services.exceptions import (
    BusinessRuleViolation,
    InvalidTransition,
    NotFound,
    ValidationError,
)
from freight.services.numbering import create_numbered
from freight.services.rates import ZERO, round_money, to_decimal
from freight.services.transactions import unit_of_work

logger = logging.getLogger(__name__)

Status = Invoice.Status

INVOICE_TRANSITIONS = {
    Status.DRAFT: (Status.SENT, Status.VOID),
    Status.SENT: (Status.PAID, Status.OVERDUE, Status.VOID),
    Status.OVERDUE: (Status.PAID, Status.VOID),
    Status.PAID: (),
    Status.VOID: (),
}

PAYABLE_STATUSES = (Status.SENT, Status.OVERDUE)

AGING_BUCKETS = ("current", "1-30", "31-60", "61-90", "90+")


def is_valid_invoice_transition(current_status, new_status):
    return new_status in INVOICE_TRANSITIONS.get(current_status, ())


def available_invoice_transitions(current_status):
    return list(INVOICE_TRANSITIONS.get(current_status, ()))


def _lock_invoice(invoice_id):
    try:
        return Invoice.objects.select_for_update().get(pk=invoice_id)
    except Invoice.DoesNotExist:
        raise NotFound(f"Invoice {invoice_id} not found")


def _lines_for_load(load):
    rate = round_money(load.rate_amount)
    lines = [
        InvoiceLineItem(
            load=load,
            description=f"Freight charges - {load.reference_number}",
            line_type=InvoiceLineItem.LineType.LOAD_CHARGE,
            unit_price=rate,
            amount=rate,
        )
    ]

    fsc = round_money(load.fuel_surcharge_amount)
    if fsc > 0:
        lines.append(
            InvoiceLineItem(
                load=load,
                description=f"Fuel surcharge - {load.reference_number}",
                line_type=InvoiceLineItem.LineType.FUEL_SURCHARGE,
                unit_price=fsc,
                amount=fsc,
            )
        )

    for acc in load.accessorials.select_related("accessorial_type"):
        lines.append(
            InvoiceLineItem(
                load=load,
                description=f"{acc.accessorial_type.name} - {load.reference_number}",
                line_type=InvoiceLineItem.LineType.ACCESSORIAL,
                quantity=acc.quantity,
                unit_price=acc.rate,
                amount=acc.total,
            )
        )
    return lines


def generate_invoice(customer_id, load_ids=None, requested_by=None, *, notes="", issue_date=None, config=None):
    """
    Bill a customer's COMPLETED, not yet invoiced loads on one DRAFT invoice.

    ``load_ids`` narrows the selection; ids that are not eligible are left
    out. Raises ValidationError when nothing is left to bill.
    """
    config = resolve(config)
    try:
        customer = Customer.objects.get(pk=customer_id)
    except Customer.DoesNotExist:
        raise NotFound(f"Customer {customer_id} not found")

    with unit_of_work():
        qs = Load.objects.select_for_update().filter(
            customer=customer,
            status=Load.Status.COMPLETED,
            invoice__isnull=True,
        )
        if load_ids is not None:
            qs = qs.filter(pk__in=load_ids)
        loads = list(qs.order_by("delivered_at", "pk"))
        if not loads:
            raise ValidationError("No eligible loads found - they may already be invoiced")

        lines = []
        for load in loads:
            lines.extend(_lines_for_load(load))

        def _sum(line_type):
            return round_money(sum((line.amount for line in lines if line.line_type == line_type), ZERO))

        subtotal = _sum(InvoiceLineItem.LineType.LOAD_CHARGE)
        fsc_total = _sum(InvoiceLineItem.LineType.FUEL_SURCHARGE)
        acc_total = _sum(InvoiceLineItem.LineType.ACCESSORIAL)
        total = round_money(subtotal + fsc_total + acc_total)

        issued = issue_date or timezone.localdate()
        terms = (
            customer.payment_terms
            if customer.payment_terms is not None
            else config.default_payment_terms_days
        )

        invoice = create_numbered(
            Invoice,
            "invoice_number",
            config.invoice_prefix,
            customer=customer,
            status=Status.DRAFT,
            issue_date=issued,
            due_date=issued + timedelta(days=terms),
            subtotal=subtotal,
            fuel_surcharge_total=fsc_total,
            accessorial_total=acc_total,
            total_amount=total,
            amount_paid=ZERO,
            balance_due=total,
            notes=notes or "",
            created_by=requested_by,
        )
        for line in lines:
            line.invoice = invoice
        InvoiceLineItem.objects.bulk_create(lines)
        Load.objects.filter(pk__in=[load.pk for load in loads]).update(
            invoice=invoice, updated_at=timezone.now()
        )

    logger.info(
        "Invoice %s generated for customer %s: %d loads, total %s",
        invoice.invoice_number,
        customer.pk,
        len(loads),
        total,
    )
    return invoice


def change_invoice_status(invoice_id, new_status):
    if new_status not in Status.values:
        raise ValidationError(f"Unknown invoice status {new_status!r}")

    with unit_of_work():
        invoice = _lock_invoice(invoice_id)
        if not is_valid_invoice_transition(invoice.status, new_status):
            raise InvalidTransition(
                f"Cannot transition invoice from {invoice.status} to {new_status}"
            )
        old_status = invoice.status
        now = timezone.now()
        if new_status == Status.SENT and invoice.sent_at is None:
            invoice.sent_at = now
        if new_status == Status.PAID and invoice.paid_at is None:
            invoice.paid_at = now
        invoice.status = new_status
        invoice.save()

    logger.info("Invoice %s: %s -> %s", invoice.invoice_number, old_status, new_status)
    return invoice


def sweep_overdue(today=None, invoice_ids=None):
    """Flip SENT invoices past their due date to OVERDUE; returns how many."""
    today = today or timezone.localdate()
    qs = Invoice.objects.filter(status=Status.SENT, due_date__lt=today)
    if invoice_ids is not None:
        qs = qs.filter(pk__in=invoice_ids)
    count = qs.update(status=Status.OVERDUE, updated_at=timezone.now())
    if count:
        logger.info("%d invoice(s) marked overdue", count)
    return count


def list_invoices(*, status=None, customer_id=None, today=None):
    sweep_overdue(today)
    qs = Invoice.objects.select_related("customer")
    if status:
        qs = qs.filter(status=status)
    if customer_id:
        qs = qs.filter(customer_id=customer_id)
    return qs


def get_invoice(invoice_id, today=None):
    sweep_overdue(today, invoice_ids=[invoice_id])
    try:
        return (
            Invoice.objects.select_related("customer")
            .prefetch_related("line_items")
            .get(pk=invoice_id)
        )
    except Invoice.DoesNotExist:
        raise NotFound(f"Invoice {invoice_id} not found")


def apply_payment(invoice_id, amount):
    """
    Record a customer payment.

    The balance never goes below zero and an invoice whose balance reaches
    zero becomes PAID.
    """
    try:
        amount = round_money(to_decimal(amount))
    except ArithmeticError:
        raise ValidationError("Valid payment amount is required")
    if amount <= 0:
        raise ValidationError("Valid payment amount is required")

    with unit_of_work():
        invoice = _lock_invoice(invoice_id)
        if invoice.status not in PAYABLE_STATUSES:
            raise BusinessRuleViolation(
                f"Cannot record a payment on a {invoice.status} invoice"
            )
        if amount > invoice.balance_due:
            raise ValidationError(
                f"Payment amount ${amount} exceeds balance due ${invoice.balance_due}"
            )

        invoice.amount_paid = round_money(invoice.amount_paid + amount)
        invoice.balance_due = max(ZERO, round_money(invoice.total_amount - invoice.amount_paid))
        if invoice.balance_due == 0:
            invoice.status = Status.PAID
            invoice.paid_at = timezone.now()
        invoice.save()

    logger.info(
        "Payment of %s applied to invoice %s, balance %s",
        amount,
        invoice.invoice_number,
        invoice.balance_due,
    )
    return invoice


EDITABLE_FIELDS = ("notes", "issue_date", "due_date")


def update_invoice(invoice_id, **changes):
    """Edit notes or dates on a DRAFT invoice."""
    unknown = set(changes) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValidationError(f"Cannot edit {', '.join(sorted(unknown))}")
    if not changes:
        raise ValidationError("No valid fields to update")

    with unit_of_work():
        invoice = _lock_invoice(invoice_id)
        if invoice.status != Status.DRAFT:
            raise BusinessRuleViolation("Only draft invoices can be edited")
        for name, value in changes.items():
            setattr(invoice, name, value)
        if invoice.due_date < invoice.issue_date:
            raise ValidationError("due_date must not be before issue_date")
        invoice.save()
    return invoice


def delete_invoice(invoice_id):
    """Delete a DRAFT invoice and hand its loads back for billing."""
    with unit_of_work():
        invoice = _lock_invoice(invoice_id)
        if invoice.status != Status.DRAFT:
            raise BusinessRuleViolation("Only draft invoices can be deleted")
        number = invoice.invoice_number
        Load.objects.filter(invoice=invoice).update(invoice=None, updated_at=timezone.now())
        invoice.delete()
    logger.info("Invoice %s deleted", number)


def _bucket(days_past_due):
    if days_past_due <= 0:
        return "current"
    if days_past_due <= 30:
        return "1-30"
    if days_past_due <= 60:
        return "31-60"
    if days_past_due <= 90:
        return "61-90"
    return "90+"


def aging_report(today=None):
    """Open balances per customer, bucketed by days past due."""
    today = today or timezone.localdate()
    sweep_overdue(today)

    rows = {}
    open_invoices = (
        Invoice.objects.filter(status__in=PAYABLE_STATUSES, balance_due__gt=0)
        .select_related("customer")
        .order_by("customer__company_name", "due_date")
    )
    for invoice in open_invoices:
        row = rows.setdefault(
            invoice.customer_id,
            {
                "customer_id": invoice.customer_id,
                "customer_name": invoice.customer.company_name,
                **{bucket: ZERO for bucket in AGING_BUCKETS},
                "total": ZERO,
            },
        )
        bucket = _bucket((today - invoice.due_date).days)
        row[bucket] += invoice.balance_due
        row["total"] += invoice.balance_due

    return list(rows.values())
