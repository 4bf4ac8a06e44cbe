from datetime import date, timedelta
from decimal import Decimal

import pytest
from django.utils import timezone

from freight.models import Invoice, InvoiceLineItem, Load, LoadAccessorial
from freight.services import invoices
from freight.services.exceptions import (
    BusinessRuleViolation,
    InvalidTransition,
    NotFound,
    ValidationError,
)

pytestmark = pytest.mark.django_db

TODAY = date(2025, 3, 1)


@pytest.fixture
def customer(customer_factory):
    return customer_factory()


@pytest.fixture
def completed_load(load_factory, customer):
    def make(**kwargs):
        kwargs.setdefault("customer", customer)
        kwargs.setdefault("status", Load.Status.COMPLETED)
        kwargs.setdefault("delivered_at", timezone.now())
        return load_factory(**kwargs)

    return make


@pytest.fixture
def sent_invoice(customer, completed_load):
    completed_load(rate_amount=Decimal("1000.00"))
    invoice = invoices.generate_invoice(customer.pk, issue_date=TODAY)
    return invoices.change_invoice_status(invoice.pk, Invoice.Status.SENT)


def test_generate_invoice_totals_and_lines(customer, completed_load, accessorial_type_factory, accountant):
    load = completed_load(
        rate_amount=Decimal("2000.00"),
        fuel_surcharge_amount=Decimal("150.00"),
        total_amount=Decimal("2225.00"),
    )
    LoadAccessorial.objects.create(
        load=load,
        accessorial_type=accessorial_type_factory(),
        quantity=Decimal("1"),
        rate=Decimal("75.00"),
        total=Decimal("75.00"),
    )

    invoice = invoices.generate_invoice(customer.pk, requested_by=accountant, issue_date=TODAY)

    assert invoice.status == Invoice.Status.DRAFT
    assert invoice.subtotal == Decimal("2000.00")
    assert invoice.fuel_surcharge_total == Decimal("150.00")
    assert invoice.accessorial_total == Decimal("75.00")
    assert invoice.total_amount == Decimal("2225.00")
    assert invoice.balance_due == Decimal("2225.00")
    assert invoice.amount_paid == Decimal("0.00")
    assert invoice.due_date == TODAY + timedelta(days=30)
    assert invoice.invoice_number.startswith("INV-")
    assert set(invoice.line_items.values_list("line_type", flat=True)) == {
        InvoiceLineItem.LineType.LOAD_CHARGE,
        InvoiceLineItem.LineType.FUEL_SURCHARGE,
        InvoiceLineItem.LineType.ACCESSORIAL,
    }
    load.refresh_from_db()
    assert load.invoice_id == invoice.pk
    # billing does not move the load on its own
    assert load.status == Load.Status.COMPLETED


def test_customer_payment_terms_override_default(customer_factory, completed_load):
    customer = customer_factory(payment_terms=15)
    completed_load(customer=customer)

    invoice = invoices.generate_invoice(customer.pk, issue_date=TODAY)

    assert invoice.due_date == TODAY + timedelta(days=15)


def test_only_completed_uninvoiced_loads_of_the_customer(customer, customer_factory, completed_load):
    wanted = completed_load()
    completed_load(status=Load.Status.IN_TRANSIT)
    completed_load(customer=customer_factory())

    invoice = invoices.generate_invoice(customer.pk, issue_date=TODAY)

    assert list(invoice.loads.values_list("pk", flat=True)) == [wanted.pk]
    # nothing left to bill now
    with pytest.raises(ValidationError):
        invoices.generate_invoice(customer.pk, issue_date=TODAY)


def test_load_ids_narrow_the_selection(customer, completed_load):
    first = completed_load()
    completed_load()

    invoice = invoices.generate_invoice(customer.pk, load_ids=[first.pk], issue_date=TODAY)

    assert list(invoice.loads.values_list("pk", flat=True)) == [first.pk]


def test_unknown_customer(db):
    with pytest.raises(NotFound):
        invoices.generate_invoice(999999)


# ============================================================================
# STATUS
# ============================================================================


def test_sending_stamps_sent_at_once(sent_invoice):
    first_sent = sent_invoice.sent_at
    assert first_sent is not None
    with pytest.raises(InvalidTransition):
        invoices.change_invoice_status(sent_invoice.pk, Invoice.Status.SENT)


@pytest.mark.parametrize(
    "current, new",
    [
        (Invoice.Status.DRAFT, Invoice.Status.PAID),
        (Invoice.Status.PAID, Invoice.Status.VOID),
        (Invoice.Status.VOID, Invoice.Status.SENT),
        (Invoice.Status.OVERDUE, Invoice.Status.SENT),
    ],
)
def test_invalid_invoice_transitions(current, new):
    assert not invoices.is_valid_invoice_transition(current, new)


def test_overdue_sweep_flips_only_past_due_sent_invoices(sent_invoice):
    assert invoices.sweep_overdue(today=sent_invoice.due_date) == 0
    assert invoices.sweep_overdue(today=sent_invoice.due_date + timedelta(days=1)) == 1

    sent_invoice.refresh_from_db()
    assert sent_invoice.status == Invoice.Status.OVERDUE


def test_reads_sweep_overdue_first(sent_invoice):
    late = sent_invoice.due_date + timedelta(days=3)

    invoice = invoices.get_invoice(sent_invoice.pk, today=late)
    assert invoice.status == Invoice.Status.OVERDUE

    statuses = [i.status for i in invoices.list_invoices(today=late)]
    assert statuses == [Invoice.Status.OVERDUE]


def test_get_missing_invoice(db):
    with pytest.raises(NotFound):
        invoices.get_invoice(999999)


# ============================================================================
# PAYMENTS
# ============================================================================


def test_partial_then_full_payment(sent_invoice):
    invoice = invoices.apply_payment(sent_invoice.pk, "400.00")
    assert invoice.amount_paid == Decimal("400.00")
    assert invoice.balance_due == Decimal("600.00")
    assert invoice.status == Invoice.Status.SENT

    invoice = invoices.apply_payment(sent_invoice.pk, Decimal("600.00"))
    assert invoice.balance_due == Decimal("0.00")
    assert invoice.status == Invoice.Status.PAID
    assert invoice.paid_at is not None


def test_overdue_invoice_can_be_paid(sent_invoice):
    invoices.sweep_overdue(today=sent_invoice.due_date + timedelta(days=1))
    invoice = invoices.apply_payment(sent_invoice.pk, "1000.00")
    assert invoice.status == Invoice.Status.PAID


@pytest.mark.parametrize("amount", ["0", "-5", "abc"])
def test_payment_amount_must_be_positive(sent_invoice, amount):
    with pytest.raises(ValidationError):
        invoices.apply_payment(sent_invoice.pk, amount)


def test_overpayment_is_refused(sent_invoice):
    with pytest.raises(ValidationError):
        invoices.apply_payment(sent_invoice.pk, "1000.01")
    sent_invoice.refresh_from_db()
    assert sent_invoice.amount_paid == Decimal("0.00")


def test_payment_on_draft_is_refused(customer, completed_load):
    completed_load()
    invoice = invoices.generate_invoice(customer.pk, issue_date=TODAY)
    with pytest.raises(BusinessRuleViolation):
        invoices.apply_payment(invoice.pk, "10.00")


# ============================================================================
# EDIT / DELETE
# ============================================================================


def test_draft_can_be_edited(customer, completed_load):
    completed_load()
    invoice = invoices.generate_invoice(customer.pk, issue_date=TODAY)

    invoice = invoices.update_invoice(
        invoice.pk, notes="PO 4411", due_date=TODAY + timedelta(days=45)
    )

    assert invoice.notes == "PO 4411"
    assert invoice.due_date == TODAY + timedelta(days=45)


def test_sent_invoice_cannot_be_edited(sent_invoice):
    with pytest.raises(BusinessRuleViolation):
        invoices.update_invoice(sent_invoice.pk, notes="late change")


def test_edit_rejects_unknown_fields(sent_invoice):
    with pytest.raises(ValidationError):
        invoices.update_invoice(sent_invoice.pk, total_amount=Decimal("1"))


def test_deleting_draft_returns_loads_for_billing(customer, completed_load):
    load = completed_load()
    invoice = invoices.generate_invoice(customer.pk, issue_date=TODAY)

    invoices.delete_invoice(invoice.pk)

    load.refresh_from_db()
    assert load.invoice_id is None
    assert not InvoiceLineItem.objects.exists()
    assert invoices.generate_invoice(customer.pk, issue_date=TODAY) is not None


def test_sent_invoice_cannot_be_deleted(sent_invoice):
    with pytest.raises(BusinessRuleViolation):
        invoices.delete_invoice(sent_invoice.pk)


# ============================================================================
# AGING
# ============================================================================


def test_aging_buckets(customer, completed_load):
    # due dates land 0, 10, 45, 75 and 120 days before the report date
    report_day = TODAY + timedelta(days=200)
    for days_late in (0, 10, 45, 75, 120):
        completed_load(rate_amount=Decimal("100.00"))
        invoice = invoices.generate_invoice(
            customer.pk, issue_date=report_day - timedelta(days=30 + days_late)
        )
        invoices.change_invoice_status(invoice.pk, Invoice.Status.SENT)

    [row] = invoices.aging_report(today=report_day)

    assert row["customer_id"] == customer.pk
    assert row["current"] == Decimal("100.00")
    assert row["1-30"] == Decimal("100.00")
    assert row["31-60"] == Decimal("100.00")
    assert row["61-90"] == Decimal("100.00")
    assert row["90+"] == Decimal("100.00")
    assert row["total"] == Decimal("500.00")


def test_failure_after_invoice_insert_rolls_everything_back(customer, completed_load, monkeypatch):
    load = completed_load()

    def failing_bulk_create(objs, *args, **kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(InvoiceLineItem.objects, "bulk_create", failing_bulk_create)

    with pytest.raises(RuntimeError):
        invoices.generate_invoice(customer.pk, issue_date=TODAY)

    assert not Invoice.objects.exists()
    load.refresh_from_db()
    assert load.invoice_id is None
