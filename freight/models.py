from decimal import Decimal

from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models


class BaseModel(models.Model):
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


class Customer(BaseModel):
    """Broker or shipper we bill."""

    class CustomerType(models.TextChoices):
        BROKER = "BROKER", "Broker"
        SHIPPER = "SHIPPER", "Shipper"
        PARTNER = "PARTNER", "Partner"

    company_name = models.CharField(max_length=200)
    customer_type = models.CharField(
        max_length=10, choices=CustomerType.choices, blank=True
    )
    mc_number = models.CharField(max_length=20, blank=True)
    contact_name = models.CharField(max_length=100, blank=True)
    email = models.EmailField(blank=True)

    # Billing
    payment_terms = models.PositiveIntegerField(
        null=True,
        blank=True,
        help_text="Net days until an invoice is due. Blank uses the default terms.",
    )
    is_active = models.BooleanField(default=True)

    def __str__(self):
        return self.company_name


class Carrier(BaseModel):
    """Outside carrier a load can be brokered to."""

    class Status(models.TextChoices):
        PROSPECT = "PROSPECT", "Prospect"
        ACTIVE = "ACTIVE", "Active"
        SUSPENDED = "SUSPENDED", "Suspended"
        INACTIVE = "INACTIVE", "Inactive"

    # carriers in these statuses may not take brokered freight
    BLOCKED_STATUSES = (Status.SUSPENDED, Status.INACTIVE)

    company_name = models.CharField(max_length=200)
    mc_number = models.CharField(max_length=20, blank=True)
    dot_number = models.CharField(max_length=20, blank=True)
    status = models.CharField(
        max_length=10, choices=Status.choices, default=Status.PROSPECT
    )
    notes = models.TextField(blank=True)

    def __str__(self):
        return self.company_name


class Vehicle(BaseModel):
    """Tractor or trailer unit in the in-house fleet."""

    class VehicleType(models.TextChoices):
        TRACTOR = "TRACTOR", "Tractor"
        TRAILER = "TRAILER", "Trailer"

    class Status(models.TextChoices):
        ACTIVE = "ACTIVE", "Active"
        IN_SHOP = "IN_SHOP", "In Shop"
        OUT_OF_SERVICE = "OUT_OF_SERVICE", "Out of Service"
        INACTIVE = "INACTIVE", "Inactive"

    UNASSIGNABLE_STATUSES = (Status.OUT_OF_SERVICE, Status.INACTIVE)

    unit_number = models.CharField(max_length=50, unique=True)
    vehicle_type = models.CharField(max_length=10, choices=VehicleType.choices)
    status = models.CharField(
        max_length=20, choices=Status.choices, default=Status.ACTIVE
    )
    vin = models.CharField(max_length=17, blank=True)
    license_plate = models.CharField(max_length=20, blank=True)

    def __str__(self):
        return f"{self.unit_number} ({self.get_vehicle_type_display()})"  # type: ignore


class Driver(BaseModel):
    """In-house truck driver and how they get paid."""

    class Status(models.TextChoices):
        AVAILABLE = "AVAILABLE", "Available"
        EN_ROUTE = "EN_ROUTE", "En Route"
        OUT_OF_SERVICE = "OUT_OF_SERVICE", "Out of Service"
        INACTIVE = "INACTIVE", "Inactive"

    class PayModel(models.TextChoices):
        CPM = "CPM", "Per Mile"
        PERCENTAGE = "PERCENTAGE", "% of Load"
        FLAT = "FLAT", "Flat Rate"

    UNASSIGNABLE_STATUSES = (Status.OUT_OF_SERVICE, Status.INACTIVE)

    full_name = models.CharField(max_length=120)
    phone = models.CharField(max_length=20, blank=True)
    email = models.EmailField(blank=True)
    license_number = models.CharField(max_length=50, blank=True)

    status = models.CharField(
        max_length=20, choices=Status.choices, default=Status.AVAILABLE
    )

    # Pay
    pay_model = models.CharField(max_length=10, choices=PayModel.choices)
    pay_rate = models.DecimalField(
        max_digits=10,
        decimal_places=4,
        help_text="Dollars per mile (CPM), percent of load (PERCENTAGE) or dollars per load (FLAT)",
    )
    minimum_per_mile = models.DecimalField(
        max_digits=6,
        decimal_places=4,
        null=True,
        blank=True,
        help_text="Pay floor in dollars per loaded mile",
    )

    # Team pairing. Written only by assignment.pair_team_drivers / unpair_team_driver,
    # which keep both sides pointing at each other.
    team_driver = models.ForeignKey(
        "self",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )

    def __str__(self):
        return self.full_name


class Load(BaseModel):
    """
    Freight load - the unit of work tracked from booking to billing.

    Status changes go through freight.services.assignment, never by direct
    assignment of ``status``.
    """

    class Status(models.TextChoices):
        OPEN = "OPEN", "Open"
        SCHEDULED = "SCHEDULED", "Scheduled"
        IN_PICKUP_YARD = "IN_PICKUP_YARD", "In Pickup Yard"
        IN_TRANSIT = "IN_TRANSIT", "In Transit"
        COMPLETED = "COMPLETED", "Completed"
        TONU = "TONU", "TONU (Truck Ordered Not Used)"
        CANCELLED = "CANCELLED", "Cancelled"
        INVOICED = "INVOICED", "Invoiced"
        BROKERED = "BROKERED", "Brokered"

    class RateType(models.TextChoices):
        FLAT = "FLAT", "Flat"
        CPM = "CPM", "Per Mile"
        PERCENTAGE = "PERCENTAGE", "Percentage"

    # a driver on a load in one of these statuses is occupied
    ACTIVE_STATUSES = (Status.SCHEDULED, Status.IN_PICKUP_YARD, Status.IN_TRANSIT)
    TERMINAL_STATUSES = (Status.TONU, Status.CANCELLED, Status.INVOICED)
    SETTLEABLE_STATUSES = (Status.COMPLETED, Status.INVOICED)
    DELETABLE_STATUSES = (Status.OPEN, Status.CANCELLED)

    reference_number = models.CharField(max_length=50, unique=True)
    status = models.CharField(
        max_length=20, choices=Status.choices, default=Status.OPEN
    )

    # Relationships
    customer = models.ForeignKey(
        Customer, on_delete=models.PROTECT, related_name="loads"
    )
    driver = models.ForeignKey(
        Driver,
        on_delete=models.PROTECT,
        related_name="loads",
        null=True,
        blank=True,
    )
    team_driver = models.ForeignKey(
        Driver,
        on_delete=models.PROTECT,
        related_name="team_loads",
        null=True,
        blank=True,
        help_text="Second driver on a team run",
    )
    truck = models.ForeignKey(
        Vehicle,
        on_delete=models.PROTECT,
        related_name="truck_loads",
        null=True,
        blank=True,
    )
    trailer = models.ForeignKey(
        Vehicle,
        on_delete=models.PROTECT,
        related_name="trailer_loads",
        null=True,
        blank=True,
    )
    carrier = models.ForeignKey(
        Carrier,
        on_delete=models.PROTECT,
        related_name="loads",
        null=True,
        blank=True,
        help_text="Set when the load is brokered out",
    )
    carrier_rate = models.DecimalField(
        max_digits=10, decimal_places=2, null=True, blank=True
    )
    dispatcher = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="dispatched_loads",
    )

    # Financial
    rate_amount = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(Decimal("0"))],
    )
    rate_type = models.CharField(
        max_length=10, choices=RateType.choices, default=RateType.FLAT
    )
    fuel_surcharge_amount = models.DecimalField(
        max_digits=10, decimal_places=2, default=Decimal("0.00")
    )
    total_amount = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        default=Decimal("0.00"),
        help_text="rate + fuel surcharge + accessorials (maintained by services)",
    )
    loaded_miles = models.PositiveIntegerField(default=0)
    empty_miles = models.PositiveIntegerField(default=0)

    # Financial rollups - a load is consumed by at most one of each
    settlement = models.ForeignKey(
        "Settlement",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="loads",
    )
    invoice = models.ForeignKey(
        "Invoice",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="loads",
    )
    exclude_from_settlement = models.BooleanField(default=False)

    # Milestone Timestamps
    assigned_at = models.DateTimeField(null=True, blank=True)
    picked_up_at = models.DateTimeField(null=True, blank=True)
    delivered_at = models.DateTimeField(null=True, blank=True)
    cancellation_reason = models.TextField(blank=True)

    # Import pipeline
    confidence_score = models.DecimalField(
        max_digits=5, decimal_places=2, null=True, blank=True
    )
    source_document = models.CharField(max_length=500, blank=True)

    special_instructions = models.TextField(blank=True)

    class Meta:
        indexes = [
            models.Index(fields=["status"]),
            models.Index(fields=["driver", "status"]),
            models.Index(fields=["customer", "status"]),
        ]

    def __str__(self):
        return f"{self.reference_number} - {self.get_status_display()}"  # type: ignore

    @property
    def window(self):
        """(start, end) of the occupied time window, from first and last stop."""
        stops = list(self.stops.all())
        if not stops:
            return None, None
        first, last = stops[0], stops[-1]
        return first.appointment_start, last.appointment_end or last.appointment_start

    @property
    def driver_ids(self):
        return [pk for pk in (self.driver_id, self.team_driver_id) if pk]


class Stop(BaseModel):
    """Pickup or delivery location with its appointment window."""

    class StopType(models.TextChoices):
        PICKUP = "PICKUP", "Pickup"
        DELIVERY = "DELIVERY", "Delivery"

    load = models.ForeignKey(Load, on_delete=models.CASCADE, related_name="stops")
    sequence = models.PositiveIntegerField()
    stop_type = models.CharField(max_length=10, choices=StopType.choices)

    facility_name = models.CharField(max_length=200, blank=True)
    address = models.CharField(max_length=200, blank=True)
    city = models.CharField(max_length=100, blank=True)
    state = models.CharField(max_length=2, blank=True)
    zip_code = models.CharField(max_length=10, blank=True)

    appointment_start = models.DateTimeField(null=True, blank=True)
    appointment_end = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["sequence"]
        constraints = [
            models.UniqueConstraint(
                fields=["load", "sequence"], name="unique_stop_sequence_per_load"
            )
        ]

    def __str__(self):
        return f"{self.load.reference_number} #{self.sequence} {self.city}, {self.state}"


class AccessorialType(BaseModel):
    code = models.CharField(max_length=30, unique=True)
    name = models.CharField(max_length=100)
    default_amount = models.DecimalField(
        max_digits=10, decimal_places=2, default=Decimal("0.00")
    )
    is_active = models.BooleanField(default=True)

    def __str__(self):
        return self.name


class LoadAccessorial(BaseModel):
    """
    Flat add-on charge (detention, lumper, layover...) billed with a load.

    ``total`` is signed so adjustments can be negative; it is always
    ``round2(quantity * rate)`` and feeds Load.total_amount.
    """

    load = models.ForeignKey(
        Load, on_delete=models.CASCADE, related_name="accessorials"
    )
    accessorial_type = models.ForeignKey(
        AccessorialType, on_delete=models.PROTECT, related_name="+"
    )
    description = models.TextField(blank=True)
    quantity = models.DecimalField(
        max_digits=10, decimal_places=2, default=Decimal("1")
    )
    rate = models.DecimalField(max_digits=10, decimal_places=2)
    total = models.DecimalField(max_digits=10, decimal_places=2)

    class Meta:
        ordering = ["id"]

    def __str__(self):
        return f"{self.accessorial_type} {self.load.reference_number}"


class DeductionType(BaseModel):
    code = models.CharField(max_length=30, unique=True)
    name = models.CharField(max_length=100)
    is_recurring = models.BooleanField(default=False)
    default_amount = models.DecimalField(
        max_digits=10, decimal_places=2, default=Decimal("0.00")
    )
    is_active = models.BooleanField(default=True)

    def __str__(self):
        return self.name


class DriverDeduction(BaseModel):
    """Recurring or one-off amount taken out of a driver's settlement."""

    driver = models.ForeignKey(
        Driver, on_delete=models.CASCADE, related_name="deductions"
    )
    deduction_type = models.ForeignKey(
        DeductionType, on_delete=models.PROTECT, related_name="+"
    )
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    is_active = models.BooleanField(default=True)
    start_date = models.DateField(null=True, blank=True)
    end_date = models.DateField(null=True, blank=True)
    notes = models.TextField(blank=True)

    class Meta:
        ordering = ["id"]

    def __str__(self):
        return f"{self.deduction_type} - {self.driver}"


class Settlement(BaseModel):
    """A driver's pay statement for one closed period."""

    class Status(models.TextChoices):
        DRAFT = "DRAFT", "Draft"
        APPROVED = "APPROVED", "Approved"
        PAID = "PAID", "Paid"

    settlement_number = models.CharField(max_length=30, unique=True)
    driver = models.ForeignKey(
        Driver, on_delete=models.PROTECT, related_name="settlements"
    )
    period_start = models.DateField()
    period_end = models.DateField()
    status = models.CharField(
        max_length=10, choices=Status.choices, default=Status.DRAFT
    )

    gross_pay = models.DecimalField(
        max_digits=12, decimal_places=2, default=Decimal("0.00")
    )
    total_deductions = models.DecimalField(
        max_digits=12, decimal_places=2, default=Decimal("0.00")
    )
    net_pay = models.DecimalField(
        max_digits=12, decimal_places=2, default=Decimal("0.00")
    )
    total_miles = models.PositiveIntegerField(default=0)
    total_loads = models.PositiveIntegerField(default=0)

    approved_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="approved_settlements",
    )
    approved_at = models.DateTimeField(null=True, blank=True)
    paid_at = models.DateTimeField(null=True, blank=True)
    notes = models.TextField(blank=True)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="created_settlements",
    )

    class Meta:
        ordering = ["-id"]

    def __str__(self):
        return f"{self.settlement_number} ({self.driver})"


class SettlementLineItem(BaseModel):
    class LineType(models.TextChoices):
        LOAD_PAY = "LOAD_PAY", "Load Pay"
        BONUS = "BONUS", "Bonus"
        FUEL_ADVANCE = "FUEL_ADVANCE", "Fuel Advance"
        DEDUCTION = "DEDUCTION", "Deduction"

    settlement = models.ForeignKey(
        Settlement, on_delete=models.CASCADE, related_name="line_items"
    )
    load = models.ForeignKey(
        Load,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="settlement_line_items",
    )
    description = models.TextField()
    line_type = models.CharField(
        max_length=15, choices=LineType.choices, default=LineType.LOAD_PAY
    )
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    miles = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ["id"]


class Invoice(BaseModel):
    """A customer's bill for one or more delivered loads."""

    class Status(models.TextChoices):
        DRAFT = "DRAFT", "Draft"
        SENT = "SENT", "Sent"
        OVERDUE = "OVERDUE", "Overdue"
        PAID = "PAID", "Paid"
        VOID = "VOID", "Void"

    invoice_number = models.CharField(max_length=30, unique=True)
    customer = models.ForeignKey(
        Customer, on_delete=models.PROTECT, related_name="invoices"
    )
    status = models.CharField(
        max_length=10, choices=Status.choices, default=Status.DRAFT
    )
    issue_date = models.DateField()
    due_date = models.DateField()

    subtotal = models.DecimalField(
        max_digits=12, decimal_places=2, default=Decimal("0.00")
    )
    fuel_surcharge_total = models.DecimalField(
        max_digits=12, decimal_places=2, default=Decimal("0.00")
    )
    accessorial_total = models.DecimalField(
        max_digits=12, decimal_places=2, default=Decimal("0.00")
    )
    total_amount = models.DecimalField(
        max_digits=12, decimal_places=2, default=Decimal("0.00")
    )
    amount_paid = models.DecimalField(
        max_digits=12, decimal_places=2, default=Decimal("0.00")
    )
    balance_due = models.DecimalField(
        max_digits=12, decimal_places=2, default=Decimal("0.00")
    )

    notes = models.TextField(blank=True)
    sent_at = models.DateTimeField(null=True, blank=True)
    paid_at = models.DateTimeField(null=True, blank=True)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="created_invoices",
    )

    class Meta:
        ordering = ["-id"]

    def __str__(self):
        return f"{self.invoice_number} ({self.customer})"


class InvoiceLineItem(BaseModel):
    class LineType(models.TextChoices):
        LOAD_CHARGE = "LOAD_CHARGE", "Load Charge"
        FUEL_SURCHARGE = "FUEL_SURCHARGE", "Fuel Surcharge"
        ACCESSORIAL = "ACCESSORIAL", "Accessorial"
        ADJUSTMENT = "ADJUSTMENT", "Adjustment"

    invoice = models.ForeignKey(
        Invoice, on_delete=models.CASCADE, related_name="line_items"
    )
    load = models.ForeignKey(
        Load,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="invoice_line_items",
    )
    description = models.TextField()
    line_type = models.CharField(
        max_length=15, choices=LineType.choices, default=LineType.LOAD_CHARGE
    )
    quantity = models.DecimalField(
        max_digits=10, decimal_places=2, default=Decimal("1")
    )
    unit_price = models.DecimalField(max_digits=10, decimal_places=2)
    amount = models.DecimalField(max_digits=10, decimal_places=2)

    class Meta:
        ordering = ["id"]
