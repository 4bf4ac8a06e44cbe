from django.contrib import admin

from .models import (
    AccessorialType,
    Carrier,
    Customer,
    DeductionType,
    Driver,
    DriverDeduction,
    Invoice,
    InvoiceLineItem,
    Load,
    LoadAccessorial,
    Settlement,
    SettlementLineItem,
    Stop,
    Vehicle,
)

admin.site.register(Customer)
admin.site.register(Carrier)
admin.site.register(Vehicle)
admin.site.register(AccessorialType)
admin.site.register(DeductionType)


class StopInline(admin.TabularInline):
    model = Stop
    extra = 0


class LoadAccessorialInline(admin.TabularInline):
    model = LoadAccessorial
    extra = 0


@admin.register(Load)
class LoadAdmin(admin.ModelAdmin):
    list_display = ("reference_number", "status", "customer", "driver", "total_amount")
    list_filter = ("status",)
    search_fields = ("reference_number",)
    # status and rollup links are written by the services only
    readonly_fields = ("status", "settlement", "invoice", "total_amount")
    inlines = [StopInline, LoadAccessorialInline]


class DriverDeductionInline(admin.TabularInline):
    model = DriverDeduction
    extra = 0


@admin.register(Driver)
class DriverAdmin(admin.ModelAdmin):
    list_display = ("full_name", "status", "pay_model", "pay_rate", "team_driver")
    list_filter = ("status", "pay_model")
    readonly_fields = ("team_driver",)
    inlines = [DriverDeductionInline]


class SettlementLineItemInline(admin.TabularInline):
    model = SettlementLineItem
    extra = 0
    can_delete = False


@admin.register(Settlement)
class SettlementAdmin(admin.ModelAdmin):
    list_display = ("settlement_number", "driver", "period_start", "period_end", "status", "net_pay")
    list_filter = ("status",)
    inlines = [SettlementLineItemInline]


class InvoiceLineItemInline(admin.TabularInline):
    model = InvoiceLineItem
    extra = 0
    can_delete = False


@admin.register(Invoice)
class InvoiceAdmin(admin.ModelAdmin):
    list_display = ("invoice_number", "customer", "status", "due_date", "total_amount", "balance_due")
    list_filter = ("status",)
    inlines = [InvoiceLineItemInline]
