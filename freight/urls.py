"""
URL routing for the dispatch & settlement API.

- /loads/<id>/...        dispatch actions on one load
- /drivers/<id>/...      availability and team pairing
- /settlements/...       driver pay rollups
- /invoices/...          customer billing
"""

from django.urls import path

from . import views

urlpatterns = [
    # Loads
    path("loads/", views.load_create, name="load_create"),
    path("loads/<int:load_id>/", views.load_detail, name="load_detail"),
    path("loads/<int:load_id>/assign/", views.load_assign, name="load_assign"),
    path("loads/<int:load_id>/status/", views.load_change_status, name="load_change_status"),
    path("loads/<int:load_id>/revert/", views.load_revert, name="load_revert"),
    path("loads/<int:load_id>/delete/", views.load_delete, name="load_delete"),
    # Drivers
    path(
        "drivers/<int:driver_id>/availability/",
        views.driver_availability,
        name="driver_availability",
    ),
    path("drivers/<int:driver_id>/", views.driver_summary, name="driver_summary"),
    path("drivers/<int:driver_id>/team/", views.driver_pair, name="driver_pair"),
    path("drivers/<int:driver_id>/team/remove/", views.driver_unpair, name="driver_unpair"),
    # Settlements
    path("settlements/generate/", views.settlements_generate, name="settlements_generate"),
    path(
        "settlements/<int:settlement_id>/approve/",
        views.settlement_approve,
        name="settlement_approve",
    ),
    path("settlements/<int:settlement_id>/pay/", views.settlement_pay, name="settlement_pay"),
    path(
        "settlements/<int:settlement_id>/delete/",
        views.settlement_delete,
        name="settlement_delete",
    ),
    # Invoices
    path("invoices/", views.invoice_list, name="invoice_list"),
    path("invoices/create/", views.invoice_create, name="invoice_create"),
    path("invoices/aging/", views.invoice_aging, name="invoice_aging"),
    path("invoices/<int:invoice_id>/", views.invoice_detail, name="invoice_detail"),
    path("invoices/<int:invoice_id>/edit/", views.invoice_update, name="invoice_update"),
    path(
        "invoices/<int:invoice_id>/status/",
        views.invoice_change_status,
        name="invoice_change_status",
    ),
    path("invoices/<int:invoice_id>/payment/", views.invoice_payment, name="invoice_payment"),
    path("invoices/<int:invoice_id>/delete/", views.invoice_delete, name="invoice_delete"),
]
