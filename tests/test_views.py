import json
from datetime import datetime
from datetime import timezone as dt_timezone
from decimal import Decimal

import pytest
from django.urls import reverse

from freight.models import Driver, Invoice, Load

pytestmark = pytest.mark.django_db


def post_json(client, url, data=None):
    return client.post(url, data=json.dumps(data or {}), content_type="application/json")


@pytest.fixture
def dispatcher_client(client, dispatcher):
    client.force_login(dispatcher)
    return client


@pytest.fixture
def accountant_client(client, accountant):
    client.force_login(accountant)
    return client


def test_anonymous_user_is_redirected_to_login(client, load_factory):
    load = load_factory()
    response = client.get(reverse("load_detail", args=[load.pk]))
    assert response.status_code == 302


def test_load_detail_lists_available_transitions(dispatcher_client, load_factory):
    load = load_factory()
    response = dispatcher_client.get(reverse("load_detail", args=[load.pk]))

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == Load.Status.OPEN
    assert set(body["available_transitions"]) == {"SCHEDULED", "BROKERED", "TONU", "CANCELLED"}


def test_missing_load_is_404_json(dispatcher_client):
    response = dispatcher_client.get(reverse("load_detail", args=[999999]))
    assert response.status_code == 404
    assert response.json()["code"] == "not_found"


def test_create_load(dispatcher_client, customer_factory):
    customer = customer_factory()
    response = post_json(
        dispatcher_client,
        reverse("load_create"),
        {
            "customer_id": customer.pk,
            "rate_amount": "1800.00",
            "loaded_miles": 300,
            "stops": [
                {"stop_type": "PICKUP", "city": "Dallas", "state": "TX",
                 "appointment_start": "2025-01-15T08:00:00Z"},
                {"stop_type": "DELIVERY", "city": "Austin", "state": "TX",
                 "appointment_start": "2025-01-15T14:00:00Z",
                 "appointment_end": "2025-01-15T15:00:00Z"},
            ],
        },
    )

    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "OPEN"
    assert body["total_amount"] == "1800.00"
    assert body["window_end"].startswith("2025-01-15T15:00:00")


def test_assign_then_conflict_returns_409(dispatcher_client, driver_factory, load_with_window, at):
    driver = driver_factory()
    first = load_with_window(at(10), at(14))
    second = load_with_window(at(12), at(16))

    ok = post_json(dispatcher_client, reverse("load_assign", args=[first.pk]), {"driver_id": driver.pk})
    assert ok.status_code == 200
    assert ok.json()["status"] == "SCHEDULED"

    clash = post_json(dispatcher_client, reverse("load_assign", args=[second.pk]), {"driver_id": driver.pk})
    assert clash.status_code == 409
    body = clash.json()
    assert body["code"] == "scheduling_conflict"
    assert [c["load_id"] for c in body["conflicts"]] == [first.pk]


def test_status_change_errors_are_400(dispatcher_client, load_factory):
    load = load_factory()

    rule = post_json(dispatcher_client, reverse("load_change_status", args=[load.pk]), {"status": "SCHEDULED"})
    assert rule.status_code == 400
    assert rule.json()["code"] == "business_rule_violation"

    illegal = post_json(dispatcher_client, reverse("load_change_status", args=[load.pk]), {"status": "COMPLETED"})
    assert illegal.status_code == 400
    assert illegal.json()["code"] == "invalid_transition"


def test_bad_json_is_validation_error(dispatcher_client, load_factory):
    load = load_factory()
    response = dispatcher_client.post(
        reverse("load_assign", args=[load.pk]), data="{not json", content_type="application/json"
    )
    assert response.status_code == 400
    assert response.json()["code"] == "validation_error"


def test_get_on_post_only_endpoint_is_405(dispatcher_client, load_factory):
    load = load_factory()
    response = dispatcher_client.get(reverse("load_assign", args=[load.pk]))
    assert response.status_code == 405


def test_driver_availability(dispatcher_client, driver_factory, load_with_window, at):
    driver = driver_factory(status=Driver.Status.EN_ROUTE)
    load_with_window(at(10), at(14), driver=driver, status=Load.Status.SCHEDULED)
    url = reverse("driver_availability", args=[driver.pk])

    busy = dispatcher_client.get(url, {"start": at(12).isoformat(), "end": at(16).isoformat()})
    free = dispatcher_client.get(url, {"start": at(14).isoformat(), "end": at(18).isoformat()})

    assert busy.json()["available"] is False
    assert free.json()["available"] is True


def test_dispatcher_cannot_run_settlements(dispatcher_client):
    response = post_json(
        dispatcher_client,
        reverse("settlements_generate"),
        {"period_start": "2025-01-13", "period_end": "2025-01-19"},
    )
    assert response.status_code == 403


def test_accountant_generates_settlements(accountant_client, driver_factory, load_factory):
    driver = driver_factory(pay_model=Driver.PayModel.CPM, pay_rate=Decimal("0.55"))
    load_factory(
        driver=driver,
        status=Load.Status.COMPLETED,
        loaded_miles=720,
        delivered_at=datetime(2025, 1, 15, 12, tzinfo=dt_timezone.utc),
    )

    response = post_json(
        accountant_client,
        reverse("settlements_generate"),
        {"period_start": "2025-01-13", "period_end": "2025-01-19"},
    )

    assert response.status_code == 201
    [generated] = response.json()["generated"]
    assert generated["driver_id"] == driver.pk
    assert generated["net_pay"] == "396.00"


def test_invoice_flow(accountant_client, load_factory):
    load = load_factory(status=Load.Status.COMPLETED, rate_amount=Decimal("500.00"))

    created = post_json(accountant_client, reverse("invoice_create"), {"customer_id": load.customer_id})
    assert created.status_code == 201
    invoice_id = created.json()["id"]
    assert created.json()["balance_due"] == "500.00"

    sent = post_json(accountant_client, reverse("invoice_change_status", args=[invoice_id]), {"status": "SENT"})
    assert sent.json()["status"] == Invoice.Status.SENT

    too_much = post_json(accountant_client, reverse("invoice_payment", args=[invoice_id]), {"amount": "600"})
    assert too_much.status_code == 400

    paid = post_json(accountant_client, reverse("invoice_payment", args=[invoice_id]), {"amount": "500"})
    assert paid.json()["status"] == Invoice.Status.PAID

    listing = accountant_client.get(reverse("invoice_list"))
    assert [i["id"] for i in listing.json()["invoices"]] == [invoice_id]


def test_non_numeric_carrier_rate_is_400(dispatcher_client, load_factory, carrier_factory):
    load = load_factory()
    response = post_json(
        dispatcher_client,
        reverse("load_change_status", args=[load.pk]),
        {"status": "BROKERED", "carrier_id": carrier_factory().pk, "carrier_rate": "abc"},
    )

    assert response.status_code == 400
    assert response.json()["code"] == "validation_error"
    load.refresh_from_db()
    assert load.status == Load.Status.OPEN


@pytest.mark.parametrize(
    "overrides, stop_overrides",
    [
        ({"fuel_surcharge_pct": "abc"}, {}),
        ({"fuel_surcharge_amount": "lots"}, {}),
        ({}, {"appointment_start": 12345}),
        ({}, {"appointment_start": "2025-13-45T08:00:00Z"}),
    ],
)
def test_malformed_load_input_is_400(dispatcher_client, customer_factory, overrides, stop_overrides):
    pickup = {"stop_type": "PICKUP", "city": "Dallas", "state": "TX",
              "appointment_start": "2025-01-15T08:00:00Z"}
    pickup.update(stop_overrides)
    payload = {
        "customer_id": customer_factory().pk,
        "rate_amount": "1800.00",
        "stops": [
            pickup,
            {"stop_type": "DELIVERY", "city": "Austin", "state": "TX",
             "appointment_start": "2025-01-15T14:00:00Z"},
        ],
    }
    payload.update(overrides)

    response = post_json(dispatcher_client, reverse("load_create"), payload)

    assert response.status_code == 400
    assert response.json()["code"] == "validation_error"
    assert not Load.objects.exists()


def test_malformed_availability_window_is_400(dispatcher_client, driver_factory):
    driver = driver_factory()
    response = dispatcher_client.get(
        reverse("driver_availability", args=[driver.pk]),
        {"start": "yesterday", "end": "2025-01-15T18:00:00Z"},
    )
    assert response.status_code == 400
    assert response.json()["code"] == "validation_error"
