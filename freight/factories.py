"""Factories for generating demo/test data with factory_boy and Faker.

Use sequences for unique identifiers and Faker for descriptive fields.
"""

from datetime import timedelta
from decimal import Decimal

import factory
from django.contrib.auth import get_user_model
from django.utils import timezone
from factory import Faker
from factory.django import DjangoModelFactory

from . import models


class UserFactory(DjangoModelFactory):
    class Meta:
        model = get_user_model()
        django_get_or_create = ("username",)

    username = factory.Sequence(lambda n: f"user{n}")
    email = factory.LazyAttribute(lambda obj: f"{obj.username}@example.com")
    role = "dispatcher"
    is_staff = True
    is_active = True

    @classmethod
    def _create(cls, model_class, *args, **kwargs):
        password = kwargs.pop("password", "password123")
        user = super()._create(model_class, *args, **kwargs)
        user.set_password(password)
        user.save()
        return user


class CustomerFactory(DjangoModelFactory):
    class Meta:
        model = models.Customer

    company_name = Faker("company")
    customer_type = models.Customer.CustomerType.BROKER
    mc_number = factory.Sequence(lambda n: f"MC{10000 + n}")
    contact_name = Faker("name")
    email = Faker("company_email")
    payment_terms = None


class CarrierFactory(DjangoModelFactory):
    class Meta:
        model = models.Carrier

    company_name = Faker("company")
    mc_number = factory.Sequence(lambda n: f"CMC{20000 + n}")
    dot_number = factory.Sequence(lambda n: f"DOT{30000 + n}")
    status = models.Carrier.Status.ACTIVE


class TractorFactory(DjangoModelFactory):
    class Meta:
        model = models.Vehicle

    unit_number = factory.Sequence(lambda n: f"TRK{n:04d}")
    vehicle_type = models.Vehicle.VehicleType.TRACTOR
    vin = factory.Sequence(lambda n: f"1HGBH41JXMN{100000 + n}")
    license_plate = factory.Sequence(lambda n: f"PLT{1000 + n}")


class TrailerFactory(TractorFactory):
    unit_number = factory.Sequence(lambda n: f"TRL{n:04d}")
    vehicle_type = models.Vehicle.VehicleType.TRAILER


class DriverFactory(DjangoModelFactory):
    class Meta:
        model = models.Driver

    full_name = Faker("name")
    phone = factory.Sequence(lambda n: f"555-{n % 900 + 100:03d}-{n % 10000:04d}")
    email = factory.Sequence(lambda n: f"driver{n}@driver.test")
    license_number = factory.Sequence(lambda n: f"CDL{40000 + n}")
    pay_model = models.Driver.PayModel.CPM
    pay_rate = Decimal("0.5500")
    minimum_per_mile = None


class LoadFactory(DjangoModelFactory):
    """OPEN load with no stops; use StopFactory (or ``with_window``) for a window."""

    class Meta:
        model = models.Load

    reference_number = factory.Sequence(lambda n: f"REF-{n:05d}")
    customer = factory.SubFactory(CustomerFactory)
    status = models.Load.Status.OPEN
    rate_amount = Decimal("2500.00")
    fuel_surcharge_amount = Decimal("0.00")
    total_amount = factory.LazyAttribute(
        lambda obj: obj.rate_amount + obj.fuel_surcharge_amount
    )
    loaded_miles = 0


class StopFactory(DjangoModelFactory):
    class Meta:
        model = models.Stop

    load = factory.SubFactory(LoadFactory)
    sequence = factory.Sequence(lambda n: n + 1)
    stop_type = models.Stop.StopType.PICKUP
    facility_name = Faker("company")
    address = Faker("street_address")
    city = Faker("city")
    state = Faker("state_abbr")
    zip_code = Faker("postcode")
    appointment_start = factory.LazyFunction(timezone.now)
    appointment_end = factory.LazyAttribute(
        lambda obj: obj.appointment_start + timedelta(hours=2)
    )


def with_window(load, start, end, pickup_city="Dallas", delivery_city="Houston"):
    """Give ``load`` a pickup at ``start`` and a delivery ending at ``end``."""
    StopFactory(
        load=load,
        sequence=1,
        stop_type=models.Stop.StopType.PICKUP,
        city=pickup_city,
        state="TX",
        appointment_start=start,
        appointment_end=start,
    )
    StopFactory(
        load=load,
        sequence=2,
        stop_type=models.Stop.StopType.DELIVERY,
        city=delivery_city,
        state="TX",
        appointment_start=end,
        appointment_end=end,
    )
    return load


class AccessorialTypeFactory(DjangoModelFactory):
    class Meta:
        model = models.AccessorialType
        django_get_or_create = ("code",)

    code = "DETENTION"
    name = "Detention"
    default_amount = Decimal("75.00")


class DeductionTypeFactory(DjangoModelFactory):
    class Meta:
        model = models.DeductionType
        django_get_or_create = ("code",)

    code = "INSURANCE"
    name = "Insurance"
    is_recurring = True
    default_amount = Decimal("50.00")


class DriverDeductionFactory(DjangoModelFactory):
    class Meta:
        model = models.DriverDeduction

    driver = factory.SubFactory(DriverFactory)
    deduction_type = factory.SubFactory(DeductionTypeFactory)
    amount = Decimal("50.00")
    is_active = True
