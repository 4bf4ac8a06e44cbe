"""Seed demo data: customers, carriers, equipment, drivers and a few loads."""

import random
from datetime import timedelta
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand
from django.db import transaction
from django.utils import timezone
from factory import random as factory_random
from faker import Faker

from freight import factories
from freight.models import Driver, Load
from freight.services import assignment, loads

ACCESSORIAL_TYPES = [
    ("DETENTION", "Detention", Decimal("75.00")),
    ("LUMPER", "Lumper", Decimal("150.00")),
    ("LAYOVER", "Layover", Decimal("250.00")),
    ("TONU", "Truck Ordered Not Used", Decimal("200.00")),
]

DEDUCTION_TYPES = [
    ("INSURANCE", "Insurance", True, Decimal("50.00")),
    ("ELD", "ELD Subscription", True, Decimal("25.00")),
    ("ESCROW", "Escrow", True, Decimal("100.00")),
]

LANES = [
    ("Dallas", "TX", "Houston", "TX", 240),
    ("Atlanta", "GA", "Charlotte", "NC", 245),
    ("Chicago", "IL", "Indianapolis", "IN", 180),
    ("Phoenix", "AZ", "Los Angeles", "CA", 370),
    ("Denver", "CO", "Salt Lake City", "UT", 520),
]


class Command(BaseCommand):
    help = "Seed demo data for customers, carriers, equipment, drivers and loads"

    def add_arguments(self, parser):
        parser.add_argument("--customers", type=int, default=5)
        parser.add_argument("--carriers", type=int, default=3)
        parser.add_argument("--drivers", type=int, default=6)
        parser.add_argument("--loads", type=int, default=10)
        parser.add_argument(
            "--seed", type=int, default=None, help="Seed for Faker/random"
        )

    @transaction.atomic
    def handle(self, *args, **options):
        seed = options.get("seed")
        if seed is not None:
            random.seed(seed)
            factory_random.reseed_random(seed)
            Faker.seed(seed)
            self.stdout.write(self.style.NOTICE(f"Seeding randomness with seed={seed}"))

        dispatcher = self._get_or_create_user("dispatcher", role="dispatcher")
        accountant = self._get_or_create_user("accountant", role="accountant")
        self.stdout.write(
            self.style.SUCCESS(f"Using users: {dispatcher.username}, {accountant.username}")
        )

        self.stdout.write("Creating catalogs...")
        for code, name, amount in ACCESSORIAL_TYPES:
            factories.AccessorialTypeFactory(code=code, name=name, default_amount=amount)
        deduction_types = [
            factories.DeductionTypeFactory(
                code=code, name=name, is_recurring=recurring, default_amount=amount
            )
            for code, name, recurring, amount in DEDUCTION_TYPES
        ]

        self.stdout.write("Creating customers and carriers...")
        customers = factories.CustomerFactory.create_batch(options["customers"])
        factories.CarrierFactory.create_batch(options["carriers"])

        self.stdout.write("Creating drivers with equipment...")
        crews = []
        for i in range(options["drivers"]):
            pay_model = random.choice(Driver.PayModel.values)
            driver = factories.DriverFactory(
                pay_model=pay_model,
                pay_rate={
                    Driver.PayModel.CPM: Decimal("0.5500"),
                    Driver.PayModel.PERCENTAGE: Decimal("25.0000"),
                    Driver.PayModel.FLAT: Decimal("400.0000"),
                }[pay_model],
            )
            factories.DriverDeductionFactory(
                driver=driver,
                deduction_type=deduction_types[i % len(deduction_types)],
                amount=deduction_types[i % len(deduction_types)].default_amount,
            )
            crews.append(
                (driver, factories.TractorFactory(), factories.TrailerFactory())
            )

        self.stdout.write("Creating loads...")
        created = []
        start = timezone.now() - timedelta(days=options["loads"])
        for i in range(options["loads"]):
            origin, o_state, dest, d_state, miles = random.choice(LANES)
            pickup = start + timedelta(days=i)
            load = loads.create_load(
                customer_id=random.choice(customers).pk,
                rate_amount=Decimal(miles * 3),
                fuel_surcharge_pct=Decimal("12"),
                loaded_miles=miles,
                dispatcher=dispatcher,
                stops=[
                    {
                        "stop_type": "PICKUP",
                        "city": origin,
                        "state": o_state,
                        "appointment_start": pickup,
                        "appointment_end": pickup + timedelta(hours=2),
                    },
                    {
                        "stop_type": "DELIVERY",
                        "city": dest,
                        "state": d_state,
                        "appointment_start": pickup + timedelta(hours=8),
                        "appointment_end": pickup + timedelta(hours=10),
                    },
                ],
            )
            created.append(load)

            # older half of the loads are driven through to delivery
            if i < options["loads"] // 2 and crews:
                driver, truck, trailer = crews[i % len(crews)]
                assignment.assign_driver(
                    load.pk,
                    driver.pk,
                    truck_id=truck.pk,
                    trailer_id=trailer.pk,
                    assigned_by=dispatcher,
                )
                for status in (
                    Load.Status.IN_PICKUP_YARD,
                    Load.Status.IN_TRANSIT,
                    Load.Status.COMPLETED,
                ):
                    assignment.change_status(load.pk, status)

        self.stdout.write(self.style.SUCCESS("Seed complete."))
        self.stdout.write(
            self.style.SUCCESS(
                f"Customers: {len(customers)}, Carriers: {options['carriers']}, "
                f"Drivers: {len(crews)}, Loads: {len(created)}"
            )
        )

    def _get_or_create_user(self, username: str, role: str):
        User = get_user_model()
        user, created = User.objects.get_or_create(
            username=username,
            defaults={
                "email": f"{username}@example.com",
                "role": role,
                "is_staff": True,
            },
        )
        if created:
            user.set_password("password123")
            user.save()
        return user
