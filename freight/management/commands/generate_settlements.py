"""Generate DRAFT settlements for every driver (or a chosen few) over a closed period."""

from datetime import timedelta

from django.core.management.base import BaseCommand, CommandError
from django.utils import timezone

from freight.services.exceptions import ServiceError
from freight.services.settlements import generate_settlements


class Command(BaseCommand):
    help = "Generate driver settlements for a pay period (defaults to last week, Mon-Sun)"

    def add_arguments(self, parser):
        parser.add_argument("--start", help="Period start, YYYY-MM-DD")
        parser.add_argument("--end", help="Period end, YYYY-MM-DD (inclusive)")
        parser.add_argument(
            "--driver", type=int, action="append", dest="drivers", help="Driver id; repeatable"
        )

    def handle(self, *args, **options):
        start, end = options.get("start"), options.get("end")
        if bool(start) != bool(end):
            raise CommandError("Pass both --start and --end, or neither")
        if not start:
            today = timezone.localdate()
            monday = today - timedelta(days=today.weekday())
            start, end = monday - timedelta(days=7), monday - timedelta(days=1)

        try:
            result = generate_settlements(start, end, driver_ids=options.get("drivers"))
        except ServiceError as exc:
            raise CommandError(exc.message)

        for settlement in result.generated:
            self.stdout.write(
                self.style.SUCCESS(
                    f"{settlement.settlement_number}: {settlement.driver} "
                    f"{settlement.total_loads} loads, net {settlement.net_pay}"
                )
            )
        for skipped in result.skipped:
            self.stdout.write(f"Skipped {skipped['driver_name']}: {skipped['reason']}")
        for error in result.errors:
            self.stdout.write(self.style.ERROR(f"Failed {error['driver_name']}: {error['error']}"))

        self.stdout.write(
            f"Period {start} to {end}: {len(result.generated)} generated, "
            f"{len(result.skipped)} skipped, {len(result.errors)} errors"
        )
