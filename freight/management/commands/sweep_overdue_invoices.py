"""Mark SENT invoices past their due date as OVERDUE."""

from django.core.management.base import BaseCommand

from freight.services.invoices import sweep_overdue


class Command(BaseCommand):
    help = "Flip SENT invoices whose due date has passed to OVERDUE"

    def handle(self, *args, **options):
        count = sweep_overdue()
        self.stdout.write(self.style.SUCCESS(f"{count} invoice(s) marked overdue"))
