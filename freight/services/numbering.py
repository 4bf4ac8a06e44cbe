import logging

from django.db import IntegrityError, transaction
from django.utils import timezone

from freight.services.exceptions import ConcurrencyContention

logger = logging.getLogger(__name__)


def next_number(model, field, prefix, today=None):
    """
    Next free ``PREFIX-YYYYMMDD-NNN`` for ``model.field``.

    The sequence restarts every day and is one past the highest number
    already issued for that day.
    """
    today = today or timezone.localdate()
    stem = f"{prefix}-{today:%Y%m%d}-"
    issued = model.objects.filter(**{f"{field}__startswith": stem}).values_list(
        field, flat=True
    )
    sequences = [int(n[len(stem):]) for n in issued if n[len(stem):].isdigit()]
    return f"{stem}{max(sequences, default=0) + 1:03d}"


def create_numbered(model, field, prefix, attempts=5, **values):
    """
    Create a ``model`` row under a freshly issued number.

    Two writers can read the same "highest" number; the loser retries with
    the next one. Each try runs in a savepoint so the caller's transaction
    survives the IntegrityError.
    """
    for _ in range(attempts):
        number = next_number(model, field, prefix)
        try:
            with transaction.atomic():
                return model.objects.create(**{field: number}, **values)
        except IntegrityError:
            if not model.objects.filter(**{field: number}).exists():
                raise
            logger.warning("%s %s was taken concurrently, retrying", model.__name__, number)

    raise ConcurrencyContention(
        f"Could not allocate a unique {model._meta.verbose_name} number"
    )
