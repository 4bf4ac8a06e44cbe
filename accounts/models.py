from django.contrib.auth.models import AbstractUser
from django.db import models


class User(AbstractUser):
    """Back-office user; referenced as dispatcher and as requester of rollups."""

    class Role(models.TextChoices):
        # actual value stored in the database, human-readable name
        ADMIN = "admin", "Admin"
        DISPATCHER = "dispatcher", "Dispatcher"
        ACCOUNTANT = "accountant", "Accountant"

    role = models.CharField(
        choices=Role.choices,
        default=Role.DISPATCHER,
        max_length=20,
        help_text="User role for permission management",
    )
    email = models.EmailField(unique=True)

    # timestamps
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.get_full_name()} ({self.username})"
