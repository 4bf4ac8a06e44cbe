"""Settings for the pytest suite: SQLite, fast hashing, quiet logs."""

from .base import *  # noqa: F401,F403

SECRET_KEY = "test-secret-key"
DEBUG = False

# select_for_update() is a no-op on SQLite; lock semantics are exercised on PostgreSQL.
DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    }
}

PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]

LOGGING["loggers"]["freight"]["level"] = "WARNING"  # noqa: F405
