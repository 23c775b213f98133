# flake8: noqa
"""
Test settings used by pytest-django.

In-memory SQLite, fast password hashing and quiet logging so test output
only shows failures.
"""

from .base import *

ENVIRONMENT = "test"

DEBUG = False
SECRET_KEY = "django-insecure-test-key"
ALLOWED_HOSTS = ["testserver", "localhost"]

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    }
}

PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]

CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
    }
}

LEDGER_DEFAULT_BASE_CURRENCY = "EUR"

# Quiet loggers; tests patch module loggers when they assert on log calls
LOGGING["handlers"]["console"]["level"] = "CRITICAL"
for logger_name in ["django", "ledger", "core"]:
    LOGGING["loggers"][logger_name]["level"] = "CRITICAL"
