# flake8: noqa
"""
Development environment settings for the ledger service.

This configuration extends base settings with development-specific values
including local database, relaxed security, and verbose logging.
"""

from .base import *
import logging
from .utils import load_environment_config

# Load environment configuration
config = load_environment_config("development")

# Environment identification
ENVIRONMENT = "development"

# =============================================================================
# SECURITY SETTINGS FOR DEVELOPMENT
# =============================================================================

DEBUG = True
SECRET_KEY = config(
    "SECRET_KEY", default="django-insecure-dev-key-change-in-production"
)
ALLOWED_HOSTS = ["localhost", "127.0.0.1", "0.0.0.0"]

# =============================================================================
# CORS SETTINGS FOR DEVELOPMENT
# =============================================================================

CORS_ALLOWED_ORIGINS = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]
CORS_ALLOW_ALL_ORIGINS = True  # Only for development!

# =============================================================================
# DATABASE CONFIGURATION FOR DEVELOPMENT
# =============================================================================

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.postgresql",
        "NAME": config("POSTGRES_DB", default="ledger"),
        "USER": config("POSTGRES_USER", default="ledger"),
        "PASSWORD": config("POSTGRES_PASSWORD", default="ledger"),
        "HOST": config("DB_HOST", default="localhost"),
        "PORT": "5432",
    }
}

LEDGER_DEFAULT_BASE_CURRENCY = config("LEDGER_DEFAULT_BASE_CURRENCY", default="EUR")

# =============================================================================
# LOGGING FOR DEVELOPMENT
# =============================================================================

os.makedirs(BASE_DIR / "logs", exist_ok=True)

LOGGING["handlers"]["console"]["level"] = "DEBUG"
LOGGING["handlers"]["development_file"] = {
    "level": "DEBUG",
    "class": "logging.handlers.RotatingFileHandler",
    "filename": BASE_DIR / "logs" / "ledger_dev.log",
    "maxBytes": 1024 * 1024 * 10,  # 10MB
    "backupCount": 5,
    "formatter": "structured",
    "encoding": "utf-8",
}

for logger_name in ["django", "ledger", "core"]:
    if logger_name in LOGGING["loggers"]:
        LOGGING["loggers"][logger_name]["handlers"] = ["console", "development_file"]
        LOGGING["loggers"][logger_name]["level"] = "DEBUG"

# SQL is noisy; raise to DEBUG when chasing query counts
LOGGING["loggers"]["django.db.backends"]["level"] = config(
    "DB_QUERY_LOGGING_LEVEL", default="INFO"
)

# =============================================================================
# ENVIRONMENT STARTUP
# =============================================================================

logger = logging.getLogger(__name__)
logger.info(
    "Development environment initialized",
    extra={
        "environment": ENVIRONMENT,
        "debug_mode": DEBUG,
        "allowed_hosts": ALLOWED_HOSTS,
        "base_currency": LEDGER_DEFAULT_BASE_CURRENCY,
        "action": "environment_startup",
        "component": "settings",
    },
)

print(f"=== Running in {ENVIRONMENT} mode ===")
