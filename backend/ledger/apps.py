from django.apps import AppConfig


class LedgerConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    # Application name (Python path)
    name = "ledger"

    def ready(self):
        """Import signals to ensure they are connected when the app is ready."""
        import logging
        logger = logging.getLogger(__name__)
        logger.info("Ledger app ready method called, importing signals...")
        import ledger.signals  # noqa: F401
        logger.info("Ledger signals imported.")
