"""
Workspace base-currency management.

Changing the base currency re-converts every stored operation so that
``base_amount`` stays expressed in the workspace base currency. The whole
change is one transaction: if any row cannot be converted, nothing changes.
"""

import logging

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import transaction as db_transaction

from ..models import Operation, WorkspaceSettings
from ..utils.currency_utils import normalize_currency
from .exchange_rate_service import ExchangeRateService

# Get structured logger for this module
logger = logging.getLogger(__name__)


class CurrencyService:
    """Base-currency reads and the base-currency switch."""

    @staticmethod
    def supported_currencies() -> tuple:
        return tuple(getattr(settings, "LEDGER_SUPPORTED_CURRENCIES", ()))

    @staticmethod
    def get_settings(workspace) -> WorkspaceSettings:
        """Workspace settings row, created with defaults when missing."""
        workspace_settings, created = WorkspaceSettings.objects.get_or_create(workspace=workspace)
        if created:
            logger.info(
                "Workspace settings created on demand",
                extra={
                    "workspace_id": workspace.id,
                    "base_currency": workspace_settings.base_currency,
                    "action": "workspace_settings_created",
                    "component": "CurrencyService",
                },
            )
        return workspace_settings

    @staticmethod
    def change_base_currency(workspace, new_currency) -> dict:
        """
        Switch the base currency and re-convert every operation.

        Rows already in the new base currency drop their rate. Other rows
        resolve a fresh rate for their own date against the new base.

        Returns:
            dict: base_currency and the number of operations re-converted

        Raises:
            ValidationError: Malformed or unsupported currency code
            RateUnresolvedError: Some operation has no rate into the new base;
                the change is rolled back
        """
        code = normalize_currency(new_currency)
        supported = CurrencyService.supported_currencies()
        if code is None or (supported and code not in supported):
            raise ValidationError(
                {"base_currency": f"Base currency must be one of: {', '.join(supported)}"}
            )

        with db_transaction.atomic():
            workspace_settings, _ = WorkspaceSettings.objects.select_for_update().get_or_create(
                workspace=workspace
            )
            previous = workspace_settings.base_currency
            if previous == code:
                return {"base_currency": code, "updated_operations": 0}

            workspace_settings.base_currency = code
            workspace_settings.full_clean(exclude=["workspace"])
            workspace_settings.save()
            workspace.settings = workspace_settings

            updated = 0
            for operation in Operation.objects.select_for_update().filter(workspace=workspace):
                conversion = ExchangeRateService.conversion_fields(
                    workspace, operation.amount, operation.currency, operation.operation_date
                )
                for field, value in conversion.items():
                    setattr(operation, field, value)
                operation.save(update_fields=[*conversion.keys(), "updated_at"])
                updated += 1

        logger.info(
            "Workspace base currency changed",
            extra={
                "workspace_id": workspace.id,
                "previous_currency": previous,
                "base_currency": code,
                "updated_operations": updated,
                "action": "base_currency_changed",
                "component": "CurrencyService",
            },
        )
        return {"base_currency": code, "updated_operations": updated}
