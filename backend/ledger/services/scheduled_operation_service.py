"""
Recurring operation templates.

``run_due`` posts every occurrence whose date has come, catching up on
missed runs one occurrence at a time. Each schedule is processed in its
own transaction; a schedule that fails is logged and left untouched so the
next run retries it.
"""

import logging

from django.core.exceptions import ValidationError
from django.db import transaction as db_transaction
from django.utils import timezone
from rest_framework import serializers

from ..exceptions import LedgerError
from ..models import Account, Category, ScheduledOperation
from ..utils.currency_utils import normalize_currency, parse_money
from ..utils.date_utils import next_occurrence, parse_date
from ..validators import CATEGORY_TYPE_FOR_OPERATION
from .operation_service import OperationService

# Get structured logger for this module
logger = logging.getLogger(__name__)


class ScheduledOperationService:
    """Create, edit and materialize recurring operations."""

    EDITABLE_FIELDS = (
        "type",
        "amount",
        "currency",
        "description",
        "category",
        "account",
        "frequency",
        "next_date",
        "is_active",
    )

    @staticmethod
    def _clean(workspace, data: dict, partial=False) -> dict:
        errors = {}
        cleaned = {}

        if "type" in data or not partial:
            if data.get("type") not in dict(ScheduledOperation.OPERATION_TYPES):
                errors["type"] = ["Type must be income, expense or salary"]
            cleaned["type"] = data.get("type")

        if "amount" in data or not partial:
            amount, error = parse_money(data.get("amount"))
            if error:
                errors["amount"] = [error]
            cleaned["amount"] = amount

        if "currency" in data or not partial:
            currency = normalize_currency(data.get("currency") or workspace.base_currency)
            if currency is None:
                errors["currency"] = ["Currency code must be 3 letters"]
            cleaned["currency"] = currency

        if "frequency" in data or not partial:
            if data.get("frequency") not in dict(ScheduledOperation.FREQUENCY_CHOICES):
                errors["frequency"] = ["Frequency must be daily, weekly, monthly or yearly"]
            cleaned["frequency"] = data.get("frequency")

        if "next_date" in data or not partial:
            raw_date = data.get("next_date")
            next_date = parse_date(raw_date) if raw_date else timezone.localdate()
            if next_date is None:
                errors["next_date"] = ["Invalid date"]
            cleaned["next_date"] = next_date

        for field, model in (("account", Account), ("category", Category)):
            if field not in data:
                continue
            value = data.get(field)
            if value in (None, ""):
                cleaned[field] = None
                continue
            pk = value.pk if isinstance(value, model) else value
            try:
                cleaned[field] = model.objects.get(pk=pk, workspace=workspace)
            except (model.DoesNotExist, ValueError, TypeError):
                errors[field] = [f"{model.__name__} not found in this workspace"]

        if "description" in data:
            cleaned["description"] = (data.get("description") or "").strip()
        if "is_active" in data:
            try:
                cleaned["is_active"] = serializers.BooleanField().to_internal_value(data.get("is_active"))
            except serializers.ValidationError:
                errors["is_active"] = ["Must be a valid boolean"]

        if errors:
            raise ValidationError(errors)
        return cleaned

    @staticmethod
    def _validate(schedule: ScheduledOperation):
        """Reject templates whose occurrences could never be posted."""
        if schedule.category is not None:
            expected = CATEGORY_TYPE_FOR_OPERATION.get(schedule.type)
            if expected and schedule.category.type != expected:
                raise ValidationError(
                    {"category": [f"A {schedule.type} operation needs an {expected} category"]}
                )
        schedule.full_clean(exclude=["workspace", "user"])

    @staticmethod
    def create_schedule(workspace, user, data: dict) -> ScheduledOperation:
        cleaned = ScheduledOperationService._clean(workspace, data)
        schedule = ScheduledOperation(workspace=workspace, user=user, **cleaned)
        ScheduledOperationService._validate(schedule)
        schedule.save()

        logger.info(
            "Scheduled operation created",
            extra={
                "workspace_id": workspace.id,
                "schedule_id": schedule.id,
                "frequency": schedule.frequency,
                "next_date": schedule.next_date.isoformat(),
                "action": "schedule_created",
                "component": "ScheduledOperationService",
            },
        )
        return schedule

    @staticmethod
    def update_schedule(schedule: ScheduledOperation, data: dict) -> ScheduledOperation:
        unknown = set(data) - set(ScheduledOperationService.EDITABLE_FIELDS)
        if unknown:
            raise ValidationError({field: "Field cannot be changed" for field in sorted(unknown)})

        cleaned = ScheduledOperationService._clean(schedule.workspace, data, partial=True)
        for field, value in cleaned.items():
            setattr(schedule, field, value)
        ScheduledOperationService._validate(schedule)
        schedule.save()

        logger.info(
            "Scheduled operation updated",
            extra={
                "workspace_id": schedule.workspace_id,
                "schedule_id": schedule.id,
                "updated_fields": sorted(cleaned.keys()),
                "action": "schedule_updated",
                "component": "ScheduledOperationService",
            },
        )
        return schedule

    @staticmethod
    def _operation_data(schedule: ScheduledOperation, on_date) -> dict:
        return {
            "type": schedule.type,
            "amount": schedule.amount,
            "currency": schedule.currency,
            "operation_date": on_date,
            "account": schedule.account_id,
            "category": schedule.category_id,
            "description": schedule.description,
        }

    @staticmethod
    def run_schedule(schedule: ScheduledOperation, today) -> int:
        """
        Post every due occurrence of one schedule.

        Returns:
            int: Number of operations posted
        """
        posted = 0
        with db_transaction.atomic():
            locked = ScheduledOperation.objects.select_for_update().get(pk=schedule.pk)
            while locked.is_active and locked.next_date <= today:
                OperationService.record_operation(
                    locked.workspace,
                    locked.user,
                    ScheduledOperationService._operation_data(locked, locked.next_date),
                )
                locked.last_run_on = locked.next_date
                locked.next_date = next_occurrence(locked.next_date, locked.frequency)
                posted += 1
            if posted:
                locked.save(update_fields=["last_run_on", "next_date"])
        return posted

    @staticmethod
    def run_due(today=None, workspace=None) -> dict:
        """
        Materialize all due schedules.

        Returns:
            dict: posted operation count, processed and failed schedule ids
        """
        today = today or timezone.localdate()
        qs = ScheduledOperation.objects.filter(is_active=True, next_date__lte=today).select_related(
            "workspace"
        )
        if workspace is not None:
            qs = qs.filter(workspace=workspace)

        result = {"posted": 0, "processed": [], "failed": []}
        for schedule in qs:
            try:
                posted = ScheduledOperationService.run_schedule(schedule, today)
            except (ValidationError, LedgerError) as e:
                logger.error(
                    "Scheduled operation failed",
                    extra={
                        "workspace_id": schedule.workspace_id,
                        "schedule_id": schedule.id,
                        "next_date": schedule.next_date.isoformat(),
                        "error": str(e),
                        "action": "schedule_run_failed",
                        "component": "ScheduledOperationService",
                        "severity": "high",
                    },
                )
                result["failed"].append(schedule.id)
                continue
            result["posted"] += posted
            result["processed"].append(schedule.id)

        logger.info(
            "Scheduled operations run completed",
            extra={
                "run_date": today.isoformat(),
                "posted": result["posted"],
                "processed_count": len(result["processed"]),
                "failed_count": len(result["failed"]),
                "action": "schedules_run_completed",
                "component": "ScheduledOperationService",
            },
        )
        return result
