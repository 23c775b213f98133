"""
Operation ledger service.

Single entry point for recording, editing, deleting and listing ledger
operations. Every write validates input, resolves the base-currency
conversion, and for debt payments checks the remaining balance under a
row lock before anything is stored. Transfers are delegated to
``TransferService`` so both legs are handled as one logical operation.
"""

import logging

from django.core.exceptions import ValidationError
from django.db import transaction as db_transaction
from django.db.models import Q

from ..models import Operation
from ..utils.date_utils import parse_date
from ..validators import clean_operation_data
from .debt_service import DebtService
from .exchange_rate_service import ExchangeRateService
from .tag_service import TagService
from .transfer_service import TransferService

# Get structured logger for this module
logger = logging.getLogger(__name__)


class OperationService:
    """
    Record and maintain ledger operations for a workspace.

    ``record_operation`` returns a list: one row for income, expense and
    salary, two rows (out-leg, in-leg) for a transfer.
    """

    # Fields whose change invalidates the stored conversion rate
    RATE_FIELDS = ("currency", "operation_date")

    # -------------------------------------------------------------------
    # WRITE PATH
    # -------------------------------------------------------------------

    @staticmethod
    def record_operation(workspace, user, data: dict) -> list[Operation]:
        """
        Validate and persist one logical operation.

        Args:
            workspace: Owning workspace
            user: Author
            data: type, amount, optional currency (workspace base by default),
                operation_date (today by default), exchange_rate, account,
                category, tags, debt with debt_applied_amount, description;
                transfers take from_account, to_account, to_currency and
                transfer_rate instead of account, category and debt

        Returns:
            list: Created Operation rows

        Raises:
            ValidationError: Malformed input, dict keyed by field
            RateUnresolvedError: No rate for a foreign-currency operation
            DebtOverapplicationError: Payment exceeds the debt's remaining amount
            PartialWriteError: A multi-row write failed midway
        """
        cleaned = clean_operation_data(data, workspace)

        if cleaned["type"] == "transfer":
            return TransferService.create_transfer(workspace, user, cleaned)

        with db_transaction.atomic():
            conversion = ExchangeRateService.conversion_fields(
                workspace,
                cleaned["amount"],
                cleaned["currency"],
                cleaned["operation_date"],
                explicit_rate=cleaned["exchange_rate"],
            )

            debt = cleaned["debt"]
            if debt is not None:
                debt = DebtService.lock_debt(workspace, debt.pk)
                DebtService.check_application(
                    debt, cleaned["debt_applied_amount"], cleaned["type"]
                )

            operation = Operation(
                workspace=workspace,
                user=user,
                type=cleaned["type"],
                amount=cleaned["amount"],
                currency=cleaned["currency"],
                account=cleaned["account"],
                category=cleaned["category"],
                debt=debt,
                debt_applied_amount=cleaned["debt_applied_amount"],
                description=cleaned["description"],
                operation_date=cleaned["operation_date"],
                **conversion,
            )
            operation.full_clean(exclude=["workspace", "user", "tags"])
            operation.save()

            TagService.link_tags([operation], cleaned["tags"], compensate=True)

        logger.info(
            "Operation recorded",
            extra={
                "workspace_id": workspace.id,
                "operation_id": operation.id,
                "operation_type": operation.type,
                "amount": str(operation.amount),
                "currency": operation.currency,
                "rate_is_approximate": operation.rate_is_approximate,
                "debt_id": operation.debt_id,
                "user_id": getattr(user, "id", None),
                "action": "operation_recorded",
                "component": "OperationService",
            },
        )
        return [operation]

    @staticmethod
    def _current_values(operation: Operation) -> dict:
        return {
            "type": operation.type,
            "amount": operation.amount,
            "currency": operation.currency,
            "operation_date": operation.operation_date,
            "account": operation.account_id,
            "category": operation.category_id,
            "debt": operation.debt_id,
            "debt_applied_amount": operation.debt_applied_amount,
            "description": operation.description,
        }

    @staticmethod
    def update_operation(operation: Operation, patch: dict) -> list[Operation]:
        """
        Edit an operation in place.

        Changing currency or date re-resolves the base rate; changing only
        the amount re-applies the stored rate; an ``exchange_rate`` in the
        patch overrides both. Debt payments are re-checked with the
        operation's previous contribution excluded.

        Returns:
            list: The updated row, or both legs when editing a transfer

        Raises:
            ValidationError: Malformed patch or a type change across transfer/non-transfer
        """
        if operation.is_transfer:
            if patch.get("type", "transfer") != "transfer":
                raise ValidationError({"type": "A transfer cannot change into another type"})
            return TransferService.update_transfer(operation, patch)

        if patch.get("type") == "transfer":
            raise ValidationError({"type": "An operation cannot change into a transfer"})

        workspace = operation.workspace
        merged = OperationService._current_values(operation)
        merged.update(patch)
        if "debt" in patch and not patch["debt"] and "debt_applied_amount" not in patch:
            merged["debt_applied_amount"] = None
        cleaned = clean_operation_data(merged, workspace)

        with db_transaction.atomic():
            locked = Operation.objects.select_for_update().get(pk=operation.pk)

            rate_source_changed = any(
                cleaned[field] != getattr(locked, field)
                for field in OperationService.RATE_FIELDS
            )
            if "exchange_rate" in patch and cleaned["exchange_rate"] is not None:
                explicit_rate = cleaned["exchange_rate"]
            elif rate_source_changed:
                explicit_rate = None
            else:
                explicit_rate = locked.exchange_rate

            conversion = ExchangeRateService.conversion_fields(
                workspace,
                cleaned["amount"],
                cleaned["currency"],
                cleaned["operation_date"],
                explicit_rate=explicit_rate,
            )
            if explicit_rate is not None and explicit_rate == locked.exchange_rate:
                conversion["rate_is_approximate"] = locked.rate_is_approximate

            debt = cleaned["debt"]
            if debt is not None:
                debt = DebtService.lock_debt(workspace, debt.pk)
                DebtService.check_application(
                    debt,
                    cleaned["debt_applied_amount"],
                    cleaned["type"],
                    exclude_operation_ids=[locked.pk],
                )

            for field in (
                "type",
                "amount",
                "currency",
                "account",
                "category",
                "debt_applied_amount",
                "description",
                "operation_date",
            ):
                setattr(locked, field, cleaned[field])
            locked.debt = debt
            for field, value in conversion.items():
                setattr(locked, field, value)
            locked.full_clean(exclude=["workspace", "user", "tags"])
            locked.save()

            if "tags" in patch:
                TagService.link_tags([locked], cleaned["tags"] or [])

        logger.info(
            "Operation updated",
            extra={
                "workspace_id": workspace.id,
                "operation_id": locked.id,
                "updated_fields": sorted(patch.keys()),
                "rate_re_resolved": rate_source_changed,
                "action": "operation_updated",
                "component": "OperationService",
            },
        )
        return [locked]

    @staticmethod
    def delete_operation(operation: Operation) -> int:
        """
        Delete an operation; deleting a transfer leg removes the whole pair.

        Returns:
            int: Number of operation rows removed
        """
        if operation.is_transfer:
            return TransferService.delete_transfer(operation)

        operation_id = operation.id
        workspace_id = operation.workspace_id
        with db_transaction.atomic():
            _, per_model = Operation.objects.filter(
                pk=operation_id, workspace_id=workspace_id
            ).delete()
        deleted = per_model.get(Operation._meta.label, 0)

        logger.info(
            "Operation deleted",
            extra={
                "workspace_id": workspace_id,
                "operation_id": operation_id,
                "deleted_rows": deleted,
                "action": "operation_deleted",
                "component": "OperationService",
            },
        )
        return deleted

    # -------------------------------------------------------------------
    # READ PATH
    # -------------------------------------------------------------------

    @staticmethod
    def list_operations(workspace, filters: dict = None):
        """
        Workspace operations, newest first.

        Supported filters: ``type``, ``account``, ``category``, ``debt``,
        ``tag`` (name), ``date_from``, ``date_to``, ``search`` (description)
        and ``transfer_group_id``.
        """
        filters = filters or {}
        qs = (
            Operation.objects.filter(workspace=workspace)
            .select_related("account", "category", "debt")
            .prefetch_related("tags")
        )

        if filters.get("type"):
            qs = qs.filter(type=filters["type"])
        for field in ("account", "category", "debt"):
            if filters.get(field):
                qs = qs.filter(**{f"{field}_id": filters[field]})
        if filters.get("tag"):
            qs = qs.filter(tags__name=str(filters["tag"]).strip().lower())
        if filters.get("transfer_group_id"):
            qs = qs.filter(transfer_group_id=filters["transfer_group_id"])

        date_from = parse_date(filters.get("date_from"))
        date_to = parse_date(filters.get("date_to"))
        if filters.get("date_from") and date_from is None:
            raise ValidationError({"date_from": "Invalid date"})
        if filters.get("date_to") and date_to is None:
            raise ValidationError({"date_to": "Invalid date"})
        if date_from:
            qs = qs.filter(operation_date__gte=date_from)
        if date_to:
            qs = qs.filter(operation_date__lte=date_to)

        if filters.get("search"):
            qs = qs.filter(Q(description__icontains=filters["search"]))

        return qs.distinct()
