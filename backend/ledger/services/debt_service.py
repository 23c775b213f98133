"""
Debt amortization tracking.

A debt's remaining amount is never stored: it is the initial amount minus
the ``debt_applied_amount`` of every operation linked to it. Application
checks lock the debt row so that concurrent payments against the same
debt are validated one after another.
"""

import logging
from decimal import ROUND_HALF_UP, Decimal

from django.core.exceptions import ValidationError
from django.db import transaction as db_transaction
from django.db.models import DecimalField, ExpressionWrapper, F, Sum, Value
from django.db.models.functions import Coalesce
from django.utils import timezone

from ..exceptions import DebtOverapplicationError, ReferentialIntegrityError
from ..models import Debt
from ..utils.currency_utils import parse_money, quantize_money
from ..utils.date_utils import parse_date

# Get structured logger for this module
logger = logging.getLogger(__name__)

MONEY_FIELD = DecimalField(max_digits=20, decimal_places=2)
ZERO = Decimal("0.00")


class DebtService:
    """
    Derived debt balances and the write-time over-application guard.

    ``remaining_amount`` is the raw value used by the guard; it is clamped
    at zero only for display.
    """

    EDITABLE_FIELDS = (
        "title",
        "counterparty",
        "direction",
        "initial_amount",
        "opened_on",
        "due_on",
        "notes",
    )

    # -------------------------------------------------------------------
    # DERIVED VALUES
    # -------------------------------------------------------------------

    @staticmethod
    def applied_total(debt, exclude_operation_ids=None) -> Decimal:
        """Sum of applied amounts over linked operations."""
        qs = debt.operations.all()
        if exclude_operation_ids:
            qs = qs.exclude(pk__in=exclude_operation_ids)
        total = qs.aggregate(
            total=Coalesce(
                Sum("debt_applied_amount"), Value(ZERO), output_field=MONEY_FIELD
            )
        )["total"]
        return quantize_money(total)

    @staticmethod
    def remaining_amount(debt, exclude_operation_ids=None) -> Decimal:
        """Raw remaining amount; negative only if the ledger was corrupted."""
        return quantize_money(
            debt.initial_amount
            - DebtService.applied_total(debt, exclude_operation_ids=exclude_operation_ids)
        )

    @staticmethod
    def display_remaining(debt) -> Decimal:
        return max(DebtService.remaining_amount(debt), ZERO)

    @staticmethod
    def progress_pct(initial_amount: Decimal, remaining: Decimal) -> int:
        """``round(100 * paid / initial)`` with the remaining amount clamped at zero."""
        if not initial_amount:
            return 0
        paid = Decimal(initial_amount) - max(Decimal(remaining), ZERO)
        return int(
            (Decimal(100) * paid / Decimal(initial_amount)).quantize(
                Decimal("1"), rounding=ROUND_HALF_UP
            )
        )

    @staticmethod
    def debts_with_balance(workspace, include_archived=True):
        """
        Workspace debts annotated with ``applied_total`` and ``remaining_amount``
        in a single grouped query.
        """
        qs = Debt.objects.filter(workspace=workspace).annotate(
            applied_total=Coalesce(
                Sum("operations__debt_applied_amount"),
                Value(ZERO),
                output_field=MONEY_FIELD,
            ),
        ).annotate(
            remaining_amount=ExpressionWrapper(
                F("initial_amount") - F("applied_total"), output_field=MONEY_FIELD
            ),
        )
        if not include_archived:
            qs = qs.filter(is_archived=False)
        return qs

    @staticmethod
    def active_debts(workspace) -> list:
        """Unarchived debts that still have something left to pay."""
        return [
            debt
            for debt in DebtService.debts_with_balance(workspace, include_archived=False)
            if debt.remaining_amount > 0
        ]

    @staticmethod
    def totals(workspace) -> dict:
        """Outstanding amounts per direction over unarchived debts."""
        totals = {"i_owe": ZERO, "owed_to_me": ZERO}
        for debt in DebtService.debts_with_balance(workspace, include_archived=False):
            totals[debt.direction] += max(quantize_money(debt.remaining_amount), ZERO)
        return totals

    @staticmethod
    def debt_history(debt) -> list:
        """Operations applied to the debt, newest first."""
        return list(
            debt.operations.order_by("-operation_date", "-created_at").values(
                "id",
                "amount",
                "currency",
                "debt_applied_amount",
                "type",
                "description",
                "operation_date",
            )
        )

    # -------------------------------------------------------------------
    # APPLICATION GUARD
    # -------------------------------------------------------------------

    @staticmethod
    def lock_debt(workspace, debt_id) -> Debt:
        """
        Load the debt row with a row lock held until the surrounding
        transaction ends. Must run inside ``transaction.atomic``.
        """
        try:
            return Debt.objects.select_for_update().get(pk=debt_id, workspace=workspace)
        except (Debt.DoesNotExist, ValueError, TypeError):
            raise ValidationError({"debt": "Debt not found in this workspace"})

    @staticmethod
    def check_application(debt, applied_amount: Decimal, operation_type: str, exclude_operation_ids=None):
        """
        Validate a payment of ``applied_amount`` against ``debt``.

        ``exclude_operation_ids`` removes an edited operation's previous
        contribution before comparing.

        Raises:
            ValidationError: When the operation type does not settle this debt direction
            DebtOverapplicationError: When the payment exceeds the remaining amount
        """
        expected_type = debt.settling_operation_type
        if operation_type != expected_type:
            raise ValidationError(
                {
                    "debt": f"Debts of direction '{debt.direction}' are settled "
                    f"by '{expected_type}' operations, not '{operation_type}'"
                }
            )

        remaining = DebtService.remaining_amount(
            debt, exclude_operation_ids=exclude_operation_ids
        )
        if applied_amount > remaining:
            logger.warning(
                "Debt application rejected - exceeds remaining amount",
                extra={
                    "debt_id": debt.id,
                    "workspace_id": debt.workspace_id,
                    "requested": str(applied_amount),
                    "remaining": str(remaining),
                    "action": "debt_overapplication_rejected",
                    "component": "DebtService",
                    "severity": "medium",
                },
            )
            raise DebtOverapplicationError(debt.id, applied_amount, max(remaining, ZERO))

        logger.debug(
            "Debt application accepted",
            extra={
                "debt_id": debt.id,
                "requested": str(applied_amount),
                "remaining_before": str(remaining),
                "action": "debt_application_checked",
                "component": "DebtService",
            },
        )
        return remaining

    # -------------------------------------------------------------------
    # LIFECYCLE
    # -------------------------------------------------------------------

    @staticmethod
    def _clean_debt_data(data: dict, partial=False) -> dict:
        errors = {}
        cleaned = {}

        if "title" in data or not partial:
            title = (data.get("title") or "").strip()
            if not title:
                errors["title"] = ["Title is required"]
            cleaned["title"] = title

        if "direction" in data or not partial:
            direction = data.get("direction")
            if direction not in dict(Debt.DIRECTION_CHOICES):
                errors["direction"] = ["Direction must be 'i_owe' or 'owed_to_me'"]
            cleaned["direction"] = direction

        if "initial_amount" in data or not partial:
            amount, error = parse_money(data.get("initial_amount"))
            if error:
                errors["initial_amount"] = [error]
            cleaned["initial_amount"] = amount

        if "opened_on" in data or not partial:
            raw_opened = data.get("opened_on")
            opened_on = parse_date(raw_opened) if raw_opened else timezone.localdate()
            if opened_on is None:
                errors["opened_on"] = ["Invalid date"]
            cleaned["opened_on"] = opened_on

        if "due_on" in data:
            raw_due = data.get("due_on")
            due_on = parse_date(raw_due) if raw_due else None
            if raw_due and due_on is None:
                errors["due_on"] = ["Invalid date"]
            cleaned["due_on"] = due_on

        for field in ("counterparty", "notes"):
            if field in data:
                cleaned[field] = (data.get(field) or "").strip()

        if errors:
            raise ValidationError(errors)
        return cleaned

    @staticmethod
    @db_transaction.atomic
    def create_debt(workspace, user, data: dict) -> Debt:
        """
        Open a new debt.

        Args:
            workspace: Owning workspace
            user: Author (informational)
            data: title, direction, initial_amount, optional counterparty,
                opened_on (defaults to today), due_on, notes
        """
        cleaned = DebtService._clean_debt_data(data)
        debt = Debt(workspace=workspace, created_by=user, **cleaned)
        debt.full_clean(exclude=["workspace", "created_by"])
        debt.save()

        logger.info(
            "Debt created",
            extra={
                "workspace_id": workspace.id,
                "debt_id": debt.id,
                "direction": debt.direction,
                "initial_amount": str(debt.initial_amount),
                "action": "debt_created",
                "component": "DebtService",
            },
        )
        return debt

    @staticmethod
    @db_transaction.atomic
    def update_debt(debt: Debt, data: dict) -> Debt:
        """
        Edit debt attributes.

        The initial amount cannot drop below what has already been applied,
        and the direction is fixed once payments exist.
        """
        unknown = set(data) - set(DebtService.EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(
                {field: "Field cannot be changed" for field in sorted(unknown)}
            )

        cleaned = DebtService._clean_debt_data(data, partial=True)
        locked = DebtService.lock_debt(debt.workspace, debt.pk)

        if "direction" in cleaned and cleaned["direction"] != locked.direction:
            if locked.operations.exists():
                raise ValidationError(
                    {"direction": "Cannot change direction of a debt with payments"}
                )

        if "initial_amount" in cleaned:
            applied = DebtService.applied_total(locked)
            if cleaned["initial_amount"] < applied:
                raise ValidationError(
                    {
                        "initial_amount": f"Initial amount cannot be less than "
                        f"the amount already applied ({applied})"
                    }
                )

        for field, value in cleaned.items():
            setattr(locked, field, value)
        locked.full_clean(exclude=["workspace", "created_by"])
        locked.save()

        logger.info(
            "Debt updated",
            extra={
                "debt_id": locked.id,
                "workspace_id": locked.workspace_id,
                "updated_fields": sorted(cleaned.keys()),
                "action": "debt_updated",
                "component": "DebtService",
            },
        )
        return locked

    @staticmethod
    def set_archived(debt: Debt, archived: bool) -> Debt:
        """Paid-off debts stay listed until archived here explicitly."""
        debt.is_archived = archived
        debt.save(update_fields=["is_archived", "updated_at"])

        logger.info(
            "Debt archive flag changed",
            extra={
                "debt_id": debt.id,
                "workspace_id": debt.workspace_id,
                "is_archived": archived,
                "action": "debt_archive_changed",
                "component": "DebtService",
            },
        )
        return debt

    @staticmethod
    def delete_debt(debt: Debt):
        """
        Delete a debt with no linked operations.

        Raises:
            ReferentialIntegrityError: While operations reference the debt.
        """
        reference_count = debt.operations.count()
        if reference_count:
            logger.warning(
                "Debt delete rejected - still referenced",
                extra={
                    "debt_id": debt.id,
                    "workspace_id": debt.workspace_id,
                    "reference_count": reference_count,
                    "action": "debt_delete_rejected",
                    "component": "DebtService",
                    "severity": "low",
                },
            )
            raise ReferentialIntegrityError("debt", debt.id, reference_count)

        debt_id = debt.id
        workspace_id = debt.workspace_id
        debt.delete()

        logger.info(
            "Debt deleted",
            extra={
                "debt_id": debt_id,
                "workspace_id": workspace_id,
                "action": "debt_deleted",
                "component": "DebtService",
            },
        )
