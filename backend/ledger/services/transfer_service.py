"""
Transfer-pair coordination.

A transfer is two ``Operation`` rows sharing a ``transfer_group_id``: an
``out`` leg debiting the source account and an ``in`` leg crediting the
destination. Both legs are written inside one transaction; the in-leg
runs in a savepoint so that a failure there removes the out-leg before
the error propagates. Each leg converts to base currency on its own, so
the two base amounts may differ when the legs use different currencies.
"""

import logging
import uuid
from collections import defaultdict
from decimal import Decimal

from django.core.exceptions import ValidationError
from django.db import DatabaseError
from django.db import transaction as db_transaction

from ..exceptions import PartialWriteError, RateUnresolvedError
from ..models import Operation
from ..utils.currency_utils import convert_amount, parse_rate
from ..validators import clean_operation_data
from .exchange_rate_service import ExchangeRateService
from .tag_service import TagService

# Get structured logger for this module
logger = logging.getLogger(__name__)

# Patch keys accepted for a transfer, with leg-local aliases
TRANSFER_PATCH_FIELDS = frozenset(
    {
        "from_account",
        "to_account",
        "amount",
        "currency",
        "to_currency",
        "transfer_rate",
        "exchange_rate",
        "operation_date",
        "description",
        "tags",
    }
)


class TransferService:
    """
    Create, edit, delete and verify transfer pairs.

    Every pair reads as one logical operation: callers get both legs back
    and deleting either leg removes the group.
    """

    # -------------------------------------------------------------------
    # RATE HELPERS
    # -------------------------------------------------------------------

    @staticmethod
    def _cross_rate(workspace, from_currency, to_currency, on_date, explicit_rate=None):
        """Rate converting the out-leg amount into the in-leg currency."""
        if from_currency == to_currency:
            return None
        if explicit_rate is None:
            resolved = ExchangeRateService.resolve_rate(
                workspace, from_currency, to_currency, on_date
            )
            if resolved is None:
                raise RateUnresolvedError(from_currency, to_currency, on_date)
            explicit_rate = resolved.rate

        cross_rate, rate_error = parse_rate(explicit_rate)
        if rate_error:
            raise ValidationError({"transfer_rate": [rate_error]})
        return cross_rate

    @staticmethod
    def _in_amount(amount, cross_rate):
        if cross_rate is None:
            return amount
        try:
            in_amount = convert_amount(amount, cross_rate)
        except ValueError as exc:
            raise ValidationError({"transfer_rate": [str(exc)]}) from exc
        if in_amount <= 0:
            raise ValidationError(
                {"transfer_rate": "Converted amount rounds to zero; transfer a larger amount"}
            )
        return in_amount

    @staticmethod
    def _leg_conversion(workspace, amount, currency, on_date, explicit_rate=None):
        return ExchangeRateService.conversion_fields(
            workspace, amount, currency, on_date, explicit_rate=explicit_rate
        )

    @staticmethod
    def _in_leg_conversion(workspace, in_amount, to_currency, on_date, out_rate, cross_rate):
        """
        Base conversion for the in-leg.

        The leg resolves its own rate. When none is stored and the out-leg
        carried an explicit rate, the in-leg rate is derived from it through
        the cross rate.
        """
        try:
            return TransferService._leg_conversion(workspace, in_amount, to_currency, on_date)
        except RateUnresolvedError:
            if out_rate is None or cross_rate is None:
                raise
            derived = Decimal(out_rate) / Decimal(cross_rate)
            logger.info(
                "In-leg base rate derived from out-leg rate",
                extra={
                    "workspace_id": workspace.id,
                    "to_currency": to_currency,
                    "derived_rate": str(derived),
                    "action": "transfer_in_rate_derived",
                    "component": "TransferService",
                },
            )
            return TransferService._leg_conversion(
                workspace, in_amount, to_currency, on_date, explicit_rate=derived
            )

    # -------------------------------------------------------------------
    # CREATE
    # -------------------------------------------------------------------

    @staticmethod
    def _insert_leg(workspace, user, **fields) -> Operation:
        operation = Operation(workspace=workspace, user=user, type="transfer", **fields)
        operation.full_clean(exclude=["workspace", "user", "tags"])
        operation.save()
        return operation

    @staticmethod
    def _compensate(out_leg: Operation, error: Exception):
        """Remove the out-leg after a failed in-leg write, then raise."""
        rollback_error = None
        try:
            Operation.objects.filter(pk=out_leg.pk).delete()
        except DatabaseError as cleanup_error:
            rollback_error = cleanup_error

        logger.error(
            "Transfer in-leg failed - out-leg compensated",
            extra={
                "workspace_id": out_leg.workspace_id,
                "transfer_group_id": str(out_leg.transfer_group_id),
                "out_leg_id": out_leg.pk,
                "compensated": rollback_error is None,
                "error": str(error),
                "rollback_error": str(rollback_error) if rollback_error else None,
                "action": "transfer_partial_write",
                "component": "TransferService",
                "severity": "critical" if rollback_error else "high",
            },
        )
        message = (
            "Transfer failed while writing the destination leg; source leg removed"
            if rollback_error is None
            else "Transfer failed while writing the destination leg and the source leg could not be removed"
        )
        raise PartialWriteError(message, original_error=error, rollback_error=rollback_error) from error

    @staticmethod
    def create_transfer(workspace, user, cleaned: dict) -> list[Operation]:
        """
        Write both legs of a transfer.

        Args:
            workspace: Owning workspace
            user: Author
            cleaned: Output of ``clean_operation_data`` for a transfer

        Returns:
            list: [out_leg, in_leg]

        Raises:
            RateUnresolvedError: Missing cross rate or base rate for a leg
            PartialWriteError: The in-leg or tag linking failed after the out-leg was written
        """
        amount = cleaned["amount"]
        currency = cleaned["currency"]
        to_currency = cleaned["to_currency"]
        on_date = cleaned["operation_date"]

        cross_rate = TransferService._cross_rate(
            workspace, currency, to_currency, on_date, cleaned.get("transfer_rate")
        )
        in_amount = TransferService._in_amount(amount, cross_rate)

        out_conversion = TransferService._leg_conversion(
            workspace, amount, currency, on_date, explicit_rate=cleaned.get("exchange_rate")
        )
        if to_currency == currency:
            in_conversion = dict(out_conversion)
        else:
            in_conversion = TransferService._in_leg_conversion(
                workspace,
                in_amount,
                to_currency,
                on_date,
                out_rate=cleaned.get("exchange_rate"),
                cross_rate=cross_rate,
            )

        group_id = uuid.uuid4()
        common = {
            "transfer_group_id": group_id,
            "operation_date": on_date,
            "description": cleaned.get("description", ""),
        }

        with db_transaction.atomic():
            out_leg = TransferService._insert_leg(
                workspace,
                user,
                account=cleaned["from_account"],
                transfer_direction="out",
                amount=amount,
                currency=currency,
                **out_conversion,
                **common,
            )
            try:
                with db_transaction.atomic():
                    in_leg = TransferService._insert_leg(
                        workspace,
                        user,
                        account=cleaned["to_account"],
                        transfer_direction="in",
                        amount=in_amount,
                        currency=to_currency,
                        transfer_rate=cross_rate,
                        **in_conversion,
                        **common,
                    )
            except (DatabaseError, ValidationError) as e:
                TransferService._compensate(out_leg, e)

            TagService.link_tags([out_leg, in_leg], cleaned.get("tags"), compensate=True)

        logger.info(
            "Transfer created",
            extra={
                "workspace_id": workspace.id,
                "transfer_group_id": str(group_id),
                "from_account_id": out_leg.account_id,
                "to_account_id": in_leg.account_id,
                "amount": str(amount),
                "currency": currency,
                "in_amount": str(in_amount),
                "to_currency": to_currency,
                "action": "transfer_created",
                "component": "TransferService",
            },
        )
        return [out_leg, in_leg]

    # -------------------------------------------------------------------
    # READ / EDIT / DELETE
    # -------------------------------------------------------------------

    @staticmethod
    def get_pair(operation: Operation, lock=False):
        """Return (out_leg, in_leg) of the pair ``operation`` belongs to."""
        qs = Operation.objects.filter(
            workspace_id=operation.workspace_id,
            transfer_group_id=operation.transfer_group_id,
        )
        if lock:
            qs = qs.select_for_update()

        rows = list(qs)
        legs = {leg.transfer_direction: leg for leg in rows}
        if len(rows) != 2 or set(legs) != {"in", "out"}:
            logger.error(
                "Transfer pair incomplete",
                extra={
                    "workspace_id": operation.workspace_id,
                    "transfer_group_id": str(operation.transfer_group_id),
                    "directions": sorted(legs),
                    "action": "transfer_pair_incomplete",
                    "component": "TransferService",
                    "severity": "high",
                },
            )
            raise ValidationError(
                {"transfer_group_id": "Transfer pair is incomplete; run the ledger integrity check"}
            )
        return legs["out"], legs["in"]

    @staticmethod
    def update_transfer(operation: Operation, patch: dict) -> list[Operation]:
        """
        Apply ``patch`` to the pair ``operation`` belongs to.

        ``account`` in the patch addresses the edited leg's own account.
        Changing the currency or date of a leg re-resolves that leg's base
        rate; changing only the amount reuses the rate already stored.

        Returns:
            list: [out_leg, in_leg]
        """
        patch = dict(patch)
        patch.pop("type", None)
        if "account" in patch:
            leg_field = "from_account" if operation.transfer_direction == "out" else "to_account"
            patch[leg_field] = patch.pop("account")

        unknown = set(patch) - TRANSFER_PATCH_FIELDS
        if unknown:
            raise ValidationError({field: "Field cannot be changed on a transfer" for field in sorted(unknown)})

        workspace = operation.workspace
        with db_transaction.atomic():
            out_leg, in_leg = TransferService.get_pair(operation, lock=True)

            merged = {
                "type": "transfer",
                "from_account": out_leg.account_id,
                "to_account": in_leg.account_id,
                "amount": out_leg.amount,
                "currency": out_leg.currency,
                "to_currency": in_leg.currency,
                "transfer_rate": in_leg.transfer_rate,
                "operation_date": out_leg.operation_date,
                "description": out_leg.description,
            }
            merged.update(patch)
            cleaned = clean_operation_data(merged, workspace)

            currency = cleaned["currency"]
            to_currency = cleaned["to_currency"]
            on_date = cleaned["operation_date"]
            date_changed = on_date != out_leg.operation_date
            out_currency_changed = currency != out_leg.currency
            in_currency_changed = to_currency != in_leg.currency

            if "transfer_rate" in patch or out_currency_changed or in_currency_changed or date_changed:
                cross_rate = TransferService._cross_rate(
                    workspace,
                    currency,
                    to_currency,
                    on_date,
                    cleaned["transfer_rate"] if "transfer_rate" in patch else None,
                )
            else:
                cross_rate = in_leg.transfer_rate
            in_amount = TransferService._in_amount(cleaned["amount"], cross_rate)

            if "exchange_rate" in patch or out_currency_changed or date_changed:
                out_conversion = TransferService._leg_conversion(
                    workspace, cleaned["amount"], currency, on_date, cleaned["exchange_rate"]
                )
            else:
                out_conversion = TransferService._leg_conversion(
                    workspace, cleaned["amount"], currency, on_date, out_leg.exchange_rate
                )
                out_conversion["rate_is_approximate"] = out_leg.rate_is_approximate

            if in_currency_changed or date_changed or "exchange_rate" in patch:
                if to_currency == currency:
                    in_conversion = dict(out_conversion)
                else:
                    in_conversion = TransferService._in_leg_conversion(
                        workspace, in_amount, to_currency, on_date, cleaned["exchange_rate"], cross_rate
                    )
            else:
                in_conversion = TransferService._leg_conversion(
                    workspace, in_amount, to_currency, on_date, in_leg.exchange_rate
                )
                in_conversion["rate_is_approximate"] = in_leg.rate_is_approximate

            out_leg.account = cleaned["from_account"]
            out_leg.amount = cleaned["amount"]
            out_leg.currency = currency
            in_leg.account = cleaned["to_account"]
            in_leg.amount = in_amount
            in_leg.currency = to_currency
            in_leg.transfer_rate = cross_rate
            for leg, conversion in ((out_leg, out_conversion), (in_leg, in_conversion)):
                for field, value in conversion.items():
                    setattr(leg, field, value)
                leg.operation_date = on_date
                leg.description = cleaned["description"]
                leg.full_clean(exclude=["workspace", "user", "tags"])
                leg.save()

            if "tags" in patch:
                TagService.link_tags([out_leg, in_leg], cleaned["tags"] or [])

        logger.info(
            "Transfer updated",
            extra={
                "workspace_id": workspace.id,
                "transfer_group_id": str(out_leg.transfer_group_id),
                "updated_fields": sorted(patch.keys()),
                "action": "transfer_updated",
                "component": "TransferService",
            },
        )
        return [out_leg, in_leg]

    @staticmethod
    @db_transaction.atomic
    def delete_transfer(operation: Operation) -> int:
        """
        Delete every row of the transfer group in one statement.

        Returns:
            int: Number of operation rows removed
        """
        group_id = operation.transfer_group_id
        _, per_model = Operation.objects.filter(
            workspace_id=operation.workspace_id, transfer_group_id=group_id
        ).delete()
        deleted = per_model.get(Operation._meta.label, 0)

        logger.info(
            "Transfer deleted",
            extra={
                "workspace_id": operation.workspace_id,
                "transfer_group_id": str(group_id),
                "deleted_rows": deleted,
                "action": "transfer_deleted",
                "component": "TransferService",
            },
        )
        return deleted

    # -------------------------------------------------------------------
    # INTEGRITY
    # -------------------------------------------------------------------

    @staticmethod
    def verify_pair(workspace, transfer_group_id) -> list[str]:
        """
        Check the pairing rules for one group.

        Returns:
            list: Human readable violations; empty when the pair is sound
        """
        legs = list(
            Operation.objects.filter(workspace=workspace, transfer_group_id=transfer_group_id)
        )
        violations = []
        if len(legs) != 2:
            violations.append(f"expected 2 legs, found {len(legs)}")

        directions = sorted(leg.transfer_direction or "" for leg in legs)
        if len(legs) == 2 and directions != ["in", "out"]:
            violations.append(f"expected one 'in' and one 'out' leg, found {directions}")

        if any(leg.type != "transfer" for leg in legs):
            violations.append("leg with non-transfer type")
        if len({leg.operation_date for leg in legs}) > 1:
            violations.append("legs dated differently")

        by_direction = {leg.transfer_direction: leg for leg in legs}
        out_leg, in_leg = by_direction.get("out"), by_direction.get("in")
        if out_leg and in_leg:
            if out_leg.account_id and out_leg.account_id == in_leg.account_id:
                violations.append("legs booked on the same account")
            if out_leg.currency == in_leg.currency and out_leg.amount != in_leg.amount:
                violations.append("same-currency legs with different amounts")
        return violations

    @staticmethod
    def broken_groups(workspace=None) -> dict:
        """
        Transfer groups that break pairing rules.

        Returns:
            dict: transfer_group_id -> list of violations
        """
        qs = Operation.objects.filter(transfer_group_id__isnull=False)
        if workspace is not None:
            qs = qs.filter(workspace=workspace)

        groups = defaultdict(set)
        for workspace_id, group_id in qs.values_list("workspace_id", "transfer_group_id"):
            groups[group_id].add(workspace_id)

        broken = {}
        for group_id, workspace_ids in groups.items():
            if len(workspace_ids) > 1:
                broken[group_id] = ["legs in different workspaces"]
                continue
            violations = TransferService.verify_pair(next(iter(workspace_ids)), group_id)
            if violations:
                broken[group_id] = violations
        return broken
