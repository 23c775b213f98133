"""
Account balance aggregation.

Balances are derived on every read from the operation rows: one grouped
aggregate over the signed base-currency effect of each operation. Nothing
is cached on the account, so balances cannot drift from the ledger.
"""

import logging
from decimal import Decimal

from django.db.models import Case, DecimalField, F, Q, Sum, Value, When
from django.db.models.functions import Coalesce

from ..models import Account, Operation
from ..utils.currency_utils import quantize_money

# Get structured logger for this module
logger = logging.getLogger(__name__)

MONEY_FIELD = DecimalField(max_digits=20, decimal_places=2)
ZERO = Decimal("0.00")

# Rows that add to their account: income and the receiving transfer leg
INFLOW = Q(type="income") | Q(type="transfer", transfer_direction="in")


def signed_base_effect_expression():
    """SQL expression for ``Operation.signed_base_effect``."""
    base = Coalesce(F("base_amount"), F("amount"), output_field=MONEY_FIELD)
    return Case(
        When(INFLOW, then=base),
        default=base * Value(Decimal("-1"), output_field=MONEY_FIELD),
        output_field=MONEY_FIELD,
    )


class BalanceService:
    """
    Read-side balance queries.

    Each operation contributes ``+base`` (income, transfer in) or ``-base``
    (expense, salary, transfer out) to its own account, where ``base`` is
    ``base_amount`` or ``amount`` for rows already in base currency. The
    two legs of a cross-currency transfer may book different base amounts;
    that difference is kept as recorded.
    """

    @staticmethod
    def balances_for(workspace) -> dict:
        """
        Balance per account for the workspace, archived accounts included.

        Returns:
            dict: account id -> Decimal balance (0.00 for accounts without operations)
        """
        rows = (
            Operation.objects.filter(workspace=workspace, account__isnull=False)
            .values("account_id")
            .annotate(balance=Sum(signed_base_effect_expression(), output_field=MONEY_FIELD))
        )
        totals = {row["account_id"]: quantize_money(row["balance"] or ZERO) for row in rows}

        balances = {
            account_id: totals.get(account_id, ZERO)
            for account_id in Account.objects.filter(workspace=workspace).values_list(
                "id", flat=True
            )
        }

        logger.debug(
            "Account balances aggregated",
            extra={
                "workspace_id": workspace.id,
                "account_count": len(balances),
                "action": "balances_aggregated",
                "component": "BalanceService",
            },
        )
        return balances

    @staticmethod
    def balance_for_account(account) -> Decimal:
        result = Operation.objects.filter(
            workspace_id=account.workspace_id, account=account
        ).aggregate(
            balance=Coalesce(
                Sum(signed_base_effect_expression(), output_field=MONEY_FIELD),
                Value(ZERO),
                output_field=MONEY_FIELD,
            )
        )
        return quantize_money(result["balance"])

    @staticmethod
    def total_balance(workspace) -> Decimal:
        """Sum over all accounts of the workspace."""
        return quantize_money(
            sum(BalanceService.balances_for(workspace).values(), ZERO)
        )

    @staticmethod
    def balances_with_accounts(workspace, include_archived=True) -> list:
        """Account rows paired with their balance, for API rendering."""
        balances = BalanceService.balances_for(workspace)
        accounts = Account.objects.filter(workspace=workspace)
        if not include_archived:
            accounts = accounts.filter(is_archived=False)
        return [
            {
                "account_id": account.id,
                "account_name": account.name,
                "color": account.color,
                "is_default": account.is_default,
                "is_archived": account.is_archived,
                "balance": balances.get(account.id, ZERO),
            }
            for account in accounts
        ]
