"""
Model-level tests: workspace defaults, row-local validation and the
derived values each operation contributes to balances.
"""

import uuid
from datetime import date
from decimal import Decimal

import pytest
from django.core.exceptions import ValidationError

from ledger.models import Account, Operation, Tags, WorkspaceMembership, WorkspaceSettings

from ..factories import AccountFactory, DebtFactory, ExchangeRateFactory, WorkspaceFactory

# =====================================================
# WORKSPACE
# =====================================================


@pytest.mark.django_db
class TestWorkspace:
    def test_signal_creates_settings_and_owner_membership(self, test_user):
        workspace = WorkspaceFactory(owner=test_user)

        assert WorkspaceSettings.objects.get(workspace=workspace).base_currency == "EUR"
        assert WorkspaceMembership.objects.get(workspace=workspace, user=test_user).role == "owner"
        assert workspace.base_currency == "EUR"

    def test_name_too_short(self, test_user):
        workspace = WorkspaceFactory.build(owner=test_user, name=" a")

        with pytest.raises(ValidationError):
            workspace.full_clean()

    def test_unsupported_base_currency(self, test_workspace):
        workspace_settings = test_workspace.settings
        workspace_settings.base_currency = "JPY"

        with pytest.raises(ValidationError) as exc_info:
            workspace_settings.full_clean()

        assert "base_currency" in exc_info.value.message_dict


# =====================================================
# ACCOUNTS, TAGS, RATES, DEBTS
# =====================================================


@pytest.mark.django_db
class TestSupportingModels:
    def test_second_default_account_violates_constraint(self, test_workspace, cash_account):
        account = Account(workspace=test_workspace, name="Card", is_default=True)

        with pytest.raises(ValidationError):
            account.full_clean()

    def test_archived_default_account_invalid(self, test_workspace):
        account = AccountFactory.build(workspace=test_workspace, is_default=True, is_archived=True)

        with pytest.raises(ValidationError):
            account.full_clean()

    def test_tag_name_normalized_on_save(self, test_workspace):
        tag = Tags.objects.create(workspace=test_workspace, name="  Travel ")

        assert tag.name == "travel"

    @pytest.mark.parametrize(
        "overrides",
        [
            {"rate": Decimal("0")},
            {"from_currency": "usd"},
            {"to_currency": "USD"},
        ],
    )
    def test_invalid_exchange_rate(self, test_workspace, overrides):
        rate = ExchangeRateFactory.build(workspace=test_workspace, **overrides)

        with pytest.raises(ValidationError):
            rate.full_clean()

    def test_debt_due_before_opening(self, test_workspace):
        debt = DebtFactory.build(
            workspace=test_workspace, opened_on=date(2025, 2, 1), due_on=date(2025, 1, 1)
        )

        with pytest.raises(ValidationError) as exc_info:
            debt.full_clean()

        assert "due_on" in exc_info.value.message_dict

    def test_debt_settling_operation_type(self, loan_debt, receivable_debt):
        assert loan_debt.settling_operation_type == "expense"
        assert receivable_debt.settling_operation_type == "income"


# =====================================================
# OPERATIONS
# =====================================================


@pytest.mark.django_db
class TestOperation:
    def _operation(self, workspace, **kwargs):
        data = {
            "workspace": workspace,
            "type": "expense",
            "amount": Decimal("10.00"),
            "currency": "EUR",
            "operation_date": date(2025, 1, 15),
        }
        data.update(kwargs)
        return Operation(**data)

    def test_currency_uppercased_on_save(self, test_workspace):
        operation = self._operation(test_workspace, currency="eur")
        operation.save()

        assert operation.currency == "EUR"

    def test_amount_must_be_positive(self, test_workspace):
        with pytest.raises(ValidationError) as exc_info:
            self._operation(test_workspace, amount=Decimal("0")).full_clean()

        assert "amount" in exc_info.value.message_dict

    def test_transfer_fields_only_on_transfers(self, test_workspace):
        operation = self._operation(test_workspace, transfer_group_id=uuid.uuid4(), transfer_direction="out")

        with pytest.raises(ValidationError):
            operation.full_clean()

    def test_transfer_needs_group_and_direction(self, test_workspace):
        with pytest.raises(ValidationError):
            self._operation(test_workspace, type="transfer").full_clean()

    def test_debt_fields_set_together(self, test_workspace, loan_debt):
        with pytest.raises(ValidationError):
            self._operation(test_workspace, debt=loan_debt).full_clean()

    def test_applied_amount_cannot_exceed_amount(self, test_workspace, loan_debt):
        operation = self._operation(test_workspace, debt=loan_debt, debt_applied_amount=Decimal("10.01"))

        with pytest.raises(ValidationError) as exc_info:
            operation.full_clean()

        assert "debt_applied_amount" in exc_info.value.message_dict

    @pytest.mark.parametrize(
        "op_type, direction, base_amount, expected",
        [
            ("income", None, None, Decimal("10.00")),
            ("expense", None, None, Decimal("-10.00")),
            ("salary", None, Decimal("9.20"), Decimal("-9.20")),
            ("transfer", "in", Decimal("9.20"), Decimal("9.20")),
            ("transfer", "out", None, Decimal("-10.00")),
        ],
    )
    def test_signed_base_effect(self, test_workspace, op_type, direction, base_amount, expected):
        operation = self._operation(
            test_workspace, type=op_type, transfer_direction=direction, base_amount=base_amount
        )

        assert operation.signed_base_effect == expected
