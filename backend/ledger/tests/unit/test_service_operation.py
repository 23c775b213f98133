"""
Unit tests for OperationService: recording, editing, deleting and listing
ledger operations, including base-currency conversion on write.
"""

from datetime import date
from decimal import Decimal

import pytest
from django.core.exceptions import ValidationError

from ledger.exceptions import RateUnresolvedError
from ledger.models import ExchangeRate, Operation, Tags
from ledger.services.balance_service import BalanceService
from ledger.services.operation_service import OperationService


def expense_data(account, **overrides):
    data = {
        "type": "expense",
        "amount": "25.50",
        "account": account.id,
        "operation_date": "2025-01-15",
        "description": "Weekly groceries",
    }
    data.update(overrides)
    return data


# =============================================================================
# RECORD
# =============================================================================


@pytest.mark.django_db
class TestRecordOperation:
    def test_base_currency_expense(self, test_workspace, test_user, cash_account, expense_category):
        [operation] = OperationService.record_operation(
            test_workspace,
            test_user,
            expense_data(cash_account, category=expense_category.id),
        )

        assert operation.pk is not None
        assert operation.amount == Decimal("25.50")
        assert operation.currency == "EUR"
        assert operation.exchange_rate is None
        assert operation.base_amount is None
        assert operation.effective_base_amount == Decimal("25.50")
        assert operation.category == expense_category
        assert operation.user == test_user

    def test_defaults_currency_and_date(self, test_workspace, test_user, cash_account):
        data = expense_data(cash_account)
        del data["operation_date"]

        [operation] = OperationService.record_operation(test_workspace, test_user, data)

        assert operation.currency == test_workspace.base_currency
        assert operation.operation_date is not None

    def test_foreign_currency_converted_with_stored_rate(self, usd_workspace, test_user, cash_account):
        [operation] = OperationService.record_operation(
            usd_workspace,
            test_user,
            {"type": "income", "amount": "100", "currency": "eur", "account": cash_account.id,
             "operation_date": date(2025, 1, 15)},
        )

        assert operation.currency == "EUR"
        assert operation.exchange_rate == Decimal("1.08000000")
        assert operation.base_amount == Decimal("108.00")
        assert operation.rate_is_approximate is False

    def test_approximate_rate_flagged(self, usd_workspace, test_user, cash_account):
        [operation] = OperationService.record_operation(
            usd_workspace,
            test_user,
            expense_data(cash_account, amount="10.00", currency="EUR", operation_date="2025-03-01"),
        )

        assert operation.rate_is_approximate is True
        assert operation.base_amount == Decimal("10.80")

    def test_explicit_rate_overrides_stored_rate(self, usd_workspace, test_user, cash_account):
        [operation] = OperationService.record_operation(
            usd_workspace,
            test_user,
            expense_data(cash_account, amount="100.00", currency="EUR", exchange_rate="1.1"),
        )

        assert operation.base_amount == Decimal("110.00")

    @pytest.mark.parametrize("rate", ["0.000000004", "1e25"])
    def test_unstorable_explicit_rate_rejected(self, usd_workspace, test_user, cash_account, rate):
        with pytest.raises(ValidationError) as exc_info:
            OperationService.record_operation(
                usd_workspace,
                test_user,
                expense_data(cash_account, amount="100.00", currency="EUR", exchange_rate=rate),
            )

        assert "exchange_rate" in exc_info.value.message_dict
        assert Operation.objects.count() == 0

    def test_missing_rate_blocks_the_write(self, test_workspace, test_user, cash_account):
        with pytest.raises(RateUnresolvedError):
            OperationService.record_operation(
                test_workspace, test_user, expense_data(cash_account, currency="GBP")
            )

        assert Operation.objects.count() == 0

    def test_tags_created_and_linked(self, test_workspace, test_user, cash_account, tag_food):
        [operation] = OperationService.record_operation(
            test_workspace,
            test_user,
            expense_data(cash_account, tags=["Food", "  Weekly "]),
        )

        assert {tag.name for tag in operation.tags.all()} == {"food", "weekly"}
        assert Tags.objects.filter(workspace=test_workspace).count() == 2

    @pytest.mark.parametrize(
        "overrides, field",
        [
            ({"amount": "-5"}, "amount"),
            ({"amount": "0"}, "amount"),
            ({"amount": "1.005"}, "amount"),
            ({"type": "refund"}, "type"),
            ({"currency": "EURO"}, "currency"),
            ({"operation_date": "15/01/2025"}, "operation_date"),
            ({"exchange_rate": "0"}, "exchange_rate"),
            ({"tags": "food"}, "tags"),
            ({"to_account": 1}, "to_account"),
            ({"color": "#ffffff"}, "color"),
        ],
    )
    def test_invalid_input_rejected_by_field(self, test_workspace, test_user, cash_account, overrides, field):
        with pytest.raises(ValidationError) as exc_info:
            OperationService.record_operation(
                test_workspace, test_user, expense_data(cash_account, **overrides)
            )

        assert field in exc_info.value.message_dict
        assert Operation.objects.count() == 0

    def test_category_type_must_match(self, test_workspace, test_user, cash_account, income_category):
        with pytest.raises(ValidationError) as exc_info:
            OperationService.record_operation(
                test_workspace, test_user, expense_data(cash_account, category=income_category.id)
            )

        assert "category" in exc_info.value.message_dict

    def test_salary_uses_expense_category(self, test_workspace, test_user, cash_account, expense_category):
        [operation] = OperationService.record_operation(
            test_workspace,
            test_user,
            expense_data(cash_account, type="salary", category=expense_category.id),
        )

        assert operation.type == "salary"

    def test_account_of_another_workspace_rejected(self, test_workspace, other_workspace, test_user):
        foreign_account = other_workspace.accounts.create(name="Foreign")

        with pytest.raises(ValidationError) as exc_info:
            OperationService.record_operation(
                test_workspace, test_user, expense_data(foreign_account)
            )

        assert "account" in exc_info.value.message_dict

    def test_archived_account_still_accepts_operations(self, test_workspace, test_user, bank_account):
        bank_account.is_archived = True
        bank_account.save()

        [operation] = OperationService.record_operation(
            test_workspace, test_user, expense_data(bank_account)
        )

        assert operation.account == bank_account


# =============================================================================
# UPDATE
# =============================================================================


@pytest.mark.django_db
class TestUpdateOperation:
    @pytest.fixture
    def eur_expense(self, usd_workspace, test_user, cash_account):
        [operation] = OperationService.record_operation(
            usd_workspace,
            test_user,
            expense_data(cash_account, amount="100.00", currency="EUR"),
        )
        return operation

    def test_amount_change_reuses_stored_rate(self, eur_expense, usd_workspace):
        ExchangeRate.objects.filter(workspace=usd_workspace).update(rate=Decimal("2"))

        [updated] = OperationService.update_operation(eur_expense, {"amount": "200.00"})

        assert updated.exchange_rate == Decimal("1.08000000")
        assert updated.base_amount == Decimal("216.00")

    def test_date_change_re_resolves_rate(self, eur_expense, usd_workspace):
        ExchangeRate.objects.create(
            workspace=usd_workspace,
            from_currency="EUR",
            to_currency="USD",
            rate_date=date(2025, 1, 20),
            rate=Decimal("1.10"),
        )

        [updated] = OperationService.update_operation(eur_expense, {"operation_date": "2025-01-20"})

        assert updated.exchange_rate == Decimal("1.10000000")
        assert updated.base_amount == Decimal("110.00")

    def test_currency_change_to_base_drops_rate(self, eur_expense):
        [updated] = OperationService.update_operation(eur_expense, {"currency": "USD"})

        assert updated.exchange_rate is None
        assert updated.base_amount is None

    def test_explicit_rate_in_patch(self, eur_expense):
        [updated] = OperationService.update_operation(eur_expense, {"exchange_rate": "1.5"})

        assert updated.base_amount == Decimal("150.00")

    def test_tags_replaced_only_when_patched(self, test_workspace, test_user, cash_account):
        [operation] = OperationService.record_operation(
            test_workspace, test_user, expense_data(cash_account, tags=["food"])
        )

        OperationService.update_operation(operation, {"description": "Edited"})
        assert [tag.name for tag in operation.tags.all()] == ["food"]

        OperationService.update_operation(operation, {"tags": ["travel"]})
        assert [tag.name for tag in operation.tags.all()] == ["travel"]

    def test_cannot_become_a_transfer(self, test_workspace, test_user, cash_account):
        [operation] = OperationService.record_operation(
            test_workspace, test_user, expense_data(cash_account)
        )

        with pytest.raises(ValidationError) as exc_info:
            OperationService.update_operation(operation, {"type": "transfer"})

        assert "type" in exc_info.value.message_dict

    def test_invalid_patch_leaves_row_untouched(self, test_workspace, test_user, cash_account):
        [operation] = OperationService.record_operation(
            test_workspace, test_user, expense_data(cash_account)
        )

        with pytest.raises(ValidationError):
            OperationService.update_operation(operation, {"amount": "-1"})

        operation.refresh_from_db()
        assert operation.amount == Decimal("25.50")


# =============================================================================
# DELETE
# =============================================================================


@pytest.mark.django_db
def test_create_then_delete_restores_balances(test_workspace, test_user, cash_account):
    OperationService.record_operation(
        test_workspace,
        test_user,
        {"type": "income", "amount": "500.00", "account": cash_account.id, "operation_date": "2025-01-01"},
    )
    before = BalanceService.balances_for(test_workspace)

    [operation] = OperationService.record_operation(
        test_workspace, test_user, expense_data(cash_account, amount="80.00")
    )
    assert BalanceService.balance_for_account(cash_account) == Decimal("420.00")

    deleted = OperationService.delete_operation(operation)

    assert deleted == 1
    assert BalanceService.balances_for(test_workspace) == before


# =============================================================================
# LIST
# =============================================================================


@pytest.mark.django_db
class TestListOperations:
    @pytest.fixture
    def ledger(self, test_workspace, test_user, cash_account, expense_category):
        rows = []
        rows += OperationService.record_operation(
            test_workspace, test_user,
            expense_data(cash_account, category=expense_category.id, tags=["food"], operation_date="2025-01-05"),
        )
        rows += OperationService.record_operation(
            test_workspace, test_user,
            {"type": "income", "amount": "900", "account": cash_account.id,
             "operation_date": "2025-01-20", "description": "Invoice 42"},
        )
        return rows

    def test_newest_first(self, test_workspace, ledger):
        operations = list(OperationService.list_operations(test_workspace))

        assert [op.operation_date for op in operations] == [date(2025, 1, 20), date(2025, 1, 5)]

    @pytest.mark.parametrize(
        "filters, expected_types",
        [
            ({"type": "income"}, ["income"]),
            ({"tag": "FOOD"}, ["expense"]),
            ({"date_from": "2025-01-10"}, ["income"]),
            ({"date_to": date(2025, 1, 10)}, ["expense"]),
            ({"search": "invoice"}, ["income"]),
        ],
    )
    def test_filters(self, test_workspace, ledger, filters, expected_types):
        operations = OperationService.list_operations(test_workspace, filters)

        assert [op.type for op in operations] == expected_types

    def test_invalid_date_filter(self, test_workspace):
        with pytest.raises(ValidationError):
            list(OperationService.list_operations(test_workspace, {"date_from": "yesterday"}))

    def test_scoped_to_workspace(self, other_workspace, ledger):
        assert not OperationService.list_operations(other_workspace).exists()
