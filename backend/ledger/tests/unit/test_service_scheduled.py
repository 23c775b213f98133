"""
Unit tests for recurring operations: schedule validation, catch-up posting
and failure isolation between schedules.
"""

from datetime import date
from decimal import Decimal

import pytest
from django.core.exceptions import ValidationError

from ledger.models import Operation, ScheduledOperation
from ledger.services.scheduled_operation_service import ScheduledOperationService
from ledger.utils.date_utils import next_occurrence, parse_date

from ..factories import ScheduledOperationFactory

# =====================================================
# SCHEDULE CRUD
# =====================================================


@pytest.mark.django_db
class TestScheduleValidation:
    def test_create_defaults_to_base_currency(self, test_workspace, test_user, cash_account):
        schedule = ScheduledOperationService.create_schedule(
            test_workspace,
            test_user,
            {
                "type": "expense",
                "amount": "25.5",
                "frequency": "monthly",
                "next_date": "2025-01-31",
                "account": cash_account.id,
            },
        )

        assert schedule.currency == "EUR"
        assert schedule.amount == Decimal("25.50")
        assert schedule.account == cash_account
        assert schedule.next_date == date(2025, 1, 31)

    def test_create_rejects_bad_fields(self, test_workspace, test_user):
        with pytest.raises(ValidationError) as exc_info:
            ScheduledOperationService.create_schedule(
                test_workspace,
                test_user,
                {"type": "transfer", "amount": "-1", "frequency": "hourly"},
            )

        assert {"type", "amount", "frequency"} <= set(exc_info.value.message_dict)

    def test_account_from_other_workspace_rejected(self, test_workspace, test_user, other_workspace):
        foreign = other_workspace.accounts.create(name="Foreign")

        with pytest.raises(ValidationError) as exc_info:
            ScheduledOperationService.create_schedule(
                test_workspace,
                test_user,
                {"type": "income", "amount": "10", "frequency": "daily", "account": foreign.id},
            )

        assert "account" in exc_info.value.message_dict

    def test_update_pauses_schedule(self, test_workspace):
        schedule = ScheduledOperationFactory(workspace=test_workspace)

        ScheduledOperationService.update_schedule(schedule, {"is_active": False})

        schedule.refresh_from_db()
        assert schedule.is_active is False

    def test_update_rejects_unknown_fields(self, test_workspace):
        schedule = ScheduledOperationFactory(workspace=test_workspace)

        with pytest.raises(ValidationError):
            ScheduledOperationService.update_schedule(schedule, {"last_run_on": "2025-01-01"})

    def test_create_rejects_mismatched_category(self, test_workspace, test_user, expense_category):
        with pytest.raises(ValidationError) as exc_info:
            ScheduledOperationService.create_schedule(
                test_workspace,
                test_user,
                {
                    "type": "income",
                    "amount": "10",
                    "frequency": "monthly",
                    "category": expense_category.id,
                },
            )

        assert "category" in exc_info.value.message_dict
        assert ScheduledOperation.objects.count() == 0

    def test_salary_accepts_expense_category(self, test_workspace, test_user, expense_category):
        schedule = ScheduledOperationService.create_schedule(
            test_workspace,
            test_user,
            {"type": "salary", "amount": "10", "frequency": "monthly", "category": expense_category.id},
        )

        assert schedule.category == expense_category

    def test_update_rejects_type_change_against_category(self, test_workspace, expense_category):
        schedule = ScheduledOperationFactory(workspace=test_workspace, category=expense_category)

        with pytest.raises(ValidationError) as exc_info:
            ScheduledOperationService.update_schedule(schedule, {"type": "income"})

        assert "category" in exc_info.value.message_dict
        schedule.refresh_from_db()
        assert schedule.type == "expense"

    def test_update_reads_string_flags(self, test_workspace):
        schedule = ScheduledOperationFactory(workspace=test_workspace)

        ScheduledOperationService.update_schedule(schedule, {"is_active": "false"})

        schedule.refresh_from_db()
        assert schedule.is_active is False


# =====================================================
# RUNNING DUE SCHEDULES
# =====================================================


@pytest.mark.django_db
class TestRunDue:
    def test_catch_up_posts_each_missed_occurrence(self, test_workspace):
        schedule = ScheduledOperationFactory(
            workspace=test_workspace, frequency="weekly", next_date=date(2025, 1, 1)
        )

        result = ScheduledOperationService.run_due(today=date(2025, 1, 15))

        assert result == {"posted": 3, "processed": [schedule.id], "failed": []}
        dates = sorted(Operation.objects.values_list("operation_date", flat=True))
        assert dates == [date(2025, 1, 1), date(2025, 1, 8), date(2025, 1, 15)]

        schedule.refresh_from_db()
        assert schedule.last_run_on == date(2025, 1, 15)
        assert schedule.next_date == date(2025, 1, 22)

    def test_second_run_same_day_posts_nothing(self, test_workspace):
        ScheduledOperationFactory(workspace=test_workspace, frequency="daily", next_date=date(2025, 1, 15))

        ScheduledOperationService.run_due(today=date(2025, 1, 15))
        result = ScheduledOperationService.run_due(today=date(2025, 1, 15))

        assert result["posted"] == 0
        assert Operation.objects.count() == 1

    def test_inactive_and_future_schedules_skipped(self, test_workspace):
        ScheduledOperationFactory(workspace=test_workspace, is_active=False, next_date=date(2025, 1, 1))
        ScheduledOperationFactory(workspace=test_workspace, next_date=date(2025, 2, 1))

        result = ScheduledOperationService.run_due(today=date(2025, 1, 15))

        assert result["posted"] == 0
        assert Operation.objects.count() == 0

    def test_failing_schedule_does_not_block_others(self, test_workspace):
        # USD without any stored rate cannot be converted into the EUR base
        broken = ScheduledOperationFactory(
            workspace=test_workspace, currency="USD", next_date=date(2025, 1, 10)
        )
        healthy = ScheduledOperationFactory(workspace=test_workspace, next_date=date(2025, 1, 10))

        result = ScheduledOperationService.run_due(today=date(2025, 1, 15))

        assert result["failed"] == [broken.id]
        assert result["processed"] == [healthy.id]
        assert Operation.objects.count() == 1

        broken.refresh_from_db()
        assert broken.next_date == date(2025, 1, 10)
        assert broken.last_run_on is None

    def test_workspace_filter(self, test_workspace, other_workspace):
        ScheduledOperationFactory(workspace=test_workspace, next_date=date(2025, 1, 1))
        other = ScheduledOperationFactory(workspace=other_workspace, next_date=date(2025, 1, 1))

        result = ScheduledOperationService.run_due(today=date(2025, 1, 1), workspace=other_workspace)

        assert result["processed"] == [other.id]
        assert Operation.objects.get().workspace == other_workspace


@pytest.mark.parametrize(
    "day, frequency, expected",
    [
        (date(2025, 1, 31), "daily", date(2025, 2, 1)),
        (date(2025, 1, 31), "weekly", date(2025, 2, 7)),
        (date(2025, 1, 31), "monthly", date(2025, 2, 28)),
        (date(2024, 2, 29), "yearly", date(2025, 2, 28)),
    ],
)
def test_next_occurrence(day, frequency, expected):
    assert next_occurrence(day, frequency) == expected


def test_next_occurrence_unknown_frequency():
    with pytest.raises(ValueError):
        next_occurrence(date(2025, 1, 1), "hourly")


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("2024-01-10", date(2024, 1, 10)),
        (" 2024-01-10 ", date(2024, 1, 10)),
        ("2024-01-10T08:30:00Z", date(2024, 1, 10)),
        ("2024-01-10 08:30", date(2024, 1, 10)),
        ("2024-01-10garbage", None),
        ("2024-02-30", None),
        (None, None),
    ],
)
def test_parse_date(raw, expected):
    assert parse_date(raw) == expected
