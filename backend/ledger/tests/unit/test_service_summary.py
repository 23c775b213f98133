"""
Unit tests for SummaryService: period totals in base currency and the
category/tag breakdown.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional

import pytest
from django.core.exceptions import ValidationError

from ledger.services.operation_service import OperationService
from ledger.services.summary_service import SummaryService


@dataclass
class Row:
    type: str
    amount: Decimal
    operation_date: date
    base_amount: Optional[Decimal] = None

    @property
    def effective_base_amount(self):
        return self.base_amount if self.base_amount is not None else self.amount


TODAY = date(2025, 3, 14)


class TestSummarize:
    def test_totals_per_type(self):
        rows = [
            Row("income", Decimal("1000.00"), TODAY),
            Row("expense", Decimal("100.00"), TODAY),
            Row("expense", Decimal("50.00"), TODAY, base_amount=Decimal("54.00")),
            Row("salary", Decimal("300.00"), TODAY),
        ]

        summary = SummaryService.summarize(rows)

        assert summary == {
            "income": Decimal("1000.00"),
            "expense": Decimal("154.00"),
            "salary": Decimal("300.00"),
            "total": Decimal("546.00"),
            "count": 4,
        }

    def test_transfers_are_skipped(self):
        rows = [Row("transfer", Decimal("75.00"), TODAY), Row("income", Decimal("5.00"), TODAY)]

        summary = SummaryService.summarize(rows)

        assert summary["count"] == 1
        assert summary["total"] == Decimal("5.00")

    def test_bounds_are_inclusive_calendar_dates(self):
        rows = [
            Row("income", Decimal("1.00"), date(2025, 2, 28)),
            Row("income", Decimal("2.00"), date(2025, 3, 1)),
            Row("income", Decimal("4.00"), date(2025, 3, 31)),
            Row("income", Decimal("8.00"), date(2025, 4, 1)),
        ]

        summary = SummaryService.summarize(rows, date(2025, 3, 1), date(2025, 3, 31))

        assert summary["income"] == Decimal("6.00")

    def test_empty_input(self):
        summary = SummaryService.summarize([])

        assert summary["total"] == Decimal("0.00")
        assert summary["count"] == 0


class TestPeriodBounds:
    def test_named_periods(self):
        assert SummaryService.period_bounds("today", today=TODAY) == (TODAY, TODAY)
        assert SummaryService.period_bounds("current_month", today=date(2024, 2, 10)) == (
            date(2024, 2, 1),
            date(2024, 2, 29),
        )

    def test_range(self):
        assert SummaryService.period_bounds(
            "range", date_from="2025-01-01", date_to=date(2025, 1, 31)
        ) == (date(2025, 1, 1), date(2025, 1, 31))

    @pytest.mark.parametrize(
        "period, kwargs, field",
        [
            ("week", {}, "period"),
            ("range", {"date_to": "2025-01-31"}, "date_from"),
            ("range", {"date_from": "2025-02-01", "date_to": "2025-01-31"}, "date_to"),
        ],
    )
    def test_invalid(self, period, kwargs, field):
        with pytest.raises(ValidationError) as exc_info:
            SummaryService.period_bounds(period, today=TODAY, **kwargs)

        assert field in exc_info.value.message_dict


@pytest.mark.django_db
class TestWorkspaceSummaries:
    @pytest.fixture
    def ledger(self, usd_workspace, test_user, cash_account, bank_account, expense_category):
        writes = [
            {"type": "income", "amount": "2000.00", "operation_date": "2025-01-15"},
            {"type": "expense", "amount": "100.00", "currency": "EUR", "operation_date": "2025-01-15",
             "category": expense_category.id, "tags": ["food", "family"]},
            {"type": "expense", "amount": "30.00", "operation_date": "2025-01-03", "tags": ["food"]},
            {"type": "salary", "amount": "500.00", "operation_date": "2025-01-31"},
            {"type": "expense", "amount": "999.00", "operation_date": "2025-02-01"},
        ]
        for data in writes:
            OperationService.record_operation(
                usd_workspace, test_user, {**data, "account": cash_account.id}
            )
        OperationService.record_operation(
            usd_workspace,
            test_user,
            {"type": "transfer", "amount": "10.00", "from_account": cash_account.id,
             "to_account": bank_account.id, "operation_date": "2025-01-15"},
        )
        return usd_workspace

    def test_current_month_in_base_currency(self, ledger):
        summary = SummaryService.summary_for_workspace(ledger, "current_month", today=date(2025, 1, 20))

        assert summary["base_currency"] == "USD"
        assert summary["income"] == Decimal("2000.00")
        assert summary["expense"] == Decimal("138.00")
        assert summary["salary"] == Decimal("500.00")
        assert summary["total"] == Decimal("1362.00")
        assert (summary["date_from"], summary["date_to"]) == (date(2025, 1, 1), date(2025, 1, 31))

    def test_dashboard(self, ledger):
        dashboard = SummaryService.dashboard(ledger, today=date(2025, 1, 15))

        assert dashboard["today"]["income"] == Decimal("2000.00")
        assert dashboard["today"]["expense"] == Decimal("108.00")
        assert dashboard["today"]["count"] == 2
        assert dashboard["month"]["count"] == 4

    def test_breakdown_by_category_and_tag(self, ledger, expense_category):
        result = SummaryService.breakdown_for_workspace(ledger, "current_month", today=date(2025, 1, 20))

        categories = {(row["type"], row["category_id"]): row for row in result["categories"]}
        assert categories[("expense", expense_category.id)]["total"] == Decimal("108.00")
        assert categories[("expense", expense_category.id)]["category_name"] == "Groceries"
        assert categories[("expense", None)]["total"] == Decimal("30.00")

        tags = {row["tag_name"]: row["total"] for row in result["tags"]}
        assert tags == {"food": Decimal("138.00"), "family": Decimal("108.00")}
        assert result["categories"][0]["total"] == Decimal("2000.00")
