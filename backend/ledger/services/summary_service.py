"""
Period summaries over ledger operations.

``summarize`` is a pure function over an in-memory list of operations;
period membership compares calendar dates only. The workspace helpers
fetch the rows and pick the period bounds.
"""

import logging
from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

from django.core.exceptions import ValidationError
from django.utils import timezone

from ..models import Operation
from ..utils.currency_utils import quantize_money
from ..utils.date_utils import month_bounds, parse_date

# Get structured logger for this module
logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")
SUMMARY_TYPES = ("income", "expense", "salary")
PERIODS = ("today", "current_month", "range")


class SummaryService:
    """Income, expense and salary totals for a date window, in base currency."""

    @staticmethod
    def summarize(operations: Iterable, date_from: Optional[date] = None, date_to: Optional[date] = None) -> dict:
        """
        Totals per type for operations dated within ``[date_from, date_to]``.

        Either bound may be None for an open end. Transfers are skipped.
        Amounts use each row's base-currency value.

        Returns:
            dict: income, expense, salary, total (income - expense - salary)
            and the number of operations counted
        """
        totals = {op_type: ZERO for op_type in SUMMARY_TYPES}
        count = 0
        for operation in operations:
            if operation.type not in totals:
                continue
            if date_from and operation.operation_date < date_from:
                continue
            if date_to and operation.operation_date > date_to:
                continue
            totals[operation.type] += operation.effective_base_amount
            count += 1

        income = quantize_money(totals["income"])
        expense = quantize_money(totals["expense"])
        salary = quantize_money(totals["salary"])
        return {
            "income": income,
            "expense": expense,
            "salary": salary,
            "total": income - expense - salary,
            "count": count,
        }

    @staticmethod
    def period_bounds(period: str, today: Optional[date] = None, date_from=None, date_to=None):
        """
        Resolve a named period to an inclusive ``(date_from, date_to)`` pair.

        Raises:
            ValidationError: Unknown period, or a range with missing or reversed dates
        """
        today = today or timezone.localdate()

        if period == "today":
            return today, today
        if period == "current_month":
            return month_bounds(today)
        if period == "range":
            start = parse_date(date_from)
            end = parse_date(date_to)
            errors = {}
            if start is None:
                errors["date_from"] = ["A valid start date is required for a range"]
            if end is None:
                errors["date_to"] = ["A valid end date is required for a range"]
            if start and end and start > end:
                errors["date_to"] = ["End date cannot be before start date"]
            if errors:
                raise ValidationError(errors)
            return start, end

        raise ValidationError({"period": f"Period must be one of: {', '.join(PERIODS)}"})

    @staticmethod
    def _operations_between(workspace, date_from, date_to):
        return list(
            Operation.objects.filter(
                workspace=workspace,
                type__in=SUMMARY_TYPES,
                operation_date__gte=date_from,
                operation_date__lte=date_to,
            ).only("type", "amount", "base_amount", "operation_date")
        )

    @staticmethod
    def summary_for_workspace(workspace, period: str, today=None, date_from=None, date_to=None) -> dict:
        """Summary of one workspace for a named period, with the bounds used."""
        start, end = SummaryService.period_bounds(
            period, today=today, date_from=date_from, date_to=date_to
        )
        summary = SummaryService.summarize(
            SummaryService._operations_between(workspace, start, end), start, end
        )
        summary.update(
            {
                "period": period,
                "date_from": start,
                "date_to": end,
                "base_currency": workspace.base_currency,
            }
        )

        logger.debug(
            "Workspace summary computed",
            extra={
                "workspace_id": workspace.id,
                "period": period,
                "date_from": start.isoformat(),
                "date_to": end.isoformat(),
                "operation_count": summary["count"],
                "action": "summary_computed",
                "component": "SummaryService",
            },
        )
        return summary

    @staticmethod
    def dashboard(workspace, today=None) -> dict:
        """Today and current-month summaries from a single fetch."""
        today = today or timezone.localdate()
        month_start, month_end = month_bounds(today)
        operations = SummaryService._operations_between(workspace, month_start, month_end)
        return {
            "base_currency": workspace.base_currency,
            "today": SummaryService.summarize(operations, today, today),
            "month": SummaryService.summarize(operations, month_start, month_end),
        }

    @staticmethod
    def breakdown(operations: Iterable) -> dict:
        """
        Base-currency totals per category and per tag, largest first.

        Operations without a category are grouped under ``None``. An
        operation with several tags counts toward each of them.
        """
        by_category = defaultdict(lambda: ZERO)
        category_names = {}
        by_tag = defaultdict(lambda: ZERO)

        for operation in operations:
            if operation.type not in SUMMARY_TYPES:
                continue
            amount = operation.effective_base_amount
            key = (operation.type, operation.category_id)
            by_category[key] += amount
            if operation.category_id is not None:
                category_names[operation.category_id] = operation.category.name
            for tag in operation.tags.all():
                by_tag[(operation.type, tag.name)] += amount

        categories = [
            {
                "type": op_type,
                "category_id": category_id,
                "category_name": category_names.get(category_id),
                "total": quantize_money(total),
            }
            for (op_type, category_id), total in by_category.items()
        ]
        tags = [
            {"type": op_type, "tag_name": tag_name, "total": quantize_money(total)}
            for (op_type, tag_name), total in by_tag.items()
        ]
        categories.sort(key=lambda row: row["total"], reverse=True)
        tags.sort(key=lambda row: row["total"], reverse=True)
        return {"categories": categories, "tags": tags}

    @staticmethod
    def breakdown_for_workspace(workspace, period: str, today=None, date_from=None, date_to=None) -> dict:
        start, end = SummaryService.period_bounds(
            period, today=today, date_from=date_from, date_to=date_to
        )
        operations = (
            Operation.objects.filter(
                workspace=workspace,
                type__in=SUMMARY_TYPES,
                operation_date__gte=start,
                operation_date__lte=end,
            )
            .select_related("category")
            .prefetch_related("tags")
        )
        result = SummaryService.breakdown(operations)
        result.update({"period": period, "date_from": start, "date_to": end})
        return result
