"""
Serializers for the workspace ledger API.

Output serializers render model rows plus derived values (balances, debt
remaining amounts). Writes go through the service layer, which owns
validation of ledger rules; the serializers here only check request shape.

Architecture Pattern:
View → Service (validation + atomic write) → Database
  ↓
Serializer (rendering)
"""

import logging

from django.conf import settings
from rest_framework import serializers

from .models import (
    Account,
    Category,
    Debt,
    ExchangeRate,
    Operation,
    ScheduledOperation,
    Tags,
    WorkspaceSettings,
)
from .services.balance_service import BalanceService
from .services.debt_service import ZERO, DebtService
from .services.summary_service import PERIODS
from .utils.currency_utils import quantize_money

logger = logging.getLogger(__name__)


# -------------------------------------------------------------------
# OPERATION SERIALIZERS
# -------------------------------------------------------------------


class OperationSerializer(serializers.ModelSerializer):
    """
    Read serializer for ledger operations.

    Every field is read-only; create and update go through
    ``OperationService`` with the raw payload.
    """

    tag_list = serializers.SerializerMethodField()
    account_name = serializers.CharField(source="account.name", read_only=True, default=None)
    category_name = serializers.CharField(source="category.name", read_only=True, default=None)
    effective_base_amount = serializers.DecimalField(
        max_digits=20, decimal_places=2, read_only=True
    )

    class Meta:
        model = Operation
        fields = [
            "id",
            "type",
            "amount",
            "currency",
            "exchange_rate",
            "base_amount",
            "effective_base_amount",
            "rate_is_approximate",
            "account",
            "account_name",
            "transfer_group_id",
            "transfer_direction",
            "transfer_rate",
            "category",
            "category_name",
            "tag_list",
            "debt",
            "debt_applied_amount",
            "description",
            "operation_date",
            "user",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_tag_list(self, obj):
        return [tag.name for tag in obj.tags.all()]


class OperationFilterSerializer(serializers.Serializer):
    """Query-string filters accepted by the operation list."""

    type = serializers.ChoiceField(choices=Operation.OPERATION_TYPES, required=False)
    account = serializers.IntegerField(required=False, min_value=1)
    category = serializers.IntegerField(required=False, min_value=1)
    debt = serializers.IntegerField(required=False, min_value=1)
    tag = serializers.CharField(required=False, max_length=50)
    date_from = serializers.DateField(required=False)
    date_to = serializers.DateField(required=False)
    search = serializers.CharField(required=False, max_length=200)
    transfer_group_id = serializers.UUIDField(required=False)

    def validate(self, data):
        if data.get("date_from") and data.get("date_to") and data["date_from"] > data["date_to"]:
            raise serializers.ValidationError({"date_to": "End date cannot be before start date"})
        return data


class PeriodQuerySerializer(serializers.Serializer):
    """Summary and breakdown period selection."""

    period = serializers.ChoiceField(choices=PERIODS, default="current_month")
    date_from = serializers.DateField(required=False)
    date_to = serializers.DateField(required=False)


# -------------------------------------------------------------------
# ACCOUNT SERIALIZER
# -------------------------------------------------------------------


class AccountSerializer(serializers.ModelSerializer):
    """
    Account with its derived balance.

    List views pass precomputed ``balances`` (account id -> Decimal) in the
    serializer context so that the whole page costs one aggregate query.
    """

    balance = serializers.SerializerMethodField()

    class Meta:
        model = Account
        fields = [
            "id",
            "name",
            "color",
            "is_default",
            "is_archived",
            "balance",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "balance", "created_at", "updated_at"]

    def get_balance(self, obj):
        balances = self.context.get("balances")
        if balances is not None and obj.id in balances:
            return str(balances[obj.id])
        return str(BalanceService.balance_for_account(obj))

    def validate_name(self, value):
        stripped_value = value.strip()
        if not stripped_value:
            raise serializers.ValidationError("Account name cannot be empty.")
        return stripped_value


# -------------------------------------------------------------------
# CATEGORY & TAG SERIALIZERS
# -------------------------------------------------------------------


class CategorySerializer(serializers.ModelSerializer):
    class Meta:
        model = Category
        fields = ["id", "name", "type", "color", "is_archived", "created_at"]
        read_only_fields = ["id", "created_at"]

    def validate_name(self, value):
        stripped_value = value.strip()
        if not stripped_value:
            raise serializers.ValidationError("Category name cannot be empty.")
        return stripped_value


class TagSerializer(serializers.ModelSerializer):
    """
    Serializer for the Tag model.
    Handles validation and serialization of tags within a workspace.
    """

    class Meta:
        model = Tags
        fields = ["id", "name", "color", "is_archived", "workspace"]
        read_only_fields = ["id", "workspace"]

    def validate_name(self, value):
        """
        Validate tag name. Ensures it's not empty and normalizes it.
        """
        stripped_value = value.strip()
        if not stripped_value:
            raise serializers.ValidationError("Tag name cannot be empty.")
        if len(stripped_value) > 50:
            raise serializers.ValidationError("Tag name cannot exceed 50 characters.")

        # The model's save method will handle lowercasing
        return stripped_value


# -------------------------------------------------------------------
# EXCHANGE RATE SERIALIZERS
# -------------------------------------------------------------------


class ExchangeRateSerializer(serializers.ModelSerializer):
    """
    Exchange rate observation.

    Features:
    - Currency code validation
    - Rate value validation
    """

    class Meta:
        model = ExchangeRate
        fields = ["id", "from_currency", "to_currency", "rate_date", "rate", "source", "created_at"]
        read_only_fields = ["id", "created_at"]
        # Upserts on the unique key go through ExchangeRateService.set_rate
        validators = []

    def _validate_currency(self, value):
        code = (value or "").strip().upper()
        if len(code) != 3 or not code.isalpha():
            logger.warning(
                "Invalid exchange rate currency",
                extra={
                    "provided_currency": value,
                    "action": "exchange_rate_currency_validation_failed",
                    "component": "ExchangeRateSerializer",
                    "severity": "medium",
                },
            )
            raise serializers.ValidationError("Currency code must be 3 letters")
        return code

    def validate_from_currency(self, value):
        return self._validate_currency(value)

    def validate_to_currency(self, value):
        return self._validate_currency(value)

    def validate_rate(self, value):
        """Validate exchange rate value."""
        if value <= 0:
            logger.warning(
                "Invalid exchange rate value",
                extra={
                    "provided_rate": str(value),
                    "action": "exchange_rate_validation_failed",
                    "component": "ExchangeRateSerializer",
                    "severity": "medium",
                },
            )
            raise serializers.ValidationError("Exchange rate must be positive")
        return value

    def validate(self, data):
        if data.get("from_currency") and data.get("from_currency") == data.get("to_currency"):
            raise serializers.ValidationError({"to_currency": "Exchange rate currencies must differ"})
        return data


class ExchangeRateFilterSerializer(serializers.Serializer):
    """Query-string filters accepted by the rate list."""

    currencies = serializers.CharField(required=False, max_length=200)
    date_from = serializers.DateField(required=False)
    date_to = serializers.DateField(required=False)

    def validate_currencies(self, value):
        return [code.strip().upper() for code in value.split(",") if code.strip()]

    def validate(self, data):
        if data.get("date_from") and data.get("date_to") and data["date_from"] > data["date_to"]:
            raise serializers.ValidationError({"date_to": "End date cannot be before start date"})
        return data


class RateQuerySerializer(serializers.Serializer):
    """Parameters of the rate ``resolve`` and ``convert`` actions."""

    from_currency = serializers.CharField(max_length=3)
    to_currency = serializers.CharField(max_length=3, required=False)
    on_date = serializers.DateField(required=False)
    amount = serializers.DecimalField(max_digits=20, decimal_places=2, required=False, min_value=0)

    def validate_from_currency(self, value):
        return value.strip().upper()

    def validate_to_currency(self, value):
        return value.strip().upper()


# -------------------------------------------------------------------
# DEBT SERIALIZER
# -------------------------------------------------------------------


class DebtSerializer(serializers.ModelSerializer):
    """
    Debt with derived amortization values.

    Uses the ``applied_total``/``remaining_amount`` annotations from
    ``DebtService.debts_with_balance`` when present, and queries otherwise.
    """

    applied_total = serializers.SerializerMethodField()
    remaining_amount = serializers.SerializerMethodField()
    progress_pct = serializers.SerializerMethodField()
    is_paid_off = serializers.SerializerMethodField()

    class Meta:
        model = Debt
        fields = [
            "id",
            "title",
            "counterparty",
            "direction",
            "initial_amount",
            "applied_total",
            "remaining_amount",
            "progress_pct",
            "is_paid_off",
            "opened_on",
            "due_on",
            "notes",
            "is_archived",
            "created_by",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def _remaining(self, obj):
        if getattr(obj, "remaining_amount", None) is not None:
            return quantize_money(obj.remaining_amount)
        return quantize_money(DebtService.remaining_amount(obj))

    def get_applied_total(self, obj):
        if getattr(obj, "applied_total", None) is not None:
            return str(quantize_money(obj.applied_total))
        return str(quantize_money(DebtService.applied_total(obj)))

    def get_remaining_amount(self, obj):
        return str(max(self._remaining(obj), ZERO))

    def get_progress_pct(self, obj):
        return DebtService.progress_pct(obj.initial_amount, self._remaining(obj))

    def get_is_paid_off(self, obj):
        return self._remaining(obj) <= 0


# -------------------------------------------------------------------
# SCHEDULED OPERATION & SETTINGS SERIALIZERS
# -------------------------------------------------------------------


class ScheduledOperationSerializer(serializers.ModelSerializer):
    class Meta:
        model = ScheduledOperation
        fields = [
            "id",
            "type",
            "amount",
            "currency",
            "description",
            "category",
            "account",
            "frequency",
            "next_date",
            "is_active",
            "last_run_on",
            "created_at",
        ]
        read_only_fields = fields


class WorkspaceSettingsSerializer(serializers.ModelSerializer):
    class Meta:
        model = WorkspaceSettings
        fields = ["id", "workspace", "base_currency", "updated_at"]
        read_only_fields = ["id", "workspace", "updated_at"]

    def validate_base_currency(self, value):
        """Validate base currency against the configured list."""
        code = value.strip().upper()
        supported = getattr(settings, "LEDGER_SUPPORTED_CURRENCIES", ())
        if supported and code not in supported:
            logger.warning(
                "Unsupported base currency requested",
                extra={
                    "provided_currency": value,
                    "supported_currencies": list(supported),
                    "action": "base_currency_validation_failed",
                    "component": "WorkspaceSettingsSerializer",
                    "severity": "low",
                },
            )
            raise serializers.ValidationError(
                f"Unsupported currency. Choose from: {', '.join(supported)}"
            )
        return code
