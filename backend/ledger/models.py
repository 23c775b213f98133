"""
Database models for the workspace ledger.

This module defines the workspace boundary, the money pools (accounts),
classification attributes (categories, tags), exchange-rate observations,
debts, scheduled operations and the operation ledger itself. Balances and
debt remaining amounts are never stored here; services derive them from
the operation rows.
"""

import logging
import re
from decimal import Decimal

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models, transaction
from django.utils import timezone

# Get structured logger for this module
logger = logging.getLogger(__name__)

CURRENCY_CODE_RE = re.compile(r"^[A-Z]{3}$")
COLOR_RE = re.compile(r"^#[0-9A-Fa-f]{6}$")


def default_base_currency():
    return getattr(settings, "LEDGER_DEFAULT_BASE_CURRENCY", "EUR")


def default_color():
    return getattr(settings, "LEDGER_DEFAULT_COLOR", "#6B7280")


def validate_color(value):
    if value and not COLOR_RE.match(value):
        raise ValidationError("Color must be a hex value like #6B7280")


# -------------------------------------------------------------------
# WORKSPACE & MEMBERSHIP
# -------------------------------------------------------------------
# Tenant boundary; every ledger row belongs to exactly one workspace


class Workspace(models.Model):
    """
    Shared ledger owned by one user and used by its members.

    Membership and roles are managed elsewhere; the ledger only scopes
    every read and write by workspace.
    """

    name = models.CharField(max_length=100)
    description = models.TextField(blank=True, null=True)
    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="owned_workspaces",
    )
    members = models.ManyToManyField(
        settings.AUTH_USER_MODEL,
        through="WorkspaceMembership",
        through_fields=("workspace", "user"),
        related_name="workspaces",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ["name"]
        indexes = [
            models.Index(fields=["owner", "is_active"], name="idx_workspace_owner_active"),
        ]

    def __str__(self):
        return f"{self.name} (Owner: {self.owner.username})"

    def clean(self):
        """Validate workspace data."""
        super().clean()

        if not self.name or len(self.name.strip()) < 2:
            raise ValidationError("Workspace name must be at least 2 characters long.")

        logger.debug(
            "Workspace validation completed",
            extra={
                "workspace_id": self.id if self.id else "new",
                "workspace_name": self.name,
                "action": "workspace_validation",
                "component": "Workspace",
            },
        )

    @property
    def base_currency(self):
        """Base currency from settings, falling back to the configured default."""
        workspace_settings = getattr(self, "settings", None)
        if workspace_settings is not None:
            return workspace_settings.base_currency
        return default_base_currency()


class WorkspaceMembership(models.Model):
    """Role of a user inside a workspace."""

    ROLE_CHOICES = [
        ("owner", "Owner"),
        ("editor", "Editor"),
        ("viewer", "Viewer"),
    ]

    workspace = models.ForeignKey(Workspace, on_delete=models.CASCADE)
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE)
    role = models.CharField(max_length=10, choices=ROLE_CHOICES, default="viewer")
    joined_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        unique_together = ["workspace", "user"]
        verbose_name_plural = "Workspace memberships"
        indexes = [
            models.Index(fields=["user", "role"], name="idx_membership_user_role"),
        ]

    def __str__(self):
        return f"{self.user.username} in {self.workspace.name} as {self.role}"


# -------------------------------------------------------------------
# WORKSPACE SETTINGS
# -------------------------------------------------------------------
# Base currency every operation is normalized to


class WorkspaceSettings(models.Model):
    """
    Workspace-level ledger configuration.

    Created automatically by a post_save signal on Workspace.
    """

    workspace = models.OneToOneField(
        Workspace, on_delete=models.CASCADE, related_name="settings"
    )
    base_currency = models.CharField(max_length=3, default=default_base_currency)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name_plural = "Workspace settings"

    def __str__(self):
        return f"{self.workspace.name} settings ({self.base_currency})"

    def clean(self):
        super().clean()

        supported = getattr(settings, "LEDGER_SUPPORTED_CURRENCIES", ())
        if supported and self.base_currency not in supported:
            raise ValidationError(
                {"base_currency": f"Base currency must be one of: {', '.join(supported)}"}
            )


# -------------------------------------------------------------------
# ACCOUNTS
# -------------------------------------------------------------------
# Money pools; balances are derived from operations on read


class Account(models.Model):
    """
    Named money pool inside a workspace.

    Archiving hides the account from pickers but keeps its history.
    Hard delete is rejected while any operation references it.
    """

    workspace = models.ForeignKey(
        Workspace, on_delete=models.CASCADE, related_name="accounts"
    )
    name = models.CharField(max_length=100)
    color = models.CharField(
        max_length=7, default=default_color, validators=[validate_color]
    )
    is_default = models.BooleanField(default=False)
    is_archived = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-is_default", "name"]
        constraints = [
            models.UniqueConstraint(
                fields=["workspace"],
                condition=models.Q(is_default=True),
                name="unique_default_account_per_workspace",
            )
        ]
        indexes = [
            models.Index(fields=["workspace", "is_archived"], name="idx_account_ws_archived"),
        ]

    def __str__(self):
        return self.name

    def clean(self):
        """Validate account data."""
        super().clean()

        if not self.name or not self.name.strip():
            raise ValidationError({"name": "Account name cannot be empty"})

        if self.is_default and self.is_archived:
            logger.warning(
                "Account validation failed - archived default account",
                extra={
                    "account_id": self.id if self.id else "new",
                    "workspace_id": self.workspace_id,
                    "action": "account_validation_failed",
                    "component": "Account",
                    "severity": "low",
                },
            )
            raise ValidationError("Default account cannot be archived")


# -------------------------------------------------------------------
# CATEGORIES & TAGS
# -------------------------------------------------------------------
# Workspace-scoped classification namespaces


class Category(models.Model):
    """Flat operation category; type restricts which operations may use it."""

    CATEGORY_TYPES = [
        ("income", "Income"),
        ("expense", "Expense"),
    ]

    workspace = models.ForeignKey(
        Workspace, on_delete=models.CASCADE, related_name="categories"
    )
    name = models.CharField(max_length=100)
    type = models.CharField(max_length=10, choices=CATEGORY_TYPES)
    color = models.CharField(
        max_length=7, default=default_color, validators=[validate_color]
    )
    is_archived = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        unique_together = ("workspace", "name", "type")
        ordering = ["type", "name"]
        verbose_name_plural = "Categories"

    def __str__(self):
        return f"{self.name} ({self.type})"


class Tags(models.Model):
    """
    Reusable tag inside a workspace.
    Each workspace has its own isolated tag namespace.
    """

    workspace = models.ForeignKey(Workspace, on_delete=models.CASCADE)
    name = models.CharField(max_length=50)
    color = models.CharField(
        max_length=7, default=default_color, validators=[validate_color]
    )
    is_archived = models.BooleanField(default=False)

    class Meta:
        unique_together = ("workspace", "name")
        ordering = ["name"]
        verbose_name_plural = "Tags"

    def save(self, *args, **kwargs):
        """Ensure tag name is always stripped and lowercase."""
        self.name = self.name.strip().lower()
        super().save(*args, **kwargs)

    def __str__(self):
        return self.name


# -------------------------------------------------------------------
# EXCHANGE RATES
# -------------------------------------------------------------------
# Directional rate observations, one per (workspace, pair, date)


class ExchangeRate(models.Model):
    """
    Observed conversion rate ``1 from_currency = rate to_currency``.

    Rows come from manual entry or from the bulk refresh job that pulls
    the external feeds.
    """

    SOURCE_CHOICES = [
        ("manual", "Manual"),
        ("cbr", "Central Bank of Russia feed"),
        ("openexchangerates", "Open Exchange Rates feed"),
    ]

    workspace = models.ForeignKey(
        Workspace, on_delete=models.CASCADE, related_name="exchange_rates"
    )
    from_currency = models.CharField(max_length=3)
    to_currency = models.CharField(max_length=3)
    rate_date = models.DateField()
    rate = models.DecimalField(max_digits=20, decimal_places=8)
    source = models.CharField(max_length=20, choices=SOURCE_CHOICES, default="manual")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        unique_together = ("workspace", "from_currency", "to_currency", "rate_date")
        ordering = ["-rate_date"]
        indexes = [
            models.Index(
                fields=["workspace", "from_currency", "to_currency"],
                name="idx_rate_workspace_pair",
            ),
        ]
        verbose_name_plural = "Exchange rates"

    def __str__(self):
        return f"{self.from_currency}->{self.to_currency} {self.rate} ({self.rate_date})"

    def clean(self):
        """Validate exchange rate data."""
        super().clean()

        if self.rate is None or self.rate <= 0:
            logger.warning(
                "Invalid exchange rate - must be positive",
                extra={
                    "from_currency": self.from_currency,
                    "to_currency": self.to_currency,
                    "rate": str(self.rate),
                    "action": "exchange_rate_validation_failed",
                    "component": "ExchangeRate",
                    "severity": "medium",
                },
            )
            raise ValidationError({"rate": "Exchange rate must be positive"})

        for field in ("from_currency", "to_currency"):
            if not CURRENCY_CODE_RE.match(getattr(self, field) or ""):
                raise ValidationError({field: "Currency code must be 3 uppercase letters"})

        if self.from_currency == self.to_currency:
            raise ValidationError("Exchange rate currencies must differ")


# -------------------------------------------------------------------
# DEBTS
# -------------------------------------------------------------------
# Obligations amortized by linked operations


class Debt(models.Model):
    """
    Money owed by (``i_owe``) or to (``owed_to_me``) the workspace.

    Remaining amount and progress are derived from linked operations'
    ``debt_applied_amount``; see ``DebtService``.
    """

    DIRECTION_CHOICES = [
        ("i_owe", "I owe"),
        ("owed_to_me", "Owed to me"),
    ]

    # Operation type that settles a debt of the given direction
    DIRECTION_OPERATION_TYPES = {
        "i_owe": "expense",
        "owed_to_me": "income",
    }

    workspace = models.ForeignKey(
        Workspace, on_delete=models.CASCADE, related_name="debts"
    )
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="created_debts",
    )
    direction = models.CharField(max_length=12, choices=DIRECTION_CHOICES)
    title = models.CharField(max_length=200)
    counterparty = models.CharField(max_length=200, blank=True)
    initial_amount = models.DecimalField(max_digits=20, decimal_places=2)
    opened_on = models.DateField(default=timezone.localdate)
    due_on = models.DateField(null=True, blank=True)
    notes = models.TextField(blank=True)
    is_archived = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["is_archived", "due_on", "-created_at"]
        indexes = [
            models.Index(fields=["workspace", "is_archived"], name="idx_debt_ws_archived"),
        ]

    def __str__(self):
        return f"{self.title} ({self.direction}, {self.initial_amount})"

    @property
    def settling_operation_type(self):
        return self.DIRECTION_OPERATION_TYPES[self.direction]

    def clean(self):
        """Validate debt data."""
        super().clean()

        if self.initial_amount is None or self.initial_amount <= 0:
            raise ValidationError({"initial_amount": "Initial amount must be positive"})

        if self.due_on and self.opened_on and self.due_on < self.opened_on:
            raise ValidationError({"due_on": "Due date cannot be before opening date"})

        logger.debug(
            "Debt validation completed",
            extra={
                "debt_id": self.id if self.id else "new",
                "direction": self.direction,
                "initial_amount": str(self.initial_amount),
                "action": "debt_validation",
                "component": "Debt",
            },
        )


# -------------------------------------------------------------------
# OPERATIONS
# -------------------------------------------------------------------
# The ledger: one row per income/expense/salary entry, two per transfer


class Operation(models.Model):
    """
    Single ledger entry.

    ``base_amount`` is ``amount * exchange_rate`` rounded to cents and is
    null when the operation is already in the workspace base currency.
    A transfer is stored as two rows sharing ``transfer_group_id``: an
    ``out`` leg on the source account and an ``in`` leg on the destination.
    """

    OPERATION_TYPES = [
        ("income", "Income"),
        ("expense", "Expense"),
        ("salary", "Salary"),
        ("transfer", "Transfer"),
    ]

    TRANSFER_DIRECTIONS = [
        ("in", "In"),
        ("out", "Out"),
    ]

    workspace = models.ForeignKey(
        Workspace, on_delete=models.CASCADE, related_name="operations"
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="ledger_operations",
    )
    type = models.CharField(max_length=10, choices=OPERATION_TYPES)
    amount = models.DecimalField(max_digits=20, decimal_places=2)
    currency = models.CharField(max_length=3)
    exchange_rate = models.DecimalField(
        max_digits=20, decimal_places=8, null=True, blank=True
    )
    base_amount = models.DecimalField(
        max_digits=20, decimal_places=2, null=True, blank=True
    )
    rate_is_approximate = models.BooleanField(default=False)
    account = models.ForeignKey(
        Account,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="operations",
    )
    transfer_group_id = models.UUIDField(null=True, blank=True, db_index=True)
    transfer_direction = models.CharField(
        max_length=3, choices=TRANSFER_DIRECTIONS, null=True, blank=True
    )
    # In-leg of a cross-currency transfer: out currency -> in currency
    transfer_rate = models.DecimalField(
        max_digits=20, decimal_places=8, null=True, blank=True
    )
    category = models.ForeignKey(
        Category,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="operations",
    )
    tags = models.ManyToManyField(Tags, blank=True, related_name="operations")
    debt = models.ForeignKey(
        Debt,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="operations",
    )
    debt_applied_amount = models.DecimalField(
        max_digits=20, decimal_places=2, null=True, blank=True
    )
    description = models.TextField(blank=True)
    operation_date = models.DateField(default=timezone.localdate)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(
                fields=["workspace", "operation_date"], name="idx_op_workspace_date"
            ),
            models.Index(
                fields=["workspace", "type", "operation_date"],
                name="idx_op_workspace_type_date",
            ),
            models.Index(fields=["account", "type"], name="idx_op_account_type"),
        ]
        ordering = ["-operation_date", "-created_at"]

    def __str__(self):
        return f"{self.type} | {self.amount} {self.currency} | {self.operation_date}"

    @property
    def is_transfer(self):
        return self.type == "transfer"

    @property
    def effective_base_amount(self) -> Decimal:
        """Amount in base currency; rows without a rate are already in base."""
        return self.base_amount if self.base_amount is not None else self.amount

    @property
    def signed_base_effect(self) -> Decimal:
        """Contribution of this row to its account balance."""
        if self.type == "income" or (
            self.type == "transfer" and self.transfer_direction == "in"
        ):
            return self.effective_base_amount
        return -self.effective_base_amount

    def save(self, *args, **kwargs):
        """Save operation with atomic operation for data consistency."""
        with transaction.atomic():
            if self.currency:
                self.currency = self.currency.upper()
            super().save(*args, **kwargs)

    def clean(self):
        """Validate row-local ledger rules."""
        super().clean()

        if self.amount is None or self.amount <= 0:
            logger.warning(
                "Operation validation failed - invalid amount",
                extra={
                    "operation_id": self.id if self.id else "new",
                    "amount": str(self.amount),
                    "action": "operation_validation_failed",
                    "component": "Operation",
                    "severity": "medium",
                },
            )
            raise ValidationError({"amount": "Amount must be positive"})

        if self.is_transfer:
            if self.category_id or self.debt_id:
                raise ValidationError("Transfer cannot carry a category or debt")
            if not self.transfer_group_id or not self.transfer_direction:
                raise ValidationError("Transfer rows need a group id and direction")
        elif self.transfer_group_id or self.transfer_direction:
            raise ValidationError("Only transfer rows may carry transfer fields")

        if (self.debt_id is None) != (self.debt_applied_amount is None):
            raise ValidationError("Debt and debt applied amount must be set together")

        if self.debt_applied_amount is not None and (
            self.debt_applied_amount <= 0 or self.debt_applied_amount > self.amount
        ):
            raise ValidationError(
                {"debt_applied_amount": "Applied amount must be positive and not exceed amount"}
            )

        logger.debug(
            "Operation validation completed successfully",
            extra={
                "operation_id": self.id if self.id else "new",
                "operation_type": self.type,
                "amount": str(self.amount),
                "action": "operation_validation_success",
                "component": "Operation",
            },
        )


# -------------------------------------------------------------------
# SCHEDULED OPERATIONS
# -------------------------------------------------------------------
# Recurring templates materialized into operations when due


class ScheduledOperation(models.Model):
    """Recurring income/expense/salary posted by the scheduler when due."""

    OPERATION_TYPES = [
        ("income", "Income"),
        ("expense", "Expense"),
        ("salary", "Salary"),
    ]

    FREQUENCY_CHOICES = [
        ("daily", "Daily"),
        ("weekly", "Weekly"),
        ("monthly", "Monthly"),
        ("yearly", "Yearly"),
    ]

    workspace = models.ForeignKey(
        Workspace, on_delete=models.CASCADE, related_name="scheduled_operations"
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="scheduled_operations",
    )
    type = models.CharField(max_length=10, choices=OPERATION_TYPES)
    amount = models.DecimalField(max_digits=20, decimal_places=2)
    currency = models.CharField(max_length=3)
    description = models.TextField(blank=True)
    category = models.ForeignKey(
        Category,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="scheduled_operations",
    )
    account = models.ForeignKey(
        Account,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="scheduled_operations",
    )
    frequency = models.CharField(max_length=10, choices=FREQUENCY_CHOICES)
    next_date = models.DateField()
    is_active = models.BooleanField(default=True)
    last_run_on = models.DateField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["next_date"]
        indexes = [
            models.Index(fields=["is_active", "next_date"], name="idx_sched_active_next"),
        ]

    def __str__(self):
        return f"{self.type} {self.amount} {self.currency} {self.frequency} from {self.next_date}"
