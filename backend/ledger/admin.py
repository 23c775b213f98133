from django.contrib import admin

from .models import (
    Account,
    Category,
    Debt,
    ExchangeRate,
    Operation,
    ScheduledOperation,
    Tags,
    Workspace,
    WorkspaceMembership,
    WorkspaceSettings,
)


class WorkspaceMembershipInline(admin.TabularInline):
    model = WorkspaceMembership
    extra = 0


@admin.register(Workspace)
class WorkspaceAdmin(admin.ModelAdmin):
    list_display = ("name", "owner", "is_active", "created_at")
    list_filter = ("is_active",)
    search_fields = ("name", "owner__username")
    inlines = [WorkspaceMembershipInline]


@admin.register(WorkspaceSettings)
class WorkspaceSettingsAdmin(admin.ModelAdmin):
    list_display = ("workspace", "base_currency", "updated_at")


@admin.register(Account)
class AccountAdmin(admin.ModelAdmin):
    list_display = ("name", "workspace", "is_default", "is_archived")
    list_filter = ("is_archived", "is_default")


@admin.register(Category)
class CategoryAdmin(admin.ModelAdmin):
    list_display = ("name", "type", "workspace", "is_archived")
    list_filter = ("type", "is_archived")


@admin.register(Tags)
class TagsAdmin(admin.ModelAdmin):
    list_display = ("name", "workspace", "is_archived")


@admin.register(ExchangeRate)
class ExchangeRateAdmin(admin.ModelAdmin):
    list_display = ("from_currency", "to_currency", "rate", "rate_date", "source", "workspace")
    list_filter = ("source", "from_currency", "to_currency")
    date_hierarchy = "rate_date"


@admin.register(Debt)
class DebtAdmin(admin.ModelAdmin):
    list_display = ("title", "direction", "initial_amount", "workspace", "is_archived")
    list_filter = ("direction", "is_archived")


@admin.register(Operation)
class OperationAdmin(admin.ModelAdmin):
    list_display = (
        "operation_date",
        "type",
        "amount",
        "currency",
        "base_amount",
        "account",
        "transfer_direction",
        "workspace",
    )
    list_filter = ("type", "currency", "rate_is_approximate")
    search_fields = ("description",)
    date_hierarchy = "operation_date"
    readonly_fields = ("transfer_group_id", "created_at", "updated_at")


@admin.register(ScheduledOperation)
class ScheduledOperationAdmin(admin.ModelAdmin):
    list_display = ("type", "amount", "currency", "frequency", "next_date", "is_active", "workspace")
    list_filter = ("frequency", "is_active")
