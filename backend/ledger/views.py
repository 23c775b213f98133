"""
API views for the workspace ledger.

Every ViewSet is nested under ``/workspaces/<workspace_pk>/`` and stays
thin: the workspace context mixin resolves the workspace and role before
permission checks, and writes are delegated to services through
``ServiceExceptionHandlerMixin.handle_service_call``.
"""

import logging
from decimal import Decimal

from django.db.models import Q
from django.utils import timezone
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import NotFound
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from .mixins.service_exception_handler import ServiceExceptionHandlerMixin
from .mixins.workspace_context import WorkspaceContextMixin
from .models import Account, Category, Debt, ExchangeRate, Operation, ScheduledOperation, Tags
from .permissions import IsWorkspaceEditor, IsWorkspaceMember, IsWorkspaceOwner
from .serializers import (
    AccountSerializer,
    CategorySerializer,
    DebtSerializer,
    ExchangeRateFilterSerializer,
    ExchangeRateSerializer,
    OperationFilterSerializer,
    OperationSerializer,
    PeriodQuerySerializer,
    RateQuerySerializer,
    ScheduledOperationSerializer,
    TagSerializer,
    WorkspaceSettingsSerializer,
)
from .services.account_service import AccountService
from .services.balance_service import BalanceService
from .services.category_service import CategoryService
from .services.currency_service import CurrencyService
from .services.debt_service import DebtService
from .services.exchange_rate_service import ExchangeRateService
from .services.operation_service import OperationService
from .services.scheduled_operation_service import ScheduledOperationService
from .services.summary_service import SummaryService
from .services.tag_service import TagService

# Get structured logger for this module
logger = logging.getLogger(__name__)

# Actions that change ledger state
WRITE_ACTIONS = [
    "create",
    "update",
    "partial_update",
    "destroy",
    "archive",
    "unarchive",
    "set_default",
]


def request_payload(request) -> dict:
    """Plain dict of the request body; form posts keep repeated ``tags``."""
    data = request.data
    if hasattr(data, "getlist"):
        payload = data.dict()
        if "tags" in data:
            payload["tags"] = data.getlist("tags")
        return payload
    return dict(data)


def render_money(value):
    """Decimals as strings, recursively, so money keeps its exact cents in JSON."""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, dict):
        return {key: render_money(item) for key, item in value.items()}
    if isinstance(value, list):
        return [render_money(item) for item in value]
    return value


class BaseWorkspaceViewSet(WorkspaceContextMixin, ServiceExceptionHandlerMixin, viewsets.ModelViewSet):
    """
    Base ViewSet for all workspace-scoped views.

    DRF Request Flow:
    1. initialize_request() - Creates DRF request object
    2. initial() - WorkspaceContextMixin sets request.workspace and role
    3. Permission checks read that context
    4. View processing continues with proper context
    """

    permission_classes = [IsAuthenticated]

    def get_permissions(self):
        """Editors write, members read."""
        if self.action in WRITE_ACTIONS:
            return [IsAuthenticated(), IsWorkspaceEditor()]
        return [IsAuthenticated(), IsWorkspaceMember()]

    @property
    def workspace(self):
        return getattr(self.request, "workspace", None)


# -------------------------------------------------------------------
# OPERATIONS
# -------------------------------------------------------------------
# Ledger CRUD plus period summaries


class OperationViewSet(BaseWorkspaceViewSet):
    """
    THIN ViewSet for ledger operations.

    Create returns a list: one row, or both legs of a transfer. Deleting a
    transfer leg deletes the pair.
    """

    serializer_class = OperationSerializer

    def get_queryset(self):
        if not self.workspace:
            logger.warning(
                "Operation queryset requested without a workspace context",
                extra={
                    "user_id": self.request.user.id,
                    "action": "operations_queryset_no_workspace",
                    "component": "OperationViewSet",
                    "severity": "high",
                },
            )
            return Operation.objects.none()

        filters = {}
        if self.action == "list":
            filter_serializer = OperationFilterSerializer(data=self.request.query_params)
            filter_serializer.is_valid(raise_exception=True)
            filters = filter_serializer.validated_data
        return OperationService.list_operations(self.workspace, filters)

    def create(self, request, *args, **kwargs):
        operations = self.handle_service_call(
            OperationService.record_operation,
            request.workspace,
            request.user,
            request_payload(request),
        )
        return Response(
            OperationSerializer(operations, many=True).data,
            status=status.HTTP_201_CREATED,
        )

    def update(self, request, *args, **kwargs):
        operations = self.handle_service_call(
            OperationService.update_operation, self.get_object(), request_payload(request)
        )
        return Response(OperationSerializer(operations, many=True).data)

    def destroy(self, request, *args, **kwargs):
        deleted = self.handle_service_call(
            OperationService.delete_operation, self.get_object()
        )
        logger.info(
            "Operation deleted via API",
            extra={
                "user_id": request.user.id,
                "workspace_id": request.workspace.id,
                "deleted_rows": deleted,
                "action": "operation_delete_api",
                "component": "OperationViewSet",
            },
        )
        return Response(status=status.HTTP_204_NO_CONTENT)

    def _period_query(self, request):
        query = PeriodQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        return query.validated_data

    @action(detail=False, methods=["get"])
    def summary(self, request, workspace_pk=None):
        query = self._period_query(request)
        summary = self.handle_service_call(
            SummaryService.summary_for_workspace,
            request.workspace,
            query["period"],
            date_from=query.get("date_from"),
            date_to=query.get("date_to"),
        )
        return Response(render_money(summary))

    @action(detail=False, methods=["get"])
    def dashboard(self, request, workspace_pk=None):
        return Response(render_money(self.handle_service_call(SummaryService.dashboard, request.workspace)))

    @action(detail=False, methods=["get"])
    def breakdown(self, request, workspace_pk=None):
        query = self._period_query(request)
        result = self.handle_service_call(
            SummaryService.breakdown_for_workspace,
            request.workspace,
            query["period"],
            date_from=query.get("date_from"),
            date_to=query.get("date_to"),
        )
        return Response(render_money(result))


# -------------------------------------------------------------------
# ACCOUNTS
# -------------------------------------------------------------------


class AccountViewSet(BaseWorkspaceViewSet):
    """Accounts with derived balances."""

    serializer_class = AccountSerializer

    def get_queryset(self):
        if not self.workspace:
            return Account.objects.none()
        qs = Account.objects.filter(workspace=self.workspace)
        if self.action == "list" and self.request.query_params.get("include_archived") == "false":
            qs = qs.filter(is_archived=False)
        return qs

    def get_serializer_context(self):
        context = super().get_serializer_context()
        if self.action == "list" and self.workspace:
            context["balances"] = BalanceService.balances_for(self.workspace)
        return context

    def create(self, request, *args, **kwargs):
        account = self.handle_service_call(
            AccountService.create_account, request.workspace, request_payload(request)
        )
        return Response(AccountSerializer(account).data, status=status.HTTP_201_CREATED)

    def update(self, request, *args, **kwargs):
        account = self.handle_service_call(
            AccountService.update_account, self.get_object(), request_payload(request)
        )
        return Response(AccountSerializer(account).data)

    def destroy(self, request, *args, **kwargs):
        self.handle_service_call(AccountService.delete_account, self.get_object())
        return Response(status=status.HTTP_204_NO_CONTENT)

    @action(detail=True, methods=["post"])
    def archive(self, request, workspace_pk=None, pk=None):
        account = self.handle_service_call(AccountService.archive_account, self.get_object())
        return Response(AccountSerializer(account).data)

    @action(detail=True, methods=["post"])
    def unarchive(self, request, workspace_pk=None, pk=None):
        account = self.handle_service_call(AccountService.unarchive_account, self.get_object())
        return Response(AccountSerializer(account).data)

    @action(detail=True, methods=["post"], url_path="set-default")
    def set_default(self, request, workspace_pk=None, pk=None):
        account = self.handle_service_call(AccountService.set_default, self.get_object())
        return Response(AccountSerializer(account).data)

    @action(detail=False, methods=["get"])
    def balances(self, request, workspace_pk=None):
        rows = self.handle_service_call(BalanceService.balances_with_accounts, request.workspace)
        total = BalanceService.total_balance(request.workspace)
        return Response(
            {
                "base_currency": request.workspace.base_currency,
                "accounts": [{**row, "balance": str(row["balance"])} for row in rows],
                "total": str(total),
            }
        )


# -------------------------------------------------------------------
# DEBTS
# -------------------------------------------------------------------


class DebtViewSet(BaseWorkspaceViewSet):
    """Debts with remaining amounts derived from linked operations."""

    serializer_class = DebtSerializer

    def get_queryset(self):
        if not self.workspace:
            return Debt.objects.none()
        include_archived = self.request.query_params.get("include_archived") != "false"
        return DebtService.debts_with_balance(self.workspace, include_archived=include_archived)

    def create(self, request, *args, **kwargs):
        debt = self.handle_service_call(
            DebtService.create_debt, request.workspace, request.user, request_payload(request)
        )
        return Response(DebtSerializer(debt).data, status=status.HTTP_201_CREATED)

    def update(self, request, *args, **kwargs):
        debt = self.handle_service_call(
            DebtService.update_debt, self.get_object(), request_payload(request)
        )
        return Response(DebtSerializer(debt).data)

    def destroy(self, request, *args, **kwargs):
        self.handle_service_call(DebtService.delete_debt, self.get_object())
        return Response(status=status.HTTP_204_NO_CONTENT)

    @action(detail=True, methods=["post"])
    def archive(self, request, workspace_pk=None, pk=None):
        debt = self.handle_service_call(DebtService.set_archived, self.get_object(), True)
        return Response(DebtSerializer(debt).data)

    @action(detail=True, methods=["post"])
    def unarchive(self, request, workspace_pk=None, pk=None):
        debt = self.handle_service_call(DebtService.set_archived, self.get_object(), False)
        return Response(DebtSerializer(debt).data)

    @action(detail=True, methods=["get"])
    def history(self, request, workspace_pk=None, pk=None):
        history = self.handle_service_call(DebtService.debt_history, self.get_object())
        return Response(render_money(history))


# -------------------------------------------------------------------
# EXCHANGE RATES
# -------------------------------------------------------------------
# Rate observations, resolution and conversion


class ExchangeRateViewSet(BaseWorkspaceViewSet):
    """
    Rate observations for a workspace.

    POST upserts on (pair, date); there is no in-place edit.
    """

    serializer_class = ExchangeRateSerializer
    http_method_names = ["get", "post", "delete", "head", "options"]

    def get_queryset(self):
        if not self.workspace:
            return ExchangeRate.objects.none()

        qs = ExchangeRate.objects.filter(workspace=self.workspace)
        if self.action != "list":
            return qs

        filter_serializer = ExchangeRateFilterSerializer(data=self.request.query_params)
        filter_serializer.is_valid(raise_exception=True)
        filters = filter_serializer.validated_data

        currencies = filters.get("currencies")
        if currencies:
            qs = qs.filter(Q(from_currency__in=currencies) | Q(to_currency__in=currencies))
        if filters.get("date_from"):
            qs = qs.filter(rate_date__gte=filters["date_from"])
        if filters.get("date_to"):
            qs = qs.filter(rate_date__lte=filters["date_to"])

        return qs

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        exchange_rate, created = self.handle_service_call(
            ExchangeRateService.set_rate,
            request.workspace,
            data["from_currency"],
            data["to_currency"],
            data["rate_date"],
            data["rate"],
            source=data.get("source", "manual"),
        )
        return Response(
            ExchangeRateSerializer(exchange_rate).data,
            status=status.HTTP_201_CREATED if created else status.HTTP_200_OK,
        )

    def destroy(self, request, *args, **kwargs):
        self.handle_service_call(ExchangeRateService.delete_rate, self.get_object())
        return Response(status=status.HTTP_204_NO_CONTENT)

    def _rate_query(self, request):
        query = RateQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        data = query.validated_data
        return (
            data["from_currency"],
            data.get("to_currency") or request.workspace.base_currency,
            data.get("on_date") or timezone.localdate(),
            data.get("amount"),
        )

    @action(detail=False, methods=["get"])
    def resolve(self, request, workspace_pk=None):
        from_currency, to_currency, on_date, _ = self._rate_query(request)
        resolved = self.handle_service_call(
            ExchangeRateService.resolve_rate,
            request.workspace,
            from_currency,
            to_currency,
            on_date,
        )
        if resolved is None:
            raise NotFound(f"No exchange rate found for {from_currency}->{to_currency}")
        return Response(
            {
                "from_currency": from_currency,
                "to_currency": to_currency,
                "on_date": on_date,
                "rate": str(resolved.rate),
                "rate_date": resolved.rate_date,
                "strategy": resolved.strategy,
                "is_approximate": resolved.is_approximate,
            }
        )

    @action(detail=False, methods=["get"])
    def convert(self, request, workspace_pk=None):
        from_currency, to_currency, on_date, amount = self._rate_query(request)
        if amount is None:
            return Response(
                {"amount": ["This field is required."]}, status=status.HTTP_400_BAD_REQUEST
            )
        result = self.handle_service_call(
            ExchangeRateService.convert_to_base,
            request.workspace,
            amount,
            from_currency,
            on_date,
            base_currency=to_currency,
        )
        return Response(
            {
                "amount": str(amount),
                "from_currency": from_currency,
                "to_currency": to_currency,
                "on_date": on_date,
                "base_amount": str(result["base_amount"]) if result["base_amount"] is not None else None,
                "rate": str(result["rate"]) if result["rate"] is not None else None,
                "rate_date": result["rate_date"],
                "strategy": result["strategy"],
                "is_approximate": result["is_approximate"],
            }
        )


# -------------------------------------------------------------------
# CATEGORIES & TAGS
# -------------------------------------------------------------------


class CategoryViewSet(BaseWorkspaceViewSet):
    serializer_class = CategorySerializer

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.category_service = CategoryService()

    def get_queryset(self):
        if not self.workspace:
            return Category.objects.none()
        return self.category_service.get_categories_for_workspace(
            self.workspace, category_type=self.request.query_params.get("type")
        )

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        category = self.handle_service_call(
            self.category_service.find_or_create_by_name,
            request.workspace,
            serializer.validated_data["name"],
            serializer.validated_data["type"],
            color=serializer.validated_data.get("color"),
        )
        return Response(CategorySerializer(category).data, status=status.HTTP_201_CREATED)

    def update(self, request, *args, **kwargs):
        category = self.handle_service_call(
            self.category_service.update_category, self.get_object(), request_payload(request)
        )
        return Response(CategorySerializer(category).data)

    def destroy(self, request, *args, **kwargs):
        self.handle_service_call(self.category_service.delete_category, self.get_object())
        return Response(status=status.HTTP_204_NO_CONTENT)

    @action(detail=True, methods=["get"])
    def usage(self, request, workspace_pk=None, pk=None):
        return Response(
            self.handle_service_call(self.category_service.validate_category_usage, self.get_object())
        )


class TagViewSet(BaseWorkspaceViewSet):
    """
    THIN ViewSet for managing Tags within a workspace.
    Delegates all business logic to the TagService.
    """

    serializer_class = TagSerializer

    def get_queryset(self):
        if not self.workspace:
            logger.warning("Tag queryset requested without a workspace context.")
            return Tags.objects.none()
        return Tags.objects.filter(workspace=self.workspace)

    def perform_create(self, serializer):
        """Find-or-create by name; an existing tag is returned as is."""
        tag = self.handle_service_call(
            TagService.find_or_create_by_names,
            self.request.workspace,
            [serializer.validated_data["name"]],
        )[0]
        serializer.instance = tag

    def perform_update(self, serializer):
        self.handle_service_call(
            TagService.update_tag,
            serializer.instance,
            new_name=serializer.validated_data.get("name"),
            color=serializer.validated_data.get("color"),
        )

    def perform_destroy(self, instance):
        self.handle_service_call(TagService.delete_tag, instance)

    @action(detail=True, methods=["post"])
    def archive(self, request, workspace_pk=None, pk=None):
        tag = self.handle_service_call(TagService.set_archived, self.get_object(), True)
        return Response(TagSerializer(tag).data)

    @action(detail=True, methods=["post"])
    def unarchive(self, request, workspace_pk=None, pk=None):
        tag = self.handle_service_call(TagService.set_archived, self.get_object(), False)
        return Response(TagSerializer(tag).data)


# -------------------------------------------------------------------
# SCHEDULED OPERATIONS
# -------------------------------------------------------------------


class ScheduledOperationViewSet(BaseWorkspaceViewSet):
    serializer_class = ScheduledOperationSerializer

    def get_queryset(self):
        if not self.workspace:
            return ScheduledOperation.objects.none()
        return ScheduledOperation.objects.filter(workspace=self.workspace)

    def create(self, request, *args, **kwargs):
        schedule = self.handle_service_call(
            ScheduledOperationService.create_schedule,
            request.workspace,
            request.user,
            request_payload(request),
        )
        return Response(
            ScheduledOperationSerializer(schedule).data, status=status.HTTP_201_CREATED
        )

    def update(self, request, *args, **kwargs):
        schedule = self.handle_service_call(
            ScheduledOperationService.update_schedule, self.get_object(), request_payload(request)
        )
        return Response(ScheduledOperationSerializer(schedule).data)


# -------------------------------------------------------------------
# WORKSPACE SETTINGS
# -------------------------------------------------------------------
# Base currency; switching it re-converts every operation


class WorkspaceSettingsViewSet(BaseWorkspaceViewSet):
    serializer_class = WorkspaceSettingsSerializer

    def get_permissions(self):
        if self.action in ["update", "partial_update"]:
            return [IsAuthenticated(), IsWorkspaceOwner()]
        return [IsAuthenticated(), IsWorkspaceMember()]

    def get_object(self):
        return CurrencyService.get_settings(self.request.workspace)

    def retrieve(self, request, *args, **kwargs):
        return Response(WorkspaceSettingsSerializer(self.get_object()).data)

    def update(self, request, *args, **kwargs):
        serializer = WorkspaceSettingsSerializer(
            self.get_object(), data=request.data, partial=True
        )
        serializer.is_valid(raise_exception=True)
        result = {"base_currency": self.get_object().base_currency, "updated_operations": 0}
        if "base_currency" in serializer.validated_data:
            result = self.handle_service_call(
                CurrencyService.change_base_currency,
                request.workspace,
                serializer.validated_data["base_currency"],
            )
        return Response(
            {**WorkspaceSettingsSerializer(self.get_object()).data, **result}
        )
