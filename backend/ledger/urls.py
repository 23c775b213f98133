"""
URL configuration for the ledger API.

Every resource is nested under ``workspaces/<workspace_pk>/`` so the
workspace context mixin can resolve the workspace from the URL.
"""

import logging

from django.urls import include, path
from rest_framework.routers import DefaultRouter

from . import views

# Get structured logger for this module
logger = logging.getLogger(__name__)

WORKSPACE_PREFIX = r"workspaces/(?P<workspace_pk>\d+)"

router = DefaultRouter()

# Ledger operations, including summary/dashboard/breakdown actions
router.register(
    rf"{WORKSPACE_PREFIX}/operations",
    views.OperationViewSet,
    basename="operation",
)

# Accounts with derived balances
router.register(
    rf"{WORKSPACE_PREFIX}/accounts",
    views.AccountViewSet,
    basename="account",
)

# Debts with amortization progress
router.register(
    rf"{WORKSPACE_PREFIX}/debts",
    views.DebtViewSet,
    basename="debt",
)

# Exchange rate observations, resolve and convert
router.register(
    rf"{WORKSPACE_PREFIX}/exchange-rates",
    views.ExchangeRateViewSet,
    basename="exchange-rate",
)

router.register(
    rf"{WORKSPACE_PREFIX}/categories",
    views.CategoryViewSet,
    basename="category",
)

router.register(
    rf"{WORKSPACE_PREFIX}/tags",
    views.TagViewSet,
    basename="tag",
)

router.register(
    rf"{WORKSPACE_PREFIX}/scheduled-operations",
    views.ScheduledOperationViewSet,
    basename="scheduled-operation",
)

urlpatterns = [
    path("", include(router.urls)),

    # Workspace settings (base currency)
    path(
        "workspaces/<int:workspace_pk>/settings/",
        views.WorkspaceSettingsViewSet.as_view(
            {"get": "retrieve", "patch": "partial_update", "put": "update"}
        ),
        name="workspace-settings",
    ),
]

logger.debug(
    "Ledger API URLs configured",
    extra={
        "viewset_endpoints": len(router.registry),
        "registered_viewsets": [route[2] for route in router.registry],
        "custom_endpoints": len(urlpatterns) - 1,
        "action": "url_configuration_loaded",
        "component": "urls",
    },
)
