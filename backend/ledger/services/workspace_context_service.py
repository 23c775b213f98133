# ledger/services/workspace_context_service.py
"""
Workspace context service.
Resolves the workspace addressed by a request and the caller's role in it,
before any permission check runs.
"""

import logging

from django.db import DatabaseError

from ..models import Workspace, WorkspaceMembership

logger = logging.getLogger(__name__)


class WorkspaceContextService:
    """
    Builds ``request.workspace`` and ``request.user_permissions``.

    The ledger trusts the resulting role as pre-validated; permission
    classes only read it.
    """

    def build_request_context(self, request, view_kwargs=None):
        """
        Build request context with proper error propagation.

        Args:
            request: HTTP request object
            view_kwargs: Optional view kwargs for explicit workspace ID extraction

        Raises:
            DatabaseError: On database connectivity issues
        """
        try:
            self._initialize_request_defaults(request)

            if not request.user.is_authenticated:
                return

            request.user_permissions["is_superuser"] = request.user.is_superuser

            workspace_id = self._get_validated_workspace_id(request, view_kwargs)
            if workspace_id:
                self._process_workspace_context(request, workspace_id)

        except DatabaseError as e:
            logger.error(
                "Database error during context resolution",
                extra={
                    "user_id": getattr(request.user, "id", "anonymous"),
                    "error": str(e),
                    "action": "database_error",
                    "component": "WorkspaceContextService",
                    "severity": "high",
                },
            )
            raise

    def _initialize_request_defaults(self, request):
        """Initialize secure request defaults."""
        request.workspace = None
        request.user_permissions = {
            "is_superuser": False,
            "workspace_role": None,
            "current_workspace_id": None,
            "workspace_exists": False,
        }

    def _get_validated_workspace_id(self, request, view_kwargs=None):
        """
        Extract the workspace ID with priority.

        Priority order:
        1. Explicit view_kwargs (nested route ``workspace_pk``)
        2. Request kwargs (URL parameters)
        3. Query parameters
        """
        workspace_id = self._extract_from_kwargs(view_kwargs)

        if not workspace_id:
            workspace_id = self._extract_from_kwargs(getattr(request, "kwargs", None))

        if not workspace_id:
            workspace_id = request.GET.get("workspace_id")

        return self._validate_workspace_existence(request, workspace_id)

    def _extract_from_kwargs(self, kwargs):
        if not kwargs:
            return None
        return kwargs.get("workspace_pk") or kwargs.get("workspace_id")

    def _validate_workspace_existence(self, request, workspace_id):
        """Fetch the workspace in one query and record it on the request."""
        if not workspace_id:
            logger.debug(
                "No workspace ID provided in request",
                extra={
                    "user_id": getattr(request.user, "id", "anonymous"),
                    "action": "workspace_id_not_provided",
                    "component": "WorkspaceContextService",
                },
            )
            return None

        try:
            workspace_id = int(workspace_id)
            workspace = Workspace.objects.select_related("owner", "settings").get(id=workspace_id)
        except (ValueError, TypeError):
            logger.warning(
                "Invalid workspace ID format",
                extra={
                    "user_id": getattr(request.user, "id", "anonymous"),
                    "workspace_id": workspace_id,
                    "action": "invalid_workspace_id",
                    "component": "WorkspaceContextService",
                    "severity": "medium",
                },
            )
            return None
        except Workspace.DoesNotExist:
            request.user_permissions["current_workspace_id"] = workspace_id
            logger.warning(
                "Access attempt to non-existent workspace",
                extra={
                    "user_id": getattr(request.user, "id", "anonymous"),
                    "workspace_id": workspace_id,
                    "action": "workspace_not_found",
                    "component": "WorkspaceContextService",
                    "severity": "medium",
                },
            )
            return None

        request.workspace = workspace
        request.user_permissions["workspace_exists"] = True
        request.user_permissions["current_workspace_id"] = workspace_id
        return workspace_id

    def get_user_workspace_role(self, user, workspace):
        """Owner of the workspace counts as ``owner`` even without a membership row."""
        if workspace.owner_id == user.id:
            return "owner"
        return (
            WorkspaceMembership.objects.filter(workspace=workspace, user=user)
            .values_list("role", flat=True)
            .first()
        )

    def _process_workspace_context(self, request, workspace_id):
        role = self.get_user_workspace_role(request.user, request.workspace)
        if role:
            request.user_permissions["workspace_role"] = role
            logger.debug(
                "Workspace access permissions validated and set",
                extra={
                    "user_id": request.user.id,
                    "workspace_id": workspace_id,
                    "role": role,
                    "action": "workspace_permissions_set",
                    "component": "WorkspaceContextService",
                },
            )
        else:
            logger.warning(
                "User is not a member of the requested workspace",
                extra={
                    "user_id": request.user.id,
                    "workspace_id": workspace_id,
                    "action": "workspace_access_denied",
                    "component": "WorkspaceContextService",
                    "severity": "medium",
                },
            )
