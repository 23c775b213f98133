# permissions.py
import logging

from rest_framework import permissions

logger = logging.getLogger(__name__)


class IsWorkspaceMember(permissions.BasePermission):
    """
    Read-level workspace authorization.

    Authorization granted to:
    - Superusers (system-wide access)
    - Any user holding a role in the workspace

    Trusts ``WorkspaceContextMixin`` for workspace validation and role lookup.
    """

    def has_permission(self, request, view):
        permissions_data = getattr(request, "user_permissions", {})

        if not permissions_data.get("workspace_exists", False):
            logger.warning(
                "Workspace access denied - workspace not found",
                extra={
                    "user_id": request.user.id,
                    "workspace_id": permissions_data.get("current_workspace_id"),
                    "action": "workspace_access_denied_not_found",
                    "component": "IsWorkspaceMember",
                    "severity": "medium",
                },
            )
            return False

        is_authorized = bool(
            permissions_data.get("is_superuser")
            or permissions_data.get("workspace_role") is not None
        )

        if is_authorized:
            logger.debug(
                "Workspace membership access granted",
                extra={
                    "user_id": request.user.id,
                    "workspace_id": permissions_data.get("current_workspace_id"),
                    "user_role": permissions_data.get("workspace_role"),
                    "is_superuser": permissions_data.get("is_superuser"),
                    "action": "workspace_membership_granted",
                    "component": "IsWorkspaceMember",
                },
            )
        else:
            logger.warning(
                "Workspace membership access denied",
                extra={
                    "user_id": request.user.id,
                    "workspace_id": permissions_data.get("current_workspace_id"),
                    "action": "workspace_membership_denied",
                    "component": "IsWorkspaceMember",
                    "severity": "medium",
                },
            )

        return is_authorized


class IsWorkspaceEditor(permissions.BasePermission):
    """
    Write-level authorization.

    Authorization granted to:
    - Superusers
    - Users with editor or owner roles
    """

    # Authorized write roles
    WRITE_ROLES = ["editor", "owner"]

    def has_permission(self, request, view):
        permissions_data = getattr(request, "user_permissions", {})

        if not permissions_data.get("workspace_exists", False):
            logger.warning(
                "Write access denied - workspace not found",
                extra={
                    "user_id": request.user.id,
                    "workspace_id": permissions_data.get("current_workspace_id"),
                    "action": "write_access_denied_not_found",
                    "component": "IsWorkspaceEditor",
                    "severity": "medium",
                },
            )
            return False

        user_role = permissions_data.get("workspace_role")
        is_authorized = bool(
            permissions_data.get("is_superuser") or user_role in self.WRITE_ROLES
        )

        if is_authorized:
            logger.debug(
                "Write-level access granted",
                extra={
                    "user_id": request.user.id,
                    "workspace_id": permissions_data.get("current_workspace_id"),
                    "user_role": user_role,
                    "action": "write_access_granted",
                    "component": "IsWorkspaceEditor",
                },
            )
        else:
            logger.warning(
                "Write-level access denied",
                extra={
                    "user_id": request.user.id,
                    "workspace_id": permissions_data.get("current_workspace_id"),
                    "user_role": user_role,
                    "required_roles": self.WRITE_ROLES,
                    "action": "write_access_denied",
                    "component": "IsWorkspaceEditor",
                    "severity": "medium",
                },
            )

        return is_authorized


class IsWorkspaceOwner(permissions.BasePermission):
    """Owner-level authorization for workspace-wide settings."""

    def has_permission(self, request, view):
        permissions_data = getattr(request, "user_permissions", {})

        if not permissions_data.get("workspace_exists", False):
            return False

        user_role = permissions_data.get("workspace_role")
        is_authorized = bool(permissions_data.get("is_superuser") or user_role == "owner")

        if not is_authorized:
            logger.warning(
                "Ownership-level access denied",
                extra={
                    "user_id": request.user.id,
                    "workspace_id": permissions_data.get("current_workspace_id"),
                    "user_role": user_role,
                    "required_role": "owner",
                    "action": "ownership_access_denied",
                    "component": "IsWorkspaceOwner",
                    "severity": "high",
                },
            )

        return is_authorized
