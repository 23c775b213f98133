# ledger/tests/unit/test_permissions.py
from unittest.mock import Mock

import pytest
from django.contrib.auth.models import AnonymousUser
from django.test import RequestFactory

from ledger.models import WorkspaceMembership
from ledger.permissions import IsWorkspaceEditor, IsWorkspaceMember, IsWorkspaceOwner
from ledger.services.workspace_context_service import WorkspaceContextService


@pytest.fixture
def build_request():
    """Request with REAL workspace context (simulates WorkspaceContextMixin)."""
    factory = RequestFactory()
    context_service = WorkspaceContextService()

    def _build(user, workspace_id):
        request = factory.get("/")
        request.user = user
        context_service.build_request_context(request, {"workspace_pk": str(workspace_id)})
        return request

    return _build


@pytest.mark.django_db
class TestWorkspaceContext:
    def test_owner_role_without_membership_row(self, build_request, test_workspace, test_user):
        WorkspaceMembership.objects.filter(workspace=test_workspace, user=test_user).delete()

        request = build_request(test_user, test_workspace.id)

        assert request.workspace == test_workspace
        assert request.user_permissions["workspace_role"] == "owner"
        assert request.user_permissions["workspace_exists"] is True

    def test_member_role(self, build_request, test_workspace, test_user2, workspace_viewer):
        request = build_request(test_user2, test_workspace.id)

        assert request.user_permissions["workspace_role"] == "viewer"

    def test_missing_workspace(self, build_request, test_user):
        request = build_request(test_user, 999999)

        assert request.workspace is None
        assert request.user_permissions["workspace_exists"] is False
        assert request.user_permissions["current_workspace_id"] == 999999

    def test_anonymous_user_gets_defaults(self, build_request, test_workspace):
        request = build_request(AnonymousUser(), test_workspace.id)

        assert request.workspace is None
        assert request.user_permissions["workspace_role"] is None


@pytest.mark.django_db
class TestPermissionClasses:
    view = Mock()

    @pytest.mark.parametrize(
        "role, member, editor, owner",
        [
            ("viewer", True, False, False),
            ("editor", True, True, False),
        ],
    )
    def test_member_roles(self, build_request, test_workspace, test_user2, role, member, editor, owner):
        WorkspaceMembership.objects.create(workspace=test_workspace, user=test_user2, role=role)
        request = build_request(test_user2, test_workspace.id)

        assert IsWorkspaceMember().has_permission(request, self.view) is member
        assert IsWorkspaceEditor().has_permission(request, self.view) is editor
        assert IsWorkspaceOwner().has_permission(request, self.view) is owner

    def test_owner_has_every_permission(self, build_request, test_workspace, test_user):
        request = build_request(test_user, test_workspace.id)

        assert IsWorkspaceMember().has_permission(request, self.view)
        assert IsWorkspaceEditor().has_permission(request, self.view)
        assert IsWorkspaceOwner().has_permission(request, self.view)

    def test_non_member_denied(self, build_request, test_workspace, test_user2):
        request = build_request(test_user2, test_workspace.id)

        assert not IsWorkspaceMember().has_permission(request, self.view)
        assert not IsWorkspaceEditor().has_permission(request, self.view)

    def test_superuser_bypasses_membership(self, build_request, test_workspace, superuser):
        request = build_request(superuser, test_workspace.id)

        assert IsWorkspaceMember().has_permission(request, self.view)
        assert IsWorkspaceOwner().has_permission(request, self.view)

    def test_missing_workspace_denied_even_for_superuser(self, build_request, superuser):
        request = build_request(superuser, 999999)

        assert not IsWorkspaceMember().has_permission(request, self.view)
        assert not IsWorkspaceEditor().has_permission(request, self.view)
        assert not IsWorkspaceOwner().has_permission(request, self.view)
