# tests/conftest.py
from datetime import date
from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient

from ledger.models import Account, Category, Debt, ExchangeRate, Tags, Workspace, WorkspaceMembership

User = get_user_model()

# =============================================================================
# USER FIXTURES
# =============================================================================


@pytest.fixture
def test_user(db):
    """Workspace owner"""
    return User.objects.create_user(
        username="testuser", email="test@example.com", password="testpass123"
    )


@pytest.fixture
def test_user2(db):
    """Second user, joins workspaces as editor or viewer"""
    return User.objects.create_user(
        username="testuser2", email="test2@example.com", password="testpass123"
    )


@pytest.fixture
def superuser(db):
    return User.objects.create_superuser(
        username="superuser", email="admin@example.com", password="adminpass123"
    )


# =============================================================================
# WORKSPACE FIXTURES
# =============================================================================


@pytest.fixture
def test_workspace(db, test_user):
    """Workspace with EUR base currency (settings come from the post_save signal)"""
    return Workspace.objects.create(
        name="Test Workspace", description="Test workspace description", owner=test_user
    )


@pytest.fixture
def other_workspace(db, test_user2):
    return Workspace.objects.create(name="Other Workspace", owner=test_user2)


@pytest.fixture
def workspace_editor(db, test_workspace, test_user2):
    return WorkspaceMembership.objects.create(
        workspace=test_workspace, user=test_user2, role="editor"
    )


@pytest.fixture
def workspace_viewer(db, test_workspace, test_user2):
    return WorkspaceMembership.objects.create(
        workspace=test_workspace, user=test_user2, role="viewer"
    )


# =============================================================================
# ACCOUNT FIXTURES
# =============================================================================


@pytest.fixture
def cash_account(db, test_workspace):
    return Account.objects.create(workspace=test_workspace, name="Cash", is_default=True)


@pytest.fixture
def bank_account(db, test_workspace):
    return Account.objects.create(workspace=test_workspace, name="Bank")


# =============================================================================
# CATEGORY & TAG FIXTURES
# =============================================================================


@pytest.fixture
def expense_category(db, test_workspace):
    return Category.objects.create(workspace=test_workspace, name="Groceries", type="expense")


@pytest.fixture
def income_category(db, test_workspace):
    return Category.objects.create(workspace=test_workspace, name="Freelance", type="income")


@pytest.fixture
def tag_food(db, test_workspace):
    return Tags.objects.create(workspace=test_workspace, name="food")


# =============================================================================
# EXCHANGE RATE FIXTURES
# =============================================================================


@pytest.fixture
def usd_eur_rate(db, test_workspace):
    """1 USD = 0.92 EUR on 2025-01-15"""
    return ExchangeRate.objects.create(
        workspace=test_workspace,
        from_currency="USD",
        to_currency="EUR",
        rate_date=date(2025, 1, 15),
        rate=Decimal("0.92"),
    )


@pytest.fixture
def usd_workspace(db, test_workspace):
    """Test workspace switched to USD base, with EUR->USD 1.08 on 2025-01-15"""
    settings = test_workspace.settings
    settings.base_currency = "USD"
    settings.save()
    ExchangeRate.objects.create(
        workspace=test_workspace,
        from_currency="EUR",
        to_currency="USD",
        rate_date=date(2025, 1, 15),
        rate=Decimal("1.08"),
    )
    return test_workspace


# =============================================================================
# DEBT FIXTURES
# =============================================================================


@pytest.fixture
def loan_debt(db, test_workspace, test_user):
    """I owe 1000.00"""
    return Debt.objects.create(
        workspace=test_workspace,
        created_by=test_user,
        direction="i_owe",
        title="Car loan",
        counterparty="Bank",
        initial_amount=Decimal("1000.00"),
        opened_on=date(2025, 1, 1),
    )


@pytest.fixture
def receivable_debt(db, test_workspace, test_user):
    """Owed to me 300.00"""
    return Debt.objects.create(
        workspace=test_workspace,
        created_by=test_user,
        direction="owed_to_me",
        title="Lent to a friend",
        initial_amount=Decimal("300.00"),
        opened_on=date(2025, 1, 1),
    )


# =============================================================================
# API CLIENT FIXTURES
# =============================================================================


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def owner_client(api_client, test_user):
    api_client.force_authenticate(user=test_user)
    return api_client
