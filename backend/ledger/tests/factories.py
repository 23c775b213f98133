"""
Test factories for the workspace ledger models.
"""

from datetime import date
from decimal import Decimal

import factory
from django.contrib.auth import get_user_model
from factory.django import DjangoModelFactory
from faker import Faker

from ledger.models import (
    Account,
    Category,
    Debt,
    ExchangeRate,
    Operation,
    ScheduledOperation,
    Tags,
    Workspace,
    WorkspaceMembership,
)

fake = Faker()
User = get_user_model()


class UserFactory(DjangoModelFactory):
    class Meta:
        model = User
        skip_postgeneration_save = True

    username = factory.Sequence(lambda n: f"user_{n}")
    email = factory.Sequence(lambda n: f"user_{n}@example.com")
    password = factory.PostGenerationMethodCall("set_password", "testpass123")
    is_active = True
    first_name = factory.LazyAttribute(lambda _: fake.first_name())
    last_name = factory.LazyAttribute(lambda _: fake.last_name())

    @classmethod
    def _create(cls, model_class, *args, **kwargs):
        """Override to use create_user method for proper password handling."""
        manager = cls._get_manager(model_class)
        return manager.create_user(*args, **kwargs)


class WorkspaceFactory(DjangoModelFactory):
    """Settings and the owner membership are created by the post_save signal."""

    class Meta:
        model = Workspace

    name = factory.Sequence(lambda n: f"Workspace {n}")
    description = factory.LazyAttribute(lambda _: fake.text(max_nb_chars=200))
    owner = factory.SubFactory(UserFactory)
    is_active = True


class WorkspaceMembershipFactory(DjangoModelFactory):
    class Meta:
        model = WorkspaceMembership
        django_get_or_create = ("workspace", "user")

    workspace = factory.SubFactory(WorkspaceFactory)
    user = factory.SubFactory(UserFactory)
    role = "editor"


class AccountFactory(DjangoModelFactory):
    class Meta:
        model = Account

    workspace = factory.SubFactory(WorkspaceFactory)
    name = factory.Sequence(lambda n: f"Account {n}")
    color = "#336699"
    is_default = False
    is_archived = False


class CategoryFactory(DjangoModelFactory):
    class Meta:
        model = Category

    workspace = factory.SubFactory(WorkspaceFactory)
    name = factory.Sequence(lambda n: f"Category {n}")
    type = "expense"


class TagFactory(DjangoModelFactory):
    class Meta:
        model = Tags

    workspace = factory.SubFactory(WorkspaceFactory)
    name = factory.Sequence(lambda n: f"tag-{n}")


class ExchangeRateFactory(DjangoModelFactory):
    class Meta:
        model = ExchangeRate

    workspace = factory.SubFactory(WorkspaceFactory)
    from_currency = "USD"
    to_currency = "EUR"
    rate_date = date(2025, 1, 15)
    rate = Decimal("0.92000000")
    source = "manual"


class DebtFactory(DjangoModelFactory):
    class Meta:
        model = Debt

    workspace = factory.SubFactory(WorkspaceFactory)
    created_by = factory.LazyAttribute(lambda o: o.workspace.owner)
    direction = "i_owe"
    title = factory.LazyAttribute(lambda _: fake.sentence(nb_words=3))
    counterparty = factory.LazyAttribute(lambda _: fake.name())
    initial_amount = Decimal("1000.00")
    opened_on = date(2025, 1, 1)


class OperationFactory(DjangoModelFactory):
    """Plain base-currency row; services are not involved."""

    class Meta:
        model = Operation
        skip_postgeneration_save = True

    workspace = factory.SubFactory(WorkspaceFactory)
    user = factory.LazyAttribute(lambda o: o.workspace.owner)
    type = "expense"
    amount = Decimal("10.00")
    currency = "EUR"
    account = factory.SubFactory(AccountFactory, workspace=factory.SelfAttribute("..workspace"))
    description = factory.LazyAttribute(lambda _: fake.sentence(nb_words=4))
    operation_date = date(2025, 1, 15)

    @factory.post_generation
    def tags(self, create, extracted, **kwargs):
        if not create or not extracted:
            return
        self.tags.add(*extracted)


class ScheduledOperationFactory(DjangoModelFactory):
    class Meta:
        model = ScheduledOperation

    workspace = factory.SubFactory(WorkspaceFactory)
    user = factory.LazyAttribute(lambda o: o.workspace.owner)
    type = "expense"
    amount = Decimal("25.00")
    currency = "EUR"
    frequency = "monthly"
    next_date = date(2025, 1, 31)
    is_active = True
