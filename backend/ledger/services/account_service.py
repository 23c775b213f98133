"""
Service for account lifecycle: create, edit, default selection, archive
and reference-guarded delete.
"""

import logging

from django.core.exceptions import ValidationError
from django.db import transaction as db_transaction
from rest_framework import serializers

from ..exceptions import ReferentialIntegrityError
from ..models import Account

# Get structured logger for this module
logger = logging.getLogger(__name__)


class AccountService:
    """
    Account operations for one workspace.

    A workspace has at most one default account; making an account the
    default clears the flag on the previous one in the same transaction.
    """

    EDITABLE_FIELDS = ("name", "color", "is_default", "is_archived")

    BOOLEAN_FIELDS = ("is_default", "is_archived")

    @staticmethod
    def _to_bool(field, value):
        """Coerce form-style flags such as 'false' or '0' the way DRF fields do."""
        try:
            return serializers.BooleanField().to_internal_value(value)
        except serializers.ValidationError as exc:
            raise ValidationError({field: [str(message) for message in exc.detail]}) from exc

    @staticmethod
    def _clear_default(workspace, keep_id=None):
        qs = Account.objects.filter(workspace=workspace, is_default=True)
        if keep_id:
            qs = qs.exclude(pk=keep_id)
        qs.update(is_default=False)

    @staticmethod
    @db_transaction.atomic
    def create_account(workspace, data: dict) -> Account:
        """
        Create an account.

        Args:
            workspace: Owning workspace
            data: name, optional color and is_default

        Raises:
            ValidationError: On empty name or malformed color
        """
        account = Account(
            workspace=workspace,
            name=(data.get("name") or "").strip(),
            is_default=AccountService._to_bool("is_default", data.get("is_default", False)),
        )
        if data.get("color"):
            account.color = data["color"]
        if account.is_default:
            AccountService._clear_default(workspace)
        account.full_clean(exclude=["workspace"])
        account.save()

        logger.info(
            "Account created",
            extra={
                "workspace_id": workspace.id,
                "account_id": account.id,
                "is_default": account.is_default,
                "action": "account_created",
                "component": "AccountService",
            },
        )
        return account

    @staticmethod
    @db_transaction.atomic
    def update_account(account: Account, data: dict) -> Account:
        unknown = set(data) - set(AccountService.EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(
                {field: "Field cannot be changed" for field in sorted(unknown)}
            )

        for field, value in data.items():
            if field in AccountService.BOOLEAN_FIELDS:
                value = AccountService._to_bool(field, value)
            elif field == "name" and isinstance(value, str):
                value = value.strip()
            setattr(account, field, value)
        if account.is_default:
            AccountService._clear_default(account.workspace, keep_id=account.pk)
        account.full_clean(exclude=["workspace"])
        account.save()

        logger.info(
            "Account updated",
            extra={
                "account_id": account.id,
                "workspace_id": account.workspace_id,
                "updated_fields": sorted(data.keys()),
                "action": "account_updated",
                "component": "AccountService",
            },
        )
        return account

    @staticmethod
    @db_transaction.atomic
    def set_default(account: Account) -> Account:
        if account.is_archived:
            raise ValidationError("Archived account cannot be the default")
        AccountService._clear_default(account.workspace, keep_id=account.pk)
        account.is_default = True
        account.save(update_fields=["is_default", "updated_at"])

        logger.info(
            "Default account changed",
            extra={
                "account_id": account.id,
                "workspace_id": account.workspace_id,
                "action": "account_default_set",
                "component": "AccountService",
            },
        )
        return account

    @staticmethod
    def archive_account(account: Account) -> Account:
        """Hide an account from pickers; history and balance stay intact."""
        account.is_archived = True
        account.is_default = False
        account.save(update_fields=["is_archived", "is_default", "updated_at"])

        logger.info(
            "Account archived",
            extra={
                "account_id": account.id,
                "workspace_id": account.workspace_id,
                "action": "account_archived",
                "component": "AccountService",
            },
        )
        return account

    @staticmethod
    def unarchive_account(account: Account) -> Account:
        account.is_archived = False
        account.save(update_fields=["is_archived", "updated_at"])

        logger.info(
            "Account unarchived",
            extra={
                "account_id": account.id,
                "workspace_id": account.workspace_id,
                "action": "account_unarchived",
                "component": "AccountService",
            },
        )
        return account

    @staticmethod
    def delete_account(account: Account):
        """
        Hard delete an account without operations.

        Raises:
            ReferentialIntegrityError: While operations reference the account.
        """
        reference_count = account.operations.count()
        if reference_count:
            logger.warning(
                "Account delete rejected - still referenced",
                extra={
                    "account_id": account.id,
                    "workspace_id": account.workspace_id,
                    "reference_count": reference_count,
                    "action": "account_delete_rejected",
                    "component": "AccountService",
                    "severity": "low",
                },
            )
            raise ReferentialIntegrityError("account", account.id, reference_count)

        account_id = account.id
        workspace_id = account.workspace_id
        account.delete()

        logger.info(
            "Account deleted",
            extra={
                "account_id": account_id,
                "workspace_id": workspace_id,
                "action": "account_deleted",
                "component": "AccountService",
            },
        )
