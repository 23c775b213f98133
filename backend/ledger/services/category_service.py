"""
Production-grade category service.
Workspace-scoped category namespace with find-or-create, archive and
reference-guarded delete.
"""

import logging

from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction

from ..exceptions import ReferentialIntegrityError
from ..models import Category

logger = logging.getLogger(__name__)


class CategoryService:
    """
    Category repository for one workspace namespace.
    Categories are typed (income or expense); names are unique per type.
    """

    VALID_TYPES = [choice[0] for choice in Category.CATEGORY_TYPES]

    def _validate_type(self, category_type: str):
        if category_type not in self.VALID_TYPES:
            raise ValidationError(
                {"type": f"Category type must be one of: {', '.join(self.VALID_TYPES)}"}
            )

    @transaction.atomic
    def find_or_create_by_name(self, workspace, name: str, category_type: str, color: str = None) -> Category:
        """
        Return the workspace category with ``name`` and ``category_type``,
        creating it when missing. Matching is case-insensitive.

        Raises:
            ValidationError: On empty name or unknown type.
        """
        self._validate_type(category_type)
        cleaned_name = (name or "").strip()
        if not cleaned_name:
            raise ValidationError({"name": "Category name cannot be empty"})

        existing = Category.objects.filter(
            workspace=workspace, type=category_type, name__iexact=cleaned_name
        ).first()
        if existing:
            return existing

        category = Category(workspace=workspace, name=cleaned_name, type=category_type)
        if color:
            category.color = color
        category.full_clean(exclude=["workspace"])
        try:
            with transaction.atomic():
                category.save()
        except IntegrityError:
            # Lost a race with a concurrent create of the same name
            return Category.objects.get(
                workspace=workspace, type=category_type, name=cleaned_name
            )

        logger.info(
            "Category created",
            extra={
                "workspace_id": workspace.id,
                "category_id": category.id,
                "category_type": category_type,
                "action": "category_created",
                "component": "CategoryService",
            },
        )
        return category

    def get_categories_for_workspace(self, workspace, category_type: str = None, include_archived: bool = True):
        qs = Category.objects.filter(workspace=workspace)
        if category_type:
            self._validate_type(category_type)
            qs = qs.filter(type=category_type)
        if not include_archived:
            qs = qs.filter(is_archived=False)
        return qs

    def update_category(self, category: Category, data: dict) -> Category:
        """Rename, recolor or archive a category. Type is immutable once used."""
        if "type" in data and data["type"] != category.type:
            self._validate_type(data["type"])
            if category.operations.exists():
                raise ValidationError(
                    {"type": "Cannot change the type of a category used by operations"}
                )
            category.type = data["type"]

        if "name" in data:
            cleaned_name = (data["name"] or "").strip()
            if not cleaned_name:
                raise ValidationError({"name": "Category name cannot be empty"})
            category.name = cleaned_name

        for field in ("color", "is_archived"):
            if field in data:
                setattr(category, field, data[field])

        category.full_clean(exclude=["workspace"])
        category.save()

        logger.info(
            "Category updated",
            extra={
                "category_id": category.id,
                "workspace_id": category.workspace_id,
                "updated_fields": sorted(data.keys()),
                "action": "category_updated",
                "component": "CategoryService",
            },
        )
        return category

    def validate_category_usage(self, category: Category) -> dict:
        """Usage summary shown before delete."""
        operation_count = category.operations.count()
        return {
            "category_id": category.id,
            "operation_count": operation_count,
            "can_be_deleted": operation_count == 0,
        }

    def delete_category(self, category: Category):
        """
        Delete an unused category.

        Raises:
            ReferentialIntegrityError: While operations reference the category.
        """
        usage = self.validate_category_usage(category)
        if not usage["can_be_deleted"]:
            logger.warning(
                "Category delete rejected - still referenced",
                extra={
                    "category_id": category.id,
                    "workspace_id": category.workspace_id,
                    "reference_count": usage["operation_count"],
                    "action": "category_delete_rejected",
                    "component": "CategoryService",
                    "severity": "low",
                },
            )
            raise ReferentialIntegrityError(
                "category", category.id, usage["operation_count"]
            )

        category_id = category.id
        workspace_id = category.workspace_id
        category.delete()

        logger.info(
            "Category deleted",
            extra={
                "category_id": category_id,
                "workspace_id": workspace_id,
                "action": "category_deleted",
                "component": "CategoryService",
            },
        )
