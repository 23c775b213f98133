"""
Production-grade service for tag management.
Handles the workspace tag namespace: find-or-create by name, linking to
operations, rename, archive and guarded delete.
"""

import logging

from django.core.exceptions import ValidationError
from django.db import DatabaseError, transaction

from ..exceptions import PartialWriteError, ReferentialIntegrityError
from ..models import Operation, Tags, Workspace

logger = logging.getLogger(__name__)

MAX_TAG_LENGTH = 50


def normalize_tag_name(name) -> str:
    return str(name).strip().lower()


class TagService:
    """
    Workspace-scoped tag repository.

    All callers go through ``find_or_create_by_names`` instead of
    upserting tag rows themselves.
    """

    @staticmethod
    def find_or_create_by_names(workspace: Workspace, tag_names: list[str]) -> list[Tags]:
        """
        Get existing tags or create new ones for a given workspace.

        Matching is case-insensitive: names are stripped and lowercased
        before lookup. Blank names are ignored.

        Args:
            workspace: The workspace instance.
            tag_names: A list of tag names (strings).

        Returns:
            A list of Tag model instances, one per distinct normalized name.

        Raises:
            ValidationError: If a name is longer than the tag column allows.
        """
        if not tag_names:
            return []

        normalized_names = {
            normalize_tag_name(name) for name in tag_names if str(name).strip()
        }
        too_long = sorted(name for name in normalized_names if len(name) > MAX_TAG_LENGTH)
        if too_long:
            raise ValidationError(
                {"tags": [f"Tag name cannot exceed {MAX_TAG_LENGTH} characters: {name}" for name in too_long]}
            )
        if not normalized_names:
            return []

        existing_names = set(
            Tags.objects.filter(
                workspace=workspace, name__in=normalized_names
            ).values_list("name", flat=True)
        )

        new_names = normalized_names - existing_names
        if new_names:
            # A concurrent writer may insert the same name; the unique
            # constraint turns that into a no-op and the re-read below finds it.
            Tags.objects.bulk_create(
                [Tags(workspace=workspace, name=name) for name in sorted(new_names)],
                ignore_conflicts=True,
            )
            logger.info(
                "Tags bulk created",
                extra={
                    "workspace_id": workspace.id,
                    "new_tags": sorted(new_names),
                    "action": "tags_bulk_created",
                    "component": "TagService",
                },
            )

        return list(
            Tags.objects.filter(workspace=workspace, name__in=normalized_names)
        )

    @staticmethod
    def link_tags(operations: list[Operation], tag_names, compensate=False):
        """
        Attach the same tag set to freshly written operation rows.

        With ``compensate`` the rows are deleted again when linking fails,
        so a caller never keeps an operation whose tags silently went
        missing.

        Raises:
            PartialWriteError: When linking failed after the rows were written.
        """
        if tag_names is None or not operations:
            return

        try:
            with transaction.atomic():
                tags = TagService.find_or_create_by_names(operations[0].workspace, tag_names)
                for operation in operations:
                    operation.tags.set(tags)
        except DatabaseError as e:
            rollback_error = None
            if compensate:
                try:
                    Operation.objects.filter(pk__in=[op.pk for op in operations]).delete()
                except DatabaseError as cleanup_error:
                    rollback_error = cleanup_error

            logger.error(
                "Tag linking failed after operation write",
                extra={
                    "operation_ids": [op.pk for op in operations],
                    "compensated": compensate and rollback_error is None,
                    "error": str(e),
                    "action": "tag_link_failed",
                    "component": "TagService",
                    "severity": "high",
                },
            )
            raise PartialWriteError(
                "Linking tags failed after the operation was written",
                original_error=e,
                rollback_error=rollback_error,
            ) from e

    @staticmethod
    def update_tag(tag: Tags, new_name: str = None, color: str = None) -> Tags:
        """
        Rename or recolor a tag.

        Raises:
            ValidationError: If a tag with the new name already exists in the workspace.
        """
        update_fields = []

        if new_name is not None:
            normalized_new_name = normalize_tag_name(new_name)
            if not normalized_new_name:
                raise ValidationError({"name": "Tag name cannot be empty."})
            if normalized_new_name != tag.name:
                if (
                    Tags.objects.filter(workspace=tag.workspace, name=normalized_new_name)
                    .exclude(pk=tag.pk)
                    .exists()
                ):
                    raise ValidationError(
                        {"name": f"A tag with the name '{new_name}' already exists in this workspace."}
                    )
                tag.name = normalized_new_name
                update_fields.append("name")

        if color is not None and color != tag.color:
            tag.color = color
            tag.full_clean(exclude=["workspace", "name"])
            update_fields.append("color")

        if update_fields:
            tag.save(update_fields=update_fields)
            logger.info(
                "Tag updated",
                extra={
                    "tag_id": tag.id,
                    "workspace_id": tag.workspace_id,
                    "updated_fields": update_fields,
                    "action": "tag_updated",
                    "component": "TagService",
                },
            )
        return tag

    @staticmethod
    def set_archived(tag: Tags, archived: bool) -> Tags:
        tag.is_archived = archived
        tag.save(update_fields=["is_archived"])
        logger.info(
            "Tag archive flag changed",
            extra={
                "tag_id": tag.id,
                "workspace_id": tag.workspace_id,
                "is_archived": archived,
                "action": "tag_archive_changed",
                "component": "TagService",
            },
        )
        return tag

    @staticmethod
    def delete_tag(tag: Tags):
        """
        Delete a tag that no operation uses.

        The reference count is read just before the delete without a lock.

        Raises:
            ReferentialIntegrityError: While operations still carry the tag.
        """
        reference_count = tag.operations.count()
        if reference_count:
            logger.warning(
                "Tag delete rejected - still referenced",
                extra={
                    "tag_id": tag.id,
                    "workspace_id": tag.workspace_id,
                    "reference_count": reference_count,
                    "action": "tag_delete_rejected",
                    "component": "TagService",
                    "severity": "low",
                },
            )
            raise ReferentialIntegrityError("tag", tag.id, reference_count)

        tag_id = tag.id
        tag_name = tag.name
        workspace_id = tag.workspace_id
        tag.delete()

        logger.info(
            "Tag deleted",
            extra={
                "tag_id": tag_id,
                "tag_name": tag_name,
                "workspace_id": workspace_id,
                "action": "tag_deleted",
                "component": "TagService",
            },
        )
