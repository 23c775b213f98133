import logging

from django.db.models.signals import post_save
from django.dispatch import receiver

from .models import Workspace, WorkspaceMembership, WorkspaceSettings

logger = logging.getLogger(__name__)


@receiver(post_save, sender=Workspace)
def create_workspace_defaults(sender, instance, created, **kwargs):
    """
    Create WorkspaceSettings and the owner's membership when a new Workspace is created.
    """
    if not created:
        return

    WorkspaceSettings.objects.get_or_create(workspace=instance)
    WorkspaceMembership.objects.get_or_create(
        workspace=instance, user=instance.owner, defaults={"role": "owner"}
    )
    logger.info(
        "Workspace defaults created",
        extra={
            "workspace_id": instance.id,
            "owner_id": instance.owner_id,
            "action": "workspace_defaults_created",
            "component": "signals",
        },
    )
