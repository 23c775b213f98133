# ledger/mixins/workspace_context.py
"""
Workspace context mixin.
Thin wrapper around the workspace context service with proper error propagation.
"""

import logging

from ..services.workspace_context_service import WorkspaceContextService

logger = logging.getLogger(__name__)


class WorkspaceContextMixin:
    """
    Builds workspace context for a view.
    Ensures context is available BEFORE permission checks.
    """

    context_service = WorkspaceContextService()

    def initial(self, request, *args, **kwargs):
        """
        Called after URL parsing but before permission checks.

        Context must be set before super().initial() so permission classes
        can read it.
        """
        self._process_workspace_context(request, kwargs)

        super().initial(request, *args, **kwargs)

        logger.debug(
            "Workspace context flow completed successfully",
            extra={
                "user_id": getattr(request.user, "id", "anonymous"),
                "workspace_id": request.user_permissions.get("current_workspace_id"),
                "workspace_role": request.user_permissions.get("workspace_role"),
                "action": "workspace_context_complete",
                "component": "WorkspaceContextMixin",
            },
        )

    def _process_workspace_context(self, request, view_kwargs):
        try:
            self.context_service.build_request_context(request, view_kwargs)
        except Exception as e:
            logger.error(
                "Workspace context processing failed",
                extra={
                    "user_id": getattr(request.user, "id", "anonymous"),
                    "error": str(e),
                    "view_kwargs": view_kwargs,
                    "action": "workspace_context_processing_failed",
                    "component": "WorkspaceContextMixin",
                    "severity": "high",
                },
            )
            # Propagate exception to DRF for proper error handling
            raise
