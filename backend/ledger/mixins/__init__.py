# ledger/mixins/__init__.py
from .service_exception_handler import ServiceExceptionHandlerMixin
from .workspace_context import WorkspaceContextMixin

__all__ = [
    "WorkspaceContextMixin",
    "ServiceExceptionHandlerMixin",
]
