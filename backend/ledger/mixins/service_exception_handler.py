"""
Service exception handler mixin.
Runs service calls from views and translates service-layer failures into
DRF exceptions with the right HTTP status, logging every branch.
"""

import logging

from django.core.exceptions import ValidationError as DjangoValidationError
from rest_framework import status
from rest_framework.exceptions import APIException
from rest_framework.exceptions import PermissionDenied as DRFPermissionDenied
from rest_framework.exceptions import ValidationError as DRFValidationError

from ..exceptions import (
    DebtOverapplicationError,
    LedgerError,
    PartialWriteError,
    RateUnresolvedError,
    ReferentialIntegrityError,
)

logger = logging.getLogger(__name__)


class LedgerRuleViolation(APIException):
    """400 for ledger rules broken by otherwise well-formed input."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Ledger rule violated."
    default_code = "ledger_rule_violation"


class LedgerConflict(APIException):
    """409 for deletes blocked by existing references."""

    status_code = status.HTTP_409_CONFLICT
    default_detail = "Entity is still referenced."
    default_code = "referential_integrity"


class LedgerWriteFailure(APIException):
    """500 for multi-row writes that failed midway."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = "Write failed after partial completion."
    default_code = "partial_write"


# Ledger error class -> API exception raised for it
LEDGER_ERROR_MAP = (
    (RateUnresolvedError, LedgerRuleViolation, "medium"),
    (DebtOverapplicationError, LedgerRuleViolation, "medium"),
    (ReferentialIntegrityError, LedgerConflict, "low"),
    (PartialWriteError, LedgerWriteFailure, "critical"),
)


class ServiceExceptionHandlerMixin:
    """
    Mixin for handling service layer exceptions in views.

    Mapping:
    - Django ValidationError -> 400 with the field dict
    - RateUnresolvedError / DebtOverapplicationError -> 400 with structured detail
    - ReferentialIntegrityError -> 409
    - PartialWriteError -> 500 with both failures in the detail
    - anything else -> generic 500 ``service_error``

    Usage:
        operations = self.handle_service_call(
            OperationService.record_operation, workspace, user, data
        )
    """

    def _service_call_context(self, service_call):
        qualname = getattr(service_call, "__qualname__", "")
        service_name = qualname.split(".")[0] if "." in qualname else self.__class__.__name__
        method_name = getattr(service_call, "__name__", str(service_call))
        request = getattr(self, "request", None)
        user_id = getattr(getattr(request, "user", None), "id", None) if request else None
        workspace = getattr(request, "workspace", None) if request else None
        return {
            "service_name": service_name,
            "method_name": method_name,
            "user_id": user_id,
            "workspace_id": getattr(workspace, "id", None),
        }

    def handle_service_call(self, service_call, *args, **kwargs):
        """
        Execute service call with exception translation and logging.

        Args:
            service_call: Service method to execute
            *args: Positional arguments for service call
            **kwargs: Keyword arguments for service call

        Returns:
            Any: Result from service call
        """
        context = self._service_call_context(service_call)

        logger.debug(
            "Service call execution initiated",
            extra={
                **context,
                "args_count": len(args),
                "kwargs_keys": list(kwargs.keys()),
                "action": "service_call_start",
                "component": "ServiceExceptionHandlerMixin",
            },
        )

        try:
            result = service_call(*args, **kwargs)

            logger.debug(
                "Service call completed successfully",
                extra={
                    **context,
                    "result_type": type(result).__name__,
                    "action": "service_call_success",
                    "component": "ServiceExceptionHandlerMixin",
                },
            )
            return result

        except DRFValidationError as e:
            logger.warning(
                "Service validation error (DRF)",
                extra={
                    **context,
                    "error_type": "DRFValidationError",
                    "error_detail": e.detail,
                    "action": "service_validation_error_drf",
                    "component": "ServiceExceptionHandlerMixin",
                    "severity": "medium",
                },
            )
            raise

        except DjangoValidationError as e:
            # Keep the field dict when the service raised one
            error_detail = e.message_dict if hasattr(e, "error_dict") else e.messages

            logger.warning(
                "Service validation error (Django)",
                extra={
                    **context,
                    "error_type": "DjangoValidationError",
                    "error_messages": e.messages,
                    "action": "service_validation_error_django",
                    "component": "ServiceExceptionHandlerMixin",
                    "severity": "medium",
                },
            )
            raise DRFValidationError(error_detail)

        except LedgerError as e:
            api_exception, severity = LedgerWriteFailure, "critical"
            for error_class, mapped_exception, mapped_severity in LEDGER_ERROR_MAP:
                if isinstance(e, error_class):
                    api_exception, severity = mapped_exception, mapped_severity
                    break

            log = logger.error if api_exception is LedgerWriteFailure else logger.warning
            log(
                "Service ledger error",
                extra={
                    **context,
                    "error_type": type(e).__name__,
                    "error_code": e.code,
                    "error_detail": e.to_dict(),
                    "action": "service_ledger_error",
                    "component": "ServiceExceptionHandlerMixin",
                    "severity": severity,
                },
                exc_info=api_exception is LedgerWriteFailure,
            )
            raise api_exception(detail=e.to_dict(), code=e.code)

        except DRFPermissionDenied as e:
            logger.warning(
                "Service permission denied (DRF)",
                extra={
                    **context,
                    "error_type": "DRFPermissionDenied",
                    "error_detail": e.detail,
                    "action": "service_permission_denied_drf",
                    "component": "ServiceExceptionHandlerMixin",
                    "severity": "high",
                },
            )
            raise

        except PermissionError as e:
            logger.warning(
                "Service permission denied (Python)",
                extra={
                    **context,
                    "error_type": "PermissionError",
                    "error_message": str(e),
                    "action": "service_permission_denied_python",
                    "component": "ServiceExceptionHandlerMixin",
                    "severity": "high",
                },
            )
            raise DRFPermissionDenied(str(e))

        except APIException as e:
            logger.error(
                "Service API exception",
                extra={
                    **context,
                    "error_type": "APIException",
                    "error_detail": e.detail,
                    "status_code": e.status_code,
                    "action": "service_api_exception",
                    "component": "ServiceExceptionHandlerMixin",
                    "severity": "high",
                },
            )
            raise

        except Exception as e:
            logger.error(
                "Service operation failed unexpectedly",
                extra={
                    **context,
                    "error_type": type(e).__name__,
                    "error_message": str(e),
                    "args_count": len(args),
                    "kwargs_keys": list(kwargs.keys()),
                    "action": "service_unexpected_error",
                    "component": "ServiceExceptionHandlerMixin",
                    "severity": "critical",
                },
                exc_info=True,
            )
            # Generic exception to prevent information leakage
            raise APIException(detail="Service operation failed", code="service_error")
