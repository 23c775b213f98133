# ledger/tests/unit/test_service_exception_handler.py

from datetime import date
from unittest.mock import Mock, patch

import pytest
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import DatabaseError
from rest_framework import status
from rest_framework.exceptions import (
    APIException,
    PermissionDenied as DRFPermissionDenied,
    ValidationError as DRFValidationError,
)

from ledger.exceptions import (
    DebtOverapplicationError,
    PartialWriteError,
    RateUnresolvedError,
    ReferentialIntegrityError,
)
from ledger.mixins.service_exception_handler import (
    LedgerConflict,
    LedgerRuleViolation,
    LedgerWriteFailure,
    ServiceExceptionHandlerMixin,
)


class MockService:
    """A mock service to simulate different exception scenarios."""

    def method_success(self):
        return "success"

    def method_django_field_errors(self):
        raise DjangoValidationError({"amount": ["Amount must be positive"]})

    def method_django_message(self):
        raise DjangoValidationError("Django validation error")

    def method_rate_unresolved(self):
        raise RateUnresolvedError("USD", "EUR", date(2025, 1, 15))

    def method_referenced(self):
        raise ReferentialIntegrityError("account", 5, 3)

    def method_partial_write(self):
        raise PartialWriteError(
            "In-leg insert failed",
            original_error=DatabaseError("disk full"),
            rollback_error=DatabaseError("connection lost"),
        )

    def method_python_permission_error(self):
        raise PermissionError("Python permission error")

    def method_generic_exception(self):
        raise Exception("Generic service error")


class TestServiceExceptionHandlerMixin:
    """Tests for ServiceExceptionHandlerMixin."""

    def setup_method(self, method):
        self.mixin_instance = ServiceExceptionHandlerMixin()
        self.mixin_instance.request = Mock()
        self.mixin_instance.request.user = Mock(id=1)
        self.mixin_instance.request.workspace = Mock(id=7)
        self.mock_service = MockService()

    @patch("ledger.mixins.service_exception_handler.logger")
    def test_handle_service_call_success(self, mock_logger):
        result = self.mixin_instance.handle_service_call(self.mock_service.method_success)

        assert result == "success"
        found_success_log = False
        for call_args, call_kwargs in mock_logger.debug.call_args_list:
            if call_args[0] == "Service call completed successfully":
                assert call_kwargs["extra"]["service_name"] == "MockService"
                assert call_kwargs["extra"]["method_name"] == "method_success"
                assert call_kwargs["extra"]["user_id"] == 1
                assert call_kwargs["extra"]["workspace_id"] == 7
                assert call_kwargs["extra"]["action"] == "service_call_success"
                found_success_log = True
                break
        assert found_success_log, "Expected 'Service call completed successfully' log not found."

    @patch("ledger.mixins.service_exception_handler.logger")
    def test_django_validation_error_keeps_field_dict(self, mock_logger):
        with pytest.raises(DRFValidationError) as exc_info:
            self.mixin_instance.handle_service_call(self.mock_service.method_django_field_errors)

        assert exc_info.value.detail == {"amount": ["Amount must be positive"]}
        mock_logger.warning.assert_called_once()

    def test_django_validation_error_message_list(self):
        with pytest.raises(DRFValidationError) as exc_info:
            self.mixin_instance.handle_service_call(self.mock_service.method_django_message)

        assert exc_info.value.detail == ["Django validation error"]

    def test_rate_unresolved_maps_to_400(self):
        with pytest.raises(LedgerRuleViolation) as exc_info:
            self.mixin_instance.handle_service_call(self.mock_service.method_rate_unresolved)

        assert exc_info.value.status_code == status.HTTP_400_BAD_REQUEST
        assert exc_info.value.detail["code"] == "rate_unresolved"
        assert exc_info.value.detail["from_currency"] == "USD"

    def test_debt_overapplication_maps_to_400(self):
        def overapply():
            raise DebtOverapplicationError(3, "400.00", "300.00")

        with pytest.raises(LedgerRuleViolation):
            self.mixin_instance.handle_service_call(overapply)

    def test_referential_integrity_maps_to_409(self):
        with pytest.raises(LedgerConflict) as exc_info:
            self.mixin_instance.handle_service_call(self.mock_service.method_referenced)

        assert exc_info.value.status_code == status.HTTP_409_CONFLICT
        assert exc_info.value.detail["reference_count"] == "3"

    @patch("ledger.mixins.service_exception_handler.logger")
    def test_partial_write_maps_to_500_with_both_errors(self, mock_logger):
        with pytest.raises(LedgerWriteFailure) as exc_info:
            self.mixin_instance.handle_service_call(self.mock_service.method_partial_write)

        detail = exc_info.value.detail
        assert exc_info.value.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert detail["original_error"] == "disk full"
        assert detail["rollback_error"] == "connection lost"
        mock_logger.error.assert_called_once()
        assert mock_logger.error.call_args.kwargs["extra"]["severity"] == "critical"

    def test_python_permission_error(self):
        with pytest.raises(DRFPermissionDenied, match="Python permission error"):
            self.mixin_instance.handle_service_call(self.mock_service.method_python_permission_error)

    @patch("ledger.mixins.service_exception_handler.logger")
    def test_generic_exception_is_hidden(self, mock_logger):
        with pytest.raises(APIException) as exc_info:
            self.mixin_instance.handle_service_call(self.mock_service.method_generic_exception)

        assert str(exc_info.value.detail) == "Service operation failed"
        assert "Generic service error" not in str(exc_info.value.detail)
        mock_logger.error.assert_called_once()
