"""
Ledger exception taxonomy.

Input-shape problems are reported with Django's ``ValidationError`` (keyed by
field). The exceptions below cover the ledger-specific failures; each one
carries the values a caller needs to render a localized message.
"""

from datetime import date
from decimal import Decimal


class LedgerError(Exception):
    """Base class for ledger failures surfaced to callers."""

    code = "ledger_error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        """Serializable detail used by the API layer."""
        return {"code": self.code, "message": self.message}


class RateUnresolvedError(LedgerError):
    """No stored rate converts the operation currency and no explicit rate was given."""

    code = "rate_unresolved"

    def __init__(self, from_currency: str, to_currency: str, rate_date: date = None, message: str = None):
        self.from_currency = from_currency
        self.to_currency = to_currency
        self.rate_date = rate_date
        super().__init__(
            message
            or f"No exchange rate found for {from_currency}->{to_currency}"
            + (f" on or around {rate_date}" if rate_date else "")
            + "; supply an explicit rate"
        )

    def to_dict(self) -> dict:
        detail = super().to_dict()
        detail.update(
            {
                "from_currency": self.from_currency,
                "to_currency": self.to_currency,
                "rate_date": self.rate_date.isoformat() if self.rate_date else None,
            }
        )
        return detail


class DebtOverapplicationError(LedgerError):
    """Applied amount would drive the debt's remaining balance below zero."""

    code = "debt_overapplication"

    def __init__(self, debt_id: int, requested: Decimal, remaining: Decimal):
        self.debt_id = debt_id
        self.requested = requested
        self.remaining = remaining
        super().__init__(
            f"Applied amount {requested} exceeds remaining debt balance {remaining}"
        )

    def to_dict(self) -> dict:
        detail = super().to_dict()
        detail.update(
            {
                "debt_id": self.debt_id,
                "requested": str(self.requested),
                "remaining": str(self.remaining),
            }
        )
        return detail


class ReferentialIntegrityError(LedgerError):
    """Delete blocked because operations still reference the entity."""

    code = "referential_integrity"

    def __init__(self, entity: str, entity_id: int, reference_count: int):
        self.entity = entity
        self.entity_id = entity_id
        self.reference_count = reference_count
        super().__init__(
            f"Cannot delete {entity} {entity_id}: "
            f"{reference_count} operation(s) still reference it"
        )

    def to_dict(self) -> dict:
        detail = super().to_dict()
        detail.update(
            {
                "entity": self.entity,
                "entity_id": self.entity_id,
                "reference_count": self.reference_count,
            }
        )
        return detail


class PartialWriteError(LedgerError):
    """
    A multi-row write failed after partial completion.

    ``original_error`` is the failure that interrupted the write;
    ``rollback_error`` is set when the compensating cleanup failed too.
    """

    code = "partial_write"

    def __init__(self, message: str, original_error: Exception = None, rollback_error: Exception = None):
        self.original_error = original_error
        self.rollback_error = rollback_error
        super().__init__(message)

    @property
    def rolled_back(self) -> bool:
        return self.rollback_error is None

    def to_dict(self) -> dict:
        detail = super().to_dict()
        detail.update(
            {
                "original_error": str(self.original_error) if self.original_error else None,
                "rollback_error": str(self.rollback_error) if self.rollback_error else None,
                "rolled_back": self.rolled_back,
            }
        )
        return detail
