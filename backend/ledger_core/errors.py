"""
BILLING LEDGER ENGINE - ERROR TYPES

Error kinds raised by the engine:
1. ValidationError - rejected before any write (fail closed)
2. NotFound - operating on a missing installment/plan
3. StoreError - transport/persistence failure from the ledger store
4. InvariantViolation - stale or inconsistent series detected

Every error carries a `details` dict so callers can retry the whole
operation with enough context.
"""

from typing import Any, Dict, Optional


class LedgerEngineError(Exception):
    """Base exception for billing ledger engine errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationError(LedgerEngineError):
    """Raised when a record would violate a field co-requirement."""

    def __init__(self, field: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.field = field
        super().__init__(message, {"field": field, **(details or {})})


class NotFound(LedgerEngineError):
    """Raised when an installment or plan does not exist."""

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(
            f"{entity} not found: {entity_id}",
            {"entity": entity, "entity_id": entity_id}
        )


class StoreError(LedgerEngineError):
    """Raised when the ledger store fails to read or write."""

    def __init__(self, operation: str, original_error: Optional[Exception] = None,
                 details: Optional[Dict[str, Any]] = None):
        self.operation = operation
        self.original_error = original_error
        message = f"Ledger store failed during {operation}"
        if original_error is not None:
            message = f"{message}: {original_error}"
        super().__init__(message, {"operation": operation, **(details or {})})


class DuplicateLedgerEntryError(StoreError):
    """Raised when the store's unique payment_id index rejects an insert."""

    def __init__(self, payment_id: str, original_error: Optional[Exception] = None):
        self.payment_id = payment_id
        super().__init__(
            "insert_cash_flow_entry",
            original_error,
            {"payment_id": payment_id}
        )


class InvariantViolation(LedgerEngineError):
    """Raised when a resolved series disagrees with itself."""

    def __init__(self, violation_type: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.violation_type = violation_type
        super().__init__(message, {"violation_type": violation_type, **(details or {})})
