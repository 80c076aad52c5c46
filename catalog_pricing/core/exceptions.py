"""
Domain exceptions for the pricing engine.

Services raise these; main.py maps them to HTTP responses.
"""
from typing import Any, Optional


class PricingEngineError(Exception):
    """Base class for all pricing engine errors."""

    status_code: int = 500

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class PricingValidationError(PricingEngineError):
    """Malformed or missing input. Raised before any resolution or write."""

    status_code = 400


class NotFoundError(PricingEngineError):
    """Referenced rule, offer or variant does not exist."""

    status_code = 404

    def __init__(self, entity: str, key: Any):
        super().__init__(f"{entity} not found: {key}", {"entity": entity, "key": str(key)})
        self.entity = entity
        self.key = key


class BulkOperationTimeout(PricingEngineError):
    """
    A bulk mutation exceeded its time budget.

    The effect on the store is unknown; callers must re-query the affected
    variants before retrying.
    """

    status_code = 504


class AuditWriteFailure(PricingEngineError):
    """
    Prices were committed but the audit entry could not be written.

    Carries the mutation result so callers can still report the affected count.
    """

    status_code = 207

    def __init__(self, message: str, result: Any):
        super().__init__(message)
        self.result = result
