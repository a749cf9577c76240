"""Exception taxonomy for the point-of-sale core and its ERP bridge.

Business rule failures derive from :class:`BusinessRuleViolation` and are
raised synchronously before any state change. Integration failures derive from
:class:`IntegrationError`; the sync layer converts them into status metadata
instead of letting them reach the sale path.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Sequence, Tuple


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced product, customer, tab, or sale is unknown."""


class DuplicateRecordError(BusinessRuleViolation):
    """Raised when a record is added with an identifier that already exists."""


class InsufficientStock(BusinessRuleViolation):
    """Raised when a line is added for more units than the catalog holds."""

    def __init__(self, product_id: str, requested: Decimal, available: Decimal) -> None:
        super().__init__(
            f"Insufficient stock for product '{product_id}': "
            f"requested {requested}, available {available}"
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class EmptyCart(BusinessRuleViolation):
    """Raised when a tab without lines is committed."""


class InsufficientPayment(BusinessRuleViolation):
    """Raised when a cash tender does not cover the tab total."""

    def __init__(self, total: Decimal, tendered: Decimal) -> None:
        super().__init__(f"Amount tendered {tendered} is less than total {total}")
        self.total = total
        self.tendered = tendered


class StockConflict(BusinessRuleViolation):
    """Raised when committed quantities exceed the stock available at commit time.

    ``conflicts`` holds ``(product_id, requested, available)`` triples for every
    offending line so the operator can adjust all of them at once.
    """

    def __init__(self, conflicts: Sequence[Tuple[str, Decimal, Decimal]]) -> None:
        details = ", ".join(
            f"{product_id} (requested {requested}, available {available})"
            for product_id, requested, available in conflicts
        )
        super().__init__(f"Stock changed since items were added: {details}")
        self.conflicts = tuple(conflicts)


class PriceConflict(BusinessRuleViolation):
    """Raised when a merge carries an override price different from the line price."""


class CustomerRequired(BusinessRuleViolation):
    """Raised when a credit sale is committed without a bound customer."""


class CreditLimitExceeded(BusinessRuleViolation):
    """Raised when a credit sale would push a customer past the credit limit."""


class IntegrationError(Exception):
    """Base class for failures talking to the external ERP system."""


class SyncFailure(IntegrationError):
    """Raised when the ERP system rejects or garbles a request."""


class ConnectionFailure(IntegrationError):
    """Raised when the ERP system cannot be reached in time."""


__all__ = [
    "BusinessRuleViolation",
    "MissingReferenceError",
    "DuplicateRecordError",
    "InsufficientStock",
    "EmptyCart",
    "InsufficientPayment",
    "StockConflict",
    "PriceConflict",
    "CustomerRequired",
    "CreditLimitExceeded",
    "IntegrationError",
    "SyncFailure",
    "ConnectionFailure",
]
