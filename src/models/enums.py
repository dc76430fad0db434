"""
Enumerations for lifecycle states.

Status columns store the enum ``.value`` strings; services compare
against these members rather than string literals.
"""

from enum import Enum


class ProductionOrderStatus(str, Enum):
    """
    Overall status of a production order.

    Values:
        PLANNED: No line completed yet
        IN_PROGRESS: At least one line completed, at least one pending
        COMPLETED: Every line completed
        CANCELLED: Abandoned; no further completions accepted
    """

    PLANNED = "planned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ProductionLineStatus(str, Enum):
    """Per-line status of a production order."""

    PENDING = "pending"
    COMPLETED = "completed"


class FinishedLotStatus(str, Enum):
    """
    Status of a finished-goods lot.

    Values:
        ACTIVE: Available for allocation
        SOLD_OUT: Fully allocated (current quantity is zero)
        EXPIRED: Past its expiry, never allocated again
        RECALLED: Withdrawn from sale
    """

    ACTIVE = "active"
    SOLD_OUT = "sold_out"
    EXPIRED = "expired"
    RECALLED = "recalled"


class OrderStatus(str, Enum):
    """Store order lifecycle: pending -> shipped -> received, or cancelled."""

    PENDING = "pending"
    SHIPPED = "shipped"
    RECEIVED = "received"
    CANCELLED = "cancelled"


class ShipmentStatus(str, Enum):
    """Delivery trip lifecycle."""

    IN_TRANSIT = "in_transit"
    COMPLETED = "completed"


class PaymentStatus(str, Enum):
    """Invoice payment status, independent of the order lifecycle."""

    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class PaymentMethod(str, Enum):
    """Accepted invoice payment methods."""

    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"
    CREDIT_CARD = "credit_card"
    CHECK = "check"
    OTHER = "other"


class StoreStatus(str, Enum):
    """Operating status of a store; only active stores may order."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    MAINTENANCE = "maintenance"
