"""
Order and OrderLine models for store orders.

An order is placed by a store against the kitchen's product catalog. While
pending, each line may carry a finished-lot hint. When the order ships the
lines are replaced by the lots actually allocated, so after shipping every
line names a real finished lot.
"""

from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from .base import BaseModel
from .enums import OrderStatus


class Order(BaseModel):
    """
    Order model.

    Attributes:
        code: Unique order code (ORD-YYYYMMDD-NNNN)
        store_id: Ordering store
        requested_delivery_date: Date the store wants the goods
        total_amount: Sum of line subtotals
        status: OrderStatus value
        notes: Optional notes
        cancellation_reason: Reason given on rejection
        created_by / approved_by / approved_at: Audit fields
        shipped_at / received_at / cancelled_at: Lifecycle timestamps
    """

    __tablename__ = "orders"

    code = Column(String(50), nullable=False, unique=True)
    store_id = Column(Integer, ForeignKey("stores.id", ondelete="RESTRICT"), nullable=False)
    requested_delivery_date = Column(Date, nullable=False)
    total_amount = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    status = Column(String(20), nullable=False, default=OrderStatus.PENDING.value)
    notes = Column(Text, nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    created_by = Column(String(100), nullable=True)
    approved_by = Column(String(100), nullable=True)
    approved_at = Column(DateTime, nullable=True)
    shipped_at = Column(DateTime, nullable=True)
    received_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)

    store = relationship("Store", back_populates="orders")
    lines = relationship(
        "OrderLine",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderLine.id",
    )
    shipments = relationship("Shipment", back_populates="order")
    invoice = relationship("Invoice", back_populates="order", uselist=False)

    __table_args__ = (
        Index("idx_order_status", "status"),
        Index("idx_order_store", "store_id", "requested_delivery_date"),
        CheckConstraint("total_amount >= 0", name="ck_order_total_non_negative"),
    )

    def recalculate_total(self) -> Decimal:
        """Set total_amount to the sum of line subtotals."""
        self.total_amount = sum(
            (Decimal(str(line.subtotal)) for line in self.lines), Decimal("0.00")
        )
        return self.total_amount

    def __repr__(self) -> str:
        """String representation of order."""
        return f"Order(id={self.id}, code='{self.code}', status='{self.status}')"

    def to_dict(self, include_relationships: bool = False) -> dict:
        """Convert order to dictionary, always including lines."""
        result = super().to_dict(include_relationships=False)
        result["lines"] = [line.to_dict() for line in self.lines]
        if self.store is not None:
            result["store_code"] = self.store.code
        return result


class OrderLine(BaseModel):
    """
    One product line of an order.

    Attributes:
        order_id: Foreign key to Order
        product_id: Foreign key to Product
        finished_lot_id: Requested lot hint while pending, allocated lot once shipped
        quantity: Units ordered
        unit_price: Price per unit at order time
        subtotal: quantity x unit_price
    """

    __tablename__ = "order_lines"

    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    product_id = Column(
        Integer, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False
    )
    finished_lot_id = Column(
        Integer, ForeignKey("finished_lots.id", ondelete="RESTRICT"), nullable=True
    )
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)
    subtotal = Column(Numeric(12, 2), nullable=False)

    order = relationship("Order", back_populates="lines")
    product = relationship("Product", lazy="joined")
    finished_lot = relationship("FinishedLot")

    __table_args__ = (
        Index("idx_order_line_order", "order_id"),
        CheckConstraint("quantity > 0", name="ck_order_line_quantity_positive"),
        CheckConstraint("unit_price >= 0", name="ck_order_line_price_non_negative"),
    )

    def __repr__(self) -> str:
        """String representation of order line."""
        return (
            f"OrderLine(order_id={self.order_id}, product_id={self.product_id}, "
            f"quantity={self.quantity})"
        )

    def to_dict(self, include_relationships: bool = False) -> dict:
        result = super().to_dict(include_relationships)
        if self.product is not None:
            result["product_sku"] = self.product.sku
        return result
