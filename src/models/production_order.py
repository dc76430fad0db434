"""
ProductionOrder and ProductionOrderLine models.

A production order plans which products are made on a given day. Each
line is completed independently; completing a line produces exactly one
FinishedLot. The order status is derived from its lines.
"""

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .base import BaseModel
from .enums import ProductionLineStatus, ProductionOrderStatus
from src.utils.datetime_utils import utc_today


class ProductionOrder(BaseModel):
    """
    ProductionOrder model.

    Attributes:
        code: Unique plan code
        plan_date: Day the production is planned for
        note: Optional note
        status: ProductionOrderStatus value
    """

    __tablename__ = "production_orders"

    code = Column(String(50), nullable=False, unique=True)
    plan_date = Column(Date, nullable=False, default=utc_today)
    note = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default=ProductionOrderStatus.PLANNED.value)

    lines = relationship(
        "ProductionOrderLine",
        back_populates="production_order",
        cascade="all, delete-orphan",
        order_by="ProductionOrderLine.id",
    )
    finished_lots = relationship("FinishedLot", back_populates="production_order")

    __table_args__ = (
        Index("idx_production_order_status", "status"),
        Index("idx_production_order_plan_date", "plan_date"),
    )

    @property
    def is_closed(self) -> bool:
        """True when no further completion is accepted."""
        return self.status in (
            ProductionOrderStatus.COMPLETED.value,
            ProductionOrderStatus.CANCELLED.value,
        )

    def line_for_product(self, product_id: int):
        """Return the line for a product, or None."""
        for line in self.lines:
            if line.product_id == product_id:
                return line
        return None

    def recompute_status(self) -> str:
        """
        Derive status from the lines.

        Any completed line with another still pending gives in_progress;
        all lines completed gives completed; no completed line leaves the
        status untouched.
        """
        completed = [
            line for line in self.lines if line.status == ProductionLineStatus.COMPLETED.value
        ]
        if self.lines and len(completed) == len(self.lines):
            self.status = ProductionOrderStatus.COMPLETED.value
        elif completed:
            self.status = ProductionOrderStatus.IN_PROGRESS.value
        return self.status

    def __repr__(self) -> str:
        """String representation of production order."""
        return f"ProductionOrder(id={self.id}, code='{self.code}', status='{self.status}')"

    def to_dict(self, include_relationships: bool = False) -> dict:
        """Convert production order to dictionary, always including lines."""
        result = super().to_dict(include_relationships=False)
        result["lines"] = [line.to_dict() for line in self.lines]
        return result


class ProductionOrderLine(BaseModel):
    """
    One product line of a production order.

    Attributes:
        production_order_id: Foreign key to ProductionOrder
        product_id: Foreign key to Product
        planned_quantity: Units planned
        actual_quantity: Units actually produced (set on completion)
        status: ProductionLineStatus value
        completed_at: Completion timestamp
        completed_by: Identity of the user who completed the line
    """

    __tablename__ = "production_order_lines"

    production_order_id = Column(
        Integer, ForeignKey("production_orders.id", ondelete="CASCADE"), nullable=False
    )
    product_id = Column(
        Integer, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False
    )
    planned_quantity = Column(Integer, nullable=False)
    actual_quantity = Column(Integer, nullable=True)
    status = Column(String(20), nullable=False, default=ProductionLineStatus.PENDING.value)
    completed_at = Column(DateTime, nullable=True)
    completed_by = Column(String(100), nullable=True)

    production_order = relationship("ProductionOrder", back_populates="lines")
    product = relationship("Product", lazy="joined")

    __table_args__ = (
        UniqueConstraint(
            "production_order_id", "product_id", name="uq_production_line_order_product"
        ),
        CheckConstraint("planned_quantity > 0", name="ck_production_line_planned_positive"),
        CheckConstraint(
            "actual_quantity IS NULL OR actual_quantity > 0",
            name="ck_production_line_actual_positive",
        ),
    )

    @property
    def is_completed(self) -> bool:
        return self.status == ProductionLineStatus.COMPLETED.value

    def __repr__(self) -> str:
        """String representation of production order line."""
        return (
            f"ProductionOrderLine(id={self.id}, product_id={self.product_id}, "
            f"status='{self.status}')"
        )

    def to_dict(self, include_relationships: bool = False) -> dict:
        result = super().to_dict(include_relationships)
        if self.product is not None:
            result["product_sku"] = self.product.sku
            result["product_name"] = self.product.name
        return result
