"""
Invoice model for billing a shipped order.

One invoice is issued per order when it ships. Payment status moves
independently of the order lifecycle.
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
)
from sqlalchemy.orm import relationship

from .base import BaseModel
from .enums import PaymentStatus


class Invoice(BaseModel):
    """
    Invoice model.

    Attributes:
        invoice_number: Unique number, INV-<order code>
        order_id: Billed order (unique)
        store_id: Billed store
        invoice_date: Issue date
        due_date: invoice_date + payment terms
        subtotal: Order total plus shipping surcharge
        tax_rate: Tax rate as a fraction (0.08 = 8%)
        tax_amount: subtotal x tax_rate, rounded to cents
        total_amount: subtotal + tax_amount
        paid_amount: Amount received so far
        payment_method: PaymentMethod value of the last payment
        payment_date: Time the invoice became fully paid
        payment_status: PaymentStatus value
    """

    __tablename__ = "invoices"

    invoice_number = Column(String(60), nullable=False, unique=True)
    order_id = Column(
        Integer, ForeignKey("orders.id", ondelete="RESTRICT"), nullable=False, unique=True
    )
    store_id = Column(Integer, ForeignKey("stores.id", ondelete="RESTRICT"), nullable=False)
    invoice_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=False)
    subtotal = Column(Numeric(12, 2), nullable=False)
    tax_rate = Column(Numeric(6, 4), nullable=False, default=Decimal("0"))
    tax_amount = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    total_amount = Column(Numeric(12, 2), nullable=False)
    paid_amount = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    payment_method = Column(String(20), nullable=True)
    payment_date = Column(DateTime, nullable=True)
    payment_status = Column(String(20), nullable=False, default=PaymentStatus.PENDING.value)

    order = relationship("Order", back_populates="invoice")
    store = relationship("Store")

    __table_args__ = (
        Index("idx_invoice_payment_status", "payment_status", "due_date"),
        CheckConstraint("subtotal >= 0", name="ck_invoice_subtotal_non_negative"),
        CheckConstraint("paid_amount >= 0", name="ck_invoice_paid_non_negative"),
        CheckConstraint("due_date >= invoice_date", name="ck_invoice_due_after_issue"),
    )

    @property
    def balance_due(self) -> Decimal:
        """Amount still owed."""
        return Decimal(str(self.total_amount)) - Decimal(str(self.paid_amount or 0))

    def __repr__(self) -> str:
        """String representation of invoice."""
        return (
            f"Invoice(id={self.id}, invoice_number='{self.invoice_number}', "
            f"status='{self.payment_status}')"
        )

    def to_dict(self, include_relationships: bool = False) -> dict:
        result = super().to_dict(include_relationships)
        result["balance_due"] = str(self.balance_due)
        return result
