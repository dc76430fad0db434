"""
IngredientLot model for perishable raw-material lots.

Each row is one delivery of an ingredient from a supplier, with its own
expiry date. Lots are consumed First-Expired-First-Out by production and
are never deleted: a depleted lot is deactivated and kept because finished
lots reference it in their consumption ledger.
"""

from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.orm import relationship

from .base import BaseModel
from src.utils.datetime_utils import utc_today


class IngredientLot(BaseModel):
    """
    IngredientLot model representing a received batch of one ingredient.

    FEFO Consumption:
    Lots are consumed in expiry_date order (soonest first). Lots sharing an
    expiry date are consumed in arrival (id) order.

    Attributes:
        ingredient_id: Foreign key to Ingredient
        supplier_id: Foreign key to Supplier
        lot_code: Unique lot code, stored uppercase
        expiry_date: Date the lot expires
        received_date: Date the lot was received
        initial_quantity: Quantity received
        current_quantity: Quantity remaining (0 <= current <= initial)
        unit_cost: Purchase price per unit
        is_active: False once the lot is depleted
    """

    __tablename__ = "ingredient_lots"

    ingredient_id = Column(
        Integer, ForeignKey("ingredients.id", ondelete="RESTRICT"), nullable=False
    )
    supplier_id = Column(
        Integer, ForeignKey("suppliers.id", ondelete="RESTRICT"), nullable=False
    )

    lot_code = Column(String(50), nullable=False, unique=True)
    expiry_date = Column(Date, nullable=False)
    received_date = Column(Date, nullable=False, default=utc_today)

    initial_quantity = Column(Numeric(12, 3), nullable=False)
    current_quantity = Column(Numeric(12, 3), nullable=False)
    unit_cost = Column(Numeric(10, 4), nullable=False, default=Decimal("0"))

    is_active = Column(Boolean, nullable=False, default=True)

    ingredient = relationship("Ingredient", back_populates="lots")
    supplier = relationship("Supplier", back_populates="ingredient_lots")

    __table_args__ = (
        # FEFO lookups: by ingredient, soonest expiry first
        Index("idx_ingredient_lot_fefo", "ingredient_id", "expiry_date"),
        Index("idx_ingredient_lot_active", "is_active", "current_quantity"),
        Index("idx_ingredient_lot_supplier", "supplier_id", "received_date"),
        CheckConstraint("initial_quantity > 0", name="ck_ingredient_lot_initial_positive"),
        CheckConstraint("current_quantity >= 0", name="ck_ingredient_lot_current_non_negative"),
        CheckConstraint(
            "current_quantity <= initial_quantity", name="ck_ingredient_lot_current_le_initial"
        ),
    )

    @property
    def is_expired(self) -> bool:
        """True once the expiry date has passed."""
        return self.expiry_date < utc_today()

    @property
    def is_empty(self) -> bool:
        """True when nothing remains in the lot."""
        return self.current_quantity <= 0

    def mark_depleted(self) -> None:
        """Deactivate the lot once its current quantity reaches zero."""
        self.is_active = False

    def __repr__(self) -> str:
        """String representation of ingredient lot."""
        return (
            f"IngredientLot(id={self.id}, lot_code='{self.lot_code}', "
            f"current={self.current_quantity}, expiry={self.expiry_date})"
        )

    def to_dict(self, include_relationships: bool = False) -> dict:
        """Convert lot to dictionary with expiry flag and ingredient name."""
        result = super().to_dict(include_relationships)
        result["is_expired"] = self.is_expired
        if self.ingredient is not None:
            result["ingredient_name"] = self.ingredient.name
        return result
