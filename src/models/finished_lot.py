"""
FinishedLot and LotConsumption models.

A FinishedLot is the output of completing one production order line. Its
consumption ledger (LotConsumption rows) records which ingredient lots
contributed and how much of each; the ledger is written once, together
with the lot, and rejected on any later update.
"""

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    event,
)
from sqlalchemy.orm import object_session, relationship

from .base import BaseModel
from .enums import FinishedLotStatus
from src.utils.datetime_utils import as_utc, utc_now


class FinishedLot(BaseModel):
    """
    FinishedLot model representing a produced batch of one product.

    Attributes:
        code: Unique lot code (BATCH-YYYYMMDD-SKU[-n])
        production_order_id: Production order the lot came from (mandatory)
        product_id: Foreign key to Product
        manufactured_at: Production completion time
        expires_at: manufactured_at + product shelf life
        initial_quantity: Units produced
        current_quantity: Units not yet allocated to shipments
        status: FinishedLotStatus value

    Relationships:
        consumptions: Immutable consumption ledger
    """

    __tablename__ = "finished_lots"

    code = Column(String(80), nullable=False, unique=True)
    production_order_id = Column(
        Integer, ForeignKey("production_orders.id", ondelete="RESTRICT"), nullable=False
    )
    product_id = Column(
        Integer, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False
    )
    manufactured_at = Column(DateTime, nullable=False, default=utc_now)
    expires_at = Column(DateTime, nullable=False)
    initial_quantity = Column(Integer, nullable=False)
    current_quantity = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default=FinishedLotStatus.ACTIVE.value)

    production_order = relationship("ProductionOrder", back_populates="finished_lots")
    product = relationship("Product", back_populates="finished_lots")
    consumptions = relationship(
        "LotConsumption",
        back_populates="finished_lot",
        cascade="all, delete-orphan",
        order_by="LotConsumption.id",
    )

    __table_args__ = (
        # FEFO lookups: by product, soonest expiry first
        Index("idx_finished_lot_fefo", "product_id", "expires_at"),
        Index("idx_finished_lot_status", "status"),
        CheckConstraint("initial_quantity > 0", name="ck_finished_lot_initial_positive"),
        CheckConstraint("current_quantity >= 0", name="ck_finished_lot_current_non_negative"),
        CheckConstraint(
            "current_quantity <= initial_quantity", name="ck_finished_lot_current_le_initial"
        ),
        CheckConstraint("expires_at > manufactured_at", name="ck_finished_lot_expiry_after_mfg"),
    )

    def is_expired(self, now=None) -> bool:
        """True when expires_at is at or before now."""
        now = as_utc(now) if now is not None else utc_now()
        return as_utc(self.expires_at) <= now

    def mark_depleted(self) -> None:
        """Flag the lot sold out once its current quantity reaches zero."""
        self.status = FinishedLotStatus.SOLD_OUT.value

    def __repr__(self) -> str:
        """String representation of finished lot."""
        return (
            f"FinishedLot(id={self.id}, code='{self.code}', "
            f"current={self.current_quantity}, status='{self.status}')"
        )

    def to_dict(self, include_relationships: bool = False) -> dict:
        """
        Convert finished lot to dictionary.

        Args:
            include_relationships: If True, include the consumption ledger

        Returns:
            Dictionary representation of the lot
        """
        result = super().to_dict(include_relationships=False)
        if self.product is not None:
            result["product_sku"] = self.product.sku
        if include_relationships:
            result["consumption_ledger"] = [c.to_dict() for c in self.consumptions]
        return result


class LotConsumption(BaseModel):
    """
    One traceability entry: an ingredient lot and the quantity taken from it.

    Attributes:
        finished_lot_id: Owning FinishedLot
        ingredient_lot_id: Source IngredientLot
        ingredient_id: Ingredient of the source lot
        quantity_used: Quantity deducted from the source lot
    """

    __tablename__ = "finished_lot_consumptions"

    finished_lot_id = Column(
        Integer, ForeignKey("finished_lots.id", ondelete="CASCADE"), nullable=False
    )
    ingredient_lot_id = Column(
        Integer, ForeignKey("ingredient_lots.id", ondelete="RESTRICT"), nullable=False
    )
    ingredient_id = Column(
        Integer, ForeignKey("ingredients.id", ondelete="RESTRICT"), nullable=False
    )
    quantity_used = Column(Numeric(12, 3), nullable=False)

    finished_lot = relationship("FinishedLot", back_populates="consumptions")
    ingredient_lot = relationship("IngredientLot", lazy="joined")
    ingredient = relationship("Ingredient")

    __table_args__ = (
        Index("idx_lot_consumption_finished_lot", "finished_lot_id"),
        Index("idx_lot_consumption_ingredient_lot", "ingredient_lot_id"),
        CheckConstraint("quantity_used > 0", name="ck_lot_consumption_quantity_positive"),
    )

    def __repr__(self) -> str:
        """String representation of consumption entry."""
        return (
            f"LotConsumption(finished_lot_id={self.finished_lot_id}, "
            f"ingredient_lot_id={self.ingredient_lot_id}, quantity_used={self.quantity_used})"
        )

    def to_dict(self, include_relationships: bool = False) -> dict:
        result = super().to_dict(include_relationships)
        if self.ingredient_lot is not None:
            result["ingredient_lot_code"] = self.ingredient_lot.lot_code
        return result


@event.listens_for(LotConsumption, "before_update")
def _reject_consumption_update(mapper, connection, target: LotConsumption):
    """Consumption ledger rows are write-once."""
    session = object_session(target)
    if session is not None and not session.is_modified(target, include_collections=False):
        return
    raise ValueError(
        f"Consumption ledger entry {target.id} is immutable and cannot be updated"
    )
