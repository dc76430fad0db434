"""
Ingredient model for raw materials consumed by production.

The ingredient row carries a cached running total of its stock. The
total is a denormalized sum of the current quantity of every active
IngredientLot for the ingredient and is only written through
batch_ledger_service.adjust_ingredient_total().
"""

from decimal import Decimal

from sqlalchemy import Column, String, Numeric, Index, CheckConstraint
from sqlalchemy.orm import relationship

from .base import BaseModel


class Ingredient(BaseModel):
    """
    Ingredient model representing a raw material (flour, salted egg yolk, ...).

    Attributes:
        name: Unique ingredient name
        unit: Unit of measure for every quantity of this ingredient (e.g. "kg")
        unit_cost: Reference cost per unit
        warning_threshold: Stock level below which the ingredient is low
        total_quantity: Cached sum of active lot quantities

    Relationships:
        lots: IngredientLot rows for this ingredient
        recipe_items: Recipe lines that consume this ingredient
    """

    __tablename__ = "ingredients"

    name = Column(String(200), nullable=False, unique=True)
    unit = Column(String(20), nullable=False)
    unit_cost = Column(Numeric(10, 4), nullable=False, default=Decimal("0"))
    warning_threshold = Column(Numeric(12, 3), nullable=False, default=Decimal("10"))

    # Aggregate cache; see module docstring
    total_quantity = Column(Numeric(12, 3), nullable=False, default=Decimal("0"))

    lots = relationship(
        "IngredientLot",
        back_populates="ingredient",
        order_by="IngredientLot.id",
    )
    recipe_items = relationship("RecipeItem", back_populates="ingredient")

    __table_args__ = (
        Index("idx_ingredient_name", "name"),
        CheckConstraint("total_quantity >= 0", name="ck_ingredient_total_non_negative"),
        CheckConstraint(
            "warning_threshold >= 0", name="ck_ingredient_threshold_non_negative"
        ),
    )

    @property
    def is_below_threshold(self) -> bool:
        """True when cached stock is under the warning threshold."""
        return Decimal(str(self.total_quantity or 0)) < Decimal(str(self.warning_threshold or 0))

    def __repr__(self) -> str:
        """String representation of ingredient."""
        return (
            f"Ingredient(id={self.id}, name='{self.name}', "
            f"total_quantity={self.total_quantity} {self.unit})"
        )

    def to_dict(self, include_relationships: bool = False) -> dict:
        """Convert ingredient to dictionary, adding the low-stock flag."""
        result = super().to_dict(include_relationships)
        result["is_below_threshold"] = self.is_below_threshold
        return result
