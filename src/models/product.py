"""
Product and RecipeItem models.

A product is a finished good the kitchen makes and ships to stores (e.g.
"Salted Egg Mooncake"). Its recipe is the ordered list of RecipeItem rows,
each stating how much of one ingredient a single unit consumes.
"""

from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship, validates

from .base import BaseModel


class Product(BaseModel):
    """
    Product model representing a sellable finished good.

    Attributes:
        name: Display name
        sku: Unique stock-keeping unit, stored uppercase; used in lot codes
        price: Unit price charged to stores
        shelf_life_days: Days from manufacture until a finished lot expires
        unit: Unit of sale (e.g. "box")
        description: Optional description
        is_active: Soft delete flag

    Relationships:
        recipe_items: Ordered recipe lines
        finished_lots: Lots produced for this product
    """

    __tablename__ = "products"

    name = Column(String(200), nullable=False)
    sku = Column(String(50), nullable=False, unique=True)
    price = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    shelf_life_days = Column(Integer, nullable=False)
    unit = Column(String(20), nullable=False, default="unit")
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    recipe_items = relationship(
        "RecipeItem",
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="RecipeItem.position",
    )
    finished_lots = relationship("FinishedLot", back_populates="product")

    __table_args__ = (
        Index("idx_product_name", "name"),
        CheckConstraint("price >= 0", name="ck_product_price_non_negative"),
        CheckConstraint("shelf_life_days > 0", name="ck_product_shelf_life_positive"),
    )

    @validates("sku")
    def _normalize_sku(self, _key, value):
        return value.strip().upper() if value else value

    def __repr__(self) -> str:
        """String representation of product."""
        return f"Product(id={self.id}, sku='{self.sku}', name='{self.name}')"

    def to_dict(self, include_relationships: bool = False) -> dict:
        """
        Convert product to dictionary.

        Args:
            include_relationships: If True, include the recipe lines

        Returns:
            Dictionary representation with the recipe under "recipe"
        """
        result = super().to_dict(include_relationships=False)
        if include_relationships:
            result["recipe"] = [item.to_dict() for item in self.recipe_items]
        return result


class RecipeItem(BaseModel):
    """
    One recipe line: quantity of an ingredient consumed per unit of product.

    Attributes:
        product_id: Foreign key to Product
        ingredient_id: Foreign key to Ingredient
        quantity_per_unit: Ingredient quantity (in the ingredient's unit) per product unit
        position: Order of the line within the recipe
    """

    __tablename__ = "recipe_items"

    product_id = Column(
        Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False
    )
    ingredient_id = Column(
        Integer, ForeignKey("ingredients.id", ondelete="RESTRICT"), nullable=False
    )
    quantity_per_unit = Column(Numeric(12, 3), nullable=False)
    position = Column(Integer, nullable=False, default=0)

    product = relationship("Product", back_populates="recipe_items")
    ingredient = relationship("Ingredient", back_populates="recipe_items", lazy="joined")

    __table_args__ = (
        UniqueConstraint("product_id", "ingredient_id", name="uq_recipe_item_product_ingredient"),
        Index("idx_recipe_item_product", "product_id", "position"),
        CheckConstraint("quantity_per_unit > 0", name="ck_recipe_item_quantity_positive"),
    )

    def __repr__(self) -> str:
        """String representation of recipe item."""
        return (
            f"RecipeItem(product_id={self.product_id}, ingredient_id={self.ingredient_id}, "
            f"quantity_per_unit={self.quantity_per_unit})"
        )

    def to_dict(self, include_relationships: bool = False) -> dict:
        """Convert recipe item to dictionary with ingredient name and unit."""
        result = super().to_dict(include_relationships)
        if self.ingredient is not None:
            result["ingredient_name"] = self.ingredient.name
            result["unit"] = self.ingredient.unit
        return result
