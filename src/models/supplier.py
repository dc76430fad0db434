"""
Supplier model for tracking raw-material vendors.

Every ingredient lot records the supplier it was received from, so a
supplier row is kept (deactivated, never deleted) once lots reference it.
"""

from sqlalchemy import Column, String, Boolean, Text, Index
from sqlalchemy.orm import relationship

from .base import BaseModel


class Supplier(BaseModel):
    """
    Supplier model representing vendors that deliver ingredient lots.

    Attributes:
        name: Supplier name
        contact_name: Optional contact person
        phone: Optional phone number
        email: Optional email address
        address: Optional street address
        notes: Optional notes
        is_active: Soft delete flag (True = active, False = deactivated)

    Relationships:
        ingredient_lots: Lots received from this supplier
    """

    __tablename__ = "suppliers"

    name = Column(String(200), nullable=False, unique=True)
    contact_name = Column(String(200), nullable=True)
    phone = Column(String(50), nullable=True)
    email = Column(String(200), nullable=True)
    address = Column(String(300), nullable=True)
    notes = Column(Text, nullable=True)

    is_active = Column(Boolean, nullable=False, default=True)

    ingredient_lots = relationship("IngredientLot", back_populates="supplier")

    __table_args__ = (
        Index("idx_supplier_active", "is_active"),
    )

    def __repr__(self) -> str:
        """String representation of supplier."""
        return f"Supplier(id={self.id}, name='{self.name}')"
