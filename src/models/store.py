"""
Store and StoreInventoryRecord models.

Stores place orders with the central kitchen. Goods received at a store
are tracked per (store, product, finished lot) so the lot stays traceable
after it leaves the kitchen.
"""

from sqlalchemy import (
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship, validates

from .base import BaseModel
from .enums import StoreStatus
from src.utils.constants import DEFAULT_DELIVERY_MINUTES


class Store(BaseModel):
    """
    Store model representing a franchise or branch location.

    Attributes:
        name: Store name
        code: Unique store code, stored uppercase
        address: Optional address
        phone: Optional phone number
        standard_delivery_minutes: Usual travel time from the kitchen
        status: StoreStatus value; only active stores may order
    """

    __tablename__ = "stores"

    name = Column(String(200), nullable=False)
    code = Column(String(50), nullable=False, unique=True)
    address = Column(String(300), nullable=True)
    phone = Column(String(50), nullable=True)
    standard_delivery_minutes = Column(
        Integer, nullable=False, default=DEFAULT_DELIVERY_MINUTES
    )
    status = Column(String(20), nullable=False, default=StoreStatus.ACTIVE.value)

    orders = relationship("Order", back_populates="store")
    inventory_records = relationship(
        "StoreInventoryRecord",
        back_populates="store",
        order_by="StoreInventoryRecord.id",
    )

    __table_args__ = (
        Index("idx_store_status", "status"),
        CheckConstraint(
            "standard_delivery_minutes >= 0", name="ck_store_delivery_minutes_non_negative"
        ),
    )

    @validates("code")
    def _normalize_code(self, _key, value):
        return value.strip().upper() if value else value

    @property
    def is_active(self) -> bool:
        return self.status == StoreStatus.ACTIVE.value

    def __repr__(self) -> str:
        """String representation of store."""
        return f"Store(id={self.id}, code='{self.code}', status='{self.status}')"


class StoreInventoryRecord(BaseModel):
    """
    Quantity of one finished lot held at a store.

    Attributes:
        store_id: Foreign key to Store
        product_id: Foreign key to Product
        finished_lot_id: Foreign key to FinishedLot
        quantity: Units on hand (incremented by shipment receipt)
    """

    __tablename__ = "store_inventory_records"

    store_id = Column(Integer, ForeignKey("stores.id", ondelete="RESTRICT"), nullable=False)
    product_id = Column(
        Integer, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False
    )
    finished_lot_id = Column(
        Integer, ForeignKey("finished_lots.id", ondelete="RESTRICT"), nullable=False
    )
    quantity = Column(Integer, nullable=False, default=0)

    store = relationship("Store", back_populates="inventory_records")
    product = relationship("Product")
    finished_lot = relationship("FinishedLot")

    __table_args__ = (
        UniqueConstraint(
            "store_id", "product_id", "finished_lot_id", name="uq_store_inventory_store_product_lot"
        ),
        CheckConstraint("quantity >= 0", name="ck_store_inventory_quantity_non_negative"),
    )

    def __repr__(self) -> str:
        """String representation of store inventory record."""
        return (
            f"StoreInventoryRecord(store_id={self.store_id}, "
            f"finished_lot_id={self.finished_lot_id}, quantity={self.quantity})"
        )

    def to_dict(self, include_relationships: bool = False) -> dict:
        result = super().to_dict(include_relationships)
        if self.finished_lot is not None:
            result["finished_lot_code"] = self.finished_lot.code
        if self.product is not None:
            result["product_sku"] = self.product.sku
        return result
