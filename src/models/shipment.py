"""
Shipment and ShipmentLine models.

A shipment is the delivery trip that carries an approved order to its
store. Its export lines are the authoritative record of which finished
lots were allocated and how many units of each left the kitchen.
"""

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship, validates

from .base import BaseModel
from .enums import ShipmentStatus
from src.utils.datetime_utils import utc_now


class Shipment(BaseModel):
    """
    Shipment model.

    Attributes:
        code: Unique shipment code, stored uppercase
        order_id: Order being delivered
        store_id: Destination store
        carrier_code: Optional carrier or driver code
        vehicle_number: Optional vehicle plate
        notes: Optional notes
        departed_at: Departure time
        estimated_arrival: Expected arrival (departure + store delivery minutes)
        actual_arrival: Set when the store receives the goods
        received_by: Identity of the receiving user
        status: ShipmentStatus value
    """

    __tablename__ = "shipments"

    code = Column(String(50), nullable=False, unique=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="RESTRICT"), nullable=False)
    store_id = Column(Integer, ForeignKey("stores.id", ondelete="RESTRICT"), nullable=False)
    carrier_code = Column(String(50), nullable=True)
    vehicle_number = Column(String(50), nullable=True)
    notes = Column(Text, nullable=True)
    departed_at = Column(DateTime, nullable=False, default=utc_now)
    estimated_arrival = Column(DateTime, nullable=False)
    actual_arrival = Column(DateTime, nullable=True)
    received_by = Column(String(100), nullable=True)
    status = Column(String(20), nullable=False, default=ShipmentStatus.IN_TRANSIT.value)

    order = relationship("Order", back_populates="shipments")
    store = relationship("Store")
    lines = relationship(
        "ShipmentLine",
        back_populates="shipment",
        cascade="all, delete-orphan",
        order_by="ShipmentLine.id",
    )

    __table_args__ = (
        Index("idx_shipment_status", "status"),
        Index("idx_shipment_order", "order_id"),
        CheckConstraint(
            "estimated_arrival >= departed_at", name="ck_shipment_arrival_after_departure"
        ),
    )

    @validates("code")
    def _normalize_code(self, _key, value):
        return value.strip().upper() if value else value

    def __repr__(self) -> str:
        """String representation of shipment."""
        return f"Shipment(id={self.id}, code='{self.code}', status='{self.status}')"

    def to_dict(self, include_relationships: bool = False) -> dict:
        """Convert shipment to dictionary, always including export lines."""
        result = super().to_dict(include_relationships=False)
        result["lines"] = [line.to_dict() for line in self.lines]
        return result


class ShipmentLine(BaseModel):
    """
    One export line: units of a finished lot loaded onto a shipment.

    Attributes:
        shipment_id: Foreign key to Shipment
        product_id: Foreign key to Product
        finished_lot_id: Allocated FinishedLot
        quantity: Units taken from the lot
    """

    __tablename__ = "shipment_lines"

    shipment_id = Column(
        Integer, ForeignKey("shipments.id", ondelete="CASCADE"), nullable=False
    )
    product_id = Column(
        Integer, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False
    )
    finished_lot_id = Column(
        Integer, ForeignKey("finished_lots.id", ondelete="RESTRICT"), nullable=False
    )
    quantity = Column(Integer, nullable=False)

    shipment = relationship("Shipment", back_populates="lines")
    product = relationship("Product")
    finished_lot = relationship("FinishedLot", lazy="joined")

    __table_args__ = (
        Index("idx_shipment_line_shipment", "shipment_id"),
        CheckConstraint("quantity > 0", name="ck_shipment_line_quantity_positive"),
    )

    def __repr__(self) -> str:
        """String representation of shipment line."""
        return (
            f"ShipmentLine(shipment_id={self.shipment_id}, "
            f"finished_lot_id={self.finished_lot_id}, quantity={self.quantity})"
        )

    def to_dict(self, include_relationships: bool = False) -> dict:
        result = super().to_dict(include_relationships)
        if self.finished_lot is not None:
            result["finished_lot_code"] = self.finished_lot.code
        return result
