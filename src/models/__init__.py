"""
Database models package.

This package contains all SQLAlchemy ORM models for the application.
"""

from .base import Base, BaseModel
from .enums import (
    FinishedLotStatus,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    ProductionLineStatus,
    ProductionOrderStatus,
    ShipmentStatus,
    StoreStatus,
)
from .supplier import Supplier
from .ingredient import Ingredient
from .ingredient_lot import IngredientLot
from .product import Product, RecipeItem
from .production_order import ProductionOrder, ProductionOrderLine
from .finished_lot import FinishedLot, LotConsumption
from .store import Store, StoreInventoryRecord
from .order import Order, OrderLine
from .shipment import Shipment, ShipmentLine
from .invoice import Invoice
from .system_setting import SystemSetting

__all__ = [
    "Base",
    "BaseModel",
    # Lifecycle enums
    "FinishedLotStatus",
    "OrderStatus",
    "PaymentMethod",
    "PaymentStatus",
    "ProductionLineStatus",
    "ProductionOrderStatus",
    "ShipmentStatus",
    "StoreStatus",
    # Master data
    "Supplier",
    "Ingredient",
    "Product",
    "RecipeItem",
    "Store",
    "SystemSetting",
    # Batch ledger
    "IngredientLot",
    "FinishedLot",
    "LotConsumption",
    # Production
    "ProductionOrder",
    "ProductionOrderLine",
    # Fulfillment
    "Order",
    "OrderLine",
    "Shipment",
    "ShipmentLine",
    "Invoice",
    "StoreInventoryRecord",
]
