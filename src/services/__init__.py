"""Services package - Business logic layer for the Central Kitchen Ledger.

This package contains all service modules that provide business logic
and database operations for the application.

Architecture:
- Services: Stateless functions organized by workflow
- Transactions: Managed via session_scope() context manager; every function
  accepts an optional session so workflows compose into one transaction
- Exceptions: Consistent error handling via the ServiceError hierarchy
- Validation: Input validation before database operations

Service Modules:
- batch_ledger_service: Ingredient and finished lots, FEFO queries, aggregate cache
- production_service: Production orders and production completion
- order_fulfillment_service: Store orders, shipment approval, invoicing
- reconciliation_service: Shipment receipt into store inventory
- invoice_service: Invoice payments and overdue tracking
- system_setting_service: Key/value business settings

Infrastructure:
- exceptions: Custom exception classes for service layer errors
- database: Session management and database utilities
- fefo_allocation: Shared two-pass FEFO allocation
- logging_utils: Structured operation logging
"""

from . import (
    database,
    batch_ledger_service,
    production_service,
    order_fulfillment_service,
    reconciliation_service,
    invoice_service,
    system_setting_service,
)

from .exceptions import (
    ServiceError,
    ValidationError,
    IngredientNotFound,
    SupplierNotFound,
    ProductNotFound,
    StoreNotFound,
    ProductionOrderNotFound,
    ProductionLineNotFound,
    OrderNotFound,
    ShipmentNotFound,
    FinishedLotNotFound,
    InvoiceNotFound,
    InvalidStatusTransition,
    LineAlreadyCompleted,
    NoRecipeDefined,
    DuplicateCode,
    InsufficientStock,
    InsufficientLotQuantity,
    ConcurrentStockExhaustion,
    DataConsistencyError,
)

from .production_service import complete_production_line, check_can_complete
from .order_fulfillment_service import approve_and_ship
from .reconciliation_service import receive_shipment

__all__ = [
    # Modules
    "database",
    "batch_ledger_service",
    "production_service",
    "order_fulfillment_service",
    "reconciliation_service",
    "invoice_service",
    "system_setting_service",
    # Workflows
    "complete_production_line",
    "check_can_complete",
    "approve_and_ship",
    "receive_shipment",
    # Exceptions
    "ServiceError",
    "ValidationError",
    "IngredientNotFound",
    "SupplierNotFound",
    "ProductNotFound",
    "StoreNotFound",
    "ProductionOrderNotFound",
    "ProductionLineNotFound",
    "OrderNotFound",
    "ShipmentNotFound",
    "FinishedLotNotFound",
    "InvoiceNotFound",
    "InvalidStatusTransition",
    "LineAlreadyCompleted",
    "NoRecipeDefined",
    "DuplicateCode",
    "InsufficientStock",
    "InsufficientLotQuantity",
    "ConcurrentStockExhaustion",
    "DataConsistencyError",
]
