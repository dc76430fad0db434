"""Service layer exception classes for the Central Kitchen Ledger.

This module defines all custom exceptions used by the service layer to provide
consistent error handling across the application.

Exception Hierarchy:
    ServiceError (base - business rule violations, safe to report to callers)
    ├── ValidationError
    ├── IngredientNotFound, SupplierNotFound, ProductNotFound, StoreNotFound
    ├── ProductionOrderNotFound, ProductionLineNotFound
    ├── OrderNotFound, ShipmentNotFound, FinishedLotNotFound, InvoiceNotFound
    ├── InvalidStatusTransition
    ├── LineAlreadyCompleted
    ├── NoRecipeDefined
    ├── DuplicateCode
    ├── InsufficientStock
    ├── InsufficientLotQuantity
    └── ConcurrentStockExhaustion

    DataConsistencyError (fatal - a cached aggregate disagrees with its lots)
"""

from typing import Iterable


class ServiceError(Exception):
    """Base exception for all service layer errors.

    All service-specific exceptions should inherit from this class.
    """

    pass


class ValidationError(ServiceError):
    """Raised when data validation fails."""

    def __init__(self, errors: list):
        self.errors = errors
        error_msg = "; ".join(errors)
        super().__init__(f"Validation failed: {error_msg}")


# Not-found errors


class IngredientNotFound(ServiceError):
    """Raised when an ingredient cannot be found by ID."""

    def __init__(self, ingredient_id: int):
        self.ingredient_id = ingredient_id
        super().__init__(f"Ingredient with ID {ingredient_id} not found")


class SupplierNotFound(ServiceError):
    """Raised when a supplier cannot be found by ID."""

    def __init__(self, supplier_id: int):
        self.supplier_id = supplier_id
        super().__init__(f"Supplier with ID {supplier_id} not found")


class ProductNotFound(ServiceError):
    """Raised when a product cannot be found by ID.

    Example:
        >>> raise ProductNotFound(123)
        ProductNotFound: Product with ID 123 not found
    """

    def __init__(self, product_id: int):
        self.product_id = product_id
        super().__init__(f"Product with ID {product_id} not found")


class StoreNotFound(ServiceError):
    """Raised when a store cannot be found by ID."""

    def __init__(self, store_id: int):
        self.store_id = store_id
        super().__init__(f"Store with ID {store_id} not found")


class ProductionOrderNotFound(ServiceError):
    """Raised when a production order cannot be found by ID."""

    def __init__(self, production_order_id: int):
        self.production_order_id = production_order_id
        super().__init__(f"Production order with ID {production_order_id} not found")


class ProductionLineNotFound(ServiceError):
    """Raised when a production order has no line for the requested product."""

    def __init__(self, production_order_id: int, product_id: int):
        self.production_order_id = production_order_id
        self.product_id = product_id
        super().__init__(
            f"Production order {production_order_id} has no line for product {product_id}"
        )


class OrderNotFound(ServiceError):
    """Raised when an order cannot be found by ID."""

    def __init__(self, order_id: int):
        self.order_id = order_id
        super().__init__(f"Order with ID {order_id} not found")


class ShipmentNotFound(ServiceError):
    """Raised when a shipment cannot be found."""

    def __init__(self, identifier):
        self.identifier = identifier
        super().__init__(f"Shipment '{identifier}' not found")


class FinishedLotNotFound(ServiceError):
    """Raised when a finished lot cannot be found by ID."""

    def __init__(self, finished_lot_id: int):
        self.finished_lot_id = finished_lot_id
        super().__init__(f"Finished lot with ID {finished_lot_id} not found")


class InvoiceNotFound(ServiceError):
    """Raised when an invoice cannot be found by ID."""

    def __init__(self, invoice_id: int):
        self.invoice_id = invoice_id
        super().__init__(f"Invoice with ID {invoice_id} not found")


# Lifecycle errors


class InvalidStatusTransition(ServiceError):
    """Raised when an entity is not in a state that allows the operation.

    Args:
        entity: Entity type (e.g. "Order")
        identifier: Entity code or ID
        current: Current status value
        allowed: Status values the operation accepts
    """

    def __init__(self, entity: str, identifier, current: str, allowed: Iterable[str]):
        self.entity = entity
        self.identifier = identifier
        self.current = current
        self.allowed = list(allowed)
        super().__init__(
            f"{entity} '{identifier}' is '{current}'; "
            f"operation requires one of: {', '.join(self.allowed)}"
        )


class LineAlreadyCompleted(ServiceError):
    """Raised when a production order line has already been completed."""

    def __init__(self, production_order_code: str, product_sku: str):
        self.production_order_code = production_order_code
        self.product_sku = product_sku
        super().__init__(
            f"Line for product '{product_sku}' on production order "
            f"'{production_order_code}' is already completed"
        )


class NoRecipeDefined(ServiceError):
    """Raised when producing a product that has no recipe lines."""

    def __init__(self, product_sku: str):
        self.product_sku = product_sku
        super().__init__(f"Product '{product_sku}' has no recipe defined")


class DuplicateCode(ServiceError):
    """Raised when a unique business code is already in use."""

    def __init__(self, entity: str, code: str):
        self.entity = entity
        self.code = code
        super().__init__(f"{entity} code '{code}' already exists")


# Stock errors


class InsufficientStock(ServiceError):
    """Raised by a pre-flight check when total stock cannot cover a requirement."""

    def __init__(self, item_name: str, required, available):
        self.item_name = item_name
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient stock for {item_name}: "
            f"required {required}, available {available}"
        )


class InsufficientLotQuantity(ServiceError):
    """Raised when a decrement exceeds what remains in a single lot."""

    def __init__(self, lot_code: str, requested, available):
        self.lot_code = lot_code
        self.requested = requested
        self.available = available
        super().__init__(
            f"Lot {lot_code} holds {available}; cannot take {requested}"
        )


class ConcurrentStockExhaustion(ServiceError):
    """Raised when lots run out mid-deduction after the pre-flight passed.

    Another transaction consumed the stock in between. Nothing is applied;
    the caller may retry the whole operation.
    """

    def __init__(self, item_name: str, required, remaining):
        self.item_name = item_name
        self.required = required
        self.remaining = remaining
        super().__init__(
            f"Stock for {item_name} was exhausted during allocation: "
            f"required {required}, {remaining} could not be allocated"
        )


class DataConsistencyError(Exception):
    """Raised when a cached aggregate would contradict its underlying lots.

    This is a fault in the system, not a business rejection, so it does not
    derive from ServiceError.
    """

    def __init__(self, message: str, **context):
        self.context = context
        super().__init__(f"Data inconsistency: {message}")
