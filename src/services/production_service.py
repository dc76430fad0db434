"""
Production Service - production orders and production completion.

This module provides functions for:
- Creating and reading production orders
- Production order status management
- Checking whether a line can be completed (dry run)
- Completing a production line: FEFO ingredient deduction, finished lot
  creation with its consumption ledger, and order status roll-up

complete_production_line() is one transactional unit. Ingredient rows are
locked in ID order, the pre-flight compares every recipe requirement
against the cached ingredient totals, and only then are lots deducted.
Any error rolls back every step.
"""

import logging
from contextlib import nullcontext
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import joinedload

from src.models import (
    FinishedLot,
    FinishedLotStatus,
    LotConsumption,
    Product,
    ProductionLineStatus,
    ProductionOrder,
    ProductionOrderLine,
    ProductionOrderStatus,
)
from src.services import batch_ledger_service
from src.services.database import session_scope
from src.services.exceptions import (
    DuplicateCode,
    InvalidStatusTransition,
    LineAlreadyCompleted,
    NoRecipeDefined,
    ProductNotFound,
    ProductionLineNotFound,
    ProductionOrderNotFound,
    ServiceError,
    ValidationError,
)
from src.services.fefo_allocation import (
    Requirement,
    allocate_fefo,
    ensure_available,
    find_shortages,
)
from src.services.logging_utils import get_service_logger, log_operation
from src.utils.constants import FINISHED_LOT_CODE_PREFIX
from src.utils.datetime_utils import utc_now, utc_today

logger = get_service_logger(__name__)

OPEN_STATUSES = [ProductionOrderStatus.PLANNED.value, ProductionOrderStatus.IN_PROGRESS.value]


# =============================================================================
# Helpers
# =============================================================================


def _validate_actual_quantity(actual_quantity) -> None:
    if isinstance(actual_quantity, bool) or not isinstance(actual_quantity, int):
        raise ValidationError([f"Actual quantity must be a whole number, got {actual_quantity!r}"])
    if actual_quantity <= 0:
        raise ValidationError(["Actual quantity must be greater than zero"])


def _get_order(session, production_order_id: int, lock: bool = False) -> ProductionOrder:
    query = session.query(ProductionOrder).filter(ProductionOrder.id == production_order_id)
    if lock:
        # Row lock only; lines load lazily
        query = query.with_for_update().populate_existing()
    else:
        query = query.options(joinedload(ProductionOrder.lines))
    order = query.first()
    if order is None:
        raise ProductionOrderNotFound(production_order_id)
    return order


def _get_product(session, product_id: int, lock: bool = False) -> Product:
    query = session.query(Product).filter(Product.id == product_id)
    if lock:
        query = query.with_for_update().populate_existing()
    else:
        query = query.options(joinedload(Product.recipe_items))
    product = query.first()
    if product is None:
        raise ProductNotFound(product_id)
    return product


def _get_open_line(order: ProductionOrder, product_id: int) -> ProductionOrderLine:
    """Validate the order accepts completions and return its pending line."""
    if order.is_closed:
        raise InvalidStatusTransition("Production order", order.code, order.status, OPEN_STATUSES)
    line = order.line_for_product(product_id)
    if line is None:
        raise ProductionLineNotFound(order.id, product_id)
    if line.is_completed:
        raise LineAlreadyCompleted(order.code, line.product.sku)
    return line


def _build_requirements(product: Product, actual_quantity: int, ingredients) -> List[Requirement]:
    """
    One requirement per recipe ingredient: actual_quantity x quantity_per_unit.

    Args:
        product: Product with recipe_items loaded
        actual_quantity: Units to produce
        ingredients: Mapping of ingredient ID to (locked) Ingredient
    """
    requirements = []
    for item in product.recipe_items:
        ingredient = ingredients[item.ingredient_id]
        requirements.append(
            Requirement(
                item_id=ingredient.id,
                item_name=ingredient.name,
                required=batch_ledger_service.to_quantity(
                    Decimal(str(item.quantity_per_unit)) * actual_quantity
                ),
                available=batch_ledger_service.to_quantity(ingredient.total_quantity or 0),
                unit=ingredient.unit,
            )
        )
    return requirements


def generate_finished_lot_code(session, product: Product, produced_at: datetime) -> str:
    """
    Build a unique finished lot code: BATCH-YYYYMMDD-SKU.

    A numeric suffix (-1, -2, ...) is appended when the code is taken.
    """
    base = f"{FINISHED_LOT_CODE_PREFIX}-{produced_at:%Y%m%d}-{product.sku}"
    taken = {
        code
        for (code,) in session.query(FinishedLot.code)
        .filter(FinishedLot.code.like(f"{base}%"))
        .all()
    }
    if base not in taken:
        return base
    suffix = 1
    while f"{base}-{suffix}" in taken:
        suffix += 1
    return f"{base}-{suffix}"


# =============================================================================
# Production Orders
# =============================================================================


def create_production_order(
    code: str,
    lines: List[Dict[str, Any]],
    *,
    plan_date: Optional[date] = None,
    note: Optional[str] = None,
    session=None,
) -> Dict[str, Any]:
    """
    Create a production order in the planned state.

    Args:
        code: Unique plan code
        lines: List of {"product_id": int, "planned_quantity": int}; one
            line per product
        plan_date: Planned production day (defaults to today)
        note: Optional note
        session: Optional database session

    Returns:
        Dict of the created order with its lines

    Raises:
        ValidationError: If code or lines are invalid
        DuplicateCode: If the code is already used
        ProductNotFound: If a line references an unknown product
    """
    errors = []
    code = (code or "").strip()
    if not code:
        errors.append("Production order code is required")
    if not lines:
        errors.append("At least one line is required")
    seen = set()
    for index, line in enumerate(lines or [], start=1):
        product_id = line.get("product_id")
        planned = line.get("planned_quantity")
        if product_id is None:
            errors.append(f"Line {index}: product_id is required")
        elif product_id in seen:
            errors.append(f"Line {index}: product {product_id} appears more than once")
        seen.add(product_id)
        if isinstance(planned, bool) or not isinstance(planned, int) or planned <= 0:
            errors.append(f"Line {index}: planned_quantity must be a positive whole number")
    if errors:
        raise ValidationError(errors)

    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        if session.query(ProductionOrder.id).filter(ProductionOrder.code == code).first():
            raise DuplicateCode("Production order", code)

        order = ProductionOrder(
            code=code,
            plan_date=plan_date or utc_today(),
            note=note,
            status=ProductionOrderStatus.PLANNED.value,
        )
        for line in lines:
            product = session.get(Product, line["product_id"])
            if product is None:
                raise ProductNotFound(line["product_id"])
            order.lines.append(
                ProductionOrderLine(
                    product=product,
                    planned_quantity=line["planned_quantity"],
                    status=ProductionLineStatus.PENDING.value,
                )
            )
        session.add(order)
        session.flush()

        log_operation(
            logger,
            operation="create_production_order",
            outcome="success",
            production_order_id=order.id,
            production_order_code=order.code,
            line_count=len(order.lines),
        )
        return order.to_dict()


def get_production_order(production_order_id: int, *, session=None) -> Dict[str, Any]:
    """
    Get a production order with its lines.

    Raises:
        ProductionOrderNotFound: If the order does not exist
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        return _get_order(session, production_order_id).to_dict()


def update_production_order_status(
    production_order_id: int, status: str, *, session=None
) -> Dict[str, Any]:
    """
    Move a production order to a new status.

    Completed and cancelled orders are final. An order can only be marked
    completed once every line is completed, and can only return to planned
    while no line is completed.

    Raises:
        ValidationError: If the status is unknown or the lines do not allow it
        InvalidStatusTransition: If the order is already completed or cancelled
        ProductionOrderNotFound: If the order does not exist
    """
    valid = [s.value for s in ProductionOrderStatus]
    if status not in valid:
        raise ValidationError([f"Unknown production order status '{status}'"])

    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        order = _get_order(session, production_order_id, lock=True)
        if order.is_closed:
            raise InvalidStatusTransition(
                "Production order", order.code, order.status, OPEN_STATUSES
            )

        pending = [line for line in order.lines if not line.is_completed]
        if status == ProductionOrderStatus.COMPLETED.value and pending:
            raise ValidationError(
                [f"Cannot complete production order {order.code}: {len(pending)} line(s) pending"]
            )
        if status == ProductionOrderStatus.PLANNED.value and len(pending) < len(order.lines):
            raise ValidationError(
                [f"Production order {order.code} has completed lines and cannot return to planned"]
            )

        previous = order.status
        order.status = status
        session.flush()

        log_operation(
            logger,
            operation="update_production_order_status",
            outcome="success",
            production_order_id=order.id,
            previous_status=previous,
            new_status=status,
        )
        return order.to_dict()


# =============================================================================
# Production Completion
# =============================================================================


def check_can_complete(
    production_order_id: int,
    product_id: int,
    actual_quantity: int,
    *,
    session=None,
) -> Dict[str, Any]:
    """
    Check whether a production line could be completed now.

    Runs the same validation and pre-flight as complete_production_line()
    without mutating anything.

    Returns:
        Dict with keys:
            - "can_produce" (bool): True if every ingredient is covered
            - "missing" (List[Dict]): One entry per short ingredient with
              item_id, item_name, required, available, shortfall and unit

    Raises:
        Same validation errors as complete_production_line()
    """
    _validate_actual_quantity(actual_quantity)

    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        order = _get_order(session, production_order_id)
        _get_open_line(order, product_id)
        product = _get_product(session, product_id)
        if not product.recipe_items:
            raise NoRecipeDefined(product.sku)

        ingredients = {item.ingredient_id: item.ingredient for item in product.recipe_items}
        missing = find_shortages(_build_requirements(product, actual_quantity, ingredients))

        if missing:
            log_operation(
                logger,
                operation="check_can_complete",
                outcome="insufficient_stock",
                level=logging.DEBUG,
                production_order_id=production_order_id,
                product_id=product_id,
                missing_ingredients=[m["item_name"] for m in missing],
            )
        return {"can_produce": not missing, "missing": missing}


def complete_production_line(
    production_order_id: int,
    product_id: int,
    actual_quantity: int,
    completed_by: Optional[str] = None,
    *,
    session=None,
) -> Dict[str, Any]:
    """
    Complete one line of a production order.

    This function atomically:
    1. Validates the order is open and the product's line is pending
    2. Loads the product recipe (empty recipe is rejected)
    3. Locks the recipe ingredients and checks every cached total covers
       actual_quantity x quantity_per_unit (pre-flight, no writes)
    4. Deducts each ingredient FEFO from freshly queried lots, recording
       every (lot, quantity) taken, and lowers the cached total
    5. Creates the FinishedLot with its consumption ledger
    6. Marks the line completed and rolls up the order status

    Args:
        production_order_id: Production order ID
        product_id: Product whose line is completed
        actual_quantity: Units actually produced (positive whole number)
        completed_by: Identity of the acting user
        session: Optional database session; when given the caller owns the
            transaction

    Returns:
        Dict with keys:
            - "order": production order dict with lines
            - "finished_lot": finished lot dict
            - "consumption_ledger": list of consumption entry dicts

    Raises:
        ValidationError: If actual_quantity is not a positive whole number
        ProductionOrderNotFound / ProductNotFound / ProductionLineNotFound
        InvalidStatusTransition: If the order is completed or cancelled
        LineAlreadyCompleted: If the line was already completed
        NoRecipeDefined: If the product has no recipe
        InsufficientStock: If any ingredient total cannot cover the recipe
        ConcurrentStockExhaustion: If lots ran out during deduction
        DataConsistencyError: If a cached total would go negative
    """
    _validate_actual_quantity(actual_quantity)

    try:
        cm = nullcontext(session) if session is not None else session_scope()
        with cm as session:
            order = _get_order(session, production_order_id, lock=True)
            line = _get_open_line(order, product_id)
            product = _get_product(session, product_id, lock=True)
            if not product.recipe_items:
                raise NoRecipeDefined(product.sku)

            ingredients = batch_ledger_service.lock_ingredients(
                [item.ingredient_id for item in product.recipe_items], session
            )
            requirements = _build_requirements(product, actual_quantity, ingredients)

            # Pass 1: pre-flight against cached totals; nothing written yet
            ensure_available(requirements)

            # Pass 2: FEFO deduction per ingredient
            ledger_entries = []
            for req in requirements:
                candidates = batch_ledger_service.list_ingredient_fefo_candidates(
                    req.item_id, exclude_expired=False, lock=True, session=session
                )
                allocations = allocate_fefo(
                    candidates,
                    req.required,
                    req.item_name,
                    quantity_of=lambda lot: lot.current_quantity,
                    take=batch_ledger_service.decrement_lot,
                )
                batch_ledger_service.adjust_ingredient_total(
                    ingredients[req.item_id], -req.required
                )
                for allocation in allocations:
                    ledger_entries.append(
                        LotConsumption(
                            ingredient_lot=allocation.lot,
                            ingredient_id=req.item_id,
                            quantity_used=allocation.quantity,
                        )
                    )

            produced_at = utc_now()
            finished_lot = FinishedLot(
                code=generate_finished_lot_code(session, product, produced_at),
                production_order_id=order.id,
                product_id=product.id,
                manufactured_at=produced_at,
                expires_at=produced_at + timedelta(days=product.shelf_life_days),
                initial_quantity=actual_quantity,
                current_quantity=actual_quantity,
                status=FinishedLotStatus.ACTIVE.value,
            )
            finished_lot.consumptions.extend(ledger_entries)
            session.add(finished_lot)

            line.actual_quantity = actual_quantity
            line.status = ProductionLineStatus.COMPLETED.value
            line.completed_at = produced_at
            line.completed_by = completed_by
            order.recompute_status()

            session.flush()

            log_operation(
                logger,
                operation="complete_production_line",
                outcome="success",
                production_order_id=order.id,
                product_id=product.id,
                finished_lot_code=finished_lot.code,
                actual_quantity=actual_quantity,
                consumption_count=len(ledger_entries),
                order_status=order.status,
            )
            return {
                "order": order.to_dict(),
                "finished_lot": finished_lot.to_dict(),
                "consumption_ledger": [entry.to_dict() for entry in finished_lot.consumptions],
            }
    except ServiceError as exc:
        log_operation(
            logger,
            operation="complete_production_line",
            outcome="rejected",
            level=logging.WARNING,
            production_order_id=production_order_id,
            product_id=product_id,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        raise
