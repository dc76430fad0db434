"""
Batch Ledger Service - perishable lots, FEFO queries and the aggregate cache.

This module provides functions for:
- Receiving ingredient lots (stock receipt)
- FEFO-ordered candidate queries for ingredient lots and finished lots
- The atomic lot decrement primitive
- The only sanctioned mutation of Ingredient.total_quantity
- Expiry, low-stock and aggregate audit queries

Lots are never deleted. A lot whose current quantity reaches zero is marked
depleted in the same mutation (ingredient lots are deactivated, finished
lots become sold out).

All functions are stateless. Functions that take ``session`` run inside the
caller's transaction when one is given and open their own session_scope()
otherwise.
"""

import logging
from contextlib import nullcontext
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import func
from sqlalchemy.orm import joinedload

from src.models import (
    FinishedLot,
    FinishedLotStatus,
    Ingredient,
    IngredientLot,
    Supplier,
)
from src.services.database import session_scope
from src.services.exceptions import (
    DataConsistencyError,
    DuplicateCode,
    FinishedLotNotFound,
    IngredientNotFound,
    InsufficientLotQuantity,
    SupplierNotFound,
    ValidationError,
)
from src.services.logging_utils import get_service_logger, log_operation
from src.utils.constants import DEFAULT_EXPIRING_WITHIN_DAYS, QUANTITY_PLACES
from src.utils.datetime_utils import as_utc, utc_now, utc_today

logger = get_service_logger(__name__)


def to_quantity(value) -> Decimal:
    """Coerce a number to an ingredient quantity with 3 decimal places."""
    return Decimal(str(value)).quantize(QUANTITY_PLACES)


# =============================================================================
# Lookups
# =============================================================================


def get_ingredient(ingredient_id: int, session, lock: bool = False) -> Ingredient:
    """
    Load an ingredient, optionally locking its row for update.

    Raises:
        IngredientNotFound: If the ingredient does not exist
    """
    query = session.query(Ingredient).filter(Ingredient.id == ingredient_id)
    if lock:
        query = query.with_for_update().populate_existing()
    ingredient = query.first()
    if ingredient is None:
        raise IngredientNotFound(ingredient_id)
    return ingredient


def lock_ingredients(ingredient_ids, session) -> Dict[int, Ingredient]:
    """
    Lock a set of ingredient rows in ascending ID order.

    A fixed lock order keeps two workflows that touch overlapping
    ingredients from deadlocking each other.

    Returns:
        Mapping of ingredient ID to locked Ingredient
    """
    ids = sorted(set(ingredient_ids))
    if not ids:
        return {}
    rows = (
        session.query(Ingredient)
        .filter(Ingredient.id.in_(ids))
        .order_by(Ingredient.id)
        .with_for_update()
        .populate_existing()
        .all()
    )
    found = {row.id: row for row in rows}
    for ingredient_id in ids:
        if ingredient_id not in found:
            raise IngredientNotFound(ingredient_id)
    return found


# =============================================================================
# FEFO Candidate Queries
# =============================================================================


def list_ingredient_fefo_candidates(
    ingredient_id: int,
    *,
    exclude_expired: bool = True,
    lock: bool = False,
    today: Optional[date] = None,
    session=None,
) -> List[IngredientLot]:
    """
    Active ingredient lots with stock, soonest expiry first.

    Always issues a fresh query; candidates are never cached between calls.
    Lots sharing an expiry date keep arrival (ID) order.

    Args:
        ingredient_id: Ingredient whose lots to list
        exclude_expired: Skip lots whose expiry date has passed
        lock: Read the lots FOR UPDATE
        today: Reference date for the expiry filter (defaults to UTC today)
        session: Optional database session

    Returns:
        List of IngredientLot in consumption order
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        query = session.query(IngredientLot).filter(
            IngredientLot.ingredient_id == ingredient_id,
            IngredientLot.is_active.is_(True),
            IngredientLot.current_quantity > 0,
        )
        if exclude_expired:
            query = query.filter(IngredientLot.expiry_date >= (today or utc_today()))
        query = query.order_by(IngredientLot.expiry_date.asc(), IngredientLot.id.asc())
        if lock:
            query = query.with_for_update().populate_existing()
        return query.all()


def list_finished_lot_fefo_candidates(
    product_id: int,
    *,
    exclude_expired: bool = True,
    lock: bool = False,
    now: Optional[datetime] = None,
    session=None,
) -> List[FinishedLot]:
    """
    Active finished lots with stock for a product, soonest expiry first.

    Args:
        product_id: Product whose lots to list
        exclude_expired: Skip lots whose expires_at is not after now
        lock: Read the lots FOR UPDATE
        now: Reference time for the expiry filter (defaults to UTC now)
        session: Optional database session

    Returns:
        List of FinishedLot in consumption order
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        query = session.query(FinishedLot).filter(
            FinishedLot.product_id == product_id,
            FinishedLot.status == FinishedLotStatus.ACTIVE.value,
            FinishedLot.current_quantity > 0,
        )
        if exclude_expired:
            query = query.filter(FinishedLot.expires_at > as_utc(now or utc_now()))
        query = query.order_by(FinishedLot.expires_at.asc(), FinishedLot.id.asc())
        if lock:
            query = query.with_for_update().populate_existing()
        return query.all()


# =============================================================================
# Mutation Primitives
# =============================================================================


def _lot_code(lot: Union[IngredientLot, FinishedLot]) -> str:
    if isinstance(lot, IngredientLot):
        return lot.lot_code
    return lot.code


def decrement_lot(lot: Union[IngredientLot, FinishedLot], amount) -> Union[int, Decimal]:
    """
    Take ``amount`` out of a single lot.

    Sets the lot's depleted state in the same mutation when its current
    quantity reaches zero. The caller's session holds the lot; nothing is
    flushed here.

    Args:
        lot: IngredientLot (Decimal quantities) or FinishedLot (integer units)
        amount: Quantity to remove, must be positive

    Returns:
        The lot's new current quantity

    Raises:
        ValidationError: If amount is not positive
        InsufficientLotQuantity: If amount exceeds the lot's current quantity
    """
    if amount <= 0:
        raise ValidationError([f"Decrement amount must be positive, got {amount}"])

    current = lot.current_quantity
    if amount > current:
        raise InsufficientLotQuantity(_lot_code(lot), amount, current)

    lot.current_quantity = current - amount
    if lot.current_quantity == 0:
        lot.mark_depleted()
        logger.debug(f"Lot {_lot_code(lot)} depleted")
    return lot.current_quantity


def adjust_ingredient_total(ingredient: Ingredient, delta) -> Decimal:
    """
    Apply a signed change to an ingredient's cached total.

    This is the only code path that writes Ingredient.total_quantity. It must
    run in the same transaction as the lot mutation it mirrors.

    Args:
        ingredient: Ingredient held by the caller's session
        delta: Signed quantity change

    Returns:
        The new cached total

    Raises:
        DataConsistencyError: If the total would become negative
    """
    current = Decimal(str(ingredient.total_quantity or 0))
    new_total = to_quantity(current + Decimal(str(delta)))
    if new_total < 0:
        log_operation(
            logger,
            operation="adjust_ingredient_total",
            outcome="negative_aggregate",
            level=logging.CRITICAL,
            ingredient_id=ingredient.id,
            ingredient_name=ingredient.name,
            cached_total=str(current),
            delta=str(delta),
        )
        raise DataConsistencyError(
            f"total for ingredient '{ingredient.name}' would become {new_total}",
            ingredient_id=ingredient.id,
            cached_total=current,
            delta=delta,
        )
    ingredient.total_quantity = new_total
    return new_total


# =============================================================================
# Stock Receipt
# =============================================================================


def receive_ingredient_lot(
    ingredient_id: int,
    supplier_id: int,
    lot_code: str,
    quantity,
    expiry_date: date,
    *,
    unit_cost=None,
    received_date: Optional[date] = None,
    session=None,
) -> Dict[str, Any]:
    """
    Record a delivery of an ingredient as a new lot.

    The lot is created and the ingredient's cached total is incremented in
    the same transaction.

    Args:
        ingredient_id: Ingredient received
        supplier_id: Supplier that delivered it
        lot_code: Supplier or internal lot code (stored uppercase, unique)
        quantity: Quantity received, in the ingredient's unit
        expiry_date: Expiry date, must be after today
        unit_cost: Optional purchase cost per unit (defaults to the
            ingredient's reference cost)
        received_date: Optional receipt date (defaults to today)
        session: Optional database session

    Returns:
        Dict of the created lot

    Raises:
        ValidationError: If quantity, code or expiry date are invalid
        IngredientNotFound: If the ingredient does not exist
        SupplierNotFound: If the supplier does not exist
        DuplicateCode: If the lot code is already used
    """
    errors = []
    code = (lot_code or "").strip().upper()
    if not code:
        errors.append("Lot code is required")
    try:
        qty = to_quantity(quantity)
    except (ArithmeticError, ValueError, TypeError):
        qty = None
        errors.append(f"Invalid quantity: {quantity}")
    if qty is not None and qty <= 0:
        errors.append("Quantity must be greater than zero")
    today = utc_today()
    if expiry_date is None or expiry_date <= today:
        errors.append("Expiry date must be in the future")
    if errors:
        raise ValidationError(errors)

    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        ingredient = get_ingredient(ingredient_id, session, lock=True)
        supplier = session.get(Supplier, supplier_id)
        if supplier is None:
            raise SupplierNotFound(supplier_id)

        existing = session.query(IngredientLot.id).filter(IngredientLot.lot_code == code).first()
        if existing is not None:
            raise DuplicateCode("Ingredient lot", code)

        lot = IngredientLot(
            ingredient_id=ingredient.id,
            supplier_id=supplier.id,
            lot_code=code,
            expiry_date=expiry_date,
            received_date=received_date or today,
            initial_quantity=qty,
            current_quantity=qty,
            unit_cost=Decimal(str(unit_cost)) if unit_cost is not None else ingredient.unit_cost,
            is_active=True,
        )
        session.add(lot)
        adjust_ingredient_total(ingredient, qty)
        session.flush()

        log_operation(
            logger,
            operation="receive_ingredient_lot",
            outcome="success",
            ingredient_id=ingredient.id,
            lot_code=code,
            quantity=str(qty),
        )
        return lot.to_dict()


# =============================================================================
# Queries
# =============================================================================


def get_finished_lot(finished_lot_id: int, *, session=None) -> Dict[str, Any]:
    """
    Get a finished lot with its consumption ledger (traceability).

    Raises:
        FinishedLotNotFound: If the lot does not exist
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        lot = (
            session.query(FinishedLot)
            .options(joinedload(FinishedLot.consumptions))
            .filter(FinishedLot.id == finished_lot_id)
            .first()
        )
        if lot is None:
            raise FinishedLotNotFound(finished_lot_id)
        return lot.to_dict(include_relationships=True)


def get_expiring_ingredient_lots(
    days: int = DEFAULT_EXPIRING_WITHIN_DAYS, *, today: Optional[date] = None, session=None
) -> List[Dict[str, Any]]:
    """
    Active ingredient lots expiring within ``days`` days, soonest first.

    Lots already past expiry but still active are included and flagged
    with is_expired.
    """
    cutoff = (today or utc_today()) + timedelta(days=days)
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        lots = (
            session.query(IngredientLot)
            .options(joinedload(IngredientLot.ingredient))
            .filter(
                IngredientLot.is_active.is_(True),
                IngredientLot.current_quantity > 0,
                IngredientLot.expiry_date <= cutoff,
            )
            .order_by(IngredientLot.expiry_date.asc(), IngredientLot.id.asc())
            .all()
        )
        return [lot.to_dict() for lot in lots]


def get_expiring_finished_lots(
    days: int = DEFAULT_EXPIRING_WITHIN_DAYS, *, now: Optional[datetime] = None, session=None
) -> List[Dict[str, Any]]:
    """Active finished lots with stock whose expiry falls within ``days`` days."""
    cutoff = as_utc(now or utc_now()) + timedelta(days=days)
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        lots = (
            session.query(FinishedLot)
            .options(joinedload(FinishedLot.product))
            .filter(
                FinishedLot.status == FinishedLotStatus.ACTIVE.value,
                FinishedLot.current_quantity > 0,
                FinishedLot.expires_at <= cutoff,
            )
            .order_by(FinishedLot.expires_at.asc(), FinishedLot.id.asc())
            .all()
        )
        return [lot.to_dict() for lot in lots]


def get_low_stock_ingredients(*, session=None) -> List[Dict[str, Any]]:
    """Ingredients whose cached total is below their warning threshold."""
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        ingredients = (
            session.query(Ingredient)
            .filter(Ingredient.total_quantity < Ingredient.warning_threshold)
            .order_by(Ingredient.name)
            .all()
        )
        return [ingredient.to_dict() for ingredient in ingredients]


def verify_ingredient_totals(*, session=None) -> List[Dict[str, Any]]:
    """
    Compare every cached ingredient total against its active lots.

    Returns:
        One dict per mismatching ingredient with ingredient_id,
        ingredient_name, cached_total, lot_total and difference; an empty
        list when every aggregate is consistent
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        lot_totals = dict(
            session.query(
                IngredientLot.ingredient_id,
                func.coalesce(func.sum(IngredientLot.current_quantity), 0),
            )
            .filter(IngredientLot.is_active.is_(True))
            .group_by(IngredientLot.ingredient_id)
            .all()
        )

        mismatches = []
        for ingredient in session.query(Ingredient).order_by(Ingredient.id).all():
            cached = to_quantity(ingredient.total_quantity or 0)
            actual = to_quantity(lot_totals.get(ingredient.id, 0))
            if cached != actual:
                mismatches.append(
                    {
                        "ingredient_id": ingredient.id,
                        "ingredient_name": ingredient.name,
                        "cached_total": cached,
                        "lot_total": actual,
                        "difference": cached - actual,
                    }
                )

        if mismatches:
            log_operation(
                logger,
                operation="verify_ingredient_totals",
                outcome="mismatch",
                level=logging.CRITICAL,
                ingredient_ids=[m["ingredient_id"] for m in mismatches],
            )
        else:
            log_operation(logger, operation="verify_ingredient_totals", outcome="consistent")
        return mismatches


def mark_expired_finished_lots(
    now: Optional[datetime] = None, *, session=None
) -> Dict[str, Any]:
    """
    Move active finished lots past their expiry to the expired status.

    Returns:
        Dict with "count" and the affected lot "codes"
    """
    reference = as_utc(now or utc_now())
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        lots = (
            session.query(FinishedLot)
            .filter(
                FinishedLot.status == FinishedLotStatus.ACTIVE.value,
                FinishedLot.expires_at <= reference,
            )
            .order_by(FinishedLot.id)
            .with_for_update()
            .all()
        )
        for lot in lots:
            lot.status = FinishedLotStatus.EXPIRED.value

        codes = [lot.code for lot in lots]
        log_operation(
            logger,
            operation="mark_expired_finished_lots",
            outcome="success",
            count=len(codes),
        )
        return {"count": len(codes), "codes": codes}
