"""
Order Fulfillment Service - store orders, shipment approval and invoicing.

This module provides functions for:
- Creating, reading, listing and rejecting store orders
- Reading and listing shipments with their export lines
- Aggregating pending demand per product
- Approving an order for shipment: FEFO allocation of finished lots,
  shipment with export lines, re-resolution of the order lines against
  the lots actually allocated, and invoice creation

approve_and_ship() is one transactional unit. Product rows and candidate
finished lots are locked, every product's demand is checked against its
non-expired lots before any lot is touched, and any failure rolls back
the shipment, order and invoice together.
"""

import logging
from collections import OrderedDict
from contextlib import nullcontext
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import joinedload

from src.models import (
    FinishedLot,
    Invoice,
    Order,
    OrderLine,
    OrderStatus,
    PaymentStatus,
    Product,
    Shipment,
    ShipmentLine,
    ShipmentStatus,
    Store,
)
from src.services import batch_ledger_service, system_setting_service
from src.services.database import session_scope
from src.services.exceptions import (
    DuplicateCode,
    FinishedLotNotFound,
    InvalidStatusTransition,
    OrderNotFound,
    ProductNotFound,
    ServiceError,
    ShipmentNotFound,
    StoreNotFound,
    ValidationError,
)
from src.services.fefo_allocation import Requirement, allocate_fefo, ensure_available
from src.services.logging_utils import get_service_logger, log_operation
from src.utils.constants import (
    INVOICE_NUMBER_PREFIX,
    MONEY_PLACES,
    ORDER_CODE_PREFIX,
    PAYMENT_TERMS_DAYS,
    SETTING_SHIPPING_COST,
    SETTING_TAX_RATE,
)
from src.utils.datetime_utils import as_utc, utc_now, utc_today

logger = get_service_logger(__name__)


def _money(value) -> Decimal:
    return Decimal(str(value)).quantize(MONEY_PLACES, rounding=ROUND_HALF_UP)


def _get_order(session, order_id: int, lock: bool = False) -> Order:
    query = session.query(Order).filter(Order.id == order_id)
    if lock:
        query = query.with_for_update().populate_existing()
    else:
        query = query.options(joinedload(Order.lines))
    order = query.first()
    if order is None:
        raise OrderNotFound(order_id)
    return order


def _require_pending(order: Order) -> None:
    if order.status != OrderStatus.PENDING.value:
        raise InvalidStatusTransition("Order", order.code, order.status, [OrderStatus.PENDING.value])


def generate_order_code(session, order_date: date) -> str:
    """Next order code for the day: ORD-YYYYMMDD-NNNN."""
    prefix = f"{ORDER_CODE_PREFIX}-{order_date:%Y%m%d}-"
    codes = [
        code for (code,) in session.query(Order.code).filter(Order.code.like(f"{prefix}%")).all()
    ]
    sequence = 0
    for code in codes:
        tail = code[len(prefix):]
        if tail.isdigit():
            sequence = max(sequence, int(tail))
    return f"{prefix}{sequence + 1:04d}"


# =============================================================================
# Orders
# =============================================================================


def create_order(
    store_id: int,
    requested_delivery_date: date,
    items: List[Dict[str, Any]],
    *,
    notes: Optional[str] = None,
    created_by: Optional[str] = None,
    session=None,
) -> Dict[str, Any]:
    """
    Place a pending order for a store.

    Unit prices are read from the products at order time.

    Args:
        store_id: Ordering store (must be active)
        requested_delivery_date: Requested delivery day, not in the past
        items: List of {"product_id": int, "quantity": int,
            "finished_lot_id": optional lot hint}
        notes: Optional notes
        created_by: Identity of the acting user
        session: Optional database session

    Returns:
        Dict of the created order with its lines

    Raises:
        ValidationError: If the store is not active, the date is in the
            past, or items are invalid
        StoreNotFound: If the store does not exist
        ProductNotFound: If an item references an unknown product
        FinishedLotNotFound: If an item hints an unknown finished lot
    """
    errors = []
    if requested_delivery_date is None or requested_delivery_date < utc_today():
        errors.append("Requested delivery date cannot be in the past")
    if not items:
        errors.append("At least one item is required")
    for index, item in enumerate(items or [], start=1):
        quantity = item.get("quantity")
        if item.get("product_id") is None:
            errors.append(f"Item {index}: product_id is required")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            errors.append(f"Item {index}: quantity must be a positive whole number")
    if errors:
        raise ValidationError(errors)

    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        store = session.get(Store, store_id)
        if store is None:
            raise StoreNotFound(store_id)
        if not store.is_active:
            raise ValidationError([f"Store {store.code} is {store.status} and cannot place orders"])

        order = Order(
            code=generate_order_code(session, utc_today()),
            store_id=store.id,
            requested_delivery_date=requested_delivery_date,
            status=OrderStatus.PENDING.value,
            notes=notes,
            created_by=created_by,
        )
        for item in items:
            product = session.get(Product, item["product_id"])
            if product is None:
                raise ProductNotFound(item["product_id"])
            if not product.is_active:
                raise ValidationError([f"Product {product.sku} is not available for ordering"])
            lot_id = item.get("finished_lot_id")
            if lot_id is not None:
                lot = session.get(FinishedLot, lot_id)
                if lot is None:
                    raise FinishedLotNotFound(lot_id)
                if lot.product_id != product.id:
                    raise ValidationError(
                        [f"Finished lot {lot.code} is not a lot of product {product.sku}"]
                    )
            price = _money(product.price)
            order.lines.append(
                OrderLine(
                    product_id=product.id,
                    finished_lot_id=lot_id,
                    quantity=item["quantity"],
                    unit_price=price,
                    subtotal=_money(price * item["quantity"]),
                )
            )
        order.recalculate_total()
        session.add(order)
        session.flush()

        log_operation(
            logger,
            operation="create_order",
            outcome="success",
            order_id=order.id,
            order_code=order.code,
            store_id=store.id,
            total_amount=str(order.total_amount),
        )
        return order.to_dict()


def get_order(order_id: int, *, session=None) -> Dict[str, Any]:
    """
    Get an order with its lines, shipment codes and invoice number.

    Raises:
        OrderNotFound: If the order does not exist
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        order = _get_order(session, order_id)
        result = order.to_dict()
        result["shipment_codes"] = [shipment.code for shipment in order.shipments]
        result["invoice_number"] = order.invoice.invoice_number if order.invoice else None
        return result


def list_orders(
    *, status: Optional[str] = None, store_id: Optional[int] = None, session=None
) -> List[Dict[str, Any]]:
    """List orders, newest first, optionally filtered by status and store."""
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        query = session.query(Order).options(joinedload(Order.lines))
        if status:
            query = query.filter(Order.status == status)
        if store_id:
            query = query.filter(Order.store_id == store_id)
        orders = query.order_by(Order.id.desc()).all()
        return [order.to_dict() for order in orders]


def _shipment_dict(shipment: Shipment) -> Dict[str, Any]:
    result = shipment.to_dict()
    result["order_code"] = shipment.order.code
    result["store_code"] = shipment.store.code
    return result


def get_shipment(shipment_id: int, *, session=None) -> Dict[str, Any]:
    """
    Get a shipment with its export lines and the lot code of each line.

    Raises:
        ShipmentNotFound: If the shipment does not exist
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        shipment = session.get(Shipment, shipment_id)
        if shipment is None:
            raise ShipmentNotFound(shipment_id)
        return _shipment_dict(shipment)


def list_shipments(
    *, status: Optional[str] = None, store_id: Optional[int] = None, session=None
) -> List[Dict[str, Any]]:
    """List shipments with their export lines, newest first."""
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        query = session.query(Shipment).options(
            joinedload(Shipment.lines),
            joinedload(Shipment.order),
            joinedload(Shipment.store),
        )
        if status:
            query = query.filter(Shipment.status == status)
        if store_id:
            query = query.filter(Shipment.store_id == store_id)
        shipments = query.order_by(Shipment.id.desc()).all()
        return [_shipment_dict(shipment) for shipment in shipments]


def reject_order(order_id: int, reason: str, *, session=None) -> Dict[str, Any]:
    """
    Cancel a pending order.

    Raises:
        ValidationError: If no reason is given
        InvalidStatusTransition: If the order is not pending
        OrderNotFound: If the order does not exist
    """
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError(["A reason is required to reject an order"])

    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        order = _get_order(session, order_id, lock=True)
        _require_pending(order)

        order.status = OrderStatus.CANCELLED.value
        order.cancellation_reason = reason
        order.cancelled_at = utc_now()
        session.flush()

        log_operation(
            logger,
            operation="reject_order",
            outcome="success",
            order_id=order.id,
            order_code=order.code,
        )
        return order.to_dict()


def aggregate_pending_demand(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    *,
    session=None,
) -> List[Dict[str, Any]]:
    """
    Total quantity per product across pending orders.

    Args:
        start_date: Optional earliest requested delivery date
        end_date: Optional latest requested delivery date

    Returns:
        List of dicts with product_id, product_sku, product_name,
        total_quantity and order_count, ordered by SKU
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        query = (
            session.query(
                Product.id,
                Product.sku,
                Product.name,
                func.sum(OrderLine.quantity),
                func.count(func.distinct(Order.id)),
            )
            .join(OrderLine, OrderLine.product_id == Product.id)
            .join(Order, Order.id == OrderLine.order_id)
            .filter(Order.status == OrderStatus.PENDING.value)
        )
        if start_date:
            query = query.filter(Order.requested_delivery_date >= start_date)
        if end_date:
            query = query.filter(Order.requested_delivery_date <= end_date)
        rows = query.group_by(Product.id, Product.sku, Product.name).order_by(Product.sku).all()
        return [
            {
                "product_id": product_id,
                "product_sku": sku,
                "product_name": product_name,
                "total_quantity": int(total or 0),
                "order_count": order_count,
            }
            for product_id, sku, product_name, total, order_count in rows
        ]


# =============================================================================
# Approval & Shipment
# =============================================================================


def _re_resolve_lines(order: Order, allocations_by_product: Dict[int, list]) -> List[OrderLine]:
    """
    Split each original order line across the lots allocated for its product.

    Lines are consumed in their original order and each keeps its unit
    price, so the order total does not change.
    """
    queues = {
        product_id: [[allocation.lot, allocation.quantity] for allocation in allocations]
        for product_id, allocations in allocations_by_product.items()
    }
    resolved = []
    for line in order.lines:
        queue = queues[line.product_id]
        remaining = line.quantity
        while remaining > 0:
            lot, available = queue[0]
            take = min(available, remaining)
            resolved.append(
                OrderLine(
                    product_id=line.product_id,
                    finished_lot=lot,
                    quantity=take,
                    unit_price=line.unit_price,
                    subtotal=_money(Decimal(str(line.unit_price)) * take),
                )
            )
            remaining -= take
            if take == available:
                queue.pop(0)
            else:
                queue[0][1] = available - take
    return resolved


def approve_and_ship(
    order_id: int,
    shipment_code: str,
    carrier_code: Optional[str] = None,
    vehicle_number: Optional[str] = None,
    notes: Optional[str] = None,
    estimated_arrival: Optional[datetime] = None,
    approved_by: Optional[str] = None,
    *,
    session=None,
) -> Dict[str, Any]:
    """
    Approve a pending order and dispatch it.

    This function atomically:
    1. Validates the order is pending and the shipment code is unused
    2. Reads the shipping surcharge and tax rate settings (default 0)
    3. Groups the order lines by product and allocates non-expired finished
       lots FEFO (pre-flight for every product, then deduction)
    4. Creates the shipment in transit with one export line per allocation
    5. Marks the order shipped and re-resolves its lines to the allocated lots
    6. Issues the invoice

    Args:
        order_id: Pending order to approve
        shipment_code: Unique shipment code (case-insensitive)
        carrier_code: Optional carrier or driver code
        vehicle_number: Optional vehicle plate
        notes: Optional shipment notes
        estimated_arrival: Optional arrival estimate; defaults to departure
            plus the store's standard delivery minutes
        approved_by: Identity of the acting user
        session: Optional database session

    Returns:
        Dict with keys "order", "shipment" and "invoice"

    Raises:
        ValidationError: If the shipment code is missing or the estimated
            arrival precedes departure
        OrderNotFound: If the order does not exist
        InvalidStatusTransition: If the order is not pending
        DuplicateCode: If the shipment code is already used
        InsufficientStock: If a product's lots cannot cover its demand
        ConcurrentStockExhaustion: If lots ran out during allocation
    """
    code = (shipment_code or "").strip().upper()
    if not code:
        raise ValidationError(["Shipment code is required"])

    try:
        cm = nullcontext(session) if session is not None else session_scope()
        with cm as session:
            order = _get_order(session, order_id, lock=True)
            _require_pending(order)

            if session.query(Shipment.id).filter(Shipment.code == code).first():
                raise DuplicateCode("Shipment", code)

            shipping_cost = system_setting_service.get_decimal_setting(
                SETTING_SHIPPING_COST, session=session
            )
            tax_rate = system_setting_service.get_decimal_setting(SETTING_TAX_RATE, session=session)

            demand = OrderedDict()
            for line in order.lines:
                demand[line.product_id] = demand.get(line.product_id, 0) + line.quantity

            products = {
                product.id: product
                for product in session.query(Product)
                .filter(Product.id.in_(list(demand)))
                .order_by(Product.id)
                .with_for_update()
                .all()
            }

            # Pass 1: pre-flight against non-expired lots for every product
            now = utc_now()
            requirements = []
            for product_id, quantity in demand.items():
                candidates = batch_ledger_service.list_finished_lot_fefo_candidates(
                    product_id, lock=True, now=now, session=session
                )
                requirements.append(
                    Requirement(
                        item_id=product_id,
                        item_name=products[product_id].name,
                        required=quantity,
                        available=sum(lot.current_quantity for lot in candidates),
                        unit=products[product_id].unit,
                    )
                )
            ensure_available(requirements)

            # Pass 2: FEFO deduction per product
            allocations_by_product = {}
            for req in requirements:
                candidates = batch_ledger_service.list_finished_lot_fefo_candidates(
                    req.item_id, lock=True, now=now, session=session
                )
                allocations_by_product[req.item_id] = allocate_fefo(
                    candidates,
                    req.required,
                    req.item_name,
                    quantity_of=lambda lot: lot.current_quantity,
                    take=batch_ledger_service.decrement_lot,
                )

            store = order.store
            if estimated_arrival is not None:
                arrival = as_utc(estimated_arrival)
                if arrival < now:
                    raise ValidationError(["Estimated arrival cannot be before departure"])
            else:
                arrival = now + timedelta(minutes=store.standard_delivery_minutes)

            shipment = Shipment(
                code=code,
                order_id=order.id,
                store_id=store.id,
                carrier_code=carrier_code,
                vehicle_number=vehicle_number,
                notes=notes,
                departed_at=now,
                estimated_arrival=arrival,
                status=ShipmentStatus.IN_TRANSIT.value,
            )
            for product_id, allocations in allocations_by_product.items():
                for allocation in allocations:
                    shipment.lines.append(
                        ShipmentLine(
                            product_id=product_id,
                            finished_lot=allocation.lot,
                            quantity=allocation.quantity,
                        )
                    )
            session.add(shipment)

            order.lines = _re_resolve_lines(order, allocations_by_product)
            order.recalculate_total()
            order.status = OrderStatus.SHIPPED.value
            order.approved_by = approved_by
            order.approved_at = now
            order.shipped_at = now

            subtotal = _money(Decimal(str(order.total_amount)) + shipping_cost)
            tax_amount = _money(subtotal * tax_rate)
            invoice_date = now.date()
            invoice = Invoice(
                invoice_number=f"{INVOICE_NUMBER_PREFIX}-{order.code}",
                order_id=order.id,
                store_id=store.id,
                invoice_date=invoice_date,
                due_date=invoice_date + timedelta(days=PAYMENT_TERMS_DAYS),
                subtotal=subtotal,
                tax_rate=tax_rate,
                tax_amount=tax_amount,
                total_amount=subtotal + tax_amount,
                paid_amount=Decimal("0.00"),
                payment_status=PaymentStatus.PENDING.value,
            )
            session.add(invoice)
            session.flush()

            log_operation(
                logger,
                operation="approve_and_ship",
                outcome="success",
                order_id=order.id,
                order_code=order.code,
                shipment_code=shipment.code,
                export_line_count=len(shipment.lines),
                invoice_number=invoice.invoice_number,
                invoice_total=str(invoice.total_amount),
            )
            return {
                "order": order.to_dict(),
                "shipment": shipment.to_dict(),
                "invoice": invoice.to_dict(),
            }
    except ServiceError as exc:
        log_operation(
            logger,
            operation="approve_and_ship",
            outcome="rejected",
            level=logging.WARNING,
            order_id=order_id,
            shipment_code=code,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        raise
