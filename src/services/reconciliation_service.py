"""
Reconciliation Service - receiving shipments into store inventory.

A shipment's export lines are added to the destination store's inventory,
one record per (store, product, finished lot). Receiving completes the
shipment and the order in the same transaction; a shipment can only be
received once.
"""

import logging
from contextlib import nullcontext
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import joinedload

from src.models import (
    Order,
    OrderStatus,
    Shipment,
    ShipmentStatus,
    Store,
    StoreInventoryRecord,
)
from src.services.database import session_scope
from src.services.exceptions import (
    InvalidStatusTransition,
    OrderNotFound,
    ServiceError,
    ShipmentNotFound,
    StoreNotFound,
)
from src.services.logging_utils import get_service_logger, log_operation
from src.utils.datetime_utils import utc_now

logger = get_service_logger(__name__)


def _upsert_inventory(session, store_id: int, line) -> Dict[str, Any]:
    """Add one export line to the store's inventory record for that lot."""
    record = (
        session.query(StoreInventoryRecord)
        .filter(
            StoreInventoryRecord.store_id == store_id,
            StoreInventoryRecord.product_id == line.product_id,
            StoreInventoryRecord.finished_lot_id == line.finished_lot_id,
        )
        .with_for_update()
        .first()
    )
    if record is None:
        record = StoreInventoryRecord(
            store_id=store_id,
            product_id=line.product_id,
            finished_lot_id=line.finished_lot_id,
            quantity=line.quantity,
        )
        session.add(record)
        action = "created"
    else:
        record.quantity += line.quantity
        action = "updated"
    session.flush()
    return {
        "action": action,
        "record_id": record.id,
        "product_id": line.product_id,
        "finished_lot_id": line.finished_lot_id,
        "finished_lot_code": line.finished_lot.code,
        "quantity_added": line.quantity,
        "new_quantity": record.quantity,
    }


def receive_shipment(
    shipment_id: int, received_by: Optional[str] = None, *, session=None
) -> Dict[str, Any]:
    """
    Receive an in-transit shipment at its store.

    This function atomically:
    1. Locks the shipment and checks it is in transit
    2. Upserts a store inventory record per export line
    3. Completes the shipment with the actual arrival time
    4. Marks the order received

    Args:
        shipment_id: Shipment to receive
        received_by: Identity of the receiving user
        session: Optional database session

    Returns:
        Dict with keys:
            - "shipment": shipment dict
            - "order": order dict
            - "inventory_deltas": one dict per export line with action
              ("created" or "updated"), quantity_added and new_quantity

    Raises:
        ShipmentNotFound: If the shipment does not exist
        InvalidStatusTransition: If the shipment is not in transit
    """
    try:
        cm = nullcontext(session) if session is not None else session_scope()
        with cm as session:
            shipment = (
                session.query(Shipment)
                .filter(Shipment.id == shipment_id)
                .with_for_update()
                .populate_existing()
                .first()
            )
            if shipment is None:
                raise ShipmentNotFound(shipment_id)
            if shipment.status != ShipmentStatus.IN_TRANSIT.value:
                raise InvalidStatusTransition(
                    "Shipment", shipment.code, shipment.status, [ShipmentStatus.IN_TRANSIT.value]
                )

            order = (
                session.query(Order)
                .filter(Order.id == shipment.order_id)
                .with_for_update()
                .populate_existing()
                .one()
            )

            deltas = [_upsert_inventory(session, shipment.store_id, line) for line in shipment.lines]

            now = utc_now()
            shipment.status = ShipmentStatus.COMPLETED.value
            shipment.actual_arrival = now
            shipment.received_by = received_by
            order.status = OrderStatus.RECEIVED.value
            order.received_at = now
            session.flush()

            log_operation(
                logger,
                operation="receive_shipment",
                outcome="success",
                shipment_id=shipment.id,
                shipment_code=shipment.code,
                order_id=order.id,
                store_id=shipment.store_id,
                line_count=len(deltas),
            )
            return {
                "shipment": shipment.to_dict(),
                "order": order.to_dict(),
                "inventory_deltas": deltas,
            }
    except ServiceError as exc:
        log_operation(
            logger,
            operation="receive_shipment",
            outcome="rejected",
            level=logging.WARNING,
            shipment_id=shipment_id,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        raise


def receive_order(order_id: int, received_by: Optional[str] = None, *, session=None) -> Dict[str, Any]:
    """
    Receive the in-transit shipment of an order.

    Raises:
        OrderNotFound: If the order does not exist
        InvalidStatusTransition: If the order is not shipped
        ShipmentNotFound: If the order has no shipment in transit
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        order = session.get(Order, order_id)
        if order is None:
            raise OrderNotFound(order_id)
        if order.status != OrderStatus.SHIPPED.value:
            raise InvalidStatusTransition(
                "Order", order.code, order.status, [OrderStatus.SHIPPED.value]
            )
        shipment = (
            session.query(Shipment)
            .filter(
                Shipment.order_id == order.id,
                Shipment.status == ShipmentStatus.IN_TRANSIT.value,
            )
            .order_by(Shipment.id)
            .first()
        )
        if shipment is None:
            raise ShipmentNotFound(f"in-transit shipment for order {order.code}")
        return receive_shipment(shipment.id, received_by, session=session)


def get_store_inventory(store_id: int, *, session=None) -> List[Dict[str, Any]]:
    """
    List a store's inventory records, one per received finished lot.

    Raises:
        StoreNotFound: If the store does not exist
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        if session.get(Store, store_id) is None:
            raise StoreNotFound(store_id)
        records = (
            session.query(StoreInventoryRecord)
            .options(
                joinedload(StoreInventoryRecord.finished_lot),
                joinedload(StoreInventoryRecord.product),
            )
            .filter(StoreInventoryRecord.store_id == store_id)
            .order_by(StoreInventoryRecord.product_id, StoreInventoryRecord.finished_lot_id)
            .all()
        )
        return [record.to_dict() for record in records]
