"""Tests for order fulfillment service.

Tests for store order placement, rejection, pending demand and the
approve_and_ship() workflow: FEFO allocation of finished lots, shipment
export lines, order line re-resolution and invoicing.
"""

import logging
from datetime import timedelta
from decimal import Decimal

import pytest

from src.models import (
    FinishedLot,
    FinishedLotStatus,
    Invoice,
    Order,
    OrderStatus,
    Shipment,
    ShipmentStatus,
    Store,
    StoreStatus,
)
from src.services import (
    order_fulfillment_service,
    reconciliation_service,
    system_setting_service,
)
from src.services.exceptions import (
    DuplicateCode,
    FinishedLotNotFound,
    InsufficientStock,
    InvalidStatusTransition,
    OrderNotFound,
    ProductNotFound,
    ShipmentNotFound,
    StoreNotFound,
    ValidationError,
)
from src.utils.constants import SETTING_SHIPPING_COST, SETTING_TAX_RATE
from src.utils.datetime_utils import as_utc, utc_now, utc_today


# =============================================================================
# Orders
# =============================================================================


class TestCreateOrder:
    """Tests for create_order()."""

    def test_prices_lines_from_products(self, test_db, store, mooncake, lotus_cake):
        result = order_fulfillment_service.create_order(
            store.id,
            utc_today(),
            [
                {"product_id": mooncake.id, "quantity": 4},
                {"product_id": lotus_cake.id, "quantity": 3},
            ],
            notes="Window display",
        )

        assert result["status"] == OrderStatus.PENDING.value
        assert result["store_code"] == "RS-01"
        assert [Decimal(line["subtotal"]) for line in result["lines"]] == [
            Decimal("50.00"),
            Decimal("24.00"),
        ]
        assert Decimal(result["total_amount"]) == Decimal("74.00")

    def test_codes_sequence_per_day(self, test_db, store, mooncake):
        items = [{"product_id": mooncake.id, "quantity": 1}]
        first = order_fulfillment_service.create_order(store.id, utc_today(), items)
        second = order_fulfillment_service.create_order(store.id, utc_today(), items)

        prefix = f"ORD-{utc_today():%Y%m%d}-"
        assert first["code"] == f"{prefix}0001"
        assert second["code"] == f"{prefix}0002"

    def test_rejects_past_delivery_date_and_bad_quantities(self, test_db, store, mooncake):
        with pytest.raises(ValidationError) as exc_info:
            order_fulfillment_service.create_order(
                store.id,
                utc_today() - timedelta(days=1),
                [{"product_id": mooncake.id, "quantity": 0}],
            )
        assert len(exc_info.value.errors) == 2

    def test_rejects_inactive_store(self, test_db, store, mooncake):
        session = test_db()
        session.get(Store, store.id).status = StoreStatus.INACTIVE.value
        session.commit()

        with pytest.raises(ValidationError):
            order_fulfillment_service.create_order(
                store.id, utc_today(), [{"product_id": mooncake.id, "quantity": 1}]
            )

    def test_rejects_unknown_store_and_product(self, test_db, store, mooncake):
        store_id, product_id = store.id, mooncake.id

        with pytest.raises(StoreNotFound):
            order_fulfillment_service.create_order(
                999, utc_today(), [{"product_id": product_id, "quantity": 1}]
            )
        with pytest.raises(ProductNotFound):
            order_fulfillment_service.create_order(
                store_id, utc_today(), [{"product_id": 999, "quantity": 1}]
            )

    def test_lot_hint_must_exist(self, test_db, store, mooncake):
        store_id, product_id = store.id, mooncake.id

        with pytest.raises(FinishedLotNotFound):
            order_fulfillment_service.create_order(
                store_id,
                utc_today(),
                [{"product_id": product_id, "quantity": 1, "finished_lot_id": 9999}],
            )

        session = test_db()
        assert session.query(Order).count() == 0

    def test_lot_hint_must_match_product(
        self, test_db, store, mooncake, lotus_cake, make_finished_lot
    ):
        lotus_lot_id = make_finished_lot(lotus_cake, "LS-1", 10, 5).id
        store_id, product_id = store.id, mooncake.id

        with pytest.raises(ValidationError, match="LS-1"):
            order_fulfillment_service.create_order(
                store_id,
                utc_today(),
                [{"product_id": product_id, "quantity": 1, "finished_lot_id": lotus_lot_id}],
            )

    def test_lot_hint_stored_on_line(self, test_db, store, mooncake, make_finished_lot):
        lot_id = make_finished_lot(mooncake, "MC-HINT", 10, 5).id

        result = order_fulfillment_service.create_order(
            store.id,
            utc_today(),
            [{"product_id": mooncake.id, "quantity": 2, "finished_lot_id": lot_id}],
        )

        assert result["lines"][0]["finished_lot_id"] == lot_id


class TestRejectOrder:
    """Tests for reject_order()."""

    def test_cancels_pending_order(self, test_db, pending_order):
        result = order_fulfillment_service.reject_order(pending_order["id"], "Store closed")

        assert result["status"] == OrderStatus.CANCELLED.value
        assert result["cancellation_reason"] == "Store closed"
        assert result["cancelled_at"] is not None

    def test_reason_required(self, test_db, pending_order):
        with pytest.raises(ValidationError):
            order_fulfillment_service.reject_order(pending_order["id"], "   ")

    def test_only_pending_orders(self, test_db, pending_order):
        order_fulfillment_service.reject_order(pending_order["id"], "Duplicate")
        with pytest.raises(InvalidStatusTransition):
            order_fulfillment_service.reject_order(pending_order["id"], "Again")


class TestOrderQueries:
    """Tests for get_order(), list_orders() and aggregate_pending_demand()."""

    def test_get_order_unknown(self, test_db):
        with pytest.raises(OrderNotFound):
            order_fulfillment_service.get_order(999)

    def test_list_orders_by_status(self, test_db, store, mooncake, pending_order):
        other = order_fulfillment_service.create_order(
            store.id, utc_today(), [{"product_id": mooncake.id, "quantity": 2}]
        )
        order_fulfillment_service.reject_order(other["id"], "Mistake")

        pending = order_fulfillment_service.list_orders(status=OrderStatus.PENDING.value)
        assert [order["id"] for order in pending] == [pending_order["id"]]
        assert len(order_fulfillment_service.list_orders(store_id=store.id)) == 2

    def test_aggregate_pending_demand(self, test_db, store, mooncake, lotus_cake, pending_order):
        tomorrow = utc_today() + timedelta(days=1)
        order_fulfillment_service.create_order(
            store.id,
            tomorrow,
            [
                {"product_id": mooncake.id, "quantity": 10},
                {"product_id": lotus_cake.id, "quantity": 5},
            ],
        )
        cancelled = order_fulfillment_service.create_order(
            store.id, tomorrow, [{"product_id": mooncake.id, "quantity": 99}]
        )
        order_fulfillment_service.reject_order(cancelled["id"], "Mistake")

        demand = order_fulfillment_service.aggregate_pending_demand()

        assert [(row["product_sku"], row["total_quantity"], row["order_count"]) for row in demand] == [
            ("LS02", 5, 1),
            ("MC01", 50, 2),
        ]
        assert order_fulfillment_service.aggregate_pending_demand(end_date=utc_today()) == []


# =============================================================================
# Approval & Shipment
# =============================================================================


class TestApproveAndShip:
    """Tests for approve_and_ship()."""

    def test_allocation_spans_lots_in_expiry_order(
        self, test_db, pending_order, finished_stock, reload
    ):
        """40 units drain the 30-unit early lot then take 10 from the late lot."""
        result = order_fulfillment_service.approve_and_ship(
            pending_order["id"], "shp-0001", carrier_code="DRV-7", approved_by="ops.linh"
        )

        early = reload(FinishedLot, finished_stock["early_id"])
        assert early.current_quantity == 0
        assert early.status == FinishedLotStatus.SOLD_OUT.value
        assert reload(FinishedLot, finished_stock["late_id"]).current_quantity == 40
        assert reload(FinishedLot, finished_stock["expired_id"]).current_quantity == 100

        shipment = result["shipment"]
        assert shipment["code"] == "SHP-0001"
        assert shipment["status"] == ShipmentStatus.IN_TRANSIT.value
        assert [(line["finished_lot_code"], line["quantity"]) for line in shipment["lines"]] == [
            ("MC-EARLY", 30),
            ("MC-LATE", 10),
        ]

        order = result["order"]
        assert order["status"] == OrderStatus.SHIPPED.value
        assert order["approved_by"] == "ops.linh"
        assert order["shipped_at"] is not None

    def test_order_lines_re_resolved_to_allocated_lots(
        self, test_db, pending_order, finished_stock
    ):
        result = order_fulfillment_service.approve_and_ship(pending_order["id"], "SHP-0002")

        lines = result["order"]["lines"]
        assert [(line["finished_lot_id"], line["quantity"]) for line in lines] == [
            (finished_stock["early_id"], 30),
            (finished_stock["late_id"], 10),
        ]
        assert all(Decimal(line["unit_price"]) == Decimal("12.50") for line in lines)
        assert Decimal(result["order"]["total_amount"]) == Decimal(pending_order["total_amount"])

    def test_insufficient_stock_changes_nothing(
        self, test_db, store, mooncake, finished_stock, reload
    ):
        # 81 units: 80 unexpired, the expired lot does not count
        order = order_fulfillment_service.create_order(
            store.id, utc_today(), [{"product_id": mooncake.id, "quantity": 81}]
        )

        with pytest.raises(InsufficientStock) as exc_info:
            order_fulfillment_service.approve_and_ship(order["id"], "SHP-FAIL")

        assert exc_info.value.available == 80
        assert reload(Order, order["id"]).status == OrderStatus.PENDING.value
        assert reload(FinishedLot, finished_stock["early_id"]).current_quantity == 30
        assert reload(FinishedLot, finished_stock["late_id"]).current_quantity == 50
        session = test_db()
        assert session.query(Shipment).count() == 0
        assert session.query(Invoice).count() == 0

    def test_invoice_applies_shipping_and_tax(self, test_db, pending_order, finished_stock):
        system_setting_service.set_setting(SETTING_SHIPPING_COST, "10.00")
        system_setting_service.set_setting(SETTING_TAX_RATE, "0.08")

        result = order_fulfillment_service.approve_and_ship(pending_order["id"], "SHP-0003")

        invoice = result["invoice"]
        assert invoice["invoice_number"] == f"INV-{pending_order['code']}"
        assert Decimal(invoice["subtotal"]) == Decimal("510.00")
        assert Decimal(invoice["tax_amount"]) == Decimal("40.80")
        assert Decimal(invoice["total_amount"]) == Decimal("550.80")
        assert invoice["payment_status"] == "pending"
        assert invoice["due_date"] == (utc_today() + timedelta(days=30)).isoformat()

    def test_invoice_without_settings_equals_order_total(
        self, test_db, pending_order, finished_stock
    ):
        result = order_fulfillment_service.approve_and_ship(pending_order["id"], "SHP-0004")

        invoice = result["invoice"]
        assert Decimal(invoice["subtotal"]) == Decimal("500.00")
        assert Decimal(invoice["tax_amount"]) == Decimal("0")
        assert Decimal(invoice["total_amount"]) == Decimal("500.00")

    @pytest.mark.parametrize("tax_rate", ["NaN", "Infinity", "-0.05"])
    def test_unusable_tax_rate_falls_back_to_zero(
        self, test_db, pending_order, finished_stock, tax_rate
    ):
        system_setting_service.set_setting(SETTING_TAX_RATE, tax_rate)

        result = order_fulfillment_service.approve_and_ship(pending_order["id"], "SHP-0014")

        invoice = result["invoice"]
        assert Decimal(invoice["tax_amount"]) == Decimal("0")
        assert Decimal(invoice["total_amount"]) == Decimal("500.00")

    def test_estimated_arrival_defaults_to_store_delivery_time(
        self, test_db, pending_order, finished_stock, reload
    ):
        result = order_fulfillment_service.approve_and_ship(pending_order["id"], "SHP-0005")

        shipment = reload(Shipment, result["shipment"]["id"])
        assert as_utc(shipment.estimated_arrival) - as_utc(shipment.departed_at) == timedelta(
            minutes=45
        )

    def test_estimated_arrival_before_departure_rejected(
        self, test_db, pending_order, finished_stock, reload
    ):
        with pytest.raises(ValidationError):
            order_fulfillment_service.approve_and_ship(
                pending_order["id"], "SHP-0006", estimated_arrival=utc_now() - timedelta(hours=1)
            )
        assert reload(FinishedLot, finished_stock["early_id"]).current_quantity == 30

    def test_duplicate_shipment_code_rejected(
        self, test_db, store, mooncake, pending_order, finished_stock
    ):
        order_fulfillment_service.approve_and_ship(pending_order["id"], "SHP-DUP")
        second = order_fulfillment_service.create_order(
            store.id, utc_today(), [{"product_id": mooncake.id, "quantity": 5}]
        )

        with pytest.raises(DuplicateCode):
            order_fulfillment_service.approve_and_ship(second["id"], "shp-dup")

    def test_only_pending_orders_ship(self, test_db, pending_order, finished_stock):
        order_fulfillment_service.approve_and_ship(pending_order["id"], "SHP-0007")
        with pytest.raises(InvalidStatusTransition):
            order_fulfillment_service.approve_and_ship(pending_order["id"], "SHP-0008")

    def test_shipment_code_required(self, test_db, pending_order):
        with pytest.raises(ValidationError):
            order_fulfillment_service.approve_and_ship(pending_order["id"], "  ")

    def test_get_order_after_shipping(self, test_db, pending_order, finished_stock):
        order_fulfillment_service.approve_and_ship(pending_order["id"], "SHP-0009")

        result = order_fulfillment_service.get_order(pending_order["id"])
        assert result["shipment_codes"] == ["SHP-0009"]
        assert result["invoice_number"] == f"INV-{pending_order['code']}"

    def test_rejection_logged_at_warning(self, test_db, store, mooncake, caplog):
        order = order_fulfillment_service.create_order(
            store.id, utc_today(), [{"product_id": mooncake.id, "quantity": 1}]
        )

        with caplog.at_level(logging.INFO):
            with pytest.raises(InsufficientStock):
                order_fulfillment_service.approve_and_ship(order["id"], "SHP-NONE")

        records = [r for r in caplog.records if r.getMessage() == "approve_and_ship: rejected"]
        assert len(records) == 1
        assert records[0].levelno == logging.WARNING
        assert records[0].shipment_code == "SHP-NONE"


class TestShipmentQueries:
    """Tests for get_shipment() and list_shipments()."""

    def test_get_shipment_includes_export_lines(self, test_db, pending_order, finished_stock):
        shipped = order_fulfillment_service.approve_and_ship(pending_order["id"], "shp-0020")

        shipment = order_fulfillment_service.get_shipment(shipped["shipment"]["id"])

        assert shipment["code"] == "SHP-0020"
        assert shipment["status"] == ShipmentStatus.IN_TRANSIT.value
        assert shipment["order_code"] == pending_order["code"]
        assert shipment["store_code"] == "RS-01"
        assert [(line["finished_lot_code"], line["quantity"]) for line in shipment["lines"]] == [
            ("MC-EARLY", 30),
            ("MC-LATE", 10),
        ]

    def test_get_unknown_shipment(self, test_db):
        with pytest.raises(ShipmentNotFound):
            order_fulfillment_service.get_shipment(999)

    def test_list_filters_by_status_and_store(
        self, test_db, store, mooncake, pending_order, finished_stock
    ):
        store_id, product_id = store.id, mooncake.id
        first = order_fulfillment_service.approve_and_ship(pending_order["id"], "SHP-0021")
        second_order = order_fulfillment_service.create_order(
            store_id, utc_today() + timedelta(days=1), [{"product_id": product_id, "quantity": 5}]
        )
        order_fulfillment_service.approve_and_ship(second_order["id"], "SHP-0022")
        reconciliation_service.receive_shipment(first["shipment"]["id"])

        def codes(**filters):
            return [s["code"] for s in order_fulfillment_service.list_shipments(**filters)]

        assert codes() == ["SHP-0022", "SHP-0021"]
        assert codes(status=ShipmentStatus.COMPLETED.value) == ["SHP-0021"]
        assert codes(status=ShipmentStatus.IN_TRANSIT.value, store_id=store_id) == ["SHP-0022"]
        assert codes(store_id=999) == []

    def test_listed_lines_not_duplicated(self, test_db, pending_order, finished_stock):
        order_fulfillment_service.approve_and_ship(pending_order["id"], "SHP-0023")

        (shipment,) = order_fulfillment_service.list_shipments()

        assert len(shipment["lines"]) == 2
