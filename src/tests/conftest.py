"""Pytest configuration and fixtures for service layer tests."""

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, scoped_session

from src.models import (
    FinishedLot,
    FinishedLotStatus,
    Ingredient,
    IngredientLot,
    Product,
    ProductionOrder,
    ProductionOrderLine,
    RecipeItem,
    Store,
    Supplier,
)
from src.models.base import Base
from src.services import batch_ledger_service, order_fulfillment_service
from src.utils.datetime_utils import utc_now, utc_today


@pytest.fixture(scope="function")
def test_db():
    """Provide a clean test database for each test function.

    This fixture:
    1. Creates an in-memory SQLite database
    2. Creates all tables
    3. Provides the database to the test
    4. Drops all tables after the test completes
    """
    # Create in-memory SQLite database for testing
    engine = create_engine("sqlite:///:memory:", echo=False)

    # Create all tables
    Base.metadata.create_all(engine)

    # Create session factory
    session_factory = sessionmaker(bind=engine, expire_on_commit=False)
    Session = scoped_session(session_factory)

    # Monkey-patch the global session factory for tests
    import src.services.database as db_module

    original_get_session = db_module.get_session_factory
    db_module.get_session_factory = lambda: Session

    # Provide database to test
    yield Session

    # Cleanup
    Session.remove()
    Base.metadata.drop_all(engine)
    engine.dispose()

    # Restore original session factory
    db_module.get_session_factory = original_get_session


@pytest.fixture
def reload(test_db):
    """Load a fresh copy of a row, bypassing anything cached in the session."""

    def _reload(model, obj_id):
        session = test_db()
        session.expire_all()
        return session.get(model, obj_id)

    return _reload


# =============================================================================
# Master data
# =============================================================================


@pytest.fixture
def supplier(test_db):
    """Provide an active supplier."""
    session = test_db()
    row = Supplier(name="Golden Mill Co.", contact_name="Lan Tran", phone="555-0100")
    session.add(row)
    session.commit()
    return row


@pytest.fixture
def flour(test_db):
    """Create flour ingredient (kg) with no stock."""
    session = test_db()
    ingredient = Ingredient(
        name="Flour",
        unit="kg",
        unit_cost=Decimal("1.2000"),
        warning_threshold=Decimal("20"),
        total_quantity=Decimal("0"),
    )
    session.add(ingredient)
    session.commit()
    return ingredient


@pytest.fixture
def egg_yolk(test_db):
    """Create salted egg yolk ingredient (kg) with no stock."""
    session = test_db()
    ingredient = Ingredient(
        name="Salted Egg Yolk",
        unit="kg",
        unit_cost=Decimal("9.5000"),
        warning_threshold=Decimal("2"),
        total_quantity=Decimal("0"),
    )
    session.add(ingredient)
    session.commit()
    return ingredient


@pytest.fixture
def make_ingredient_lot(test_db, supplier):
    """Factory inserting an ingredient lot and raising the cached total to match.

    Expiry is given in days from today and may be negative for expired lots.
    """

    def _make(ingredient, lot_code, quantity, expires_in_days):
        session = test_db()
        ingredient = session.get(Ingredient, ingredient.id)
        qty = Decimal(str(quantity))
        lot = IngredientLot(
            ingredient_id=ingredient.id,
            supplier_id=supplier.id,
            lot_code=lot_code,
            expiry_date=utc_today() + timedelta(days=expires_in_days),
            received_date=utc_today(),
            initial_quantity=qty,
            current_quantity=qty,
            unit_cost=ingredient.unit_cost,
            is_active=True,
        )
        session.add(lot)
        batch_ledger_service.adjust_ingredient_total(ingredient, qty)
        session.commit()
        return lot

    return _make


@pytest.fixture
def mooncake(test_db, flour, egg_yolk):
    """Product with a two-ingredient recipe: 0.5 kg flour then 0.1 kg yolk per unit."""
    session = test_db()
    product = Product(
        name="Salted Egg Mooncake",
        sku="mc01",
        price=Decimal("12.50"),
        shelf_life_days=30,
        unit="box",
    )
    product.recipe_items.append(
        RecipeItem(ingredient_id=flour.id, quantity_per_unit=Decimal("0.500"), position=0)
    )
    product.recipe_items.append(
        RecipeItem(ingredient_id=egg_yolk.id, quantity_per_unit=Decimal("0.100"), position=1)
    )
    session.add(product)
    session.commit()
    return product


@pytest.fixture
def lotus_cake(test_db):
    """Product with no recipe lines."""
    session = test_db()
    product = Product(
        name="Lotus Seed Cake",
        sku="LS02",
        price=Decimal("8.00"),
        shelf_life_days=14,
        unit="box",
    )
    session.add(product)
    session.commit()
    return product


@pytest.fixture
def production_order(test_db, mooncake, lotus_cake):
    """Planned production order with a mooncake line and a lotus cake line."""
    session = test_db()
    order = ProductionOrder(code="PLAN-001", note="Mid-autumn batch")
    order.lines.append(ProductionOrderLine(product_id=mooncake.id, planned_quantity=120))
    order.lines.append(ProductionOrderLine(product_id=lotus_cake.id, planned_quantity=40))
    session.add(order)
    session.commit()
    return order


@pytest.fixture
def store(test_db):
    """Active store with a 45 minute standard delivery time."""
    session = test_db()
    row = Store(
        name="Riverside Branch",
        code="rs-01",
        address="12 Quay Street",
        standard_delivery_minutes=45,
    )
    session.add(row)
    session.commit()
    return row


@pytest.fixture
def make_finished_lot(test_db, production_order):
    """Factory inserting an active finished lot expiring in the given number of days."""

    def _make(product, code, quantity, expires_in_days):
        session = test_db()
        now = utc_now()
        lot = FinishedLot(
            code=code,
            production_order_id=production_order.id,
            product_id=product.id,
            manufactured_at=now - timedelta(days=max(1, 1 - expires_in_days)),
            expires_at=now + timedelta(days=expires_in_days),
            initial_quantity=quantity,
            current_quantity=quantity,
            status=FinishedLotStatus.ACTIVE.value,
        )
        session.add(lot)
        session.commit()
        return lot

    return _make


@pytest.fixture
def finished_stock(mooncake, make_finished_lot):
    """Mooncake lots: 30 units expiring in 3 days, 50 in 10 days, one expired."""
    early = make_finished_lot(mooncake, "MC-EARLY", 30, 3)
    late = make_finished_lot(mooncake, "MC-LATE", 50, 10)
    expired = make_finished_lot(mooncake, "MC-STALE", 100, -1)
    return {"early_id": early.id, "late_id": late.id, "expired_id": expired.id}


@pytest.fixture
def pending_order(test_db, store, mooncake):
    """Pending order for 40 mooncakes; returns the order dict."""
    return order_fulfillment_service.create_order(
        store.id,
        utc_today() + timedelta(days=1),
        [{"product_id": mooncake.id, "quantity": 40}],
        created_by="store.mai",
    )
