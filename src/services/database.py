"""
Engine, session and schema management for the Central Kitchen Ledger.

Every allocation workflow runs inside one session_scope(). Lots and
aggregates are read FOR UPDATE before mutation; SQLite does not render
FOR UPDATE, so file-backed SQLite engines take the database write lock at
the start of each transaction instead. SQLite connections also get
foreign keys and WAL journaling switched on.
"""

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

from sqlalchemy import create_engine, event, inspect
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..models.base import Base
from ..utils.config import get_config

# Configure logging
logger = logging.getLogger(__name__)

# Global engine and session factory
_engine: Optional[Engine] = None
_SessionFactory: Optional[sessionmaker] = None

EXPECTED_TABLES = [
    "suppliers",
    "ingredients",
    "ingredient_lots",
    "products",
    "recipe_items",
    "production_orders",
    "production_order_lines",
    "finished_lots",
    "finished_lot_consumptions",
    "stores",
    "orders",
    "order_lines",
    "shipments",
    "shipment_lines",
    "invoices",
    "store_inventory_records",
    "system_settings",
]

@event.listens_for(Engine, "connect")
def _set_sqlite_pragma(dbapi_connection, connection_record):
    """Apply ledger pragmas to each new sqlite3 connection; other drivers are skipped."""
    if not isinstance(dbapi_connection, sqlite3.Connection):
        return

    cursor = dbapi_connection.cursor()
    # Lot, shipment and invoice rows rely on FK enforcement
    cursor.execute("PRAGMA foreign_keys=ON")
    # Readers keep working while a workflow holds the write lock
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.close()


def _enable_immediate_transactions(engine: Engine) -> None:
    """
    Make every transaction on a file-backed SQLite engine start with BEGIN IMMEDIATE.

    pysqlite otherwise defers BEGIN until the first write, which lets two
    workflows read the same lots before either takes the write lock.
    """

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        # SQLAlchemy emits BEGIN itself from the "begin" event below
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_database_engine(database_url: Optional[str] = None, echo: bool = False) -> Engine:
    """
    Build an engine for the ledger database.

    Args:
        database_url: SQLAlchemy URL; the configured URL when omitted
        echo: Echo emitted SQL to the log

    Returns:
        Engine with the locking behavior the allocation workflows expect
    """
    if database_url is None:
        database_url = get_config().database_url

    logger.info(f"Opening ledger engine for {database_url}")

    if not database_url.startswith("sqlite"):
        # Server databases honor SELECT ... FOR UPDATE directly
        return create_engine(database_url, echo=echo, pool_pre_ping=True)

    if ":memory:" in database_url or "mode=memory" in database_url:
        # One shared connection, otherwise each checkout sees an empty database
        return create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

    db_file = make_url(database_url).database
    if db_file:
        Path(db_file).parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(
        database_url,
        echo=echo,
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    _enable_immediate_transactions(engine)
    return engine


def _import_models() -> None:
    # Registers every mapped table on Base.metadata
    from .. import models  # noqa: F401


def init_database(engine: Optional[Engine] = None) -> None:
    """Create any missing ledger tables. Existing tables and rows are kept."""
    if engine is None:
        engine = get_engine()

    _import_models()
    Base.metadata.create_all(engine)
    logger.info(f"Ledger schema ready ({len(Base.metadata.tables)} tables)")


def get_engine(force_recreate: bool = False) -> Engine:
    """Return the process-wide engine, building it on first use."""
    global _engine

    if _engine is None or force_recreate:
        _engine = create_database_engine()

    return _engine


def get_session_factory() -> sessionmaker:
    """Return the process-wide sessionmaker bound to get_engine()."""
    global _SessionFactory

    if _SessionFactory is None:
        _SessionFactory = sessionmaker(bind=get_engine(), expire_on_commit=False)

    return _SessionFactory


def get_session() -> Session:
    return get_session_factory()()


@contextmanager
def session_scope():
    """
    Run one ledger workflow in a single transaction.

    The session commits when the block exits normally. Any exception rolls
    back every lot, order and invoice change made inside the block and is
    re-raised. The session is closed either way.

    Example:
        with session_scope() as session:
            order = session.get(Order, order_id)
            order.status = OrderStatus.CANCELLED.value
    """
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def verify_database() -> bool:
    """Return True when the database answers and holds every ledger table."""
    try:
        tables = set(inspect(get_engine()).get_table_names())
    except SQLAlchemyError as e:
        logger.error(f"Could not inspect ledger database: {e}")
        return False

    missing = [table for table in EXPECTED_TABLES if table not in tables]
    if missing:
        logger.warning(f"Ledger tables missing: {', '.join(missing)}")
        return False
    return True


def reset_database(confirm: bool = False) -> None:
    """
    Drop and recreate every ledger table, discarding all lots, orders and invoices.

    Raises:
        ValueError: Unless confirm=True
    """
    if not confirm:
        raise ValueError("reset_database discards all ledger data; pass confirm=True")

    engine = get_engine()
    _import_models()

    logger.warning(f"Dropping all ledger tables on {engine.url}")
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)
    logger.info("Ledger tables recreated empty")


def initialize_app_database() -> None:
    """Create the configured database if needed, then check its schema."""
    config = get_config()
    state = "existing" if config.database_exists() else "new"
    logger.info(f"Preparing {state} ledger database at {config.database_url}")

    init_database(get_engine())

    if not verify_database():
        logger.warning("Ledger schema incomplete after initialization")
