"""Tests for the maintenance CLI."""

from decimal import Decimal

import pytest

from src import main as cli
from src.models import Ingredient, Store
from src.services import database
from src.services.exceptions import ServiceError


@pytest.fixture
def memory_engine(monkeypatch):
    """Point the global engine at a fresh in-memory database."""
    engine = database.create_database_engine("sqlite:///:memory:")
    monkeypatch.setattr(database, "_engine", engine)
    monkeypatch.setattr(database, "_SessionFactory", None)
    yield engine
    engine.dispose()


class TestMaintenanceCommands:
    """Exit codes and output of the maintenance subcommands."""

    def test_no_command_prints_help(self, capsys):
        assert cli.main([]) == 1
        assert "central-kitchen" in capsys.readouterr().out

    def test_verify_stock_consistent(self, test_db, flour, make_ingredient_lot, capsys):
        make_ingredient_lot(flour, "F-1", 5, 10)

        assert cli.main(["verify-stock"]) == 0
        assert "All ingredient totals match" in capsys.readouterr().out

    def test_verify_stock_mismatch_exits_nonzero(self, test_db, flour, make_ingredient_lot, capsys):
        make_ingredient_lot(flour, "F-1", 5, 10)
        session = test_db()
        session.get(Ingredient, flour.id).total_quantity = Decimal("8")
        session.commit()

        assert cli.main(["verify-stock"]) == 1
        assert "Flour: cached 8" in capsys.readouterr().out

    def test_expiring_lists_both_lot_kinds(
        self, test_db, flour, mooncake, make_ingredient_lot, make_finished_lot, capsys
    ):
        make_ingredient_lot(flour, "F-SOON", 5, 2)
        make_finished_lot(mooncake, "MC-SOON", 12, 2)

        assert cli.main(["expiring", "--days", "3"]) == 0
        out = capsys.readouterr().out
        assert "F-SOON" in out
        assert "MC-SOON" in out

    def test_negative_days_rejected(self, capsys):
        assert cli.main(["expiring", "--days", "-1"]) == 1

    def test_low_stock(self, test_db, flour, make_ingredient_lot, capsys):
        make_ingredient_lot(flour, "F-1", 5, 10)

        assert cli.main(["low-stock"]) == 0
        assert "Flour" in capsys.readouterr().out

    def test_service_error_reported(self, monkeypatch, capsys):
        def _fail():
            raise ServiceError("database unavailable")

        monkeypatch.setattr(cli.invoice_service, "refresh_overdue_invoices", _fail)

        assert cli.main(["refresh-overdue"]) == 1
        assert "ERROR: database unavailable" in capsys.readouterr().out

    @pytest.mark.parametrize("command", ["mark-expired", "refresh-overdue"])
    def test_housekeeping_commands_succeed(self, test_db, command, capsys):
        assert cli.main([command]) == 0


class TestSchemaCommands:
    """init-db and reset-db against the global engine."""

    def test_init_db_creates_every_table(self, memory_engine, capsys):
        assert cli.main(["init-db"]) == 0
        assert "Database ready" in capsys.readouterr().out
        assert database.verify_database() is True

    def test_verify_database_reports_missing_tables(self, memory_engine):
        assert database.verify_database() is False

    def test_reset_requires_confirmation(self, memory_engine, capsys):
        assert cli.main(["reset-db"]) == 1
        assert "--yes" in capsys.readouterr().out

        with pytest.raises(ValueError, match="confirm=True"):
            database.reset_database()

    def test_reset_discards_rows(self, memory_engine, capsys):
        database.init_database(memory_engine)
        with database.session_scope() as session:
            session.add(Store(name="Riverside", code="RS-09"))

        assert cli.main(["reset-db", "--yes"]) == 0

        with database.session_scope() as session:
            assert session.query(Store).count() == 0
        assert database.verify_database() is True
