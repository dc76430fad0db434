"""Tests for invoice service (payments and overdue tracking)."""

from datetime import timedelta
from decimal import Decimal

import pytest

from src.models import Invoice, PaymentStatus
from src.services import invoice_service, order_fulfillment_service
from src.services.exceptions import InvalidStatusTransition, InvoiceNotFound, ValidationError
from src.utils.datetime_utils import utc_today


@pytest.fixture
def invoice_id(test_db, pending_order, finished_stock):
    """Invoice of 500.00 issued for the shipped pending order."""
    result = order_fulfillment_service.approve_and_ship(pending_order["id"], "SHP-200")
    return result["invoice"]["id"]


class TestRecordPayment:
    """Tests for record_payment()."""

    def test_partial_then_full_payment(self, test_db, invoice_id):
        partial = invoice_service.record_payment(invoice_id, "200.00", method="cash")

        assert partial["payment_status"] == PaymentStatus.PARTIAL.value
        assert Decimal(partial["balance_due"]) == Decimal("300.00")
        assert partial["payment_date"] is None

        paid = invoice_service.record_payment(invoice_id, Decimal("300"))

        assert paid["payment_status"] == PaymentStatus.PAID.value
        assert Decimal(paid["paid_amount"]) == Decimal("500.00")
        assert paid["payment_method"] == "bank_transfer"
        assert paid["payment_date"] is not None

    def test_overpayment_rejected(self, test_db, invoice_id, reload):
        with pytest.raises(ValidationError):
            invoice_service.record_payment(invoice_id, "500.01")

        assert reload(Invoice, invoice_id).payment_status == PaymentStatus.PENDING.value

    @pytest.mark.parametrize("amount", ["0", "-5", "abc"])
    def test_invalid_amount_rejected(self, test_db, invoice_id, amount):
        with pytest.raises(ValidationError):
            invoice_service.record_payment(invoice_id, amount)

    def test_unknown_method_rejected(self, test_db, invoice_id):
        with pytest.raises(ValidationError):
            invoice_service.record_payment(invoice_id, "10", method="barter")

    def test_paid_invoice_rejects_further_payment(self, test_db, invoice_id):
        invoice_service.record_payment(invoice_id, "500")
        with pytest.raises(InvalidStatusTransition):
            invoice_service.record_payment(invoice_id, "1")

    def test_cancelled_invoice_rejects_payment(self, test_db, invoice_id):
        session = test_db()
        session.get(Invoice, invoice_id).payment_status = PaymentStatus.CANCELLED.value
        session.commit()

        with pytest.raises(InvalidStatusTransition):
            invoice_service.record_payment(invoice_id, "10")

    def test_unknown_invoice(self, test_db):
        with pytest.raises(InvoiceNotFound):
            invoice_service.record_payment(999, "10")


class TestRefreshOverdue:
    """Tests for refresh_overdue_invoices()."""

    def test_flags_unpaid_invoices_past_due(self, test_db, invoice_id, reload):
        after_due = utc_today() + timedelta(days=31)

        assert invoice_service.refresh_overdue_invoices()["count"] == 0
        result = invoice_service.refresh_overdue_invoices(today=after_due)

        assert result["count"] == 1
        assert reload(Invoice, invoice_id).payment_status == PaymentStatus.OVERDUE.value

    def test_overdue_invoice_still_payable(self, test_db, invoice_id):
        invoice_service.refresh_overdue_invoices(today=utc_today() + timedelta(days=31))

        result = invoice_service.record_payment(invoice_id, "500")
        assert result["payment_status"] == PaymentStatus.PAID.value

    def test_paid_invoices_not_flagged(self, test_db, invoice_id):
        invoice_service.record_payment(invoice_id, "500")

        result = invoice_service.refresh_overdue_invoices(today=utc_today() + timedelta(days=31))
        assert result == {"count": 0, "invoice_numbers": []}

    def test_get_invoice(self, test_db, invoice_id):
        invoice = invoice_service.get_invoice(invoice_id)
        assert invoice["invoice_number"].startswith("INV-ORD-")
        assert Decimal(invoice["balance_due"]) == Decimal("500.00")
