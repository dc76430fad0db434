"""
Invoice Service - payments and overdue tracking.

Invoices are issued by order_fulfillment_service.approve_and_ship(). This
module records payments against them and flags unpaid invoices that are
past due. Payment status is independent of the order lifecycle.
"""

from contextlib import nullcontext
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from src.models import Invoice, PaymentMethod, PaymentStatus
from src.services.database import session_scope
from src.services.exceptions import InvalidStatusTransition, InvoiceNotFound, ValidationError
from src.services.logging_utils import get_service_logger, log_operation
from src.utils.constants import MONEY_PLACES
from src.utils.datetime_utils import utc_now, utc_today

logger = get_service_logger(__name__)

PAYABLE_STATUSES = [
    PaymentStatus.PENDING.value,
    PaymentStatus.PARTIAL.value,
    PaymentStatus.OVERDUE.value,
]


def get_invoice(invoice_id: int, *, session=None) -> Dict[str, Any]:
    """
    Get an invoice.

    Raises:
        InvoiceNotFound: If the invoice does not exist
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        invoice = session.get(Invoice, invoice_id)
        if invoice is None:
            raise InvoiceNotFound(invoice_id)
        return invoice.to_dict()


def record_payment(
    invoice_id: int,
    amount,
    method: str = PaymentMethod.BANK_TRANSFER.value,
    *,
    session=None,
) -> Dict[str, Any]:
    """
    Record a payment against an invoice.

    The invoice becomes paid (with a payment date) once the paid amount
    reaches the total, and partial while it is above zero but short.

    Args:
        invoice_id: Invoice being paid
        amount: Payment amount, positive, not more than the balance due
        method: PaymentMethod value
        session: Optional database session

    Returns:
        Dict of the updated invoice

    Raises:
        ValidationError: If the amount or method is invalid
        InvalidStatusTransition: If the invoice is paid or cancelled
        InvoiceNotFound: If the invoice does not exist
    """
    try:
        payment = Decimal(str(amount)).quantize(MONEY_PLACES)
    except (InvalidOperation, ValueError):
        raise ValidationError([f"Invalid payment amount: {amount}"])
    if payment <= 0:
        raise ValidationError(["Payment amount must be greater than zero"])
    if method not in [m.value for m in PaymentMethod]:
        raise ValidationError([f"Unknown payment method '{method}'"])

    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        invoice = (
            session.query(Invoice)
            .filter(Invoice.id == invoice_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if invoice is None:
            raise InvoiceNotFound(invoice_id)
        if invoice.payment_status not in PAYABLE_STATUSES:
            raise InvalidStatusTransition(
                "Invoice", invoice.invoice_number, invoice.payment_status, PAYABLE_STATUSES
            )
        if payment > invoice.balance_due:
            raise ValidationError(
                [f"Payment {payment} exceeds balance due {invoice.balance_due}"]
            )

        invoice.paid_amount = Decimal(str(invoice.paid_amount or 0)) + payment
        invoice.payment_method = method
        if invoice.paid_amount >= Decimal(str(invoice.total_amount)):
            invoice.payment_status = PaymentStatus.PAID.value
            invoice.payment_date = utc_now()
        else:
            invoice.payment_status = PaymentStatus.PARTIAL.value
        session.flush()

        log_operation(
            logger,
            operation="record_payment",
            outcome="success",
            invoice_number=invoice.invoice_number,
            amount=str(payment),
            payment_status=invoice.payment_status,
        )
        return invoice.to_dict()


def refresh_overdue_invoices(today: Optional[date] = None, *, session=None) -> Dict[str, Any]:
    """
    Flag pending or partially paid invoices past their due date as overdue.

    Returns:
        Dict with "count" and the affected "invoice_numbers"
    """
    today = today or utc_today()
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        invoices = (
            session.query(Invoice)
            .filter(
                Invoice.payment_status.in_(
                    [PaymentStatus.PENDING.value, PaymentStatus.PARTIAL.value]
                ),
                Invoice.due_date < today,
            )
            .order_by(Invoice.id)
            .with_for_update()
            .all()
        )
        for invoice in invoices:
            invoice.payment_status = PaymentStatus.OVERDUE.value

        numbers = [invoice.invoice_number for invoice in invoices]
        log_operation(
            logger,
            operation="refresh_overdue_invoices",
            outcome="success",
            count=len(numbers),
        )
        return {"count": len(numbers), "invoice_numbers": numbers}
