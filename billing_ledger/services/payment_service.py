# Overview: Payment ledger; applies payments to invoices and derives invoice status.

"""
Payment Ledger

WHY: Invoices are settled over time (deposits, instalments, mobile-money
top-ups). Each payment is appended to the invoice, never edited, and the
paid/due amounts and status are recomputed in the same step.

DESIGN PRINCIPLES:
- Payments are immutable; corrections are new payments or credit notes
- amount_due never goes negative: overpayments are rejected, not stored
- Status is derived from amounts and the due date, never set by callers
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Mapping, Optional, Union

from ..errors import InvalidStateError, OverpaymentError, ValidationError
from ..models import Invoice, InvoicePayment
from .invoice_service import (
    INVOICE_STATUS_CANCELLED,
    INVOICE_STATUS_OVERDUE,
    INVOICE_STATUS_PAID,
    INVOICE_STATUS_PARTIAL,
    INVOICE_STATUS_SENT,
)


# =============================================================================
# PAYMENT METHODS (CONSTANTS)
# =============================================================================

METHOD_CASH = "cash"
METHOD_CARD = "card"
METHOD_BANK_TRANSFER = "bank_transfer"
METHOD_MOBILE_MONEY = "mobile_money"
METHOD_OTHER = "other"

VALID_PAYMENT_METHODS = [
    METHOD_CASH,
    METHOD_CARD,
    METHOD_BANK_TRANSFER,
    METHOD_MOBILE_MONEY,
    METHOD_OTHER,
]

MAX_REFERENCE_LENGTH = 100
MAX_PAYMENT_NOTES_LENGTH = 500

# Statuses that accept payments
PAYABLE_STATUSES = (
    INVOICE_STATUS_SENT,
    INVOICE_STATUS_PARTIAL,
    INVOICE_STATUS_OVERDUE,
    INVOICE_STATUS_PAID,
)


@dataclass(frozen=True)
class PaymentData:
    """Validated payment input."""
    amount_cents: int
    method: str
    paid_on: Optional[date] = None
    reference: Optional[str] = None
    notes: Optional[str] = None

    def __post_init__(self):
        if isinstance(self.amount_cents, bool) or not isinstance(self.amount_cents, int):
            raise ValidationError("Payment amount must be an integer number of cents", field="amount_cents")
        if self.amount_cents <= 0:
            raise ValidationError("Payment amount must be positive", field="amount_cents")
        if self.method not in VALID_PAYMENT_METHODS:
            raise ValidationError(
                f"Invalid payment method: {self.method}. Must be one of {VALID_PAYMENT_METHODS}",
                field="method",
            )
        if self.paid_on is not None and not isinstance(self.paid_on, date):
            raise ValidationError("paid_on must be a date", field="paid_on")
        if self.reference is not None and len(self.reference) > MAX_REFERENCE_LENGTH:
            raise ValidationError(
                f"Payment reference must be at most {MAX_REFERENCE_LENGTH} characters", field="reference"
            )
        if self.notes is not None and len(self.notes) > MAX_PAYMENT_NOTES_LENGTH:
            raise ValidationError(
                f"Payment notes must be at most {MAX_PAYMENT_NOTES_LENGTH} characters", field="notes"
            )


PaymentInput = Union[PaymentData, Mapping]


def coerce_payment(payment: PaymentInput) -> PaymentData:
    if isinstance(payment, PaymentData):
        return payment
    if isinstance(payment, Mapping):
        try:
            return PaymentData(**payment)
        except TypeError as exc:
            raise ValidationError(f"Invalid payment: {exc}") from exc
    raise ValidationError("Payment must be PaymentData or a mapping")


# =============================================================================
# STATUS DERIVATION
# =============================================================================

def is_past_due(invoice: Invoice, today: date) -> bool:
    return invoice.due_date < today and invoice.amount_due_cents > 0


def needs_overdue_promotion(invoice: Invoice, today: date) -> bool:
    return invoice.status in (INVOICE_STATUS_SENT, INVOICE_STATUS_PARTIAL) and is_past_due(invoice, today)


def derive_status(invoice: Invoice, today: date) -> str:
    """
    Status implied by the invoice's amounts and due date.

    Only meaningful for issued, non-cancelled invoices.
    """
    if invoice.amount_due_cents == 0:
        return INVOICE_STATUS_PAID
    if invoice.amount_paid_cents > 0:
        return INVOICE_STATUS_PARTIAL
    if invoice.due_date < today:
        return INVOICE_STATUS_OVERDUE
    return INVOICE_STATUS_SENT


# =============================================================================
# PAYMENTS
# =============================================================================

def add_payment(invoice: Invoice, payment: PaymentInput, *, today: date) -> Invoice:
    """
    Append a payment and recompute paid/due amounts and status.

    Args:
        invoice: Issued invoice receiving the payment
        payment: Amount, method, optional date/reference/notes
        today: Business date (payment date default and overdue check)

    Raises:
        ValidationError: amount <= 0 or malformed payment
        InvalidStateError: invoice is DRAFT or CANCELLED
        OverpaymentError: amount exceeds amount due
    """
    data = coerce_payment(payment)

    if invoice.status not in PAYABLE_STATUSES:
        raise InvalidStateError(
            f"Cannot add payment to invoice {invoice.invoice_number} with status {invoice.status}",
            status=invoice.status,
            operation="add_payment",
        )

    if data.amount_cents > invoice.amount_due_cents:
        raise OverpaymentError(amount_cents=data.amount_cents, amount_due_cents=invoice.amount_due_cents)

    paid_on = data.paid_on or today
    invoice.payments.append(
        InvoicePayment(
            amount_cents=data.amount_cents,
            method=data.method,
            paid_on=paid_on,
            reference=data.reference,
            notes=data.notes,
        )
    )

    invoice.amount_paid_cents = sum(p.amount_cents for p in invoice.payments)
    invoice.amount_due_cents = invoice.total_cents - invoice.amount_paid_cents
    invoice.status = derive_status(invoice, today)
    if invoice.status == INVOICE_STATUS_PAID:
        invoice.paid_date = paid_on

    return invoice


def reconcile_overdue(invoice: Invoice, today: date) -> Invoice:
    """
    Promote SENT/PARTIAL invoices past their due date (with a balance) to OVERDUE.

    Idempotent. PAID, CANCELLED, DRAFT and OVERDUE invoices are left untouched.
    """
    if needs_overdue_promotion(invoice, today):
        invoice.status = INVOICE_STATUS_OVERDUE
    return invoice


def cancel_invoice(invoice: Invoice, *, cancelled_at: Optional[datetime] = None) -> Invoice:
    """
    Cancel an invoice. Terminal: no further payments or credit notes.

    Raises:
        InvalidStateError: invoice is PAID or already CANCELLED
    """
    if invoice.status in (INVOICE_STATUS_PAID, INVOICE_STATUS_CANCELLED):
        raise InvalidStateError(
            f"Cannot cancel invoice {invoice.invoice_number} with status {invoice.status}",
            status=invoice.status,
            operation="cancel",
        )
    invoice.status = INVOICE_STATUS_CANCELLED
    invoice.cancelled_at = cancelled_at
    return invoice


# =============================================================================
# QUERIES
# =============================================================================

def payment_summary(invoice: Invoice) -> dict:
    """
    Get payment summary for an invoice.

    Credited amounts are reported alongside, not netted against amount due.
    """
    return {
        "invoice_id": invoice.id,
        "invoice_number": invoice.invoice_number,
        "status": invoice.status,
        "total_cents": invoice.total_cents,
        "amount_paid_cents": invoice.amount_paid_cents,
        "amount_due_cents": invoice.amount_due_cents,
        "credited_total_cents": invoice.credited_total_cents,
        "payment_count": len(invoice.payments),
        "payments": [p.to_dict() for p in invoice.payments],
    }
