"""
Credit Note Processor

WHY: Returned goods reverse part or all of an issued invoice. The invoice
itself stays untouched; the credit note is a separate, immutable document
that references the original lines and prices.

DESIGN PRINCIPLES:
- Credit notes reference the original invoice line for traceability
- Unit price is copied from the original line, never re-priced
- Returnable quantity = original quantity - quantity credited by prior notes
- Totals come from the returned lines only (invoice-level discount and tax
  are not prorated)
- Credit notes do not change amount_paid / amount_due (parallel ledger)
- Restock requests are emitted for lines carrying a product reference
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from typing import Iterable, Mapping, Optional, Union

from ..errors import InvalidStateError, QuantityExceededError, ValidationError
from ..models import CreditNote, CreditNoteLine, Invoice
from .invoice_service import (
    INVOICE_STATUS_OVERDUE,
    INVOICE_STATUS_PAID,
    INVOICE_STATUS_PARTIAL,
    INVOICE_STATUS_SENT,
)


MIN_REASON_LENGTH = 3
MAX_REASON_LENGTH = 500
MAX_CREDIT_NOTE_NOTES_LENGTH = 500

CREDITABLE_STATUSES = (
    INVOICE_STATUS_SENT,
    INVOICE_STATUS_PARTIAL,
    INVOICE_STATUS_OVERDUE,
    INVOICE_STATUS_PAID,
)


@dataclass(frozen=True)
class ReturnedLine:
    """Quantity of one original invoice line being returned."""
    invoice_line_id: int
    quantity: int

    def __post_init__(self):
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int):
            raise ValidationError("Returned quantity must be an integer", field="quantity")
        if self.quantity < 0:
            raise ValidationError("Returned quantity cannot be negative", field="quantity")


@dataclass(frozen=True)
class RestockRequest:
    """Stock increase owed to inventory for one credit note line."""
    product_ref: str
    quantity: int
    credit_note_line: CreditNoteLine


ReturnedLineInput = Union[ReturnedLine, Mapping]


def coerce_returned_line(item: ReturnedLineInput) -> ReturnedLine:
    if isinstance(item, ReturnedLine):
        return item
    if isinstance(item, Mapping):
        try:
            return ReturnedLine(**item)
        except TypeError as exc:
            raise ValidationError(f"Invalid returned line: {exc}") from exc
    raise ValidationError("Returned lines must be ReturnedLine or mappings")


# =============================================================================
# RETURNABLE QUANTITIES
# =============================================================================

def credited_quantities(credit_notes: Iterable[CreditNote]) -> dict[int, int]:
    """Total quantity credited per invoice line across the given notes."""
    credited: dict[int, int] = defaultdict(int)
    for note in credit_notes:
        for line in note.lines:
            credited[line.invoice_line_id] += line.quantity
    return dict(credited)


def remaining_quantities(invoice: Invoice, credit_notes: Iterable[CreditNote]) -> dict[int, int]:
    """Quantity still returnable per invoice line id."""
    credited = credited_quantities(credit_notes)
    return {
        line.id: line.quantity - credited.get(line.id, 0)
        for line in invoice.lines
    }


def is_fully_credited(invoice: Invoice, credit_notes: Iterable[CreditNote]) -> bool:
    remaining = remaining_quantities(invoice, credit_notes)
    return bool(remaining) and all(qty <= 0 for qty in remaining.values())


# =============================================================================
# ISSUANCE
# =============================================================================

def _clean_reason(reason: Optional[str]) -> str:
    cleaned = (reason or "").strip()
    if len(cleaned) < MIN_REASON_LENGTH:
        raise ValidationError(
            f"Reason is required (at least {MIN_REASON_LENGTH} characters)", field="reason"
        )
    if len(cleaned) > MAX_REASON_LENGTH:
        raise ValidationError(
            f"Reason must be at most {MAX_REASON_LENGTH} characters", field="reason"
        )
    return cleaned


def _requested_quantities(returned_lines: Iterable[ReturnedLineInput]) -> dict[int, int]:
    """Sum requested quantities per line, keeping first-seen order and dropping zeros."""
    items = [coerce_returned_line(item) for item in (returned_lines or [])]
    if not items:
        raise ValidationError("At least one returned line is required", field="returned_lines")

    requested: dict[int, int] = {}
    for item in items:
        requested[item.invoice_line_id] = requested.get(item.invoice_line_id, 0) + item.quantity

    requested = {line_id: qty for line_id, qty in requested.items() if qty > 0}
    if not requested:
        raise ValidationError(
            "Select at least one item with a quantity greater than zero", field="returned_lines"
        )
    return requested


def issue_credit_note(
    invoice: Invoice,
    reason: str,
    returned_lines: Iterable[ReturnedLineInput],
    *,
    prior_notes: Iterable[CreditNote],
    issue_date: date,
    number: Optional[str] = None,
    notes: Optional[str] = None,
) -> CreditNote:
    """
    Build a credit note reversing some quantity of an invoice's lines.

    Args:
        invoice: Original invoice (must be issued and not cancelled)
        reason: Why the goods are returned (min 3 characters)
        returned_lines: (invoice_line_id, quantity) pairs
        prior_notes: Every credit note already issued against the invoice
        issue_date: Credit note date
        number: Human-readable credit note number

    Returns:
        Transient CreditNote. The invoice is not modified.

    Raises:
        InvalidStateError: invoice is DRAFT/CANCELLED or already fully credited
        ValidationError: bad reason, no positive quantities, unknown line
        QuantityExceededError: quantity above the remaining returnable amount
    """
    if invoice.status not in CREDITABLE_STATUSES:
        raise InvalidStateError(
            f"Cannot issue a credit note against invoice {invoice.invoice_number} "
            f"with status {invoice.status}",
            status=invoice.status,
            operation="issue_credit_note",
        )

    cleaned_reason = _clean_reason(reason)
    cleaned_notes = (notes or "").strip() or None
    if cleaned_notes and len(cleaned_notes) > MAX_CREDIT_NOTE_NOTES_LENGTH:
        raise ValidationError(
            f"Notes must be at most {MAX_CREDIT_NOTE_NOTES_LENGTH} characters", field="notes"
        )

    requested = _requested_quantities(returned_lines)

    prior_notes = list(prior_notes)
    if is_fully_credited(invoice, prior_notes):
        raise InvalidStateError(
            f"Invoice {invoice.invoice_number} has already been fully credited",
            status=invoice.status,
            operation="issue_credit_note",
        )

    lines_by_id = {line.id: line for line in invoice.lines}
    remaining = remaining_quantities(invoice, prior_notes)

    note_lines = []
    for line_id, quantity in requested.items():
        original = lines_by_id.get(line_id)
        if original is None:
            raise ValidationError(
                f"Invoice line {line_id} does not belong to invoice {invoice.invoice_number}",
                field="invoice_line_id",
            )
        if quantity > remaining[line_id]:
            raise QuantityExceededError(
                invoice_line_id=line_id,
                requested=quantity,
                remaining=remaining[line_id],
            )
        note_lines.append(
            CreditNoteLine(
                invoice_line_id=line_id,
                product_ref=original.product_ref,
                description=original.description,
                quantity=quantity,
                unit_price_cents=original.unit_price_cents,
                line_total_cents=quantity * original.unit_price_cents,
            )
        )

    subtotal = sum(line.line_total_cents for line in note_lines)

    credit_note = CreditNote(
        credit_note_number=number,
        invoice_id=invoice.id,
        customer_id=invoice.customer_id,
        customer_name=invoice.customer_name,
        customer_tax_id=invoice.customer_tax_id,
        reason=cleaned_reason,
        notes=cleaned_notes,
        subtotal_cents=subtotal,
        total_cents=subtotal,
        issue_date=issue_date,
    )
    credit_note.lines = note_lines
    return credit_note


def restock_requests(credit_note: CreditNote) -> list[RestockRequest]:
    """One restock request per returned goods line (lines without a product are services)."""
    return [
        RestockRequest(product_ref=line.product_ref, quantity=line.quantity, credit_note_line=line)
        for line in credit_note.lines
        if line.product_ref
    ]
