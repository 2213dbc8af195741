# Overview: Invoice aggregate; validates line items and keeps derived totals consistent with line data.

"""
Invoice Aggregate

WHY: Every amount on an invoice is derived from its lines plus the
invoice-level discount and tax. Keeping that arithmetic in one place (and
free of I/O) is what lets the payment ledger and credit notes trust the
stored totals.

INVARIANTS:
- subtotal = sum(line.total)
- total = subtotal - discount + tax, and total >= 0
- amount_due = total - amount_paid
- Lines are append-only while DRAFT, frozen once issued
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, Mapping, NamedTuple, Optional, Union

from ..errors import InvalidStateError, ValidationError
from ..models import Invoice, InvoiceLine


# =============================================================================
# INVOICE STATUS (CONSTANTS)
# =============================================================================

INVOICE_STATUS_DRAFT = "draft"
INVOICE_STATUS_SENT = "sent"
INVOICE_STATUS_PARTIAL = "partial"
INVOICE_STATUS_PAID = "paid"
INVOICE_STATUS_OVERDUE = "overdue"
INVOICE_STATUS_CANCELLED = "cancelled"

INVOICE_STATUSES = (
    INVOICE_STATUS_DRAFT,
    INVOICE_STATUS_SENT,
    INVOICE_STATUS_PARTIAL,
    INVOICE_STATUS_PAID,
    INVOICE_STATUS_OVERDUE,
    INVOICE_STATUS_CANCELLED,
)
TERMINAL_STATUSES = (INVOICE_STATUS_PAID, INVOICE_STATUS_CANCELLED)


# =============================================================================
# LIMITS
# =============================================================================

# Maximum price: 9,999,999.99 (999,999,999 cents)
MAX_PRICE_CENTS = 999_999_999
MAX_INVOICE_LINES = 100
MAX_DESCRIPTION_LENGTH = 500
MAX_NOTES_LENGTH = 1000
MAX_PAYMENT_TERMS_LENGTH = 200


def _require_int(value, field: str) -> int:
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer", field=field)
    return value


def _clean_text(value: Optional[str], field: str, max_length: int) -> Optional[str]:
    if value is None:
        return None
    cleaned = str(value).strip()
    if len(cleaned) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters", field=field)
    return cleaned or None


# =============================================================================
# INPUT VALUE TYPES
# =============================================================================

@dataclass(frozen=True)
class LineItemData:
    """Validated line item input. Invalid combinations cannot be constructed."""
    description: str
    quantity: int
    unit_price_cents: int
    discount_cents: int = 0
    product_ref: Optional[str] = None

    def __post_init__(self):
        description = (self.description or "").strip()
        if not description:
            raise ValidationError("Line description is required", field="description")
        if len(description) > MAX_DESCRIPTION_LENGTH:
            raise ValidationError(
                f"Line description must be at most {MAX_DESCRIPTION_LENGTH} characters",
                field="description",
            )
        object.__setattr__(self, "description", description)

        quantity = _require_int(self.quantity, "quantity")
        if quantity < 1:
            raise ValidationError("Line quantity must be at least 1", field="quantity")

        unit_price = _require_int(self.unit_price_cents, "unit_price_cents")
        if unit_price < 0:
            raise ValidationError("Line unit price cannot be negative", field="unit_price_cents")
        if unit_price > MAX_PRICE_CENTS:
            raise ValidationError(
                f"Line unit price cannot exceed {MAX_PRICE_CENTS} cents", field="unit_price_cents"
            )

        discount = _require_int(self.discount_cents, "discount_cents")
        if discount < 0:
            raise ValidationError("Line discount cannot be negative", field="discount_cents")
        if discount > quantity * unit_price:
            raise ValidationError(
                "Line discount cannot exceed quantity x unit price", field="discount_cents"
            )

        if self.product_ref is not None:
            object.__setattr__(self, "product_ref", str(self.product_ref).strip() or None)

    @property
    def gross_cents(self) -> int:
        return self.quantity * self.unit_price_cents

    @property
    def line_total_cents(self) -> int:
        return self.gross_cents - self.discount_cents


@dataclass(frozen=True)
class CustomerSnapshot:
    """Customer fields denormalized onto the invoice at creation time."""
    name: str = ""
    customer_id: Optional[str] = None
    tax_id: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "name", _clean_text(self.name, "customer_name", 200) or "")
        object.__setattr__(self, "tax_id", _clean_text(self.tax_id, "customer_tax_id", 20))
        object.__setattr__(self, "address", _clean_text(self.address, "customer_address", 500))


class InvoiceTotals(NamedTuple):
    subtotal_cents: int
    total_cents: int


LineInput = Union[LineItemData, Mapping]
CustomerInput = Union[CustomerSnapshot, Mapping]


def coerce_line_item(item: LineInput) -> LineItemData:
    if isinstance(item, LineItemData):
        return item
    if isinstance(item, Mapping):
        try:
            return LineItemData(**item)
        except TypeError as exc:
            raise ValidationError(f"Invalid line item: {exc}") from exc
    raise ValidationError("Line items must be LineItemData or mappings")


def coerce_customer(customer: Optional[CustomerInput]) -> CustomerSnapshot:
    if customer is None:
        return CustomerSnapshot()
    if isinstance(customer, CustomerSnapshot):
        return customer
    if isinstance(customer, Mapping):
        try:
            return CustomerSnapshot(**customer)
        except TypeError as exc:
            raise ValidationError(f"Invalid customer: {exc}") from exc
    raise ValidationError("Customer must be a CustomerSnapshot or mapping")


# =============================================================================
# TOTALS
# =============================================================================

def compute_totals(invoice: Invoice) -> InvoiceTotals:
    """
    Derive subtotal and total from line data. Pure: reads, never writes.
    """
    subtotal = sum(line.line_total_cents for line in invoice.lines)
    total = subtotal - (invoice.discount_cents or 0) + (invoice.tax_cents or 0)
    return InvoiceTotals(subtotal_cents=subtotal, total_cents=total)


def apply_totals(invoice: Invoice) -> Invoice:
    """Store computed totals and the resulting amount due on the invoice."""
    totals = compute_totals(invoice)
    if totals.total_cents < 0:
        raise ValidationError("Invoice total cannot be negative", field="discount_cents")
    invoice.subtotal_cents = totals.subtotal_cents
    invoice.total_cents = totals.total_cents
    invoice.amount_due_cents = totals.total_cents - (invoice.amount_paid_cents or 0)
    return invoice


def _check_adjustments(discount_cents: int, tax_cents: int) -> None:
    if _require_int(discount_cents, "discount_cents") < 0:
        raise ValidationError("Invoice discount cannot be negative", field="discount_cents")
    if _require_int(tax_cents, "tax_cents") < 0:
        raise ValidationError("Invoice tax cannot be negative", field="tax_cents")


def _check_dates(issue_date: date, due_date: date) -> None:
    if not isinstance(issue_date, date):
        raise ValidationError("issue_date must be a date", field="issue_date")
    if not isinstance(due_date, date):
        raise ValidationError("due_date must be a date", field="due_date")
    if due_date < issue_date:
        raise ValidationError("due_date cannot be before issue_date", field="due_date")


def _build_line(data: LineItemData, position: int) -> InvoiceLine:
    return InvoiceLine(
        position=position,
        product_ref=data.product_ref,
        description=data.description,
        quantity=data.quantity,
        unit_price_cents=data.unit_price_cents,
        discount_cents=data.discount_cents,
        line_total_cents=data.line_total_cents,
    )


# =============================================================================
# AGGREGATE OPERATIONS
# =============================================================================

def create_invoice(
    customer: Optional[CustomerInput],
    line_items: Iterable[LineInput],
    discount_cents: int = 0,
    tax_cents: int = 0,
    issue_date: Optional[date] = None,
    due_date: Optional[date] = None,
    *,
    number: Optional[str] = None,
    notes: Optional[str] = None,
    payment_terms: Optional[str] = None,
    source_type: Optional[str] = None,
    source_reference: Optional[str] = None,
) -> Invoice:
    """
    Build a new DRAFT invoice with computed totals.

    The returned invoice is transient; persisting it is the caller's job.

    Raises:
        ValidationError: empty or oversized line list, invalid line,
            negative discount/tax, negative total, due date before issue date
    """
    lines = [coerce_line_item(item) for item in (line_items or [])]
    if not lines:
        raise ValidationError("Invoice must have at least one line item", field="line_items")
    if len(lines) > MAX_INVOICE_LINES:
        raise ValidationError(
            f"Invoice cannot have more than {MAX_INVOICE_LINES} line items", field="line_items"
        )

    _check_adjustments(discount_cents, tax_cents)
    if issue_date is None:
        raise ValidationError("issue_date is required", field="issue_date")
    if due_date is None:
        due_date = issue_date
    _check_dates(issue_date, due_date)

    snapshot = coerce_customer(customer)

    invoice = Invoice(
        invoice_number=number,
        customer_id=snapshot.customer_id,
        customer_name=snapshot.name,
        customer_tax_id=snapshot.tax_id,
        customer_email=snapshot.email,
        customer_phone=snapshot.phone,
        customer_address=snapshot.address,
        source_type=_clean_text(source_type, "source_type", 32),
        source_reference=_clean_text(source_reference, "source_reference", 64),
        discount_cents=discount_cents,
        tax_cents=tax_cents,
        amount_paid_cents=0,
        credited_total_cents=0,
        status=INVOICE_STATUS_DRAFT,
        issue_date=issue_date,
        due_date=due_date,
        notes=_clean_text(notes, "notes", MAX_NOTES_LENGTH),
        payment_terms=_clean_text(payment_terms, "payment_terms", MAX_PAYMENT_TERMS_LENGTH),
    )
    invoice.lines = [_build_line(data, position) for position, data in enumerate(lines, start=1)]

    return apply_totals(invoice)


def _require_draft(invoice: Invoice, operation: str) -> None:
    if invoice.status != INVOICE_STATUS_DRAFT:
        raise InvalidStateError(
            f"Cannot {operation} invoice {invoice.invoice_number} with status {invoice.status}",
            status=invoice.status,
            operation=operation,
        )


def add_line_item(invoice: Invoice, line: LineInput) -> Invoice:
    """
    Append a line to a DRAFT invoice.

    Raises:
        InvalidStateError: invoice already issued
        ValidationError: invalid line or line limit reached
    """
    _require_draft(invoice, "add a line to")
    data = coerce_line_item(line)
    if len(invoice.lines) >= MAX_INVOICE_LINES:
        raise ValidationError(
            f"Invoice cannot have more than {MAX_INVOICE_LINES} line items", field="line_items"
        )

    position = max((existing.position for existing in invoice.lines), default=0) + 1
    invoice.lines.append(_build_line(data, position))
    return apply_totals(invoice)


_UNSET = object()


def revise_draft(
    invoice: Invoice,
    *,
    discount_cents=_UNSET,
    tax_cents=_UNSET,
    due_date=_UNSET,
    notes=_UNSET,
    payment_terms=_UNSET,
) -> Invoice:
    """
    Edit header fields of a DRAFT invoice. Omitted fields are left alone.

    Validation happens before any field is written, so a rejected revision
    leaves the invoice untouched.
    """
    _require_draft(invoice, "revise")

    new_discount = invoice.discount_cents if discount_cents is _UNSET else discount_cents
    new_tax = invoice.tax_cents if tax_cents is _UNSET else tax_cents
    new_due = invoice.due_date if due_date is _UNSET else due_date
    _check_adjustments(new_discount, new_tax)
    _check_dates(invoice.issue_date, new_due)

    subtotal = compute_totals(invoice).subtotal_cents
    if subtotal - new_discount + new_tax < 0:
        raise ValidationError("Invoice total cannot be negative", field="discount_cents")

    new_notes = invoice.notes if notes is _UNSET else _clean_text(notes, "notes", MAX_NOTES_LENGTH)
    new_terms = (
        invoice.payment_terms
        if payment_terms is _UNSET
        else _clean_text(payment_terms, "payment_terms", MAX_PAYMENT_TERMS_LENGTH)
    )

    invoice.discount_cents = new_discount
    invoice.tax_cents = new_tax
    invoice.due_date = new_due
    invoice.notes = new_notes
    invoice.payment_terms = new_terms
    return apply_totals(invoice)


def issue_invoice(invoice: Invoice, *, issued_at: Optional[datetime] = None) -> Invoice:
    """
    Transition DRAFT -> SENT. Lines are frozen from here on.

    Raises:
        InvalidStateError: invoice is not DRAFT
    """
    _require_draft(invoice, "issue")
    invoice.status = INVOICE_STATUS_SENT
    invoice.issued_at = issued_at
    return invoice
