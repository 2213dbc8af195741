from __future__ import annotations

from ..extensions import db
from billing_ledger.time_utils import to_iso_date, to_utc_z


class Invoice(db.Model):
    """
    Invoice document model.

    WHY: An invoice is a billing obligation tracked over time. Totals and
    balances are stored and maintained on every mutation (inside the same
    transaction) so the row lock + version check guard all of them at once.

    CUSTOMER SNAPSHOT: customer fields are copied at creation time. The ledger
    never re-reads customer master data.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.UniqueConstraint("invoice_number", name="uq_invoices_number"),
        db.CheckConstraint("total_cents >= 0", name="ck_invoices_total_non_negative"),
        db.CheckConstraint("amount_due_cents >= 0", name="ck_invoices_amount_due_non_negative"),
        # Overdue scans filter by status and due date
        db.Index("ix_invoices_status_due_date", "status", "due_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable document number (e.g., "FAT-2026-00001")
    invoice_number = db.Column(db.String(64), nullable=False)

    # Customer snapshot
    customer_id = db.Column(db.String(64), nullable=True, index=True)
    customer_name = db.Column(db.String(200), nullable=False, default="")
    customer_tax_id = db.Column(db.String(20), nullable=True)
    customer_email = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(64), nullable=True)
    customer_address = db.Column(db.String(500), nullable=True)

    # Originating document (sale, order)
    source_type = db.Column(db.String(32), nullable=True)
    source_reference = db.Column(db.String(64), nullable=True, index=True)

    # Amounts (all in cents)
    subtotal_cents = db.Column(db.BigInteger, nullable=False, default=0)
    discount_cents = db.Column(db.BigInteger, nullable=False, default=0)
    tax_cents = db.Column(db.BigInteger, nullable=False, default=0)
    total_cents = db.Column(db.BigInteger, nullable=False, default=0)
    amount_paid_cents = db.Column(db.BigInteger, nullable=False, default=0)
    amount_due_cents = db.Column(db.BigInteger, nullable=False, default=0)
    # Running sum of credit note totals (parallel ledger, does not touch amount due)
    credited_total_cents = db.Column(db.BigInteger, nullable=False, default=0)

    # Lifecycle status: draft, sent, partial, paid, overdue, cancelled
    status = db.Column(db.String(16), nullable=False, default="draft", index=True)

    issue_date = db.Column(db.Date, nullable=False)
    due_date = db.Column(db.Date, nullable=False)
    paid_date = db.Column(db.Date, nullable=True)

    notes = db.Column(db.String(1000), nullable=True)
    payment_terms = db.Column(db.String(200), nullable=True)

    # Timestamps
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True, onupdate=db.func.now())
    issued_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    lines = db.relationship(
        "InvoiceLine",
        back_populates="invoice",
        order_by="InvoiceLine.position",
        cascade="all, delete-orphan",
    )
    payments = db.relationship(
        "InvoicePayment",
        back_populates="invoice",
        order_by="InvoicePayment.id",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "customer_tax_id": self.customer_tax_id,
            "customer_email": self.customer_email,
            "customer_phone": self.customer_phone,
            "customer_address": self.customer_address,
            "source_type": self.source_type,
            "source_reference": self.source_reference,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "amount_paid_cents": self.amount_paid_cents,
            "amount_due_cents": self.amount_due_cents,
            "credited_total_cents": self.credited_total_cents,
            "status": self.status,
            "issue_date": to_iso_date(self.issue_date),
            "due_date": to_iso_date(self.due_date),
            "paid_date": to_iso_date(self.paid_date),
            "notes": self.notes,
            "payment_terms": self.payment_terms,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at) if self.updated_at else None,
            "issued_at": to_utc_z(self.issued_at) if self.issued_at else None,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "version_id": self.version_id,
        }


class InvoiceLine(db.Model):
    """Individual line items on an invoice. Frozen once the invoice is issued."""
    __tablename__ = "invoice_lines"
    __table_args__ = (
        db.UniqueConstraint("invoice_id", "position", name="uq_invoice_lines_invoice_position"),
        db.CheckConstraint("quantity >= 1", name="ck_invoice_lines_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False)

    # Opaque product reference used for restocking (None for services)
    product_ref = db.Column(db.String(64), nullable=True)
    description = db.Column(db.String(500), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.BigInteger, nullable=False)
    discount_cents = db.Column(db.BigInteger, nullable=False, default=0)
    line_total_cents = db.Column(db.BigInteger, nullable=False)

    invoice = db.relationship("Invoice", back_populates="lines")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "position": self.position,
            "product_ref": self.product_ref,
            "description": self.description,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "discount_cents": self.discount_cents,
            "line_total_cents": self.line_total_cents,
        }


class InvoicePayment(db.Model):
    """
    Payment applied to an invoice.

    IMMUTABLE: Records are never updated or deleted. Corrections happen via a
    new offsetting payment or a credit note.
    """
    __tablename__ = "invoice_payments"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_invoice_payments_amount_positive"),
        db.Index("ix_invoice_payments_invoice_paid_on", "invoice_id", "paid_on"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)

    amount_cents = db.Column(db.BigInteger, nullable=False)

    # cash, card, bank_transfer, mobile_money, other
    method = db.Column(db.String(32), nullable=False, index=True)

    paid_on = db.Column(db.Date, nullable=False)

    # Reference info (bank reference, mobile-money transaction id, etc.)
    reference = db.Column(db.String(100), nullable=True)
    notes = db.Column(db.String(500), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    invoice = db.relationship("Invoice", back_populates="payments")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "amount_cents": self.amount_cents,
            "method": self.method,
            "paid_on": to_iso_date(self.paid_on),
            "reference": self.reference,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }
