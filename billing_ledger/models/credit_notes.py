from __future__ import annotations

from ..extensions import db
from billing_ledger.time_utils import to_iso_date, to_utc_z


class CreditNote(db.Model):
    """
    Credit note reversing part or all of an issued invoice.

    WHY: Returned goods must be documented against the original invoice
    without rewriting it. Credit notes reference the invoice and its lines;
    they never mutate invoice lines, payments or status.

    IMMUTABLE: Created once, never updated or deleted. A cancelled return is
    a separate, new transaction.
    """
    __tablename__ = "credit_notes"
    __table_args__ = (
        db.UniqueConstraint("credit_note_number", name="uq_credit_notes_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    credit_note_number = db.Column(db.String(64), nullable=False)

    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)

    # Customer snapshot copied from the invoice
    customer_id = db.Column(db.String(64), nullable=True)
    customer_name = db.Column(db.String(200), nullable=False, default="")
    customer_tax_id = db.Column(db.String(20), nullable=True)

    reason = db.Column(db.String(500), nullable=False)
    notes = db.Column(db.String(500), nullable=True)

    # Amounts (all in cents)
    subtotal_cents = db.Column(db.BigInteger, nullable=False)
    total_cents = db.Column(db.BigInteger, nullable=False)

    issue_date = db.Column(db.Date, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    invoice = db.relationship("Invoice", backref=db.backref("credit_notes", lazy=True, order_by="CreditNote.id"))
    lines = db.relationship(
        "CreditNoteLine",
        back_populates="credit_note",
        order_by="CreditNoteLine.id",
        cascade="all, delete-orphan",
    )
    restock_instructions = db.relationship(
        "RestockInstruction",
        back_populates="credit_note",
        order_by="RestockInstruction.id",
        cascade="all, delete-orphan",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "credit_note_number": self.credit_note_number,
            "invoice_id": self.invoice_id,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "customer_tax_id": self.customer_tax_id,
            "reason": self.reason,
            "notes": self.notes,
            "subtotal_cents": self.subtotal_cents,
            "total_cents": self.total_cents,
            "issue_date": to_iso_date(self.issue_date),
            "created_at": to_utc_z(self.created_at),
        }


class CreditNoteLine(db.Model):
    """Returned quantity of one original invoice line, priced at the original unit price."""
    __tablename__ = "credit_note_lines"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_credit_note_lines_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    credit_note_id = db.Column(db.Integer, db.ForeignKey("credit_notes.id"), nullable=False, index=True)
    invoice_line_id = db.Column(db.Integer, db.ForeignKey("invoice_lines.id"), nullable=False, index=True)

    product_ref = db.Column(db.String(64), nullable=True)
    description = db.Column(db.String(500), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.BigInteger, nullable=False)
    line_total_cents = db.Column(db.BigInteger, nullable=False)

    credit_note = db.relationship("CreditNote", back_populates="lines")
    invoice_line = db.relationship("InvoiceLine")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "credit_note_id": self.credit_note_id,
            "invoice_line_id": self.invoice_line_id,
            "product_ref": self.product_ref,
            "description": self.description,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }


class RestockInstruction(db.Model):
    """
    Stock increase requested by a credit note line.

    WHY: The financial record must not be blocked by an inventory-side
    failure. Instructions are written with the credit note, dispatched after
    commit, and keep their outcome for manual reconciliation.

    STATUSES: pending, dispatching, applied, failed
    """
    __tablename__ = "restock_instructions"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    credit_note_id = db.Column(db.Integer, db.ForeignKey("credit_notes.id"), nullable=False, index=True)
    credit_note_line_id = db.Column(db.Integer, db.ForeignKey("credit_note_lines.id"), nullable=False)

    product_ref = db.Column(db.String(64), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)

    # pending -> dispatching -> applied | failed; failed is retried by the next dispatch
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    attempts = db.Column(db.Integer, nullable=False, default=0)
    failure_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    applied_at = db.Column(db.DateTime(timezone=True), nullable=True)

    credit_note = db.relationship("CreditNote", back_populates="restock_instructions")
    credit_note_line = db.relationship("CreditNoteLine")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "credit_note_id": self.credit_note_id,
            "credit_note_line_id": self.credit_note_line_id,
            "product_ref": self.product_ref,
            "quantity": self.quantity,
            "status": self.status,
            "attempts": self.attempts,
            "failure_reason": self.failure_reason,
            "created_at": to_utc_z(self.created_at),
            "applied_at": to_utc_z(self.applied_at) if self.applied_at else None,
        }
