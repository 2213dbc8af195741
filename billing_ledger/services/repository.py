# Overview: SQLAlchemy-backed persistence for invoices and credit notes.

from __future__ import annotations

from datetime import date
from typing import Iterable, Optional

from sqlalchemy import update
from sqlalchemy.orm import selectinload

from ..collaborators import Page
from ..errors import ConcurrencyConflict
from ..extensions import db
from ..models import CreditNote, Invoice, RestockInstruction
from .concurrency import lock_for_update


DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


class SqlAlchemyInvoiceRepository:
    """
    Invoice/credit-note storage on the Flask-SQLAlchemy session.

    Saves flush but never commit; the ledger service owns the transaction.
    Optimistic locking is delegated to the mapper's version_id_col, so a
    concurrent writer makes the flush raise StaleDataError.
    """

    def load_invoice(self, invoice_id: int, *, for_update: bool = False) -> Optional[Invoice]:
        query = (
            db.session.query(Invoice)
            .options(selectinload(Invoice.lines), selectinload(Invoice.payments))
            .filter(Invoice.id == invoice_id)
        )
        if for_update:
            query = lock_for_update(query)
        return query.first()

    def save_invoice(self, invoice: Invoice, *, expected_version: Optional[int] = None) -> Invoice:
        if expected_version is not None and invoice.version_id != expected_version:
            raise ConcurrencyConflict(
                invoice.id,
                expected_version=expected_version,
                actual_version=invoice.version_id,
            )
        db.session.add(invoice)
        db.session.flush()
        return invoice

    def load_credit_notes_for_invoice(self, invoice_id: int) -> list[CreditNote]:
        return (
            db.session.query(CreditNote)
            .options(selectinload(CreditNote.lines))
            .filter(CreditNote.invoice_id == invoice_id)
            .order_by(CreditNote.id)
            .all()
        )

    def load_credit_note(self, credit_note_id: int) -> Optional[CreditNote]:
        return (
            db.session.query(CreditNote)
            .options(selectinload(CreditNote.lines), selectinload(CreditNote.restock_instructions))
            .filter(CreditNote.id == credit_note_id)
            .first()
        )

    def save_credit_note(self, note: CreditNote) -> CreditNote:
        db.session.add(note)
        db.session.flush()
        return note

    # =========================================================================
    # LISTINGS
    # =========================================================================

    def list_invoices(
        self,
        *,
        status: Optional[str] = None,
        customer_id: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> Page[Invoice]:
        """Newest first. The issue-date window is inclusive on both ends."""
        query = db.session.query(Invoice)
        if status:
            query = query.filter(Invoice.status == status)
        if customer_id:
            query = query.filter(Invoice.customer_id == customer_id)
        if start_date:
            query = query.filter(Invoice.issue_date >= start_date)
        if end_date:
            query = query.filter(Invoice.issue_date <= end_date)
        query = query.order_by(Invoice.created_at.desc(), Invoice.id.desc())
        return _paginate(query, page, limit)

    def list_all_credit_notes(
        self, *, invoice_id: Optional[int] = None, page: int = 1, limit: int = DEFAULT_PAGE_SIZE
    ) -> Page[CreditNote]:
        query = db.session.query(CreditNote).options(selectinload(CreditNote.lines))
        if invoice_id is not None:
            query = query.filter(CreditNote.invoice_id == invoice_id)
        query = query.order_by(CreditNote.created_at.desc(), CreditNote.id.desc())
        return _paginate(query, page, limit)

    def list_overdue_invoices(self, today: date, *, page: int = 1, limit: int = DEFAULT_PAGE_SIZE) -> Page[Invoice]:
        """Past-due invoices with a balance, whether or not already promoted. Oldest due date first."""
        query = (
            db.session.query(Invoice)
            .filter(
                Invoice.status.in_(["sent", "partial", "overdue"]),
                Invoice.due_date < today,
                Invoice.amount_due_cents > 0,
            )
            .order_by(Invoice.due_date, Invoice.id)
        )
        return _paginate(query, page, limit)

    def list_overdue_candidates(self, today: date) -> list[Invoice]:
        """Open invoices past their due date that still carry a balance."""
        return (
            db.session.query(Invoice)
            .filter(
                Invoice.status.in_(["sent", "partial"]),
                Invoice.due_date < today,
                Invoice.amount_due_cents > 0,
            )
            .order_by(Invoice.due_date, Invoice.id)
            .all()
        )

    def list_restock_instructions(self, statuses: Iterable[str]) -> list[RestockInstruction]:
        return (
            db.session.query(RestockInstruction)
            .filter(RestockInstruction.status.in_(list(statuses)))
            .order_by(RestockInstruction.id)
            .all()
        )

    def claim_restock_instruction(
        self, instruction_id: int, *, from_statuses: Iterable[str], to_status: str
    ) -> bool:
        """
        Move an instruction to to_status only if it is still in one of
        from_statuses. Counts the attempt. Returns False when another
        dispatcher got there first.
        """
        result = db.session.execute(
            update(RestockInstruction)
            .where(
                RestockInstruction.id == instruction_id,
                RestockInstruction.status.in_(list(from_statuses)),
            )
            .values(status=to_status, attempts=RestockInstruction.attempts + 1)
        )
        return result.rowcount == 1

    def save_restock_instruction(self, instruction: RestockInstruction) -> RestockInstruction:
        db.session.add(instruction)
        db.session.flush()
        return instruction

    def commit(self) -> None:
        db.session.commit()

    def rollback(self) -> None:
        db.session.rollback()


def _paginate(query, page, limit) -> Page:
    page = max(1, int(page or 1))
    limit = max(1, min(MAX_PAGE_SIZE, int(limit or DEFAULT_PAGE_SIZE)))
    total = query.count()
    items = query.offset((page - 1) * limit).limit(limit).all()
    return Page(items=items, page=page, limit=limit, total=total)
