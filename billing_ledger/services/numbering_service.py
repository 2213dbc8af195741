# Overview: Service-layer operations for document numbering; allocates invoice and credit note numbers.

from __future__ import annotations

from datetime import date

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..errors import ValidationError
from ..extensions import db
from ..models import DocumentSequence


DOCUMENT_TYPE_INVOICE = "INVOICE"
DOCUMENT_TYPE_CREDIT_NOTE = "CREDIT_NOTE"


def next_document_number(
    *,
    document_type: str,
    period: int,
    prefix: str,
    pad: int = 4,
) -> str:
    """
    Allocate the next document number for a type/year.

    Runs inside the caller's transaction: the counter increment commits or
    rolls back together with the document that consumes it, so rejected
    operations leave no gaps. A first-time insert race is resolved through a
    savepoint instead of rolling back the caller's work.
    """
    if not document_type:
        raise ValidationError("document_type is required", field="document_type")
    if not prefix:
        raise ValidationError("prefix is required", field="prefix")

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.document_type == document_type,
            DocumentSequence.period == period,
        )
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if not result.rowcount:
        try:
            with db.session.begin_nested():
                db.session.add(DocumentSequence(document_type=document_type, period=period, next_number=2))
            return _format(prefix, period, 1, pad)
        except IntegrityError:
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise

    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(document_type=document_type, period=period)
        .scalar()
    )
    return _format(prefix, period, current - 1, pad)


def _format(prefix: str, period: int, number: int, pad: int) -> str:
    return f"{prefix}-{period}-{number:0{pad}d}"


class SequenceNumbering:
    """Numbering collaborator backed by the document_sequences table."""

    def __init__(
        self,
        *,
        invoice_prefix: str = "FAT",
        invoice_pad: int = 5,
        credit_note_prefix: str = "NC",
        credit_note_pad: int = 4,
    ):
        self.invoice_prefix = invoice_prefix
        self.invoice_pad = invoice_pad
        self.credit_note_prefix = credit_note_prefix
        self.credit_note_pad = credit_note_pad

    def next_invoice_number(self, issue_date: date) -> str:
        return next_document_number(
            document_type=DOCUMENT_TYPE_INVOICE,
            period=issue_date.year,
            prefix=self.invoice_prefix,
            pad=self.invoice_pad,
        )

    def next_credit_note_number(self, issue_date: date) -> str:
        return next_document_number(
            document_type=DOCUMENT_TYPE_CREDIT_NOTE,
            period=issue_date.year,
            prefix=self.credit_note_prefix,
            pad=self.credit_note_pad,
        )
