# Overview: Transactional entry points for the billing ledger; composes the aggregate, payment ledger and credit notes with injected collaborators.

"""
Billing Ledger Service

WHY: amount_due, returnable quantities and status are all derived from the
full history of an invoice. Every mutation therefore runs as one unit:
lock the invoice row, apply the pure operation, flush with the version
check, commit. Concurrency failures rerun the whole unit from a fresh load.

COLLABORATORS (constructor-injected, no module-level singletons):
- repository: invoice / credit note storage
- clock: business date and timestamps
- numbering: invoice and credit note numbers
- inventory: optional restock target for returned goods
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Iterable, Optional

from flask import current_app
from sqlalchemy.orm.attributes import flag_modified

from ..collaborators import Clock, InventoryGateway, InvoiceRepository, NumberingProvider, Page
from ..errors import (
    CreditNoteNotFound,
    InventoryRestockFailed,
    InvoiceNotFound,
    LedgerError,
    ValidationError,
)
from ..models import CreditNote, Invoice, RestockInstruction
from . import credit_note_service, invoice_service, payment_service
from .concurrency import run_with_retry


RESTOCK_STATUS_PENDING = "pending"
RESTOCK_STATUS_APPLIED = "applied"
RESTOCK_STATUS_FAILED = "failed"
# Claimed by a dispatcher, gateway call in flight
RESTOCK_STATUS_DISPATCHING = "dispatching"

CLAIMABLE_RESTOCK_STATUSES = (RESTOCK_STATUS_PENDING, RESTOCK_STATUS_FAILED)


@dataclass
class CreditNoteResult:
    """Outcome of issuing a credit note. Restock failures never undo the note."""
    credit_note: CreditNote
    restock_failures: list[InventoryRestockFailed] = field(default_factory=list)

    @property
    def fully_restocked(self) -> bool:
        return not self.restock_failures


class LedgerService:
    def __init__(
        self,
        *,
        repository: InvoiceRepository,
        clock: Clock,
        numbering: NumberingProvider,
        inventory: Optional[InventoryGateway] = None,
        retry_attempts: int = 3,
        retry_backoff: float = 0.1,
    ):
        self.repository = repository
        self.clock = clock
        self.numbering = numbering
        self.inventory = inventory
        self.retry_attempts = retry_attempts
        self.retry_backoff = retry_backoff

    # =========================================================================
    # TRANSACTION PLUMBING
    # =========================================================================

    def _run(self, op: Callable, *, invoice_id: Optional[int] = None):
        def _attempt():
            try:
                return op()
            except LedgerError:
                self.repository.rollback()
                raise

        return run_with_retry(
            _attempt,
            attempts=self.retry_attempts,
            backoff_base=self.retry_backoff,
            invoice_id=invoice_id,
        )

    def _load_for_update(self, invoice_id: int) -> Invoice:
        invoice = self.repository.load_invoice(invoice_id, for_update=True)
        if invoice is None:
            raise InvoiceNotFound(invoice_id)
        return invoice

    def _mutate(
        self,
        invoice_id: int,
        mutation: Callable[[Invoice], Invoice],
        *,
        expected_version: Optional[int] = None,
    ) -> Invoice:
        def _op():
            invoice = self._load_for_update(invoice_id)
            mutation(invoice)
            self.repository.save_invoice(invoice, expected_version=expected_version)
            self.repository.commit()
            return invoice

        return self._run(_op, invoice_id=invoice_id)

    # =========================================================================
    # INVOICE AGGREGATE
    # =========================================================================

    def create_invoice(
        self,
        customer,
        line_items,
        *,
        discount_cents: int = 0,
        tax_cents: int = 0,
        issue_date: Optional[date] = None,
        due_date: Optional[date] = None,
        notes: Optional[str] = None,
        payment_terms: Optional[str] = None,
        source_type: Optional[str] = None,
        source_reference: Optional[str] = None,
    ) -> Invoice:
        """Create and persist a DRAFT invoice with the next invoice number."""
        issue_date = issue_date or self.clock.today()

        def _op():
            invoice = invoice_service.create_invoice(
                customer,
                line_items,
                discount_cents,
                tax_cents,
                issue_date,
                due_date,
                notes=notes,
                payment_terms=payment_terms,
                source_type=source_type,
                source_reference=source_reference,
            )
            invoice.invoice_number = self.numbering.next_invoice_number(issue_date)
            self.repository.save_invoice(invoice)
            self.repository.commit()
            return invoice

        return self._run(_op)

    def add_line_item(self, invoice_id: int, line, *, expected_version: Optional[int] = None) -> Invoice:
        return self._mutate(
            invoice_id,
            lambda invoice: invoice_service.add_line_item(invoice, line),
            expected_version=expected_version,
        )

    def revise_draft(self, invoice_id: int, *, expected_version: Optional[int] = None, **changes) -> Invoice:
        return self._mutate(
            invoice_id,
            lambda invoice: invoice_service.revise_draft(invoice, **changes),
            expected_version=expected_version,
        )

    def issue_invoice(self, invoice_id: int, *, expected_version: Optional[int] = None) -> Invoice:
        return self._mutate(
            invoice_id,
            lambda invoice: invoice_service.issue_invoice(invoice, issued_at=self.clock.now()),
            expected_version=expected_version,
        )

    # =========================================================================
    # PAYMENT LEDGER
    # =========================================================================

    def record_payment(self, invoice_id: int, payment, *, expected_version: Optional[int] = None) -> Invoice:
        """
        Apply a payment under the invoice lock.

        The amount-due check and the append happen in the same transaction,
        so concurrent payments cannot jointly overpay.
        """
        return self._mutate(
            invoice_id,
            lambda invoice: payment_service.add_payment(invoice, payment, today=self.clock.today()),
            expected_version=expected_version,
        )

    def cancel_invoice(self, invoice_id: int, *, expected_version: Optional[int] = None) -> Invoice:
        return self._mutate(
            invoice_id,
            lambda invoice: payment_service.cancel_invoice(invoice, cancelled_at=self.clock.now()),
            expected_version=expected_version,
        )

    def reconcile_overdue(self, invoice_id: int, *, expected_version: Optional[int] = None) -> Invoice:
        return self._mutate(
            invoice_id,
            lambda invoice: payment_service.reconcile_overdue(invoice, self.clock.today()),
            expected_version=expected_version,
        )

    def reconcile_all_overdue(self) -> list[Invoice]:
        """
        Promote every open invoice past its due date to OVERDUE.

        Each invoice is re-checked under its own lock; invoices paid or
        cancelled since the scan are left alone.
        """
        today = self.clock.today()
        candidate_ids = [invoice.id for invoice in self.repository.list_overdue_candidates(today)]
        self.repository.rollback()

        promoted = []
        for invoice_id in candidate_ids:
            invoice = self.reconcile_overdue(invoice_id)
            if invoice.status == invoice_service.INVOICE_STATUS_OVERDUE:
                promoted.append(invoice)
        return promoted

    # =========================================================================
    # CREDIT NOTES
    # =========================================================================

    def issue_credit_note(
        self,
        invoice_id: int,
        reason: str,
        returned_lines: Iterable,
        *,
        notes: Optional[str] = None,
    ) -> CreditNoteResult:
        """
        Issue a credit note and dispatch its restock instructions.

        Validation against prior credit notes, numbering and creation are
        atomic per invoice: the invoice row is locked and its version bumped
        (via credited_total_cents) so concurrent notes conflict. Restocking
        happens after commit; failures are recorded and returned.
        """
        returned_lines = list(returned_lines or [])

        def _op():
            invoice = self._load_for_update(invoice_id)
            prior_notes = self.repository.load_credit_notes_for_invoice(invoice.id)
            today = self.clock.today()

            note = credit_note_service.issue_credit_note(
                invoice,
                reason,
                returned_lines,
                prior_notes=prior_notes,
                issue_date=today,
                notes=notes,
            )
            note.credit_note_number = self.numbering.next_credit_note_number(today)
            note.restock_instructions = [
                RestockInstruction(
                    credit_note_line=request.credit_note_line,
                    product_ref=request.product_ref,
                    quantity=request.quantity,
                    status=RESTOCK_STATUS_PENDING,
                    attempts=0,
                )
                for request in credit_note_service.restock_requests(note)
            ]
            self.repository.save_credit_note(note)

            invoice.credited_total_cents = (invoice.credited_total_cents or 0) + note.total_cents
            # Zero-value notes still change the returnable quantities; force the version bump
            flag_modified(invoice, "credited_total_cents")
            self.repository.save_invoice(invoice)
            self.repository.commit()
            return note

        note = self._run(_op, invoice_id=invoice_id)
        failures = self._dispatch_restocks(note.restock_instructions)
        return CreditNoteResult(credit_note=note, restock_failures=failures)

    def retry_failed_restocks(self) -> list[InventoryRestockFailed]:
        """Re-dispatch pending and failed restock instructions."""
        instructions = self.repository.list_restock_instructions(CLAIMABLE_RESTOCK_STATUSES)
        return self._dispatch_restocks(instructions)

    def _dispatch_restocks(self, instructions: list[RestockInstruction]) -> list[InventoryRestockFailed]:
        """
        Send instructions to inventory, one committed claim per instruction.

        An instruction is moved to DISPATCHING (and its attempt counted) by a
        conditional update before the gateway is called. A concurrent
        dispatcher that loses the claim skips it, so stock is never restored
        twice for the same line.
        """
        if self.inventory is None or not instructions:
            return []

        failures = []
        for instruction in instructions:
            claimed = self.repository.claim_restock_instruction(
                instruction.id,
                from_statuses=CLAIMABLE_RESTOCK_STATUSES,
                to_status=RESTOCK_STATUS_DISPATCHING,
            )
            self.repository.commit()
            if not claimed:
                continue

            try:
                self.inventory.restock(instruction.product_ref, instruction.quantity)
            except Exception as exc:
                # Inventory failures must not block the financial record
                reason = str(exc) or exc.__class__.__name__
                instruction.status = RESTOCK_STATUS_FAILED
                instruction.failure_reason = reason[:255]
                failures.append(
                    InventoryRestockFailed(
                        credit_note_id=instruction.credit_note_id,
                        product_ref=instruction.product_ref,
                        quantity=instruction.quantity,
                        reason=reason,
                    )
                )
                current_app.logger.warning(
                    "Restock of %s x %s for credit note %s failed: %s",
                    instruction.quantity, instruction.product_ref, instruction.credit_note_id, reason,
                )
            else:
                instruction.status = RESTOCK_STATUS_APPLIED
                instruction.failure_reason = None
                instruction.applied_at = self.clock.now()
            self.repository.save_restock_instruction(instruction)
            self.repository.commit()

        return failures

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get_invoice(self, invoice_id: int) -> Invoice:
        invoice = self.repository.load_invoice(invoice_id)
        if invoice is None:
            raise InvoiceNotFound(invoice_id)
        return invoice

    def get_credit_note(self, credit_note_id: int) -> CreditNote:
        note = self.repository.load_credit_note(credit_note_id)
        if note is None:
            raise CreditNoteNotFound(credit_note_id)
        return note

    def list_credit_notes(self, invoice_id: int) -> list[CreditNote]:
        self.get_invoice(invoice_id)
        return self.repository.load_credit_notes_for_invoice(invoice_id)

    def remaining_returnable(self, invoice_id: int) -> dict[int, int]:
        """Quantity still returnable per invoice line id."""
        invoice = self.get_invoice(invoice_id)
        notes = self.repository.load_credit_notes_for_invoice(invoice_id)
        return credit_note_service.remaining_quantities(invoice, notes)

    def balance_summary(self, invoice_id: int) -> dict:
        invoice = self.get_invoice(invoice_id)
        summary = payment_service.payment_summary(invoice)
        summary["is_past_due"] = payment_service.is_past_due(invoice, self.clock.today())
        return summary

    def list_invoices(
        self,
        *,
        status: Optional[str] = None,
        customer_id: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Page[Invoice]:
        """Filtered, paginated invoice listing. status "all" means no status filter."""
        if status == "all":
            status = None
        if status is not None and status not in invoice_service.INVOICE_STATUSES:
            raise ValidationError(f"Unknown invoice status: {status}", field="status")
        if start_date and end_date and start_date > end_date:
            raise ValidationError("start_date cannot be after end_date", field="start_date")
        return self.repository.list_invoices(
            status=status,
            customer_id=customer_id,
            start_date=start_date,
            end_date=end_date,
            page=page,
            limit=limit,
        )

    def list_all_credit_notes(
        self, invoice_id: Optional[int] = None, *, page: int = 1, limit: int = 20
    ) -> Page[CreditNote]:
        return self.repository.list_all_credit_notes(invoice_id=invoice_id, page=page, limit=limit)

    def list_overdue_invoices(self, *, page: int = 1, limit: int = 20) -> Page[Invoice]:
        """
        Past-due invoices as of the clock's business date. Read-only: unlike
        reconcile_all_overdue this never changes a status.
        """
        return self.repository.list_overdue_invoices(self.clock.today(), page=page, limit=limit)
