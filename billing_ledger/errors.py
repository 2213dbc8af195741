# Overview: Error kinds raised by the billing ledger; each carries the data needed to explain a rejection.

from __future__ import annotations


class LedgerError(Exception):
    """Base class for every billing ledger rejection."""

    kind = "ledger_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def details(self) -> dict:
        return {}

    def to_dict(self) -> dict:
        return {"error": self.kind, "message": self.message, **self.details}


class ValidationError(LedgerError, ValueError):
    """400-level input problem. Always caller-fixable, never retried."""

    kind = "validation_error"

    def __init__(self, message: str, *, field: str | None = None):
        super().__init__(message)
        self.field = field

    @property
    def details(self) -> dict:
        return {"field": self.field} if self.field else {}


class InvalidStateError(LedgerError):
    """Operation is not legal for the invoice's current status."""

    kind = "invalid_state"

    def __init__(self, message: str, *, status: str, operation: str):
        super().__init__(message)
        self.status = status
        self.operation = operation

    @property
    def details(self) -> dict:
        return {"status": self.status, "operation": self.operation}


class OverpaymentError(LedgerError):
    """Payment would push amount due below zero."""

    kind = "overpayment"

    def __init__(self, *, amount_cents: int, amount_due_cents: int):
        super().__init__(
            f"Payment of {amount_cents} cents exceeds amount due of {amount_due_cents} cents"
        )
        self.amount_cents = amount_cents
        self.amount_due_cents = amount_due_cents

    @property
    def details(self) -> dict:
        return {"amount_cents": self.amount_cents, "amount_due_cents": self.amount_due_cents}


class QuantityExceededError(LedgerError):
    """Returned quantity is larger than what is still returnable on the line."""

    kind = "quantity_exceeded"

    def __init__(self, *, invoice_line_id: int, requested: int, remaining: int):
        super().__init__(
            f"Cannot credit {requested} units of invoice line {invoice_line_id}; "
            f"only {remaining} remaining"
        )
        self.invoice_line_id = invoice_line_id
        self.requested = requested
        self.remaining = remaining

    @property
    def details(self) -> dict:
        return {
            "invoice_line_id": self.invoice_line_id,
            "requested": self.requested,
            "remaining": self.remaining,
        }


class ConcurrencyConflict(LedgerError):
    """Optimistic-lock failure. Safe to retry by reloading and reapplying."""

    kind = "concurrency_conflict"

    def __init__(
        self,
        invoice_id: int | None,
        *,
        expected_version: int | None = None,
        actual_version: int | None = None,
    ):
        super().__init__(f"Invoice {invoice_id} was modified concurrently")
        self.invoice_id = invoice_id
        self.expected_version = expected_version
        self.actual_version = actual_version

    @property
    def details(self) -> dict:
        return {
            "invoice_id": self.invoice_id,
            "expected_version": self.expected_version,
            "actual_version": self.actual_version,
        }


class InventoryRestockFailed(LedgerError):
    """
    Inventory collaborator rejected a restock.

    Non-fatal: the credit note stays issued; the failure is reported for
    manual reconciliation.
    """

    kind = "inventory_restock_failed"

    def __init__(self, *, credit_note_id: int, product_ref: str, quantity: int, reason: str):
        super().__init__(
            f"Restock of {quantity} x {product_ref} for credit note {credit_note_id} failed: {reason}"
        )
        self.credit_note_id = credit_note_id
        self.product_ref = product_ref
        self.quantity = quantity
        self.reason = reason

    @property
    def details(self) -> dict:
        return {
            "credit_note_id": self.credit_note_id,
            "product_ref": self.product_ref,
            "quantity": self.quantity,
            "reason": self.reason,
        }


class InvoiceNotFound(LedgerError):
    kind = "not_found"

    def __init__(self, invoice_id: int):
        super().__init__(f"Invoice {invoice_id} not found")
        self.invoice_id = invoice_id

    @property
    def details(self) -> dict:
        return {"invoice_id": self.invoice_id}


class CreditNoteNotFound(LedgerError):
    kind = "not_found"

    def __init__(self, credit_note_id: int):
        super().__init__(f"Credit note {credit_note_id} not found")
        self.credit_note_id = credit_note_id

    @property
    def details(self) -> dict:
        return {"credit_note_id": self.credit_note_id}
