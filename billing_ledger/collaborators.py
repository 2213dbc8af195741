"""
Billing Ledger - External Collaborators
=======================================
The ledger never reaches for wall-clock time, sequence counters, stock levels
or storage on its own. Each of those is a collaborator handed to
LedgerService at construction time.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import TYPE_CHECKING, Generic, Iterable, Optional, Protocol, TypeVar

if TYPE_CHECKING:
    from .models import CreditNote, Invoice, RestockInstruction

T = TypeVar("T")


# ══════════════════════════════════════════════════════════════
# CLOCK
# ══════════════════════════════════════════════════════════════

class Clock(Protocol):
    """Injectable time source."""

    def now(self) -> datetime:
        """Return current UTC time (naive)."""
        ...  # pragma: no cover

    def today(self) -> date:
        """Return the business date used for due-date comparisons."""
        ...  # pragma: no cover


class SystemClock:
    """Production clock: real system time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None)

    def today(self) -> date:
        return self.now().date()


class FixedClock:
    """
    Test clock: returns a fixed business date.

    Usage:
        clock = FixedClock(date(2026, 3, 1))
        clock.advance(days=30)
    """

    def __init__(self, fixed_date: date) -> None:
        self._today = fixed_date

    def now(self) -> datetime:
        return datetime(self._today.year, self._today.month, self._today.day, 12, 0, 0)

    def today(self) -> date:
        return self._today

    def advance(self, *, days: int) -> None:
        self._today = self._today + timedelta(days=days)


# ══════════════════════════════════════════════════════════════
# NUMBERING
# ══════════════════════════════════════════════════════════════

class NumberingProvider(Protocol):
    def next_invoice_number(self, issue_date: date) -> str: ...

    def next_credit_note_number(self, issue_date: date) -> str: ...


# ══════════════════════════════════════════════════════════════
# INVENTORY
# ══════════════════════════════════════════════════════════════

class InventoryGateway(Protocol):
    """Stock-adjustment side of the inventory module."""

    def restock(self, product_ref: str, quantity: int) -> None:
        """Increase on-hand stock. Raise on failure."""
        ...  # pragma: no cover


# ══════════════════════════════════════════════════════════════
# PERSISTENCE
# ══════════════════════════════════════════════════════════════

@dataclass
class Page(Generic[T]):
    """One page of a listing plus the total row count across all pages."""
    items: list[T]
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.total > 0 else 1

    @property
    def has_more(self) -> bool:
        return self.page < self.pages


class InvoiceRepository(Protocol):
    def load_invoice(self, invoice_id: int, *, for_update: bool = False) -> Optional["Invoice"]: ...

    def save_invoice(self, invoice: "Invoice", *, expected_version: Optional[int] = None) -> "Invoice": ...

    def load_credit_notes_for_invoice(self, invoice_id: int) -> list["CreditNote"]: ...

    def load_credit_note(self, credit_note_id: int) -> Optional["CreditNote"]: ...

    def save_credit_note(self, note: "CreditNote") -> "CreditNote": ...

    def list_invoices(
        self,
        *,
        status: Optional[str] = None,
        customer_id: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Page["Invoice"]: ...

    def list_all_credit_notes(
        self, *, invoice_id: Optional[int] = None, page: int = 1, limit: int = 20
    ) -> Page["CreditNote"]: ...

    def list_overdue_invoices(self, today: date, *, page: int = 1, limit: int = 20) -> Page["Invoice"]: ...

    def list_overdue_candidates(self, today: date) -> list["Invoice"]: ...

    def list_restock_instructions(self, statuses: Iterable[str]) -> list["RestockInstruction"]: ...

    def claim_restock_instruction(
        self, instruction_id: int, *, from_statuses: Iterable[str], to_status: str
    ) -> bool: ...

    def save_restock_instruction(self, instruction: "RestockInstruction") -> "RestockInstruction": ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...
