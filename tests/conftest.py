"""
Pytest fixtures for billing ledger tests.

Provides an in-memory database, a fixed business clock, inventory doubles,
and a fully wired LedgerService.
"""

from datetime import date

import pytest

from billing_ledger import create_app
from billing_ledger.collaborators import FixedClock
from billing_ledger.config import TestConfig
from billing_ledger.extensions import db
from billing_ledger.services.invoice_service import LineItemData
from billing_ledger.services.ledger_service import LedgerService
from billing_ledger.services.numbering_service import SequenceNumbering
from billing_ledger.services.repository import SqlAlchemyInvoiceRepository


TODAY = date(2026, 3, 2)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "smoke: Quick smoke tests for critical paths")
    config.addinivalue_line("markers", "invoices: Invoice aggregate tests")
    config.addinivalue_line("markers", "payments: Payment ledger and overdue tests")
    config.addinivalue_line("markers", "credit_notes: Credit note and restock tests")
    config.addinivalue_line("markers", "concurrency: Optimistic locking and retry tests")


class RecordingInventory:
    """Inventory double that records every restock call."""

    def __init__(self):
        self.calls = []

    def restock(self, product_ref, quantity):
        self.calls.append((product_ref, quantity))


class FailingInventory:
    """Inventory double that rejects restocks for the given products."""

    def __init__(self, failing_refs, message="warehouse offline"):
        self.failing_refs = set(failing_refs)
        self.message = message
        self.calls = []

    def restock(self, product_ref, quantity):
        self.calls.append((product_ref, quantity))
        if product_ref in self.failing_refs:
            raise RuntimeError(self.message)


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    # Clear all data but keep schema
    meta = db.metadata
    for table in reversed(meta.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()
    db.session.expunge_all()

    yield db.session

    # Cleanup after test
    db.session.rollback()
    db.session.remove()


@pytest.fixture
def clock():
    return FixedClock(TODAY)


@pytest.fixture
def inventory():
    return RecordingInventory()


@pytest.fixture
def repository():
    return SqlAlchemyInvoiceRepository()


def make_ledger(repository, clock, inventory=None, **kwargs):
    return LedgerService(
        repository=repository,
        clock=clock,
        numbering=SequenceNumbering(),
        inventory=inventory,
        retry_attempts=kwargs.pop("retry_attempts", 3),
        retry_backoff=0.0,
        **kwargs,
    )


@pytest.fixture
def ledger(db_session, repository, clock, inventory):
    """LedgerService wired to the test database, fixed clock and recording inventory."""
    return make_ledger(repository, clock, inventory)


WIDGET = LineItemData(description="Widget", quantity=2, unit_price_cents=50000, product_ref="SKU-1")
INSTALLATION = LineItemData(description="Installation", quantity=1, unit_price_cents=10000)
SAMPLE = LineItemData(description="Sample", quantity=2, unit_price_cents=0, product_ref="G-1")


@pytest.fixture
def issued_invoice(ledger):
    """Issued invoice: 2 x Widget @ 500.00 (SKU-1) + 1 x Installation @ 100.00."""
    invoice = ledger.create_invoice(
        {"name": "Acme Lda", "customer_id": "cust-1", "tax_id": "400123456"},
        [WIDGET, INSTALLATION],
        due_date=date(2026, 4, 1),
    )
    return ledger.issue_invoice(invoice.id)
