# Billing Ledger Tests - Payment Ledger
#
# Tests for:
# - Partial and full payments (status derivation)
# - Overpayment and invalid payment rejection
# - Payments against draft / cancelled invoices
# - Overdue reconciliation (idempotence, terminal statuses)
# - Cancellation rules
# - Payment summary

from datetime import date, timedelta

import pytest

from billing_ledger.errors import InvalidStateError, OverpaymentError, ValidationError
from billing_ledger.services import invoice_service, payment_service
from billing_ledger.services.invoice_service import LineItemData
from billing_ledger.services.payment_service import PaymentData

from tests.conftest import TODAY


def _issued(total_cents=100000, issue_date=TODAY, due_date=None):
    invoice = invoice_service.create_invoice(
        {"name": "Acme Lda"},
        [LineItemData(description="Widget", quantity=1, unit_price_cents=total_cents)],
        issue_date=issue_date,
        due_date=due_date or issue_date + timedelta(days=30),
    )
    return invoice_service.issue_invoice(invoice)


def _pay(invoice, amount, method="cash", today=TODAY, **kwargs):
    return payment_service.add_payment(
        invoice, PaymentData(amount_cents=amount, method=method, **kwargs), today=today
    )


def _assert_consistent(invoice):
    assert invoice.total_cents == invoice.subtotal_cents - invoice.discount_cents + invoice.tax_cents
    assert invoice.amount_paid_cents == sum(p.amount_cents for p in invoice.payments)
    assert invoice.amount_due_cents == invoice.total_cents - invoice.amount_paid_cents
    assert invoice.amount_due_cents >= 0


class TestAddPayment:
    """Payments move invoices through partial to paid."""

    @pytest.mark.smoke
    @pytest.mark.payments
    def test_partial_payment(self):
        """
        SCENARIO: Invoice of 1000.00 receives 400.00
        EXPECTED: partial, paid 40000, due 60000
        """
        invoice = _issued()
        _pay(invoice, 40000)

        assert invoice.status == "partial"
        assert invoice.amount_paid_cents == 40000
        assert invoice.amount_due_cents == 60000
        assert invoice.paid_date is None
        _assert_consistent(invoice)

    @pytest.mark.smoke
    @pytest.mark.payments
    def test_final_payment_marks_paid(self):
        """
        SCENARIO: Partial invoice receives the remaining 600.00
        EXPECTED: paid, due 0, paid_date set; a further 0.01 is an overpayment
        """
        invoice = _issued()
        _pay(invoice, 40000)
        _pay(invoice, 60000, method="bank_transfer", reference="TRX-77")

        assert invoice.status == "paid"
        assert invoice.amount_paid_cents == 100000
        assert invoice.amount_due_cents == 0
        assert invoice.paid_date == TODAY
        assert [p.method for p in invoice.payments] == ["cash", "bank_transfer"]
        assert invoice.payments[1].reference == "TRX-77"

        with pytest.raises(OverpaymentError) as excinfo:
            _pay(invoice, 1)
        assert excinfo.value.amount_due_cents == 0
        assert len(invoice.payments) == 2
        _assert_consistent(invoice)

    @pytest.mark.payments
    def test_overpayment_rejected_without_side_effects(self):
        invoice = _issued()

        with pytest.raises(OverpaymentError) as excinfo:
            _pay(invoice, 100001)

        assert excinfo.value.to_dict() == {
            "error": "overpayment",
            "message": excinfo.value.message,
            "amount_cents": 100001,
            "amount_due_cents": 100000,
        }
        assert invoice.status == "sent"
        assert invoice.amount_paid_cents == 0
        assert invoice.payments == []

    @pytest.mark.payments
    def test_paid_on_recorded(self):
        invoice = _issued()
        _pay(invoice, 100000, paid_on=date(2026, 3, 1))

        assert invoice.payments[0].paid_on == date(2026, 3, 1)
        assert invoice.paid_date == date(2026, 3, 1)

    @pytest.mark.payments
    @pytest.mark.parametrize("amount", [0, -500])
    def test_non_positive_amount_rejected(self, amount):
        with pytest.raises(ValidationError) as excinfo:
            PaymentData(amount_cents=amount, method="cash")
        assert excinfo.value.field == "amount_cents"

    @pytest.mark.payments
    def test_invalid_method_rejected(self):
        invoice = _issued()
        with pytest.raises(ValidationError) as excinfo:
            payment_service.add_payment(invoice, {"amount_cents": 100, "method": "barter"}, today=TODAY)
        assert excinfo.value.field == "method"
        assert invoice.payments == []

    @pytest.mark.payments
    def test_draft_invoice_rejects_payment(self):
        invoice = invoice_service.create_invoice(
            {"name": "Acme"},
            [LineItemData(description="Widget", quantity=1, unit_price_cents=1000)],
            issue_date=TODAY,
        )

        with pytest.raises(InvalidStateError) as excinfo:
            _pay(invoice, 100)
        assert excinfo.value.status == "draft"

    @pytest.mark.payments
    def test_cancelled_invoice_rejects_payment(self):
        invoice = _issued()
        payment_service.cancel_invoice(invoice)

        with pytest.raises(InvalidStateError) as excinfo:
            _pay(invoice, 100)
        assert excinfo.value.status == "cancelled"

    @pytest.mark.payments
    def test_many_small_payments_stay_consistent(self):
        invoice = _issued(total_cents=1000)
        for amount in (1, 99, 250, 150, 499):
            _pay(invoice, amount)
            _assert_consistent(invoice)
            assert invoice.status == "partial"

        _pay(invoice, 1)
        assert invoice.status == "paid"
        _assert_consistent(invoice)


class TestOverdue:
    """Overdue promotion and recovery."""

    @pytest.mark.smoke
    @pytest.mark.payments
    def test_reconcile_promotes_past_due_invoice(self):
        """
        SCENARIO: Sent invoice, due 10 days ago, no payments
        EXPECTED: reconcile -> overdue, idempotent; full payment -> paid
        """
        invoice = _issued(issue_date=TODAY - timedelta(days=40), due_date=TODAY - timedelta(days=10))

        payment_service.reconcile_overdue(invoice, TODAY)
        assert invoice.status == "overdue"

        payment_service.reconcile_overdue(invoice, TODAY)
        assert invoice.status == "overdue"

        _pay(invoice, 100000)
        assert invoice.status == "paid"
        assert invoice.amount_due_cents == 0

    @pytest.mark.payments
    def test_due_today_is_not_overdue(self):
        invoice = _issued(due_date=TODAY)
        payment_service.reconcile_overdue(invoice, TODAY)
        assert invoice.status == "sent"

    @pytest.mark.payments
    def test_partial_invoice_becomes_overdue(self):
        invoice = _issued(issue_date=TODAY - timedelta(days=40), due_date=TODAY - timedelta(days=10))
        _pay(invoice, 30000, today=TODAY - timedelta(days=20))
        assert invoice.status == "partial"

        payment_service.reconcile_overdue(invoice, TODAY)
        assert invoice.status == "overdue"
        assert invoice.amount_due_cents == 70000

    @pytest.mark.payments
    def test_partial_payment_on_overdue_invoice(self):
        """
        SCENARIO: Overdue invoice receives a partial payment
        EXPECTED: partial; the next reconcile promotes it back to overdue
        """
        invoice = _issued(issue_date=TODAY - timedelta(days=40), due_date=TODAY - timedelta(days=10))
        payment_service.reconcile_overdue(invoice, TODAY)

        _pay(invoice, 20000)
        assert invoice.status == "partial"

        payment_service.reconcile_overdue(invoice, TODAY)
        assert invoice.status == "overdue"

    @pytest.mark.payments
    @pytest.mark.parametrize("setup", ["draft", "paid", "cancelled"])
    def test_reconcile_leaves_other_statuses_alone(self, setup):
        invoice = invoice_service.create_invoice(
            {"name": "Acme"},
            [LineItemData(description="Widget", quantity=1, unit_price_cents=1000)],
            issue_date=TODAY - timedelta(days=40),
            due_date=TODAY - timedelta(days=10),
        )
        if setup != "draft":
            invoice_service.issue_invoice(invoice)
        if setup == "paid":
            _pay(invoice, 1000)
        if setup == "cancelled":
            payment_service.cancel_invoice(invoice)

        payment_service.reconcile_overdue(invoice, TODAY)

        assert invoice.status == setup

    @pytest.mark.payments
    def test_derive_status(self):
        invoice = _issued(issue_date=TODAY - timedelta(days=40), due_date=TODAY - timedelta(days=10))

        assert payment_service.derive_status(invoice, TODAY - timedelta(days=11)) == "sent"
        assert payment_service.derive_status(invoice, TODAY) == "overdue"
        assert payment_service.is_past_due(invoice, TODAY)
        assert not payment_service.is_past_due(invoice, TODAY - timedelta(days=10))


class TestCancelInvoice:

    @pytest.mark.payments
    @pytest.mark.parametrize("paid", [0, 25000])
    def test_cancel_open_invoice(self, paid):
        invoice = _issued()
        if paid:
            _pay(invoice, paid)

        payment_service.cancel_invoice(invoice, cancelled_at=None)

        assert invoice.status == "cancelled"
        assert invoice.amount_paid_cents == paid

    @pytest.mark.payments
    def test_cancel_draft(self):
        invoice = invoice_service.create_invoice(
            {"name": "Acme"},
            [LineItemData(description="Widget", quantity=1, unit_price_cents=1000)],
            issue_date=TODAY,
        )
        payment_service.cancel_invoice(invoice)
        assert invoice.status == "cancelled"

    @pytest.mark.payments
    def test_cancel_paid_rejected(self):
        invoice = _issued()
        _pay(invoice, 100000)

        with pytest.raises(InvalidStateError) as excinfo:
            payment_service.cancel_invoice(invoice)
        assert excinfo.value.status == "paid"
        assert invoice.status == "paid"

    @pytest.mark.payments
    def test_cancel_twice_rejected(self):
        invoice = _issued()
        payment_service.cancel_invoice(invoice)
        with pytest.raises(InvalidStateError):
            payment_service.cancel_invoice(invoice)


class TestPaymentSummary:

    @pytest.mark.payments
    def test_summary(self):
        invoice = _issued()
        _pay(invoice, 40000, method="mobile_money")

        summary = payment_service.payment_summary(invoice)

        assert summary["status"] == "partial"
        assert summary["total_cents"] == 100000
        assert summary["amount_paid_cents"] == 40000
        assert summary["amount_due_cents"] == 60000
        assert summary["credited_total_cents"] == 0
        assert summary["payment_count"] == 1
        assert summary["payments"][0]["method"] == "mobile_money"
