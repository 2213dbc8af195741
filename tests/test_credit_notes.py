# Billing Ledger Tests - Credit Notes
#
# Tests for:
# - Partial returns and remaining returnable quantity
# - Unit price copied from the original line
# - State rules (draft / cancelled / fully credited)
# - Reason and returned-line validation
# - Restock requests for goods lines only

import pytest

from billing_ledger.errors import InvalidStateError, QuantityExceededError, ValidationError
from billing_ledger.services import credit_note_service
from billing_ledger.services.credit_note_service import ReturnedLine

from tests.conftest import TODAY, WIDGET


def _issue(invoice, returned, prior=(), reason="Damaged on arrival"):
    return credit_note_service.issue_credit_note(
        invoice,
        reason,
        returned,
        prior_notes=list(prior),
        issue_date=TODAY,
        number="NC-TEST",
    )


def _lines(invoice):
    widget, installation = invoice.lines
    return widget, installation


class TestIssueCreditNote:
    """Partial and repeated returns."""

    @pytest.mark.smoke
    @pytest.mark.credit_notes
    def test_partial_return_then_excess(self, issued_invoice):
        """
        SCENARIO: Widget line qty 2 @ 500.00; return 1, then try to return 2 more
        EXPECTED: first note totals 50000; second raises QuantityExceeded with remaining 1
        """
        widget, _ = _lines(issued_invoice)

        first = _issue(issued_invoice, [ReturnedLine(widget.id, 1)])

        assert first.total_cents == 50000
        assert first.subtotal_cents == 50000
        assert len(first.lines) == 1
        assert first.lines[0].unit_price_cents == 50000
        assert first.lines[0].invoice_line_id == widget.id
        assert first.lines[0].product_ref == "SKU-1"
        assert first.invoice_id == issued_invoice.id

        with pytest.raises(QuantityExceededError) as excinfo:
            _issue(issued_invoice, [ReturnedLine(widget.id, 2)], prior=[first])

        assert excinfo.value.invoice_line_id == widget.id
        assert excinfo.value.requested == 2
        assert excinfo.value.remaining == 1

    @pytest.mark.credit_notes
    def test_credit_note_does_not_touch_invoice(self, issued_invoice):
        widget, _ = _lines(issued_invoice)
        before = issued_invoice.to_dict()

        _issue(issued_invoice, [ReturnedLine(widget.id, 2)])

        assert issued_invoice.to_dict() == before

    @pytest.mark.credit_notes
    def test_customer_snapshot_copied(self, issued_invoice):
        widget, _ = _lines(issued_invoice)
        note = _issue(issued_invoice, [ReturnedLine(widget.id, 1)])

        assert note.customer_name == "Acme Lda"
        assert note.customer_tax_id == "400123456"
        assert note.reason == "Damaged on arrival"

    @pytest.mark.credit_notes
    def test_duplicate_line_entries_are_summed(self, issued_invoice):
        widget, _ = _lines(issued_invoice)

        note = _issue(issued_invoice, [ReturnedLine(widget.id, 1), {"invoice_line_id": widget.id, "quantity": 1}])
        assert [(line.invoice_line_id, line.quantity) for line in note.lines] == [(widget.id, 2)]

        with pytest.raises(QuantityExceededError):
            _issue(issued_invoice, [ReturnedLine(widget.id, 2), ReturnedLine(widget.id, 1)])

    @pytest.mark.credit_notes
    def test_zero_quantity_lines_dropped(self, issued_invoice):
        widget, installation = _lines(issued_invoice)

        note = _issue(issued_invoice, [ReturnedLine(widget.id, 0), ReturnedLine(installation.id, 1)])

        assert [line.invoice_line_id for line in note.lines] == [installation.id]
        assert note.total_cents == 10000

    @pytest.mark.credit_notes
    def test_paid_invoice_can_be_credited(self, ledger, issued_invoice):
        ledger.record_payment(issued_invoice.id, {"amount_cents": 110000, "method": "card"})
        invoice = ledger.get_invoice(issued_invoice.id)
        assert invoice.status == "paid"

        widget, _ = _lines(invoice)
        note = _issue(invoice, [ReturnedLine(widget.id, 2)])

        assert note.total_cents == 100000

    @pytest.mark.credit_notes
    def test_line_discount_not_prorated(self, ledger):
        invoice = ledger.create_invoice(
            {"name": "Acme"},
            [{"description": "Chair", "quantity": 4, "unit_price_cents": 2500, "discount_cents": 1000,
              "product_ref": "CH-1"}],
            tax_cents=900,
        )
        invoice = ledger.issue_invoice(invoice.id)

        note = _issue(invoice, [ReturnedLine(invoice.lines[0].id, 2)])

        assert note.lines[0].unit_price_cents == 2500
        assert note.total_cents == 5000


class TestCreditNoteRules:
    """State and validation rules."""

    @pytest.mark.credit_notes
    def test_draft_invoice_rejected(self, ledger):
        invoice = ledger.create_invoice({"name": "Acme"}, [WIDGET])

        with pytest.raises(InvalidStateError) as excinfo:
            _issue(invoice, [ReturnedLine(invoice.lines[0].id, 1)])
        assert excinfo.value.status == "draft"

    @pytest.mark.credit_notes
    def test_cancelled_invoice_rejected(self, ledger, issued_invoice):
        invoice = ledger.cancel_invoice(issued_invoice.id)

        with pytest.raises(InvalidStateError) as excinfo:
            _issue(invoice, [ReturnedLine(invoice.lines[0].id, 1)])
        assert excinfo.value.status == "cancelled"

    @pytest.mark.credit_notes
    def test_fully_credited_invoice_rejected(self, issued_invoice):
        widget, installation = _lines(issued_invoice)
        full = _issue(issued_invoice, [ReturnedLine(widget.id, 2), ReturnedLine(installation.id, 1)])

        assert credit_note_service.is_fully_credited(issued_invoice, [full])
        with pytest.raises(InvalidStateError):
            _issue(issued_invoice, [ReturnedLine(widget.id, 1)], prior=[full])

    @pytest.mark.credit_notes
    @pytest.mark.parametrize("reason", [None, "", "  ", "ab", "x" * 501])
    def test_invalid_reason(self, issued_invoice, reason):
        widget, _ = _lines(issued_invoice)
        with pytest.raises(ValidationError) as excinfo:
            _issue(issued_invoice, [ReturnedLine(widget.id, 1)], reason=reason)
        assert excinfo.value.field == "reason"

    @pytest.mark.credit_notes
    def test_no_lines_rejected(self, issued_invoice):
        with pytest.raises(ValidationError):
            _issue(issued_invoice, [])

    @pytest.mark.credit_notes
    def test_all_zero_quantities_rejected(self, issued_invoice):
        widget, installation = _lines(issued_invoice)
        with pytest.raises(ValidationError):
            _issue(issued_invoice, [ReturnedLine(widget.id, 0), ReturnedLine(installation.id, 0)])

    @pytest.mark.credit_notes
    def test_negative_quantity_rejected(self):
        with pytest.raises(ValidationError):
            ReturnedLine(invoice_line_id=1, quantity=-1)

    @pytest.mark.credit_notes
    def test_line_from_other_invoice_rejected(self, ledger, issued_invoice):
        other = ledger.create_invoice({"name": "Other"}, [WIDGET])

        with pytest.raises(ValidationError) as excinfo:
            _issue(issued_invoice, [ReturnedLine(other.lines[0].id, 1)])
        assert excinfo.value.field == "invoice_line_id"


class TestReturnableQuantities:

    @pytest.mark.credit_notes
    def test_remaining_quantities(self, issued_invoice):
        widget, installation = _lines(issued_invoice)
        first = _issue(issued_invoice, [ReturnedLine(widget.id, 1)])
        second = _issue(issued_invoice, [ReturnedLine(installation.id, 1)], prior=[first])

        assert credit_note_service.credited_quantities([first, second]) == {widget.id: 1, installation.id: 1}
        assert credit_note_service.remaining_quantities(issued_invoice, [first, second]) == {
            widget.id: 1,
            installation.id: 0,
        }
        assert not credit_note_service.is_fully_credited(issued_invoice, [first, second])

    @pytest.mark.credit_notes
    def test_restock_requests_only_for_goods(self, issued_invoice):
        widget, installation = _lines(issued_invoice)
        note = _issue(issued_invoice, [ReturnedLine(widget.id, 2), ReturnedLine(installation.id, 1)])

        requests = credit_note_service.restock_requests(note)

        assert [(r.product_ref, r.quantity) for r in requests] == [("SKU-1", 2)]
        assert requests[0].credit_note_line is note.lines[0]
