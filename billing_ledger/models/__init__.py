from .invoices import Invoice, InvoiceLine, InvoicePayment
from .credit_notes import CreditNote, CreditNoteLine, RestockInstruction
from .sequences import DocumentSequence

__all__ = [
    'Invoice', 'InvoiceLine', 'InvoicePayment',
    'CreditNote', 'CreditNoteLine', 'RestockInstruction',
    'DocumentSequence',
]
