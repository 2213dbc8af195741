# Overview: Flask CLI command group for ledger bootstrap, inspection, and maintenance.

# billing_ledger/cli.py
# Commands Legend:
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to billing_ledger (PowerShell: $env:FLASK_APP="billing_ledger").
# - Use: python -m flask ledger <command> [options]
#
# Schema bootstrap:
# - python -m flask ledger init-db
#   Create all ledger tables (idempotent).
# - python -m flask ledger reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Maintenance:
# - python -m flask ledger reconcile-overdue [--today 2026-03-31]
#   Promote sent/partial invoices past their due date to overdue.
#
# Inspection:
# - python -m flask ledger show-invoice 42
#   Print an invoice with its lines, payments, and credit notes.
# - python -m flask ledger overdue [--today 2026-03-31] [--page 1 --limit 20]
#   List past-due invoices with a balance (read-only).
# - python -m flask ledger restocks --status failed
#   List restock instructions awaiting manual reconciliation.

import click
from flask import current_app
from flask.cli import with_appcontext

from .collaborators import FixedClock
from .errors import LedgerError
from .extensions import db
from .time_utils import parse_iso_date


def _clock_from_option(today_str):
    """FixedClock for an explicit --today, None to fall back to the system clock."""
    if today_str is None:
        return None
    try:
        business_date = parse_iso_date(today_str)
    except ValueError:
        business_date = None
    if business_date is None:
        raise click.BadParameter("must be YYYY-MM-DD", param_hint="--today")
    return FixedClock(business_date)


@click.group('ledger')
def ledger_group():
    """Billing ledger commands."""


@ledger_group.command('init-db')
@with_appcontext
def init_db():
    """Create all ledger tables."""
    db.create_all()
    click.echo("PASS Ledger tables created.")


@ledger_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete.")


@ledger_group.command('reconcile-overdue')
@click.option('--today', 'today_str', help='Business date (YYYY-MM-DD); defaults to the system date')
@with_appcontext
def reconcile_overdue_cli(today_str):
    """
    Promote open invoices past their due date to overdue.

    Example:
        flask ledger reconcile-overdue
        flask ledger reconcile-overdue --today 2026-03-31
    """
    from . import build_ledger_service

    ledger = build_ledger_service(clock=_clock_from_option(today_str))
    try:
        promoted = ledger.reconcile_all_overdue()
    except LedgerError as exc:
        current_app.logger.exception("Overdue reconciliation aborted")
        raise click.ClickException(exc.message)

    if not promoted:
        click.echo("No invoices became overdue.")
        return

    for invoice in promoted:
        click.echo(
            f"OVERDUE {invoice.invoice_number} due {invoice.due_date.isoformat()} "
            f"amount due {invoice.amount_due_cents}"
        )
    click.echo(f"Promoted {len(promoted)} invoice(s) to overdue.")


@ledger_group.command('overdue')
@click.option('--today', 'today_str', help='Business date (YYYY-MM-DD); defaults to the system date')
@click.option('--page', default=1, show_default=True, type=click.IntRange(min=1))
@click.option('--limit', default=20, show_default=True, type=click.IntRange(1, 100))
@with_appcontext
def list_overdue_cli(today_str, page, limit):
    """List past-due invoices without changing their status."""
    from . import build_ledger_service

    ledger = build_ledger_service(clock=_clock_from_option(today_str))
    result = ledger.list_overdue_invoices(page=page, limit=limit)
    if not result.items:
        click.echo("No past-due invoices.")
        return

    for invoice in result.items:
        click.echo(
            f"{invoice.invoice_number:<16} [{invoice.status}] due {invoice.due_date.isoformat()} "
            f"amount due {invoice.amount_due_cents}"
        )
    click.echo(f"Page {result.page}/{result.pages} ({result.total} past-due invoice(s))")


@ledger_group.command('show-invoice')
@click.argument('invoice_id', type=int)
@with_appcontext
def show_invoice_cli(invoice_id):
    """Print an invoice with its lines, payments, and credit notes."""
    from . import build_ledger_service

    ledger = build_ledger_service()
    try:
        invoice = ledger.get_invoice(invoice_id)
        notes = ledger.list_credit_notes(invoice_id)
    except LedgerError as exc:
        raise click.ClickException(exc.message)

    click.echo("\n" + "="*80)
    click.echo(f"{invoice.invoice_number}  [{invoice.status}]  {invoice.customer_name}")
    click.echo(f"Issued {invoice.issue_date.isoformat()}  Due {invoice.due_date.isoformat()}")
    click.echo("="*80)
    click.echo(f"{'#':<4} {'Description':<40} {'Qty':>5} {'Unit':>12} {'Total':>12}")
    for line in invoice.lines:
        click.echo(
            f"{line.position:<4} {line.description[:40]:<40} {line.quantity:>5} "
            f"{line.unit_price_cents:>12} {line.line_total_cents:>12}"
        )
    click.echo("-"*80)
    click.echo(f"Subtotal {invoice.subtotal_cents}  Discount {invoice.discount_cents}  Tax {invoice.tax_cents}")
    click.echo(f"Total {invoice.total_cents}  Paid {invoice.amount_paid_cents}  Due {invoice.amount_due_cents}")

    if invoice.payments:
        click.echo("\nPayments:")
        for payment in invoice.payments:
            click.echo(f"  {payment.paid_on.isoformat()}  {payment.method:<14} {payment.amount_cents:>12}")

    if notes:
        click.echo("\nCredit notes:")
        for note in notes:
            click.echo(f"  {note.credit_note_number}  {note.issue_date.isoformat()}  {note.total_cents:>12}  {note.reason}")


@ledger_group.command('restocks')
@click.option('--status', 'statuses', multiple=True, default=('pending', 'failed'), show_default=True,
              type=click.Choice(['pending', 'dispatching', 'applied', 'failed']))
@with_appcontext
def list_restocks_cli(statuses):
    """List restock instructions by status."""
    from .services.repository import SqlAlchemyInvoiceRepository

    instructions = SqlAlchemyInvoiceRepository().list_restock_instructions(statuses)
    if not instructions:
        click.echo("No restock instructions found.")
        return

    click.echo(f"{'ID':<6} {'Credit note':<12} {'Product':<20} {'Qty':>5} {'Status':<11} {'Attempts':>8}  Reason")
    for instruction in instructions:
        click.echo(
            f"{instruction.id:<6} {instruction.credit_note_id:<12} {instruction.product_ref:<20} "
            f"{instruction.quantity:>5} {instruction.status:<11} {instruction.attempts:>8}  "
            f"{instruction.failure_reason or ''}"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(ledger_group)
