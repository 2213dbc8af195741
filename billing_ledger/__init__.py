# billing_ledger/__init__.py
from flask import Flask, current_app

from .config import Config
from .extensions import db, migrate


def create_app(config_object=None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_object or Config)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app


def build_ledger_service(*, inventory=None, clock=None):
    """Wire a LedgerService from the current app's configuration."""
    from .collaborators import SystemClock
    from .services.ledger_service import LedgerService
    from .services.numbering_service import SequenceNumbering
    from .services.repository import SqlAlchemyInvoiceRepository

    config = current_app.config
    return LedgerService(
        repository=SqlAlchemyInvoiceRepository(),
        clock=clock or SystemClock(),
        numbering=SequenceNumbering(
            invoice_prefix=config["INVOICE_NUMBER_PREFIX"],
            invoice_pad=config["INVOICE_NUMBER_PAD"],
            credit_note_prefix=config["CREDIT_NOTE_NUMBER_PREFIX"],
            credit_note_pad=config["CREDIT_NOTE_NUMBER_PAD"],
        ),
        inventory=inventory,
        retry_attempts=config["LEDGER_RETRY_ATTEMPTS"],
        retry_backoff=config["LEDGER_RETRY_BACKOFF"],
    )
