# crm/services/invoice_numbers.py
from __future__ import annotations

import time

import sqlalchemy as sa
from flask import current_app

from crm.extensions import db
from crm.models import Invoice


def _prefix() -> str:
    return current_app.config.get("INVOICE_NUMBER_PREFIX", "INV-")


def next_invoice_number(offset: int = 0) -> str:
    """
    Sequential invoice number: prefix + zero-padded (invoice count + 1).

    Not concurrency-safe: two generations can read the same count. The unique
    constraint on invoice_number turns that into an IntegrityError, which the
    invoicing service retries with a growing offset before falling back to
    timestamp_invoice_number().
    """
    width = int(current_app.config.get("INVOICE_NUMBER_WIDTH", 6))
    count = db.session.query(sa.func.count(Invoice.id)).scalar() or 0
    return f"{_prefix()}{count + 1 + offset:0{width}d}"


def timestamp_invoice_number() -> str:
    """Last-resort number: prefix + epoch milliseconds."""
    return f"{_prefix()}{int(time.time() * 1000)}"
