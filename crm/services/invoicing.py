# crm/services/invoicing.py
"""
Invoice generation from client expenses and the invoice status lifecycle.

Every public function takes the acting user explicitly and runs the access gate
before touching data. Invoice writes and the matching expense flips are committed
together; generation, status changes, deletion and reset for one client are
serialized by a per-client lock.
"""
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from flask import current_app
from sqlalchemy.exc import IntegrityError

from crm.errors import (
    CRMError,
    InvalidStateError,
    InvalidStatusError,
    NoBillableExpensesError,
    NotFoundError,
    ValidationError,
)
from crm.extensions import db
from crm.models import Client, Expense, Invoice, InvoiceExpense, InvoiceStatus
from crm.utils.db import commit_or_rollback, get_or_404
from crm.utils.guards import Actor, authorize
from crm.utils.parsing import parse_date, parse_int

from . import expense_ledger
from .invoice_numbers import next_invoice_number, timestamp_invoice_number
from .locks import client_locks


# Forward-only: draft -> sent -> paid
ALLOWED_TRANSITIONS = {
    InvoiceStatus.DRAFT: {InvoiceStatus.SENT},
    InvoiceStatus.SENT: {InvoiceStatus.PAID},
    InvoiceStatus.PAID: set(),
}


def get_client(client_id) -> Client:
    return get_or_404(Client, parse_int(client_id), NotFoundError, "Client not found")


def _get_invoice(invoice_id) -> Invoice:
    return get_or_404(Invoice, parse_int(invoice_id), NotFoundError, "Invoice not found")


def _normalize_expense_ids(expense_ids) -> list[int]:
    if expense_ids is None:
        return []
    if not isinstance(expense_ids, (list, tuple)):
        raise ValidationError("selectedExpenseIds must be a list of expense ids")
    ids = []
    for raw in expense_ids:
        value = parse_int(raw)
        if value is None:
            raise ValidationError(f"Invalid expense id: {raw!r}")
        if value not in ids:
            ids.append(value)
    return ids


def _select_expenses(client: Client, explicit_ids: list[int]):
    if not explicit_ids:
        expenses = expense_ledger.list_uninvoiced(client.id)
        if not expenses:
            raise NoBillableExpensesError()
        return expenses

    expenses = expense_ledger.list_by_ids(explicit_ids, client_id=client.id)
    if not expenses:
        raise NotFoundError("Selected expenses not found for this client")

    missing = sorted(set(explicit_ids) - {e.id for e in expenses})
    if missing:
        raise NotFoundError(
            "Selected expenses not found for this client",
            details={"missingExpenseIds": missing},
        )

    already = [e.id for e in expenses if e.is_invoiced]
    if already:
        raise InvalidStateError(
            "Selected expenses are already invoiced",
            details={"invoicedExpenseIds": already},
        )
    return expenses


def _number_taken(invoice_number: str) -> bool:
    return db.session.query(Invoice.id).filter_by(invoice_number=invoice_number).first() is not None


# =========================================================
# Invoice Builder
# =========================================================
def generate_invoice(client_id, due_date, notes, expense_ids, actor: Actor) -> Invoice:
    if due_date in (None, ""):
        raise ValidationError("Due date is required")
    parsed_due = parse_date(due_date)
    if parsed_due is None:
        raise ValidationError("Due date must be a valid date")

    client = get_client(client_id)
    authorize(actor, client, "Access denied. You can only generate invoices for your assigned clients.")

    explicit_ids = _normalize_expense_ids(expense_ids)
    attempts = max(int(current_app.config.get("INVOICE_NUMBER_ATTEMPTS", 3)), 1)

    with client_locks.hold(client.id):
        for attempt in range(attempts + 1):
            # Re-read on every attempt: a rollback expires everything loaded before it.
            expenses = _select_expenses(client, explicit_ids)
            total = sum((Decimal(str(e.amount)) for e in expenses), Decimal("0"))

            if attempt < attempts:
                invoice_number = next_invoice_number(offset=attempt)
            else:
                invoice_number = timestamp_invoice_number()

            invoice = Invoice(
                invoice_number=invoice_number,
                client_id=client.id,
                total_amount=total,
                status=InvoiceStatus.DRAFT,
                issue_date=date.today(),
                due_date=parsed_due,
                notes=(notes or "").strip() if isinstance(notes, str) else "",
                created_by_id=actor.id,
            )
            for expense in expenses:
                invoice.expenses.append(expense)

            db.session.add(invoice)
            try:
                db.session.flush()
                marked = expense_ledger.mark_invoiced([e.id for e in expenses], invoice.id)
                if marked != len(expenses):
                    db.session.rollback()
                    raise InvalidStateError(
                        "Some expenses were invoiced by a concurrent request. Please retry."
                    )
                db.session.commit()
            except IntegrityError:
                db.session.rollback()
                if not _number_taken(invoice_number):
                    current_app.logger.exception("Invoice generation failed for client %s", client.id)
                    raise
                current_app.logger.warning(
                    "Invoice number %s already taken (attempt %d of %d)",
                    invoice_number, attempt + 1, attempts + 1,
                )
                continue

            current_app.logger.info(
                "Generated invoice %s for client %s: %d expenses, total %s",
                invoice.invoice_number, client.id, len(expenses), invoice.total_amount,
            )
            return invoice

    raise CRMError("Invoice generation failed due to a numbering conflict. Try again.")


# =========================================================
# Reads
# =========================================================
def list_client_invoices(client_id, actor: Actor) -> list[Invoice]:
    client = get_client(client_id)
    authorize(actor, client, "Access denied")
    return (
        Invoice.query
        .filter_by(client_id=client.id)
        .order_by(Invoice.issue_date.desc(), Invoice.id.desc())
        .all()
    )


def get_invoice(invoice_id, actor: Actor) -> Invoice:
    invoice = _get_invoice(invoice_id)
    authorize(actor, invoice.client, "Access denied")
    return invoice


# =========================================================
# Status Lifecycle
# =========================================================
def parse_status(value) -> InvoiceStatus:
    try:
        return InvoiceStatus((value or "").strip().lower() if isinstance(value, str) else value)
    except ValueError:
        raise InvalidStatusError("Invalid status") from None


def update_status(invoice_id, new_status, actor: Actor) -> Invoice:
    target = parse_status(new_status)
    invoice = _get_invoice(invoice_id)
    authorize(actor, invoice.client, "Access denied")

    with client_locks.hold(invoice.client_id):
        db.session.refresh(invoice)
        current = invoice.status
        if target == current:
            return invoice
        if target not in ALLOWED_TRANSITIONS[current]:
            raise InvalidStateError(
                f"Cannot change invoice status from {current.value} to {target.value}"
            )

        invoice.status = target
        if target == InvoiceStatus.SENT:
            invoice.sent_at = datetime.utcnow()
        elif target == InvoiceStatus.PAID:
            invoice.paid_at = datetime.utcnow()

        commit_or_rollback("Update invoice status")

    current_app.logger.info(
        "Invoice %s status %s -> %s by user %s",
        invoice.invoice_number, current.value, target.value, actor.id,
    )
    return invoice


def delete_invoice(invoice_id, actor: Actor) -> None:
    invoice = _get_invoice(invoice_id)
    authorize(actor, invoice.client, "Access denied")

    with client_locks.hold(invoice.client_id):
        db.session.refresh(invoice)
        if invoice.status != InvoiceStatus.DRAFT:
            raise InvalidStateError("Only draft invoices can be deleted")

        number = invoice.invoice_number
        released = expense_ledger.mark_uninvoiced(invoice.expense_ids)
        db.session.delete(invoice)
        commit_or_rollback("Delete invoice")

    current_app.logger.info("Deleted draft invoice %s, released %d expenses", number, released)


def reset_invoiced_expenses(client_id, actor: Actor) -> dict:
    """
    Administrative escape hatch: release every invoiced expense of a client and
    delete every invoice referencing them, whatever that invoice's status.
    """
    client = get_client(client_id)
    authorize(actor, client, "Access denied. You can only reset expenses for your assigned clients.")

    with client_locks.hold(client.id):
        invoiced = expense_ledger.list_invoiced(client.id)
        if not invoiced:
            raise InvalidStateError("No invoiced expenses found for this client")

        expense_ids = [e.id for e in invoiced]
        invoice_ids = {e.invoice_id for e in invoiced if e.invoice_id is not None}
        linked = (
            Invoice.query
            .filter(Invoice.lines.any(InvoiceExpense.expense_id.in_(expense_ids)))
            .all()
        )
        invoices = {inv.id: inv for inv in linked}
        for inv_id in invoice_ids - set(invoices):
            inv = db.session.get(Invoice, inv_id)
            if inv is not None:
                invoices[inv_id] = inv

        release_ids = list(expense_ids)
        for inv in invoices.values():
            release_ids.extend(i for i in inv.expense_ids if i not in release_ids)

        expense_ledger.mark_uninvoiced(release_ids)
        statuses = sorted({inv.status.value for inv in invoices.values()})
        for inv in invoices.values():
            db.session.delete(inv)
        commit_or_rollback("Reset invoiced expenses")

    current_app.logger.warning(
        "Reset %d invoiced expenses for client %s; deleted %d invoices (statuses: %s) by user %s",
        len(invoiced), client.id, len(invoices), ", ".join(statuses) or "-", actor.id,
    )
    return {"resetCount": len(invoiced), "deletedInvoices": len(invoices)}


def purge_client_billing(client: Client) -> dict:
    """
    Stage removal of every invoice and expense owned by a client.
    The caller holds the client's lock and owns the commit.
    """
    invoices = Invoice.query.filter(Invoice.client_id == client.id).all()

    # Release first so the invoice FK's SET NULL never meets an invoiced row
    expense_ledger.mark_uninvoiced(e.id for e in expense_ledger.list_invoiced(client.id))
    for inv in invoices:
        db.session.delete(inv)
    db.session.flush()

    removed = (
        Expense.query
        .filter(Expense.client_id == client.id)
        .delete(synchronize_session="fetch")
    )
    return {"deletedInvoices": len(invoices), "deletedExpenses": removed}
