"""
Invoice generation, numbering and the status lifecycle, exercised through the
service layer with an explicit actor.
"""
import re
import threading
from datetime import date, timedelta
from decimal import Decimal

import pytest

from crm.errors import (
    ForbiddenError,
    InvalidStateError,
    InvalidStatusError,
    NoBillableExpensesError,
    NotFoundError,
    ValidationError,
)
from crm.extensions import db
from crm.models import Expense, Invoice, InvoiceStatus
from crm.services import invoicing
from crm.services.invoice_numbers import next_invoice_number, timestamp_invoice_number
from crm.services.locks import client_locks
from tests.conftest import assert_ledger_consistent

DUE = (date.today() + timedelta(days=30)).isoformat()


@pytest.fixture
def billable(employee, make_client, make_expense):
    """Client X owned by the employee with expenses A=100 and B=250, both uninvoiced."""
    client_id = make_client(employee)
    a = make_expense(client_id, 100, employee, incurred=date.today() - timedelta(days=3))
    b = make_expense(client_id, 250, employee, incurred=date.today() - timedelta(days=1))
    return client_id, a, b


def _generate(client_id, actor, expense_ids=None, notes="Net 30"):
    return invoicing.generate_invoice(client_id, DUE, notes, expense_ids, actor)


# =============================================================================
# GENERATION
# =============================================================================

class TestGenerateInvoice:

    def test_default_selection_bills_every_uninvoiced_expense(self, ctx, employee, billable):
        client_id, a, b = billable

        invoice = _generate(client_id, employee.actor)

        assert invoice.total_amount == Decimal("350")
        assert invoice.expense_ids == [a, b]
        assert invoice.status == InvoiceStatus.DRAFT
        assert invoice.issue_date == date.today()
        assert invoice.due_date.isoformat() == DUE
        for expense_id in (a, b):
            expense = db.session.get(Expense, expense_id)
            assert expense.is_invoiced is True
            assert expense.invoice_id == invoice.id
        assert_ledger_consistent()

    def test_rerun_without_billable_expenses_fails(self, ctx, employee, billable):
        client_id, _, _ = billable
        _generate(client_id, employee.actor)

        with pytest.raises(NoBillableExpensesError):
            _generate(client_id, employee.actor)

        assert Invoice.query.count() == 1

    def test_client_without_expenses_gets_no_empty_invoice(self, ctx, employee, make_client):
        client_id = make_client(employee)

        with pytest.raises(NoBillableExpensesError):
            _generate(client_id, employee.actor)

        assert Invoice.query.count() == 0

    def test_only_this_clients_expenses_are_billed(self, ctx, employee, billable, make_client, make_expense):
        client_id, a, b = billable
        other_client = make_client(employee)
        foreign = make_expense(other_client, 999, employee)

        invoice = _generate(client_id, employee.actor)

        assert set(invoice.expense_ids) == {a, b}
        assert db.session.get(Expense, foreign).is_invoiced is False

    def test_explicit_selection_restricts_the_set(self, ctx, employee, billable):
        client_id, a, b = billable

        invoice = _generate(client_id, employee.actor, expense_ids=[str(b)])

        assert invoice.expense_ids == [b]
        assert invoice.total_amount == Decimal("250")
        assert db.session.get(Expense, a).is_invoiced is False

    def test_explicit_selection_of_invoiced_expense_is_rejected(self, ctx, employee, billable):
        client_id, a, b = billable
        first = _generate(client_id, employee.actor, expense_ids=[a])

        with pytest.raises(InvalidStateError) as exc:
            _generate(client_id, employee.actor, expense_ids=[a, b])

        assert exc.value.details == {"invoicedExpenseIds": [a]}
        assert db.session.get(Expense, a).invoice_id == first.id
        assert db.session.get(Expense, b).is_invoiced is False

    def test_explicit_selection_from_another_client_is_not_found(
        self, ctx, employee, billable, make_client, make_expense
    ):
        client_id, a, _ = billable
        foreign = make_expense(make_client(employee), 10, employee)

        with pytest.raises(NotFoundError) as exc:
            _generate(client_id, employee.actor, expense_ids=[a, foreign])

        assert exc.value.details == {"missingExpenseIds": [foreign]}
        assert Invoice.query.count() == 0

    def test_due_date_is_required(self, ctx, employee, billable):
        client_id, _, _ = billable

        with pytest.raises(ValidationError, match="Due date is required"):
            invoicing.generate_invoice(client_id, None, "", None, employee.actor)

        with pytest.raises(ValidationError, match="valid date"):
            invoicing.generate_invoice(client_id, "next tuesday", "", None, employee.actor)

    def test_unknown_client_is_not_found(self, ctx, employee):
        with pytest.raises(NotFoundError, match="Client not found"):
            _generate(424242, employee.actor)

    def test_non_owner_is_forbidden_and_nothing_changes(self, ctx, other_employee, billable):
        client_id, a, b = billable

        with pytest.raises(ForbiddenError):
            _generate(client_id, other_employee.actor)

        assert Invoice.query.count() == 0
        assert not any(db.session.get(Expense, i).is_invoiced for i in (a, b))

    def test_manager_can_bill_any_client(self, ctx, manager, billable):
        client_id, _, _ = billable

        invoice = _generate(client_id, manager.actor)

        assert invoice.created_by_id == manager.id

    def test_concurrent_mark_conflict_rolls_back(self, ctx, employee, billable, monkeypatch):
        client_id, a, b = billable
        monkeypatch.setattr(
            invoicing.expense_ledger, "mark_invoiced", lambda ids, invoice_id, **kw: len(ids) - 1
        )

        with pytest.raises(InvalidStateError, match="concurrent"):
            _generate(client_id, employee.actor)

        assert Invoice.query.count() == 0
        assert not any(db.session.get(Expense, i).is_invoiced for i in (a, b))

    def test_generation_waits_for_client_lock(self, app, employee, billable):
        client_id, a, b = billable
        result = {}

        def run():
            with app.app_context():
                result["expense_ids"] = _generate(client_id, employee.actor).expense_ids

        with client_locks.hold(client_id):
            worker = threading.Thread(target=run)
            worker.start()
            worker.join(timeout=0.3)
            assert worker.is_alive()
            assert result == {}

        worker.join(timeout=5)
        assert result == {"expense_ids": [a, b]}


# =============================================================================
# NUMBERING
# =============================================================================

class TestInvoiceNumbers:

    def test_first_number_is_zero_padded(self, ctx):
        assert next_invoice_number() == "INV-000001"

    def test_number_follows_invoice_count(self, ctx, employee, billable):
        client_id, _, _ = billable
        invoice = _generate(client_id, employee.actor)

        assert invoice.invoice_number == "INV-000001"
        assert next_invoice_number() == "INV-000002"

    def test_timestamp_fallback_format(self, ctx):
        assert re.fullmatch(r"INV-\d{13}", timestamp_invoice_number())

    def test_conflict_is_retried_with_next_number(self, ctx, employee, billable, make_client):
        client_id, _, _ = billable
        # count=1 makes the allocator propose INV-000002, which is taken
        db.session.add(Invoice(
            invoice_number="INV-000002",
            client_id=make_client(employee),
            due_date=date.today(),
            created_by_id=employee.id,
        ))
        db.session.commit()

        invoice = _generate(client_id, employee.actor)

        assert invoice.invoice_number == "INV-000003"
        assert_ledger_consistent()

    def test_exhausted_retries_fall_back_to_timestamp(self, ctx, employee, billable, make_client):
        ctx.config["INVOICE_NUMBER_ATTEMPTS"] = 1
        client_id, a, b = billable
        db.session.add(Invoice(
            invoice_number="INV-000002",
            client_id=make_client(employee),
            due_date=date.today(),
            created_by_id=employee.id,
        ))
        db.session.commit()

        invoice = _generate(client_id, employee.actor)

        assert re.fullmatch(r"INV-\d{13}", invoice.invoice_number)
        assert set(invoice.expense_ids) == {a, b}


# =============================================================================
# STATUS LIFECYCLE
# =============================================================================

class TestUpdateStatus:

    def test_forward_transitions_stamp_times(self, ctx, employee, billable):
        invoice = _generate(billable[0], employee.actor)

        sent = invoicing.update_status(invoice.id, "sent", employee.actor)
        assert sent.status == InvoiceStatus.SENT
        assert sent.sent_at is not None

        paid = invoicing.update_status(invoice.id, "PAID", employee.actor)
        assert paid.status == InvoiceStatus.PAID
        assert paid.paid_at is not None

    @pytest.mark.parametrize("path", [("paid",), ("sent", "draft"), ("sent", "paid", "sent")])
    def test_skipped_or_backward_transitions_are_rejected(self, ctx, employee, billable, path):
        invoice = _generate(billable[0], employee.actor)
        *allowed, rejected = path
        for status in allowed:
            invoicing.update_status(invoice.id, status, employee.actor)

        with pytest.raises(InvalidStateError):
            invoicing.update_status(invoice.id, rejected, employee.actor)

    def test_same_status_is_a_no_op(self, ctx, employee, billable):
        invoice = _generate(billable[0], employee.actor)

        again = invoicing.update_status(invoice.id, "draft", employee.actor)

        assert again.status == InvoiceStatus.DRAFT

    def test_unknown_status_is_invalid(self, ctx, employee, billable):
        invoice = _generate(billable[0], employee.actor)

        with pytest.raises(InvalidStatusError):
            invoicing.update_status(invoice.id, "void", employee.actor)

    def test_non_owner_cannot_change_status(self, ctx, employee, other_employee, billable):
        invoice = _generate(billable[0], employee.actor)

        with pytest.raises(ForbiddenError):
            invoicing.update_status(invoice.id, "sent", other_employee.actor)

    def test_status_change_waits_for_client_lock(self, app, employee, billable):
        client_id = billable[0]
        with app.app_context():
            invoice_id = _generate(client_id, employee.actor).id
        done = threading.Event()

        def run():
            with app.app_context():
                invoicing.update_status(invoice_id, "sent", employee.actor)
                done.set()

        with client_locks.hold(client_id):
            worker = threading.Thread(target=run)
            worker.start()
            assert not done.wait(timeout=0.3)

        worker.join(timeout=5)
        assert done.is_set()


# =============================================================================
# DELETE / RESET
# =============================================================================

class TestDeleteInvoice:

    def test_deleting_draft_releases_expenses(self, ctx, employee, billable):
        client_id, a, b = billable
        invoice = _generate(client_id, employee.actor)

        invoicing.delete_invoice(invoice.id, employee.actor)

        assert Invoice.query.count() == 0
        for expense_id in (a, b):
            expense = db.session.get(Expense, expense_id)
            assert expense.is_invoiced is False
            assert expense.invoice_id is None
        assert_ledger_consistent()

        regenerated = _generate(client_id, employee.actor)
        assert set(regenerated.expense_ids) == {a, b}

    @pytest.mark.parametrize("statuses", [("sent",), ("sent", "paid")])
    def test_only_drafts_can_be_deleted(self, ctx, employee, billable, statuses):
        client_id, a, b = billable
        invoice = _generate(client_id, employee.actor)
        for status in statuses:
            invoicing.update_status(invoice.id, status, employee.actor)

        with pytest.raises(InvalidStateError, match="Only draft invoices can be deleted"):
            invoicing.delete_invoice(invoice.id, employee.actor)

        assert db.session.get(Invoice, invoice.id) is not None
        assert all(db.session.get(Expense, i).invoice_id == invoice.id for i in (a, b))

    def test_unknown_invoice_is_not_found(self, ctx, employee):
        with pytest.raises(NotFoundError, match="Invoice not found"):
            invoicing.delete_invoice(31337, employee.actor)

    def test_delete_rereads_status_under_lock(self, ctx, employee, billable):
        client_id, a, b = billable
        invoice = _generate(client_id, employee.actor)
        # Another worker sends the invoice; this session still holds the draft row
        Invoice.query.filter_by(id=invoice.id).update(
            {Invoice.status: InvoiceStatus.SENT}, synchronize_session=False
        )
        assert invoice.status == InvoiceStatus.DRAFT

        with pytest.raises(InvalidStateError, match="Only draft invoices can be deleted"):
            invoicing.delete_invoice(invoice.id, employee.actor)

        assert db.session.get(Invoice, invoice.id) is not None
        assert all(db.session.get(Expense, i).invoice_id == invoice.id for i in (a, b))


class TestResetInvoicedExpenses:

    def test_reset_deletes_invoice_and_restores_expenses(self, ctx, employee, billable):
        client_id, a, b = billable
        _generate(client_id, employee.actor)

        result = invoicing.reset_invoiced_expenses(client_id, employee.actor)

        assert result == {"resetCount": 2, "deletedInvoices": 1}
        assert Invoice.query.count() == 0
        for expense_id in (a, b):
            expense = db.session.get(Expense, expense_id)
            assert expense.is_invoiced is False
            assert expense.invoice_id is None

    def test_reset_ignores_invoice_status(self, ctx, employee, billable):
        client_id, a, b = billable
        first = _generate(client_id, employee.actor, expense_ids=[a])
        _generate(client_id, employee.actor, expense_ids=[b])
        invoicing.update_status(first.id, "sent", employee.actor)
        invoicing.update_status(first.id, "paid", employee.actor)

        result = invoicing.reset_invoiced_expenses(client_id, employee.actor)

        assert result == {"resetCount": 2, "deletedInvoices": 2}
        assert Invoice.query.count() == 0
        assert_ledger_consistent()

    def test_reset_without_invoiced_expenses_fails(self, ctx, employee, billable):
        with pytest.raises(InvalidStateError, match="No invoiced expenses"):
            invoicing.reset_invoiced_expenses(billable[0], employee.actor)

    def test_reset_requires_access(self, ctx, employee, other_employee, billable):
        client_id, _, _ = billable
        _generate(client_id, employee.actor)

        with pytest.raises(ForbiddenError):
            invoicing.reset_invoiced_expenses(client_id, other_employee.actor)

        assert Invoice.query.count() == 1


class TestReads:

    def test_client_invoices_newest_first(self, ctx, employee, billable):
        client_id, a, b = billable
        first = _generate(client_id, employee.actor, expense_ids=[a])
        second = _generate(client_id, employee.actor, expense_ids=[b])

        rows = invoicing.list_client_invoices(client_id, employee.actor)

        assert [inv.id for inv in rows] == [second.id, first.id]

    def test_get_invoice_checks_access(self, ctx, employee, other_employee, billable):
        invoice = _generate(billable[0], employee.actor)

        assert invoicing.get_invoice(invoice.id, employee.actor).id == invoice.id
        with pytest.raises(ForbiddenError):
            invoicing.get_invoice(invoice.id, other_employee.actor)
