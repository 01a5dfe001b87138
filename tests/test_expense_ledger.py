"""
Expense Ledger: reads by invoiced state and the conditional invoiced flips.
"""
import threading
import time
from datetime import date, timedelta
from decimal import Decimal

import pytest

from crm.extensions import db
from crm.models import Expense, Invoice
from crm.services import expense_ledger
from crm.services.locks import KeyedLock


@pytest.fixture
def ledger(employee, make_client, make_expense):
    client_id = make_client(employee)
    today = date.today()
    late = make_expense(client_id, 30, employee, incurred=today)
    early = make_expense(client_id, 10, employee, incurred=today - timedelta(days=10))
    middle = make_expense(client_id, 20, employee, incurred=today - timedelta(days=5))
    return client_id, early, middle, late


def _invoice_for(client_id, user):
    invoice = Invoice(
        invoice_number=f"TEST-{client_id}-{Invoice.query.count() + 1}",
        client_id=client_id,
        due_date=date.today(),
        created_by_id=user.id,
    )
    db.session.add(invoice)
    db.session.flush()
    return invoice


class TestReads:

    def test_uninvoiced_are_ordered_by_incurred_date(self, ctx, ledger):
        client_id, early, middle, late = ledger

        rows = expense_ledger.list_uninvoiced(client_id)

        assert [e.id for e in rows] == [early, middle, late]

    def test_list_by_ids_is_scoped_to_client(self, ctx, employee, ledger, make_client, make_expense):
        client_id, early, _, late = ledger
        foreign = make_expense(make_client(employee), 5, employee)

        rows = expense_ledger.list_by_ids([late, foreign, early, late], client_id=client_id)

        assert [e.id for e in rows] == [early, late]

    def test_list_by_ids_empty_selection(self, ctx, ledger):
        assert expense_ledger.list_by_ids([]) == []


class TestMarking:

    def test_mark_invoiced_then_uninvoiced(self, ctx, employee, ledger):
        client_id, early, middle, late = ledger
        invoice = _invoice_for(client_id, employee)

        marked = expense_ledger.mark_invoiced([early, middle], invoice.id)
        db.session.commit()

        assert marked == 2
        assert [e.id for e in expense_ledger.list_uninvoiced(client_id)] == [late]
        assert {e.id for e in expense_ledger.list_invoiced(client_id)} == {early, middle}

        released = expense_ledger.mark_uninvoiced([early, middle])
        db.session.commit()

        assert released == 2
        assert all(e.invoice_id is None for e in Expense.query.all())

    def test_already_invoiced_rows_are_not_relinked(self, ctx, employee, ledger):
        client_id, early, middle, _ = ledger
        first = _invoice_for(client_id, employee)
        expense_ledger.mark_invoiced([early], first.id)
        second = _invoice_for(client_id, employee)

        marked = expense_ledger.mark_invoiced([early, middle], second.id)
        db.session.commit()

        assert marked == 1
        assert db.session.get(Expense, early).invoice_id == first.id
        assert db.session.get(Expense, middle).invoice_id == second.id


class TestSummaries:

    def test_summarize_and_breakdown(self, ctx, ledger):
        client_id = ledger[0]
        query = Expense.query.filter(Expense.client_id == client_id)

        summary = expense_ledger.summarize(query)
        breakdown = expense_ledger.category_breakdown(query)

        assert summary == {"totalExpenses": 3, "totalAmount": 60.0, "averageAmount": 20.0}
        assert breakdown == {"Consulting": {"count": 3, "total": 60.0}}

    def test_amounts_are_exact(self, ctx, ledger):
        total = sum(Decimal(str(e.amount)) for e in expense_ledger.list_uninvoiced(ledger[0]))
        assert total == Decimal("60")


class TestKeyedLock:

    def test_lock_entries_are_released(self):
        locks = KeyedLock()

        with locks.hold(7):
            with locks.hold(8):
                assert set(locks._locks) == {7, 8}

        assert locks._locks == {}
        assert locks._holders == {}

    def test_same_key_is_exclusive(self):
        locks = KeyedLock()
        start = threading.Barrier(2)
        inside = []
        overlaps = []

        def worker(name):
            start.wait()
            for _ in range(25):
                with locks.hold(3):
                    inside.append(name)
                    if len(inside) > 1:
                        overlaps.append(list(inside))
                    time.sleep(0.001)
                    inside.remove(name)

        threads = [threading.Thread(target=worker, args=(n,)) for n in ("a", "b")]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)

        assert overlaps == []
        assert locks._locks == {}

    def test_different_keys_do_not_block(self):
        locks = KeyedLock()
        entered = threading.Event()

        def other_client():
            with locks.hold(2):
                entered.set()

        with locks.hold(1):
            worker = threading.Thread(target=other_client)
            worker.start()
            assert entered.wait(timeout=5)
        worker.join(timeout=5)
