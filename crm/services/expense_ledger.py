# crm/services/expense_ledger.py
"""
Reads and flips the invoiced state of expense records.

The mark_* helpers only stage UPDATE statements on the current session; the caller
owns the commit so invoice writes and expense flips land in one transaction.
"""
from __future__ import annotations

from typing import Iterable

from crm.extensions import db
from crm.models import Expense


def _unique_ids(ids: Iterable[int]) -> list[int]:
    seen = []
    for i in ids:
        if i not in seen:
            seen.append(i)
    return seen


def list_uninvoiced(client_id: int) -> list[Expense]:
    """Default billing set: the client's uninvoiced expenses, oldest first."""
    return (
        Expense.query
        .filter(Expense.client_id == client_id, Expense.is_invoiced.is_(False))
        .order_by(Expense.date.asc(), Expense.id.asc())
        .all()
    )


def list_by_ids(ids: Iterable[int], client_id: int | None = None) -> list[Expense]:
    """
    Expenses matching an explicit id selection, oldest first.
    Does not filter on invoiced state; callers decide what to do with invoiced rows.
    """
    wanted = _unique_ids(ids)
    if not wanted:
        return []
    query = Expense.query.filter(Expense.id.in_(wanted))
    if client_id is not None:
        query = query.filter(Expense.client_id == client_id)
    return query.order_by(Expense.date.asc(), Expense.id.asc()).all()


def list_invoiced(client_id: int) -> list[Expense]:
    return (
        Expense.query
        .filter(Expense.client_id == client_id, Expense.is_invoiced.is_(True))
        .order_by(Expense.date.asc(), Expense.id.asc())
        .all()
    )


def mark_invoiced(ids: Iterable[int], invoice_id: int, *, only_uninvoiced: bool = True) -> int:
    """
    Link expenses to an invoice. With only_uninvoiced, rows already linked to
    another invoice are left alone; compare the returned count to detect that.
    """
    wanted = _unique_ids(ids)
    if not wanted:
        return 0
    query = Expense.query.filter(Expense.id.in_(wanted))
    if only_uninvoiced:
        query = query.filter(Expense.is_invoiced.is_(False))
    return query.update(
        {Expense.is_invoiced: True, Expense.invoice_id: invoice_id},
        synchronize_session="fetch",
    )


def mark_uninvoiced(ids: Iterable[int]) -> int:
    wanted = _unique_ids(ids)
    if not wanted:
        return 0
    return (
        Expense.query
        .filter(Expense.id.in_(wanted))
        .update(
            {Expense.is_invoiced: False, Expense.invoice_id: None},
            synchronize_session="fetch",
        )
    )


def summarize(query) -> dict:
    """Count / total / average over an already-filtered Expense query."""
    row = query.with_entities(
        db.func.count(Expense.id),
        db.func.coalesce(db.func.sum(Expense.amount), 0),
        db.func.avg(Expense.amount),
    ).one()
    count, total, average = row
    return {
        "totalExpenses": int(count or 0),
        "totalAmount": float(total or 0),
        "averageAmount": round(float(average or 0), 2),
    }


def category_breakdown(query) -> dict:
    rows = (
        query.with_entities(
            Expense.category,
            db.func.count(Expense.id),
            db.func.coalesce(db.func.sum(Expense.amount), 0),
        )
        .group_by(Expense.category)
        .all()
    )
    return {
        category.value: {"count": int(count), "total": float(total)}
        for category, count, total in rows
    }
