# crm/utils/filters.py
"""
Filter objects built once per request and applied to queries.

Role-dependent narrowing (employees only see their assigned clients) is decided
when the filter is built, so query code never branches on the actor's role.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta

import sqlalchemy as sa

from crm.errors import ValidationError
from crm.models import Client, Expense, ExpenseCategory

from .guards import Actor
from .parsing import parse_date, parse_int


@dataclass(frozen=True)
class ClientScope:
    """Which clients' records a request may see; owner_id None means every client."""

    owner_id: int | None = None

    @classmethod
    def for_actor(cls, actor: Actor, requested_owner=None) -> "ClientScope":
        if not actor.is_elevated:
            return cls(owner_id=actor.id)
        return cls(owner_id=parse_int(requested_owner))

    def client_ids(self):
        """Subquery of visible client ids (or None when unrestricted)."""
        if self.owner_id is None:
            return None
        return sa.select(Client.id).where(Client.assigned_to_id == self.owner_id)

    def apply_to_clients(self, query):
        if self.owner_id is None:
            return query
        return query.filter(Client.assigned_to_id == self.owner_id)

    def apply_by_client_column(self, query, client_column):
        ids = self.client_ids()
        if ids is None:
            return query
        return query.filter(client_column.in_(ids))


def period_start(period: str | None, default: str = "month", now: datetime | None = None) -> datetime | None:
    """Start of a reporting window: week (rolling 7 days), month, quarter, year."""
    now = now or datetime.utcnow()
    key = (period or default).strip().lower()
    if key == "week":
        return now - timedelta(days=7)
    if key == "month":
        return datetime(now.year, now.month, 1)
    if key == "quarter":
        return datetime(now.year, ((now.month - 1) // 3) * 3 + 1, 1)
    if key == "year":
        return datetime(now.year, 1, 1)
    if key in ("all", ""):
        return None
    return period_start(default, default, now)


def parse_category(value) -> ExpenseCategory | None:
    if value in (None, "", "all"):
        return None
    try:
        return ExpenseCategory(value)
    except ValueError:
        raise ValidationError(f"Invalid category: {value}") from None


@dataclass(frozen=True)
class ExpenseFilter:
    scope: ClientScope = ClientScope()
    client_id: int | None = None
    category: ExpenseCategory | None = None
    start: date | None = None
    end: date | None = None

    @classmethod
    def from_args(cls, args, actor: Actor, *, client_id: int | None = None) -> "ExpenseFilter":
        start = parse_date(args.get("startDate"))
        end = parse_date(args.get("endDate"))
        date_range = args.get("dateRange")
        if date_range and start is None:
            since = period_start(date_range, default="all")
            start = since.date() if since else None
        return cls(
            scope=ClientScope.for_actor(actor),
            client_id=client_id if client_id is not None else parse_int(args.get("client")),
            category=parse_category(args.get("category")),
            start=start,
            end=end,
        )

    def apply(self, query):
        query = self.scope.apply_by_client_column(query, Expense.client_id)
        if self.client_id is not None:
            query = query.filter(Expense.client_id == self.client_id)
        if self.category is not None:
            query = query.filter(Expense.category == self.category)
        if self.start is not None:
            query = query.filter(Expense.date >= self.start)
        if self.end is not None:
            query = query.filter(Expense.date <= self.end)
        return query
