"""
CRM Test Configuration

Shared fixtures: an app on in-memory SQLite, an HTTP test client, record
factories and a session login helper.
"""
import itertools
from datetime import date
from decimal import Decimal
from types import SimpleNamespace

import pytest

from crm import create_app
from crm.constants.roles import ROLE_EMPLOYEE, ROLE_MANAGER
from crm.extensions import db
from crm.models import Client, Expense, ExpenseCategory, User
from crm.settings import TestConfig
from crm.utils.guards import Actor
from crm.utils.passwords import hash_password

PASSWORD = "secret123"

_seq = itertools.count(1)


# =============================================================================
# FIXTURES: Application
# =============================================================================

@pytest.fixture
def app():
    app = create_app(TestConfig)
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def ctx(app):
    """Application context for calling services directly."""
    with app.app_context():
        yield app


@pytest.fixture
def api(app):
    return app.test_client()


# =============================================================================
# FIXTURES: Record factories (return plain values, not session-bound rows)
# =============================================================================

@pytest.fixture
def make_user(app):
    def _make(role=ROLE_EMPLOYEE, name=None, email=None, is_active=True):
        n = next(_seq)
        with app.app_context():
            user = User(
                name=name or f"User {n}",
                email=email or f"user{n}@example.com",
                role=role,
                is_active=is_active,
                password_hash=hash_password(PASSWORD),
            )
            db.session.add(user)
            db.session.commit()
            return SimpleNamespace(
                id=user.id,
                email=user.email,
                role=user.role,
                actor=Actor(id=user.id, role=user.role),
            )
    return _make


@pytest.fixture
def manager(make_user):
    return make_user(role=ROLE_MANAGER, name="Maria Manager")


@pytest.fixture
def employee(make_user):
    return make_user(role=ROLE_EMPLOYEE, name="Evan Employee")


@pytest.fixture
def other_employee(make_user):
    return make_user(role=ROLE_EMPLOYEE, name="Olga Other")


@pytest.fixture
def make_client(app):
    def _make(owner, status="new", estimated_value=0.0, name=None):
        n = next(_seq)
        with app.app_context():
            client = Client(
                name=name or f"Client {n}",
                email=f"client{n}@example.com",
                phone="0712345678",
                company=f"Company {n}",
                status=status,
                estimated_value=estimated_value,
                assigned_to_id=owner.id,
                created_by_id=owner.id,
            )
            db.session.add(client)
            db.session.commit()
            return client.id
    return _make


@pytest.fixture
def make_expense(app):
    def _make(client_id, amount, created_by, incurred=None, description=None,
              category=ExpenseCategory.CONSULTING):
        n = next(_seq)
        with app.app_context():
            expense = Expense(
                client_id=client_id,
                description=description or f"Expense {n}",
                category=category,
                amount=Decimal(str(amount)),
                date=incurred or date.today(),
                created_by_id=created_by.id,
            )
            db.session.add(expense)
            db.session.commit()
            return expense.id
    return _make


# =============================================================================
# FIXTURES: Session login
# =============================================================================

@pytest.fixture
def login():
    def _login(http, user, password=PASSWORD):
        resp = http.post("/api/auth/login", json={"email": user.email, "password": password})
        assert resp.status_code == 200, resp.get_json()
        return resp
    return _login


def assert_ledger_consistent():
    """No expense is flagged invoiced without a reference, or referenced while uninvoiced."""
    for expense in Expense.query.all():
        assert expense.is_invoiced == (expense.invoice_id is not None), expense
