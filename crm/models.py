# crm/models.py
from __future__ import annotations

import enum
from datetime import date, datetime
from decimal import Decimal

from flask_login import UserMixin
from sqlalchemy import Enum as SAEnum
from sqlalchemy.ext.associationproxy import association_proxy
from sqlalchemy.ext.orderinglist import ordering_list

from .constants.roles import ROLE_EMPLOYEE
from .extensions import db


# Naive UTC everywhere: the DB columns are "timestamp without time zone".
def utcnow_naive() -> datetime:
    return datetime.utcnow()


def _iso(value):
    if value is None:
        return None
    return value.isoformat()


def _money(value) -> float:
    if value is None:
        return 0.0
    return float(value)


def _enum_column(enum_cls, name: str, default):
    return db.Column(
        SAEnum(
            enum_cls,
            name=name,
            values_callable=lambda e: [m.value for m in e],
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        default=default,
    )


def user_summary(user) -> dict | None:
    if user is None:
        return None
    return {"_id": user.id, "name": user.name, "email": user.email}


def client_summary(client) -> dict | None:
    if client is None:
        return None
    return {"_id": client.id, "name": client.name, "company": client.company}


# =========================================================
# User (Authentication + Roles)
# =========================================================
class User(UserMixin, db.Model):
    __tablename__ = "user"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)

    # manager / employee
    role = db.Column(db.String(30), nullable=False, default=ROLE_EMPLOYEE)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    last_login_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow_naive, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow_naive, onupdate=utcnow_naive, nullable=False)

    def to_dict(self) -> dict:
        return {"_id": self.id, "name": self.name, "email": self.email, "role": self.role}

    def __repr__(self) -> str:
        return f"<User {self.id} {self.email} {self.role}>"


# =========================================================
# Client (sales lead / account)
# =========================================================
CLIENT_STATUSES = ("new", "contacted", "qualified", "won", "lost")


class Client(db.Model):
    __tablename__ = "client"
    __table_args__ = (
        db.Index("ix_client_assigned_status", "assigned_to_id", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(160), nullable=False)
    email = db.Column(db.String(120), nullable=False)
    phone = db.Column(db.String(30), nullable=False)
    company = db.Column(db.String(160), nullable=False)
    status = db.Column(db.String(20), nullable=False, default="new")

    assigned_to_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    assigned_to = db.relationship("User", foreign_keys=[assigned_to_id], lazy="joined")

    created_by_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)
    created_by = db.relationship("User", foreign_keys=[created_by_id], lazy="joined")

    notes = db.Column(db.Text, nullable=False, default="")
    estimated_value = db.Column(db.Float, nullable=False, default=0.0)
    last_contact_date = db.Column(db.DateTime, default=utcnow_naive, nullable=True)

    feedback_requested = db.Column(db.Boolean, nullable=False, default=False)
    feedback_requested_at = db.Column(db.DateTime, nullable=True)

    # Recomputed from approved feedback
    average_rating = db.Column(db.Float, nullable=False, default=0.0)
    feedback_count = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime, default=utcnow_naive, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow_naive, onupdate=utcnow_naive, nullable=False)

    def to_dict(self) -> dict:
        return {
            "_id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "company": self.company,
            "status": self.status,
            "assignedTo": user_summary(self.assigned_to),
            "createdBy": user_summary(self.created_by),
            "notes": self.notes,
            "estimatedValue": self.estimated_value,
            "lastContactDate": _iso(self.last_contact_date),
            "feedbackRequested": self.feedback_requested,
            "feedbackRequestedAt": _iso(self.feedback_requested_at),
            "averageRating": self.average_rating,
            "feedbackCount": self.feedback_count,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }

    def __repr__(self) -> str:
        return f"<Client {self.id} {self.name}>"


# =========================================================
# Activity
# =========================================================
ACTIVITY_TYPES = ("call", "meeting", "note", "email", "follow-up")
ACTIVITY_PRIORITIES = ("low", "medium", "high")


class Activity(db.Model):
    __tablename__ = "activity"
    __table_args__ = (
        db.Index("ix_activity_client_date", "client_id", "date"),
    )

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, db.ForeignKey("client.id", ondelete="CASCADE"), nullable=False)
    client = db.relationship("Client", foreign_keys=[client_id], lazy="joined")

    type = db.Column(db.String(20), nullable=False)
    description = db.Column(db.Text, nullable=False)
    date = db.Column(db.DateTime, default=utcnow_naive, nullable=False)
    done = db.Column(db.Boolean, nullable=False, default=False)
    priority = db.Column(db.String(10), nullable=False, default="medium")

    created_by_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)
    created_by = db.relationship("User", foreign_keys=[created_by_id], lazy="joined")

    created_at = db.Column(db.DateTime, default=utcnow_naive, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow_naive, onupdate=utcnow_naive, nullable=False)

    def to_dict(self) -> dict:
        return {
            "_id": self.id,
            "clientId": client_summary(self.client),
            "type": self.type,
            "description": self.description,
            "date": _iso(self.date),
            "done": self.done,
            "priority": self.priority,
            "createdBy": user_summary(self.created_by),
            "createdAt": _iso(self.created_at),
        }


# =========================================================
# Task
# =========================================================
TASK_PRIORITIES = ("low", "medium", "high", "urgent")
TASK_STATUSES = ("pending", "in_progress", "completed", "cancelled")


class Task(db.Model):
    __tablename__ = "task"
    __table_args__ = (
        db.Index("ix_task_assigned_status", "assigned_to_id", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)

    assigned_to_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    assigned_to = db.relationship("User", foreign_keys=[assigned_to_id], lazy="joined")

    assigned_by_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)
    assigned_by = db.relationship("User", foreign_keys=[assigned_by_id], lazy="joined")

    client_id = db.Column(db.Integer, db.ForeignKey("client.id", ondelete="SET NULL"), nullable=True)
    client = db.relationship("Client", foreign_keys=[client_id], lazy="joined")

    priority = db.Column(db.String(10), nullable=False, default="medium")
    status = db.Column(db.String(20), nullable=False, default="pending")
    due_date = db.Column(db.DateTime, nullable=True, index=True)
    completed_at = db.Column(db.DateTime, nullable=True)
    notes = db.Column(db.Text, nullable=True)
    tags = db.Column(db.JSON, nullable=False, default=list)

    created_at = db.Column(db.DateTime, default=utcnow_naive, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow_naive, onupdate=utcnow_naive, nullable=False)

    def to_dict(self) -> dict:
        return {
            "_id": self.id,
            "title": self.title,
            "description": self.description,
            "assignedTo": user_summary(self.assigned_to),
            "assignedBy": user_summary(self.assigned_by),
            "clientId": client_summary(self.client),
            "priority": self.priority,
            "status": self.status,
            "dueDate": _iso(self.due_date),
            "completedAt": _iso(self.completed_at),
            "notes": self.notes,
            "tags": list(self.tags or []),
            "createdAt": _iso(self.created_at),
        }


# =========================================================
# Feedback
# =========================================================
FEEDBACK_STATUSES = ("pending", "approved", "rejected")


class Feedback(db.Model):
    __tablename__ = "feedback"
    __table_args__ = (
        db.CheckConstraint("rating BETWEEN 1 AND 5", name="ck_feedback_rating_range"),
    )

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, db.ForeignKey("client.id", ondelete="CASCADE"), nullable=False, index=True)
    client = db.relationship("Client", foreign_keys=[client_id], lazy="joined")

    rating = db.Column(db.Integer, nullable=False)
    comment = db.Column(db.String(500), nullable=True)
    service_quality = db.Column(db.Integer, nullable=True)
    communication = db.Column(db.Integer, nullable=True)
    would_recommend = db.Column(db.Boolean, nullable=False, default=False)
    submitted_by = db.Column(db.String(160), nullable=False)
    is_anonymous = db.Column(db.Boolean, nullable=False, default=False)
    status = db.Column(db.String(20), nullable=False, default="pending", index=True)

    created_at = db.Column(db.DateTime, default=utcnow_naive, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow_naive, onupdate=utcnow_naive, nullable=False)

    def to_dict(self) -> dict:
        return {
            "_id": self.id,
            "clientId": client_summary(self.client),
            "rating": self.rating,
            "comment": self.comment,
            "serviceQuality": self.service_quality,
            "communication": self.communication,
            "wouldRecommend": self.would_recommend,
            "submittedBy": self.submitted_by,
            "isAnonymous": self.is_anonymous,
            "status": self.status,
            "createdAt": _iso(self.created_at),
        }


# =========================================================
# Expense
# =========================================================
class ExpenseCategory(enum.Enum):
    CONSULTING = "Consulting"
    HOSTING = "Hosting"
    MAINTENANCE = "Maintenance"
    DEVELOPMENT = "Development"
    DESIGN = "Design"
    MARKETING = "Marketing"
    OTHER = "Other"


class Expense(db.Model):
    __tablename__ = "expense"
    __table_args__ = (
        # is_invoiced is true exactly when an invoice is referenced
        db.CheckConstraint(
            "(is_invoiced AND invoice_id IS NOT NULL) OR (NOT is_invoiced AND invoice_id IS NULL)",
            name="ck_expense_invoiced_reference",
        ),
        db.CheckConstraint("amount >= 0", name="ck_expense_amount_non_negative"),
        db.Index("ix_expense_client_date", "client_id", "date"),
    )

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, db.ForeignKey("client.id", ondelete="CASCADE"), nullable=False)
    client = db.relationship("Client", foreign_keys=[client_id], lazy="joined")

    description = db.Column(db.String(255), nullable=False)
    category = _enum_column(ExpenseCategory, "expense_category", ExpenseCategory.OTHER)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    date = db.Column(db.Date, default=date.today, nullable=False)

    created_by_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)
    created_by = db.relationship("User", foreign_keys=[created_by_id], lazy="joined")

    is_invoiced = db.Column(db.Boolean, nullable=False, default=False, index=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoice.id", ondelete="SET NULL"), nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow_naive, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow_naive, onupdate=utcnow_naive, nullable=False)

    def to_dict(self) -> dict:
        return {
            "_id": self.id,
            "clientId": client_summary(self.client),
            "description": self.description,
            "category": self.category.value,
            "amount": _money(self.amount),
            "date": _iso(self.date),
            "createdBy": user_summary(self.created_by),
            "isInvoiced": self.is_invoiced,
            "invoiceId": self.invoice_id,
            "createdAt": _iso(self.created_at),
        }

    def line_dict(self) -> dict:
        return {
            "_id": self.id,
            "description": self.description,
            "category": self.category.value,
            "amount": _money(self.amount),
            "date": _iso(self.date),
        }

    def __repr__(self) -> str:
        return f"<Expense {self.id} client={self.client_id} {self.amount} invoiced={self.is_invoiced}>"


# =========================================================
# Invoice Status (Enum)
# =========================================================
class InvoiceStatus(enum.Enum):
    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"


# =========================================================
# Invoice
# =========================================================
class Invoice(db.Model):
    __tablename__ = "invoice"

    id = db.Column(db.Integer, primary_key=True)
    invoice_number = db.Column(db.String(40), unique=True, nullable=False)

    client_id = db.Column(db.Integer, db.ForeignKey("client.id", ondelete="CASCADE"), nullable=False, index=True)
    client = db.relationship("Client", foreign_keys=[client_id], lazy="joined")

    # Ordered, non-owning references to the billed expenses
    lines = db.relationship(
        "InvoiceExpense",
        back_populates="invoice",
        order_by="InvoiceExpense.position",
        collection_class=ordering_list("position"),
        cascade="all, delete-orphan",
        lazy="select",
    )
    expenses = association_proxy("lines", "expense", creator=lambda expense: InvoiceExpense(expense=expense))

    total_amount = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0"))

    status = _enum_column(InvoiceStatus, "invoice_status", InvoiceStatus.DRAFT)

    issue_date = db.Column(db.Date, default=date.today, nullable=False)
    due_date = db.Column(db.Date, nullable=False)
    notes = db.Column(db.Text, nullable=False, default="")

    sent_at = db.Column(db.DateTime, nullable=True)
    paid_at = db.Column(db.DateTime, nullable=True)

    created_by_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    created_by = db.relationship("User", foreign_keys=[created_by_id], lazy="joined")

    created_at = db.Column(db.DateTime, default=utcnow_naive, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow_naive, onupdate=utcnow_naive, nullable=False)

    @property
    def expense_ids(self) -> list[int]:
        return [line.expense_id for line in self.lines]

    def to_dict(self, *, with_expenses: bool = True) -> dict:
        client = self.client
        data = {
            "_id": self.id,
            "invoiceNumber": self.invoice_number,
            "clientId": {
                "_id": client.id,
                "name": client.name,
                "company": client.company,
                "email": client.email,
                "phone": client.phone,
                "assignedTo": client.assigned_to_id,
            } if client else None,
            "totalAmount": _money(self.total_amount),
            "status": self.status.value,
            "issueDate": _iso(self.issue_date),
            "dueDate": _iso(self.due_date),
            "notes": self.notes or "",
            "sentAt": _iso(self.sent_at),
            "paidAt": _iso(self.paid_at),
            "createdBy": user_summary(self.created_by),
            "createdAt": _iso(self.created_at),
        }
        if with_expenses:
            data["expenses"] = [e.line_dict() for e in self.expenses]
        else:
            data["expenses"] = self.expense_ids
        return data

    def __repr__(self) -> str:
        return f"<Invoice {self.id} {self.invoice_number} {self.status}>"


# =========================================================
# InvoiceExpense (invoice -> expense reference, ordered)
# =========================================================
class InvoiceExpense(db.Model):
    __tablename__ = "invoice_expense"
    __table_args__ = (
        db.UniqueConstraint("invoice_id", "expense_id", name="uq_invoice_expense"),
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoice.id", ondelete="CASCADE"), nullable=False, index=True)
    expense_id = db.Column(db.Integer, db.ForeignKey("expense.id", ondelete="CASCADE"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)

    invoice = db.relationship("Invoice", back_populates="lines")
    expense = db.relationship("Expense", lazy="joined")
