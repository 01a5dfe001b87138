# crm/expenses.py
from __future__ import annotations

from datetime import date

from flask import Blueprint, current_app, jsonify, request
from flask_login import login_required

from .constants.roles import ROLE_EMPLOYEE
from .errors import InvalidStateError, NotFoundError, ValidationError
from .extensions import db
from .models import Expense
from .services import expense_ledger
from .services.invoicing import get_client
from .utils.db import commit_or_rollback, get_or_404
from .utils.filters import ExpenseFilter, parse_category
from .utils.guards import authorize, current_actor, manager_required, role_required
from .utils.parsing import clean_str, json_body, page_args, pagination_dict, parse_date, parse_decimal

expenses_bp = Blueprint("expenses", __name__, url_prefix="/api")


def _positive_amount(value):
    amount = parse_decimal(value)
    if amount is None:
        raise ValidationError("Amount must be a number")
    if amount <= 0:
        raise ValidationError("Amount must be greater than 0")
    return amount


def _expense_date(value) -> date:
    parsed = parse_date(value)
    if parsed is None:
        raise ValidationError("Date must be a valid date")
    return parsed


def _get_expense(expense_id) -> Expense:
    return get_or_404(Expense, expense_id, NotFoundError, "Expense not found")


# =========================================================
# Client expenses
# =========================================================
@expenses_bp.route("/clients/<int:client_id>/expenses", methods=["POST"])
@role_required(ROLE_EMPLOYEE)
def add_expense(client_id):
    data = json_body()
    description = clean_str(data.get("description"))
    category = data.get("category")
    if not description or not category or data.get("amount") in (None, ""):
        raise ValidationError("Description, category, and amount are required")

    amount = _positive_amount(data.get("amount"))
    category = parse_category(category)

    actor = current_actor()
    client = get_client(client_id)
    authorize(actor, client, "Access denied. You can only add expenses for your assigned clients.")

    expense = Expense(
        client_id=client.id,
        description=description,
        category=category,
        amount=amount,
        date=_expense_date(data["date"]) if data.get("date") else date.today(),
        created_by_id=actor.id,
    )
    db.session.add(expense)
    commit_or_rollback("Add expense")

    current_app.logger.info("Expense %s (%s) added to client %s", expense.id, expense.amount, client.id)
    return jsonify({"success": True, "message": "Expense added successfully", "data": expense.to_dict()}), 201


@expenses_bp.route("/clients/<int:client_id>/expenses", methods=["GET"])
@login_required
def list_client_expenses(client_id):
    actor = current_actor()
    client = get_client(client_id)
    authorize(actor, client, "Access denied. You can only view expenses for your assigned clients.")

    flt = ExpenseFilter.from_args(request.args, actor, client_id=client.id)
    page, limit = page_args(default_limit=10)

    query = flt.apply(Expense.query)
    total = query.count()
    totals = expense_ledger.summarize(query)
    rows = (
        query.order_by(Expense.date.desc(), Expense.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    return jsonify({
        "success": True,
        "data": [e.to_dict() for e in rows],
        "pagination": pagination_dict(page, limit, total),
        "totalAmount": totals["totalAmount"],
    })


# =========================================================
# Single expense
# =========================================================
@expenses_bp.route("/expenses/<int:expense_id>", methods=["PATCH"])
@login_required
def update_expense(expense_id):
    expense = _get_expense(expense_id)
    authorize(current_actor(), expense.client, "Access denied. You can only update expenses for your assigned clients.")

    if expense.is_invoiced:
        raise InvalidStateError("Cannot update invoiced expense")

    data = json_body()
    if "amount" in data:
        expense.amount = _positive_amount(data["amount"])
    if "description" in data:
        description = clean_str(data["description"])
        if not description:
            raise ValidationError("Description is required")
        expense.description = description
    if "category" in data:
        category = parse_category(data["category"])
        if category is None:
            raise ValidationError("Category is required")
        expense.category = category
    if "date" in data:
        expense.date = _expense_date(data["date"])

    commit_or_rollback("Update expense")
    return jsonify({"success": True, "message": "Expense updated successfully", "data": expense.to_dict()})


@expenses_bp.route("/expenses/<int:expense_id>", methods=["DELETE"])
@login_required
def delete_expense(expense_id):
    expense = _get_expense(expense_id)
    authorize(current_actor(), expense.client, "Access denied. You can only delete expenses for your assigned clients.")

    if expense.is_invoiced:
        raise InvalidStateError("Cannot delete invoiced expense")

    db.session.delete(expense)
    commit_or_rollback("Delete expense")
    return jsonify({"success": True, "message": "Expense deleted successfully"})


# =========================================================
# Stats / All (manager)
# =========================================================
@expenses_bp.route("/expenses/stats", methods=["GET"])
@login_required
def expense_stats():
    flt = ExpenseFilter.from_args({}, current_actor())
    query = flt.apply(Expense.query)

    data = expense_ledger.summarize(query)
    data["categoryBreakdown"] = expense_ledger.category_breakdown(query)
    return jsonify({"success": True, "data": data})


@expenses_bp.route("/expenses/all", methods=["GET"])
@manager_required
def all_expenses():
    flt = ExpenseFilter.from_args(request.args, current_actor())
    page, limit = page_args(default_limit=50)

    query = flt.apply(Expense.query)
    total = query.count()
    rows = (
        query.order_by(Expense.date.desc(), Expense.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return jsonify({
        "success": True,
        "expenses": [e.to_dict() for e in rows],
        "pagination": pagination_dict(page, limit, total),
    })
