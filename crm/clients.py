# crm/clients.py
from __future__ import annotations

from datetime import datetime

from flask import Blueprint, current_app, jsonify, request
from flask_login import login_required

from .constants.roles import ROLE_EMPLOYEE
from .errors import ValidationError
from .extensions import db
from .models import CLIENT_STATUSES, Activity, Client, Feedback, Task, User
from .services.invoicing import get_client, purge_client_billing
from .services.locks import client_locks
from .utils.db import commit_or_rollback
from .utils.filters import ClientScope
from .utils.guards import authorize, current_actor, manager_required
from .utils.parsing import clean_str, json_body, parse_float, parse_int
from .utils.passwords import is_valid_email, normalize_email

clients_bp = Blueprint("clients", __name__, url_prefix="/api/clients")

UPDATABLE_FIELDS = ("name", "email", "phone", "company", "notes", "estimatedValue", "status", "assignedTo")


def _validate_client_payload(data: dict) -> dict:
    """Validates the full client form; returns model-ready values."""
    errors = []
    name = clean_str(data.get("name"))
    email = normalize_email(data.get("email"))
    phone = clean_str(data.get("phone"))
    company = clean_str(data.get("company"))

    if len(name) < 2:
        errors.append({"field": "name", "message": "Name must be at least 2 characters"})
    if not is_valid_email(email):
        errors.append({"field": "email", "message": "Please provide a valid email"})
    if len(phone) < 10:
        errors.append({"field": "phone", "message": "Phone must be at least 10 characters"})
    if len(company) < 2:
        errors.append({"field": "company", "message": "Company must be at least 2 characters"})

    raw_value = data.get("estimatedValue")
    estimated_value = None
    if raw_value not in (None, ""):
        estimated_value = parse_float(raw_value)
        if estimated_value is None:
            errors.append({"field": "estimatedValue", "message": "Estimated value must be a number"})

    if errors:
        raise ValidationError("Validation failed", details=errors)

    values = {"name": name, "email": email, "phone": phone, "company": company}
    if estimated_value is not None:
        values["estimated_value"] = estimated_value
    if "notes" in data:
        values["notes"] = clean_str(data.get("notes"))
    return values


def _validate_status(value) -> str:
    status = clean_str(value).lower()
    if status not in CLIENT_STATUSES:
        raise ValidationError("Invalid status")
    return status


def _employee_or_400(user_id) -> User:
    user = db.session.get(User, parse_int(user_id)) if parse_int(user_id) is not None else None
    if not user or user.role != ROLE_EMPLOYEE or not user.is_active:
        raise ValidationError("Invalid employee ID")
    return user


# ======================
# List / Read
# ======================
@clients_bp.route("", methods=["GET"])
@login_required
def list_clients():
    actor = current_actor()
    scope = ClientScope.for_actor(actor, request.args.get("assignedTo"))

    query = scope.apply_to_clients(Client.query)
    status = clean_str(request.args.get("status")).lower()
    if status:
        query = query.filter(Client.status == status)

    rows = query.order_by(Client.created_at.desc(), Client.id.desc()).all()
    return jsonify({"success": True, "clients": [c.to_dict() for c in rows]})


@clients_bp.route("/<int:client_id>", methods=["GET"])
@login_required
def get_client_view(client_id):
    client = get_client(client_id)
    authorize(current_actor(), client)
    return jsonify({"success": True, "client": client.to_dict()})


# ======================
# Create / Update / Delete
# ======================
@clients_bp.route("", methods=["POST"])
@login_required
def create_client():
    actor = current_actor()
    data = json_body()
    values = _validate_client_payload(data)

    if actor.is_elevated:
        assignee = _employee_or_400(data.get("assignedTo")) if data.get("assignedTo") else None
        assigned_to_id = assignee.id if assignee else actor.id
    else:
        # Employees own the clients they create
        assigned_to_id = actor.id

    client = Client(assigned_to_id=assigned_to_id, created_by_id=actor.id, **values)
    db.session.add(client)
    commit_or_rollback("Create client")

    current_app.logger.info("Client %s created by user %s", client.id, actor.id)
    return jsonify({"success": True, "message": "Client created successfully", "client": client.to_dict()}), 201


@clients_bp.route("/<int:client_id>", methods=["PATCH"])
@login_required
def update_client(client_id):
    actor = current_actor()
    client = get_client(client_id)
    authorize(actor, client)

    data = json_body()
    unknown = sorted(set(data) - set(UPDATABLE_FIELDS))
    if unknown:
        raise ValidationError(f"Unknown fields: {', '.join(unknown)}")

    merged = {
        "name": data.get("name", client.name),
        "email": data.get("email", client.email),
        "phone": data.get("phone", client.phone),
        "company": data.get("company", client.company),
        "estimatedValue": data.get("estimatedValue", client.estimated_value),
    }
    if "notes" in data:
        merged["notes"] = data["notes"]
    values = _validate_client_payload(merged)

    for key, value in values.items():
        setattr(client, key, value)

    if "status" in data:
        client.status = _validate_status(data["status"])

    # Employees cannot re-assign; the field is silently ignored for them
    if "assignedTo" in data and actor.is_elevated:
        client.assigned_to_id = _employee_or_400(data["assignedTo"]).id

    client.last_contact_date = datetime.utcnow()
    commit_or_rollback("Update client")
    return jsonify({"success": True, "message": "Client updated successfully", "client": client.to_dict()})


@clients_bp.route("/<int:client_id>", methods=["DELETE"])
@login_required
def delete_client(client_id):
    actor = current_actor()
    client = get_client(client_id)
    authorize(actor, client)

    with client_locks.hold(client.id):
        removed = purge_client_billing(client)
        Activity.query.filter(Activity.client_id == client.id).delete(synchronize_session="fetch")
        Feedback.query.filter(Feedback.client_id == client.id).delete(synchronize_session="fetch")
        Task.query.filter(Task.client_id == client.id).update(
            {Task.client_id: None}, synchronize_session="fetch"
        )
        db.session.delete(client)
        commit_or_rollback("Delete client")

    current_app.logger.info(
        "Client %s deleted by user %s (%d invoices, %d expenses removed)",
        client_id, actor.id, removed["deletedInvoices"], removed["deletedExpenses"],
    )
    return jsonify({"success": True, "message": "Client deleted successfully"})


# ======================
# Assignment (manager) / Status
# ======================
@clients_bp.route("/<int:client_id>/assign", methods=["PATCH"])
@manager_required
def assign_client(client_id):
    data = json_body()
    employee = _employee_or_400(data.get("assignedTo"))
    client = get_client(client_id)

    client.assigned_to_id = employee.id
    commit_or_rollback("Assign client")
    db.session.refresh(client)

    current_app.logger.info("Client %s assigned to user %s", client.id, employee.id)
    return jsonify({"success": True, "message": "Client assigned successfully", "client": client.to_dict()})


@clients_bp.route("/<int:client_id>/status", methods=["PATCH"])
@login_required
def update_client_status(client_id):
    client = get_client(client_id)
    authorize(current_actor(), client)

    client.status = _validate_status(json_body().get("status"))
    client.last_contact_date = datetime.utcnow()
    commit_or_rollback("Update client status")
    return jsonify({"success": True, "message": "Status updated successfully", "client": client.to_dict()})
