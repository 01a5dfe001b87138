# crm/activities.py
from __future__ import annotations

from datetime import datetime

from flask import Blueprint, jsonify, request
from flask_login import login_required

from .errors import ForbiddenError, NotFoundError, ValidationError
from .extensions import db
from .models import ACTIVITY_PRIORITIES, ACTIVITY_TYPES, Activity
from .services.invoicing import get_client
from .utils.db import commit_or_rollback, get_or_404
from .utils.filters import ClientScope
from .utils.guards import Actor, authorize, current_actor
from .utils.parsing import clean_str, json_body, parse_bool, parse_datetime

activities_bp = Blueprint("activities", __name__, url_prefix="/api/activities")


def _validate_activity(data: dict, *, partial: bool) -> dict:
    """
    Field checks shared by create (every required field) and update (only the
    fields present). Returns model-ready values.
    """
    errors = []
    values = {}

    if not partial or "type" in data:
        if data.get("type") not in ACTIVITY_TYPES:
            errors.append({"field": "type", "message": "Invalid activity type"})
        else:
            values["type"] = data["type"]

    if not partial or "description" in data:
        description = clean_str(data.get("description"))
        if len(description) < 5:
            errors.append({"field": "description", "message": "Description must be at least 5 characters"})
        else:
            values["description"] = description

    if data.get("date") not in (None, ""):
        parsed = parse_datetime(data["date"])
        if parsed is None:
            errors.append({"field": "date", "message": "Invalid date format"})
        else:
            values["date"] = parsed

    if data.get("priority") is not None:
        if data["priority"] not in ACTIVITY_PRIORITIES:
            errors.append({"field": "priority", "message": "Invalid priority level"})
        else:
            values["priority"] = data["priority"]

    if partial and "done" in data:
        done = parse_bool(data["done"])
        if done is None:
            errors.append({"field": "done", "message": "Done must be a boolean value"})
        else:
            values["done"] = done

    if errors:
        raise ValidationError("Validation failed", details=errors)
    return values


def _own_activity(activity_id, actor: Actor, verb: str) -> Activity:
    activity = get_or_404(Activity, activity_id, NotFoundError, "Activity not found")
    # Employees can only change what they logged themselves
    if not actor.is_elevated and activity.created_by_id != actor.id:
        raise ForbiddenError(f"You can only {verb} your own activities")
    return activity


# ======================
# Lists
# ======================
@activities_bp.route("/all", methods=["GET"])
@login_required
def all_activities():
    actor = current_actor()
    scope = ClientScope.for_actor(actor, request.args.get("assignedTo"))

    query = scope.apply_by_client_column(Activity.query, Activity.client_id)
    if request.args.get("type"):
        query = query.filter(Activity.type == request.args["type"])
    done = parse_bool(request.args.get("done"))
    if done is not None:
        query = query.filter(Activity.done.is_(done))

    rows = query.order_by(Activity.date.desc(), Activity.id.desc()).limit(50).all()
    return jsonify({"success": True, "activities": [a.to_dict() for a in rows]})


@activities_bp.route("/client/<int:client_id>", methods=["GET"])
@login_required
def client_activities(client_id):
    client = get_client(client_id)
    authorize(current_actor(), client)

    query = Activity.query.filter(Activity.client_id == client.id)
    if request.args.get("type"):
        query = query.filter(Activity.type == request.args["type"])
    done = parse_bool(request.args.get("done"))
    if done is not None:
        query = query.filter(Activity.done.is_(done))

    rows = query.order_by(Activity.date.desc(), Activity.id.desc()).all()
    return jsonify({"success": True, "activities": [a.to_dict() for a in rows]})


# ======================
# Create / Update / Delete
# ======================
@activities_bp.route("/client/<int:client_id>", methods=["POST"])
@login_required
def create_activity(client_id):
    actor = current_actor()
    client = get_client(client_id)
    authorize(actor, client)

    values = _validate_activity(json_body(), partial=False)
    activity = Activity(client_id=client.id, created_by_id=actor.id, **values)
    db.session.add(activity)
    client.last_contact_date = datetime.utcnow()
    commit_or_rollback("Create activity")

    return jsonify({"success": True, "message": "Activity created successfully", "activity": activity.to_dict()}), 201


@activities_bp.route("/<int:activity_id>", methods=["PATCH"])
@login_required
def update_activity(activity_id):
    activity = _own_activity(activity_id, current_actor(), "update")
    values = _validate_activity(json_body(), partial=True)

    for key, value in values.items():
        setattr(activity, key, value)
    commit_or_rollback("Update activity")

    return jsonify({"success": True, "message": "Activity updated successfully", "activity": activity.to_dict()})


@activities_bp.route("/<int:activity_id>", methods=["DELETE"])
@login_required
def delete_activity(activity_id):
    activity = _own_activity(activity_id, current_actor(), "delete")
    db.session.delete(activity)
    commit_or_rollback("Delete activity")
    return jsonify({"success": True, "message": "Activity deleted successfully"})
