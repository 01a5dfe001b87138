# crm/tasks.py
from __future__ import annotations

from datetime import datetime

from flask import Blueprint, current_app, jsonify, request
from flask_login import login_required

from .constants.roles import ROLE_EMPLOYEE
from .errors import ForbiddenError, NotFoundError, ValidationError
from .extensions import db
from .models import TASK_PRIORITIES, TASK_STATUSES, Client, Task, User
from .utils.db import commit_or_rollback, get_or_404
from .utils.guards import Actor, current_actor, manager_required
from .utils.parsing import clean_str, json_body, page_args, pagination_dict, parse_datetime, parse_int

tasks_bp = Blueprint("tasks", __name__, url_prefix="/api/tasks")


def _scoped(query, actor: Actor):
    # Managers see every task; employees only their own
    if actor.is_elevated:
        return query
    return query.filter(Task.assigned_to_id == actor.id)


# ======================
# Create / Delete (manager)
# ======================
@tasks_bp.route("", methods=["POST"])
@manager_required
def create_task():
    actor = current_actor()
    data = json_body()
    title = clean_str(data.get("title"))
    if not title or not data.get("assignedTo"):
        raise ValidationError("Title and assignedTo are required")

    assignee_id = parse_int(data.get("assignedTo"))
    assignee = db.session.get(User, assignee_id) if assignee_id is not None else None
    if not assignee or assignee.role != ROLE_EMPLOYEE:
        raise ValidationError("Assigned user must be an employee")

    client_id = None
    if data.get("clientId"):
        client_id = parse_int(data.get("clientId"))
        if client_id is None or db.session.get(Client, client_id) is None:
            raise ValidationError("Client not found")

    priority = data.get("priority") or "medium"
    if priority not in TASK_PRIORITIES:
        raise ValidationError("Invalid priority")

    due_date = None
    if data.get("dueDate"):
        due_date = parse_datetime(data["dueDate"])
        if due_date is None:
            raise ValidationError("Due date must be a valid date")

    tags = data.get("tags") or []
    if not isinstance(tags, list):
        raise ValidationError("Tags must be a list")

    task = Task(
        title=title,
        description=clean_str(data.get("description")) or None,
        assigned_to_id=assignee.id,
        assigned_by_id=actor.id,
        client_id=client_id,
        priority=priority,
        due_date=due_date,
        notes=clean_str(data.get("notes")) or None,
        tags=[str(t) for t in tags],
    )
    db.session.add(task)
    commit_or_rollback("Create task")

    current_app.logger.info("Task %s assigned to user %s by %s", task.id, assignee.id, actor.id)
    return jsonify({"success": True, "message": "Task created successfully", "data": task.to_dict()}), 201


@tasks_bp.route("/<int:task_id>", methods=["DELETE"])
@manager_required
def delete_task(task_id):
    task = get_or_404(Task, task_id, NotFoundError, "Task not found")
    db.session.delete(task)
    commit_or_rollback("Delete task")
    return jsonify({"success": True, "message": "Task deleted successfully"})


# ======================
# My tasks / Status
# ======================
@tasks_bp.route("/my-tasks", methods=["GET"])
@login_required
def my_tasks():
    actor = current_actor()
    page, limit = page_args(default_limit=10)

    query = _scoped(Task.query, actor)
    status = request.args.get("status")
    if status and status != "all":
        query = query.filter(Task.status == status)
    priority = request.args.get("priority")
    if priority and priority != "all":
        query = query.filter(Task.priority == priority)

    total = query.count()
    rows = (
        query.order_by(Task.created_at.desc(), Task.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return jsonify({
        "success": True,
        "tasks": [t.to_dict() for t in rows],
        "pagination": pagination_dict(page, limit, total),
    })


@tasks_bp.route("/<int:task_id>/status", methods=["PATCH"])
@login_required
def update_task_status(task_id):
    actor = current_actor()
    data = json_body()
    status = data.get("status")
    if status not in TASK_STATUSES:
        raise ValidationError("Invalid status")

    task = get_or_404(Task, task_id, NotFoundError, "Task not found")
    if task.assigned_to_id != actor.id and not actor.is_elevated:
        raise ForbiddenError("Access denied")

    task.status = status
    if data.get("notes"):
        task.notes = clean_str(data["notes"])
    if status == "completed":
        task.completed_at = datetime.utcnow()
    commit_or_rollback("Update task status")

    return jsonify({"success": True, "message": "Task updated successfully", "data": task.to_dict()})


@tasks_bp.route("/stats", methods=["GET"])
@login_required
def task_stats():
    actor = current_actor()
    query = _scoped(Task.query, actor)

    counts = dict(
        query.with_entities(Task.status, db.func.count(Task.id))
        .group_by(Task.status)
        .all()
    )
    overdue = (
        query.filter(
            Task.due_date.isnot(None),
            Task.due_date < datetime.utcnow(),
            Task.status != "completed",
        )
        .count()
    )

    total = sum(counts.values())
    completed = counts.get("completed", 0)
    return jsonify({
        "success": True,
        "data": {
            "totalTasks": total,
            "completedTasks": completed,
            "pendingTasks": counts.get("pending", 0),
            "inProgressTasks": counts.get("in_progress", 0),
            "overdueTasks": overdue,
            "completionRate": (completed / total * 100) if total else 0,
        },
    })
