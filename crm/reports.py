# crm/reports.py
from __future__ import annotations

from collections import OrderedDict
from datetime import datetime, timedelta

from flask import Blueprint, jsonify, request
from flask_login import login_required

from .extensions import db
from .models import Activity, Client, Task, User
from .utils.filters import ClientScope, period_start
from .utils.guards import current_actor, manager_required

reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


def _rate(part, whole, digits=2) -> float:
    if not whole:
        return 0
    return round(part / whole * 100, digits)


# =========================================================
# Pipeline summary
# =========================================================
@reports_bp.route("/summary", methods=["GET"])
@login_required
def summary():
    scope = ClientScope.for_actor(current_actor())
    query = scope.apply_to_clients(Client.query)

    breakdown = [
        {"_id": status, "count": int(count), "totalValue": float(total or 0)}
        for status, count, total in (
            query.with_entities(Client.status, db.func.count(Client.id), db.func.sum(Client.estimated_value))
            .group_by(Client.status)
            .all()
        )
    ]
    total_clients = sum(row["count"] for row in breakdown)
    total_value = sum(row["totalValue"] for row in breakdown)
    won = next((row["count"] for row in breakdown if row["_id"] == "won"), 0)

    return jsonify({
        "success": True,
        "summary": {
            "totalClients": total_clients,
            "totalValue": total_value,
            "conversionRate": _rate(won, total_clients),
            "statusBreakdown": breakdown,
        },
    })


# =========================================================
# Employee performance (manager)
# =========================================================
@reports_bp.route("/employees", methods=["GET"])
@manager_required
def employee_performance():
    won_count = db.func.sum(db.case((Client.status == "won", 1), else_=0))
    won_value = db.func.sum(db.case((Client.status == "won", Client.estimated_value), else_=0))

    rows = (
        db.session.query(
            User.id,
            User.name,
            User.email,
            db.func.count(Client.id),
            won_count,
            db.func.sum(Client.estimated_value),
            won_value,
        )
        .join(Client, Client.assigned_to_id == User.id)
        .group_by(User.id, User.name, User.email)
        .all()
    )

    performance = []
    for user_id, name, email, total, won, value, won_val in rows:
        performance.append({
            "_id": user_id,
            "employeeName": name,
            "employeeEmail": email,
            "totalClients": int(total),
            "wonClients": int(won or 0),
            "totalValue": float(value or 0),
            "wonValue": float(won_val or 0),
            "conversionRate": _rate(int(won or 0), int(total)),
        })
    performance.sort(key=lambda row: row["totalValue"], reverse=True)

    return jsonify({"success": True, "performance": performance})


# =========================================================
# Revenue (won clients)
# =========================================================
@reports_bp.route("/revenue", methods=["GET"])
@login_required
def revenue():
    scope = ClientScope.for_actor(current_actor())
    start = period_start(request.args.get("period"), default="month")

    query = scope.apply_to_clients(Client.query).filter(Client.status == "won")
    if start is not None:
        query = query.filter(Client.updated_at >= start)

    won = query.with_entities(Client.updated_at, Client.estimated_value).order_by(Client.updated_at.asc()).all()

    monthly: OrderedDict = OrderedDict()
    for updated_at, value in won:
        key = (updated_at.year, updated_at.month)
        bucket = monthly.setdefault(key, {"_id": {"year": key[0], "month": key[1]}, "revenue": 0.0, "deals": 0})
        bucket["revenue"] += float(value or 0)
        bucket["deals"] += 1

    total_revenue = sum(float(v or 0) for _, v in won)
    return jsonify({
        "success": True,
        "revenue": {
            "totalRevenue": total_revenue,
            "totalDeals": len(won),
            "averageDealValue": (total_revenue / len(won)) if won else 0,
            "monthlyBreakdown": list(monthly.values()),
        },
    })


# =========================================================
# Activities
# =========================================================
@reports_bp.route("/activities", methods=["GET"])
@login_required
def activity_report():
    actor = current_actor()
    period = request.args.get("period", "week")
    start = period_start(period if period in ("week", "month") else "week")

    query = Activity.query.filter(Activity.date >= start)
    # Employees only see what they logged
    if not actor.is_elevated:
        query = query.filter(Activity.created_by_id == actor.id)

    completed = db.func.sum(db.case((Activity.done.is_(True), 1), else_=0))
    rows = (
        query.with_entities(Activity.type, db.func.count(Activity.id), completed)
        .group_by(Activity.type)
        .all()
    )

    stats = [
        {
            "_id": type_,
            "count": int(count),
            "completed": int(done or 0),
            "completionRate": _rate(int(done or 0), int(count)),
        }
        for type_, count, done in rows
    ]
    return jsonify({"success": True, "activityStats": stats})


@reports_bp.route("/employee-quick-stats", methods=["GET"])
@login_required
def employee_quick_stats():
    actor = current_actor()
    since = datetime.utcnow() - timedelta(days=7)

    total_clients = Client.query.filter(Client.assigned_to_id == actor.id).count()
    completed_tasks = Task.query.filter(Task.assigned_to_id == actor.id, Task.status == "completed").count()
    recent_activities = Activity.query.filter(
        Activity.created_by_id == actor.id, Activity.date >= since
    ).count()
    total_revenue = (
        db.session.query(db.func.coalesce(db.func.sum(Client.estimated_value), 0))
        .filter(Client.assigned_to_id == actor.id, Client.status == "won")
        .scalar()
    )

    return jsonify({
        "success": True,
        "summary": {
            "clients": {"total": total_clients},
            "tasks": {"completed": completed_tasks},
            "activities": {"total": recent_activities},
            "revenue": {"total": float(total_revenue or 0)},
        },
    })
