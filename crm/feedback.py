# crm/feedback.py
from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request
from flask_login import login_required

from .errors import NotFoundError, ValidationError
from .extensions import db, limiter
from .models import FEEDBACK_STATUSES, Feedback
from .services.invoicing import get_client
from .services.ratings import recompute_client_rating
from .utils.db import commit_or_rollback, get_or_404
from .utils.guards import authorize, current_actor, manager_required
from .utils.parsing import clean_str, json_body, page_args, pagination_dict, parse_bool, parse_int

feedback_bp = Blueprint("feedback", __name__, url_prefix="/api/feedback")


def _score(data: dict, key: str, label: str, *, required: bool = False):
    raw = data.get(key)
    if raw in (None, ""):
        if required:
            raise ValidationError(f"{label} is required")
        return None
    value = parse_int(raw)
    if value is None or not 1 <= value <= 5:
        raise ValidationError(f"{label} must be between 1 and 5")
    return value


def _round1(value) -> float:
    return round(float(value), 1) if value is not None else 0


# =========================================================
# Public submission
# =========================================================
@feedback_bp.route("/submit", methods=["POST"])
@limiter.limit("20 per hour")
def submit_feedback():
    data = json_body()
    submitted_by = clean_str(data.get("submittedBy"))
    if not data.get("clientId") or data.get("rating") in (None, "") or not submitted_by:
        raise ValidationError("Client ID, rating, and submitter name are required")

    rating = _score(data, "rating", "Rating", required=True)
    comment = clean_str(data.get("comment"))
    if len(comment) > 500:
        raise ValidationError("Comment cannot exceed 500 characters")

    client = get_client(data.get("clientId"))
    if client.status != "won":
        raise ValidationError("Feedback can only be submitted for won deals")

    feedback = Feedback(
        client_id=client.id,
        rating=rating,
        comment=comment or None,
        service_quality=_score(data, "serviceQuality", "Service quality"),
        communication=_score(data, "communication", "Communication"),
        would_recommend=bool(parse_bool(data.get("wouldRecommend"))),
        submitted_by=submitted_by,
        is_anonymous=bool(parse_bool(data.get("isAnonymous"))),
    )
    db.session.add(feedback)
    db.session.flush()
    recompute_client_rating(client)
    commit_or_rollback("Submit feedback")

    current_app.logger.info("Feedback %s submitted for client %s", feedback.id, client.id)
    return jsonify({"success": True, "message": "Feedback submitted successfully", "data": feedback.to_dict()}), 201


# =========================================================
# Authenticated reads
# =========================================================
@feedback_bp.route("/client/<int:client_id>", methods=["GET"])
@login_required
def client_feedback(client_id):
    client = get_client(client_id)
    authorize(current_actor(), client)

    rows = (
        Feedback.query
        .filter(Feedback.client_id == client.id)
        .order_by(Feedback.created_at.desc(), Feedback.id.desc())
        .all()
    )
    return jsonify({"success": True, "data": [f.to_dict() for f in rows]})


@feedback_bp.route("", methods=["GET"])
@manager_required
def all_feedback():
    page, limit = page_args(default_limit=10)
    status = request.args.get("status", "approved")

    query = Feedback.query
    if status != "all":
        query = query.filter(Feedback.status == status)

    total = query.count()
    rows = (
        query.order_by(Feedback.created_at.desc(), Feedback.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return jsonify({
        "success": True,
        "data": [f.to_dict() for f in rows],
        "pagination": pagination_dict(page, limit, total),
    })


@feedback_bp.route("/stats", methods=["GET"])
@manager_required
def feedback_stats():
    total, avg_rating, avg_quality, avg_comm, recommend = db.session.query(
        db.func.count(Feedback.id),
        db.func.avg(Feedback.rating),
        db.func.avg(Feedback.service_quality),
        db.func.avg(Feedback.communication),
        db.func.sum(db.case((Feedback.would_recommend.is_(True), 1), else_=0)),
    ).one()

    distribution = {
        str(rating): int(count)
        for rating, count in (
            db.session.query(Feedback.rating, db.func.count(Feedback.id))
            .group_by(Feedback.rating)
            .all()
        )
    }

    total = int(total or 0)
    return jsonify({
        "success": True,
        "data": {
            "totalFeedback": total,
            "averageRating": _round1(avg_rating),
            "averageServiceQuality": _round1(avg_quality),
            "averageCommunication": _round1(avg_comm),
            "recommendationRate": round(int(recommend or 0) / total * 100) if total else 0,
            "ratingDistribution": distribution,
        },
    })


# =========================================================
# Moderation (manager)
# =========================================================
@feedback_bp.route("/<int:feedback_id>/status", methods=["PATCH"])
@manager_required
def update_feedback_status(feedback_id):
    status = json_body().get("status")
    if status not in FEEDBACK_STATUSES:
        raise ValidationError("Invalid status. Must be pending, approved, or rejected")

    feedback = get_or_404(Feedback, feedback_id, NotFoundError, "Feedback not found")
    feedback.status = status
    db.session.flush()
    recompute_client_rating(feedback.client)
    commit_or_rollback("Update feedback status")

    return jsonify({"success": True, "message": "Feedback status updated successfully", "data": feedback.to_dict()})
