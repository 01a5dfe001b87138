# crm/services/ratings.py
from __future__ import annotations

from crm.extensions import db
from crm.models import Client, Feedback


def recompute_client_rating(client: Client) -> Client:
    """
    Refresh a client's average rating (one decimal) and feedback count from its
    approved feedback. Staged on the session; the caller commits.
    """
    count, average = (
        db.session.query(db.func.count(Feedback.id), db.func.avg(Feedback.rating))
        .filter(Feedback.client_id == client.id, Feedback.status == "approved")
        .one()
    )
    client.feedback_count = int(count or 0)
    client.average_rating = round(float(average), 1) if count else 0.0
    return client
