# crm/utils/db.py
from __future__ import annotations

from flask import current_app

from crm.extensions import db


# =========================================================
# Small DB helper (SAFE)
# =========================================================
def commit_or_rollback(action: str) -> None:
    """Commit the unit of work; roll back and re-raise on failure."""
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        current_app.logger.exception("%s failed", action)
        raise


def get_or_404(model, object_id, error_cls, message: str):
    obj = db.session.get(model, object_id) if object_id is not None else None
    if obj is None:
        raise error_cls(message)
    return obj
