# crm/utils/parsing.py
from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation

from flask import request

from crm.errors import ValidationError


# ======================
# Request body
# ======================
def json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def clean_str(value) -> str:
    return value.strip() if isinstance(value, str) else ""


# ======================
# Parsers (None on blank / malformed)
# ======================
def parse_float(val):
    try:
        if val is None or isinstance(val, bool) or str(val).strip() == "":
            return None
        return float(val)
    except (TypeError, ValueError):
        return None


def parse_int(val):
    try:
        if val is None or isinstance(val, bool) or str(val).strip() == "":
            return None
        return int(val)
    except (TypeError, ValueError):
        return None


def parse_decimal(val):
    try:
        if val is None or isinstance(val, bool) or str(val).strip() == "":
            return None
        d = Decimal(str(val))
    except (InvalidOperation, TypeError, ValueError):
        return None
    if not d.is_finite():
        return None
    return d


def parse_datetime(val):
    """ISO-8601 date or datetime; a trailing 'Z' is accepted and the result is naive UTC."""
    if isinstance(val, datetime):
        return val
    if isinstance(val, date):
        return datetime(val.year, val.month, val.day)
    if not isinstance(val, str) or not val.strip():
        return None
    s = val.strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(s)
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def parse_date(val):
    if isinstance(val, datetime):
        return val.date()
    if isinstance(val, date):
        return val
    parsed = parse_datetime(val)
    return parsed.date() if parsed else None


def parse_bool(val):
    if isinstance(val, bool):
        return val
    if isinstance(val, str):
        s = val.strip().lower()
        if s in ("true", "1", "yes"):
            return True
        if s in ("false", "0", "no"):
            return False
    return None


def page_args(default_limit: int = 10, max_limit: int = 100) -> tuple[int, int]:
    page = request.args.get("page", 1, type=int) or 1
    limit = request.args.get("limit", default_limit, type=int) or default_limit
    return max(page, 1), min(max(limit, 1), max_limit)


def pagination_dict(page: int, limit: int, total: int) -> dict:
    pages = (total + limit - 1) // limit if limit else 0
    return {"current": page, "pages": pages, "total": total}
