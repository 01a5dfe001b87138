# crm/auth.py
from __future__ import annotations

from datetime import datetime

from flask import Blueprint, current_app, jsonify
from flask_login import current_user, login_user, logout_user
from sqlalchemy.exc import IntegrityError

from .constants.roles import ROLE_EMPLOYEE, ROLES, normalize_role
from .errors import ValidationError, error_response
from .extensions import db, limiter
from .models import User
from .utils.db import commit_or_rollback
from .utils.guards import manager_required
from .utils.parsing import clean_str, json_body
from .utils.passwords import (
    hash_password,
    is_valid_email,
    normalize_email,
    validate_password,
    verify_password,
)

auth = Blueprint("auth", __name__, url_prefix="/api/auth")


# =========================================================
# Register
# =========================================================
@auth.route("/register", methods=["POST"])
def register():
    data = json_body()
    name = clean_str(data.get("name"))
    email = normalize_email(data.get("email"))
    password = data.get("password")
    role = normalize_role(data.get("role"))

    errors = []
    if len(name) < 2:
        errors.append({"field": "name", "message": "Name must be at least 2 characters"})
    if not is_valid_email(email):
        errors.append({"field": "email", "message": "Please provide a valid email"})
    ok, msg = validate_password(password)
    if not ok:
        errors.append({"field": "password", "message": msg})
    if role not in ROLES:
        errors.append({"field": "role", "message": "Role must be either manager or employee"})
    if errors:
        raise ValidationError("Validation failed", details=errors)

    if User.query.filter(db.func.lower(User.email) == email).first():
        raise ValidationError("User with this email already exists")

    user = User(name=name, email=email, role=role, password_hash=hash_password(password))
    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ValidationError("User with this email already exists") from None

    current_app.logger.info("Registered %s user %s", user.role, user.email)
    return jsonify({"success": True, "message": "User registered successfully", "user": user.to_dict()}), 201


# =========================================================
# Login / Logout
# =========================================================
@auth.route("/login", methods=["POST"])
@limiter.limit("5 per minute")
def login():
    data = json_body()
    email = normalize_email(data.get("email"))
    password = data.get("password") or ""

    if not is_valid_email(email) or not password:
        raise ValidationError("Validation failed", details=[
            {"field": "email", "message": "Please provide a valid email"},
            {"field": "password", "message": "Password is required"},
        ])

    user = User.query.filter(db.func.lower(User.email) == email).first()
    if not user or not verify_password(user.password_hash, password):
        return error_response("Invalid credentials", 401)

    if user.is_active is False:
        return error_response("Account is deactivated", 401)

    login_user(user)

    user.last_login_at = datetime.utcnow()
    commit_or_rollback("Stamp last login")

    return jsonify({"success": True, "message": "Login successful", "user": user.to_dict()})


@auth.route("/logout", methods=["GET"])
def logout():
    logout_user()
    return jsonify({"success": True, "message": "Logged out successfully"})


@auth.route("/me", methods=["GET"])
def me():
    if not getattr(current_user, "is_authenticated", False):
        return error_response("Not authenticated", 401)
    return jsonify({"success": True, "user": current_user.to_dict()})


# =========================================================
# Employees (manager only)
# =========================================================
@auth.route("/employees", methods=["GET"])
@manager_required
def employees():
    rows = (
        User.query
        .filter(User.role == ROLE_EMPLOYEE, User.is_active.is_(True))
        .order_by(User.name.asc())
        .all()
    )
    return jsonify({
        "success": True,
        "employees": [{"_id": u.id, "name": u.name, "email": u.email} for u in rows],
    })
