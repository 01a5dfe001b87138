# crm/__init__.py
from __future__ import annotations

import logging
from datetime import datetime

from flask import Flask, jsonify

from .settings import Config
from .extensions import db, migrate, login_manager, limiter, enable_sqlite_foreign_keys


def create_app(config_object=None) -> Flask:
    app = Flask(__name__)
    app.config.from_object(config_object or Config)

    # Keep API payload keys in insertion order
    app.json.sort_keys = False

    # ======================
    # Logging
    # ======================
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    app.logger.setLevel(level)

    # ======================
    # Initialize Extensions
    # ======================
    db.init_app(app)
    with app.app_context():
        enable_sqlite_foreign_keys(db.engine)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    limiter.init_app(app)

    # ======================
    # Import Models (CRITICAL)
    # ======================
    from . import models  # noqa: F401

    # ======================
    # Error handlers (JSON everywhere)
    # ======================
    from .errors import register_error_handlers

    register_error_handlers(app)

    # ======================
    # Register Blueprints
    # ======================
    from .auth import auth
    from .clients import clients_bp
    from .activities import activities_bp
    from .tasks import tasks_bp
    from .feedback import feedback_bp
    from .expenses import expenses_bp
    from .invoices import invoices_bp
    from .reports import reports_bp

    app.register_blueprint(auth)
    app.register_blueprint(clients_bp)
    app.register_blueprint(activities_bp)
    app.register_blueprint(tasks_bp)
    app.register_blueprint(feedback_bp)
    app.register_blueprint(expenses_bp)
    app.register_blueprint(invoices_bp)
    app.register_blueprint(reports_bp)

    # ======================
    # Health
    # ======================
    @app.route("/api/health", methods=["GET"])
    def health():
        return jsonify({
            "success": True,
            "message": "CRM API is running",
            "timestamp": datetime.utcnow().isoformat(),
        })

    return app
