from __future__ import annotations

import logging
import os
from collections.abc import Mapping

import click
from flask import Flask, jsonify
from sqlalchemy import select

from .errors import register_error_handlers
from .extensions import db, login_manager, migrate, csrf, limiter
from .models import Ticket
from .notifications import EXTENSION_KEY as NOTIFIER_KEY, init_notifier
from .security import hash_secret, init_ticket_cipher, rotate_ticket_token, shutdown_ticket_cipher
from .services.events import send_due_reminders
from .views.admin import admin_bp
from .views.gift_lists import gift_lists_bp
from .views.participants import participants_bp
from .views.public import public_bp


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def create_app(test_config: Mapping | None = None) -> Flask:
    app = Flask(__name__)

    app.config["SECRET_KEY"] = os.environ.get("SECRET_KEY", "dev-secret-change-me")
    app.config["SQLALCHEMY_DATABASE_URI"] = os.environ.get("DATABASE_URL", "sqlite:///giftdraw.db")
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False

    # Organiser login
    app.config["ADMIN_PASSWORD"] = os.environ.get("ADMIN_PASSWORD", "change-me-please")
    app.config["ADMIN_PASSWORD_HASH"] = os.environ.get("ADMIN_PASSWORD_HASH", "").strip()

    # Comma-separated Fernet keys, newest first. Derived from SECRET_KEY when empty.
    app.config["TICKET_ENC_KEYS"] = os.environ.get("TICKET_ENC_KEYS", "")

    app.config["MAIL_BACKEND"] = os.environ.get("MAIL_BACKEND", "memory")
    app.config["MAIL_FROM"] = os.environ.get("MAIL_FROM", "secret-santa@localhost")
    app.config["SMTP_HOST"] = os.environ.get("SMTP_HOST", "")
    app.config["SMTP_PORT"] = int(os.environ.get("SMTP_PORT", "587"))
    app.config["SMTP_USERNAME"] = os.environ.get("SMTP_USERNAME") or None
    app.config["SMTP_PASSWORD"] = os.environ.get("SMTP_PASSWORD") or None
    app.config["SMTP_USE_TLS"] = _env_bool("SMTP_USE_TLS", True)

    app.config["VERIFICATION_TTL_MINUTES"] = int(os.environ.get("VERIFICATION_TTL_MINUTES", "30"))
    app.config["RATE_LIMIT_MAX_REQUESTS"] = int(os.environ.get("RATE_LIMIT_MAX_REQUESTS", "100"))
    app.config["RATE_LIMIT_WINDOW_SECONDS"] = int(os.environ.get("RATE_LIMIT_WINDOW_SECONDS", "900"))
    app.config["DRAW_REQUIRE_GIFT_LISTS"] = _env_bool("DRAW_REQUIRE_GIFT_LISTS", True)
    app.config["GIFT_LIST_MAX_ITEMS"] = int(os.environ.get("GIFT_LIST_MAX_ITEMS", "20"))
    app.config["LOG_LEVEL"] = os.environ.get("LOG_LEVEL", "INFO").upper()

    if test_config is not None:
        app.config.update(test_config)

    if not app.config["ADMIN_PASSWORD_HASH"]:
        app.config["ADMIN_PASSWORD_HASH"] = hash_secret(app.config["ADMIN_PASSWORD"])

    logging.basicConfig(format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logging.getLogger(__name__).setLevel(app.config["LOG_LEVEL"])

    db.init_app(app)
    login_manager.init_app(app)
    migrate.init_app(app, db)
    csrf.init_app(app)
    limiter.init_app(app)
    init_ticket_cipher(app)
    init_notifier(app)

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({"message": "Please log in first."}), 401

    register_error_handlers(app)

    # Blueprints
    app.register_blueprint(public_bp)
    app.register_blueprint(participants_bp)
    app.register_blueprint(gift_lists_bp)
    app.register_blueprint(admin_bp)

    register_commands(app)
    return app


def shutdown_app(app: Flask) -> None:
    """Releases the per-app services created in create_app."""
    limiter.shutdown(app)
    shutdown_ticket_cipher(app)
    app.extensions.pop(NOTIFIER_KEY, None)
    with app.app_context():
        db.engine.dispose()


def register_commands(app: Flask) -> None:
    @app.cli.command("init-db")
    def init_db_command():
        """Create all tables (use `flask db upgrade` once migrations exist)."""
        db.create_all()
        click.echo("Database tables created.")

    @app.cli.command("send-draw-reminders")
    def send_draw_reminders_command():
        """Email moderators of open events whose planned draw time has passed."""
        sent = send_due_reminders()
        click.echo(f"Reminders sent: {sent}")

    @app.cli.command("rotate-ticket-keys")
    def rotate_ticket_keys_command():
        """Re-encrypt every ticket under the first key of TICKET_ENC_KEYS."""
        count = 0
        for ticket in db.session.scalars(select(Ticket)):
            ticket.receiver_token = rotate_ticket_token(ticket.receiver_token)
            count += 1
        db.session.commit()
        click.echo(f"Tickets re-encrypted: {count}")
