import click
from flask import Flask, jsonify
from flask_migrate import Migrate
from sqlalchemy import inspect

from config import Config
from models import db
from models.user import User, Role
from routes import (
    health_bp, auth_bp, users_bp, slots_bp, booking_bp,
    subscription_bp, access_bp, audit_bp,
)
from security.csrf import csrf_protect
from security.rbac import MANAGER
from services import subscriptions as subscription_service
from services.calendar import BusinessCalendar
from services.errors import ServiceError
from services.payments import build_gateway
from utils.audit import log_event, prune_audit_logs
from utils.auth_context import load_current_user
from utils.seed import seed_roles


def create_app(config_overrides=None, calendar=None, gateway=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)
    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    # One calendar and one payment gateway per process, handed to every service
    app.extensions["business_calendar"] = calendar or BusinessCalendar(app.config["BUSINESS_TIMEZONE"])
    app.extensions["payment_gateway"] = gateway or build_gateway(app.config)

    # Register routes
    for bp in (health_bp, auth_bp, users_bp, slots_bp, booking_bp, subscription_bp, access_bp, audit_bp):
        app.register_blueprint(bp)

    # Database init
    db.init_app(app)

    # Migrations
    Migrate(app, db)

    with app.app_context():
        if app.config.get("AUTO_CREATE_TABLES"):
            db.create_all()
        # Seed default roles once the schema exists (idempotent)
        if inspect(db.engine).has_table("roles"):
            seed_roles()

    @app.before_request
    def _load_user():
        load_current_user()

    app.before_request(csrf_protect)

    @app.errorhandler(ServiceError)
    def _service_error(exc):
        db.session.rollback()
        return jsonify(exc.to_dict()), exc.status_code

    @app.after_request
    def add_security_headers(resp):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        resp.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"
        resp.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none';"
        return resp

    register_cli(app)

    return app

#-------------------------

def register_cli(app):
    @app.cli.command("make-manager")
    @click.argument("phone_number")
    def make_manager(phone_number):
        """Promote a user to MANAGER by phone number (bootstrap)."""
        user = User.query.filter_by(phone_number=phone_number.strip()).first()
        if not user:
            click.echo("User not found")
            return

        manager_role = Role.query.filter_by(name=MANAGER).first()
        if not manager_role:
            manager_role = Role(name=MANAGER)
            db.session.add(manager_role)
            db.session.commit()

        if manager_role not in user.roles:
            user.roles.append(manager_role)
            db.session.commit()

        click.echo(f"{user.phone_number} promoted to MANAGER")

    @app.cli.command("expire-subscriptions")
    def expire_subscriptions():
        """Mark active subscriptions whose period has ended as expired."""
        count = subscription_service.expire_finished(app.extensions["business_calendar"])
        log_event("SUBSCRIPTIONS_EXPIRED", entity="subscription", metadata={"count": count})
        click.echo(f"{count} subscription(s) expired")

    @app.cli.command("reconcile-subscriptions")
    def reconcile_subscriptions():
        """Create missing upcoming bookings for paid subscriptions."""
        result = subscription_service.reconcile(app.extensions["business_calendar"])
        log_event("SUBSCRIPTIONS_RECONCILED", entity="subscription", metadata=result)
        click.echo(
            f"{result['subscriptions_repaired']} subscription(s) repaired, "
            f"{result['bookings_created']} booking(s) created"
        )

    @app.cli.command("prune-audit-logs")
    @click.option("--days", type=int, default=None, help="Keep this many days (defaults to AUDIT_LOG_RETENTION_DAYS).")
    def prune_logs(days):
        """Delete audit log rows past the retention window."""
        days = days if days is not None else app.config.get("AUDIT_LOG_RETENTION_DAYS", 90)
        removed = prune_audit_logs(days)
        click.echo(f"{removed} audit log row(s) removed")


if __name__ == "__main__":
    app = create_app()
    # Run locally
    app.run(host="127.0.0.1", port=5002)
