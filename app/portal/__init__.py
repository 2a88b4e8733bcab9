import logging
from datetime import timedelta

from flask import Flask, g, jsonify, request, session
from dotenv import load_dotenv
from sqlalchemy import inspect as sa_inspect

from app.portal.config import load_config
from app.portal.db import init_db, rollback_db_session, teardown_db_session
from app.portal.errors import PortalError
from app.portal.routes import bp as routes_bp
from app.portal.auth import bp as auth_bp, load_current_user
from app.portal.account import bp as account_bp
from app.portal.admin import bp as admin_bp

_REQUIRED_TABLES = (
    "users",
    "roles",
    "user_roles",
    "organisations",
    "membership_tiers",
    "memberships",
    "apps",
    "app_access_rules",
    "redemption_records",
    "audit_events",
)


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True

    from app.portal.security import ensure_csrf_token, validate_csrf

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(("/static/", "/health", "/healthz")):
            return None
        ensure_csrf_token()
        session.permanent = True
        if not app.config.get("CSRF_ENABLED", True):
            return None
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            # Sign-in endpoints run before the client holds a token.
            if (request.endpoint or "").startswith("auth."):
                return None
            if not validate_csrf(request):
                return jsonify({"ok": False, "error": "CSRF token missing or invalid.", "code": "csrf"}), 400

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")

    init_db(app)

    def _dispose_engine_on_fork() -> None:
        import os

        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(account_bp, url_prefix="/account")
    app.register_blueprint(admin_bp, url_prefix="/admin")

    app.before_request(load_current_user)
    app.teardown_appcontext(teardown_db_session)

    # Schema health: warn loudly when migrations have not been applied.
    def _run_schema_health_check() -> None:
        missing: list[str] = []
        try:
            insp = sa_inspect(app.extensions["sqlalchemy_engine"])
            missing = [t for t in _REQUIRED_TABLES if not insp.has_table(t)]
        except Exception as e:
            app.logger.exception("Schema health check failed: %s", e)
        app.config["_schema_health_missing"] = missing
        if missing:
            app.logger.error("DB schema out of date; run `alembic upgrade head`. Missing: %s", ", ".join(missing))

    _run_schema_health_check()

    @app.errorhandler(PortalError)
    def _err_portal(e: PortalError):  # type: ignore[no-redef]
        rollback_db_session()
        if e.status_code == 403:
            app.logger.warning("Forbidden: %s request_id=%s", e.message, getattr(g, "request_id", None))
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(404)
    def _err_404(e):  # type: ignore[no-redef]
        return jsonify({"ok": False, "error": "Not found.", "code": "not_found"}), 404

    @app.errorhandler(405)
    def _err_405(e):  # type: ignore[no-redef]
        return jsonify({"ok": False, "error": "Method not allowed.", "code": "method_not_allowed"}), 405

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        rollback_db_session()
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return jsonify({"ok": False, "error": "Internal server error.", "code": "internal_error"}), 500

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
