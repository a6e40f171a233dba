import os

from flask import Flask, g, jsonify, request, session
from werkzeug.exceptions import HTTPException

from intervention_engine.config import Config
from intervention_engine.db import close_db, init_db
from intervention_engine.db_migrations import register_db_cli
from intervention_engine.observability import configure_json_logging, ensure_request_id, metrics_snapshot


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)
    configure_json_logging(app)

    _ensure_database_dir(app)
    _register_error_handlers(app)
    _register_team(app)
    _register_services(app)
    _register_blueprints(app)
    _register_health(app)
    register_db_cli(app)
    _maybe_init_schema(app)

    app.teardown_appcontext(close_db)
    return app


def _ensure_database_dir(app: Flask) -> None:
    database_dir = app.config.get("DATABASE_DIR")
    if database_dir:
        os.makedirs(database_dir, exist_ok=True)


def _maybe_init_schema(app: Flask) -> None:
    auto_init = bool(app.config.get("DB_AUTO_INIT", False))
    if app.testing:
        # Les tests restent isoles sans dependre d'une migration externe.
        auto_init = True
    if not auto_init:
        return

    flask_env = (os.environ.get("FLASK_ENV", "development") or "development").strip().lower()
    if not app.testing and flask_env != "development":
        app.logger.warning("DB_AUTO_INIT ignore hors development.")
        return

    with app.app_context():
        init_db()


def _register_services(app: Flask) -> None:
    from intervention_engine.application.intervention_service import InterventionService
    from intervention_engine.application.notification_dispatcher import NotificationDispatcher
    from intervention_engine.core.event_bus import EventBus
    from intervention_engine.domain.policy import EnginePolicy

    event_bus = EventBus()
    service = InterventionService(policy=EnginePolicy.from_config(app.config), event_bus=event_bus)
    dispatcher = NotificationDispatcher(enabled=bool(app.config.get("NOTIFICATIONS_ENABLED", True)))
    dispatcher.register(event_bus)

    app.extensions["event_bus"] = event_bus
    app.extensions["intervention_service"] = service
    app.extensions["notification_dispatcher"] = dispatcher


def _register_blueprints(app: Flask) -> None:
    from intervention_engine.routes.intervention_routes import intervention_bp

    app.register_blueprint(intervention_bp)


def _register_team(app: Flask) -> None:
    @app.before_request
    def load_team() -> None:
        from intervention_engine.team import DEFAULT_TEAM_ID, normalize_team_id

        session_team = normalize_team_id(session.get("team_id"))
        if session_team:
            g.team_id = session_team
            return

        # Prototype: equipe transmise par en-tete pour les clients API.
        g.team_id = normalize_team_id(request.headers.get("X-Team-Id")) or DEFAULT_TEAM_ID


def _register_error_handlers(app: Flask) -> None:
    from intervention_engine.errors import AppError, SystemError

    @app.before_request
    def _ensure_request_id() -> None:
        ensure_request_id()

    @app.after_request
    def _append_request_id(response):
        response.headers["X-Request-Id"] = ensure_request_id()
        return response

    def _log_error(error: AppError, request_id: str) -> None:
        log_method = app.logger.error if error.critical else app.logger.warning
        log_method(
            "application_error",
            extra={
                "request_id": request_id,
                "error_code": error.code,
                "http_status": error.http_status,
                "message_key": error.message_key,
                "details": error.details,
                "request_path": request.path,
                "http_method": request.method,
            },
            exc_info=error.critical,
        )

    @app.errorhandler(AppError)
    def _handle_app_error(exc: AppError):
        request_id = ensure_request_id()
        _log_error(exc, request_id)
        return jsonify(exc.to_response_payload(request_id)), exc.http_status

    @app.errorhandler(Exception)
    def _handle_unexpected(exc: Exception):
        if isinstance(exc, HTTPException):
            return exc

        request_id = ensure_request_id()
        mapped = SystemError(
            code="unexpected_error",
            message_key="unexpected_error",
            http_status=500,
            critical=True,
            details=str(exc),
        )
        app.logger.exception(
            "unexpected_exception",
            extra={
                "request_id": request_id,
                "error_code": mapped.code,
                "request_path": request.path,
                "http_method": request.method,
            },
        )
        return jsonify(mapped.to_response_payload(request_id)), mapped.http_status


def _register_health(app: Flask) -> None:
    @app.route("/health")
    def health():
        from intervention_engine.db import get_db

        db_path = app.config.get("DB_PATH") or "unknown"
        backend = "postgres" if str(db_path).startswith("postgres") else "sqlite"
        payload = {
            "status": "ok",
            "db": backend,
            "metrics": {"workflow": metrics_snapshot()},
        }
        try:
            get_db().execute("SELECT 1").fetchone()
        except Exception:  # noqa: BLE001
            app.logger.warning("health_db_unreachable", exc_info=True)
            payload["status"] = "degraded"
        return payload, 200
