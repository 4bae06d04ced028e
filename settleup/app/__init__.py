"""
app/__init__.py — Flask application factory.

Pattern: create_app(config_name) creates and returns a configured Flask app.
         Nothing is initialised at import time — this enables:
           - Multiple isolated test app instances
           - `flask db migrate` / alembic to import the models without
             starting the server

Responsibilities:
  1. Load configuration from config_by_name[config_name]
  2. Apply LOG_LEVEL to the app and settleup.* loggers
  3. Initialise extensions (SQLAlchemy, Marshmallow) via init_app()
  4. Register all route blueprints under /api/v1
  5. Register global error handlers (AppError → JSON, Exception → 500)
  6. Serialise Decimal as string (monetary amounts never travel as JS numbers)
"""

from __future__ import annotations

import logging
import traceback
from decimal import Decimal

from flask import Flask, jsonify, request
from flask.json.provider import DefaultJSONProvider
from marshmallow import ValidationError as SchemaValidationError
from werkzeug.exceptions import HTTPException

from settleup.config import config_by_name, validate_production_config


# ── Custom JSON provider ───────────────────────────────────────────────────

class DecimalJSONProvider(DefaultJSONProvider):
    """
    Serialises Decimal as str so jsonify() produces string amounts.

    Example: Decimal("10.50") → "10.50" (not 10.5 or 10.500000001)
    """

    def default(self, o):
        if isinstance(o, Decimal):
            return str(o)
        return super().default(o)


# ── Application factory ────────────────────────────────────────────────────

def create_app(config_name: str = "development") -> Flask:
    """
    Creates and returns a configured Flask application instance.

    Args:
        config_name: One of "development", "testing", "production".
                     Unknown names fall back to "development".
    """
    app = Flask(__name__)
    app.json_provider_class = DecimalJSONProvider
    app.json = DecimalJSONProvider(app)

    # ── Configuration ──────────────────────────────────────────────────────
    config_class = config_by_name.get(config_name, config_by_name["development"])
    app.config.from_object(config_class)

    if config_name == "production":
        validate_production_config(app)  # raises ValueError if misconfigured

    _configure_logging(app)

    # ── Extensions ─────────────────────────────────────────────────────────
    # Import here (not at module top) to avoid circular imports.
    from settleup.app.extensions import db, ma
    db.init_app(app)
    ma.init_app(app)

    # ── Model registration ─────────────────────────────────────────────────
    # Populates SQLAlchemy's MetaData; the names themselves are unused.
    with app.app_context():
        from settleup.app.models import (  # noqa: F401
            expense,
            expense_item,
            group,
            membership,
            notification,
            pending_member,
            settlement,
            split,
            user,
        )

    _register_blueprints(app)
    _register_error_handlers(app)
    _register_cors(app)

    return app


def _configure_logging(app: Flask) -> None:
    """
    Services log through logging.getLogger(__name__); their records reach
    the "settleup" logger, which shares app.logger's handler.
    """
    level = logging.getLevelName(str(app.config.get("LOG_LEVEL", "INFO")).upper())
    if not isinstance(level, int):
        level = logging.INFO

    app.logger.setLevel(level)

    package_logger = logging.getLogger("settleup")
    package_logger.setLevel(level)
    if not package_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter("[%(asctime)s] %(levelname)s in %(name)s: %(message)s")
        )
        package_logger.addHandler(handler)


def _register_blueprints(app: Flask) -> None:
    """
    Registers all route blueprints under the /api/v1 prefix.

    expenses_bp and settlements_bp sit at /api/v1 (not /api/v1/expenses etc.)
    because each owns both group-scoped paths (/groups/<id>/...) and
    record-id paths (/expenses/<id>, /settlements/<id>/confirm).
    """
    from settleup.app.routes.auth import auth_bp
    from settleup.app.routes.balances import balances_bp
    from settleup.app.routes.expenses import expenses_bp
    from settleup.app.routes.groups import groups_bp
    from settleup.app.routes.notifications import notifications_bp
    from settleup.app.routes.settlements import settlements_bp

    app.register_blueprint(auth_bp,          url_prefix="/api/v1/auth")
    app.register_blueprint(groups_bp,        url_prefix="/api/v1/groups")
    app.register_blueprint(balances_bp,      url_prefix="/api/v1/groups")
    app.register_blueprint(expenses_bp,      url_prefix="/api/v1")
    app.register_blueprint(settlements_bp,   url_prefix="/api/v1")
    app.register_blueprint(notifications_bp, url_prefix="/api/v1/notifications")


def _first_schema_error(messages, path: str | None = None) -> tuple[str | None, str]:
    """
    Walks marshmallow's nested messages and returns (field path, message)
    of the first error. Nested list entries are keyed by index, e.g.
    {"splits": {0: {"amount": ["..."]}}} → ("splits.0.amount", "...").
    """
    if isinstance(messages, dict):
        for key, value in messages.items():
            if key == "_schema":
                return _first_schema_error(value, path)
            child = str(key) if path is None else f"{path}.{key}"
            return _first_schema_error(value, child)
        return path, "Invalid input."
    if isinstance(messages, list):
        if not messages:
            return path, "Invalid value."
        return _first_schema_error(messages[0], path)
    return path, str(messages)


def _register_error_handlers(app: Flask) -> None:
    """
    Registers global error handlers.

      AppError              → error envelope with the subclass's HTTP status
      SchemaValidationError → 400; first error only, as MISSING_FIELD,
                              INVALID_FIELD or the ErrorCode the schema raised
      Exception             → 500 INTERNAL_ERROR; traceback logged, never
                              returned
    """
    from settleup.app.errors import AppError, ErrorCode

    known_codes = {
        value for name, value in vars(ErrorCode).items() if not name.startswith("_")
    }

    @app.errorhandler(AppError)
    def handle_app_error(error: AppError):
        """Routes never catch AppError — they let it propagate here."""
        if error.http_status >= 500:
            app.logger.error("AppError %s: %s", error.code, error.message)
        return jsonify(error.to_dict()), error.http_status

    @app.errorhandler(SchemaValidationError)
    def handle_validation_error(error: SchemaValidationError):
        field, raw_message = _first_schema_error(error.messages)

        if raw_message in known_codes:
            code = raw_message
            message = _code_to_message(code)
        elif raw_message.startswith("Missing data for required field"):
            code = ErrorCode.MISSING_FIELD
            message = raw_message
        else:
            code = ErrorCode.INVALID_FIELD
            message = raw_message

        response_body = {"error": {"code": code, "message": message}}
        if field is not None:
            response_body["error"]["field"] = field
        return jsonify(response_body), 400

    @app.errorhandler(HTTPException)
    def handle_http_error(error: HTTPException):
        """Unknown routes (404), wrong methods (405) and the like."""
        code = ErrorCode.ROUTE_NOT_FOUND if error.code == 404 else ErrorCode.HTTP_ERROR
        return jsonify({"error": {"code": code, "message": error.description}}), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        app.logger.error(
            "Unhandled exception: %s\n%s",
            str(error),
            traceback.format_exc(),
        )
        return jsonify({
            "error": {
                "code": ErrorCode.INTERNAL_ERROR,
                "message": "An unexpected error occurred. Please try again later.",
            }
        }), 500


def _register_cors(app: Flask) -> None:
    """
    Adds CORS headers for browser-based local development (DEBUG or TESTING)
    so a frontend on another local port can send Authorization headers.
    """

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allow_all = bool(app.config.get("DEBUG") or app.config.get("TESTING"))

        if allow_all:
            response.headers["Access-Control-Allow-Origin"] = origin if origin else "*"
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Methods"] = (
                "GET, POST, PUT, PATCH, DELETE, OPTIONS"
            )
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"

        return response


def _code_to_message(code: str) -> str:
    """
    Default message for an error code raised as a schema message
    (e.g. INVALID_AMOUNT_PRECISION from a field validator).
    """
    _messages = {
        "INVALID_AMOUNT_PRECISION": "Amount must have at most 2 decimal places.",
        "INVALID_CATEGORY": "The category value is not valid.",
        "INVALID_SPLIT_MODE": "split_mode must be 'equal', 'custom' or 'itemized'.",
        "SPLITS_SENT_FOR_EQUAL_MODE": "Send splits only when split_mode is 'custom'.",
        "DUPLICATE_SPLIT_PARTICIPANT": "The same participant appears more than once in splits.",
        "AMBIGUOUS_PARTICIPANT": "Give exactly one of user_id or pending_member_id.",
        "NON_POSITIVE_AMOUNT": "Amount must be greater than zero.",
    }
    return _messages.get(code, "Invalid input.")
