"""
routes/auth.py — Authentication route handlers.

Layer rules:
  - Parse request body
  - Validate with the appropriate schema (raises ValidationError on bad input)
  - Call exactly ONE service function
  - Commit the DB session
  - Return the standard response envelope: {"data": {...}, "warnings": []}

AppError propagates to the global error handler in app/__init__.py — routes
never catch it.

Endpoints (base url_prefix=/api/v1/auth):
  POST   /auth/register  → 201  (also claims matching pending memberships)
  POST   /auth/login     → 200
  GET    /auth/me        → 200
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from settleup.app.extensions import db
from settleup.app.middleware.auth_middleware import require_auth
from settleup.app.schemas.auth_schema import LoginSchema, RegisterSchema
from settleup.app.services import auth_service

auth_bp = Blueprint("auth", __name__)


@auth_bp.route("/register", methods=["POST"])
def register():
    """
    POST /auth/register — Create account; return an access token.

    Registration and pending-member reconciliation commit together.
    """
    data = RegisterSchema().load(request.get_json(force=True) or {})
    result = auth_service.register_user(
        name=data["name"],
        email=data["email"],
        phone=data["phone"],
        password=data["password"],
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 201


@auth_bp.route("/login", methods=["POST"])
def login():
    """POST /auth/login — identifier is an email or a phone number."""
    data = LoginSchema().load(request.get_json(force=True) or {})
    result = auth_service.login_user(
        identifier=data["identifier"],
        password=data["password"],
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200


@auth_bp.route("/me", methods=["GET"])
@require_auth
def me():
    result = auth_service.get_current_user(
        user_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200
