"""
routes/groups.py — Group and membership route handlers.

Layer rules:
  - Parse, validate, call ONE service, commit, return envelope.
  - No business logic. No DB queries. No bare SQL.

Endpoints (base url_prefix=/api/v1/groups):
  POST   /groups                               → 201  create group
  GET    /groups                               → 200  list caller's groups
  GET    /groups/:id                           → 200  group + members
  PATCH  /groups/:id                           → 200  rename (creator only)
  POST   /groups/:id/members                   → 201  add member by phone (admin)
  POST   /groups/:id/members/:uid/admin        → 200  promote to admin (admin)
  DELETE /groups/:id/members/:uid              → 200  remove member (admin)
  DELETE /groups/:id/pending-members/:pid      → 200  remove pending member (admin)
"""

from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from settleup.app.extensions import db
from settleup.app.middleware.auth_middleware import require_auth
from settleup.app.schemas.group_schema import (
    CreateGroupSchema,
    MemberInputSchema,
    RenameGroupSchema,
)
from settleup.app.services import group_service

groups_bp = Blueprint("groups", __name__)


def _country_code() -> str:
    return current_app.config["DEFAULT_PHONE_COUNTRY_CODE"]


@groups_bp.route("/", methods=["POST"])
@require_auth
def create_group():
    """POST /groups — Create a group. Caller becomes creator and first admin."""
    data = CreateGroupSchema().load(request.get_json(force=True) or {})
    result = group_service.create_group(
        name=data["name"],
        creator_id=g.user_id,
        session=db.session,
        members=data["members"],
        default_country_code=_country_code(),
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 201


@groups_bp.route("/", methods=["GET"])
@require_auth
def list_groups():
    """GET /groups — Groups the authenticated user belongs to."""
    result = group_service.list_groups(
        user_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200


@groups_bp.route("/<int:group_id>", methods=["GET"])
@require_auth
def get_group(group_id: int):
    result = group_service.get_group(
        group_id=group_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200


@groups_bp.route("/<int:group_id>", methods=["PATCH"])
@require_auth
def rename_group(group_id: int):
    data = RenameGroupSchema().load(request.get_json(force=True) or {})
    result = group_service.rename_group(
        group_id=group_id,
        caller_id=g.user_id,
        name=data["name"],
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 200


@groups_bp.route("/<int:group_id>/members", methods=["POST"])
@require_auth
def add_member(group_id: int):
    """
    POST /groups/:id/members — Add someone by phone. Admins only.

    A registered user with that phone joins directly; anyone else is
    tracked as a pending member until they sign up.
    """
    data = MemberInputSchema().load(request.get_json(force=True) or {})
    result = group_service.add_member(
        group_id=group_id,
        caller_id=g.user_id,
        data=data,
        session=db.session,
        default_country_code=_country_code(),
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 201


@groups_bp.route("/<int:group_id>/members/<int:target_uid>/admin", methods=["POST"])
@require_auth
def promote_member(group_id: int, target_uid: int):
    result = group_service.promote_to_admin(
        group_id=group_id,
        caller_id=g.user_id,
        target_user_id=target_uid,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 200


@groups_bp.route("/<int:group_id>/members/<int:target_uid>", methods=["DELETE"])
@require_auth
def remove_member(group_id: int, target_uid: int):
    """
    DELETE /groups/:id/members/:uid — Admins only.
    Blocked with 409 OUTSTANDING_BALANCE while the member is not settled up.
    """
    result = group_service.remove_member(
        group_id=group_id,
        caller_id=g.user_id,
        target_user_id=target_uid,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 200


@groups_bp.route("/<int:group_id>/pending-members/<int:pending_id>", methods=["DELETE"])
@require_auth
def remove_pending_member(group_id: int, pending_id: int):
    result = group_service.remove_pending_member(
        group_id=group_id,
        caller_id=g.user_id,
        pending_member_id=pending_id,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 200
