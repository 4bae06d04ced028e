"""
routes/notifications.py — In-app notification handlers.

Endpoints (base url_prefix=/api/v1/notifications):
  GET  /notifications               → 200  caller's notifications, newest first
  GET  /notifications?unread=true   → 200  unread only
  POST /notifications/:id/read      → 200  mark one as read
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from settleup.app.extensions import db
from settleup.app.middleware.auth_middleware import require_auth
from settleup.app.models.notification import Notification
from settleup.app.services import notification_service

notifications_bp = Blueprint("notifications", __name__)


def _serialize_notification(n: Notification) -> dict:
    return {
        "id": n.id,
        "kind": n.kind,
        "payload": n.payload,
        "created_at": n.created_at.isoformat() if n.created_at else None,
        "read_at": n.read_at.isoformat() if n.read_at else None,
    }


@notifications_bp.route("/", methods=["GET"])
@require_auth
def list_notifications():
    unread_only = request.args.get("unread", "").strip().lower() in ("1", "true", "yes")
    notifications = notification_service.list_notifications(
        user_id=g.user_id,
        session=db.session,
        unread_only=unread_only,
    )
    return jsonify({
        "data": [_serialize_notification(n) for n in notifications],
        "warnings": [],
    }), 200


@notifications_bp.route("/<int:notification_id>/read", methods=["POST"])
@require_auth
def mark_read(notification_id: int):
    notification = notification_service.mark_read(
        notification_id=notification_id,
        user_id=g.user_id,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": _serialize_notification(notification), "warnings": []}), 200
