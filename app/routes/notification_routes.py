from __future__ import annotations

from flask import Blueprint, jsonify, request

from app.contexts.notifications.application.service import NotificationService
from app.db import get_db
from app.policies import current_caller


notifications_bp = Blueprint("notifications", __name__)


@notifications_bp.route("/api/notifications", methods=["GET"])
def notifications_api():
    try:
        limit = int(request.args.get("limit") or 50)
    except ValueError:
        limit = 50
    unread_only = str(request.args.get("unread") or "").strip().lower() in {"1", "true", "yes"}
    items = NotificationService().list_for_caller(get_db(), current_caller(), unread_only=unread_only, limit=limit)
    return jsonify({"items": items})


@notifications_bp.route("/api/notifications/<string:notification_id>/read", methods=["POST"])
def notification_read_api(notification_id: str):
    notification = NotificationService().mark_read(get_db(), current_caller(), notification_id)
    return jsonify(notification)
