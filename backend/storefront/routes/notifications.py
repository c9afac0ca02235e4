# Overview: Flask API routes for the in-app notification inbox.

from flask import Blueprint, request, jsonify, g

from ..services import notification_service
from ..services.notification_service import NotificationError
from ..decorators import require_auth


notifications_bp = Blueprint("notifications", __name__, url_prefix="/api/notifications")


@notifications_bp.get("/")
@require_auth
def list_notifications_route():
    """
    Query params:
    - unread: "true" to return only unread notifications
    - limit: max rows (default 50, capped at 200)
    """
    unread_only = request.args.get("unread", "").lower() == "true"
    limit = min(request.args.get("limit", 50, type=int) or 50, 200)
    items, unread = notification_service.list_notifications(g.current_user.id, unread_only=unread_only, limit=limit)
    return jsonify({
        "notifications": [n.to_dict() for n in items],
        "unread_count": unread,
    }), 200


@notifications_bp.put("/<int:notification_id>/read")
@require_auth
def mark_read_route(notification_id: int):
    try:
        notification = notification_service.mark_read(notification_id, g.current_user.id)
        return jsonify({"notification": notification.to_dict()}), 200
    except NotificationError as e:
        return jsonify({"error": str(e)}), 404


@notifications_bp.put("/read-all")
@require_auth
def mark_all_read_route():
    count = notification_service.mark_all_read(g.current_user.id)
    return jsonify({"updated": count}), 200


@notifications_bp.delete("/<int:notification_id>")
@require_auth
def delete_notification_route(notification_id: int):
    try:
        notification_service.delete_notification(notification_id, g.current_user.id)
        return jsonify({"message": "Deleted"}), 200
    except NotificationError as e:
        return jsonify({"error": str(e)}), 404


@notifications_bp.delete("/")
@require_auth
def delete_all_route():
    count = notification_service.delete_all(g.current_user.id)
    return jsonify({"deleted": count}), 200
