"""
Notification Blueprint - the caller's in-app inbox.

Endpoints:
  GET  /api/v1/notifications                 - list (?unread_only=1&limit=&offset=)
  GET  /api/v1/notifications/unread-count    - badge count
  POST /api/v1/notifications/<id>/read       - mark one read
  POST /api/v1/notifications/mark-all-read   - mark all read
"""

from flask import Blueprint, jsonify, request

from marketplace.auth import current_actor
from marketplace.services.notification import NotificationService
from marketplace.utils.helpers import get_pagination

notification_bp = Blueprint("notification_bp", __name__, url_prefix="/api/v1")


@notification_bp.route("/notifications", methods=["GET"])
def list_notifications():
    actor = current_actor()
    limit, offset = get_pagination()
    unread_only = request.args.get("unread_only") in ("1", "true")
    items, total = NotificationService.list_for_user(actor.id, unread_only=unread_only,
                                                     limit=limit, offset=offset)
    return jsonify({
        "items": [n.to_dict() for n in items],
        "total": total,
        "unread_count": NotificationService.unread_count(actor.id),
    })


@notification_bp.route("/notifications/unread-count", methods=["GET"])
def unread_count():
    actor = current_actor()
    return jsonify({"unread_count": NotificationService.unread_count(actor.id)})


@notification_bp.route("/notifications/<int:notification_id>/read", methods=["POST"])
def mark_read(notification_id):
    actor = current_actor()
    return jsonify(NotificationService.mark_read(notification_id, actor).to_dict())


@notification_bp.route("/notifications/mark-all-read", methods=["POST"])
def mark_all_read():
    actor = current_actor()
    return jsonify({"marked_read": NotificationService.mark_all_read(actor.id)})
