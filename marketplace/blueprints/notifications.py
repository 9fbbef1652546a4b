from __future__ import annotations

from flask import Blueprint, jsonify, request

from marketplace.blueprints.guards import current_account, int_arg, login_required
from marketplace.config import _str_to_bool
from marketplace.database import get_db
from marketplace.services.notification_service import NotificationService

notifications_bp = Blueprint("notifications", __name__, url_prefix="/api/notifications")


@notifications_bp.route("", methods=["GET"])
@login_required
def list_notifications():
    service = NotificationService(get_db())
    account_id = current_account().accountID
    notifications = service.get_notifications(
        account_id,
        unread_only=_str_to_bool(request.args.get("unread_only")),
        limit=min(max(int_arg("limit", 20), 1), 100),
    )
    return jsonify(
        {
            "success": True,
            "notifications": [NotificationService.to_dict(n) for n in notifications],
            "unread_count": service.get_unread_count(account_id),
        }
    ), 200


@notifications_bp.route("/<int:notification_id>/read", methods=["POST"])
@login_required
def mark_read(notification_id: int):
    notification = NotificationService(get_db()).mark_as_read(current_account().accountID, notification_id)
    return jsonify({"success": True, "notification": NotificationService.to_dict(notification)}), 200


@notifications_bp.route("/mark-all-read", methods=["POST"])
@login_required
def mark_all_read():
    updated = NotificationService(get_db()).mark_all_as_read(current_account().accountID)
    return jsonify({"success": True, "marked": updated}), 200
