from flask import Blueprint, current_app, g, request

from ...extensions import db
from ...services import notification_service
from ...utils.auth import require_user
from ...utils.errors import ApiError, internal_error, success_response
from ...utils.serializers import serialize_notification

notifications_bp = Blueprint(
    "notifications", __name__, url_prefix="/api/notifications"
)


@notifications_bp.route("", methods=["GET"])
@require_user
def list_notifications():
    """
    Notifications with the unread count
    ---
    tags:
      - Notifications
    security:
      - Bearer: []
    parameters:
      - in: query
        name: unread
        type: boolean
      - in: query
        name: limit
        type: integer
    responses:
      200:
        description: Notifications
    """
    try:
        unread_only = request.args.get("unread", "false").lower() == "true"
        notifications, unread = notification_service.list_notifications(
            g.current_user,
            unread_only=unread_only,
            limit=request.args.get("limit", 50, type=int),
        )
        return success_response(
            {
                "notifications": [serialize_notification(n) for n in notifications],
                "unread_count": unread,
            }
        )
    except Exception as e:
        current_app.logger.error(f"Failed to list notifications: {e}")
        return internal_error()


@notifications_bp.route("/<int:notification_id>/read", methods=["PUT"])
@require_user
def mark_read(notification_id):
    try:
        notification = notification_service.mark_read(g.current_user, notification_id)
        return success_response(serialize_notification(notification))
    except ApiError as e:
        return e.to_response()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Failed to mark notification {notification_id}: {e}")
        return internal_error()


@notifications_bp.route("/read-all", methods=["PUT"])
@require_user
def mark_all_read():
    try:
        count = notification_service.mark_all_read(g.current_user)
        return success_response({"updated": count})
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Failed to mark notifications read: {e}")
        return internal_error()


@notifications_bp.route("/<int:notification_id>", methods=["DELETE"])
@require_user
def delete_notification(notification_id):
    try:
        notification_service.delete_notification(g.current_user, notification_id)
        return success_response(None, "Notification deleted")
    except ApiError as e:
        return e.to_response()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Failed to delete notification {notification_id}: {e}")
        return internal_error()
