from sqlalchemy import func, select, update

from ..extensions import db
from ..models import Notification, User
from ..utils.errors import not_found


def notify(user_id, title, message, type="system", action_url=None):
    """Queue an in-app notification on the current session (caller commits)."""
    notification = Notification(
        user_id=user_id,
        title=title,
        message=message,
        type=type,
        action_url=action_url,
    )
    db.session.add(notification)
    return notification


def notify_admins(title, message, type="admin", action_url=None):
    admin_ids = db.session.scalars(select(User.id).where(User.role == "admin")).all()
    for admin_id in admin_ids:
        notify(admin_id, title, message, type=type, action_url=action_url)
    return len(admin_ids)


def list_notifications(user, unread_only=False, limit=50):
    query = select(Notification).where(Notification.user_id == user.id)
    if unread_only:
        query = query.where(Notification.read.is_(False))
    notifications = db.session.scalars(
        query.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(
            limit
        )
    ).all()
    unread = db.session.scalar(
        select(func.count(Notification.id)).where(
            Notification.user_id == user.id, Notification.read.is_(False)
        )
    )
    return notifications, unread or 0


def _get_own(user, notification_id):
    notification = db.session.get(Notification, notification_id)
    if not notification or notification.user_id != user.id:
        raise not_found("Notification not found")
    return notification


def mark_read(user, notification_id):
    notification = _get_own(user, notification_id)
    notification.read = True
    db.session.commit()
    return notification


def mark_all_read(user):
    result = db.session.execute(
        update(Notification)
        .where(Notification.user_id == user.id, Notification.read.is_(False))
        .values(read=True)
    )
    db.session.commit()
    return result.rowcount


def delete_notification(user, notification_id):
    notification = _get_own(user, notification_id)
    db.session.delete(notification)
    db.session.commit()
