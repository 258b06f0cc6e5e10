import logging
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import exists, func, select

from ..extensions import db
from ..models import Order, Payment
from .email_service import email_service
from .notification_service import notify, notify_admins
from .order_service import release_order_resources

logger = logging.getLogger(__name__)


def _hours(name, default):
    return timedelta(hours=current_app.config.get(name, default))


def _timed_out_query(now):
    cutoff = now - _hours("PENDING_ORDER_TIMEOUT_HOURS", 48)
    paid = exists().where(Payment.order_id == Order.id, Payment.status == "success")
    return select(Order).where(
        Order.status == "pending",
        Order.use_package.is_(False),
        Order.price > 0,
        Order.created_at < cutoff,
        ~paid,
    )


def _overdue_query(now):
    cutoff = now - _hours("IN_PROGRESS_OVERDUE_HOURS", 72)
    return select(Order).where(
        Order.status == "in_progress",
        Order.status_updated_at < cutoff,
        Order.overdue_flagged_at.is_(None),
    )


def _pickup_query(now):
    cutoff = now - _hours("PICKUP_REMINDER_DELAY_HOURS", 24)
    return select(Order).where(
        Order.status == "completed",
        Order.completed_at <= cutoff,
        Order.pickup_reminder_sent_at.is_(None),
    )


def cancel_timed_out_orders(now=None):
    """Cancel unpaid orders that have waited too long for payment."""
    now = now or datetime.now()
    hours = current_app.config.get("PENDING_ORDER_TIMEOUT_HOURS", 48)
    orders = db.session.scalars(_timed_out_query(now)).all()
    for order in orders:
        release_order_resources(
            order, f"Automatically cancelled: no payment within {hours} hours", now=now
        )
        notify(
            order.user_id,
            "Order cancelled",
            f"Order #{order.id} was cancelled because payment was not received within {hours} hours.",
            type="order",
            action_url=f"/orders/{order.id}",
        )
    db.session.commit()
    return [o.id for o in orders]


def flag_overdue_orders(now=None):
    """Warn admins once about orders stuck in progress."""
    now = now or datetime.now()
    hours = current_app.config.get("IN_PROGRESS_OVERDUE_HOURS", 72)
    orders = db.session.scalars(_overdue_query(now)).all()
    for order in orders:
        order.overdue_flagged_at = now
        notify_admins(
            "Overdue order",
            f"Order #{order.id} has been in progress for more than {hours} hours.",
            type="overdue",
            action_url=f"/admin/orders/{order.id}",
        )
    db.session.commit()
    return [o.id for o in orders]


def send_pickup_reminders(now=None):
    now = now or datetime.now()
    orders = db.session.scalars(_pickup_query(now)).all()
    for order in orders:
        order.pickup_reminder_sent_at = now
        notify(
            order.user_id,
            "Pickup reminder",
            f"Order #{order.id} is ready and waiting for pickup.",
            type="order",
            action_url=f"/orders/{order.id}",
        )
    db.session.commit()

    for order in orders:
        result = email_service.send_pickup_reminder(
            order.user.email, order.user.full_name, order.id
        )
        if not result.get("success"):
            logger.warning(f"Pickup reminder email for order {order.id} failed")
    return [o.id for o in orders]


def run_order_automation(now=None):
    now = now or datetime.now()
    cancelled = cancel_timed_out_orders(now)
    overdue = flag_overdue_orders(now)
    reminded = send_pickup_reminders(now)
    logger.info(
        f"Order automation: {len(cancelled)} cancelled, {len(overdue)} overdue, "
        f"{len(reminded)} reminders"
    )
    return {
        "ran_at": now.isoformat(),
        "cancelled": {"count": len(cancelled), "order_ids": cancelled},
        "overdue": {"count": len(overdue), "order_ids": overdue},
        "pickup_reminders": {"count": len(reminded), "order_ids": reminded},
    }


def _count(query):
    return db.session.scalar(select(func.count()).select_from(query.subquery())) or 0


def get_order_automation_stats(now=None):
    now = now or datetime.now()
    return {
        "pending_timeout_candidates": _count(_timed_out_query(now)),
        "overdue_candidates": _count(_overdue_query(now)),
        "pickup_reminder_candidates": _count(_pickup_query(now)),
        "flagged_overdue": db.session.scalar(
            select(func.count(Order.id)).where(
                Order.status == "in_progress", Order.overdue_flagged_at.is_not(None)
            )
        )
        or 0,
    }
