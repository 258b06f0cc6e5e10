import math
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import func, select

from ..extensions import db
from ..models import Order

QUEUE_STATUSES = ("pending", "confirmed", "processing", "received", "in_progress")


def _setting(name, default):
    return current_app.config.get(name, default)


def count_open_orders():
    return db.session.scalar(
        select(func.count(Order.id)).where(Order.status.in_(QUEUE_STATUSES))
    ) or 0


def calculate_estimated_completion(now=None, open_orders=None):
    """Estimate when a newly placed order will be ready.

    Queue days grow with the backlog (capped), processing days are added on
    top, and a Sunday estimate moves to Monday.
    """
    now = now or datetime.now()
    if open_orders is None:
        open_orders = count_open_orders()

    per_day = _setting("ETA_ORDERS_PER_DAY", 5)
    queue_days = min(math.ceil(open_orders / per_day), _setting("ETA_MAX_QUEUE_DAYS", 7))
    eta = now + timedelta(days=queue_days + _setting("ETA_PROCESSING_DAYS", 2))
    if eta.weekday() == 6:
        eta += timedelta(days=1)
    return eta.replace(hour=18, minute=0, second=0, microsecond=0)


def get_order_queue_position(order):
    if order.status not in QUEUE_STATUSES:
        return None
    ahead = db.session.scalar(
        select(func.count(Order.id)).where(
            Order.status.in_(QUEUE_STATUSES),
            (Order.created_at < order.created_at)
            | ((Order.created_at == order.created_at) & (Order.id < order.id)),
        )
    )
    return (ahead or 0) + 1


def format_eta_label(eta, now=None):
    if eta is None:
        return None
    now = now or datetime.now()
    days = (eta.date() - now.date()).days
    if days <= 0:
        return "Today"
    if days == 1:
        return "Tomorrow"
    if days < 7:
        return f"In {days} days"
    return eta.strftime("%d %b %Y")


def get_order_eta_info(order, now=None):
    eta = order.estimated_completion_at
    return {
        "estimated_completion_at": eta.isoformat() if eta else None,
        "label": format_eta_label(eta, now),
        "queue_position": get_order_queue_position(order),
    }
