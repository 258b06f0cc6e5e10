"""
Points ledger.

Every earn or spend appends a ``PointsLog`` row and updates the balance kept
on ``User.points``; ``balance_after`` records the running balance.
"""

from datetime import datetime

from sqlalchemy import select

from ..extensions import db
from ..models import PointsLog, User
from ..utils.errors import bad_request, conflict, not_found


def add_points(user, amount, type, reference_id=None, description=None):
    """Append a ledger entry and adjust the user's balance (caller commits)."""
    amount = int(amount)
    user.points = (user.points or 0) + amount
    log = PointsLog(
        user_id=user.id,
        amount=amount,
        type=type,
        reference_id=str(reference_id) if reference_id is not None else None,
        description=description,
        balance_after=user.points,
    )
    db.session.add(log)
    return log


def spend_points(user, amount, type, reference_id=None, description=None):
    if amount <= 0:
        raise bad_request("Points amount must be positive")
    if (user.points or 0) < amount:
        raise conflict("Insufficient points balance")
    return add_points(user, -amount, type, reference_id, description)


def redeem_points(user_id, points, reason=None):
    try:
        points = int(points)
    except (TypeError, ValueError):
        raise bad_request("Invalid points amount")
    if points <= 0:
        raise bad_request("Invalid points amount")

    user = db.session.get(User, user_id)
    if not user:
        raise not_found("User not found")

    log = spend_points(user, points, "redeemed", description=reason or "Points redeemed")
    db.session.commit()
    return {"redeemed": points, "balance": user.points, "log_id": log.id}


def get_points_history(user, type=None, limit=50):
    query = select(PointsLog).where(PointsLog.user_id == user.id)
    if type:
        query = query.where(PointsLog.type == type)
    return db.session.scalars(
        query.order_by(PointsLog.created_at.desc(), PointsLog.id.desc()).limit(limit)
    ).all()


def get_points_summary(user, type=None, limit=50):
    return {"balance": user.points or 0, "logs": get_points_history(user, type, limit)}


def summarize_points(amounts):
    """Split ledger amounts into earned (positive) and spent (absolute negative)."""
    earned = sum(a for a in amounts if a > 0)
    spent = sum(-a for a in amounts if a < 0)
    return {"earned": earned, "spent": spent}


def get_points_stats(user, now=None):
    now = now or datetime.now()
    month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)

    amounts = db.session.scalars(
        select(PointsLog.amount).where(PointsLog.user_id == user.id)
    ).all()
    month_amounts = db.session.scalars(
        select(PointsLog.amount).where(
            PointsLog.user_id == user.id, PointsLog.created_at >= month_start
        )
    ).all()
    totals = summarize_points(amounts)
    month = summarize_points(month_amounts)

    return {
        "balance": user.points or 0,
        "total_earned": totals["earned"],
        "total_spent": totals["spent"],
        "this_month_earned": month["earned"],
        "this_month_spent": month["spent"],
        "transactions": len(amounts),
    }


def adjust_points(admin, user_id, amount, reason):
    try:
        amount = int(amount)
    except (TypeError, ValueError):
        raise bad_request("Invalid points amount")
    if amount == 0:
        raise bad_request("Adjustment cannot be zero")
    if not reason:
        raise bad_request("A reason is required")

    user = db.session.get(User, user_id)
    if not user:
        raise not_found("User not found")
    if (user.points or 0) + amount < 0:
        raise conflict("Adjustment would make the balance negative")

    log = add_points(
        user, amount, "adjustment", reference_id=f"admin:{admin.id}", description=reason
    )
    db.session.commit()
    return log

