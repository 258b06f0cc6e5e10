from sqlalchemy import func, select

from ..extensions import db
from ..models import Order
from .notification_service import notify

# Ordered lowest to highest
MEMBERSHIP_TIERS = [
    {"tier": "SILVER", "min_spent": 0, "min_orders": 0, "multiplier": 1.0},
    {"tier": "GOLD", "min_spent": 200, "min_orders": 5, "multiplier": 1.2},
    {"tier": "VIP", "min_spent": 500, "min_orders": 12, "multiplier": 1.5},
]
TIER_RANK = {t["tier"]: i for i, t in enumerate(MEMBERSHIP_TIERS)}


def get_tier_for_stats(total_spent, order_count):
    """Highest tier reached by either total spend or completed order count."""
    tier = MEMBERSHIP_TIERS[0]["tier"]
    for definition in MEMBERSHIP_TIERS:
        if (
            total_spent >= definition["min_spent"]
            or order_count >= definition["min_orders"]
        ):
            tier = definition["tier"]
    return tier


def get_points_multiplier(tier):
    for definition in MEMBERSHIP_TIERS:
        if definition["tier"] == tier:
            return definition["multiplier"]
    return 1.0


def get_next_tier_progress(tier, total_spent, order_count):
    rank = TIER_RANK.get(tier, 0)
    if rank + 1 >= len(MEMBERSHIP_TIERS):
        return {"next_tier": None, "spent_needed": 0, "orders_needed": 0, "progress": 100}

    target = MEMBERSHIP_TIERS[rank + 1]
    spent_progress = total_spent / target["min_spent"] if target["min_spent"] else 1
    order_progress = order_count / target["min_orders"] if target["min_orders"] else 1
    return {
        "next_tier": target["tier"],
        "spent_needed": round(max(target["min_spent"] - total_spent, 0), 2),
        "orders_needed": max(target["min_orders"] - order_count, 0),
        "progress": round(min(max(spent_progress, order_progress), 1) * 100),
    }


def get_user_spend_stats(user_id):
    row = db.session.execute(
        select(func.count(Order.id), func.coalesce(func.sum(Order.price), 0)).where(
            Order.user_id == user_id, Order.status.in_(["completed", "picked_up"])
        )
    ).one()
    return {"order_count": row[0] or 0, "total_spent": float(row[1] or 0)}


def check_and_upgrade_tier(user):
    """Recompute the tier from completed orders; tiers never go down."""
    stats = get_user_spend_stats(user.id)
    new_tier = get_tier_for_stats(stats["total_spent"], stats["order_count"])
    current = user.membership_tier or "SILVER"
    if TIER_RANK.get(new_tier, 0) <= TIER_RANK.get(current, 0):
        return False

    user.membership_tier = new_tier
    notify(
        user.id,
        "Membership upgraded",
        f"Congratulations! You are now a {new_tier} member.",
        type="membership",
        action_url="/profile",
    )
    return True


def get_membership_info(user):
    stats = get_user_spend_stats(user.id)
    tier = user.membership_tier or "SILVER"
    return {
        "tier": tier,
        "multiplier": get_points_multiplier(tier),
        "total_spent": stats["total_spent"],
        "completed_orders": stats["order_count"],
        "next": get_next_tier_progress(
            tier, stats["total_spent"], stats["order_count"]
        ),
    }
