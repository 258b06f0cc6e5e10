"""
Referral rewards.

The referrer earns a flat amount per successful referral, picked from the tier
the new referral count falls in. The referred user gets a fixed sign-up bonus.
"""

import logging

from flask import current_app
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import ReferralLog, User, UserBadge
from ..utils.errors import bad_request, conflict
from .notification_service import notify
from .points_service import add_points

logger = logging.getLogger(__name__)

REFERRAL_TIERS = [
    {"min": 1, "max": 5, "points": 50, "badge": None},
    {"min": 6, "max": 10, "points": 80, "badge": "referral_bronze"},
    {"min": 11, "max": None, "points": 100, "badge": "referral_silver"},
]

# Badges handed out when the referral count reaches the threshold
BADGE_THRESHOLDS = [
    (5, "referral_bronze"),
    (10, "referral_silver"),
    (25, "referral_gold"),
]


def get_referral_tier(referral_count):
    for tier in REFERRAL_TIERS:
        if referral_count >= tier["min"] and (
            tier["max"] is None or referral_count <= tier["max"]
        ):
            return tier
    return None


def get_referral_points(referral_count):
    tier = get_referral_tier(referral_count)
    return tier["points"] if tier else 0


def calculate_total_referral_points(referral_count):
    return sum(get_referral_points(n) for n in range(1, referral_count + 1))


def count_referrals(user_id):
    return db.session.scalar(
        select(func.count(ReferralLog.id)).where(ReferralLog.referrer_id == user_id)
    ) or 0


def _award_badges(user_id, referral_count):
    owned = set(
        db.session.scalars(
            select(UserBadge.badge_type).where(UserBadge.user_id == user_id)
        ).all()
    )
    awarded = []
    for threshold, badge in BADGE_THRESHOLDS:
        if referral_count >= threshold and badge not in owned:
            db.session.add(UserBadge(user_id=user_id, badge_type=badge))
            awarded.append(badge)
    return awarded


def process_referral_reward(referrer, referred):
    """Reward both sides of a referral once; caller commits."""
    if referrer.id == referred.id:
        raise bad_request("You cannot refer yourself")

    existing = db.session.scalar(
        select(ReferralLog).where(ReferralLog.referred_id == referred.id)
    )
    if existing:
        raise conflict("Referral reward already granted for this user")

    referral_count = count_referrals(referrer.id) + 1
    referrer_points = get_referral_points(referral_count)
    referred_points = current_app.config.get("REFERRED_USER_BONUS", 50)

    log = ReferralLog(
        referrer_id=referrer.id,
        referred_id=referred.id,
        referrer_points=referrer_points,
        referred_points=referred_points,
    )
    db.session.add(log)
    try:
        db.session.flush()
    except IntegrityError:
        raise conflict("Referral reward already granted for this user")

    add_points(
        referrer,
        referrer_points,
        "referral",
        reference_id=f"referral:{log.id}",
        description=f"Referral reward for inviting {referred.full_name}",
    )
    add_points(
        referred,
        referred_points,
        "referral",
        reference_id=f"referral:{log.id}",
        description="Welcome bonus for joining with a referral code",
    )
    badges = _award_badges(referrer.id, referral_count)

    notify(
        referrer.id,
        "Referral reward",
        f"{referred.full_name} joined with your code. You earned {referrer_points} points!",
        type="referral",
        action_url="/referrals",
    )
    notify(
        referred.id,
        "Welcome bonus",
        f"You earned {referred_points} points for signing up with a referral code.",
        type="referral",
        action_url="/points",
    )
    for badge in badges:
        notify(
            referrer.id,
            "New badge unlocked",
            f"You unlocked the {badge.replace('_', ' ')} badge.",
            type="badge",
        )

    logger.info(
        f"Referral {log.id}: user {referrer.id} (#{referral_count}) -> user {referred.id}"
    )
    return log


def find_referrer_by_code(code):
    if not code:
        return None
    return db.session.scalar(
        select(User).where(User.referral_code == code.strip().upper())
    )


def get_my_referral_stats(user):
    count = count_referrals(user.id)
    logs = db.session.scalars(
        select(ReferralLog)
        .where(ReferralLog.referrer_id == user.id)
        .order_by(ReferralLog.created_at.desc())
    ).all()
    tier = get_referral_tier(count)
    next_tier = get_referral_tier(count + 1)
    return {
        "referral_code": user.referral_code,
        "total_referrals": count,
        "total_points_earned": calculate_total_referral_points(count),
        "current_tier_points": tier["points"] if tier else 0,
        "next_referral_points": next_tier["points"] if next_tier else 0,
        "badges": get_user_badges(user),
        "referrals": [
            {
                "id": log.id,
                "referred_name": log.referred.full_name if log.referred else None,
                "points": log.referrer_points,
                "created_at": log.created_at.isoformat() if log.created_at else None,
            }
            for log in logs
        ],
    }


def get_referral_leaderboard(limit=10):
    rows = db.session.execute(
        select(User.id, User.full_name, func.count(ReferralLog.id).label("total"))
        .join(ReferralLog, ReferralLog.referrer_id == User.id)
        .group_by(User.id, User.full_name)
        .order_by(func.count(ReferralLog.id).desc(), User.id)
        .limit(limit)
    ).all()
    return [
        {
            "rank": i + 1,
            "user_id": row.id,
            "full_name": row.full_name,
            "referrals": row.total,
            "points": calculate_total_referral_points(row.total),
        }
        for i, row in enumerate(rows)
    ]


def get_user_badges(user):
    badges = db.session.scalars(
        select(UserBadge)
        .where(UserBadge.user_id == user.id)
        .order_by(UserBadge.created_at)
    ).all()
    return [
        {
            "badge_type": b.badge_type,
            "awarded_at": b.created_at.isoformat() if b.created_at else None,
        }
        for b in badges
    ]
