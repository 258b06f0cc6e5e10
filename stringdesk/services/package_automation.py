import logging
import math
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import func, select

from ..extensions import db
from ..models import UserPackage
from .email_service import email_service
from .notification_service import notify

logger = logging.getLogger(__name__)


def _lapsed_query(now):
    return select(UserPackage).where(
        UserPackage.status == "active", UserPackage.expiry < now
    )


def _renewal_query(now):
    window_end = now + timedelta(days=current_app.config.get("RENEWAL_WINDOW_DAYS", 7))
    return select(UserPackage).where(
        UserPackage.status == "active",
        UserPackage.remaining > 0,
        UserPackage.expiry >= now,
        UserPackage.expiry <= window_end,
        UserPackage.renewal_reminder_sent_at.is_(None),
    )


def _days_left(user_package, now):
    return max(math.ceil((user_package.expiry - now).total_seconds() / 86400), 1)


def expire_lapsed_packages(now=None):
    """Mark active packages past their expiry as expired."""
    now = now or datetime.now()
    packages = db.session.scalars(_lapsed_query(now)).all()
    for user_package in packages:
        user_package.status = "expired"
    db.session.commit()
    return [p.id for p in packages]


def send_package_renewal_reminders(now=None):
    """Remind each holder once when an unused package enters the renewal window."""
    now = now or datetime.now()
    packages = db.session.scalars(_renewal_query(now)).all()
    for user_package in packages:
        user_package.renewal_reminder_sent_at = now
        days_left = _days_left(user_package, now)
        discount = user_package.package.renewal_discount or 0
        message = (
            f"Your {user_package.package.name} package expires in {days_left} day(s) "
            f"with {user_package.remaining} restring(s) left."
        )
        if discount:
            message += f" Renew now for {discount:g}% off."
        notify(
            user_package.user_id,
            "Package expiring soon",
            message,
            type="package",
            action_url="/packages",
        )
    db.session.commit()

    for user_package in packages:
        user = user_package.user
        result = email_service.send_package_expiring(
            user.email,
            user.full_name,
            user_package.package.name,
            _days_left(user_package, now),
            user_package.remaining,
            user_package.package.renewal_discount or 0,
        )
        if not result.get("success"):
            logger.warning(f"Renewal reminder email for package {user_package.id} failed")
    return [p.id for p in packages]


def run_package_automation(now=None):
    now = now or datetime.now()
    expired = expire_lapsed_packages(now)
    reminded = send_package_renewal_reminders(now)
    logger.info(f"Package automation: {len(expired)} expired, {len(reminded)} reminders")
    return {
        "ran_at": now.isoformat(),
        "expired": {"count": len(expired), "user_package_ids": expired},
        "renewal_reminders": {"count": len(reminded), "user_package_ids": reminded},
    }


def get_package_automation_stats(now=None):
    now = now or datetime.now()

    def count(query):
        return db.session.scalar(select(func.count()).select_from(query.subquery())) or 0

    return {
        "lapsed_candidates": count(_lapsed_query(now)),
        "renewal_reminder_candidates": count(_renewal_query(now)),
    }
