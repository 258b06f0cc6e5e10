import logging
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import func, select

from ..extensions import db
from ..models import Order, Package, Payment, UserPackage
from ..utils.errors import bad_request, conflict, not_found, unprocessable

logger = logging.getLogger(__name__)

ELIGIBILITY_STATUSES = ("in_progress", "completed", "picked_up")
PACKAGE_FIELDS = (
    "name",
    "description",
    "times",
    "price",
    "validity_days",
    "is_first_order_only",
    "renewal_discount",
    "featured",
    "active",
)


def is_user_eligible_for_first_order(user_id):
    """A user keeps first-order offers until an order is paid or finished."""
    count = db.session.scalar(
        select(func.count(Order.id)).where(
            Order.user_id == user_id, Order.status.in_(ELIGIBILITY_STATUSES)
        )
    )
    return (count or 0) == 0


def apply_renewal_discount(price, discount_percent):
    if not discount_percent or discount_percent <= 0:
        return round(price, 2)
    return round(price * (1 - discount_percent / 100), 2)


def get_renewal_discount_for_user(user_id, package_id, now=None):
    """Renewal discount percent when the user's copy of the package expires soon."""
    now = now or datetime.now()
    package = db.session.get(Package, package_id)
    if not package or not package.renewal_discount or package.renewal_discount <= 0:
        return 0

    window_days = current_app.config.get("RENEWAL_WINDOW_DAYS", 7)
    window_end = now + timedelta(days=window_days)
    expiring = db.session.scalar(
        select(func.count(UserPackage.id)).where(
            UserPackage.user_id == user_id,
            UserPackage.package_id == package_id,
            UserPackage.expiry <= window_end,
        )
    )
    return package.renewal_discount if expiring else 0


def list_available_packages(user=None, now=None):
    packages = db.session.scalars(
        select(Package).where(Package.active.is_(True)).order_by(Package.price)
    ).all()
    if user is None:
        return [(p, 0, p.price) for p in packages if not p.is_first_order_only]

    eligible = is_user_eligible_for_first_order(user.id)
    result = []
    for package in packages:
        if package.is_first_order_only and not eligible:
            continue
        discount = get_renewal_discount_for_user(user.id, package.id, now)
        result.append((package, discount, apply_renewal_discount(package.price, discount)))
    return result


def list_featured_packages(limit=3):
    return db.session.scalars(
        select(Package)
        .where(Package.active.is_(True), Package.featured.is_(True))
        .order_by(Package.price)
        .limit(limit)
    ).all()


def buy_package(user, package_id, payment_method="manual", now=None):
    """Create a pending payment for a package purchase."""
    if payment_method not in ("manual", "tng", "cash"):
        raise bad_request("Invalid payment method")

    package = db.session.get(Package, package_id)
    if not package:
        raise not_found("Package not found")
    if not package.active:
        raise conflict("Package is not available")
    if package.is_first_order_only and not is_user_eligible_for_first_order(user.id):
        raise conflict("This package is only available for first-time customers")

    discount = get_renewal_discount_for_user(user.id, package.id, now)
    amount = apply_renewal_discount(package.price, discount)
    if amount <= 0:
        raise unprocessable("Package price must be greater than zero")

    payment = Payment(
        user_id=user.id,
        package_id=package.id,
        amount=amount,
        provider=payment_method,
        status="pending",
        details={
            "type": "package_purchase",
            "package_name": package.name,
            "original_price": package.price,
            "renewal_discount": discount,
        },
    )
    db.session.add(payment)
    db.session.commit()
    logger.info(f"User {user.id} started purchase of package {package.id} ({amount})")
    return payment


def activate_package_purchase(payment, now=None):
    """Credit the purchased package once per payment (caller commits)."""
    existing = db.session.scalar(
        select(UserPackage).where(UserPackage.payment_id == payment.id)
    )
    if existing:
        return existing

    now = now or datetime.now()
    package = db.session.get(Package, payment.package_id)
    if not package:
        raise not_found("Package not found")
    user_package = UserPackage(
        user_id=payment.user_id,
        package_id=package.id,
        payment_id=payment.id,
        remaining=package.times,
        status="active",
        expiry=now + timedelta(days=package.validity_days),
    )
    db.session.add(user_package)
    return user_package


def get_usable_user_package(user, user_package_id, racket_count, now=None):
    now = now or datetime.now()
    user_package = db.session.get(UserPackage, user_package_id)
    if not user_package or user_package.user_id != user.id:
        raise not_found("Package not found")
    if user_package.status != "active" or user_package.expiry < now:
        raise conflict("Package is not active")
    if user_package.remaining < racket_count:
        raise conflict("Not enough package credits remaining")
    return user_package


def consume_package_credits(user_package, count):
    user_package.remaining -= count
    if user_package.remaining <= 0:
        user_package.remaining = 0
        user_package.status = "depleted"


def refund_package_credits(user_package, count, now=None):
    now = now or datetime.now()
    user_package.remaining += count
    user_package.status = "expired" if user_package.expiry < now else "active"


def list_user_packages(user, status=None, now=None):
    now = now or datetime.now()
    query = select(UserPackage).where(UserPackage.user_id == user.id)
    if status == "active":
        query = query.where(
            UserPackage.status == "active",
            UserPackage.remaining > 0,
            UserPackage.expiry > now,
        )
    elif status:
        query = query.where(UserPackage.status == status)
    return db.session.scalars(
        query.order_by(UserPackage.expiry, UserPackage.id)
    ).all()


def list_pending_package_payments(user):
    return db.session.scalars(
        select(Payment)
        .where(
            Payment.user_id == user.id,
            Payment.package_id.is_not(None),
            Payment.status.in_(["pending", "pending_verification", "rejected"]),
        )
        .order_by(Payment.created_at.desc())
    ).all()


def list_package_usage(user, user_package_id):
    user_package = db.session.get(UserPackage, user_package_id)
    if not user_package or user_package.user_id != user.id:
        raise not_found("Package not found")
    orders = db.session.scalars(
        select(Order)
        .where(Order.user_package_id == user_package.id)
        .order_by(Order.created_at.desc())
    ).all()
    return user_package, orders


# Admin


def _parse_package_payload(data, partial=False):
    values = {k: data[k] for k in PACKAGE_FIELDS if k in data}
    if not partial:
        for field in ("name", "times", "price"):
            if values.get(field) in (None, ""):
                raise bad_request(f"{field} is required")
    try:
        if "times" in values:
            values["times"] = int(values["times"])
            if values["times"] <= 0:
                raise bad_request("times must be positive")
        if "price" in values:
            values["price"] = float(values["price"])
            if values["price"] < 0:
                raise bad_request("price cannot be negative")
        if "validity_days" in values:
            values["validity_days"] = int(values["validity_days"])
            if values["validity_days"] <= 0:
                raise bad_request("validity_days must be positive")
        if "renewal_discount" in values:
            values["renewal_discount"] = float(values["renewal_discount"] or 0)
            if not 0 <= values["renewal_discount"] <= 100:
                raise bad_request("renewal_discount must be between 0 and 100")
    except (TypeError, ValueError):
        raise bad_request("Invalid numeric value")
    return values


def create_package(data):
    package = Package(**_parse_package_payload(data))
    db.session.add(package)
    db.session.commit()
    return package


def update_package(package_id, data):
    package = db.session.get(Package, package_id)
    if not package:
        raise not_found("Package not found")
    for key, value in _parse_package_payload(data, partial=True).items():
        setattr(package, key, value)
    db.session.commit()
    return package


def toggle_package(package_id):
    package = db.session.get(Package, package_id)
    if not package:
        raise not_found("Package not found")
    package.active = not package.active
    db.session.commit()
    return package


def list_all_packages():
    return db.session.scalars(select(Package).order_by(Package.created_at.desc())).all()


def list_package_purchases(status=None):
    query = select(UserPackage)
    if status:
        query = query.where(UserPackage.status == status)
    return db.session.scalars(query.order_by(UserPackage.created_at.desc())).all()


def get_package_sales_stats():
    rows = db.session.execute(
        select(
            Package.id,
            Package.name,
            func.count(Payment.id).label("sold"),
            func.coalesce(func.sum(Payment.amount), 0).label("revenue"),
        )
        .outerjoin(
            Payment,
            (Payment.package_id == Package.id) & (Payment.status == "success"),
        )
        .group_by(Package.id, Package.name)
        .order_by(func.count(Payment.id).desc())
    ).all()
    return [
        {
            "package_id": row.id,
            "name": row.name,
            "sold": row.sold,
            "revenue": round(float(row.revenue or 0), 2),
        }
        for row in rows
    ]
