import logging
from datetime import datetime, timedelta

from sqlalchemy import case, func, select

from ..extensions import db
from ..models import Order, User, UserVoucher, Voucher
from ..utils.errors import bad_request, conflict, not_found, unprocessable
from .notification_service import notify
from .points_service import spend_points

logger = logging.getLogger(__name__)

VOUCHER_FIELDS = (
    "name",
    "description",
    "type",
    "value",
    "min_purchase",
    "max_uses",
    "max_redemptions_per_user",
    "points_cost",
    "valid_from",
    "valid_until",
    "validity_days",
    "is_first_order_only",
    "is_auto_issue",
    "active",
)


def calculate_voucher_discount(voucher, price):
    if price <= 0:
        return 0.0
    if voucher.type == "percentage":
        discount = price * voucher.value / 100
    else:
        discount = voucher.value
    return round(min(discount, price), 2)


def count_prior_orders(user_id):
    return db.session.scalar(
        select(func.count(Order.id)).where(
            Order.user_id == user_id, Order.status != "cancelled"
        )
    ) or 0


def assert_first_order_voucher_eligibility(user_id, is_first_order_only):
    if not is_first_order_only:
        return
    if count_prior_orders(user_id) > 0:
        raise unprocessable("This voucher is only valid for your first order")


def is_voucher_in_window(voucher, now=None):
    now = now or datetime.now()
    return voucher.valid_from <= now <= voucher.valid_until


def validate_user_voucher_for_order(user, user_voucher_id, price, now=None):
    """Return (user_voucher, discount) when the voucher can be applied."""
    now = now or datetime.now()
    user_voucher = db.session.get(UserVoucher, user_voucher_id)
    if not user_voucher or user_voucher.user_id != user.id:
        raise not_found("Voucher not found")

    voucher = user_voucher.voucher
    if (
        user_voucher.status != "active"
        or user_voucher.expiry < now
        or not voucher.active
        or not is_voucher_in_window(voucher, now)
    ):
        raise conflict("Voucher not valid")

    assert_first_order_voucher_eligibility(user.id, voucher.is_first_order_only)

    if price < (voucher.min_purchase or 0):
        raise unprocessable(
            f"Minimum spend of RM{voucher.min_purchase:.2f} required for this voucher"
        )
    return user_voucher, calculate_voucher_discount(voucher, price)


def mark_voucher_used(user_voucher, order_id, now=None):
    user_voucher.status = "used"
    user_voucher.used_at = now or datetime.now()
    user_voucher.order_id = order_id


def restore_voucher(user_voucher):
    user_voucher.status = "active"
    user_voucher.used_at = None
    user_voucher.order_id = None


def _grant(user, voucher, now):
    if voucher.validity_days:
        expiry = min(now + timedelta(days=voucher.validity_days), voucher.valid_until)
    else:
        expiry = voucher.valid_until
    user_voucher = UserVoucher(
        user_id=user.id, voucher_id=voucher.id, status="active", expiry=expiry
    )
    db.session.add(user_voucher)
    return user_voucher


def issue_welcome_vouchers(user, now=None):
    """Give a new user every active auto-issue voucher (caller commits)."""
    now = now or datetime.now()
    vouchers = db.session.scalars(
        select(Voucher).where(
            Voucher.active.is_(True),
            Voucher.is_auto_issue.is_(True),
            Voucher.valid_from <= now,
            Voucher.valid_until >= now,
        )
    ).all()

    issued = []
    names = []
    for voucher in vouchers:
        if voucher.max_uses is not None and voucher.used_count >= voucher.max_uses:
            continue
        issued.append(_grant(user, voucher, now))
        names.append(voucher.name)
        voucher.used_count = (voucher.used_count or 0) + 1

    if issued:
        notify(
            user.id,
            "Welcome gift",
            f"Welcome aboard! We added {len(issued)} voucher(s) to your wallet: {', '.join(names)}.",
            type="voucher",
            action_url="/vouchers",
        )
    return issued


def _count_user_redemptions(user_id, voucher_id):
    return db.session.scalar(
        select(func.count(UserVoucher.id)).where(
            UserVoucher.user_id == user_id, UserVoucher.voucher_id == voucher_id
        )
    ) or 0


def _redeem(user, voucher, now):
    if not voucher.active:
        raise conflict("Voucher is not active")
    if not is_voucher_in_window(voucher, now):
        raise conflict("Voucher is not valid at this time")
    if voucher.max_uses is not None and voucher.used_count >= voucher.max_uses:
        raise conflict("Voucher has been fully redeemed")
    limit = voucher.max_redemptions_per_user or 1
    if _count_user_redemptions(user.id, voucher.id) >= limit:
        raise conflict("You have already redeemed this voucher")

    if voucher.points_cost:
        spend_points(
            user,
            voucher.points_cost,
            "voucher",
            reference_id=f"voucher:{voucher.id}",
            description=f"Redeemed voucher {voucher.code}",
        )

    user_voucher = _grant(user, voucher, now)
    voucher.used_count = (voucher.used_count or 0) + 1
    db.session.commit()
    logger.info(f"User {user.id} redeemed voucher {voucher.code}")
    return user_voucher


def redeem_voucher_by_code(user, code, now=None):
    if not code or not code.strip():
        raise bad_request("Voucher code is required")
    voucher = db.session.scalar(
        select(Voucher).where(Voucher.code == code.strip().upper())
    )
    if not voucher:
        raise not_found("Voucher code not found")
    return _redeem(user, voucher, now or datetime.now())


def redeem_voucher_with_points(user, voucher_id, now=None):
    voucher = db.session.get(Voucher, voucher_id)
    if not voucher:
        raise not_found("Voucher not found")
    if not voucher.points_cost:
        raise bad_request("This voucher cannot be redeemed with points")
    return _redeem(user, voucher, now or datetime.now())


def effective_status(user_voucher, now=None):
    now = now or datetime.now()
    if user_voucher.status == "active" and user_voucher.expiry < now:
        return "expired"
    return user_voucher.status


def list_user_vouchers(user, status=None, now=None):
    now = now or datetime.now()
    vouchers = db.session.scalars(
        select(UserVoucher)
        .where(UserVoucher.user_id == user.id)
        .order_by(UserVoucher.created_at.desc(), UserVoucher.id.desc())
    ).all()
    if status:
        vouchers = [v for v in vouchers if effective_status(v, now) == status]
    return vouchers


def list_redeemable_vouchers(user, now=None):
    now = now or datetime.now()
    vouchers = db.session.scalars(
        select(Voucher)
        .where(
            Voucher.active.is_(True),
            Voucher.points_cost > 0,
            Voucher.valid_from <= now,
            Voucher.valid_until >= now,
        )
        .order_by(Voucher.points_cost)
    ).all()
    result = []
    for voucher in vouchers:
        if voucher.max_uses is not None and voucher.used_count >= voucher.max_uses:
            continue
        redeemed = _count_user_redemptions(user.id, voucher.id)
        result.append(
            {
                "voucher": voucher,
                "can_afford": (user.points or 0) >= voucher.points_cost,
                "remaining_redemptions": max(
                    (voucher.max_redemptions_per_user or 1) - redeemed, 0
                ),
            }
        )
    return result


def get_voucher_stats(user, now=None):
    now = now or datetime.now()
    vouchers = list_user_vouchers(user, now=now)
    statuses = [effective_status(v, now) for v in vouchers]
    total = len(statuses)
    used = statuses.count("used")
    return {
        "total": total,
        "used": used,
        "active": statuses.count("active"),
        "expired": statuses.count("expired"),
        "usage_rate": round(used / total * 100, 1) if total else 0,
    }


# Admin


def _parse_voucher_payload(data, partial=False):
    values = {}
    for field in VOUCHER_FIELDS:
        if field in data:
            values[field] = data[field]

    if "code" in data:
        values["code"] = str(data["code"]).strip().upper()

    if not partial:
        for field in ("code", "name", "type", "value", "valid_until"):
            if values.get(field) in (None, ""):
                raise bad_request(f"{field} is required")

    if "type" in values and values["type"] not in ("percentage", "fixed"):
        raise bad_request("type must be 'percentage' or 'fixed'")
    if "value" in values:
        try:
            values["value"] = float(values["value"])
        except (TypeError, ValueError):
            raise bad_request("value must be a number")
        if values["value"] <= 0:
            raise bad_request("value must be positive")
        if values.get("type") == "percentage" and values["value"] > 100:
            raise bad_request("percentage value cannot exceed 100")

    for field in ("valid_from", "valid_until"):
        if field in values and isinstance(values[field], str):
            try:
                values[field] = datetime.fromisoformat(values[field])
            except ValueError:
                raise bad_request(f"{field} must be an ISO date")
    return values


def create_voucher(data):
    values = _parse_voucher_payload(data)
    if db.session.scalar(select(Voucher).where(Voucher.code == values["code"])):
        raise conflict("Voucher code already exists")
    voucher = Voucher(**values)
    if voucher.valid_from and voucher.valid_from > voucher.valid_until:
        raise bad_request("valid_from must be before valid_until")
    db.session.add(voucher)
    db.session.commit()
    return voucher


def update_voucher(voucher_id, data):
    voucher = db.session.get(Voucher, voucher_id)
    if not voucher:
        raise not_found("Voucher not found")
    values = _parse_voucher_payload(data, partial=True)
    if "code" in values and values["code"] != voucher.code:
        if db.session.scalar(select(Voucher).where(Voucher.code == values["code"])):
            raise conflict("Voucher code already exists")
    for key, value in values.items():
        setattr(voucher, key, value)
    db.session.commit()
    return voucher


def delete_voucher(voucher_id):
    """Delete unused vouchers; vouchers already handed out are deactivated."""
    voucher = db.session.get(Voucher, voucher_id)
    if not voucher:
        raise not_found("Voucher not found")
    if voucher.user_vouchers:
        voucher.active = False
        db.session.commit()
        return "deactivated"
    db.session.delete(voucher)
    db.session.commit()
    return "deleted"


def list_all_vouchers():
    return db.session.scalars(select(Voucher).order_by(Voucher.created_at.desc())).all()


def distribute_voucher(voucher_id, user_ids=None, now=None):
    now = now or datetime.now()
    voucher = db.session.get(Voucher, voucher_id)
    if not voucher:
        raise not_found("Voucher not found")
    if not voucher.active:
        raise conflict("Voucher is not active")

    query = select(User).where(User.role == "customer")
    if user_ids:
        query = query.where(User.id.in_(user_ids))
    users = db.session.scalars(query).all()
    if not users:
        raise bad_request("No matching users")

    for user in users:
        _grant(user, voucher, now)
        notify(
            user.id,
            "New voucher",
            f"You received the voucher {voucher.name} ({voucher.code}).",
            type="voucher",
            action_url="/vouchers",
        )
    voucher.used_count = (voucher.used_count or 0) + len(users)
    db.session.commit()
    return len(users)


def get_voucher_usage_stats():
    rows = db.session.execute(
        select(
            Voucher.id,
            Voucher.code,
            Voucher.name,
            func.count(UserVoucher.id).label("issued"),
            func.coalesce(
                func.sum(case((UserVoucher.status == "used", 1), else_=0)), 0
            ).label("used"),
        )
        .outerjoin(UserVoucher, UserVoucher.voucher_id == Voucher.id)
        .group_by(Voucher.id, Voucher.code, Voucher.name)
        .order_by(Voucher.id)
    ).all()
    return [
        {
            "voucher_id": row.id,
            "code": row.code,
            "name": row.name,
            "issued": row.issued,
            "used": int(row.used or 0),
            "usage_rate": round(int(row.used or 0) / row.issued * 100, 1)
            if row.issued
            else 0,
        }
        for row in rows
    ]
