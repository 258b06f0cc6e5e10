"""
Stringing orders.

Order creation, cancellation and completion each run as one unit of work: all
rows are staged on the session and committed together, and any ``ApiError``
raised half way leaves the caller to roll back.
"""

import logging
import math
from collections import Counter
from datetime import datetime

from flask import current_app
from sqlalchemy import func, or_, select

from ..extensions import db
from ..models import (
    Order,
    OrderItem,
    OrderStatusLog,
    Payment,
    StringInventory,
    User,
    UserPackage,
    UserVoucher,
)
from ..utils.errors import bad_request, conflict, not_found, unprocessable
from .email_service import email_service
from .inventory_service import release_order_stock, reserve_stock
from .membership_service import check_and_upgrade_tier
from .notification_service import notify, notify_admins
from .order_eta import calculate_estimated_completion, format_eta_label
from .order_status import format_status_label, validate_admin_status, validate_order_status
from .package_service import (
    consume_package_credits,
    get_usable_user_package,
    refund_package_credits,
)
from .points_service import add_points
from .voucher_service import (
    mark_voucher_used,
    restore_voucher,
    validate_user_voucher_for_order,
)

logger = logging.getLogger(__name__)

RACKET_FIELDS = ("racket_brand", "racket_model", "racket_photo", "notes")
UNSETTLED_PAYMENT_STATUSES = ("pending", "pending_verification", "rejected", "failed")


def _config(name, default):
    return current_app.config.get(name, default)


def _to_int(value, field):
    try:
        return int(value)
    except (TypeError, ValueError):
        raise bad_request(f"{field} must be a whole number")


def validate_tension(vertical, horizontal, check_difference=True):
    low, high = _config("TENSION_MIN", 18), _config("TENSION_MAX", 35)
    for value in (vertical, horizontal):
        if value < low or value > high:
            raise bad_request(f"Tension must be between {low} and {high} lbs")
    if check_difference:
        diff = horizontal - vertical
        diff_min, diff_max = _config("TENSION_DIFF_MIN", 1), _config("TENSION_DIFF_MAX", 3)
        if diff < diff_min or diff > diff_max:
            raise bad_request(
                f"Cross tension must be {diff_min}-{diff_max} lbs higher than main tension"
            )


def _normalize_item(raw):
    if not isinstance(raw, dict):
        raise bad_request("Each racket must be an object")
    if raw.get("string_id") in (None, ""):
        raise bad_request("string_id is required")

    string_id = _to_int(raw["string_id"], "string_id")
    if raw.get("tension_vertical") is not None and raw.get("tension_horizontal") is not None:
        vertical = _to_int(raw["tension_vertical"], "tension_vertical")
        horizontal = _to_int(raw["tension_horizontal"], "tension_horizontal")
        validate_tension(vertical, horizontal)
    elif raw.get("tension") is not None:
        vertical = horizontal = _to_int(raw["tension"], "tension")
        validate_tension(vertical, horizontal, check_difference=False)
    else:
        raise bad_request("Tension is required")

    item = {
        "string_id": string_id,
        "tension_vertical": vertical,
        "tension_horizontal": horizontal,
    }
    for field in RACKET_FIELDS:
        item[field] = raw.get(field)
    return item


def normalize_order_items(data):
    """Accept either ``items`` (multi-racket) or a single racket payload."""
    raw_items = data.get("items")
    if raw_items is None:
        raw_items = [data]
    if not isinstance(raw_items, list) or not raw_items:
        raise bad_request("At least one racket is required")
    return [_normalize_item(raw) for raw in raw_items]


def record_status_change(order, status, note=None, actor_id=None, now=None):
    now = now or datetime.now()
    order.status = status
    order.status_updated_at = now
    db.session.add(
        OrderStatusLog(
            order_id=order.id,
            status=status,
            note=note,
            changed_by_id=actor_id,
            created_at=now,
        )
    )


def create_order(user, data, now=None):
    now = now or datetime.now()
    items = normalize_order_items(data)
    deduct = _config("INVENTORY_DEDUCT_PER_RACKET", 1)

    strings = {}
    needed = Counter()
    for item in items:
        string = strings.get(item["string_id"]) or db.session.get(
            StringInventory, item["string_id"]
        )
        if not string or not string.active:
            raise not_found("String not found")
        strings[string.id] = string
        needed[string.id] += deduct
    for string_id, quantity in needed.items():
        if strings[string_id].stock < quantity:
            raise conflict(f"{strings[string_id].display_name} is out of stock")

    base_price = _config("DEFAULT_BASE_PRICE", 35.0)
    for item in items:
        string = strings[item["string_id"]]
        item["price"] = string.selling_price or base_price
        item["cost"] = string.cost_price or 0

    original_price = round(sum(i["price"] for i in items), 2)
    cost = round(sum(i["cost"] for i in items), 2)

    use_package = bool(data.get("use_package"))
    user_package = None
    user_voucher = None
    discount = 0.0
    if use_package:
        if not data.get("user_package_id"):
            raise bad_request("user_package_id is required when using a package")
        user_package = get_usable_user_package(
            user, _to_int(data["user_package_id"], "user_package_id"), len(items), now
        )
        price = 0.0
    else:
        price = original_price
        if data.get("user_voucher_id"):
            user_voucher, discount = validate_user_voucher_for_order(
                user, _to_int(data["user_voucher_id"], "user_voucher_id"), price, now
            )
            price = round(price - discount, 2)

    provider = data.get("payment_method", "manual")
    if provider not in ("manual", "tng", "cash"):
        raise bad_request("Invalid payment method")

    first = items[0]
    order = Order(
        user_id=user.id,
        string_id=first["string_id"],
        tension_vertical=first["tension_vertical"],
        tension_horizontal=first["tension_horizontal"],
        racket_brand=first["racket_brand"],
        racket_model=first["racket_model"],
        racket_count=len(items),
        price=price,
        original_price=original_price,
        discount_amount=discount,
        cost=cost,
        status="pending",
        use_package=use_package,
        user_package_id=user_package.id if user_package else None,
        user_voucher_id=user_voucher.id if user_voucher else None,
        notes=data.get("notes") if "items" in data else first["notes"],
        estimated_completion_at=calculate_estimated_completion(now),
        status_updated_at=now,
        created_at=now,
    )
    for item in items:
        order.items.append(
            OrderItem(
                string_id=item["string_id"],
                tension_vertical=item["tension_vertical"],
                tension_horizontal=item["tension_horizontal"],
                racket_brand=item["racket_brand"],
                racket_model=item["racket_model"],
                racket_photo=item["racket_photo"],
                notes=item["notes"],
                price=0 if use_package else item["price"],
                cost=item["cost"],
            )
        )
    db.session.add(order)
    db.session.flush()

    for string_id, quantity in needed.items():
        reserve_stock(string_id, quantity, order.id, user.id)

    if user_package:
        consume_package_credits(user_package, len(items))
    if user_voucher:
        mark_voucher_used(user_voucher, order.id, now)
    if price > 0 and not use_package:
        db.session.add(
            Payment(
                user_id=user.id,
                order_id=order.id,
                amount=price,
                provider=provider,
                status="pending",
                details={"type": "order"},
            )
        )

    db.session.add(
        OrderStatusLog(
            order_id=order.id,
            status="pending",
            note="Order placed",
            changed_by_id=user.id,
            created_at=now,
        )
    )
    notify(
        user.id,
        "Order placed",
        f"Order #{order.id} for {len(items)} racket(s) was received.",
        type="order",
        action_url=f"/orders/{order.id}",
    )
    notify_admins(
        "New order",
        f"{user.full_name} placed order #{order.id} ({len(items)} racket(s)).",
        action_url=f"/admin/orders/{order.id}",
    )
    db.session.commit()
    logger.info(f"Order {order.id} created by user {user.id} (price {price})")
    return order


def get_user_order(user, order_id):
    order = db.session.get(Order, order_id)
    if not order or order.user_id != user.id:
        raise not_found("Order not found")
    return order


def get_order(order_id):
    order = db.session.get(Order, order_id)
    if not order:
        raise not_found("Order not found")
    return order


def _paginate(query, count_query, page, limit):
    page = max(int(page or 1), 1)
    limit = min(max(int(limit or 20), 1), 100)
    total = db.session.scalar(count_query) or 0
    rows = db.session.scalars(query.offset((page - 1) * limit).limit(limit)).all()
    return rows, {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": math.ceil(total / limit) if total else 0,
    }


def _check_status_filter(status):
    if status and not validate_order_status(status):
        raise bad_request(f"Invalid status '{status}'")


def list_user_orders(user, status=None, page=1, limit=20):
    _check_status_filter(status)
    conditions = [Order.user_id == user.id]
    if status:
        conditions.append(Order.status == status)
    query = select(Order).where(*conditions).order_by(Order.created_at.desc(), Order.id.desc())
    count_query = select(func.count(Order.id)).where(*conditions)
    return _paginate(query, count_query, page, limit)


def list_admin_orders(status=None, q=None, page=1, limit=20):
    _check_status_filter(status)
    conditions = []
    if status:
        conditions.append(Order.status == status)
    if q:
        like = f"%{q}%"
        term = [User.full_name.ilike(like), User.email.ilike(like)]
        if str(q).isdigit():
            term.append(Order.id == int(q))
        conditions.append(or_(*term))
    query = (
        select(Order)
        .join(User, User.id == Order.user_id)
        .where(*conditions)
        .order_by(Order.created_at.desc(), Order.id.desc())
    )
    count_query = (
        select(func.count(Order.id)).join(User, User.id == Order.user_id).where(*conditions)
    )
    return _paginate(query, count_query, page, limit)


def release_order_resources(order, note, actor_id=None, now=None):
    """Cancel an order and give back everything it reserved (caller commits)."""
    now = now or datetime.now()

    for payment in order.payments:
        if payment.status in UNSETTLED_PAYMENT_STATUSES:
            payment.status = "cancelled"

    if order.user_package_id:
        user_package = db.session.get(UserPackage, order.user_package_id)
        if user_package:
            refund_package_credits(user_package, order.racket_count or 1, now)

    used_vouchers = db.session.scalars(
        select(UserVoucher).where(
            UserVoucher.order_id == order.id, UserVoucher.status == "used"
        )
    ).all()
    for user_voucher in used_vouchers:
        restore_voucher(user_voucher)

    release_order_stock(order, actor_id)
    record_status_change(order, "cancelled", note, actor_id, now)


def cancel_order(user, order_id, now=None):
    order = get_user_order(user, order_id)
    if order.status != "pending":
        raise unprocessable("Only pending orders can be cancelled")

    release_order_resources(order, "Cancelled by customer", user.id, now)
    notify(
        user.id,
        "Order cancelled",
        f"Order #{order.id} has been cancelled.",
        type="order",
        action_url=f"/orders/{order.id}",
    )
    db.session.commit()
    logger.info(f"Order {order.id} cancelled by user {user.id}")
    return order


def _points_base_amount(order):
    successful = [p for p in order.payments if p.status == "success"]
    if successful:
        return successful[-1].amount
    return order.price or 0


def complete_order(admin, order_id, notes=None, now=None):
    now = now or datetime.now()
    order = get_order(order_id)
    if order.status == "completed":
        raise conflict("Order already completed")
    if order.status != "in_progress":
        raise unprocessable("Only orders in progress can be completed")

    order.profit = round((order.price or 0) - (order.cost or 0), 2)
    order.completed_at = now
    record_status_change(order, "completed", notes or "Stringing completed", admin.id, now)

    points = math.floor(_points_base_amount(order) * _config("POINTS_REWARD_RATE", 0.5))
    user = order.user
    if points > 0:
        add_points(
            user,
            points,
            "order",
            reference_id=f"order:{order.id}",
            description=f"Points for order #{order.id}",
        )
    notify(
        user.id,
        "Racket ready",
        f"Order #{order.id} is ready for pickup. You earned {points} points.",
        type="order",
        action_url=f"/orders/{order.id}",
    )
    db.session.flush()
    check_and_upgrade_tier(user)
    db.session.commit()

    result = email_service.send_order_completed(user.email, user.full_name, order.id, points)
    if not result.get("success"):
        logger.warning(f"Completion email for order {order.id} failed: {result.get('error')}")
    return order, points


def update_order_status(admin, order_id, status, note=None, now=None):
    now = now or datetime.now()
    if not validate_admin_status(status):
        raise bad_request(f"Invalid status '{status}'")

    order = get_order(order_id)
    if order.status == status:
        raise conflict(f"Order is already {format_status_label(status)}")

    if status == "completed":
        order, _ = complete_order(admin, order_id, note, now)
        return order

    if status == "cancelled":
        if order.status in ("completed", "picked_up"):
            raise conflict("Completed orders cannot be cancelled")
        release_order_resources(order, note or "Cancelled by admin", admin.id, now)
    else:
        if order.status in ("cancelled", "picked_up"):
            raise conflict(f"Order is {format_status_label(order.status)} and cannot change")
        if status == "picked_up" and order.status != "completed":
            raise unprocessable("Only completed orders can be picked up")
        record_status_change(order, status, note, admin.id, now)
        order.overdue_flagged_at = None

    notify(
        order.user_id,
        "Order update",
        f"Order #{order.id} is now {format_status_label(status)}.",
        type="order",
        action_url=f"/orders/{order.id}",
    )
    db.session.commit()
    logger.info(f"Order {order.id} -> {status} by admin {admin.id}")
    return order


def update_order_eta(admin, order_id, eta, now=None):
    order = get_order(order_id)
    if isinstance(eta, str):
        try:
            eta = datetime.fromisoformat(eta)
        except ValueError:
            raise bad_request("estimated_completion_at must be an ISO date")
    if eta is None:
        raise bad_request("estimated_completion_at is required")

    order.estimated_completion_at = eta
    notify(
        order.user_id,
        "Pickup estimate updated",
        f"Order #{order.id} is now expected {format_eta_label(eta, now).lower()}.",
        type="order",
        action_url=f"/orders/{order.id}",
    )
    db.session.commit()
    logger.info(f"Order {order.id} ETA set to {eta} by admin {admin.id}")
    return order


def get_admin_order_stats(start=None, end=None):
    conditions = []
    if start:
        conditions.append(Order.created_at >= start)
    if end:
        conditions.append(Order.created_at <= end)

    rows = db.session.execute(
        select(Order.status, func.count(Order.id)).where(*conditions).group_by(Order.status)
    ).all()
    by_status = {status: count for status, count in rows}
    totals = db.session.execute(
        select(
            func.coalesce(func.sum(Order.price), 0),
            func.coalesce(func.sum(Order.profit), 0),
        ).where(Order.status.in_(["completed", "picked_up"]), *conditions)
    ).one()
    return {
        "total": sum(by_status.values()),
        "by_status": by_status,
        "pending": by_status.get("pending", 0),
        "in_progress": by_status.get("in_progress", 0),
        "completed": by_status.get("completed", 0) + by_status.get("picked_up", 0),
        "cancelled": by_status.get("cancelled", 0),
        "revenue": round(float(totals[0] or 0), 2),
        "profit": round(float(totals[1] or 0), 2),
    }
