from flask import current_app
from sqlalchemy import func, select, update

from ..extensions import db
from ..models import Order, OrderItem, StockLog, StringInventory
from ..utils.errors import bad_request, conflict, not_found

STRING_FIELDS = (
    "brand",
    "model",
    "color",
    "gauge",
    "description",
    "image_url",
    "cost_price",
    "selling_price",
    "minimum_stock",
    "active",
)


def get_string(string_id):
    item = db.session.get(StringInventory, string_id)
    if not item:
        raise not_found("String not found")
    return item


def list_strings(active_only=True, q=None):
    query = select(StringInventory)
    if active_only:
        query = query.where(StringInventory.active.is_(True))
    if q:
        like = f"%{q}%"
        query = query.where(
            StringInventory.brand.ilike(like) | StringInventory.model.ilike(like)
        )
    return db.session.scalars(
        query.order_by(StringInventory.brand, StringInventory.model)
    ).all()


def reserve_stock(string_id, quantity, order_id, user_id=None):
    """Conditionally decrement stock and log the sale (caller commits).

    The decrement only applies while enough stock is left, so two orders
    racing for the last unit cannot both succeed.
    """
    result = db.session.execute(
        update(StringInventory)
        .where(StringInventory.id == string_id, StringInventory.stock >= quantity)
        .values(stock=StringInventory.stock - quantity)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise conflict("String is out of stock")

    item = db.session.get(StringInventory, string_id)
    db.session.refresh(item)
    log = StockLog(
        string_id=string_id,
        change=-quantity,
        type="sale",
        reason=f"Order #{order_id}",
        order_id=order_id,
        stock_after=item.stock,
        created_by_id=user_id,
    )
    db.session.add(log)
    return log


def release_order_stock(order, user_id=None):
    """Return every unit sold to an order, based on its sale logs."""
    sold = db.session.execute(
        select(StockLog.string_id, func.sum(StockLog.change))
        .where(StockLog.order_id == order.id, StockLog.type.in_(["sale", "return"]))
        .group_by(StockLog.string_id)
    ).all()

    restored = 0
    for string_id, net_change in sold:
        quantity = -int(net_change or 0)
        if quantity <= 0:
            continue
        item = db.session.get(StringInventory, string_id)
        if not item:
            continue
        item.stock += quantity
        db.session.add(
            StockLog(
                string_id=string_id,
                change=quantity,
                type="return",
                reason=f"Order #{order.id} cancelled",
                order_id=order.id,
                stock_after=item.stock,
                created_by_id=user_id,
            )
        )
        restored += quantity
    return restored


def _parse_string_payload(data, partial=False):
    values = {k: data[k] for k in STRING_FIELDS if k in data}
    if not partial:
        for field in ("brand", "model"):
            if not values.get(field):
                raise bad_request(f"{field} is required")
        values.setdefault(
            "selling_price", current_app.config.get("DEFAULT_BASE_PRICE", 35.0)
        )
    try:
        for field in ("cost_price", "selling_price"):
            if field in values:
                values[field] = float(values[field])
                if values[field] < 0:
                    raise bad_request(f"{field} cannot be negative")
        if "minimum_stock" in values:
            values["minimum_stock"] = int(values["minimum_stock"])
    except (TypeError, ValueError):
        raise bad_request("Invalid numeric value")
    return values


def create_string(data, admin=None):
    values = _parse_string_payload(data)
    try:
        stock = int(data.get("stock", 0) or 0)
    except (TypeError, ValueError):
        raise bad_request("stock must be an integer")
    if stock < 0:
        raise bad_request("stock cannot be negative")

    item = StringInventory(stock=stock, **values)
    db.session.add(item)
    db.session.flush()
    if stock:
        db.session.add(
            StockLog(
                string_id=item.id,
                change=stock,
                type="restock",
                reason="Initial stock",
                stock_after=stock,
                created_by_id=admin.id if admin else None,
            )
        )
    db.session.commit()
    return item


def update_string(string_id, data):
    item = get_string(string_id)
    for key, value in _parse_string_payload(data, partial=True).items():
        setattr(item, key, value)
    db.session.commit()
    return item


def delete_string(string_id):
    item = get_string(string_id)
    used = db.session.scalar(
        select(func.count(Order.id)).where(Order.string_id == string_id)
    ) or db.session.scalar(
        select(func.count(OrderItem.id)).where(OrderItem.string_id == string_id)
    )
    if used:
        raise conflict("String is referenced by orders; deactivate it instead")
    db.session.delete(item)
    db.session.commit()


def adjust_stock(string_id, change, reason=None, admin=None, type=None):
    try:
        change = int(change)
    except (TypeError, ValueError):
        raise bad_request("change must be an integer")
    if change == 0:
        raise bad_request("change cannot be zero")

    item = get_string(string_id)
    if item.stock + change < 0:
        raise bad_request("Stock cannot go below zero")

    item.stock += change
    log = StockLog(
        string_id=item.id,
        change=change,
        type=type or ("restock" if change > 0 else "adjustment"),
        reason=reason,
        stock_after=item.stock,
        created_by_id=admin.id if admin else None,
    )
    db.session.add(log)
    db.session.commit()
    return item, log


def list_stock_logs(string_id=None, limit=100):
    query = select(StockLog)
    if string_id:
        query = query.where(StockLog.string_id == string_id)
    return db.session.scalars(
        query.order_by(StockLog.created_at.desc(), StockLog.id.desc()).limit(limit)
    ).all()


def list_low_stock(threshold=None):
    threshold = (
        threshold
        if threshold is not None
        else current_app.config.get("LOW_STOCK_THRESHOLD", 5)
    )
    return db.session.scalars(
        select(StringInventory)
        .where(StringInventory.active.is_(True), StringInventory.stock <= threshold)
        .order_by(StringInventory.stock)
    ).all()
