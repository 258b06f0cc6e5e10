"""Before/after photos the shop attaches to an order."""

import logging

from ..extensions import db
from ..models import OrderPhoto
from ..utils.errors import bad_request, not_found
from .order_service import get_order, get_user_order

logger = logging.getLogger(__name__)

PHOTO_TYPES = ("before", "after", "detail", "other")


def _sorted(photos):
    return sorted(photos, key=lambda p: (p.display_order, p.id))


def list_order_photos(order_id, user=None):
    """Photos in display order; pass user to restrict to that customer's order."""
    order = get_user_order(user, order_id) if user else get_order(order_id)
    return _sorted(order.photos)


def _display_order(value, default):
    if value is None:
        return default
    try:
        value = int(value)
    except (TypeError, ValueError):
        raise bad_request("display_order must be a whole number")
    if value < 0:
        raise bad_request("display_order cannot be negative")
    return value


def add_order_photo(order_id, data, photo_url=None):
    order = get_order(order_id)
    photo_url = photo_url or data.get("photo_url")
    if not photo_url:
        raise bad_request("photo_url or an uploaded file is required")

    photo_type = data.get("photo_type") or "after"
    if photo_type not in PHOTO_TYPES:
        raise bad_request(f"photo_type must be one of: {', '.join(PHOTO_TYPES)}")

    photo = OrderPhoto(
        order_id=order.id,
        photo_url=photo_url,
        photo_type=photo_type,
        caption=(data.get("caption") or "").strip() or None,
        display_order=_display_order(data.get("display_order"), len(order.photos)),
    )
    db.session.add(photo)
    db.session.commit()
    logger.info(f"Photo {photo.id} added to order {order.id}")
    return photo


def _get_photo(order_id, photo_id):
    photo = db.session.get(OrderPhoto, photo_id)
    if not photo or photo.order_id != order_id:
        raise not_found("Photo not found")
    return photo


def delete_order_photo(order_id, photo_id):
    get_order(order_id)
    photo = _get_photo(order_id, photo_id)
    db.session.delete(photo)
    db.session.commit()
    logger.info(f"Photo {photo_id} removed from order {order_id}")


def reorder_order_photos(order_id, entries):
    """Apply [{"id", "display_order"}, ...]; photos left out keep their position."""
    order = get_order(order_id)
    if not isinstance(entries, list) or not entries:
        raise bad_request("photos must be a non-empty list")

    photos = {p.id: p for p in order.photos}
    updates = {}
    for entry in entries:
        if not isinstance(entry, dict) or entry.get("id") not in photos:
            raise bad_request("Every entry needs the id of a photo on this order")
        updates[entry["id"]] = _display_order(entry.get("display_order"), None)
        if updates[entry["id"]] is None:
            raise bad_request("display_order is required")

    for photo_id, position in updates.items():
        photos[photo_id].display_order = position
    db.session.commit()
    return _sorted(photos.values())
