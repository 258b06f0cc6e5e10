from datetime import datetime

from flask import current_app
from sqlalchemy import func, select

from ..extensions import db
from ..models import Order, Review
from ..utils.errors import bad_request, conflict, not_found, unprocessable
from .notification_service import notify_admins
from .points_service import add_points

REVIEWABLE_STATUSES = ("completed", "picked_up")
MIN_COMMENT_LENGTH = 10


def submit_review(user, data):
    order_id = data.get("order_id")
    if not order_id:
        raise bad_request("order_id is required")
    order = db.session.get(Order, order_id)
    if not order or order.user_id != user.id:
        raise not_found("Order not found")
    if order.status not in REVIEWABLE_STATUSES:
        raise unprocessable("Only completed orders can be reviewed")

    try:
        rating = int(data.get("rating"))
    except (TypeError, ValueError):
        raise unprocessable("Rating must be between 1 and 5")
    if rating < 1 or rating > 5:
        raise unprocessable("Rating must be between 1 and 5")

    comment = (data.get("comment") or "").strip()
    if len(comment) < MIN_COMMENT_LENGTH:
        raise unprocessable(
            f"Comment must be at least {MIN_COMMENT_LENGTH} characters"
        )

    if db.session.scalar(select(Review).where(Review.order_id == order.id)):
        raise conflict("This order has already been reviewed")

    photos = data.get("photos") or []
    if not isinstance(photos, list):
        raise bad_request("photos must be a list of URLs")

    review = Review(
        order_id=order.id,
        user_id=user.id,
        rating=rating,
        comment=comment,
        photos=photos,
    )
    db.session.add(review)
    db.session.flush()

    reward = current_app.config.get("REVIEW_REWARD_POINTS", 10)
    add_points(
        user,
        reward,
        "review",
        reference_id=f"review:{review.id}",
        description=f"Review for order #{order.id}",
    )
    notify_admins(
        "New review",
        f"{user.full_name} rated order #{order.id} {rating}/5.",
        type="review",
        action_url="/admin/reviews",
    )
    db.session.commit()
    return review, reward


def list_pending_review_orders(user):
    reviewed = select(Review.order_id).where(Review.user_id == user.id)
    return db.session.scalars(
        select(Order)
        .where(
            Order.user_id == user.id,
            Order.status.in_(REVIEWABLE_STATUSES),
            Order.id.not_in(reviewed),
        )
        .order_by(Order.completed_at.desc())
    ).all()


def list_user_reviews(user):
    return db.session.scalars(
        select(Review).where(Review.user_id == user.id).order_by(Review.created_at.desc())
    ).all()


def list_public_reviews(page=1, limit=20, min_rating=None):
    page = max(int(page or 1), 1)
    limit = min(max(int(limit or 20), 1), 100)
    query = select(Review)
    if min_rating:
        query = query.where(Review.rating >= int(min_rating))
    return db.session.scalars(
        query.order_by(Review.created_at.desc(), Review.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).all()


def list_featured_reviews(limit=6):
    return db.session.scalars(
        select(Review)
        .where(Review.featured.is_(True))
        .order_by(Review.created_at.desc())
        .limit(limit)
    ).all()


def _get_review(review_id):
    review = db.session.get(Review, review_id)
    if not review:
        raise not_found("Review not found")
    return review


def reply_to_review(review_id, reply):
    if not reply or not reply.strip():
        raise bad_request("Reply cannot be empty")
    review = _get_review(review_id)
    review.admin_reply = reply.strip()
    review.replied_at = datetime.now()
    db.session.commit()
    return review


def toggle_featured(review_id):
    review = _get_review(review_id)
    review.featured = not review.featured
    db.session.commit()
    return review


def get_review_stats():
    total, average = db.session.execute(
        select(func.count(Review.id), func.avg(Review.rating))
    ).one()
    distribution = dict(
        db.session.execute(
            select(Review.rating, func.count(Review.id)).group_by(Review.rating)
        ).all()
    )
    return {
        "total": total or 0,
        "average_rating": round(float(average), 2) if average else 0,
        "distribution": {str(star): distribution.get(star, 0) for star in range(1, 6)},
    }
