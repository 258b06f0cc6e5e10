from flask import Blueprint, current_app, g, request
from sqlalchemy import func, or_, select

from ...extensions import db
from ...models import Order, User
from ...services import (
    order_service,
    package_service,
    points_service,
    referral_service,
    review_service,
    voucher_service,
)
from ...services.analytics_service import get_points_overview
from ...services.membership_service import get_membership_info
from ...utils.auth import require_admin
from ...utils.errors import ApiError, conflict, error_response, internal_error, not_found, success_response
from ...utils.serializers import (
    serialize_order,
    serialize_points_log,
    serialize_review,
    serialize_user,
    serialize_user_package,
    serialize_user_voucher,
)

admin_users_bp = Blueprint("admin_users", __name__, url_prefix="/api/admin")

ROLES = ("customer", "admin")


def _get_user(user_id):
    user = db.session.get(User, user_id)
    if not user:
        raise not_found("User not found")
    return user


@admin_users_bp.route("/users", methods=["GET"])
@require_admin
def list_users():
    """
    Customer directory
    ---
    tags:
      - Admin Users
    security:
      - Bearer: []
    parameters:
      - in: query
        name: q
        type: string
        description: Name, email or phone
      - in: query
        name: page
        type: integer
      - in: query
        name: limit
        type: integer
    responses:
      200:
        description: Paginated users with order counts
    """
    try:
        q = (request.args.get("q") or "").strip()
        page = max(request.args.get("page", 1, type=int), 1)
        limit = min(max(request.args.get("limit", 20, type=int), 1), 100)

        query = select(User).where(User.role == "customer")
        count_query = select(func.count(User.id)).where(User.role == "customer")
        if q:
            like = f"%{q}%"
            match = or_(User.full_name.ilike(like), User.email.ilike(like), User.phone.ilike(like))
            query = query.where(match)
            count_query = count_query.where(match)

        total = db.session.scalar(count_query) or 0
        users = db.session.scalars(
            query.order_by(User.created_at.desc(), User.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).all()

        order_counts = dict(
            db.session.execute(
                select(Order.user_id, func.count(Order.id))
                .where(Order.user_id.in_([u.id for u in users]))
                .group_by(Order.user_id)
            ).all()
        ) if users else {}

        return success_response(
            {
                "users": [
                    {**serialize_user(u), "order_count": order_counts.get(u.id, 0)}
                    for u in users
                ],
                "pagination": {
                    "page": page,
                    "limit": limit,
                    "total": total,
                    "pages": (total + limit - 1) // limit,
                },
            }
        )
    except Exception as e:
        current_app.logger.error(f"Failed to list users: {e}")
        return internal_error()


@admin_users_bp.route("/users/<int:user_id>", methods=["GET"])
@require_admin
def get_user(user_id):
    try:
        user = db.session.get(User, user_id)
        if not user:
            return error_response("NOT_FOUND", "User not found")
        recent_orders = db.session.scalars(
            select(Order)
            .where(Order.user_id == user.id)
            .order_by(Order.created_at.desc())
            .limit(10)
        ).all()
        return success_response(
            {
                "user": serialize_user(user),
                "membership": get_membership_info(user),
                "referrals": referral_service.get_my_referral_stats(user),
                "recent_orders": [serialize_order(o) for o in recent_orders],
                "points_history": [
                    serialize_points_log(log)
                    for log in points_service.get_points_history(user, limit=20)
                ],
            }
        )
    except Exception as e:
        current_app.logger.error(f"Failed to load user {user_id}: {e}")
        return internal_error()


@admin_users_bp.route("/users/<int:user_id>/points", methods=["POST"])
@require_admin
def adjust_user_points(user_id):
    """
    Manually credit or debit a customer's points
    ---
    tags:
      - Admin Users
    security:
      - Bearer: []
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [amount, reason]
          properties:
            amount:
              type: integer
            reason:
              type: string
    responses:
      200:
        description: Balance adjusted
      409:
        description: Balance would go negative
    """
    try:
        data = request.get_json(silent=True) or {}
        log = points_service.adjust_points(
            g.current_user, user_id, data.get("amount"), data.get("reason")
        )
        return success_response(serialize_points_log(log), "Points adjusted")
    except ApiError as e:
        db.session.rollback()
        return e.to_response()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Failed to adjust points for user {user_id}: {e}")
        return internal_error("Failed to adjust points")


@admin_users_bp.route("/users/<int:user_id>/role", methods=["PUT"])
@require_admin
def update_user_role(user_id):
    """
    Change a user's role
    ---
    tags:
      - Admin Users
    security:
      - Bearer: []
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [role]
          properties:
            role:
              type: string
              enum: [customer, admin]
    responses:
      200:
        description: Role updated
      400:
        description: Unknown role
      404:
        description: User not found
      409:
        description: Admins cannot change their own role
    """
    try:
        data = request.get_json(silent=True) or {}
        role = data.get("role")
        if role == "user":
            role = "customer"
        if role not in ROLES:
            return error_response("BAD_REQUEST", "Role must be 'customer' or 'admin'")

        user = _get_user(user_id)
        if user.id == g.current_user.id:
            raise conflict("You cannot change your own role")
        user.role = role
        db.session.commit()
        current_app.logger.info(
            f"User {user.id} role set to {role} by admin {g.current_user.id}"
        )
        return success_response(serialize_user(user), "Role updated")
    except ApiError as e:
        db.session.rollback()
        return e.to_response()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Failed to update role for user {user_id}: {e}")
        return internal_error()


@admin_users_bp.route("/users/<int:user_id>/orders", methods=["GET"])
@require_admin
def user_orders(user_id):
    """
    A customer's orders
    ---
    tags:
      - Admin Users
    security:
      - Bearer: []
    parameters:
      - in: query
        name: status
        type: string
      - in: query
        name: page
        type: integer
      - in: query
        name: limit
        type: integer
    responses:
      200:
        description: Paginated orders
      404:
        description: User not found
    """
    try:
        orders, pagination = order_service.list_user_orders(
            _get_user(user_id),
            status=request.args.get("status"),
            page=request.args.get("page", 1, type=int),
            limit=request.args.get("limit", 20, type=int),
        )
        return success_response(
            {
                "orders": [serialize_order(o, include_admin=True) for o in orders],
                "pagination": pagination,
            }
        )
    except ApiError as e:
        return e.to_response()
    except Exception as e:
        current_app.logger.error(f"Failed to list orders for user {user_id}: {e}")
        return internal_error()


@admin_users_bp.route("/users/<int:user_id>/packages", methods=["GET"])
@require_admin
def user_packages(user_id):
    try:
        status = request.args.get("status")
        if status and status not in ("active", "depleted", "expired"):
            return error_response("BAD_REQUEST", "Invalid status filter")
        packages = package_service.list_user_packages(_get_user(user_id), status)
        return success_response([serialize_user_package(p) for p in packages])
    except ApiError as e:
        return e.to_response()
    except Exception as e:
        current_app.logger.error(f"Failed to list packages for user {user_id}: {e}")
        return internal_error()


@admin_users_bp.route("/users/<int:user_id>/vouchers", methods=["GET"])
@require_admin
def user_vouchers(user_id):
    try:
        status = request.args.get("status")
        if status and status not in ("active", "used", "expired"):
            return error_response("BAD_REQUEST", "Invalid status filter")
        vouchers = voucher_service.list_user_vouchers(_get_user(user_id), status)
        data = []
        for user_voucher in vouchers:
            item = serialize_user_voucher(user_voucher)
            item["status"] = voucher_service.effective_status(user_voucher)
            data.append(item)
        return success_response(data)
    except ApiError as e:
        return e.to_response()
    except Exception as e:
        current_app.logger.error(f"Failed to list vouchers for user {user_id}: {e}")
        return internal_error()


@admin_users_bp.route("/users/<int:user_id>/points-log", methods=["GET"])
@require_admin
def user_points_log(user_id):
    try:
        user = _get_user(user_id)
        limit = min(max(request.args.get("limit", 50, type=int), 1), 200)
        logs = points_service.get_points_history(user, request.args.get("type"), limit)
        return success_response(
            {"balance": user.points or 0, "logs": [serialize_points_log(log) for log in logs]}
        )
    except ApiError as e:
        return e.to_response()
    except Exception as e:
        current_app.logger.error(f"Failed to load points log for user {user_id}: {e}")
        return internal_error()


@admin_users_bp.route("/points/overview", methods=["GET"])
@require_admin
def points_overview():
    try:
        return success_response(get_points_overview())
    except Exception as e:
        current_app.logger.error(f"Failed to load points overview: {e}")
        return internal_error()


@admin_users_bp.route("/reviews", methods=["GET"])
@require_admin
def list_reviews():
    try:
        reviews = review_service.list_public_reviews(
            page=request.args.get("page", 1, type=int),
            limit=request.args.get("limit", 50, type=int),
            min_rating=request.args.get("min_rating", type=int),
        )
        return success_response([serialize_review(r) for r in reviews])
    except Exception as e:
        current_app.logger.error(f"Failed to list reviews: {e}")
        return internal_error()


@admin_users_bp.route("/reviews/<int:review_id>/reply", methods=["POST"])
@require_admin
def reply_review(review_id):
    try:
        data = request.get_json(silent=True) or {}
        review = review_service.reply_to_review(review_id, data.get("reply"))
        return success_response(serialize_review(review), "Reply saved")
    except ApiError as e:
        db.session.rollback()
        return e.to_response()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Failed to reply to review {review_id}: {e}")
        return internal_error()


@admin_users_bp.route("/reviews/<int:review_id>/feature", methods=["POST"])
@require_admin
def feature_review(review_id):
    try:
        review = review_service.toggle_featured(review_id)
        return success_response(serialize_review(review))
    except ApiError as e:
        db.session.rollback()
        return e.to_response()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Failed to toggle review {review_id}: {e}")
        return internal_error()


@admin_users_bp.route("/reviews/stats", methods=["GET"])
@require_admin
def review_stats():
    try:
        return success_response(review_service.get_review_stats())
    except Exception as e:
        current_app.logger.error(f"Failed to load review stats: {e}")
        return internal_error()
