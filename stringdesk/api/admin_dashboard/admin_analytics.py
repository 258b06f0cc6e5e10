# Admin dashboard analytics
from flask import Blueprint, current_app, request

from ...services import analytics_service
from ...services.order_service import get_admin_order_stats
from ...utils.auth import require_admin
from ...utils.errors import ApiError, internal_error, success_response
from ...utils.request_cache import cached_request

admin_analytics_bp = Blueprint(
    "admin_analytics", __name__, url_prefix="/api/admin/analytics"
)


def _cached(key, fetcher):
    skip = request.args.get("refresh", "false").lower() == "true"
    return cached_request(
        f"admin:{key}",
        fetcher,
        ttl=current_app.config.get("REQUEST_CACHE_TTL", 15),
        skip_cache=skip,
    )


@admin_analytics_bp.route("/dashboard", methods=["GET"])
@require_admin
def dashboard():
    """
    Headline numbers for the admin dashboard
    ---
    tags:
      - Admin Analytics
    security:
      - Bearer: []
    parameters:
      - in: query
        name: refresh
        type: boolean
        description: Bypass the short-lived response cache
    responses:
      200:
        description: Today and month-to-date orders and revenue, queues, low stock
    """
    try:
        return success_response(
            _cached("dashboard", analytics_service.get_admin_dashboard_stats)
        )
    except Exception as e:
        current_app.logger.error(f"Failed to load dashboard stats: {e}")
        return internal_error()


@admin_analytics_bp.route("/ltv", methods=["GET"])
@require_admin
def user_ltv():
    """
    Customer lifetime value
    ---
    tags:
      - Admin Analytics
    security:
      - Bearer: []
    parameters:
      - in: query
        name: refresh
        type: boolean
        description: Bypass the short-lived response cache
    responses:
      200:
        description: Completed-order revenue divided by paying customers
      403:
        description: Admin access required
    """
    try:
        return success_response(_cached("ltv", analytics_service.get_user_ltv))
    except Exception as e:
        current_app.logger.error(f"Failed to compute LTV: {e}")
        return internal_error()


@admin_analytics_bp.route("/retention", methods=["GET"])
@require_admin
def retention():
    """
    Share of ordering customers who came back for another order
    ---
    tags:
      - Admin Analytics
    security:
      - Bearer: []
    responses:
      200:
        description: Retention rate with returning and ordering customer counts
      403:
        description: Admin access required
    """
    try:
        return success_response(
            _cached("retention", analytics_service.get_retention_rate)
        )
    except Exception as e:
        current_app.logger.error(f"Failed to compute retention: {e}")
        return internal_error()


@admin_analytics_bp.route("/aov-trend", methods=["GET"])
@require_admin
def aov_trend():
    """
    Average order value per month
    ---
    tags:
      - Admin Analytics
    security:
      - Bearer: []
    parameters:
      - in: query
        name: months
        type: integer
        description: Number of months back, 1 to 24 (default 6)
    responses:
      200:
        description: One entry per month with orders, revenue and average value
    """
    try:
        months = min(max(request.args.get("months", 6, type=int), 1), 24)
        return success_response(
            _cached(
                f"aov:{months}",
                lambda: analytics_service.get_average_order_value_trend(months),
            )
        )
    except Exception as e:
        current_app.logger.error(f"Failed to compute AOV trend: {e}")
        return internal_error()


@admin_analytics_bp.route("/popular-hours", methods=["GET"])
@require_admin
def popular_hours():
    """
    Order counts by hour of day
    ---
    tags:
      - Admin Analytics
    security:
      - Bearer: []
    responses:
      200:
        description: Twenty-four buckets, one per hour
    """
    try:
        return success_response(
            _cached("popular-hours", analytics_service.get_popular_hours)
        )
    except Exception as e:
        current_app.logger.error(f"Failed to compute popular hours: {e}")
        return internal_error()


@admin_analytics_bp.route("/revenue", methods=["GET"])
@require_admin
def revenue_by_day():
    """
    Completed-order revenue per day
    ---
    tags:
      - Admin Analytics
    security:
      - Bearer: []
    parameters:
      - in: query
        name: startDate
        type: string
        format: date
      - in: query
        name: endDate
        type: string
        format: date
      - in: query
        name: days
        type: integer
        description: Trailing window when no dates are given (default 30)
    responses:
      200:
        description: One entry per day, zero-filled
      400:
        description: Invalid range
    """
    try:
        start, end = analytics_service.parse_date_range(request.args)
        key = f"revenue:{start.date()}:{end.date()}"
        return success_response(
            _cached(key, lambda: analytics_service.get_revenue_by_day(start, end))
        )
    except ApiError as e:
        return e.to_response()
    except Exception as e:
        current_app.logger.error(f"Failed to load revenue: {e}")
        return internal_error()


@admin_analytics_bp.route("/top-strings", methods=["GET"])
@require_admin
def top_strings():
    """
    Most ordered strings
    ---
    tags:
      - Admin Analytics
    security:
      - Bearer: []
    parameters:
      - in: query
        name: limit
        type: integer
        description: Number of strings, 1 to 50 (default 5)
    responses:
      200:
        description: Strings ranked by non-cancelled orders
    """
    try:
        limit = min(max(request.args.get("limit", 5, type=int), 1), 50)
        return success_response(
            _cached(f"top-strings:{limit}", lambda: analytics_service.get_top_strings(limit))
        )
    except Exception as e:
        current_app.logger.error(f"Failed to load top strings: {e}")
        return internal_error()


@admin_analytics_bp.route("/top-packages", methods=["GET"])
@require_admin
def top_packages():
    """
    Best selling packages
    ---
    tags:
      - Admin Analytics
    security:
      - Bearer: []
    parameters:
      - in: query
        name: limit
        type: integer
        description: Number of packages, 1 to 50 (default 5)
    responses:
      200:
        description: Packages ranked by confirmed purchases
    """
    try:
        limit = min(max(request.args.get("limit", 5, type=int), 1), 50)
        return success_response(
            _cached(
                f"top-packages:{limit}", lambda: analytics_service.get_top_packages(limit)
            )
        )
    except Exception as e:
        current_app.logger.error(f"Failed to load top packages: {e}")
        return internal_error()


@admin_analytics_bp.route("/orders", methods=["GET"])
@require_admin
def order_stats():
    """
    Order counts, revenue and profit for a date range
    ---
    tags:
      - Admin Analytics
    security:
      - Bearer: []
    parameters:
      - in: query
        name: startDate
        type: string
        format: date
      - in: query
        name: endDate
        type: string
        format: date
      - in: query
        name: days
        type: integer
        description: Trailing window when no dates are given (default 30)
    responses:
      200:
        description: Totals by status with revenue and profit
      400:
        description: Invalid range
    """
    try:
        start, end = analytics_service.parse_date_range(request.args)
        key = f"orders:{start.date()}:{end.date()}"
        return success_response(
            _cached(key, lambda: get_admin_order_stats(start, end))
        )
    except ApiError as e:
        return e.to_response()
    except Exception as e:
        current_app.logger.error(f"Failed to load order stats: {e}")
        return internal_error()
