# Endpoints for an external cron to drive the order and package sweeps
import hmac

from flask import Blueprint, current_app

from ...extensions import db
from ...services.order_automation import get_order_automation_stats, run_order_automation
from ...services.package_automation import get_package_automation_stats, run_package_automation
from ...utils.auth import get_bearer_token, load_current_user, require_admin
from ...utils.errors import ApiError, forbidden, internal_error, success_response
from ...utils.request_cache import invalidate_prefix

cron_bp = Blueprint("cron", __name__, url_prefix="/api/admin/cron")


def _authorize_cron():
    """Accept either the shared cron secret or an admin session."""
    secret = current_app.config.get("CRON_SECRET")
    token = get_bearer_token()
    if secret and token and hmac.compare_digest(token, secret):
        return "cron"
    user = load_current_user()
    if not user.is_admin:
        raise forbidden()
    return f"admin:{user.id}"


@cron_bp.route("/order-automation", methods=["POST"])
def trigger_order_automation():
    """
    Run the order automation sweep
    ---
    tags:
      - Admin Cron
    security:
      - Bearer: []
    description: >
      Cancels unpaid orders past the payment window, flags orders stuck in
      progress and sends pickup reminders. Authenticate with the cron secret
      or an admin token.
    responses:
      200:
        description: Counts and ids of affected orders
      401:
        description: Missing or invalid credentials
    """
    try:
        caller = _authorize_cron()
        result = run_order_automation()
        invalidate_prefix("admin:")
        current_app.logger.info(f"Order automation triggered by {caller}")
        return success_response(result, "Order automation completed")
    except ApiError as e:
        db.session.rollback()
        return e.to_response()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Order automation failed: {e}")
        return internal_error("Order automation failed")


@cron_bp.route("/order-automation/stats", methods=["GET"])
@require_admin
def order_automation_stats():
    try:
        return success_response(get_order_automation_stats())
    except Exception as e:
        current_app.logger.error(f"Failed to load automation stats: {e}")
        return internal_error()


@cron_bp.route("/package-renewal", methods=["POST"])
def trigger_package_renewal():
    """
    Expire lapsed packages and send renewal reminders
    ---
    tags:
      - Admin Cron
    security:
      - Bearer: []
    description: >
      Marks active packages past their expiry as expired and reminds holders
      once when an unused package enters the renewal window. Authenticate
      with the cron secret or an admin token.
    responses:
      200:
        description: Counts and ids of affected user packages
      401:
        description: Missing or invalid credentials
    """
    try:
        caller = _authorize_cron()
        result = run_package_automation()
        invalidate_prefix("admin:")
        current_app.logger.info(f"Package renewal sweep triggered by {caller}")
        return success_response(result, "Package renewal reminders sent")
    except ApiError as e:
        db.session.rollback()
        return e.to_response()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Package renewal sweep failed: {e}")
        return internal_error("Package renewal sweep failed")


@cron_bp.route("/package-renewal/stats", methods=["GET"])
@require_admin
def package_renewal_stats():
    try:
        return success_response(get_package_automation_stats())
    except Exception as e:
        current_app.logger.error(f"Failed to load package automation stats: {e}")
        return internal_error()
