from flask import Blueprint, current_app, g, request

from ...services.membership_service import get_membership_info
from ...services.referral_service import (
    get_my_referral_stats,
    get_referral_leaderboard,
    get_user_badges,
)
from ...utils.auth import require_user
from ...utils.errors import internal_error, success_response

referrals_bp = Blueprint("referrals", __name__, url_prefix="/api/referrals")


@referrals_bp.route("/mine", methods=["GET"])
@require_user
def my_referrals():
    """
    Referral code, counts, points and badges for the signed-in user
    ---
    tags:
      - Loyalty
    security:
      - Bearer: []
    responses:
      200:
        description: Referral stats
    """
    try:
        return success_response(get_my_referral_stats(g.current_user))
    except Exception as e:
        current_app.logger.error(f"Failed to load referral stats: {e}")
        return internal_error()


@referrals_bp.route("/leaderboard", methods=["GET"])
def leaderboard():
    try:
        limit = min(request.args.get("limit", 10, type=int), 50)
        return success_response(get_referral_leaderboard(limit))
    except Exception as e:
        current_app.logger.error(f"Failed to load referral leaderboard: {e}")
        return internal_error()


@referrals_bp.route("/badges", methods=["GET"])
@require_user
def my_badges():
    try:
        return success_response(get_user_badges(g.current_user))
    except Exception as e:
        current_app.logger.error(f"Failed to load badges: {e}")
        return internal_error()


@referrals_bp.route("/membership", methods=["GET"])
@require_user
def my_membership():
    try:
        return success_response(get_membership_info(g.current_user))
    except Exception as e:
        current_app.logger.error(f"Failed to load membership: {e}")
        return internal_error()
