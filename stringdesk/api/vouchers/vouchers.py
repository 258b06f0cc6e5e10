from flask import Blueprint, current_app, g, request

from ...extensions import db
from ...services import voucher_service
from ...utils.auth import require_user
from ...utils.errors import ApiError, error_response, internal_error, success_response
from ...utils.serializers import serialize_user_voucher, serialize_voucher

vouchers_bp = Blueprint("vouchers", __name__, url_prefix="/api/vouchers")


@vouchers_bp.route("/mine", methods=["GET"])
@require_user
def my_vouchers():
    """
    Vouchers in the signed-in user's wallet
    ---
    tags:
      - Vouchers
    security:
      - Bearer: []
    parameters:
      - in: query
        name: status
        type: string
        enum: [active, used, expired]
    responses:
      200:
        description: Wallet vouchers
    """
    try:
        status = request.args.get("status")
        if status and status not in ("active", "used", "expired"):
            return error_response("BAD_REQUEST", "Invalid status filter")
        vouchers = voucher_service.list_user_vouchers(g.current_user, status)
        data = []
        for user_voucher in vouchers:
            item = serialize_user_voucher(user_voucher)
            item["status"] = voucher_service.effective_status(user_voucher)
            data.append(item)
        return success_response(data)
    except Exception as e:
        current_app.logger.error(f"Failed to list vouchers: {e}")
        return internal_error()


@vouchers_bp.route("/stats", methods=["GET"])
@require_user
def my_voucher_stats():
    try:
        return success_response(voucher_service.get_voucher_stats(g.current_user))
    except Exception as e:
        current_app.logger.error(f"Failed to load voucher stats: {e}")
        return internal_error()


@vouchers_bp.route("/redeemable", methods=["GET"])
@require_user
def redeemable_vouchers():
    try:
        items = voucher_service.list_redeemable_vouchers(g.current_user)
        return success_response(
            [
                {
                    **serialize_voucher(item["voucher"]),
                    "can_afford": item["can_afford"],
                    "remaining_redemptions": item["remaining_redemptions"],
                }
                for item in items
            ]
        )
    except Exception as e:
        current_app.logger.error(f"Failed to list redeemable vouchers: {e}")
        return internal_error()


@vouchers_bp.route("/redeem", methods=["POST"])
@require_user
def redeem_by_code():
    """
    Redeem a voucher code into the wallet
    ---
    tags:
      - Vouchers
    security:
      - Bearer: []
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          properties:
            code:
              type: string
    responses:
      201:
        description: Voucher added to wallet
      404:
        description: Unknown code
      409:
        description: Inactive, out of window, exhausted, already redeemed or not enough points
    """
    try:
        data = request.get_json(silent=True) or {}
        user_voucher = voucher_service.redeem_voucher_by_code(
            g.current_user, data.get("code")
        )
        return success_response(
            serialize_user_voucher(user_voucher), "Voucher redeemed", 201
        )
    except ApiError as e:
        db.session.rollback()
        return e.to_response()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Failed to redeem voucher code: {e}")
        return internal_error("Failed to redeem voucher")


@vouchers_bp.route("/<int:voucher_id>/redeem-points", methods=["POST"])
@require_user
def redeem_with_points(voucher_id):
    try:
        user_voucher = voucher_service.redeem_voucher_with_points(
            g.current_user, voucher_id
        )
        return success_response(
            {
                "voucher": serialize_user_voucher(user_voucher),
                "points_balance": g.current_user.points,
            },
            "Voucher redeemed with points",
            201,
        )
    except ApiError as e:
        db.session.rollback()
        return e.to_response()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Failed to redeem voucher {voucher_id} with points: {e}")
        return internal_error("Failed to redeem voucher")
