from flask import Blueprint, current_app, g, request

from ...extensions import db
from ...services import points_service
from ...utils.auth import require_user
from ...utils.errors import ApiError, internal_error, success_response
from ...utils.serializers import serialize_points_log

points_bp = Blueprint("points", __name__, url_prefix="/api/points")


@points_bp.route("", methods=["GET"])
@require_user
def get_points_summary():
    """
    Points balance and recent ledger entries
    ---
    tags:
      - Loyalty
    security:
      - Bearer: []
    parameters:
      - in: query
        name: type
        type: string
      - in: query
        name: limit
        type: integer
    responses:
      200:
        description: Balance and logs
    """
    try:
        summary = points_service.get_points_summary(
            g.current_user,
            type=request.args.get("type"),
            limit=request.args.get("limit", 50, type=int),
        )
        return success_response(
            {
                "balance": summary["balance"],
                "logs": [serialize_points_log(log) for log in summary["logs"]],
            }
        )
    except Exception as e:
        current_app.logger.error(f"Failed to load points for user {g.current_user.id}: {e}")
        return internal_error()


@points_bp.route("/history", methods=["GET"])
@require_user
def get_points_history():
    try:
        logs = points_service.get_points_history(
            g.current_user,
            type=request.args.get("type"),
            limit=request.args.get("limit", 50, type=int),
        )
        return success_response([serialize_points_log(log) for log in logs])
    except Exception as e:
        current_app.logger.error(f"Failed to load points history: {e}")
        return internal_error()


@points_bp.route("/stats", methods=["GET"])
@require_user
def get_points_stats():
    try:
        return success_response(points_service.get_points_stats(g.current_user))
    except Exception as e:
        current_app.logger.error(f"Failed to load points stats: {e}")
        return internal_error()


@points_bp.route("/redeem", methods=["POST"])
@require_user
def redeem_points():
    """
    Spend points from the balance
    ---
    tags:
      - Loyalty
    security:
      - Bearer: []
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          properties:
            points:
              type: integer
            reason:
              type: string
    responses:
      200:
        description: Points deducted
      400:
        description: Invalid amount
      409:
        description: Insufficient balance
    """
    try:
        data = request.get_json(silent=True) or {}
        result = points_service.redeem_points(
            g.current_user.id, data.get("points"), data.get("reason")
        )
        return success_response(result, "Points redeemed")
    except ApiError as e:
        db.session.rollback()
        return e.to_response()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Failed to redeem points: {e}")
        return internal_error("Failed to redeem points")
