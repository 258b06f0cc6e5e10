from flask import Blueprint, current_app, g, request

from ...extensions import db
from ...services import package_service
from ...utils.auth import load_current_user, require_user
from ...utils.errors import ApiError, error_response, internal_error, success_response
from ...utils.serializers import (
    serialize_order,
    serialize_package,
    serialize_payment,
    serialize_user_package,
)

packages_bp = Blueprint("packages", __name__, url_prefix="/api/packages")


def _optional_user():
    if not request.headers.get("Authorization"):
        return None
    try:
        return load_current_user()
    except ApiError:
        return None


@packages_bp.route("", methods=["GET"])
def list_packages():
    """
    Packages on sale
    ---
    tags:
      - Packages
    description: >
      Signed-in users see renewal discounts applied and first-order-only
      packages hidden once they are no longer eligible.
    responses:
      200:
        description: Packages with final prices
    """
    try:
        user = _optional_user()
        packages = package_service.list_available_packages(user)
        return success_response(
            [serialize_package(p, discount, price) for p, discount, price in packages]
        )
    except Exception as e:
        current_app.logger.error(f"Failed to list packages: {e}")
        return internal_error()


@packages_bp.route("/featured", methods=["GET"])
def featured_packages():
    try:
        limit = request.args.get("limit", 3, type=int)
        return success_response(
            [serialize_package(p) for p in package_service.list_featured_packages(limit)]
        )
    except Exception as e:
        current_app.logger.error(f"Failed to list featured packages: {e}")
        return internal_error()


@packages_bp.route("/<int:package_id>/buy", methods=["POST"])
@require_user
def buy_package(package_id):
    """
    Start a package purchase
    ---
    tags:
      - Packages
    security:
      - Bearer: []
    parameters:
      - in: path
        name: package_id
        type: integer
        required: true
      - in: body
        name: body
        schema:
          type: object
          properties:
            payment_method:
              type: string
              enum: [manual, tng, cash]
    responses:
      201:
        description: Pending payment created
      404:
        description: Package not found
      409:
        description: Package unavailable or first-order only
    """
    try:
        data = request.get_json(silent=True) or {}
        payment = package_service.buy_package(
            g.current_user, package_id, data.get("payment_method", "manual")
        )
        return success_response(serialize_payment(payment), "Package purchase started", 201)
    except ApiError as e:
        db.session.rollback()
        return e.to_response()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Failed to buy package {package_id}: {e}")
        return internal_error("Failed to buy package")


@packages_bp.route("/mine", methods=["GET"])
@require_user
def my_packages():
    try:
        status = request.args.get("status")
        if status and status not in ("active", "depleted", "expired"):
            return error_response("BAD_REQUEST", "Invalid status filter")
        packages = package_service.list_user_packages(g.current_user, status)
        return success_response([serialize_user_package(p) for p in packages])
    except Exception as e:
        current_app.logger.error(f"Failed to list user packages: {e}")
        return internal_error()


@packages_bp.route("/mine/pending-payments", methods=["GET"])
@require_user
def my_pending_package_payments():
    try:
        payments = package_service.list_pending_package_payments(g.current_user)
        return success_response([serialize_payment(p) for p in payments])
    except Exception as e:
        current_app.logger.error(f"Failed to list pending package payments: {e}")
        return internal_error()


@packages_bp.route("/mine/<int:user_package_id>/usage", methods=["GET"])
@require_user
def my_package_usage(user_package_id):
    try:
        user_package, orders = package_service.list_package_usage(
            g.current_user, user_package_id
        )
        return success_response(
            {
                "package": serialize_user_package(user_package),
                "orders": [serialize_order(o) for o in orders],
            }
        )
    except ApiError as e:
        return e.to_response()
    except Exception as e:
        current_app.logger.error(f"Failed to load package usage: {e}")
        return internal_error()
