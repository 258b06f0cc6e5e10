from flask import Blueprint, current_app, g, request

from ...extensions import db
from ...services import order_photo_service, order_service
from ...services.order_eta import get_order_eta_info
from ...utils.auth import require_user
from ...utils.errors import ApiError, internal_error, success_response
from ...utils.request_cache import invalidate_prefix
from ...utils.s3_utils import store_image
from ...utils.serializers import serialize_order, serialize_order_photo

orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.route("", methods=["POST"])
@require_user
def create_order():
    """
    Book a stringing job for one or more rackets
    ---
    tags:
      - Orders
    security:
      - Bearer: []
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          properties:
            string_id:
              type: integer
            tension:
              type: integer
              description: Same tension for mains and crosses
            tension_vertical:
              type: integer
            tension_horizontal:
              type: integer
            items:
              type: array
              items:
                type: object
            use_package:
              type: boolean
            user_package_id:
              type: integer
            user_voucher_id:
              type: integer
            payment_method:
              type: string
              enum: [manual, tng, cash]
    responses:
      201:
        description: Order created
      400:
        description: Invalid tension or payload
      404:
        description: String, package or voucher not found
      409:
        description: Out of stock, package or voucher not usable
      422:
        description: Voucher restrictions not met
    """
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.create_order(g.current_user, data)
        invalidate_prefix("admin:")
        return success_response(serialize_order(order), "Order created", 201)
    except ApiError as e:
        db.session.rollback()
        return e.to_response()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Failed to create order for user {g.current_user.id}: {e}")
        return internal_error("Failed to create order")


@orders_bp.route("", methods=["GET"])
@require_user
def list_my_orders():
    """
    List the signed-in user's orders
    ---
    tags:
      - Orders
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
    """
    try:
        orders, pagination = order_service.list_user_orders(
            g.current_user,
            status=request.args.get("status"),
            page=request.args.get("page", 1, type=int),
            limit=request.args.get("limit", 20, type=int),
        )
        return success_response(
            {"orders": [serialize_order(o) for o in orders], "pagination": pagination}
        )
    except ApiError as e:
        return e.to_response()
    except Exception as e:
        current_app.logger.error(f"Failed to list orders: {e}")
        return internal_error()


@orders_bp.route("/<int:order_id>", methods=["GET"])
@require_user
def get_my_order(order_id):
    try:
        order = order_service.get_user_order(g.current_user, order_id)
        data = serialize_order(order)
        data["eta"] = get_order_eta_info(order)
        return success_response(data)
    except ApiError as e:
        return e.to_response()
    except Exception as e:
        current_app.logger.error(f"Failed to load order {order_id}: {e}")
        return internal_error()


@orders_bp.route("/<int:order_id>/photos", methods=["GET"])
@require_user
def list_my_order_photos(order_id):
    try:
        photos = order_photo_service.list_order_photos(order_id, user=g.current_user)
        return success_response([serialize_order_photo(p) for p in photos])
    except ApiError as e:
        return e.to_response()
    except Exception as e:
        current_app.logger.error(f"Failed to load photos of order {order_id}: {e}")
        return internal_error()


@orders_bp.route("/<int:order_id>/cancel", methods=["POST"])
@require_user
def cancel_my_order(order_id):
    """
    Cancel a pending order
    ---
    tags:
      - Orders
    security:
      - Bearer: []
    parameters:
      - in: path
        name: order_id
        type: integer
        required: true
    responses:
      200:
        description: Order cancelled and reserved resources returned
      404:
        description: Order not found
      422:
        description: Order is no longer pending
    """
    try:
        order = order_service.cancel_order(g.current_user, order_id)
        invalidate_prefix("admin:")
        return success_response(serialize_order(order), "Order cancelled")
    except ApiError as e:
        db.session.rollback()
        return e.to_response()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Failed to cancel order {order_id}: {e}")
        return internal_error("Failed to cancel order")


@orders_bp.route("/racket-photo", methods=["POST"])
@require_user
def upload_racket_photo():
    try:
        url = store_image(request.files.get("file"), "racket-photos")
        return success_response({"url": url}, "Photo uploaded", 201)
    except ApiError as e:
        return e.to_response()
    except Exception as e:
        current_app.logger.error(f"Failed to upload racket photo: {e}")
        return internal_error("Failed to upload photo")
