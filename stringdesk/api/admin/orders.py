from flask import Blueprint, current_app, g, request

from ...extensions import db
from ...services import order_photo_service, order_service
from ...services.order_eta import get_order_eta_info
from ...utils.auth import require_admin
from ...utils.errors import ApiError, error_response, internal_error, success_response
from ...utils.request_cache import invalidate_prefix
from ...utils.s3_utils import store_image
from ...utils.serializers import serialize_order, serialize_order_photo

admin_orders_bp = Blueprint("admin_orders", __name__, url_prefix="/api/admin/orders")


@admin_orders_bp.route("", methods=["GET"])
@require_admin
def list_orders():
    """
    All orders for the back office
    ---
    tags:
      - Admin Orders
    security:
      - Bearer: []
    parameters:
      - in: query
        name: status
        type: string
      - in: query
        name: q
        type: string
        description: Customer name, email or order id
      - in: query
        name: page
        type: integer
      - in: query
        name: limit
        type: integer
    responses:
      200:
        description: Paginated orders
      403:
        description: Admin access required
    """
    try:
        orders, pagination = order_service.list_admin_orders(
            status=request.args.get("status"),
            q=request.args.get("q"),
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
        current_app.logger.error(f"Failed to list admin orders: {e}")
        return internal_error()


@admin_orders_bp.route("/<int:order_id>", methods=["GET"])
@require_admin
def get_order(order_id):
    try:
        order = order_service.get_order(order_id)
        data = serialize_order(order, include_admin=True)
        data["eta"] = get_order_eta_info(order)
        return success_response(data)
    except ApiError as e:
        return e.to_response()
    except Exception as e:
        current_app.logger.error(f"Failed to load order {order_id}: {e}")
        return internal_error()


@admin_orders_bp.route("/<int:order_id>/status", methods=["PUT"])
@require_admin
def update_status(order_id):
    """
    Move an order to a new status
    ---
    tags:
      - Admin Orders
    security:
      - Bearer: []
    parameters:
      - in: path
        name: order_id
        type: integer
        required: true
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [status]
          properties:
            status:
              type: string
              enum: [pending, confirmed, processing, in_progress, ready, completed, picked_up, cancelled]
            note:
              type: string
    responses:
      200:
        description: Status changed and logged
      400:
        description: Unknown status
      409:
        description: Transition not allowed
    """
    try:
        data = request.get_json(silent=True) or {}
        if not data.get("status"):
            return error_response("BAD_REQUEST", "status is required")
        order = order_service.update_order_status(
            g.current_user, order_id, data["status"], data.get("note")
        )
        invalidate_prefix("admin:")
        return success_response(serialize_order(order, include_admin=True), "Status updated")
    except ApiError as e:
        db.session.rollback()
        return e.to_response()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Failed to update status of order {order_id}: {e}")
        return internal_error("Failed to update order status")


@admin_orders_bp.route("/<int:order_id>/complete", methods=["POST"])
@require_admin
def complete_order(order_id):
    """
    Mark an in-progress order as completed and award points
    ---
    tags:
      - Admin Orders
    security:
      - Bearer: []
    responses:
      200:
        description: Order completed
      409:
        description: Already completed
      422:
        description: Order is not in progress
    """
    try:
        data = request.get_json(silent=True) or {}
        order, points = order_service.complete_order(
            g.current_user, order_id, data.get("notes")
        )
        invalidate_prefix("admin:")
        return success_response(
            {"order": serialize_order(order, include_admin=True), "points_awarded": points},
            "Order completed",
        )
    except ApiError as e:
        db.session.rollback()
        return e.to_response()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Failed to complete order {order_id}: {e}")
        return internal_error("Failed to complete order")


@admin_orders_bp.route("/<int:order_id>/eta", methods=["PUT"])
@require_admin
def update_eta(order_id):
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.update_order_eta(
            g.current_user, order_id, data.get("estimated_completion_at")
        )
        data = serialize_order(order, include_admin=True)
        data["eta"] = get_order_eta_info(order)
        return success_response(data, "Estimate updated")
    except ApiError as e:
        db.session.rollback()
        return e.to_response()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Failed to update ETA of order {order_id}: {e}")
        return internal_error()


@admin_orders_bp.route("/<int:order_id>/photos", methods=["GET"])
@require_admin
def list_photos(order_id):
    try:
        photos = order_photo_service.list_order_photos(order_id)
        return success_response([serialize_order_photo(p) for p in photos])
    except ApiError as e:
        return e.to_response()
    except Exception as e:
        current_app.logger.error(f"Failed to load photos of order {order_id}: {e}")
        return internal_error()


@admin_orders_bp.route("/<int:order_id>/photos", methods=["POST"])
@require_admin
def add_photo(order_id):
    """
    Attach a before/after photo to an order
    ---
    tags:
      - Admin Orders
    security:
      - Bearer: []
    consumes:
      - multipart/form-data
      - application/json
    parameters:
      - in: path
        name: order_id
        type: integer
        required: true
      - in: formData
        name: file
        type: file
        description: JPG or PNG, used instead of photo_url
      - in: formData
        name: photo_url
        type: string
      - in: formData
        name: photo_type
        type: string
        enum: [before, after, detail, other]
      - in: formData
        name: caption
        type: string
      - in: formData
        name: display_order
        type: integer
    responses:
      201:
        description: Photo attached
      400:
        description: Missing photo or invalid fields
      404:
        description: Order not found
    """
    try:
        data = request.get_json(silent=True) or request.form.to_dict()
        url = None
        if "file" in request.files:
            order_service.get_order(order_id)
            url = store_image(request.files["file"], "order-photos")
        photo = order_photo_service.add_order_photo(order_id, data, photo_url=url)
        return success_response(serialize_order_photo(photo), "Photo added", 201)
    except ApiError as e:
        db.session.rollback()
        return e.to_response()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Failed to add photo to order {order_id}: {e}")
        return internal_error("Failed to add photo")


@admin_orders_bp.route("/<int:order_id>/photos/reorder", methods=["PUT"])
@require_admin
def reorder_photos(order_id):
    """
    Change the display order of an order's photos
    ---
    tags:
      - Admin Orders
    security:
      - Bearer: []
    parameters:
      - in: body
        name: body
        schema:
          type: object
          properties:
            photos:
              type: array
              items:
                type: object
                properties:
                  id:
                    type: integer
                  display_order:
                    type: integer
    responses:
      200:
        description: Photos in their new order
      400:
        description: Unknown photo id or missing display_order
    """
    try:
        data = request.get_json(silent=True) or {}
        photos = order_photo_service.reorder_order_photos(order_id, data.get("photos"))
        return success_response([serialize_order_photo(p) for p in photos], "Photos reordered")
    except ApiError as e:
        db.session.rollback()
        return e.to_response()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Failed to reorder photos of order {order_id}: {e}")
        return internal_error()


@admin_orders_bp.route("/<int:order_id>/photos/<int:photo_id>", methods=["DELETE"])
@require_admin
def delete_photo(order_id, photo_id):
    try:
        order_photo_service.delete_order_photo(order_id, photo_id)
        return success_response({"ok": True}, "Photo deleted")
    except ApiError as e:
        db.session.rollback()
        return e.to_response()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Failed to delete photo {photo_id}: {e}")
        return internal_error()
