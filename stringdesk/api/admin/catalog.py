# Inventory, packages and vouchers management
from flask import Blueprint, current_app, g, request

from ...extensions import db
from ...services import inventory_service, package_service, voucher_service
from ...utils.auth import require_admin
from ...utils.errors import ApiError, internal_error, success_response
from ...utils.request_cache import invalidate_prefix
from ...utils.serializers import (
    serialize_package,
    serialize_stock_log,
    serialize_string,
    serialize_user_package,
    serialize_voucher,
)

admin_catalog_bp = Blueprint("admin_catalog", __name__, url_prefix="/api/admin")


def _fail(action, e):
    db.session.rollback()
    current_app.logger.error(f"Failed to {action}: {e}")
    return internal_error(f"Failed to {action}")


# -------------------------------------------------------------------
# Inventory
# -------------------------------------------------------------------
@admin_catalog_bp.route("/inventory", methods=["GET"])
@require_admin
def list_inventory():
    try:
        include_inactive = request.args.get("all", "true").lower() == "true"
        strings = inventory_service.list_strings(
            active_only=not include_inactive, q=request.args.get("q")
        )
        return success_response([serialize_string(s, include_cost=True) for s in strings])
    except Exception as e:
        return _fail("list inventory", e)


@admin_catalog_bp.route("/inventory", methods=["POST"])
@require_admin
def create_string():
    """
    Add a string to inventory
    ---
    tags:
      - Admin Inventory
    security:
      - Bearer: []
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [brand, model]
          properties:
            brand:
              type: string
            model:
              type: string
            cost_price:
              type: number
            selling_price:
              type: number
            stock:
              type: integer
            minimum_stock:
              type: integer
    responses:
      201:
        description: String created
    """
    try:
        item = inventory_service.create_string(
            request.get_json(silent=True) or {}, g.current_user
        )
        invalidate_prefix("admin:")
        return success_response(serialize_string(item, include_cost=True), "String created", 201)
    except ApiError as e:
        db.session.rollback()
        return e.to_response()
    except Exception as e:
        return _fail("create string", e)


@admin_catalog_bp.route("/inventory/<int:string_id>", methods=["PUT"])
@require_admin
def update_string(string_id):
    try:
        item = inventory_service.update_string(string_id, request.get_json(silent=True) or {})
        return success_response(serialize_string(item, include_cost=True), "String updated")
    except ApiError as e:
        db.session.rollback()
        return e.to_response()
    except Exception as e:
        return _fail("update string", e)


@admin_catalog_bp.route("/inventory/<int:string_id>", methods=["DELETE"])
@require_admin
def delete_string(string_id):
    try:
        inventory_service.delete_string(string_id)
        invalidate_prefix("admin:")
        return success_response(None, "String deleted")
    except ApiError as e:
        db.session.rollback()
        return e.to_response()
    except Exception as e:
        return _fail("delete string", e)


@admin_catalog_bp.route("/inventory/<int:string_id>/adjust", methods=["POST"])
@require_admin
def adjust_stock(string_id):
    """
    Restock or correct stock for a string
    ---
    tags:
      - Admin Inventory
    security:
      - Bearer: []
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [change]
          properties:
            change:
              type: integer
              description: Positive to restock, negative to write off
            reason:
              type: string
    responses:
      200:
        description: Stock adjusted and logged
      400:
        description: Zero change or stock would go negative
    """
    try:
        data = request.get_json(silent=True) or {}
        item, log = inventory_service.adjust_stock(
            string_id, data.get("change"), data.get("reason"), g.current_user
        )
        invalidate_prefix("admin:")
        return success_response(
            {"string": serialize_string(item, include_cost=True), "log": serialize_stock_log(log)},
            "Stock adjusted",
        )
    except ApiError as e:
        db.session.rollback()
        return e.to_response()
    except Exception as e:
        return _fail("adjust stock", e)


@admin_catalog_bp.route("/inventory/logs", methods=["GET"])
@require_admin
def stock_logs():
    try:
        logs = inventory_service.list_stock_logs(
            request.args.get("string_id", type=int),
            request.args.get("limit", 100, type=int),
        )
        return success_response([serialize_stock_log(log) for log in logs])
    except Exception as e:
        return _fail("list stock logs", e)


@admin_catalog_bp.route("/inventory/low-stock", methods=["GET"])
@require_admin
def low_stock():
    try:
        strings = inventory_service.list_low_stock(request.args.get("threshold", type=int))
        return success_response([serialize_string(s, include_cost=True) for s in strings])
    except Exception as e:
        return _fail("list low stock", e)


# -------------------------------------------------------------------
# Packages
# -------------------------------------------------------------------
@admin_catalog_bp.route("/packages", methods=["GET"])
@require_admin
def list_packages():
    try:
        return success_response(
            [serialize_package(p) for p in package_service.list_all_packages()]
        )
    except Exception as e:
        return _fail("list packages", e)


@admin_catalog_bp.route("/packages", methods=["POST"])
@require_admin
def create_package():
    """
    Create a prepaid package
    ---
    tags:
      - Admin Packages
    security:
      - Bearer: []
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [name, times, price]
          properties:
            name:
              type: string
            times:
              type: integer
            price:
              type: number
            validity_days:
              type: integer
            is_first_order_only:
              type: boolean
            renewal_discount:
              type: number
    responses:
      201:
        description: Package created
    """
    try:
        package = package_service.create_package(request.get_json(silent=True) or {})
        return success_response(serialize_package(package), "Package created", 201)
    except ApiError as e:
        db.session.rollback()
        return e.to_response()
    except Exception as e:
        return _fail("create package", e)


@admin_catalog_bp.route("/packages/<int:package_id>", methods=["PUT"])
@require_admin
def update_package(package_id):
    try:
        package = package_service.update_package(
            package_id, request.get_json(silent=True) or {}
        )
        return success_response(serialize_package(package), "Package updated")
    except ApiError as e:
        db.session.rollback()
        return e.to_response()
    except Exception as e:
        return _fail("update package", e)


@admin_catalog_bp.route("/packages/<int:package_id>/toggle", methods=["POST"])
@require_admin
def toggle_package(package_id):
    try:
        package = package_service.toggle_package(package_id)
        return success_response(serialize_package(package))
    except ApiError as e:
        db.session.rollback()
        return e.to_response()
    except Exception as e:
        return _fail("toggle package", e)


@admin_catalog_bp.route("/packages/purchases", methods=["GET"])
@require_admin
def package_purchases():
    try:
        purchases = package_service.list_package_purchases(request.args.get("status"))
        return success_response(
            [
                {**serialize_user_package(p), "user_id": p.user_id, "customer": p.user.full_name}
                for p in purchases
            ]
        )
    except Exception as e:
        return _fail("list package purchases", e)


@admin_catalog_bp.route("/packages/stats", methods=["GET"])
@require_admin
def package_stats():
    try:
        return success_response(package_service.get_package_sales_stats())
    except Exception as e:
        return _fail("load package stats", e)


# -------------------------------------------------------------------
# Vouchers
# -------------------------------------------------------------------
@admin_catalog_bp.route("/vouchers", methods=["GET"])
@require_admin
def list_vouchers():
    try:
        return success_response(
            [serialize_voucher(v) for v in voucher_service.list_all_vouchers()]
        )
    except Exception as e:
        return _fail("list vouchers", e)


@admin_catalog_bp.route("/vouchers", methods=["POST"])
@require_admin
def create_voucher():
    """
    Create a voucher
    ---
    tags:
      - Admin Vouchers
    security:
      - Bearer: []
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [code, name, type, value, valid_until]
          properties:
            code:
              type: string
            name:
              type: string
            type:
              type: string
              enum: [percentage, fixed]
            value:
              type: number
            min_purchase:
              type: number
            points_cost:
              type: integer
            valid_until:
              type: string
              format: date-time
            is_first_order_only:
              type: boolean
            is_auto_issue:
              type: boolean
    responses:
      201:
        description: Voucher created
      409:
        description: Code already exists
    """
    try:
        voucher = voucher_service.create_voucher(request.get_json(silent=True) or {})
        return success_response(serialize_voucher(voucher), "Voucher created", 201)
    except ApiError as e:
        db.session.rollback()
        return e.to_response()
    except Exception as e:
        return _fail("create voucher", e)


@admin_catalog_bp.route("/vouchers/<int:voucher_id>", methods=["PUT"])
@require_admin
def update_voucher(voucher_id):
    try:
        voucher = voucher_service.update_voucher(
            voucher_id, request.get_json(silent=True) or {}
        )
        return success_response(serialize_voucher(voucher), "Voucher updated")
    except ApiError as e:
        db.session.rollback()
        return e.to_response()
    except Exception as e:
        return _fail("update voucher", e)


@admin_catalog_bp.route("/vouchers/<int:voucher_id>", methods=["DELETE"])
@require_admin
def delete_voucher(voucher_id):
    try:
        outcome = voucher_service.delete_voucher(voucher_id)
        return success_response({"result": outcome}, f"Voucher {outcome}")
    except ApiError as e:
        db.session.rollback()
        return e.to_response()
    except Exception as e:
        return _fail("delete voucher", e)


@admin_catalog_bp.route("/vouchers/<int:voucher_id>/distribute", methods=["POST"])
@require_admin
def distribute_voucher(voucher_id):
    try:
        data = request.get_json(silent=True) or {}
        count = voucher_service.distribute_voucher(voucher_id, data.get("user_ids"))
        return success_response({"distributed": count}, f"Voucher sent to {count} user(s)")
    except ApiError as e:
        db.session.rollback()
        return e.to_response()
    except Exception as e:
        return _fail("distribute voucher", e)


@admin_catalog_bp.route("/vouchers/stats", methods=["GET"])
@require_admin
def voucher_stats():
    try:
        return success_response(voucher_service.get_voucher_usage_stats())
    except Exception as e:
        return _fail("load voucher stats", e)
