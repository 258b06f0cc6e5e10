from flask import Blueprint, current_app, request

from ...services.inventory_service import get_string, list_strings
from ...utils.errors import ApiError, internal_error, success_response
from ...utils.serializers import serialize_string

strings_bp = Blueprint("strings", __name__, url_prefix="/api/strings")


@strings_bp.route("", methods=["GET"])
def list_available_strings():
    """
    List strings customers can book
    ---
    tags:
      - Inventory
    parameters:
      - in: query
        name: q
        type: string
        description: Filter by brand or model
    responses:
      200:
        description: Active strings
    """
    try:
        strings = list_strings(active_only=True, q=request.args.get("q"))
        return success_response([serialize_string(s) for s in strings])
    except Exception as e:
        current_app.logger.error(f"Failed to list strings: {e}")
        return internal_error()


@strings_bp.route("/<int:string_id>", methods=["GET"])
def get_string_detail(string_id):
    try:
        item = get_string(string_id)
        if not item.active:
            return ApiError("NOT_FOUND", "String not found").to_response()
        return success_response(serialize_string(item))
    except ApiError as e:
        return e.to_response()
    except Exception as e:
        current_app.logger.error(f"Failed to load string {string_id}: {e}")
        return internal_error()
