from flask import Blueprint, current_app, g, request

from ...extensions import db
from ...services import payment_service
from ...utils.auth import require_user
from ...utils.errors import ApiError, error_response, internal_error, success_response
from ...utils.request_cache import invalidate_prefix
from ...utils.serializers import serialize_payment

payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


@payments_bp.route("", methods=["POST"])
@require_user
def create_payment():
    """
    Create or reuse the payment intent for an order
    ---
    tags:
      - Payments
    security:
      - Bearer: []
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [order_id]
          properties:
            order_id:
              type: integer
            provider:
              type: string
              enum: [manual, tng, cash]
    responses:
      201:
        description: Payment intent
      409:
        description: Order already paid or not awaiting payment
    """
    try:
        data = request.get_json(silent=True) or {}
        if not data.get("order_id"):
            return error_response("BAD_REQUEST", "order_id is required")
        provider = data.get("provider", "manual")
        if provider == "cash":
            payment = payment_service.create_cash_payment(g.current_user, data["order_id"])
        else:
            payment = payment_service.create_payment(
                g.current_user, data["order_id"], provider
            )
        return success_response(serialize_payment(payment), "Payment created", 201)
    except ApiError as e:
        db.session.rollback()
        return e.to_response()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Failed to create payment: {e}")
        return internal_error("Failed to create payment")


@payments_bp.route("/<int:payment_id>", methods=["GET"])
@require_user
def get_payment(payment_id):
    try:
        payment = payment_service.get_payment_for_user(g.current_user, payment_id)
        return success_response(serialize_payment(payment))
    except ApiError as e:
        return e.to_response()
    except Exception as e:
        current_app.logger.error(f"Failed to load payment {payment_id}: {e}")
        return internal_error()


@payments_bp.route("/<int:payment_id>/proof", methods=["POST"])
@require_user
def upload_payment_proof(payment_id):
    """
    Upload a payment receipt (JPG or PNG, max 5MB)
    ---
    tags:
      - Payments
    security:
      - Bearer: []
    consumes:
      - multipart/form-data
    parameters:
      - in: path
        name: payment_id
        type: integer
        required: true
      - in: formData
        name: file
        type: file
        required: true
    responses:
      200:
        description: Receipt stored, payment awaiting verification
      400:
        description: Missing file, wrong type or too large
      409:
        description: Payment already settled
    """
    try:
        payment = payment_service.record_payment_proof(
            g.current_user, payment_id, request.files.get("file")
        )
        invalidate_prefix("admin:")
        return success_response(serialize_payment(payment), "Receipt uploaded")
    except ApiError as e:
        db.session.rollback()
        return e.to_response()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Failed to upload proof for payment {payment_id}: {e}")
        return internal_error("Failed to upload receipt")


@payments_bp.route("/tng/callback", methods=["POST"])
def tng_callback():
    """
    Touch 'n Go payment gateway callback
    ---
    tags:
      - Payments
    parameters:
      - in: header
        name: X-TNG-Signature
        type: string
        required: true
        description: Hex HMAC-SHA256 of the raw request body
    responses:
      200:
        description: Callback processed (or already processed)
      401:
        description: Invalid signature
      403:
        description: Callback disabled
    """
    try:
        result = payment_service.handle_gateway_callback(
            request.get_data(), request.headers.get("X-TNG-Signature")
        )
        invalidate_prefix("admin:")
        return success_response(result)
    except ApiError as e:
        db.session.rollback()
        if e.status >= 400 and e.code != "FEATURE_DISABLED":
            current_app.logger.warning(f"TNG callback rejected: {e.message}")
        return e.to_response()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"TNG callback failed: {e}")
        return internal_error()
