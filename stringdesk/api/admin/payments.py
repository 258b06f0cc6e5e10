from flask import Blueprint, current_app, g, request

from ...extensions import db
from ...services import payment_service
from ...utils.auth import require_admin
from ...utils.errors import ApiError, internal_error, success_response
from ...utils.request_cache import invalidate_prefix
from ...utils.serializers import serialize_payment

admin_payments_bp = Blueprint(
    "admin_payments", __name__, url_prefix="/api/admin/payments"
)


def _with_customer(payment):
    data = serialize_payment(payment)
    data["customer"] = {
        "id": payment.user.id,
        "full_name": payment.user.full_name,
        "email": payment.user.email,
    }
    data["package_name"] = payment.package.name if payment.package else None
    return data


@admin_payments_bp.route("/pending", methods=["GET"])
@require_admin
def pending_payments():
    """
    Payments waiting for an admin decision
    ---
    tags:
      - Admin Payments
    security:
      - Bearer: []
    description: >
      Receipts awaiting verification, plus cash payments still to be
      collected at the counter.
    responses:
      200:
        description: Paginated payments
    """
    try:
        payments, pagination = payment_service.list_pending_payments(
            page=request.args.get("page", 1, type=int),
            limit=request.args.get("limit", 20, type=int),
        )
        return success_response(
            {"payments": [_with_customer(p) for p in payments], "pagination": pagination}
        )
    except Exception as e:
        current_app.logger.error(f"Failed to list pending payments: {e}")
        return internal_error()


@admin_payments_bp.route("/<int:payment_id>/verify", methods=["POST"])
@require_admin
def verify(payment_id):
    """
    Confirm a payment
    ---
    tags:
      - Admin Payments
    security:
      - Bearer: []
    parameters:
      - in: body
        name: body
        schema:
          type: object
          properties:
            transaction_id:
              type: string
            notes:
              type: string
    responses:
      200:
        description: Payment confirmed, order or package unlocked
      409:
        description: Payment already settled
    """
    try:
        data = request.get_json(silent=True) or {}
        payment = payment_service.verify_payment(
            g.current_user, payment_id, data.get("transaction_id"), data.get("notes")
        )
        invalidate_prefix("admin:")
        return success_response(serialize_payment(payment), "Payment verified")
    except ApiError as e:
        db.session.rollback()
        return e.to_response()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Failed to verify payment {payment_id}: {e}")
        return internal_error("Failed to verify payment")


@admin_payments_bp.route("/<int:payment_id>/confirm-cash", methods=["POST"])
@require_admin
def confirm_cash(payment_id):
    try:
        data = request.get_json(silent=True) or {}
        payment = payment_service.verify_payment(
            g.current_user,
            payment_id,
            notes=data.get("notes") or "Cash received at counter",
            require_cash=True,
        )
        invalidate_prefix("admin:")
        return success_response(serialize_payment(payment), "Cash payment confirmed")
    except ApiError as e:
        db.session.rollback()
        return e.to_response()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Failed to confirm cash payment {payment_id}: {e}")
        return internal_error("Failed to confirm payment")


@admin_payments_bp.route("/<int:payment_id>/reject", methods=["POST"])
@require_admin
def reject(payment_id):
    """
    Reject a payment receipt
    ---
    tags:
      - Admin Payments
    security:
      - Bearer: []
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [reason]
          properties:
            reason:
              type: string
    responses:
      200:
        description: Payment rejected and customer notified
      400:
        description: Missing reason
      409:
        description: Payment already settled
    """
    try:
        data = request.get_json(silent=True) or {}
        payment = payment_service.reject_payment(
            g.current_user, payment_id, data.get("reason")
        )
        invalidate_prefix("admin:")
        return success_response(serialize_payment(payment), "Payment rejected")
    except ApiError as e:
        db.session.rollback()
        return e.to_response()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Failed to reject payment {payment_id}: {e}")
        return internal_error("Failed to reject payment")
