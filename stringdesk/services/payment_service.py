"""
Payments for orders and package purchases.

A payment starts ``pending``; a customer can attach a receipt which moves it
to ``pending_verification``. An admin (or the Touch 'n Go callback) settles it
to ``success`` or ``rejected`` exactly once.
"""

import hashlib
import hmac
import json
import logging
import math
from datetime import datetime

from flask import current_app
from sqlalchemy import and_, func, or_, select

from ..extensions import db
from ..models import Order, Payment
from ..utils.errors import ApiError, bad_request, conflict, not_found, unauthorized, unprocessable
from ..utils.s3_utils import delete_file_from_s3, store_image
from .email_service import email_service
from .notification_service import notify, notify_admins
from .order_service import get_user_order, record_status_change
from .package_service import activate_package_purchase

logger = logging.getLogger(__name__)

PROVIDERS = ("manual", "tng", "cash")
SETTLEABLE_STATUSES = ("pending", "pending_verification")
PROOF_ALLOWED_STATUSES = ("pending", "pending_verification", "rejected", "failed")
PROOF_FOLDER = "payment-proofs"


def get_payment(payment_id):
    payment = db.session.get(Payment, payment_id)
    if not payment:
        raise not_found("Payment not found")
    return payment


def get_payment_for_user(user, payment_id):
    payment = db.session.get(Payment, payment_id)
    if not payment or (payment.user_id != user.id and not user.is_admin):
        raise not_found("Payment not found")
    return payment


def create_payment(user, order_id, provider="manual"):
    """Return the open payment for an order, creating one when none exists."""
    if provider not in PROVIDERS:
        raise bad_request("Invalid payment provider")

    order = get_user_order(user, order_id)
    if order.status not in ("pending", "payment_rejected"):
        raise conflict("Order is not awaiting payment")
    if order.use_package or (order.price or 0) <= 0:
        raise unprocessable("This order does not require payment")
    if any(p.status == "success" for p in order.payments):
        raise conflict("Order has already been paid")

    open_payments = [p for p in order.payments if p.status in PROOF_ALLOWED_STATUSES]
    if open_payments:
        payment = open_payments[-1]
        payment.provider = provider
    else:
        payment = Payment(
            user_id=user.id,
            order_id=order.id,
            amount=order.price,
            provider=provider,
            status="pending",
            details={"type": "order"},
        )
        db.session.add(payment)
    db.session.commit()
    return payment


def create_cash_payment(user, order_id):
    payment = create_payment(user, order_id, provider="cash")
    notify_admins(
        "Cash payment",
        f"Order #{order_id} will be paid in cash at the counter.",
        action_url="/admin/payments",
    )
    db.session.commit()
    return payment


def record_payment_proof(user, payment_id, file):
    payment = db.session.get(Payment, payment_id)
    if not payment or payment.user_id != user.id:
        raise not_found("Payment not found")
    if payment.status not in PROOF_ALLOWED_STATUSES:
        raise conflict("This payment can no longer accept a receipt")
    _assert_order_open(payment)

    old_url = payment.proof_url
    payment.proof_url = store_image(file, PROOF_FOLDER)
    payment.status = "pending_verification"
    payment.reject_reason = None
    if payment.provider == "pending":
        payment.provider = "manual"

    if payment.order and payment.order.status == "payment_rejected":
        record_status_change(
            payment.order, "pending", "New payment receipt uploaded", user.id
        )

    subject = f"order #{payment.order_id}" if payment.order_id else "a package purchase"
    notify_admins(
        "Payment receipt uploaded",
        f"{user.full_name} uploaded a receipt for {subject} (RM{payment.amount:.2f}).",
        action_url="/admin/payments",
    )
    notify(
        user.id,
        "Receipt received",
        "We received your payment receipt and will verify it shortly.",
        type="payment",
    )
    db.session.commit()

    bucket = current_app.config.get("S3_BUCKET_NAME")
    if old_url and bucket and old_url != payment.proof_url:
        delete_file_from_s3(old_url, bucket)
    return payment


def _confirm_payment(payment, transaction_id=None, actor_id=None, notes=None, now=None):
    """Mark a payment successful and unlock what it paid for (caller commits)."""
    now = now or datetime.now()
    payment.status = "success"
    payment.verified_at = now
    payment.verified_by_id = actor_id
    if transaction_id:
        payment.transaction_id = transaction_id
    details = dict(payment.details or {})
    if notes:
        details["verification_notes"] = notes
    details["verified_at"] = now.isoformat()
    payment.details = details

    if payment.package_id:
        user_package = activate_package_purchase(payment, now)
        notify(
            payment.user_id,
            "Package activated",
            f"Your package is active with {user_package.remaining} credits.",
            type="package",
            action_url="/packages",
        )

    order = payment.order
    if order and order.status in ("pending", "payment_rejected"):
        record_status_change(order, "in_progress", "Payment verified", actor_id, now)
        notify(
            payment.user_id,
            "Payment confirmed",
            f"Payment for order #{order.id} is confirmed. We are stringing your racket.",
            type="payment",
            action_url=f"/orders/{order.id}",
        )
    elif not payment.package_id:
        notify(payment.user_id, "Payment confirmed", "Your payment was confirmed.", type="payment")


def _assert_order_open(payment):
    if payment.order and payment.order.status == "cancelled":
        raise conflict(f"Order #{payment.order_id} has been cancelled")


def _assert_settleable(payment):
    if payment.status == "success":
        raise conflict("Payment already verified")
    if payment.status not in SETTLEABLE_STATUSES:
        raise conflict(f"Payment is {payment.status} and cannot be settled")
    _assert_order_open(payment)


def verify_payment(admin, payment_id, transaction_id=None, notes=None, require_cash=False):
    payment = get_payment(payment_id)
    if require_cash and payment.provider != "cash":
        raise bad_request("Payment is not a cash payment")
    _assert_settleable(payment)

    _confirm_payment(payment, transaction_id, admin.id, notes)
    db.session.commit()
    logger.info(f"Payment {payment.id} verified by admin {admin.id}")
    return payment


def reject_payment(admin, payment_id, reason):
    if not reason or not str(reason).strip():
        raise bad_request("A rejection reason is required")
    reason = str(reason).strip()
    payment = get_payment(payment_id)
    if payment.status == "success":
        raise conflict("Payment already confirmed")
    _assert_settleable(payment)

    payment.status = "rejected"
    payment.reject_reason = reason
    payment.verified_by_id = admin.id
    order = payment.order
    if order and order.status == "pending":
        record_status_change(order, "payment_rejected", f"Payment rejected: {reason}", admin.id)

    notify(
        payment.user_id,
        "Payment rejected",
        f"Your payment could not be verified: {payment.reject_reason}. Please upload a new receipt.",
        type="payment",
        action_url=f"/orders/{order.id}" if order else "/packages",
    )
    db.session.commit()
    logger.info(f"Payment {payment.id} rejected by admin {admin.id}")

    user = payment.user
    result = email_service.send_payment_rejected(
        user.email, user.full_name, payment.order_id or "-", payment.reject_reason
    )
    if not result.get("success"):
        logger.warning(f"Rejection email for payment {payment.id} failed: {result.get('error')}")
    return payment


def list_pending_payments(page=1, limit=20):
    condition = or_(
        and_(Payment.provider != "cash", Payment.status == "pending_verification"),
        and_(Payment.provider == "cash", Payment.status.in_(SETTLEABLE_STATUSES)),
    )
    page = max(int(page or 1), 1)
    limit = min(max(int(limit or 20), 1), 100)
    total = db.session.scalar(select(func.count(Payment.id)).where(condition)) or 0
    payments = db.session.scalars(
        select(Payment)
        .where(condition)
        .order_by(Payment.created_at)
        .offset((page - 1) * limit)
        .limit(limit)
    ).all()
    return payments, {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": math.ceil(total / limit) if total else 0,
    }


def verify_gateway_signature(raw_body, signature, secret):
    expected = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, (signature or "").strip().lower())


def _find_callback_payment(payload):
    if payload.get("payment_id"):
        return db.session.get(Payment, payload["payment_id"])
    if payload.get("order_id"):
        order = db.session.get(Order, payload["order_id"])
        if order:
            candidates = [p for p in order.payments if p.status in SETTLEABLE_STATUSES]
            if candidates:
                return candidates[-1]
    return None


def handle_gateway_callback(raw_body, signature, now=None):
    config = current_app.config
    secret = config.get("TNG_WEBHOOK_SECRET")
    if not config.get("TNG_CALLBACK_ENABLED") or not secret:
        raise ApiError("FEATURE_DISABLED", "TNG callback is disabled")
    if not verify_gateway_signature(raw_body, signature, secret):
        raise unauthorized("Invalid signature")

    try:
        payload = json.loads(raw_body)
    except (ValueError, UnicodeDecodeError):
        raise bad_request("Invalid JSON payload")
    if not isinstance(payload, dict):
        raise bad_request("Invalid JSON payload")

    transaction_id = payload.get("transaction_id")
    status = str(payload.get("status", "")).lower()
    if not transaction_id:
        raise bad_request("transaction_id is required")

    duplicate = db.session.scalar(
        select(Payment).where(
            Payment.transaction_id == transaction_id, Payment.status == "success"
        )
    )
    if duplicate:
        return {"payment_id": duplicate.id, "status": "success", "duplicate": True}

    payment = _find_callback_payment(payload)
    if not payment:
        raise not_found("Payment not found")
    if payment.status == "success":
        return {"payment_id": payment.id, "status": "success", "duplicate": True}

    if status == "success":
        try:
            amount = float(payload["amount"]) if payload.get("amount") is not None else None
        except (TypeError, ValueError):
            raise bad_request("Invalid amount")
        if amount is not None and abs(amount - payment.amount) > 0.01:
            raise unprocessable("Amount does not match payment")
        _assert_settleable(payment)
        payment.provider = "tng"
        _confirm_payment(payment, transaction_id, notes="Touch 'n Go callback", now=now)
    elif status in ("failed", "cancelled"):
        if payment.status in SETTLEABLE_STATUSES:
            payment.status = "failed"
            payment.transaction_id = transaction_id
            notify(
                payment.user_id,
                "Payment failed",
                "Your Touch 'n Go payment did not go through. Please try again.",
                type="payment",
            )
    else:
        raise bad_request(f"Unknown payment status '{status}'")

    db.session.commit()
    logger.info(f"TNG callback {transaction_id}: payment {payment.id} -> {payment.status}")
    return {"payment_id": payment.id, "status": payment.status, "duplicate": False}
