import secrets

import bcrypt
from flask import Blueprint, current_app, g, request
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import User
from ..services.membership_service import get_membership_info
from ..services.referral_service import find_referrer_by_code, process_referral_reward
from ..services.voucher_service import issue_welcome_vouchers
from ..utils.auth import issue_token, require_user
from ..utils.errors import ApiError, error_response, internal_error, success_response
from ..utils.serializers import serialize_user

auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def generate_referral_code():
    while True:
        code = secrets.token_hex(4).upper()
        if not db.session.scalar(select(User.id).where(User.referral_code == code)):
            return code


@auth_bp.route("/signup", methods=["POST"])
def signup_user():
    """
    Register a customer account
    ---
    tags:
      - Authentication
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [email, password, full_name]
          properties:
            email:
              type: string
            password:
              type: string
            full_name:
              type: string
            phone:
              type: string
            referral_code:
              type: string
    responses:
      201:
        description: User registered
      400:
        description: Missing fields, duplicate email or invalid referral code
    """
    try:
        data = request.get_json(silent=True) or {}
        email = (data.get("email") or "").strip().lower()
        password = data.get("password")
        full_name = (data.get("full_name") or "").strip()
        phone = data.get("phone")
        referral_code = (data.get("referral_code") or "").strip()

        if not email or not password or not full_name:
            return error_response(
                "BAD_REQUEST", "Missing required fields (email, password, full_name)"
            )
        if len(password) < 6:
            return error_response(
                "BAD_REQUEST", "Password must be at least 6 characters"
            )

        existing = db.session.scalar(select(User).where(User.email == email))
        if existing:
            return error_response("BAD_REQUEST", "Email already exists")

        referrer = None
        if referral_code:
            referrer = find_referrer_by_code(referral_code)
            if not referrer:
                return error_response("BAD_REQUEST", "Invalid referral code")

        hashed_pw = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt())
        user = User(
            email=email,
            password_hash=hashed_pw,
            full_name=full_name,
            phone=phone,
            role="customer",
            referral_code=generate_referral_code(),
            referred_by_id=referrer.id if referrer else None,
        )
        db.session.add(user)
        db.session.flush()

        vouchers = issue_welcome_vouchers(user)
        if referrer:
            process_referral_reward(referrer, user)

        db.session.commit()
        current_app.logger.info(f"User {user.id} signed up")

        return success_response(
            {
                "user": serialize_user(user),
                "token": issue_token(user),
                "welcome_vouchers": len(vouchers),
            },
            "User registered successfully",
            201,
        )

    except ApiError as e:
        db.session.rollback()
        return e.to_response()

    except IntegrityError as e:
        db.session.rollback()
        current_app.logger.warning(f"Signup integrity error: {e.orig}")
        return error_response("BAD_REQUEST", "Email already exists")

    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Signup failed: {e}")
        return internal_error()


@auth_bp.route("/login", methods=["POST"])
def login_user():
    """
    Log in and receive a bearer token
    ---
    tags:
      - Authentication
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          properties:
            email:
              type: string
            password:
              type: string
    responses:
      200:
        description: Token issued
      401:
        description: Invalid credentials
    """
    try:
        data = request.get_json(silent=True) or {}
        email = (data.get("email") or "").strip().lower()
        password = data.get("password")

        if not email or not password:
            return error_response("BAD_REQUEST", "Email and password required")

        user = db.session.scalar(select(User).where(User.email == email))
        if not user or not user.password_hash:
            return error_response("UNAUTHORIZED", "Invalid credentials")

        stored_hash = user.password_hash
        if isinstance(stored_hash, str):
            stored_hash = stored_hash.encode("utf-8")

        if not bcrypt.checkpw(password.encode("utf-8"), stored_hash):
            return error_response("UNAUTHORIZED", "Invalid credentials")

        return success_response(
            {"token": issue_token(user), "user": serialize_user(user)},
            "Login successful",
        )

    except Exception as e:
        current_app.logger.error(f"Login failed: {e}")
        return internal_error()


@auth_bp.route("/me", methods=["GET"])
@require_user
def get_me():
    """
    Current user profile with membership progress
    ---
    tags:
      - Authentication
    security:
      - Bearer: []
    responses:
      200:
        description: Profile
      401:
        description: Missing or invalid token
    """
    try:
        data = serialize_user(g.current_user)
        data["membership"] = get_membership_info(g.current_user)
        return success_response(data)
    except Exception as e:
        current_app.logger.error(f"Failed to load profile: {e}")
        return internal_error()


@auth_bp.route("/me", methods=["PUT"])
@require_user
def update_me():
    try:
        data = request.get_json(silent=True) or {}
        user = g.current_user
        if "full_name" in data:
            if not str(data["full_name"]).strip():
                return error_response("BAD_REQUEST", "full_name cannot be empty")
            user.full_name = str(data["full_name"]).strip()
        if "phone" in data:
            user.phone = data["phone"]
        db.session.commit()
        return success_response(serialize_user(user), "Profile updated")
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Failed to update profile: {e}")
        return internal_error()


@auth_bp.route("/password", methods=["PUT"])
@require_user
def change_password():
    """
    Change the signed-in user's password
    ---
    tags:
      - Authentication
    security:
      - Bearer: []
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [current_password, new_password]
          properties:
            current_password:
              type: string
            new_password:
              type: string
    responses:
      200:
        description: Password updated
      400:
        description: Missing fields or new password too short
      403:
        description: Current password is incorrect
    """
    try:
        data = request.get_json(silent=True) or {}
        current_password = data.get("current_password") or ""
        new_password = data.get("new_password") or ""

        if not current_password or not new_password:
            return error_response(
                "BAD_REQUEST", "Both 'current_password' and 'new_password' are required"
            )
        if len(new_password) < 6:
            return error_response(
                "BAD_REQUEST", "Password must be at least 6 characters"
            )

        user = g.current_user
        stored_hash = user.password_hash
        if isinstance(stored_hash, str):
            stored_hash = stored_hash.encode("utf-8")
        if not stored_hash or not bcrypt.checkpw(current_password.encode("utf-8"), stored_hash):
            return error_response("FORBIDDEN", "Current password is incorrect")

        user.password_hash = bcrypt.hashpw(new_password.encode("utf-8"), bcrypt.gensalt())
        db.session.commit()
        current_app.logger.info(f"User {user.id} changed password")
        return success_response({"ok": True}, "Password updated successfully")

    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Failed to change password: {e}")
        return internal_error()
