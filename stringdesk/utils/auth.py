"""
JWT session gate shared by every blueprint.

``require_user`` decodes the bearer token and stores the signed-in user on
``flask.g.current_user``; ``require_admin`` additionally checks the role.
"""

import datetime
from functools import wraps

import jwt
from flask import current_app, g, request

from ..extensions import db
from ..models import User
from .errors import ApiError, forbidden, unauthorized


def issue_token(user):
    payload = {
        "user_id": user.id,
        "email": user.email,
        "role": user.role,
        "exp": datetime.datetime.now(datetime.timezone.utc)
        + datetime.timedelta(hours=current_app.config.get("JWT_EXPIRES_HOURS", 24)),
    }
    return jwt.encode(payload, current_app.config["SECRET_KEY"], algorithm="HS256")


def get_bearer_token():
    header = request.headers.get("Authorization", "")
    if not header.startswith("Bearer "):
        return None
    return header.split(" ", 1)[1].strip() or None


def load_current_user():
    """Return the user for the request token, or raise 401."""
    token = get_bearer_token()
    if not token:
        raise unauthorized()
    try:
        payload = jwt.decode(
            token, current_app.config["SECRET_KEY"], algorithms=["HS256"]
        )
    except jwt.ExpiredSignatureError:
        raise unauthorized("Token has expired")
    except jwt.InvalidTokenError:
        raise unauthorized("Invalid token")

    user = db.session.get(User, payload.get("user_id"))
    if not user:
        raise unauthorized("User no longer exists")
    return user


def require_user(view):
    @wraps(view)
    def wrapper(*args, **kwargs):
        try:
            g.current_user = load_current_user()
        except ApiError as e:
            return e.to_response()
        return view(*args, **kwargs)

    return wrapper


def require_admin(view):
    @wraps(view)
    def wrapper(*args, **kwargs):
        try:
            user = load_current_user()
            if not user.is_admin:
                raise forbidden()
        except ApiError as e:
            return e.to_response()
        g.current_user = user
        return view(*args, **kwargs)

    return wrapper
