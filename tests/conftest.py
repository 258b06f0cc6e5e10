"""
Pytest configuration and shared fixtures for the StringDesk tests.
"""

import os

os.environ["TESTING"] = "True"
os.environ.setdefault("FLASK_ENV", "testing")

import hashlib  # noqa: E402
import hmac  # noqa: E402
import io  # noqa: E402
import sys  # noqa: E402
from datetime import datetime, timedelta  # noqa: E402

import bcrypt  # noqa: E402
import pytest  # noqa: E402
from flask import Flask  # noqa: E402

from main import create_app  # noqa: E402
from stringdesk.extensions import db as database  # noqa: E402
from stringdesk.models import Base, Package, StringInventory, User, Voucher  # noqa: E402
from stringdesk.utils import request_cache  # noqa: E402
from stringdesk.utils.auth import issue_token  # noqa: E402

TNG_SECRET = "tng-test-secret"
CRON_SECRET = "cron-test-secret"

# Smallest payload that passes the PNG signature check
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


def is_safe_test_database(db_uri: str) -> bool:
    """Refuse to run against anything that does not look like a test database."""
    if not db_uri:
        return False

    dangerous_patterns = ["rlwy.net", "railway.internal", "amazonaws.com", "prod"]
    for pattern in dangerous_patterns:
        if pattern in db_uri.lower():
            print(f" DANGER: Found production pattern '{pattern}' in database URL!")
            return False

    safe_patterns = ["sqlite", "test", "localhost", "127.0.0.1"]
    return any(pattern in db_uri.lower() for pattern in safe_patterns)


@pytest.fixture(scope="session")
def app():
    """Create and configure a test app instance."""
    app = create_app()
    app.config.update(
        {
            "TESTING": True,
            "SECRET_KEY": "test-secret-key-for-testing-only",
            "TNG_CALLBACK_ENABLED": True,
            "TNG_WEBHOOK_SECRET": TNG_SECRET,
            "CRON_SECRET": CRON_SECRET,
            "S3_BUCKET_NAME": None,
        }
    )

    db_uri = app.config.get("SQLALCHEMY_DATABASE_URI", "")
    if not is_safe_test_database(db_uri):
        print(f" DANGER: Database URL appears to be production: {db_uri}")
        sys.exit(1)

    print(f"✅ Running tests against: {db_uri}")
    yield app


@pytest.fixture
def db_session(app: Flask):
    """Fresh tables for every test."""
    with app.app_context():
        Base.metadata.create_all(bind=database.engine)
        request_cache.clear()

        yield database.session

        database.session.rollback()
        database.session.remove()
        Base.metadata.drop_all(bind=database.engine)


@pytest.fixture
def client(app, db_session):
    return app.test_client()


@pytest.fixture
def upload_dir(app, tmp_path, monkeypatch):
    monkeypatch.setitem(app.config, "UPLOAD_DIR", str(tmp_path))
    return tmp_path


@pytest.fixture
def make_user(db_session):
    """Factory for extra users: make_user("bob@example.com", full_name=..., points=...)."""

    def _make(email, full_name="Test Customer", role="customer", points=0, code=None):
        user = User(
            email=email,
            password_hash=bcrypt.hashpw(b"password123", bcrypt.gensalt()),
            full_name=full_name,
            phone="012-3456789",
            role=role,
            points=points,
            referral_code=code,
        )
        db_session.add(user)
        db_session.commit()
        return user

    return _make


@pytest.fixture
def headers_for(app):
    def _headers(user):
        return {"Authorization": f"Bearer {issue_token(user)}"}

    return _headers


@pytest.fixture
def png_file():
    """Fresh multipart file tuple for each call."""

    def _file(name="receipt.png"):
        return (io.BytesIO(PNG_BYTES), name, "image/png")

    return _file


@pytest.fixture
def sample_customer(make_user):
    return make_user("customer@example.com", "Alice Tan", code="ALICE001")


@pytest.fixture
def sample_admin(make_user):
    return make_user("admin@example.com", "Shop Admin", role="admin", code="ADMIN001")


@pytest.fixture
def auth_headers(sample_customer, headers_for):
    return headers_for(sample_customer)


@pytest.fixture
def admin_headers(sample_admin, headers_for):
    return headers_for(sample_admin)


@pytest.fixture
def sample_string(db_session):
    string = StringInventory(
        brand="Yonex",
        model="BG66 Ultimax",
        cost_price=12.0,
        selling_price=38.0,
        stock=10,
        minimum_stock=3,
    )
    db_session.add(string)
    db_session.commit()
    return string


@pytest.fixture
def sample_package(db_session):
    package = Package(
        name="5x Restring",
        description="Five restrings at a discount",
        times=5,
        price=150.0,
        validity_days=180,
        renewal_discount=10,
        featured=True,
    )
    db_session.add(package)
    db_session.commit()
    return package


@pytest.fixture
def sample_voucher(db_session):
    now = datetime.now()
    voucher = Voucher(
        code="SAVE10",
        name="RM10 off",
        type="fixed",
        value=10,
        min_purchase=30,
        valid_from=now - timedelta(days=1),
        valid_until=now + timedelta(days=30),
        max_redemptions_per_user=1,
    )
    db_session.add(voucher)
    db_session.commit()
    return voucher


@pytest.fixture
def order_payload(sample_string):
    return {
        "string_id": sample_string.id,
        "tension_vertical": 24,
        "tension_horizontal": 26,
        "racket_brand": "Yonex",
        "racket_model": "Astrox 88D",
    }


@pytest.fixture
def tng_sign():
    """Sign a raw callback body the way the Touch 'n Go gateway does."""

    def _sign(body):
        return hmac.new(TNG_SECRET.encode("utf-8"), body, hashlib.sha256).hexdigest()

    return _sign


@pytest.fixture
def cron_headers():
    return {"Authorization": f"Bearer {CRON_SECRET}"}
