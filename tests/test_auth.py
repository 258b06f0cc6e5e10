import json
from datetime import datetime, timedelta, timezone

import jwt
import pytest

from stringdesk.models import PointsLog, User, UserVoucher, Voucher


@pytest.fixture
def signup_data():
    return {
        "email": "newuser@example.com",
        "password": "password123",
        "full_name": "New User",
        "phone": "012-0000000",
    }


@pytest.mark.auth
class TestAuthSignup:
    """Test suite for customer signup."""

    def test_signup_success(self, client, signup_data):
        response = client.post(
            "/api/auth/signup",
            data=json.dumps(signup_data),
            content_type="application/json",
        )
        if response.status_code != 201:
            print(f"\nDEBUG ERROR: {response.data}")

        assert response.status_code == 201
        data = response.get_json()
        assert data["success"] is True
        assert data["data"]["user"]["email"] == signup_data["email"]
        assert data["data"]["user"]["role"] == "customer"
        assert data["data"]["user"]["referral_code"]
        assert data["data"]["token"]

    @pytest.mark.parametrize("field", ["email", "password", "full_name"])
    def test_signup_missing_field(self, client, signup_data, field):
        signup_data.pop(field)
        response = client.post("/api/auth/signup", json=signup_data)

        assert response.status_code == 400
        data = response.get_json()
        assert data["success"] is False
        assert data["error"]["code"] == "BAD_REQUEST"

    def test_signup_duplicate_email(self, client, signup_data):
        client.post("/api/auth/signup", json=signup_data)
        response = client.post("/api/auth/signup", json=signup_data)

        assert response.status_code == 400
        assert "already exists" in response.get_json()["error"]["message"]

    def test_signup_invalid_referral_code(self, client, signup_data):
        signup_data["referral_code"] = "NOPE1234"
        response = client.post("/api/auth/signup", json=signup_data)

        assert response.status_code == 400
        assert response.get_json()["error"]["message"] == "Invalid referral code"

    def test_signup_with_referral_rewards_both_users(
        self, client, db_session, sample_customer, signup_data
    ):
        signup_data["referral_code"] = sample_customer.referral_code.lower()
        response = client.post("/api/auth/signup", json=signup_data)

        assert response.status_code == 201
        new_user = db_session.get(User, response.get_json()["data"]["user"]["id"])
        assert new_user.referred_by_id == sample_customer.id
        assert new_user.points == 50
        assert db_session.get(User, sample_customer.id).points == 50
        assert db_session.query(PointsLog).filter_by(type="referral").count() == 2

    def test_signup_issues_auto_vouchers(self, client, db_session, signup_data):
        now = datetime.now()
        db_session.add(
            Voucher(
                code="WELCOME5",
                name="Welcome RM5",
                type="fixed",
                value=5,
                valid_from=now - timedelta(days=1),
                valid_until=now + timedelta(days=60),
                validity_days=30,
                is_auto_issue=True,
            )
        )
        db_session.commit()

        response = client.post("/api/auth/signup", json=signup_data)

        assert response.status_code == 201
        assert response.get_json()["data"]["welcome_vouchers"] == 1
        user_id = response.get_json()["data"]["user"]["id"]
        assert db_session.query(UserVoucher).filter_by(user_id=user_id).count() == 1


@pytest.mark.auth
class TestAuthLogin:
    """Test suite for login and the token gate."""

    def test_login_success(self, client, sample_customer):
        response = client.post(
            "/api/auth/login",
            json={"email": "customer@example.com", "password": "password123"},
        )

        assert response.status_code == 200
        data = response.get_json()["data"]
        assert data["user"]["id"] == sample_customer.id
        assert data["token"]

    def test_login_wrong_password(self, client, sample_customer):
        response = client.post(
            "/api/auth/login",
            json={"email": "customer@example.com", "password": "wrongpassword"},
        )

        assert response.status_code == 401
        assert response.get_json()["error"]["code"] == "UNAUTHORIZED"

    def test_login_nonexistent_user(self, client):
        response = client.post(
            "/api/auth/login",
            json={"email": "nobody@example.com", "password": "password123"},
        )
        assert response.status_code == 401

    def test_login_missing_password(self, client):
        response = client.post("/api/auth/login", json={"email": "x@example.com"})
        assert response.status_code == 400

    def test_me_requires_token(self, client):
        response = client.get("/api/auth/me")

        assert response.status_code == 401
        assert response.get_json()["error"]["code"] == "UNAUTHORIZED"

    def test_me_returns_profile_and_membership(self, client, auth_headers):
        response = client.get("/api/auth/me", headers=auth_headers)

        assert response.status_code == 200
        data = response.get_json()["data"]
        assert data["email"] == "customer@example.com"
        assert data["membership"]["tier"] == "SILVER"

    def test_expired_token_rejected(self, app, client, sample_customer):
        token = jwt.encode(
            {
                "user_id": sample_customer.id,
                "exp": datetime.now(timezone.utc) - timedelta(minutes=1),
            },
            app.config["SECRET_KEY"],
            algorithm="HS256",
        )
        response = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401
        assert response.get_json()["error"]["message"] == "Token has expired"

    def test_customer_cannot_use_admin_routes(self, client, auth_headers):
        response = client.get("/api/admin/orders", headers=auth_headers)

        assert response.status_code == 403
        assert response.get_json()["error"]["code"] == "FORBIDDEN"

    def test_update_profile(self, client, auth_headers):
        response = client.put(
            "/api/auth/me", json={"full_name": "Alice T."}, headers=auth_headers
        )

        assert response.status_code == 200
        assert response.get_json()["data"]["full_name"] == "Alice T."


@pytest.mark.auth
class TestChangePassword:
    """Test suite for changing the signed-in user's password."""

    def test_change_password_then_login(self, client, auth_headers):
        response = client.put(
            "/api/auth/password",
            json={"current_password": "password123", "new_password": "newsecret456"},
            headers=auth_headers,
        )

        assert response.status_code == 200
        assert response.get_json()["data"] == {"ok": True}

        old = client.post(
            "/api/auth/login",
            json={"email": "customer@example.com", "password": "password123"},
        )
        new = client.post(
            "/api/auth/login",
            json={"email": "customer@example.com", "password": "newsecret456"},
        )
        assert old.status_code == 401
        assert new.status_code == 200

    def test_wrong_current_password(self, client, auth_headers):
        response = client.put(
            "/api/auth/password",
            json={"current_password": "not-it", "new_password": "newsecret456"},
            headers=auth_headers,
        )

        assert response.status_code == 403
        assert response.get_json()["error"]["message"] == "Current password is incorrect"

    @pytest.mark.parametrize(
        "payload",
        [
            {"new_password": "newsecret456"},
            {"current_password": "password123"},
            {"current_password": "password123", "new_password": "short"},
        ],
    )
    def test_invalid_payload(self, client, auth_headers, payload):
        response = client.put("/api/auth/password", json=payload, headers=auth_headers)
        assert response.status_code == 400

    def test_requires_login(self, client):
        response = client.put(
            "/api/auth/password",
            json={"current_password": "password123", "new_password": "newsecret456"},
        )
        assert response.status_code == 401
