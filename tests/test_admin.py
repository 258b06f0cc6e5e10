from datetime import datetime, timedelta

import pytest

from stringdesk.models import Notification, StockLog, StringInventory, User, UserPackage
from stringdesk.services.notification_service import notify


@pytest.mark.admin
class TestAdminInventory:
    def test_create_string_logs_initial_stock(self, client, db_session, admin_headers):
        response = client.post(
            "/api/admin/inventory",
            json={"brand": "Li-Ning", "model": "No.1", "cost_price": 10, "selling_price": 32, "stock": 20},
            headers=admin_headers,
        )

        assert response.status_code == 201
        data = response.get_json()["data"]
        assert data["name"] == "Li-Ning No.1"
        assert data["stock"] == 20
        assert data["cost_price"] == 10.0
        log = db_session.query(StockLog).filter_by(string_id=data["id"]).one()
        assert log.type == "restock"
        assert log.stock_after == 20

    def test_create_string_requires_brand_and_model(self, client, admin_headers):
        response = client.post("/api/admin/inventory", json={"brand": "Yonex"}, headers=admin_headers)
        assert response.status_code == 400

    def test_adjust_stock(self, client, admin_headers, sample_string):
        response = client.post(
            f"/api/admin/inventory/{sample_string.id}/adjust",
            json={"change": -4, "reason": "Damaged reel"},
            headers=admin_headers,
        )

        assert response.status_code == 200
        data = response.get_json()["data"]
        assert data["string"]["stock"] == 6
        assert data["log"]["type"] == "adjustment"
        assert data["log"]["reason"] == "Damaged reel"

    @pytest.mark.parametrize("change", [0, -11, "lots"])
    def test_adjust_stock_invalid(self, client, db_session, admin_headers, sample_string, change):
        response = client.post(
            f"/api/admin/inventory/{sample_string.id}/adjust",
            json={"change": change},
            headers=admin_headers,
        )

        assert response.status_code == 400
        assert db_session.get(StringInventory, sample_string.id).stock == 10

    def test_low_stock_and_logs(self, client, admin_headers, sample_string):
        client.post(
            f"/api/admin/inventory/{sample_string.id}/adjust",
            json={"change": -8},
            headers=admin_headers,
        )

        low = client.get("/api/admin/inventory/low-stock", headers=admin_headers).get_json()["data"]
        assert [s["id"] for s in low] == [sample_string.id]
        assert low[0]["low_stock"] is True

        logs = client.get(
            f"/api/admin/inventory/logs?string_id={sample_string.id}", headers=admin_headers
        ).get_json()["data"]
        assert [log["change"] for log in logs] == [-8]

    def test_deactivated_string_hidden_from_catalog(self, client, admin_headers, sample_string):
        client.put(
            f"/api/admin/inventory/{sample_string.id}",
            json={"active": False},
            headers=admin_headers,
        )

        public = client.get("/api/strings").get_json()["data"]
        admin = client.get("/api/admin/inventory", headers=admin_headers).get_json()["data"]
        assert public == []
        assert [s["id"] for s in admin] == [sample_string.id]

    def test_delete_string_in_use(self, client, auth_headers, admin_headers, order_payload, sample_string):
        client.post("/api/orders", json=order_payload, headers=auth_headers)

        response = client.delete(f"/api/admin/inventory/{sample_string.id}", headers=admin_headers)

        assert response.status_code == 409

    def test_delete_unused_string(self, client, db_session, admin_headers, sample_string):
        response = client.delete(f"/api/admin/inventory/{sample_string.id}", headers=admin_headers)

        assert response.status_code == 200
        assert db_session.get(StringInventory, sample_string.id) is None


@pytest.mark.admin
class TestAdminUsers:
    def test_list_and_search(self, client, admin_headers, sample_customer, make_user, auth_headers, order_payload):
        make_user("bob@example.com", "Bob Lee")
        client.post("/api/orders", json=order_payload, headers=auth_headers)

        everyone = client.get("/api/admin/users", headers=admin_headers).get_json()["data"]
        assert everyone["pagination"]["total"] == 2

        found = client.get("/api/admin/users?q=alice", headers=admin_headers).get_json()["data"]
        assert [u["email"] for u in found["users"]] == ["customer@example.com"]
        assert found["users"][0]["order_count"] == 1

    def test_user_detail(self, client, admin_headers, sample_customer):
        response = client.get(f"/api/admin/users/{sample_customer.id}", headers=admin_headers)

        assert response.status_code == 200
        data = response.get_json()["data"]
        assert data["user"]["email"] == "customer@example.com"
        assert data["membership"]["tier"] == "SILVER"
        assert data["referrals"]["total_referrals"] == 0

    def test_unknown_user(self, client, admin_headers):
        response = client.get("/api/admin/users/999", headers=admin_headers)
        assert response.status_code == 404

    def test_change_role(self, client, db_session, admin_headers, sample_customer):
        response = client.put(
            f"/api/admin/users/{sample_customer.id}/role",
            json={"role": "admin"},
            headers=admin_headers,
        )

        assert response.status_code == 200
        assert response.get_json()["data"]["role"] == "admin"
        assert db_session.get(User, sample_customer.id).role == "admin"

        back = client.put(
            f"/api/admin/users/{sample_customer.id}/role",
            json={"role": "user"},
            headers=admin_headers,
        )
        assert back.get_json()["data"]["role"] == "customer"

    @pytest.mark.parametrize("role,status", [("owner", 400), (None, 400)])
    def test_change_role_invalid(self, client, admin_headers, sample_customer, role, status):
        response = client.put(
            f"/api/admin/users/{sample_customer.id}/role",
            json={"role": role},
            headers=admin_headers,
        )
        assert response.status_code == status

    def test_cannot_change_own_role(self, client, admin_headers, sample_admin):
        response = client.put(
            f"/api/admin/users/{sample_admin.id}/role",
            json={"role": "customer"},
            headers=admin_headers,
        )
        assert response.status_code == 409

    def test_change_role_unknown_user(self, client, admin_headers):
        response = client.put("/api/admin/users/999/role", json={"role": "admin"}, headers=admin_headers)
        assert response.status_code == 404

    def test_user_sub_resources(self, client, db_session, auth_headers, admin_headers, order_payload, sample_customer, sample_package):
        client.post("/api/orders", json=order_payload, headers=auth_headers)
        db_session.add(
            UserPackage(
                user_id=sample_customer.id,
                package_id=sample_package.id,
                remaining=4,
                expiry=datetime.now() + timedelta(days=90),
            )
        )
        db_session.commit()
        client.post(
            f"/api/admin/users/{sample_customer.id}/points",
            json={"amount": 40, "reason": "Tournament prize"},
            headers=admin_headers,
        )
        base = f"/api/admin/users/{sample_customer.id}"

        orders = client.get(f"{base}/orders", headers=admin_headers).get_json()["data"]
        packages = client.get(f"{base}/packages?status=active", headers=admin_headers).get_json()["data"]
        vouchers = client.get(f"{base}/vouchers", headers=admin_headers).get_json()["data"]
        points = client.get(f"{base}/points-log", headers=admin_headers).get_json()["data"]

        assert orders["pagination"]["total"] == 1
        assert [p["remaining"] for p in packages] == [4]
        assert vouchers == []
        assert points["balance"] == 40
        assert [log["amount"] for log in points["logs"]] == [40]

    @pytest.mark.parametrize("resource", ["orders", "packages", "vouchers", "points-log"])
    def test_user_sub_resources_unknown_user(self, client, admin_headers, resource):
        response = client.get(f"/api/admin/users/999/{resource}", headers=admin_headers)
        assert response.status_code == 404

    def test_user_sub_resources_require_admin(self, client, auth_headers, sample_customer):
        response = client.get(f"/api/admin/users/{sample_customer.id}/orders", headers=auth_headers)
        assert response.status_code == 403

    def test_adjust_points(self, client, db_session, admin_headers, sample_customer):
        response = client.post(
            f"/api/admin/users/{sample_customer.id}/points",
            json={"amount": 25, "reason": "Goodwill for late pickup"},
            headers=admin_headers,
        )

        assert response.status_code == 200
        data = response.get_json()["data"]
        assert data["type"] == "adjustment"
        assert data["balance_after"] == 25
        assert db_session.get(User, sample_customer.id).points == 25

        overview = client.get("/api/admin/points/overview", headers=admin_headers).get_json()["data"]
        assert overview == {"total_earned": 25, "total_spent": 0, "outstanding_balance": 25}

    def test_adjust_points_cannot_go_negative(self, client, admin_headers, sample_customer):
        response = client.post(
            f"/api/admin/users/{sample_customer.id}/points",
            json={"amount": -5, "reason": "Oops"},
            headers=admin_headers,
        )
        assert response.status_code == 409

    def test_adjust_points_requires_reason(self, client, admin_headers, sample_customer):
        response = client.post(
            f"/api/admin/users/{sample_customer.id}/points",
            json={"amount": 5},
            headers=admin_headers,
        )
        assert response.status_code == 400


class TestNotifications:
    def test_list_read_and_delete(self, client, db_session, auth_headers, sample_customer):
        notify(sample_customer.id, "First", "One")
        notify(sample_customer.id, "Second", "Two")
        db_session.commit()

        data = client.get("/api/notifications", headers=auth_headers).get_json()["data"]
        assert data["unread_count"] == 2
        assert [n["title"] for n in data["notifications"]] == ["Second", "First"]

        first_id = data["notifications"][1]["id"]
        read = client.put(f"/api/notifications/{first_id}/read", headers=auth_headers)
        assert read.get_json()["data"]["read"] is True

        unread = client.get("/api/notifications?unread=true", headers=auth_headers).get_json()["data"]
        assert [n["title"] for n in unread["notifications"]] == ["Second"]

        all_read = client.put("/api/notifications/read-all", headers=auth_headers)
        assert all_read.get_json()["data"] == {"updated": 1}

        deleted = client.delete(f"/api/notifications/{first_id}", headers=auth_headers)
        assert deleted.status_code == 200
        assert db_session.query(Notification).filter_by(user_id=sample_customer.id).count() == 1

    def test_cannot_touch_other_users_notification(self, client, db_session, make_user, headers_for, sample_customer):
        notify(sample_customer.id, "Private", "Only for Alice")
        db_session.commit()
        notification = db_session.query(Notification).one()
        bob = make_user("bob@example.com", "Bob Lee")

        response = client.put(f"/api/notifications/{notification.id}/read", headers=headers_for(bob))

        assert response.status_code == 404
