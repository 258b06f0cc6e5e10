from datetime import datetime, timedelta

import pytest

from stringdesk.models import Order, Package, UserPackage


@pytest.fixture
def intro_package(db_session):
    package = Package(
        name="First Timer 3x",
        times=3,
        price=90.0,
        validity_days=90,
        is_first_order_only=True,
    )
    db_session.add(package)
    db_session.commit()
    return package


def buy(client, headers, package_id, method="manual"):
    return client.post(
        f"/api/packages/{package_id}/buy",
        json={"payment_method": method},
        headers=headers,
    )


@pytest.mark.packages
class TestPackageCatalog:
    def test_anonymous_listing_hides_first_order_packages(self, client, sample_package, intro_package):
        response = client.get("/api/packages")

        assert response.status_code == 200
        names = [p["name"] for p in response.get_json()["data"]]
        assert names == ["5x Restring"]

    def test_new_customer_sees_first_order_packages(self, client, auth_headers, sample_package, intro_package):
        response = client.get("/api/packages", headers=auth_headers)

        names = [p["name"] for p in response.get_json()["data"]]
        assert names == ["First Timer 3x", "5x Restring"]

    def test_first_order_package_hidden_after_paid_order(self, client, db_session, auth_headers, sample_customer, sample_package, intro_package):
        db_session.add(Order(user_id=sample_customer.id, status="completed", price=38))
        db_session.commit()

        response = client.get("/api/packages", headers=auth_headers)

        names = [p["name"] for p in response.get_json()["data"]]
        assert names == ["5x Restring"]

    def test_renewal_discount_near_expiry(self, client, db_session, auth_headers, sample_customer, sample_package):
        db_session.add(
            UserPackage(
                user_id=sample_customer.id,
                package_id=sample_package.id,
                remaining=1,
                status="active",
                expiry=datetime.now() + timedelta(days=3),
            )
        )
        db_session.commit()

        response = client.get("/api/packages", headers=auth_headers)

        package = response.get_json()["data"][0]
        assert package["applied_renewal_discount"] == 10
        assert package["final_price"] == 135.0

    def test_no_renewal_discount_outside_window(self, client, db_session, auth_headers, sample_customer, sample_package):
        db_session.add(
            UserPackage(
                user_id=sample_customer.id,
                package_id=sample_package.id,
                remaining=3,
                status="active",
                expiry=datetime.now() + timedelta(days=30),
            )
        )
        db_session.commit()

        response = client.get("/api/packages", headers=auth_headers)

        package = response.get_json()["data"][0]
        assert package["applied_renewal_discount"] == 0
        assert package["final_price"] == 150.0

    def test_featured(self, client, sample_package, intro_package):
        response = client.get("/api/packages/featured")

        assert [p["id"] for p in response.get_json()["data"]] == [sample_package.id]


@pytest.mark.packages
@pytest.mark.payments
class TestPackagePurchase:
    def test_buy_creates_pending_payment(self, client, auth_headers, sample_package):
        response = buy(client, auth_headers, sample_package.id)

        assert response.status_code == 201
        data = response.get_json()["data"]
        assert data["package_id"] == sample_package.id
        assert data["order_id"] is None
        assert data["amount"] == 150.0
        assert data["status"] == "pending"
        assert data["metadata"]["type"] == "package_purchase"

        pending = client.get("/api/packages/mine/pending-payments", headers=auth_headers)
        assert [p["id"] for p in pending.get_json()["data"]] == [data["id"]]

    def test_buy_unknown_package(self, client, auth_headers):
        assert buy(client, auth_headers, 404).status_code == 404

    def test_buy_inactive_package(self, client, db_session, auth_headers, sample_package):
        sample_package.active = False
        db_session.commit()

        assert buy(client, auth_headers, sample_package.id).status_code == 409

    def test_buy_invalid_payment_method(self, client, auth_headers, sample_package):
        assert buy(client, auth_headers, sample_package.id, "bitcoin").status_code == 400

    def test_first_order_package_blocked_for_returning_customer(self, client, db_session, auth_headers, sample_customer, intro_package):
        db_session.add(Order(user_id=sample_customer.id, status="in_progress", price=38))
        db_session.commit()

        assert buy(client, auth_headers, intro_package.id).status_code == 409

    def test_verification_activates_package_once(self, client, db_session, auth_headers, admin_headers, sample_package):
        payment_id = buy(client, auth_headers, sample_package.id).get_json()["data"]["id"]

        response = client.post(f"/api/admin/payments/{payment_id}/verify", headers=admin_headers)
        assert response.status_code == 200

        user_packages = db_session.query(UserPackage).filter_by(payment_id=payment_id).all()
        assert len(user_packages) == 1
        assert user_packages[0].remaining == 5
        assert user_packages[0].status == "active"
        assert user_packages[0].expiry > datetime.now() + timedelta(days=179)

        again = client.post(f"/api/admin/payments/{payment_id}/verify", headers=admin_headers)
        assert again.status_code == 409
        assert db_session.query(UserPackage).filter_by(payment_id=payment_id).count() == 1

        mine = client.get("/api/packages/mine?status=active", headers=auth_headers)
        data = mine.get_json()["data"]
        assert len(data) == 1
        assert data[0]["package_name"] == "5x Restring"
        assert data[0]["total"] == 5

    def test_cash_package_purchase(self, client, db_session, auth_headers, admin_headers, sample_package):
        payment_id = buy(client, auth_headers, sample_package.id, "cash").get_json()["data"]["id"]

        response = client.post(f"/api/admin/payments/{payment_id}/confirm-cash", headers=admin_headers)

        assert response.status_code == 200
        assert db_session.query(UserPackage).filter_by(payment_id=payment_id).count() == 1

    def test_invalid_status_filter(self, client, auth_headers):
        response = client.get("/api/packages/mine?status=unknown", headers=auth_headers)
        assert response.status_code == 400


@pytest.mark.packages
@pytest.mark.admin
class TestAdminPackages:
    def test_create_package(self, client, admin_headers):
        response = client.post(
            "/api/admin/packages",
            json={"name": "10x Restring", "times": 10, "price": 280, "validity_days": 365},
            headers=admin_headers,
        )

        assert response.status_code == 201
        data = response.get_json()["data"]
        assert data["times"] == 10
        assert data["price"] == 280.0

    def test_create_package_requires_fields(self, client, admin_headers):
        response = client.post("/api/admin/packages", json={"name": "Broken"}, headers=admin_headers)
        assert response.status_code == 400

    def test_renewal_discount_range(self, client, admin_headers, sample_package):
        response = client.put(
            f"/api/admin/packages/{sample_package.id}",
            json={"renewal_discount": 120},
            headers=admin_headers,
        )
        assert response.status_code == 400

    def test_toggle_package(self, client, admin_headers, sample_package):
        response = client.post(f"/api/admin/packages/{sample_package.id}/toggle", headers=admin_headers)

        assert response.status_code == 200
        assert response.get_json()["data"]["active"] is False
        assert client.get("/api/packages").get_json()["data"] == []

    def test_sales_stats(self, client, auth_headers, admin_headers, sample_package):
        payment_id = buy(client, auth_headers, sample_package.id).get_json()["data"]["id"]
        client.post(f"/api/admin/payments/{payment_id}/verify", headers=admin_headers)

        response = client.get("/api/admin/packages/stats", headers=admin_headers)

        assert response.status_code == 200
        stats = response.get_json()["data"]
        assert stats[0]["package_id"] == sample_package.id
        assert stats[0]["sold"] == 1
        assert stats[0]["revenue"] == 150.0
