from datetime import datetime, timedelta

import pytest

from stringdesk.models import PointsLog, User, UserVoucher, Voucher


@pytest.fixture
def points_voucher(db_session):
    now = datetime.now()
    voucher = Voucher(
        code="PTS15",
        name="RM15 for 300 points",
        type="fixed",
        value=15,
        points_cost=300,
        valid_from=now - timedelta(days=1),
        valid_until=now + timedelta(days=90),
        validity_days=30,
        max_redemptions_per_user=2,
    )
    db_session.add(voucher)
    db_session.commit()
    return voucher


@pytest.mark.vouchers
class TestVoucherRedemption:
    def test_redeem_code(self, client, db_session, auth_headers, sample_voucher):
        response = client.post("/api/vouchers/redeem", json={"code": " save10 "}, headers=auth_headers)

        assert response.status_code == 201
        data = response.get_json()["data"]
        assert data["status"] == "active"
        assert data["voucher"]["code"] == "SAVE10"
        assert db_session.get(Voucher, sample_voucher.id).used_count == 1

    def test_redeem_code_twice(self, client, auth_headers, sample_voucher):
        client.post("/api/vouchers/redeem", json={"code": "SAVE10"}, headers=auth_headers)

        response = client.post("/api/vouchers/redeem", json={"code": "SAVE10"}, headers=auth_headers)

        assert response.status_code == 409

    def test_redeem_unknown_code(self, client, auth_headers):
        response = client.post("/api/vouchers/redeem", json={"code": "NOPE"}, headers=auth_headers)
        assert response.status_code == 404

    def test_redeem_blank_code(self, client, auth_headers):
        response = client.post("/api/vouchers/redeem", json={"code": ""}, headers=auth_headers)
        assert response.status_code == 400

    def test_redeem_expired_window(self, client, db_session, auth_headers, sample_voucher):
        sample_voucher.valid_until = datetime.now() - timedelta(hours=1)
        db_session.commit()

        response = client.post("/api/vouchers/redeem", json={"code": "SAVE10"}, headers=auth_headers)

        assert response.status_code == 409

    def test_redeem_exhausted(self, client, db_session, auth_headers, sample_voucher):
        sample_voucher.max_uses = 1
        sample_voucher.used_count = 1
        db_session.commit()

        response = client.post("/api/vouchers/redeem", json={"code": "SAVE10"}, headers=auth_headers)

        assert response.status_code == 409

    def test_redeem_with_points(self, client, db_session, make_user, headers_for, points_voucher):
        user = make_user("saver@example.com", "Sam Saver", points=500)

        response = client.post(
            f"/api/vouchers/{points_voucher.id}/redeem-points", headers=headers_for(user)
        )

        assert response.status_code == 201
        data = response.get_json()["data"]
        assert data["points_balance"] == 200
        expiry = datetime.fromisoformat(data["voucher"]["expiry"])
        assert expiry <= datetime.now() + timedelta(days=30)
        log = db_session.query(PointsLog).filter_by(user_id=user.id).one()
        assert log.amount == -300
        assert log.balance_after == 200

    def test_redeem_with_points_insufficient(self, client, db_session, make_user, headers_for, points_voucher):
        user = make_user("broke@example.com", "Bo Broke", points=100)

        response = client.post(
            f"/api/vouchers/{points_voucher.id}/redeem-points", headers=headers_for(user)
        )

        assert response.status_code == 409
        assert db_session.get(User, user.id).points == 100
        assert db_session.query(UserVoucher).filter_by(user_id=user.id).count() == 0

    def test_redeem_with_points_requires_points_cost(self, client, auth_headers, sample_voucher):
        response = client.post(
            f"/api/vouchers/{sample_voucher.id}/redeem-points", headers=auth_headers
        )
        assert response.status_code == 400


@pytest.mark.vouchers
class TestVoucherWallet:
    def test_wallet_reports_expired_vouchers(self, client, db_session, auth_headers, sample_customer, sample_voucher):
        db_session.add_all(
            [
                UserVoucher(
                    user_id=sample_customer.id,
                    voucher_id=sample_voucher.id,
                    status="active",
                    expiry=datetime.now() + timedelta(days=5),
                ),
                UserVoucher(
                    user_id=sample_customer.id,
                    voucher_id=sample_voucher.id,
                    status="active",
                    expiry=datetime.now() - timedelta(days=1),
                ),
                UserVoucher(
                    user_id=sample_customer.id,
                    voucher_id=sample_voucher.id,
                    status="used",
                    expiry=datetime.now() + timedelta(days=5),
                ),
            ]
        )
        db_session.commit()

        wallet = client.get("/api/vouchers/mine", headers=auth_headers).get_json()["data"]
        assert sorted(v["status"] for v in wallet) == ["active", "expired", "used"]

        expired = client.get("/api/vouchers/mine?status=expired", headers=auth_headers)
        assert len(expired.get_json()["data"]) == 1

        stats = client.get("/api/vouchers/stats", headers=auth_headers).get_json()["data"]
        assert stats == {"total": 3, "used": 1, "active": 1, "expired": 1, "usage_rate": 33.3}

    def test_redeemable_catalog(self, client, make_user, headers_for, points_voucher, sample_voucher):
        user = make_user("saver@example.com", "Sam Saver", points=350)

        response = client.get("/api/vouchers/redeemable", headers=headers_for(user))

        data = response.get_json()["data"]
        assert [v["code"] for v in data] == ["PTS15"]
        assert data[0]["can_afford"] is True
        assert data[0]["remaining_redemptions"] == 2


@pytest.mark.vouchers
@pytest.mark.admin
class TestAdminVouchers:
    def test_create_voucher(self, client, admin_headers):
        response = client.post(
            "/api/admin/vouchers",
            json={
                "code": "pct20",
                "name": "20% off",
                "type": "percentage",
                "value": 20,
                "valid_until": (datetime.now() + timedelta(days=30)).isoformat(),
            },
            headers=admin_headers,
        )

        assert response.status_code == 201
        assert response.get_json()["data"]["code"] == "PCT20"

    def test_create_duplicate_code(self, client, admin_headers, sample_voucher):
        response = client.post(
            "/api/admin/vouchers",
            json={
                "code": "SAVE10",
                "name": "Again",
                "type": "fixed",
                "value": 5,
                "valid_until": (datetime.now() + timedelta(days=30)).isoformat(),
            },
            headers=admin_headers,
        )
        assert response.status_code == 409

    @pytest.mark.parametrize(
        "overrides",
        [{"type": "bogus"}, {"value": 0}, {"type": "percentage", "value": 150}, {"valid_until": "soon"}],
    )
    def test_create_voucher_validation(self, client, admin_headers, overrides):
        payload = {
            "code": "BAD",
            "name": "Bad voucher",
            "type": "fixed",
            "value": 5,
            "valid_until": (datetime.now() + timedelta(days=30)).isoformat(),
        }
        payload.update(overrides)

        response = client.post("/api/admin/vouchers", json=payload, headers=admin_headers)

        assert response.status_code == 400

    def test_delete_unused_voucher(self, client, db_session, admin_headers, sample_voucher):
        response = client.delete(f"/api/admin/vouchers/{sample_voucher.id}", headers=admin_headers)

        assert response.get_json()["data"] == {"result": "deleted"}
        assert db_session.query(Voucher).count() == 0

    def test_delete_issued_voucher_deactivates(self, client, db_session, auth_headers, admin_headers, sample_voucher):
        client.post("/api/vouchers/redeem", json={"code": "SAVE10"}, headers=auth_headers)

        response = client.delete(f"/api/admin/vouchers/{sample_voucher.id}", headers=admin_headers)

        assert response.get_json()["data"] == {"result": "deactivated"}
        assert db_session.get(Voucher, sample_voucher.id).active is False

    def test_distribute_to_customers(self, client, db_session, admin_headers, sample_customer, make_user, sample_voucher):
        bob = make_user("bob@example.com", "Bob Lee")

        response = client.post(
            f"/api/admin/vouchers/{sample_voucher.id}/distribute",
            json={"user_ids": [bob.id]},
            headers=admin_headers,
        )

        assert response.get_json()["data"] == {"distributed": 1}
        assert db_session.query(UserVoucher).filter_by(user_id=bob.id).count() == 1
        assert db_session.query(UserVoucher).filter_by(user_id=sample_customer.id).count() == 0

    def test_usage_stats(self, client, auth_headers, admin_headers, sample_voucher):
        client.post("/api/vouchers/redeem", json={"code": "SAVE10"}, headers=auth_headers)

        response = client.get("/api/admin/vouchers/stats", headers=admin_headers)

        stats = response.get_json()["data"]
        assert stats == [
            {
                "voucher_id": sample_voucher.id,
                "code": "SAVE10",
                "name": "RM10 off",
                "issued": 1,
                "used": 0,
                "usage_rate": 0,
            }
        ]
