import io
import json

import pytest

from stringdesk.models import Notification, Order, Payment


@pytest.fixture
def placed_order(client, auth_headers, order_payload):
    """A pending RM38 order with its open payment."""

    def _place(**overrides):
        payload = dict(order_payload, **overrides)
        response = client.post("/api/orders", json=payload, headers=auth_headers)
        assert response.status_code == 201, response.get_json()
        return response.get_json()["data"]

    return _place


def upload_proof(client, headers, payment_id, file):
    return client.post(
        f"/api/payments/{payment_id}/proof",
        data={"file": file},
        headers=headers,
        content_type="multipart/form-data",
    )


@pytest.mark.payments
class TestPaymentProof:
    def test_upload_moves_payment_to_verification(self, client, db_session, auth_headers, placed_order, upload_dir, png_file):
        order = placed_order()
        payment_id = order["payments"][0]["id"]

        response = upload_proof(client, auth_headers, payment_id, png_file())

        assert response.status_code == 200
        data = response.get_json()["data"]
        assert data["status"] == "pending_verification"
        assert data["proof_url"].startswith("/uploads/payment-proofs/")
        assert (upload_dir / data["proof_url"][len("/uploads/"):]).exists()

    def test_upload_rejects_non_image(self, client, auth_headers, placed_order, upload_dir):
        order = placed_order()
        payment_id = order["payments"][0]["id"]

        response = upload_proof(
            client, auth_headers, payment_id, (io.BytesIO(b"%PDF-1.4"), "receipt.pdf", "application/pdf")
        )

        assert response.status_code == 400

    def test_upload_rejects_mislabelled_content(self, client, db_session, auth_headers, placed_order, upload_dir):
        order = placed_order()
        payment_id = order["payments"][0]["id"]

        response = upload_proof(
            client, auth_headers, payment_id, (io.BytesIO(b"%PDF-1.4 not an image"), "receipt.png", "image/png")
        )

        assert response.status_code == 400
        assert db_session.get(Payment, payment_id).status == "pending"
        assert not any(upload_dir.rglob("*.png"))

    def test_upload_requires_file(self, client, auth_headers, placed_order):
        order = placed_order()
        response = client.post(
            f"/api/payments/{order['payments'][0]['id']}/proof",
            data={},
            headers=auth_headers,
            content_type="multipart/form-data",
        )
        assert response.status_code == 400

    def test_upload_for_someone_elses_payment(self, client, make_user, headers_for, placed_order, upload_dir, png_file):
        order = placed_order()
        other = make_user("bob@example.com", "Bob Lee")

        response = upload_proof(client, headers_for(other), order["payments"][0]["id"], png_file())

        assert response.status_code == 404

    def test_reupload_after_rejection_reopens_order(self, client, db_session, auth_headers, admin_headers, placed_order, upload_dir, png_file):
        order = placed_order()
        payment_id = order["payments"][0]["id"]
        upload_proof(client, auth_headers, payment_id, png_file())
        client.post(
            f"/api/admin/payments/{payment_id}/reject",
            json={"reason": "Blurry receipt"},
            headers=admin_headers,
        )
        assert db_session.get(Order, order["id"]).status == "payment_rejected"

        response = upload_proof(client, auth_headers, payment_id, png_file("retake.png"))

        assert response.status_code == 200
        assert response.get_json()["data"]["reject_reason"] is None
        assert db_session.get(Order, order["id"]).status == "pending"


@pytest.mark.payments
@pytest.mark.admin
class TestAdminPaymentDecisions:
    def test_verify_moves_order_in_progress(self, client, db_session, auth_headers, admin_headers, placed_order, upload_dir, png_file, sample_customer):
        order = placed_order()
        payment_id = order["payments"][0]["id"]
        upload_proof(client, auth_headers, payment_id, png_file())

        response = client.post(
            f"/api/admin/payments/{payment_id}/verify",
            json={"transaction_id": "BANK-123", "notes": "Matched statement"},
            headers=admin_headers,
        )

        assert response.status_code == 200
        data = response.get_json()["data"]
        assert data["status"] == "success"
        assert data["transaction_id"] == "BANK-123"
        assert data["metadata"]["verification_notes"] == "Matched statement"
        assert db_session.get(Order, order["id"]).status == "in_progress"
        titles = [
            n.title
            for n in db_session.query(Notification).filter_by(user_id=sample_customer.id)
        ]
        assert "Payment confirmed" in titles

    def test_verify_twice_conflicts(self, client, auth_headers, admin_headers, placed_order, upload_dir, png_file):
        order = placed_order()
        payment_id = order["payments"][0]["id"]
        upload_proof(client, auth_headers, payment_id, png_file())
        client.post(f"/api/admin/payments/{payment_id}/verify", headers=admin_headers)

        response = client.post(f"/api/admin/payments/{payment_id}/verify", headers=admin_headers)

        assert response.status_code == 409

    def test_reject_requires_reason(self, client, admin_headers, placed_order):
        order = placed_order()

        response = client.post(
            f"/api/admin/payments/{order['payments'][0]['id']}/reject",
            json={"reason": "   "},
            headers=admin_headers,
        )

        assert response.status_code == 400

    def test_reject_marks_order(self, client, db_session, admin_headers, placed_order):
        order = placed_order()
        payment_id = order["payments"][0]["id"]

        response = client.post(
            f"/api/admin/payments/{payment_id}/reject",
            json={"reason": "Amount does not match"},
            headers=admin_headers,
        )

        assert response.status_code == 200
        assert response.get_json()["data"]["status"] == "rejected"
        assert response.get_json()["data"]["reject_reason"] == "Amount does not match"
        assert db_session.get(Order, order["id"]).status == "payment_rejected"

    def test_confirm_cash(self, client, db_session, admin_headers, placed_order):
        order = placed_order(payment_method="cash")
        payment_id = order["payments"][0]["id"]
        assert order["payments"][0]["provider"] == "cash"

        response = client.post(f"/api/admin/payments/{payment_id}/confirm-cash", headers=admin_headers)

        assert response.status_code == 200
        assert db_session.get(Payment, payment_id).status == "success"
        assert db_session.get(Order, order["id"]).status == "in_progress"

    def test_confirm_cash_rejects_other_providers(self, client, admin_headers, placed_order):
        order = placed_order()

        response = client.post(
            f"/api/admin/payments/{order['payments'][0]['id']}/confirm-cash",
            headers=admin_headers,
        )

        assert response.status_code == 400

    def test_pending_queue(self, client, auth_headers, admin_headers, placed_order, upload_dir, png_file):
        receipt_order = placed_order()
        cash_order = placed_order(payment_method="cash")
        untouched = placed_order()
        upload_proof(client, auth_headers, receipt_order["payments"][0]["id"], png_file())

        response = client.get("/api/admin/payments/pending", headers=admin_headers)

        assert response.status_code == 200
        ids = {p["order_id"] for p in response.get_json()["data"]["payments"]}
        assert ids == {receipt_order["id"], cash_order["id"]}
        assert untouched["id"] not in ids

    def test_customer_cannot_verify(self, client, auth_headers, placed_order):
        order = placed_order()
        response = client.post(
            f"/api/admin/payments/{order['payments'][0]['id']}/verify",
            headers=auth_headers,
        )
        assert response.status_code == 403

    def test_rejected_payment_closed_when_order_cancelled(self, client, db_session, auth_headers, admin_headers, placed_order, upload_dir, png_file):
        order = placed_order()
        payment_id = order["payments"][0]["id"]
        upload_proof(client, auth_headers, payment_id, png_file())
        client.post(
            f"/api/admin/payments/{payment_id}/reject",
            json={"reason": "Wrong amount"},
            headers=admin_headers,
        )
        cancel = client.put(
            f"/api/admin/orders/{order['id']}/status",
            json={"status": "cancelled"},
            headers=admin_headers,
        )
        assert cancel.status_code == 200
        assert db_session.get(Payment, payment_id).status == "cancelled"

        reupload = upload_proof(client, auth_headers, payment_id, png_file("again.png"))
        verify = client.post(f"/api/admin/payments/{payment_id}/verify", headers=admin_headers)

        assert reupload.status_code == 409
        assert verify.status_code == 409
        assert db_session.get(Payment, payment_id).status == "cancelled"
        assert db_session.get(Order, order["id"]).status == "cancelled"

    def test_open_payment_on_cancelled_order_cannot_settle(self, client, db_session, auth_headers, admin_headers, placed_order, upload_dir, png_file):
        order = placed_order()
        stray = Payment(
            user_id=order["user_id"], order_id=order["id"], amount=38, status="pending", provider="manual"
        )
        db_session.add(stray)
        db_session.get(Order, order["id"]).status = "cancelled"
        db_session.commit()

        reupload = upload_proof(client, auth_headers, stray.id, png_file())
        verify = client.post(f"/api/admin/payments/{stray.id}/verify", headers=admin_headers)

        assert reupload.status_code == 409
        assert verify.status_code == 409
        assert db_session.get(Payment, stray.id).status == "pending"


@pytest.mark.payments
class TestTngCallback:
    def post_callback(self, client, payload, signature):
        body = json.dumps(payload).encode("utf-8")
        return client.post(
            "/api/payments/tng/callback",
            data=body,
            content_type="application/json",
            headers={"X-TNG-Signature": signature(body) if callable(signature) else signature},
        )

    def test_success_settles_payment(self, client, db_session, placed_order, tng_sign):
        order = placed_order(payment_method="tng")
        payment_id = order["payments"][0]["id"]

        response = self.post_callback(
            client,
            {"payment_id": payment_id, "transaction_id": "TNG-0001", "status": "SUCCESS", "amount": "38.00"},
            tng_sign,
        )

        assert response.status_code == 200
        assert response.get_json()["data"] == {
            "payment_id": payment_id,
            "status": "success",
            "duplicate": False,
        }
        payment = db_session.get(Payment, payment_id)
        assert payment.transaction_id == "TNG-0001"
        assert db_session.get(Order, order["id"]).status == "in_progress"

    def test_lookup_by_order_id(self, client, db_session, placed_order, tng_sign):
        order = placed_order(payment_method="tng")

        response = self.post_callback(
            client,
            {"order_id": order["id"], "transaction_id": "TNG-0002", "status": "success"},
            tng_sign,
        )

        assert response.status_code == 200
        assert response.get_json()["data"]["payment_id"] == order["payments"][0]["id"]

    def test_duplicate_callback_is_idempotent(self, client, db_session, placed_order, tng_sign):
        order = placed_order(payment_method="tng")
        payload = {
            "payment_id": order["payments"][0]["id"],
            "transaction_id": "TNG-0003",
            "status": "success",
        }
        self.post_callback(client, payload, tng_sign)

        response = self.post_callback(client, payload, tng_sign)

        assert response.status_code == 200
        assert response.get_json()["data"]["duplicate"] is True
        status_logs = [
            log.status for log in db_session.get(Order, order["id"]).status_logs
        ]
        assert status_logs.count("in_progress") == 1

    def test_bad_signature(self, client, placed_order):
        order = placed_order(payment_method="tng")

        response = self.post_callback(
            client,
            {"payment_id": order["payments"][0]["id"], "transaction_id": "TNG-0004", "status": "success"},
            "0" * 64,
        )

        assert response.status_code == 401

    def test_disabled_callback(self, app, client, placed_order, tng_sign, monkeypatch):
        monkeypatch.setitem(app.config, "TNG_CALLBACK_ENABLED", False)
        order = placed_order(payment_method="tng")

        response = self.post_callback(
            client,
            {"payment_id": order["payments"][0]["id"], "transaction_id": "TNG-0005", "status": "success"},
            tng_sign,
        )

        assert response.status_code == 403
        assert response.get_json()["error"]["code"] == "FEATURE_DISABLED"

    def test_amount_mismatch(self, client, db_session, placed_order, tng_sign):
        order = placed_order(payment_method="tng")
        payment_id = order["payments"][0]["id"]

        response = self.post_callback(
            client,
            {"payment_id": payment_id, "transaction_id": "TNG-0006", "status": "success", "amount": 10},
            tng_sign,
        )

        assert response.status_code == 422
        assert db_session.get(Payment, payment_id).status == "pending"

    def test_failed_payment(self, client, db_session, placed_order, tng_sign):
        order = placed_order(payment_method="tng")
        payment_id = order["payments"][0]["id"]

        response = self.post_callback(
            client,
            {"payment_id": payment_id, "transaction_id": "TNG-0007", "status": "failed"},
            tng_sign,
        )

        assert response.status_code == 200
        assert response.get_json()["data"]["status"] == "failed"
        assert db_session.get(Order, order["id"]).status == "pending"

    def test_missing_transaction_id(self, client, placed_order, tng_sign):
        order = placed_order(payment_method="tng")

        response = self.post_callback(
            client, {"payment_id": order["payments"][0]["id"], "status": "success"}, tng_sign
        )

        assert response.status_code == 400

    def test_invalid_json(self, client, tng_sign):
        body = b"not json"
        response = client.post(
            "/api/payments/tng/callback",
            data=body,
            content_type="application/json",
            headers={"X-TNG-Signature": tng_sign(body)},
        )
        assert response.status_code == 400