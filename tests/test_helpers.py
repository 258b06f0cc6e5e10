import hashlib
import hmac
from datetime import datetime

import pytest

from stringdesk.models import ORDER_STATUSES, Voucher
from stringdesk.services.analytics_service import calculate_ltv, parse_date_range
from stringdesk.services.membership_service import get_next_tier_progress, get_tier_for_stats
from stringdesk.services.order_eta import calculate_estimated_completion, format_eta_label
from stringdesk.services.order_service import validate_tension
from stringdesk.services.order_status import format_status_label, validate_admin_status, validate_order_status
from stringdesk.services.package_service import apply_renewal_discount
from stringdesk.services.payment_service import verify_gateway_signature
from stringdesk.services.points_service import summarize_points
from stringdesk.services.referral_service import calculate_total_referral_points, get_referral_points
from stringdesk.services.voucher_service import calculate_voucher_discount
from stringdesk.utils import request_cache
from stringdesk.utils.errors import ApiError

# Monday
MONDAY = datetime(2026, 3, 9, 10, 30)


@pytest.fixture
def app_ctx(app):
    with app.app_context():
        yield


@pytest.mark.unit
class TestOrderEta:
    @pytest.mark.parametrize(
        "open_orders,expected",
        [
            (0, datetime(2026, 3, 11, 18, 0)),
            (5, datetime(2026, 3, 12, 18, 0)),
            (6, datetime(2026, 3, 13, 18, 0)),
            (100, datetime(2026, 3, 18, 18, 0)),
        ],
    )
    def test_queue_days(self, app_ctx, open_orders, expected):
        assert calculate_estimated_completion(MONDAY, open_orders) == expected

    def test_sunday_moves_to_monday(self, app_ctx):
        friday = datetime(2026, 3, 13, 9, 0)
        assert calculate_estimated_completion(friday, 0) == datetime(2026, 3, 16, 18, 0)

    @pytest.mark.parametrize(
        "eta,label",
        [
            (datetime(2026, 3, 8, 18, 0), "Today"),
            (datetime(2026, 3, 9, 18, 0), "Today"),
            (datetime(2026, 3, 10, 9, 0), "Tomorrow"),
            (datetime(2026, 3, 12, 18, 0), "In 3 days"),
            (datetime(2026, 3, 20, 18, 0), "20 Mar 2026"),
            (None, None),
        ],
    )
    def test_eta_label(self, eta, label):
        assert format_eta_label(eta, MONDAY) == label


@pytest.mark.unit
class TestOrderRules:
    @pytest.mark.parametrize("vertical,horizontal", [(24, 25), (24, 26), (24, 27), (18, 20), (32, 35)])
    def test_valid_tension(self, app_ctx, vertical, horizontal):
        validate_tension(vertical, horizontal)

    @pytest.mark.parametrize("vertical,horizontal", [(24, 24), (26, 24), (24, 28), (17, 19), (34, 36)])
    def test_invalid_tension(self, app_ctx, vertical, horizontal):
        with pytest.raises(ApiError) as exc:
            validate_tension(vertical, horizontal)
        assert exc.value.status == 400

    def test_same_tension_without_difference_check(self, app_ctx):
        validate_tension(25, 25, check_difference=False)

    @pytest.mark.parametrize("status", ORDER_STATUSES)
    def test_every_status_has_a_label(self, status):
        label = format_status_label(status)
        assert label
        assert label != status
        assert format_status_label(status) == label

    def test_status_labels(self):
        assert format_status_label("in_progress") == "In Progress"
        assert format_status_label("payment_rejected") == "Payment Rejected"
        assert format_status_label("mystery") == "mystery"
        assert validate_order_status("ready")
        assert not validate_order_status("mystery")

    def test_admin_settable_statuses(self):
        assert validate_admin_status("ready")
        assert validate_admin_status("cancelled")
        assert not validate_admin_status("payment_rejected")
        assert not validate_admin_status("received")


@pytest.mark.unit
class TestLoyaltyMath:
    @pytest.mark.parametrize(
        "spent,orders,tier",
        [(0, 0, "SILVER"), (199, 4, "SILVER"), (200, 0, "GOLD"), (0, 5, "GOLD"), (499, 11, "GOLD"), (500, 0, "VIP"), (0, 12, "VIP")],
    )
    def test_tier_for_stats(self, spent, orders, tier):
        assert get_tier_for_stats(spent, orders) == tier

    def test_next_tier_progress(self):
        assert get_next_tier_progress("SILVER", 100, 1) == {
            "next_tier": "GOLD",
            "spent_needed": 100,
            "orders_needed": 4,
            "progress": 50,
        }
        assert get_next_tier_progress("VIP", 900, 30)["next_tier"] is None

    @pytest.mark.parametrize("count,points", [(0, 0), (1, 50), (5, 50), (6, 80), (10, 80), (11, 100), (40, 100)])
    def test_referral_points(self, count, points):
        assert get_referral_points(count) == points

    def test_total_referral_points(self):
        assert calculate_total_referral_points(0) == 0
        assert calculate_total_referral_points(6) == 330
        assert calculate_total_referral_points(11) == 750

    def test_summarize_points(self):
        assert summarize_points([10, -5, 20, -1]) == {"earned": 30, "spent": 6}
        assert summarize_points([]) == {"earned": 0, "spent": 0}


@pytest.mark.unit
class TestPricing:
    def test_percentage_voucher(self):
        assert calculate_voucher_discount(Voucher(type="percentage", value=10), 38) == 3.8

    def test_fixed_voucher_capped_at_price(self):
        assert calculate_voucher_discount(Voucher(type="fixed", value=50), 38) == 38

    def test_voucher_on_free_order(self):
        assert calculate_voucher_discount(Voucher(type="fixed", value=10), 0) == 0

    def test_renewal_discount(self):
        assert apply_renewal_discount(150, 10) == 135.0
        assert apply_renewal_discount(150, 0) == 150
        assert apply_renewal_discount(99.99, 15) == 84.99

    def test_ltv(self):
        assert calculate_ltv(108, 2) == 54.0
        assert calculate_ltv(100, 3) == 33.33
        assert calculate_ltv(100, 0) == 0.0


@pytest.mark.unit
class TestDateRange:
    def test_trailing_days(self):
        start, end = parse_date_range({"days": "7"}, MONDAY)
        assert start == datetime(2026, 3, 3)
        assert end == datetime(2026, 3, 9, 23, 59, 59, 999999)

    def test_explicit_range(self):
        start, end = parse_date_range({"startDate": "2026-01-01", "endDate": "2026-01-31"}, MONDAY)
        assert start == datetime(2026, 1, 1)
        assert end.date() == datetime(2026, 1, 31).date()

    def test_start_only(self):
        start, end = parse_date_range({"startDate": "2026-03-01"}, MONDAY)
        assert start == datetime(2026, 3, 1)
        assert end.date() == MONDAY.date()

    @pytest.mark.parametrize(
        "args",
        [{"days": "0"}, {"days": "abc"}, {"startDate": "2026-03-05", "endDate": "2026-03-01"}],
    )
    def test_invalid(self, args):
        with pytest.raises(ApiError):
            parse_date_range(args, MONDAY)


@pytest.mark.unit
class TestGatewaySignature:
    def test_signature(self):
        body = b'{"transaction_id": "T1"}'
        digest = hmac.new(b"secret", body, hashlib.sha256).hexdigest()

        assert verify_gateway_signature(body, digest, "secret")
        assert verify_gateway_signature(body, digest.upper(), "secret")
        assert not verify_gateway_signature(body, digest, "other")
        assert not verify_gateway_signature(body, None, "secret")


@pytest.mark.unit
class TestRequestCache:
    @pytest.fixture(autouse=True)
    def empty_cache(self):
        request_cache.clear()
        yield
        request_cache.clear()

    def test_fetches_once(self):
        calls = []

        def fetch():
            calls.append(1)
            return len(calls)

        assert request_cache.cached_request("admin:a", fetch) == 1
        assert request_cache.cached_request("admin:a", fetch) == 1
        assert request_cache.cached_request("admin:a", fetch, skip_cache=True) == 2
        assert len(calls) == 2

    def test_expired_entry_refetches(self):
        values = iter([1, 2])
        request_cache.cached_request("k", lambda: next(values), ttl=0)
        assert request_cache.cached_request("k", lambda: next(values), ttl=0) == 2

    def test_expired_entries_are_pruned_on_write(self):
        for days in range(5):
            request_cache.cached_request(f"admin:revenue:{days}", lambda: days, ttl=0)
        request_cache.cached_request("admin:dashboard", lambda: "fresh")

        assert list(request_cache._entries) == ["admin:dashboard"]

    def test_invalidate_prefix(self):
        request_cache.cached_request("admin:a", lambda: "a")
        request_cache.cached_request("admin:b", lambda: "b")
        request_cache.cached_request("public:c", lambda: "c")

        request_cache.invalidate_prefix("admin:")

        assert request_cache.cached_request("admin:a", lambda: "fresh") == "fresh"
        assert request_cache.cached_request("public:c", lambda: "fresh") == "c"

    def test_errors_are_not_cached(self):
        def boom():
            raise RuntimeError("db down")

        with pytest.raises(RuntimeError):
            request_cache.cached_request("admin:x", boom)
        assert request_cache.cached_request("admin:x", lambda: "ok") == "ok"
