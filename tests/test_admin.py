"""
Tests for admin analytics, coupon management and the HTML dashboard.
"""

from datetime import datetime, timedelta

import pytest

from admin_metrics import compile_analytics, feedback_metrics, growth_rate, revenue_metrics
from conftest import make_token
from db import AdminUser, Coupon, CouponUsage, Feedback, Order, PalmProfile, Profile


class TestGrowthRate:
    """Tests for month-over-month growth."""

    def test_zero_last_period(self):
        """Nothing last month means 0, not infinity."""
        assert growth_rate(5000, 0) == 0.0

    def test_positive_and_negative(self):
        """Growth is a percentage of last period."""
        assert growth_rate(150, 100) == 50.0
        assert growth_rate(50, 100) == -50.0


class TestAggregators:
    """Tests for the individual metric aggregators."""

    def test_empty_database(self, db):
        """Every aggregator copes with no data."""
        analytics = compile_analytics(db)
        assert analytics["userMetrics"]["totalUsers"] == 0
        assert analytics["serviceUsage"]["palmReadings"]["successRate"] == 0.0
        assert analytics["revenueMetrics"]["averageOrderValue"] == 0.0
        assert analytics["feedbackMetrics"]["averageRating"] == 0.0
        assert analytics["systemHealth"]["storageUsage"] == {"palmImages": 0, "totalStorage": 0}

    def test_revenue_in_major_units(self, db):
        """Paid orders are summed and reported in major units."""
        now = datetime(2026, 3, 15, 12, 0, 0)
        db.add_all([
            Order(user_id="a", order_id="o1", amount=9900, currency="INR", status="paid",
                  created_at=now - timedelta(days=2)),
            Order(user_id="b", order_id="o2", amount=9900, currency="INR", status="paid",
                  created_at=datetime(2026, 2, 10)),
            Order(user_id="c", order_id="o3", amount=9900, currency="INR", status="failed",
                  created_at=now),
        ])
        db.commit()
        rev = revenue_metrics(db, now)
        assert rev["totalRevenue"] == 198.0
        assert rev["revenueThisMonth"] == 99.0
        assert rev["revenueLastMonth"] == 99.0
        assert rev["revenueGrowth"] == 0.0
        assert rev["paidOrders"] == 2
        assert rev["totalOrders"] == 3
        assert rev["paymentSuccessRate"] == pytest.approx(66.67)
        assert rev["revenueByCurrency"] == {"INR": 198.0}

    def test_average_rating_ignores_unrated(self, db):
        """Feedback without a rating does not drag the average down."""
        db.add_all([
            Feedback(user_id="a", title="t", message="m", category="bug", rating=5),
            Feedback(user_id="b", title="t", message="m", category="bug", rating=4),
            Feedback(user_id="c", title="t", message="m", category="general", rating=None),
        ])
        db.commit()
        fb = feedback_metrics(db)
        assert fb["totalFeedback"] == 3
        assert fb["averageRating"] == 4.5
        assert fb["ratingDistribution"][4] == {"rating": 5, "count": 1}
        assert {"category": "bug", "count": 2} in fb["categoryBreakdown"]
        assert fb["pendingFeedback"] == 3

    def test_palm_success_rate(self, db):
        """Success rate is completed over all readings."""
        for status in ("completed", "completed", "completed", "failed"):
            db.add(PalmProfile(user_id="u", status=status, questionnaire_data={}, ai_analysis={}))
        db.commit()
        palm = compile_analytics(db)["serviceUsage"]["palmReadings"]
        assert palm["successRate"] == 75.0
        assert palm["failed"] == 1


class TestAdminAnalyticsEndpoint:
    """Tests for GET /api/admin-analytics."""

    def test_non_admin_forbidden(self, client, user_headers):
        """Regular users get 403."""
        r = client.get("/api/admin-analytics", headers=user_headers)
        assert r.status_code == 403
        assert r.json() == {"error": "Admin access required"}

    def test_admin_gets_snapshot(self, client, admin_headers):
        """Allow-listed admins get all five sections."""
        r = client.get("/api/admin-analytics", headers=admin_headers)
        assert r.status_code == 200
        assert set(r.json()["analytics"]) == {
            "userMetrics", "serviceUsage", "revenueMetrics", "feedbackMetrics", "systemHealth"}
        # the admin's own profile row is created on first request
        assert r.json()["analytics"]["userMetrics"]["totalUsers"] == 1

    def test_deactivated_admin_forbidden(self, client, db, admin_headers):
        """A deactivated admin_users row wins over the bootstrap list."""
        db.query(AdminUser).filter(AdminUser.email == "admin@example.com").update({"is_active": False})
        db.commit()
        assert client.get("/api/admin-analytics", headers=admin_headers).status_code == 403


class TestManageCoupons:
    """Tests for /api/manage-coupons."""

    def _create(self, client, headers, **kw):
        payload = {"code": "welcome10", "type": "discount", "usage_limit": 100,
                   "discount_type": "percentage", "discount_value": 10}
        payload.update(kw)
        return client.post("/api/manage-coupons", json=payload, headers=headers)

    def test_create_uppercases_code(self, client, admin_headers):
        """Creation returns 201 with the normalised code and creator."""
        r = self._create(client, admin_headers)
        assert r.status_code == 201
        coupon = r.json()["coupon"]
        assert coupon["code"] == "WELCOME10"
        assert coupon["created_by"] == "admin-1"
        assert coupon["current_usage"] == 0

    def test_duplicate_code(self, client, admin_headers):
        """A second coupon with the same code is a conflict."""
        self._create(client, admin_headers)
        r = self._create(client, admin_headers, code="WELCOME10")
        assert r.status_code == 409

    def test_missing_fields(self, client, admin_headers):
        """code, type and usage_limit are required."""
        r = client.post("/api/manage-coupons", json={"code": "X"}, headers=admin_headers)
        assert r.status_code == 400
        assert r.json()["error"] == "Missing required fields: code, type, usage_limit"

    def test_discount_needs_value(self, client, admin_headers):
        """Discount coupons need a discount type and value."""
        r = self._create(client, admin_headers, discount_type=None, discount_value=None)
        assert r.json()["error"] == "Discount coupons require discount_type and discount_value"

    def test_non_admin_cannot_create(self, client, user_headers):
        """Mutations are admin-only."""
        assert self._create(client, user_headers).status_code == 403

    def test_check_admin(self, client, user_headers, admin_headers):
        """check-admin answers for any signed-in user."""
        assert client.get("/api/manage-coupons?action=check-admin", headers=user_headers).json() == \
            {"isAdmin": False}
        assert client.get("/api/manage-coupons?action=check-admin", headers=admin_headers).json() == \
            {"isAdmin": True}

    def test_list_and_search(self, client, admin_headers):
        """Listing paginates and filters by code."""
        self._create(client, admin_headers, code="ALPHA")
        self._create(client, admin_headers, code="BETA")
        self._create(client, admin_headers, code="FREEBIE", type="free")
        r = client.get("/api/manage-coupons?action=list&limit=2", headers=admin_headers).json()
        assert len(r["coupons"]) == 2
        assert r["pagination"] == {"page": 1, "limit": 2, "total": 3, "totalPages": 2}

        r = client.get("/api/manage-coupons?action=list&search=alp", headers=admin_headers).json()
        assert [c["code"] for c in r["coupons"]] == ["ALPHA"]

        r = client.get("/api/manage-coupons?action=list&type=free", headers=admin_headers).json()
        assert [c["code"] for c in r["coupons"]] == ["FREEBIE"]

    def test_update_and_toggle(self, client, admin_headers):
        """PUT updates fields; POST toggle-status flips is_active."""
        cid = self._create(client, admin_headers).json()["coupon"]["id"]
        r = client.put("/api/manage-coupons", json={"id": cid, "usage_limit": 5,
                                                    "description": " spring "}, headers=admin_headers)
        assert r.json()["coupon"]["usage_limit"] == 5
        assert r.json()["coupon"]["description"] == "spring"

        r = client.post("/api/manage-coupons", json={"action": "toggle-status", "id": cid,
                                                     "is_active": False}, headers=admin_headers)
        assert r.json()["coupon"]["is_active"] is False

    def test_update_unknown(self, client, admin_headers):
        """Updating a missing coupon is a 404."""
        r = client.put("/api/manage-coupons", json={"id": 999, "usage_limit": 5}, headers=admin_headers)
        assert r.status_code == 404
        assert r.json()["error"] == "Coupon not found"

    def test_update_without_id(self, client, admin_headers):
        """An update must name the coupon."""
        r = client.put("/api/manage-coupons", json={"usage_limit": 5}, headers=admin_headers)
        assert r.status_code == 400
        assert r.json()["error"] == "Coupon ID is required"

    def test_delete(self, client, db, admin_headers):
        """Unused coupons can be deleted; used ones cannot."""
        unused = self._create(client, admin_headers, code="GONE").json()["coupon"]["id"]
        used = self._create(client, admin_headers, code="KEPT").json()["coupon"]["id"]
        db.add(CouponUsage(coupon_id=used, user_id="u", discount_applied=1, original_amount=2,
                           final_amount=1, currency="INR"))
        db.commit()

        assert client.delete(f"/api/manage-coupons?id={unused}", headers=admin_headers).json() == \
            {"success": True}
        assert client.delete(f"/api/manage-coupons?id={used}", headers=admin_headers).status_code == 409
        db.expire_all()
        assert [c.code for c in db.query(Coupon).all()] == ["KEPT"]

    def test_analytics(self, client, admin_headers):
        """Totals and utilisation across all coupons."""
        self._create(client, admin_headers, code="A", usage_limit=3)
        self._create(client, admin_headers, code="B", type="free", usage_limit=1)
        r = client.get("/api/manage-coupons?action=analytics", headers=admin_headers).json()["analytics"]
        assert r["totalCoupons"] == 2
        assert r["freeCoupons"] == 1
        assert r["discountCoupons"] == 1
        assert r["totalCapacity"] == 4
        assert r["utilizationRate"] == "0.00"

    def test_usage_requires_coupon_id(self, client, admin_headers):
        """The usage view needs a coupon id."""
        r = client.get("/api/manage-coupons?action=usage", headers=admin_headers)
        assert r.status_code == 400
        assert r.json()["error"] == "coupon_id is required"

    def test_stats_count_verified_usage(self, client, db, admin_headers):
        """Only waivers and paid orders count as verified redemptions."""
        cid = self._create(client, admin_headers).json()["coupon"]["id"]
        db.add_all([
            Order(user_id="a", order_id="o_paid", amount=100, currency="INR", status="paid"),
            Order(user_id="b", order_id="o_pending", amount=100, currency="INR", status="pending"),
            CouponUsage(coupon_id=cid, user_id="a", order_id="o_paid", discount_applied=10,
                        original_amount=110, final_amount=100, currency="INR"),
            CouponUsage(coupon_id=cid, user_id="b", order_id="o_pending", discount_applied=10,
                        original_amount=110, final_amount=100, currency="INR"),
            CouponUsage(coupon_id=cid, user_id="c", order_id=None, discount_applied=30,
                        original_amount=30, final_amount=0, currency="INR"),
        ])
        db.commit()
        r = client.get(f"/api/manage-coupons?action=stats&coupon_id={cid}", headers=admin_headers).json()
        stat = r["stats"][0]
        assert stat["verified_usage"] == 2
        assert stat["total_discount_given"] == 40
        assert stat["avg_discount_per_use"] == 20


class TestDashboard:
    """Tests for GET /api/admin/dashboard."""

    def test_renders_for_admin_cookie(self, client, db):
        """The dashboard renders from the auth cookie."""
        db.add(Profile(id="p1", email="p1@example.com", has_paid=True))
        db.commit()
        token = make_token("admin-1", "admin@example.com")
        r = client.get("/api/admin/dashboard", headers={"Cookie": f"token={token}"})
        assert r.status_code == 200
        assert r.headers["content-type"].startswith("text/html")
        assert "PalmAI Admin" in r.text
        assert "Total Users" in r.text

    def test_forbidden_for_user(self, client, user_headers):
        """Non-admins do not get the page."""
        assert client.get("/api/admin/dashboard", headers=user_headers).status_code == 403
