"""
Tests for membership plans, purchase and the per-day discount limit.
"""

import io
from decimal import Decimal

from openpyxl import load_workbook

from zhiku.app.services.membership_service import (
    MembershipService,
    calculate_membership_discount,
    generate_membership_code,
)


def buy_membership(client, plan_id, headers=None):
    """Покупка и тестовая оплата членства."""
    membership = client.post(
        "/api/memberships/purchase", headers=headers or {}, json={"plan_id": plan_id}
    ).json()["membership"]
    response = client.post("/api/payment/membership-callback", json={
        "membership_id": membership["id"],
        "membership_code": membership["membership_code"],
        "status": "success",
    })
    assert response.status_code == 200
    return response.json()["membership"]


def order_with_items(client, seed, user, lines):
    """Заказ из корзины: lines = [(price, quantity), ...]."""
    for price, quantity in lines:
        product_id = seed.product(price=price)
        client.post("/api/cart/", headers=user["headers"], json={"product_id": product_id, "quantity": quantity})
    response = client.post("/api/orders/", headers=user["headers"], json={"type": "cart"})
    assert response.status_code == 201
    return response.json()["order"]


class TestDiscountCalculation:

    def test_discount_covers_first_units(self):
        items = [{"price": 100, "quantity": 2}, {"price": 50, "quantity": 3}]
        # 2 × 100 × 0.2 + 1 × 50 × 0.2
        assert calculate_membership_discount(items, 3, 0.8) == Decimal("50.00")

    def test_discount_limited_by_items(self):
        items = [{"price": "19.99", "quantity": 1}]
        assert calculate_membership_discount(items, 5, 0.5) == Decimal("10.00")

    def test_no_discountable_units(self):
        assert calculate_membership_discount([{"price": 10, "quantity": 1}], 0, 0.8) == Decimal("0.00")

    def test_membership_code_format(self):
        code = generate_membership_code()
        assert len(code) == 16
        assert code == code.upper()
        assert code != generate_membership_code()


class TestPlans:

    def test_admin_creates_plan(self, client, admin):
        response = client.post("/api/admin/membership-plans", headers=admin["headers"], json={
            "name": "Месяц", "price": 29.9, "duration": 30, "discount": 0.9, "daily_limit": 3,
        })
        assert response.status_code == 201
        plans = client.get("/api/membership-plans/").json()
        assert [p["name"] for p in plans] == ["Месяц"]

    def test_invalid_duration(self, client, admin):
        response = client.post("/api/admin/membership-plans", headers=admin["headers"], json={
            "name": "Странный", "price": 10, "duration": 0, "discount": 0.9, "daily_limit": 1,
        })
        assert response.status_code == 422

    def test_plan_with_memberships_cannot_be_deleted(self, client, seed, admin):
        plan_id = seed.plan()
        client.post("/api/memberships/purchase", json={"plan_id": plan_id})
        response = client.delete(f"/api/admin/membership-plans/{plan_id}", headers=admin["headers"])
        assert response.status_code == 400


class TestPurchase:

    def test_purchase_creates_unpaid_membership(self, client, seed, buyer):
        plan_id = seed.plan(price=99, discount=0.8, daily_limit=2, duration=30)
        response = client.post("/api/memberships/purchase", headers=buyer["headers"], json={"plan_id": plan_id})
        assert response.status_code == 201
        membership = response.json()["membership"]
        assert membership["payment_status"] == "pending"
        assert membership["user_id"] == buyer["id"]
        assert membership["plan_snapshot"]["daily_limit"] == 2
        assert membership["end_date"] is not None

    def test_lifetime_plan_has_no_end_date(self, client, seed):
        plan_id = seed.plan(duration=-1)
        membership = client.post("/api/memberships/purchase", json={"plan_id": plan_id}).json()["membership"]
        assert membership["end_date"] is None
        assert membership["user_id"] is None

    def test_inactive_plan_rejected(self, client, seed):
        plan_id = seed.plan()
        seed.execute("UPDATE membership_plans SET status = 'inactive' WHERE id = ?", (plan_id,))
        response = client.post("/api/memberships/purchase", json={"plan_id": plan_id})
        assert response.status_code == 400

    def test_mock_payment_completes_membership(self, client, seed):
        membership = buy_membership(client, seed.plan())
        assert membership["payment_status"] == "completed"
        assert membership["order_number"].startswith("MEM-")
        assert membership["paid_at"] is not None

    def test_callback_with_wrong_code(self, client, seed):
        membership = client.post("/api/memberships/purchase", json={"plan_id": seed.plan()}).json()["membership"]
        response = client.post("/api/payment/membership-callback", json={
            "membership_id": membership["id"], "membership_code": "WRONG", "status": "success",
        })
        assert response.status_code == 400

    def test_plan_change_does_not_affect_membership(self, client, seed, admin):
        plan_id = seed.plan(discount=0.8)
        membership = buy_membership(client, plan_id)
        client.put(f"/api/admin/membership-plans/{plan_id}", headers=admin["headers"], json={"discount": 0.5})

        verified = client.get("/api/memberships/verify", params={"code": membership["membership_code"]}).json()
        assert verified["membership"]["discount"] == 0.8

    def test_membership_orders_by_code(self, client, seed):
        membership = buy_membership(client, seed.plan())
        response = client.get("/api/membership-orders/", params={"codes": membership["membership_code"].lower()})
        assert [m["id"] for m in response.json()["memberships"]] == [membership["id"]]
        assert client.get("/api/membership-orders/").json() == {"memberships": []}


class TestVerify:

    def test_verify_reports_remaining(self, client, seed):
        membership = buy_membership(client, seed.plan(daily_limit=3))
        response = client.get("/api/memberships/verify", params={"code": membership["membership_code"].lower()})
        assert response.status_code == 200
        assert response.json()["membership"]["remaining_today"] == 3

    def test_verify_unknown_code(self, client):
        assert client.get("/api/memberships/verify", params={"code": "NOPE"}).status_code == 404

    def test_verify_unpaid(self, client, seed):
        membership = client.post("/api/memberships/purchase", json={"plan_id": seed.plan()}).json()["membership"]
        response = client.get("/api/memberships/verify", params={"code": membership["membership_code"]})
        assert response.status_code == 400

    def test_verify_marks_expired(self, client, seed):
        membership = buy_membership(client, seed.plan())
        seed.execute("UPDATE memberships SET end_date = '2000-01-01 00:00:00' WHERE id = ?", (membership["id"],))
        response = client.get("/api/memberships/verify", params={"code": membership["membership_code"]})
        assert response.json()["membership"]["status"] == "expired"


class TestApplyToOrder:

    def test_apply_discount_within_daily_limit(self, client, seed, buyer):
        membership = buy_membership(client, seed.plan(discount=0.8, daily_limit=2))
        order = order_with_items(client, seed, buyer, [(100, 3)])

        response = client.post(
            f"/api/orders/{order['id']}/apply-membership",
            headers=buyer["headers"],
            json={"membership_code": membership["membership_code"]},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["applied_discount"]["discountable_count"] == 2
        assert body["applied_discount"]["saved"] == 40
        assert float(body["order"]["total_amount"]) == 260
        assert float(body["order"]["original_amount"]) == 300
        assert body["order"]["membership_id"] == membership["id"]

        usage = seed.fetch_one("SELECT used_count FROM membership_usage WHERE membership_id = ?", (membership["id"],))
        assert usage["used_count"] == 2

    def test_daily_limit_exhausted(self, client, seed, buyer):
        membership = buy_membership(client, seed.plan(daily_limit=1))
        first = order_with_items(client, seed, buyer, [(50, 1)])
        client.post(
            f"/api/orders/{first['id']}/apply-membership",
            headers=buyer["headers"],
            json={"membership_code": membership["membership_code"]},
        )

        second = order_with_items(client, seed, buyer, [(50, 1)])
        response = client.post(
            f"/api/orders/{second['id']}/apply-membership",
            headers=buyer["headers"],
            json={"membership_code": membership["membership_code"]},
        )
        assert response.status_code == 400

    def test_membership_applied_once_per_order(self, client, seed, buyer):
        membership = buy_membership(client, seed.plan(daily_limit=5))
        order = order_with_items(client, seed, buyer, [(50, 1)])
        url = f"/api/orders/{order['id']}/apply-membership"
        body = {"membership_code": membership["membership_code"]}

        assert client.post(url, headers=buyer["headers"], json=body).status_code == 200
        assert client.post(url, headers=buyer["headers"], json=body).status_code == 400

    def test_order_paid_during_apply(self, client, seed, buyer, monkeypatch):
        membership = buy_membership(client, seed.plan(daily_limit=2))
        order = order_with_items(client, seed, buyer, [(100, 1)])
        today_usage = MembershipService.get_today_usage

        async def usage_after_payment(db, membership_id):
            # Оплата приходит между проверкой статуса и записью скидки
            seed.execute("UPDATE orders SET status = 'paid' WHERE id = ?", (order["id"],))
            return await today_usage(db, membership_id)

        monkeypatch.setattr(MembershipService, "get_today_usage", staticmethod(usage_after_payment))
        response = client.post(
            f"/api/orders/{order['id']}/apply-membership",
            headers=buyer["headers"],
            json={"membership_code": membership["membership_code"]},
        )
        assert response.status_code == 400
        assert response.json()["detail"] == "Статус заказа изменился"

        stored = seed.fetch_one("SELECT * FROM orders WHERE id = ?", (order["id"],))
        assert stored["membership_id"] is None
        assert stored["total_amount"] == 100
        assert seed.fetch_one("SELECT * FROM membership_usage WHERE membership_id = ?", (membership["id"],)) is None

    def test_unpaid_membership_rejected(self, client, seed, buyer):
        membership = client.post("/api/memberships/purchase", json={"plan_id": seed.plan()}).json()["membership"]
        order = order_with_items(client, seed, buyer, [(50, 1)])
        response = client.post(
            f"/api/orders/{order['id']}/apply-membership",
            headers=buyer["headers"],
            json={"membership_code": membership["membership_code"]},
        )
        assert response.status_code == 400

    def test_unknown_code(self, client, seed, buyer):
        order = order_with_items(client, seed, buyer, [(50, 1)])
        response = client.post(
            f"/api/orders/{order['id']}/apply-membership",
            headers=buyer["headers"],
            json={"membership_code": "DOESNOTEXIST"},
        )
        assert response.status_code == 404

    def test_discount_recalculates_pending_commission(self, client, seed, buyer):
        partner = seed.user("partner@example.com")
        seed.distributor(partner["id"], code="DIST0001", rate=0.1)
        membership = buy_membership(client, seed.plan(discount=0.5, daily_limit=1))

        product_id = seed.product(price=200)
        order = client.post("/api/orders/", headers=buyer["headers"], json={
            "type": "direct", "product_id": product_id, "quantity": 1, "distribution_code": "DIST0001",
        }).json()["order"]
        client.post(
            f"/api/orders/{order['id']}/apply-membership",
            headers=buyer["headers"],
            json={"membership_code": membership["membership_code"]},
        )

        referral = seed.fetch_one("SELECT * FROM distribution_orders WHERE order_id = ?", (order["id"],))
        assert referral["order_amount"] == 100
        assert referral["commission_amount"] == 10


class TestRecords:

    def test_admin_lists_and_filters(self, client, seed, admin, buyer):
        plan_id = seed.plan()
        paid = buy_membership(client, plan_id, headers=buyer["headers"])
        client.post("/api/memberships/purchase", json={"plan_id": plan_id})

        records = client.get("/api/admin/membership-records", headers=admin["headers"]).json()
        assert records["pagination"]["total"] == 2

        completed = client.get(
            "/api/admin/membership-records?payment_status=completed", headers=admin["headers"]
        ).json()
        assert [r["membership_code"] for r in completed["records"]] == [paid["membership_code"]]
        assert completed["records"][0]["user_email"] == "buyer@example.com"
        assert completed["records"][0]["plan_name"] == "Годовой"

    def test_export(self, client, seed, admin):
        paid = buy_membership(client, seed.plan())
        response = client.get("/api/admin/membership-records/export", headers=admin["headers"])
        assert response.status_code == 200

        sheet = load_workbook(io.BytesIO(response.content)).active
        assert sheet.cell(row=1, column=1).value == "Код"
        assert sheet.cell(row=2, column=1).value == paid["membership_code"]

    def test_records_require_permission(self, client, buyer):
        assert client.get("/api/admin/membership-records", headers=buyer["headers"]).status_code == 403
