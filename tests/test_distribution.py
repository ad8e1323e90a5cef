"""
Tests for the distribution program: referrals, commissions and withdrawals.
"""

import pytest


APPLY_BODY = {
    "contact_name": "Иван",
    "contact_phone": "13800000000",
    "contact_email": "ivan@example.com",
    "bank_name": "ICBC",
    "bank_account": "6222020000009876",
    "bank_account_name": "Иван",
}


def referred_order(client, user, product_id, code):
    response = client.post("/api/orders/", headers=user["headers"], json={
        "type": "direct", "product_id": product_id, "quantity": 1, "distribution_code": code,
    })
    assert response.status_code == 201, response.text
    return response.json()["order"]


def pay_order(client, user, order):
    created = client.post("/api/payment/create", headers=user["headers"], json={
        "order_id": order["id"], "payment_method": "alipay",
    }).json()
    response = client.post("/api/payment/callback", json={
        "payment_id": created["payment_id"], "order_number": order["order_number"], "status": "success",
    })
    assert response.status_code == 200


@pytest.fixture
def partner(seed):
    """Активный дистрибьютор со ставкой 10%."""
    user = seed.user("partner@example.com")
    user["distributor_id"] = seed.distributor(user["id"], code="DIST0001", rate=0.1)
    return user


def distributor_row(seed, distributor_id):
    return seed.fetch_one("SELECT * FROM distributors WHERE id = ?", (distributor_id,))


def referral_row(seed, order_id):
    return seed.fetch_one("SELECT * FROM distribution_orders WHERE order_id = ?", (order_id,))


class TestApplication:

    def test_apply_and_approve(self, client, seed, admin, buyer):
        response = client.post("/api/distribution/apply", headers=buyer["headers"], json=APPLY_BODY)
        assert response.status_code == 201
        distributor = response.json()["distributor"]
        assert distributor["status"] == "pending"
        assert len(distributor["code"]) == 8
        assert distributor["last_bank_info_update"] is not None

        again = client.post("/api/distribution/apply", headers=buyer["headers"], json=APPLY_BODY)
        assert again.status_code == 400

        approved = client.post(
            f"/api/admin/distribution/distributors/{distributor['id']}/approve",
            headers=admin["headers"],
            json={"commission_rate": 0.15},
        )
        assert approved.status_code == 200
        assert approved.json()["distributor"]["status"] == "active"
        assert approved.json()["distributor"]["commission_rate"] == 0.15

        info = client.get("/api/distribution/info", headers=buyer["headers"]).json()["distributor"]
        assert info["status"] == "active"

    def test_rejected_application_shows_reason(self, client, seed, admin, buyer):
        distributor = client.post("/api/distribution/apply", headers=buyer["headers"], json=APPLY_BODY).json()["distributor"]
        client.post(
            f"/api/admin/distribution/distributors/{distributor['id']}/reject",
            headers=admin["headers"],
            json={"reason": "Нет сайта"},
        )
        response = client.post("/api/distribution/apply", headers=buyer["headers"], json=APPLY_BODY)
        assert response.status_code == 400
        assert "Нет сайта" in response.json()["detail"]

    def test_info_for_non_distributor(self, client, buyer):
        assert client.get("/api/distribution/info", headers=buyer["headers"]).status_code == 404


class TestTracking:

    def test_track_sets_cookie_and_counts_click(self, client, seed, partner):
        response = client.post("/api/distribution/track", json={"code": "dist0001", "visitor_id": "v-1"})
        assert response.status_code == 200
        assert response.json()["code"] == "DIST0001"
        assert response.cookies.get("dist_code") == "DIST0001"

        assert distributor_row(seed, partner["distributor_id"])["total_clicks"] == 1

    def test_track_unknown_code(self, client):
        response = client.post("/api/distribution/track", json={"code": "NOPE"})
        assert response.status_code == 404

    def test_validate_code(self, client, seed, partner):
        assert client.get("/api/distribution/track", params={"code": "DIST0001"}).json()["valid"] is True
        assert client.get("/api/distribution/track", params={"code": "OTHER"}).json()["valid"] is False

    def test_cookie_attributes_order_and_converts_click(self, client, seed, partner, buyer):
        client.post("/api/distribution/track", json={"code": "DIST0001"})
        response = client.post("/api/orders/", headers=buyer["headers"], json={
            "type": "direct", "product_id": seed.product(), "quantity": 1,
        })
        order = response.json()["order"]

        referral = referral_row(seed, order["id"])
        assert referral["distributor_id"] == partner["distributor_id"]
        assert referral["status"] == "pending"

        click = seed.fetch_one("SELECT * FROM distribution_clicks")
        assert click["converted"] == 1
        assert click["order_id"] == order["id"]


class TestCommissionLifecycle:

    def test_confirm_settle_and_refund(self, client, seed, admin, partner, buyer):
        order = referred_order(client, buyer, seed.product(price=200), "DIST0001")
        referral = referral_row(seed, order["id"])
        assert referral["commission_amount"] == 20

        pay_order(client, buyer, order)
        assert referral_row(seed, order["id"])["status"] == "confirmed"
        distributor = distributor_row(seed, partner["distributor_id"])
        assert distributor["pending_commission"] == 20
        assert distributor["total_earnings"] == 20
        assert distributor["total_orders"] == 1

        # Период охлаждения ещё не прошёл
        early = client.post("/api/cron/settle-commissions").json()
        assert early["settled"] == 0

        seed.set_config("commission_settlement_cooldown_days", "0")
        result = client.get("/api/cron/settle-commissions").json()
        assert result == {"success": True, "settled": 1, "skipped": 0, "failed": 0, "errors": []}

        distributor = distributor_row(seed, partner["distributor_id"])
        assert distributor["pending_commission"] == 0
        assert distributor["available_balance"] == 20
        assert referral_row(seed, order["id"])["settled_at"] is not None

        refund = client.post(f"/api/orders/{order['id']}/refund", headers=admin["headers"], json={})
        assert refund.json()["order"]["commission_status"] == "refunded"
        distributor = distributor_row(seed, partner["distributor_id"])
        assert distributor["available_balance"] == 0
        assert distributor["total_earnings"] == 0
        assert distributor["total_orders"] == 0

    def test_refund_of_confirmed_commission(self, client, seed, admin, partner, buyer):
        order = referred_order(client, buyer, seed.product(price=100), "DIST0001")
        pay_order(client, buyer, order)

        refund = client.post(f"/api/orders/{order['id']}/refund", headers=admin["headers"], json={})
        assert refund.json()["order"]["commission_status"] == "cancelled"
        distributor = distributor_row(seed, partner["distributor_id"])
        assert distributor["pending_commission"] == 0
        assert distributor["total_earnings"] == 0

    def test_refund_with_insufficient_balance_raises_alert(self, client, seed, admin, partner, buyer):
        order = referred_order(client, buyer, seed.product(price=100), "DIST0001")
        pay_order(client, buyer, order)
        seed.set_config("commission_settlement_cooldown_days", "0")
        client.post("/api/cron/settle-commissions")
        seed.execute("UPDATE distributors SET available_balance = 3 WHERE id = ?", (partner["distributor_id"],))

        refund = client.post(f"/api/orders/{order['id']}/refund", headers=admin["headers"], json={})
        assert refund.json()["order"]["commission_status"] == "cancelled"
        assert distributor_row(seed, partner["distributor_id"])["available_balance"] == 3

        alert = seed.fetch_one("SELECT * FROM security_alerts WHERE type = 'REFUND_COMMISSION_SHORTAGE'")
        assert alert is not None
        assert alert["severity"] == "high"

    def test_cancelled_order_cancels_referral(self, client, seed, partner, buyer):
        order = referred_order(client, buyer, seed.product(), "DIST0001")
        client.post(f"/api/orders/{order['id']}/cancel", headers=buyer["headers"])
        assert referral_row(seed, order["id"])["status"] == "cancelled"

    def test_self_referral_ignored(self, client, seed, partner):
        order = referred_order(client, partner, seed.product(), "DIST0001")
        assert referral_row(seed, order["id"]) is None

    def test_inactive_distributor_code_ignored(self, client, seed, buyer):
        owner = seed.user("sleepy@example.com")
        seed.distributor(owner["id"], code="SLEEPY01", status="suspended")
        order = referred_order(client, buyer, seed.product(), "SLEEPY01")
        assert referral_row(seed, order["id"]) is None

    def test_test_user_settles_immediately(self, client, seed, buyer):
        tester = seed.user("test001@example.com")
        seed.distributor(tester["id"], code="TEST0001")
        order = referred_order(client, buyer, seed.product(), "TEST0001")
        pay_order(client, buyer, order)

        result = client.post("/api/cron/settle-commissions").json()
        assert result["settled"] == 1

    def test_cron_secret(self, client, app_settings, monkeypatch):
        monkeypatch.setattr(app_settings, "CRON_SECRET", "s3cret")
        assert client.post("/api/cron/settle-commissions").status_code == 401
        assert client.post(
            "/api/cron/settle-commissions", headers={"Authorization": "Bearer wrong"}
        ).status_code == 401
        assert client.post(
            "/api/cron/settle-commissions", headers={"Authorization": "Bearer s3cret"}
        ).status_code == 200


class TestWithdrawals:

    def test_first_withdrawal_is_high_risk(self, client, seed, partner):
        seed.execute("UPDATE distributors SET available_balance = 500 WHERE id = ?", (partner["distributor_id"],))

        response = client.post("/api/distribution/withdrawals", headers=partner["headers"], json={"amount": 200})
        assert response.status_code == 201
        body = response.json()
        withdrawal = body["withdrawal"]
        assert withdrawal["status"] == "pending"
        assert withdrawal["bank_account"] == "****1234"
        assert float(withdrawal["fee"]) == 4
        assert float(withdrawal["actual_amount"]) == 196
        assert body["risk"]["risk_score"] == 35
        assert body["risk"]["risk_level"] == "high"

        distributor = distributor_row(seed, partner["distributor_id"])
        assert distributor["available_balance"] == 300
        assert distributor["first_withdrawal_at"] is not None

        alert = seed.fetch_one("SELECT * FROM security_alerts WHERE type = 'HIGH_RISK_WITHDRAWAL'")
        assert alert is not None

    def test_low_risk_withdrawal_auto_approved(self, client, seed, partner):
        seed.execute(
            """UPDATE distributors SET available_balance = 500,
                   created_at = '2020-01-01 00:00:00',
                   first_withdrawal_at = '2020-02-01 00:00:00'
               WHERE id = ?""",
            (partner["distributor_id"],)
        )
        seed.set_config("withdrawal_auto_approve", "true")

        response = client.post("/api/distribution/withdrawals", headers=partner["headers"], json={"amount": 150})
        body = response.json()
        assert body["risk"]["risk_level"] == "low"
        assert body["withdrawal"]["status"] == "processing"

    def test_insufficient_balance(self, client, seed, partner):
        seed.execute("UPDATE distributors SET available_balance = 50 WHERE id = ?", (partner["distributor_id"],))
        response = client.post("/api/distribution/withdrawals", headers=partner["headers"], json={"amount": 100})
        assert response.status_code == 400

    def test_amount_below_minimum(self, client, seed, partner):
        seed.execute("UPDATE distributors SET available_balance = 500 WHERE id = ?", (partner["distributor_id"],))
        response = client.post("/api/distribution/withdrawals", headers=partner["headers"], json={"amount": 99})
        assert response.status_code == 400

    def test_one_open_withdrawal_at_a_time(self, client, seed, partner):
        seed.execute("UPDATE distributors SET available_balance = 1000 WHERE id = ?", (partner["distributor_id"],))
        client.post("/api/distribution/withdrawals", headers=partner["headers"], json={"amount": 100})
        response = client.post("/api/distribution/withdrawals", headers=partner["headers"], json={"amount": 100})
        assert response.status_code == 400

    def test_frozen_distributor_cannot_withdraw(self, client, seed, partner):
        seed.execute(
            "UPDATE distributors SET available_balance = 500, is_frozen = 1 WHERE id = ?",
            (partner["distributor_id"],)
        )
        response = client.post("/api/distribution/withdrawals", headers=partner["headers"], json={"amount": 100})
        assert response.status_code == 400

    def test_reject_returns_balance(self, client, seed, admin, partner):
        seed.execute("UPDATE distributors SET available_balance = 500 WHERE id = ?", (partner["distributor_id"],))
        withdrawal = client.post(
            "/api/distribution/withdrawals", headers=partner["headers"], json={"amount": 200}
        ).json()["withdrawal"]

        response = client.post(
            f"/api/admin/distribution/withdrawals/{withdrawal['id']}/reject",
            headers=admin["headers"],
            json={"reason": "Проверка не пройдена"},
        )
        assert response.status_code == 200
        assert response.json()["withdrawal"]["status"] == "rejected"
        assert distributor_row(seed, partner["distributor_id"])["available_balance"] == 500

    def test_approve_and_complete(self, client, seed, admin, partner):
        seed.execute("UPDATE distributors SET available_balance = 500 WHERE id = ?", (partner["distributor_id"],))
        withdrawal = client.post(
            "/api/distribution/withdrawals", headers=partner["headers"], json={"amount": 200}
        ).json()["withdrawal"]

        approved = client.post(
            f"/api/admin/distribution/withdrawals/{withdrawal['id']}/approve", headers=admin["headers"]
        )
        assert approved.json()["withdrawal"]["status"] == "processing"

        completed = client.post(
            f"/api/admin/distribution/withdrawals/{withdrawal['id']}/complete",
            headers=admin["headers"],
            json={"transaction_id": "BANK-001"},
        )
        assert completed.json()["withdrawal"]["status"] == "completed"
        assert distributor_row(seed, partner["distributor_id"])["withdrawn_amount"] == 200

        listing = client.get("/api/distribution/withdrawals", headers=partner["headers"]).json()
        assert listing["withdrawals"][0]["bank_account"] == "****1234"


class TestStats:

    def test_overview_and_orders(self, client, seed, partner, buyer):
        product_id = seed.product(price=200)
        client.post("/api/distribution/track", json={"code": "DIST0001"})
        order = referred_order(client, buyer, product_id, "DIST0001")
        pay_order(client, buyer, order)

        stats = client.get("/api/distribution/stats", headers=partner["headers"]).json()
        assert stats["overview"]["total_orders"] == 1
        assert stats["overview"]["pending_commission"] == 20
        assert stats["period"]["clicks"] == 1
        assert stats["commissions"]["confirmed"] == {"count": 1, "amount": 20.0}

        orders = client.get("/api/distribution/stats?type=orders", headers=partner["headers"]).json()
        assert orders["orders"][0]["order_number"] == order["order_number"]
        assert orders["orders"][0]["order_status"] == "paid"

    def test_stats_require_distributor(self, client, buyer):
        assert client.get("/api/distribution/stats", headers=buyer["headers"]).status_code == 404


class TestAdminControls:

    def test_list_distributors(self, client, seed, admin, partner):
        body = client.get("/api/admin/distribution/distributors?search=partner@", headers=admin["headers"]).json()
        assert body["pagination"]["total"] == 1
        assert body["distributors"][0]["code"] == "DIST0001"

    def test_freeze_unfreeze_verify(self, client, seed, admin, partner):
        url = f"/api/admin/distribution/distributors/{partner['distributor_id']}"

        frozen = client.post(f"{url}/freeze", headers=admin["headers"], json={"reason": "Проверка"})
        assert frozen.json()["distributor"]["is_frozen"] == 1
        assert frozen.json()["distributor"]["frozen_reason"] == "Проверка"

        unfrozen = client.post(f"{url}/unfreeze", headers=admin["headers"])
        assert unfrozen.json()["distributor"]["is_frozen"] == 0

        verified = client.post(f"{url}/verify", headers=admin["headers"])
        assert verified.json()["distributor"]["is_verified"] == 1
        assert verified.json()["distributor"]["verified_at"] is not None

    def test_approve_only_pending(self, client, admin, partner):
        response = client.post(
            f"/api/admin/distribution/distributors/{partner['distributor_id']}/approve",
            headers=admin["headers"],
            json={},
        )
        assert response.status_code == 400

    def test_requires_distribution_permission(self, client, buyer, partner):
        url = f"/api/admin/distribution/distributors/{partner['distributor_id']}/freeze"
        assert client.post(url, headers=buyer["headers"], json={"reason": "x"}).status_code == 403


class TestWithdrawalConfig:

    def test_grouped_defaults(self, client, admin):
        config = client.get("/api/admin/withdrawal-config", headers=admin["headers"]).json()
        assert config["basic"]["withdrawal_auto_approve"] is False
        assert config["basic"]["withdrawal_min_amount"] == 100
        assert config["basic"]["withdrawal_fee_rate"] == 0.02
        assert config["risk"]["withdrawal_risk_threshold_manual"] == 30

    def test_update(self, client, admin):
        response = client.put("/api/admin/withdrawal-config", headers=admin["headers"], json={"configs": {
            "withdrawal_auto_approve": True,
            "withdrawal_fee_rate": 0.05,
        }})
        assert response.status_code == 200, response.text
        assert response.json()["basic"]["withdrawal_auto_approve"] is True
        assert response.json()["basic"]["withdrawal_fee_rate"] == 0.05

    @pytest.mark.parametrize("configs", [
        {"withdrawal_fee_rate": 2},
        {"withdrawal_auto_approve": "maybe"},
        {"commission_settlement_cooldown_days": 3},
        {"unknown_key": 1},
    ])
    def test_invalid_update(self, client, seed, admin, configs):
        response = client.put("/api/admin/withdrawal-config", headers=admin["headers"], json={"configs": configs})
        assert response.status_code == 400
        fee = seed.fetch_one("SELECT value FROM system_configs WHERE key = 'withdrawal_fee_rate'")
        assert fee["value"] == "0.02"

    def test_init_restores_missing_keys(self, client, seed, admin):
        seed.execute("DELETE FROM system_configs WHERE key = 'withdrawal_daily_count_limit'")
        response = client.post("/api/admin/init-withdrawal-configs", headers=admin["headers"])
        assert response.json()["created"] == 1
        row = seed.fetch_one("SELECT value FROM system_configs WHERE key = 'withdrawal_daily_count_limit'")
        assert row["value"] == "3"

    def test_buyer_cannot_read_config(self, client, buyer):
        assert client.get("/api/admin/withdrawal-config", headers=buyer["headers"]).status_code == 403
