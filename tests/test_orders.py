"""
Tests for the cart, orders and mock payments.
"""

import io

from openpyxl import load_workbook


def pay(client, user, order_id, method="alipay", status="success"):
    """Создаёт тестовый платёж и сразу проводит его."""
    created = client.post(
        "/api/payment/create",
        headers=user["headers"],
        json={"order_id": order_id, "payment_method": method},
    )
    assert created.status_code == 200, created.text
    order = client.get(f"/api/orders/{order_id}", headers=user["headers"]).json()["order"]
    return client.post("/api/payment/callback", json={
        "payment_id": created.json()["payment_id"],
        "order_number": order["order_number"],
        "status": status,
    })


def create_direct_order(client, user, product_id, quantity=1, **extra):
    response = client.post("/api/orders/", headers=user["headers"], json={
        "type": "direct", "product_id": product_id, "quantity": quantity, **extra,
    })
    assert response.status_code == 201, response.text
    return response.json()["order"]


class TestCart:

    def test_add_increments_quantity(self, client, seed, buyer):
        product_id = seed.product(price=30)
        first = client.post("/api/cart/", headers=buyer["headers"], json={"product_id": product_id})
        assert first.status_code == 201
        client.post("/api/cart/", headers=buyer["headers"], json={"product_id": product_id, "quantity": 2})

        cart = client.get("/api/cart/", headers=buyer["headers"]).json()
        assert len(cart["items"]) == 1
        assert cart["total_items"] == 3
        assert float(cart["total_amount"]) == 90

    def test_inactive_product_cannot_be_added(self, client, seed, buyer):
        product_id = seed.product(status="inactive")
        response = client.post("/api/cart/", headers=buyer["headers"], json={"product_id": product_id})
        assert response.status_code == 404

    def test_foreign_cart_item_not_found(self, client, seed, buyer):
        other = seed.user("other@example.com")
        product_id = seed.product()
        item = client.post("/api/cart/", headers=other["headers"], json={"product_id": product_id}).json()["item"]
        response = client.put(f"/api/cart/{item['id']}", headers=buyer["headers"], json={"quantity": 5})
        assert response.status_code == 404

    def test_cart_requires_auth(self, client):
        assert client.get("/api/cart/").status_code == 401


class TestOrderCreation:

    def test_order_from_cart_clears_cart(self, client, seed, buyer):
        first = seed.product(title="Первый", price=10)
        second = seed.product(title="Второй", price=25.5)
        client.post("/api/cart/", headers=buyer["headers"], json={"product_id": first, "quantity": 2})
        client.post("/api/cart/", headers=buyer["headers"], json={"product_id": second})

        response = client.post("/api/orders/", headers=buyer["headers"], json={"type": "cart"})
        assert response.status_code == 201
        order = response.json()["order"]
        assert order["order_number"].startswith("ORD")
        assert order["status"] == "pending"
        assert float(order["total_amount"]) == 45.5
        assert len(order["items"]) == 2
        assert order["expires_at"] is not None

        assert client.get("/api/cart/", headers=buyer["headers"]).json()["items"] == []

    def test_empty_cart(self, client, buyer):
        response = client.post("/api/orders/", headers=buyer["headers"], json={"type": "cart"})
        assert response.status_code == 400

    def test_direct_order_snapshots_price(self, client, seed, buyer):
        product_id = seed.product(price=40)
        order = create_direct_order(client, buyer, product_id, quantity=3)
        seed.execute("UPDATE products SET price = 999 WHERE id = ?", (product_id,))

        fetched = client.get(f"/api/orders/{order['id']}", headers=buyer["headers"]).json()["order"]
        assert float(fetched["total_amount"]) == 120
        assert float(fetched["items"][0]["price"]) == 40

    def test_direct_order_requires_product(self, client, buyer):
        response = client.post("/api/orders/", headers=buyer["headers"], json={"type": "direct"})
        assert response.status_code == 400

    def test_link_hidden_until_paid(self, client, seed, buyer):
        product_id = seed.product(link="https://pan.example.com/s/secret")
        order = create_direct_order(client, buyer, product_id)
        assert "network_disk_link" not in order["items"][0]

        looked_up = client.get("/api/orders/lookup", params={"order_number": order["order_number"]}).json()
        assert "network_disk_link" not in looked_up["order"]["items"][0]
        mine = client.get("/api/orders/", headers=buyer["headers"]).json()["orders"]
        assert "network_disk_link" not in mine[0]["items"][0]

        pay(client, buyer, order["id"])
        paid = client.get(f"/api/orders/{order['id']}", headers=buyer["headers"]).json()["order"]
        assert paid["status"] == "paid"
        assert paid["items"][0]["network_disk_link"] == "https://pan.example.com/s/secret"

    def test_foreign_order_forbidden(self, client, seed, buyer):
        other = seed.user("other@example.com")
        order = create_direct_order(client, other, seed.product())
        assert client.get(f"/api/orders/{order['id']}", headers=buyer["headers"]).status_code == 403

        seed.grant(buyer["id"], "ORDERS", "READ")
        assert client.get(f"/api/orders/{order['id']}", headers=buyer["headers"]).status_code == 200


class TestPayments:

    def test_mock_payment_success(self, client, seed, buyer):
        order = create_direct_order(client, buyer, seed.product(price=88))
        response = pay(client, buyer, order["id"])
        assert response.status_code == 200
        assert response.json()["success"] is True

        payment = seed.fetch_one("SELECT * FROM payments WHERE order_id = ?", (order["id"],))
        assert payment["status"] == "success"
        assert payment["transaction_id"].startswith("MOCK_")

        stored = seed.fetch_one("SELECT * FROM orders WHERE id = ?", (order["id"],))
        assert stored["paid_at"] is not None
        assert stored["expires_at"] is None

    def test_failed_payment_keeps_order_pending(self, client, seed, buyer):
        order = create_direct_order(client, buyer, seed.product())
        response = pay(client, buyer, order["id"], status="failed")
        assert response.json()["success"] is False

        stored = seed.fetch_one("SELECT status FROM orders WHERE id = ?", (order["id"],))
        assert stored["status"] == "pending"

    def test_callback_is_idempotent(self, client, seed, buyer):
        order = create_direct_order(client, buyer, seed.product())
        pay(client, buyer, order["id"])
        payment = seed.fetch_one("SELECT * FROM payments WHERE order_id = ?", (order["id"],))

        again = client.post("/api/payment/callback", json={
            "payment_id": payment["id"], "order_number": order["order_number"], "status": "success",
        })
        assert again.status_code == 200
        assert again.json()["order"]["status"] == "paid"

    def test_paid_order_cannot_be_paid_again(self, client, seed, buyer):
        order = create_direct_order(client, buyer, seed.product())
        pay(client, buyer, order["id"])
        response = client.post("/api/payment/create", headers=buyer["headers"], json={
            "order_id": order["id"], "payment_method": "wechat",
        })
        assert response.status_code == 400

    def test_expired_order_is_cancelled_on_payment(self, client, seed, buyer):
        order = create_direct_order(client, buyer, seed.product())
        seed.execute("UPDATE orders SET expires_at = '2000-01-01 00:00:00' WHERE id = ?", (order["id"],))

        response = client.post("/api/payment/create", headers=buyer["headers"], json={
            "order_id": order["id"], "payment_method": "alipay",
        })
        assert response.status_code == 400
        stored = seed.fetch_one("SELECT status FROM orders WHERE id = ?", (order["id"],))
        assert stored["status"] == "cancelled"

    def test_disabled_method_rejected(self, client, seed, buyer):
        seed.set_config("payment_paypal_enabled", "false")
        order = create_direct_order(client, buyer, seed.product())
        response = client.post("/api/payment/create", headers=buyer["headers"], json={
            "order_id": order["id"], "payment_method": "paypal",
        })
        assert response.status_code == 400

    def test_callback_with_wrong_order_number(self, client, seed, buyer):
        order = create_direct_order(client, buyer, seed.product())
        created = client.post("/api/payment/create", headers=buyer["headers"], json={
            "order_id": order["id"], "payment_method": "alipay",
        }).json()
        response = client.post("/api/payment/callback", json={
            "payment_id": created["payment_id"], "order_number": "ORD000", "status": "success",
        })
        assert response.status_code == 404

    def test_mock_disabled_in_live_mode(self, client, app_settings, monkeypatch):
        monkeypatch.setattr(app_settings, "PAYMENT_MODE", "live")
        response = client.post("/api/payment/callback", json={
            "payment_id": 1, "order_number": "ORD1", "status": "success",
        })
        assert response.status_code == 403


class TestCancelAndRefund:

    def test_owner_cancels_pending_order(self, client, seed, buyer):
        order = create_direct_order(client, buyer, seed.product())
        response = client.post(f"/api/orders/{order['id']}/cancel", headers=buyer["headers"])
        assert response.status_code == 200
        assert response.json()["order"]["status"] == "cancelled"

        again = client.post(f"/api/orders/{order['id']}/cancel", headers=buyer["headers"])
        assert again.status_code == 400

    def test_paid_order_cannot_be_cancelled(self, client, seed, buyer):
        order = create_direct_order(client, buyer, seed.product())
        pay(client, buyer, order["id"])
        response = client.post(f"/api/orders/{order['id']}/cancel", headers=buyer["headers"])
        assert response.status_code == 400

    def test_refund_requires_orders_write(self, client, seed, buyer):
        order = create_direct_order(client, buyer, seed.product())
        pay(client, buyer, order["id"])
        response = client.post(f"/api/orders/{order['id']}/refund", headers=buyer["headers"], json={})
        assert response.status_code == 403

    def test_refund_paid_order(self, client, seed, admin, buyer):
        order = create_direct_order(client, buyer, seed.product())
        pay(client, buyer, order["id"])

        response = client.post(
            f"/api/orders/{order['id']}/refund",
            headers=admin["headers"],
            json={"reason": "Клиент передумал"},
        )
        assert response.status_code == 200
        refunded = response.json()["order"]
        assert refunded["status"] == "refunded"
        assert refunded["refund_reason"] == "Клиент передумал"
        assert refunded["commission_status"] is None

        payment = seed.fetch_one("SELECT status FROM payments WHERE order_id = ?", (order["id"],))
        assert payment["status"] == "refunded"

    def test_refund_pending_order_rejected(self, client, seed, admin, buyer):
        order = create_direct_order(client, buyer, seed.product())
        response = client.post(f"/api/orders/{order['id']}/refund", headers=admin["headers"], json={})
        assert response.status_code == 400

    def test_cancel_expired_is_public(self, client, seed, buyer):
        expired = create_direct_order(client, buyer, seed.product())
        fresh = create_direct_order(client, buyer, seed.product())
        seed.execute("UPDATE orders SET expires_at = '2000-01-01 00:00:00' WHERE id = ?", (expired["id"],))

        response = client.get("/api/orders/cancel-expired")
        assert response.status_code == 200
        assert response.json() == {"cancelled": 1, "order_numbers": [expired["order_number"]]}

        statuses = {
            row["id"]: row["status"]
            for row in seed.fetch_all("SELECT id, status FROM orders")
        }
        assert statuses[expired["id"]] == "cancelled"
        assert statuses[fresh["id"]] == "pending"

    def test_batch_cancel_skips_paid_orders(self, client, seed, admin, buyer):
        paid = create_direct_order(client, buyer, seed.product())
        pending = create_direct_order(client, buyer, seed.product())
        pay(client, buyer, paid["id"])

        response = client.post("/api/orders/cancel-expired", headers=admin["headers"], json={
            "order_ids": [paid["id"], pending["id"]],
        })
        assert response.json()["order_numbers"] == [pending["order_number"]]

    def test_batch_cancel_requires_target(self, client, admin):
        response = client.post("/api/orders/cancel-expired", headers=admin["headers"], json={})
        assert response.status_code == 422


class TestLookup:

    def test_lookup_by_number(self, client, seed, buyer):
        order = create_direct_order(client, buyer, seed.product())
        response = client.get("/api/orders/lookup", params={"order_number": order["order_number"]})
        assert response.status_code == 200
        found = response.json()["order"]
        assert found["id"] == order["id"]
        assert "payment" not in found
        assert "network_disk_link" not in found["items"][0]

    def test_lookup_unknown(self, client):
        response = client.get("/api/orders/lookup", params={"order_number": "ORD404"})
        assert response.status_code == 404

    def test_order_rate_limit(self, client, seed, buyer):
        product_id = seed.product()
        for _ in range(10):
            create_direct_order(client, buyer, product_id)
        response = client.post("/api/orders/", headers=buyer["headers"], json={
            "type": "direct", "product_id": product_id, "quantity": 1,
        })
        assert response.status_code == 429


class TestAnonymousExport:

    def test_export_info_for_unpaid_orders(self, client, seed, buyer):
        order = create_direct_order(client, buyer, seed.product())
        info = client.get(
            f"/api/orders/export-info?visitor_id=v-1&order_numbers={order['order_number']}"
        ).json()
        assert info["allowed"] is False
        assert info["total_allowed"] == 0

    def test_two_exports_per_paid_order(self, client, seed, buyer):
        order = create_direct_order(client, buyer, seed.product(title="Курс SQL"))
        pay(client, buyer, order["id"])
        body = {"visitor_id": "v-1", "order_numbers": [order["order_number"]]}

        info = client.get(f"/api/orders/export-info?visitor_id=v-1&order_numbers={order['order_number']}").json()
        assert info == {
            "allowed": True,
            "reason": None,
            "paid_order_count": 1,
            "used_exports": 0,
            "remaining_exports": 2,
            "total_allowed": 2,
        }

        first = client.post("/api/orders/export", json=body)
        assert first.status_code == 200
        sheet = load_workbook(io.BytesIO(first.content)).active
        assert sheet.cell(row=2, column=2).value == "Курс SQL"
        assert sheet.cell(row=2, column=7).value == "https://pan.example.com/s/abc"

        assert client.post("/api/orders/export", json=body).status_code == 200
        assert client.post("/api/orders/export", json=body).status_code == 429

        other_visitor = client.post("/api/orders/export", json={**body, "visitor_id": "v-2"})
        assert other_visitor.status_code == 200
