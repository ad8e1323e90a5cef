"""
Tests for the admin back office: banners, settings, logs, alerts, analytics,
uploads, support chat and order reports.
"""

import io

from openpyxl import load_workbook
from PIL import Image


def png_bytes(size=(8, 8)) -> bytes:
    """Маленькая корректная PNG-картинка."""
    buffer = io.BytesIO()
    Image.new("RGB", size, color=(200, 30, 30)).save(buffer, format="PNG")
    return buffer.getvalue()


BANNER = {
    "title": "Весенняя распродажа",
    "image": "https://cdn.example.com/banner.png",
    "link": "https://shop.example.com/sale",
}


class TestBanners:

    def test_create_and_list_public(self, client, admin):
        response = client.post("/api/admin/banners/", headers=admin["headers"], json=BANNER)
        assert response.status_code == 201, response.text
        assert response.json()["title"] == "Весенняя распродажа"

        public = client.get("/api/banners/").json()
        assert [b["title"] for b in public] == ["Весенняя распродажа"]

    def test_creation_is_journaled(self, client, seed, admin):
        client.post("/api/admin/banners/", headers=admin["headers"], json=BANNER)
        alert = seed.fetch_one("SELECT * FROM security_alerts WHERE type = 'BANNER_CREATED'")
        assert alert["severity"] == "info"
        assert alert["user_id"] == admin["id"]

    def test_disabled_flag_hides_banners(self, client, seed, admin):
        client.post("/api/admin/banners/", headers=admin["headers"], json=BANNER)
        seed.set_config("banner_enabled", "false")
        assert client.get("/api/banners/").json() == []

    def test_inactive_banner_not_public(self, client, admin):
        client.post("/api/admin/banners/", headers=admin["headers"], json={**BANNER, "status": "inactive"})
        assert client.get("/api/banners/").json() == []
        assert len(client.get("/api/admin/banners/", headers=admin["headers"]).json()) == 1

    def test_suspicious_link_rejected(self, client, seed, admin):
        response = client.post(
            "/api/admin/banners/",
            headers=admin["headers"],
            json={**BANNER, "link": "javascript:alert(1)"},
        )
        assert response.status_code == 400
        assert seed.fetch_one("SELECT COUNT(*) as n FROM banners")["n"] == 0

        alert = seed.fetch_one("SELECT * FROM security_alerts WHERE type = 'SUSPICIOUS_URL'")
        assert alert["severity"] == "high"
        assert "javascript:alert(1)" in alert["metadata"]

    def test_too_many_banners(self, client, seed, admin):
        for i in range(51):
            seed.insert("banners", {"title": f"B{i}", "image": "https://cdn.example.com/b.png"})
        response = client.post("/api/admin/banners/", headers=admin["headers"], json=BANNER)
        assert response.status_code == 400
        assert seed.fetch_one("SELECT * FROM security_alerts WHERE type = 'EXCESSIVE_BANNER_COUNT'")

    def test_update_and_delete(self, client, admin):
        banner_id = client.post("/api/admin/banners/", headers=admin["headers"], json=BANNER).json()["id"]

        updated = client.put(f"/api/admin/banners/{banner_id}", headers=admin["headers"], json={"sort_order": 5})
        assert updated.status_code == 200
        assert updated.json()["sort_order"] == 5

        bad = client.put(
            f"/api/admin/banners/{banner_id}",
            headers=admin["headers"],
            json={"image": "data:image/png;base64,AAAA"},
        )
        assert bad.status_code == 400

        deleted = client.delete(f"/api/admin/banners/{banner_id}", headers=admin["headers"])
        assert deleted.json() == {"message": "Баннер удалён"}
        assert client.delete(f"/api/admin/banners/{banner_id}", headers=admin["headers"]).status_code == 404

    def test_update_unknown_banner(self, client, admin):
        response = client.put("/api/admin/banners/999", headers=admin["headers"], json={"title": "X"})
        assert response.status_code == 404
        assert response.json()["detail"] == "Banner not found"

    def test_buyer_cannot_manage_banners(self, client, buyer):
        response = client.post("/api/admin/banners/", headers=buyer["headers"], json=BANNER)
        assert response.status_code == 403


class TestSystemConfig:

    def test_public_flags(self, client, seed):
        seed.set_config("payment_paypal_enabled", "false")
        assert client.get("/api/system-config/").json() == {
            "banner_enabled": True,
            "payment_alipay_enabled": True,
            "payment_wechat_enabled": True,
            "payment_paypal_enabled": False,
        }

    def test_list_by_category(self, client, admin):
        response = client.get("/api/admin/system-config/?category=payment", headers=admin["headers"])
        configs = response.json()["configs"]
        assert {c["key"] for c in configs} >= {"payment_alipay_enabled", "payment_wechat_enabled"}
        assert all(c["category"] == "payment" for c in configs)
        assert all(c["parsed_value"] is True for c in configs if c["type"] == "boolean")

    def test_upsert_new_key(self, client, admin):
        response = client.post("/api/admin/system-config/", headers=admin["headers"], json={
            "key": "support_hours", "value": {"from": 9, "to": 18}, "type": "json",
        })
        assert response.status_code == 200, response.text
        assert response.json()["config"]["parsed_value"] == {"from": 9, "to": 18}

    def test_invalid_value_rejected(self, client, admin):
        response = client.post("/api/admin/system-config/", headers=admin["headers"], json={
            "key": "withdrawal_fee_rate", "value": 1.5, "type": "number", "category": "withdrawal",
        })
        assert response.status_code == 400

    def test_batch_is_all_or_nothing(self, client, seed, admin):
        response = client.put("/api/admin/system-config/", headers=admin["headers"], json={"configs": [
            {"key": "banner_enabled", "value": False, "type": "boolean", "category": "feature"},
            {"key": "withdrawal_min_amount", "value": "abc", "type": "number", "category": "withdrawal"},
        ]})
        assert response.status_code == 400
        row = seed.fetch_one("SELECT value FROM system_configs WHERE key = 'banner_enabled'")
        assert row["value"] == "true"

    def test_batch_update(self, client, admin):
        response = client.put("/api/admin/system-config/", headers=admin["headers"], json={"configs": [
            {"key": "banner_enabled", "value": False, "type": "boolean", "category": "feature"},
        ]})
        assert response.status_code == 200
        assert response.json()["configs"][0]["value"] == "false"
        assert client.get("/api/system-config/").json()["banner_enabled"] is False

    def test_requires_permission(self, client, seed, buyer):
        assert client.get("/api/admin/system-config/", headers=buyer["headers"]).status_code == 403
        seed.grant(buyer["id"], "SYSTEM_SETTINGS", "READ")
        assert client.get("/api/admin/system-config/", headers=buyer["headers"]).status_code == 200


class TestSecurityAlerts:

    def _alert(self, seed, type="LOGIN_BRUTEFORCE", severity="high", status="unresolved"):
        return seed.insert("security_alerts", {
            "type": type,
            "severity": severity,
            "description": "Подозрительная активность",
            "metadata": '{"attempts": 7}',
            "status": status,
        })

    def test_list_with_filters(self, client, seed, admin):
        self._alert(seed)
        self._alert(seed, type="BANNER_CREATED", severity="info", status="resolved")

        body = client.get("/api/admin/security-alerts/", headers=admin["headers"]).json()
        assert body["pagination"]["total"] == 2
        assert body["unresolved_count"] == 1

        high = client.get("/api/admin/security-alerts/?severity=high", headers=admin["headers"]).json()
        assert len(high["alerts"]) == 1
        assert high["alerts"][0]["metadata"] == {"attempts": 7}

    def test_resolve_records_admin(self, client, seed, admin):
        alert_id = self._alert(seed)
        response = client.patch(
            f"/api/admin/security-alerts/{alert_id}",
            headers=admin["headers"],
            json={"status": "resolved", "notes": "ложная тревога"},
        )
        alert = response.json()["alert"]
        assert alert["status"] == "resolved"
        assert alert["resolved_by"] == admin["id"]
        assert alert["resolved_at"] is not None

    def test_batch_update_and_delete(self, client, seed, admin):
        ids = [self._alert(seed) for _ in range(3)]

        updated = client.patch(
            "/api/admin/security-alerts/batch",
            headers=admin["headers"],
            json={"ids": ids, "status": "investigating"},
        )
        assert updated.json() == {"updated": 3}
        assert seed.fetch_one("SELECT * FROM security_alerts WHERE type = 'BATCH_ALERT_UPDATE'")

        deleted = client.request(
            "DELETE", "/api/admin/security-alerts/batch", headers=admin["headers"], json={"ids": ids}
        )
        assert deleted.json() == {"deleted": 3}

    def test_unknown_alert(self, client, admin):
        response = client.patch("/api/admin/security-alerts/999", headers=admin["headers"], json={"status": "resolved"})
        assert response.status_code == 404


class TestLogs:

    def _log(self, seed, level="info", category="order", message="Заказ создан"):
        seed.insert("system_logs", {
            "level": level, "category": category, "action": "create", "message": message,
        })

    def test_list_and_filter(self, client, seed, admin):
        self._log(seed)
        self._log(seed, level="error", category="payment", message="Callback failed")

        body = client.get("/api/admin/logs/?level=error", headers=admin["headers"]).json()
        assert body["pagination"]["total"] == 1
        assert body["logs"][0]["message"] == "Callback failed"

        keyword = client.get("/api/admin/logs/?keyword=создан", headers=admin["headers"]).json()
        assert keyword["pagination"]["total"] == 1

    def test_bad_date_format(self, client, admin):
        response = client.get("/api/admin/logs/?start_date=17.10.2026", headers=admin["headers"])
        assert response.status_code == 400

    def test_export_xlsx(self, client, seed, admin):
        self._log(seed)
        response = client.get("/api/admin/logs/export", headers=admin["headers"])
        assert response.status_code == 200
        assert response.headers["content-type"].startswith(
            "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
        )

        sheet = load_workbook(io.BytesIO(response.content)).active
        assert sheet.cell(row=1, column=1).value == "Время"
        assert sheet.cell(row=2, column=5).value == "Заказ создан"


class TestAnalytics:

    def test_track_and_stats(self, client, admin):
        for path in ("/", "/products", "/"):
            response = client.post(
                "/api/analytics/track",
                json={"path": path},
                headers={"User-Agent": "pytest-browser"},
            )
            assert response.json() == {"success": True}

        stats = client.get("/api/admin/analytics/stats", headers=admin["headers"]).json()
        assert stats["overview"] == {"pv": 3, "uv": 1, "avg_pages_per_visitor": 3.0}
        assert stats["top_paths"][0] == {"path": "/", "count": 2, "visitors": 1}
        assert stats["range"]["granularity"] == "day"
        assert sum(point["pv"] for point in stats["series"]) == 3

    def test_stats_require_permission(self, client, buyer):
        assert client.get("/api/admin/analytics/stats", headers=buyer["headers"]).status_code == 403


class TestUploads:

    def test_upload_and_serve(self, client, admin):
        content = png_bytes()
        response = client.post(
            "/api/upload/image",
            headers=admin["headers"],
            files={"file": ("cover.png", content, "image/png")},
        )
        assert response.status_code == 200, response.text
        url = response.json()["url"]
        assert url.startswith("/media/images/") and url.endswith(".png")

        served = client.get(url)
        assert served.status_code == 200
        assert served.content == content

    def test_wrong_type_rejected(self, client, admin):
        response = client.post(
            "/api/upload/image",
            headers=admin["headers"],
            files={"file": ("notes.txt", b"hello", "text/plain")},
        )
        assert response.status_code == 400

    def test_upload_requires_write(self, client, seed, buyer):
        files = {"file": ("cover.png", png_bytes(), "image/png")}
        assert client.post("/api/upload/image", headers=buyer["headers"], files=files).status_code == 403
        seed.grant(buyer["id"], "BANNERS", "WRITE")
        assert client.post("/api/upload/image", headers=buyer["headers"], files=files).status_code == 200

    def test_unknown_media(self, client):
        response = client.get("/media/images/missing.png")
        assert response.status_code == 404
        assert response.json()["detail"] == "File not found"


class TestChat:

    def test_conversation(self, client, admin):
        opened = client.post("/api/chat/sessions", json={"visitor_id": "v-1", "visitor_name": "Аня"})
        assert opened.status_code == 201
        session_id = opened.json()["session"]["id"]

        again = client.get("/api/chat/sessions?visitor_id=v-1").json()
        assert again["session"]["id"] == session_id

        sent = client.post("/api/chat/messages", json={
            "session_id": session_id, "visitor_id": "v-1", "message": "Где ссылка?",
        })
        assert sent.status_code == 201
        first_id = sent.json()["message"]["id"]

        sessions = client.get("/api/admin/chat/sessions", headers=admin["headers"]).json()["sessions"]
        assert sessions[0]["unread_count"] == 1
        assert sessions[0]["last_message"] == "Где ссылка?"

        reply = client.post("/api/chat/messages", headers=admin["headers"], json={
            "session_id": session_id, "sender_type": "admin", "message": "В разделе заказов",
        })
        assert reply.status_code == 201

        polled = client.get(f"/api/chat/messages?session_id={session_id}&since={first_id}&visitor_id=v-1").json()
        assert [m["message"] for m in polled["messages"]] == ["В разделе заказов"]

        marked = client.post(f"/api/admin/chat/sessions/{session_id}/read", headers=admin["headers"])
        assert marked.json() == {"marked": 1}

    def test_message_is_sanitized(self, client):
        session_id = client.post("/api/chat/sessions", json={"visitor_id": "v-2"}).json()["session"]["id"]
        sent = client.post("/api/chat/messages", json={
            "session_id": session_id, "visitor_id": "v-2", "message": "<script>x</script>привет",
        })
        assert "<script>" not in sent.json()["message"]["message"]

    def test_foreign_visitor_forbidden(self, client):
        session_id = client.post("/api/chat/sessions", json={"visitor_id": "v-3"}).json()["session"]["id"]
        response = client.post("/api/chat/messages", json={
            "session_id": session_id, "visitor_id": "someone-else", "message": "hi",
        })
        assert response.status_code == 403

    def test_history_needs_owner_or_operator(self, client, admin, buyer):
        session_id = client.post("/api/chat/sessions", json={"visitor_id": "v-6"}).json()["session"]["id"]
        client.post("/api/chat/messages", json={
            "session_id": session_id, "visitor_id": "v-6", "message": "мой телефон 13800000000",
        })
        url = f"/api/chat/messages?session_id={session_id}"

        assert client.get(url).status_code == 403
        assert client.get(f"{url}&visitor_id=stranger").status_code == 403
        assert client.get(url, headers=buyer["headers"]).status_code == 403

        own = client.get(f"{url}&visitor_id=v-6")
        assert own.status_code == 200
        assert len(own.json()["messages"]) == 1
        assert client.get(url, headers=admin["headers"]).status_code == 200

        missing = client.get("/api/chat/messages?session_id=999&visitor_id=v-6")
        assert missing.status_code == 404

    def test_admin_reply_requires_permission(self, client, buyer):
        session_id = client.post("/api/chat/sessions", json={"visitor_id": "v-4"}).json()["session"]["id"]
        response = client.post("/api/chat/messages", headers=buyer["headers"], json={
            "session_id": session_id, "sender_type": "admin", "message": "Я оператор",
        })
        assert response.status_code == 403

    def test_closed_session(self, client, admin):
        session_id = client.post("/api/chat/sessions", json={"visitor_id": "v-5"}).json()["session"]["id"]
        closed = client.post(f"/api/admin/chat/sessions/{session_id}/close", headers=admin["headers"])
        assert closed.status_code == 200

        response = client.post("/api/chat/messages", json={
            "session_id": session_id, "visitor_id": "v-5", "message": "ещё вопрос",
        })
        assert response.status_code == 400

        fresh = client.get("/api/chat/sessions?visitor_id=v-5").json()
        assert fresh["session"]["id"] != session_id

    def test_image_upload_is_decoded(self, client):
        good = client.post(
            "/api/chat/upload-image",
            files={"image": ("shot.png", png_bytes(), "image/png")},
        )
        assert good.status_code == 200
        assert good.json()["url"].startswith("/media/chat/")

        fake = client.post(
            "/api/chat/upload-image",
            files={"image": ("shot.png", b"not really a png", "image/png")},
        )
        assert fake.status_code == 400


class TestOrderReports:

    def _order(self, seed, number, amount, status="pending", user_id=None):
        return seed.insert("orders", {
            "order_number": number,
            "user_id": user_id,
            "total_amount": amount,
            "original_amount": amount,
            "status": status,
        })

    def test_list_orders(self, client, seed, admin, buyer):
        self._order(seed, "ORD-A", 50, user_id=buyer["id"])
        self._order(seed, "ORD-B", 80, status="paid")

        body = client.get("/api/admin/orders?status=paid", headers=admin["headers"]).json()
        assert [o["order_number"] for o in body["orders"]] == ["ORD-B"]

        search = client.get("/api/admin/orders?search=buyer@", headers=admin["headers"]).json()
        assert search["pagination"]["total"] == 1
        assert search["orders"][0]["user_email"] == "buyer@example.com"

    def test_statistics(self, client, seed, admin):
        self._order(seed, "ORD-A", 50)
        self._order(seed, "ORD-B", 80, status="paid")

        body = client.get("/api/admin/order-statistics?dimension=month", headers=admin["headers"]).json()
        assert body["type"] == "product"
        assert sum(row["count"] for row in body["statistics"]) == 2
        assert sum(row["paid_amount"] for row in body["statistics"]) == 80.0

    def test_export(self, client, seed, admin):
        self._order(seed, "ORD-A", 50)
        response = client.get("/api/admin/orders/export", headers=admin["headers"])
        sheet = load_workbook(io.BytesIO(response.content)).active
        assert sheet.cell(row=2, column=1).value == "ORD-A"

    def test_cleanup_requires_confirmation(self, client, seed, admin):
        self._order(seed, "ORD-A", 50, status="cancelled")
        self._order(seed, "ORD-B", 80, status="paid")

        refused = client.post("/api/admin/orders/cleanup", headers=admin["headers"], json={"status": "cancelled"})
        assert refused.status_code == 400

        done = client.post(
            "/api/admin/orders/cleanup",
            headers=admin["headers"],
            json={"status": "cancelled", "confirm_delete": True},
        )
        assert done.json()["deleted_count"] == 1
        assert seed.fetch_one("SELECT COUNT(*) as n FROM orders")["n"] == 1


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
