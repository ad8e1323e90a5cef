"""
Tests for categories and products.
"""


class TestCategories:

    def test_create_and_list(self, client, seed, admin):
        response = client.post("/api/categories/", headers=admin["headers"], json={"name": "Программирование"})
        assert response.status_code == 201
        category = response.json()
        assert category["product_count"] == 0

        categories = client.get("/api/categories/").json()
        assert [c["name"] for c in categories] == ["Программирование"]

    def test_duplicate_name_rejected(self, client, admin):
        client.post("/api/categories/", headers=admin["headers"], json={"name": "Дизайн"})
        response = client.post("/api/categories/", headers=admin["headers"], json={"name": "Дизайн"})
        assert response.status_code == 400

    def test_create_requires_write(self, client, seed, buyer):
        response = client.post("/api/categories/", headers=buyer["headers"], json={"name": "Дизайн"})
        assert response.status_code == 403

    def test_rename_updates_products(self, client, seed, admin):
        category = client.post("/api/categories/", headers=admin["headers"], json={"name": "Старое"}).json()
        client.post("/api/admin/products/", headers=admin["headers"], json={
            "title": "Курс", "price": 50, "category_id": category["id"],
        })

        response = client.put(f"/api/categories/{category['id']}", headers=admin["headers"], json={"name": "Новое"})
        assert response.status_code == 200
        assert response.json()["product_count"] == 1

        product = seed.fetch_one("SELECT category FROM products WHERE category_id = ?", (category["id"],))
        assert product["category"] == "Новое"

    def test_delete_non_empty_category(self, client, admin):
        category = client.post("/api/categories/", headers=admin["headers"], json={"name": "Курсы"}).json()
        client.post("/api/admin/products/", headers=admin["headers"], json={
            "title": "Курс", "price": 50, "category_id": category["id"],
        })
        response = client.delete(f"/api/categories/{category['id']}", headers=admin["headers"])
        assert response.status_code == 400

    def test_delete_empty_category(self, client, admin):
        category = client.post("/api/categories/", headers=admin["headers"], json={"name": "Пусто"}).json()
        response = client.delete(f"/api/categories/{category['id']}", headers=admin["headers"])
        assert response.status_code == 200
        assert client.get(f"/api/categories/{category['id']}").status_code == 404


class TestProducts:

    def test_create_single_product(self, client, admin):
        response = client.post("/api/admin/products/", headers=admin["headers"], json={
            "title": "Курс Python",
            "price": 199.5,
            "tags": ["python", "backend"],
            "network_disk_link": "https://pan.example.com/s/xyz",
        })
        assert response.status_code == 201
        product = response.json()
        assert float(product["price"]) == 199.5
        assert product["tags"] == ["python", "backend"]
        assert product["network_disk_link"] == "https://pan.example.com/s/xyz"

    def test_bulk_create(self, client, admin):
        response = client.post("/api/admin/products/", headers=admin["headers"], json=[
            {"title": "Первый", "price": 10},
            {"title": "Второй", "price": 20},
        ])
        assert response.status_code == 201
        body = response.json()
        assert body["count"] == 2
        assert [p["title"] for p in body["products"]] == ["Первый", "Второй"]

    def test_bulk_create_is_atomic(self, client, seed, admin):
        response = client.post("/api/admin/products/", headers=admin["headers"], json=[
            {"title": "Первый", "price": 10},
            {"title": "Второй", "price": 20, "category_id": 999},
        ])
        assert response.status_code == 400
        assert seed.fetch_one("SELECT COUNT(*) as n FROM products")["n"] == 0

    def test_non_positive_price_rejected(self, client, admin):
        response = client.post("/api/admin/products/", headers=admin["headers"], json={"title": "Бесплатно", "price": 0})
        assert response.status_code == 422

    def test_public_product_hides_link(self, client, seed):
        product_id = seed.product()
        response = client.get(f"/api/products/{product_id}")
        assert response.status_code == 200
        assert "network_disk_link" not in response.json()

        listing = client.get("/api/products/").json()
        assert listing["pagination"]["total"] == 1
        assert "network_disk_link" not in listing["products"][0]

    def test_inactive_product_not_public(self, client, seed):
        product_id = seed.product(status="inactive")
        assert client.get(f"/api/products/{product_id}").status_code == 404
        assert client.get("/api/products/").json()["products"] == []

    def test_search_and_pagination(self, client, seed):
        seed.product(title="Курс Python")
        seed.product(title="Курс Go")
        seed.product(title="Книга по SQL")

        found = client.get("/api/products/", params={"search": "курс"}).json()
        assert found["pagination"]["total"] == 2

        page = client.get("/api/products/", params={"limit": 2, "page": 2}).json()
        assert len(page["products"]) == 1
        assert page["pagination"]["total_pages"] == 2

    def test_search_ignores_cyrillic_case(self, client, seed, admin):
        seed.product(title="Курс Python")
        seed.product(title="Введение в КУРС", status="inactive")

        public = client.get("/api/products/", params={"search": "КУРС"}).json()
        assert [p["title"] for p in public["products"]] == ["Курс Python"]

        found = client.get("/api/admin/products/", headers=admin["headers"], params={"search": "курс"}).json()
        assert found["pagination"]["total"] == 2

    def test_update_product(self, client, seed, admin):
        product_id = seed.product()
        response = client.put(f"/api/admin/products/{product_id}", headers=admin["headers"], json={
            "price": 150, "status": "inactive",
        })
        assert response.status_code == 200
        assert float(response.json()["price"]) == 150
        assert response.json()["status"] == "inactive"

    def test_delete_archives_product(self, client, seed, admin):
        product_id = seed.product()
        response = client.delete(f"/api/admin/products/{product_id}", headers=admin["headers"])
        assert response.status_code == 200

        product = seed.fetch_one("SELECT status FROM products WHERE id = ?", (product_id,))
        assert product["status"] == "archived"
        assert client.get(f"/api/products/{product_id}").status_code == 404

        archived = client.get("/api/admin/products/", headers=admin["headers"], params={"status": "archived"}).json()
        assert archived["pagination"]["total"] == 1

    def test_unknown_product(self, client, admin):
        assert client.put("/api/admin/products/999", headers=admin["headers"], json={"price": 5}).status_code == 404
