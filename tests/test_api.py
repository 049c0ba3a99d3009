"""
Component tests for the REST API

These run the real app (routes, services, in-memory repositories) through
FastAPI's TestClient.
"""
from fastapi.testclient import TestClient

ADDRESS = {
    "first_name": "Jane",
    "last_name": "Doe",
    "address1": "1 Main St",
    "city": "Springfield",
    "state": "IL",
    "zip_code": "62701",
    "country": "US",
}

PRODUCT = {
    "name": "Desk Lamp",
    "description": "LED desk lamp",
    "price": 35.0,
    "image_url": "https://img.example.com/lamp.jpg",
    "category": "Lighting",
    "stock": 5,
}


class TestHealth:
    def test_root(self, test_client: TestClient):
        assert test_client.get("/").json() == {"message": "E-commerce API running"}

    def test_storage_report_without_database(self, test_client: TestClient):
        data = test_client.get("/test").json()

        assert data["storage"] == "memory"
        assert data["connection_status"] == "Not Connected"


class TestProducts:
    def test_list_products(self, test_client: TestClient, product):
        data = test_client.get("/products").json()

        assert data["total"] == 1
        assert data["page"] == 1
        assert data["limit"] == 20
        assert data["total_pages"] == 1
        assert data["data"][0]["id"] == product.id

    def test_list_with_comma_separated_categories(self, test_client: TestClient, services, make_product):
        services.products.create(make_product(name="Lamp", category="Lighting"))
        services.products.create(make_product(name="Chair", category="Furniture"))
        services.products.create(make_product(name="Kettle", category="Kitchen"))

        data = test_client.get("/products", params={"categories": "Lighting, Furniture"}).json()

        assert {p["name"] for p in data["data"]} == {"Lamp", "Chair"}

    def test_get_product(self, test_client: TestClient, product):
        response = test_client.get(f"/products/{product.id}")

        assert response.status_code == 200
        assert response.json()["name"] == "Espresso Machine"

    def test_get_missing_product_is_404(self, test_client: TestClient):
        response = test_client.get("/products/missing")

        assert response.status_code == 404
        assert response.json()["detail"] == "Product not found"

    def test_categories_and_category_listing(self, test_client: TestClient, product):
        categories = test_client.get("/products/categories").json()
        listed = test_client.get("/products/category/Kitchen").json()

        assert categories == [{
            "id": "cat-1",
            "name": "Kitchen",
            "description": "Browse products in Kitchen category",
            "product_count": 1,
        }]
        assert [p["id"] for p in listed] == [product.id]

    def test_related_products(self, test_client: TestClient, services, make_product, product):
        other = services.products.create(make_product(name="Grinder"))

        related = test_client.get(f"/products/{product.id}/related").json()

        assert [p["id"] for p in related] == [other.id]

    def test_create_requires_authentication(self, test_client: TestClient):
        assert test_client.post("/products", json=PRODUCT).status_code == 401

    def test_create_requires_admin(self, test_client: TestClient, auth_headers):
        response = test_client.post("/products", json=PRODUCT, headers=auth_headers)

        assert response.status_code == 403
        assert response.json()["detail"] == "Admin only"

    def test_admin_creates_and_deletes_product(self, test_client: TestClient, admin_headers):
        created = test_client.post("/products", json=PRODUCT, headers=admin_headers)
        assert created.status_code == 200
        product_id = created.json()["id"]

        deleted = test_client.delete(f"/products/{product_id}", headers=admin_headers)

        assert deleted.json() == {"id": product_id, "deleted": True}
        assert test_client.get(f"/products/{product_id}").status_code == 404

    def test_admin_can_supply_product_id(self, test_client: TestClient, admin_headers):
        response = test_client.post("/products", json={**PRODUCT, "id": "lamp-001"}, headers=admin_headers)

        assert response.json()["id"] == "lamp-001"

    def test_deleting_missing_product_is_noop(self, test_client: TestClient, admin_headers):
        response = test_client.delete("/products/missing", headers=admin_headers)

        assert response.status_code == 200
        assert response.json()["deleted"] is False

    def test_invalid_product_payload(self, test_client: TestClient, admin_headers):
        response = test_client.post("/products", json={**PRODUCT, "price": -5}, headers=admin_headers)

        assert response.status_code == 422


class TestReviews:
    def test_review_updates_product_rating(self, test_client: TestClient, register, product):
        first = {"Authorization": f"Bearer {register('a@example.com')['access_token']}"}
        second = {"Authorization": f"Bearer {register('b@example.com')['access_token']}"}

        test_client.post(f"/products/{product.id}/reviews", json={"rating": 5, "comment": "Great"}, headers=first)
        test_client.post(f"/products/{product.id}/reviews", json={"rating": 4}, headers=second)

        refreshed = test_client.get(f"/products/{product.id}").json()
        assert refreshed["rating"] == 4.5
        assert refreshed["review_count"] == 2
        assert len(test_client.get(f"/products/{product.id}/reviews").json()) == 2

    def test_one_review_per_user_and_product(self, test_client: TestClient, auth_headers, product):
        url = f"/products/{product.id}/reviews"
        assert test_client.post(url, json={"rating": 3}, headers=auth_headers).status_code == 200

        response = test_client.post(url, json={"rating": 4}, headers=auth_headers)

        assert response.status_code == 409

    def test_rating_out_of_range(self, test_client: TestClient, auth_headers, product):
        url = f"/products/{product.id}/reviews"

        assert test_client.post(url, json={"rating": 0}, headers=auth_headers).status_code == 422
        assert test_client.post(url, json={"rating": 6}, headers=auth_headers).status_code == 422

    def test_review_for_missing_product(self, test_client: TestClient, auth_headers):
        response = test_client.post("/products/missing/reviews", json={"rating": 4}, headers=auth_headers)

        assert response.status_code == 404


class TestCart:
    def test_cart_requires_authentication(self, test_client: TestClient):
        assert test_client.get("/cart").status_code == 401

    def test_empty_cart(self, test_client: TestClient, auth_headers, user_session):
        data = test_client.get("/cart", headers=auth_headers).json()

        assert data == {"user_id": user_session["user"]["id"], "items": [], "total_items": 0, "total_price": 0}

    def test_add_denormalizes_product_and_merges_quantity(self, test_client: TestClient, auth_headers, product):
        test_client.post("/cart", json={"product_id": product.id, "quantity": 1}, headers=auth_headers)
        data = test_client.post("/cart", json={"product_id": product.id, "quantity": 2},
                                headers=auth_headers).json()

        assert len(data["items"]) == 1
        line = data["items"][0]
        assert line["id"] == product.id
        assert line["quantity"] == 3
        assert line["name"] == "Espresso Machine"
        assert line["price"] == 199.99
        assert line["image_url"] == "https://img.example.com/espresso.jpg"
        assert data["total_items"] == 3
        assert data["total_price"] == 599.97

    def test_add_missing_product_is_404(self, test_client: TestClient, auth_headers):
        response = test_client.post("/cart", json={"product_id": "missing"}, headers=auth_headers)

        assert response.status_code == 404

    def test_add_rejects_non_positive_quantity(self, test_client: TestClient, auth_headers, product):
        response = test_client.post("/cart", json={"product_id": product.id, "quantity": 0}, headers=auth_headers)

        assert response.status_code == 422

    def test_update_remove_and_clear(self, test_client: TestClient, auth_headers, services, make_product, product):
        other = services.products.create(make_product(name="Grinder", price=50.0))
        test_client.post("/cart", json={"product_id": product.id}, headers=auth_headers)
        test_client.post("/cart", json={"product_id": other.id}, headers=auth_headers)

        updated = test_client.put(f"/cart/{other.id}", json={"quantity": 4}, headers=auth_headers).json()
        assert [(i["id"], i["quantity"]) for i in updated["items"]] == [(product.id, 1), (other.id, 4)]

        removed = test_client.delete(f"/cart/{product.id}", headers=auth_headers).json()
        assert [i["id"] for i in removed["items"]] == [other.id]

        zeroed = test_client.put(f"/cart/{other.id}", json={"quantity": 0}, headers=auth_headers).json()
        assert zeroed["items"] == []

        test_client.post("/cart", json={"product_id": product.id}, headers=auth_headers)
        cleared = test_client.delete("/cart", headers=auth_headers).json()
        assert cleared["items"] == []

    def test_removing_missing_item_is_noop(self, test_client: TestClient, auth_headers, product):
        test_client.post("/cart", json={"product_id": product.id}, headers=auth_headers)

        response = test_client.delete("/cart/missing", headers=auth_headers)

        assert response.status_code == 200
        assert len(response.json()["items"]) == 1

    def test_carts_are_private(self, test_client: TestClient, register, auth_headers, product):
        other = {"Authorization": f"Bearer {register('other@example.com')['access_token']}"}
        test_client.post("/cart", json={"product_id": product.id}, headers=auth_headers)

        assert test_client.get("/cart", headers=other).json()["items"] == []


class TestOrders:
    def test_order_from_empty_cart_is_rejected(self, test_client: TestClient, auth_headers):
        response = test_client.post("/orders", json={"shipping_address": ADDRESS}, headers=auth_headers)

        assert response.status_code == 400
        assert response.json()["detail"] == "Cart is empty"

    def test_order_is_built_from_cart_and_clears_it(self, test_client: TestClient, auth_headers, product):
        test_client.post("/cart", json={"product_id": product.id, "quantity": 2}, headers=auth_headers)

        response = test_client.post("/orders", json={"shipping_address": ADDRESS}, headers=auth_headers)

        assert response.status_code == 200
        order = response.json()
        assert order["status"] == "PENDING"
        assert order["total_amount"] == 399.98
        assert order["items"] == [{"product_id": product.id, "name": "Espresso Machine",
                                   "quantity": 2, "price": 199.99}]
        assert order["billing_address"] == order["shipping_address"]
        assert test_client.get("/cart", headers=auth_headers).json()["items"] == []

        listed = test_client.get("/orders", headers=auth_headers).json()
        assert [o["id"] for o in listed] == [order["id"]]
        assert test_client.get(f"/orders/{order['id']}", headers=auth_headers).status_code == 200

    def test_orders_are_scoped_to_owner(self, test_client: TestClient, register, auth_headers, product):
        test_client.post("/cart", json={"product_id": product.id}, headers=auth_headers)
        order_id = test_client.post("/orders", json={"shipping_address": ADDRESS},
                                    headers=auth_headers).json()["id"]
        other = {"Authorization": f"Bearer {register('other@example.com')['access_token']}"}

        assert test_client.get(f"/orders/{order_id}", headers=other).status_code == 404
        assert test_client.get("/orders", headers=other).json() == []

    def test_admin_lists_orders_and_updates_status(self, test_client: TestClient, auth_headers,
                                                   admin_headers, product):
        test_client.post("/cart", json={"product_id": product.id}, headers=auth_headers)
        order_id = test_client.post("/orders", json={"shipping_address": ADDRESS},
                                    headers=auth_headers).json()["id"]

        assert test_client.get("/orders/admin/all", headers=auth_headers).status_code == 403
        assert [o["id"] for o in test_client.get("/orders/admin/all", headers=admin_headers).json()] == [order_id]

        response = test_client.put(f"/orders/{order_id}/status", json={"status": "SHIPPED"}, headers=admin_headers)
        assert response.json()["status"] == "SHIPPED"

    def test_unknown_status_and_order(self, test_client: TestClient, admin_headers):
        assert test_client.put("/orders/missing/status", json={"status": "BOGUS"},
                               headers=admin_headers).status_code == 422
        assert test_client.put("/orders/missing/status", json={"status": "CONFIRMED"},
                               headers=admin_headers).status_code == 404


class TestUsers:
    def test_profile_update(self, test_client: TestClient, auth_headers):
        response = test_client.put("/users/profile", json={"first_name": "Janet"}, headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["first_name"] == "Janet"
        assert response.json()["last_name"] == "Doe"
        assert test_client.get("/users/profile", headers=auth_headers).json()["first_name"] == "Janet"

    def test_profile_email_must_stay_unique(self, test_client: TestClient, register, auth_headers):
        register("taken@example.com")

        response = test_client.put("/users/profile", json={"email": "taken@example.com"}, headers=auth_headers)

        assert response.status_code == 409

    def test_user_list_is_admin_only(self, test_client: TestClient, auth_headers, admin_headers):
        assert test_client.get("/users", headers=auth_headers).status_code == 403

        emails = {u["email"] for u in test_client.get("/users", headers=admin_headers).json()}
        assert emails == {"jane@example.com", "admin@example.com"}
