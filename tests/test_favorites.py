from conftest import API, missing_id


def _favorite(client, user, product):
    return client.post(f"{API}/favorites/add", json={"productId": str(product["_id"])}, headers=user["headers"])


class TestAddFavorite:
    def test_add(self, client, user, make_product):
        product = make_product(name="Denim Jacket")
        response = _favorite(client, user, product)
        assert response.status_code == 200
        favorite = response.json()["data"]["favorite"]
        assert favorite["product"]["name"] == "Denim Jacket"
        assert favorite["user"] == str(user["_id"])

    def test_duplicate_conflicts(self, client, user, make_product, db):
        product = make_product()
        _favorite(client, user, product)
        response = _favorite(client, user, product)
        assert response.status_code == 400
        assert response.json()["message"] == "Product is already in favorites"
        assert db["favorite"].count_documents({}) == 1

    def test_same_product_for_two_users(self, client, user, other_user, make_product, db):
        product = make_product()
        assert _favorite(client, user, product).status_code == 200
        assert _favorite(client, other_user, product).status_code == 200
        assert db["favorite"].count_documents({}) == 2

    def test_missing_product(self, client, user):
        response = client.post(f"{API}/favorites/add", json={"productId": missing_id()}, headers=user["headers"])
        assert response.status_code == 404

    def test_requires_token(self, client, make_product):
        product = make_product()
        assert client.post(f"{API}/favorites/add", json={"productId": str(product["_id"])}).status_code == 401


class TestRemoveFavorite:
    def test_remove(self, client, user, make_product, db):
        product = make_product()
        _favorite(client, user, product)
        response = client.delete(f"{API}/favorites/{product['_id']}", headers=user["headers"])
        assert response.status_code == 200
        assert db["favorite"].count_documents({}) == 0

    def test_remove_absent(self, client, user, make_product):
        product = make_product()
        response = client.delete(f"{API}/favorites/{product['_id']}", headers=user["headers"])
        assert response.status_code == 404
        assert response.json()["message"] == "Product not found in favorites"

    def test_cannot_remove_someone_elses(self, client, user, other_user, make_product):
        product = make_product()
        _favorite(client, user, product)
        assert client.delete(f"{API}/favorites/{product['_id']}", headers=other_user["headers"]).status_code == 404


class TestListFavorites:
    def test_paginated(self, client, user, make_product):
        for _ in range(5):
            _favorite(client, user, make_product())
        data = client.get(f"{API}/favorites", params={"page": 2, "limit": 2}, headers=user["headers"]).json()["data"]
        assert len(data["favorites"]) == 2
        assert data["pagination"]["total"] == 5
        assert data["pagination"]["totalPages"] == 3
        assert all("name" in f["product"] for f in data["favorites"])

    def test_only_own(self, client, user, other_user, make_product):
        _favorite(client, other_user, make_product())
        data = client.get(f"{API}/favorites", headers=user["headers"]).json()["data"]
        assert data["favorites"] == []
        assert data["pagination"]["total"] == 0


class TestCheckFavorite:
    def test_check(self, client, user, make_product):
        product = make_product()
        response = client.get(f"{API}/favorites/check/{product['_id']}", headers=user["headers"])
        assert response.json()["data"] == {"isFavorite": False, "favoriteId": None}

        favorite = _favorite(client, user, product).json()["data"]["favorite"]
        response = client.get(f"{API}/favorites/check/{product['_id']}", headers=user["headers"])
        assert response.json()["data"] == {"isFavorite": True, "favoriteId": favorite["id"]}
