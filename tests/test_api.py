from security import token_service


def _sign_up(client, email="u@test.io", password="pass1234", name="Una"):
    return client.post("/api/users", json={"name": name, "email": email, "password": password})


def test_root(client):
    res = client.get("/")
    assert res.status_code == 200
    body = res.json()
    assert body["success"] is True
    assert "timestamp" in body


def test_end_to_end_cart_flow(client, make_product):
    product_id = make_product()

    res = _sign_up(client)
    assert res.status_code == 201
    user_id = res.json()["data"]["id"]

    res = client.post("/auth/login", json={"username": "u@test.io", "password": "pass1234"})
    assert res.status_code == 200
    data = res.json()["data"]
    assert data["userId"] == user_id
    assert data["email"] == "u@test.io"
    assert data["type"] == "Bearer"
    headers = {"Authorization": f"Bearer {data['token']}"}

    res = client.get("/api/cart", headers=headers)
    assert res.status_code == 200
    assert res.json()["data"] == []

    assert client.post("/api/cart", json={"productId": product_id}, headers=headers).status_code == 200
    items = client.get("/api/cart", headers=headers).json()["data"]
    assert len(items) == 1
    assert items[0]["productId"] == product_id
    assert items[0]["quantity"] == 1

    assert client.post("/api/cart", json={"productId": product_id}, headers=headers).status_code == 200
    items = client.get("/api/cart", headers=headers).json()["data"]
    assert len(items) == 1
    assert items[0]["quantity"] == 2


def test_login_token_carries_identity(client):
    user_id = _sign_up(client).json()["data"]["id"]
    token = client.post("/auth/login", json={"username": "u@test.io", "password": "pass1234"}).json()["data"]["token"]
    assert token_service.validate(token)
    assert token_service.subject_of(token) == "u@test.io"
    assert token_service.user_id_of(token) == user_id


def test_login_failures_are_indistinguishable(client):
    _sign_up(client)
    wrong_password = client.post("/auth/login", json={"username": "u@test.io", "password": "nope"})
    unknown_email = client.post("/auth/login", json={"username": "ghost@test.io", "password": "pass1234"})
    assert wrong_password.status_code == unknown_email.status_code == 401
    a, b = wrong_password.json(), unknown_email.json()
    a.pop("timestamp")
    b.pop("timestamp")
    assert a == b == {"success": False, "message": "Invalid credentials", "data": None}


def test_login_email_is_case_sensitive(client):
    _sign_up(client)
    res = client.post("/auth/login", json={"username": "U@test.io", "password": "pass1234"})
    assert res.status_code == 401


def test_logout_is_stateless(client, make_user, login):
    make_user()
    headers = login()
    assert client.post("/auth/logout", headers=headers).json()["success"] is True
    assert client.get("/api/cart", headers=headers).status_code == 200


def test_sign_up_duplicate_email_conflicts(client):
    _sign_up(client)
    res = _sign_up(client, name="Other")
    assert res.status_code == 409
    assert res.json()["success"] is False


def test_sign_up_validation_lists_fields(client):
    res = client.post("/api/users", json={"name": "X", "email": "not-an-email", "password": "abc"})
    assert res.status_code == 400
    body = res.json()
    assert body["message"] == "Validation failed"
    assert set(body["data"]) == {"email", "password"}


def test_patch_quantity_validation(client, make_user, login, make_product):
    make_user()
    headers = login()
    product_id = make_product()
    item = client.post("/api/cart", json={"productId": product_id}, headers=headers).json()["data"]

    res = client.patch(f"/api/cart/{item['id']}", json={"quantity": 0}, headers=headers)
    assert res.status_code == 400
    assert "quantity" in res.json()["data"]

    res = client.patch(f"/api/cart/{item['id']}", json={"quantity": 3}, headers=headers)
    assert res.status_code == 200
    assert client.get("/api/cart", headers=headers).json()["data"][0]["quantity"] == 3


def test_foreign_cart_item_is_not_found(client, make_user, login, make_product):
    make_user(email="a@test.io")
    make_user(email="b@test.io")
    alice = login("a@test.io")
    bob = login("b@test.io")
    item = client.post("/api/cart", json={"productId": make_product()}, headers=alice).json()["data"]

    assert client.patch(f"/api/cart/{item['id']}", json={"quantity": 9}, headers=bob).status_code == 404
    assert client.delete(f"/api/cart/{item['id']}", headers=bob).status_code == 404
    assert client.get("/api/cart", headers=alice).json()["data"][0]["quantity"] == 1


def test_remove_and_clear_cart(client, make_user, login, make_product):
    make_user()
    headers = login()
    first = client.post("/api/cart", json={"productId": make_product()}, headers=headers).json()["data"]
    client.post("/api/cart", json={"productId": make_product(name="Lamp", price=10)}, headers=headers)

    assert client.delete(f"/api/cart/{first['id']}", headers=headers).status_code == 200
    assert len(client.get("/api/cart", headers=headers).json()["data"]) == 1
    assert client.delete("/api/cart", headers=headers).status_code == 200
    assert client.get("/api/cart", headers=headers).json()["data"] == []


def test_wishlist_endpoints(client, make_user, login, make_product):
    make_user()
    headers = login()
    product_id = make_product()

    client.post("/api/wishlist", json={"productId": product_id}, headers=headers)
    client.post("/api/wishlist", json={"productId": product_id}, headers=headers)
    items = client.get("/api/wishlist", headers=headers).json()["data"]
    assert len(items) == 1
    assert "quantity" not in items[0]

    res = client.post("/api/wishlist/addAllToCart", headers=headers)
    assert res.json()["data"] == {"added": 1}
    assert client.get("/api/cart", headers=headers).json()["data"][0]["quantity"] == 1
    assert len(client.get("/api/wishlist", headers=headers).json()["data"]) == 1

    assert client.delete("/api/wishlist/clear", headers=headers).status_code == 200
    assert client.get("/api/wishlist", headers=headers).json()["data"] == []


def test_remove_wishlist_item(client, make_user, login, make_product):
    make_user()
    headers = login()
    item = client.post("/api/wishlist", json={"productId": make_product()}, headers=headers).json()["data"]
    assert client.delete(f"/api/wishlist/{item['id']}", headers=headers).status_code == 200
    assert client.delete(f"/api/wishlist/{item['id']}", headers=headers).status_code == 404


def test_add_unknown_product_to_cart(client, make_user, login):
    make_user()
    headers = login()
    res = client.post("/api/cart", json={"productId": "64b7f0c2a1b2c3d4e5f60718"}, headers=headers)
    assert res.status_code == 404
    assert res.json()["success"] is False


def test_buy_cart_creates_order_and_empties_cart(client, make_user, login, make_product):
    make_user()
    headers = login()
    product_id = make_product(price=10.5)
    client.post("/api/cart", json={"productId": product_id}, headers=headers)
    client.post("/api/cart", json={"productId": product_id}, headers=headers)

    res = client.post("/api/cart/buy", headers=headers)
    assert res.status_code == 200
    order = res.json()["data"]
    assert order["status"] == "PLACED"
    assert order["total"] == 21.0
    assert order["items"][0]["quantity"] == 2
    assert client.get("/api/cart", headers=headers).json()["data"] == []

    orders = client.get("/api/orders", headers=headers).json()["data"]
    assert [o["id"] for o in orders] == [order["id"]]
    assert client.get(f"/api/orders/{order['id']}", headers=headers).json()["data"]["total"] == 21.0


def test_buy_empty_cart_is_rejected(client, make_user, login):
    make_user()
    assert client.post("/api/cart/buy", headers=login()).status_code == 400


def test_orders_of_other_users_are_hidden(client, make_user, login, make_product):
    make_user(email="a@test.io")
    make_user(email="b@test.io")
    alice = login("a@test.io")
    client.post("/api/cart", json={"productId": make_product()}, headers=alice)
    order_id = client.post("/api/cart/buy", headers=alice).json()["data"]["id"]
    assert client.get(f"/api/orders/{order_id}", headers=login("b@test.io")).status_code == 404


def test_me_endpoints(client, make_user, login):
    make_user()
    headers = login()
    me = client.get("/api/users/me", headers=headers).json()["data"]
    assert me["email"] == "u@test.io"
    assert "passwordHash" not in me and "password_hash" not in me

    res = client.patch("/api/users/me", json={"name": "Renamed"}, headers=headers)
    assert res.json()["data"]["name"] == "Renamed"


def test_change_email_to_taken_one_conflicts(client, make_user, login):
    make_user(email="a@test.io")
    make_user(email="b@test.io")
    res = client.patch("/api/users/me", json={"email": "b@test.io"}, headers=login("a@test.io"))
    assert res.status_code == 409


def test_change_password(client, make_user, login):
    make_user()
    headers = login()
    res = client.patch("/api/users/me/password", json={"currentPassword": "wrong", "newPassword": "newpass1"}, headers=headers)
    assert res.status_code == 400
    res = client.patch("/api/users/me/password", json={"currentPassword": "pass1234", "newPassword": "newpass1"}, headers=headers)
    assert res.status_code == 200
    assert client.post("/auth/login", json={"username": "u@test.io", "password": "pass1234"}).status_code == 401
    login(password="newpass1")


def test_user_listing_and_lookup_require_auth(client, make_user, login):
    user_id = make_user()
    assert client.get("/api/users").status_code == 401
    headers = login()
    assert len(client.get("/api/users", headers=headers).json()["data"]) == 1
    assert client.get(f"/api/users/{user_id}", headers=headers).json()["data"]["id"] == user_id
    assert client.get("/api/users/64b7f0c2a1b2c3d4e5f60718", headers=headers).status_code == 404


def test_cannot_modify_another_account(client, make_user, login):
    make_user(email="a@test.io")
    bob_id = make_user(email="b@test.io")
    alice = login("a@test.io")
    assert client.patch(f"/api/users/{bob_id}", json={"name": "x"}, headers=alice).status_code == 404
    assert client.delete(f"/api/users/{bob_id}", headers=alice).status_code == 404


def test_delete_account_cascades_to_cart_and_wishlist(client, db, make_user, login, make_product):
    user_id = make_user()
    headers = login()
    product_id = make_product()
    client.post("/api/cart", json={"productId": product_id}, headers=headers)
    client.post("/api/wishlist", json={"productId": product_id}, headers=headers)

    assert client.delete(f"/api/users/{user_id}", headers=headers).status_code == 200
    for name in ("user", "cart", "cartitem", "wishlist", "wishlistitem"):
        assert db[name].count_documents({}) == 0
    assert client.get("/api/cart", headers=headers).status_code == 401


def test_storage_timeout_becomes_service_unavailable(client, make_user, login, monkeypatch):
    import carts
    from pymongo.errors import ServerSelectionTimeoutError

    make_user()
    headers = login()

    def unavailable(db, user_id):
        raise ServerSelectionTimeoutError("no servers")

    monkeypatch.setattr(carts, "list_cart_items", unavailable)
    res = client.get("/api/cart", headers=headers)
    assert res.status_code == 503
    assert res.json()["message"] == "Service temporarily unavailable"
    assert "no servers" not in res.text


def test_unknown_route_uses_envelope(client):
    res = client.get("/api/nowhere")
    assert res.status_code == 404
    assert res.json()["success"] is False


def test_email_is_stored_and_matched_exactly_as_typed(client):
    res = _sign_up(client, email="una@Test.IO")
    assert res.status_code == 201
    assert res.json()["data"]["email"] == "una@Test.IO"

    res = client.post("/auth/login", json={"username": "una@Test.IO", "password": "pass1234"})
    assert res.status_code == 200
    assert res.json()["data"]["email"] == "una@Test.IO"


def test_email_update_keeps_submitted_text(client, make_user, login):
    make_user()
    res = client.patch("/api/users/me", json={"email": "una@Mixed.IO"}, headers=login())
    assert res.json()["data"]["email"] == "una@Mixed.IO"
    login("una@Mixed.IO")


def test_email_change_returns_fresh_token(client, make_user, login):
    make_user()
    headers = login()
    res = client.patch("/api/users/me", json={"email": "new@test.io"}, headers=headers)
    assert res.status_code == 200
    token = res.json()["data"]["token"]
    assert token

    assert client.get("/api/users/me", headers=headers).status_code == 401
    me = client.get("/api/users/me", headers={"Authorization": f"Bearer {token}"}).json()["data"]
    assert me["email"] == "new@test.io"


def test_name_change_keeps_current_token(client, make_user, login):
    make_user()
    headers = login()
    res = client.patch("/api/users/me", json={"name": "Renamed"}, headers=headers)
    assert res.json()["data"]["token"] is None
    assert client.get("/api/users/me", headers=headers).status_code == 200


def test_buy_cart_of_removed_products_is_rejected(client, db, make_user, login, make_product):
    make_user()
    headers = login()
    client.post("/api/cart", json={"productId": make_product()}, headers=headers)
    db["product"].delete_many({})

    res = client.post("/api/cart/buy", headers=headers)
    assert res.status_code == 400
    assert res.json()["message"] == "Cart is empty"
    assert db["order"].count_documents({}) == 0
    assert db["cartitem"].count_documents({}) == 1


def test_startup_creates_indexes(monkeypatch):
    import mongomock
    from fastapi.testclient import TestClient

    import main
    from database import get_db

    database = mongomock.MongoClient()["shop_startup"]
    monkeypatch.setattr(main, "get_db", lambda: database)
    monkeypatch.setitem(main.app.dependency_overrides, get_db, lambda: database)
    with TestClient(main.app) as client:
        assert client.get("/").status_code == 200
    assert "email_1" in database["user"].index_information()
