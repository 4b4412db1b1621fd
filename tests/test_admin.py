import pytest
from bson import ObjectId

from conftest import auth


def _image(name="photo.png"):
    return ("image", (name, b"\x89PNG fake bytes", "image/png"))


@pytest.fixture
def order_id(client, user_token, make_category, make_product):
    product = make_product(make_category(), name="Lamp", price=20.0, stock=4)
    client.post("/carts", json={"product_id": str(product)}, headers=auth(user_token))
    cart_id = client.get("/carts", headers=auth(user_token)).json()["data"]["id"]
    return client.post("/orders", json={"cart_id": cart_id}, headers=auth(user_token)).json()["order_id"]


def test_admin_routes_need_admin(client, user_token):
    assert client.get("/admin/categories").status_code == 401
    res = client.get("/admin/categories", headers=auth(user_token))
    assert res.status_code == 403
    assert res.json()["success"] is False
    assert client.post("/admin/categories", data={"name": "x", "description": "y"}, headers=auth(user_token)).status_code == 403


def test_admin_token_for_demoted_user(client, db, admin_token):
    db["user"].update_one({"email": "admin@example.com"}, {"$set": {"is_admin": False}})
    assert client.get("/admin/orders", headers=auth(admin_token)).status_code == 401


def test_create_category_with_image(client, db, storage, admin_token):
    res = client.post(
        "/admin/categories",
        data={"name": "Books", "description": "Paper things"},
        files=[_image("books.png")],
        headers=auth(admin_token),
    )
    assert res.status_code == 201
    data = res.json()["data"]
    assert data["image"] == "https://res.cloudinary.com/demo/image/upload/books.png"
    assert storage.uploaded == ["books.png"]
    assert db["category"].count_documents({"name": "Books"}) == 1


def test_create_category_without_image_skips_storage(client, storage, admin_token):
    res = client.post("/admin/categories", data={"name": "Books", "description": "Paper"}, headers=auth(admin_token))
    assert res.status_code == 201
    assert res.json()["data"]["image"] is None
    assert storage.probes == 0


def test_create_category_validation(client, admin_token):
    assert client.post("/admin/categories", data={"name": "Books"}, headers=auth(admin_token)).status_code == 400
    assert client.post("/admin/categories", data={"name": "  ", "description": "d"}, headers=auth(admin_token)).status_code == 400


def test_storage_down_or_failing(client, db, storage, admin_token):
    storage.available = False
    res = client.post("/admin/categories", data={"name": "Books", "description": "d"}, files=[_image()], headers=auth(admin_token))
    assert res.status_code == 503

    storage.available = True
    storage.fail_uploads = True
    res = client.post("/admin/categories", data={"name": "Books", "description": "d"}, files=[_image()], headers=auth(admin_token))
    assert res.status_code == 502
    assert db["category"].count_documents({}) == 0


def test_update_category_allow_list(client, db, admin_token, make_category):
    category_id = make_category("Books")
    res = client.put(
        f"/admin/categories/{category_id}",
        data={"description": "Updated", "products": "hijack"},
        headers=auth(admin_token),
    )
    assert res.status_code == 200
    stored = db["category"].find_one({"_id": category_id})
    assert stored["description"] == "Updated"
    assert stored["name"] == "Books"
    assert stored["products"] == []

    assert client.put("/admin/categories/bad", data={"name": "x"}, headers=auth(admin_token)).status_code == 400
    assert client.put(f"/admin/categories/{ObjectId()}", data={"name": "x"}, headers=auth(admin_token)).status_code == 404


def test_delete_category(client, db, admin_token, make_category, make_product):
    busy = make_category("Busy")
    make_product(busy)
    res = client.delete(f"/admin/categories/{busy}", headers=auth(admin_token))
    assert res.status_code == 409
    assert db["category"].count_documents({"_id": busy}) == 1

    idle = make_category("Idle")
    assert client.delete(f"/admin/categories/{idle}", headers=auth(admin_token)).status_code == 200
    assert db["category"].count_documents({"_id": idle}) == 0
    assert client.delete(f"/admin/categories/{idle}", headers=auth(admin_token)).status_code == 404


def test_create_product(client, db, storage, admin_token, make_category):
    category_id = make_category()
    res = client.post(
        "/admin/products",
        data={"name": "Phone", "description": "Smart", "price": "199.5", "stock": "7", "category_id": str(category_id)},
        files=[("image", ("a.png", b"a", "image/png")), ("image", ("b.png", b"b", "image/png"))],
        headers=auth(admin_token),
    )
    assert res.status_code == 201
    data = res.json()["data"]
    assert data["price"] == 199.5
    assert data["stock"] == 7
    assert len(data["images"]) == 2
    assert db["category"].find_one({"_id": category_id})["products"] == [ObjectId(data["id"])]


def test_create_product_validation(client, admin_token, make_category):
    category_id = make_category()
    base = {"name": "Phone", "description": "Smart", "price": "10", "category_id": str(category_id)}

    assert client.post("/admin/products", data=dict(base, category_id="bad"), headers=auth(admin_token)).status_code == 400
    assert client.post("/admin/products", data=dict(base, category_id=str(ObjectId())), headers=auth(admin_token)).status_code == 404
    assert client.post("/admin/products", data=dict(base, price="-1"), headers=auth(admin_token)).status_code == 400
    assert client.post("/admin/products", data=dict(base, stock="-1"), headers=auth(admin_token)).status_code == 400

    too_many = [("image", (f"{i}.png", b"x", "image/png")) for i in range(5)]
    assert client.post("/admin/products", data=base, files=too_many, headers=auth(admin_token)).status_code == 400


def test_update_product_moves_category(client, db, admin_token, make_category, make_product):
    old, new = make_category("Old"), make_category("New")
    product = make_product(old, stock=1)
    res = client.put(
        f"/admin/products/{product}",
        data={"stock": "40", "category_id": str(new)},
        headers=auth(admin_token),
    )
    assert res.status_code == 200
    stored = db["product"].find_one({"_id": product})
    assert stored["stock"] == 40
    assert stored["category_id"] == new
    assert stored["name"] == "Widget"
    assert db["category"].find_one({"_id": old})["products"] == []
    assert db["category"].find_one({"_id": new})["products"] == [product]

    assert client.put(f"/admin/products/{ObjectId()}", data={"stock": "1"}, headers=auth(admin_token)).status_code == 404
    assert client.put(f"/admin/products/{product}", data={"category_id": str(ObjectId())}, headers=auth(admin_token)).status_code == 404


def test_update_product_replaces_images(client, db, storage, admin_token, make_category, make_product):
    product = make_product(make_category())
    res = client.put(
        f"/admin/products/{product}",
        files=[("image", ("front.png", b"f", "image/png")), ("image", ("back.png", b"b", "image/png"))],
        headers=auth(admin_token),
    )
    assert res.status_code == 200
    assert storage.uploaded == ["front.png", "back.png"]
    assert db["product"].find_one({"_id": product})["images"] == [
        "https://res.cloudinary.com/demo/image/upload/front.png",
        "https://res.cloudinary.com/demo/image/upload/back.png",
    ]


def test_delete_product_pulls_from_category(client, db, admin_token, make_category, make_product):
    category_id = make_category()
    first, second, third = (make_product(category_id, name=n) for n in ("A", "B", "C"))

    res = client.delete(f"/admin/products/{second}", headers=auth(admin_token))
    assert res.status_code == 200
    assert db["category"].find_one({"_id": category_id})["products"] == [first, third]
    assert db["product"].count_documents({"_id": {"$in": [first, third]}}) == 2
    assert client.delete(f"/admin/products/{second}", headers=auth(admin_token)).status_code == 404


def test_admin_catalog_reads(client, admin_token, catalog):
    body = client.get("/admin/products", params={"limit": 3}, headers=auth(admin_token)).json()
    assert body["pagination"]["total_pages"] == 4
    category_id, products = catalog
    assert client.get(f"/admin/categories/{category_id}/products/{products[0]}", headers=auth(admin_token)).status_code == 200


def test_update_order_status(client, db, admin_token, order_id):
    url = f"/admin/orders/{order_id}/status"
    res = client.put(url, json={"status": "Shipped", "total_amount": 0}, headers=auth(admin_token))
    assert res.status_code == 200
    stored = db["order"].find_one({"_id": ObjectId(order_id)})
    assert stored["status"] == "Shipped"
    assert stored["total_amount"] == 20.0

    # backward transitions are allowed
    assert client.put(url, json={"status": "Pending", "shipping_address": "2 Side St"}, headers=auth(admin_token)).status_code == 200
    assert db["order"].find_one({"_id": ObjectId(order_id)})["shipping_address"] == "2 Side St"

    assert client.put(url, json={"status": "Lost"}, headers=auth(admin_token)).status_code == 400
    assert client.put(f"/admin/orders/{ObjectId()}/status", json={"status": "Shipped"}, headers=auth(admin_token)).status_code == 404
    assert client.put("/admin/orders/bad/status", json={"status": "Shipped"}, headers=auth(admin_token)).status_code == 400


def test_list_orders_by_status(client, admin_token, order_id):
    client.put(f"/admin/orders/{order_id}/status", json={"status": "Processing"}, headers=auth(admin_token))

    body = client.get("/admin/orders", params={"status": " processing "}, headers=auth(admin_token)).json()
    assert [o["id"] for o in body["data"]] == [order_id]
    assert body["count"] == 1
    assert body["data"][0]["items"][0]["product"]["name"] == "Lamp"

    assert client.get("/admin/orders", params={"status": "delivered"}, headers=auth(admin_token)).json()["data"] == []
    assert client.get("/admin/orders", params={"status": "lost"}, headers=auth(admin_token)).status_code == 400
    assert client.get("/admin/orders", headers=auth(admin_token)).json()["pagination"]["total"] == 1

    one = client.get(f"/admin/orders/{order_id}", headers=auth(admin_token))
    assert one.status_code == 200
    assert client.get(f"/admin/orders/{ObjectId()}", headers=auth(admin_token)).status_code == 404
