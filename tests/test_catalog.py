import io

from app.kibbledrop.db import session_scope
from app.kibbledrop.modules.catalog.models import Product
from app.kibbledrop.modules.catalog.service import build_image_storage_key, validate_product_payload

from tests.conftest import DELIVERY

NEW_PRODUCT = {
    "name": "Senior Cat Formula",
    "description": "Gentle on older cats",
    "price": "18.75",
    "category": "Food",
    "pet_type": "Cat",
}


class TestValidateProductPayload:
    def test_complete_payload_is_valid(self):
        assert validate_product_payload(dict(NEW_PRODUCT)) == []

    def test_missing_required_fields(self):
        errors = validate_product_payload({"name": "X"})
        assert "description is required." in errors
        assert "price is required." in errors
        assert "pet_type is required." in errors

    def test_price_must_be_positive(self):
        assert "price must be a positive number." in validate_product_payload(dict(NEW_PRODUCT, price="-1"))
        assert "price must be a positive number." in validate_product_payload(dict(NEW_PRODUCT, price="abc"))

    def test_price_must_be_finite(self):
        for raw in ("NaN", "Infinity", "-inf"):
            assert "price must be a positive number." in validate_product_payload(dict(NEW_PRODUCT, price=raw))

    def test_partial_only_checks_present_fields(self):
        assert validate_product_payload({"featured": True}, partial=True) == []
        assert validate_product_payload({"name": ""}, partial=True) == ["name is required."]


def test_image_key_is_content_addressed():
    a = build_image_storage_key("My Photo.PNG", b"abc", "image/png")
    b = build_image_storage_key("other.png", b"abc", "image/png")
    assert a.startswith("products/") and a.endswith(".png")
    assert a.split("-", 1)[0] == b.split("-", 1)[0]


def test_public_listing_and_filters(client, seed):
    r = client.get("/api/products")
    assert r.status_code == 200
    assert len(r.json) == 3
    assert r.json[0]["price"] == 12.5  # newest first

    dogs = client.get("/api/products?pet_type=Dog").json
    assert {p["name"] for p in dogs} == {"Premium Dog Food", "Dental Chews"}
    assert client.get("/api/products?petType=Cat").json[0]["name"] == "Salmon Cat Food"

    assert [p["name"] for p in client.get("/api/products?category=Treats").json] == ["Dental Chews"]
    assert [p["name"] for p in client.get("/api/products?featured=true").json] == ["Premium Dog Food"]


def test_product_detail(client, seed):
    r = client.get(f"/api/products/{seed['dog_food']}")
    assert r.status_code == 200
    assert r.json["price"] == 29.99
    assert client.get("/api/products/9999").status_code == 404


def test_admin_create_update_delete(admin):
    a, headers = admin
    r = a.post("/api/admin/products", json=NEW_PRODUCT, headers=headers)
    assert r.status_code == 201
    product = r.json
    assert product["image"] == "/placeholder.svg"
    assert product["price"] == 18.75
    assert product["featured"] is False

    r = a.put(f"/api/admin/products/{product['id']}", json={"price": 20, "featured": True}, headers=headers)
    assert r.status_code == 200
    assert r.json["price"] == 20.0
    assert r.json["featured"] is True
    assert r.json["name"] == NEW_PRODUCT["name"]

    r = a.put(f"/api/admin/products/{product['id']}", json={"price": 0}, headers=headers)
    assert r.status_code == 400

    r = a.delete(f"/api/admin/products/{product['id']}", headers=headers)
    assert r.status_code == 200
    assert a.get(f"/api/products/{product['id']}").status_code == 404


def test_admin_create_rejects_incomplete(admin):
    a, headers = admin
    r = a.post("/api/admin/products", json={"name": "Only a name"}, headers=headers)
    assert r.status_code == 400

    r = a.post("/api/admin/products", json=dict(NEW_PRODUCT, price="NaN"), headers=headers)
    assert r.status_code == 400


def test_customer_cannot_manage_products(customer):
    c, headers = customer
    assert c.post("/api/admin/products", json=NEW_PRODUCT, headers=headers).status_code == 403


def test_delete_refused_while_subscribed(admin, customer, seed):
    c, c_headers = customer
    r = c.post(
        "/api/subscriptions",
        json=dict(DELIVERY, frequency="weekly", items=[{"product_id": seed["chews"], "quantity": 1}]),
        headers=c_headers,
    )
    assert r.status_code == 201

    a, headers = admin
    r = a.delete(f"/api/admin/products/{seed['chews']}", headers=headers)
    assert r.status_code == 409


def test_delete_removes_cart_lines(app, admin, customer, seed):
    c, c_headers = customer
    c.post("/api/cart", json={"product_id": seed["cat_food"]}, headers=c_headers)

    a, headers = admin
    assert a.delete(f"/api/admin/products/{seed['cat_food']}", headers=headers).status_code == 200
    assert c.get("/api/cart").json["items"] == []
    with session_scope(app) as s:
        assert s.get(Product, seed["cat_food"]) is None


def test_image_upload_and_serve(admin):
    a, headers = admin
    r = a.post(
        "/api/admin/uploads",
        data={"file": (io.BytesIO(b"\x89PNG fake image"), "bowl.png", "image/png")},
        headers=headers,
        content_type="multipart/form-data",
    )
    assert r.status_code == 201
    assert r.json["success"] is True
    assert r.json["url"] == f"/uploads/{r.json['key']}"

    served = a.get(r.json["url"])
    assert served.status_code == 200
    assert served.data == b"\x89PNG fake image"


def test_image_upload_rejects_bad_type_and_size(admin):
    a, headers = admin
    r = a.post(
        "/api/admin/uploads",
        data={"file": (io.BytesIO(b"GIF89a"), "anim.gif", "image/gif")},
        headers=headers,
        content_type="multipart/form-data",
    )
    assert r.status_code == 400
    assert "Invalid file type" in r.json["error"]

    r = a.post(
        "/api/admin/uploads",
        data={"file": (io.BytesIO(b"x" * (2 * 1024 * 1024 + 1)), "big.jpg", "image/jpeg")},
        headers=headers,
        content_type="multipart/form-data",
    )
    assert r.status_code == 400
    assert "too large" in r.json["error"]


def test_uploads_outside_products_prefix_are_hidden(client):
    assert client.get("/uploads/secrets/key.txt").status_code == 404
