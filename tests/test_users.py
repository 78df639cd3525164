from app.kibbledrop.db import session_scope
from app.kibbledrop.models import User
from app.kibbledrop.modules.orders.models import Order

from tests.conftest import DELIVERY, OTHER_EMAIL, PASSWORD


def _place_order(c, headers, seed):
    r = c.post("/api/orders", json=dict(DELIVERY, items=[{"product_id": seed["dog_food"], "quantity": 1}]), headers=headers)
    assert r.status_code == 201
    return r.json


def test_user_stats(app, customer, seed):
    c, headers = customer
    delivered = _place_order(c, headers, seed)
    _place_order(c, headers, seed)
    c.post("/api/pets", json={"name": "Rex", "type": "Dog", "breed": "Boxer", "age": 3, "weight": 20}, headers=headers)
    c.post(
        "/api/subscriptions",
        json=dict(DELIVERY, frequency="weekly", items=[{"product_id": seed["chews"], "quantity": 2}]),
        headers=headers,
    )
    with session_scope(app) as s:
        s.get(Order, delivered["id"]).status = "delivered"

    stats = c.get("/api/user/stats").json
    assert stats["total_orders"] == 2
    assert stats["active_subscriptions"] == 1
    assert stats["pet_profiles"] == 1
    assert stats["total_spent"] == 29.99  # delivered orders only
    assert len(stats["recent_orders"]) == 2
    assert stats["recent_orders"][0]["items"] == [{"name": "Premium Dog Food", "quantity": 1}]
    assert stats["subscriptions"][0]["total"] == 25.0


def test_change_password(app, customer):
    c, headers = customer
    url = "/api/user/change-password"

    r = c.post(url, json={"current_password": PASSWORD}, headers=headers)
    assert r.json["error"] == "All fields are required"

    r = c.post(url, json={"current_password": PASSWORD, "new_password": "N3wpassword", "confirm_password": "other"}, headers=headers)
    assert r.json["error"] == "New passwords do not match"

    r = c.post(url, json={"current_password": PASSWORD, "new_password": "weak", "confirm_password": "weak"}, headers=headers)
    assert r.status_code == 400

    r = c.post(url, json={"current_password": "wrong", "new_password": "N3wpassword", "confirm_password": "N3wpassword"}, headers=headers)
    assert r.json["error"] == "Current password is incorrect"

    r = c.post(url, json={"current_password": PASSWORD, "new_password": "N3wpassword", "confirm_password": "N3wpassword"}, headers=headers)
    assert r.status_code == 200

    c.post("/auth/logout")
    assert c.post("/auth/login", json={"email": "jane@example.com", "password": PASSWORD}).status_code == 401
    assert c.post("/auth/login", json={"email": "jane@example.com", "password": "N3wpassword"}).status_code == 200


def test_admin_lists_and_views_users(admin, customer, seed):
    c, headers = customer
    _place_order(c, headers, seed)

    a, _ = admin
    users = a.get("/api/admin/users").json
    assert {u["email"] for u in users} == {"admin@example.com", "jane@example.com", OTHER_EMAIL}

    jane = a.get(f"/api/admin/users/{seed['customer']}").json
    assert jane["status"] == "active"
    assert len(jane["orders"]) == 1
    assert a.get("/api/admin/users/9999").status_code == 404


def test_admin_updates_status_and_role(app, admin, seed):
    a, headers = admin
    r = a.put(f"/api/admin/users/{seed['other']}", json={"status": "inactive"}, headers=headers)
    assert r.status_code == 200
    assert r.json["status"] == "inactive"

    # deactivated accounts cannot log in
    fresh = app.test_client()
    assert fresh.post("/auth/login", json={"email": OTHER_EMAIL, "password": PASSWORD}).status_code == 401

    r = a.put(f"/api/admin/users/{seed['other']}", json={"role": "admin"}, headers=headers)
    assert r.json["roles"] == ["admin"]

    assert a.put(f"/api/admin/users/{seed['other']}", json={"status": "banned"}, headers=headers).status_code == 400
    assert a.put(f"/api/admin/users/{seed['other']}", json={"role": "wizard"}, headers=headers).status_code == 400
    r = a.put(f"/api/admin/users/{seed['admin']}", json={"status": "inactive"}, headers=headers)
    assert r.status_code == 400


def test_admin_delete_rules(app, admin, customer, seed):
    a, headers = admin
    c, c_headers = customer
    _place_order(c, c_headers, seed)

    r = a.delete(f"/api/admin/users/{seed['customer']}", headers=headers)
    assert r.status_code == 400
    assert r.json["error"] == "Cannot delete user with order history"

    assert a.delete(f"/api/admin/users/{seed['admin']}", headers=headers).status_code == 400

    r = a.delete(f"/api/admin/users/{seed['other']}", headers=headers)
    assert r.status_code == 200
    with session_scope(app) as s:
        assert s.get(User, seed["other"]) is None


def test_delete_refused_with_subscription(admin, other_customer, seed):
    o, o_headers = other_customer
    o.post(
        "/api/subscriptions",
        json=dict(DELIVERY, frequency="weekly", items=[{"product_id": seed["chews"]}]),
        headers=o_headers,
    )
    a, headers = admin
    r = a.delete(f"/api/admin/users/{seed['other']}", headers=headers)
    assert r.status_code == 400
    assert "subscriptions" in r.json["error"]
