import json
from decimal import Decimal

import pytest
from werkzeug.security import generate_password_hash

from app.kibbledrop import auth as auth_module
from app.kibbledrop import create_app
from app.kibbledrop.constants import PERMISSIONS, ROLE_ADMIN, ROLE_CUSTOMER
from app.kibbledrop.db import session_scope
from app.kibbledrop.models import Base, Permission, Role, User
from app.kibbledrop.modules.catalog.models import Product
from app.kibbledrop.modules.tradesafe.client import TradeSafeError
from app.kibbledrop.modules.tradesafe.signatures import SIGNATURE_HEADER, compute_signature

WEBHOOK_SECRET = "whsec-test"
ADMIN_EMAIL = "admin@example.com"
CUSTOMER_EMAIL = "jane@example.com"
OTHER_EMAIL = "sam@example.com"
PASSWORD = "Passw0rd1"

DELIVERY = {
    "delivery_name": "Jane Doe",
    "delivery_phone": "082 123 4567",
    "delivery_address": "12 Long Street",
    "city": "Cape Town",
    "postal_code": "8001",
}


@pytest.fixture(autouse=True)
def _reset_login_rate_limit():
    auth_module._login_attempts.clear()
    yield
    auth_module._login_attempts.clear()


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("LOCAL_STORAGE_ROOT", str(tmp_path / "storage"))
    monkeypatch.setenv("TRADESAFE_WEBHOOK_SECRET", WEBHOOK_SECRET)
    for k in (
        "S3_ENDPOINT",
        "S3_REGION",
        "S3_BUCKET",
        "S3_ACCESS_KEY_ID",
        "S3_SECRET_ACCESS_KEY",
        "TRADESAFE_CLIENT_ID",
        "TRADESAFE_CLIENT_SECRET",
        "TRADESAFE_SELLER_TOKEN",
        "TRADESAFE_AUTH_URL",
        "TRADESAFE_GRAPHQL_URL",
    ):
        monkeypatch.delenv(k, raising=False)

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)
    return app


@pytest.fixture()
def seed(app):
    """Roles, an admin, two customers and three products. Returns their ids."""
    with session_scope(app) as s:
        perms = [Permission(key=key, name=name) for key, name in PERMISSIONS.items()]
        admin_role = Role(key=ROLE_ADMIN, name="Administrator")
        admin_role.permissions.extend(perms)
        customer_role = Role(key=ROLE_CUSTOMER, name="Customer")

        admin = User(name="Admin User", email=ADMIN_EMAIL, password_hash=generate_password_hash(PASSWORD), is_active=True)
        admin.roles.append(admin_role)
        jane = User(name="Jane Doe", email=CUSTOMER_EMAIL, password_hash=generate_password_hash(PASSWORD), is_active=True)
        jane.roles.append(customer_role)
        sam = User(name="Sam Smith", email=OTHER_EMAIL, password_hash=generate_password_hash(PASSWORD), is_active=True)
        sam.roles.append(customer_role)

        dog_food = Product(
            name="Premium Dog Food",
            description="Chicken and rice",
            price=Decimal("29.99"),
            category="Food",
            pet_type="Dog",
            image="/dog.jpg",
            featured=True,
        )
        cat_food = Product(
            name="Salmon Cat Food",
            description="Grain free",
            price=Decimal("24.99"),
            category="Food",
            pet_type="Cat",
            image="/cat.jpg",
            featured=False,
        )
        chews = Product(
            name="Dental Chews",
            description="Daily dental care",
            price=Decimal("12.50"),
            category="Treats",
            pet_type="Dog",
            image="/chews.jpg",
            featured=False,
        )
        s.add_all(perms + [admin_role, customer_role, admin, jane, sam, dog_food, cat_food, chews])
        s.flush()
        ids = {
            "admin": admin.id,
            "customer": jane.id,
            "other": sam.id,
            "dog_food": dog_food.id,
            "cat_food": cat_food.id,
            "chews": chews.id,
        }
    return ids


@pytest.fixture()
def client(app, seed):
    return app.test_client()


def _login(c, email: str) -> dict:
    r = c.post("/auth/login", json={"email": email, "password": PASSWORD})
    assert r.status_code == 200, r.json
    return {"X-CSRF-Token": r.json["csrf_token"]}


@pytest.fixture()
def customer(client):
    """(client, headers) logged in as the seeded customer."""
    return client, _login(client, CUSTOMER_EMAIL)


@pytest.fixture()
def admin(app, seed):
    c = app.test_client()
    return c, _login(c, ADMIN_EMAIL)


@pytest.fixture()
def other_customer(app, seed):
    c = app.test_client()
    return c, _login(c, OTHER_EMAIL)


@pytest.fixture()
def post_webhook(app):
    """Post a JSON payload to the webhook, signed with the test secret unless told otherwise."""
    c = app.test_client()

    def _post(payload, *, signature: str | None = "auto", raw: bytes | None = None):
        body = raw if raw is not None else json.dumps(payload).encode("utf-8")
        headers = {"Content-Type": "application/json"}
        if signature == "auto":
            headers[SIGNATURE_HEADER] = compute_signature(WEBHOOK_SECRET, body)
        elif signature is not None:
            headers[SIGNATURE_HEADER] = signature
        return c.post("/api/tradesafe/webhook", data=body, headers=headers)

    return _post


class FakeTradeSafe:
    """In-memory stand-in for TradeSafeClient recording every call."""

    def __init__(self, *, fail_on: str | None = None):
        self.fail_on = fail_on
        self.calls: list[tuple[str, dict]] = []
        self.states: dict[str, str] = {}
        self._next = 1

    def _call(self, name: str, **kwargs):
        self.calls.append((name, kwargs))
        if self.fail_on == name:
            raise TradeSafeError(f"{name} exploded")

    def token_create(self, **kwargs):
        self._call("token_create", **kwargs)
        token = f"tok-{self._next}"
        self._next += 1
        return {"id": token, "name": kwargs.get("given_name")}

    def transaction_create(self, **kwargs):
        self._call("transaction_create", **kwargs)
        tx_id = f"tx-{self._next}"
        self._next += 1
        self.states[tx_id] = "CREATED"
        return {"id": tx_id, "state": "CREATED", "reference": kwargs["reference"]}

    def checkout_link(self, transaction_id, *, embed=False):
        self._call("checkout_link", transaction_id=transaction_id)
        return {"id": f"link-{transaction_id}", "url": f"https://pay.example/{transaction_id}"}

    def get_transaction(self, transaction_id):
        self._call("get_transaction", transaction_id=transaction_id)
        return {"id": transaction_id, "state": self.states.get(transaction_id, "CREATED")}


@pytest.fixture()
def fake_tradesafe(app):
    fake = FakeTradeSafe()
    app.extensions["tradesafe_client"] = fake
    return fake
