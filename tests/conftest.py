"""Shared fixtures: an in-memory database, an owner account and a small catalog."""
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("SECRET_KEY", "test-secret")

import pytest

from app import app as flask_app
from database import db


OWNER_EMAIL = "owner@example.com"
OWNER_PASSWORD = "secret123"


@pytest.fixture
def app():
    flask_app.config.update(TESTING=True)
    with flask_app.app_context():
        db.create_all()
    yield flask_app
    with flask_app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def register(client, email=OWNER_EMAIL, password=OWNER_PASSWORD, establishment_name="Pizzaria Teste"):
    return client.post("/api/auth/register", json={
        "name": "Dona Maria",
        "email": email,
        "password": password,
        "establishment_name": establishment_name,
    })


def login(client, email, password):
    return client.post("/api/auth/login", json={"email": email, "password": password})


@pytest.fixture
def owner(client):
    """Registered and logged-in owner; returns the register payload."""
    resp = register(client)
    assert resp.status_code == 200
    return resp.get_json()


@pytest.fixture
def catalog(client, owner):
    """Pizzas with a required crust group and a drinks category."""
    pizzas = client.post("/api/categories", json={"name": "Pizzas"}).get_json()["category"]["id"]
    drinks = client.post("/api/categories", json={"name": "Bebidas"}).get_json()["category"]["id"]

    pizza = client.post("/api/products", json={
        "name": "Margherita", "price": "40.00", "category_id": pizzas,
    }).get_json()["product"]["id"]
    soda = client.post("/api/products", json={
        "name": "Refrigerante", "price": "6.50", "category_id": drinks,
    }).get_json()["product"]["id"]

    crust = client.post("/api/addon-groups", json={
        "name": "Bordas", "min_selections": 1, "max_selections": 1, "required": True, "category_id": pizzas,
    }).get_json()["addon_group"]["id"]
    catupiry = client.post(f"/api/addon-groups/{crust}/addons", json={
        "name": "Catupiry", "price": "8.00",
    }).get_json()["addon"]["id"]
    cheddar = client.post(f"/api/addon-groups/{crust}/addons", json={
        "name": "Cheddar", "price": "6.00",
    }).get_json()["addon"]["id"]

    return {
        "pizzas": pizzas, "drinks": drinks,
        "pizza": pizza, "soda": soda,
        "crust": crust, "catupiry": catupiry, "cheddar": cheddar,
    }


@pytest.fixture
def quick_order(client, catalog):
    """Counter order: 2 pizzas with catupiry crust plus a soda, paid with pix (102.50)."""
    resp = client.post("/api/orders/quick", json={
        "order_subtype": "counter",
        "payment_method": "pix",
        "customer": {"name": "Ana", "phone": "(11) 98765-4321"},
        "items": [
            {"product_id": catalog["pizza"], "quantity": 2, "addons": [{"id": catalog["catupiry"]}]},
            {"product_id": catalog["soda"]},
        ],
    })
    assert resp.status_code == 200, resp.get_json()
    return resp.get_json()["order"]
