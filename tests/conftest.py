from datetime import datetime, timezone

import mongomock
import pytest
from fastapi.testclient import TestClient

import catalog
import config
import database
from schemas import CategoryIn, Principal, ProductIn
from security import create_access_token

BILLING = {
    "firstName": "Asha",
    "lastName": "Verma",
    "phone": "9876543210",
    "address": {
        "street": "12 Fern Lane",
        "city": "Pune",
        "state": "MH",
        "zipCode": "411001",
        "country": "India",
    },
}

SHIPPING = {
    "firstName": "Asha",
    "lastName": "Verma",
    "address": dict(BILLING["address"]),
    "method": "standard",
}

ORDER_DAY = datetime(2026, 3, 14, 10, 30, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def db():
    original = config.settings
    mongo = mongomock.MongoClient()
    yield database.connect(client_=mongo, name="plant_shop_test")
    config.settings = original
    database.client = None
    database.db = None


def _make_user(db, name, role="customer"):
    user_id = db["user"].insert_one({
        "name": name,
        "email": f"{name.lower()}@example.com",
        "passwordHash": "",
        "role": role,
        "isActive": True,
    }).inserted_id
    return Principal(id=str(user_id), role=role)


@pytest.fixture
def make_user(db):
    def factory(name, role="customer"):
        return _make_user(db, name, role)
    return factory


@pytest.fixture
def customer(db):
    return _make_user(db, "Asha")


@pytest.fixture
def other_customer(db):
    return _make_user(db, "Ravi")


@pytest.fixture
def admin(db):
    return _make_user(db, "Admin", role="admin")


@pytest.fixture
def category(db):
    return catalog.create_category(CategoryIn(name="Indoor Plants"))


@pytest.fixture
def make_product(category):
    def factory(name="Monstera Deliciosa", price=499.0, **extra):
        payload = {
            "name": name,
            "description": "A hardy tropical plant.",
            "price": price,
            "category": str(category["_id"]),
            "images": [{"url": f"https://img.example.com/{name}.jpg", "isPrimary": True}],
            "stock": {"quantity": 25},
            "plantCare": {"lightRequirement": "Bright Indirect", "wateringFrequency": "Weekly"},
            **extra,
        }
        return catalog.create_product(ProductIn(**payload))
    return factory


@pytest.fixture
def product(make_product):
    return make_product()


@pytest.fixture
def client():
    import main
    return TestClient(main.app)


@pytest.fixture
def auth_headers():
    def factory(principal):
        token = create_access_token({"sub": principal.id, "role": principal.role})
        return {"Authorization": f"Bearer {token}"}
    return factory
