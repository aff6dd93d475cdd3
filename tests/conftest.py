import mongomock
import pytest
from fastapi.testclient import TestClient

from config import Settings
from database import get_db
from main import create_app


@pytest.fixture
def settings():
    return Settings(
        jwt_secret="test-secret",
        bcrypt_rounds=4,
        login_rate_limit=100,
        register_rate_limit=100,
        strict_rate_limit=100,
        api_rate_limit=1000,
    )


@pytest.fixture
def db():
    return mongomock.MongoClient()["bullmart_test"]


@pytest.fixture
def app(settings, db):
    app = create_app(settings)
    app.dependency_overrides[get_db] = lambda: db
    return app


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


def register(client, email="a@x.com", password="Abcdef12", name="Alice"):
    response = client.post("/api/auth/register", json={"name": name, "email": email, "password": password})
    assert response.status_code == 201, response.text
    return response.json()


def auth(token):
    return {"Authorization": f"Bearer {token}"}


def mark_verified(db, email):
    db["user"].update_one({"email": email}, {"$set": {"verification.email_verified": True}})


def make_admin(db, email):
    db["user"].update_one({"email": email}, {"$set": {"role": "admin"}})


def login(client, email="a@x.com", password="Abcdef12"):
    response = client.post("/api/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.text
    return response.json()["token"]


def product_payload(**overrides):
    payload = {
        "name": "Road Bike",
        "description": "Aluminium frame, 21 gears",
        "price": 250.0,
        "original_price": 400.0,
        "category": "sports",
        "brand": "Trek",
        "location": {"lat": 27.95, "lng": -82.46, "city": "Tampa"},
        "inventory": {"quantity": 3},
        "images": [{"url": "https://img.example.org/1.jpg"}, {"url": "https://img.example.org/2.jpg"}],
        "tags": ["bike", "bike", "road"],
    }
    payload.update(overrides)
    return payload
