import os

os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-the-suite")

import mongomock
import pytest
from fastapi.testclient import TestClient

from database import create_document, ensure_indexes, get_db
from main import app
from schemas import Product, SignUpRequest
from users import create_user


@pytest.fixture
def db():
    database = mongomock.MongoClient()["shop_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def client(db):
    # not used as a context manager: the startup hook would reach for a real server
    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    def _make(email="u@test.io", password="pass1234", name="Test User"):
        user = create_user(db, SignUpRequest(name=name, email=email, password=password))
        return str(user["_id"])
    return _make


@pytest.fixture
def make_product(db):
    def _make(name="Nebula Headphones", price=129.0, **extra):
        return create_document(db, "product", Product(name=name, price=price, **extra))
    return _make


@pytest.fixture
def login(client):
    def _login(email="u@test.io", password="pass1234"):
        res = client.post("/auth/login", json={"username": email, "password": password})
        assert res.status_code == 200, res.text
        return {"Authorization": f"Bearer {res.json()['data']['token']}"}
    return _login
