from datetime import datetime, timedelta, timezone

import mongomock
import pytest
from fastapi.testclient import TestClient

from database import ensure_indexes, get_db
from main import app
from storage import StorageError, get_storage

BASE_URL = "https://testserver"
PASSWORD = "s3cret-pass"


class FakeStorage:
    """Stands in for Cloudinary: records uploads, can be switched off or made to fail."""

    def __init__(self):
        self.available = True
        self.fail_uploads = False
        self.probes = 0
        self.uploaded = []

    def is_available(self):
        self.probes += 1
        return self.available

    def upload(self, file):
        if self.fail_uploads:
            raise StorageError("upload rejected")
        self.uploaded.append(file.filename)
        return f"https://res.cloudinary.com/demo/image/upload/{file.filename}"


@pytest.fixture
def db():
    database = mongomock.MongoClient()["storefront_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def client(db, storage):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_storage] = lambda: storage
    yield TestClient(app, base_url=BASE_URL)
    app.dependency_overrides.clear()


@pytest.fixture
def quiet_client(client):
    """Client that returns 500 responses instead of re-raising server errors."""
    return TestClient(app, base_url=BASE_URL, raise_server_exceptions=False)


def auth(token):
    return {"Authorization": f"Bearer {token}"}


def login(client, email, password=PASSWORD):
    res = client.post("/login-user", json={"email": email, "password": password})
    assert res.status_code == 200, res.text
    token = res.cookies.get("token")
    client.cookies.clear()
    return token


def register(client, email, password=PASSWORD, name=None):
    return client.post("/add-user", json={"email": email, "password": password, "name": name})


@pytest.fixture
def admin_token(client):
    res = client.post("/add-admin", json={"email": "admin@example.com", "password": PASSWORD, "name": "Admin"})
    assert res.status_code == 201, res.text
    return login(client, "admin@example.com")


@pytest.fixture
def user_token(client):
    assert register(client, "alice@example.com", name="Alice").status_code == 201
    return login(client, "alice@example.com")


@pytest.fixture
def other_token(client):
    assert register(client, "bob@example.com", name="Bob").status_code == 201
    return login(client, "bob@example.com")


@pytest.fixture
def make_category(db):
    def _make(name="Electronics", created_at=None):
        now = created_at or datetime.now(timezone.utc)
        res = db["category"].insert_one({
            "name": name,
            "description": f"All things {name.lower()}",
            "image": None,
            "products": [],
            "created_at": now,
            "updated_at": now,
        })
        return res.inserted_id
    return _make


@pytest.fixture
def make_product(db):
    def _make(category_id, name="Widget", price=10.0, stock=5, created_at=None):
        now = created_at or datetime.now(timezone.utc)
        res = db["product"].insert_one({
            "name": name,
            "description": f"{name} description",
            "price": price,
            "images": [],
            "stock": stock,
            "category_id": category_id,
            "created_at": now,
            "updated_at": now,
        })
        db["category"].update_one({"_id": category_id}, {"$push": {"products": res.inserted_id}})
        return res.inserted_id
    return _make


@pytest.fixture
def catalog(make_category, make_product):
    """Twelve products in one category, created one minute apart (P1 oldest)."""
    category_id = make_category()
    base = datetime(2024, 1, 1, tzinfo=timezone.utc)
    products = [
        make_product(category_id, name=f"P{i}", price=float(i), created_at=base + timedelta(minutes=i))
        for i in range(1, 13)
    ]
    return category_id, products
