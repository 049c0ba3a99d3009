import pytest
from fastapi.testclient import TestClient

from config import Settings
from main import app, wire
from repositories import Repositories
from schemas import Product

ADMIN_EMAIL = "admin@example.com"
PASSWORD = "secret123"


@pytest.fixture
def settings():
    return Settings(
        jwt_secret="test-secret",
        jwt_refresh_secret="test-refresh-secret",
        admin_emails=[ADMIN_EMAIL],
    )


@pytest.fixture
def services(settings):
    return wire(app, settings, Repositories.in_memory())


@pytest.fixture
def test_client(services):
    with TestClient(app) as client:
        yield client


@pytest.fixture
def register(test_client):
    def _register(email: str, password: str = PASSWORD, first_name: str = "Jane", last_name: str = "Doe"):
        response = test_client.post("/auth/register", json={
            "email": email,
            "password": password,
            "first_name": first_name,
            "last_name": last_name,
        })
        assert response.status_code == 200, response.text
        return response.json()
    return _register


@pytest.fixture
def user_session(register):
    return register("jane@example.com")


@pytest.fixture
def auth_headers(user_session):
    return {"Authorization": f"Bearer {user_session['access_token']}"}


@pytest.fixture
def admin_headers(register):
    session = register(ADMIN_EMAIL, first_name="Ada", last_name="Admin")
    return {"Authorization": f"Bearer {session['access_token']}"}


@pytest.fixture
def make_product():
    def _make(**overrides) -> Product:
        data = {
            "name": "Espresso Machine",
            "description": "15 bar pump espresso maker with milk frother",
            "price": 199.99,
            "image_url": "https://img.example.com/espresso.jpg",
            "category": "Kitchen",
            "stock": 10,
        }
        data.update(overrides)
        return Product(**data)
    return _make


@pytest.fixture
def product(services, make_product):
    return services.products.create(make_product())
