import os
from typing import Callable, Generator

import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("RATE_LIMITING_ENABLED", "false")

from common.config import reset_settings_cache  # noqa: E402

reset_settings_cache()

from common.cache import catalog_cache  # noqa: E402
from common.database import Base, SessionLocal, engine  # noqa: E402
from common.models import RoleEnum  # noqa: E402
from services.catalog.app import app as catalog_app  # noqa: E402
from services.equipment.app import app as equipment_app  # noqa: E402
from services.logs.app import app as logs_app  # noqa: E402
from services.users.app import app as users_app  # noqa: E402

PASSWORD = "Passw0rd!"


@pytest.fixture(autouse=True, scope="function")
def _create_test_database() -> Generator[None, None, None]:
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    catalog_cache.clear()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db_session() -> Generator:
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def users_client() -> Generator[TestClient, None, None]:
    with TestClient(users_app) as client:
        yield client


@pytest.fixture()
def equipment_client() -> Generator[TestClient, None, None]:
    with TestClient(equipment_app) as client:
        yield client


@pytest.fixture()
def catalog_client() -> Generator[TestClient, None, None]:
    with TestClient(catalog_app) as client:
        yield client


@pytest.fixture()
def logs_client() -> Generator[TestClient, None, None]:
    with TestClient(logs_app) as client:
        yield client


def register(client: TestClient, username: str, role: RoleEnum = RoleEnum.BASIC) -> dict:
    response = client.post(
        "/users/register",
        json={
            "name": username.title(),
            "username": username,
            "email": f"{username}@example.com",
            "password": PASSWORD,
            "role": role.value,
        },
    )
    assert response.status_code == 201, response.text
    return response.json()


def auth_header(client: TestClient, username: str, password: str = PASSWORD) -> dict[str, str]:
    response = client.post(
        "/users/login",
        data={"username": username, "password": password},
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )
    token = response.json()["access_token"]
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def admin_headers(users_client: TestClient) -> dict[str, str]:
    register(users_client, "admin", RoleEnum.ADMIN)
    return auth_header(users_client, "admin")


@pytest.fixture()
def basic_headers(users_client: TestClient, admin_headers: dict[str, str]) -> dict[str, str]:
    register(users_client, "viewer")
    return auth_header(users_client, "viewer")


@pytest.fixture()
def advanced_headers(users_client: TestClient, admin_headers: dict[str, str]) -> dict[str, str]:
    register(users_client, "techie")
    response = users_client.put("/users/techie", json={"role": RoleEnum.ADVANCED.value}, headers=admin_headers)
    assert response.status_code == 200, response.text
    return auth_header(users_client, "techie")


@pytest.fixture()
def catalog(catalog_client: TestClient, admin_headers: dict[str, str]) -> dict[str, int]:
    """Seed Lager, Stage A, one category and two equipment types."""

    def create(path: str, payload: dict) -> int:
        response = catalog_client.post(path, json=payload, headers=admin_headers)
        assert response.status_code == 201, response.text
        return response.json()["id"]

    return {
        "lager": create("/locations", {"name": "Lager", "city": "Vienna"}),
        "stage_a": create("/locations", {"name": "Stage A"}),
        "lighting": create("/categories", {"name": "Lighting"}),
        "light": create("/equipment-types", {"name": "Light"}),
        "speaker": create("/equipment-types", {"name": "Speaker"}),
    }


@pytest.fixture()
def make_equipment(equipment_client: TestClient, admin_headers: dict[str, str], catalog: dict[str, int]) -> Callable:
    def factory(**overrides) -> dict:
        payload = {"type_id": catalog["light"], "brand": "ARRI", "model": "L7", "serial_number": "SN-1"}
        payload.update(overrides)
        response = equipment_client.post("/equipment", json=payload, headers=admin_headers)
        assert response.status_code == 201, response.text
        return response.json()

    return factory
