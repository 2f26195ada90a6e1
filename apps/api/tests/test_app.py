"""End-to-end tests through the assembled application."""

import bcrypt
import pytest
from fastapi.testclient import TestClient

from apps.api.core.config import Settings
from apps.api.deps import build_services
from apps.api.main import create_app
from packages.ingestion_engine.store import RetryingTransactionStore

CSV_SAMPLE = b"""Date,Description,Amount
2024-01-05,Coffee Shop,-4.50
2024-01-05,Coffee Shop,-4.50
2024-01-06,Salary,2000.00
"""


@pytest.fixture
def settings():
    hashed = bcrypt.hashpw(b"pw", bcrypt.gensalt(rounds=4)).decode()
    return Settings(AUTH_USERS=f"alice:{hashed}", STORE_RETRY_BASE_DELAY=0)


@pytest.fixture
def client(settings):
    with TestClient(create_app(settings)) as c:
        yield c


def test_services_built_from_settings(settings):
    services = build_services(settings)
    assert isinstance(services.store, RetryingTransactionStore)
    assert services.authenticator.ttl.total_seconds() == settings.SESSION_TTL_SECONDS
    assert services.ledger.store is services.store


def test_full_flow(client):
    assert client.post("/api/v1/login", json={"username": "alice", "password": "pw"}).status_code == 200

    files = {"file": ("jan.csv", CSV_SAMPLE, "text/csv")}
    first = client.post("/api/v1/upload", files=files).json()
    assert (first["accepted"], first["duplicates"]) == (3, 0)

    files = {"file": ("jan.csv", CSV_SAMPLE, "text/csv")}
    second = client.post("/api/v1/upload", files=files).json()
    assert (second["accepted"], second["duplicates"]) == (0, 3)

    listing = client.get("/api/v1/transactions").json()
    assert listing["count"] == 3

    uploads = client.get("/api/v1/uploads").json()
    assert uploads["count"] == 2

    client.post("/api/v1/logout")
    assert client.get("/api/v1/transactions").status_code == 401


def test_cors_allows_configured_origin(client, settings):
    origin = settings.allowed_origins[0]
    response = client.options(
        "/api/v1/health",
        headers={"Origin": origin, "Access-Control-Request-Method": "GET"},
    )
    assert response.headers["access-control-allow-origin"] == origin


def test_cookie_follows_injected_settings(settings):
    custom = settings.model_copy(
        update={"SESSION_COOKIE_NAME": "custom_sid", "SESSION_COOKIE_SECURE": True}
    )
    with TestClient(create_app(custom), base_url="https://testserver") as client:
        response = client.post("/api/v1/login", json={"username": "alice", "password": "pw"})

        assert "custom_sid" in response.cookies
        assert "ledger_session" not in response.cookies
        assert "Secure" in response.headers["set-cookie"]
        assert client.get("/api/v1/transactions").status_code == 200


def test_cookie_under_default_name_is_ignored(settings):
    custom = settings.model_copy(update={"SESSION_COOKIE_NAME": "custom_sid"})
    with TestClient(create_app(custom)) as client:
        token = client.post(
            "/api/v1/login", json={"username": "alice", "password": "pw"}
        ).cookies["custom_sid"]
        client.cookies.clear()
        client.cookies.set("ledger_session", token)

        assert client.get("/api/v1/transactions").status_code == 401


def test_upload_limit_follows_injected_settings(settings):
    small = settings.model_copy(update={"MAX_UPLOAD_BYTES": 16})
    with TestClient(create_app(small)) as client:
        client.post("/api/v1/login", json={"username": "alice", "password": "pw"})
        files = {"file": ("jan.csv", CSV_SAMPLE, "text/csv")}

        assert client.post("/api/v1/upload", files=files).status_code == 413


def test_health_reports_injected_version(settings):
    versioned = settings.model_copy(update={"APP_VERSION": "9.9.9"})
    with TestClient(create_app(versioned)) as client:
        assert client.get("/api/v1/health").json()["version"] == "9.9.9"
