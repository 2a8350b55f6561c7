"""
Shared fixtures for the fleet console tests.

The three databases point at throwaway SQLite files and the MQTT feed is
disabled before anything from fleetwatch is imported.
"""

import asyncio
import os
import tempfile
import time
import uuid

_DB_DIR = tempfile.mkdtemp(prefix="fleetwatch-tests-")
os.environ["AUTH_DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_DIR}/auth.db"
os.environ["FLEET_DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_DIR}/fleet.db"
os.environ["TELEMETRY_DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_DIR}/telemetry.db"
os.environ["MQTT_ENABLED"] = "false"
os.environ["LOG_FILE"] = os.path.join(_DB_DIR, "fleetwatch-test.log")

import pytest
from fastapi.testclient import TestClient

from fleetwatch.main import app
from fleetwatch.database import TelemetrySessionLocal
from fleetwatch.models.telemetry import VehiclePosition


# =============================================================================
# Helpers
# =============================================================================

def unique(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


def login(client: TestClient, username: str, password: str) -> dict:
    response = client.post("/api/auth/login", data={"username": username, "password": password})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


def insert_positions(rows):
    """Write position rows the way the ingestion feed would."""
    async def _insert():
        async with TelemetrySessionLocal() as db:
            for row in rows:
                db.add(VehiclePosition(**row))
            await db.commit()

    asyncio.run(_insert())


def minutes_ago(minutes: float) -> int:
    return int(time.time() - minutes * 60)


def create_vehicle(client: TestClient, headers: dict, **fields) -> dict:
    body = {"plate_number": unique("PLATE"), "model": "Transit", "status": "active"}
    body.update(fields)
    response = client.post("/api/admin/vehicles", json=body, headers=headers)
    assert response.status_code == 200, response.text
    return response.json()


def create_developer(client: TestClient, headers: dict, **fields):
    """Create a developer under the admin behind headers: (account, auth headers)."""
    body = {"username": unique("dev"), "password": "devpass1"}
    body.update(fields)
    response = client.post("/api/admin/developers", json=body, headers=headers)
    assert response.status_code == 200, response.text
    return response.json(), login(client, body["username"], body["password"])


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture(scope="session")
def client():
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def admin(client):
    """A freshly registered fleet admin: (username, auth headers)."""
    username = unique("admin")
    response = client.post(
        "/api/auth/register",
        json={"username": username, "password": "secret123", "company_name": "Acme Fleet"},
    )
    assert response.status_code == 200, response.text
    return username, login(client, username, "secret123")


@pytest.fixture
def admin_headers(admin):
    return admin[1]
