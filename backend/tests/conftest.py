"""
Fixtures partagées: base MongoDB en mémoire (mongomock-motor), horloge
déterministe, acteurs par rôle, client HTTP FastAPI.
"""

import asyncio
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from mongomock_motor import AsyncMongoMockClient

from config import generate_token, get_db, hash_password, new_id, now_iso, parse_iso
from services.workflow_engine import Actor

PASSWORD = "UgcTest2026!"
TENANT = "UGC"


def run(coro):
    """Run async DB operation in a fresh event loop."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


class TickingClock:
    """Horloge qui avance d'une minute à chaque lecture"""

    def __init__(self, start: str = "2026-03-02T08:00:00+00:00", step_minutes: int = 1):
        self.current = parse_iso(start)
        self.step = timedelta(minutes=step_minutes)

    def __call__(self) -> str:
        self.current += self.step
        return self.current.isoformat()


@pytest.fixture
def db():
    return AsyncMongoMockClient()["ugc_test"]


@pytest.fixture
def clock():
    return TickingClock()


@pytest.fixture
def actors():
    return {
        "requester": Actor(id="u-marcomm", role="Marcomm", tenant=TENANT, email="marcomm@test.local"),
        "requester2": Actor(id="u-dgo", role="DGO", tenant=TENANT, email="dgo@test.local"),
        "producer": Actor(id="u-vsdo", role="VSDO", tenant=TENANT, email="vsdo@test.local"),
        "manager": Actor(id="u-mm", role="Marketing Manager", tenant=TENANT, email="mm@test.local"),
        "director": Actor(id="u-dir", role="Director", tenant=TENANT, email="director@test.local"),
        "sales": Actor(id="u-sales", role="salesperson", tenant=TENANT, email="sales@test.local"),
        "ops": Actor(id="u-ops", role="EXIM Ops", tenant=TENANT, email="ops@test.local"),
        "finance": Actor(id="u-fin", role="finance", tenant=TENANT, email="finance@test.local"),
        "outsider": Actor(id="u-acme", role="Director", tenant="ACME", email="acme@test.local"),
    }


# ==================== API ====================

@pytest.fixture
def api(db):
    from server import app

    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    """Insère un utilisateur + une session, retourne (user, headers)"""

    def _make(role: str, tenant: str = TENANT, is_active: bool = True):
        user = {
            "id": new_id(),
            "email": f"{new_id()[:8]}@test.local",
            "password": hash_password(PASSWORD),
            "name": f"{role} Test",
            "role": role,
            "tenant": tenant,
            "is_active": is_active,
            "created_at": now_iso(),
        }
        token = generate_token()
        run(db.users.insert_one(dict(user)))
        run(db.sessions.insert_one({
            "token": token,
            "user_id": user["id"],
            "created_at": now_iso(),
            "expires_at": "2999-01-01T00:00:00+00:00",
        }))
        return user, {"Authorization": f"Bearer {token}"}

    return _make
