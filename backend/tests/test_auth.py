"""
UGC Portal - Auth & User management
Run: cd backend && pytest tests/test_auth.py -v
"""

import asyncio

from pymongo.errors import PyMongoError

from config import get_db

PASSWORD = "UgcTest2026!"


def _db_op(coro):
    """Run async DB operation in a fresh event loop."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


class _FailingAuditLog:
    async def insert_one(self, doc):
        raise PyMongoError("activity store unavailable")


class NoAuditDB:
    """Base dont le journal d'activité refuse les écritures"""

    def __init__(self, db):
        self._db = db

    def __getitem__(self, name):
        return self._db[name]

    def __getattr__(self, name):
        if name == "activity_logs":
            return _FailingAuditLog()
        return getattr(self._db, name)


class TestLogin:
    def test_login_returns_token_and_capabilities(self, api, make_user):
        user, _ = make_user("VSDO")
        r = api.post("/api/auth/login", json={"email": user["email"], "password": PASSWORD})
        assert r.status_code == 200
        data = r.json()
        assert data["token"]
        assert data["user"]["capabilities"] == ["design.produce", "marketing.access"]
        assert "password" not in data["user"]

        me = api.get("/api/auth/me", headers={"Authorization": f"Bearer {data['token']}"})
        assert me.status_code == 200
        assert me.json()["id"] == user["id"]

    def test_login_is_logged(self, api, make_user, db):
        user, _ = make_user("Marcomm")
        api.post("/api/auth/login", json={"email": user["email"].upper(), "password": PASSWORD})
        assert _db_op(db.activity_logs.count_documents({"action": "login", "actor_id": user["id"]})) == 1

    def test_audit_failure_leaves_no_session(self, api, make_user, db):
        from server import app

        user, _ = make_user("Marcomm")
        sessions_before = _db_op(db.sessions.count_documents({"user_id": user["id"]}))
        app.dependency_overrides[get_db] = lambda: NoAuditDB(db)

        r = api.post("/api/auth/login", json={"email": user["email"], "password": PASSWORD})
        assert r.status_code == 500
        assert r.json()["error_code"] == "INTERNAL_ERROR"
        assert "token" not in r.json()
        assert _db_op(db.sessions.count_documents({"user_id": user["id"]})) == sessions_before

    def test_me_shape(self, api, make_user):
        user, headers = make_user("Marketing Manager")
        me = api.get("/api/auth/me", headers=headers).json()
        assert set(me) == {"id", "email", "name", "role", "tenant", "capabilities", "is_active"}
        assert me["tenant"] == "UGC"
        assert "marketing.supervise" in me["capabilities"]

    def test_wrong_password(self, api, make_user):
        user, _ = make_user("Marcomm")
        r = api.post("/api/auth/login", json={"email": user["email"], "password": "wrong"})
        assert r.status_code == 401
        assert r.json()["error_code"] == "UNAUTHORIZED"

    def test_disabled_account(self, api, make_user):
        user, headers = make_user("Marcomm", is_active=False)
        r = api.post("/api/auth/login", json={"email": user["email"], "password": PASSWORD})
        assert r.status_code == 403
        assert api.get("/api/auth/me", headers=headers).status_code == 403

    def test_logout_kills_session(self, api, make_user):
        _, headers = make_user("Marcomm")
        assert api.post("/api/auth/logout", headers=headers).status_code == 200
        assert api.get("/api/auth/me", headers=headers).status_code == 401


class TestRoleIsReadPerRequest:
    def test_role_change_applies_immediately(self, api, make_user, db):
        user, headers = make_user("VSDO")
        assert api.get("/api/activity-logs", headers=headers).status_code == 403

        _db_op(db.users.update_one({"id": user["id"]}, {"$set": {"role": "Director"}}))
        assert api.get("/api/activity-logs", headers=headers).status_code == 200


class TestUserManagement:
    def test_create_user(self, api, make_user):
        _, admin = make_user("Director")
        r = api.post("/api/auth/users", json={
            "email": "New.Hire@test.local", "password": "x", "name": "New Hire", "role": "DGO",
        }, headers=admin)
        assert r.status_code == 201
        created = r.json()["user"]
        assert created["email"] == "new.hire@test.local"
        assert created["tenant"] == "UGC"
        assert "design.request" in created["capabilities"]

        r = api.post("/api/auth/users", json={
            "email": "new.hire@test.local", "password": "x", "name": "Dup", "role": "DGO",
        }, headers=admin)
        assert r.status_code == 400

    def test_cannot_create_user_in_other_tenant(self, api, make_user, db):
        _, admin = make_user("Director")
        r = api.post("/api/auth/users", json={
            "email": "spy@test.local", "password": "x", "name": "Spy", "role": "Director", "tenant": "acme",
        }, headers=admin)
        assert r.status_code == 403
        assert r.json()["error_code"] == "FORBIDDEN"
        assert _db_op(db.users.count_documents({"email": "spy@test.local"})) == 0

        r = api.post("/api/auth/users", json={
            "email": "local@test.local", "password": "x", "name": "Local", "role": "DGO", "tenant": "ugc",
        }, headers=admin)
        assert r.status_code == 201
        assert r.json()["user"]["tenant"] == "UGC"

    def test_invalid_role(self, api, make_user):
        _, admin = make_user("Director")
        r = api.post("/api/auth/users", json={
            "email": "a@test.local", "password": "x", "name": "A", "role": "intern",
        }, headers=admin)
        assert r.status_code == 400
        assert r.json()["error_code"] == "VALIDATION_ERROR"

    def test_requires_users_manage(self, api, make_user):
        _, headers = make_user("Marketing Manager")
        assert api.get("/api/auth/users", headers=headers).status_code == 403

    def test_update_and_deactivate(self, api, make_user):
        admin_user, admin = make_user("Director")
        target, target_headers = make_user("Marcomm")

        r = api.put(f"/api/auth/users/{target['id']}", json={"role": "MACX"}, headers=admin)
        assert r.status_code == 200
        assert r.json()["user"]["role"] == "MACX"

        r = api.delete(f"/api/auth/users/{target['id']}", headers=admin)
        assert r.status_code == 200
        assert api.get("/api/auth/me", headers=target_headers).status_code == 401

        r = api.delete(f"/api/auth/users/{admin_user['id']}", headers=admin)
        assert r.status_code == 400

    def test_users_are_tenant_scoped(self, api, make_user):
        _, admin = make_user("Director")
        other, _ = make_user("Marcomm", tenant="ACME")
        r = api.put(f"/api/auth/users/{other['id']}", json={"name": "X"}, headers=admin)
        assert r.status_code == 404
        listed = api.get("/api/auth/users", headers=admin).json()["users"]
        assert other["id"] not in [u["id"] for u in listed]
