"""
UGC Portal - Design deliverable versions
Livraison (in_progress -> delivered) et revue d'une version, via le moteur
puis via l'API.
Run: cd backend && pytest tests/test_design_versions.py -v
"""

import asyncio

import pytest

from services.design_versions import deliver_version, list_versions, review_version
from services.errors import (
    AuthorizationError,
    CommentRequiredError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from services.transition_tables import DESIGN_REQUEST
from services.workflow_engine import TransitionExecutor, create_entity


def _db_op(coro):
    """Run async DB operation in a fresh event loop."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


REQUEST = {
    "title": "Feed Instagram Lebaran",
    "description": "3 slides carousel",
    "design_type": "social_post",
}

V1 = {"design_url": "https://drive.example/lebaran-v1.png", "file_format": "png"}
V2 = {"design_url": "https://drive.example/lebaran-v2.png", "notes": "Kontras dinaikkan"}


def _move(db, entity_id, target, actor, clock, **kw):
    return _db_op(TransitionExecutor(db, DESIGN_REQUEST, clock=clock).transition(entity_id, target, actor, **kw))


def _in_progress(db, actors, clock):
    req = _db_op(create_entity(db, DESIGN_REQUEST, actors["requester"], dict(REQUEST, submit_immediately=True), clock=clock))["item"]
    _move(db, req["id"], "accepted", actors["producer"], clock)
    _move(db, req["id"], "in_progress", actors["producer"], clock)
    return req


def _deliver(db, req_id, actor, clock, payload=V1):
    return _db_op(deliver_version(db, req_id, actor, payload, clock=clock))


def _review(db, req_id, version_id, actor, clock, **payload):
    return _db_op(review_version(db, req_id, version_id, actor, payload, clock=clock))


def _stored_versions(db, req_id):
    return _db_op(db.design_versions.find({"request_id": req_id}, {"_id": 0}).to_list(10))


# ═══════════════════════════════════════════════════════════════
# LIVRAISON
# ═══════════════════════════════════════════════════════════════

class TestDeliver:
    def test_first_delivery(self, db, actors, clock):
        req = _in_progress(db, actors, clock)
        result = _deliver(db, req["id"], actors["producer"], clock)

        version = result["version"]
        assert version["version_number"] == 1
        assert version["delivered_by"] == actors["producer"].id
        assert version["review_status"] is None
        assert result["to_state"] == "delivered"
        assert result["item"]["first_delivered_at"] == result["item"]["delivered_at"]

        comment = _db_op(db.comments.find_one({"entity_id": req["id"]}, {"_id": 0}))
        assert comment["version_ref"] == version["id"]
        assert comment["body"] == "Design version 1 delivered"

        log = _db_op(db.activity_logs.find_one({"entity_id": req["id"], "details.to": "delivered"}))
        assert log["details"]["version_ref"] == version["id"]

    def test_delivery_requires_in_progress(self, db, actors, clock):
        req = _db_op(create_entity(db, DESIGN_REQUEST, actors["requester"], dict(REQUEST, submit_immediately=True), clock=clock))["item"]
        _move(db, req["id"], "accepted", actors["producer"], clock)

        with pytest.raises(InvalidTransitionError) as exc:
            _deliver(db, req["id"], actors["producer"], clock)
        assert exc.value.from_state == "accepted"
        assert _stored_versions(db, req["id"]) == []

    def test_requester_cannot_deliver(self, db, actors, clock):
        req = _in_progress(db, actors, clock)
        with pytest.raises(AuthorizationError) as exc:
            _deliver(db, req["id"], actors["requester"], clock)
        assert exc.value.context["reason"] == "producer_only"
        assert _stored_versions(db, req["id"]) == []

    def test_design_url_required(self, db, actors, clock):
        req = _in_progress(db, actors, clock)
        with pytest.raises(ValidationError) as exc:
            _deliver(db, req["id"], actors["producer"], clock, payload={"notes": "no file"})
        assert "design_url" in exc.value.context["field_errors"]

    def test_unknown_request(self, db, actors, clock):
        with pytest.raises(NotFoundError):
            _deliver(db, "nope", actors["producer"], clock)

    def test_failed_transition_removes_version(self, db, actors, clock, monkeypatch):
        req = _in_progress(db, actors, clock)

        async def always_stale(self, entity, update):
            return None

        monkeypatch.setattr(TransitionExecutor, "_compare_and_set", always_stale)
        with pytest.raises(ConflictError):
            _deliver(db, req["id"], actors["producer"], clock)
        assert _stored_versions(db, req["id"]) == []

    def test_redelivery_numbers_next_version(self, db, actors, clock):
        req = _in_progress(db, actors, clock)
        v1 = _deliver(db, req["id"], actors["producer"], clock)["version"]
        _review(db, req["id"], v1["id"], actors["requester"], clock,
                review_status="revision_requested", review_comment="Logo kurang besar")
        _move(db, req["id"], "in_progress", actors["producer"], clock)

        result = _deliver(db, req["id"], actors["producer"], clock, payload=V2)
        assert result["version"]["version_number"] == 2
        assert result["item"]["first_delivered_at"] < result["item"]["delivered_at"]

        listed = _db_op(list_versions(db, req["id"], actors["requester"]))
        assert [v["version_number"] for v in listed] == [1, 2]
        assert listed[0]["review_status"] == "revision_requested"


# ═══════════════════════════════════════════════════════════════
# REVUE
# ═══════════════════════════════════════════════════════════════

class TestReview:
    def test_requester_approves(self, db, actors, clock):
        req = _in_progress(db, actors, clock)
        v1 = _deliver(db, req["id"], actors["producer"], clock)["version"]

        result = _review(db, req["id"], v1["id"], actors["requester"], clock, review_status="approved")
        assert result["to_state"] == "approved"
        assert result["item"]["approved_at"]
        assert result["version"]["review_status"] == "approved"
        assert result["version"]["reviewed_by"] == actors["requester"].id

        stored = _stored_versions(db, req["id"])[0]
        assert stored["review_status"] == "approved"
        assert stored["reviewed_at"] == result["item"]["approved_at"]

    def test_revision_needs_comment(self, db, actors, clock):
        req = _in_progress(db, actors, clock)
        v1 = _deliver(db, req["id"], actors["producer"], clock)["version"]

        with pytest.raises(CommentRequiredError):
            _review(db, req["id"], v1["id"], actors["requester"], clock, review_status="revision_requested")
        assert _stored_versions(db, req["id"])[0]["review_status"] is None

        result = _review(db, req["id"], v1["id"], actors["requester"], clock,
                         review_status="revision_requested", review_comment="Warna terlalu gelap")
        assert result["item"]["revision_count"] == 1
        comment = _db_op(db.comments.find_one({"entity_id": req["id"], "comment_type": "revision_feedback"}))
        assert comment["version_ref"] == v1["id"]

    def test_producer_cannot_review_own_version(self, db, actors, clock):
        req = _in_progress(db, actors, clock)
        v1 = _deliver(db, req["id"], actors["producer"], clock)["version"]
        with pytest.raises(AuthorizationError) as exc:
            _review(db, req["id"], v1["id"], actors["producer"], clock, review_status="approved")
        assert exc.value.context["reason"] == "self_review"

    def test_director_reviews_on_behalf(self, db, actors, clock):
        req = _in_progress(db, actors, clock)
        v1 = _deliver(db, req["id"], actors["producer"], clock)["version"]
        result = _review(db, req["id"], v1["id"], actors["director"], clock, review_status="approved")
        assert result["version"]["reviewed_by"] == actors["director"].id

    def test_unknown_review_status(self, db, actors, clock):
        req = _in_progress(db, actors, clock)
        v1 = _deliver(db, req["id"], actors["producer"], clock)["version"]
        with pytest.raises(ValidationError) as exc:
            _review(db, req["id"], v1["id"], actors["requester"], clock, review_status="cancelled")
        assert "review_status" in exc.value.context["field_errors"]

    def test_only_latest_version(self, db, actors, clock):
        req = _in_progress(db, actors, clock)
        v1 = _deliver(db, req["id"], actors["producer"], clock)["version"]
        _move(db, req["id"], "revision_requested", actors["requester"], clock, comment="Ganti font")
        _move(db, req["id"], "in_progress", actors["producer"], clock)
        _deliver(db, req["id"], actors["producer"], clock, payload=V2)

        with pytest.raises(ValidationError) as exc:
            _review(db, req["id"], v1["id"], actors["requester"], clock, review_status="approved")
        assert "version_id" in exc.value.context["field_errors"]

    def test_already_reviewed(self, db, actors, clock):
        req = _in_progress(db, actors, clock)
        v1 = _deliver(db, req["id"], actors["producer"], clock)["version"]
        _review(db, req["id"], v1["id"], actors["requester"], clock, review_status="approved")
        with pytest.raises(ValidationError):
            _review(db, req["id"], v1["id"], actors["requester"], clock, review_status="approved")

    def test_other_tenant_gets_not_found(self, db, actors, clock):
        req = _in_progress(db, actors, clock)
        v1 = _deliver(db, req["id"], actors["producer"], clock)["version"]
        with pytest.raises(NotFoundError):
            _review(db, req["id"], v1["id"], actors["outsider"], clock, review_status="approved")


# ═══════════════════════════════════════════════════════════════
# API
# ═══════════════════════════════════════════════════════════════

class TestVersionsApi:
    def _in_progress(self, api, requester, producer):
        r = api.post("/api/entities/design_request", json={**REQUEST, "submit_immediately": True}, headers=requester)
        assert r.status_code == 201, r.text
        item = r.json()["item"]
        for state in ("accepted", "in_progress"):
            r = api.patch(f"/api/entities/design_request/{item['id']}/status", json={"state": state}, headers=producer)
            assert r.status_code == 200, r.text
        return item

    def test_deliver_list_and_review(self, api, make_user):
        _, requester = make_user("Marcomm")
        _, producer = make_user("VSDO")
        item = self._in_progress(api, requester, producer)
        base = f"/api/entities/design_request/{item['id']}/versions"

        r = api.post(base, json=V1, headers=producer)
        assert r.status_code == 201
        version = r.json()["version"]
        assert version["version_number"] == 1
        assert r.json()["item"]["state"] == "delivered"

        r = api.get(base, headers=requester)
        assert r.status_code == 200
        assert r.json()["count"] == 1

        r = api.patch(f"{base}/{version['id']}/review", json={"review_status": "revision_requested"}, headers=requester)
        assert r.status_code == 400
        assert r.json()["error_code"] == "COMMENT_REQUIRED"

        r = api.patch(f"{base}/{version['id']}/review", json={"review_status": "approved"}, headers=requester)
        assert r.status_code == 200
        assert r.json()["item"]["state"] == "approved"
        assert r.json()["version"]["review_status"] == "approved"

    def test_deliver_from_wrong_state(self, api, make_user):
        _, requester = make_user("Marcomm")
        _, producer = make_user("VSDO")
        r = api.post("/api/entities/design_request", json=REQUEST, headers=requester)
        item = r.json()["item"]

        r = api.post(f"/api/entities/design_request/{item['id']}/versions", json=V1, headers=producer)
        assert r.status_code == 400
        assert r.json()["error_code"] == "INVALID_TRANSITION"

    def test_unknown_body_field(self, api, make_user):
        _, requester = make_user("Marcomm")
        _, producer = make_user("VSDO")
        item = self._in_progress(api, requester, producer)
        r = api.post(
            f"/api/entities/design_request/{item['id']}/versions",
            json={**V1, "version_number": 7},
            headers=producer,
        )
        assert r.status_code == 400
        assert "version_number" in r.json()["field_errors"]

    def test_versions_hidden_from_other_tenant(self, api, make_user):
        _, requester = make_user("Marcomm")
        _, producer = make_user("VSDO")
        _, outsider = make_user("Director", tenant="ACME")
        item = self._in_progress(api, requester, producer)
        r = api.get(f"/api/entities/design_request/{item['id']}/versions", headers=outsider)
        assert r.status_code == 404
