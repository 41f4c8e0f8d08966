"""HTTP tests for the FastAPI app, against a per-test SQLite store."""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from fieldshare.config import get_settings
from fieldshare.db import get_db, get_session_factory
from fieldshare.exceptions import StoreError
from fieldshare.main import app
from fieldshare.services.fields.service import FieldService


@pytest.fixture
def client(session_factory, settings):
    def _get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_settings] = lambda: settings
    yield TestClient(app)
    app.dependency_overrides.clear()


def _as(user):
    return {"X-User-Id": user}


@pytest.fixture
def create(client, square):
    def _create(user, lon, lat, **attrs):
        body = {"name": attrs.pop("name", "Field"), "geometry": square(lon, lat), "crop": "corn", "season": "2024"}
        body.update(attrs)
        res = client.post("/fields", json=body, headers=_as(user))
        assert res.status_code == 201, res.text
        return res.json()

    return _create


class TestBasics:
    def test_health(self, client):
        assert client.get("/health").json() == {"ok": True}

    def test_missing_user_header(self, client):
        assert client.get("/fields").status_code == 401


class TestFieldRoutes:
    def test_create_and_list(self, client, create):
        created = create("alice", 0.0, 0.0, notes="gate code")
        assert created["access_level"] == "owner"
        assert created["notes"] == "gate code"
        listed = client.get("/fields", headers=_as("alice")).json()
        assert [f["id"] for f in listed] == [created["id"]]

    def test_overlap_body(self, client, create, square):
        existing = create("alice", 0.0, 0.0)
        body = {"name": "Dup", "geometry": square(0.0005, 0.0), "crop": "corn", "season": "2024"}
        res = client.post("/fields", json=body, headers=_as("alice"))
        assert res.status_code == 400
        assert res.json() == {
            "message": "Field boundaries cannot overlap with existing fields",
            "error": "FIELD_OVERLAP",
            "overlappingFields": [existing["id"]],
        }

    def test_invalid_geometry(self, client):
        body = {"name": "Bad", "geometry": {"type": "Polygon", "coordinates": [[[0, 0], [1, 0], [0, 0]]]},
                "crop": "corn", "season": "2024"}
        res = client.post("/fields", json=body, headers=_as("alice"))
        assert res.status_code == 400
        assert "Invalid field boundary" in res.json()["detail"]

    def test_check_overlap(self, client, create, square):
        existing = create("alice", 0.0, 0.0)
        res = client.post("/fields/check-overlap", json={"geometry": square(0.0005, 0.0)}, headers=_as("alice"))
        assert res.json() == {"has_overlap": True, "overlapping_fields": [existing["id"]]}
        res = client.post("/fields/check-overlap", json={"geometry": square(0.0005, 0.0)}, headers=_as("bob"))
        assert res.json()["has_overlap"] is False

    def test_get_restricted_for_neighbour(self, client, create):
        field = create("alice", 0.0, 0.0, notes="secret")
        res = client.get(f"/fields/{field['id']}", headers=_as("bob"))
        assert res.status_code == 200
        body = res.json()
        assert body["access_level"] == "restricted"
        assert body["name"] == "Private Field"
        assert "notes" not in body and "crop" not in body

    def test_get_unknown(self, client):
        assert client.get("/fields/missing", headers=_as("alice")).status_code == 404

    def test_patch(self, client, create):
        field = create("alice", 0.0, 0.0)
        res = client.patch(f"/fields/{field['id']}", json={"crop": "wheat"}, headers=_as("alice"))
        assert res.status_code == 200
        assert res.json()["crop"] == "wheat"

    def test_patch_not_owner(self, client, create):
        field = create("alice", 0.0, 0.0)
        res = client.patch(f"/fields/{field['id']}", json={"crop": "wheat"}, headers=_as("bob"))
        assert res.status_code == 403

    def test_patch_immutable(self, client, create):
        field = create("alice", 0.0, 0.0)
        res = client.patch(f"/fields/{field['id']}", json={"owner_id": "bob"}, headers=_as("alice"))
        assert res.status_code == 400

    def test_delete(self, client, create):
        field = create("alice", 0.0, 0.0)
        res = client.delete(f"/fields/{field['id']}", headers=_as("alice"))
        assert res.json() == {"ok": True, "deleted_id": field["id"]}
        assert client.get(f"/fields/{field['id']}", headers=_as("alice")).status_code == 404

    def test_adjacency_routes(self, client, create, gap_deg):
        a = create("alice", 0.0, 0.0)
        b = create("bob", 0.001 + gap_deg(50), 0.0)

        adjacent = client.get(f"/fields/{a['id']}/adjacent", headers=_as("alice")).json()
        assert [item["adjacent_field_id"] for item in adjacent] == [b["id"]]
        assert adjacent[0]["field"]["access_level"] == "restricted"

        res = client.post(f"/fields/{a['id']}/adjacency/recompute", headers=_as("alice"))
        assert [item["adjacent_field_id"] for item in res.json()["adjacent"]] == [b["id"]]

        nearby = client.get("/fields/nearby", headers=_as("alice")).json()
        assert [f["access_level"] for f in nearby] == ["owner", "restricted"]

        needing = client.get("/fields/adjacent-needing-permission", headers=_as("alice")).json()
        assert [n["field_id"] for n in needing] == [b["id"]]

    def test_nearby_point_requires_both_coordinates(self, client):
        assert client.get("/fields/nearby?lon=0.0", headers=_as("alice")).status_code == 400

    def test_nearby_point_radius_is_bounded(self, client, create):
        create("alice", 0.0, 0.0)
        create("bob", 0.5, 0.5)
        res = client.get("/fields/nearby?lon=0&lat=0&radius_m=1e9", headers=_as("mallory"))
        assert res.status_code == 400
        assert "radius_m" in res.json()["detail"]
        assert client.get("/fields/nearby?lon=0&lat=0&radius_m=0", headers=_as("mallory")).status_code == 400
        ok = client.get("/fields/nearby?lon=0&lat=0&radius_m=1000", headers=_as("mallory"))
        assert ok.status_code == 200
        assert len(ok.json()) == 1

    @pytest.mark.parametrize("limit", [-1, 0, 101])
    def test_field_updates_limit_bounds(self, client, create, limit):
        field = create("alice", 0.0, 0.0)
        res = client.get(f"/fields/{field['id']}/updates?limit={limit}", headers=_as("alice"))
        assert res.status_code == 422

    def test_store_failure_is_generic_500(self, client, square):
        body = {"name": "F", "geometry": square(0.0, 0.0), "crop": "corn", "season": "2024"}
        with patch.object(FieldService, "create_field", side_effect=StoreError("Failed to create field", {"cause": "OperationalError"})):
            res = client.post("/fields", json=body, headers=_as("alice"))
        assert res.status_code == 500
        assert res.json() == {"detail": "internal server error"}


class TestAccessRoutes:
    def test_request_approve_revoke(self, client, create):
        field = create("alice", 0.0, 0.0)

        res = client.post("/access/requests", json={"owner_field_id": field["id"]}, headers=_as("bob"))
        assert res.status_code == 201
        grant = res.json()
        assert grant["status"] == "pending"

        pending = client.get("/access/requests/pending", headers=_as("alice")).json()
        assert [g["id"] for g in pending] == [grant["id"]]

        url = f"/access/fields/{field['id']}/requests/{grant['id']}"
        assert client.put(url, json={"decision": "approved"}, headers=_as("bob")).status_code == 403
        assert client.put(url, json={"decision": "approved"}, headers=_as("alice")).json()["status"] == "approved"
        assert client.put(url, json={"decision": "denied"}, headers=_as("alice")).status_code == 409

        view = client.get(f"/fields/{field['id']}", headers=_as("bob")).json()
        assert view["access_level"] == "approved"
        assert "notes" not in view
        permitted = client.get("/fields/permitted", headers=_as("bob")).json()
        assert [f["id"] for f in permitted] == [field["id"]]

        res = client.post(f"/access/requests/{grant['id']}/revoke", headers=_as("bob"))
        assert res.json()["status"] == "revoked"
        mine = client.get("/access/requests/mine", headers=_as("bob")).json()
        assert [g["status"] for g in mine] == ["revoked"]

    def test_request_own_field(self, client, create):
        field = create("alice", 0.0, 0.0)
        res = client.post("/access/requests", json={"owner_field_id": field["id"]}, headers=_as("alice"))
        assert res.status_code == 400

    def test_unknown_grant(self, client):
        assert client.post("/access/requests/missing/revoke", headers=_as("alice")).status_code == 404


class TestActivityRoutes:
    def test_stats_and_updates(self, client, create):
        field = create("alice", 0.0, 0.0)
        client.patch(f"/fields/{field['id']}", json={"status": "growing"}, headers=_as("alice"))

        stats = client.get("/activity/stats", headers=_as("alice")).json()
        assert stats["my_fields_count"] == 1
        assert stats["recent_updates_count"] == 2

        updates = client.get("/activity/updates", headers=_as("alice")).json()
        assert [u["update_type"] for u in updates] == ["status_changed", "metadata_changed"]
        per_field = client.get(f"/fields/{field['id']}/updates?limit=1", headers=_as("alice")).json()
        assert len(per_field) == 1

    @pytest.mark.parametrize("limit", [-1, 0, 101])
    def test_recent_updates_limit_bounds(self, client, create, limit):
        create("alice", 0.0, 0.0)
        assert client.get(f"/activity/updates?limit={limit}", headers=_as("alice")).status_code == 422
