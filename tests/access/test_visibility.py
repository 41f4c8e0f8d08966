"""Tests for access grants and per-viewer projections."""

import pytest

from fieldshare.exceptions import FieldValidationError, ForbiddenError, InvalidStateError, NotFoundError
from fieldshare.models.access_grant import AccessGrant
from fieldshare.schemas.views import ApprovedView, OwnerView, RestrictedView
from fieldshare.services.access.visibility import AccessService, Visibility


@pytest.fixture
def access(db, settings):
    return AccessService(db, settings)


@pytest.fixture
def neighbours(make_field, square, gap_deg):
    """alice and bob farm adjacent fields 40 m apart."""
    alice_field = make_field("alice", square(0.0, 0.0), name="North 40", notes="gate code 1234")
    bob_field = make_field("bob", square(0.001 + gap_deg(40), 0.0), name="Creek", notes="bob's secret")
    return alice_field, bob_field


class TestResolveVisibility:
    """owner > approved > restricted."""

    def test_owner(self, access, neighbours):
        alice_field, _ = neighbours
        assert access.resolve_visibility("alice", alice_field) == Visibility.OWNER

    def test_restricted_without_grant(self, access, neighbours):
        alice_field, _ = neighbours
        assert access.resolve_visibility("bob", alice_field) == Visibility.RESTRICTED

    def test_approved_after_decision(self, access, neighbours):
        alice_field, _ = neighbours
        grant = access.request_access("bob", alice_field.id)
        assert access.resolve_visibility("bob", alice_field) == Visibility.RESTRICTED
        access.decide("alice", alice_field.id, grant.id, "approved")
        assert access.resolve_visibility("bob", alice_field) == Visibility.APPROVED

    def test_revoked_falls_back_to_restricted(self, access, neighbours):
        alice_field, _ = neighbours
        grant = access.request_access("bob", alice_field.id)
        access.decide("alice", alice_field.id, grant.id, "approved")
        access.revoke("alice", grant.id)
        assert access.resolve_visibility("bob", alice_field) == Visibility.RESTRICTED

    def test_field_to_field_grant(self, db, access, neighbours):
        alice_field, bob_field = neighbours
        db.add(AccessGrant(
            owner_field_id=alice_field.id, owner_user_id="alice",
            viewer_user_id="someone-else", viewer_field_id=bob_field.id,
            status="approved", grant_source="manual",
        ))
        db.commit()
        assert access.resolve_visibility("bob", alice_field) == Visibility.APPROVED

    def test_resolve_many(self, access, neighbours):
        alice_field, bob_field = neighbours
        levels = access.resolve_many("alice", [alice_field, bob_field])
        assert levels == {alice_field.id: Visibility.OWNER, bob_field.id: Visibility.RESTRICTED}


class TestProjection:
    """Notes are only ever shown to the owner."""

    def test_owner_view_has_notes(self, access, neighbours):
        alice_field, _ = neighbours
        view = access.view_for("alice", alice_field)
        assert isinstance(view, OwnerView)
        assert view.notes == "gate code 1234"

    def test_approved_view_has_no_notes(self, access, neighbours):
        alice_field, _ = neighbours
        grant = access.request_access("bob", alice_field.id)
        access.decide("alice", alice_field.id, grant.id, "approved")
        view = access.view_for("bob", alice_field)
        assert isinstance(view, ApprovedView)
        assert view.crop == "corn"
        assert "notes" not in view.model_dump()

    def test_restricted_view(self, access, settings, neighbours):
        alice_field, _ = neighbours
        view = access.view_for("bob", alice_field, distance_m=40.0)
        assert isinstance(view, RestrictedView)
        dumped = view.model_dump()
        assert dumped["name"] == settings.restricted_name
        assert dumped["approximate"] is True
        assert dumped["distance_m"] == 40.0
        for hidden in ("notes", "crop", "owner_id", "season", "variety"):
            assert hidden not in dumped
        ring = dumped["geometry"]["coordinates"][0]
        assert all(round(c, settings.restricted_precision) == c for pt in ring for c in pt)

    def test_restricted_view_of_malformed_boundary(self, db, access, neighbours):
        alice_field, _ = neighbours
        alice_field.geometry = '{"type": "Polygon", "coordinates": []}'
        db.commit()
        view = access.project(alice_field, Visibility.RESTRICTED)
        assert view.geometry == {"type": "Polygon", "coordinates": []}


class TestRequestLifecycle:
    def test_duplicate_request_returns_same_grant(self, db, access, neighbours):
        alice_field, _ = neighbours
        first = access.request_access("bob", alice_field.id)
        second = access.request_access("bob", alice_field.id)
        assert first.id == second.id
        pending = db.query(AccessGrant).filter_by(owner_field_id=alice_field.id, status="pending").count()
        assert pending == 1

    def test_own_field_rejected(self, access, neighbours):
        alice_field, _ = neighbours
        with pytest.raises(FieldValidationError):
            access.request_access("alice", alice_field.id)

    def test_unknown_field(self, access):
        with pytest.raises(NotFoundError):
            access.request_access("bob", "missing")

    def test_viewer_field_must_be_own(self, access, neighbours):
        alice_field, bob_field = neighbours
        with pytest.raises(ForbiddenError):
            access.request_access("carol", alice_field.id, viewer_field_id=bob_field.id)

    def test_only_owner_decides(self, access, neighbours):
        alice_field, _ = neighbours
        grant = access.request_access("bob", alice_field.id)
        with pytest.raises(ForbiddenError):
            access.decide("bob", alice_field.id, grant.id, "approved")

    def test_decision_on_wrong_field(self, access, neighbours):
        alice_field, bob_field = neighbours
        grant = access.request_access("bob", alice_field.id)
        with pytest.raises(NotFoundError):
            access.decide("bob", bob_field.id, grant.id, "approved")

    def test_unknown_decision(self, access, neighbours):
        alice_field, _ = neighbours
        grant = access.request_access("bob", alice_field.id)
        with pytest.raises(InvalidStateError):
            access.decide("alice", alice_field.id, grant.id, "revoked")

    def test_cannot_decide_twice(self, access, neighbours):
        alice_field, _ = neighbours
        grant = access.request_access("bob", alice_field.id)
        access.decide("alice", alice_field.id, grant.id, "denied")
        with pytest.raises(InvalidStateError):
            access.decide("alice", alice_field.id, grant.id, "approved")

    def test_new_request_after_denial(self, access, neighbours):
        alice_field, _ = neighbours
        grant = access.request_access("bob", alice_field.id)
        access.decide("alice", alice_field.id, grant.id, "denied")
        again = access.request_access("bob", alice_field.id)
        assert again.id != grant.id
        assert again.status == "pending"

    def test_revoke_requires_approved(self, access, neighbours):
        alice_field, _ = neighbours
        grant = access.request_access("bob", alice_field.id)
        with pytest.raises(InvalidStateError):
            access.revoke("alice", grant.id)

    def test_revoke_by_stranger(self, access, neighbours):
        alice_field, _ = neighbours
        grant = access.request_access("bob", alice_field.id)
        access.decide("alice", alice_field.id, grant.id, "approved")
        with pytest.raises(ForbiddenError):
            access.revoke("carol", grant.id)

    def test_listing(self, access, neighbours):
        alice_field, _ = neighbours
        grant = access.request_access("bob", alice_field.id)
        assert [g.id for g in access.pending_requests("alice")] == [grant.id]
        assert [g.id for g in access.requests_by_viewer("bob")] == [grant.id]
        assert access.pending_requests("bob") == []


class TestPermissionQueries:
    def test_adjacent_needing_permission(self, access, neighbours):
        alice_field, bob_field = neighbours
        needing = access.adjacent_needing_permission("bob")
        assert [n["field_id"] for n in needing] == [alice_field.id]
        assert needing[0]["distance_m"] == pytest.approx(40.0, rel=0.02)
        assert needing[0]["request_status"] is None

        access.request_access("bob", alice_field.id)
        assert access.adjacent_needing_permission("bob")[0]["request_status"] == "pending"

    def test_approved_fields_drop_out(self, access, neighbours):
        alice_field, _ = neighbours
        grant = access.request_access("bob", alice_field.id)
        access.decide("alice", alice_field.id, grant.id, "approved")
        assert access.adjacent_needing_permission("bob") == []
        assert [v.id for v in access.permitted_fields("bob")] == [alice_field.id]

    def test_no_fields_no_results(self, access):
        assert access.adjacent_needing_permission("nobody") == []
        assert access.permitted_fields("nobody") == []
