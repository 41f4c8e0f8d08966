"""Tests for the adjacency record store."""

import pytest

from fieldshare.models.adjacency import AdjacencyRecord
from fieldshare.services.adjacency.store import AdjacencyCandidate, AdjacencyStore


@pytest.fixture
def store(db):
    return AdjacencyStore(db)


@pytest.fixture
def three_fields(make_field, square):
    # far apart so creation stores no adjacency of its own
    return [
        make_field("alice", square(0.0, 0.0)),
        make_field("alice", square(0.1, 0.0)),
        make_field("bob", square(0.2, 0.0)),
    ]


class TestReplaceAdjacency:
    """replace_adjacency swaps a field's records atomically."""

    def test_stores_canonical_pairs(self, db, store, three_fields):
        a, b, c = three_fields
        store.replace_adjacency(c.id, [AdjacencyCandidate(a.id, 12.0), AdjacencyCandidate(b.id, 30.0)])
        for record in db.query(AdjacencyRecord).all():
            assert record.field_a_id < record.field_b_id
        assert store.get_adjacent_ids(c.id) == [a.id, b.id]

    def test_drops_self_and_duplicates(self, store, three_fields):
        a, b, _ = three_fields
        rows = store.replace_adjacency(a.id, [
            AdjacencyCandidate(a.id, 0.0),
            AdjacencyCandidate(b.id, 40.0),
            AdjacencyCandidate(b.id, 25.0),
        ])
        assert len(rows) == 1
        assert rows[0].distance_m == 25.0
        assert store.count_records() == 1

    def test_replaces_records_from_either_side(self, store, three_fields):
        a, b, c = three_fields
        store.replace_adjacency(b.id, [AdjacencyCandidate(a.id, 10.0)])
        store.replace_adjacency(a.id, [AdjacencyCandidate(c.id, 20.0)])
        assert store.get_adjacent_ids(a.id) == [c.id]
        assert store.get_adjacent_ids(b.id) == []

    def test_get_adjacent_resolves_other_side(self, store, three_fields):
        a, b, _ = three_fields
        store.replace_adjacency(a.id, [AdjacencyCandidate(b.id, 15.0, 3.5)])
        [from_b] = store.get_adjacent(b.id)
        assert from_b.field_id == b.id
        assert from_b.adjacent_field_id == a.id
        assert from_b.adjacent_field.id == a.id
        assert from_b.shared_boundary_m == 3.5

    def test_delete_all_for(self, store, three_fields):
        a, b, c = three_fields
        store.replace_adjacency(a.id, [AdjacencyCandidate(b.id, 1.0), AdjacencyCandidate(c.id, 2.0)])
        assert store.delete_all_for(a.id) == 2
        assert store.count_records() == 0


class TestUserQueries:
    """Per-user union of adjacency across owned fields."""

    def test_closest_distance_wins(self, store, three_fields):
        a, b, c = three_fields
        store.replace_adjacency(c.id, [AdjacencyCandidate(a.id, 50.0), AdjacencyCandidate(b.id, 20.0)])
        assert store.closest_distances_for_user("bob") == {a.id: 50.0, b.id: 20.0}
        assert store.closest_distances_for_user("alice") == {c.id: 20.0}

    def test_union_is_deduplicated(self, store, three_fields):
        a, b, c = three_fields
        store.replace_adjacency(c.id, [AdjacencyCandidate(a.id, 50.0), AdjacencyCandidate(b.id, 20.0)])
        fields = store.get_all_adjacent_for_user("alice")
        assert [f.id for f in fields] == [c.id]

    def test_count_excludes_own_fields(self, store, three_fields):
        a, b, c = three_fields
        store.replace_adjacency(a.id, [AdjacencyCandidate(b.id, 5.0), AdjacencyCandidate(c.id, 8.0)])
        assert store.count_adjacent_for_user("alice") == 1
        assert store.count_adjacent_for_user("nobody") == 0
