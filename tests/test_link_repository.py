"""Tests for LinkRepository."""
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from notegraph.exceptions import StorageError
from notegraph.models.schema import Note
from notegraph.storage.link_repository import LinkRepository


@pytest.fixture
def notes(note_repository):
    """Four stored notes: a, b, c, d."""
    created = {}
    for key in "abcd":
        created[key] = note_repository.create(Note(id=f"note-{key}", title=key.upper(), body=f"body {key}"))
    return created


class TestReplaceOutgoing:
    def test_replace_sets_exact_targets(self, link_repository, notes):
        """Test that replacing outgoing links leaves exactly the given targets."""
        count = link_repository.replace_outgoing("note-a", ["note-b", "note-c"])
        assert count == 2
        assert link_repository.get_outgoing_ids("note-a") == {"note-b", "note-c"}

        count = link_repository.replace_outgoing("note-a", ["note-d"])
        assert count == 1
        assert link_repository.get_outgoing_ids("note-a") == {"note-d"}

    def test_self_and_duplicates_dropped(self, link_repository, notes):
        """Test that self links and repeated targets are not stored."""
        count = link_repository.replace_outgoing("note-a", ["note-a", "note-b", "note-b"])
        assert count == 1
        assert link_repository.get_outgoing_ids("note-a") == {"note-b"}

    def test_empty_replace_clears(self, link_repository, notes):
        """Test that replacing with no targets removes all outgoing links."""
        link_repository.replace_outgoing("note-a", ["note-b"])
        assert link_repository.replace_outgoing("note-a", []) == 0
        assert link_repository.get_outgoing_ids("note-a") == set()

    def test_does_not_touch_other_sources(self, link_repository, notes):
        """Test that replacing one note's links leaves other notes' links alone."""
        link_repository.replace_outgoing("note-b", ["note-c"])
        link_repository.replace_outgoing("note-a", [])
        assert link_repository.get_outgoing_ids("note-b") == {"note-c"}

    def test_failure_keeps_previous_edges(self, link_repository, notes):
        """Test that a failed replacement rolls back and keeps the previous links."""
        link_repository.replace_outgoing("note-a", ["note-b"])

        with patch.object(
            LinkRepository,
            "_insert_edges",
            side_effect=OperationalError("INSERT", {}, Exception("disk I/O error")),
        ):
            with pytest.raises(StorageError):
                link_repository.replace_outgoing("note-a", ["note-c"])

        assert link_repository.get_outgoing_ids("note-a") == {"note-b"}


class TestAddLinks:
    def test_add_counts_only_new_edges(self, link_repository, notes):
        """Test that adding links counts only edges that did not exist."""
        link_repository.replace_outgoing("note-a", ["note-b"])
        created = link_repository.add_links("note-a", ["note-b", "note-c", "note-a"])
        assert created == 1
        assert link_repository.get_outgoing_ids("note-a") == {"note-b", "note-c"}

    def test_add_nothing(self, link_repository, notes):
        """Test that adding no targets creates nothing."""
        assert link_repository.add_links("note-a", []) == 0


class TestQueries:
    def test_incoming_carries_source_fields(self, link_repository, notes):
        """Test that incoming links carry the source note's title and body."""
        link_repository.replace_outgoing("note-b", ["note-a"])
        link_repository.replace_outgoing("note-c", ["note-a"])

        incoming = link_repository.get_incoming("note-a")

        assert [i.source_id for i in incoming] == ["note-b", "note-c"]
        assert incoming[0].source_title == "B"
        assert incoming[0].source_body == "body b"
        assert incoming[0].source_updated_at.tzinfo is not None

    def test_outgoing_with_titles(self, link_repository, notes):
        """Test that outgoing links carry the target note's title."""
        link_repository.replace_outgoing("note-a", ["note-c", "note-b"])
        outgoing = link_repository.get_outgoing("note-a")
        assert [(o.target_id, o.target_title) for o in outgoing] == [
            ("note-c", "C"),
            ("note-b", "B"),
        ]

    def test_neighbor_ids_both_directions(self, link_repository, notes):
        """Test that neighbor lookups return edges in both directions."""
        link_repository.replace_outgoing("note-a", ["note-b"])
        link_repository.replace_outgoing("note-c", ["note-a"])
        link_repository.replace_outgoing("note-b", ["note-d"])

        pairs = set(link_repository.get_neighbor_ids(["note-a"]))

        assert pairs == {("note-a", "note-b"), ("note-c", "note-a")}
        assert link_repository.get_neighbor_ids([]) == []

    def test_all_edges(self, link_repository, notes):
        """Test listing every edge in the graph."""
        link_repository.replace_outgoing("note-a", ["note-b"])
        link_repository.replace_outgoing("note-b", ["note-c"])
        assert link_repository.get_all_edges() == [("note-a", "note-b"), ("note-b", "note-c")]

    def test_delete_all_for_note(self, link_repository, notes):
        """Test deleting every edge that touches a note."""
        link_repository.replace_outgoing("note-a", ["note-b"])
        link_repository.replace_outgoing("note-c", ["note-a"])
        link_repository.replace_outgoing("note-b", ["note-c"])

        assert link_repository.delete_all_for_note("note-a") == 2
        assert link_repository.get_all_edges() == [("note-b", "note-c")]
