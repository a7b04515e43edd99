"""Tests for tag storage and hashtag reconciliation."""
import pytest

from notegraph.exceptions import ErrorCode, TagError
from notegraph.models.schema import Note
from notegraph.services.tag_reconciler import TagReconciler


@pytest.fixture
def note(note_repository):
    return note_repository.create(Note(id="note-1", title="Tagged"))


class TestTagRepository:
    def test_get_or_create_is_idempotent(self, tag_repository):
        """Test that creating an existing tag returns the same row."""
        first = tag_repository.get_or_create("project")
        second = tag_repository.get_or_create("project")
        assert first.id == second.id
        assert [t.name for t in tag_repository.get_all()] == ["project"]

    def test_get_or_create_rejects_invalid_name(self, tag_repository):
        """Test that invalid tag names are rejected."""
        with pytest.raises(TagError):
            tag_repository.get_or_create("has space")

    def test_nested_names_allowed(self, tag_repository):
        """Test that nested tag names are accepted."""
        assert tag_repository.get_or_create("area/work").name == "area/work"

    def test_set_color(self, tag_repository):
        """Test setting a tag color."""
        tag_repository.get_or_create("urgent")
        tag = tag_repository.set_color("urgent", "#FF0000")
        assert tag.color == "#FF0000"
        assert tag_repository.get("urgent").color == "#FF0000"

    def test_set_color_unknown_tag(self, tag_repository):
        """Test that coloring an unknown tag raises TagError."""
        with pytest.raises(TagError) as exc_info:
            tag_repository.set_color("missing", "#000000")
        assert exc_info.value.code == ErrorCode.TAG_NOT_FOUND

    def test_set_color_invalid(self, tag_repository):
        """Test that an invalid color is rejected."""
        tag_repository.get_or_create("urgent")
        with pytest.raises(TagError):
            tag_repository.set_color("urgent", "red")

    def test_counts_include_unused(self, tag_repository, note):
        """Test that tag counts include unused tags."""
        tag_repository.replace_for_note(note.id, ["a", "b"])
        tag_repository.get_or_create("lonely")
        assert tag_repository.get_with_counts() == {"a": 1, "b": 1, "lonely": 0}

    def test_delete_unused(self, tag_repository, note):
        """Test deleting tags that no note uses."""
        tag_repository.replace_for_note(note.id, ["kept"])
        tag_repository.get_or_create("orphan")
        assert tag_repository.delete_unused() == 1
        assert [t.name for t in tag_repository.get_all()] == ["kept"]

    def test_count_shared_tags(self, tag_repository, note_repository, note):
        """Test counting tags shared with other notes."""
        other = note_repository.create(Note(id="note-2"))
        third = note_repository.create(Note(id="note-3"))
        tag_repository.replace_for_note(note.id, ["a", "b", "c"])
        tag_repository.replace_for_note(other.id, ["a", "b"])
        tag_repository.replace_for_note(third.id, ["z"])

        assert tag_repository.count_shared_tags(note.id) == {"note-2": 2}


class TestTagReconciler:
    """The body is the only source of a note's tags."""

    def test_reconcile_creates_tags_in_order(self, tag_repository, note):
        """Test that reconciling creates tags in body order."""
        tags = TagReconciler(tag_repository).reconcile(note.id, "#beta text #alpha #beta")
        assert [t.name for t in tags] == ["beta", "alpha"]
        assert [t.name for t in tag_repository.get_tags_for_note(note.id)] == ["alpha", "beta"]

    def test_reconcile_replaces_previous_set(self, tag_repository, note):
        """Test that reconciling replaces the previous tag set."""
        reconciler = TagReconciler(tag_repository)
        reconciler.reconcile(note.id, "#one #two")
        reconciler.reconcile(note.id, "#two #three")
        assert [t.name for t in tag_repository.get_tags_for_note(note.id)] == ["three", "two"]

    def test_tag_free_body_clears_associations_but_keeps_tags(self, tag_repository, note):
        """Test that a body without tags clears associations but keeps tags."""
        reconciler = TagReconciler(tag_repository)
        reconciler.reconcile(note.id, "#keepme")

        assert reconciler.reconcile(note.id, "no tags at all") == []

        assert tag_repository.get_tags_for_note(note.id) == []
        assert tag_repository.get("keepme") is not None

    def test_reconcile_twice_is_stable(self, tag_repository, note):
        """Test that reconciling the same body twice is stable."""
        reconciler = TagReconciler(tag_repository)
        first = reconciler.reconcile(note.id, "#x #y")
        second = reconciler.reconcile(note.id, "#x #y")
        assert [(t.id, t.name) for t in first] == [(t.id, t.name) for t in second]
        assert tag_repository.get_with_counts() == {"x": 1, "y": 1}

    def test_overlong_hashtag_skipped(self, tag_repository, note):
        """Test that an overlong hashtag is skipped."""
        body = "#ok #" + "a" * 150
        tags = TagReconciler(tag_repository).reconcile(note.id, body)
        assert [t.name for t in tags] == ["ok"]

    def test_hangul_tags(self, tag_repository, note):
        """Test reconciling Hangul tags."""
        tags = TagReconciler(tag_repository).reconcile(note.id, "#회의 #메모")
        assert [t.name for t in tags] == ["회의", "메모"]
