"""Tests for PresenceRepository."""
import datetime

from notegraph.models.schema import Presence, utc_now


def _beat(repo, session_id, seconds_ago=0, note_id="note-1", user_name="Ann"):
    return repo.heartbeat(
        Presence(
            note_id=note_id,
            session_id=session_id,
            user_name=user_name,
            last_seen_at=utc_now() - datetime.timedelta(seconds=seconds_ago),
        )
    )


class TestPresenceRepository:
    def test_active_window(self, presence_repository):
        """Test that only heartbeats inside the window count as active."""
        _beat(presence_repository, "fresh", seconds_ago=5)
        _beat(presence_repository, "stale", seconds_ago=120)

        active = presence_repository.get_active("note-1", window_seconds=30)

        assert [p.session_id for p in active] == ["fresh"]

    def test_most_recent_first(self, presence_repository):
        """Test that viewers are ordered most recent first."""
        _beat(presence_repository, "older", seconds_ago=20)
        _beat(presence_repository, "newer", seconds_ago=1)
        active = presence_repository.get_active("note-1", window_seconds=30)
        assert [p.session_id for p in active] == ["newer", "older"]

    def test_heartbeat_refreshes_row(self, presence_repository):
        """Test that a repeated heartbeat updates the existing row."""
        _beat(presence_repository, "s1", seconds_ago=120, user_name="Old Name")
        _beat(presence_repository, "s1", seconds_ago=0, user_name="New Name")

        (presence,) = presence_repository.get_active("note-1", window_seconds=30)

        assert presence.user_name == "New Name"
        assert presence.last_seen_at.tzinfo is not None

    def test_sessions_are_per_note(self, presence_repository):
        """Test that one session can view several notes."""
        _beat(presence_repository, "s1", note_id="note-1")
        _beat(presence_repository, "s1", note_id="note-2")
        assert len(presence_repository.get_active("note-1", window_seconds=30)) == 1
        assert len(presence_repository.get_active("note-2", window_seconds=30)) == 1

    def test_leave(self, presence_repository):
        """Test that leaving removes the row once and then reports nothing removed."""
        _beat(presence_repository, "s1")
        assert presence_repository.leave("note-1", "s1") == 1
        assert presence_repository.leave("note-1", "s1") == 0

    def test_cleanup_removes_stale_rows(self, presence_repository):
        """Test that cleanup deletes rows outside the window."""
        _beat(presence_repository, "fresh", seconds_ago=1)
        _beat(presence_repository, "stale", seconds_ago=300)

        assert presence_repository.cleanup(window_seconds=30) == 1
        assert [p.session_id for p in presence_repository.get_active("note-1", 600)] == ["fresh"]

    def test_explicit_reference_time(self, presence_repository):
        """Test queries against an explicit reference time."""
        _beat(presence_repository, "s1")
        later = utc_now() + datetime.timedelta(minutes=10)
        assert presence_repository.get_active("note-1", 30, now=later) == []
