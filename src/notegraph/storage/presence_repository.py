"""Repository for note viewer presence (who has a note open)."""
import datetime
import logging
from typing import List, Optional

from sqlalchemy import delete, insert, select, update
from sqlalchemy.exc import SQLAlchemyError

from notegraph.exceptions import StorageError
from notegraph.models.db_models import DBPresence
from notegraph.models.schema import Presence, ensure_timezone_aware

logger = logging.getLogger(__name__)

_INSERT_PRESENCE = insert(DBPresence).prefix_with("OR IGNORE")


class PresenceRepository:
    """Heartbeat rows keyed by ``(note_id, session_id)``.

    A viewer is active while its last heartbeat is inside the window
    passed to :meth:`get_active`. Nothing here is process-global: every
    call names the session it acts for.
    """

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def heartbeat(self, presence: Presence) -> Presence:
        """Insert or refresh the row for this note and session."""
        values = {
            "note_id": presence.note_id,
            "session_id": presence.session_id,
            "user_name": presence.user_name,
            "last_seen_at": presence.last_seen_at,
        }
        try:
            with self.session_factory.begin() as session:
                # Same INSERT OR IGNORE + UPDATE pairing as tag upserts
                session.execute(_INSERT_PRESENCE, values)
                session.execute(
                    update(DBPresence)
                    .where(
                        DBPresence.note_id == presence.note_id,
                        DBPresence.session_id == presence.session_id,
                    )
                    .values(user_name=presence.user_name, last_seen_at=presence.last_seen_at)
                )
        except SQLAlchemyError as e:
            raise StorageError(
                "Failed to record presence",
                operation="heartbeat",
                note_id=presence.note_id,
                original_error=e,
            ) from e
        return presence

    def get_active(
        self,
        note_id: str,
        window_seconds: int,
        now: Optional[datetime.datetime] = None,
    ) -> List[Presence]:
        """Viewers of ``note_id`` seen within the window, most recent first."""
        cutoff = ensure_timezone_aware(now) - datetime.timedelta(seconds=window_seconds)
        with self.session_factory() as session:
            rows = session.scalars(
                select(DBPresence)
                .where(DBPresence.note_id == note_id, DBPresence.last_seen_at >= cutoff)
                .order_by(DBPresence.last_seen_at.desc(), DBPresence.session_id)
            ).all()
            return [
                Presence(
                    note_id=row.note_id,
                    session_id=row.session_id,
                    user_name=row.user_name,
                    last_seen_at=ensure_timezone_aware(row.last_seen_at),
                )
                for row in rows
            ]

    def leave(self, note_id: str, session_id: str) -> int:
        with self.session_factory.begin() as session:
            result = session.execute(
                delete(DBPresence).where(
                    DBPresence.note_id == note_id, DBPresence.session_id == session_id
                )
            )
            return result.rowcount or 0

    def cleanup(self, window_seconds: int, now: Optional[datetime.datetime] = None) -> int:
        """Delete heartbeats older than the window. Returns rows removed."""
        cutoff = ensure_timezone_aware(now) - datetime.timedelta(seconds=window_seconds)
        with self.session_factory.begin() as session:
            result = session.execute(
                delete(DBPresence).where(DBPresence.last_seen_at < cutoff)
            )
            removed = result.rowcount or 0
        if removed:
            logger.debug(f"Removed {removed} stale presence rows")
        return removed
