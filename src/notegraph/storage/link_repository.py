"""Repository for the wikilink edge set."""
import logging
from typing import Iterable, List, Set, Tuple

from sqlalchemy import delete, func, insert, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from notegraph.exceptions import ErrorCode, StorageError
from notegraph.models.db_models import DBLink, DBNote
from notegraph.models.schema import (
    IncomingLink,
    OutgoingEdge,
    ensure_timezone_aware,
)

logger = logging.getLogger(__name__)

# Duplicate (source, target) pairs are skipped instead of raising
_INSERT_LINK = insert(DBLink).prefix_with("OR IGNORE")


def _distinct_targets(source_id: str, target_ids: Iterable[str]) -> List[str]:
    """Distinct targets in input order, without the source itself."""
    seen: Set[str] = set()
    result = []
    for target_id in target_ids:
        if target_id == source_id or target_id in seen:
            continue
        seen.add(target_id)
        result.append(target_id)
    return result


class LinkRepository:
    """Stores directed note-to-note edges.

    The outgoing edges of a note are owned by that note's body, so writes
    go through ``replace_outgoing`` which swaps the whole set in a single
    transaction. Readers never observe the intermediate empty set.
    """

    def __init__(self, session_factory):
        """Initialize the link repository.

        Args:
            session_factory: SQLAlchemy session factory for database operations.
        """
        self.session_factory = session_factory

    @staticmethod
    def _insert_edges(session: Session, source_id: str, target_ids: List[str]) -> None:
        if not target_ids:
            return
        session.execute(
            _INSERT_LINK,
            [
                {"source_id": source_id, "target_id": target_id}
                for target_id in target_ids
            ],
        )

    @staticmethod
    def _count_outgoing(session: Session, source_id: str) -> int:
        return session.scalar(
            select(func.count(DBLink.id)).where(DBLink.source_id == source_id)
        ) or 0

    @staticmethod
    def delete_all_in_session(session: Session, note_id: str) -> int:
        """Delete every edge touching ``note_id`` inside the caller's transaction."""
        result = session.execute(
            delete(DBLink).where(
                or_(DBLink.source_id == note_id, DBLink.target_id == note_id)
            )
        )
        return result.rowcount or 0

    def replace_outgoing(self, source_id: str, target_ids: Iterable[str]) -> int:
        """Make the outgoing edges of ``source_id`` exactly ``target_ids``.

        Self references and repeats are dropped. Delete and insert run in one
        transaction; on failure it is rolled back and the previous edge set
        is left untouched.

        Returns:
            Number of outgoing edges after the call.

        Raises:
            StorageError: If the transaction fails.
        """
        targets = _distinct_targets(source_id, target_ids)
        try:
            with self.session_factory.begin() as session:
                session.execute(delete(DBLink).where(DBLink.source_id == source_id))
                self._insert_edges(session, source_id, targets)
                count = self._count_outgoing(session, source_id)
        except SQLAlchemyError as e:
            logger.error(f"Replacing outgoing links of {source_id} failed: {e}")
            raise StorageError(
                "Failed to replace outgoing links",
                operation="replace_outgoing",
                note_id=source_id,
                code=ErrorCode.STORAGE_WRITE_FAILED,
                original_error=e,
            ) from e
        logger.debug(f"Note {source_id} now has {count} outgoing links")
        return count

    def add_links(self, source_id: str, target_ids: Iterable[str]) -> int:
        """Add edges without touching existing ones (approving suggestions).

        Existing edges and self references are skipped silently.

        Returns:
            Number of edges actually created.
        """
        targets = _distinct_targets(source_id, target_ids)
        if not targets:
            return 0
        try:
            with self.session_factory.begin() as session:
                before = self._count_outgoing(session, source_id)
                self._insert_edges(session, source_id, targets)
                after = self._count_outgoing(session, source_id)
        except SQLAlchemyError as e:
            raise StorageError(
                "Failed to add links",
                operation="add_links",
                note_id=source_id,
                original_error=e,
            ) from e
        return after - before

    def get_incoming(self, target_id: str) -> List[IncomingLink]:
        """Edges pointing at ``target_id`` together with their source notes."""
        with self.session_factory() as session:
            rows = session.execute(
                select(DBNote.id, DBNote.title, DBNote.body, DBNote.updated_at)
                .join(DBLink, DBLink.source_id == DBNote.id)
                .where(DBLink.target_id == target_id)
                .order_by(DBLink.id)
            ).all()
        return [
            IncomingLink(
                source_id=row.id,
                source_title=row.title or "",
                source_body=row.body or "",
                source_updated_at=ensure_timezone_aware(row.updated_at),
            )
            for row in rows
        ]

    def get_outgoing(self, source_id: str) -> List[OutgoingEdge]:
        """Edges leaving ``source_id`` with their target titles, oldest first."""
        with self.session_factory() as session:
            rows = session.execute(
                select(DBNote.id, DBNote.title)
                .join(DBLink, DBLink.target_id == DBNote.id)
                .where(DBLink.source_id == source_id)
                .order_by(DBLink.id)
            ).all()
        return [OutgoingEdge(target_id=row.id, target_title=row.title or "") for row in rows]

    def get_outgoing_ids(self, source_id: str) -> Set[str]:
        with self.session_factory() as session:
            return set(
                session.scalars(
                    select(DBLink.target_id).where(DBLink.source_id == source_id)
                ).all()
            )

    def delete_all_for_note(self, note_id: str) -> int:
        """Delete all links (incoming and outgoing) for a note.

        Returns:
            Number of links deleted.
        """
        try:
            with self.session_factory.begin() as session:
                return self.delete_all_in_session(session, note_id)
        except SQLAlchemyError as e:
            raise StorageError(
                "Failed to delete links",
                operation="delete_all_for_note",
                note_id=note_id,
                code=ErrorCode.STORAGE_DELETE_FAILED,
                original_error=e,
            ) from e

    def get_neighbor_ids(self, note_ids: Iterable[str]) -> List[Tuple[str, str]]:
        """(source_id, target_id) pairs where either end is in ``note_ids``."""
        ids = list(set(note_ids))
        if not ids:
            return []
        with self.session_factory() as session:
            rows = session.execute(
                select(DBLink.source_id, DBLink.target_id).where(
                    or_(DBLink.source_id.in_(ids), DBLink.target_id.in_(ids))
                )
            ).all()
        return [(row.source_id, row.target_id) for row in rows]

    def get_all_edges(self) -> List[Tuple[str, str]]:
        with self.session_factory() as session:
            rows = session.execute(
                select(DBLink.source_id, DBLink.target_id).order_by(DBLink.id)
            ).all()
        return [(row.source_id, row.target_id) for row in rows]
