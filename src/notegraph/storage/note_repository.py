"""Repository for note and folder storage and retrieval."""
import datetime
import logging
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import selectinload

from notegraph.exceptions import ErrorCode, NoteNotFoundError, StorageError
from notegraph.models.db_models import DBFolder, DBNote
from notegraph.models.schema import (
    Folder,
    GraphNode,
    Note,
    NoteSummary,
    Tag,
    ensure_timezone_aware,
    utc_now,
)
from notegraph.storage.link_repository import LinkRepository
from notegraph.storage.tag_repository import TagRepository
from notegraph.utils import escape_like_pattern

logger = logging.getLogger(__name__)

# Earliest-created note wins when several share a title
_CANONICAL_ORDER = (DBNote.created_at.asc(), DBNote.id.asc())


def _to_summary(db_note: DBNote) -> NoteSummary:
    return NoteSummary(
        id=db_note.id,
        title=db_note.title or "",
        body=db_note.body or "",
        updated_at=ensure_timezone_aware(db_note.updated_at),
    )


class NoteRepository:
    """Stores notes and folders in the relational store.

    Links and tags are derived state owned by :class:`LinkRepository` and
    :class:`TagRepository`; this repository only touches them when a note
    is deleted, so that the note row and everything pointing at it go away
    in one transaction.
    """

    def __init__(self, session_factory):
        """Initialize the note repository.

        Args:
            session_factory: SQLAlchemy session factory for database operations.
        """
        self.session_factory = session_factory

    @staticmethod
    def _db_note_to_model(db_note: DBNote) -> Note:
        """Convert a SQLAlchemy DBNote (tags loaded) to a domain Note."""
        return Note(
            id=db_note.id,
            title=db_note.title or "",
            body=db_note.body or "",
            folder_id=db_note.folder_id,
            tags=[
                Tag(id=t.id, name=t.name, color=t.color)
                for t in sorted(db_note.tags or [], key=lambda t: t.name)
            ],
            created_at=ensure_timezone_aware(db_note.created_at),
            updated_at=ensure_timezone_aware(db_note.updated_at),
        )

    def create(self, note: Note) -> Note:
        """Insert a new note row. Tags on the model are ignored (derived from the body)."""
        try:
            with self.session_factory.begin() as session:
                session.add(
                    DBNote(
                        id=note.id,
                        title=note.title,
                        body=note.body,
                        folder_id=note.folder_id,
                        created_at=note.created_at,
                        updated_at=note.updated_at,
                    )
                )
        except SQLAlchemyError as e:
            logger.error(f"Failed to create note {note.id}: {e}")
            raise StorageError(
                f"Failed to create note {note.id}",
                operation="create",
                note_id=note.id,
                original_error=e,
            ) from e
        return note.model_copy(update={"tags": []})

    def get(self, note_id: str) -> Optional[Note]:
        """Get a note by ID, or None."""
        with self.session_factory() as session:
            db_note = session.scalar(
                select(DBNote)
                .where(DBNote.id == note_id)
                .options(selectinload(DBNote.tags))
            )
            return self._db_note_to_model(db_note) if db_note else None

    def exists(self, note_id: str) -> bool:
        with self.session_factory() as session:
            return session.scalar(select(DBNote.id).where(DBNote.id == note_id)) is not None

    def get_summary(self, note_id: str) -> Optional[NoteSummary]:
        with self.session_factory() as session:
            db_note = session.get(DBNote, note_id)
            return _to_summary(db_note) if db_note else None

    def get_summaries(self, note_ids: Iterable[str]) -> Dict[str, NoteSummary]:
        """Summaries keyed by id; unknown ids are skipped."""
        ids = list(set(note_ids))
        if not ids:
            return {}
        with self.session_factory() as session:
            rows = session.scalars(select(DBNote).where(DBNote.id.in_(ids))).all()
            return {row.id: _to_summary(row) for row in rows}

    def get_by_title(self, title: str) -> Optional[Note]:
        """Canonical note for an exact (case-sensitive) title."""
        note_id = self.find_ids_by_titles([title]).get(title)
        return self.get(note_id) if note_id else None

    def find_ids_by_titles(self, titles: Iterable[str]) -> Dict[str, str]:
        """Map each title that exists to its canonical note id.

        On duplicate titles the earliest ``created_at`` wins, then the
        smallest id. Comparison is exact.
        """
        wanted = list(dict.fromkeys(titles))
        if not wanted:
            return {}
        with self.session_factory() as session:
            rows = session.execute(
                select(DBNote.id, DBNote.title)
                .where(DBNote.title.in_(wanted))
                .order_by(*_CANONICAL_ORDER)
            ).all()
        result: Dict[str, str] = {}
        for row in rows:
            # SQLite "=" is case-sensitive for TEXT, but keep the check explicit
            if row.title in result or row.title not in wanted:
                continue
            result[row.title] = row.id
        return result

    def update(self, note: Note) -> Note:
        """Persist title, body and folder of an existing note and bump updated_at.

        Raises:
            NoteNotFoundError: If the note does not exist.
            StorageError: On database failure.
        """
        now = utc_now()
        try:
            with self.session_factory.begin() as session:
                db_note = session.get(DBNote, note.id)
                if db_note is None:
                    raise NoteNotFoundError(note.id)
                db_note.title = note.title
                db_note.body = note.body
                db_note.folder_id = note.folder_id
                db_note.updated_at = now
        except SQLAlchemyError as e:
            logger.error(f"Failed to update note {note.id}: {e}")
            raise StorageError(
                f"Failed to update note {note.id}",
                operation="update",
                note_id=note.id,
                original_error=e,
            ) from e
        return note.model_copy(update={"updated_at": now})

    def update_body(self, note_id: str, body: str) -> None:
        """Store a new body without touching the title."""
        try:
            with self.session_factory.begin() as session:
                db_note = session.get(DBNote, note_id)
                if db_note is None:
                    raise NoteNotFoundError(note_id)
                db_note.body = body
                db_note.updated_at = utc_now()
        except SQLAlchemyError as e:
            raise StorageError(
                f"Failed to update note {note_id}",
                operation="update_body",
                note_id=note_id,
                original_error=e,
            ) from e

    def delete(self, note_id: str) -> None:
        """Delete a note with every edge touching it and its tag associations.

        Raises:
            NoteNotFoundError: If the note does not exist.
            StorageError: On database failure (nothing is deleted).
        """
        try:
            with self.session_factory.begin() as session:
                if session.get(DBNote, note_id) is None:
                    raise NoteNotFoundError(note_id)
                removed_links = LinkRepository.delete_all_in_session(session, note_id)
                TagRepository.clear_note_in_session(session, note_id)
                session.execute(delete(DBNote).where(DBNote.id == note_id))
        except SQLAlchemyError as e:
            logger.error(f"Failed to delete note {note_id}: {e}")
            raise StorageError(
                f"Failed to delete note {note_id}",
                operation="delete",
                note_id=note_id,
                code=ErrorCode.STORAGE_DELETE_FAILED,
                original_error=e,
            ) from e
        logger.debug(f"Deleted note {note_id} and {removed_links} links")

    def list_notes(self, limit: Optional[int] = None, offset: int = 0) -> List[Note]:
        """All notes, most recently updated first."""
        with self.session_factory() as session:
            query = (
                select(DBNote)
                .options(selectinload(DBNote.tags))
                .order_by(DBNote.updated_at.desc(), DBNote.id)
                .offset(offset)
            )
            if limit is not None:
                query = query.limit(limit)
            return [self._db_note_to_model(n) for n in session.scalars(query)]

    def count_notes(self) -> int:
        with self.session_factory() as session:
            return session.scalar(select(func.count(DBNote.id))) or 0

    def find_mention_candidates(self, title: str, exclude_id: str) -> List[NoteSummary]:
        """Notes other than ``exclude_id`` whose body might mention ``title``.

        For ASCII titles the store narrows the set with a case-insensitive
        ``LIKE`` (SQLite only folds ASCII case). Other titles return every
        note. Callers must still scan the bodies themselves.
        """
        query = select(DBNote).where(DBNote.id != exclude_id)
        if title.isascii():
            pattern = f"%{escape_like_pattern(title)}%"
            query = query.where(DBNote.body.ilike(pattern, escape="\\"))
        with self.session_factory() as session:
            return [_to_summary(n) for n in session.scalars(query.order_by(DBNote.id))]

    def get_folder_id(self, note_id: str) -> Optional[str]:
        with self.session_factory() as session:
            return session.scalar(select(DBNote.folder_id).where(DBNote.id == note_id))

    def find_ids_in_folder(self, folder_id: str, exclude_id: Optional[str] = None) -> List[str]:
        query = select(DBNote.id).where(DBNote.folder_id == folder_id)
        if exclude_id is not None:
            query = query.where(DBNote.id != exclude_id)
        with self.session_factory() as session:
            return list(session.scalars(query.order_by(DBNote.id)).all())

    def find_updated_since(
        self,
        since: datetime.datetime,
        exclude_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> Dict[str, datetime.datetime]:
        """Ids of notes updated at or after ``since``, newest first."""
        query = select(DBNote.id, DBNote.updated_at).where(
            DBNote.updated_at >= ensure_timezone_aware(since)
        )
        if exclude_id is not None:
            query = query.where(DBNote.id != exclude_id)
        query = query.order_by(DBNote.updated_at.desc(), DBNote.id)
        if limit is not None:
            query = query.limit(limit)
        with self.session_factory() as session:
            rows = session.execute(query).all()
        return {row.id: ensure_timezone_aware(row.updated_at) for row in rows}

    def get_graph_nodes(self) -> List[Tuple[GraphNode, str]]:
        """Every note as a graph node, paired with its body, oldest first."""
        with self.session_factory() as session:
            rows = session.execute(
                select(DBNote.id, DBNote.title, DBNote.folder_id, DBNote.body)
                .order_by(*_CANONICAL_ORDER)
            ).all()
        return [
            (GraphNode(id=row.id, title=row.title or "", folder_id=row.folder_id), row.body or "")
            for row in rows
        ]

    # Folders

    def create_folder(self, folder: Folder) -> Folder:
        try:
            with self.session_factory.begin() as session:
                session.add(DBFolder(id=folder.id, name=folder.name, parent_id=folder.parent_id))
        except SQLAlchemyError as e:
            raise StorageError(
                f"Failed to create folder {folder.name}",
                operation="create_folder",
                original_error=e,
            ) from e
        return folder

    def get_folder(self, folder_id: str) -> Optional[Folder]:
        with self.session_factory() as session:
            db_folder = session.get(DBFolder, folder_id)
            if db_folder is None:
                return None
            return Folder(id=db_folder.id, name=db_folder.name, parent_id=db_folder.parent_id)

    def get_or_create_folder_path(self, names: List[str]) -> Optional[str]:
        """Walk (creating as needed) a folder path like ``["Work", "Q3"]``.

        Returns:
            Id of the innermost folder, or None for an empty path.
        """
        parent_id: Optional[str] = None
        for name in names:
            with self.session_factory() as session:
                existing = session.scalar(
                    select(DBFolder.id).where(
                        DBFolder.name == name,
                        DBFolder.parent_id.is_(None)
                        if parent_id is None
                        else DBFolder.parent_id == parent_id,
                    )
                )
            if existing is None:
                existing = self.create_folder(Folder(name=name, parent_id=parent_id)).id
            parent_id = existing
        return parent_id

    def get_folder_path(self, folder_id: Optional[str]) -> List[str]:
        """Folder names from the root down to ``folder_id``."""
        names: List[str] = []
        seen = set()
        with self.session_factory() as session:
            while folder_id and folder_id not in seen:
                seen.add(folder_id)
                db_folder = session.get(DBFolder, folder_id)
                if db_folder is None:
                    break
                names.append(db_folder.name)
                folder_id = db_folder.parent_id
        return list(reversed(names))
