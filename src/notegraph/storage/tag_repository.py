"""Repository for tag storage and retrieval."""
import logging
from typing import Dict, Iterable, List, Optional

from sqlalchemy import delete, func, insert, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from notegraph.exceptions import ErrorCode, StorageError, TagError
from notegraph.models.db_models import DBTag, note_tags
from notegraph.models.schema import Tag

logger = logging.getLogger(__name__)

# Tags are upserted by name; an existing row is left alone
_INSERT_TAG = insert(DBTag).prefix_with("OR IGNORE")


def _to_model(db_tag: DBTag) -> Tag:
    return Tag(id=db_tag.id, name=db_tag.name, color=db_tag.color)


class TagRepository:
    """Repository for tags and note/tag associations.

    Tags are created lazily and never removed by reconciliation;
    ``delete_unused`` is the explicit cleanup.
    """

    def __init__(self, session_factory):
        """Initialize the tag repository.

        Args:
            session_factory: SQLAlchemy session factory for database operations.
        """
        self.session_factory = session_factory

    @staticmethod
    def _upsert_in_session(session: Session, names: List[str]) -> List[DBTag]:
        """INSERT OR IGNORE each name, then read the rows back in input order."""
        if not names:
            return []
        session.execute(_INSERT_TAG, [{"name": name} for name in names])
        rows = session.scalars(select(DBTag).where(DBTag.name.in_(names))).all()
        by_name = {row.name: row for row in rows}
        return [by_name[name] for name in names]

    @staticmethod
    def clear_note_in_session(session: Session, note_id: str) -> int:
        result = session.execute(delete(note_tags).where(note_tags.c.note_id == note_id))
        return result.rowcount or 0

    def get_or_create(self, tag_name: str) -> Tag:
        """Get an existing tag or create a new one (upsert by name)."""
        try:
            Tag(name=tag_name)
        except ValueError as e:
            raise TagError(str(e), tag_name=tag_name) from e
        with self.session_factory.begin() as session:
            (db_tag,) = self._upsert_in_session(session, [tag_name])
            return _to_model(db_tag)

    def get(self, tag_name: str) -> Optional[Tag]:
        with self.session_factory() as session:
            db_tag = session.scalar(select(DBTag).where(DBTag.name == tag_name))
            return _to_model(db_tag) if db_tag else None

    def get_all(self) -> List[Tag]:
        with self.session_factory() as session:
            return [_to_model(t) for t in session.scalars(select(DBTag).order_by(DBTag.name))]

    def get_with_counts(self) -> Dict[str, int]:
        """Map every tag name to the number of notes carrying it (zero included)."""
        with self.session_factory() as session:
            result = session.execute(
                select(DBTag.name, func.count(note_tags.c.note_id))
                .select_from(DBTag)
                .outerjoin(note_tags, DBTag.id == note_tags.c.tag_id)
                .group_by(DBTag.name)
            ).all()
            return {name: count for name, count in result}

    def get_tags_for_note(self, note_id: str) -> List[Tag]:
        with self.session_factory() as session:
            rows = session.scalars(
                select(DBTag)
                .join(note_tags, DBTag.id == note_tags.c.tag_id)
                .where(note_tags.c.note_id == note_id)
                .order_by(DBTag.name)
            ).all()
            return [_to_model(t) for t in rows]

    def replace_for_note(self, note_id: str, tag_names: Iterable[str]) -> List[Tag]:
        """Make the note's tag associations exactly ``tag_names``.

        Upsert, delete and insert share one transaction.

        Returns:
            The tags now attached to the note, in input order.

        Raises:
            StorageError: If the transaction fails (nothing is changed).
        """
        names = list(dict.fromkeys(tag_names))
        try:
            with self.session_factory.begin() as session:
                db_tags = self._upsert_in_session(session, names)
                self.clear_note_in_session(session, note_id)
                if db_tags:
                    session.execute(
                        insert(note_tags),
                        [{"note_id": note_id, "tag_id": t.id} for t in db_tags],
                    )
                tags = [_to_model(t) for t in db_tags]
        except SQLAlchemyError as e:
            logger.error(f"Replacing tags of {note_id} failed: {e}")
            raise StorageError(
                "Failed to replace note tags",
                operation="replace_tags",
                note_id=note_id,
                original_error=e,
            ) from e
        return tags

    def clear_note(self, note_id: str) -> int:
        """Remove every tag association of a note. Tag rows stay."""
        try:
            with self.session_factory.begin() as session:
                return self.clear_note_in_session(session, note_id)
        except SQLAlchemyError as e:
            raise StorageError(
                "Failed to clear note tags",
                operation="clear_tags",
                note_id=note_id,
                code=ErrorCode.STORAGE_DELETE_FAILED,
                original_error=e,
            ) from e

    def set_color(self, tag_name: str, color: Optional[str]) -> Tag:
        """Change a tag's color (``None`` clears it)."""
        try:
            Tag(name=tag_name, color=color)
        except ValueError as e:
            raise TagError(str(e), tag_name=tag_name) from e
        with self.session_factory.begin() as session:
            db_tag = session.scalar(select(DBTag).where(DBTag.name == tag_name))
            if db_tag is None:
                raise TagError(
                    f"Tag '{tag_name}' not found",
                    tag_name=tag_name,
                    code=ErrorCode.TAG_NOT_FOUND,
                )
            db_tag.color = color
            return _to_model(db_tag)

    def count_shared_tags(self, note_id: str) -> Dict[str, int]:
        """For every other note, how many tags it shares with ``note_id``."""
        own_tags = (
            select(note_tags.c.tag_id).where(note_tags.c.note_id == note_id).scalar_subquery()
        )
        with self.session_factory() as session:
            rows = session.execute(
                select(note_tags.c.note_id, func.count(note_tags.c.tag_id))
                .where(note_tags.c.tag_id.in_(own_tags))
                .where(note_tags.c.note_id != note_id)
                .group_by(note_tags.c.note_id)
            ).all()
        return {nid: count for nid, count in rows}

    def delete_unused(self) -> int:
        """Delete tags that are not associated with any notes.

        Returns:
            Number of tags deleted.
        """
        with self.session_factory.begin() as session:
            unused_tags = session.scalars(
                select(DBTag)
                .outerjoin(note_tags, DBTag.id == note_tags.c.tag_id)
                .where(note_tags.c.note_id.is_(None))
            ).all()
            for tag in unused_tags:
                session.delete(tag)
            return len(unused_tags)
