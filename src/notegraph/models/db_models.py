"""SQLAlchemy database models for notegraph."""
import datetime
from typing import Optional

from sqlalchemy import (Column, DateTime, ForeignKey, Integer, String, Table,
                        Text, UniqueConstraint, create_engine, event)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, relationship, sessionmaker
from sqlalchemy.pool import QueuePool

from notegraph.config import config

Base = declarative_base()


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


# Association table for tags and notes
note_tags = Table(
    "note_tags",
    Base.metadata,
    Column("note_id", String(255), ForeignKey("notes.id"), primary_key=True),
    Column("tag_id", Integer, ForeignKey("tags.id"), primary_key=True),
)


class DBFolder(Base):
    """Database model for a folder."""
    __tablename__ = "folders"
    id = Column(String(255), primary_key=True)
    name = Column(String(255), nullable=False)
    parent_id = Column(String(255), ForeignKey("folders.id"), nullable=True)

    def __repr__(self) -> str:
        return f"<Folder(id='{self.id}', name='{self.name}')>"


class DBNote(Base):
    """Database model for a note."""
    __tablename__ = "notes"
    id = Column(String(255), primary_key=True, index=True)
    # Not unique: the resolver picks the earliest-created note on collisions
    title = Column(String(500), nullable=False, default="", index=True)
    body = Column(Text, nullable=False, default="")
    folder_id = Column(String(255), ForeignKey("folders.id"), nullable=True, index=True)
    created_at = Column(DateTime, default=_utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=_utcnow, nullable=False, index=True)

    tags = relationship("DBTag", secondary=note_tags, back_populates="notes")
    outgoing_links = relationship(
        "DBLink",
        foreign_keys="DBLink.source_id",
        back_populates="source",
        cascade="all, delete-orphan",
    )
    incoming_links = relationship(
        "DBLink",
        foreign_keys="DBLink.target_id",
        back_populates="target",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Note(id='{self.id}', title='{self.title}')>"


class DBTag(Base):
    """Database model for a tag."""
    __tablename__ = "tags"
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), unique=True, nullable=False)
    color = Column(String(7), nullable=True)

    notes = relationship("DBNote", secondary=note_tags, back_populates="tags")

    def __repr__(self) -> str:
        return f"<Tag(id={self.id}, name='{self.name}')>"


class DBLink(Base):
    """Database model for a directed wikilink edge."""
    __tablename__ = "links"
    id = Column(Integer, primary_key=True, autoincrement=True)
    source_id = Column(String(255), ForeignKey("notes.id"), nullable=False, index=True)
    target_id = Column(String(255), ForeignKey("notes.id"), nullable=False, index=True)
    created_at = Column(DateTime, default=_utcnow, nullable=False)

    source = relationship(
        "DBNote", foreign_keys=[source_id], back_populates="outgoing_links"
    )
    target = relationship(
        "DBNote", foreign_keys=[target_id], back_populates="incoming_links"
    )

    __table_args__ = (
        UniqueConstraint("source_id", "target_id", name="unique_link"),
    )

    def __repr__(self) -> str:
        return f"<Link(id={self.id}, source='{self.source_id}', target='{self.target_id}')>"


class DBPresence(Base):
    """Last heartbeat of one viewer session on one note."""
    __tablename__ = "presence"
    id = Column(Integer, primary_key=True, autoincrement=True)
    note_id = Column(String(255), nullable=False, index=True)
    session_id = Column(String(255), nullable=False)
    user_name = Column(String(100), nullable=False)
    last_seen_at = Column(DateTime, default=_utcnow, nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint("note_id", "session_id", name="unique_presence"),
    )


def init_db(db_url: Optional[str] = None) -> Engine:
    """Create the engine and schema with hardened SQLite settings.

    - WAL journal so readers never see a half-applied reconciliation
    - NORMAL synchronous mode
    - Small QueuePool with pre-ping (SQLite is single-writer)

    Args:
        db_url: SQLAlchemy URL. Defaults to the configured database path.

    Returns:
        The engine, shared by every repository.
    """
    engine = create_engine(
        db_url or config.get_db_url(),
        poolclass=QueuePool,
        pool_size=5,
        max_overflow=10,
        pool_timeout=30,
        pool_recycle=3600,
        pool_pre_ping=True,
    )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.execute("PRAGMA busy_timeout=5000")
        cursor.close()

    Base.metadata.create_all(engine)
    return engine


def get_session_factory(engine: Optional[Engine] = None) -> sessionmaker:
    """Get a session factory for the database."""
    if engine is None:
        engine = init_db()
    return sessionmaker(bind=engine, expire_on_commit=False)
