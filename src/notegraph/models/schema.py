"""Domain models for notegraph."""

import datetime
import os
import re
import threading
from dataclasses import dataclass, field
from datetime import timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

# Nested tag names: ASCII word characters or Hangul syllables, segments joined by "/"
TAG_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_가-힣]+(/[A-Za-z0-9_가-힣]+)*$")
TAG_COLOR_PATTERN = re.compile(r"^#[0-9A-Fa-f]{6}$")
MAX_TAG_NAME_LENGTH = 100

# Prefix of synthetic ids handed out for wikilinks that point nowhere
MISSING_PREFIX = "missing:"
UNTITLED = "Untitled"


def utc_now() -> datetime.datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.datetime.now(timezone.utc)


def ensure_timezone_aware(dt_value: Optional[datetime.datetime]) -> datetime.datetime:
    """Return the value as an aware UTC datetime.

    Naive values (as SQLite returns them) are taken to be UTC; aware values
    with another offset are converted. The DateTime columns store UTC
    wall-clock time without an offset.
    """
    if dt_value is None:
        return utc_now()
    if dt_value.tzinfo is None:
        return dt_value.replace(tzinfo=timezone.utc)
    return dt_value.astimezone(timezone.utc)


_id_lock = threading.Lock()
_last_timestamp = 0
_counter = (os.getpid() * 7) % 1_000_000


def generate_id() -> str:
    """Generate a sortable timestamp-based ID with guaranteed uniqueness.

    Format is "YYYYMMDDTHHMMSSsssssscccccc": UTC date, time, microseconds and
    a 6-digit counter seeded from the PID so that separate processes do not
    collide within the same microsecond.
    """
    global _last_timestamp, _counter

    with _id_lock:
        now = utc_now()
        current_timestamp = int(now.timestamp() * 1_000_000)
        if current_timestamp == _last_timestamp:
            _counter += 1
        else:
            _last_timestamp = current_timestamp
            _counter = (os.getpid() * 7) % 1_000_000
        _counter %= 1_000_000
        return f"{now.strftime('%Y%m%dT%H%M%S')}{now.microsecond:06d}{_counter:06d}"


class Tag(BaseModel):
    """A tag for categorizing notes."""

    id: Optional[int] = Field(default=None, description="Database id (None until stored)")
    name: str = Field(..., description="Tag name, '/' separates nesting levels")
    color: Optional[str] = Field(default=None, description="Hex color like #AABBCC")

    model_config = {"validate_assignment": True, "frozen": True}

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v or len(v) > MAX_TAG_NAME_LENGTH:
            raise ValueError(
                f"Tag name must be 1-{MAX_TAG_NAME_LENGTH} characters"
            )
        if not TAG_NAME_PATTERN.match(v):
            raise ValueError(f"Invalid tag name: {v!r}")
        return v

    @field_validator("color")
    @classmethod
    def validate_color(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not TAG_COLOR_PATTERN.match(v):
            raise ValueError(f"Invalid tag color: {v!r}")
        return v

    def __str__(self) -> str:
        return self.name


class Folder(BaseModel):
    """A folder grouping notes."""

    id: str = Field(default_factory=generate_id)
    name: str
    parent_id: Optional[str] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Folder name cannot be empty")
        return v


class Note(BaseModel):
    """A note. The body is the markup source that links and tags are derived from."""

    id: str = Field(default_factory=generate_id, description="Unique ID of the note")
    title: str = Field(default="", description="Title (may be empty)")
    body: str = Field(default="", description="Markup source")
    folder_id: Optional[str] = Field(default=None)
    tags: List[Tag] = Field(default_factory=list)
    created_at: datetime.datetime = Field(default_factory=utc_now)
    updated_at: datetime.datetime = Field(default_factory=utc_now)

    model_config = {"validate_assignment": True, "extra": "forbid"}

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Note ID cannot be empty")
        if v.startswith(MISSING_PREFIX):
            raise ValueError(f"Note ID cannot start with '{MISSING_PREFIX}'")
        return v

    @field_validator("created_at", "updated_at")
    @classmethod
    def normalize_timestamp(cls, v: datetime.datetime) -> datetime.datetime:
        return ensure_timezone_aware(v)

    @property
    def display_title(self) -> str:
        return self.title or UNTITLED


class Link(BaseModel):
    """A directed edge between two notes."""

    source_id: str
    target_id: str
    created_at: datetime.datetime = Field(default_factory=utc_now)

    model_config = {"frozen": True, "extra": "forbid"}


class NoteSummary(BaseModel):
    """The slice of a note that mention/backlink results carry."""

    id: str
    title: str
    body: str
    updated_at: datetime.datetime


class MentionGroup(BaseModel):
    """All excerpts found in one note, for a backlink or an unlinked mention."""

    note: NoteSummary
    contexts: List[str] = Field(default_factory=list)
    mention_count: int = 0


class OutgoingLink(BaseModel):
    """An outgoing link as the UI renders it.

    Unresolved titles get ``id = "missing:<title>"`` and ``exists = False``.
    """

    id: str
    title: str
    exists: bool


class GraphNeighbor(BaseModel):
    id: str
    title: str
    direction: Literal["outgoing", "incoming"]


class GraphNode(BaseModel):
    id: str
    title: str
    folder_id: Optional[str] = None
    is_missing: bool = False


class GraphEdge(BaseModel):
    id: str
    source: str
    target: str


class Graph(BaseModel):
    """Whole-store graph, including placeholder nodes for unresolved titles."""

    nodes: List[GraphNode] = Field(default_factory=list)
    edges: List[GraphEdge] = Field(default_factory=list)


class ContextNote(BaseModel):
    """A ranked related-note candidate."""

    note_id: str
    title: str
    score: float
    reason: str


class LinkSuggestion(BaseModel):
    note_id: str
    title: str
    reason: str
    preview: str = ""


class Presence(BaseModel):
    """One viewer heartbeat. The session id is supplied by the caller."""

    note_id: str
    session_id: str = Field(..., min_length=1, max_length=255)
    user_name: str = Field(..., max_length=100)
    last_seen_at: datetime.datetime = Field(default_factory=utc_now)

    @field_validator("last_seen_at")
    @classmethod
    def normalize_timestamp(cls, v: datetime.datetime) -> datetime.datetime:
        return ensure_timezone_aware(v)


@dataclass(frozen=True)
class UnresolvedReference:
    """A wikilink whose title matched no note. Never persisted."""

    title: str
    source_note_id: str


@dataclass
class ResolvedLinks:
    """Output of the link resolver, both lists de-duplicated in first-seen order."""

    resolved_target_ids: List[str] = field(default_factory=list)
    unresolved_titles: List[str] = field(default_factory=list)
    source_note_id: Optional[str] = None

    @property
    def unresolved_references(self) -> List[UnresolvedReference]:
        return [
            UnresolvedReference(title=title, source_note_id=self.source_note_id or "")
            for title in self.unresolved_titles
        ]


@dataclass
class ReconcileResult:
    """What the "note saved" event reports back to the caller."""

    note_id: str
    resolved_links: int
    unresolved_titles: List[str]
    tags: List[Tag]

    def to_dict(self) -> dict:
        return {
            "note_id": self.note_id,
            "resolved_links": self.resolved_links,
            "unresolved_titles": list(self.unresolved_titles),
            "tags": [tag.model_dump() for tag in self.tags],
        }


@dataclass
class ImportReport:
    imported: int = 0
    errors: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class IncomingLink:
    """An edge pointing at a note, with the source fields the backlink builder reads."""

    source_id: str
    source_title: str
    source_body: str
    source_updated_at: datetime.datetime


@dataclass(frozen=True)
class OutgoingEdge:
    target_id: str
    target_title: str
