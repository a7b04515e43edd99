"""Storage layer for notegraph."""

from notegraph.storage.link_repository import LinkRepository
from notegraph.storage.markdown_io import MarkdownCodec
from notegraph.storage.note_repository import NoteRepository
from notegraph.storage.presence_repository import PresenceRepository
from notegraph.storage.tag_repository import TagRepository

__all__ = [
    "LinkRepository",
    "MarkdownCodec",
    "NoteRepository",
    "PresenceRepository",
    "TagRepository",
]
