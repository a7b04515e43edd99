"""Markdown export and import of notes (Obsidian-style vault files).

A note is written as YAML frontmatter (created, updated, tags) followed by a
``# Title`` heading and the body. On import the title comes from the file
name, the frontmatter is dropped and a leading heading is stripped so that
the title is not duplicated in the body.
"""
import datetime
import logging
import re
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Dict, List, Optional, Tuple

import yaml
from frontmatter.default_handlers import YAMLHandler

from notegraph.models.schema import Note, ensure_timezone_aware
from notegraph.utils import safe_filename

logger = logging.getLogger(__name__)

# "# Heading" line at the very start, followed by a blank line or the end of the file
_LEADING_HEADING = re.compile(r"^#[ \t]+[^\n]*(?:\n\n|\n?\Z)")


@dataclass
class ParsedMarkdown:
    """A vault file split into the pieces a note is created from."""

    title: str
    body: str
    folder_path: List[str]
    created_at: Optional[datetime.datetime] = None
    metadata: Optional[Dict] = None


class MarkdownCodec:
    """Renders notes to vault files and parses vault files back.

    The frontmatter block is split and written with the YAML handler so the
    body keeps its surrounding whitespace.
    """

    def __init__(self):
        self.handler = YAMLHandler()

    def render(self, note: Note) -> str:
        """Convert a note to markdown with frontmatter.

        Args:
            note: The note to serialize (tags as currently reconciled).

        Returns:
            Markdown string with YAML frontmatter.
        """
        metadata: Dict = {
            "created": note.created_at.isoformat(),
            "updated": note.updated_at.isoformat(),
        }
        if note.tags:
            metadata["tags"] = [tag.name for tag in note.tags]
        delimiter = self.handler.START_DELIMITER
        return (
            f"{delimiter}\n{self.handler.export(metadata)}\n{delimiter}\n\n"
            f"# {note.display_title}\n\n{note.body}"
        )

    @staticmethod
    def export_path(note: Note, folder_path: List[str]) -> str:
        """Relative vault path (posix separators) for a note."""
        parts = [safe_filename(name) for name in folder_path]
        parts.append(f"{safe_filename(note.title)}.md")
        return str(PurePosixPath(*parts))

    def parse(self, path_in_vault: str, text: str) -> ParsedMarkdown:
        """Split a vault file into title, body and folder path.

        Args:
            path_in_vault: Path relative to the vault root, e.g. ``Work/Plan.md``.
            text: File contents.

        Raises:
            ValueError: If the path does not name a markdown file.
        """
        path = PurePosixPath(path_in_vault.replace("\\", "/"))
        if path.suffix.lower() != ".md":
            raise ValueError(f"Not a markdown file: {path_in_vault}")

        metadata, body = self._split_frontmatter(path_in_vault, text)

        body = _LEADING_HEADING.sub("", body, count=1)

        return ParsedMarkdown(
            title=path.stem,
            body=body,
            folder_path=[part for part in path.parent.parts if part not in ("", ".")],
            created_at=self._parse_timestamp(metadata.get("created")),
            metadata=metadata,
        )

    def _split_frontmatter(self, path_in_vault: str, text: str) -> Tuple[Dict, str]:
        if not self.handler.detect(text):
            return {}, text
        try:
            fm, content = self.handler.split(text)
            metadata = self.handler.load(fm)
        except (ValueError, yaml.YAMLError) as e:
            # Keep the file, just without its broken frontmatter
            logger.warning(f"Invalid frontmatter in {path_in_vault}: {e}")
            return {}, text
        if not isinstance(metadata, dict):
            metadata = {}
        # The split leaves the closing delimiter's line break on the content
        if content.startswith("\n"):
            content = content[1:]
        return metadata, content

    @staticmethod
    def _parse_timestamp(value) -> Optional[datetime.datetime]:
        if isinstance(value, datetime.datetime):
            return ensure_timezone_aware(value)
        if isinstance(value, str) and value:
            try:
                return ensure_timezone_aware(
                    datetime.datetime.fromisoformat(value.replace("Z", "+00:00"))
                )
            except ValueError:
                logger.warning(f"Ignoring unparseable timestamp {value!r}")
        return None
