"""Backlinks with surrounding text, and unlinked mentions."""
import logging
import re
from typing import Dict, List

from notegraph.config import config
from notegraph.exceptions import NoteNotFoundError
from notegraph.models.schema import MentionGroup, NoteSummary

logger = logging.getLogger(__name__)

ELLIPSIS = "..."


def extract_contexts(
    body: str,
    needle: str,
    context_length: int = 50,
    skip_linked: bool = False,
) -> List[str]:
    """Excerpts of ``body`` around each case-insensitive occurrence of ``needle``.

    Each excerpt spans ``context_length`` characters on either side of the
    match and is marked with ``...`` where it was cut. Matches do not
    overlap: the search resumes after the end of the previous match.

    Args:
        body: Text to search.
        needle: Literal string to look for.
        context_length: Characters kept on each side.
        skip_linked: Ignore occurrences written as ``[[needle]]``.

    Returns:
        One excerpt per counted occurrence, in body order.
    """
    if not body or not needle:
        return []

    contexts = []
    for match in re.finditer(re.escape(needle), body, re.IGNORECASE):
        start, end = match.span()
        if skip_linked and body[max(0, start - 2):start] == "[[" and body[end:end + 2] == "]]":
            continue
        lo = max(0, start - context_length)
        hi = min(len(body), end + context_length)
        excerpt = body[lo:hi]
        if lo > 0:
            excerpt = ELLIPSIS + excerpt
        if hi < len(body):
            excerpt = excerpt + ELLIPSIS
        contexts.append(excerpt)
    return contexts


class ContextBuilder:
    """Builds the backlink and unlinked-mention panels of a note."""

    def __init__(self, note_repository, link_repository, context_length=None, min_title_length=None):
        self.note_repository = note_repository
        self.link_repository = link_repository
        self.context_length = (
            context_length if context_length is not None else config.context_length
        )
        self.min_title_length = (
            min_title_length if min_title_length is not None else config.min_mention_title_length
        )

    def _require(self, note_id: str) -> NoteSummary:
        note = self.note_repository.get_summary(note_id)
        if note is None:
            raise NoteNotFoundError(note_id)
        return note

    def backlinks_with_context(self, note_id: str) -> List[MentionGroup]:
        """Every note linking to ``note_id`` with excerpts around ``[[title]]``.

        Sources are listed once each, in the order their edges were created.
        A source whose body no longer spells out the link (the edge predates
        an edit that has not been reconciled, or the target was renamed)
        still appears, with no excerpts.

        Raises:
            NoteNotFoundError: If ``note_id`` does not exist.
        """
        target = self._require(note_id)
        needle = f"[[{target.title}]]"

        groups: Dict[str, MentionGroup] = {}
        for edge in self.link_repository.get_incoming(note_id):
            contexts = extract_contexts(edge.source_body, needle, self.context_length)
            group = groups.get(edge.source_id)
            if group is None:
                group = groups[edge.source_id] = MentionGroup(
                    note=NoteSummary(
                        id=edge.source_id,
                        title=edge.source_title,
                        body=edge.source_body,
                        updated_at=edge.source_updated_at,
                    )
                )
            group.contexts.extend(contexts)
            group.mention_count = len(group.contexts)
        return list(groups.values())

    def unlinked_mentions(self, note_id: str) -> List[MentionGroup]:
        """Other notes that mention this note's title as plain text.

        Occurrences already written as ``[[title]]`` are not counted. Titles
        shorter than the configured minimum produce no mentions at all.

        Raises:
            NoteNotFoundError: If ``note_id`` does not exist.
        """
        target = self._require(note_id)
        title = target.title
        if len(title) < self.min_title_length:
            return []

        mentions = []
        for candidate in self.note_repository.find_mention_candidates(title, note_id):
            contexts = extract_contexts(
                candidate.body, title, self.context_length, skip_linked=True
            )
            if contexts:
                mentions.append(
                    MentionGroup(note=candidate, contexts=contexts, mention_count=len(contexts))
                )
        logger.debug(f"Found {len(mentions)} unlinked mentions of {note_id}")
        return mentions
