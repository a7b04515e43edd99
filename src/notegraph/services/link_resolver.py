"""Resolution of wikilink titles to note ids."""
import logging
from typing import Iterable

from notegraph.models.schema import ResolvedLinks
from notegraph.services.markup import unique_in_order

logger = logging.getLogger(__name__)


class LinkResolver:
    """Maps ``[[Title]]`` references to note ids by exact title lookup.

    Titles are not unique in the store. When several notes share a title
    the one created first wins (ties broken by the smaller id), so the same
    body always resolves to the same targets.
    """

    def __init__(self, note_repository):
        self.note_repository = note_repository

    def resolve(self, note_id: str, titles: Iterable[str]) -> ResolvedLinks:
        """Split titles into resolved target ids and unresolved titles.

        A title that resolves to ``note_id`` itself is dropped silently.

        Args:
            note_id: The note whose body the titles came from.
            titles: Extracted titles, possibly repeated.

        Returns:
            ResolvedLinks with both lists de-duplicated in first-seen order.
        """
        distinct = unique_in_order(titles)
        found = self.note_repository.find_ids_by_titles(distinct)

        result = ResolvedLinks(source_note_id=note_id)
        for title in distinct:
            target_id = found.get(title)
            if target_id is None:
                result.unresolved_titles.append(title)
            elif target_id == note_id:
                logger.debug(f"Ignoring self link [[{title}]] in {note_id}")
            elif target_id not in result.resolved_target_ids:
                result.resolved_target_ids.append(target_id)
        return result
