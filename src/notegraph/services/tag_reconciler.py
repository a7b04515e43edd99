"""Keeps a note's tag associations in step with the hashtags in its body."""
import logging
from typing import List

from notegraph.models.schema import MAX_TAG_NAME_LENGTH, Tag
from notegraph.services.markup import extract_hashtags

logger = logging.getLogger(__name__)


class TagReconciler:
    """Full-replace reconciliation of note/tag associations.

    The body is the single source of truth: after ``reconcile`` the note is
    associated with exactly the distinct hashtags it contains. Tags that
    become unreferenced stay in the store.
    """

    def __init__(self, tag_repository):
        self.tag_repository = tag_repository

    def reconcile(self, note_id: str, body: str) -> List[Tag]:
        """Make the note's tags match the hashtags in ``body``.

        Names the scanner accepts but the Tag entity rejects (longer than
        the entity limit) are skipped with a warning.

        Returns:
            The note's tags after reconciliation, in first-seen order.

        Raises:
            StorageError: If the replacement transaction fails.
        """
        names = []
        for name in extract_hashtags(body, unique=True):
            if len(name) > MAX_TAG_NAME_LENGTH:
                logger.warning(
                    f"Skipping hashtag longer than {MAX_TAG_NAME_LENGTH} characters in {note_id}"
                )
                continue
            names.append(name)

        if not names:
            removed = self.tag_repository.clear_note(note_id)
            if removed:
                logger.debug(f"Removed {removed} tag associations from {note_id}")
            return []

        return self.tag_repository.replace_for_note(note_id, names)
