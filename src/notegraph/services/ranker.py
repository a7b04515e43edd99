"""Heuristic ranking of notes related to the one being viewed."""
import datetime
import logging
from typing import Dict, Iterable, List, Optional, Sequence

from notegraph.models.schema import UNTITLED, ContextNote, utc_now

logger = logging.getLogger(__name__)

WEIGHTS = {
    "direct_link": 50.0,
    "second_hop": 25.0,
    "recent_view": 30.0,
    "same_tag": 20.0,
    "same_folder": 15.0,
    "recency": 10.0,
}

# Recently viewed notes lose 10% per position but never drop below half weight
RECENT_VIEW_DECAY = 0.1
RECENT_VIEW_FLOOR = 0.5
RECENCY_WINDOW_DAYS = 7
# Upper bound on recently updated notes pulled into the candidate pool
RECENT_UPDATE_POOL = 50

REASONS = (
    ("direct_link", "directly linked"),
    ("second_hop", "related to a linked note"),
    ("same_tag", "shares a tag"),
    ("same_folder", "same folder"),
    ("recency", "recently updated"),
)
DEFAULT_REASON = "related note"


class ContextRanker:
    """Scores candidate notes for "suggested link" and "bridge" views.

    Each signal produces a map of note id to points; the maps are summed.
    Candidates come from the link neighbourhood (both directions, two
    hops), shared tags, the same folder, the caller's recently viewed notes
    and notes updated in the last week.

    The current note is never returned. Notes the current note already
    links to are NOT filtered out; that is up to the caller.
    """

    def __init__(self, note_repository, link_repository, tag_repository):
        self.note_repository = note_repository
        self.link_repository = link_repository
        self.tag_repository = tag_repository

    def _direct_links(self, note_id: str) -> Dict[str, float]:
        scores = {}
        for source_id, target_id in self.link_repository.get_neighbor_ids([note_id]):
            other = target_id if source_id == note_id else source_id
            if other != note_id:
                scores[other] = WEIGHTS["direct_link"]
        return scores

    def _second_hop(self, note_id: str, first_hop: Iterable[str]) -> Dict[str, float]:
        first = set(first_hop)
        if not first:
            return {}
        scores = {}
        for edge in self.link_repository.get_neighbor_ids(first):
            for other in edge:
                if other != note_id and other not in first:
                    scores[other] = WEIGHTS["second_hop"]
        return scores

    def _shared_tags(self, note_id: str) -> Dict[str, float]:
        return {
            other: WEIGHTS["same_tag"] * count
            for other, count in self.tag_repository.count_shared_tags(note_id).items()
        }

    def _same_folder(self, note_id: str) -> Dict[str, float]:
        folder_id = self.note_repository.get_folder_id(note_id)
        if not folder_id:
            return {}
        return {
            other: WEIGHTS["same_folder"]
            for other in self.note_repository.find_ids_in_folder(folder_id, exclude_id=note_id)
        }

    @staticmethod
    def _recent_views(note_id: str, recent_note_ids: Sequence[str]) -> Dict[str, float]:
        weight = WEIGHTS["recent_view"]
        scores: Dict[str, float] = {}
        for index, other in enumerate(recent_note_ids):
            if other == note_id or other in scores:
                continue
            scores[other] = max(weight * (1 - index * RECENT_VIEW_DECAY), weight * RECENT_VIEW_FLOOR)
        return scores

    @staticmethod
    def _recency(
        updated: Dict[str, datetime.datetime], now: datetime.datetime
    ) -> Dict[str, float]:
        scores = {}
        for other, updated_at in updated.items():
            age_days = (now - updated_at).total_seconds() / 86400
            if 0 <= age_days <= RECENCY_WINDOW_DAYS:
                scores[other] = WEIGHTS["recency"] * (1 - age_days / RECENCY_WINDOW_DAYS)
            elif age_days < 0:
                # Clock skew: treat future timestamps as "just now"
                scores[other] = WEIGHTS["recency"]
        return scores

    def rank(
        self,
        current_note_id: str,
        recent_note_ids: Sequence[str] = (),
        limit: int = 5,
        now: Optional[datetime.datetime] = None,
    ) -> List[ContextNote]:
        """Rank related notes, best first.

        Args:
            current_note_id: The note being viewed.
            recent_note_ids: Notes the caller viewed recently, most recent first.
            limit: Maximum number of results.
            now: Reference time for the recency signal.

        Returns:
            Up to ``limit`` ContextNotes sorted by score (ties by note id).
        """
        if limit <= 0:
            return []
        now = now or utc_now()

        signals = {}
        signals["direct_link"] = self._direct_links(current_note_id)
        signals["second_hop"] = self._second_hop(current_note_id, signals["direct_link"])
        signals["same_tag"] = self._shared_tags(current_note_id)
        signals["same_folder"] = self._same_folder(current_note_id)
        signals["recent_view"] = self._recent_views(current_note_id, recent_note_ids)

        recently_updated = self.note_repository.find_updated_since(
            now - datetime.timedelta(days=RECENCY_WINDOW_DAYS),
            exclude_id=current_note_id,
            limit=RECENT_UPDATE_POOL,
        )
        candidate_ids = set(recently_updated)
        for scores in signals.values():
            candidate_ids.update(scores)
        candidate_ids.discard(current_note_id)

        # Drops ids that no longer exist (stale recent views)
        notes = self.note_repository.get_summaries(candidate_ids)
        signals["recency"] = self._recency(
            {note_id: note.updated_at for note_id, note in notes.items()}, now
        )

        totals = {
            note_id: sum(scores.get(note_id, 0.0) for scores in signals.values())
            for note_id in notes
        }
        ranked = sorted(totals.items(), key=lambda item: (-item[1], item[0]))[:limit]

        results = []
        for note_id, score in ranked:
            reasons = [label for key, label in REASONS if note_id in signals[key]]
            results.append(
                ContextNote(
                    note_id=note_id,
                    title=notes[note_id].title or UNTITLED,
                    score=round(score, 2),
                    reason=", ".join(reasons) if reasons else DEFAULT_REASON,
                )
            )
        logger.debug(f"Ranked {len(totals)} candidates for {current_note_id}")
        return results
