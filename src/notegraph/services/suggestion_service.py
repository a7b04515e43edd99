"""Link suggestions and "connect" (bridge) recommendations built on the ranker."""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Dict, List, Optional, Sequence

from notegraph.config import config
from notegraph.exceptions import AIProviderError, NoteNotFoundError
from notegraph.models.schema import ContextNote, LinkSuggestion
from notegraph.services.ai_provider import (
    SYSTEM_PROMPT,
    CompletionProvider,
    build_connect_prompt,
    parse_reasons,
)
from notegraph.services.ranker import ContextRanker

logger = logging.getLogger(__name__)

SUGGEST_PREVIEW_LENGTH = 120
CONNECT_PREVIEW_LENGTH = 100
CONNECT_POOL_SIZE = 5


class SuggestionService:
    """Filters ranker output for the "suggest links" and "connect" views.

    The completion provider is optional. Every provider call runs on a
    worker thread bounded by ``ai_timeout_seconds``; failures and timeouts
    fall back to the ranker's deterministic reasons.
    """

    def __init__(
        self,
        ranker: ContextRanker,
        note_repository,
        link_repository,
        provider: Optional[CompletionProvider] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.ranker = ranker
        self.note_repository = note_repository
        self.link_repository = link_repository
        self.provider = provider
        self.timeout_seconds = timeout_seconds or config.ai_timeout_seconds
        self._executor: Optional[ThreadPoolExecutor] = None
        self._executor_lock = threading.Lock()

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=2, thread_name_prefix="notegraph-ai"
                )
            return self._executor

    def shutdown(self) -> None:
        """Release the worker thread without waiting for a stuck provider call."""
        with self._executor_lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=False)

    def suggest_links(
        self,
        note_id: str,
        recent_note_ids: Sequence[str] = (),
        limit: int = 3,
    ) -> List[LinkSuggestion]:
        """Notes worth linking from ``note_id`` that it does not link to yet.

        Raises:
            NoteNotFoundError: If ``note_id`` does not exist.
        """
        if not self.note_repository.exists(note_id):
            raise NoteNotFoundError(note_id)

        existing = self.link_repository.get_outgoing_ids(note_id)
        ranked = self.ranker.rank(
            note_id, recent_note_ids, limit=config.suggestion_pool_size
        )
        picked = [
            c for c in ranked if c.note_id != note_id and c.note_id not in existing
        ][:limit]

        bodies = self.note_repository.get_summaries(c.note_id for c in picked)
        return [
            LinkSuggestion(
                note_id=c.note_id,
                title=c.title,
                reason=c.reason,
                preview=bodies[c.note_id].body[:SUGGEST_PREVIEW_LENGTH]
                if c.note_id in bodies
                else "",
            )
            for c in picked
        ]

    def connect(
        self, note_id: str, recent_note_ids: Sequence[str] = ()
    ) -> List[LinkSuggestion]:
        """Related notes with a one-line explanation each.

        Reasons come from the completion provider when one is configured
        and answers in time; otherwise the ranker's reasons are used.

        Raises:
            NoteNotFoundError: If ``note_id`` does not exist.
        """
        current = self.note_repository.get_summary(note_id)
        if current is None:
            raise NoteNotFoundError(note_id)

        ranked = self.ranker.rank(note_id, recent_note_ids, limit=CONNECT_POOL_SIZE)
        if not ranked:
            return []

        bodies = self.note_repository.get_summaries(c.note_id for c in ranked)
        reasons = self._enhance_reasons(current.title, current.body, ranked, bodies)
        return [
            LinkSuggestion(
                note_id=c.note_id,
                title=c.title,
                reason=reasons.get(c.note_id) or c.reason,
                preview=bodies[c.note_id].body[:CONNECT_PREVIEW_LENGTH]
                if c.note_id in bodies
                else "",
            )
            for c in ranked
        ]

    def _enhance_reasons(
        self,
        title: str,
        body: str,
        ranked: List[ContextNote],
        bodies: Dict,
    ) -> Dict[str, str]:
        """Provider-written reasons keyed by note id; empty on any failure."""
        if self.provider is None:
            return {}

        prompt = build_connect_prompt(
            title,
            body,
            [
                {
                    "note_id": c.note_id,
                    "title": c.title,
                    "body": bodies[c.note_id].body if c.note_id in bodies else "",
                }
                for c in ranked
            ],
        )
        future = self._get_executor().submit(self.provider.complete_json, SYSTEM_PROMPT, prompt)
        try:
            return parse_reasons(future.result(timeout=self.timeout_seconds))
        except FutureTimeoutError:
            future.cancel()
            logger.warning(
                f"Completion provider timed out after {self.timeout_seconds}s; using ranker reasons"
            )
        except AIProviderError as e:
            logger.warning(f"Completion provider failed; using ranker reasons: {e}")
        except Exception as e:
            logger.warning(f"Unexpected completion provider error; using ranker reasons: {e}")
        return {}
