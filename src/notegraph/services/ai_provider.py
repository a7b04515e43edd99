"""Optional text-completion provider used to phrase connection reasons.

The core never depends on it: without the ``openai`` package or an API key
``create_completion_provider`` returns None and callers use the ranker's
own reasons.
"""
import json
import logging
from typing import Dict, List, Optional, Protocol, Sequence, runtime_checkable

from notegraph.config import config
from notegraph.exceptions import AIProviderError, ErrorCode

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You explain how notes are connected. Answer briefly and objectively."
)


@runtime_checkable
class CompletionProvider(Protocol):
    """Contract for a chat-style completion backend that answers in JSON."""

    @property
    def name(self) -> str:
        ...

    def complete_json(self, system: str, prompt: str) -> str:
        """Return the raw JSON text produced for ``prompt``.

        Raises:
            AIProviderError: On any backend failure.
        """
        ...


class OpenAICompletionProvider:
    """CompletionProvider backed by the OpenAI chat completions API."""

    def __init__(self, api_key: str, model: str, timeout: float):
        from openai import OpenAI

        self.model = model
        self._client = OpenAI(api_key=api_key, timeout=timeout)

    @property
    def name(self) -> str:
        return f"openai:{self.model}"

    def complete_json(self, system: str, prompt: str) -> str:
        try:
            response = self._client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": prompt},
                ],
                response_format={"type": "json_object"},
                temperature=0.3,
                max_tokens=500,
            )
        except Exception as e:
            raise AIProviderError(
                "Completion request failed", provider=self.name, original_error=e
            ) from e
        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise AIProviderError(
                "Empty completion", provider=self.name, code=ErrorCode.AI_RESPONSE_INVALID
            )
        return content


def build_connect_prompt(
    title: str, body: str, candidates: Sequence[Dict[str, str]]
) -> str:
    """Prompt asking for one short reason per candidate note.

    Args:
        title: Title of the current note.
        body: Body of the current note (truncated to 500 characters).
        candidates: Dicts with ``note_id``, ``title`` and ``body``.
    """
    lines = [f'- [{c["note_id"]}] "{c["title"]}": {c["body"][:200]}' for c in candidates]
    return (
        "Explain in one sentence why each related note connects to the current note.\n\n"
        f"Current note:\nTitle: {title}\nBody: {body[:500]}\n\n"
        "Related notes:\n" + "\n".join(lines) + "\n\n"
        'Answer as JSON: {"results": [{"noteId": "...", "reason": "..."}]}\n'
        "Rules:\n- One sentence per reason, at most 15 words\n- No conclusions or judgements"
    )


def parse_reasons(content: str) -> Dict[str, str]:
    """Map note ids to reasons from a provider's JSON answer.

    Accepts either a bare list or an object with a ``results`` list.

    Raises:
        AIProviderError: If the text is not the expected JSON shape.
    """
    try:
        parsed = json.loads(content)
    except json.JSONDecodeError as e:
        raise AIProviderError(
            "Completion was not valid JSON",
            code=ErrorCode.AI_RESPONSE_INVALID,
            original_error=e,
        ) from e
    if isinstance(parsed, dict):
        items: List = parsed.get("results") or []
    elif isinstance(parsed, list):
        items = parsed
    else:
        items = []
    reasons = {}
    for item in items:
        if not isinstance(item, dict):
            continue
        note_id, reason = item.get("noteId"), item.get("reason")
        if isinstance(note_id, str) and isinstance(reason, str) and reason.strip():
            reasons[note_id] = reason.strip()
    return reasons


def create_completion_provider() -> Optional[CompletionProvider]:
    """Create the configured provider, or None when AI is unavailable.

    Returns None (gracefully) if:
    - AI is disabled or no API key is configured
    - The [ai] optional dependency is not installed
    """
    if not config.ai_available:
        logger.info("AI reasons disabled (no OPENAI_API_KEY or NOTEGRAPH_AI_ENABLED=false)")
        return None
    try:
        provider = OpenAICompletionProvider(
            api_key=config.ai_api_key,
            model=config.ai_model,
            timeout=config.ai_timeout_seconds,
        )
    except ImportError:
        logger.warning("openai package not installed. Run: pip install notegraph[ai]")
        return None
    logger.info(f"Completion provider initialized ({provider.name})")
    return provider
