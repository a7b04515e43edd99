"""Fake completion providers for testing.

These produce deterministic outputs without any network access.
FakeCompletionProvider answers with a reason for every note id it finds in
the prompt, so tests can predict the exact text that comes back.
"""
import json
import re
import threading
from typing import List

from notegraph.exceptions import AIProviderError

_NOTE_ID_PATTERN = re.compile(r"^- \[([^\]]+)\]", re.MULTILINE)


class FakeCompletionProvider:
    """Answers ``{"results": [...]}`` with ``"AI: <id>"`` for each candidate."""

    def __init__(self) -> None:
        self.calls: List[str] = []

    @property
    def name(self) -> str:
        return "fake"

    def complete_json(self, system: str, prompt: str) -> str:
        self.calls.append(prompt)
        ids = _NOTE_ID_PATTERN.findall(prompt)
        return json.dumps(
            {"results": [{"noteId": note_id, "reason": f"AI: {note_id}"} for note_id in ids]}
        )


class FailingCompletionProvider:
    """Always raises, like a provider whose backend is down."""

    @property
    def name(self) -> str:
        return "failing"

    def complete_json(self, system: str, prompt: str) -> str:
        raise AIProviderError("backend unavailable", provider=self.name)


class GarbageCompletionProvider:
    """Returns text that is not JSON."""

    @property
    def name(self) -> str:
        return "garbage"

    def complete_json(self, system: str, prompt: str) -> str:
        return "sorry, I cannot help with that"


class SlowCompletionProvider:
    """Blocks until released, to exercise the timeout path."""

    def __init__(self) -> None:
        self.release = threading.Event()

    @property
    def name(self) -> str:
        return "slow"

    def complete_json(self, system: str, prompt: str) -> str:
        self.release.wait(5)
        return json.dumps({"results": []})
