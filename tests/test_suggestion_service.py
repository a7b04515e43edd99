"""Tests for link suggestions and connect recommendations."""
import threading

import pytest

from notegraph.exceptions import AIProviderError, NoteNotFoundError
from notegraph.models.schema import Note
from notegraph.services.ai_provider import build_connect_prompt, parse_reasons
from notegraph.services.ranker import ContextRanker
from notegraph.services.suggestion_service import SuggestionService
from tests.fakes import (
    FailingCompletionProvider,
    FakeCompletionProvider,
    GarbageCompletionProvider,
    SlowCompletionProvider,
)


@pytest.fixture
def make_service(note_repository, link_repository, tag_repository):
    created = []

    def _make(provider=None, timeout_seconds=None):
        ranker = ContextRanker(note_repository, link_repository, tag_repository)
        service = SuggestionService(
            ranker,
            note_repository,
            link_repository,
            provider=provider,
            timeout_seconds=timeout_seconds,
        )
        created.append(service)
        return service

    yield _make
    for service in created:
        service.shutdown()


@pytest.fixture
def neighbourhood(note_repository, link_repository):
    """cur links to "linked"; "backlinker" and "second" only point back."""
    note_repository.create(Note(id="cur", title="Current", body="the current note"))
    note_repository.create(Note(id="linked", title="Linked", body="already linked"))
    note_repository.create(Note(id="backlinker", title="Backlinker", body="x" * 200))
    note_repository.create(Note(id="second", title="Second", body="second body"))
    link_repository.replace_outgoing("cur", ["linked"])
    link_repository.replace_outgoing("backlinker", ["cur"])
    link_repository.replace_outgoing("second", ["cur"])


class TestSuggestLinks:
    def test_existing_targets_filtered(self, make_service, neighbourhood):
        """Test that current targets and the note itself are not suggested."""
        suggestions = make_service().suggest_links("cur")
        ids = [s.note_id for s in suggestions]
        assert "linked" not in ids
        assert "cur" not in ids
        assert set(ids) == {"backlinker", "second"}

    def test_preview_truncated(self, make_service, neighbourhood):
        """Test that suggestion previews are cut to 120 characters."""
        suggestions = {s.note_id: s for s in make_service().suggest_links("cur")}
        assert suggestions["backlinker"].preview == "x" * 120
        assert suggestions["backlinker"].reason.startswith("directly linked")

    def test_limit(self, make_service, neighbourhood):
        """Test that suggestions are limited."""
        assert len(make_service().suggest_links("cur", limit=1)) == 1

    def test_unknown_note(self, make_service):
        """Test that suggestions for an unknown note raise NoteNotFoundError."""
        with pytest.raises(NoteNotFoundError):
            make_service().suggest_links("nope")


class TestConnect:
    def test_without_provider_uses_ranker_reasons(self, make_service, neighbourhood):
        """Test that connect uses the ranker reasons without a provider."""
        results = make_service().connect("cur")
        assert {r.note_id for r in results} == {"linked", "backlinker", "second"}
        assert all(r.reason.startswith("directly linked") for r in results)

    def test_provider_reasons_used(self, make_service, neighbourhood):
        """Test that provider reasons replace the ranker reasons."""
        provider = FakeCompletionProvider()
        results = make_service(provider=provider).connect("cur")

        assert {r.reason for r in results} == {"AI: linked", "AI: backlinker", "AI: second"}
        assert len(provider.calls) == 1
        assert "Current" in provider.calls[0]

    def test_preview_length(self, make_service, neighbourhood):
        """Test that connect previews are cut to 100 characters."""
        results = {r.note_id: r for r in make_service().connect("cur")}
        assert results["backlinker"].preview == "x" * 100

    @pytest.mark.parametrize(
        "provider", [FailingCompletionProvider(), GarbageCompletionProvider()]
    )
    def test_provider_failure_falls_back(self, make_service, neighbourhood, provider):
        """Test that a failing provider falls back to the ranker reasons."""
        results = make_service(provider=provider).connect("cur")
        assert results
        assert all(r.reason.startswith("directly linked") for r in results)

    def test_provider_timeout_falls_back(self, make_service, neighbourhood):
        """Test that a slow provider falls back to the ranker reasons."""
        provider = SlowCompletionProvider()
        try:
            results = make_service(provider=provider, timeout_seconds=0.1).connect("cur")
        finally:
            provider.release.set()
        assert all(r.reason.startswith("directly linked") for r in results)

    def test_isolated_note_has_no_connections(self, make_service, note_repository):
        """Test that a note without signals has no connections."""
        note_repository.create(Note(id="alone", title="Alone"))
        note_repository.create(
            Note(id="old", title="Old", updated_at=Note().updated_at.replace(year=2000))
        )
        provider = FakeCompletionProvider()
        assert make_service(provider=provider).connect("alone") == []
        assert provider.calls == []

    def test_unknown_note(self, make_service):
        """Test that connect for an unknown note raises NoteNotFoundError."""
        with pytest.raises(NoteNotFoundError):
            make_service().connect("nope")


class TestCompletionHelpers:
    def test_parse_results_object(self):
        """Test parsing a results object."""
        content = '{"results": [{"noteId": "a", "reason": " Shares a topic. "}, {"noteId": "b"}]}'
        assert parse_reasons(content) == {"a": "Shares a topic."}

    def test_parse_bare_list(self):
        """Test parsing a bare list of results."""
        assert parse_reasons('[{"noteId": "a", "reason": "why"}]') == {"a": "why"}

    def test_parse_unexpected_shape(self):
        """Test that an unexpected JSON shape yields no reasons."""
        assert parse_reasons('"just a string"') == {}

    def test_parse_invalid_json(self):
        """Test that invalid JSON raises AIProviderError."""
        with pytest.raises(AIProviderError):
            parse_reasons("not json")

    def test_prompt_lists_candidates(self):
        """Test that the prompt lists each candidate."""
        prompt = build_connect_prompt(
            "Plan", "body", [{"note_id": "n1", "title": "Budget", "body": "numbers"}]
        )
        assert '- [n1] "Budget": numbers' in prompt
        assert "Title: Plan" in prompt


class TestExecutor:
    def test_concurrent_callers_share_one_executor(self, make_service):
        """Test that threads racing on the first provider call get the same executor."""
        service = make_service(provider=FakeCompletionProvider())
        barrier = threading.Barrier(8)
        seen = []

        def grab():
            barrier.wait()
            seen.append(service._get_executor())

        threads = [threading.Thread(target=grab) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(seen) == 8
        assert len({id(executor) for executor in seen}) == 1

    def test_shutdown_allows_a_fresh_executor(self, make_service):
        """Test that shutdown drops the executor and the next call builds a new one."""
        service = make_service(provider=FakeCompletionProvider())
        first = service._get_executor()
        service.shutdown()
        assert service._executor is None
        assert service._get_executor() is not first
