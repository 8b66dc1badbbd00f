"""
End-to-end tests of the linking pipeline over HTML documents and an in-memory registry.
"""

from pathlib import Path
from typing import List, Optional

import pytest

from com_blockether_linkscout.document.HTMLDocument import HTMLDocument
from com_blockether_linkscout.linking.internal.LinkingErrors import ExtractionError, VerificationTransportError
from com_blockether_linkscout.linking.internal.LinkingTypes import LinkingContext, LinkingSettings
from com_blockether_linkscout.linking.LinkingCore import LinkingCore, LinkingSession
from com_blockether_linkscout.registry.MockTitleRegistry import MockTitleRegistry
from com_blockether_linkscout.registry.TitleRegistry import RequestGate
from com_blockether_linkscout.utils.Clock import ManualClock

SCENARIO_ONE = "<p>Paris is the capital of France. France has many regions.</p>"


def marks(document: HTMLDocument) -> List[str]:
    return [mark.text_content() for mark in document.decorations()]


class UnreachableRegistry(MockTitleRegistry):
    """Registry whose outgoing link listing always fails."""

    async def outgoing_links(self, title: str, gate: Optional[RequestGate] = None) -> List[str]:
        raise VerificationTransportError(f"Cannot list links of {title}")


class FixedRelatedEntities:
    """Related entity source returning fixed labels."""

    def __init__(self, labels: List[str]):
        self.labels = labels
        self.calls: List[str] = []

    async def related_entities(self, title: str, gate: Optional[RequestGate] = None) -> List[str]:
        if gate is not None:
            await gate()
        self.calls.append(title)
        return list(self.labels)


class TestLinkingCore:
    """Test suite for LinkingCore."""

    @pytest.fixture
    def clock(self) -> ManualClock:
        return ManualClock(start=0.0)

    def make_core(self, registry: MockTitleRegistry, clock: ManualClock, **settings: object) -> LinkingCore:
        return LinkingCore(registry, settings=LinkingSettings(**settings), clock=clock)  # type: ignore[arg-type]

    @pytest.mark.anyio
    async def test_run_decorates_first_occurrences(self, clock: ManualClock) -> None:
        """Test the full pipeline in highlight-once mode."""
        registry = MockTitleRegistry(pages=["Paris", "France"])
        core = self.make_core(registry, clock, highlight_each_term_once=True, scoring_enabled=False)
        document = HTMLDocument.from_html(SCENARIO_ONE)

        report = await core.run(document)

        assert marks(document) == ["Paris", "France"]
        assert document.to_html().endswith("</mark>. France has many regions.</p>")
        assert report.total_regions == 1
        assert report.total_candidates == 3
        assert report.unique_keys == 2
        assert report.verified_keys == 2
        assert report.total_decorations == 2
        assert report.annotated_regions == 1
        assert [term.key for term in report.terms] == ["france", "paris"]
        assert report.total_terms == 2

    @pytest.mark.anyio
    async def test_stoplisted_candidate_is_never_requested(self, clock: ManualClock) -> None:
        """Test that a sentence-initial function word is filtered before verification."""
        registry = MockTitleRegistry(pages=["Rome", "The"])
        core = self.make_core(registry, clock)
        document = HTMLDocument.from_html("<p>The capital is big. Rome too.</p>")

        report = await core.run(document)

        assert [request.titles for request in registry.requests] == [["Rome"]]
        assert report.excluded_candidates == 1
        assert marks(document) == ["Rome"]

    @pytest.mark.anyio
    async def test_redirect_keeps_surface_text(self, clock: ManualClock) -> None:
        """Test that a redirected term is decorated as written, pointing at the canonical title."""
        registry = MockTitleRegistry(pages=["New York City"], redirects={"NYC": "New York City"})
        core = self.make_core(registry, clock)
        document = HTMLDocument.from_html("<p>She moved to NYC in 2010.</p>")

        report = await core.run(document)

        (mark,) = document.decorations()
        assert mark.text_content() == "NYC"
        assert mark.get("data-title") == "New York City"
        assert [(t.key, t.canonical_title) for t in report.terms] == [("nyc", "New York City")]

    @pytest.mark.anyio
    async def test_sharp_s_term_is_decorated(self, clock: ManualClock) -> None:
        """Test that a verified German term is decorated although its key is case-folded to "ss"."""
        registry = MockTitleRegistry(pages=["Großbritannien"])
        core = self.make_core(registry, clock, language="de", scoring_enabled=False)
        document = HTMLDocument.from_html("<p>Er reiste nach Großbritannien im Sommer.</p>")

        report = await core.run(document)

        assert [(t.key, t.canonical_title) for t in report.terms] == [("grossbritannien", "Großbritannien")]
        assert report.total_decorations == 1
        assert marks(document) == ["Großbritannien"]

    @pytest.mark.anyio
    async def test_timed_out_batch_produces_no_decorations(self, clock: ManualClock) -> None:
        """Test that only the terms of a timed out batch stay plain."""
        registry = MockTitleRegistry(
            pages=["Paris", "France", "Berlin", "Germany", "Rome", "Italy"], stall_calls=[2], stall_seconds=5.0
        )
        core = self.make_core(registry, clock, batch_size=2, request_timeout_seconds=0.05)
        document = HTMLDocument.from_html("<p>Paris, France, Berlin, Germany, Rome, Italy.</p>")

        report = await core.run(document)

        assert registry.call_count == 3
        assert report.failed_batches == 1
        assert marks(document) == ["Paris", "France", "Rome", "Italy"]

    @pytest.mark.anyio
    async def test_ambiguous_and_missing_terms_are_not_decorated(self, clock: ManualClock) -> None:
        """Test that only existing, unambiguous pages become decorations."""
        registry = MockTitleRegistry(pages=["Venus"], disambiguation_pages=["Mercury"])
        core = self.make_core(registry, clock)
        document = HTMLDocument.from_html("<p>Mercury, Venus and Vulcanos.</p>")

        report = await core.run(document)

        assert marks(document) == ["Venus"]
        assert [term.key for term in report.terms] == ["venus"]

    @pytest.mark.anyio
    async def test_discover_leaves_document_untouched(self, clock: ManualClock) -> None:
        """Test list mode."""
        registry = MockTitleRegistry(pages=["Paris", "France"])
        core = self.make_core(registry, clock, scoring_enabled=False)
        document = HTMLDocument.from_html(SCENARIO_ONE)
        before = document.to_html()

        terms = await core.discover(document)

        assert [(t.surface_form, t.occurrence_count) for t in terms] == [("France", 2), ("Paris", 1)]
        assert document.to_html() == before
        assert document.replacements == 0

    @pytest.mark.anyio
    async def test_prepare_context_seeds_session_cache(self, clock: ManualClock) -> None:
        """Test that outgoing links become cache hits and the self title is excluded."""
        registry = MockTitleRegistry(outgoing={"Paris": ["France", "Seine"]})
        source = FixedRelatedEntities(["Louvre"])
        core = LinkingCore(registry, related_entity_source=source, clock=clock)
        document = HTMLDocument.from_html("<h1>Paris</h1><p>Paris lies on the Seine in France.</p>")
        session = core.new_session()

        context = await core.prepare_context(document, session)
        report = await core.run(document, context=context, session=session)

        assert context.self_title == "Paris"
        assert context.outgoing_links == ["France", "Seine"]
        assert context.related_entities == ["Louvre"]
        assert source.calls == ["Paris"]
        assert registry.call_count == 0
        assert report.cache_hits == 2
        assert marks(document) == ["Seine", "France"]
        assert session.decorated_keys == {"seine", "france"}

    @pytest.mark.anyio
    async def test_prepare_context_requests_pass_the_rate_limiter(self, clock: ManualClock) -> None:
        """Test that the link listing and the related entity lookup count against the session's rate window."""
        registry = MockTitleRegistry(outgoing={"Paris": ["France"]})
        core = LinkingCore(registry, related_entity_source=FixedRelatedEntities(["Louvre"]), clock=clock)
        document = HTMLDocument.from_html("<h1>Paris</h1><p>Text</p>")
        session = core.new_session()

        await core.prepare_context(document, session)

        assert session.rate_limiter.snapshot().count_in_window == 2

    @pytest.mark.anyio
    async def test_prepare_context_degrades_on_failure(
        self, clock: ManualClock, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Test that a failed link listing leaves the context empty instead of failing."""
        core = LinkingCore(UnreachableRegistry(), clock=clock)
        document = HTMLDocument.from_html("<h1>Paris</h1><p>Text</p>")

        context = await core.prepare_context(document, core.new_session())

        assert context.outgoing_links == []
        assert context.related_entities == []
        assert "Could not fetch outgoing links of 'Paris'" in caplog.text

    @pytest.mark.anyio
    async def test_prepare_context_without_title(self, clock: ManualClock) -> None:
        """Test that an untitled document gets an empty context."""
        registry = MockTitleRegistry(outgoing={"Paris": ["France"]})

        context = await LinkingCore(registry, clock=clock).prepare_context(HTMLDocument.from_html("<p>x</p>"))

        assert context == LinkingContext()

    @pytest.mark.anyio
    async def test_second_run_is_idempotent(self, clock: ManualClock) -> None:
        """Test that running again over an annotated document changes nothing."""
        registry = MockTitleRegistry(pages=["Paris", "France"])
        core = self.make_core(registry, clock, highlight_each_term_once=True)
        document = HTMLDocument.from_html(SCENARIO_ONE)
        await core.run(document)
        first = document.to_html()

        report = await core.run(document)

        assert document.to_html() == first
        assert report.total_decorations == 0
        assert first.count("<mark") == 2

    @pytest.mark.anyio
    async def test_decoration_cap_counts_earlier_runs(self, clock: ManualClock) -> None:
        """Test that decorations from an earlier run use up the cap."""
        registry = MockTitleRegistry(pages=["Paris", "France", "Rome"])
        core = self.make_core(registry, clock, max_decorations=2)
        document = HTMLDocument.from_html("<p>Paris, France, Rome</p>")

        first = await core.run(document)
        second = await core.run(document)

        assert first.total_decorations == 2
        assert second.total_decorations == 0
        assert document.decoration_count() == 2

    @pytest.mark.anyio
    @pytest.mark.parametrize("containment,expected", [(False, []), (True, ["Eiffel"])])
    async def test_title_containment_flag(self, clock: ManualClock, containment: bool, expected: List[str]) -> None:
        """Test approving unverified candidates contained in a known title."""
        registry = MockTitleRegistry()
        core = self.make_core(registry, clock, match_title_containment=containment, scoring_enabled=False)
        document = HTMLDocument.from_html("<p>Visitors love Eiffel every year.</p>")

        await core.run(document, context=LinkingContext(outgoing_links=["Eiffel Tower"]))

        assert marks(document) == expected
        if containment:
            assert document.decorations()[0].get("data-title") == "Eiffel Tower"

    @pytest.mark.anyio
    async def test_scoring_orders_and_filters_terms(self, clock: ManualClock) -> None:
        """Test that linked and repeated terms rank first and the threshold drops the rest."""
        registry = MockTitleRegistry(pages=["Paris", "Rome", "Oslo"])
        document = HTMLDocument.from_html("<p>Paris and Rome and Paris and Oslo.</p>")
        context = LinkingContext(outgoing_links=["Rome"])

        terms = await self.make_core(registry, clock).discover(document, context=context)
        strict = await self.make_core(registry, clock, score_threshold=0.5).discover(document, context=context)

        assert [t.key for t in terms] == ["rome", "paris", "oslo"]
        assert [t.score for t in terms] == [pytest.approx(0.8), pytest.approx(0.35), pytest.approx(0.3)]
        assert [t.key for t in strict] == ["rome"]

    @pytest.mark.anyio
    async def test_cancelled_run_leaves_document_untouched(self, clock: ManualClock) -> None:
        """Test that cancellation before verification skips annotation entirely."""
        registry = MockTitleRegistry(pages=["Paris", "France"])
        core = self.make_core(registry, clock)
        document = HTMLDocument.from_html(SCENARIO_ONE)
        session = core.new_session()
        session.cancel()

        report = await core.run(document, session=session)

        assert session.cancelled is True
        assert report.cancelled is True
        assert registry.call_count == 0
        assert document.decorations() == []

    def test_invalid_extraction_settings_fail_early(self) -> None:
        """Test that a broken character class is rejected at construction."""
        with pytest.raises(ExtractionError):
            LinkingCore(MockTitleRegistry(), settings=LinkingSettings(character_class="["))


class TestLinkingSession:
    """Test suite for LinkingSession."""

    @pytest.mark.anyio
    async def test_cache_persists_per_language(self, tmp_path: Path) -> None:
        """Test saving and reloading the namespaced cache file."""
        clock = ManualClock(start=0.0)
        session = LinkingSession(settings=LinkingSettings(language="de"), clock=clock)
        session.cache.seed(["Berlin"])

        path = session.save_cache(tmp_path / "cache")
        restored = LinkingSession.with_persisted_cache(tmp_path / "cache", LinkingSettings(language="de"), clock)
        other = LinkingSession.with_persisted_cache(tmp_path / "cache", LinkingSettings(language="fr"), clock)

        assert path.name == "linkscout-de.json"
        assert "berlin" in restored.cache
        assert len(other.cache) == 0

    @pytest.mark.anyio
    async def test_expired_entries_are_not_saved(self, tmp_path: Path) -> None:
        """Test that saving prunes expired entries."""
        clock = ManualClock(start=0.0)
        session = LinkingSession(settings=LinkingSettings(cache_ttl_seconds=10), clock=clock)
        session.cache.seed(["Paris"])
        clock.advance(11)

        session.save_cache(tmp_path)

        assert len(LinkingSession.with_persisted_cache(tmp_path, clock=clock).cache) == 0


class TestLinkingSettings:
    """Test suite for LinkingSettings."""

    def test_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test reading settings from prefixed environment variables."""
        monkeypatch.setenv("LINKSCOUT_BATCH_SIZE", "5")
        monkeypatch.setenv("LINKSCOUT_STOPLIST", "foo, bar,,")
        monkeypatch.setenv("LINKSCOUT_SCORING_ENABLED", "false")
        monkeypatch.setenv("LINKSCOUT_LANGUAGE", "fr")

        settings = LinkingSettings.from_env(language="de")

        assert settings.batch_size == 5
        assert settings.stoplist == ["foo", "bar"]
        assert settings.scoring_enabled is False
        assert settings.language == "de"

    def test_invalid_environment_value(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that out-of-range values are rejected."""
        monkeypatch.setenv("LINKSCOUT_BATCH_SIZE", "500")

        with pytest.raises(ValueError):
            LinkingSettings.from_env()

    def test_extraction_view(self) -> None:
        """Test the extraction settings derived from the flat settings."""
        extraction = LinkingSettings(min_word_length=4, max_phrase_words=2).extraction

        assert extraction.min_word_length == 4
        assert extraction.max_phrase_words == 2
