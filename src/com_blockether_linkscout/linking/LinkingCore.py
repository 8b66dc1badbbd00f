"""
Unlinked term discovery pipeline.

Regions of a host document are scanned for capitalized words and phrases,
the candidates are filtered, verified against a title registry in rate
limited batches, optionally scored, and finally the approved terms are
decorated in place.
"""

from __future__ import annotations

import logging
import time
from collections import Counter
from functools import wraps
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Mapping, Optional, Set, TypeVar, Union

import anyio

from ..registry.TitleRegistry import RelatedEntitySource, TitleRegistry
from ..utils.Clock import Clock, SystemClock
from .internal.Annotator import Annotator
from .internal.BatchVerifier import BatchVerifier
from .internal.CandidateExtractor import CandidateExtractor
from .internal.ExclusionFilter import ExclusionContext, ExclusionFilter
from .internal.LinkingErrors import VerificationTransportError
from .internal.LinkingTypes import (
    Candidate,
    LinkingContext,
    LinkingReport,
    LinkingSettings,
    ScoredTerm,
    VerificationOutcome,
)
from .internal.PatternMatcher import PatternMatcher, RegexPatternMatcher
from .internal.RateLimiter import RateLimiter
from .internal.RelevanceScorer import RelevanceScorer
from .internal.VerificationCache import VerificationCache

if TYPE_CHECKING:
    from ..document.HostDocument import HostDocument, TextRegion

logger = logging.getLogger(__name__)

T = TypeVar("T")


def timed_operation(step_name: str) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator to time operations and log their duration.

    Args:
        step_name: Name of the operation for logging

    Returns:
        Decorated function that logs execution time
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            start_time = time.time()
            logger.info(f"{step_name}: Starting...")
            result = func(*args, **kwargs)
            elapsed = time.time() - start_time
            logger.info(f"{step_name}: Completed in {elapsed:.2f}s")
            return result

        return wrapper

    return decorator


def async_timed_operation(
    step_name: str,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator to time async operations and log their duration.

    Args:
        step_name: Name of the operation for logging

    Returns:
        Decorated async function that logs execution time
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            start_time = time.time()
            logger.info(f"{step_name}: Starting...")
            result = await func(*args, **kwargs)  # type: ignore[misc]
            elapsed = time.time() - start_time
            logger.info(f"{step_name}: Completed in {elapsed:.2f}s")
            return result  # type: ignore[no-any-return]

        return wrapper  # type: ignore[return-value]

    return decorator


class LinkingSession:
    """
    State of processing one document.

    Holds the verification cache, the rate limiter and the cancellation
    event. A session belongs to one document and one registry language; it is
    never reused for an unrelated document.
    """

    def __init__(
        self,
        settings: Optional[LinkingSettings] = None,
        clock: Optional[Clock] = None,
        cache: Optional[VerificationCache] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        self.settings = settings or LinkingSettings()
        self.clock = clock or SystemClock()
        self.cache = cache or VerificationCache(ttl_seconds=self.settings.cache_ttl_seconds, clock=self.clock)
        self.rate_limiter = rate_limiter or RateLimiter(
            limit=self.settings.rate_limit,
            window_seconds=self.settings.rate_window_seconds,
            clock=self.clock,
        )
        self.cancel_event = anyio.Event()
        self.decorated_keys: Set[str] = set()

    @property
    def namespace(self) -> str:
        return f"linkscout-{self.settings.language}"

    def cache_path(self, directory: Union[str, Path]) -> Path:
        """Location of this session's persisted cache inside a cache directory."""
        return Path(directory) / f"{self.namespace}.json"

    @classmethod
    def with_persisted_cache(
        cls,
        directory: Union[str, Path],
        settings: Optional[LinkingSettings] = None,
        clock: Optional[Clock] = None,
    ) -> "LinkingSession":
        """Create a session whose cache is loaded from its namespaced file in directory."""
        session = cls(settings=settings, clock=clock)
        session.cache = VerificationCache.load(
            session.cache_path(directory),
            ttl_seconds=session.settings.cache_ttl_seconds,
            clock=session.clock,
        )
        return session

    def save_cache(self, directory: Union[str, Path]) -> Path:
        path = self.cache_path(directory)
        path.parent.mkdir(parents=True, exist_ok=True)
        self.cache.prune()
        self.cache.save(path)
        return path

    def cancel(self) -> None:
        """Request cancellation; checked before each remaining batch."""
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()


class LinkingCore:
    """Finds, verifies and decorates unlinked terms in host documents."""

    def __init__(
        self,
        registry: TitleRegistry,
        settings: Optional[LinkingSettings] = None,
        related_entity_source: Optional[RelatedEntitySource] = None,
        clock: Optional[Clock] = None,
        matcher: Optional[PatternMatcher] = None,
    ):
        """
        Initialize the pipeline.

        Args:
            registry: Remote title registry
            settings: Pipeline configuration, defaults when omitted
            related_entity_source: Optional source of related entity labels for scoring
            clock: Time source shared by new sessions
            matcher: Pattern matching strategy of the annotator

        Raises:
            ExtractionError: If the extraction settings are invalid
        """
        self._registry = registry
        self._settings = settings or LinkingSettings()
        self._related_source = related_entity_source
        self._clock = clock or SystemClock()
        self._matcher = matcher or RegexPatternMatcher()
        self._extractor = CandidateExtractor(self._settings.extraction)

        logger.info(
            f"LinkingCore initialized for language '{self._settings.language}' "
            f"(batch_size={self._settings.batch_size}, rate_limit={self._settings.rate_limit}/"
            f"{self._settings.rate_window_seconds:g}s, scoring={'on' if self._settings.scoring_enabled else 'off'})"
        )

    @property
    def settings(self) -> LinkingSettings:
        return self._settings

    def new_session(self) -> LinkingSession:
        return LinkingSession(settings=self._settings, clock=self._clock)

    @async_timed_operation("Context preparation")
    async def prepare_context(self, document: "HostDocument", session: Optional[LinkingSession] = None) -> LinkingContext:
        """
        Gather outgoing links and related entities of the document's article.

        Outgoing links are seeded into the session cache as known titles. With a
        session, every request waits on its rate limiter. Any failure degrades
        to an empty set; it never aborts the run.
        """
        title = document.title
        context = LinkingContext(self_title=title or None)
        if not title:
            return context
        gate = session.rate_limiter.acquire if session is not None else None

        try:
            with anyio.fail_after(self._settings.request_timeout_seconds):
                context.outgoing_links = list(await self._registry.outgoing_links(title, gate=gate))
        except (VerificationTransportError, TimeoutError) as e:
            logger.warning(f"Could not fetch outgoing links of '{title}': {e}")

        if session is not None and context.outgoing_links:
            seeded = session.cache.seed(context.outgoing_links)
            logger.info(f"Seeded {seeded} outgoing links of '{title}' into the cache")

        if self._related_source is not None:
            try:
                with anyio.fail_after(self._settings.request_timeout_seconds):
                    context.related_entities = list(await self._related_source.related_entities(title, gate=gate))
            except (VerificationTransportError, TimeoutError) as e:
                logger.warning(f"Could not fetch related entities of '{title}': {e}")

        return context

    @timed_operation("Candidate extraction")
    def collect_candidates(
        self,
        document: "HostDocument",
        regions: List["TextRegion"],
        context: LinkingContext,
        report: LinkingReport,
    ) -> List[Candidate]:
        """Extract candidates from a region snapshot and apply the exclusion rules."""
        extracted = list(self._extractor.extract([region.text for region in regions]))
        exclusion = ExclusionFilter(
            ExclusionContext(
                self_title=context.self_title if context.self_title is not None else document.title,
                already_linked_surface_forms=document.linked_texts(),
                stoplist=self._settings.stoplist,
            )
        )
        kept = list(exclusion.filter(extracted))
        report.total_candidates = len(extracted)
        report.excluded_candidates = exclusion.excluded_count
        logger.info(f"Kept {len(kept)} of {len(extracted)} candidates from {len(regions)} regions")
        return kept

    def approve(
        self,
        surfaces: Mapping[str, str],
        occurrences: Mapping[str, int],
        outcome: VerificationOutcome,
        context: LinkingContext,
    ) -> List[ScoredTerm]:
        """
        Turn verification records into unscored terms.

        Only existing, unambiguous records become terms. With
        match_title_containment, a key the registry did not confirm is still
        approved when it and a known title contain one another.
        """
        terms: List[ScoredTerm] = []
        unconfirmed: List[str] = []
        for key, surface in surfaces.items():
            record = outcome.records.get(key)
            if record is not None and record.is_link_target and record.canonical_title:
                terms.append(
                    ScoredTerm(
                        key=key,
                        surface_form=surface,
                        canonical_title=record.canonical_title,
                        occurrence_count=occurrences[key],
                    )
                )
            elif record is None or not record.exists:
                unconfirmed.append(key)

        if self._settings.match_title_containment and unconfirmed:
            known = {term.canonical_title for term in terms} | set(context.outgoing_links)
            # Longest title first, then alphabetical, so the choice is stable
            ordered = sorted(known, key=lambda t: (-len(t), t))
            for key in unconfirmed:
                title = next((t for t in ordered if key in t.casefold() or t.casefold() in key), None)
                if title is None:
                    continue
                logger.debug(f"'{surfaces[key]}' approved by containment with '{title}'")
                terms.append(
                    ScoredTerm(
                        key=key,
                        surface_form=surfaces[key],
                        canonical_title=title,
                        occurrence_count=occurrences[key],
                    )
                )
        return terms

    def rank(self, terms: List[ScoredTerm], context: LinkingContext) -> List[ScoredTerm]:
        if not self._settings.scoring_enabled:
            return sorted(terms, key=lambda t: t.key)
        scorer = RelevanceScorer(
            threshold=self._settings.score_threshold,
            outgoing_links=context.outgoing_links,
            related_entities=context.related_entities,
            stoplist=self._settings.stoplist,
            related_entity_similarity=self._settings.related_entity_similarity,
        )
        return scorer.rank(terms)

    async def _discover(
        self,
        document: "HostDocument",
        context: LinkingContext,
        session: LinkingSession,
        report: LinkingReport,
    ) -> List["TextRegion"]:
        """Run every stage but annotation; fills the report and returns the region snapshot."""
        regions = document.list_regions(self._settings.exclude_tags, self._settings.exclude_classes)
        report.total_regions = len(regions)

        candidates = self.collect_candidates(document, regions, context, report)
        surfaces: Dict[str, str] = {}
        for candidate in candidates:
            surfaces.setdefault(candidate.normalized_key, candidate.surface_form)
        occurrences = Counter(candidate.normalized_key for candidate in candidates)
        report.unique_keys = len(surfaces)

        verifier = BatchVerifier(
            registry=self._registry,
            cache=session.cache,
            rate_limiter=session.rate_limiter,
            settings=self._settings,
            clock=session.clock,
            cancel_event=session.cancel_event,
        )
        outcome = await verifier.verify(surfaces)
        report.cache_hits = outcome.cache_hits
        report.verified_keys = len(outcome.records) - outcome.cache_hits
        report.failed_batches = outcome.failed_batches
        report.cancelled = outcome.cancelled

        terms = self.approve(surfaces, occurrences, outcome, context)
        report.terms = self.rank(terms, context)
        return regions

    @async_timed_operation("Term discovery")
    async def discover(
        self,
        document: "HostDocument",
        context: Optional[LinkingContext] = None,
        session: Optional[LinkingSession] = None,
    ) -> List[ScoredTerm]:
        """
        List the terms that would be decorated, without touching the document.

        Returns:
            Approved terms, highest score first
        """
        report = LinkingReport()
        await self._discover(document, context or LinkingContext(), session or self.new_session(), report)
        return report.terms

    @async_timed_operation("Linking run")
    async def run(
        self,
        document: "HostDocument",
        context: Optional[LinkingContext] = None,
        session: Optional[LinkingSession] = None,
    ) -> LinkingReport:
        """
        Discover terms and decorate them in the document.

        Args:
            document: Host document, mutated in place
            context: Outgoing links and related entities, see prepare_context
            session: Session of this document; a fresh one when omitted

        Returns:
            Report of the run. A cancelled run leaves the document untouched.
        """
        session = session or self.new_session()
        context = context or LinkingContext()
        report = LinkingReport()

        regions = await self._discover(document, context, session, report)
        if report.cancelled:
            logger.warning("Run cancelled; document left untouched")
            return report
        if not report.terms:
            return report

        budget = self._settings.max_decorations
        if budget is not None:
            # Decorations from earlier runs count against the cap
            budget = max(0, budget - document.decoration_count())

        annotator = Annotator(
            approved_terms={term.key: term.canonical_title for term in report.terms},
            highlight_each_term_once=self._settings.highlight_each_term_once,
            max_decorations=budget,
            matcher=self._matcher,
            already_decorated=session.decorated_keys | document.decorated_terms(),
            surface_forms={term.key: term.surface_form for term in report.terms},
        )
        report.annotated_regions = annotator.annotate_regions(
            document, regions, self._settings.exclude_tags, self._settings.exclude_classes
        )
        report.total_decorations = annotator.total_decorations
        session.decorated_keys |= annotator.used_terms
        return report
