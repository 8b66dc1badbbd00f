"""
Batch verification of candidate keys against the remote title registry.
"""

import logging
from typing import Dict, List, Mapping, Optional, Tuple

import anyio

from ...registry.TitleRegistry import RegistryRequest, RegistryTitleResult, TitleRegistry
from ...utils.BatchQueue import BatchQueue
from ...utils.Clock import Clock, SystemClock
from .LinkingErrors import VerificationTransportError
from .LinkingTypes import LinkingSettings, VerificationOutcome, VerificationRecord
from .RateLimiter import RateLimiter
from .VerificationCache import VerificationCache

logger = logging.getLogger(__name__)

# (normalized key, surface form as it appears in the document)
KeyedTitle = Tuple[str, str]


class BatchVerifier:
    """
    Resolves unresolved keys through the registry in bounded batches.

    Requests carry the surface form casing, records are stored under the
    case-folded key. A redirect keeps the requested key but records the
    resolved title, so the original text still matches during annotation.
    Every resolved key, hit or miss, is written through to the cache.

    A transport failure or timeout costs only its own batch: it is logged as a
    warning and the remaining batches proceed.
    """

    def __init__(
        self,
        registry: TitleRegistry,
        cache: VerificationCache,
        rate_limiter: RateLimiter,
        settings: Optional[LinkingSettings] = None,
        clock: Optional[Clock] = None,
        cancel_event: Optional[anyio.Event] = None,
    ):
        self._registry = registry
        self._cache = cache
        self._rate_limiter = rate_limiter
        self._settings = settings or LinkingSettings()
        self._clock = clock or SystemClock()
        self._cancel_event = cancel_event

    @property
    def batch_size(self) -> int:
        registry_limit = getattr(self._registry, "max_titles_per_request", None) or self._settings.batch_size
        return max(1, min(self._settings.batch_size, registry_limit))

    def plan_batches(self, titles: Mapping[str, str]) -> List[List[KeyedTitle]]:
        """Split key -> surface form pairs into request-sized batches, preserving order."""
        items = list(titles.items())
        size = self.batch_size
        return [items[i : i + size] for i in range(0, len(items), size)]

    async def verify(self, titles: Mapping[str, str]) -> VerificationOutcome:
        """
        Verify keys, consulting the cache first.

        Args:
            titles: Normalized key -> surface form (first seen casing)

        Returns:
            Records for every key resolved from cache or registry, plus batch statistics
        """
        outcome = VerificationOutcome()
        misses: Dict[str, str] = {}
        for key, surface in titles.items():
            record = self._cache.get(key)
            if record is not None:
                outcome.records[key] = record
                outcome.cache_hits += 1
            else:
                misses[key] = surface

        if not misses:
            return outcome

        batches = self.plan_batches(misses)
        logger.info(
            f"Verifying {len(misses)} keys in {len(batches)} batches "
            f"({outcome.cache_hits} served from cache)"
        )

        def write_through(idx: int, records: Optional[Dict[str, VerificationRecord]]) -> None:
            if records is None:
                outcome.failed_batches += 1
                return
            outcome.completed_batches += 1
            for key, record in records.items():
                self._cache.put(key, record)
                outcome.records[key] = record

        queue: BatchQueue[List[KeyedTitle], Optional[Dict[str, VerificationRecord]]] = BatchQueue(
            workers=self._settings.max_concurrent_batches,
            gate=self._rate_limiter.acquire,
            delay_seconds=self._settings.inter_batch_delay_seconds,
            clock=self._clock,
            cancel_event=self._cancel_event,
        )
        result = await queue.run(batches, self._verify_batch, on_result=write_through)
        outcome.cancelled = result.cancelled
        return outcome

    async def _verify_batch(self, batch: List[KeyedTitle]) -> Optional[Dict[str, VerificationRecord]]:
        """Query one batch. Returns None when the batch failed."""
        request = RegistryRequest(
            titles=[surface for _, surface in batch],
            want_disambiguation_flag=self._settings.want_disambiguation_flag,
            follow_redirects=self._settings.follow_redirects,
        )

        try:
            with anyio.fail_after(self._settings.request_timeout_seconds):
                response = await self._registry.query(request)
        except TimeoutError:
            logger.warning(
                f"Registry call timed out after {self._settings.request_timeout_seconds}s; "
                f"skipping batch of {len(batch)} titles"
            )
            return None
        except VerificationTransportError as e:
            logger.warning(f"Registry call failed, skipping batch of {len(batch)} titles: {e}")
            return None

        now = self._clock.now()
        records: Dict[str, VerificationRecord] = {}
        for key, surface in batch:
            result = response.results.get(surface)
            if result is None:
                logger.debug(f"Registry returned no verdict for '{surface}'; leaving it unresolved")
                continue
            records[key] = self.interpret(key, surface, result, now)
        return records

    @staticmethod
    def interpret(key: str, surface: str, result: RegistryTitleResult, timestamp: float) -> VerificationRecord:
        """Map a registry verdict to a cache record stored under the requested key."""
        if not result.exists:
            return VerificationRecord(key=key, exists=False, timestamp=timestamp)

        canonical = result.canonical_title or surface
        if result.redirected_from:
            logger.debug(f"'{surface}' redirects to '{canonical}'")
        return VerificationRecord(
            key=key,
            exists=True,
            canonical_title=canonical,
            is_ambiguous=result.is_disambiguation,
            timestamp=timestamp,
        )
