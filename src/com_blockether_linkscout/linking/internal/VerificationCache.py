"""
TTL-bounded store of registry verdicts, keyed by normalized candidate key.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, Iterable, Optional, Union

from pydantic import ValidationError

from ...utils.Clock import Clock, SystemClock
from .LinkingErrors import CacheCorruptionError
from .LinkingTypes import PersistedCache, PersistedCacheEntry, VerificationRecord

logger = logging.getLogger(__name__)


class VerificationCache:
    """
    In-memory verification cache with lazy expiry.

    GUARANTEES:
    - A record stored at time t is returned by get() at t' only while t' - t < ttl
    - Expired entries are evicted when read, or in bulk by prune()
    - Negative verdicts are cached exactly like positive ones
    """

    DEFAULT_TTL_SECONDS = 7 * 24 * 60 * 60

    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS, clock: Optional[Clock] = None):
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")
        self._ttl = ttl_seconds
        self._clock = clock or SystemClock()
        self._entries: Dict[str, VerificationRecord] = {}

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def _is_fresh(self, record: VerificationRecord, now: float) -> bool:
        return now - record.timestamp < self._ttl

    def get(self, key: str) -> Optional[VerificationRecord]:
        record = self._entries.get(key)
        if record is None:
            return None
        if not self._is_fresh(record, self._clock.now()):
            del self._entries[key]
            return None
        return record

    def put(self, key: str, record: VerificationRecord) -> None:
        self._entries[key] = record

    def prune(self) -> int:
        """Evict every expired entry. Returns the number of evicted entries."""
        now = self._clock.now()
        expired = [key for key, record in self._entries.items() if not self._is_fresh(record, now)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.info(f"Pruned {len(expired)} expired cache entries, {len(self._entries)} kept")
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    def seed(self, titles: Iterable[str]) -> int:
        """
        Record titles known to exist (e.g. the document's outgoing links).

        Args:
            titles: Canonical titles

        Returns:
            Number of seeded entries
        """
        now = self._clock.now()
        count = 0
        for title in titles:
            title = " ".join(title.replace("_", " ").split())
            if not title:
                continue
            key = title.casefold()
            self.put(key, VerificationRecord(key=key, exists=True, canonical_title=title, timestamp=now))
            count += 1
        return count

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.get(key) is not None

    def __len__(self) -> int:
        """Number of entries still fresh; expired ones are not counted even before eviction."""
        now = self._clock.now()
        return sum(1 for record in self._entries.values() if self._is_fresh(record, now))

    # Persistence

    def to_persisted(self) -> PersistedCache:
        self.prune()
        return PersistedCache(
            entries={
                key: PersistedCacheEntry(
                    exists=record.exists,
                    canonical_title=record.canonical_title,
                    is_disambiguation=record.is_ambiguous,
                    timestamp=record.timestamp,
                )
                for key, record in self._entries.items()
            },
            saved_at=self._clock.now(),
        )

    @classmethod
    def from_persisted(
        cls,
        persisted: PersistedCache,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Optional[Clock] = None,
    ) -> "VerificationCache":
        cache = cls(ttl_seconds=ttl_seconds, clock=clock)
        for key, entry in persisted.entries.items():
            try:
                record = VerificationRecord(
                    key=key,
                    exists=entry.exists,
                    canonical_title=entry.canonical_title,
                    is_ambiguous=entry.is_disambiguation,
                    timestamp=entry.timestamp,
                )
            except ValidationError as e:
                raise CacheCorruptionError(f"Invalid cache entry '{key}': {e}") from e
            cache.put(key, record)
        cache.prune()
        return cache

    @staticmethod
    def parse(raw: Union[str, bytes]) -> PersistedCache:
        """Strictly parse a persisted cache document."""
        try:
            return PersistedCache.model_validate_json(raw)
        except (ValidationError, ValueError) as e:
            raise CacheCorruptionError(f"Persisted cache is not valid: {e}") from e

    def save(self, path: Union[str, Path]) -> None:
        """Write the cache as JSON, replacing the target file atomically."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = self.to_persisted().model_dump(mode="json")

        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, ensure_ascii=False)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.info(f"Saved {len(payload['entries'])} cache entries to {path}")

    @classmethod
    def load(
        cls,
        path: Union[str, Path],
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Optional[Clock] = None,
    ) -> "VerificationCache":
        """
        Load a persisted cache.

        A missing file yields an empty cache. A corrupt file is discarded with a
        warning and an empty cache is returned; corruption is never fatal.
        """
        path = Path(path)
        if not path.exists():
            return cls(ttl_seconds=ttl_seconds, clock=clock)

        try:
            persisted = cls.parse(path.read_bytes())
            cache = cls.from_persisted(persisted, ttl_seconds=ttl_seconds, clock=clock)
        except CacheCorruptionError as e:
            logger.warning(f"Discarding corrupt verification cache {path}: {e}")
            return cls(ttl_seconds=ttl_seconds, clock=clock)

        logger.info(f"Loaded {len(cache)} cache entries from {path}")
        return cache
