"""
Memoised daily load scores.

A stored score is reused only while everything it was computed from is
unchanged: the day's contributors and symptoms, the load carried in from the
previous day, the felt-load multiplier and the calculator configuration.
Those inputs are folded into one digest stored beside the score.

Once the cache holds more than ``max_entries`` days, the least recently used
ones are dropped until it is back to 90% of capacity.
"""

import hashlib
from collections import OrderedDict
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date

import structlog

from capacity.config import LoadConfig
from capacity.domain.models import LoadScore, SymptomRecord
from capacity.services.contributors import LoadContributor

logger = structlog.get_logger(__name__)

DEFAULT_MAX_ENTRIES = 500
EVICTION_TARGET = 0.9


def input_digest(
    contributors: Sequence[LoadContributor],
    symptoms: Sequence[SymptomRecord],
    previous_load: float,
    config: LoadConfig,
    felt_load_multiplier: float | None = None,
) -> str:
    """Digest of every input that affects one day's LoadScore."""
    digest = hashlib.sha256()
    for contributor in contributors:
        digest.update(
            f"c|{type(contributor).__name__}|{contributor.load_contribution!r}"
            f"|{contributor.recovery_modifier!r}\n".encode()
        )
    for symptom in symptoms:
        digest.update(f"s|{symptom.normalised_severity}\n".encode())
    digest.update(f"p|{previous_load!r}|f|{felt_load_multiplier!r}\n".encode())
    digest.update(config.model_dump_json().encode())
    return digest.hexdigest()


@dataclass(frozen=True)
class CacheStatistics:
    entries: int
    hits: int
    misses: int

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


class LoadScoreCache:
    """Day-keyed LoadScore store validated by input digest."""

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self._entries: OrderedDict[date, tuple[str, LoadScore]] = OrderedDict()
        self.hits = 0
        self.misses = 0
        self.logger = logger.bind(component="load_score_cache")

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, day: date, digest: str) -> LoadScore | None:
        """The stored score for ``day`` if it was computed from ``digest``."""
        entry = self._entries.get(day)
        if entry is None or entry[0] != digest:
            self.misses += 1
            return None
        self._entries.move_to_end(day)
        self.hits += 1
        return entry[1]

    def set(self, day: date, digest: str, score: LoadScore) -> None:
        self._entries[day] = (digest, score)
        self._entries.move_to_end(day)
        if len(self._entries) > self.max_entries:
            self._evict()

    def _evict(self) -> None:
        target = max(1, int(self.max_entries * EVICTION_TARGET))
        evicted = 0
        while len(self._entries) > target:
            self._entries.popitem(last=False)
            evicted += 1
        self.logger.debug("load_scores_evicted", evicted=evicted, remaining=len(self._entries))

    # Invalidation

    def invalidate(self, day: date) -> None:
        """Drop one day; later days stay valid only if their carried load is unchanged."""
        self._entries.pop(day, None)

    def invalidate_from(self, day: date) -> None:
        """Drop ``day`` and every later day, the part of the decay chain it feeds."""
        for key in [d for d in self._entries if d >= day]:
            del self._entries[key]

    def invalidate_all(self) -> None:
        self._entries.clear()

    def prune_before(self, day: date) -> None:
        for key in [d for d in self._entries if d < day]:
            del self._entries[key]

    # Statistics

    def statistics(self) -> CacheStatistics:
        return CacheStatistics(entries=len(self._entries), hits=self.hits, misses=self.misses)

    def reset_statistics(self) -> None:
        self.hits = 0
        self.misses = 0
