"""
In-memory biometric source.

Implements the BiometricSource protocol over a list of samples, with
configurable latency and failure injection for tests and the demo script.
"""

import asyncio
from collections.abc import Iterable

import structlog

from capacity.domain.models import BiometricSample, DateRange, MetricKind
from capacity.services.sources import Result

logger = structlog.get_logger(__name__)


class InMemoryBiometricSource:
    """
    Serves stored samples filtered by kind and range, most recent first.

    ``error`` makes every query return ``Result.err``; ``raise_error`` makes
    it raise instead, the way a misbehaving platform bridge would.
    """

    def __init__(
        self,
        samples: Iterable[BiometricSample] = (),
        delay_seconds: float = 0.0,
        source_name: str = "memory",
    ) -> None:
        self.samples: list[BiometricSample] = list(samples)
        self.delay_seconds = delay_seconds
        self.error: Exception | None = None
        self.raise_error: Exception | None = None
        self.calls: list[tuple[MetricKind, DateRange, int | None]] = []
        self.logger = logger.bind(source=source_name)

    @property
    def call_count(self) -> int:
        return len(self.calls)

    def add(self, *samples: BiometricSample) -> None:
        self.samples.extend(samples)

    async def query(
        self, kind: MetricKind, date_range: DateRange, sample_limit: int | None = None
    ) -> Result[list[BiometricSample], Exception]:
        self.calls.append((kind, date_range, sample_limit))
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)

        if self.raise_error is not None:
            raise self.raise_error
        if self.error is not None:
            self.logger.warning("biometric_query_failed", kind=kind.value, error=str(self.error))
            return Result.err(self.error)

        matching = [
            s
            for s in self.samples
            if s.kind is kind and s.start <= date_range.end and (s.end or s.start) >= date_range.start
        ]
        matching.sort(key=lambda s: s.end or s.start, reverse=True)
        if sample_limit is not None:
            matching = matching[:sample_limit]

        self.logger.debug("biometric_query_served", kind=kind.value, count=len(matching))
        return Result.ok(matching)
