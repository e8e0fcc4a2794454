"""
Daily capacity load with exponential carry-over.

Each day's raw load is the sum of its contributors' loads (plus the load
implied by the day's symptoms). Whatever load was left from the day before
decays by a half-life, and recovery modifiers change how quickly:

    decayed[d] = raw[d] + decayed[d-1] * base_decay ** (1 / modifier[d])

The fold is strictly sequential; day ``d`` depends on day ``d - 1``.
"""

import math
from collections import defaultdict
from collections.abc import Iterable, Mapping, Sequence
from datetime import UTC, date, datetime, time, timedelta, tzinfo
from typing import TypeVar

import structlog

from capacity.config import FELT_LOAD_MULTIPLIERS, LoadConfig
from capacity.domain.errors import InvalidInputError, InvalidRangeError
from capacity.domain.models import LoadBreakdown, LoadScore, RiskLevel, SymptomRecord, to_local
from capacity.services.contributors import ContributorKind, LoadContributor, contributor_kind
from capacity.services.load_score_cache import LoadScoreCache, input_digest
from capacity.services.sources import EventStore

logger = structlog.get_logger(__name__)

DatedT = TypeVar("DatedT", LoadContributor, SymptomRecord)


def validate_felt_multiplier(multiplier: float) -> float:
    """Return the accepted multiplier matching ``multiplier`` or raise."""
    for accepted in FELT_LOAD_MULTIPLIERS:
        if math.isclose(multiplier, accepted, abs_tol=1e-9):
            return accepted
    raise InvalidInputError(
        f"felt-load multiplier {multiplier} not in {', '.join(map(str, FELT_LOAD_MULTIPLIERS))}"
    )


def iter_days(start: date, end: date) -> Iterable[date]:
    if end < start:
        raise InvalidRangeError(f"range end {end} precedes start {start}")
    day = start
    while day <= end:
        yield day
        day += timedelta(days=1)


class LoadCalculator:
    """Turns grouped contributors and symptoms into one LoadScore per day."""

    def __init__(
        self,
        config: LoadConfig | None = None,
        tz: tzinfo = UTC,
        score_cache: LoadScoreCache | None = None,
    ) -> None:
        self.config = config or LoadConfig()
        self.tz = tz
        self.score_cache = score_cache
        self.logger = logger.bind(component="load_calculator")

    # Grouping and classification

    def group_by_day(self, items: Iterable[DatedT]) -> dict[date, list[DatedT]]:
        """Bucket items by the local calendar day of their effective date."""
        grouped: dict[date, list[DatedT]] = defaultdict(list)
        for item in items:
            grouped[to_local(item.effective_date, self.tz).date()].append(item)
        return dict(grouped)

    def classify(self, load: float) -> RiskLevel:
        return self.config.thresholds.classify(load)

    # Per-day pieces

    def symptom_impact(self, symptoms: Sequence[SymptomRecord]) -> tuple[float, float]:
        """Load and recovery modifier implied by a day's symptoms.

        Uses the mean normalised severity; above 3 adds load, and higher
        burden slows recovery. No symptoms means no load and a neutral modifier.
        """
        if not symptoms:
            return 0.0, 1.0
        average = sum(s.normalised_severity for s in symptoms) / len(symptoms)
        load = max(0.0, (average - 3.0) * 10.0) * self.config.symptom_multiplier
        modifier = max(0.4, 1.2 - average * 0.16)
        return load, modifier

    def day_modifier(
        self, contributors: Sequence[LoadContributor], symptoms: Sequence[SymptomRecord] = ()
    ) -> float:
        modifier = 1.0
        for contributor in contributors:
            if contributor.recovery_modifier is not None:
                modifier *= contributor.recovery_modifier
        if symptoms:
            modifier *= self.symptom_impact(symptoms)[1]
        return min(max(modifier, self.config.min_recovery_modifier), self.config.max_recovery_modifier)

    def _cap(self, load: float) -> float:
        load = max(load, 0.0)
        if self.config.max_load is not None:
            return min(load, self.config.max_load)
        return load

    def calculate_day(
        self,
        day: date,
        contributors: Sequence[LoadContributor],
        symptoms: Sequence[SymptomRecord] = (),
        previous_load: float = 0.0,
        felt_load_multiplier: float | None = None,
    ) -> LoadScore:
        raw = sum(c.load_contribution for c in contributors)
        raw += self.symptom_impact(symptoms)[0]
        raw = self._cap(raw)

        modifier = self.day_modifier(contributors, symptoms)
        retained = self.config.base_decay ** (1.0 / modifier)
        decayed = self._cap(raw + previous_load * retained)
        risk = self.classify(decayed)

        felt: float | None = None
        effective_risk = risk
        if felt_load_multiplier is not None:
            felt_load_multiplier = validate_felt_multiplier(felt_load_multiplier)
            felt = decayed * felt_load_multiplier
            effective_risk = self.classify(felt)

        return LoadScore(
            date=day,
            raw_load=raw,
            decayed_load=decayed,
            risk_level=risk,
            recovery_modifier=modifier,
            felt_load=felt,
            felt_load_multiplier=felt_load_multiplier,
            effective_risk_level=effective_risk,
        )

    # Ranges

    def calculate_range(
        self,
        start: date,
        end: date,
        contributors_by_day: Mapping[date, Sequence[LoadContributor]],
        symptoms_by_day: Mapping[date, Sequence[SymptomRecord]] | None = None,
        felt_multipliers: Mapping[date, float] | None = None,
    ) -> list[LoadScore]:
        """One LoadScore per day of the inclusive range, oldest first.

        Raises:
            InvalidRangeError: ``end`` precedes ``start``.
            InvalidInputError: a felt-load multiplier outside the accepted set.
        """
        symptoms_by_day = symptoms_by_day or {}
        felt_multipliers = felt_multipliers or {}

        scores: list[LoadScore] = []
        previous = 0.0
        for day in iter_days(start, end):
            score = self._score_day(
                day,
                contributors_by_day.get(day, ()),
                symptoms_by_day.get(day, ()),
                previous,
                felt_multipliers.get(day),
            )
            scores.append(score)
            previous = score.decayed_load

        self.logger.debug(
            "load_range_calculated",
            start=start.isoformat(),
            end=end.isoformat(),
            days=len(scores),
            peak_load=round(max((s.decayed_load for s in scores), default=0.0), 2),
        )
        return scores

    def _score_day(
        self,
        day: date,
        contributors: Sequence[LoadContributor],
        symptoms: Sequence[SymptomRecord],
        previous_load: float,
        felt_load_multiplier: float | None,
    ) -> LoadScore:
        if self.score_cache is None:
            return self.calculate_day(day, contributors, symptoms, previous_load, felt_load_multiplier)

        digest = input_digest(contributors, symptoms, previous_load, self.config, felt_load_multiplier)
        score = self.score_cache.get(day, digest)
        if score is None:
            score = self.calculate_day(day, contributors, symptoms, previous_load, felt_load_multiplier)
            self.score_cache.set(day, digest, score)
        return score

    def calculate_for_events(
        self,
        start: date,
        end: date,
        contributors: Iterable[LoadContributor],
        symptoms: Iterable[SymptomRecord] = (),
        felt_multipliers: Mapping[date, float] | None = None,
    ) -> list[LoadScore]:
        """Group ungrouped events by day, then calculate the range."""
        return self.calculate_range(
            start,
            end,
            self.group_by_day(contributors),
            self.group_by_day(symptoms),
            felt_multipliers,
        )

    def calculate_from_store(
        self,
        store: EventStore,
        start: date,
        end: date,
        felt_multipliers: Mapping[date, float] | None = None,
    ) -> list[LoadScore]:
        """Read a range's events from the store and score it.

        Store failures degrade to an empty list; range and multiplier errors
        still raise.
        """
        if end < start:
            raise InvalidRangeError(f"range end {end} precedes start {start}")
        window_start = datetime.combine(start, time.min, tzinfo=self.tz)
        window_end = datetime.combine(end, time.max, tzinfo=self.tz)

        try:
            contributors: list[LoadContributor] = [
                *store.activities(window_start, window_end),
                *store.meals(window_start, window_end),
                *store.sleep(window_start, window_end),
            ]
            symptoms = store.symptoms(window_start, window_end)
        except Exception as e:
            self.logger.warning("event_store_read_failed", error=str(e))
            return []

        return self.calculate_for_events(start, end, contributors, symptoms, felt_multipliers)

    # Breakdown

    def analyse_contributions(
        self,
        contributors: Iterable[LoadContributor],
        symptoms: Sequence[SymptomRecord] = (),
    ) -> LoadBreakdown:
        """Split one day's raw load by contributor kind."""
        totals: dict[ContributorKind, float] = defaultdict(float)
        for contributor in contributors:
            totals[contributor_kind(contributor)] += contributor.load_contribution
        totals[ContributorKind.SYMPTOM] += self.symptom_impact(symptoms)[0]

        return LoadBreakdown(
            activity_load=totals[ContributorKind.ACTIVITY],
            meal_load=totals[ContributorKind.MEAL],
            sleep_load=totals[ContributorKind.SLEEP],
            symptom_load=totals[ContributorKind.SYMPTOM],
            other_load=totals[ContributorKind.OTHER],
        )
