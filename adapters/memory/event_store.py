"""In-memory event store implementing the EventStore protocol."""

from collections.abc import Iterable
from datetime import datetime
from typing import TypeVar

from capacity.domain.errors import StoreUnavailableError
from capacity.domain.models import SymptomRecord
from capacity.services.contributors import ActivityEvent, MealEvent, SleepEvent

EventT = TypeVar("EventT", SymptomRecord, ActivityEvent, MealEvent, SleepEvent)


class InMemoryEventStore:
    """Holds logged events in lists; range reads filter on effective date."""

    def __init__(
        self,
        symptoms: Iterable[SymptomRecord] = (),
        activities: Iterable[ActivityEvent] = (),
        meals: Iterable[MealEvent] = (),
        sleep: Iterable[SleepEvent] = (),
    ) -> None:
        self._symptoms = list(symptoms)
        self._activities = list(activities)
        self._meals = list(meals)
        self._sleep = list(sleep)
        self.unavailable = False

    def add(self, *events: SymptomRecord | ActivityEvent | MealEvent | SleepEvent) -> None:
        for event in events:
            if isinstance(event, SymptomRecord):
                self._symptoms.append(event)
            elif isinstance(event, ActivityEvent):
                self._activities.append(event)
            elif isinstance(event, MealEvent):
                self._meals.append(event)
            elif isinstance(event, SleepEvent):
                self._sleep.append(event)
            else:
                raise TypeError(f"Unsupported event type: {type(event).__name__}")

    def _between(self, events: list[EventT], start: datetime, end: datetime) -> list[EventT]:
        if self.unavailable:
            raise StoreUnavailableError("event store is unavailable")
        return sorted(
            (e for e in events if start <= e.effective_date <= end),
            key=lambda e: e.effective_date,
        )

    def symptoms(self, start: datetime, end: datetime) -> list[SymptomRecord]:
        return self._between(self._symptoms, start, end)

    def activities(self, start: datetime, end: datetime) -> list[ActivityEvent]:
        return self._between(self._activities, start, end)

    def meals(self, start: datetime, end: datetime) -> list[MealEvent]:
        return self._between(self._meals, start, end)

    def sleep(self, start: datetime, end: datetime) -> list[SleepEvent]:
        return self._between(self._sleep, start, end)
