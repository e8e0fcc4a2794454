"""Tests for the Result type and the in-memory collaborators behind the protocols."""

from datetime import UTC, datetime, timedelta

import pytest

from adapters.memory.biometric_source import InMemoryBiometricSource
from adapters.memory.event_store import InMemoryEventStore
from adapters.memory.settings import InMemorySettings, JsonFileSettings
from capacity.domain.errors import StoreUnavailableError
from capacity.domain.models import BiometricSample, DateRange, MetricKind, SymptomRecord
from capacity.services.contributors import ActivityEvent, MealEvent, SleepEvent
from capacity.services.sources import BiometricSource, EventStore, KeyValueSettings, Result

NOW = datetime(2026, 8, 20, 12, tzinfo=UTC)


class TestResult:
    """Test the Result type for explicit error handling."""

    def test_result_ok_creates_successful_result(self) -> None:
        result: Result[list[int], Exception] = Result.ok([])
        assert result.is_ok()
        assert not result.is_err()
        assert result.unwrap() == []

    def test_result_error_creates_failed_result(self) -> None:
        error = TimeoutError("query timed out")
        result: Result[list[int], TimeoutError] = Result.err(error)
        assert not result.is_ok()
        assert result.is_err()
        assert result.unwrap_or([1]) == [1]
        assert result.unwrap_err() is error

    def test_unwrap_raises_on_error_result(self) -> None:
        result: Result[str, ValueError] = Result.err(ValueError("denied"))

        with pytest.raises(ValueError, match="denied"):
            result.unwrap()

    def test_unwrap_err_on_ok_raises(self) -> None:
        with pytest.raises(ValueError):
            Result.ok(1).unwrap_err()

    def test_requires_exactly_one_side(self) -> None:
        with pytest.raises(ValueError):
            Result()
        with pytest.raises(ValueError):
            Result(value=1, error=RuntimeError())

    def test_repr(self) -> None:
        assert repr(Result.ok(3)) == "Result.ok(3)"


class TestProtocols:
    def test_in_memory_adapters_satisfy_protocols(self, tmp_path) -> None:
        assert isinstance(InMemoryBiometricSource(), BiometricSource)
        assert isinstance(InMemoryEventStore(), EventStore)
        assert isinstance(InMemorySettings(), KeyValueSettings)
        assert isinstance(JsonFileSettings(tmp_path / "settings.json"), KeyValueSettings)


class TestInMemoryEventStore:
    def test_range_reads_use_effective_date(self) -> None:
        backdated = SymptomRecord(
            symptom_name="Pain", severity=3, created_at=NOW, backdated_at=NOW - timedelta(days=3)
        )
        today = SymptomRecord(symptom_name="Pain", severity=2, created_at=NOW)
        store = InMemoryEventStore(symptoms=[today, backdated])

        assert store.symptoms(NOW - timedelta(days=4), NOW - timedelta(days=2)) == [backdated]
        assert store.symptoms(NOW - timedelta(days=4), NOW) == [backdated, today]

    def test_add_routes_by_type(self) -> None:
        store = InMemoryEventStore()
        store.add(ActivityEvent(created_at=NOW), MealEvent(created_at=NOW), SleepEvent(wake_time=NOW))

        window = (NOW - timedelta(hours=1), NOW + timedelta(hours=1))
        assert len(store.activities(*window)) == 1
        assert len(store.meals(*window)) == 1
        assert len(store.sleep(*window)) == 1

    def test_unavailable_store_raises(self) -> None:
        store = InMemoryEventStore()
        store.unavailable = True

        with pytest.raises(StoreUnavailableError):
            store.symptoms(NOW, NOW)


class TestInMemoryBiometricSource:
    async def test_filters_sorts_and_limits(self) -> None:
        source = InMemoryBiometricSource(
            [
                BiometricSample(kind=MetricKind.RESTING_HR, value=v, start=NOW - timedelta(hours=h))
                for v, h in [(60.0, 5), (58.0, 1), (63.0, 3), (70.0, 200)]
            ]
        )

        result = await source.query(MetricKind.RESTING_HR, DateRange.last(timedelta(days=1), NOW), 2)

        assert [s.value for s in result.unwrap()] == [58.0, 63.0]
        assert source.call_count == 1

    async def test_error_is_returned(self) -> None:
        source = InMemoryBiometricSource()
        source.error = PermissionError("not authorized")

        result = await source.query(MetricKind.HRV, DateRange.last(timedelta(days=1), NOW))

        assert result.is_err()


class TestJsonFileSettings:
    def test_values_survive_reopen(self, tmp_path) -> None:
        path = tmp_path / "nested" / "settings.json"
        JsonFileSettings(path).set("hrv_baseline", '{"mean": 45}')

        assert JsonFileSettings(path).get("hrv_baseline") == '{"mean": 45}'

    def test_delete(self, tmp_path) -> None:
        settings = JsonFileSettings(tmp_path / "settings.json")
        settings.set("a", "1")
        settings.delete("a")
        settings.delete("missing")

        assert JsonFileSettings(tmp_path / "settings.json").get("a") is None

    def test_corrupt_file_starts_empty(self, tmp_path) -> None:
        path = tmp_path / "settings.json"
        path.write_text("{broken", encoding="utf-8")

        assert JsonFileSettings(path).get("anything") is None
