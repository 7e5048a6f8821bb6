"""
Tests for Aggregator
====================
Covers:
- Cumulative daily average: same-day sums, days without data not counted, empty -> 0
- Discrete average: plain mean, empty -> None
- Sleep: only asleep samples, keyed by start day, converted to hours, empty -> 0
- Absence vs zero: authorization denied / query failure -> None, not 0
- Failure isolation: one failing metric (expected or unexpected error) leaves
  the others intact
- Window: samples outside the trailing window are ignored
- Calendar days follow the configured time zone
- Characteristics: biological sex + age, each failing independently
- refresh(): publishes whole snapshots, drops superseded aggregations

Run: pytest tests/test_aggregator.py -v
"""

from __future__ import annotations

import asyncio
from datetime import date, datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from insurance_relay.models.metrics import (
    AggregatedMetrics,
    BiologicalSex,
    MetricKind,
    Sample,
    SleepState,
)
from insurance_relay.services.aggregator import (
    Aggregator,
    age_in_years,
    cumulative_daily_average,
    discrete_average,
    sleep_daily_average,
)
from insurance_relay.services.sample_source import (
    InMemorySampleSource,
    SampleAuthorizationError,
    SampleSourceError,
)

# ---------------------------------------------------------------------------
# Fixtures / constants
# ---------------------------------------------------------------------------

_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
_D0 = date(2026, 2, 25)


def _at(day: date, hour: int, minute: int = 0) -> datetime:
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=timezone.utc)


def _day(offset: int) -> date:
    return _D0 + timedelta(days=offset)


def _steps(day: date, hour: int, value: float) -> Sample:
    return Sample(kind=MetricKind.STEP_COUNT, timestamp=_at(day, hour), value=value)


def _sleep(start: datetime, end: datetime, state: SleepState = SleepState.ASLEEP) -> Sample:
    return Sample(kind=MetricKind.SLEEP_ASLEEP, timestamp=start, end=end, sleep_state=state)


def _aggregator(source, **kwargs) -> Aggregator:
    return Aggregator(source, clock=lambda: _NOW, **kwargs)


# ---------------------------------------------------------------------------
# TestPolicies
# ---------------------------------------------------------------------------

class TestCumulativeDailyAverage:

    def test_sums_same_day_and_skips_empty_days(self):
        """D0: 1000 + 500, D1: nothing, D2: 3000 -> 4500 / 2 days."""
        samples = [
            _steps(_day(0), 8, 1000),
            _steps(_day(0), 18, 500),
            _steps(_day(2), 9, 3000),
        ]
        assert cumulative_daily_average(samples) == 2250.0

    def test_empty_window_is_zero(self):
        assert cumulative_daily_average([]) == 0.0

    def test_single_day(self):
        samples = [_steps(_day(1), h, 100) for h in range(8, 12)]
        assert cumulative_daily_average(samples) == 400.0

    def test_days_follow_time_zone(self):
        """03:00 UTC and 12:00 UTC are different local days at UTC-5."""
        samples = [_steps(_day(0), 3, 100), _steps(_day(0), 12, 300)]
        est = timezone(timedelta(hours=-5))

        assert cumulative_daily_average(samples) == 400.0
        assert cumulative_daily_average(samples, est) == 200.0


class TestDiscreteAverage:

    def test_mean_of_all_samples(self):
        samples = [
            Sample(kind=MetricKind.HEART_RATE, timestamp=_at(_day(0), 9), value=60),
            Sample(kind=MetricKind.HEART_RATE, timestamp=_at(_day(0), 10), value=80),
            Sample(kind=MetricKind.HEART_RATE, timestamp=_at(_day(3), 10), value=70),
        ]
        assert discrete_average(samples) == pytest.approx(70.0)

    def test_empty_window_is_absent(self):
        assert discrete_average([]) is None


class TestSleepDailyAverage:

    def test_scenario_excludes_non_asleep_and_keys_by_start_day(self):
        samples = [
            _sleep(_at(_day(0), 8), _at(_day(0), 16)),
            _sleep(_at(_day(1), 9), _at(_day(1), 10), SleepState.AWAKE),
            _sleep(_at(_day(2), 23), _at(_day(3), 7)),
        ]
        assert sleep_daily_average(samples) == pytest.approx(8.0)

    def test_fragments_on_same_night_are_summed(self):
        samples = [
            _sleep(_at(_day(0), 1), _at(_day(0), 4)),
            _sleep(_at(_day(0), 5), _at(_day(0), 9)),
        ]
        assert sleep_daily_average(samples) == pytest.approx(7.0)

    def test_no_asleep_samples_is_zero(self):
        samples = [_sleep(_at(_day(0), 22), _at(_day(0), 23), SleepState.IN_BED)]
        assert sleep_daily_average(samples) == 0.0

    def test_empty_is_zero(self):
        assert sleep_daily_average([]) == 0.0


class TestAgeInYears:

    def test_before_birthday(self):
        assert age_in_years(date(1990, 6, 15), date(2026, 3, 1)) == 35

    def test_on_birthday(self):
        assert age_in_years(date(1990, 3, 1), date(2026, 3, 1)) == 36


# ---------------------------------------------------------------------------
# TestAggregate
# ---------------------------------------------------------------------------

class TestAggregate:

    @pytest.mark.asyncio
    async def test_full_snapshot_from_in_memory_source(self):
        source = InMemorySampleSource(
            [
                _steps(_day(0), 8, 1000),
                _steps(_day(0), 18, 500),
                _steps(_day(2), 9, 3000),
                Sample(kind=MetricKind.HEART_RATE, timestamp=_at(_day(1), 9), value=72),
                Sample(kind=MetricKind.BMI, timestamp=_at(_day(1), 9), value=23.5),
                _sleep(_at(_day(0), 8), _at(_day(0), 16)),
            ],
            biological_sex=BiologicalSex.FEMALE,
            date_of_birth=date(1986, 1, 10),
        )
        metrics = await _aggregator(source).aggregate()

        assert isinstance(metrics, AggregatedMetrics)
        assert metrics.step_count == 2250.0
        assert metrics.heart_rate == 72.0
        assert metrics.bmi == 23.5
        assert metrics.sleep_hours == pytest.approx(8.0)
        assert metrics.biological_sex is BiologicalSex.FEMALE
        assert metrics.age == 40

    @pytest.mark.asyncio
    async def test_empty_but_authorized_gives_zero_for_cumulative_and_sleep(self):
        metrics = await _aggregator(InMemorySampleSource()).aggregate()

        assert metrics.step_count == 0.0
        assert metrics.active_energy == 0.0
        assert metrics.sleep_hours == 0.0
        # discrete metrics have nothing to average
        assert metrics.heart_rate is None
        assert metrics.body_weight is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("kind", list(MetricKind))
    async def test_authorization_denied_gives_absence(self, kind):
        others = [k for k in MetricKind if k is not kind]
        source = InMemorySampleSource(authorized_kinds=others)

        metrics = await _aggregator(source).aggregate()

        assert metrics.value_for(kind) is None

    @pytest.mark.asyncio
    async def test_query_failure_isolated_to_one_metric(self):
        async def query(kind, start, end):
            if kind is MetricKind.STEP_COUNT:
                raise SampleSourceError("query timed out")
            if kind is MetricKind.HEART_RATE:
                return [Sample(kind=kind, timestamp=_at(_day(0), 9), value=65)]
            return []

        source = MagicMock()
        source.query_samples = AsyncMock(side_effect=query)
        source.biological_sex = AsyncMock(return_value=BiologicalSex.MALE)
        source.date_of_birth = AsyncMock(return_value=None)

        metrics = await _aggregator(source).aggregate()

        assert metrics.step_count is None
        assert metrics.heart_rate == 65.0
        assert metrics.active_energy == 0.0
        assert metrics.biological_sex is BiologicalSex.MALE
        assert metrics.age is None

    @pytest.mark.asyncio
    async def test_unexpected_source_error_isolated_to_one_metric(self):
        async def query(kind, start, end):
            if kind is MetricKind.HEART_RATE:
                raise RuntimeError("store unavailable")
            if kind is MetricKind.BMI:
                return [Sample(kind=kind, timestamp=_at(_day(0), 9), value=22.0)]
            return []

        source = MagicMock()
        source.query_samples = AsyncMock(side_effect=query)
        source.biological_sex = AsyncMock(return_value=BiologicalSex.FEMALE)
        source.date_of_birth = AsyncMock(return_value=date(1990, 1, 1))

        metrics = await _aggregator(source).aggregate()

        assert metrics.heart_rate is None
        assert metrics.bmi == 22.0
        assert metrics.step_count == 0.0
        assert metrics.biological_sex is BiologicalSex.FEMALE
        assert metrics.age == 36

    @pytest.mark.asyncio
    async def test_unexpected_characteristics_error_is_absence(self):
        source = MagicMock()
        source.query_samples = AsyncMock(return_value=[])
        source.biological_sex = AsyncMock(side_effect=RuntimeError("store unavailable"))
        source.date_of_birth = AsyncMock(return_value=date(1990, 1, 1))

        metrics = await _aggregator(source).aggregate()

        assert metrics.biological_sex is None
        assert metrics.age == 36
        assert metrics.step_count == 0.0

    @pytest.mark.asyncio
    async def test_timeout_is_absence(self):
        source = MagicMock()
        source.query_samples = AsyncMock(side_effect=asyncio.TimeoutError())
        source.biological_sex = AsyncMock(return_value=BiologicalSex.UNSET)
        source.date_of_birth = AsyncMock(return_value=None)

        metrics = await _aggregator(source).aggregate()

        assert all(metrics.value_for(kind) is None for kind in MetricKind)

    @pytest.mark.asyncio
    async def test_revoked_mid_session_becomes_absent(self):
        source = InMemorySampleSource([_steps(_day(0), 8, 1000)])
        aggregator = _aggregator(source)
        assert (await aggregator.aggregate()).step_count == 1000.0

        source.revoke(MetricKind.STEP_COUNT)

        assert (await aggregator.aggregate()).step_count is None

    @pytest.mark.asyncio
    async def test_samples_outside_window_are_ignored(self):
        old = _steps((_NOW - timedelta(days=31)).date(), 9, 99999)
        recent = _steps(_day(0), 9, 1000)
        source = MagicMock()
        # Source over-returns; the aggregator must still enforce the window.
        source.query_samples = AsyncMock(
            side_effect=lambda kind, start, end: [old, recent] if kind is MetricKind.STEP_COUNT else []
        )
        source.biological_sex = AsyncMock(return_value=BiologicalSex.UNSET)
        source.date_of_birth = AsyncMock(return_value=None)

        metrics = await _aggregator(source).aggregate()

        assert metrics.step_count == 1000.0

    @pytest.mark.asyncio
    async def test_window_bounds_passed_to_source(self):
        source = MagicMock()
        source.query_samples = AsyncMock(return_value=[])
        source.biological_sex = AsyncMock(return_value=BiologicalSex.UNSET)
        source.date_of_birth = AsyncMock(return_value=None)

        await _aggregator(source, window_days=30).aggregate()

        _, start, end = source.query_samples.call_args.args
        assert end == _NOW
        assert start == _NOW - timedelta(days=30)

    @pytest.mark.asyncio
    async def test_characteristics_denied_are_absent(self):
        source = InMemorySampleSource(characteristics_authorized=False)
        metrics = await _aggregator(source).aggregate()

        assert metrics.biological_sex is None
        assert metrics.age is None

    def test_rejects_non_positive_window(self):
        with pytest.raises(ValueError):
            Aggregator(InMemorySampleSource(), window_days=0)


# ---------------------------------------------------------------------------
# TestRefresh
# ---------------------------------------------------------------------------

class _GatedSource(InMemorySampleSource):
    """Blocks the first aggregation's step query until released."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.release = asyncio.Event()
        self._calls = 0

    async def query_samples(self, kind, start, end):
        if kind is MetricKind.STEP_COUNT:
            self._calls += 1
            if self._calls == 1:
                await self.release.wait()
        return await super().query_samples(kind, start, end)


class TestRefresh:

    @pytest.mark.asyncio
    async def test_refresh_publishes_snapshot(self):
        aggregator = _aggregator(InMemorySampleSource([_steps(_day(0), 8, 1000)]))
        seen: list = []
        aggregator.publisher.subscribe(seen.append)

        metrics = await aggregator.refresh()

        assert aggregator.publisher.value is metrics
        assert seen == [metrics]

    @pytest.mark.asyncio
    async def test_superseded_refresh_is_not_published(self):
        source = _GatedSource([_steps(_day(0), 8, 1000)])
        aggregator = _aggregator(source)

        first = asyncio.ensure_future(aggregator.refresh())
        await asyncio.sleep(0)
        second = await aggregator.refresh()

        source.release.set()
        assert await first is None
        assert aggregator.publisher.value is second
