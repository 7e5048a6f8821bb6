"""
Aggregation Service
===================
Turns raw, irregularly-sampled readings into one AggregatedMetrics
snapshot covering the trailing window (30 days by default) ending now.

Three policies, chosen by MetricKind.policy:

  cumulative daily average  (steps, active energy)
      Bucket samples by calendar day, sum each bucket, then average over
      the days that have at least one sample. Days without samples do
      not count as zero days. Empty window -> 0.0.

  discrete average          (heart rate, resting heart rate, weight, BMI)
      Plain mean of every sample in the window. Empty window -> None.

  sleep daily average       (sleep)
      Keep only "asleep" samples, take end - start for each, bucket the
      durations by the calendar day of the sample's start, then average
      over the populated days and convert to hours. Empty -> 0.0.

Each metric is queried concurrently and independently: an authorization
failure, a query failure or an unexpected error from the source turns
that one metric into None and leaves the others alone. Characteristics
are read the same way.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Optional

import pandas as pd

from insurance_relay.models.metrics import (
    AggregatedMetrics,
    AggregationPolicy,
    BiologicalSex,
    Characteristics,
    MetricKind,
    Sample,
    SleepState,
)
from insurance_relay.services.publisher import StatePublisher
from insurance_relay.services.sample_source import SampleSource, SampleSourceError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_WINDOW_DAYS = 30
SECONDS_PER_HOUR = 3600.0


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Policy functions
# ---------------------------------------------------------------------------

def _calendar_day(ts: datetime, tz: Optional[tzinfo]) -> date:
    if tz is not None and ts.tzinfo is not None:
        return ts.astimezone(tz).date()
    return ts.date()


def cumulative_daily_average(samples: list[Sample], tz: Optional[tzinfo] = None) -> float:
    """Average of per-day sums, over days that have data."""
    if not samples:
        return 0.0

    df = pd.DataFrame({
        "day": [_calendar_day(s.timestamp, tz) for s in samples],
        "value": [s.value for s in samples],
    })
    daily = df.groupby("day")["value"].sum()
    return float(daily.sum() / len(daily))


def discrete_average(samples: list[Sample]) -> Optional[float]:
    """Mean over the whole window, or None if nothing was recorded."""
    if not samples:
        return None
    return float(pd.Series([s.value for s in samples]).mean())


def sleep_daily_average(samples: list[Sample], tz: Optional[tzinfo] = None) -> float:
    """Average hours asleep per night, keyed by the day each sample started."""
    asleep = [
        s for s in samples
        if s.sleep_state == SleepState.ASLEEP and s.duration_seconds > 0
    ]
    if not asleep:
        return 0.0

    df = pd.DataFrame({
        "day": [_calendar_day(s.timestamp, tz) for s in asleep],
        "seconds": [s.duration_seconds for s in asleep],
    })
    daily = df.groupby("day")["seconds"].sum()
    return float(daily.sum() / len(daily) / SECONDS_PER_HOUR)


def age_in_years(date_of_birth: date, today: date) -> int:
    had_birthday = (today.month, today.day) >= (date_of_birth.month, date_of_birth.day)
    return today.year - date_of_birth.year - (0 if had_birthday else 1)


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class Aggregator:
    """Computes AggregatedMetrics from a SampleSource.

    ``refresh()`` additionally publishes the snapshot. Each refresh takes a
    generation number; if a newer refresh started while this one was
    still querying, the older result is dropped instead of published.
    """

    def __init__(
        self,
        source: SampleSource,
        *,
        window_days: int = DEFAULT_WINDOW_DAYS,
        tz: Optional[tzinfo] = None,
        clock: Callable[[], datetime] = _utc_now,
        publisher: Optional[StatePublisher[Optional[AggregatedMetrics]]] = None,
    ) -> None:
        if window_days < 1:
            raise ValueError("window_days must be at least 1")
        self._source = source
        self._window_days = window_days
        self._tz = tz
        self._clock = clock
        self.publisher = publisher or StatePublisher(None)
        self._generation = 0

    async def aggregate(self) -> AggregatedMetrics:
        """Recompute every metric over the window ending now."""
        end = self._clock()
        start = end - timedelta(days=self._window_days)
        kinds = list(MetricKind)

        values, characteristics = await asyncio.gather(
            asyncio.gather(*(self.aggregate_metric(kind, start, end) for kind in kinds)),
            self._characteristics(end.date()),
        )

        metrics = AggregatedMetrics.from_values(dict(zip(kinds, values)), characteristics)
        logger.info(
            "Aggregated %d metric kinds over %d days (%d absent)",
            len(kinds), self._window_days,
            sum(1 for v in values if v is None),
        )
        return metrics

    async def aggregate_metric(
        self, kind: MetricKind, start: datetime, end: datetime
    ) -> Optional[float]:
        """One metric over ``[start, end]``; None if its query failed.

        Never raises: a failure of any kind is confined to this metric.
        """
        try:
            samples = await self._source.query_samples(kind, start, end)
            # Sources may over-return; the window is enforced here.
            samples = [s for s in samples if s.kind == kind and start <= s.timestamp <= end]
            return self._apply_policy(kind, samples)
        except (SampleSourceError, asyncio.TimeoutError) as exc:
            logger.warning("Sample query for %s failed: %s", kind.value, exc)
            return None
        except Exception:
            logger.exception("Unexpected failure aggregating %s", kind.value)
            return None

    def _apply_policy(self, kind: MetricKind, samples: list[Sample]) -> Optional[float]:
        policy = kind.policy
        if policy is AggregationPolicy.CUMULATIVE_DAILY_AVERAGE:
            return cumulative_daily_average(samples, self._tz)
        if policy is AggregationPolicy.SLEEP_DAILY_AVERAGE:
            return sleep_daily_average(samples, self._tz)
        return discrete_average(samples)

    async def refresh(self) -> Optional[AggregatedMetrics]:
        """Aggregate and publish. Returns None if superseded by a newer refresh."""
        self._generation += 1
        generation = self._generation

        metrics = await self.aggregate()

        if generation != self._generation:
            logger.info(
                "Discarding aggregation %d; superseded by %d",
                generation, self._generation,
            )
            return None

        self.publisher.publish(metrics)
        return metrics

    # ---- Characteristics -------------------------------------------------

    async def _characteristics(self, today: date) -> Characteristics:
        sex, dob = await asyncio.gather(
            self._read_biological_sex(),
            self._read_date_of_birth(),
        )
        age = age_in_years(dob, today) if dob is not None else None
        return Characteristics(biological_sex=sex, age=age)

    async def _read_biological_sex(self) -> Optional[BiologicalSex]:
        try:
            return await self._source.biological_sex()
        except SampleSourceError as exc:
            logger.warning("Biological sex query failed: %s", exc)
            return None
        except Exception:
            logger.exception("Unexpected failure reading biological sex")
            return None

    async def _read_date_of_birth(self) -> Optional[date]:
        try:
            return await self._source.date_of_birth()
        except SampleSourceError as exc:
            logger.warning("Date of birth query failed: %s", exc)
            return None
        except Exception:
            logger.exception("Unexpected failure reading date of birth")
            return None
