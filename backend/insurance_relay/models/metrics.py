"""
Health Metric Schemas
=====================
Pydantic shapes for raw samples coming out of a SampleSource and the
aggregated snapshot the request builder reads from.

Key design decisions:
- Every metric kind declares its aggregation policy here, so the
  aggregator never branches on individual kinds.
- AggregatedMetrics is frozen. A refresh replaces the whole object;
  observers never see a half-updated snapshot.
- ``None`` means "could not be obtained" (authorization denied, query
  failed). ``0.0`` means "queried fine, window was empty".
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import AwareDatetime, BaseModel, ConfigDict, model_validator


# ---------------------------------------------------------------------------
# Metric kinds + aggregation policies
# ---------------------------------------------------------------------------

class AggregationPolicy(str, Enum):
    CUMULATIVE_DAILY_AVERAGE = "cumulative_daily_average"
    DISCRETE_AVERAGE = "discrete_average"
    SLEEP_DAILY_AVERAGE = "sleep_daily_average"


class MetricKind(str, Enum):
    STEP_COUNT = "step_count"
    HEART_RATE = "heart_rate"
    RESTING_HEART_RATE = "resting_heart_rate"
    ACTIVE_ENERGY = "active_energy"
    BODY_WEIGHT = "body_weight"
    BMI = "bmi"
    SLEEP_ASLEEP = "sleep_asleep"

    @property
    def policy(self) -> AggregationPolicy:
        return _POLICIES[self]


_POLICIES: dict[MetricKind, AggregationPolicy] = {
    MetricKind.STEP_COUNT: AggregationPolicy.CUMULATIVE_DAILY_AVERAGE,
    MetricKind.ACTIVE_ENERGY: AggregationPolicy.CUMULATIVE_DAILY_AVERAGE,
    MetricKind.HEART_RATE: AggregationPolicy.DISCRETE_AVERAGE,
    MetricKind.RESTING_HEART_RATE: AggregationPolicy.DISCRETE_AVERAGE,
    MetricKind.BODY_WEIGHT: AggregationPolicy.DISCRETE_AVERAGE,
    MetricKind.BMI: AggregationPolicy.DISCRETE_AVERAGE,
    MetricKind.SLEEP_ASLEEP: AggregationPolicy.SLEEP_DAILY_AVERAGE,
}


class SleepState(str, Enum):
    IN_BED = "in_bed"
    ASLEEP = "asleep"
    AWAKE = "awake"


class BiologicalSex(str, Enum):
    UNSET = "unset"
    FEMALE = "female"
    MALE = "male"
    OTHER = "other"


# ---------------------------------------------------------------------------
# Raw samples
# ---------------------------------------------------------------------------

class Sample(BaseModel):
    """One timestamped reading. Sleep samples carry an end time and a state.

    Timestamps must carry a UTC offset; naive datetimes are rejected so
    window comparisons against the aggregator's clock are well defined.
    """

    model_config = ConfigDict(frozen=True)

    kind: MetricKind
    timestamp: AwareDatetime
    value: float = 0.0
    end: Optional[AwareDatetime] = None
    sleep_state: Optional[SleepState] = None

    @model_validator(mode="after")
    def _end_not_before_start(self) -> "Sample":
        if self.end is not None and self.end < self.timestamp:
            raise ValueError("sample end must not precede its timestamp")
        return self

    @property
    def duration_seconds(self) -> float:
        if self.end is None:
            return 0.0
        return (self.end - self.timestamp).total_seconds()


# ---------------------------------------------------------------------------
# Aggregated snapshot
# ---------------------------------------------------------------------------

class Characteristics(BaseModel):
    """Static user characteristics read from the sample source."""

    model_config = ConfigDict(frozen=True)

    biological_sex: Optional[BiologicalSex] = None
    age: Optional[int] = None


class AggregatedMetrics(BaseModel):
    """One full recomputation of every metric over the trailing window."""

    model_config = ConfigDict(frozen=True)

    step_count: Optional[float] = None
    heart_rate: Optional[float] = None
    resting_heart_rate: Optional[float] = None
    active_energy: Optional[float] = None
    body_weight: Optional[float] = None
    bmi: Optional[float] = None
    sleep_hours: Optional[float] = None
    biological_sex: Optional[BiologicalSex] = None
    age: Optional[int] = None

    @classmethod
    def from_values(
        cls,
        values: dict[MetricKind, Optional[float]],
        characteristics: Optional[Characteristics] = None,
    ) -> "AggregatedMetrics":
        fields = {_FIELD_FOR_KIND[kind]: value for kind, value in values.items()}
        if characteristics is not None:
            fields["biological_sex"] = characteristics.biological_sex
            fields["age"] = characteristics.age
        return cls(**fields)

    def value_for(self, kind: MetricKind) -> Optional[float]:
        return getattr(self, _FIELD_FOR_KIND[kind])


_FIELD_FOR_KIND: dict[MetricKind, str] = {
    MetricKind.STEP_COUNT: "step_count",
    MetricKind.HEART_RATE: "heart_rate",
    MetricKind.RESTING_HEART_RATE: "resting_heart_rate",
    MetricKind.ACTIVE_ENERGY: "active_energy",
    MetricKind.BODY_WEIGHT: "body_weight",
    MetricKind.BMI: "bmi",
    MetricKind.SLEEP_ASLEEP: "sleep_hours",
}
