"""
Request Builder
===============
Maps one AggregatedMetrics snapshot plus user-supplied flags onto a
PredictionRequest.

This is the only place defaults are applied. The relay client and
server treat every request field as required and never fill gaps.
The snapshot is read once as a whole object, so a refresh that lands
mid-build cannot mix values from two aggregations.
"""

from __future__ import annotations

from dataclasses import dataclass

from insurance_relay.config import Settings
from insurance_relay.models.metrics import AggregatedMetrics, BiologicalSex
from insurance_relay.models.prediction import PredictionRequest


@dataclass(frozen=True)
class RequestDefaults:
    age: int = 18
    bmi: float = 25.0
    heart_rate: float = 70.0
    steps: float = 10000.0
    sleep_hours: float = 7.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "RequestDefaults":
        return cls(
            age=settings.default_age,
            bmi=settings.default_bmi,
            heart_rate=settings.default_heart_rate,
            steps=settings.default_steps,
            sleep_hours=settings.default_sleep_hours,
        )


def build_prediction_request(
    metrics: AggregatedMetrics,
    *,
    smoker: bool,
    defaults: RequestDefaults = RequestDefaults(),
) -> PredictionRequest:
    """Absent metrics fall back to *defaults*; zero values are kept as-is."""
    return PredictionRequest(
        age=metrics.age if metrics.age is not None else defaults.age,
        bmi=metrics.bmi if metrics.bmi is not None else defaults.bmi,
        sex=1 if metrics.biological_sex is BiologicalSex.FEMALE else 0,
        smoker=1 if smoker else 0,
        heart_rate=metrics.heart_rate if metrics.heart_rate is not None else defaults.heart_rate,
        steps=metrics.step_count if metrics.step_count is not None else defaults.steps,
        sleep_hours=metrics.sleep_hours if metrics.sleep_hours is not None else defaults.sleep_hours,
    )
