"""
Prediction Schemas
==================
The request the relay carries to the prediction backend, and the
structured result it relays back.

Wire names differ from Python names: the request uses camelCase
(``heartRate``, ``sleepHours``) and plans use kebab-case
(``certification-no``). Aliases keep both sides honest; always dump
with ``by_alias=True`` when something leaves the process.
"""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

REQUEST_TYPE = "getInsurancePrediction"


# ---------------------------------------------------------------------------
# Request
# ---------------------------------------------------------------------------

class PredictionRequest(BaseModel):
    """Fully-defaulted request. Nothing downstream fills in missing values."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    age: int = Field(..., ge=0)
    bmi: float
    sex: Literal[0, 1] = Field(..., description="1 = female, 0 = everything else.")
    smoker: Literal[0, 1]
    heart_rate: float = Field(..., alias="heartRate")
    steps: float
    sleep_hours: float = Field(..., alias="sleepHours")

    def to_backend_payload(self) -> dict[str, Any]:
        """JSON body for POST /predict."""
        return self.model_dump(by_alias=True)

    def to_envelope(self) -> dict[str, Any]:
        """Outbound relay envelope: the backend payload plus requestType."""
        return {"requestType": REQUEST_TYPE, **self.to_backend_payload()}


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------

class Plan(BaseModel):
    """One recommended insurance plan."""

    model_config = ConfigDict(frozen=True, allow_inf_nan=False, populate_by_name=True)

    certification_no: str = Field(..., alias="certification-no")
    company_name: str = Field(..., alias="company-name")
    plan_doc_url: str = Field(..., alias="plan-doc-url")
    plan_name: str = Field(..., alias="plan-name")
    premium: float


class RecommendationList(BaseModel):
    model_config = ConfigDict(frozen=True)

    error: Optional[str] = None
    plans: list[Plan] = Field(default_factory=list)


class PredictionResult(BaseModel):
    """Decoded backend response. Immutable once constructed.

    NaN and infinity are rejected so every accepted result survives
    ``to_bytes()`` unchanged.
    """

    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    base_premium: float
    discount_rate: str
    final_premium: float
    health_assessment: str
    health_score: float
    recommendation_list: RecommendationList = Field(default_factory=RecommendationList)

    def to_bytes(self) -> bytes:
        return self.model_dump_json(by_alias=True).encode("utf-8")

    @classmethod
    def from_bytes(cls, data: bytes) -> "PredictionResult":
        """Raises pydantic.ValidationError if *data* is not a valid result document."""
        return cls.model_validate_json(data)
