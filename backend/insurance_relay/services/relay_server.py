"""
Relay Server
============
The intermediary side of the channel. Every inbound envelope gets
exactly one reply, whatever happens:

    1. requestType must be "getInsurancePrediction"
         -> else {"error": "Unknown request type ..."}; backend not called
    2. every PredictionRequest field present with the right scalar type
         -> else {"error": "Missing necessary parameters ..."}; backend not called
    3. forward to the prediction backend
    4. success  -> re-encode the result to bytes -> {"predictionData": ...}
                   encode failure -> {"error": "Failed to encode ..."}
    5. failure  -> {"error": <backend error description, verbatim>}

The server keeps no state between envelopes, so concurrent envelopes are
handled independently. An optional activity publisher lets a UI show the
last processed prediction or error; dispatch never reads it back.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol

from pydantic import ValidationError

from insurance_relay.errors import ErrorKind, RelayPipelineError
from insurance_relay.models.envelope import (
    REQUEST_TYPE_KEY,
    RelayEnvelope,
    error_reply,
    success_reply,
)
from insurance_relay.models.prediction import REQUEST_TYPE, PredictionRequest, PredictionResult
from insurance_relay.services.backend_gateway import BackendError
from insurance_relay.services.publisher import StatePublisher

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

UNKNOWN_REQUEST_TYPE_MESSAGE = "Unknown request type (received by relay)."
MISSING_PARAMETERS_MESSAGE = "Missing necessary parameters (received by relay)"
ENCODE_FAILURE_PREFIX = "Failed to encode prediction for relay reply"

# Wire field -> accepted Python types. bool is rejected separately because
# it subclasses int.
_REQUIRED_FIELDS: dict[str, tuple[type, ...]] = {
    "age": (int,),
    "bmi": (int, float),
    "sex": (int,),
    "smoker": (int,),
    "heartRate": (int, float),
    "steps": (int, float),
    "sleepHours": (int, float),
}


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class EnvelopeValidationError(RelayPipelineError):
    """Inbound envelope failed validation; the backend is never called."""

    kind = ErrorKind.VALIDATION_FAILURE


class PredictionGateway(Protocol):
    async def fetch_prediction(self, request: PredictionRequest) -> PredictionResult:
        ...


@dataclass(frozen=True)
class RelayServerActivity:
    """What the intermediary last did, for display only."""

    last_prediction: Optional[PredictionResult] = None
    processing_error: Optional[str] = None


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def _is_scalar_of(value: Any, types: tuple[type, ...]) -> bool:
    return isinstance(value, types) and not isinstance(value, bool)


def validate_envelope(envelope: RelayEnvelope) -> PredictionRequest:
    """Turn an inbound envelope into a PredictionRequest or raise EnvelopeValidationError."""
    if envelope.get(REQUEST_TYPE_KEY) != REQUEST_TYPE:
        raise EnvelopeValidationError(UNKNOWN_REQUEST_TYPE_MESSAGE)

    bad_fields = [
        name for name, types in _REQUIRED_FIELDS.items()
        if not _is_scalar_of(envelope.get(name), types)
    ]
    if bad_fields:
        raise EnvelopeValidationError(f"{MISSING_PARAMETERS_MESSAGE}: {', '.join(bad_fields)}")

    try:
        return PredictionRequest.model_validate(
            {name: envelope[name] for name in _REQUIRED_FIELDS}
        )
    except ValidationError as exc:
        invalid = ", ".join(str(err["loc"][0]) for err in exc.errors() if err["loc"])
        raise EnvelopeValidationError(f"{MISSING_PARAMETERS_MESSAGE}: {invalid}") from exc


# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------


class RelayServer:
    """Validates inbound envelopes and relays them to the prediction backend."""

    def __init__(
        self,
        gateway: PredictionGateway,
        *,
        activity: Optional[StatePublisher[RelayServerActivity]] = None,
    ) -> None:
        self._gateway = gateway
        self.activity = activity or StatePublisher(RelayServerActivity())

    async def handle_message(self, envelope: RelayEnvelope) -> RelayEnvelope:
        """Always returns a reply envelope; never raises."""
        logger.info("Relay received envelope with keys %s", sorted(envelope))

        try:
            request = validate_envelope(envelope)
        except EnvelopeValidationError as exc:
            logger.warning("Rejected envelope: %s", exc)
            return self._fail(str(exc))

        try:
            prediction = await self._gateway.fetch_prediction(request)
        except BackendError as exc:
            logger.warning("Prediction backend failed (%s): %s", exc.kind.value, exc)
            return self._fail(str(exc))
        except Exception as exc:
            # Anything unexpected still has to produce a reply.
            logger.exception("Unexpected gateway failure")
            return self._fail(f"Unexpected relay failure: {exc}")

        try:
            data = prediction.to_bytes()
        except (ValueError, TypeError) as exc:
            message = f"{ENCODE_FAILURE_PREFIX}: {exc}"
            logger.warning(message)
            return self._fail(message)

        self.activity.publish(RelayServerActivity(last_prediction=prediction))
        logger.info("Relayed prediction (%d bytes)", len(data))
        return success_reply(data)

    def _fail(self, message: str) -> RelayEnvelope:
        self.activity.publish(RelayServerActivity(processing_error=message))
        return error_reply(message)
