"""
Prediction Backend Gateway
==========================
Thin HTTP wrapper around the prediction service.

POST {base_url}/predict with the request fields as JSON. Any 2xx is a
success and the body must decode into a PredictionResult. Failures are
split three ways so the relay can report them distinctly:

- BackendRequestError: the request never produced a response
- BackendHTTPError:    non-2xx status (status code + raw body kept)
- BackendDecodeError:  2xx, but the body is not a valid result document
"""

from __future__ import annotations

import logging

import httpx
from pydantic import ValidationError

from insurance_relay.config import Settings
from insurance_relay.errors import ErrorKind, RelayPipelineError
from insurance_relay.models.prediction import PredictionRequest, PredictionResult

logger = logging.getLogger(__name__)

PREDICT_PATH = "/predict"


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class BackendError(RelayPipelineError):
    """Base class for prediction backend failures."""


class BackendRequestError(BackendError):
    """The network request failed before a response arrived."""

    kind = ErrorKind.GATEWAY_REQUEST_FAILURE

    def __init__(self, cause: Exception) -> None:
        self.cause = cause
        super().__init__(f"The network request failed: {cause}")


class BackendHTTPError(BackendError):
    """Non-2xx response from the prediction backend."""

    kind = ErrorKind.GATEWAY_HTTP_ERROR

    def __init__(self, status_code: int, body: str) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(f"Server returned an HTTP error: {status_code}.")


class BackendDecodeError(BackendError):
    """2xx response whose body is not a valid prediction document."""

    kind = ErrorKind.GATEWAY_DECODE_FAILURE

    def __init__(self, body: str, cause: Exception) -> None:
        self.body = body
        self.cause = cause
        super().__init__(f"Failed to decode the server response: {cause}")


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class PredictionBackendClient:
    """Makes prediction requests against a fixed backend endpoint."""

    def __init__(self, base_url: str, timeout: float = 10.0) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "PredictionBackendClient":
        return cls(settings.backend_base_url, timeout=settings.backend_timeout_seconds)

    @property
    def predict_url(self) -> str:
        return f"{self._base_url}{PREDICT_PATH}"

    async def fetch_prediction(self, request: PredictionRequest) -> PredictionResult:
        """POST the request and decode the result. Raises a BackendError subclass on failure."""
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(
                    self.predict_url,
                    json=request.to_backend_payload(),
                    headers={"Content-Type": "application/json"},
                )
        except httpx.HTTPError as exc:
            logger.warning("Prediction request to %s failed: %s", self.predict_url, exc)
            raise BackendRequestError(exc) from exc

        if not response.is_success:
            logger.warning(
                "Prediction backend returned %d: %s",
                response.status_code, response.text[:200],
            )
            raise BackendHTTPError(response.status_code, response.text)

        try:
            return PredictionResult.model_validate_json(response.content)
        except ValidationError as exc:
            logger.warning("Undecodable prediction body: %s", response.text[:200])
            raise BackendDecodeError(response.text, exc) from exc
