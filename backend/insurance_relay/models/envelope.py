"""
Relay Envelope
==============
The flat key/value message exchanged across the point-to-point channel.

Outbound: the PredictionRequest fields plus ``requestType``.
Inbound:  exactly one of ``{"predictionData": bytes}`` or ``{"error": str}``.

There is no correlation id. The channel pairs each reply with its
request, and a RelayClient never has more than one envelope in flight.

JSON transports cannot carry raw bytes, so ``to_wire``/``from_wire``
base64-encode ``predictionData`` at the HTTP boundary only. In-process
channels pass bytes through untouched.
"""

from __future__ import annotations

import base64
import binascii
from typing import Any, Optional

from insurance_relay.errors import ErrorKind, RelayPipelineError

RelayEnvelope = dict[str, Any]

REQUEST_TYPE_KEY = "requestType"
PREDICTION_DATA_KEY = "predictionData"
ERROR_KEY = "error"


class InvalidReplyError(RelayPipelineError):
    """Reply envelope does not hold exactly one well-typed result key."""

    kind = ErrorKind.REPLY_DECODE_FAILURE


# ---------------------------------------------------------------------------
# Reply construction
# ---------------------------------------------------------------------------

def success_reply(prediction_data: bytes) -> RelayEnvelope:
    return {PREDICTION_DATA_KEY: prediction_data}


def error_reply(message: str) -> RelayEnvelope:
    return {ERROR_KEY: message}


def unpack_reply(reply: RelayEnvelope) -> tuple[Optional[bytes], Optional[str]]:
    """Return ``(prediction_data, error)`` with exactly one of them set.

    Raises InvalidReplyError when the reply has both keys, neither key,
    or a value of the wrong type.
    """
    has_data = PREDICTION_DATA_KEY in reply
    has_error = ERROR_KEY in reply
    if has_data == has_error:
        raise InvalidReplyError("Received unknown response format from relay.")

    if has_error:
        error = reply[ERROR_KEY]
        if not isinstance(error, str):
            raise InvalidReplyError("Received unknown response format from relay.")
        return None, error

    data = reply[PREDICTION_DATA_KEY]
    if not isinstance(data, (bytes, bytearray)):
        raise InvalidReplyError("Received unknown response format from relay.")
    return bytes(data), None


# ---------------------------------------------------------------------------
# JSON wire codec
# ---------------------------------------------------------------------------

def to_wire(envelope: RelayEnvelope) -> dict[str, Any]:
    """Make *envelope* JSON-safe by base64-encoding any bytes values."""
    return {
        key: base64.b64encode(value).decode("ascii") if isinstance(value, (bytes, bytearray)) else value
        for key, value in envelope.items()
    }


def from_wire(payload: dict[str, Any]) -> RelayEnvelope:
    """Inverse of ``to_wire`` for reply envelopes."""
    envelope = dict(payload)
    data = envelope.get(PREDICTION_DATA_KEY)
    if isinstance(data, str):
        try:
            envelope[PREDICTION_DATA_KEY] = base64.b64decode(data, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise InvalidReplyError(
                f"Failed to parse response from relay: {exc}"
            ) from exc
    return envelope
