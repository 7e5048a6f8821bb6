"""
Relay Router
============
POST /api/v1/relay/message: deliver one relay envelope to the intermediary.

The body is the flat envelope the initiating device would send across
its point-to-point link. The response is always 200 with a reply
envelope holding exactly one of ``predictionData`` (base64 of the
result JSON) or ``error``. Validation failures are replies, not HTTP
errors; only a body that is not a JSON object is rejected by FastAPI.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, Request, status

from insurance_relay.models.envelope import to_wire
from insurance_relay.services.relay_server import RelayServer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/relay", tags=["relay"])


def get_relay_server(request: Request) -> RelayServer:
    """The RelayServer built at startup; override in tests."""
    return request.app.state.relay_server


@router.post(
    "/message",
    status_code=status.HTTP_200_OK,
    summary="Relay a prediction request envelope",
    description=(
        "Validates the envelope, forwards it to the prediction backend and "
        "returns a reply envelope. Every object body receives a reply."
    ),
    responses={
        200: {"description": "Reply envelope with predictionData or error"},
        422: {"description": "Body is not a JSON object"},
    },
)
async def relay_message(
    envelope: dict[str, Any] = Body(...),
    server: RelayServer = Depends(get_relay_server),
) -> dict[str, Any]:
    reply = await server.handle_message(envelope)
    return to_wire(reply)
