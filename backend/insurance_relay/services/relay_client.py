"""
Relay Client
============
The initiating side of the relay. Owns a small state machine:

    IDLE -> SENDING -> AWAITING_REPLY -> COMPLETED | FAILED -> IDLE

Rules:
- At most one request is in flight per client. A second send() while one
  is outstanding raises RelayBusyError and leaves the state untouched.
- Before anything is sent, the channel must be ACTIVATED and its peer
  reachable. Otherwise the client goes straight to FAILED -> IDLE
  without touching the network.
- Every failure ends up as a published error string plus an ErrorKind.
  Nothing is retried; callers re-invoke from IDLE.
- The channel never times out on its own, so the client bounds each
  round trip with ``reply_timeout`` seconds.

State is published as a whole RelayClientState through a StatePublisher.
The terminal state (prediction or error) is carried over into the
following IDLE state so observers can keep showing it.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional

from pydantic import ValidationError

from insurance_relay.config import Settings
from insurance_relay.errors import ErrorKind, RelayPipelineError
from insurance_relay.models.envelope import InvalidReplyError, unpack_reply
from insurance_relay.models.prediction import PredictionRequest, PredictionResult
from insurance_relay.services.channel import ActivationState, ChannelSendError, RelayChannel
from insurance_relay.services.publisher import StatePublisher

logger = logging.getLogger(__name__)

DEFAULT_REPLY_TIMEOUT_SECONDS = 30.0

CHANNEL_INACTIVE_MESSAGE = "Relay channel is not activated."
PEER_UNREACHABLE_MESSAGE = (
    "Relay is not reachable. Please ensure the relay is installed and running."
)


# ---------------------------------------------------------------------------
# State
# ---------------------------------------------------------------------------


class RelayPhase(str, Enum):
    IDLE = "idle"
    SENDING = "sending"
    AWAITING_REPLY = "awaiting_reply"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class RelayClientState:
    phase: RelayPhase = RelayPhase.IDLE
    prediction: Optional[PredictionResult] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None

    @property
    def is_loading(self) -> bool:
        return self.phase in (RelayPhase.SENDING, RelayPhase.AWAITING_REPLY)


class RelayBusyError(RelayPipelineError):
    """A request is already outstanding on this client."""

    kind = ErrorKind.REQUEST_IN_FLIGHT


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class RelayClient:
    """Sends one PredictionRequest at a time across a RelayChannel."""

    def __init__(
        self,
        channel: RelayChannel,
        *,
        reply_timeout: float = DEFAULT_REPLY_TIMEOUT_SECONDS,
        publisher: Optional[StatePublisher[RelayClientState]] = None,
    ) -> None:
        self._channel = channel
        self._reply_timeout = reply_timeout
        self.publisher = publisher or StatePublisher(RelayClientState())
        self._in_flight = False

    @classmethod
    def from_settings(cls, channel: RelayChannel, settings: Settings) -> "RelayClient":
        return cls(channel, reply_timeout=settings.relay_reply_timeout_seconds)

    @property
    def state(self) -> RelayClientState:
        return self.publisher.value

    async def send(self, request: PredictionRequest) -> RelayClientState:
        """Run one round trip and return its terminal (COMPLETED/FAILED) state.

        Raises RelayBusyError if another request is still outstanding.
        """
        self._claim()
        return await self._run(request)

    def submit(self, request: PredictionRequest) -> asyncio.Task[RelayClientState]:
        """Like send(), but returns a task handle immediately.

        The single-flight check happens here, before the task is created.
        Raises RuntimeError, without claiming the client, when called
        outside a running event loop.
        """
        loop = asyncio.get_running_loop()
        self._claim()
        task = loop.create_task(self._run(request))
        task.add_done_callback(self._on_task_done)
        return task

    # ---- Internals -------------------------------------------------------

    def _claim(self) -> None:
        if self._in_flight:
            logger.warning("Rejected send: a request is already in flight")
            raise RelayBusyError("A prediction request is already in flight")
        self._in_flight = True

    async def _run(self, request: PredictionRequest) -> RelayClientState:
        try:
            if self._channel.activation_state is not ActivationState.ACTIVATED:
                return self._fail(CHANNEL_INACTIVE_MESSAGE, ErrorKind.PRECONDITION_UNMET)
            if not self._channel.is_reachable:
                return self._fail(PEER_UNREACHABLE_MESSAGE, ErrorKind.PRECONDITION_UNMET)

            self.publisher.publish(RelayClientState(phase=RelayPhase.SENDING))
            envelope = request.to_envelope()
            self.publisher.publish(RelayClientState(phase=RelayPhase.AWAITING_REPLY))

            try:
                reply = await asyncio.wait_for(
                    self._channel.send_message(envelope), timeout=self._reply_timeout
                )
            except asyncio.TimeoutError:
                return self._fail(
                    f"Timed out waiting for a reply from relay after {self._reply_timeout:g}s.",
                    ErrorKind.TRANSPORT_SEND_FAILURE,
                )
            except ChannelSendError as exc:
                return self._fail(str(exc), exc.kind)
            except InvalidReplyError as exc:
                return self._fail(str(exc), exc.kind)
            except asyncio.CancelledError:
                self._fail("Relay request was cancelled.", ErrorKind.TRANSPORT_SEND_FAILURE)
                raise
            except Exception as exc:
                logger.exception("Unexpected channel failure")
                return self._fail(
                    f"Failed to send message to relay: {exc}",
                    ErrorKind.TRANSPORT_SEND_FAILURE,
                )

            return self._handle_reply(reply)
        finally:
            self._in_flight = False

    def _on_task_done(self, task: asyncio.Task[RelayClientState]) -> None:
        if task.cancelled():
            # A task cancelled before its first step never reaches _run's finally.
            self._in_flight = False
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Relay task failed", exc_info=exc)

    def _handle_reply(self, reply: dict) -> RelayClientState:
        try:
            data, remote_error = unpack_reply(reply)
        except InvalidReplyError as exc:
            return self._fail(str(exc), exc.kind)

        if remote_error is not None:
            return self._fail(f"Error from relay: {remote_error}", ErrorKind.REMOTE_ERROR)

        try:
            prediction = PredictionResult.from_bytes(data)
        except ValidationError as exc:
            return self._fail(
                f"Failed to parse response from relay: {exc}",
                ErrorKind.REPLY_DECODE_FAILURE,
            )

        logger.info("Relay round trip completed (health score %.1f)", prediction.health_score)
        return self._finish(RelayClientState(phase=RelayPhase.COMPLETED, prediction=prediction))

    def _fail(self, message: str, kind: ErrorKind) -> RelayClientState:
        logger.warning("Relay request failed (%s): %s", kind.value, message)
        return self._finish(
            RelayClientState(phase=RelayPhase.FAILED, error=message, error_kind=kind)
        )

    def _finish(self, terminal: RelayClientState) -> RelayClientState:
        # Released first so a subscriber may start the next request on IDLE.
        self._in_flight = False
        self.publisher.publish(terminal)
        self.publisher.publish(replace(terminal, phase=RelayPhase.IDLE))
        return terminal
