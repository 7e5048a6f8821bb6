"""
Relay Channel
=============
The constrained point-to-point link between the initiating device and
the intermediary. A channel:

- has an activation state, and only an ACTIVATED channel may send
- knows whether its peer is currently reachable
- sends one envelope and returns the peer's single reply, or raises
  ChannelSendError if the send failed before any reply arrived

When the channel is deactivated, its ReconnectPolicy decides whether
the management layer reactivates it.

Two implementations:
- LoopbackChannel: hands envelopes straight to an in-process RelayServer
- HttpRelayChannel: POSTs envelopes to the relay's FastAPI route
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

import httpx

from insurance_relay.config import Settings
from insurance_relay.errors import ErrorKind, RelayPipelineError
from insurance_relay.models.envelope import InvalidReplyError, RelayEnvelope, from_wire, to_wire

if TYPE_CHECKING:
    from insurance_relay.services.relay_server import RelayServer

logger = logging.getLogger(__name__)

RELAY_MESSAGE_PATH = "/api/v1/relay/message"
HEALTH_PATH = "/api/v1/health"


# ---------------------------------------------------------------------------
# Errors / state
# ---------------------------------------------------------------------------


class ChannelSendError(RelayPipelineError):
    """The envelope could not be delivered or no reply came back."""

    kind = ErrorKind.TRANSPORT_SEND_FAILURE


class ChannelActivationError(RelayPipelineError):
    """The channel could not be brought to the ACTIVATED state."""

    kind = ErrorKind.PRECONDITION_UNMET


class ActivationState(str, Enum):
    NOT_ACTIVATED = "not_activated"
    INACTIVE = "inactive"
    ACTIVATED = "activated"


@dataclass(frozen=True)
class ReconnectPolicy:
    reactivate_on_deactivate: bool = True
    max_attempts: int = 3

    @classmethod
    def from_settings(cls, settings: Settings) -> "ReconnectPolicy":
        return cls(
            reactivate_on_deactivate=settings.reactivate_on_deactivate,
            max_attempts=settings.max_reactivation_attempts,
        )


# ---------------------------------------------------------------------------
# Base channel
# ---------------------------------------------------------------------------


class RelayChannel:
    """Activation lifecycle shared by every channel implementation."""

    def __init__(self, reconnect_policy: ReconnectPolicy | None = None) -> None:
        self.reconnect_policy = reconnect_policy or ReconnectPolicy()
        self._activation_state = ActivationState.NOT_ACTIVATED

    @property
    def activation_state(self) -> ActivationState:
        return self._activation_state

    @property
    def is_reachable(self) -> bool:
        raise NotImplementedError

    async def activate(self) -> ActivationState:
        """Bring the channel up. Raises ChannelActivationError on failure."""
        try:
            await self._open()
        except ChannelActivationError:
            self._activation_state = ActivationState.NOT_ACTIVATED
            raise
        self._activation_state = ActivationState.ACTIVATED
        logger.info("%s activated", type(self).__name__)
        return self._activation_state

    async def handle_deactivation(self) -> ActivationState:
        """Called when the link drops; applies the reconnect policy."""
        self._activation_state = ActivationState.INACTIVE
        logger.info("%s deactivated", type(self).__name__)

        if not self.reconnect_policy.reactivate_on_deactivate:
            return self._activation_state

        for attempt in range(1, self.reconnect_policy.max_attempts + 1):
            try:
                return await self.activate()
            except ChannelActivationError as exc:
                logger.warning(
                    "Reactivation attempt %d/%d failed: %s",
                    attempt, self.reconnect_policy.max_attempts, exc,
                )
        return self._activation_state

    async def send_message(self, envelope: RelayEnvelope) -> RelayEnvelope:
        raise NotImplementedError

    async def _open(self) -> None:
        """Subclass hook for activation. Raise ChannelActivationError on failure."""


# ---------------------------------------------------------------------------
# Implementations
# ---------------------------------------------------------------------------


class LoopbackChannel(RelayChannel):
    """Delivers envelopes directly to an in-process RelayServer."""

    def __init__(
        self,
        server: RelayServer,
        *,
        reachable: bool = True,
        reconnect_policy: ReconnectPolicy | None = None,
    ) -> None:
        super().__init__(reconnect_policy)
        self._server = server
        self.reachable = reachable

    @property
    def is_reachable(self) -> bool:
        return self.reachable

    async def send_message(self, envelope: RelayEnvelope) -> RelayEnvelope:
        if not self.reachable:
            raise ChannelSendError("Failed to send message to relay: peer went away")
        return await self._server.handle_message(dict(envelope))


class HttpRelayChannel(RelayChannel):
    """Sends envelopes to a relay server over HTTP."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        reconnect_policy: ReconnectPolicy | None = None,
    ) -> None:
        super().__init__(reconnect_policy)
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._reachable = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "HttpRelayChannel":
        return cls(
            settings.relay_base_url,
            timeout=settings.relay_reply_timeout_seconds,
            reconnect_policy=ReconnectPolicy.from_settings(settings),
        )

    @property
    def is_reachable(self) -> bool:
        return self._reachable

    async def check_reachability(self) -> bool:
        """Probe the relay's health endpoint and cache the answer."""
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.get(f"{self._base_url}{HEALTH_PATH}")
            self._reachable = response.is_success
        except httpx.HTTPError as exc:
            logger.debug("Relay health probe failed: %s", exc)
            self._reachable = False
        return self._reachable

    async def _open(self) -> None:
        if not await self.check_reachability():
            raise ChannelActivationError(f"Relay at {self._base_url} did not respond")

    async def send_message(self, envelope: RelayEnvelope) -> RelayEnvelope:
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(
                    f"{self._base_url}{RELAY_MESSAGE_PATH}",
                    json=to_wire(envelope),
                )
        except httpx.TransportError as exc:
            self._reachable = False
            raise ChannelSendError(f"Failed to send message to relay: {exc}") from exc
        except httpx.HTTPError as exc:
            raise ChannelSendError(f"Failed to send message to relay: {exc}") from exc

        if not response.is_success:
            raise ChannelSendError(
                f"Failed to send message to relay: HTTP {response.status_code}"
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise InvalidReplyError(f"Failed to parse response from relay: {exc}") from exc
        if not isinstance(payload, dict):
            raise InvalidReplyError("Received unknown response format from relay.")
        return from_wire(payload)
