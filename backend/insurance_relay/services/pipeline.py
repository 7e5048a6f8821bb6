"""
Prediction Pipeline
===================
Wires the initiating side end to end:

    SampleSource -> Aggregator -> build_prediction_request -> RelayClient

The metrics snapshot is taken once per run and handed whole to the
request builder. Nothing here is a singleton; build one pipeline per
device session and pass it where it is needed.
"""

from __future__ import annotations

import logging
from typing import Optional

from insurance_relay.config import Settings
from insurance_relay.models.metrics import AggregatedMetrics
from insurance_relay.services.aggregator import Aggregator
from insurance_relay.services.relay_client import RelayClient, RelayClientState
from insurance_relay.services.request_builder import RequestDefaults, build_prediction_request

logger = logging.getLogger(__name__)


class PredictionPipeline:
    """Aggregates fresh metrics and relays one prediction request."""

    def __init__(
        self,
        aggregator: Aggregator,
        client: RelayClient,
        *,
        defaults: RequestDefaults = RequestDefaults(),
    ) -> None:
        self._aggregator = aggregator
        self._client = client
        self._defaults = defaults

    @classmethod
    def from_settings(
        cls, aggregator: Aggregator, client: RelayClient, settings: Settings
    ) -> "PredictionPipeline":
        return cls(aggregator, client, defaults=RequestDefaults.from_settings(settings))

    async def run(
        self, *, smoker: bool, metrics: Optional[AggregatedMetrics] = None
    ) -> RelayClientState:
        """Send a request built from *metrics*, or from a fresh aggregation if omitted.

        Raises RelayBusyError if the client already has a request in flight.
        """
        snapshot = metrics if metrics is not None else await self._aggregator.aggregate()
        request = build_prediction_request(snapshot, smoker=smoker, defaults=self._defaults)
        logger.info("Built prediction request for age %d", request.age)
        return await self._client.send(request)
