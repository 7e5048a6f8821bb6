"""
Sample Source
=============
Interface to the raw sensor store. The store is authorization-gated per
metric kind and may legitimately hold no data for a window.

Contract for implementations:
- query_samples() raises SampleAuthorizationError if the user has not
  granted (or has revoked) read access for that kind.
- query_samples() raises SampleSourceError for any other query failure
  (timeouts, store unavailable).
- An empty list means "authorized, nothing recorded". It is not an error.

InMemorySampleSource is the reference implementation, used by tests and
by anything that already holds its samples (e.g. an uploaded export).
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import date, datetime
from typing import Optional, Protocol

from insurance_relay.errors import ErrorKind, RelayPipelineError
from insurance_relay.models.metrics import BiologicalSex, MetricKind, Sample

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class SampleSourceError(RelayPipelineError):
    """A sample query failed. Affects only the metric being queried."""

    kind = ErrorKind.AGGREGATION_QUERY_FAILURE


class SampleAuthorizationError(SampleSourceError):
    """Read access for a metric kind or characteristic is not granted."""


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


class SampleSource(Protocol):
    async def query_samples(
        self, kind: MetricKind, start: datetime, end: datetime
    ) -> list[Sample]:
        """Samples of *kind* whose timestamp falls in ``[start, end]``."""
        ...

    async def biological_sex(self) -> BiologicalSex:
        ...

    async def date_of_birth(self) -> Optional[date]:
        ...


# ---------------------------------------------------------------------------
# In-memory implementation
# ---------------------------------------------------------------------------


class InMemorySampleSource:
    """Serves samples from a list held in memory.

    ``authorized_kinds=None`` grants every kind. Characteristics raise
    SampleAuthorizationError when ``characteristics_authorized`` is False.
    """

    def __init__(
        self,
        samples: Iterable[Sample] = (),
        *,
        authorized_kinds: Optional[Iterable[MetricKind]] = None,
        biological_sex: BiologicalSex = BiologicalSex.UNSET,
        date_of_birth: Optional[date] = None,
        characteristics_authorized: bool = True,
    ) -> None:
        self._samples = list(samples)
        self._authorized = None if authorized_kinds is None else frozenset(authorized_kinds)
        self._biological_sex = biological_sex
        self._date_of_birth = date_of_birth
        self._characteristics_authorized = characteristics_authorized

    def revoke(self, kind: MetricKind) -> None:
        """Withdraw read access for *kind* (e.g. the user revoked it mid-session)."""
        current = self._authorized if self._authorized is not None else frozenset(MetricKind)
        self._authorized = current - {kind}

    async def query_samples(
        self, kind: MetricKind, start: datetime, end: datetime
    ) -> list[Sample]:
        if self._authorized is not None and kind not in self._authorized:
            raise SampleAuthorizationError(f"Read access for {kind.value} not granted")

        matched = [
            s for s in self._samples
            if s.kind == kind and start <= s.timestamp <= end
        ]
        logger.debug("Sample query %s returned %d samples", kind.value, len(matched))
        return matched

    async def biological_sex(self) -> BiologicalSex:
        if not self._characteristics_authorized:
            raise SampleAuthorizationError("Read access for biological sex not granted")
        return self._biological_sex

    async def date_of_birth(self) -> Optional[date]:
        if not self._characteristics_authorized:
            raise SampleAuthorizationError("Read access for date of birth not granted")
        return self._date_of_birth
