"""
Error Taxonomy
==============
Every failure in the relay pipeline belongs to exactly one ErrorKind.
None of them are retried automatically; each one ends the operation that
raised it. Concrete exception classes live beside the code that raises
them and subclass RelayPipelineError so callers can read ``.kind``.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    PRECONDITION_UNMET = "precondition_unmet"
    TRANSPORT_SEND_FAILURE = "transport_send_failure"
    VALIDATION_FAILURE = "validation_failure"
    GATEWAY_REQUEST_FAILURE = "gateway_request_failure"
    GATEWAY_HTTP_ERROR = "gateway_http_error"
    GATEWAY_DECODE_FAILURE = "gateway_decode_failure"
    REPLY_ENCODE_FAILURE = "reply_encode_failure"
    REPLY_DECODE_FAILURE = "reply_decode_failure"
    AGGREGATION_QUERY_FAILURE = "aggregation_query_failure"
    REQUEST_IN_FLIGHT = "request_in_flight"
    # Reply carried an {"error": ...} from the intermediary.
    REMOTE_ERROR = "remote_error"


class RelayPipelineError(Exception):
    """Base class for every error raised inside the relay pipeline."""

    kind: ErrorKind = ErrorKind.TRANSPORT_SEND_FAILURE
