"""
Error taxonomy for interop runs

Every error carries a short ``reason`` string. The reason is what ends up in
the ``interop-failure:`` line of an endpoint and in the Failure outcome of
the run.
"""

from typing import Optional


class InteropError(Exception):
    """Base class for all scenario and orchestration errors"""

    default_reason = "interop failure"

    def __init__(self, reason: Optional[str] = None, detail: Optional[str] = None):
        self.reason = reason or self.default_reason
        self.detail = detail
        message = self.reason if not detail else f"{self.reason} ({detail})"
        super().__init__(message)


class HandshakeError(InteropError):
    default_reason = "handshake"


class GreetingMismatch(InteropError):
    default_reason = "unexpected greeting"


class TagMismatch(InteropError):
    """A bulk-transfer segment carried the wrong tag byte"""

    default_reason = "unexpected tag value"

    def __init__(self, expected: int, observed: int, segment: int, offset: int):
        self.expected = expected
        self.observed = observed
        self.segment = segment
        self.offset = offset
        super().__init__(
            detail=f"segment {segment} at offset {offset}: expected {expected}, received {observed}"
        )


class StreamTruncation(InteropError):
    """The bulk-transfer stream ended before the last segment was complete"""

    default_reason = "unexpected end of stream"

    def __init__(self, segment: int, offset: int, received: int):
        self.segment = segment
        self.offset = offset
        self.received = received
        super().__init__(
            detail=f"segment {segment} at offset {offset}: received {received} bytes"
        )


class UncleanClose(InteropError):
    default_reason = "peer did not close cleanly"


class TransportError(InteropError):
    default_reason = "transport error"


class UnsupportedScenario(InteropError):
    """Scenario id unknown to this implementation, reported as exit code 127"""

    default_reason = "unsupported scenario"

    def __init__(self, scenario_id: str):
        self.scenario_id = scenario_id
        super().__init__(detail=scenario_id)


class EndpointTimeout(InteropError):
    """Raised when an endpoint process exceeds its timeout"""

    default_reason = "timeout"


class ProcessCrash(InteropError):
    """An endpoint process died from a signal or could not be launched"""

    default_reason = "process crashed"


# Prefix of the last stderr line an endpoint writes when a scenario fails
FAILURE_MARKER = 'interop-failure: '
