"""Custom exception hierarchy for pypolyglot."""

from __future__ import annotations


class PolyglotError(Exception):
    """Base exception for all pypolyglot errors."""


class PolyglotConfigError(PolyglotError):
    """Invalid or missing startup configuration."""


class PolyglotTransportError(PolyglotError):
    """MQTT-level failure (connect, publish, not connected)."""

    def __init__(self, message: str, *, topic: str = "") -> None:
        self.topic = topic
        super().__init__(message)


class PolyglotProtocolError(PolyglotError):
    """Malformed payload, unknown message key or unknown node command."""


class CorrelationTimeoutError(PolyglotError, TimeoutError):
    """No result message was received for a correlated request in time.

    Distinct from :class:`CorrelationRejectedError` so callers can apply a
    different retry policy to a silent Polyglot than to an explicit failure.
    """

    def __init__(self, key: str, timeout: float) -> None:
        self.key = key
        self.timeout = timeout
        super().__init__(f"Polyglot result message not received for {key} within {timeout}s")


class CorrelationRejectedError(PolyglotError):
    """Polyglot reported a failure for a correlated request."""

    def __init__(self, key: str, reason: str) -> None:
        self.key = key
        self.reason = reason
        super().__init__(reason)


class ConfigLoopDetectedError(PolyglotError):
    """Too many config messages were received within the loop-guard window."""


class UnknownNodeTypeError(PolyglotError):
    """A config entry references a node_def_id with no declared Node class."""

    def __init__(self, node_def_id: str, *, address: str = "") -> None:
        self.node_def_id = node_def_id
        self.address = address
        super().__init__(f"Config node with address {address} has an invalid class {node_def_id}")
