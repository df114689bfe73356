"""Exception hierarchy shared by the decoder, dispatch engine and sinks."""

from __future__ import annotations

__all__ = [
    "RelayError",
    "ConfigurationError",
    "PayloadDecodeError",
    "InvalidRecordTypeError",
    "SinkNotReadyError",
    "RetriesExhaustedError",
]


class RelayError(Exception):
    """Base class for every error raised by the relay itself."""


class ConfigurationError(RelayError):
    """A selected destination is missing required settings."""


class PayloadDecodeError(RelayError):
    """Client payload could not be decoded (never escapes ``decode``)."""


class InvalidRecordTypeError(RelayError):
    """Record type is not one of track / engage / groups."""

    def __init__(self, kind: object):
        super().__init__("Invalid Record Type")
        self.kind = kind


class SinkNotReadyError(RelayError):
    """Destination failed its one-time readiness checks."""

    def __init__(self, sink: str, flags: dict[str, bool]):
        failed = ", ".join(name for name, ok in flags.items() if not ok)
        super().__init__(f"{sink} is not ready ({failed})")
        self.sink = sink
        self.flags = flags


class RetriesExhaustedError(RelayError):
    def __init__(self, attempts: int, last_error: BaseException | None = None):
        super().__init__(f"Failed to insert data after {attempts} attempts")
        self.attempts = attempts
        self.last_error = last_error
