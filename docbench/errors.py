"""Exception types raised by docbench."""

from __future__ import annotations


class DocbenchError(Exception):
    """Base class for errors raised by docbench itself."""


class ConfigError(DocbenchError):
    """Invalid configuration detected before any workload runs."""


class RetryExhausted(DocbenchError):
    """Serialization conflicts outlasted the configured retry policy."""

    def __init__(self, attempts: int) -> None:
        super().__init__(f"transaction still conflicting after {attempts} attempt(s)")
        self.attempts = attempts


class PoolExhausted(DocbenchError):
    """No pooled connection became free within the acquire timeout."""


class UnexpectedResult(DocbenchError):
    """A query returned rows that violate its result contract."""
