"""Error taxonomy for the relay.

- ConfigError:   bad or missing settings, fatal at startup
- FetchError:    remote API unreachable or non-2xx, aborts one cycle
- StoreError:    durable storage failure or constraint violation
- DeliveryError: connector unreachable or non-2xx
"""
from __future__ import annotations


class RelayError(Exception):
    """Base exception for all relay errors."""

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        self.message = message
        self.cause = cause
        super().__init__(message)

    def __str__(self) -> str:
        if self.cause is not None:
            return f"{self.message} | Caused by: {self.cause}"
        return self.message


class ConfigError(RelayError):
    pass


class FetchError(RelayError):
    pass


class StoreError(RelayError):
    pass


class ConflictError(StoreError):
    """Insert of a problem id that is already tracked."""


class NotFoundError(StoreError):
    """Update of a problem id that is not tracked."""


class DeliveryError(RelayError):
    """A single delivery attempt to a connector failed.

    ``status_code`` and ``body`` are set when the connector answered with a
    non-2xx response; both are None for transport-level failures.
    """

    def __init__(
        self,
        connector: str,
        message: str,
        status_code: int | None = None,
        body: str | None = None,
        cause: Exception | None = None,
    ) -> None:
        self.connector = connector
        self.status_code = status_code
        self.body = body
        super().__init__(f"{connector}: {message}", cause=cause)
