"""Error taxonomy shared by the core and the provider adapters."""

from __future__ import annotations

NOT_FOUND = "not_found"
FORBIDDEN = "forbidden"
UNAUTHORIZED = "unauthorized"
RATE_LIMITED = "rate_limited"
UNAVAILABLE = "unavailable"


class TuicordError(Exception):
    """Base class for all tuicord errors."""


class CommandValidationError(TuicordError):
    """An in-band command was given malformed or missing arguments."""


class PermissionDeniedError(TuicordError):
    """The operator tried to mutate a message they did not author."""


class ProviderError(TuicordError):
    """A provider call failed (network, REST status, permission, not found)."""

    def __init__(self, message: str, *, code: str | None = None, status: int | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.status = status

    @property
    def not_found(self) -> bool:
        return self.code == NOT_FOUND


class ProviderConnectionError(ProviderError):
    """Authentication or the initial connection failed. Fatal at startup."""
