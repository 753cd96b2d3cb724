# incidentwatch/errors.py
from __future__ import annotations

from typing import Optional


class IncidentWatchError(Exception):
    """Base class for pipeline errors."""


class ConfigError(IncidentWatchError):
    """Missing credentials or settings. Aborts a run before any item is processed."""


class AuthorizationError(IncidentWatchError):
    """Caller is not allowed to run an administrative operation."""


class ProviderError(IncidentWatchError):
    """Transient failure talking to an external provider (network, 5xx, rate limit)."""

    def __init__(self, message: str, source: Optional[str] = None, status: Optional[int] = None):
        super().__init__(message)
        self.source = source
        self.status = status

    def __str__(self) -> str:
        msg = super().__str__()
        return f"{self.source}: {msg}" if self.source else msg


class PayloadError(IncidentWatchError):
    """Raw item cannot be classified or normalized (missing text, bad shape)."""


class PersistenceError(IncidentWatchError):
    """Insert/update against the store failed."""


class DuplicateContentError(PersistenceError):
    """Uniqueness constraint violated (same content hash already staged)."""
