"""Error taxonomy shared by every domain service."""

from __future__ import annotations

from chatline.infra.rate_limit import RateLimitExceeded


class DomainError(Exception):
    """Base class for domain failures surfaced to API callers."""

    reason: str = "unknown"

    def __init__(self, reason: str | None = None) -> None:
        super().__init__(reason or self.reason)
        if reason:
            self.reason = reason


class NotFoundError(DomainError):
    reason = "not_found"


class ForbiddenError(DomainError):
    reason = "forbidden"


class ConflictError(DomainError):
    reason = "conflict"


class ValidationError(DomainError):
    reason = "invalid"


class UpstreamFailure(DomainError):
    """A database or object-storage dependency failed."""

    reason = "upstream_failure"


class QuotaExceeded(RateLimitExceeded):
    """Raised when a per-actor quota is spent."""


__all__ = [
    "ConflictError",
    "DomainError",
    "ForbiddenError",
    "NotFoundError",
    "QuotaExceeded",
    "UpstreamFailure",
    "ValidationError",
]
