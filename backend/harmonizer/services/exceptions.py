"""Errors raised by the harmonization services.

Routers translate these to HTTP status codes; nothing here is retried
automatically.
"""
from dataclasses import dataclass


class HarmonizationError(Exception):
    """Base class for harmonization failures."""


class NotFoundError(HarmonizationError):
    """Raised when the target plan does not exist."""


class InvalidStateError(HarmonizationError):
    """Raised when the target plan cannot be analysed as stored (e.g. no framework)."""


class UnavailableError(HarmonizationError):
    """Raised when the data layer fails during the snapshot read. Safe to retry."""


class SnapshotTooLargeError(HarmonizationError):
    """Raised when a tenant's data exceeds the per-analysis scan limits."""


@dataclass(frozen=True)
class DataIntegrityWarning:
    """Non-fatal data gap found while indexing or resolving.

    kind is one of: unknown_control, dangling_edge, unknown_confidence,
    duplicate_control.
    """
    kind: str
    message: str
    plan_id: int | None = None
    task_id: int | None = None
    control_id: int | None = None
