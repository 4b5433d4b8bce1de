"""
Error types raised by the sync engine.
"""

from __future__ import annotations

from enum import Enum


class SyncPhase(str, Enum):
    SCAN = "scan"
    DOWNLOAD = "download"
    RESOLVE_TIMESTAMPS = "resolve-timestamps"
    RECONCILE = "reconcile"


class BackendError(Exception):
    """Remote query failed (network or protocol error)."""

    pass


class StoreError(Exception):
    """Reading from or committing to the wallet database failed."""

    pass


class InconsistentDataError(Exception):
    """Local and remote data do not fit together (e.g. unknown previous output)."""

    pass


class SyncError(Exception):
    """
    A sync pass stopped.

    Wraps the first error raised during the pass together with the phase
    that produced it. Batches committed before the failure stay committed.
    """

    def __init__(self, phase: SyncPhase, cause: BaseException):
        self.phase = phase
        self.cause = cause
        super().__init__(f"Sync failed during {phase.value}: {type(cause).__name__}: {cause}")

    @property
    def retryable(self) -> bool:
        """True when repeating the pass may succeed (transient remote or store failure)."""
        return isinstance(self.cause, (BackendError, StoreError))
