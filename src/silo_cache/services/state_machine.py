"""Fetch state machine.

Tracks the status of one query: ``IDLE -> LOADING -> {READY, ERROR}``, with
``READY`` also reachable directly from a cache hit. There is no visible
"stale" status; staleness is handled by background revalidation.
"""

from __future__ import annotations

from enum import Enum

from silo_cache.shared.errors import DomainError, ErrorCode, ErrorContext


class FetchStatus(str, Enum):
    """Observable status of a query."""

    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


ALLOWED_TRANSITIONS: dict[FetchStatus, frozenset[FetchStatus]] = {
    FetchStatus.IDLE: frozenset({FetchStatus.LOADING, FetchStatus.READY}),
    FetchStatus.LOADING: frozenset({FetchStatus.READY, FetchStatus.ERROR}),
    # READY -> READY: background update or dismissed error banner
    FetchStatus.READY: frozenset({FetchStatus.LOADING, FetchStatus.READY}),
    # ERROR -> READY: a later load found a cache entry
    FetchStatus.ERROR: frozenset({FetchStatus.LOADING, FetchStatus.READY}),
}


class FetchStateMachine:
    """State machine guarding the status transitions of a query.

    Args:
        key: Cache key of the owning query, used for error context
        status: Initial status
    """

    def __init__(self, key: str, status: FetchStatus = FetchStatus.IDLE) -> None:
        self.key = key
        self._status = status

    @property
    def status(self) -> FetchStatus:
        return self._status

    def can_transition(self, target: FetchStatus) -> bool:
        return target in ALLOWED_TRANSITIONS[self._status]

    def transition(self, target: FetchStatus) -> FetchStatus:
        """Move to ``target``.

        Returns:
            The previous status

        Raises:
            DomainError: INVALID_STATE_TRANSITION if the move is not allowed
        """
        if not self.can_transition(target):
            raise DomainError(
                ErrorCode.INVALID_STATE_TRANSITION,
                f"Illegal fetch state transition {self._status.value} -> {target.value}",
                ErrorContext(
                    operation="transition",
                    key=self.key,
                    additional_data={"from": self._status, "to": target},
                ),
            )

        previous, self._status = self._status, target
        return previous
