from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from .models import Ticket
from .state import TicketStatus

_SECONDS_PER_HOUR = 3600.0
_COMPARE_DIGITS = 9


class SLAStatus(str, Enum):
    OK = "OK"
    APPROACHING = "Approaching"
    BREACHED = "Breached"


@dataclass(slots=True, frozen=True)
class SLAPolicy:
    """Targets, in hours, for each SLA clock."""

    tta_hours: float = 4.0
    ttt_hours: float = 8.0
    ttr_hours: float = 24.0
    ttl_hours: float = 72.0
    approaching_ratio: float = 0.8

    def __post_init__(self) -> None:
        for name in ("tta_hours", "ttt_hours", "ttr_hours", "ttl_hours"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be greater than zero")
        if not 0 < self.approaching_ratio <= 1:
            raise ValueError("approaching_ratio must be within (0, 1]")

    def classify(self, elapsed_hours: float, target_hours: float) -> SLAStatus:
        # rounded so that e.g. 24 * 0.8 compares equal to an elapsed 19.2
        elapsed = round(elapsed_hours, _COMPARE_DIGITS)
        if elapsed >= round(target_hours, _COMPARE_DIGITS):
            return SLAStatus.BREACHED
        if elapsed >= round(target_hours * self.approaching_ratio, _COMPARE_DIGITS):
            return SLAStatus.APPROACHING
        return SLAStatus.OK


@dataclass(slots=True, frozen=True)
class SLATimer:
    target: float
    elapsed: float
    status: SLAStatus


@dataclass(slots=True, frozen=True)
class SLASnapshot:
    """Derived view of a ticket's SLA clocks at ``computed_at``."""

    tta: SLATimer
    ttt: SLATimer
    ttr: SLATimer
    ttl: SLATimer
    reopen_count: int
    computed_at: datetime

    def timers(self) -> dict[str, SLATimer]:
        return {"TTA": self.tta, "TTT": self.ttt, "TTR": self.ttr, "TTL": self.ttl}


def _hours_between(start: datetime, end: datetime) -> float:
    return max(0.0, (end - start).total_seconds() / _SECONDS_PER_HOUR)


def _resolution_instant(ticket: Ticket) -> datetime:
    candidates = [value for value in (ticket.resolved_at, ticket.closed_at) if value is not None]
    if candidates:
        return min(candidates)
    return ticket.updated_at


class SLACalculator:
    """Compute SLA clocks from ticket timestamps.

    Clocks stop at the instant their condition was met, so repeated
    evaluation against a later ``now`` returns the same frozen value.
    """

    def __init__(self, policy: SLAPolicy | None = None) -> None:
        self._policy = policy or SLAPolicy()

    @property
    def policy(self) -> SLAPolicy:
        return self._policy

    def compute(self, ticket: Ticket, *, now: datetime) -> SLASnapshot:
        policy = self._policy

        response_ref = ticket.first_response_at or now
        if ticket.status in (TicketStatus.RESOLVED, TicketStatus.CLOSED):
            resolve_ref = _resolution_instant(ticket)
        else:
            resolve_ref = now
        if ticket.status is TicketStatus.CLOSED and ticket.closed_at is not None:
            live_ref = ticket.closed_at
        else:
            live_ref = now

        return SLASnapshot(
            tta=self._timer(ticket.created_at, response_ref, policy.tta_hours),
            ttt=self._timer(ticket.created_at, response_ref, policy.ttt_hours),
            ttr=self._timer(ticket.created_at, resolve_ref, policy.ttr_hours),
            ttl=self._timer(ticket.created_at, live_ref, policy.ttl_hours),
            reopen_count=ticket.reopen_count,
            computed_at=now,
        )

    def _timer(self, start: datetime, reference: datetime, target: float) -> SLATimer:
        elapsed = _hours_between(start, reference)
        return SLATimer(target=target, elapsed=elapsed, status=self._policy.classify(elapsed, target))
