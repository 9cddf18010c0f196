"""Reimbursement lifecycle for ledger events.

Automatic states move forward only, WAITING -> CLAIMABLE -> RESOLVED. CLAIMED and PAID are
reached through operator actions and are never touched by the sweep or by reconciliation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.common import lifespan_session

from .errors import InvalidStatusTransition, PersistenceError
from .metrics import LEDGER_STATUS_TRANSITIONS_TOTAL
from .normalizer import Clock, utcnow
from .repository import InventoryLedgerRepository

logger = logging.getLogger(__name__)

DEFAULT_CLAIMABLE_AFTER_DAYS = 7


class LedgerStatus(str, Enum):
    WAITING = "WAITING"
    CLAIMABLE = "CLAIMABLE"
    RESOLVED = "RESOLVED"
    CLAIMED = "CLAIMED"
    PAID = "PAID"


OPERATOR_STATUSES = frozenset({LedgerStatus.CLAIMED, LedgerStatus.PAID})
_AUTOMATIC_RANK = {LedgerStatus.WAITING: 0, LedgerStatus.CLAIMABLE: 1, LedgerStatus.RESOLVED: 2}
_OPERATOR_TRANSITIONS = {
    LedgerStatus.CLAIMED: LedgerStatus.CLAIMABLE,
    LedgerStatus.PAID: LedgerStatus.CLAIMED,
}


@dataclass(slots=True)
class StatusSweepResult:
    updated_count: int
    waiting_to_claimable: int
    claimable_to_resolved: int


def age_in_days(event_date: date, now: datetime) -> int:
    """Whole days elapsed since midnight UTC of ``event_date``."""

    start = datetime.combine(event_date, time.min, tzinfo=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return (now - start).days


def compute_status(
    event_date: date,
    unreconciled_quantity: int,
    *,
    now: datetime,
    claimable_after_days: int = DEFAULT_CLAIMABLE_AFTER_DAYS,
) -> LedgerStatus:
    if age_in_days(event_date, now) < claimable_after_days:
        return LedgerStatus.WAITING
    if unreconciled_quantity > 0:
        return LedgerStatus.CLAIMABLE
    return LedgerStatus.RESOLVED


def advance_status(current: str | LedgerStatus, computed: LedgerStatus) -> LedgerStatus:
    """Combine a stored status with a freshly computed one without ever demoting it."""

    current_status = LedgerStatus(current)
    if current_status in OPERATOR_STATUSES:
        return current_status
    if _AUTOMATIC_RANK[computed] < _AUTOMATIC_RANK[current_status]:
        return current_status
    return computed


def ensure_operator_transition(current: str | LedgerStatus, target: LedgerStatus) -> None:
    """Raise ``InvalidStatusTransition`` unless ``target`` is reachable by an operator."""

    current_status = LedgerStatus(current)
    required = _OPERATOR_TRANSITIONS.get(target)
    if required is None or current_status is not required:
        raise InvalidStatusTransition(current_status.value, target.value)


def claimable_cutoff(now: datetime, claimable_after_days: int = DEFAULT_CLAIMABLE_AFTER_DAYS) -> date:
    """Latest event date that counts as old enough to claim at ``now``."""

    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return (now.astimezone(timezone.utc) - timedelta(days=claimable_after_days)).date()


class StatusSweeper:
    """Batch promotion of persisted event statuses; idempotent."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        claimable_after_days: int = DEFAULT_CLAIMABLE_AFTER_DAYS,
        clock: Clock = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._claimable_after_days = claimable_after_days
        self._clock = clock

    async def sweep(self) -> StatusSweepResult:
        cutoff = claimable_cutoff(self._clock(), self._claimable_after_days)
        try:
            async with lifespan_session(self._session_factory) as session:
                repository = InventoryLedgerRepository(session)
                waiting_to_claimable = await repository.promote_waiting_to_claimable(cutoff=cutoff)
                claimable_to_resolved = await repository.resolve_reconciled_claimables()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Status sweep failed: {exc}", stage="sweep") from exc

        LEDGER_STATUS_TRANSITIONS_TOTAL.labels(source="WAITING", target="CLAIMABLE").inc(waiting_to_claimable)
        LEDGER_STATUS_TRANSITIONS_TOTAL.labels(source="CLAIMABLE", target="RESOLVED").inc(claimable_to_resolved)
        return StatusSweepResult(
            updated_count=waiting_to_claimable + claimable_to_resolved,
            waiting_to_claimable=waiting_to_claimable,
            claimable_to_resolved=claimable_to_resolved,
        )
