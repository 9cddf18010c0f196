"""Prometheus metrics for the ledger service."""

from __future__ import annotations

from typing import Final

from prometheus_client import Counter, Histogram

_RECONCILE_OUTCOMES: Final = ("created", "updated", "unchanged", "failed", "ineligible")

# Pipeline checkpoints ---------------------------------------------------------------------
LEDGER_CHECKPOINTS_TOTAL: Final = Counter(
    "ledger_checkpoints_total",
    "Structured checkpoint events emitted by the ledger sync pipeline.",
    labelnames=("checkpoint",),
)

LEDGER_SYNC_DURATION_SECONDS: Final = Histogram(
    "ledger_sync_duration_seconds",
    "Wall time of one end-to-end ledger sync run.",
    labelnames=("outcome",),
    buckets=(1, 5, 10, 30, 60, 120, 300, 600, 900),
)

LEDGER_SYNC_FAILURES_TOTAL: Final = Counter(
    "ledger_sync_failures_total",
    "Ledger sync runs that failed, by pipeline stage.",
    labelnames=("stage",),
)

# Reconciliation ---------------------------------------------------------------------------
LEDGER_RECONCILE_EVENTS_TOTAL: Final = Counter(
    "ledger_reconcile_events_total",
    "Ledger events seen by the reconciliation engine, by outcome.",
    labelnames=("outcome",),
)

# Status lifecycle -------------------------------------------------------------------------
LEDGER_STATUS_TRANSITIONS_TOTAL: Final = Counter(
    "ledger_status_transitions_total",
    "Ledger event status transitions applied by sweeps and operators.",
    labelnames=("source", "target"),
)


def normalise_outcome(value: str) -> str:
    """Return a bounded label value for the reconciliation outcome counter."""

    outcome = (value or "failed").strip().lower()
    if outcome not in _RECONCILE_OUTCOMES:
        return "failed"
    return outcome
