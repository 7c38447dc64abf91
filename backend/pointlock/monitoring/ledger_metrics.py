"""
backend/pointlock/monitoring/ledger_metrics.py

Purpose:
    Prometheus metrics for wallet ledger writes and slip lifecycle
    transitions.

Dependencies:
    - prometheus_client
"""

from __future__ import annotations

from prometheus_client import Counter

METRIC_ALLOWANCE_CREDITS = Counter(
    "pointlock_allowance_credits_total",
    "Weekly allowance credit attempts by outcome.",
    ["outcome"],  # credited | replayed | ineligible | dry_run | conflict
)
METRIC_WALLET_VERSION_CONFLICTS = Counter(
    "pointlock_wallet_version_conflicts_total",
    "Optimistic-lock misses on wallet writes.",
    ["operation"],
)
METRIC_SLIP_TRANSITIONS = Counter(
    "pointlock_slip_transitions_total",
    "Slip lifecycle operations that completed.",
    ["operation"],  # create | update | lock | delete
)
METRIC_SLIP_REJECTIONS = Counter(
    "pointlock_slip_rejections_total",
    "Slip operations rejected by a gate.",
    ["operation", "code"],
)
