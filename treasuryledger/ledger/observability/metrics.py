# MIT License
# Copyright (c) 2025 Hashborn

"""
Prometheus Metrics Exporter

Exports treasury ledger metrics in Prometheus format.

Metrics:
- Treasury balance, historic totals, default disburse amount
- Parameters (range, disburse interval)
- Role membership counts
- Executed operations by type, rejected operations by error code
"""

import weakref

from prometheus_client import Counter, Gauge, Histogram, CollectorRegistry

from ...protocol.types.common import Role
from ..core import events

# Create registry for metrics
metrics_registry = CollectorRegistry()

# ═══════════════════════════════════════════════════════════════════
# LEDGER METRICS
# ═══════════════════════════════════════════════════════════════════

treasury_balance = Gauge(
    'treasuryledger_balance',
    'Treasury token balance (base units)',
    registry=metrics_registry
)

deposit_historic_total = Gauge(
    'treasuryledger_deposit_historic_total',
    'Lifetime deposited amount (base units)',
    registry=metrics_registry
)

disburse_historic_total = Gauge(
    'treasuryledger_disburse_historic_total',
    'Lifetime disbursed amount (base units)',
    registry=metrics_registry
)

default_disburse_amount = Gauge(
    'treasuryledger_default_disburse_amount',
    'Current default disburse amount (base units)',
    registry=metrics_registry
)

last_disbursement_timestamp = Gauge(
    'treasuryledger_last_disbursement_timestamp',
    'Unix timestamp of the last disbursement',
    registry=metrics_registry
)

disburse_range = Gauge(
    'treasuryledger_range',
    'Range divisor used by fraction-based policies',
    registry=metrics_registry
)

disburse_interval_seconds = Gauge(
    'treasuryledger_disburse_interval_seconds',
    'Minimum seconds between disbursements',
    registry=metrics_registry
)

role_members = Gauge(
    'treasuryledger_role_members',
    'Number of identities holding a role',
    ['role'],
    registry=metrics_registry
)

# ═══════════════════════════════════════════════════════════════════
# OPERATION METRICS
# ═══════════════════════════════════════════════════════════════════

operations_total = Counter(
    'treasuryledger_operations_total',
    'Total number of executed operations',
    ['op_type'],
    registry=metrics_registry
)

rejections_total = Counter(
    'treasuryledger_rejections_total',
    'Total number of rejected operations',
    ['error_code'],
    registry=metrics_registry
)

disbursement_amount = Histogram(
    'treasuryledger_disbursement_amount_tokens',
    'Disbursed amount per disbursement (whole tokens)',
    buckets=[0.01, 0.1, 1, 10, 100, 1000, 10000, 100000],
    registry=metrics_registry
)


# ═══════════════════════════════════════════════════════════════════
# HELPER FUNCTIONS
# ═══════════════════════════════════════════════════════════════════

# Buses whose events already feed the counters
_attached_buses = weakref.WeakSet()

_EVENT_OPS = {
    events.DEPOSIT: "DEPOSIT",
    events.TOKEN_RETURNED: "RETURN_TOKEN",
    events.STAKING_ADDRESS_UPDATED: "UPDATE_STAKING_ADDRESS",
    events.DISBURSE_INTERVAL_UPDATED: "UPDATE_DISBURSE_INTERVAL",
    events.RANGE_UPDATED: "UPDATE_RANGE",
    events.TOKEN_UPDATED: "UPDATE_TOKEN",
    events.APPROVAL: "APPROVE_ALLOWANCE",
    events.ROLE_GRANTED: "GRANT_ROLE",
    events.ROLE_REVOKED: "REVOKE_ROLE",
}


def attach(event_bus, decimals: int = 18):
    """
    Subscribe the operation counters to a treasury's EventBus.

    Args:
        event_bus: EventBus of the treasury
        decimals: Token decimals, used to express disbursements in whole tokens
    """
    if event_bus in _attached_buses:
        return
    _attached_buses.add(event_bus)

    for event_type, op_type in _EVENT_OPS.items():
        event_bus.subscribe(event_type, lambda _op=op_type, **_: operations_total.labels(op_type=_op).inc())

    def _on_disbursement(op_type, amount, **_):
        operations_total.labels(op_type=op_type).inc()
        disbursement_amount.observe(amount / 10**decimals)

    def _on_rejected(error, **_):
        rejections_total.labels(error_code=getattr(error, "code", type(error).__name__)).inc()

    event_bus.subscribe(events.DISBURSEMENT, _on_disbursement)
    event_bus.subscribe(events.OPERATION_REJECTED, _on_rejected)


def update_metrics(treasury):
    """
    Update all gauges from treasury state.
    Called after operations and when metrics are scraped.

    Args:
        treasury: Treasury instance
    """
    state = treasury.state

    treasury_balance.set(treasury.balance())
    deposit_historic_total.set(state.deposit_historic_total)
    disburse_historic_total.set(state.disburse_historic_total)
    default_disburse_amount.set(treasury.default_disburse_amount())
    last_disbursement_timestamp.set(state.last_disbursement_timestamp)
    disburse_range.set(state.range)
    disburse_interval_seconds.set(state.disburse_interval)

    for role in Role:
        role_members.labels(role=role.value).set(len(treasury.roles.members(role)))
