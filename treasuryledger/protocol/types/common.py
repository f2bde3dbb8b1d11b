# MIT License
# Copyright (c) 2025 Hashborn

from enum import Enum

class OpType(str, Enum):
    DEPOSIT = "DEPOSIT"

    # Disbursement entry points (same algorithm, different role tier)
    DISBURSE = "DISBURSE"                     # Unified operator-gated entry point
    OWNER_DISBURSE = "OWNER_DISBURSE"
    GOVERNOR_DISBURSE = "GOVERNOR_DISBURSE"
    OPERATOR_DISBURSE = "OPERATOR_DISBURSE"

    # Administration
    UPDATE_STAKING_ADDRESS = "UPDATE_STAKING_ADDRESS"
    UPDATE_DISBURSE_INTERVAL = "UPDATE_DISBURSE_INTERVAL"
    UPDATE_RANGE = "UPDATE_RANGE"
    UPDATE_TOKEN = "UPDATE_TOKEN"
    RETURN_TOKEN = "RETURN_TOKEN"            # Emergency sweep
    APPROVE_ALLOWANCE = "APPROVE_ALLOWANCE"

    # Role management
    GRANT_ROLE = "GRANT_ROLE"
    REVOKE_ROLE = "REVOKE_ROLE"

DISBURSE_OPS = frozenset({
    OpType.DISBURSE,
    OpType.OWNER_DISBURSE,
    OpType.GOVERNOR_DISBURSE,
    OpType.OPERATOR_DISBURSE,
})

class Role(str, Enum):
    OWNER = "OWNER"          # Exactly one identity, fixed at construction
    ADMIN = "ADMIN"          # May grant/revoke roles
    GOVERNOR = "GOVERNOR"
    OPERATOR = "OPERATOR"

class AmountPolicy(str, Enum):
    FRACTION_OF_LAST_DEPOSIT = "FRACTION_OF_LAST_DEPOSIT"   # A: deposit basis / range, fixed
    FRACTION_OF_LIVE_BALANCE = "FRACTION_OF_LIVE_BALANCE"   # B: balance / range, caller may go lower
    CALLER_SUPPLIED_BOUNDED = "CALLER_SUPPLIED_BOUNDED"     # C: caller amount, bounded by balance and floor

class AccountingMode(str, Enum):
    LAST_DEPOSIT = "LAST_DEPOSIT"
    BALANCE_SNAPSHOT = "BALANCE_SNAPSHOT"

class TreasuryPhase(str, Enum):
    UNINITIALIZED = "UNINITIALIZED"
    FUNDED = "FUNDED"
    PARTIALLY_DISBURSED = "PARTIALLY_DISBURSED"
    DEPLETED = "DEPLETED"
