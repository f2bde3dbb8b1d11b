# MIT License
# Copyright (c) 2025 Hashborn

"""
Disbursement amount policies.

A policy answers two questions for the shared disbursement path:
  - what is the current default disburse amount ("unit")
  - which amount does a call actually disburse, given what the caller asked for

Balance, interval and remainder checks are NOT done here; they belong to the
one validation/commit path in `Treasury._disburse`.

  A  FRACTION_OF_LAST_DEPOSIT   unit = deposit_basis // range, amount fixed to the unit
  B  FRACTION_OF_LIVE_BALANCE   unit = balance // range, caller may ask for less
  C  CALLER_SUPPLIED_BOUNDED    unit = deposit_basis // range, caller picks the amount

The zero-means-default sentinel (`state.zero_means_default`) turns a requested
amount of 0 into the unit for B and C. A never takes a caller amount.
"""

from typing import Dict, Optional

from ...protocol.types.common import AmountPolicy, AccountingMode
from ...protocol.types.errors import InvalidAmount, ExceedsDisburseCeiling
from ...protocol.types.treasury import TreasuryState


def deposit_basis(state: TreasuryState) -> int:
    """Amount the fraction-of-deposit policies amortize over `range` periods."""
    if state.accounting_mode == AccountingMode.BALANCE_SNAPSHOT:
        return state.last_updated_treasury_balance
    return state.last_deposited_amount


class DisbursePolicy:
    kind: AmountPolicy

    def default_amount(self, state: TreasuryState, balance: int) -> int:
        raise NotImplementedError

    def resolve(self, requested: Optional[int], state: TreasuryState, balance: int) -> int:
        unit = self.default_amount(state, balance)
        if requested is None:
            return unit
        if not isinstance(requested, int) or isinstance(requested, bool):
            raise InvalidAmount(requested, reason="Disburse amount must be an integer")
        if requested < 0:
            raise InvalidAmount(requested, reason="Disburse amount cannot be negative")
        if requested == 0:
            if state.zero_means_default:
                return unit
            raise InvalidAmount(requested, reason="Disburse amount must be greater than zero")
        return self.bound(requested, unit, balance)

    def bound(self, requested: int, unit: int, balance: int) -> int:
        return requested


class FractionOfLastDeposit(DisbursePolicy):
    kind = AmountPolicy.FRACTION_OF_LAST_DEPOSIT

    def default_amount(self, state: TreasuryState, balance: int) -> int:
        return deposit_basis(state) // state.range

    def resolve(self, requested: Optional[int], state: TreasuryState, balance: int) -> int:
        unit = self.default_amount(state, balance)
        if requested in (None, 0, unit):
            return unit
        raise InvalidAmount(requested, reason="Disburse amount is fixed to the default disburse amount")


class FractionOfLiveBalance(DisbursePolicy):
    kind = AmountPolicy.FRACTION_OF_LIVE_BALANCE

    def default_amount(self, state: TreasuryState, balance: int) -> int:
        return balance // state.range

    def bound(self, requested: int, unit: int, balance: int) -> int:
        if requested > unit:
            raise ExceedsDisburseCeiling(amount=requested, ceiling=unit, balance=balance)
        return requested


class CallerSuppliedBounded(DisbursePolicy):
    kind = AmountPolicy.CALLER_SUPPLIED_BOUNDED

    def default_amount(self, state: TreasuryState, balance: int) -> int:
        return deposit_basis(state) // state.range


POLICIES: Dict[AmountPolicy, DisbursePolicy] = {
    p.kind: p for p in (FractionOfLastDeposit(), FractionOfLiveBalance(), CallerSuppliedBounded())
}


def policy_for(kind: AmountPolicy) -> DisbursePolicy:
    return POLICIES[AmountPolicy(kind)]
