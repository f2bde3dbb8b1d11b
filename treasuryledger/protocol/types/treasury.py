from pydantic import BaseModel, Field
from typing import Dict, List, Optional
from .common import Role, AmountPolicy, AccountingMode

class TreasuryState(BaseModel):
    """Counters and parameters of one treasury. Balance is always read from the token."""
    address: str                      # Treasury identity on the token ledger
    token: str                        # Identity of the held token
    staking_target: str               # Receives disbursements
    owner: str

    # Historic counters (monotone)
    deposit_historic_total: int = 0
    disburse_historic_total: int = 0

    last_deposited_amount: int = 0
    last_deposit_timestamp: int = 0
    last_disbursed_amount: int = 0
    last_disbursement_timestamp: int = 0  # 0 = never disbursed

    # Balance right after the latest deposit (BALANCE_SNAPSHOT accounting)
    last_updated_treasury_balance: int = 0

    # Parameters
    disburse_interval: int
    range: int = Field(default=12, ge=1)
    policy: AmountPolicy = AmountPolicy.FRACTION_OF_LIVE_BALANCE
    accounting_mode: AccountingMode = AccountingMode.LAST_DEPOSIT
    zero_means_default: bool = True

    # Allowance
    is_approved: bool = False
    approved_spender: Optional[str] = None
    approved_allowance: int = 0

    # Operation counters
    deposit_count: int = 0
    disbursement_count: int = 0
    disbursements_since_deposit: int = 0

class RoleAssignment(BaseModel):
    """Roles explicitly granted to one identity (owner roles are implicit)."""
    address: str
    roles: List[Role] = Field(default_factory=list)

class TokenAccount(BaseModel):
    address: str
    balance: int = 0
    # spender -> remaining allowance
    allowances: Dict[str, int] = Field(default_factory=dict)
