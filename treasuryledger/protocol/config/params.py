# MIT License
# Copyright (c) 2025 Hashborn

from typing import Dict, FrozenSet, Mapping, Optional
from ..types.common import OpType, Role, AmountPolicy, AccountingMode

# Global Constants
DECIMALS = 18
UNIT = 10**DECIMALS

# approve_allowance() authorizes APPROVAL_UNITS whole tokens
APPROVAL_UNITS = 10**12

SECONDS_PER_DAY = 86_400
SECONDS_PER_MONTH = 30 * SECONDS_PER_DAY   # 2592000

# Access profiles: entry point -> roles allowed to call it
_OWNER = frozenset({Role.OWNER})
_ROLE_ADMINS = frozenset({Role.OWNER, Role.ADMIN})

ACCESS_PROFILES: Dict[str, Dict[OpType, FrozenSet[Role]]] = {
    # First generation: Ownable, everything owner-only
    "ownable": {
        OpType.DEPOSIT:                  _OWNER,
        OpType.DISBURSE:                 _OWNER,
        OpType.OWNER_DISBURSE:           _OWNER,
        OpType.GOVERNOR_DISBURSE:        _OWNER,
        OpType.OPERATOR_DISBURSE:        _OWNER,
        OpType.UPDATE_STAKING_ADDRESS:   _OWNER,
        OpType.UPDATE_DISBURSE_INTERVAL: _OWNER,
        OpType.UPDATE_RANGE:             _OWNER,
        OpType.UPDATE_TOKEN:             _OWNER,
        OpType.RETURN_TOKEN:             _OWNER,
        OpType.APPROVE_ALLOWANCE:        _OWNER,
        OpType.GRANT_ROLE:               _ROLE_ADMINS,
        OpType.REVOKE_ROLE:              _ROLE_ADMINS,
    },
    # Access-controlled generation: governors fund, operators run the cadence
    "roles": {
        OpType.DEPOSIT:                  frozenset({Role.GOVERNOR}),
        OpType.DISBURSE:                 frozenset({Role.OPERATOR}),
        OpType.OWNER_DISBURSE:           _OWNER,
        OpType.GOVERNOR_DISBURSE:        frozenset({Role.GOVERNOR, Role.OPERATOR}),
        OpType.OPERATOR_DISBURSE:        frozenset({Role.OPERATOR}),
        OpType.UPDATE_STAKING_ADDRESS:   _OWNER,
        OpType.UPDATE_DISBURSE_INTERVAL: _OWNER,
        OpType.UPDATE_RANGE:             _OWNER,
        OpType.UPDATE_TOKEN:             _OWNER,
        OpType.RETURN_TOKEN:             _OWNER,
        OpType.APPROVE_ALLOWANCE:        _OWNER,
        OpType.GRANT_ROLE:               _ROLE_ADMINS,
        OpType.REVOKE_ROLE:              _ROLE_ADMINS,
    },
}

class TreasuryConfig:
    def __init__(self,
                 network_id: str,
                 disburse_interval: int,
                 range: int = 12,
                 max_range: Optional[int] = 12,
                 policy: AmountPolicy = AmountPolicy.FRACTION_OF_LIVE_BALANCE,
                 accounting_mode: AccountingMode = AccountingMode.LAST_DEPOSIT,
                 zero_means_default: bool = True,
                 # Deposits need approve_allowance() first
                 require_approval: bool = False,
                 access_profile: str = "roles",
                 access_overrides: Optional[Mapping[OpType, FrozenSet[Role]]] = None,
                 address_prefix: str = "trs",
                 decimals: int = DECIMALS):
        if range < 1:
            raise ValueError(f"range must be at least 1, got {range}")
        if max_range is not None and range > max_range:
            raise ValueError(f"range {range} exceeds max_range {max_range}")
        if disburse_interval < 0:
            raise ValueError("disburse_interval must be non-negative")
        if access_profile not in ACCESS_PROFILES:
            raise ValueError(f"Unknown access profile: {access_profile}")

        self.network_id = network_id
        self.disburse_interval = disburse_interval
        self.range = range
        self.max_range = max_range
        self.policy = AmountPolicy(policy)
        self.accounting_mode = AccountingMode(accounting_mode)
        self.zero_means_default = zero_means_default
        self.require_approval = require_approval
        self.access_profile = access_profile
        self.address_prefix = address_prefix
        self.decimals = decimals

        self.access: Dict[OpType, FrozenSet[Role]] = dict(ACCESS_PROFILES[access_profile])
        for op, roles in (access_overrides or {}).items():
            self.access[OpType(op)] = frozenset(Role(r) for r in roles)

    def roles_for(self, op: OpType) -> FrozenSet[Role]:
        return self.access.get(op, _OWNER)

    def access_overrides(self) -> Dict[str, list]:
        """Entries of the capability table that differ from the access profile."""
        profile = ACCESS_PROFILES[self.access_profile]
        return {
            op.value: sorted(r.value for r in roles)
            for op, roles in self.access.items()
            if profile.get(op) != roles
        }

    def to_dict(self) -> dict:
        return {
            "network_id": self.network_id,
            "disburse_interval": self.disburse_interval,
            "range": self.range,
            "max_range": self.max_range,
            "policy": self.policy.value,
            "accounting_mode": self.accounting_mode.value,
            "zero_means_default": self.zero_means_default,
            "require_approval": self.require_approval,
            "access_profile": self.access_profile,
            "address_prefix": self.address_prefix,
            "decimals": self.decimals,
            "access_overrides": self.access_overrides(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TreasuryConfig":
        """Builds a config from a preset name plus overrides (genesis.json "config")."""
        base = NETWORKS.get(data.get("network_id", "devnet"))
        merged = base.to_dict() if base else {}
        merged.update(data)
        merged.setdefault("network_id", "devnet")
        merged.setdefault("disburse_interval", SECONDS_PER_MONTH)
        return cls(**merged)

NETWORKS: Dict[str, TreasuryConfig] = {
    "devnet": TreasuryConfig(
        network_id="devnet",
        disburse_interval=60,
        policy=AmountPolicy.FRACTION_OF_LIVE_BALANCE,
    ),
    "testnet": TreasuryConfig(
        network_id="testnet",
        disburse_interval=SECONDS_PER_DAY,
        policy=AmountPolicy.CALLER_SUPPLIED_BOUNDED,
        accounting_mode=AccountingMode.BALANCE_SNAPSHOT,
    ),
    "mainnet": TreasuryConfig(
        network_id="mainnet",
        disburse_interval=SECONDS_PER_MONTH,
        policy=AmountPolicy.CALLER_SUPPLIED_BOUNDED,
        require_approval=True,
    ),
}

# Default to devnet for now
CURRENT_NETWORK = NETWORKS["devnet"]
