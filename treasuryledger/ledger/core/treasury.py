# MIT License
# Copyright (c) 2025 Hashborn

"""
Treasury engine.

Holds one `TreasuryState` and drives every mutation of it: deposits, the four
disbursement entry points (one shared algorithm), and the owner-tier
administrative levers. Each operation authorizes the caller, checks all
preconditions, performs at most one token call and only then commits counters,
so a rejected call never leaves partial state behind.
"""

from contextlib import contextmanager
from typing import Callable, Dict, List, Optional, Tuple
import json
import logging
import threading
import time

from ...protocol.types.common import OpType, Role, TreasuryPhase, AccountingMode, DISBURSE_OPS
from ...protocol.types.errors import (
    TreasuryError,
    ExceedsBalance,
    InsufficientAllowance,
    InsufficientRemainingDeposit,
    IntervalNotReached,
    InvalidAddress,
    InvalidAmount,
    InvalidRange,
    ReentrantCall,
    TransferFailed,
)
from ...protocol.types.treasury import TreasuryState, RoleAssignment
from ...protocol.config.params import TreasuryConfig, CURRENT_NETWORK, APPROVAL_UNITS
from ...protocol.crypto.addresses import is_valid_address, is_zero_address
from ..storage.db import StorageDB
from . import events
from .events import EventBus
from .policy import policy_for
from .roles import RoleRegistry
from .token import FungibleToken

logger = logging.getLogger(__name__)

STATE_KEY = "treasury:state"
CONFIG_KEY = "treasury:config"
JOURNAL_SEQ_KEY = "treasury:journal_seq"
ROLE_PREFIX = "role:"


def _wall_clock() -> int:
    return int(time.time())


class Treasury:
    def __init__(self,
                 state: TreasuryState,
                 token: FungibleToken,
                 roles: RoleRegistry,
                 config: Optional[TreasuryConfig] = None,
                 clock: Optional[Callable[[], int]] = None,
                 db: Optional[StorageDB] = None,
                 event_bus: Optional[EventBus] = None):
        if token.address != state.token:
            raise ValueError(f"Token collaborator {token.address} does not match state token {state.token}")
        if roles.owner != state.owner:
            raise ValueError("Role registry owner does not match treasury owner")

        self.state = state
        self.token = token
        self.roles = roles
        self.config = config or CURRENT_NETWORK
        self.clock = clock or _wall_clock
        self.db = db
        self.event_bus = event_bus or EventBus()

        self._lock = threading.RLock()
        # Thread currently inside an operation (single-flight guard)
        self._active_thread: Optional[int] = None
        self._journal_seq = 0
        # Journal rows not yet written; flushed by persist()
        self._pending_journal: List[Tuple[int, str, str]] = []

    @classmethod
    def create(cls,
               address: str,
               token: FungibleToken,
               owner: str,
               staking_target: str,
               config: Optional[TreasuryConfig] = None,
               clock: Optional[Callable[[], int]] = None,
               db: Optional[StorageDB] = None,
               event_bus: Optional[EventBus] = None,
               roles: Optional[RoleRegistry] = None) -> "Treasury":
        """Fresh treasury with parameters taken from `config` (CURRENT_NETWORK by default)."""
        config = config or CURRENT_NETWORK
        for field, value in (("address", address), ("staking_target", staking_target), ("token", token.address)):
            if is_zero_address(value) or not is_valid_address(value):
                raise InvalidAddress(value, field=field)

        state = TreasuryState(
            address=address,
            token=token.address,
            staking_target=staking_target,
            owner=owner,
            disburse_interval=config.disburse_interval,
            range=config.range,
            policy=config.policy,
            accounting_mode=config.accounting_mode,
            zero_means_default=config.zero_means_default,
        )
        return cls(state, token, roles or RoleRegistry(owner), config=config, clock=clock, db=db, event_bus=event_bus)

    # --- Operation scaffolding ---

    @contextmanager
    def _operation(self, op: OpType, caller: str):
        """Serializes operations and rejects re-entry from the thread already inside one."""
        try:
            if self._active_thread == threading.get_ident():
                raise ReentrantCall(op.value)
            with self._lock:
                self._active_thread = threading.get_ident()
                try:
                    yield
                finally:
                    self._active_thread = None
        except TreasuryError as e:
            logger.warning(f"{op.value} rejected for {caller}: {e}")
            self.event_bus.emit(events.OPERATION_REJECTED, op_type=op.value, caller=caller, error=e)
            raise

    def _authorize(self, op: OpType, caller: str) -> Role:
        allowed = self.config.roles_for(op)
        return self.roles.authorize(caller, *[r for r in Role if r in allowed])

    def _check_address(self, address: Optional[str], field: str) -> None:
        if is_zero_address(address) or not is_valid_address(address):
            raise InvalidAddress(address, field=field)

    def _journal(self, op: OpType, **data) -> None:
        if self.db is None:
            return
        self._journal_seq += 1
        self._pending_journal.append((self._journal_seq, op.value, json.dumps(data, sort_keys=True, default=str)))

    # --- Read accessors ---

    def balance(self) -> int:
        """Live balance of the held token. Never cached."""
        with self._lock:
            return self.token.balance_of(self.state.address)

    def default_disburse_amount(self) -> int:
        with self._lock:
            return policy_for(self.state.policy).default_amount(self.state, self.balance())

    def phase(self) -> TreasuryPhase:
        with self._lock:
            s = self.state
            balance = self.balance()
            if s.deposit_count == 0 and s.disbursement_count == 0 and balance == 0:
                return TreasuryPhase.UNINITIALIZED
            if balance == 0:
                return TreasuryPhase.DEPLETED
            if s.disbursements_since_deposit > 0:
                return TreasuryPhase.PARTIALLY_DISBURSED
            return TreasuryPhase.FUNDED

    @property
    def journal_seq(self) -> int:
        return self._journal_seq

    def next_disbursement_at(self) -> int:
        """Earliest timestamp at which a disbursement passes the interval gate."""
        with self._lock:
            if self.state.last_disbursement_timestamp == 0:
                return 0
            return self.state.last_disbursement_timestamp + self.state.disburse_interval

    # --- Deposit ---

    def deposit_to_treasury(self, caller: str, amount: int) -> int:
        with self._operation(OpType.DEPOSIT, caller):
            self._authorize(OpType.DEPOSIT, caller)
            s = self.state

            if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
                raise InvalidAmount(amount, reason="Deposit amount must be greater than zero")

            if self.config.require_approval and not s.is_approved:
                raise InsufficientAllowance(
                    source=caller, amount=amount, allowance=s.approved_allowance,
                    message="Treasury has not been approved to receive deposits",
                )

            allowance = self.token.allowance(caller, s.address)
            if allowance < amount:
                raise InsufficientAllowance(source=caller, amount=amount, allowance=allowance)

            caller_balance = self.token.balance_of(caller)
            if caller_balance < amount:
                raise ExceedsBalance(amount=amount, balance=caller_balance,
                                     message="Deposit amount exceeds caller balance")

            self._call_token(OpType.DEPOSIT, self.token.transfer_from, s.address, caller, s.address, amount)

            now = self.clock()
            s.last_deposited_amount = amount
            s.last_deposit_timestamp = now
            s.deposit_historic_total += amount
            s.deposit_count += 1
            s.disbursements_since_deposit = 0
            if s.accounting_mode == AccountingMode.BALANCE_SNAPSHOT:
                s.last_updated_treasury_balance = self.token.balance_of(s.address)

            logger.info(f"Deposit of {amount} from {caller} (total deposited {s.deposit_historic_total})")
            self._journal(OpType.DEPOSIT, caller=caller, amount=amount, timestamp=now)
            self.event_bus.emit(events.DEPOSIT, caller=caller, amount=amount, timestamp=now,
                                deposit_historic_total=s.deposit_historic_total)
            return amount

    # --- Disbursement entry points ---

    def disburse(self, caller: str, amount: Optional[int] = None) -> int:
        return self._disburse(caller, amount, OpType.DISBURSE)

    def owner_disburse(self, caller: str, amount: Optional[int] = None) -> int:
        return self._disburse(caller, amount, OpType.OWNER_DISBURSE)

    def governor_disburse(self, caller: str, amount: Optional[int] = None) -> int:
        return self._disburse(caller, amount, OpType.GOVERNOR_DISBURSE)

    def operator_disburse(self, caller: str, amount: Optional[int] = None) -> int:
        return self._disburse(caller, amount, OpType.OPERATOR_DISBURSE)

    def _disburse(self, caller: str, amount: Optional[int], op: OpType) -> int:
        """
        Shared disbursement algorithm. Checks, in order:
          1. caller holds a role allowed for `op`
          2. interval elapsed since the last disbursement (first one is exempt)
          3. effective amount resolved by the configured policy
          4. effective amount is positive and within the live balance
          5. remainder is zero or at least one default unit
        Then transfers to the staking target and commits the counters.
        """
        if op not in DISBURSE_OPS:
            raise ValueError(f"{op} is not a disbursement entry point")

        with self._operation(op, caller):
            self._authorize(op, caller)
            s = self.state
            now = self.clock()

            last = s.last_disbursement_timestamp
            if last != 0 and now - last < s.disburse_interval:
                raise IntervalNotReached(now=now, last_disbursement=last, interval=s.disburse_interval)

            balance = self.token.balance_of(s.address)
            policy = policy_for(s.policy)
            unit = policy.default_amount(s, balance)
            effective = policy.resolve(amount, s, balance)

            if balance == 0 or effective == 0:
                raise ExceedsBalance(amount=effective, balance=balance,
                                     message="Insufficient tokens in Treasury")
            if effective > balance:
                raise ExceedsBalance(amount=effective, balance=balance)

            remaining = balance - effective
            if remaining != 0 and remaining < unit:
                raise InsufficientRemainingDeposit(amount=effective, remaining=remaining, unit=unit)

            self._call_token(op, self.token.transfer, s.address, s.staking_target, effective)

            s.last_disbursed_amount = effective
            s.last_disbursement_timestamp = now
            s.disburse_historic_total += effective
            s.disbursement_count += 1
            s.disbursements_since_deposit += 1

            logger.info(f"Disbursed {effective} to {s.staking_target} via {op.value} "
                        f"(remaining {remaining}, total disbursed {s.disburse_historic_total})")
            self._journal(op, caller=caller, amount=effective, to=s.staking_target, timestamp=now)
            self.event_bus.emit(events.DISBURSEMENT, caller=caller, op_type=op.value, amount=effective,
                                to=s.staking_target, timestamp=now, remaining=remaining)
            return effective

    def _call_token(self, op: OpType, fn: Callable[..., bool], *args) -> None:
        try:
            ok = fn(*args)
        except TreasuryError:
            raise
        except Exception as e:
            raise TransferFailed(op=op.value, reason=str(e)) from e
        if not ok:
            raise TransferFailed(op=op.value, reason="token returned false")

    # --- Administration ---

    def update_staking_address(self, caller: str, new_address: str) -> str:
        op = OpType.UPDATE_STAKING_ADDRESS
        with self._operation(op, caller):
            self._authorize(op, caller)
            self._check_address(new_address, "staking_target")
            old = self.state.staking_target
            self.state.staking_target = new_address
            logger.info(f"Staking address updated: {old} -> {new_address}")
            self._journal(op, caller=caller, old=old, new=new_address)
            self.event_bus.emit(events.STAKING_ADDRESS_UPDATED, caller=caller, old=old, new=new_address)
            return new_address

    def update_disburse_interval(self, caller: str, seconds: int) -> int:
        op = OpType.UPDATE_DISBURSE_INTERVAL
        with self._operation(op, caller):
            self._authorize(op, caller)
            # No lower bound: operators shorten it to 1 second on test networks
            if not isinstance(seconds, int) or isinstance(seconds, bool) or seconds < 0:
                raise InvalidAmount(seconds, reason="Disburse interval must be a non-negative integer")
            old = self.state.disburse_interval
            self.state.disburse_interval = seconds
            logger.info(f"Disburse interval updated: {old}s -> {seconds}s")
            self._journal(op, caller=caller, old=old, new=seconds)
            self.event_bus.emit(events.DISBURSE_INTERVAL_UPDATED, caller=caller, old=old, new=seconds)
            return seconds

    def update_range(self, caller: str, new_range: int) -> int:
        op = OpType.UPDATE_RANGE
        with self._operation(op, caller):
            self._authorize(op, caller)
            max_range = self.config.max_range
            if not isinstance(new_range, int) or isinstance(new_range, bool):
                raise InvalidAmount(new_range, reason="Range must be an integer")
            if new_range < 1 or (max_range is not None and new_range > max_range):
                raise InvalidRange(new_range, max_range=max_range)
            old = self.state.range
            self.state.range = new_range
            logger.info(f"Range updated: {old} -> {new_range}")
            self._journal(op, caller=caller, old=old, new=new_range)
            self.event_bus.emit(events.RANGE_UPDATED, caller=caller, old=old, new=new_range)
            return new_range

    def update_token(self, caller: str, token: FungibleToken) -> str:
        op = OpType.UPDATE_TOKEN
        with self._operation(op, caller):
            self._authorize(op, caller)
            address = getattr(token, "address", None)
            self._check_address(address, "token")
            if not isinstance(token, FungibleToken):
                raise InvalidAddress(address, field="token")
            old = self.state.token
            self.token = token
            self.state.token = address
            logger.info(f"Token updated: {old} -> {address}")
            self._journal(op, caller=caller, old=old, new=address)
            self.event_bus.emit(events.TOKEN_UPDATED, caller=caller, old=old, new=address)
            return address

    def return_token(self, caller: str, token: FungibleToken, to: str, amount: int) -> int:
        """Emergency sweep of any token the treasury holds. Disbursement counters are untouched."""
        op = OpType.RETURN_TOKEN
        with self._operation(op, caller):
            self._authorize(op, caller)
            self._check_address(to, "to")
            if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
                raise InvalidAmount(amount, reason="Return amount must be greater than zero")
            held = token.balance_of(self.state.address)
            if amount > held:
                raise ExceedsBalance(amount=amount, balance=held,
                                     message="Return amount exceeds treasury balance")

            self._call_token(op, token.transfer, self.state.address, to, amount)

            logger.info(f"Returned {amount} of {token.address} to {to}")
            self._journal(op, caller=caller, token=token.address, to=to, amount=amount)
            self.event_bus.emit(events.TOKEN_RETURNED, caller=caller, token=token.address, to=to, amount=amount)
            return amount

    def approve_allowance(self, caller: str, decimals: Optional[int] = None, spender: Optional[str] = None) -> int:
        """Records an allowance of APPROVAL_UNITS whole tokens for `spender`. Idempotent."""
        op = OpType.APPROVE_ALLOWANCE
        with self._operation(op, caller):
            self._authorize(op, caller)
            if decimals is None:
                decimals = self.config.decimals
            if not isinstance(decimals, int) or isinstance(decimals, bool) or decimals < 0:
                raise InvalidAmount(decimals, reason="Decimals must be a non-negative integer")
            spender = spender or self.state.address
            self._check_address(spender, "spender")

            s = self.state
            s.approved_spender = spender
            s.approved_allowance = APPROVAL_UNITS * 10**decimals
            s.is_approved = True

            logger.info(f"Approved {spender} for {s.approved_allowance}")
            self._journal(op, caller=caller, spender=spender, allowance=s.approved_allowance)
            self.event_bus.emit(events.APPROVAL, caller=caller, spender=spender, allowance=s.approved_allowance)
            return s.approved_allowance

    # --- Role management ---

    def grant_role(self, caller: str, role: Role, account: str) -> bool:
        op = OpType.GRANT_ROLE
        with self._operation(op, caller):
            self._authorize(op, caller)
            changed = self.roles.grant(role, account)
            if changed:
                self._journal(op, caller=caller, role=Role(role).value, account=account)
                self.event_bus.emit(events.ROLE_GRANTED, caller=caller, role=Role(role).value, account=account)
            return changed

    def revoke_role(self, caller: str, role: Role, account: str) -> bool:
        op = OpType.REVOKE_ROLE
        with self._operation(op, caller):
            self._authorize(op, caller)
            changed = self.roles.revoke(role, account)
            if changed:
                self._journal(op, caller=caller, role=Role(role).value, account=account)
                self.event_bus.emit(events.ROLE_REVOKED, caller=caller, role=Role(role).value, account=account)
            return changed

    # --- Persistence ---

    def persist(self):
        """Writes treasury state, config, role assignments and pending journal rows to DB."""
        if self.db is None:
            return
        with self._lock:
            states = {
                STATE_KEY: self.state.model_dump_json(),
                CONFIG_KEY: json.dumps(self.config.to_dict()),
                JOURNAL_SEQ_KEY: str(self._journal_seq),
            }
            current: Dict[str, RoleAssignment] = {a.address: a for a in self.roles.assignments()}
            for addr, assignment in current.items():
                states[f"{ROLE_PREFIX}{addr}"] = assignment.model_dump_json()
            stale = [key for key in self.db.get_state_by_prefix(ROLE_PREFIX)
                     if key[len(ROLE_PREFIX):] not in current]

            self.db.write_batch(states, deletes=stale, journal=self._pending_journal)
            self._pending_journal = []

    @classmethod
    def load(cls,
             db: StorageDB,
             token: FungibleToken,
             config: Optional[TreasuryConfig] = None,
             clock: Optional[Callable[[], int]] = None,
             event_bus: Optional[EventBus] = None) -> Optional["Treasury"]:
        """Restores a persisted treasury, or returns None if the DB holds none."""
        raw_state = db.get_state(STATE_KEY)
        if not raw_state:
            return None
        state = TreasuryState.model_validate_json(raw_state)

        if config is None:
            raw_config = db.get_state(CONFIG_KEY)
            config = TreasuryConfig.from_dict(json.loads(raw_config)) if raw_config else CURRENT_NETWORK

        assignments = [RoleAssignment.model_validate_json(v) for v in db.get_state_by_prefix(ROLE_PREFIX).values()]
        roles = RoleRegistry.from_assignments(state.owner, assignments)

        treasury = cls(state, token, roles, config=config, clock=clock, db=db, event_bus=event_bus)
        seq = db.get_state(JOURNAL_SEQ_KEY)
        if seq:
            treasury._journal_seq = int(seq)
        logger.info(f"Loaded treasury {state.address} (deposits={state.deposit_count}, "
                    f"disbursements={state.disbursement_count})")
        return treasury

    def snapshot_dict(self) -> dict:
        """Plain view of the ledger for RPC and snapshots."""
        with self._lock:
            data = self.state.model_dump(mode="json")
            data["balance"] = self.balance()
            data["default_disburse_amount"] = self.default_disburse_amount()
            data["phase"] = self.phase().value
            data["next_disbursement_at"] = self.next_disbursement_at()
            return data
