"""
Fungible token collaborator.

The treasury only ever uses the four operations of `FungibleToken`. The
in-memory implementation backs the node and the tests; its accounts are cached
and persisted to `StorageDB` the same way ledger state is.
"""
from typing import Dict, Optional, Protocol, runtime_checkable
import logging
from threading import RLock

from ...protocol.types.treasury import TokenAccount
from ..storage.db import StorageDB

logger = logging.getLogger(__name__)


@runtime_checkable
class FungibleToken(Protocol):
    address: str

    def balance_of(self, address: str) -> int: ...

    def transfer(self, sender: str, to: str, amount: int) -> bool: ...

    def transfer_from(self, spender: str, owner: str, to: str, amount: int) -> bool: ...

    def allowance(self, owner: str, spender: str) -> int: ...


class InMemoryToken:
    """ERC-20 style balances and allowances. Transfers return False instead of reverting."""

    def __init__(self, address: str, db: Optional[StorageDB] = None, symbol: str = "PURSE"):
        self.address = address
        self.symbol = symbol
        self.db = db
        # Cache for modified/accessed accounts: address -> TokenAccount
        self._accounts: Dict[str, TokenAccount] = {}
        self._lock = RLock()

    def _key(self, address: str) -> str:
        return f"tok:{self.address}:{address}"

    def get_account(self, address: str) -> TokenAccount:
        if address in self._accounts:
            return self._accounts[address]

        if self.db is not None:
            raw_json = self.db.get_state(self._key(address))
            if raw_json:
                acc = TokenAccount.model_validate_json(raw_json)
                self._accounts[address] = acc
                return acc

        acc = TokenAccount(address=address)
        self._accounts[address] = acc
        return acc

    def persist(self):
        """Writes cached accounts to DB."""
        if self.db is None:
            return
        with self._lock:
            for addr, acc in self._accounts.items():
                self.db.set_state(self._key(addr), acc.model_dump_json())

    # --- Token operations ---

    def balance_of(self, address: str) -> int:
        with self._lock:
            return self.get_account(address).balance

    def allowance(self, owner: str, spender: str) -> int:
        with self._lock:
            return self.get_account(owner).allowances.get(spender, 0)

    def transfer(self, sender: str, to: str, amount: int) -> bool:
        _check_amount(amount)
        with self._lock:
            src = self.get_account(sender)
            if src.balance < amount:
                logger.debug(f"{self.symbol} transfer rejected: {sender} has {src.balance}, needs {amount}")
                return False
            dst = self.get_account(to)
            src.balance -= amount
            dst.balance += amount
            return True

    def transfer_from(self, spender: str, owner: str, to: str, amount: int) -> bool:
        _check_amount(amount)
        with self._lock:
            src = self.get_account(owner)
            allowed = src.allowances.get(spender, 0)
            if allowed < amount or src.balance < amount:
                logger.debug(f"{self.symbol} transferFrom rejected: allowance={allowed} balance={src.balance} amount={amount}")
                return False
            src.allowances[spender] = allowed - amount
            return self.transfer(owner, to, amount)

    # --- Helpers outside the treasury's interface ---

    def approve(self, owner: str, spender: str, amount: int) -> None:
        _check_amount(amount)
        with self._lock:
            self.get_account(owner).allowances[spender] = amount

    def mint(self, to: str, amount: int) -> None:
        _check_amount(amount)
        with self._lock:
            self.get_account(to).balance += amount


def _check_amount(amount: int) -> None:
    if not isinstance(amount, int) or amount < 0:
        raise ValueError(f"Token amount must be a non-negative integer, got {amount!r}")
