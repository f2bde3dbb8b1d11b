# MIT License
# Copyright (c) 2025 Hashborn

"""
Error types surfaced by the treasury ledger.

Every error carries a stable `code`, a human readable `message` and a
`details` mapping, so it can be logged, returned over RPC, or stored in an
operation receipt without losing information. A rejected operation never
leaves partial state behind; the ledger stays usable after any of these.
"""

import json
from typing import Any, Dict, Mapping, Optional


class TreasuryError(Exception):
    """Base class for treasury domain errors."""

    code: str = "TREASURY_ERROR"

    def __init__(self, message: str = "", *, details: Optional[Mapping[str, Any]] = None) -> None:
        self.message = message or self.__class__.__name__
        self.details = dict(details or {})
        super().__init__(self.__str__())

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}

    def __str__(self) -> str:
        if self.details:
            packed = json.dumps(self.details, sort_keys=True, separators=(",", ":"), default=str)
            return f"{self.code}: {self.message} [{packed}]"
        return f"{self.code}: {self.message}"


class Unauthorized(TreasuryError):
    """Caller does not hold any role allowed to call the entry point."""
    code = "UNAUTHORIZED"

    def __init__(self, required_role: str, caller: str, *, message: str = "caller is missing role") -> None:
        self.required_role = str(getattr(required_role, "value", required_role))
        self.caller = caller
        super().__init__(message, details={"required_role": self.required_role, "caller": caller})


class IntervalNotReached(TreasuryError):
    """Disbursement attempted before `disburse_interval` elapsed."""
    code = "INTERVAL_NOT_REACHED"

    def __init__(self, *, now: int, last_disbursement: int, interval: int,
                 message: str = "Disbursement interval not reached") -> None:
        self.next_allowed = last_disbursement + interval
        super().__init__(message, details={
            "now": now,
            "last_disbursement_timestamp": last_disbursement,
            "disburse_interval": interval,
            "next_allowed_timestamp": self.next_allowed,
        })


class ExceedsBalance(TreasuryError):
    """Requested or computed amount is larger than what the treasury holds."""
    code = "EXCEEDS_BALANCE"

    def __init__(self, *, amount: int, balance: int,
                 message: str = "Amount exceeds remaining deposit in Treasury") -> None:
        super().__init__(message, details={"amount": amount, "balance": balance})


class ExceedsDisburseCeiling(ExceedsBalance):
    """Explicit amount is above the policy's default disburse amount."""
    code = "EXCEEDS_DISBURSE_CEILING"

    def __init__(self, *, amount: int, ceiling: int, balance: int) -> None:
        super().__init__(amount=amount, balance=balance,
                         message="Input disburse amount exceeds default disburse amount")
        self.details["ceiling"] = ceiling


class InsufficientRemainingDeposit(TreasuryError):
    """Disbursement would leave a nonzero remainder below one default unit."""
    code = "INSUFFICIENT_REMAINING_DEPOSIT"

    def __init__(self, *, amount: int, remaining: int, unit: int) -> None:
        super().__init__(
            "Treasury remaining deposit is less than default disburse amount",
            details={"amount": amount, "remaining": remaining, "default_disburse_amount": unit},
        )


class InvalidRange(TreasuryError):
    code = "INVALID_RANGE"

    def __init__(self, value: int, *, max_range: Optional[int] = None) -> None:
        if value < 1:
            message = "Range must be at least 1"
        else:
            message = f"Range cannot exceed {max_range}"
        d: Dict[str, Any] = {"range": value}
        if max_range is not None:
            d["max_range"] = max_range
        super().__init__(message, details=d)


class InvalidAddress(TreasuryError):
    code = "INVALID_ADDRESS"

    def __init__(self, address: Optional[str], *, field: str = "address") -> None:
        super().__init__(f"Invalid {field}", details={"field": field, "address": address})


class InsufficientAllowance(TreasuryError):
    """Treasury is not allowed to pull the deposit amount from the source."""
    code = "INSUFFICIENT_ALLOWANCE"

    def __init__(self, *, source: str, amount: int, allowance: int,
                 message: str = "Insufficient allowance for deposit") -> None:
        super().__init__(message, details={"source": source, "amount": amount, "allowance": allowance})


class InvalidAmount(TreasuryError):
    code = "INVALID_AMOUNT"

    def __init__(self, amount: Any, *, reason: str) -> None:
        super().__init__(reason, details={"amount": amount})


class TransferFailed(TreasuryError):
    """Token collaborator refused or failed a transfer; nothing was committed."""
    code = "TRANSFER_FAILED"

    def __init__(self, *, op: str, reason: str = "") -> None:
        d = {"op": op}
        if reason:
            d["reason"] = reason
        super().__init__("Token transfer failed", details=d)


class ReentrantCall(TreasuryError):
    """An operation was started while another one is running on the same treasury."""
    code = "REENTRANT_CALL"

    def __init__(self, op: str) -> None:
        super().__init__("Reentrant call rejected", details={"op": op})
