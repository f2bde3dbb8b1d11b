from pydantic import BaseModel, Field
from typing import Optional, Dict, Any
import time
from ..crypto.hash import sha256_hex
from .common import OpType


class Operation(BaseModel):
    """One call into the treasury, as submitted over RPC."""
    op_type: OpType
    caller: str
    amount: Optional[int] = None   # in minimal units (10^-18 token)
    target: Optional[str] = None   # Address argument (staking address, sweep recipient, role account)
    payload: Dict[str, Any] = Field(default_factory=dict) # Extra data
    timestamp: int = Field(default_factory=lambda: time.time_ns())

    def hash(self) -> str:
        payload_str = (
            self.op_type.value
            + self.caller
            + (self.target or "")
            + str(self.amount)
            + str(sorted(self.payload.items()))
            + str(self.timestamp)
        )
        return sha256_hex(payload_str.encode("utf-8"))

    @property
    def op_id(self) -> str:
        return self.hash()
