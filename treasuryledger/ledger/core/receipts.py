"""
Operation receipt tracking.

Stores the outcome of operations submitted through the RPC layer so clients
can look them up by op id.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
import time
import logging
from threading import RLock

logger = logging.getLogger(__name__)

EXECUTED = "executed"
REJECTED = "rejected"


@dataclass
class OperationReceipt:
    """
    Outcome of one treasury operation.

    Attributes:
        op_id: Operation hash
        op_type: OpType value of the operation
        status: 'executed' or 'rejected'
        timestamp: When the receipt was written (unix timestamp)
        error_code: TreasuryError.code if rejected
        error: Error message if rejected
        result: Data returned by the operation (amounts, new parameter values)
    """
    op_id: str
    op_type: str
    status: str
    timestamp: int = 0
    error_code: Optional[str] = None
    error: Optional[str] = None
    result: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.timestamp == 0:
            self.timestamp = int(time.time())

    def to_dict(self) -> dict:
        """Convert receipt to dictionary for API response."""
        return {
            "op_id": self.op_id,
            "op_type": self.op_type,
            "status": self.status,
            "timestamp": self.timestamp,
            "error_code": self.error_code,
            "error": self.error,
            "result": self.result,
        }


class OperationReceiptStore:
    """
    In-memory store for operation receipts.

    Thread-safe, keeps at most `max_receipts` and drops the oldest 10% when
    the limit is exceeded.
    """

    def __init__(self, max_receipts: int = 10000):
        self.receipts: Dict[str, OperationReceipt] = {}
        self.max_receipts = max_receipts
        self.lock = RLock()

    def mark_executed(self, op_id: str, op_type: str, result: Optional[Dict[str, Any]] = None) -> OperationReceipt:
        receipt = OperationReceipt(op_id=op_id, op_type=op_type, status=EXECUTED, result=dict(result or {}))
        self._put(receipt)
        logger.debug(f"Marked executed: {op_id[:16]}... ({op_type})")
        return receipt

    def mark_rejected(self, op_id: str, op_type: str, error_code: str, error: str) -> OperationReceipt:
        receipt = OperationReceipt(
            op_id=op_id,
            op_type=op_type,
            status=REJECTED,
            error_code=error_code,
            error=error,
        )
        self._put(receipt)
        logger.debug(f"Marked rejected: {op_id[:16]}... - {error_code}")
        return receipt

    def get(self, op_id: str) -> Optional[OperationReceipt]:
        with self.lock:
            return self.receipts.get(op_id)

    def _put(self, receipt: OperationReceipt) -> None:
        with self.lock:
            self.receipts[receipt.op_id] = receipt
            if len(self.receipts) > self.max_receipts:
                self._cleanup_old_receipts()

    def _cleanup_old_receipts(self) -> None:
        """Remove the oldest 10% of receipts (at least one)."""
        num_to_remove = max(1, len(self.receipts) // 10)

        sorted_receipts = sorted(
            self.receipts.items(),
            key=lambda x: x[1].timestamp
        )

        for op_id, _ in sorted_receipts[:num_to_remove]:
            del self.receipts[op_id]

        logger.info(f"Cleaned up {num_to_remove} old receipts (total: {len(self.receipts)})")

    def clear(self) -> None:
        """Clear all receipts (for testing)."""
        with self.lock:
            self.receipts.clear()
            logger.debug("Cleared all receipts")
