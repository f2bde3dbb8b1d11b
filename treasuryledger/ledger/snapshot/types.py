# MIT License
# Copyright (c) 2025 Hashborn

"""
Snapshot Data Structures
"""

from pydantic import BaseModel, Field
from typing import Dict, Optional


class SnapshotMetadata(BaseModel):
    """
    Snapshot metadata (stored separately for quick querying).
    """
    version: str = Field(default="1.0.0", description="Snapshot format version")
    network_id: str = Field(..., description="Network ID (devnet/testnet/mainnet)")
    sequence: int = Field(..., description="Journal sequence number at snapshot")
    timestamp: str = Field(..., description="ISO 8601 timestamp")
    treasury_address: str = Field(..., description="Treasury identity")
    balance: int = Field(..., description="Treasury token balance")
    deposit_historic_total: int = Field(..., description="Lifetime deposits")
    disburse_historic_total: int = Field(..., description="Lifetime disbursements")
    roles_count: int = Field(..., description="Number of identities with granted roles")
    token_accounts_count: int = Field(..., description="Number of token accounts")
    hash: str = Field(..., description="SHA256 hash of snapshot data")
    compressed_size: int = Field(..., description="Compressed file size (bytes)")
    uncompressed_size: int = Field(..., description="Uncompressed data size (bytes)")


class Snapshot(BaseModel):
    """
    Complete ledger snapshot (saved to disk, compressed).
    """
    version: str = Field(default="1.0.0", description="Snapshot format version")
    network_id: str = Field(..., description="Network ID")
    sequence: int = Field(..., description="Journal sequence number")
    timestamp: str = Field(..., description="ISO 8601 timestamp")

    # Serialized models as JSON strings, keyed like the StorageDB state table
    treasury: str = Field(..., description="TreasuryState JSON")
    config: str = Field(default="{}", description="TreasuryConfig JSON")
    roles: Dict[str, str] = Field(default_factory=dict, description="address -> RoleAssignment JSON")
    token_accounts: Dict[str, str] = Field(default_factory=dict, description="address -> TokenAccount JSON")

    # Verification
    hash: Optional[str] = Field(default=None, description="SHA256 hash of snapshot (excluding this field)")

    def calculate_hash(self) -> str:
        """
        Calculate SHA256 hash of snapshot data (excluding hash field).
        """
        from ...protocol.crypto.hash import sha256_hex
        import json

        data = self.model_dump(exclude={"hash"})
        canonical_json = json.dumps(data, sort_keys=True, separators=(',', ':'))

        return sha256_hex(canonical_json.encode())

    def verify_hash(self) -> bool:
        if not self.hash:
            return False

        return self.calculate_hash() == self.hash
