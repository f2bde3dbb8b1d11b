# MIT License
# Copyright (c) 2025 Hashborn

"""
Ledger Snapshot System

Creates, verifies and restores compressed snapshots of the treasury ledger.
"""

from .snapshot_manager import SnapshotManager
from .types import Snapshot, SnapshotMetadata

__all__ = ["SnapshotManager", "Snapshot", "SnapshotMetadata"]
