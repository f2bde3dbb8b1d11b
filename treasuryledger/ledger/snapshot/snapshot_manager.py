# MIT License
# Copyright (c) 2025 Hashborn

"""
Snapshot Manager

Handles creation, storage, loading, verification and restore of ledger
snapshots.
"""

import gzip
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from .types import Snapshot, SnapshotMetadata
from ..core.token import InMemoryToken
from ..core.treasury import Treasury, STATE_KEY, CONFIG_KEY, JOURNAL_SEQ_KEY, ROLE_PREFIX
from ..storage.db import StorageDB

logger = logging.getLogger(__name__)


class SnapshotManager:
    """
    Manages ledger snapshots.

    Snapshots are saved as compressed JSON files:
    - snapshots/snapshot_<seq>.json.gz (full snapshot)
    - snapshots/snapshot_<seq>_meta.json (metadata for quick queries)
    """

    def __init__(self, snapshots_dir: str = "snapshots"):
        self.snapshots_dir = Path(snapshots_dir)
        self.snapshots_dir.mkdir(parents=True, exist_ok=True)

    def create_snapshot(self, treasury: Treasury, network_id: Optional[str] = None) -> SnapshotMetadata:
        """
        Create a snapshot of the treasury, its roles and (for InMemoryToken) the token ledger.

        Args:
            treasury: Treasury to snapshot
            network_id: Network ID (default: treasury.config.network_id)

        Returns:
            SnapshotMetadata for the created snapshot
        """
        sequence = treasury.journal_seq
        logger.info(f"Creating snapshot at sequence {sequence}...")

        if network_id is None:
            network_id = treasury.config.network_id

        with treasury._lock:
            roles_dict = {a.address: a.model_dump_json() for a in treasury.roles.assignments()}

            token_accounts = {}
            token = treasury.token
            if isinstance(token, InMemoryToken):
                if token.db is not None:
                    prefix = f"tok:{token.address}:"
                    for key, value in token.db.get_state_by_prefix(prefix).items():
                        token_accounts[key[len(prefix):]] = value
                # Cache overlays DB
                for addr, acc in token._accounts.items():
                    token_accounts[addr] = acc.model_dump_json()

            snapshot = Snapshot(
                version="1.0.0",
                network_id=network_id,
                sequence=sequence,
                timestamp=datetime.now(timezone.utc).isoformat(),
                treasury=treasury.state.model_dump_json(),
                config=json.dumps(treasury.config.to_dict(), sort_keys=True),
                roles=roles_dict,
                token_accounts=token_accounts,
            )
            balance = treasury.balance()

        snapshot.hash = snapshot.calculate_hash()

        snapshot_path = self._get_snapshot_path(sequence)
        uncompressed_data = snapshot.model_dump_json(indent=None).encode()
        uncompressed_size = len(uncompressed_data)

        with gzip.open(snapshot_path, 'wb', compresslevel=6) as f:
            f.write(uncompressed_data)

        compressed_size = snapshot_path.stat().st_size

        metadata = SnapshotMetadata(
            version=snapshot.version,
            network_id=snapshot.network_id,
            sequence=snapshot.sequence,
            timestamp=snapshot.timestamp,
            treasury_address=treasury.state.address,
            balance=balance,
            deposit_historic_total=treasury.state.deposit_historic_total,
            disburse_historic_total=treasury.state.disburse_historic_total,
            roles_count=len(roles_dict),
            token_accounts_count=len(token_accounts),
            hash=snapshot.hash,
            compressed_size=compressed_size,
            uncompressed_size=uncompressed_size,
        )

        meta_path = self._get_metadata_path(sequence)
        with open(meta_path, 'w') as f:
            f.write(metadata.model_dump_json(indent=2))

        logger.info(
            f"Snapshot created at sequence {sequence}: "
            f"{len(roles_dict)} role holders, {len(token_accounts)} token accounts, "
            f"{compressed_size / 1024:.2f} KB compressed"
        )

        return metadata

    def load_snapshot(self, sequence: int) -> Snapshot:
        """
        Load a snapshot from disk.

        Raises:
            FileNotFoundError: If snapshot doesn't exist
            ValueError: If snapshot hash verification fails
        """
        snapshot_path = self._get_snapshot_path(sequence)

        if not snapshot_path.exists():
            raise FileNotFoundError(f"Snapshot at sequence {sequence} not found")

        logger.info(f"Loading snapshot from sequence {sequence}...")

        with gzip.open(snapshot_path, 'rb') as f:
            data = f.read()

        snapshot = Snapshot.model_validate_json(data)

        if not snapshot.verify_hash():
            raise ValueError(f"Snapshot at sequence {sequence} failed hash verification!")

        return snapshot

    def apply_snapshot(self, snapshot: Snapshot, db: StorageDB, token_address: Optional[str] = None):
        """
        Write a snapshot into a StorageDB, replacing treasury, role and token state.

        The treasury is then restored with `Treasury.load(db, token)`.

        Args:
            snapshot: Snapshot to apply
            db: Target database
            token_address: Token the accounts belong to (default: the snapshot's treasury token)
        """
        logger.info(f"Applying snapshot from sequence {snapshot.sequence}...")

        if token_address is None:
            token_address = json.loads(snapshot.treasury)["token"]

        for prefix in (ROLE_PREFIX, f"tok:{token_address}:"):
            for key in db.get_state_by_prefix(prefix):
                db.delete_state(key)

        db.set_state(STATE_KEY, snapshot.treasury)
        db.set_state(CONFIG_KEY, snapshot.config)
        db.set_state(JOURNAL_SEQ_KEY, str(snapshot.sequence))
        for addr, role_json in snapshot.roles.items():
            db.set_state(f"{ROLE_PREFIX}{addr}", role_json)
        for addr, acc_json in snapshot.token_accounts.items():
            db.set_state(f"tok:{token_address}:{addr}", acc_json)

        logger.info(
            f"Snapshot applied: {len(snapshot.roles)} role holders, "
            f"{len(snapshot.token_accounts)} token accounts"
        )

    def restore_snapshot(self, sequence: int, db: StorageDB):
        """Load, verify and apply the snapshot at `sequence`."""
        snapshot = self.load_snapshot(sequence)
        self.apply_snapshot(snapshot, db)
        return snapshot

    def get_latest_snapshot_sequence(self) -> Optional[int]:
        snapshots = self.list_snapshots()
        if not snapshots:
            return None

        return max(snap.sequence for snap in snapshots)

    def list_snapshots(self) -> List[SnapshotMetadata]:
        """
        List all available snapshots, sorted by sequence (descending).
        """
        snapshots = []

        for meta_path in self.snapshots_dir.glob("snapshot_*_meta.json"):
            try:
                with open(meta_path, 'r') as f:
                    snapshots.append(SnapshotMetadata.model_validate_json(f.read()))
            except (OSError, ValueError) as e:
                logger.warning(f"Failed to load metadata from {meta_path}: {e}")

        snapshots.sort(key=lambda s: s.sequence, reverse=True)

        return snapshots

    def delete_snapshot(self, sequence: int):
        snapshot_path = self._get_snapshot_path(sequence)
        meta_path = self._get_metadata_path(sequence)

        if snapshot_path.exists():
            snapshot_path.unlink()
            logger.info(f"Deleted snapshot at sequence {sequence}")

        if meta_path.exists():
            meta_path.unlink()

    def cleanup_old_snapshots(self, keep_count: int = 10):
        """
        Delete old snapshots, keeping only the N most recent.
        """
        snapshots = self.list_snapshots()

        if len(snapshots) <= keep_count:
            return

        to_delete = snapshots[keep_count:]
        for snap in to_delete:
            self.delete_snapshot(snap.sequence)

        logger.info(f"Cleaned up {len(to_delete)} old snapshots")

    def _get_snapshot_path(self, sequence: int) -> Path:
        return self.snapshots_dir / f"snapshot_{sequence}.json.gz"

    def _get_metadata_path(self, sequence: int) -> Path:
        return self.snapshots_dir / f"snapshot_{sequence}_meta.json"
