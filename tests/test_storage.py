"""
Tests for persistence: StorageDB, Treasury.persist/load, snapshots and
node genesis bootstrap.
"""
import gzip
import json
import os

import pytest

from treasuryledger.protocol.config.params import UNIT
from treasuryledger.protocol.types.common import OpType, Role
from treasuryledger.protocol.types.errors import Unauthorized
from treasuryledger.ledger.core.token import InMemoryToken
from treasuryledger.ledger.core.treasury import Treasury
from treasuryledger.ledger.snapshot import SnapshotManager, Snapshot
from treasuryledger.ledger.storage.db import StorageDB
from treasuryledger.protocol.crypto.addresses import address_from_seed
from treasuryledger.ledger.cli.node_cli import (
    default_genesis, build_from_genesis, genesis_tokens, open_treasury, GENESIS_FILE,
)

from conftest import FakeClock, make_config, make_treasury, GOVERNOR, OPERATOR, OWNER, STRANGER, TOKEN, TREASURY


@pytest.fixture
def db(tmp_path):
    storage = StorageDB(str(tmp_path / "ledger.db"))
    yield storage
    storage.close()


def test_storage_state_and_journal(db):
    db.set_state("role:a", "1")
    db.set_state("role:b", "2")
    db.set_state("other", "3")

    assert db.get_state("role:a") == "1"
    assert db.get_state_by_prefix("role:") == {"role:a": "1", "role:b": "2"}

    db.delete_state("role:a")
    assert db.get_state("role:a") is None

    db.write_batch({"other": "4"}, deletes=["role:b"],
                   journal=[(1, "DEPOSIT", "{}"), (2, "DISBURSE", "{}")])
    assert db.get_state("other") == "4"
    assert db.get_state("role:b") is None
    assert [row[0] for row in db.get_journal(from_seq=2)] == [2]


def test_persist_and_load_roundtrip(db):
    clock = FakeClock()
    t = make_treasury(db=db, clock=clock)
    t.deposit_to_treasury(GOVERNOR, 12 * UNIT // 10)
    t.disburse(OPERATOR)
    t.grant_role(OWNER, Role.OPERATOR, STRANGER)
    t.update_range(OWNER, 6)
    t.persist()
    t.token.persist()

    token = InMemoryToken(TOKEN, db=db)
    loaded = Treasury.load(db, token, clock=clock)

    assert loaded.state == t.state
    assert loaded.balance() == 11 * UNIT // 10
    assert loaded.roles.has_role(STRANGER, Role.OPERATOR)
    assert loaded.journal_seq == t.journal_seq == 4
    assert loaded.config.to_dict() == t.config.to_dict()

    rows = db.get_journal()
    assert [row[1] for row in rows] == ["DEPOSIT", "DISBURSE", "GRANT_ROLE", "UPDATE_RANGE"]
    assert json.loads(rows[0][2])["amount"] == 12 * UNIT // 10


def test_persist_drops_revoked_roles(db):
    t = make_treasury(db=db)
    t.grant_role(OWNER, Role.OPERATOR, STRANGER)
    t.persist()
    t.revoke_role(OWNER, Role.OPERATOR, STRANGER)
    t.persist()

    assert f"role:{STRANGER}" not in db.get_state_by_prefix("role:")


def test_load_empty_db_returns_none(db):
    assert Treasury.load(db, InMemoryToken(TOKEN, db=db)) is None


def _operator_deposits(db):
    """Treasury whose deposits are open to operators instead of governors."""
    t = make_treasury(db=db, config=make_config(access_overrides={OpType.DEPOSIT: {Role.OPERATOR}}))
    t.token.mint(OPERATOR, 10 * UNIT)
    t.token.approve(OPERATOR, TREASURY, 10 * UNIT)
    return t


def test_access_overrides_survive_persist_and_load(db):
    t = _operator_deposits(db)
    t.deposit_to_treasury(OPERATOR, UNIT)
    t.persist()
    t.token.persist()

    loaded = Treasury.load(db, InMemoryToken(TOKEN, db=db))
    assert loaded.config.roles_for(OpType.DEPOSIT) == {Role.OPERATOR}
    loaded.deposit_to_treasury(OPERATOR, UNIT)
    assert loaded.balance() == 2 * UNIT

    with pytest.raises(Unauthorized):
        loaded.deposit_to_treasury(GOVERNOR, UNIT)


def test_journal_is_written_by_persist(db):
    t = make_treasury(db=db)
    t.deposit_to_treasury(GOVERNOR, UNIT)
    t.update_range(OWNER, 6)

    assert t.journal_seq == 2
    assert db.get_journal() == []
    assert db.get_state("treasury:journal_seq") is None
    assert db.get_state("treasury:state") is None

    t.persist()
    assert [row[0] for row in db.get_journal()] == [1, 2]
    assert db.get_state("treasury:journal_seq") == "2"

    # Nothing is written twice
    t.persist()
    assert len(db.get_journal()) == 2

    t.update_range(OWNER, 12)
    t.persist()
    assert [row[1] for row in db.get_journal(from_seq=3)] == ["UPDATE_RANGE"]


# ═══════════════════════════════════════════════════════════════════
# SNAPSHOTS
# ═══════════════════════════════════════════════════════════════════

def test_snapshot_create_and_restore(tmp_path, db):
    manager = SnapshotManager(str(tmp_path / "snapshots"))
    t = make_treasury(db=db)
    t.deposit_to_treasury(GOVERNOR, 3 * UNIT)

    meta = manager.create_snapshot(t)
    assert meta.sequence == 1
    assert meta.balance == 3 * UNIT
    assert meta.deposit_historic_total == 3 * UNIT
    assert manager.get_latest_snapshot_sequence() == 1

    other_db = StorageDB(str(tmp_path / "restored.db"))
    try:
        manager.restore_snapshot(1, other_db)
        restored = Treasury.load(other_db, InMemoryToken(TOKEN, db=other_db))
        assert restored.state == t.state
        assert restored.balance() == 3 * UNIT
        assert restored.roles.has_role(GOVERNOR, Role.GOVERNOR)
    finally:
        other_db.close()


def test_snapshot_restore_keeps_access_overrides(tmp_path, db):
    manager = SnapshotManager(str(tmp_path / "snapshots"))
    t = _operator_deposits(db)
    t.deposit_to_treasury(OPERATOR, UNIT)
    manager.create_snapshot(t)

    other_db = StorageDB(str(tmp_path / "restored.db"))
    try:
        manager.restore_snapshot(1, other_db)
        restored = Treasury.load(other_db, InMemoryToken(TOKEN, db=other_db))
        assert restored.config.roles_for(OpType.DEPOSIT) == {Role.OPERATOR}
        restored.deposit_to_treasury(OPERATOR, UNIT)
        assert restored.balance() == 2 * UNIT
    finally:
        other_db.close()


def test_snapshot_tampering_detected(tmp_path, db):
    manager = SnapshotManager(str(tmp_path / "snapshots"))
    t = make_treasury(db=db)
    t.deposit_to_treasury(GOVERNOR, UNIT)
    manager.create_snapshot(t)

    path = tmp_path / "snapshots" / "snapshot_1.json.gz"
    with gzip.open(path, "rb") as f:
        snap = Snapshot.model_validate_json(f.read())
    snap.token_accounts[STRANGER] = json.dumps({"address": STRANGER, "balance": 10**30, "allowances": {}})
    with gzip.open(path, "wb") as f:
        f.write(snap.model_dump_json().encode())

    with pytest.raises(ValueError):
        manager.load_snapshot(1)
    with pytest.raises(FileNotFoundError):
        manager.load_snapshot(99)


def test_snapshot_cleanup(tmp_path, db):
    manager = SnapshotManager(str(tmp_path / "snapshots"))
    t = make_treasury(db=db)
    for _ in range(3):
        t.deposit_to_treasury(GOVERNOR, UNIT)
        manager.create_snapshot(t)

    manager.cleanup_old_snapshots(keep_count=1)
    assert [s.sequence for s in manager.list_snapshots()] == [3]


# ═══════════════════════════════════════════════════════════════════
# GENESIS
# ═══════════════════════════════════════════════════════════════════

def test_build_from_genesis(db):
    genesis = default_genesis("testnet")
    t = build_from_genesis(genesis, db)

    governor = genesis["governors"][0]
    assert t.config.network_id == "testnet"
    assert t.roles.has_role(governor, Role.GOVERNOR)
    assert t.roles.has_role(genesis["operators"][0], Role.OPERATOR)
    assert t.token.balance_of(governor) == 1_000_000 * UNIT
    assert t.state.staking_target == genesis["staking_target"]


def test_genesis_extra_tokens(db):
    genesis = default_genesis("devnet")
    stray = address_from_seed(b"stray-token")
    genesis["tokens"] = {stray: {genesis["treasury"]: str(5 * UNIT)}, genesis["token"]: {}}
    build_from_genesis(genesis, db)

    extras = genesis_tokens(genesis, db)
    assert [tok.address for tok in extras] == [stray]
    assert extras[0].balance_of(genesis["treasury"]) == 5 * UNIT


def test_open_treasury_builds_then_loads(tmp_path):
    genesis = default_genesis("devnet")
    with open(tmp_path / GENESIS_FILE, "w") as f:
        json.dump(genesis, f)

    first = open_treasury(str(tmp_path))
    governor = genesis["governors"][0]
    first.token.approve(governor, genesis["treasury"], UNIT)
    first.deposit_to_treasury(governor, UNIT)
    first.persist()
    first.token.persist()
    first.db.close()

    second = open_treasury(str(tmp_path))
    try:
        assert second.state.deposit_historic_total == UNIT
        assert second.balance() == UNIT
    finally:
        second.db.close()


def test_open_treasury_without_genesis(tmp_path):
    with pytest.raises(FileNotFoundError):
        open_treasury(str(tmp_path))
