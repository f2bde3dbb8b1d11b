import argparse
import os
import logging
import json
from typing import List, Optional
from uvicorn import Config, Server
from ...protocol.crypto.addresses import address_from_seed
from ...protocol.config.params import NETWORKS, TreasuryConfig, UNIT
from ...protocol.types.common import Role
from ..core.events import EventBus
from ..core.roles import RoleRegistry
from ..core.token import InMemoryToken
from ..core.treasury import Treasury
from ..snapshot.snapshot_manager import SnapshotManager
from ..storage.db import StorageDB
from ..rpc import api # import module to set globals

logger = logging.getLogger(__name__)

GENESIS_FILE = "genesis.json"
DB_FILE = "ledger.db"

def default_genesis(network_id: str) -> dict:
    """Deterministic local genesis: well-known identities derived from labels."""
    prefix = NETWORKS[network_id].address_prefix

    def label(name: str) -> str:
        return address_from_seed(f"{network_id}/{name}".encode(), prefix=prefix)

    governor = label("governor")
    return {
        "config": {"network_id": network_id},
        "treasury": label("treasury"),
        "token": label("token"),
        "owner": label("owner"),
        "staking_target": label("staking"),
        "governors": [governor],
        "operators": [label("operator")],
        "alloc": {
            governor: str(1_000_000 * UNIT),
        },
    }

def build_from_genesis(genesis: dict, db: StorageDB, event_bus: Optional[EventBus] = None) -> Treasury:
    """Creates the treasury, its roles and the token allocation described by genesis.json."""
    config = TreasuryConfig.from_dict(genesis.get("config", {}))
    token = InMemoryToken(genesis["token"], db=db)

    assignments = {}
    for addr in genesis.get("governors", []):
        assignments.setdefault(addr, set()).add(Role.GOVERNOR)
    for addr in genesis.get("operators", []):
        assignments.setdefault(addr, set()).add(Role.OPERATOR)
    for addr in genesis.get("admins", []):
        assignments.setdefault(addr, set()).add(Role.ADMIN)
    roles = RoleRegistry(genesis["owner"], assignments)

    treasury = Treasury.create(
        address=genesis["treasury"],
        token=token,
        owner=genesis["owner"],
        staking_target=genesis["staking_target"],
        config=config,
        db=db,
        event_bus=event_bus,
        roles=roles,
    )

    alloc = genesis.get("alloc", {})
    for address, amount in alloc.items():
        token.mint(address, int(amount))

    token.persist()
    for extra in genesis_tokens(genesis, db):
        for address, amount in genesis["tokens"][extra.address].items():
            extra.mint(address, int(amount))
        extra.persist()
    treasury.persist()
    logger.info(f"Applied genesis: {len(alloc)} token allocations, "
                f"{len(assignments)} role holders on {config.network_id}")
    return treasury

def genesis_tokens(genesis: dict, db: StorageDB) -> List[InMemoryToken]:
    """Tokens other than the primary one that genesis.json lists under "tokens"."""
    return [InMemoryToken(address, db=db) for address in genesis.get("tokens", {})
            if address != genesis["token"]]

def load_genesis(data_dir: str) -> dict:
    genesis_path = os.path.join(data_dir, GENESIS_FILE)
    if not os.path.exists(genesis_path):
        raise FileNotFoundError(f"No {GENESIS_FILE} in {data_dir}. Run `init` first.")
    with open(genesis_path, "r") as f:
        return json.load(f)

def open_treasury(data_dir: str, restore_snapshot: Optional[int] = None) -> Treasury:
    """Loads the persisted treasury from the data dir, building it from genesis on first start."""
    genesis = load_genesis(data_dir)
    db = StorageDB(os.path.join(data_dir, DB_FILE))

    if restore_snapshot is not None:
        SnapshotManager(os.path.join(data_dir, "snapshots")).restore_snapshot(restore_snapshot, db)

    token = InMemoryToken(genesis["token"], db=db)
    treasury = Treasury.load(db, token)
    if treasury is None:
        treasury = build_from_genesis(genesis, db)
    return treasury

def cmd_init(args):
    """Initialize node: data dir and genesis.json."""
    data_dir = args.datadir
    os.makedirs(data_dir, exist_ok=True)

    genesis_path = os.path.join(data_dir, GENESIS_FILE)
    if os.path.exists(genesis_path):
        print(f"Genesis already exists at {genesis_path}")
        return

    genesis = default_genesis(args.network)
    with open(genesis_path, "w") as f:
        f.write(json.dumps(genesis, indent=2))

    print(f"Network: {args.network}")
    print(f"Treasury: {genesis['treasury']}")
    print(f"Owner: {genesis['owner']}")
    print(f"Governor: {genesis['governors'][0]}")
    print(f"Operator: {genesis['operators'][0]}")
    print(f"\nNode initialized in {data_dir}")

def cmd_run(args):
    data_dir = args.datadir
    print(f"Starting treasury ledger node...")
    print(f"Data DB: {os.path.join(data_dir, DB_FILE)}")
    print(f"RPC: {args.host}:{args.port}")

    treasury = open_treasury(data_dir, restore_snapshot=args.restore_snapshot)
    snapshots = SnapshotManager(os.path.join(data_dir, "snapshots"))

    # Inject into RPC module (global vars)
    api.setup(treasury, snapshots, extra_tokens=genesis_tokens(load_genesis(data_dir), treasury.db))

    server = Server(Config(app=api.app, host=args.host, port=args.port, log_level="info"))
    try:
        server.run()
    except KeyboardInterrupt:
        pass
    finally:
        api._persist(treasury)
        if args.snapshot_on_exit:
            snapshots.create_snapshot(treasury)
        treasury.db.close()

def main():
    parser = argparse.ArgumentParser(description="Treasury Ledger Node CLI")
    parser.add_argument("--datadir", default="./.treasuryledger", help="Data directory")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # Init command
    init_parser = subparsers.add_parser("init", help="Initialize node configuration")
    init_parser.add_argument("--network", default="devnet", choices=sorted(NETWORKS), help="Network preset")

    # Run command
    run_parser = subparsers.add_parser("run", help="Run the node")
    run_parser.add_argument("--host", default="0.0.0.0", help="RPC Host")
    run_parser.add_argument("--port", type=int, default=8000, help="RPC Port")

    # State Args
    run_parser.add_argument("--restore-snapshot", type=int, default=None, help="Restore ledger from snapshot sequence before start")
    run_parser.add_argument("--snapshot-on-exit", action="store_true", help="Write a snapshot on shutdown")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s %(levelname)s: %(message)s',
        datefmt='%H:%M:%S'
    )

    if args.command == "init":
        cmd_init(args)
    elif args.command == "run":
        cmd_run(args)

if __name__ == "__main__":
    main()
