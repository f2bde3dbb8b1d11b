from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from pydantic import BaseModel
from typing import Any, Callable, Dict, Iterable, Optional
import logging

from ...protocol.types.common import OpType, Role, DISBURSE_OPS
from ...protocol.types.errors import TreasuryError, Unauthorized, IntervalNotReached
from ...protocol.types.operation import Operation
from ..core.receipts import OperationReceiptStore, EXECUTED
from ..core.token import FungibleToken, InMemoryToken
from ..core.treasury import Treasury
from ..snapshot.snapshot_manager import SnapshotManager

logger = logging.getLogger(__name__)

app = FastAPI(title="Treasury Ledger Node RPC")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
treasury: Optional[Treasury] = None
snapshot_manager: Optional[SnapshotManager] = None
receipt_store = OperationReceiptStore()
# Tokens the treasury may hold: address -> collaborator (return_token lookups)
tokens: Dict[str, FungibleToken] = {}


# --- Request bodies (the caller identity travels in the body) ---

class DepositRequest(BaseModel):
    caller: str
    amount: int

class DisburseRequest(BaseModel):
    caller: str
    amount: Optional[int] = None
    entry_point: OpType = OpType.DISBURSE

class ReturnTokenRequest(BaseModel):
    caller: str
    to: str
    amount: int
    token: Optional[str] = None   # Defaults to the treasury's primary token

class StakingAddressRequest(BaseModel):
    caller: str
    address: str

class DisburseIntervalRequest(BaseModel):
    caller: str
    seconds: int

class RangeRequest(BaseModel):
    caller: str
    range: int

class ApproveRequest(BaseModel):
    caller: str
    decimals: Optional[int] = None
    spender: Optional[str] = None

class RoleRequest(BaseModel):
    caller: str
    role: Role
    account: str


def setup(treasury_instance: Treasury,
          snapshots: Optional[SnapshotManager] = None,
          extra_tokens: Iterable[FungibleToken] = ()):
    """Wires a treasury into the RPC module and its metrics into the treasury's event bus."""
    global treasury, snapshot_manager
    from ..observability.metrics import attach

    treasury = treasury_instance
    snapshot_manager = snapshots
    tokens.clear()
    register_token(treasury_instance.token)
    for token in extra_tokens:
        register_token(token)
    receipt_store.clear()
    attach(treasury_instance.event_bus, decimals=treasury_instance.config.decimals)

def register_token(token: FungibleToken):
    """Makes a token reachable by /return-token."""
    tokens[token.address] = token

def _require_treasury() -> Treasury:
    if not treasury:
        raise HTTPException(status_code=503, detail="Node not initialized")
    return treasury

def _status_for(err: TreasuryError) -> int:
    if isinstance(err, Unauthorized):
        return 403
    if isinstance(err, IntervalNotReached):
        return 409
    return 400

def _persist(t: Treasury):
    t.persist()
    for tok in tokens.values():
        if isinstance(tok, InMemoryToken):
            tok.persist()

def _execute(op: Operation, fn: Callable[..., Any], *args) -> dict:
    t = _require_treasury()
    op_id = op.op_id
    try:
        result = fn(*args)
    except TreasuryError as e:
        receipt_store.mark_rejected(op_id, op.op_type.value, e.code, e.message)
        detail = e.to_dict()
        detail["op_id"] = op_id
        raise HTTPException(status_code=_status_for(e), detail=detail)

    _persist(t)
    receipt_store.mark_executed(op_id, op.op_type.value, {"result": result})
    return {"op_id": op_id, "status": EXECUTED, "result": result}


# --- Queries ---

@app.get("/status")
async def get_status():
    t = _require_treasury()
    return {
        "network": t.config.network_id,
        "treasury": t.state.address,
        "token": t.state.token,
        "phase": t.phase().value,
        "balance": t.balance(),
        "journal_seq": t.journal_seq,
    }

@app.get("/state")
async def get_state():
    t = _require_treasury()
    return t.snapshot_dict()

@app.get("/default-disburse-amount")
async def get_default_disburse_amount():
    t = _require_treasury()
    return {
        "policy": t.state.policy.value,
        "range": t.state.range,
        "default_disburse_amount": t.default_disburse_amount(),
    }

@app.get("/roles/{address}")
async def get_roles(address: str):
    t = _require_treasury()
    return {
        "address": address,
        "roles": sorted(r.value for r in t.roles.roles_of(address)),
    }

@app.get("/balance/{address}")
async def get_balance(address: str):
    t = _require_treasury()
    return {
        "address": address,
        "token": t.token.address,
        "balance": str(t.token.balance_of(address)),
    }

@app.get("/receipt/{op_id}")
async def get_receipt(op_id: str):
    _require_treasury()
    receipt = receipt_store.get(op_id)
    if not receipt:
        raise HTTPException(status_code=404, detail="Operation not found")
    return receipt.to_dict()


# --- Operations ---

@app.post("/deposit")
async def deposit(req: DepositRequest):
    t = _require_treasury()
    op = Operation(op_type=OpType.DEPOSIT, caller=req.caller, amount=req.amount)
    return _execute(op, t.deposit_to_treasury, req.caller, req.amount)

@app.post("/disburse")
async def disburse(req: DisburseRequest):
    t = _require_treasury()
    if req.entry_point not in DISBURSE_OPS:
        raise HTTPException(status_code=400, detail=f"{req.entry_point.value} is not a disbursement entry point")
    op = Operation(op_type=req.entry_point, caller=req.caller, amount=req.amount)
    entry = {
        OpType.DISBURSE: t.disburse,
        OpType.OWNER_DISBURSE: t.owner_disburse,
        OpType.GOVERNOR_DISBURSE: t.governor_disburse,
        OpType.OPERATOR_DISBURSE: t.operator_disburse,
    }[req.entry_point]
    return _execute(op, entry, req.caller, req.amount)

@app.post("/return-token")
async def return_token(req: ReturnTokenRequest):
    t = _require_treasury()
    token_address = req.token or t.token.address
    token = tokens.get(token_address)
    if token is None:
        raise HTTPException(status_code=404, detail=f"Unknown token {token_address}")
    op = Operation(op_type=OpType.RETURN_TOKEN, caller=req.caller, amount=req.amount,
                   target=req.to, payload={"token": token_address})
    return _execute(op, t.return_token, req.caller, token, req.to, req.amount)

@app.post("/staking-address")
async def update_staking_address(req: StakingAddressRequest):
    t = _require_treasury()
    op = Operation(op_type=OpType.UPDATE_STAKING_ADDRESS, caller=req.caller, target=req.address)
    return _execute(op, t.update_staking_address, req.caller, req.address)

@app.post("/disburse-interval")
async def update_disburse_interval(req: DisburseIntervalRequest):
    t = _require_treasury()
    op = Operation(op_type=OpType.UPDATE_DISBURSE_INTERVAL, caller=req.caller, amount=req.seconds)
    return _execute(op, t.update_disburse_interval, req.caller, req.seconds)

@app.post("/range")
async def update_range(req: RangeRequest):
    t = _require_treasury()
    op = Operation(op_type=OpType.UPDATE_RANGE, caller=req.caller, amount=req.range)
    return _execute(op, t.update_range, req.caller, req.range)

@app.post("/approve")
async def approve(req: ApproveRequest):
    t = _require_treasury()
    op = Operation(op_type=OpType.APPROVE_ALLOWANCE, caller=req.caller, target=req.spender,
                   payload={"decimals": req.decimals})
    return _execute(op, t.approve_allowance, req.caller, req.decimals, req.spender)

@app.post("/roles/grant")
async def grant_role(req: RoleRequest):
    t = _require_treasury()
    op = Operation(op_type=OpType.GRANT_ROLE, caller=req.caller, target=req.account,
                   payload={"role": req.role.value})
    return _execute(op, t.grant_role, req.caller, req.role, req.account)

@app.post("/roles/revoke")
async def revoke_role(req: RoleRequest):
    t = _require_treasury()
    op = Operation(op_type=OpType.REVOKE_ROLE, caller=req.caller, target=req.account,
                   payload={"role": req.role.value})
    return _execute(op, t.revoke_role, req.caller, req.role, req.account)

@app.get("/metrics")
async def get_metrics():
    """
    Prometheus metrics endpoint.

    Returns metrics in Prometheus text format.
    """
    from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
    from ..observability.metrics import metrics_registry, update_metrics

    t = _require_treasury()
    update_metrics(t)

    return Response(
        content=generate_latest(metrics_registry),
        media_type=CONTENT_TYPE_LATEST
    )

# ═══════════════════════════════════════════════════════════════════
# SNAPSHOT ENDPOINTS
# ═══════════════════════════════════════════════════════════════════

@app.get("/snapshots")
async def list_snapshots():
    _require_treasury()
    if not snapshot_manager:
        raise HTTPException(status_code=503, detail="Snapshots not enabled on this node")
    return [snap.model_dump() for snap in snapshot_manager.list_snapshots()]

@app.post("/snapshots")
async def create_snapshot():
    t = _require_treasury()
    if not snapshot_manager:
        raise HTTPException(status_code=503, detail="Snapshots not enabled on this node")
    _persist(t)
    return snapshot_manager.create_snapshot(t).model_dump()
