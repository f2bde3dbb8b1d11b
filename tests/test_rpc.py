"""
Tests for the FastAPI node surface.
"""
import pytest
from fastapi.testclient import TestClient

from treasuryledger.protocol.config.params import UNIT
from treasuryledger.protocol.crypto.addresses import address_from_seed
from treasuryledger.ledger.core.token import InMemoryToken
from treasuryledger.ledger.observability import metrics_registry
from treasuryledger.ledger.rpc import api

from conftest import FakeClock, make_treasury, GOVERNOR, OPERATOR, OWNER, STRANGER, STAKING

ONE_POINT_TWO = 12 * UNIT // 10


@pytest.fixture
def node():
    clock = FakeClock()
    treasury = make_treasury(clock=clock)
    api.setup(treasury)
    client = TestClient(api.app)
    yield client, treasury, clock
    api.treasury = None


def test_status_requires_initialized_node():
    api.treasury = None
    client = TestClient(api.app)
    assert client.get("/status").status_code == 503


def test_deposit_and_disburse_flow(node):
    client, treasury, clock = node

    r = client.post("/deposit", json={"caller": GOVERNOR, "amount": ONE_POINT_TWO})
    assert r.status_code == 200
    assert r.json()["status"] == "executed"

    r = client.post("/disburse", json={"caller": OPERATOR})
    assert r.status_code == 200
    assert r.json()["result"] == UNIT // 10

    state = client.get("/state").json()
    assert state["balance"] == 11 * UNIT // 10
    assert state["disburse_historic_total"] == UNIT // 10
    assert state["phase"] == "PARTIALLY_DISBURSED"

    balance = client.get(f"/balance/{STAKING}").json()
    assert balance["balance"] == str(UNIT // 10)


def test_interval_rejection_is_409_with_receipt(node):
    client, treasury, clock = node
    client.post("/deposit", json={"caller": GOVERNOR, "amount": ONE_POINT_TWO})
    client.post("/disburse", json={"caller": OPERATOR})

    r = client.post("/disburse", json={"caller": OPERATOR})
    assert r.status_code == 409
    detail = r.json()["detail"]
    assert detail["code"] == "INTERVAL_NOT_REACHED"

    receipt = client.get(f"/receipt/{detail['op_id']}").json()
    assert receipt["status"] == "rejected"
    assert receipt["error_code"] == "INTERVAL_NOT_REACHED"


def test_unauthorized_is_403(node):
    client, treasury, clock = node
    new_target = address_from_seed(b"new-staking")

    r = client.post("/staking-address", json={"caller": STRANGER, "address": new_target})
    assert r.status_code == 403
    assert r.json()["detail"]["details"]["caller"] == STRANGER

    r = client.post("/staking-address", json={"caller": OWNER, "address": new_target})
    assert r.status_code == 200
    assert treasury.state.staking_target == new_target


def test_entry_point_selection(node):
    client, treasury, clock = node
    client.post("/deposit", json={"caller": GOVERNOR, "amount": ONE_POINT_TWO})

    r = client.post("/disburse", json={"caller": OPERATOR, "entry_point": "OWNER_DISBURSE"})
    assert r.status_code == 403

    r = client.post("/disburse", json={"caller": OWNER, "entry_point": "OWNER_DISBURSE", "amount": 0})
    assert r.status_code == 200

    r = client.post("/disburse", json={"caller": OWNER, "entry_point": "UPDATE_RANGE"})
    assert r.status_code == 400


def test_admin_endpoints(node):
    client, treasury, clock = node

    assert client.post("/range", json={"caller": OWNER, "range": 0}).status_code == 400
    assert client.post("/range", json={"caller": OWNER, "range": 13}).json()["detail"]["code"] == "INVALID_RANGE"
    assert client.post("/range", json={"caller": OWNER, "range": 12}).status_code == 200

    assert client.post("/disburse-interval", json={"caller": OWNER, "seconds": 1}).json()["result"] == 1
    assert client.post("/approve", json={"caller": OWNER, "decimals": 18}).status_code == 200
    assert treasury.state.is_approved

    r = client.get("/default-disburse-amount").json()
    assert r["range"] == 12


def test_return_token_endpoint(node):
    client, treasury, clock = node
    client.post("/deposit", json={"caller": GOVERNOR, "amount": UNIT})

    r = client.post("/return-token", json={"caller": OWNER, "to": OWNER, "amount": 2 * UNIT})
    assert r.status_code == 400
    assert r.json()["detail"]["code"] == "EXCEEDS_BALANCE"

    r = client.post("/return-token", json={"caller": OWNER, "to": OWNER, "amount": UNIT})
    assert r.status_code == 200
    assert treasury.balance() == 0

    unknown = address_from_seed(b"unknown-token")
    r = client.post("/return-token", json={"caller": OWNER, "to": OWNER, "amount": 1, "token": unknown})
    assert r.status_code == 404


def test_role_endpoints(node):
    client, treasury, clock = node

    r = client.post("/roles/grant", json={"caller": GOVERNOR, "role": "OPERATOR", "account": STRANGER})
    assert r.status_code == 403

    r = client.post("/roles/grant", json={"caller": OWNER, "role": "OPERATOR", "account": STRANGER})
    assert r.json()["result"] is True
    assert client.get(f"/roles/{STRANGER}").json()["roles"] == ["OPERATOR"]

    r = client.post("/roles/revoke", json={"caller": OWNER, "role": "OPERATOR", "account": STRANGER})
    assert r.json()["result"] is True
    assert client.get(f"/roles/{STRANGER}").json()["roles"] == []


def test_metrics_endpoint(node):
    client, treasury, clock = node
    client.post("/deposit", json={"caller": GOVERNOR, "amount": UNIT})

    r = client.get("/metrics")
    assert r.status_code == 200
    assert "treasuryledger_balance" in r.text
    assert "treasuryledger_operations_total" in r.text


def test_receipt_not_found(node):
    client, treasury, clock = node
    assert client.get("/receipt/deadbeef").status_code == 404


def test_setup_twice_counts_operations_once(node):
    client, treasury, clock = node
    api.setup(treasury)

    before = metrics_registry.get_sample_value("treasuryledger_operations_total", {"op_type": "DEPOSIT"}) or 0
    client.post("/deposit", json={"caller": GOVERNOR, "amount": UNIT})
    after = metrics_registry.get_sample_value("treasuryledger_operations_total", {"op_type": "DEPOSIT"})
    assert after - before == 1


def test_return_token_sweeps_registered_token(node):
    client, treasury, clock = node
    stray = InMemoryToken(address_from_seed(b"stray-token"))
    stray.mint(treasury.state.address, 5 * UNIT)
    api.register_token(stray)

    r = client.post("/return-token", json={"caller": OWNER, "to": OWNER, "amount": 5 * UNIT, "token": stray.address})
    assert r.status_code == 200
    assert stray.balance_of(OWNER) == 5 * UNIT
    assert stray.balance_of(treasury.state.address) == 0


def test_setup_registers_extra_tokens():
    treasury = make_treasury()
    stray = InMemoryToken(address_from_seed(b"stray-token"))
    api.setup(treasury, extra_tokens=[stray])
    try:
        assert api.tokens == {treasury.token.address: treasury.token, stray.address: stray}
    finally:
        api.treasury = None
