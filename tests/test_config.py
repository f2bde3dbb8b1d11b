import pytest

from treasuryledger.protocol.config.params import (
    NETWORKS, CURRENT_NETWORK, TreasuryConfig, ACCESS_PROFILES, SECONDS_PER_DAY, SECONDS_PER_MONTH,
)
from treasuryledger.protocol.types.common import OpType, Role, AmountPolicy, AccountingMode


def test_network_presets():
    assert CURRENT_NETWORK is NETWORKS["devnet"]
    assert NETWORKS["devnet"].disburse_interval == 60
    assert NETWORKS["devnet"].policy == AmountPolicy.FRACTION_OF_LIVE_BALANCE

    testnet = NETWORKS["testnet"]
    assert testnet.disburse_interval == SECONDS_PER_DAY
    assert testnet.accounting_mode == AccountingMode.BALANCE_SNAPSHOT

    mainnet = NETWORKS["mainnet"]
    assert mainnet.disburse_interval == SECONDS_PER_MONTH
    assert mainnet.require_approval


def test_every_entry_point_is_in_each_profile():
    for profile in ACCESS_PROFILES.values():
        assert set(profile) == set(OpType)


def test_roles_profile_tiers():
    cfg = TreasuryConfig(network_id="devnet", disburse_interval=60)
    assert cfg.roles_for(OpType.DEPOSIT) == {Role.GOVERNOR}
    assert cfg.roles_for(OpType.GOVERNOR_DISBURSE) == {Role.GOVERNOR, Role.OPERATOR}
    assert cfg.roles_for(OpType.UPDATE_RANGE) == {Role.OWNER}
    assert cfg.roles_for(OpType.GRANT_ROLE) == {Role.OWNER, Role.ADMIN}


def test_access_overrides():
    cfg = TreasuryConfig(network_id="devnet", disburse_interval=60,
                         access_overrides={OpType.DEPOSIT: {Role.OPERATOR, Role.GOVERNOR}})
    assert cfg.roles_for(OpType.DEPOSIT) == {Role.OPERATOR, Role.GOVERNOR}
    # Preset tables are not touched
    assert ACCESS_PROFILES["roles"][OpType.DEPOSIT] == {Role.GOVERNOR}


@pytest.mark.parametrize("kwargs", [
    {"range": 0},
    {"range": 13},
    {"disburse_interval": -1},
    {"access_profile": "nope"},
])
def test_invalid_config_rejected(kwargs):
    params = {"network_id": "devnet", "disburse_interval": 60}
    params.update(kwargs)
    with pytest.raises(ValueError):
        TreasuryConfig(**params)


def test_from_dict_merges_preset():
    cfg = TreasuryConfig.from_dict({"network_id": "testnet", "range": 6})
    assert cfg.range == 6
    assert cfg.disburse_interval == SECONDS_PER_DAY
    assert cfg.policy == AmountPolicy.CALLER_SUPPLIED_BOUNDED

    again = TreasuryConfig.from_dict(cfg.to_dict())
    assert again.to_dict() == cfg.to_dict()


def test_access_overrides_survive_dict_roundtrip():
    cfg = TreasuryConfig(network_id="devnet", disburse_interval=60,
                         access_overrides={OpType.DEPOSIT: {Role.OPERATOR}})
    data = cfg.to_dict()
    assert data["access_overrides"] == {"DEPOSIT": ["OPERATOR"]}

    again = TreasuryConfig.from_dict(data)
    assert again.roles_for(OpType.DEPOSIT) == {Role.OPERATOR}
    assert again.access == cfg.access


def test_unchanged_profile_has_no_overrides():
    assert NETWORKS["mainnet"].to_dict()["access_overrides"] == {}
