import pytest

from treasuryledger.protocol.config.params import TreasuryConfig, UNIT
from treasuryledger.protocol.crypto.addresses import address_from_seed
from treasuryledger.protocol.types.common import Role, AmountPolicy
from treasuryledger.ledger.core.roles import RoleRegistry
from treasuryledger.ledger.core.token import InMemoryToken
from treasuryledger.ledger.core.treasury import Treasury

OWNER = address_from_seed(b"owner")
ADMIN = address_from_seed(b"admin")
GOVERNOR = address_from_seed(b"governor")
OPERATOR = address_from_seed(b"operator")
STRANGER = address_from_seed(b"stranger")
STAKING = address_from_seed(b"staking")
TREASURY = address_from_seed(b"treasury")
TOKEN = address_from_seed(b"purse-token")

START_TIME = 1_700_000_000


class FakeClock:
    def __init__(self, now: int = START_TIME):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int):
        self.now += seconds


def make_config(**overrides) -> TreasuryConfig:
    params = dict(network_id="devnet", disburse_interval=60, policy=AmountPolicy.FRACTION_OF_LIVE_BALANCE)
    params.update(overrides)
    return TreasuryConfig(**params)


def make_treasury(config=None, clock=None, db=None, token=None, governor_funds=1000 * UNIT) -> Treasury:
    """Treasury with one governor (funded and allowing the treasury to pull) and one operator."""
    token = token or InMemoryToken(TOKEN, db=db)
    roles = RoleRegistry(OWNER, {
        ADMIN: {Role.ADMIN},
        GOVERNOR: {Role.GOVERNOR},
        OPERATOR: {Role.OPERATOR},
    })
    treasury = Treasury.create(
        address=TREASURY,
        token=token,
        owner=OWNER,
        staking_target=STAKING,
        config=config or make_config(),
        clock=clock or FakeClock(),
        db=db,
        roles=roles,
    )
    if governor_funds:
        token.mint(GOVERNOR, governor_funds)
        token.approve(GOVERNOR, TREASURY, governor_funds)
        # Owner funds for the "ownable" profile
        token.mint(OWNER, governor_funds)
        token.approve(OWNER, TREASURY, governor_funds)
    return treasury


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def treasury(clock):
    return make_treasury(clock=clock)
