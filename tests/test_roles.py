import pytest

from treasuryledger.protocol.crypto.addresses import ZERO_ADDRESS
from treasuryledger.protocol.types.common import Role
from treasuryledger.protocol.types.errors import Unauthorized, InvalidAddress
from treasuryledger.ledger.core.roles import RoleRegistry

from conftest import OWNER, ADMIN, GOVERNOR, OPERATOR, STRANGER


@pytest.fixture
def registry():
    return RoleRegistry(OWNER, {GOVERNOR: {Role.GOVERNOR}, OPERATOR: {Role.OPERATOR}})


def test_owner_holds_owner_and_admin(registry):
    assert registry.roles_of(OWNER) == {Role.OWNER, Role.ADMIN}
    assert registry.has_role(OWNER, Role.ADMIN)
    assert not registry.has_role(OWNER, Role.OPERATOR)


def test_authorize_returns_matching_role(registry):
    assert registry.authorize(OPERATOR, Role.GOVERNOR, Role.OPERATOR) == Role.OPERATOR

    with pytest.raises(Unauthorized) as exc:
        registry.authorize(STRANGER, Role.GOVERNOR, Role.OPERATOR)
    assert exc.value.required_role == "GOVERNOR"
    assert exc.value.to_dict()["code"] == "UNAUTHORIZED"


def test_grant_and_revoke_are_idempotent(registry):
    assert registry.grant(Role.ADMIN, ADMIN) is True
    assert registry.grant(Role.ADMIN, ADMIN) is False
    assert registry.members(Role.ADMIN) == sorted([ADMIN, OWNER])

    assert registry.revoke(Role.ADMIN, ADMIN) is True
    assert registry.revoke(Role.ADMIN, ADMIN) is False
    assert registry.roles_of(ADMIN) == set()


def test_owner_role_is_fixed(registry):
    with pytest.raises(Unauthorized):
        registry.grant(Role.OWNER, STRANGER)
    with pytest.raises(Unauthorized):
        registry.revoke(Role.ADMIN, OWNER)
    assert registry.has_role(OWNER, Role.ADMIN)


@pytest.mark.parametrize("account", [ZERO_ADDRESS, "", "bogus"])
def test_grant_rejects_invalid_accounts(registry, account):
    with pytest.raises(InvalidAddress):
        registry.grant(Role.OPERATOR, account)


def test_invalid_owner_rejected():
    with pytest.raises(InvalidAddress):
        RoleRegistry(ZERO_ADDRESS)


def test_assignments_roundtrip(registry):
    registry.grant(Role.OPERATOR, GOVERNOR)
    restored = RoleRegistry.from_assignments(OWNER, registry.assignments())

    assert restored.roles_of(GOVERNOR) == {Role.GOVERNOR, Role.OPERATOR}
    assert restored.roles_of(OPERATOR) == {Role.OPERATOR}
    assert restored.roles_of(OWNER) == {Role.OWNER, Role.ADMIN}
