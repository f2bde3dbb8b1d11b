# MIT License
# Copyright (c) 2025 Hashborn

"""
Role / permission gate.

Identities map to a set of roles. Entry points do not know about each other's
privileges: each one asks `authorize()` for the roles its slot in the access
table lists. The owner is fixed at construction and implicitly holds OWNER and
ADMIN; nobody can grant or revoke OWNER.
"""

from typing import Dict, Iterable, List, Optional, Set
import logging

from ...protocol.types.common import Role
from ...protocol.types.errors import Unauthorized, InvalidAddress
from ...protocol.types.treasury import RoleAssignment
from ...protocol.crypto.addresses import is_valid_address, is_zero_address

logger = logging.getLogger(__name__)

OWNER_ROLES = frozenset({Role.OWNER, Role.ADMIN})


class RoleRegistry:
    def __init__(self, owner: str, assignments: Optional[Dict[str, Set[Role]]] = None):
        if is_zero_address(owner) or not is_valid_address(owner):
            raise InvalidAddress(owner, field="owner")
        self.owner = owner
        # address -> explicitly granted roles
        self._members: Dict[str, Set[Role]] = {}
        for addr, roles in (assignments or {}).items():
            granted = {Role(r) for r in roles} - {Role.OWNER}
            if granted:
                self._members[addr] = granted

    def roles_of(self, address: str) -> Set[Role]:
        roles = set(self._members.get(address, ()))
        if address == self.owner:
            roles |= OWNER_ROLES
        return roles

    def has_role(self, address: str, role: Role) -> bool:
        if address == self.owner and role in OWNER_ROLES:
            return True
        return role in self._members.get(address, ())

    def members(self, role: Role) -> List[str]:
        found = [addr for addr, roles in self._members.items() if role in roles]
        if role in OWNER_ROLES and self.owner not in found:
            found.append(self.owner)
        return sorted(found)

    def authorize(self, caller: str, *roles: Role) -> Role:
        """Returns the first listed role the caller holds, else raises Unauthorized(roles[0])."""
        if not roles:
            raise ValueError("authorize() needs at least one role")
        for role in roles:
            if self.has_role(caller, role):
                return role
        raise Unauthorized(roles[0], caller)

    def grant(self, role: Role, account: str) -> bool:
        """Adds `role` to `account`. Returns False when it was already held."""
        role = Role(role)
        self._check_assignable(role, account)
        if self.has_role(account, role):
            return False
        self._members.setdefault(account, set()).add(role)
        logger.info(f"Granted {role.value} to {account}")
        return True

    def revoke(self, role: Role, account: str) -> bool:
        """Removes `role` from `account`. Returns False when it was not held."""
        role = Role(role)
        self._check_assignable(role, account)
        if account == self.owner and role in OWNER_ROLES:
            raise Unauthorized(Role.OWNER, account, message="owner roles cannot be revoked")
        held = self._members.get(account)
        if not held or role not in held:
            return False
        held.discard(role)
        if not held:
            del self._members[account]
        logger.info(f"Revoked {role.value} from {account}")
        return True

    def _check_assignable(self, role: Role, account: str) -> None:
        if role == Role.OWNER:
            raise Unauthorized(Role.OWNER, account, message="owner role is fixed at construction")
        if is_zero_address(account) or not is_valid_address(account):
            raise InvalidAddress(account, field="account")

    # --- Serialization ---

    def assignments(self) -> List[RoleAssignment]:
        return [
            RoleAssignment(address=addr, roles=sorted(roles, key=lambda r: r.value))
            for addr, roles in sorted(self._members.items())
        ]

    @classmethod
    def from_assignments(cls, owner: str, assignments: Iterable[RoleAssignment]) -> "RoleRegistry":
        return cls(owner, {a.address: set(a.roles) for a in assignments})
