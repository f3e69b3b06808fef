"""
Domain-scoped permission checks.

A role held in a domain applies to that domain and to every domain below it.
Callers prove that a target domain lies below their permission domain by
supplying a *child skill index*: the position of the target domain's skill in
the permission domain's flattened descendant list. The sentinel index
``UINT256_MAX`` means the target is the permission domain itself.
"""

from __future__ import annotations

import threading
from enum import IntEnum
from typing import Callable, Dict, FrozenSet, Optional, Protocol, Set, Tuple

from colony.core import UINT256_MAX, normalize_address
from colony.observability import ColonyLayer, get_logger

logger = get_logger("permissions", ColonyLayer.PERMISSIONS)

ROOT_DOMAIN_ID = 1


class ColonyRole(IntEnum):
    """Roles a user can hold in a domain."""
    RECOVERY = 0
    ROOT = 1
    ARBITRATION = 2
    ARCHITECTURE = 3
    ARCHITECTURE_SUBDOMAIN = 4  # deprecated; never granted
    FUNDING = 5
    ADMINISTRATION = 6


FOUNDER_ROLES = (
    ColonyRole.RECOVERY,
    ColonyRole.ROOT,
    ColonyRole.ARBITRATION,
    ColonyRole.ARCHITECTURE,
    ColonyRole.FUNDING,
    ColonyRole.ADMINISTRATION,
)


class PermissionGate(Protocol):
    """Protocol for domain-scoped authorization."""

    def has_user_role(self, user: str, domain_id: int, role: ColonyRole) -> bool:
        ...

    def check(
        self,
        caller: str,
        permission_domain_id: int,
        child_skill_index: int,
        target_domain_id: int,
        role: ColonyRole,
    ) -> bool:
        ...


class DomainPermissionGate:
    """
    Role table plus domain inheritance through the network skill tree.

    Args:
        skill_of: maps a domain id to its skill id (None if no such domain)
        child_skill_id: the network's ``get_child_skill_id``
    """

    def __init__(
        self,
        skill_of: Callable[[int], Optional[int]],
        child_skill_id: Callable[[int, int], int],
    ):
        self._skill_of = skill_of
        self._child_skill_id = child_skill_id
        self._roles: Dict[Tuple[str, int], Set[ColonyRole]] = {}
        self._lock = threading.RLock()

    def set_user_role(self, user: str, domain_id: int, role: ColonyRole, enabled: bool = True) -> None:
        key = (normalize_address(user), domain_id)
        with self._lock:
            roles = self._roles.setdefault(key, set())
            if enabled:
                roles.add(ColonyRole(role))
            else:
                roles.discard(ColonyRole(role))
        logger.info(
            "Role updated",
            operation="set_user_role",
            user=key[0],
            domain_id=domain_id,
            role=ColonyRole(role).name,
            enabled=enabled,
        )

    def has_user_role(self, user: str, domain_id: int, role: ColonyRole) -> bool:
        with self._lock:
            return role in self._roles.get((normalize_address(user), domain_id), ())

    def snapshot(self) -> Dict[Tuple[str, int], FrozenSet[ColonyRole]]:
        with self._lock:
            return {key: frozenset(roles) for key, roles in self._roles.items()}

    def restore(self, snapshot: Dict[Tuple[str, int], FrozenSet[ColonyRole]]) -> None:
        with self._lock:
            self._roles = {key: set(roles) for key, roles in snapshot.items()}

    def validate_domain_inheritance(
        self,
        permission_domain_id: int,
        child_skill_index: int,
        target_domain_id: int,
    ) -> bool:
        """True if ``target_domain_id`` is addressed by the index from the permission domain."""
        permission_skill = self._skill_of(permission_domain_id)
        target_skill = self._skill_of(target_domain_id)
        if permission_skill is None or target_skill is None:
            return False
        if permission_domain_id == target_domain_id:
            return child_skill_index == UINT256_MAX
        return self._child_skill_id(permission_skill, child_skill_index) == target_skill

    def check(
        self,
        caller: str,
        permission_domain_id: int,
        child_skill_index: int,
        target_domain_id: int,
        role: ColonyRole,
    ) -> bool:
        allowed = (
            self.has_user_role(caller, permission_domain_id, role)
            and self.validate_domain_inheritance(permission_domain_id, child_skill_index, target_domain_id)
        )
        if not allowed:
            logger.warning(
                "Permission check failed",
                operation="check",
                caller=caller,
                permission_domain_id=permission_domain_id,
                target_domain_id=target_domain_id,
                role=ColonyRole(role).name,
            )
        return allowed
