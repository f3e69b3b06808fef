"""
Colony Logic Versions and Upgrades

A colony delegates its versioned behaviour to an *active logic* object. The
network keeps a registry of version -> resolver, where a resolver is a
``ColonyLogic`` subclass. Upgrading:

    ┌──────────────┐  1. caller holds Root in the root domain
    │   upgrade    │  2. new_version == current + 1
    │ (caller, v') │  3. network has a resolver for v'
    └──────┬───────┘
           │ 4. repoint colony's active logic to resolver()
           ▼
    ┌──────────────┐
    │  colony      │  5. colony.finish_upgrade via the active pointer,
    │  ._logic ────┼──── so the *new* version's migration runs
    └──────┬───────┘
           │ 6. audit COLONY_UPGRADED (caller, old, new)
           ▼

Steps 4-6 run inside one colony transaction. If the migration raises, the
pointer and all colony state are put back and the error propagates.

The migration hook carries no re-entry guard: a Root holder can invoke it
again directly through ``Colony.finish_upgrade``.

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from colony.core import normalize_address
from colony.hardening import (
    InvariantChecker,
    InvariantViolation,
    Unauthorized,
    UnregisteredVersion,
)
from colony.network import ColonyNetwork
from colony.observability import ColonyLayer, get_logger, timed_operation
from colony.permissions import ROOT_DOMAIN_ID, ColonyRole, PermissionGate
from colony.security import AuditEventType, AuditLogger

if TYPE_CHECKING:
    from colony.colony import Colony

logger = get_logger("upgrade", ColonyLayer.UPGRADE)


class ColonyLogic:
    """Base logic version. Subclasses bump ``VERSION`` and may override the hook."""

    VERSION = 1

    def finish_upgrade(self, colony: "Colony") -> None:
        """Migration entry point, run once after this version becomes active."""


class UpgradeController:
    """
    Performs one-step upgrades of a colony's active logic.

    Args:
        colony: the colony being upgraded
        network: registry of version resolvers
        permissions: role table used to authorize callers
        audit: audit trail receiving the upgrade record
    """

    def __init__(
        self,
        colony: "Colony",
        network: ColonyNetwork,
        permissions: PermissionGate,
        audit: AuditLogger,
    ):
        self._colony = colony
        self._network = network
        self._permissions = permissions
        self._audit = audit

    @property
    def current_version(self) -> int:
        return self._colony.active_logic.VERSION

    @timed_operation(logger, "upgrade")
    def upgrade(self, caller: str, new_version: int) -> None:
        if not self._permissions.has_user_role(caller, ROOT_DOMAIN_ID, ColonyRole.ROOT):
            raise Unauthorized(f"{caller} does not hold Root in the root domain")

        old_version = self.current_version
        InvariantChecker.check_version_step(old_version, new_version)

        resolver = self._network.get_colony_version_resolver(new_version)
        if resolver is None:
            raise UnregisteredVersion(f"No resolver registered for version {new_version}")

        with self._colony.transaction():
            self._colony.set_active_logic(_instantiate(resolver, new_version))
            self._colony.run_migration()
            self._audit.log(
                event_type=AuditEventType.COLONY_UPGRADED,
                actor=normalize_address(caller),
                resource_type="colony",
                resource_id=self._colony.address,
                details={"old_version": old_version, "new_version": new_version},
            )

        logger.info(
            "Colony upgraded",
            operation="upgrade",
            colony=self._colony.address,
            old_version=old_version,
            new_version=new_version,
        )


def _instantiate(resolver: Any, version: int) -> ColonyLogic:
    """Turn a registered resolver (class or instance) into the active logic."""
    logic = resolver() if isinstance(resolver, type) else resolver
    if not isinstance(logic, ColonyLogic):
        raise InvariantViolation(f"Resolver for version {version} is not a ColonyLogic")
    if logic.VERSION != version:
        raise InvariantViolation(
            f"Resolver registered for version {version} implements version {logic.VERSION}"
        )
    return logic
