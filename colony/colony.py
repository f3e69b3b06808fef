"""
Colony Facade

One colony: a tree of domains, a stake authorization ledger, a reputation
proof verifier and an upgradeable logic pointer, wired to the network
registry and the stake-locking ledger.

    ┌─────────────────────────────────────────────────────────────────┐
    │                             Colony                              │
    │                                                                 │
    │  domains ──► DomainPermissionGate ◄── roles (founder: all)      │
    │     │                 │                                         │
    │     ▼                 ▼                                         │
    │  AuthorizationLedger ──────────────► TokenLocking (external)    │
    │  ReputationProofVerifier ──────────► ColonyNetwork (external)   │
    │  UpgradeController ──► _logic ──► ColonyLogic.finish_upgrade    │
    │  MetaTransactionRelay ──► SlotStorage (nonces, reserved slots)  │
    │                                                                 │
    │  AuditLogger: hash-chained record of every successful change    │
    └─────────────────────────────────────────────────────────────────┘

Every mutating call is all-or-nothing: ``transaction()`` snapshots local
state, roles included, and restores it if anything inside raises. Stake
mirror calls made inside the block are compensated by the ledger.

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Optional, Sequence, Union

from colony.core import normalize_address
from colony.hardening import (
    InvariantChecker,
    Unauthorized,
    ValidationError,
    Validators,
)
from colony.ledger import AuthorizationLedger
from colony.metatx import MetaTransactionRelay
from colony.network import ColonyNetwork
from colony.observability import ColonyLayer, get_logger
from colony.patricia import PatriciaProofPrimitive, ProofPrimitive
from colony.permissions import FOUNDER_ROLES, ROOT_DOMAIN_ID, ColonyRole, DomainPermissionGate
from colony.reputation import ReputationProofVerifier
from colony.security import AuditEventType, AuditLogger
from colony.storage import COLONY_NETWORK_SLOT, ROOT_SKILL_TREE_SLOT, SlotStorage
from colony.token_locking import TokenLocking
from colony.upgrade import ColonyLogic, UpgradeController

logger = get_logger("colony", ColonyLayer.LEDGER)


@dataclass(frozen=True)
class Domain:
    """An organisational subtree of the colony."""
    skill_id: int


class Colony:
    """
    A colony bound to a network registry and a stake-locking ledger.

    Creating a colony registers its root skill with the network, creates the
    root domain (id 1) and grants ``founder`` every role there.

    Args:
        address: the colony's own identity
        network: network registry
        token_locking: external stake-locking ledger
        founder: account receiving the founder roles in the root domain
        token: staking token address (defaults to ``ledger.token_id``)
        audit: audit trail (a fresh one by default)
        primitive: tree-proof primitive (``PatriciaProofPrimitive`` by default)
        logic: initial logic version (``ColonyLogic`` by default)
    """

    def __init__(
        self,
        address: str,
        network: ColonyNetwork,
        token_locking: TokenLocking,
        founder: str,
        token: Optional[str] = None,
        audit: Optional[AuditLogger] = None,
        primitive: Optional[ProofPrimitive] = None,
        logic: Optional[ColonyLogic] = None,
    ):
        if token is None:
            from colony.config import get_config
            token = get_config().ledger.token_id.get()

        self.address = normalize_address(address)
        self._network = network
        self._token = normalize_address(token)
        self._logic = logic or ColonyLogic()
        self._metadata = ""
        self._domains: Dict[int, Domain] = {}
        self._lock = threading.RLock()

        self.audit = audit if audit is not None else AuditLogger()
        self.storage = SlotStorage()
        self.permissions = DomainPermissionGate(
            skill_of=self._skill_of,
            child_skill_id=network.get_child_skill_id,
        )
        self.ledger = AuthorizationLedger(
            colony_address=self.address,
            token=self._token,
            token_locking=token_locking,
            permissions=self.permissions,
            domain_exists=self._domain_exists,
            audit=self.audit,
        )
        self.verifier = ReputationProofVerifier(
            self.address, network, primitive or PatriciaProofPrimitive()
        )
        self.upgrades = UpgradeController(self, network, self.permissions, self.audit)
        self.metatx = MetaTransactionRelay(self, self.storage, self.audit)

        root_skill = network.add_skill(0)
        self._domains[ROOT_DOMAIN_ID] = Domain(root_skill)
        self.storage.write_fixed(COLONY_NETWORK_SLOT, int(normalize_address(network.address), 16))
        self.storage.write_fixed(ROOT_SKILL_TREE_SLOT, root_skill)
        for role in FOUNDER_ROLES:
            self.permissions.set_user_role(founder, ROOT_DOMAIN_ID, role)

        logger.info(
            "Colony created",
            operation="create_colony",
            colony=self.address,
            token=self._token,
            root_skill=root_skill,
        )

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Run a block atomically against this colony's local state."""
        with self._lock, self.ledger.atomic():
            saved = (
                self._logic,
                self._metadata,
                dict(self._domains),
                self.permissions.snapshot(),
                self.storage.snapshot(),
                len(self.audit),
            )
            try:
                yield
            except Exception as exc:
                self._logic, self._metadata = saved[0], saved[1]
                self._domains = saved[2]
                self.permissions.restore(saved[3])
                self.storage.restore(saved[4])
                self.audit.truncate(saved[5])
                logger.warning(
                    "Colony transaction rolled back",
                    colony=self.address,
                    error_code=getattr(exc, "code", type(exc).__name__),
                )
                raise

    # -------------------------------------------------------------------------
    # Basic queries
    # -------------------------------------------------------------------------

    def version(self) -> int:
        return self._logic.VERSION

    def get_token(self) -> str:
        return self._token

    def get_colony_network(self) -> ColonyNetwork:
        return self._network

    def get_metadata(self) -> str:
        return self._metadata

    def get_domain(self, domain_id: int) -> Domain:
        with self._lock:
            domain = self._domains.get(domain_id)
        if domain is None:
            raise ValidationError("domain_id", "Domain does not exist", domain_id)
        return domain

    def get_domain_count(self) -> int:
        with self._lock:
            return len(self._domains)

    def _domain_exists(self, domain_id: int) -> bool:
        with self._lock:
            return domain_id in self._domains

    def _skill_of(self, domain_id: int) -> Optional[int]:
        with self._lock:
            domain = self._domains.get(domain_id)
        return domain.skill_id if domain else None

    def _require_root(self, caller: str, role: ColonyRole = ColonyRole.ROOT) -> None:
        if not self.permissions.has_user_role(caller, ROOT_DOMAIN_ID, role):
            raise Unauthorized(f"{caller} does not hold {role.name} in the root domain")

    def _require_domain_role(
        self,
        caller: str,
        permission_domain_id: int,
        child_skill_index: int,
        domain_id: int,
        role: ColonyRole,
    ) -> None:
        if not self.permissions.check(caller, permission_domain_id, child_skill_index, domain_id, role):
            raise Unauthorized(
                f"{caller} does not hold {role.name} over domain {domain_id} "
                f"via domain {permission_domain_id}"
            )

    # -------------------------------------------------------------------------
    # Stake
    # -------------------------------------------------------------------------

    def approve_stake(self, caller: str, obligator: str, domain_id: int, amount: int) -> None:
        self.ledger.approve(caller, obligator, domain_id, amount)

    def obligate_stake(self, caller: str, user: str, domain_id: int, amount: int) -> None:
        self.ledger.obligate(caller, user, domain_id, amount)

    def deobligate_stake(self, caller: str, user: str, domain_id: int, amount: int) -> None:
        self.ledger.deobligate(caller, user, domain_id, amount)

    def transfer_stake(
        self,
        caller: str,
        permission_domain_id: int,
        child_skill_index: int,
        obligator: str,
        user: str,
        domain_id: int,
        amount: int,
        beneficiary: str,
    ) -> None:
        self.ledger.transfer(
            caller, permission_domain_id, child_skill_index,
            obligator, user, domain_id, amount, beneficiary,
        )

    def get_approval(self, user: str, obligator: str, domain_id: int) -> int:
        return self.ledger.get_approval(user, obligator, domain_id)

    def get_obligation(self, user: str, obligator: str, domain_id: int) -> int:
        return self.ledger.get_obligation(user, obligator, domain_id)

    # -------------------------------------------------------------------------
    # Reputation
    # -------------------------------------------------------------------------

    def verify_reputation_proof(
        self,
        caller: str,
        key: Union[bytes, str],
        value: Union[bytes, str],
        branch_mask: int,
        siblings: Sequence[Union[bytes, str]],
    ) -> bool:
        return self.verifier.verify(caller, key, value, branch_mask, siblings)

    def emit_domain_reputation_reward(self, caller: str, domain_id: int, user: str, amount: int) -> None:
        self._require_root(caller)
        InvariantChecker.check_sign(amount, positive=True)
        self._emit_reputation(caller, self.get_domain(domain_id).skill_id, user, amount)

    def emit_domain_reputation_penalty(
        self,
        caller: str,
        permission_domain_id: int,
        child_skill_index: int,
        domain_id: int,
        user: str,
        amount: int,
    ) -> None:
        self._require_domain_role(
            caller, permission_domain_id, child_skill_index, domain_id, ColonyRole.ARBITRATION
        )
        InvariantChecker.check_sign(amount, positive=False)
        self._emit_reputation(caller, self.get_domain(domain_id).skill_id, user, amount)

    def emit_skill_reputation_reward(self, caller: str, skill_id: int, user: str, amount: int) -> None:
        self._require_root(caller)
        InvariantChecker.check_sign(amount, positive=True)
        self._emit_reputation(caller, self._existing_skill(skill_id), user, amount)

    def emit_skill_reputation_penalty(self, caller: str, skill_id: int, user: str, amount: int) -> None:
        self._require_root(caller, ColonyRole.ARBITRATION)
        InvariantChecker.check_sign(amount, positive=False)
        self._emit_reputation(caller, self._existing_skill(skill_id), user, amount)

    def _existing_skill(self, skill_id: int) -> int:
        if not self._network.is_skill(skill_id):
            raise ValidationError("skill_id", "Skill does not exist", skill_id)
        return skill_id

    def _emit_reputation(self, caller: str, skill_id: int, user: str, amount: int) -> None:
        user_result = Validators.validate_address(user, "user")
        amount_result = Validators.validate_int(amount, "amount")
        for result in (user_result, amount_result):
            result.raise_if_invalid()
        with self.transaction():
            self._network.append_reputation_update_log(
                user_result.sanitized_value, amount, skill_id, colony=self.address
            )
            self.audit.log(
                event_type=AuditEventType.REPUTATION_ADJUSTED,
                actor=normalize_address(caller),
                resource_type="reputation",
                resource_id=f"{skill_id}:{user_result.sanitized_value}",
                details={
                    "skill_id": skill_id,
                    "user": user_result.sanitized_value,
                    "amount": str(amount),
                },
            )

    # -------------------------------------------------------------------------
    # Administration
    # -------------------------------------------------------------------------

    def add_domain(
        self,
        caller: str,
        permission_domain_id: int,
        child_skill_index: int,
        parent_domain_id: int,
    ) -> int:
        """Create a subdomain of ``parent_domain_id`` and return its id."""
        self._require_domain_role(
            caller, permission_domain_id, child_skill_index, parent_domain_id, ColonyRole.ARCHITECTURE
        )
        parent = self.get_domain(parent_domain_id)
        with self.transaction():
            skill_id = self._network.add_skill(parent.skill_id)
            domain_id = len(self._domains) + 1
            self._domains[domain_id] = Domain(skill_id)
            self.audit.log(
                event_type=AuditEventType.DOMAIN_ADDED,
                actor=normalize_address(caller),
                resource_type="domain",
                resource_id=str(domain_id),
                details={"parent_domain_id": parent_domain_id, "skill_id": skill_id},
            )
        logger.info(
            "Domain added",
            operation="add_domain",
            domain_id=domain_id,
            parent_domain_id=parent_domain_id,
            skill_id=skill_id,
        )
        return domain_id

    def edit_colony(self, caller: str, metadata: str) -> None:
        self._require_root(caller)
        result = Validators.validate_metadata(metadata)
        result.raise_if_invalid()
        with self.transaction():
            self._metadata = result.sanitized_value
            self.audit.log(
                event_type=AuditEventType.METADATA_EDITED,
                actor=normalize_address(caller),
                resource_type="colony",
                resource_id=self.address,
                details={"metadata": result.sanitized_value},
            )

    # -------------------------------------------------------------------------
    # Upgrades
    # -------------------------------------------------------------------------

    @property
    def active_logic(self) -> ColonyLogic:
        return self._logic

    def set_active_logic(self, logic: ColonyLogic) -> None:
        with self._lock:
            self._logic = logic

    def run_migration(self) -> None:
        """Invoke the migration hook of whichever logic is active now."""
        self._logic.finish_upgrade(self)

    def upgrade(self, caller: str, new_version: int) -> None:
        self.upgrades.upgrade(caller, new_version)

    def finish_upgrade(self, caller: str) -> None:
        """Re-run the active version's migration hook."""
        self._require_root(caller)
        with self.transaction():
            self.run_migration()

    # -------------------------------------------------------------------------
    # Meta-transactions
    # -------------------------------------------------------------------------

    def get_metatransaction_nonce(self, user: str) -> int:
        return self.metatx.get_nonce(user)

    def execute_metatransaction(self, user: str, payload: Dict[str, Any], signature: bytes) -> Any:
        return self.metatx.execute(user, payload, signature)
