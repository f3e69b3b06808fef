"""
Colony Network Registry Interface

The network registry is an external collaborator shared by every colony. A
colony consumes four capabilities from it:

    reputation log   append_reputation_update_log(user, amount, skill_id)
    reputation root  get_reputation_root_hash() -> 32 bytes
    upgrades         get_colony_version_resolver(version) -> resolver | None
    skill tree       add_skill(parent) / get_child_skill_id(skill, index)

``ColonyNetwork`` is the protocol; ``InMemoryColonyNetwork`` is a reference
implementation used by tests and the CLI.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import secrets
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

from colony.core import ADDRESS_SIZE, UINT256_MAX, normalize_address
from colony.hardening import ValidationError, Validators
from colony.observability import ColonyLayer, get_logger

logger = get_logger("network", ColonyLayer.NETWORK)


class ColonyNetwork(Protocol):
    """Protocol for the network-wide registry."""

    address: str

    def append_reputation_update_log(
        self,
        user: str,
        amount: int,
        skill_id: int,
        colony: Optional[str] = None,
    ) -> None:
        """Queue a signed reputation change for ``user`` in ``skill_id``."""
        ...

    def get_reputation_root_hash(self) -> bytes:
        """The canonical reputation root hash (32 bytes)."""
        ...

    def get_colony_version_resolver(self, version: int) -> Optional[Any]:
        """The resolver (logic class) registered for ``version``, if any."""
        ...

    def get_child_skill_id(self, skill_id: int, child_skill_index: int) -> int:
        """Descendant of ``skill_id`` at ``child_skill_index``."""
        ...

    def add_skill(self, parent_skill_id: int) -> int:
        """Create a child skill and return its id."""
        ...

    def is_skill(self, skill_id: int) -> bool:
        ...


# =============================================================================
# REFERENCE IMPLEMENTATION
# =============================================================================

@dataclass
class Skill:
    """A node of the global skill tree."""
    skill_id: int
    parent_id: Optional[int]
    # Every descendant, in creation order
    children: List[int] = field(default_factory=list)


@dataclass(frozen=True)
class ReputationLogEntry:
    """One queued reputation update."""
    colony: Optional[str]
    user: str
    amount: int
    skill_id: int
    sequence: int


class InMemoryColonyNetwork:
    """
    In-memory network registry.

    Skills are numbered from 1; the first skill created is the root of the
    tree. ``children`` of a skill lists all of its descendants, so a child
    skill index addresses any skill below it, not only direct children.
    """

    def __init__(self, address: Optional[str] = None, reputation_root_hash: bytes = b"\x00" * 32):
        self.address = normalize_address(address) if address else "0x" + secrets.token_hex(ADDRESS_SIZE)
        self._lock = threading.RLock()
        self._skills: Dict[int, Skill] = {}
        self._resolvers: Dict[int, Any] = {}
        self._reputation_log: List[ReputationLogEntry] = []
        self._root_hash = reputation_root_hash

    # -- reputation ---------------------------------------------------------

    def append_reputation_update_log(
        self,
        user: str,
        amount: int,
        skill_id: int,
        colony: Optional[str] = None,
    ) -> None:
        Validators.validate_int(amount, "amount").raise_if_invalid()
        with self._lock:
            if skill_id not in self._skills:
                raise ValidationError("skill_id", "Skill does not exist", skill_id)
            entry = ReputationLogEntry(
                colony=normalize_address(colony) if colony else None,
                user=normalize_address(user),
                amount=amount,
                skill_id=skill_id,
                sequence=len(self._reputation_log),
            )
            self._reputation_log.append(entry)
        logger.debug(
            "Reputation update queued",
            operation="append_reputation_update_log",
            user=entry.user,
            skill_id=skill_id,
            amount=str(amount),
        )

    def get_reputation_log(self) -> List[ReputationLogEntry]:
        with self._lock:
            return list(self._reputation_log)

    def get_reputation_root_hash(self) -> bytes:
        with self._lock:
            return self._root_hash

    def set_reputation_root_hash(self, root_hash: bytes) -> None:
        """Publish a new canonical root (normally done by reputation mining)."""
        root = Validators.validate_digest(root_hash, "root_hash")
        root.raise_if_invalid()
        with self._lock:
            self._root_hash = root.sanitized_value
        logger.info("Reputation root hash updated", root_hash=self._root_hash.hex())

    # -- colony versions ----------------------------------------------------

    def add_colony_version(self, version: int, resolver: Any) -> None:
        """Register the resolver implementing ``version``."""
        Validators.validate_uint(version, "version").raise_if_invalid()
        with self._lock:
            self._resolvers[version] = resolver
        logger.info("Colony version registered", version=version)

    def get_colony_version_resolver(self, version: int) -> Optional[Any]:
        with self._lock:
            return self._resolvers.get(version)

    def get_current_colony_version(self) -> int:
        with self._lock:
            return max(self._resolvers, default=0)

    # -- skill tree ---------------------------------------------------------

    def add_skill(self, parent_skill_id: int = 0) -> int:
        """Create a skill. ``parent_skill_id`` 0 creates a new root skill."""
        with self._lock:
            if parent_skill_id and parent_skill_id not in self._skills:
                raise ValidationError("parent_skill_id", "Parent skill does not exist", parent_skill_id)
            skill_id = len(self._skills) + 1
            self._skills[skill_id] = Skill(skill_id, parent_skill_id or None)

            ancestor = parent_skill_id or None
            while ancestor is not None:
                node = self._skills[ancestor]
                node.children.append(skill_id)
                ancestor = node.parent_id
            return skill_id

    def is_skill(self, skill_id: int) -> bool:
        with self._lock:
            return skill_id in self._skills

    def get_skill(self, skill_id: int) -> Optional[Skill]:
        with self._lock:
            return self._skills.get(skill_id)

    def get_child_skill_id(self, skill_id: int, child_skill_index: int) -> int:
        """Descendant at ``child_skill_index``; UINT256_MAX means the skill itself.

        Out-of-range indices return 0, which matches no skill.
        """
        with self._lock:
            if child_skill_index == UINT256_MAX:
                return skill_id
            skill = self._skills.get(skill_id)
            if skill is None or not 0 <= child_skill_index < len(skill.children):
                return 0
            return skill.children[child_skill_index]
