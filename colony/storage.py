"""
Word-addressed colony storage with protected slots.

Fixed configuration lives at low, well-known slot numbers. Per-identity
counters live at slots derived by hashing the identity with a namespace
constant. A derived slot that happened to equal a fixed slot would let its
owner overwrite the network registry or root skill reference, so every write
to a derived slot passes through ``protect_slot`` first.
"""

from __future__ import annotations

import threading
from typing import Dict, FrozenSet

from colony.core import address_to_word, int_to_word, sha256_digest
from colony.hardening import ProtectedVariable, Validators
from colony.observability import ColonyLayer, get_logger

logger = get_logger("storage", ColonyLayer.STORAGE)

# Reserved slots
COLONY_NETWORK_SLOT = 6
ROOT_SKILL_TREE_SLOT = 36

# Namespaces for derived slots
METATRANSACTION_NONCES_SLOT = 34

PROTECTED_SLOTS: FrozenSet[int] = frozenset({COLONY_NETWORK_SLOT, ROOT_SKILL_TREE_SLOT})


def derive_slot(identity: str, namespace: int) -> int:
    """Slot of ``identity``'s entry in the ``namespace`` mapping.

    ``sha256(word(identity) || word(namespace))`` read as a big-endian integer.
    """
    return int.from_bytes(sha256_digest(address_to_word(identity) + int_to_word(namespace)), "big")


def protect_slot(slot: int) -> None:
    """Refuse a dynamically computed slot that aliases a reserved one."""
    if slot in PROTECTED_SLOTS:
        logger.error(
            "Write to protected slot refused",
            error_code=ProtectedVariable.code,
            slot=slot,
        )
        raise ProtectedVariable(f"Slot {slot} is reserved")


class SlotStorage:
    """Sparse map of 256-bit slot -> 256-bit word. Unset slots read as 0."""

    def __init__(self):
        self._slots: Dict[int, int] = {}
        self._lock = threading.RLock()

    def read(self, slot: int) -> int:
        with self._lock:
            return self._slots.get(slot, 0)

    def write_fixed(self, slot: int, value: int) -> None:
        """Write a slot whose number is a compile-time constant."""
        self._write(slot, value)

    def write_dynamic(self, slot: int, value: int) -> None:
        """Write a slot whose number was computed at runtime."""
        protect_slot(slot)
        self._write(slot, value)

    def _write(self, slot: int, value: int) -> None:
        Validators.validate_uint(slot, "slot").raise_if_invalid()
        Validators.validate_uint(value, "value").raise_if_invalid()
        with self._lock:
            if value == 0:
                self._slots.pop(slot, None)
            else:
                self._slots[slot] = value

    def snapshot(self) -> Dict[int, int]:
        with self._lock:
            return dict(self._slots)

    def restore(self, snapshot: Dict[int, int]) -> None:
        with self._lock:
            self._slots = dict(snapshot)

    def __len__(self) -> int:
        with self._lock:
            return len(self._slots)
