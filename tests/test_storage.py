"""
Slot storage and protected-slot tests.
"""

import hashlib

import pytest

from colony.hardening import ProtectedVariable, ValidationError
from colony.storage import (
    COLONY_NETWORK_SLOT,
    METATRANSACTION_NONCES_SLOT,
    PROTECTED_SLOTS,
    ROOT_SKILL_TREE_SLOT,
    SlotStorage,
    derive_slot,
    protect_slot,
)

from conftest import USER


class TestProtectSlot:
    """Dynamic writes may never alias a reserved slot."""

    @pytest.mark.parametrize("slot", [COLONY_NETWORK_SLOT, ROOT_SKILL_TREE_SLOT])
    def test_reserved_slots_rejected(self, slot):
        with pytest.raises(ProtectedVariable) as exc_info:
            protect_slot(slot)
        assert exc_info.value.code == "colony-protected-variable"

    @pytest.mark.parametrize("slot", [0, 5, 7, 34, 35, 37, 2 ** 255])
    def test_other_slots_allowed(self, slot):
        protect_slot(slot)

    def test_write_dynamic_checks_before_writing(self):
        storage = SlotStorage()
        with pytest.raises(ProtectedVariable):
            storage.write_dynamic(COLONY_NETWORK_SLOT, 123)
        assert storage.read(COLONY_NETWORK_SLOT) == 0

    def test_write_fixed_may_use_reserved_slots(self):
        storage = SlotStorage()
        storage.write_fixed(ROOT_SKILL_TREE_SLOT, 9)
        assert storage.read(ROOT_SKILL_TREE_SLOT) == 9


class TestDeriveSlot:
    """Per-identity slots are hashes of identity and namespace."""

    def test_formula(self):
        expected = hashlib.sha256(
            bytes(12) + bytes.fromhex(USER[2:]) + METATRANSACTION_NONCES_SLOT.to_bytes(32, "big")
        ).digest()
        assert derive_slot(USER, METATRANSACTION_NONCES_SLOT) == int.from_bytes(expected, "big")

    def test_namespaces_separate_identities(self):
        assert derive_slot(USER, 1) != derive_slot(USER, 2)

    def test_no_collision_with_reserved_slots(self):
        """Derived slots over many identities never land on a reserved slot."""
        for i in range(5_000):
            identity = "0x" + i.to_bytes(20, "big").hex()
            for namespace in (METATRANSACTION_NONCES_SLOT, 0, 1):
                assert derive_slot(identity, namespace) not in PROTECTED_SLOTS

    def test_derived_slots_are_large(self):
        """A derived slot below 2**64 would be astronomically unlikely."""
        assert all(derive_slot("0x" + f"{i:040x}", 34) > 2 ** 64 for i in range(256))


class TestSlotStorage:
    def test_unset_reads_zero(self):
        assert SlotStorage().read(12345) == 0

    def test_zero_write_clears(self):
        storage = SlotStorage()
        storage.write_fixed(1, 5)
        storage.write_fixed(1, 0)
        assert len(storage) == 0

    @pytest.mark.parametrize("value", [-1, 2 ** 256, "1"])
    def test_values_are_words(self, value):
        with pytest.raises(ValidationError):
            SlotStorage().write_fixed(1, value)

    def test_snapshot_restore(self):
        storage = SlotStorage()
        storage.write_fixed(1, 5)
        snap = storage.snapshot()
        storage.write_fixed(1, 6)
        storage.write_fixed(2, 7)

        storage.restore(snap)
        assert storage.read(1) == 5
        assert storage.read(2) == 0


class TestColonyReservedSlots:
    def test_colony_records_network_and_root_skill(self, colony, network):
        assert colony.storage.read(COLONY_NETWORK_SLOT) == int(network.address, 16)
        assert colony.storage.read(ROOT_SKILL_TREE_SLOT) == colony.get_domain(1).skill_id
