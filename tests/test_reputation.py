"""
Reputation Key and Proof Verification Tests

Copyright (c) 2026 Momentum. All rights reserved.
"""

import hashlib

import pytest

from colony.core import UINT256_MAX
from colony.patricia import PatriciaTree
from colony.reputation import KEY_SIZE, ReputationKey

from conftest import COLONY, STRANGER, USER

OTHER_COLONY = "0x" + "0c" * 20


def _value(amount: int) -> bytes:
    # reputation amount || unique id, as produced by miners
    return amount.to_bytes(32, "big") + (7).to_bytes(32, "big")


# =============================================================================
# KEY LAYOUT
# =============================================================================

class TestReputationKey:
    """The 72-byte positional key layout."""

    def test_layout_offsets(self):
        """colony at 0, skill id at 20 (32 bytes, big-endian), user at 52."""
        key = ReputationKey(colony=COLONY, skill_id=0x0102, user=USER).encode()

        assert len(key) == KEY_SIZE == 72
        assert key[0:20] == bytes.fromhex(COLONY[2:])
        assert key[20:52] == (0x0102).to_bytes(32, "big")
        assert key[52:72] == bytes.fromhex(USER[2:])

    def test_decode_inverts_encode(self):
        original = ReputationKey(colony=COLONY, skill_id=UINT256_MAX, user=USER)
        assert ReputationKey.decode(original.encode()) == original

    def test_decode_accepts_hex(self):
        key = ReputationKey(colony=COLONY, skill_id=3, user=USER)
        assert ReputationKey.decode("0x" + key.encode().hex()).skill_id == 3

    @pytest.mark.parametrize("length", [0, 71, 73, 104])
    def test_wrong_length_is_rejected(self, length):
        with pytest.raises(ValueError):
            ReputationKey.decode(b"\x01" * length)


# =============================================================================
# VERIFIER
# =============================================================================

@pytest.fixture
def reputation_tree(colony):
    """A tree holding the caller's entry plus neighbours, published as the network root."""
    skill = colony.get_domain(1).skill_id
    tree = PatriciaTree()
    entries = {
        ReputationKey(COLONY, skill, USER): _value(1_000),
        ReputationKey(COLONY, skill, STRANGER): _value(5),
        ReputationKey(OTHER_COLONY, skill, USER): _value(77),
        ReputationKey(COLONY, skill + 1, USER): _value(12),
    }
    for key, value in entries.items():
        tree.insert(key.encode(), value)
    colony.get_colony_network().set_reputation_root_hash(tree.get_root())
    return tree, skill


class TestReputationProofVerifier:
    """verify() is a boolean oracle over the caller's own reputation."""

    def test_valid_proof(self, colony, reputation_tree):
        tree, skill = reputation_tree
        key = ReputationKey(COLONY, skill, USER).encode()
        branch_mask, siblings = tree.get_proof(key)

        assert colony.verify_reputation_proof(USER, key, _value(1_000), branch_mask, siblings) is True

    def test_caller_must_be_embedded_user(self, colony, reputation_tree):
        """A valid proof about USER does not verify for anyone else."""
        tree, skill = reputation_tree
        key = ReputationKey(COLONY, skill, USER).encode()
        branch_mask, siblings = tree.get_proof(key)

        assert colony.verify_reputation_proof(STRANGER, key, _value(1_000), branch_mask, siblings) is False

    def test_colony_must_be_self(self, colony, reputation_tree):
        """A valid proof for another colony does not verify here."""
        tree, skill = reputation_tree
        key = ReputationKey(OTHER_COLONY, skill, USER).encode()
        branch_mask, siblings = tree.get_proof(key)

        assert colony.verify_reputation_proof(USER, key, _value(77), branch_mask, siblings) is False

    def test_wrong_value(self, colony, reputation_tree):
        tree, skill = reputation_tree
        key = ReputationKey(COLONY, skill, USER).encode()
        branch_mask, siblings = tree.get_proof(key)

        assert colony.verify_reputation_proof(USER, key, _value(1_001), branch_mask, siblings) is False

    def test_stale_root(self, colony, reputation_tree):
        """Once the network publishes a new root, old proofs stop verifying."""
        tree, skill = reputation_tree
        key = ReputationKey(COLONY, skill, USER).encode()
        branch_mask, siblings = tree.get_proof(key)

        colony.get_colony_network().set_reputation_root_hash(b"\x11" * 32)
        assert colony.verify_reputation_proof(USER, key, _value(1_000), branch_mask, siblings) is False

    def test_tampered_sibling(self, colony, reputation_tree):
        tree, skill = reputation_tree
        key = ReputationKey(COLONY, skill, USER).encode()
        branch_mask, siblings = tree.get_proof(key)
        siblings[0] = bytes(32)

        assert colony.verify_reputation_proof(USER, key, _value(1_000), branch_mask, siblings) is False

    @pytest.mark.parametrize("key", [b"", b"\x00" * 71, b"\x00" * 73, "zz", 12345])
    def test_malformed_key_returns_false(self, colony, key):
        """Malformed keys never raise."""
        assert colony.verify_reputation_proof(USER, key, b"v", 0, []) is False

    def test_malformed_proof_returns_false(self, colony, reputation_tree):
        """A proof the primitive cannot process yields False, not an error."""
        tree, skill = reputation_tree
        key = ReputationKey(COLONY, skill, USER).encode()
        branch_mask, siblings = tree.get_proof(key)

        assert colony.verify_reputation_proof(USER, key, _value(1_000), branch_mask, siblings[:-1]) is False
        assert colony.verify_reputation_proof(USER, key, _value(1_000), branch_mask, [b"\x00"] * len(siblings)) is False
        assert colony.verify_reputation_proof(USER, key, _value(1_000), -1, siblings) is False

    def test_malformed_caller_returns_false(self, colony, reputation_tree):
        tree, skill = reputation_tree
        key = ReputationKey(COLONY, skill, USER).encode()
        branch_mask, siblings = tree.get_proof(key)

        assert colony.verify_reputation_proof("nobody", key, _value(1_000), branch_mask, siblings) is False

    def test_verification_has_no_side_effects(self, colony, reputation_tree):
        tree, skill = reputation_tree
        key = ReputationKey(COLONY, skill, USER).encode()
        branch_mask, siblings = tree.get_proof(key)
        events = len(colony.audit)

        colony.verify_reputation_proof(USER, key, _value(1_000), branch_mask, siblings)
        colony.verify_reputation_proof(STRANGER, key, _value(1_000), branch_mask, siblings)

        assert len(colony.audit) == events
        assert colony.get_colony_network().get_reputation_log() == []

    def test_single_leaf_known_root(self, colony):
        """With one leaf the root is H(H(value) || uint256(256) || H(key))."""
        key = ReputationKey(COLONY, 1, USER).encode()
        value = _value(42)
        expected = hashlib.sha256(
            hashlib.sha256(value).digest()
            + (256).to_bytes(32, "big")
            + hashlib.sha256(key).digest()
        ).digest()
        colony.get_colony_network().set_reputation_root_hash(expected)

        assert colony.verify_reputation_proof(USER, key, value, 0, []) is True
