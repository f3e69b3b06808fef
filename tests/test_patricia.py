"""
Tests for Patricia tree hashing and proofs.
"""

import random

import pytest

from colony.patricia import EMPTY_ROOT, Label, PatriciaProofPrimitive, PatriciaTree


def _keys(n, seed=7):
    rng = random.Random(seed)
    return [rng.randbytes(72) for _ in range(n)]


class TestLabel:
    def test_split_and_chop(self):
        label = Label(0b1011 << 252, 4)
        prefix, suffix = label.split_at(1)

        assert prefix == Label(1 << 255, 1)
        assert suffix == Label(0b011 << 253, 3)

        bit, rest = suffix.chop_first_bit()
        assert bit == 0
        assert rest == Label(0b11 << 254, 2)

    def test_split_beyond_length(self):
        with pytest.raises(ValueError):
            Label(0, 3).split_at(4)

    def test_chop_empty(self):
        with pytest.raises(ValueError):
            Label(0, 0).chop_first_bit()


class TestPatriciaTree:
    def test_empty_root(self):
        assert PatriciaTree().get_root() == EMPTY_ROOT

    def test_every_leaf_proves_against_root(self):
        tree = PatriciaTree()
        primitive = PatriciaProofPrimitive()
        keys = _keys(40)
        for i, key in enumerate(keys):
            tree.insert(key, i.to_bytes(4, "big"))

        root = tree.get_root()
        for i, key in enumerate(keys):
            branch_mask, siblings = tree.get_proof(key)
            assert primitive.implied_root_hash(key, i.to_bytes(4, "big"), branch_mask, siblings) == root

    def test_root_independent_of_insertion_order(self):
        keys = _keys(16)
        forward, backward = PatriciaTree(), PatriciaTree()
        for key in keys:
            forward.insert(key, key[:8])
        for key in reversed(keys):
            backward.insert(key, key[:8])

        assert forward.get_root() == backward.get_root()

    def test_update_changes_root(self):
        tree = PatriciaTree()
        tree.insert(b"a", b"1")
        tree.insert(b"b", b"2")
        before = tree.get_root()

        tree.insert(b"a", b"3")
        assert tree.get_root() != before
        assert tree.get(b"a") == b"3"
        assert len(tree) == 2

    def test_proof_for_missing_key(self):
        tree = PatriciaTree()
        tree.insert(b"present", b"1")
        with pytest.raises(KeyError):
            tree.get_proof(b"absent")

    def test_single_leaf_proof_is_empty(self):
        tree = PatriciaTree()
        tree.insert(b"only", b"1")
        assert tree.get_proof(b"only") == (0, [])

    @pytest.mark.slow
    def test_large_tree(self):
        tree = PatriciaTree()
        primitive = PatriciaProofPrimitive()
        keys = _keys(2_000, seed=11)
        for key in keys:
            tree.insert(key, key[::-1])

        root = tree.get_root()
        for key in keys[::97]:
            branch_mask, siblings = tree.get_proof(key)
            assert primitive.implied_root_hash(key, key[::-1], branch_mask, siblings) == root


class TestPatriciaProofPrimitive:
    def test_configured_digest(self):
        """reputation.hash_algorithm selects the digest for tree and primitive."""
        from colony.config import get_config_manager

        get_config_manager().set("reputation.hash_algorithm", "sha3_256")
        tree = PatriciaTree()
        tree.insert(b"k1", b"v1")
        tree.insert(b"k2", b"v2")
        branch_mask, siblings = tree.get_proof(b"k1")

        assert tree.algorithm == "sha3_256"
        assert PatriciaProofPrimitive().implied_root_hash(b"k1", b"v1", branch_mask, siblings) == tree.get_root()
        assert PatriciaProofPrimitive("sha256").implied_root_hash(
            b"k1", b"v1", branch_mask, siblings
        ) != tree.get_root()

    def test_digest_must_be_32_bytes(self):
        with pytest.raises(ValueError):
            PatriciaProofPrimitive("md5")

    def test_sibling_limit(self):
        primitive = PatriciaProofPrimitive(max_siblings=2)
        with pytest.raises(ValueError):
            primitive.implied_root_hash(b"k", b"v", 0b111, [b"\x00" * 32] * 3)

    def test_mask_and_siblings_must_agree(self):
        primitive = PatriciaProofPrimitive()
        with pytest.raises(ValueError):
            primitive.implied_root_hash(b"k", b"v", 0b11, [b"\x00" * 32])
