"""Patricia (radix) tree hashing for reputation state proofs.

The network's reputation miners commit to every (colony, skill, user) ->
reputation entry with a binary Patricia tree over hashed keys. This module
provides the reference proof primitive consumed by the verifier and a small
in-memory tree that produces matching proofs.

Hashing (H is the configured digest, SHA-256 by default):
- key path  = H(key)                                 256 bits, MSB first
- leaf node = H(value)
- edge      = H(node || uint256(label_length) || label_data)
              label_data is the label's bits left-aligned in a 32-byte word
- branch    = H(edge_hash(child_0) || edge_hash(child_1))

The root is the edge hash of the edge leaving the root at depth 0. An empty
tree has the all-zero root.

Proofs:
- branch_mask has bit ``255 - p`` set for every branch point at key bit p on
  the path to the leaf
- siblings holds the edge hash of the other child at each branch, ordered
  root first; reconstruction consumes them deepest first

"""

from __future__ import annotations

import hashlib
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

from colony.core import UINT256_MAX, WORD_SIZE, int_to_word

KEY_BITS = 256
EMPTY_ROOT = b"\x00" * WORD_SIZE


class ProofPrimitive(Protocol):
    """Protocol for the tree-proof primitive."""

    def implied_root_hash(
        self,
        key: bytes,
        value: bytes,
        branch_mask: int,
        siblings: Sequence[bytes],
    ) -> bytes:
        """Root hash implied by (key, value) and the proof; raises on a malformed proof."""
        ...


@dataclass(frozen=True)
class Label:
    """A run of key bits: ``data`` left-aligned in 256 bits, ``length`` bits long."""
    data: int
    length: int

    def split_at(self, pos: int) -> Tuple["Label", "Label"]:
        if not 0 <= pos <= self.length:
            raise ValueError(f"Cannot split a {self.length}-bit label at {pos}")
        if pos == 0:
            prefix = 0
        else:
            prefix = self.data & (UINT256_MAX ^ ((1 << (KEY_BITS - pos)) - 1))
        suffix = (self.data << pos) & UINT256_MAX
        return Label(prefix, pos), Label(suffix, self.length - pos)

    def chop_first_bit(self) -> Tuple[int, "Label"]:
        if self.length == 0:
            raise ValueError("Cannot chop a bit from an empty label")
        return self.data >> (KEY_BITS - 1), Label((self.data << 1) & UINT256_MAX, self.length - 1)


def _lowest_bit_set(value: int) -> int:
    return (value & -value).bit_length() - 1


class _Hasher:
    """Digest wrapper shared by the primitive and the tree."""

    def __init__(self, algorithm: Optional[str] = None):
        if algorithm is None:
            from colony.config import get_config
            algorithm = get_config().reputation.hash_algorithm.get()
        if hashlib.new(algorithm).digest_size != WORD_SIZE:
            raise ValueError(f"Digest {algorithm!r} does not produce {WORD_SIZE}-byte hashes")
        self.algorithm = algorithm

    def digest(self, data: bytes) -> bytes:
        return hashlib.new(self.algorithm, data).digest()

    def edge_hash(self, node: bytes, label: Label) -> bytes:
        return self.digest(node + int_to_word(label.length) + int_to_word(label.data))


class PatriciaProofPrimitive(_Hasher):
    """Recomputes the root hash implied by a leaf and its proof."""

    def __init__(self, algorithm: Optional[str] = None, max_siblings: Optional[int] = None):
        super().__init__(algorithm)
        if max_siblings is None:
            from colony.config import get_config
            max_siblings = get_config().reputation.max_siblings.get()
        self.max_siblings = max_siblings

    def implied_root_hash(
        self,
        key: bytes,
        value: bytes,
        branch_mask: int,
        siblings: Sequence[bytes],
    ) -> bytes:
        if not 0 <= branch_mask <= UINT256_MAX:
            raise ValueError("branch_mask must be a uint256")
        if len(siblings) > self.max_siblings:
            raise ValueError(f"Too many siblings: {len(siblings)} > {self.max_siblings}")
        if bin(branch_mask).count("1") != len(siblings):
            raise ValueError("branch_mask and siblings disagree on proof depth")
        for sibling in siblings:
            if not isinstance(sibling, (bytes, bytearray)) or len(sibling) != WORD_SIZE:
                raise ValueError("Each sibling must be a 32-byte hash")

        k = Label(int.from_bytes(self.digest(bytes(key)), "big"), KEY_BITS)
        node = self.digest(bytes(value))
        i = 0
        while branch_mask:
            bit_set = _lowest_bit_set(branch_mask)
            branch_mask &= ~(1 << bit_set)
            k, label = k.split_at(KEY_BITS - 1 - bit_set)
            bit, label = label.chop_first_bit()
            edge_hashes = [b"", b""]
            edge_hashes[bit] = self.edge_hash(node, label)
            edge_hashes[1 - bit] = bytes(siblings[len(siblings) - i - 1])
            node = self.digest(edge_hashes[0] + edge_hashes[1])
            i += 1
        return self.edge_hash(node, k)


class PatriciaTree(_Hasher):
    """
    In-memory Patricia tree that yields proofs for ``PatriciaProofPrimitive``.

    The tree is rebuilt on demand from its leaves; it is a reference
    implementation for fixtures and tooling, not a miner.
    """

    def __init__(self, algorithm: Optional[str] = None):
        super().__init__(algorithm)
        # key path -> (key, value)
        self._leaves: Dict[int, Tuple[bytes, bytes]] = {}
        self._lock = threading.RLock()

    def insert(self, key: bytes, value: bytes) -> None:
        with self._lock:
            self._leaves[self._path(key)] = (bytes(key), bytes(value))

    def get(self, key: bytes) -> Optional[bytes]:
        with self._lock:
            leaf = self._leaves.get(self._path(key))
            return leaf[1] if leaf else None

    def __len__(self) -> int:
        return len(self._leaves)

    def get_root(self) -> bytes:
        with self._lock:
            paths = sorted(self._leaves)
            if not paths:
                return EMPTY_ROOT
            node, label = self._edge(paths, 0)
            return self.edge_hash(node, label)

    def get_proof(self, key: bytes) -> Tuple[int, List[bytes]]:
        """Return ``(branch_mask, siblings)`` for ``key``.

        Raises:
            KeyError: If the key is not in the tree.
        """
        with self._lock:
            target = self._path(key)
            if target not in self._leaves:
                raise KeyError(key.hex())
            paths = sorted(self._leaves)
            branch_mask = 0
            siblings: List[bytes] = []
            depth = 0
            while len(paths) > 1:
                pos = self._branch_point(paths, depth)
                branch_mask |= 1 << (KEY_BITS - 1 - pos)
                ours = [p for p in paths if _bit(p, pos) == _bit(target, pos)]
                theirs = [p for p in paths if _bit(p, pos) != _bit(target, pos)]
                siblings.append(self.edge_hash(*self._edge(theirs, pos + 1)))
                paths = ours
                depth = pos + 1
            return branch_mask, siblings

    # -- internals ----------------------------------------------------------

    def _path(self, key: bytes) -> int:
        return int.from_bytes(self.digest(bytes(key)), "big")

    @staticmethod
    def _branch_point(paths: List[int], depth: int) -> int:
        # paths are sorted, so the first and last differ at the first bit any pair does
        diff = paths[0] ^ paths[-1]
        pos = KEY_BITS - diff.bit_length()
        if pos < depth:
            raise ValueError("Leaves below depth do not share a prefix")
        return pos

    def _edge(self, paths: List[int], depth: int) -> Tuple[bytes, Label]:
        """Node hash and label of the edge covering ``paths`` from ``depth``."""
        if len(paths) == 1:
            end = KEY_BITS
            node = self.digest(self._leaves[paths[0]][1])
        else:
            end = self._branch_point(paths, depth)
            zeros = [p for p in paths if _bit(p, end) == 0]
            ones = [p for p in paths if _bit(p, end) == 1]
            left = self.edge_hash(*self._edge(zeros, end + 1))
            right = self.edge_hash(*self._edge(ones, end + 1))
            node = self.digest(left + right)
        return node, _label(paths[0], depth, end)


def _bit(path: int, pos: int) -> int:
    return (path >> (KEY_BITS - 1 - pos)) & 1


def _label(path: int, start: int, end: int) -> Label:
    """Bits ``[start, end)`` of ``path`` as a left-aligned label."""
    length = end - start
    data = (path << start) & UINT256_MAX
    if length < KEY_BITS:
        data &= UINT256_MAX ^ ((1 << (KEY_BITS - length)) - 1)
    return Label(data, length)
