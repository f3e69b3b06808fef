"""
Reputation Proof Verification

A reputation key is the fixed 72-byte concatenation

    offset  0  colony address   20 bytes
    offset 20  skill id         32 bytes, big-endian
    offset 52  user address     20 bytes

with no length or version tag. Proof producers rely on this exact layout.

``ReputationProofVerifier.verify`` answers "does the caller hold this
reputation in this colony?" against the network's canonical reputation root.
It is a pure boolean oracle: every failure, including a malformed proof,
yields ``False``.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Sequence, Union

from colony.core import (
    ADDRESS_SIZE,
    WORD_SIZE,
    address_from_bytes,
    address_to_bytes,
    coerce_bytes,
    int_to_word,
    normalize_address,
)
from colony.hardening import CryptoUtils
from colony.network import ColonyNetwork
from colony.observability import ColonyLayer, get_logger
from colony.patricia import ProofPrimitive

logger = get_logger("verifier", ColonyLayer.REPUTATION)

COLONY_OFFSET = 0
SKILL_OFFSET = COLONY_OFFSET + ADDRESS_SIZE
USER_OFFSET = SKILL_OFFSET + WORD_SIZE
KEY_SIZE = USER_OFFSET + ADDRESS_SIZE


@dataclass(frozen=True)
class ReputationKey:
    """Decoded (colony, skill, user) reputation key."""
    colony: str
    skill_id: int
    user: str

    def encode(self) -> bytes:
        return (
            address_to_bytes(self.colony)
            + int_to_word(self.skill_id)
            + address_to_bytes(self.user)
        )

    @classmethod
    def decode(cls, key: Union[bytes, str]) -> "ReputationKey":
        """Slice a 72-byte key positionally.

        Raises:
            ValueError: If the key is not exactly 72 bytes.
        """
        raw = coerce_bytes(key)
        if len(raw) != KEY_SIZE:
            raise ValueError(f"Reputation key must be {KEY_SIZE} bytes, got {len(raw)}")
        return cls(
            colony=address_from_bytes(raw[COLONY_OFFSET:SKILL_OFFSET]),
            skill_id=int.from_bytes(raw[SKILL_OFFSET:USER_OFFSET], "big"),
            user=address_from_bytes(raw[USER_OFFSET:KEY_SIZE]),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"colony": self.colony, "skill_id": self.skill_id, "user": self.user}


class ReputationProofVerifier:
    """
    Checks a caller's own reputation in one colony against the network root.

    Args:
        colony_address: the verifying colony
        network: source of the canonical reputation root hash
        primitive: tree-proof primitive computing the implied root
    """

    def __init__(self, colony_address: str, network: ColonyNetwork, primitive: ProofPrimitive):
        self.colony_address = normalize_address(colony_address)
        self._network = network
        self._primitive = primitive

    def verify(
        self,
        caller: str,
        key: Union[bytes, str],
        value: Union[bytes, str],
        branch_mask: int,
        siblings: Sequence[Union[bytes, str]],
    ) -> bool:
        try:
            decoded = ReputationKey.decode(key)
            caller = normalize_address(caller)
        except (TypeError, ValueError) as exc:
            logger.debug("Malformed proof input", operation="verify", reason=str(exc))
            return False

        if decoded.colony != self.colony_address:
            logger.debug("Proof is for another colony", operation="verify", colony=decoded.colony)
            return False
        if decoded.user != caller:
            logger.debug("Proof is for another user", operation="verify", user=decoded.user)
            return False

        try:
            implied = self._primitive.implied_root_hash(
                coerce_bytes(key),
                coerce_bytes(value),
                branch_mask,
                [coerce_bytes(s) for s in siblings],
            )
        except (TypeError, ValueError) as exc:
            logger.debug("Proof rejected by primitive", operation="verify", reason=str(exc))
            return False

        root = self._network.get_reputation_root_hash()
        valid = CryptoUtils.secure_compare(implied, root)
        logger.info(
            "Reputation proof checked",
            operation="verify",
            user=caller,
            skill_id=decoded.skill_id,
            valid=valid,
        )
        return valid
