"""
Meta-Transactions

Lets a relayer submit a colony call on a user's behalf. The user signs the
canonical JSON encoding of

    {"colony": <colony address>, "nonce": <user's next nonce>, "payload": {...}}

with their registered Ed25519 key, where ``payload`` is
``{"method": <colony method>, "args": {<keyword arguments>}}``.

Nonces live in colony slot storage at ``derive_slot(user, METATRANSACTION_NONCES_SLOT)``,
a dynamically derived slot, so every nonce write passes ``protect_slot``.
The nonce bump and the dispatched call commit together or not at all.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, FrozenSet

from colony.core import canonical_json_bytes, coerce_bytes, normalize_address
from colony.hardening import Unauthorized, ValidationError, Validators
from colony.observability import ColonyLayer, get_logger, timed_operation
from colony.security import AuditEventType, AuditLogger, SignatureVerifier
from colony.storage import METATRANSACTION_NONCES_SLOT, SlotStorage, derive_slot

if TYPE_CHECKING:
    from colony.colony import Colony

logger = get_logger("relay", ColonyLayer.METATX)

# Colony methods reachable through a meta-transaction. Each takes ``caller``.
RELAYABLE_METHODS: FrozenSet[str] = frozenset({
    "approve_stake",
    "obligate_stake",
    "deobligate_stake",
    "transfer_stake",
    "add_domain",
    "edit_colony",
    "emit_domain_reputation_reward",
    "emit_domain_reputation_penalty",
    "emit_skill_reputation_reward",
    "emit_skill_reputation_penalty",
    "upgrade",
})


class MetaTransactionRelay:
    """
    Signature-checked, nonce-ordered execution of colony calls.

    Args:
        colony: target colony (methods are dispatched on it)
        storage: the colony's slot storage, holding nonces
        audit: audit trail receiving one record per executed call
    """

    def __init__(self, colony: "Colony", storage: SlotStorage, audit: AuditLogger):
        self._colony = colony
        self._storage = storage
        self._audit = audit
        self.signatures = SignatureVerifier()

    def register_key(self, user: str, public_key: bytes) -> None:
        """Register the Ed25519 public key ``user`` signs meta-transactions with."""
        self.signatures.register_key(user, coerce_bytes(public_key))
        logger.info("Meta-transaction key registered", user=normalize_address(user))

    def get_nonce(self, user: str) -> int:
        return self._storage.read(derive_slot(user, METATRANSACTION_NONCES_SLOT))

    def signing_message(self, user: str, payload: Dict[str, Any]) -> bytes:
        """Bytes ``user`` must sign to authorize ``payload`` at their current nonce."""
        return canonical_json_bytes({
            "colony": self._colony.address,
            "nonce": self.get_nonce(user),
            "payload": payload,
        })

    @timed_operation(logger, "execute_metatransaction")
    def execute(self, user: str, payload: Dict[str, Any], signature: bytes) -> Any:
        user_result = Validators.validate_address(user, "user")
        user_result.raise_if_invalid()
        user = user_result.sanitized_value

        method = payload.get("method") if isinstance(payload, dict) else None
        args = payload.get("args", {}) if isinstance(payload, dict) else None
        if method not in RELAYABLE_METHODS:
            raise ValidationError("payload.method", "Method cannot be relayed", method)
        if not isinstance(args, dict) or "caller" in args:
            raise ValidationError("payload.args", "Expected keyword arguments without caller", args)

        if not self.signatures.has_key(user):
            raise Unauthorized(f"No meta-transaction key registered for {user}")
        valid, reason = self.signatures.verify(
            user, self.signing_message(user, payload), coerce_bytes(signature)
        )
        if not valid:
            logger.warning(
                "Meta-transaction signature rejected",
                operation="execute_metatransaction",
                user=user,
                reason=reason,
            )
            raise Unauthorized(f"Invalid meta-transaction signature: {reason}")

        slot = derive_slot(user, METATRANSACTION_NONCES_SLOT)
        with self._colony.transaction():
            nonce = self._storage.read(slot)
            self._storage.write_dynamic(slot, nonce + 1)
            result = getattr(self._colony, method)(caller=user, **args)
            self._audit.log(
                event_type=AuditEventType.METATRANSACTION_EXECUTED,
                actor=user,
                resource_type="colony",
                resource_id=self._colony.address,
                details={"method": method, "nonce": nonce},
            )
        return result
