"""
Colony Security Layer

1. Audit Logging - tamper-evident, hash-chained record of every state change
2. Signature Verification - Ed25519 keys bound to account identities

Security Model:
    - Audit everything: complete forensic trail of stake, reputation,
      metadata and upgrade events
    - Fail-secure: unknown signers and malformed signatures are rejected
    - Zero trust: verify all inputs

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

import hashlib
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from colony.core import canonical_json_bytes, normalize_address


# =============================================================================
# SIGNATURE VERIFICATION
# =============================================================================

class SignatureVerifier:
    """
    Ed25519 signature verification keyed by account address.

    Each account registers one raw 32-byte public key. Verification never
    raises; it returns ``(valid, reason)``.
    """

    def __init__(self):
        self._keys: Dict[str, Ed25519PublicKey] = {}
        self._lock = threading.Lock()

    def register_key(self, address: str, public_key: bytes) -> None:
        """Bind a raw Ed25519 public key to an address."""
        if len(public_key) != 32:
            raise ValueError(f"Ed25519 public key must be 32 bytes, got {len(public_key)}")
        key = Ed25519PublicKey.from_public_bytes(public_key)
        with self._lock:
            self._keys[normalize_address(address)] = key

    def has_key(self, address: str) -> bool:
        with self._lock:
            return normalize_address(address) in self._keys

    def verify(self, address: str, message: bytes, signature: bytes) -> Tuple[bool, str]:
        """Verify ``signature`` over ``message`` for ``address``."""
        with self._lock:
            key = self._keys.get(normalize_address(address))
        if key is None:
            return (False, f"Unknown signer: {address}")
        if len(signature) != 64:
            return (False, "Invalid signature length for ed25519")
        try:
            key.verify(signature, message)
        except InvalidSignature:
            return (False, "Signature does not match message")
        return (True, "Signature valid")


# =============================================================================
# AUDIT LOGGER
# =============================================================================

class AuditEventType(Enum):
    """Types of audit events."""
    # Stake ledger
    STAKE_APPROVED = "stake_approved"
    STAKE_OBLIGATED = "stake_obligated"
    STAKE_DEOBLIGATED = "stake_deobligated"
    STAKE_TRANSFERRED = "stake_transferred"

    # Reputation
    REPUTATION_ADJUSTED = "reputation_adjusted"

    # Colony administration
    METADATA_EDITED = "metadata_edited"
    DOMAIN_ADDED = "domain_added"
    COLONY_UPGRADED = "colony_upgraded"

    # Meta-transactions
    METATRANSACTION_EXECUTED = "metatransaction_executed"


@dataclass
class AuditEvent:
    """An audit log entry."""
    event_id: str
    event_type: AuditEventType
    timestamp: str
    actor: str
    resource_type: str
    resource_id: str
    details: Dict[str, Any]

    # Tamper evidence
    previous_event_digest: Optional[str] = None
    event_digest: str = ""

    def __post_init__(self):
        if not self.event_digest:
            self.event_digest = self._compute_digest()

    def _compute_digest(self) -> str:
        """Compute tamper-evident digest."""
        content = {
            "event_id": self.event_id,
            "event_type": self.event_type.value,
            "timestamp": self.timestamp,
            "actor": self.actor,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "details": self.details,
            "previous_event_digest": self.previous_event_digest,
        }
        return hashlib.sha256(canonical_json_bytes(content)).hexdigest()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type.value,
            "timestamp": self.timestamp,
            "actor": self.actor,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "details": self.details,
            "previous_event_digest": self.previous_event_digest,
            "event_digest": self.event_digest,
        }


class AuditLogger:
    """
    Tamper-evident audit logger.

    Each event includes a hash chain linking to the previous event,
    making it possible to detect log tampering. Details must be
    canonical-JSON serialisable (integers are recorded as strings when
    they may exceed the JSON safe range).
    """

    def __init__(self, enabled: Optional[bool] = None):
        if enabled is None:
            from colony.config import get_config
            enabled = get_config().security.audit_enabled.get()
        self.enabled = enabled
        self._events: List[AuditEvent] = []
        self._lock = threading.Lock()

    def log(
        self,
        event_type: AuditEventType,
        actor: str,
        resource_type: str,
        resource_id: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> Optional[AuditEvent]:
        """Log an audit event. Returns None when auditing is disabled."""
        if not self.enabled:
            return None
        with self._lock:
            previous_digest = self._events[-1].event_digest if self._events else None
            event = AuditEvent(
                event_id=f"evt-{len(self._events) + 1:012d}",
                event_type=event_type,
                timestamp=datetime.now(timezone.utc).isoformat(),
                actor=actor,
                resource_type=resource_type,
                resource_id=resource_id,
                details=details or {},
                previous_event_digest=previous_digest,
            )
            self._events.append(event)
            return event

    def truncate(self, length: int) -> None:
        """Drop events beyond ``length`` (used when a call is rolled back)."""
        with self._lock:
            del self._events[length:]

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    def verify_chain(self) -> Tuple[bool, Optional[int]]:
        """
        Verify the audit log chain integrity.

        Returns (valid, first_invalid_index).
        """
        with self._lock:
            for i, event in enumerate(self._events):
                if event._compute_digest() != event.event_digest:
                    return (False, i)
                if i > 0:
                    expected_prev = self._events[i - 1].event_digest
                    if event.previous_event_digest != expected_prev:
                        return (False, i)
            return (True, None)

    def get_events(
        self,
        actor: Optional[str] = None,
        event_type: Optional[AuditEventType] = None,
        resource_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[AuditEvent]:
        """Query audit events."""
        with self._lock:
            events = list(self._events)

        if actor:
            events = [e for e in events if e.actor == actor]
        if event_type:
            events = [e for e in events if e.event_type == event_type]
        if resource_id:
            events = [e for e in events if e.resource_id == resource_id]

        return events[-limit:]

    def export(self) -> List[Dict[str, Any]]:
        """Export all events as dicts."""
        with self._lock:
            return [e.to_dict() for e in self._events]
