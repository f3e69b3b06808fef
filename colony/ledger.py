"""
Colony Stake Authorization Ledger

Three-party accounting of stake a depositor lets an obligator lock on their
behalf, per domain:

    approve      depositor grants allowance to an obligator       allowance  += a
    obligate     obligator locks part of that allowance           allowance  -= a
                                                                  obligation += a
    deobligate   obligator releases locked stake                  obligation -= a
    transfer     arbitrator moves locked stake to a beneficiary   obligation -= a

Allowance is consumed at obligate time and never restored: releasing or
transferring an obligation does not give the obligator a fresh allowance.

Every mutation is mirrored into the external token-locking ledger. Local
figures are written before the mirror call is made, so a collaborator that
calls back into the ledger mid-operation sees the updated figures.

Mutations run inside ``atomic()`` blocks, which nest. Each block snapshots the
whole ledger and journals every mirror call that succeeds inside it, including
calls made by re-entrant operations. If the block raises, the journalled
mirror calls are compensated in reverse order, the snapshot is restored, the
audit trail is cut back and the error propagates. A block that succeeds hands
its journal to the enclosing block.

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from colony.core import normalize_address
from colony.hardening import (
    InsufficientAllowance,
    InsufficientObligation,
    InvariantChecker,
    Unauthorized,
    ValidationError,
    Validators,
    checked_add,
)
from colony.observability import ColonyLayer, get_logger, timed_operation
from colony.permissions import ColonyRole, PermissionGate
from colony.security import AuditEventType, AuditLogger
from colony.token_locking import TokenLocking

logger = get_logger("ledger", ColonyLayer.LEDGER)

# (depositor, obligator, domain_id)
StakeKey = Tuple[str, str, int]


@dataclass(frozen=True)
class StakeEntry:
    """Allowance and obligation recorded for one (user, obligator, domain)."""
    user: str
    obligator: str
    domain_id: int
    allowance: int
    obligation: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user": self.user,
            "obligator": self.obligator,
            "domain_id": self.domain_id,
            "allowance": str(self.allowance),
            "obligation": str(self.obligation),
        }


@dataclass
class MirrorCall:
    """A mirror call that succeeded, kept so it can be compensated."""
    method: str
    user: str
    amount: int
    recipient: Optional[str] = None


@dataclass
class CompensationRecord:
    """Outcome of compensating one mirror call during a rollback."""
    call: MirrorCall
    timestamp: str
    success: bool
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "method": self.call.method,
            "user": self.call.user,
            "amount": str(self.call.amount),
            "recipient": self.call.recipient,
            "timestamp": self.timestamp,
            "success": self.success,
            "error": self.error,
        }


class AuthorizationLedger:
    """
    Allowance/obligation ledger for one colony.

    Args:
        colony_address: identity of the owning colony, passed to the mirror
        token: the colony's staking token
        token_locking: external stake-locking ledger
        permissions: gate used to authorize ``transfer``
        domain_exists: predicate over domain ids
        audit: audit trail receiving one event per successful mutation
        counter_bits: width of the allowance/obligation counters
    """

    def __init__(
        self,
        colony_address: str,
        token: str,
        token_locking: TokenLocking,
        permissions: PermissionGate,
        domain_exists: Callable[[int], bool],
        audit: AuditLogger,
        counter_bits: Optional[int] = None,
    ):
        if counter_bits is None:
            from colony.config import get_config
            counter_bits = get_config().ledger.counter_bits.get()

        self.colony_address = normalize_address(colony_address)
        self.token = normalize_address(token)
        self.counter_bits = counter_bits
        self._token_locking = token_locking
        self._permissions = permissions
        self._domain_exists = domain_exists
        self._audit = audit

        self._allowances: Dict[StakeKey, int] = {}
        self._obligations: Dict[StakeKey, int] = {}
        self._lock = threading.RLock()
        # one journal of successful mirror calls per open atomic block
        self._frames: List[List[MirrorCall]] = []
        self.compensations: List[CompensationRecord] = []

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_approval(self, user: str, obligator: str, domain_id: int) -> int:
        """Remaining allowance ``user`` has granted ``obligator`` in a domain."""
        with self._lock:
            return self._allowances.get(self._key(user, obligator, domain_id), 0)

    def get_obligation(self, user: str, obligator: str, domain_id: int) -> int:
        """Stake ``obligator`` currently holds locked for ``user`` in a domain."""
        with self._lock:
            return self._obligations.get(self._key(user, obligator, domain_id), 0)

    def entries(self) -> List[StakeEntry]:
        """Every (user, obligator, domain) with a non-zero figure."""
        with self._lock:
            keys = sorted(set(self._allowances) | set(self._obligations))
            return [
                StakeEntry(
                    user=k[0],
                    obligator=k[1],
                    domain_id=k[2],
                    allowance=self._allowances.get(k, 0),
                    obligation=self._obligations.get(k, 0),
                )
                for k in keys
            ]

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    @timed_operation(logger, "approve_stake")
    def approve(self, caller: str, obligator: str, domain_id: int, amount: int) -> None:
        """Let ``obligator`` lock up to ``amount`` more of the caller's stake."""
        key = self._checked_key(caller, obligator, domain_id, amount)
        with self.atomic():
            self._put(self._allowances, key, checked_add(
                self._allowances.get(key, 0), amount, self.counter_bits, "allowance"
            ))
            self._mirror("approve_stake", key[0], amount)
            self._record(AuditEventType.STAKE_APPROVED, key[0], key, amount)

    @timed_operation(logger, "obligate_stake")
    def obligate(self, caller: str, user: str, domain_id: int, amount: int) -> None:
        """Lock ``amount`` of ``user``'s stake on behalf of the caller."""
        key = self._checked_key(user, caller, domain_id, amount)
        with self.atomic():
            allowance = self._allowances.get(key, 0)
            InvariantChecker.check_sufficient(allowance, amount, InsufficientAllowance, "allowance")
            self._put(self._allowances, key, allowance - amount)
            self._put(self._obligations, key, checked_add(
                self._obligations.get(key, 0), amount, self.counter_bits, "obligation"
            ))
            self._mirror("obligate_stake", key[0], amount)
            self._record(AuditEventType.STAKE_OBLIGATED, key[1], key, amount)

    @timed_operation(logger, "deobligate_stake")
    def deobligate(self, caller: str, user: str, domain_id: int, amount: int) -> None:
        """Release ``amount`` of the stake the caller holds for ``user``."""
        key = self._checked_key(user, caller, domain_id, amount)
        with self.atomic():
            self._release(key, amount)
            self._mirror("deobligate_stake", key[0], amount)
            self._record(AuditEventType.STAKE_DEOBLIGATED, key[1], key, amount)

    @timed_operation(logger, "transfer_stake")
    def transfer(
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
        """Move obligated stake from ``user`` to ``beneficiary``.

        The caller must hold the Arbitration role in ``permission_domain_id``
        and ``child_skill_index`` must lead from there to ``domain_id``.
        """
        key = self._checked_key(user, obligator, domain_id, amount)
        beneficiary_result = Validators.validate_address(beneficiary, "beneficiary")
        beneficiary_result.raise_if_invalid()
        if not self._permissions.check(
            caller, permission_domain_id, child_skill_index, domain_id, ColonyRole.ARBITRATION
        ):
            raise Unauthorized(
                f"{caller} may not transfer stake in domain {domain_id} "
                f"via domain {permission_domain_id}"
            )
        with self.atomic():
            self._release(key, amount)
            self._mirror("transfer_stake", key[0], amount, beneficiary_result.sanitized_value)
            self._record(
                AuditEventType.STAKE_TRANSFERRED,
                normalize_address(caller),
                key,
                amount,
                beneficiary=beneficiary_result.sanitized_value,
            )

    # -------------------------------------------------------------------------
    # Snapshots
    # -------------------------------------------------------------------------

    def snapshot(self) -> Tuple[Dict[StakeKey, int], Dict[StakeKey, int]]:
        with self._lock:
            return dict(self._allowances), dict(self._obligations)

    def restore(self, snapshot: Tuple[Dict[StakeKey, int], Dict[StakeKey, int]]) -> None:
        with self._lock:
            self._allowances, self._obligations = dict(snapshot[0]), dict(snapshot[1])

    def export(self) -> Dict[str, Any]:
        """JSON-ready view of the ledger (see ``ledger-snapshot.schema.json``)."""
        return {
            "colony": self.colony_address,
            "token": self.token,
            "entries": [e.to_dict() for e in self.entries()],
        }

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _key(self, user: str, obligator: str, domain_id: int) -> StakeKey:
        return (normalize_address(user), normalize_address(obligator), domain_id)

    def _checked_key(self, user: str, obligator: str, domain_id: int, amount: int) -> StakeKey:
        user_result = Validators.validate_address(user, "user")
        obligator_result = Validators.validate_address(obligator, "obligator")
        amount_result = Validators.validate_uint(amount, "amount", self.counter_bits)
        for result in (user_result, obligator_result, amount_result):
            result.raise_if_invalid()
        if not self._domain_exists(domain_id):
            raise ValidationError("domain_id", "Domain does not exist", domain_id)
        return (user_result.sanitized_value, obligator_result.sanitized_value, domain_id)

    def _release(self, key: StakeKey, amount: int) -> None:
        obligation = self._obligations.get(key, 0)
        InvariantChecker.check_sufficient(obligation, amount, InsufficientObligation, "obligation")
        self._put(self._obligations, key, obligation - amount)

    @staticmethod
    def _put(table: Dict[StakeKey, int], key: StakeKey, value: int) -> None:
        # Zero entries are logically absent
        if value:
            table[key] = value
        else:
            table.pop(key, None)

    def _mirror(self, method: str, user: str, amount: int, recipient: Optional[str] = None) -> None:
        """Make a mirror call and journal it in the innermost atomic block."""
        call = getattr(self._token_locking, method)
        if recipient is None:
            call(self.colony_address, user, amount, self.token)
        else:
            call(self.colony_address, user, amount, self.token, recipient)
        self._frames[-1].append(MirrorCall(method, user, amount, recipient))

    def _compensate(self, calls: List[MirrorCall]) -> None:
        """
        Undo journalled mirror calls, newest first.

        Each compensation is attempted independently; a failure is recorded
        and logged and never stops the remaining ones.
        """
        locking = self._token_locking
        colony, token = self.colony_address, self.token
        for call in reversed(calls):
            try:
                if call.method == "approve_stake":
                    locking.revoke_stake_approval(colony, call.user, call.amount, token)
                elif call.method == "obligate_stake":
                    locking.deobligate_stake(colony, call.user, call.amount, token)
                    locking.approve_stake(colony, call.user, call.amount, token)
                elif call.method == "deobligate_stake":
                    locking.approve_stake(colony, call.user, call.amount, token)
                    locking.obligate_stake(colony, call.user, call.amount, token)
                else:
                    locking.return_stake(colony, call.user, call.amount, token, call.recipient)
                record = CompensationRecord(call, datetime.now(timezone.utc).isoformat(), True)
            except Exception as e:
                record = CompensationRecord(call, datetime.now(timezone.utc).isoformat(), False, str(e))
                logger.error(
                    "Mirror call could not be compensated",
                    error_code=getattr(e, "code", type(e).__name__),
                    method=call.method,
                    user=call.user,
                    amount=str(call.amount),
                )
            self.compensations.append(record)

    @contextmanager
    def atomic(self) -> Iterator[None]:
        """Hold the ledger lock and undo everything the block did if it raises."""
        with self._lock:
            saved = self.snapshot()
            audit_length = len(self._audit)
            self._frames.append([])
            try:
                yield
            except Exception as exc:
                calls = self._frames.pop()
                self._compensate(calls)
                self.restore(saved)
                self._audit.truncate(audit_length)
                logger.warning(
                    "Stake operations rolled back",
                    compensated=len(calls),
                    error_code=getattr(exc, "code", type(exc).__name__),
                )
                raise
            calls = self._frames.pop()
            if self._frames:
                self._frames[-1].extend(calls)

    def _record(
        self,
        event_type: AuditEventType,
        actor: str,
        key: StakeKey,
        amount: int,
        **extra: Any,
    ) -> None:
        details = {
            "user": key[0],
            "obligator": key[1],
            "domain_id": key[2],
            "amount": str(amount),
        }
        details.update(extra)
        self._audit.log(
            event_type=event_type,
            actor=actor,
            resource_type="stake",
            resource_id=f"{key[0]}:{key[1]}:{key[2]}",
            details=details,
        )
