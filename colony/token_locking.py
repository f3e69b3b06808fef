"""
Stake-Locking Ledger Interface

The token-locking ledger holds users' deposited tokens and mirrors the
colony's allowance/obligation accounting so that obligated stake cannot be
withdrawn. Each colony only ever touches its own slice of the ledger.

``TokenLocking`` is the protocol; ``InMemoryTokenLocking`` is a reference
implementation. Every mutating call validates first and mutates last, so a
failed call leaves no trace.
"""

from __future__ import annotations

import threading
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Protocol, Tuple

from colony.core import normalize_address
from colony.hardening import (
    InsufficientAllowance,
    InsufficientObligation,
    InvariantChecker,
    InvariantViolation,
    Validators,
)
from colony.observability import ColonyLayer, get_logger

logger = get_logger("token_locking", ColonyLayer.LEDGER)


class TokenLocking(Protocol):
    """Protocol for the external stake-locking ledger."""

    def approve_stake(self, colony: str, user: str, amount: int, token: str) -> None:
        ...

    def obligate_stake(self, colony: str, user: str, amount: int, token: str) -> None:
        ...

    def deobligate_stake(self, colony: str, user: str, amount: int, token: str) -> None:
        ...

    def transfer_stake(
        self,
        colony: str,
        user: str,
        amount: int,
        token: str,
        recipient: str,
    ) -> None:
        ...

    def revoke_stake_approval(self, colony: str, user: str, amount: int, token: str) -> None:
        ...

    def return_stake(
        self,
        colony: str,
        user: str,
        amount: int,
        token: str,
        recipient: str,
    ) -> None:
        ...


@dataclass
class UserLock:
    """A user's locked balance of one token."""
    balance: int = 0
    total_obligation: int = 0


class InMemoryTokenLocking:
    """
    In-memory stake-locking ledger.

    ``on_call``, when set, is invoked as ``on_call(method, **arguments)`` at
    the start of every mirror call. It lets a test play the part of a
    collaborator that calls back into the colony mid-operation.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._locks: Dict[Tuple[str, str], UserLock] = defaultdict(UserLock)
        # (user, colony, token) -> amount
        self._approvals: Dict[Tuple[str, str, str], int] = defaultdict(int)
        self._obligations: Dict[Tuple[str, str, str], int] = defaultdict(int)
        self.on_call: Optional[Callable[..., Any]] = None

    def _notify(self, method: str, **arguments: Any) -> None:
        if self.on_call is not None:
            self.on_call(method, **arguments)

    # -- deposits -----------------------------------------------------------

    def deposit(self, user: str, amount: int, token: str) -> None:
        Validators.validate_uint(amount).raise_if_invalid()
        with self._lock:
            self._locks[(normalize_address(user), normalize_address(token))].balance += amount

    def get_user_lock(self, user: str, token: str) -> UserLock:
        with self._lock:
            lock = self._locks.get((normalize_address(user), normalize_address(token)))
            return UserLock(lock.balance, lock.total_obligation) if lock else UserLock()

    def get_approval(self, user: str, colony: str, token: str) -> int:
        with self._lock:
            return self._approvals.get(_key(user, colony, token), 0)

    def get_obligation(self, user: str, colony: str, token: str) -> int:
        with self._lock:
            return self._obligations.get(_key(user, colony, token), 0)

    # -- mirror calls -------------------------------------------------------

    def approve_stake(self, colony: str, user: str, amount: int, token: str) -> None:
        self._notify("approve_stake", colony=colony, user=user, amount=amount, token=token)
        with self._lock:
            self._approvals[_key(user, colony, token)] += amount

    def obligate_stake(self, colony: str, user: str, amount: int, token: str) -> None:
        self._notify("obligate_stake", colony=colony, user=user, amount=amount, token=token)
        key = _key(user, colony, token)
        with self._lock:
            lock = self._locks[(key[0], key[2])]
            InvariantChecker.check_sufficient(
                self._approvals[key], amount, InsufficientAllowance, "stake approval"
            )
            if lock.balance < lock.total_obligation + amount:
                raise InvariantViolation(
                    f"Locked balance {lock.balance} cannot cover obligations "
                    f"{lock.total_obligation + amount}"
                )
            self._approvals[key] -= amount
            self._obligations[key] += amount
            lock.total_obligation += amount

    def deobligate_stake(self, colony: str, user: str, amount: int, token: str) -> None:
        self._notify("deobligate_stake", colony=colony, user=user, amount=amount, token=token)
        key = _key(user, colony, token)
        with self._lock:
            InvariantChecker.check_sufficient(
                self._obligations[key], amount, InsufficientObligation, "stake obligation"
            )
            self._obligations[key] -= amount
            self._locks[(key[0], key[2])].total_obligation -= amount

    def transfer_stake(
        self,
        colony: str,
        user: str,
        amount: int,
        token: str,
        recipient: str,
    ) -> None:
        self._notify(
            "transfer_stake", colony=colony, user=user, amount=amount, token=token, recipient=recipient
        )
        key = _key(user, colony, token)
        recipient = normalize_address(recipient)
        with self._lock:
            InvariantChecker.check_sufficient(
                self._obligations[key], amount, InsufficientObligation, "stake obligation"
            )
            self._obligations[key] -= amount
            lock = self._locks[(key[0], key[2])]
            lock.total_obligation -= amount
            lock.balance -= amount
            self._locks[(recipient, key[2])].balance += amount
        logger.info(
            "Stake transferred",
            operation="transfer_stake",
            user=key[0],
            recipient=recipient,
            amount=str(amount),
        )

    # -- compensation -------------------------------------------------------
    #
    # Inverses of approve_stake and transfer_stake, used when a colony rolls
    # back mirror calls. They do not notify ``on_call``.

    def revoke_stake_approval(self, colony: str, user: str, amount: int, token: str) -> None:
        key = _key(user, colony, token)
        with self._lock:
            InvariantChecker.check_sufficient(
                self._approvals[key], amount, InsufficientAllowance, "stake approval"
            )
            self._approvals[key] -= amount

    def return_stake(
        self,
        colony: str,
        user: str,
        amount: int,
        token: str,
        recipient: str,
    ) -> None:
        """Move transferred stake back from ``recipient`` and re-obligate it."""
        key = _key(user, colony, token)
        recipient = normalize_address(recipient)
        with self._lock:
            source = self._locks[(recipient, key[2])]
            if source.balance - source.total_obligation < amount:
                raise InvariantViolation(
                    f"Recipient has {source.balance - source.total_obligation} free, "
                    f"cannot return {amount}"
                )
            source.balance -= amount
            lock = self._locks[(key[0], key[2])]
            lock.balance += amount
            lock.total_obligation += amount
            self._obligations[key] += amount
        logger.info(
            "Stake returned",
            operation="return_stake",
            user=key[0],
            recipient=recipient,
            amount=str(amount),
        )


def _key(user: str, colony: str, token: str) -> Tuple[str, str, str]:
    return (normalize_address(user), normalize_address(colony), normalize_address(token))
