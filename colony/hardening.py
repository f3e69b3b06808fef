"""
Colony Validation and Hardening Module

Validation, error taxonomy and defensive arithmetic for the colony ledger.
It addresses:

1. Input validation with sanitization (addresses, amounts, ids, byte strings)
2. Fail-fast error kinds shared by the ledger, verifier and upgrade paths
3. Checked fixed-width arithmetic (no silent wrap-around)
4. Constant-time comparisons for hash material
5. Invariant enforcement for version and balance transitions

Security Model:
    - All inputs are untrusted until validated
    - All hash comparisons are constant-time
    - All counters are bounded by an explicit bit width
    - Every failure aborts the whole call; nothing is partially applied

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

import hmac
import re
from dataclasses import dataclass, field
from typing import Any, List

from colony.core import normalize_address


# =============================================================================
# VALIDATION ERROR TYPES
# =============================================================================

class ValidationError(Exception):
    """Base exception for validation failures."""

    code = "colony-invalid-input"

    def __init__(self, field: str, message: str, value: Any = None):
        self.field = field
        self.message = message
        self.value = value
        super().__init__(f"{field}: {message}")


class ValidationErrors(Exception):
    """Collection of validation errors."""

    code = "colony-invalid-input"

    def __init__(self, errors: List[ValidationError]):
        self.errors = errors
        messages = "; ".join(f"{e.field}: {e.message}" for e in errors)
        super().__init__(f"Validation failed: {messages}")


class SecurityViolation(Exception):
    """Security constraint violated."""

    code = "colony-security-violation"


class InvariantViolation(Exception):
    """Ledger or version invariant violated."""

    code = "colony-invariant-violation"


class Unauthorized(SecurityViolation):
    """Caller lacks the role required for the operation."""

    code = "ds-auth-unauthorized"


class ProtectedVariable(SecurityViolation):
    """A dynamically derived storage slot aliases a reserved slot."""

    code = "colony-protected-variable"


class InsufficientAllowance(InvariantViolation):
    """Obligation requested beyond the remaining allowance."""

    code = "colony-insufficient-approval"


class InsufficientObligation(InvariantViolation):
    """Release or transfer requested beyond the locked obligation."""

    code = "colony-insufficient-obligation"


class Overflow(InvariantViolation):
    """Counter would exceed its representable maximum."""

    code = "ds-math-add-overflow"


class Underflow(InvariantViolation):
    """Counter would drop below zero."""

    code = "ds-math-sub-underflow"


class VersionSkipOrDowngrade(InvariantViolation):
    """Upgrade target is not exactly one version ahead."""

    code = "colony-version-must-be-one-newer"


class UnregisteredVersion(InvariantViolation):
    """No resolver is registered for the upgrade target."""

    code = "colony-version-must-be-registered"


# =============================================================================
# VALIDATION RESULT
# =============================================================================

@dataclass
class ValidationResult:
    """Result of a validation operation."""
    is_valid: bool
    errors: List[ValidationError] = field(default_factory=list)
    sanitized_value: Any = None

    def raise_if_invalid(self) -> None:
        """Raise the error (or ValidationErrors) if validation failed."""
        if not self.is_valid:
            if len(self.errors) == 1:
                raise self.errors[0]
            raise ValidationErrors(self.errors)

    @classmethod
    def success(cls, sanitized_value: Any = None) -> 'ValidationResult':
        return cls(is_valid=True, sanitized_value=sanitized_value)

    @classmethod
    def failure(cls, errors: List[ValidationError]) -> 'ValidationResult':
        return cls(is_valid=False, errors=errors)


# =============================================================================
# INPUT VALIDATORS
# =============================================================================

class Validators:
    """Collection of input validators."""

    HEX64_PATTERN = re.compile(r'^[a-f0-9]{64}$')

    MAX_METADATA_LENGTH = 4096

    @classmethod
    def validate_address(cls, value: Any, field_name: str = "address") -> ValidationResult:
        """Validate a 20-byte account address and normalise it."""
        if not isinstance(value, str):
            return ValidationResult.failure([
                ValidationError(field_name, f"Expected string, got {type(value).__name__}", value)
            ])
        try:
            return ValidationResult.success(normalize_address(value))
        except ValueError:
            return ValidationResult.failure([
                ValidationError(field_name, "Must be a valid address (0x + 40 hex)", value)
            ])

    @classmethod
    def validate_uint(
        cls,
        value: Any,
        field_name: str = "amount",
        bits: int = 256,
    ) -> ValidationResult:
        """Validate an unsigned integer that fits in ``bits`` bits."""
        # bool is an int subclass; it is never a valid amount
        if isinstance(value, bool) or not isinstance(value, int):
            return ValidationResult.failure([
                ValidationError(field_name, f"Expected integer, got {type(value).__name__}", value)
            ])
        if value < 0:
            return ValidationResult.failure([
                ValidationError(field_name, "Must be non-negative", value)
            ])
        if value > (1 << bits) - 1:
            return ValidationResult.failure([
                ValidationError(field_name, f"Exceeds uint{bits} range", value)
            ])
        return ValidationResult.success(value)

    @classmethod
    def validate_int(cls, value: Any, field_name: str = "amount") -> ValidationResult:
        """Validate a signed integer that fits in int256."""
        if isinstance(value, bool) or not isinstance(value, int):
            return ValidationResult.failure([
                ValidationError(field_name, f"Expected integer, got {type(value).__name__}", value)
            ])
        if not -(1 << 255) <= value < (1 << 255):
            return ValidationResult.failure([
                ValidationError(field_name, "Exceeds int256 range", value)
            ])
        return ValidationResult.success(value)

    @classmethod
    def validate_digest(cls, value: Any, field_name: str = "digest") -> ValidationResult:
        """Validate a 32-byte digest given as bytes or 64 hex chars."""
        if isinstance(value, (bytes, bytearray)):
            if len(value) != 32:
                return ValidationResult.failure([
                    ValidationError(field_name, "Must be exactly 32 bytes", value)
                ])
            return ValidationResult.success(bytes(value))
        if isinstance(value, str):
            s = value.strip().lower()
            if s.startswith("0x"):
                s = s[2:]
            if cls.HEX64_PATTERN.match(s):
                return ValidationResult.success(bytes.fromhex(s))
        return ValidationResult.failure([
            ValidationError(field_name, "Must be 32 bytes or 64 hex characters", value)
        ])

    @classmethod
    def validate_metadata(cls, value: Any, field_name: str = "metadata") -> ValidationResult:
        """Validate a metadata string (e.g. a content hash or URI)."""
        if not isinstance(value, str):
            return ValidationResult.failure([
                ValidationError(field_name, f"Expected string, got {type(value).__name__}", value)
            ])
        sanitized = value.strip().replace('\x00', '')
        if len(sanitized) > cls.MAX_METADATA_LENGTH:
            return ValidationResult.failure([
                ValidationError(field_name, f"Too long (max {cls.MAX_METADATA_LENGTH} chars)", value)
            ])
        return ValidationResult.success(sanitized)


# =============================================================================
# CRYPTOGRAPHIC UTILITIES
# =============================================================================

class CryptoUtils:
    """Cryptographic utility functions with security hardening."""

    @staticmethod
    def secure_compare(a: bytes, b: bytes) -> bool:
        """Constant-time comparison to prevent timing attacks."""
        return hmac.compare_digest(a, b)


# =============================================================================
# CHECKED ARITHMETIC
# =============================================================================

def checked_add(a: int, b: int, bits: int = 256, field_name: str = "value") -> int:
    """Add two unsigned counters, raising Overflow instead of wrapping."""
    result = a + b
    if result > (1 << bits) - 1:
        raise Overflow(f"{field_name} overflow: {a} + {b} exceeds uint{bits}")
    return result


def checked_sub(a: int, b: int, field_name: str = "value") -> int:
    """Subtract two unsigned counters, raising Underflow below zero."""
    if b > a:
        raise Underflow(f"{field_name} underflow: {a} - {b}")
    return a - b


# =============================================================================
# INVARIANTS
# =============================================================================

class InvariantChecker:
    """Enforces ledger and version invariants."""

    @staticmethod
    def check_version_step(current_version: int, new_version: int) -> None:
        """Versions advance by exactly one; no skip, no downgrade."""
        if new_version != current_version + 1:
            raise VersionSkipOrDowngrade(
                f"Cannot upgrade from version {current_version} to {new_version}: "
                f"target must be {current_version + 1}"
            )

    @staticmethod
    def check_sufficient(
        available: int,
        required: int,
        error: type,
        field_name: str,
    ) -> None:
        """Raise ``error`` unless ``available`` covers ``required``."""
        if required > available:
            raise error(
                f"Insufficient {field_name}: have {available}, need {required}"
            )

    @staticmethod
    def check_sign(value: int, positive: bool, field_name: str = "amount") -> None:
        """Rewards are non-negative, penalties non-positive."""
        if positive and value < 0:
            raise ValidationError(field_name, "Reward amount must be non-negative", value)
        if not positive and value > 0:
            raise ValidationError(field_name, "Penalty amount must be non-positive", value)
