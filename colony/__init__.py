"""
Colony: Organizational Stake and Reputation Ledger

A colony is an organisation of nested domains whose members stake tokens,
earn reputation and upgrade their shared logic one version at a time.

Architecture
────────────

    ┌─────────────────────────────────────────────────────────────────────────┐
    │                               COLONY                                     │
    │                                                                          │
    │  CORE OPERATIONS                                                        │
    │    ledger.py         Allowance / obligation ledger with mirroring       │
    │    reputation.py     72-byte reputation keys and proof verification     │
    │    upgrade.py        One-step logic upgrades with migration hooks       │
    │    colony.py         Facade: domains, roles, reputation emission        │
    │                                                                          │
    │  COLLABORATORS                                                          │
    │    network.py        Network registry (skills, versions, rep. root)     │
    │    token_locking.py  External stake-locking ledger                      │
    │    permissions.py    Domain-scoped roles and inheritance                │
    │    patricia.py       Patricia tree proofs                               │
    │                                                                          │
    │  INFRASTRUCTURE                                                         │
    │    storage.py        Slot storage, derived slots, protected slots       │
    │    metatx.py         Signed meta-transactions with per-user nonces      │
    │    hardening.py      Validation, error kinds, checked arithmetic        │
    │    security.py       Ed25519 signatures, hash-chained audit log         │
    │    observability.py  Structured logging                                 │
    │    config.py         YAML/env configuration                             │
    │    schema.py         JSON Schema validation                             │
    │    cli.py            Operator command line                              │
    │                                                                          │
    └─────────────────────────────────────────────────────────────────────────┘

Design Principles
─────────────────

    All-or-Nothing: every mutating call either applies completely or leaves
    no trace, including calls that fail inside an external collaborator.

    Fail-Fast: a failed precondition aborts the call with a typed error whose
    ``code`` is stable. Proof verification alone answers with a boolean.

    Self-Attestation: a reputation proof only ever speaks for its caller in
    the verifying colony.

Copyright © 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

__version__ = "0.3.0"


# Lazy imports to avoid circular dependencies
def __getattr__(name):
    """Lazy import colony modules on first access."""

    if name in ("Colony", "Domain"):
        from colony import colony
        return getattr(colony, name)

    if name in ("AuthorizationLedger", "StakeEntry"):
        from colony import ledger
        return getattr(ledger, name)

    if name in ("ReputationKey", "ReputationProofVerifier"):
        from colony import reputation
        return getattr(reputation, name)

    if name in ("ColonyLogic", "UpgradeController"):
        from colony import upgrade
        return getattr(upgrade, name)

    if name in ("InMemoryColonyNetwork", "ColonyNetwork"):
        from colony import network
        return getattr(network, name)

    if name in ("InMemoryTokenLocking", "TokenLocking"):
        from colony import token_locking
        return getattr(token_locking, name)

    if name in ("ColonyRole", "DomainPermissionGate", "ROOT_DOMAIN_ID"):
        from colony import permissions
        return getattr(permissions, name)

    if name in ("PatriciaProofPrimitive", "PatriciaTree"):
        from colony import patricia
        return getattr(patricia, name)

    raise AttributeError(f"module 'colony' has no attribute {name!r}")
