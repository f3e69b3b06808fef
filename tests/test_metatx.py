"""
Meta-Transaction Tests

Signed calls relayed on a user's behalf, with nonces held in derived slots.

Copyright (c) 2026 Momentum. All rights reserved.
"""

import pytest
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from colony.hardening import InsufficientAllowance, Unauthorized, ValidationError
from colony.security import AuditEventType
from colony.storage import METATRANSACTION_NONCES_SLOT, derive_slot

from conftest import OBLIGATOR, STRANGER, USER


@pytest.fixture
def user_key(colony):
    key = Ed25519PrivateKey.generate()
    public = key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
    colony.metatx.register_key(USER, public)
    return key


def _sign(colony, key, user, payload):
    return key.sign(colony.metatx.signing_message(user, payload))


APPROVE = {"method": "approve_stake", "args": {"obligator": OBLIGATOR, "domain_id": 1, "amount": 25}}


class TestExecuteMetaTransaction:
    def test_relayed_call_acts_as_user(self, colony, user_key):
        signature = _sign(colony, user_key, USER, APPROVE)
        colony.execute_metatransaction(USER, APPROVE, signature)

        assert colony.get_approval(USER, OBLIGATOR, 1) == 25
        assert colony.get_metatransaction_nonce(USER) == 1

    def test_nonce_lives_in_derived_slot(self, colony, user_key):
        colony.execute_metatransaction(USER, APPROVE, _sign(colony, user_key, USER, APPROVE))
        slot = derive_slot(USER, METATRANSACTION_NONCES_SLOT)
        assert colony.storage.read(slot) == 1

    def test_replay_is_rejected(self, colony, user_key):
        signature = _sign(colony, user_key, USER, APPROVE)
        colony.execute_metatransaction(USER, APPROVE, signature)

        with pytest.raises(Unauthorized):
            colony.execute_metatransaction(USER, APPROVE, signature)
        assert colony.get_approval(USER, OBLIGATOR, 1) == 25

    def test_signature_from_other_key(self, colony, user_key):
        forged = Ed25519PrivateKey.generate().sign(colony.metatx.signing_message(USER, APPROVE))
        with pytest.raises(Unauthorized):
            colony.execute_metatransaction(USER, APPROVE, forged)
        assert colony.get_metatransaction_nonce(USER) == 0

    def test_unregistered_user(self, colony, user_key):
        signature = _sign(colony, user_key, STRANGER, APPROVE)
        with pytest.raises(Unauthorized):
            colony.execute_metatransaction(STRANGER, APPROVE, signature)

    def test_tampered_payload(self, colony, user_key):
        signature = _sign(colony, user_key, USER, APPROVE)
        tampered = {"method": "approve_stake", "args": dict(APPROVE["args"], amount=10_000)}
        with pytest.raises(Unauthorized):
            colony.execute_metatransaction(USER, tampered, signature)

    def test_failed_call_does_not_consume_nonce(self, colony, user_key):
        payload = {"method": "obligate_stake", "args": {"user": OBLIGATOR, "domain_id": 1, "amount": 5}}
        with pytest.raises(InsufficientAllowance):
            colony.execute_metatransaction(USER, payload, _sign(colony, user_key, USER, payload))
        assert colony.get_metatransaction_nonce(USER) == 0

    @pytest.mark.parametrize("payload", [
        {"method": "transaction", "args": {}},
        {"method": "approve_stake", "args": {"caller": OBLIGATOR}},
        {"args": {}},
        "approve_stake",
    ])
    def test_payload_shape(self, colony, user_key, payload):
        with pytest.raises(ValidationError):
            colony.execute_metatransaction(USER, payload, b"\x00" * 64)

    def test_execution_is_audited(self, colony, user_key):
        colony.execute_metatransaction(USER, APPROVE, _sign(colony, user_key, USER, APPROVE))

        events = colony.audit.get_events(event_type=AuditEventType.METATRANSACTION_EXECUTED)
        assert [e.details for e in events] == [{"method": "approve_stake", "nonce": 0}]
        assert colony.audit.verify_chain() == (True, None)
