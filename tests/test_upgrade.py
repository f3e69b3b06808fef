"""
Colony Upgrade Tests

Copyright (c) 2026 Momentum. All rights reserved.
"""

import pytest

from colony.hardening import (
    InvariantViolation,
    Unauthorized,
    UnregisteredVersion,
    VersionSkipOrDowngrade,
)
from colony.permissions import ROOT_DOMAIN_ID, ColonyRole
from colony.security import AuditEventType
from colony.upgrade import ColonyLogic

from conftest import COLONY, FOUNDER, OBLIGATOR, STRANGER, TOKEN, USER


class CountingLogicV2(ColonyLogic):
    """Version 2; counts migrations on the colony it upgrades."""

    VERSION = 2
    calls = []

    def finish_upgrade(self, colony):
        # Runs with v2 already active
        CountingLogicV2.calls.append(colony.version())


class CountingLogicV3(CountingLogicV2):
    VERSION = 3


class StakingLogicV2(ColonyLogic):
    """Version 2; grants a role and locks stake before failing."""

    VERSION = 2

    def finish_upgrade(self, colony):
        colony.permissions.set_user_role(STRANGER, ROOT_DOMAIN_ID, ColonyRole.ROOT)
        colony.approve_stake(USER, OBLIGATOR, ROOT_DOMAIN_ID, 100)
        colony.obligate_stake(OBLIGATOR, USER, ROOT_DOMAIN_ID, 60)
        raise RuntimeError("migration failed after staking")


class FailingLogicV2(ColonyLogic):
    VERSION = 2

    def finish_upgrade(self, colony):
        colony.edit_colony(FOUNDER, "half-migrated")
        raise RuntimeError("migration failed")


class MislabelledLogic(ColonyLogic):
    VERSION = 5


@pytest.fixture(autouse=True)
def _reset_counter():
    CountingLogicV2.calls = []
    yield


class TestVersionStep:
    """Only current + 1 is ever accepted."""

    def test_starts_at_version_one(self, colony):
        assert colony.version() == 1
        assert colony.upgrades.current_version == 1

    @pytest.mark.parametrize("target", [0, 1, 3, 10])
    def test_skip_or_downgrade_fails_regardless_of_registry(self, colony, network, target):
        network.add_colony_version(target, CountingLogicV2)
        with pytest.raises(VersionSkipOrDowngrade):
            colony.upgrade(FOUNDER, target)
        assert colony.version() == 1

    def test_unregistered_next_version(self, colony):
        with pytest.raises(UnregisteredVersion) as exc_info:
            colony.upgrade(FOUNDER, 2)
        assert exc_info.value.code == "colony-version-must-be-registered"
        assert colony.version() == 1


class TestUpgrade:
    """Successful upgrades repoint the logic and migrate once."""

    def test_upgrade_runs_new_versions_hook_once(self, colony, network):
        network.add_colony_version(2, CountingLogicV2)
        colony.upgrade(FOUNDER, 2)

        assert colony.version() == 2
        assert CountingLogicV2.calls == [2]

    def test_consecutive_upgrades(self, colony, network):
        network.add_colony_version(2, CountingLogicV2)
        network.add_colony_version(3, CountingLogicV3)

        colony.upgrade(FOUNDER, 2)
        colony.upgrade(FOUNDER, 3)

        assert colony.version() == 3
        assert CountingLogicV2.calls == [2, 3]
        with pytest.raises(VersionSkipOrDowngrade):
            colony.upgrade(FOUNDER, 2)

    def test_upgrade_is_audited(self, colony, network):
        network.add_colony_version(2, CountingLogicV2)
        colony.upgrade(FOUNDER, 2)

        events = colony.audit.get_events(event_type=AuditEventType.COLONY_UPGRADED)
        assert len(events) == 1
        assert events[0].actor == FOUNDER
        assert events[0].details == {"old_version": 1, "new_version": 2}

    def test_only_root_may_upgrade(self, colony, network):
        network.add_colony_version(2, CountingLogicV2)
        with pytest.raises(Unauthorized):
            colony.upgrade(STRANGER, 2)
        assert colony.version() == 1
        assert CountingLogicV2.calls == []

    def test_state_survives_upgrade(self, colony, network):
        colony.approve_stake(USER, OBLIGATOR, 1, 100)
        network.add_colony_version(2, CountingLogicV2)
        colony.upgrade(FOUNDER, 2)

        assert colony.get_approval(USER, OBLIGATOR, 1) == 100


class TestUpgradeAtomicity:
    """A failing migration leaves the colony exactly as it was."""

    def test_failed_migration_restores_pointer_and_state(self, colony, network):
        network.add_colony_version(2, FailingLogicV2)
        events = len(colony.audit)

        with pytest.raises(RuntimeError):
            colony.upgrade(FOUNDER, 2)

        assert colony.version() == 1
        assert colony.get_metadata() == ""
        assert len(colony.audit) == events
        assert colony.audit.verify_chain() == (True, None)

    def test_failed_migration_undoes_roles_and_stake(self, colony, network, token_locking):
        network.add_colony_version(2, StakingLogicV2)
        events = len(colony.audit)

        with pytest.raises(RuntimeError):
            colony.upgrade(FOUNDER, 2)

        assert colony.version() == 1
        assert not colony.permissions.has_user_role(STRANGER, ROOT_DOMAIN_ID, ColonyRole.ROOT)
        assert colony.get_approval(USER, OBLIGATOR, ROOT_DOMAIN_ID) == 0
        assert colony.get_obligation(USER, OBLIGATOR, ROOT_DOMAIN_ID) == 0
        assert token_locking.get_approval(USER, COLONY, TOKEN) == 0
        assert token_locking.get_obligation(USER, COLONY, TOKEN) == 0
        assert token_locking.get_user_lock(USER, TOKEN).total_obligation == 0
        assert [r.call.method for r in colony.ledger.compensations] == [
            "obligate_stake", "approve_stake",
        ]
        assert all(r.success for r in colony.ledger.compensations)
        assert len(colony.audit) == events

    def test_resolver_version_must_match(self, colony, network):
        network.add_colony_version(2, MislabelledLogic)
        with pytest.raises(InvariantViolation):
            colony.upgrade(FOUNDER, 2)
        assert colony.version() == 1


class TestMigrationHook:
    """The hook has no re-entry guard; Root can run it again."""

    def test_root_can_rerun_hook(self, colony, network):
        network.add_colony_version(2, CountingLogicV2)
        colony.upgrade(FOUNDER, 2)
        colony.finish_upgrade(FOUNDER)

        assert CountingLogicV2.calls == [2, 2]

    def test_stranger_cannot_run_hook(self, colony):
        with pytest.raises(Unauthorized):
            colony.finish_upgrade(STRANGER)

    def test_base_hook_is_noop(self, colony):
        colony.finish_upgrade(FOUNDER)
        assert colony.version() == 1
