import os
import pathlib
import sys
import pytest


# Ensure repo root is on PYTHONPATH for direct package imports (e.g. `import colony`).
_REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))


def _env_flag(name: str) -> bool:
    v = (os.environ.get(name) or '').strip().lower()
    return v in {'1', 'true', 'yes', 'y', 'on'}


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "perf: performance/benchmark tests (skipped unless COLONY_RUN_PERF=1)",
    )
    config.addinivalue_line(
        "markers",
        "slow: slow correctness tests (skipped unless COLONY_RUN_SLOW=1)",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    run_perf = _env_flag('COLONY_RUN_PERF')
    run_slow = _env_flag('COLONY_RUN_SLOW')

    for item in items:
        if 'perf' in item.keywords and not run_perf:
            item.add_marker(pytest.mark.skip(reason='perf tests skipped; set COLONY_RUN_PERF=1 to enable'))
        if 'slow' in item.keywords and not run_slow:
            item.add_marker(pytest.mark.skip(reason='slow tests skipped; set COLONY_RUN_SLOW=1 to enable'))


# Well-known test identities
COLONY = "0x" + "c0" * 20
TOKEN = "0x" + "70" * 20
FOUNDER = "0x" + "f0" * 20
USER = "0x" + "a1" * 20
OBLIGATOR = "0x" + "b2" * 20
ARBITRATOR = "0x" + "d4" * 20
BENEFICIARY = "0x" + "e5" * 20
STRANGER = "0x" + "99" * 20


@pytest.fixture(autouse=True)
def _fresh_config():
    from colony.config import get_config_manager
    get_config_manager().reset()
    yield
    get_config_manager().reset()


@pytest.fixture
def network():
    from colony.network import InMemoryColonyNetwork
    return InMemoryColonyNetwork(address="0x" + "4e" * 20)


@pytest.fixture
def token_locking():
    from colony.token_locking import InMemoryTokenLocking
    locking = InMemoryTokenLocking()
    locking.deposit(USER, 1_000, TOKEN)
    return locking


@pytest.fixture
def colony(network, token_locking):
    from colony.colony import Colony
    from colony.permissions import ColonyRole, ROOT_DOMAIN_ID

    c = Colony(COLONY, network, token_locking, founder=FOUNDER, token=TOKEN)
    c.permissions.set_user_role(ARBITRATOR, ROOT_DOMAIN_ID, ColonyRole.ARBITRATION)
    return c
