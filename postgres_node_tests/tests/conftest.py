import contextlib
import logging
import os
import shutil
import typing as tp

import pytest
from _pytest.config import Config
from _pytest.fixtures import FixtureRequest
from _pytest.tmpdir import TempPathFactory
from pytest_metadata.plugin import metadata_key

from postgres_node_tests.node_management import node
from postgres_node_tests.utils import configuration
from postgres_node_tests.utils import helpers
from postgres_node_tests.utils import temptools
from postgres_node_tests.utils import versions

LOGGER = logging.getLogger(__name__)


def _has_postgres() -> bool:
    """Check that all PostgreSQL binaries needed for running nodes are available."""
    if not versions.get_versions().available:
        return False
    return bool(shutil.which(configuration.PG_REGRESS))


def pytest_configure(config: Config) -> None:
    config.addinivalue_line(
        "markers", "needs_postgres: test needs PostgreSQL binaries to run real nodes"
    )

    pg_versions = versions.get_versions()
    config.stash[metadata_key]["postgres"] = str(pg_versions.server)
    config.stash[metadata_key]["psql"] = str(pg_versions.psql)
    config.stash[metadata_key]["PG_BINDIR"] = str(configuration.PG_BINDIR)
    config.stash[metadata_key]["PG_REGRESS"] = configuration.PG_REGRESS
    config.stash[metadata_key]["PORTS_START"] = str(configuration.PORTS_START)
    config.stash[metadata_key]["postgres-node-tests rev"] = (
        os.environ.get("GIT_REVISION") or "unknown"
    )


@pytest.hookimpl(tryfirst=True)
def pytest_collection_modifyitems(config: Config, items: list) -> None:
    # Items are collected on xdist workers, so the check runs on every worker
    if _has_postgres():
        return

    skip_postgres_marker = pytest.mark.skip(reason="PostgreSQL binaries not available")
    for item in items:
        if "needs_postgres" in item.keywords:
            item.add_marker(skip_postgres_marker)


def _save_env_for_allure(pytest_config: Config) -> None:
    """Save environment info in a format for Allure."""
    alluredir = pytest_config.getoption("--alluredir", default=None)

    if not alluredir:
        return

    alluredir = configuration.LAUNCH_PATH / alluredir
    alluredir.mkdir(parents=True, exist_ok=True)
    metadata: dict[str, tp.Any] = pytest_config.stash[metadata_key]  # type: ignore
    with open(alluredir / "environment.properties", "w+", encoding="utf-8") as infile:
        for k, v in metadata.items():
            if isinstance(v, dict):
                continue
            name = k.replace(" ", ".")
            infile.write(f"{name}={v}\n")


@pytest.fixture(scope="session")
def init_pytest_temp_dirs(tmp_path_factory: TempPathFactory) -> None:
    """Init `PytestTempDirs`."""
    temptools.PytestTempDirs.init(tmp_path_factory=tmp_path_factory)


@pytest.fixture(scope="session")
def pg_test_run(
    init_pytest_temp_dirs: None, worker_id: str, request: FixtureRequest
) -> tp.Generator[node.TestRun, None, None]:
    """Return the `TestRun` owning all nodes created by tests on this worker."""
    if worker_id in ("master", "gw0"):
        _save_env_for_allure(request.config)

    test_run = node.TestRun(
        base_dir=temptools.get_pytest_worker_tmp() / "nodes", worker_id=worker_id
    )
    test_run.setup_environ()

    yield test_run

    # Make sure no server process is left running
    with helpers.ignore_interrupt():
        test_run.cleanup()


@pytest.fixture
def new_node(pg_test_run: node.TestRun) -> tp.Generator[node.NodeFactory, None, None]:
    """Return a factory for new nodes. All the nodes are torn down at the end of the test."""
    with contextlib.ExitStack() as stack:

        def _create() -> node.PostgresNode:
            return stack.enter_context(pg_test_run.get_new_node())

        yield _create
