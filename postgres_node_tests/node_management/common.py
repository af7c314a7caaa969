import logging
import pathlib as pl
import typing as tp

import pytest

from postgres_node_tests.utils import framework_log
from postgres_node_tests.utils import helpers
from postgres_node_tests.utils import temptools

LOGGER = logging.getLogger(__name__)

PORT_LOCK = ".port_allocation.lock"
PORT_RESERVATIONS = "allocated_ports.txt"
PGDATA_DIRNAME = "pgdata"
BACKUP_DIRNAME = "backup"
ARCHIVE_DIRNAME = "archives"
PID_FILE_NAME = "postmaster.pid"
CONF_FILE_NAME = "postgresql.conf"
HBA_FILE_NAME = "pg_hba.conf"

# Exit code of the whole pytest run when the run was aborted
BAIL_OUT_RETURNCODE = 3


class PortAllocationError(Exception):
    pass


class SnapshotMissingError(Exception):
    pass


class CommandError(Exception):
    pass


def get_port_lock_file() -> str:
    try:
        lock_dir = temptools.get_pytest_shared_tmp()
    except RuntimeError:
        lock_dir = temptools.get_basetemp()
    return f"{lock_dir}/{PORT_LOCK}"


def get_port_reservations_file() -> pl.Path:
    """Return file shared by all pytest workers with ports allocated during the test run."""
    return temptools.get_pytest_shared_tmp() / PORT_RESERVATIONS


def bail_out(msg: str) -> tp.NoReturn:
    """Abort the whole test run, not just the current test."""
    LOGGER.error(f"Bailing out: {msg}")
    framework_log.framework_logger().error(msg)
    pytest.exit(msg, returncode=BAIL_OUT_RETURNCODE)


def system_or_bail(command: list, *, env: dict | None = None) -> helpers.CommandResult:
    """Run command and abort the whole test run if it fails."""
    try:
        result = helpers.run_log(command, env=env)
    except OSError as exc:
        bail_out(f"Failed to run `{helpers.get_cmd_str(command)}`: {exc}")

    if not result.ok:
        err = result.stderr.strip() or result.stdout.strip()
        bail_out(f"Command `{result.command}` failed with exit code {result.returncode}: {err}")

    return result
