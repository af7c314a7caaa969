"""Node and test environment configuration."""

import os
import pathlib as pl
import sys

LAUNCH_PATH = pl.Path.cwd()

IS_XDIST = bool(os.environ.get("PYTEST_XDIST_TESTRUNUID"))

# Networking and authentication mode depends on platform, see `node_dir.get_auth_strategy`
WINDOWS_OS = sys.platform in ("win32", "msys", "cygwin")

# Directory with PostgreSQL binaries. Binaries are looked up on `PATH` when not set.
PG_BINDIR: str | pl.Path = os.environ.get("PG_BINDIR") or ""
if PG_BINDIR:
    PG_BINDIR = pl.Path(PG_BINDIR).expanduser().resolve()

PG_REGRESS = os.environ.get("PG_REGRESS") or "pg_regress"

PGDATABASE_DEFAULT = os.environ.get("PGDATABASE_DEFAULT") or "postgres"

# The first candidate port is `PORTS_START + 1`. Make sure the ports don't overlap with ports
# used by other services on the machine.
PORTS_START = int(os.environ.get("PORTS_START") or (90600 % 16384 + 49152))
# Width of port range reserved for single pytest worker
PORTS_PER_WORKER = int(os.environ.get("PORTS_PER_WORKER") or 200)
# Max number of candidate ports examined before the allocation is considered failed
PORT_SCAN_LIMIT = int(os.environ.get("PORT_SCAN_LIMIT") or 1000)
if PORT_SCAN_LIMIT < 1:
    msg = f"Invalid PORT_SCAN_LIMIT '{PORT_SCAN_LIMIT}': must be >= 1"
    raise RuntimeError(msg)

POLL_ATTEMPTS = int(os.environ.get("POLL_ATTEMPTS") or 30)
POLL_INTERVAL = float(os.environ.get("POLL_INTERVAL") or 1)

# Resolve TESTLOGS_DIR
TESTLOGS_DIR: str | pl.Path = os.environ.get("TESTLOGS_DIR") or ""
if TESTLOGS_DIR:
    TESTLOGS_DIR = pl.Path(TESTLOGS_DIR).expanduser().resolve()

# Keep data directories of all nodes after the test run finishes
KEEP_NODES_DATA = bool(os.environ.get("KEEP_NODES_DATA"))


def get_pg_bin(name: str) -> str:
    """Return path (or name) of a PostgreSQL binary."""
    if PG_BINDIR:
        return str(pl.Path(PG_BINDIR) / name)
    return name
