import os
import pathlib as pl
import typing as tp

import pytest
from _pytest.tmpdir import TempPathFactory

from postgres_node_tests.node_management import node_dir
from postgres_node_tests.utils import configuration
from postgres_node_tests.utils import temptools

FAKE_PID = 99999990
FAKE_RESTART_PID = 99999991

# Every fake tool records its invocation to `$FAKE_CALLS_LOG`
_RECORD = 'echo "$(basename "$0") $*" >> "$FAKE_CALLS_LOG"\n'

FAKE_TOOLS = {
    "initdb": f"""#!/bin/sh
{_RECORD}
if [ -n "$FAKE_INITDB_FAIL" ]; then echo "initdb: fake failure" >&2; exit 1; fi
while [ $# -gt 0 ]; do
    case "$1" in -D) shift; datadir="$1";; esac
    shift
done
mkdir -p "$datadir"
echo "16" > "$datadir/PG_VERSION"
echo "# fake postgresql.conf" > "$datadir/postgresql.conf"
echo "# fake pg_hba.conf" > "$datadir/pg_hba.conf"
""",
    "pg_regress": f"""#!/bin/sh
{_RECORD}
if [ -n "$FAKE_PG_REGRESS_FAIL" ]; then echo "pg_regress: fake failure" >&2; exit 1; fi
""",
    "pg_ctl": f"""#!/bin/sh
{_RECORD}
while [ $# -gt 0 ]; do
    case "$1" in
        -D) shift; datadir="$1";;
        -l) shift; logfile="$1";;
        -m) shift;;
        -w) ;;
        *) action="$1";;
    esac
    shift
done
case "$action" in
    start|restart)
        if [ -n "$FAKE_PG_CTL_FAIL" ]; then
            echo "FATAL:  fake startup failure" >> "$logfile"
            exit 1
        fi
        echo "LOG:  database system is ready to accept connections" >> "$logfile"
        if [ -z "$FAKE_NO_PID_FILE" ]; then
            if [ "$action" = "start" ]; then
                echo "{FAKE_PID}" > "$datadir/postmaster.pid"
            else
                echo "{FAKE_RESTART_PID}" > "$datadir/postmaster.pid"
            fi
        fi
        ;;
    stop)
        if [ -n "$FAKE_PG_CTL_STOP_TIMEOUT" ]; then
            echo "pg_ctl: server does not shut down" >&2
            exit 1
        fi
        rm -f "$datadir/postmaster.pid"
        if [ -n "$FAKE_PG_CTL_STOP_FAIL" ]; then echo "pg_ctl: no server running" >&2; exit 1; fi
        ;;
esac
""",
    "pg_basebackup": f"""#!/bin/sh
{_RECORD}
if [ -n "$FAKE_BASEBACKUP_FAIL" ]; then echo "pg_basebackup: fake failure" >&2; exit 1; fi
while [ $# -gt 0 ]; do
    case "$1" in -D) shift; target="$1";; esac
    shift
done
mkdir -p "$target"
cp -R "$FAKE_BASEBACKUP_SOURCE"/. "$target"/
rm -f "$target/postmaster.pid"
""",
    "pg_isready": f"""#!/bin/sh
{_RECORD}
while [ $# -gt 0 ]; do
    case "$1" in -p) shift; port="$1";; esac
    shift
done
for busy in $FAKE_BUSY_PORTS; do
    if [ "$busy" = "$port" ]; then echo "accepting connections"; exit 0; fi
done
echo "no response"
exit 2
""",
    "psql": f"""#!/bin/sh
{_RECORD}
if [ -n "$FAKE_PSQL_FAIL" ]; then echo "psql: error: fake failure" >&2; exit 2; fi
if [ -n "$FAKE_PSQL_STDERR" ]; then echo "$FAKE_PSQL_STDERR" >&2; fi
sql=""
while [ $# -gt 0 ]; do
    case "$1" in -c) shift; sql="$1";; esac
    shift
done
# Without `-c`, the SQL is read from stdin
if [ -z "$sql" ]; then read -r sql; fi
echo "${{sql#SELECT }}"
""",
}


class FakeTools(tp.NamedTuple):
    bindir: pl.Path
    calls_log: pl.Path

    # PIDs written to the PID file by fake `pg_ctl start` and `pg_ctl restart`
    start_pid = FAKE_PID
    restart_pid = FAKE_RESTART_PID

    def get_calls(self) -> list[str]:
        if not self.calls_log.exists():
            return []
        return self.calls_log.read_text(encoding="utf-8").splitlines()


@pytest.fixture(scope="session", autouse=True)
def init_pytest_temp_dirs(tmp_path_factory: TempPathFactory) -> None:
    """Init `PytestTempDirs`."""
    temptools.PytestTempDirs.init(tmp_path_factory=tmp_path_factory)


@pytest.fixture
def fake_tools(tmp_path: pl.Path, monkeypatch: pytest.MonkeyPatch) -> FakeTools:
    """Create fake PostgreSQL binaries and make the framework use them."""
    bindir = tmp_path / "bin"
    bindir.mkdir()
    for name, content in FAKE_TOOLS.items():
        tool = bindir / name
        tool.write_text(content, encoding="utf-8")
        os.chmod(tool, 0o755)

    calls_log = tmp_path / "calls.log"
    monkeypatch.setenv("FAKE_CALLS_LOG", str(calls_log))
    monkeypatch.setattr(configuration, "PG_BINDIR", bindir)
    monkeypatch.setattr(configuration, "PG_REGRESS", str(bindir / "pg_regress"))

    return FakeTools(bindir=bindir, calls_log=calls_log)


@pytest.fixture
def layout(tmp_path: pl.Path) -> node_dir.NodeLayout:
    """Return layout of a node that doesn't exist yet."""
    base_dir = tmp_path / "node_base"
    base_dir.mkdir()
    return node_dir.get_layout(
        host=str(tmp_path / "sock"), port=50001, base_dir=base_dir, log_path=tmp_path / "log"
    )
