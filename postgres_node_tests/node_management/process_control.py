"""Control of the server process of a node (start, stop, restart, PID tracking)."""

import enum
import logging
import os
import signal

from postgres_node_tests.node_management import common
from postgres_node_tests.node_management import node_dir
from postgres_node_tests.utils import configuration
from postgres_node_tests.utils import helpers
from postgres_node_tests.utils import logfiles

LOGGER = logging.getLogger(__name__)


class NodeState(enum.StrEnum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


class StopMode(enum.StrEnum):
    SMART = "smart"
    FAST = "fast"
    IMMEDIATE = "immediate"


def read_pid_file(layout: node_dir.NodeLayout) -> int | None:
    """Return PID from the first line of the PID file.

    If the file cannot be read, presumably the server is not running.
    """
    try:
        with open(layout.pid_file, encoding="utf-8") as infile:
            return int(infile.readline().strip())
    except (OSError, ValueError):
        return None


class ProcessController:
    """Start, stop and restart the server process of a single node.

    Calls on the same node must be serialized by the caller. Every call blocks until `pg_ctl`
    returns.
    """

    def __init__(self, layout: node_dir.NodeLayout) -> None:
        self.layout = layout
        self._pid: int | None = None
        self._state = NodeState.STOPPED

    @property
    def pid(self) -> int | None:
        return self._pid

    @property
    def state(self) -> NodeState:
        return self._state

    def update_pid(self) -> int | None:
        """Refresh the tracked PID from the PID file."""
        self._pid = read_pid_file(self.layout)
        if self._pid is None:
            LOGGER.info("No postmaster PID")
        else:
            LOGGER.info(f"Postmaster PID is {self._pid}")
        return self._pid

    def _pg_ctl(self, *args: str) -> helpers.CommandResult:
        cmd = [configuration.get_pg_bin("pg_ctl"), *args]
        try:
            return helpers.run_log(cmd)
        except OSError as exc:
            common.bail_out(f"Failed to run `{helpers.get_cmd_str(cmd)}`: {exc}")

    def _fail_with_log(self, action: str) -> None:
        LOGGER.error(f"pg_ctl {action} failed; logfile:")
        logfiles.dump_log_tail(self.layout.logfile)
        self._state = NodeState.STOPPED
        common.bail_out(f"pg_ctl {action} failed for node with port {self.layout.port}")

    def start(self) -> None:
        """Start the node and wait until it is ready to accept connections.

        Failure to start aborts the whole test run.
        """
        LOGGER.info(f"Starting test server in {self.layout.data_dir}")
        self._state = NodeState.STARTING
        self.layout.logfile.parent.mkdir(parents=True, exist_ok=True)

        result = self._pg_ctl(
            "-w", "-D", str(self.layout.data_dir), "-l", str(self.layout.logfile), "start"
        )
        if not result.ok:
            self._fail_with_log(action="start")

        self._state = NodeState.RUNNING
        # The PID file may not exist yet; that's not an error
        self.update_pid()

    def stop(self, mode: StopMode | str = StopMode.FAST) -> None:
        """Stop the node using the given shutdown mode."""
        mode = StopMode(mode)
        LOGGER.info(
            f"Stopping node in {self.layout.data_dir} with port {self.layout.port} "
            f"using mode {mode}"
        )
        self._state = NodeState.STOPPING

        result = self._pg_ctl("-D", str(self.layout.data_dir), "-m", str(mode), "stop")
        if not result.ok:
            LOGGER.warning(
                f"pg_ctl stop exited with {result.returncode}: {result.stderr.strip()}"
            )

        self._pid = None
        # The server may survive a failed stop
        self._state = NodeState.RUNNING if self.update_pid() else NodeState.STOPPED

    def restart(self) -> None:
        """Stop and start the node in a single `pg_ctl` invocation."""
        LOGGER.info(f"Restarting node in {self.layout.data_dir}")
        self._state = NodeState.STOPPING

        result = self._pg_ctl(
            "-D", str(self.layout.data_dir), "-w", "-l", str(self.layout.logfile), "restart"
        )
        if not result.ok:
            self._fail_with_log(action="restart")

        self._state = NodeState.RUNNING
        self.update_pid()

    def teardown(self) -> None:
        """Forcibly terminate the server process if a PID is tracked.

        Calling it again when no PID is tracked is a no-op.
        """
        pid = self._pid
        if pid is None:
            return

        LOGGER.info(f"Signalling QUIT to {pid}")
        try:
            os.kill(pid, signal.SIGQUIT)
        except ProcessLookupError:
            LOGGER.info(f"Process {pid} is already gone")

        self._pid = None
        self._state = NodeState.STOPPED

    def teardown_node(self) -> None:
        """Stop the node using the immediate shutdown mode."""
        self.stop(StopMode.IMMEDIATE)
