"""High-level management of nodes used by tests.

This module provides the `TestRun` class, the main interface for tests to get new nodes. The
`TestRun` owns the port registry and the list of all nodes created during the test run, sets up
environment shared by all nodes, and makes sure no node leaves a running server process behind.

The `TestRun` is instantiated by the `pg_test_run` fixture once per pytest worker and is used by
the `new_node` fixture to create nodes for a test.
"""

import contextlib
import logging
import os
import pathlib as pl
import shutil
import typing as tp

from postgres_node_tests.node_management import backup
from postgres_node_tests.node_management import commands
from postgres_node_tests.node_management import common
from postgres_node_tests.node_management import node_dir
from postgres_node_tests.node_management import polling
from postgres_node_tests.node_management import port_registry
from postgres_node_tests.node_management import process_control
from postgres_node_tests.utils import configuration
from postgres_node_tests.utils import temptools

LOGGER = logging.getLogger(__name__)


class PostgresNode:
    """A data directory and the server process running on it."""

    def __init__(
        self,
        layout: node_dir.NodeLayout,
        *,
        auth: node_dir.AuthStrategy | None = None,
        assertions: commands.AssertionLayer | None = None,
    ) -> None:
        self.layout = layout
        self.directory = node_dir.NodeDirectory(layout=layout, auth=auth)
        self.process = process_control.ProcessController(layout=layout)
        self.backups = backup.BackupManager(directory=self.directory)
        self.commands = commands.CommandRunner(layout=layout, assertions=assertions)
        self.poller = polling.PollingExecutor(env=self.commands.env)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.applname} host={self.host}>"

    @property
    def host(self) -> str:
        return self.layout.host

    @property
    def port(self) -> int:
        return self.layout.port

    @property
    def basedir(self) -> pl.Path:
        return self.layout.base_dir

    @property
    def data_dir(self) -> pl.Path:
        return self.layout.data_dir

    @property
    def backup_dir(self) -> pl.Path:
        return self.layout.backup_dir

    @property
    def archive_dir(self) -> pl.Path:
        return self.layout.archive_dir

    @property
    def applname(self) -> str:
        return self.layout.applname

    @property
    def logfile(self) -> pl.Path:
        return self.layout.logfile

    @property
    def pid(self) -> int | None:
        return self.process.pid

    @property
    def state(self) -> process_control.NodeState:
        return self.process.state

    def connstr(self, dbname: str | None = None) -> str:
        return self.commands.connstr(dbname)

    def dump_info(self) -> None:
        """Log node information."""
        LOGGER.info(
            f"Data directory: {self.data_dir}\n"
            f"Backup directory: {self.backup_dir}\n"
            f"Archive directory: {self.archive_dir}\n"
            f"Connection string: {self.connstr()}\n"
            f"Application name: {self.applname}\n"
            f"Log file: {self.logfile}"
        )

    # Directory and configuration

    def init(self, *, hba_permit_replication: bool = True) -> None:
        self.directory.init(hba_permit_replication=hba_permit_replication)

    def append_conf(self, filename: str, text: str) -> None:
        self.directory.append_conf(filename, text)

    def set_replication_conf(self) -> None:
        self.directory.set_replication_conf()

    # Process

    def start(self) -> None:
        self.process.start()

    def stop(self, mode: process_control.StopMode | str = process_control.StopMode.FAST) -> None:
        self.process.stop(mode)

    def restart(self) -> None:
        self.process.restart()

    def teardown(self) -> None:
        self.process.teardown()

    def teardown_node(self) -> None:
        self.process.teardown_node()

    # Backups

    def backup(self, backup_name: str) -> pl.Path:
        return self.backups.backup(backup_name)

    def init_from_backup(self, root_node: "PostgresNode", backup_name: str) -> None:
        """Initialize this node from a backup of `root_node`.

        A missing backup aborts the whole test run.
        """
        try:
            self.backups.init_from_backup(root_node=root_node.layout, name=backup_name)
        except common.SnapshotMissingError as exc:
            common.bail_out(str(exc))

    # Commands

    def psql(self, dbname: str, sql: str) -> str:
        return self.commands.psql(dbname, sql)

    def poll_query_until(
        self,
        dbname: str,
        query: str,
        *,
        max_attempts: int = 0,
        interval: float | None = None,
    ) -> polling.PollResult:
        """Run a query once per interval, until it returns 't' (i.e. SQL boolean true)."""
        cmd = [configuration.get_pg_bin("psql"), "-At", "-c", query, "-d", self.connstr(dbname)]
        return self.poller.poll_until(cmd, max_attempts=max_attempts, interval=interval)

    def command_ok(self, cmd: list, name: str) -> bool:
        return self.commands.command_ok(cmd, name)

    def command_fails(self, cmd: list, name: str) -> bool:
        return self.commands.command_fails(cmd, name)

    def command_like(self, cmd: list, pattern: commands.PatternType, name: str) -> bool:
        return self.commands.command_like(cmd, pattern, name)

    def issues_sql_like(
        self, cmd: list, expected_sql: commands.PatternType, name: str
    ) -> tuple[bool, bool]:
        return self.commands.issues_sql_like(cmd, expected_sql, name)


NodeFactory = tp.Callable[[], PostgresNode]


class TestRun:
    """Set of management methods for nodes created during a single test run."""

    # Not a test class, despite the name
    __test__ = False

    def __init__(
        self,
        *,
        base_dir: pl.Path,
        log_path: pl.Path | None = None,
        worker_id: str = "",
        auth: node_dir.AuthStrategy | None = None,
        registry: port_registry.PortRegistry | None = None,
        assertions: commands.AssertionLayer | None = None,
    ) -> None:
        self.base_dir = base_dir
        self.log_path = log_path or pl.Path(configuration.TESTLOGS_DIR or base_dir / "log")
        self.auth = auth or node_dir.get_auth_strategy()
        self.host = self.auth.get_test_host()
        self.registry = registry or port_registry.PortRegistry(
            last_assigned=port_registry.get_worker_ports_start(worker_id),
            host=self.host,
            reservations=port_registry.get_port_reservations(),
        )
        self.assertions = assertions

        self.log_path.mkdir(parents=True, exist_ok=True)

    @property
    def nodes(self) -> tuple[PostgresNode, ...]:
        return tp.cast(tuple[PostgresNode, ...], self.registry.nodes)

    def setup_environ(self) -> None:
        """Set env variables shared by all nodes of the test run."""
        os.environ["PGHOST"] = self.host
        os.environ["PGDATABASE"] = configuration.PGDATABASE_DEFAULT

    def create_node(self) -> PostgresNode:
        """Create a new node with a free port and its own private directories.

        The node is registered, so its port is never reused for another node, even when this
        one is not active anymore.
        """
        port = self.registry.allocate()
        base_dir = temptools.mkdtemp(parent=self.base_dir, prefix=f"node_{port}_")
        layout = node_dir.get_layout(
            host=self.host, port=port, base_dir=base_dir, log_path=self.log_path
        )
        node = PostgresNode(layout=layout, auth=self.auth, assertions=self.assertions)
        self.registry.register(node)
        node.dump_info()
        return node

    @contextlib.contextmanager
    def get_new_node(self) -> tp.Iterator[PostgresNode]:
        """Create a new node and tear it down on every exit path of the `with` block."""
        node = self.create_node()
        try:
            yield node
        finally:
            node.teardown()

    def teardown_all(self) -> None:
        """Make sure no node leaves a live server process behind."""
        for node in self.nodes:
            try:
                node.teardown()
            except OSError:
                LOGGER.exception(f"Failed to tear down {node}")

    def cleanup(self) -> None:
        """Tear down all nodes and remove their data, unless configured to keep it."""
        self.teardown_all()
        if configuration.KEEP_NODES_DATA:
            return
        for node in self.nodes:
            shutil.rmtree(node.basedir, ignore_errors=True)
        self.auth.cleanup_host(self.host)
