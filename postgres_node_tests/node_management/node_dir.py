"""Filesystem layout of a node and generation of its base configuration."""

import dataclasses
import functools
import logging
import pathlib as pl
import shutil
import typing as tp

from postgres_node_tests.node_management import common
from postgres_node_tests.utils import configuration
from postgres_node_tests.utils import helpers
from postgres_node_tests.utils import temptools

LOGGER = logging.getLogger(__name__)

CONF_HEADER = "# Added by postgres_node_tests"
HBA_REPLICATION_HEADER = "# Allow replication (set up by postgres_node_tests)"


@dataclasses.dataclass(frozen=True, order=True)
class NodeLayout:
    host: str
    port: int
    base_dir: pl.Path
    logfile: pl.Path

    @property
    def data_dir(self) -> pl.Path:
        return self.base_dir / common.PGDATA_DIRNAME

    @property
    def backup_dir(self) -> pl.Path:
        return self.base_dir / common.BACKUP_DIRNAME

    @property
    def archive_dir(self) -> pl.Path:
        return self.base_dir / common.ARCHIVE_DIRNAME

    @property
    def applname(self) -> str:
        return f"node_{self.port}"

    @property
    def pid_file(self) -> pl.Path:
        return self.data_dir / common.PID_FILE_NAME


def get_layout(*, host: str, port: int, base_dir: pl.Path, log_path: pl.Path) -> NodeLayout:
    """Return layout of a node with the given port."""
    return NodeLayout(
        host=host, port=port, base_dir=base_dir, logfile=log_path / f"node_{port}.log"
    )


class AuthStrategy:
    """Generic authentication and networking mode of nodes."""

    name: tp.ClassVar[str] = "unknown"

    def listen_conf(self, host: str) -> list[str]:
        """Return `postgresql.conf` lines that make the node listen only for local clients."""
        msg = f"Not implemented for auth strategy '{self.name}'."
        raise NotImplementedError(msg)

    def replication_rule(self) -> str:
        """Return `pg_hba.conf` rule permitting replication connections."""
        msg = f"Not implemented for auth strategy '{self.name}'."
        raise NotImplementedError(msg)

    def get_test_host(self) -> str:
        """Return host (socket directory or address) used by all nodes of the test run."""
        msg = f"Not implemented for auth strategy '{self.name}'."
        raise NotImplementedError(msg)

    def cleanup_host(self, host: str) -> None:
        """Remove what `get_test_host` created for the test run."""
        msg = f"Not implemented for auth strategy '{self.name}'."
        raise NotImplementedError(msg)


class LocalSocketAuth(AuthStrategy):
    """Only Unix domain sockets, in a directory accessible just to the current OS user."""

    name: tp.ClassVar[str] = "local_socket"

    def listen_conf(self, host: str) -> list[str]:
        return [f"unix_socket_directories = '{host}'", "listen_addresses = ''"]

    def replication_rule(self) -> str:
        return "local replication all trust"

    def get_test_host(self) -> str:
        return str(temptools.tempdir_short())

    def cleanup_host(self, host: str) -> None:
        shutil.rmtree(host, ignore_errors=True)


class NetworkListenAuth(AuthStrategy):
    """TCP on loopback, access restricted by SSPI authentication."""

    name: tp.ClassVar[str] = "network_listen"

    def listen_conf(self, host: str) -> list[str]:
        return [f"listen_addresses = '{host}'"]

    def replication_rule(self) -> str:
        return "host replication all 127.0.0.1/32 sspi include_realm=1 map=regress"

    def get_test_host(self) -> str:
        return "127.0.0.1"

    def cleanup_host(self, host: str) -> None:
        pass


@functools.cache
def get_auth_strategy() -> AuthStrategy:
    """Return instance of the auth strategy indicated by the platform."""
    if configuration.WINDOWS_OS:
        return NetworkListenAuth()
    return LocalSocketAuth()


class NodeDirectory:
    """Owner of the node's data, backup and archive directories."""

    def __init__(self, layout: NodeLayout, auth: AuthStrategy | None = None) -> None:
        self.layout = layout
        self.auth = auth or get_auth_strategy()

    def create_aux_dirs(self) -> None:
        self.layout.backup_dir.mkdir(parents=True, exist_ok=True)
        self.layout.archive_dir.mkdir(parents=True, exist_ok=True)

    def append_conf(self, filename: str, text: str) -> None:
        """Append text to a file in the data directory. The content is not validated."""
        helpers.append_to_file(self.layout.data_dir / filename, text)

    def set_replication_conf(self) -> None:
        """Add rule permitting replication connections to `pg_hba.conf`."""
        self.append_conf(
            common.HBA_FILE_NAME,
            f"\n{HBA_REPLICATION_HEADER}\n{self.auth.replication_rule()}\n",
        )

    def get_base_conf(self) -> str:
        lines = [
            "",
            CONF_HEADER,
            "fsync = off",
            "log_statement = all",
            f"port = {self.layout.port}",
            *self.auth.listen_conf(self.layout.host),
        ]
        return "\n".join(lines) + "\n"

    def init(self, *, hba_permit_replication: bool = True) -> None:
        """Initialize a new data directory for testing.

        Authentication is set up so that only the current OS user can access the node.
        A failure of `initdb` or `pg_regress --config-auth` aborts the whole test run.
        """
        data_dir = self.layout.data_dir
        LOGGER.info(f"Initializing data directory '{data_dir}'")

        self.create_aux_dirs()

        common.system_or_bail(
            [configuration.get_pg_bin("initdb"), "-D", str(data_dir), "-A", "trust", "-N"]
        )
        common.system_or_bail([configuration.PG_REGRESS, "--config-auth", str(data_dir)])

        self.append_conf(common.CONF_FILE_NAME, self.get_base_conf())

        if hba_permit_replication:
            self.set_replication_conf()
