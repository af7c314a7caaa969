"""Backups of a running node and provisioning of new nodes from them."""

import logging
import pathlib as pl
import shutil

from postgres_node_tests.node_management import common
from postgres_node_tests.node_management import node_dir
from postgres_node_tests.utils import configuration

LOGGER = logging.getLogger(__name__)


class BackupManager:
    """Take snapshots of the node's data directory and initialize the node from snapshots."""

    def __init__(self, directory: node_dir.NodeDirectory) -> None:
        self.directory = directory

    @property
    def layout(self) -> node_dir.NodeLayout:
        return self.directory.layout

    def get_snapshot_path(self, name: str) -> pl.Path:
        return self.layout.backup_dir / name

    def backup(self, name: str) -> pl.Path:
        """Take a backup of the running node using `pg_basebackup`.

        A failure of `pg_basebackup` aborts the whole test run.
        """
        backup_path = self.get_snapshot_path(name)
        port = self.layout.port

        LOGGER.info(f"Taking backup {name} from node with port {port}")
        common.system_or_bail(
            [
                configuration.get_pg_bin("pg_basebackup"),
                "-D",
                str(backup_path),
                "-p",
                str(port),
                "-X",
                "fetch",
            ]
        )
        LOGGER.info("Backup finished")
        return backup_path

    def init_from_backup(self, root_node: node_dir.NodeLayout, name: str) -> None:
        """Initialize the node's data directory from a snapshot of another node.

        Raises `SnapshotMissingError` when the snapshot doesn't exist.
        """
        backup_path = root_node.backup_dir / name
        port = self.layout.port

        LOGGER.info(f'Initializing node {port} from backup "{name}" of node {root_node.port}')
        if not backup_path.is_dir():
            msg = f"Backup {backup_path} does not exist"
            raise common.SnapshotMissingError(msg)

        self.directory.create_aux_dirs()

        data_path = self.layout.data_dir
        # Only an empty leftover directory may be replaced
        if data_path.is_dir() and not any(data_path.iterdir()):
            data_path.rmdir()
        shutil.copytree(backup_path, data_path, symlinks=True)
        data_path.chmod(0o700)

        # Base configuration for this node
        self.directory.append_conf(common.CONF_FILE_NAME, f"\nport = {port}\n")
        self.directory.set_replication_conf()
