"""Allocation of unique ports for nodes created during a test run.

Ports are never released during the test run. Once a port was handed over to a node, it stays
reserved for that node even after the node was stopped or torn down.
"""

import logging
import pathlib as pl
import typing as tp

from postgres_node_tests.node_management import common
from postgres_node_tests.utils import configuration
from postgres_node_tests.utils import helpers
from postgres_node_tests.utils import locking

LOGGER = logging.getLogger(__name__)

MAX_PORT = 65535

# Exit statuses of `pg_isready` that mean there's a server listening on the port
PG_ISREADY_ACCEPTING = 0
PG_ISREADY_REJECTING = 1


class HasPort(tp.Protocol):
    @property
    def port(self) -> int: ...


def is_port_in_use(port: int, *, host: str = "") -> bool:
    """Check with `pg_isready` whether something is already listening on the port.

    Failure to run the probe itself means the port is considered free.
    """
    cmd = [configuration.get_pg_bin("pg_isready"), "-p", str(port)]
    if host:
        cmd.extend(["-h", host])

    try:
        result = helpers.run_log(cmd)
    except OSError as exc:
        LOGGER.debug(f"Failed to run port probe for port {port}, assuming it's free: {exc}")
        return False

    return result.returncode in (PG_ISREADY_ACCEPTING, PG_ISREADY_REJECTING)


def get_worker_ports_start(worker_id: str = "") -> int:
    """Return the initial "last assigned" port for the given pytest worker.

    Every xdist worker scans its own port range, so workers don't race for the same ports.
    """
    if not (configuration.IS_XDIST and worker_id.startswith("gw")):
        return configuration.PORTS_START
    worker_num = int(worker_id[2:] or 0)
    return configuration.PORTS_START + worker_num * configuration.PORTS_PER_WORKER


class PortReservations:
    """Ports allocated by all pytest workers of the test run.

    The ports are recorded in a file shared by the workers. Access to the file must be
    serialized with the port allocation lock.
    """

    def __init__(self, path: pl.Path) -> None:
        self.path = path

    def get_reserved(self) -> set[int]:
        try:
            with open(self.path, encoding="utf-8") as infile:
                return {int(line) for line in infile if line.strip()}
        except FileNotFoundError:
            return set()

    def reserve(self, port: int) -> None:
        helpers.append_to_file(self.path, f"{port}\n")


def get_port_reservations() -> PortReservations | None:
    """Return reservations shared by xdist workers, or `None` when running in single process."""
    if not configuration.IS_XDIST:
        return None
    return PortReservations(path=common.get_port_reservations_file())


class PortRegistry:
    """Registry of nodes and their ports, owned by the test run.

    When `reservations` are given, ports allocated by other registries sharing the same
    reservations (i.e. other pytest workers) are never handed out.
    """

    def __init__(
        self,
        *,
        last_assigned: int | None = None,
        host: str = "",
        probe: tp.Callable[[int], bool] | None = None,
        max_attempts: int = 0,
        reservations: PortReservations | None = None,
    ) -> None:
        self.last_assigned = configuration.PORTS_START if last_assigned is None else last_assigned
        self.host = host
        self.max_attempts = max_attempts or configuration.PORT_SCAN_LIMIT
        self.reservations = reservations
        self._probe = probe or self._default_probe
        self._nodes: list[HasPort] = []

    def _default_probe(self, port: int) -> bool:
        return is_port_in_use(port, host=self.host)

    @property
    def nodes(self) -> tuple[HasPort, ...]:
        return tuple(self._nodes)

    @property
    def registered_ports(self) -> set[int]:
        return {n.port for n in self._nodes}

    def register(self, node: HasPort) -> None:
        """Register the node, so its port is never handed out again during the test run."""
        self._nodes.append(node)

    def _scan(self) -> int:
        port = self.last_assigned
        unavailable = self.registered_ports
        if self.reservations is not None:
            unavailable |= self.reservations.get_reserved()

        for __ in range(self.max_attempts):
            port += 1
            if port > MAX_PORT:
                msg = f"No free port found, reached the port number limit {MAX_PORT}."
                raise common.PortAllocationError(msg)

            LOGGER.debug(f"Checking for port {port}")
            if port in unavailable:
                continue
            if self._probe(port):
                continue

            LOGGER.info(f"Found free port {port}")
            if self.reservations is not None:
                self.reservations.reserve(port)
            self.last_assigned = port
            return port

        msg = (
            f"No free port found after checking {self.max_attempts} ports "
            f"starting from {self.last_assigned + 1}."
        )
        raise common.PortAllocationError(msg)

    def allocate(self) -> int:
        """Return the next free port and advance the "last assigned" counter to it."""
        with locking.FileLockIfXdist(common.get_port_lock_file()):
            return self._scan()
