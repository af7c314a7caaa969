"""PostgreSQL server and client versions."""

import functools
import re

from packaging import version

from postgres_node_tests.utils import configuration
from postgres_node_tests.utils import helpers

VERSION_RE = re.compile(r"\(PostgreSQL\)\s+(\d+(?:\.\d+)*)")


class Versions:
    """Versions of PostgreSQL binaries used by the test run."""

    def __init__(self) -> None:
        self.server = version.parse(self._get_version("postgres") or "0")
        self.psql = version.parse(self._get_version("psql") or "0")
        self.available = self.server > version.parse("0")

    def _get_version(self, binary: str) -> str:
        """Return version string of a PostgreSQL binary, or empty string if not available."""
        try:
            out = helpers.run_log([configuration.get_pg_bin(binary), "--version"])
        except OSError:
            return ""
        if not out.ok:
            return ""
        match = VERSION_RE.search(out.stdout)
        return match.group(1) if match else ""

    def __repr__(self) -> str:
        return f"<Versions: server={self.server}, psql={self.psql}>"


@functools.cache
def get_versions() -> Versions:
    """Return versions. They don't change during test run."""
    return Versions()
