"""Execution of commands scoped to a node.

The runner only reports facts (exit statuses, output, log content) to an assertion layer. It is
up to the assertion layer to decide what a failed check means for the test.
"""

import dataclasses
import logging
import re
import typing as tp

import pytest

from postgres_node_tests.node_management import common
from postgres_node_tests.node_management import node_dir
from postgres_node_tests.utils import configuration
from postgres_node_tests.utils import helpers
from postgres_node_tests.utils import logfiles

LOGGER = logging.getLogger(__name__)

PatternType = str | re.Pattern[str]


@dataclasses.dataclass(frozen=True)
class CheckResult:
    name: str
    passed: bool
    details: str = ""


class AssertionLayer(tp.Protocol):
    def ok(self, passed: bool, name: str, details: str = "") -> bool: ...

    def like(self, text: str, pattern: PatternType, name: str) -> bool: ...


def _search(text: str, pattern: PatternType) -> bool:
    regex = pattern if isinstance(pattern, re.Pattern) else re.compile(pattern)
    return regex.search(text) is not None


class CheckRecorder:
    """Assertion layer that records results of all checks.

    Failed checks don't interrupt the test. Call `assert_all` to fail the test with all the
    collected errors.
    """

    def __init__(self) -> None:
        self.results: list[CheckResult] = []

    def ok(self, passed: bool, name: str, details: str = "") -> bool:
        self.results.append(CheckResult(name=name, passed=passed, details=details))
        if not passed:
            LOGGER.warning(f"Check failed: {name}\n{details}".rstrip())
        return passed

    def like(self, text: str, pattern: PatternType, name: str) -> bool:
        passed = _search(text, pattern)
        details = "" if passed else f"'{text}'\ndoesn't match '{pattern}'"
        return self.ok(passed, name, details)

    @property
    def failures(self) -> list[CheckResult]:
        return [r for r in self.results if not r.passed]

    def assert_all(self) -> None:
        if not self.failures:
            return
        err_joined = "\n".join(f"{r.name}: {r.details}".rstrip(": ") for r in self.failures)
        pytest.fail(f"Errors:\n{err_joined}")


class PytestAssertions:
    """Assertion layer that fails the current test on the first failed check."""

    def ok(self, passed: bool, name: str, details: str = "") -> bool:
        if not passed:
            pytest.fail(f"{name}\n{details}".rstrip())
        return passed

    def like(self, text: str, pattern: PatternType, name: str) -> bool:
        if not _search(text, pattern):
            pytest.fail(f"{name}\n'{text}'\ndoesn't match '{pattern}'")
        return True


class CommandRunner:
    """Run commands with `PGPORT` of the node injected into their environment."""

    def __init__(
        self, layout: node_dir.NodeLayout, assertions: AssertionLayer | None = None
    ) -> None:
        self.layout = layout
        self.assertions: AssertionLayer = assertions or PytestAssertions()

    @property
    def env(self) -> dict[str, str]:
        return {"PGPORT": str(self.layout.port)}

    def connstr(self, dbname: str | None = None) -> str:
        connstr = f"port={self.layout.port} host={self.layout.host}"
        if dbname is None:
            return connstr
        return f"{connstr} dbname={dbname}"

    def run(self, cmd: list, *, stdin: str | None = None) -> helpers.CommandResult:
        """Run the command and return its exit status and output without judging them."""
        try:
            return helpers.run_log(cmd, env=self.env, stdin=stdin)
        except OSError as exc:
            return helpers.CommandResult(
                command=helpers.get_cmd_str(cmd), returncode=-1, stdout="", stderr=str(exc)
            )

    def command_ok(self, cmd: list, name: str) -> bool:
        result = self.run(cmd)
        return self.assertions.ok(result.ok, name, result.stderr)

    def command_fails(self, cmd: list, name: str) -> bool:
        result = self.run(cmd)
        return self.assertions.ok(not result.ok, name, result.stdout)

    def command_like(self, cmd: list, pattern: PatternType, name: str) -> bool:
        result = self.run(cmd)
        exit_ok = self.assertions.ok(result.ok, f"{name}: exit code 0", result.stderr)
        no_stderr = self.assertions.ok(
            not result.stderr, f"{name}: no stderr", result.stderr
        )
        matches = self.assertions.like(result.stdout, pattern, f"{name}: matches")
        return exit_ok and no_stderr and matches

    def issues_sql_like(
        self, cmd: list, expected_sql: PatternType, name: str
    ) -> tuple[bool, bool]:
        """Run the command, then check that `expected_sql` appears in the server log file.

        The exit status check and the log check are reported independently.
        """
        logfiles.truncate_file(self.layout.logfile)
        result = self.run(cmd)
        exit_ok = self.assertions.ok(
            result.ok, f"{helpers.get_cmd_str(cmd)} exit code 0", result.stderr
        )
        log = logfiles.slurp_file(self.layout.logfile)
        log_ok = self.assertions.like(log, expected_sql, f"{name}: SQL found in server log")
        return exit_ok, log_ok

    def psql(self, dbname: str, sql: str) -> str:
        """Run SQL in `psql` and return its output with trailing newline removed."""
        LOGGER.info(f"Running SQL command: {sql}")
        cmd = [
            configuration.get_pg_bin("psql"),
            "-XAtq",
            "-d",
            self.connstr(dbname),
            "-f",
            "-",
        ]
        try:
            result = helpers.run_log(cmd, stdin=sql)
        except OSError as exc:
            msg = f"Failed to run psql: {exc}"
            raise common.CommandError(msg) from exc

        if result.stderr:
            LOGGER.info(f"psql standard error:\n{result.stderr}")
        if not result.ok:
            msg = f"psql exited with {result.returncode}: {result.stderr}"
            raise common.CommandError(msg)

        return result.stdout.replace("\r", "").rstrip("\n")
