"""Bounded-retry waiting for an asynchronous condition."""

import dataclasses
import logging
import time
import typing as tp

from postgres_node_tests.utils import configuration
from postgres_node_tests.utils import helpers

LOGGER = logging.getLogger(__name__)

# SQL boolean true as printed by `psql -At`
TRUE_TOKEN = "t"


@dataclasses.dataclass(frozen=True)
class PollResult:
    success: bool
    attempts: int
    stdout: str = ""
    stderr: str = ""

    def __bool__(self) -> bool:
        return self.success


class PollingExecutor:
    """Run a predicate command at fixed cadence until it prints the true token.

    The worst case wait is `max_attempts * interval`.
    """

    def __init__(
        self,
        *,
        env: dict | None = None,
        sleep_func: tp.Callable[[float], None] = time.sleep,
    ) -> None:
        self.env = env
        self._sleep = sleep_func

    def _run_predicate(self, command: list) -> tuple[str, str]:
        try:
            result = helpers.run_log(command, env=self.env)
        except OSError as exc:
            return "", str(exc)
        return result.stdout.replace("\r", "").strip(), result.stderr

    def poll_until(
        self,
        command: list,
        *,
        max_attempts: int = 0,
        interval: float | None = None,
    ) -> PollResult:
        max_attempts = max_attempts or configuration.POLL_ATTEMPTS
        interval = configuration.POLL_INTERVAL if interval is None else interval

        stdout, stderr = "", ""
        for attempt in range(1, max_attempts + 1):
            stdout, stderr = self._run_predicate(command)
            if stdout == TRUE_TOKEN:
                return PollResult(success=True, attempts=attempt, stdout=stdout, stderr=stderr)

            # Wait before retrying
            self._sleep(interval)

        # The result didn't change in time. Give up. Log the stderr from the last attempt,
        # hopefully that's useful for debugging.
        LOGGER.error(
            f"`{helpers.get_cmd_str(command)}` didn't return '{TRUE_TOKEN}' "
            f"after {max_attempts} attempts; last stderr:\n{stderr}"
        )
        return PollResult(success=False, attempts=max_attempts, stdout=stdout, stderr=stderr)
