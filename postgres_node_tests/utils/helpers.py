import contextlib
import dataclasses
import hashlib
import logging
import os
import pathlib as pl
import random
import signal
import string
import subprocess
import typing as tp

import postgres_node_tests.utils.types as ttypes

LOGGER = logging.getLogger(__name__)

GITHUB_URL = "https://github.com/postgres/postgres"


@dataclasses.dataclass(frozen=True)
class CommandResult:
    command: str
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


@contextlib.contextmanager
def ignore_interrupt() -> tp.Iterator[None]:
    """Ignore the KeyboardInterrupt signal."""
    orig_handler = None
    try:
        orig_handler = signal.signal(signal.SIGINT, signal.SIG_IGN)
    except ValueError as exc:
        if "signal only works in main thread" not in str(exc):
            raise

    if orig_handler is None:
        yield
        return

    try:
        yield
    finally:
        signal.signal(signal.SIGINT, orig_handler)


def get_cmd_str(command: str | list) -> str:
    if isinstance(command, str):
        return command
    return " ".join(str(c) for c in command)


def run_log(
    command: list,
    *,
    env: dict | None = None,
    stdin: str | None = None,
) -> CommandResult:
    """Run command and return its exit status and output, without judging the outcome.

    Failure to execute the command at all (e.g. missing binary) raises `OSError`.
    """
    cmd = [str(c) for c in command]
    cmd_str = get_cmd_str(cmd)
    LOGGER.info("Running `%s`", cmd_str)

    proc = subprocess.run(
        cmd,
        input=stdin,
        capture_output=True,
        text=True,
        env={**os.environ, **env} if env else None,
        check=False,
    )

    result = CommandResult(
        command=cmd_str, returncode=proc.returncode, stdout=proc.stdout, stderr=proc.stderr
    )
    if not result.ok:
        LOGGER.debug("Command `%s` exited with %s: %s", cmd_str, result.returncode, result.stderr)
    return result


def get_rand_str(length: int = 8) -> str:
    """Return random string."""
    if length < 1:
        return ""
    return "".join(random.choice(string.ascii_lowercase) for i in range(length))


def append_to_file(filename: ttypes.FileType, content: str) -> None:
    """Append content to a file, creating the file when it doesn't exist."""
    with open(pl.Path(filename).expanduser(), "a", encoding="utf-8") as out_fp:
        out_fp.write(content)


def checksum(filename: ttypes.FileType, *, blocksize: int = 65536) -> str:
    """Return file checksum."""
    hash_o = hashlib.blake2b()
    with open(filename, "rb") as f:
        for block in iter(lambda: f.read(blocksize), b""):
            hash_o.update(block)
    return hash_o.hexdigest()


def dir_checksums(dir_path: ttypes.FileType) -> dict[str, str]:
    """Return mapping of relative file paths to file checksums for the whole directory tree."""
    root = pl.Path(dir_path)
    return {
        str(fpath.relative_to(root)): checksum(fpath)
        for fpath in sorted(root.rglob("*"))
        if fpath.is_file()
    }
