import contextlib
import logging
import typing as tp

from postgres_node_tests.utils import configuration

# Use dummy locking if not executing with multiple workers.
# When running with multiple workers, operations with shared resources (like the file with
# ports allocated by all workers)
# need to be locked to single worker.
if configuration.IS_XDIST:
    from filelock import FileLock

    # Suppress messages from filelock
    logging.getLogger("filelock").setLevel(logging.WARNING)

    FileLockIfXdist: tp.Any = FileLock
else:
    FileLockIfXdist = contextlib.nullcontext
