"""
Lock management for forge.

The document and checkpoint files are read-modify-write. Runs take a
per-document flock so two processes never drive the same document at once.
"""

import atexit
import fcntl
import hashlib
import logging
import os
import time
from contextlib import contextmanager
from pathlib import Path

from forge.lib.artifacts import slugify

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.1


class LockTimeout(Exception):
    """Lock acquisition timed out."""
    pass


@contextmanager
def _acquire_lock(lock_file: Path, timeout: float, lock_name: str):
    """
    Internal helper to acquire a file lock.

    Args:
        lock_file: Path to the lock file
        timeout: Seconds to wait for lock
        lock_name: Human-readable name for error messages
    """
    lock_file.parent.mkdir(parents=True, exist_ok=True)

    fd = open(lock_file, "w")
    start = time.time()

    while True:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            break
        except BlockingIOError:
            if time.time() - start >= timeout:
                fd.close()
                raise LockTimeout(f"Could not acquire {lock_name} within {timeout}s")
            time.sleep(POLL_INTERVAL)

    def cleanup():
        try:
            fcntl.flock(fd, fcntl.LOCK_UN)
            fd.close()
        except (OSError, ValueError):
            pass

    atexit.register(cleanup)

    try:
        fd.write(f"{os.getpid()}\n")
        fd.flush()
        logger.debug(f"Acquired {lock_name}")
        yield
    finally:
        atexit.unregister(cleanup)
        cleanup()


def lock_path_for(lock_dir: Path, document_path: Path) -> Path:
    """Lock file for a document: readable name plus a hash of the resolved path."""
    resolved = str(Path(document_path).resolve())
    digest = hashlib.sha1(resolved.encode()).hexdigest()[:10]
    return Path(lock_dir) / f"{slugify(Path(document_path).stem)}-{digest}.lock"


@contextmanager
def document_lock(lock_dir: Path, document_path: Path, timeout: float = 60):
    """
    Acquire the per-document lock, yield, release on exit.

    Different documents can run in parallel.
    """
    lock_file = lock_path_for(lock_dir, document_path)
    with _acquire_lock(lock_file, timeout, f"lock for {document_path}"):
        yield
