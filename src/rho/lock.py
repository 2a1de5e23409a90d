"""Cross-process advisory file lock guarding writes to the brain log.

Every writer of a log takes the same named lock (``<log>.lock``) so that a
plain append can never interleave with a dedup append's read-check-write
window. POSIX only (``fcntl.flock``).
"""

from __future__ import annotations

import fcntl
import json
import logging
import os
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, ContextManager, Iterator

logger = logging.getLogger(__name__)

LOCK_POLL_INTERVAL = 0.05

# (lock_path, purpose) -> context manager held for the critical section
LockFactory = Callable[[Path, str], ContextManager]


class LockError(RuntimeError):
    """The lock could not be acquired."""


def lock_path_for(log_path: Path) -> Path:
    return log_path.with_name(log_path.name + ".lock")


@contextmanager
def file_lock(
    lock_path: Path,
    purpose: str = "",
    timeout: float = 10.0,
    poll_interval: float = LOCK_POLL_INTERVAL,
) -> Iterator[None]:
    """Hold an exclusive lock on ``lock_path`` for the duration of the block.

    Blocks (polling) up to ``timeout`` seconds, then raises :class:`LockError`.
    The lock file records the holder's pid and purpose for diagnostics.
    """
    lock_path = Path(lock_path)
    try:
        lock_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(str(lock_path), os.O_CREAT | os.O_RDWR, 0o644)
    except OSError as e:
        raise LockError(f"cannot open lock {lock_path}: {e}") from e

    start = time.monotonic()
    try:
        while True:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if time.monotonic() - start >= timeout:
                    raise LockError(
                        f"lock {lock_path} busy for {timeout:.1f}s (purpose: {purpose or '-'})"
                    ) from None
                time.sleep(poll_interval)
            except OSError as e:
                raise LockError(f"cannot lock {lock_path}: {e}") from e

        payload = {
            "pid": os.getpid(),
            "purpose": purpose,
            "acquired": datetime.now(timezone.utc).isoformat(timespec="seconds"),
        }
        os.ftruncate(fd, 0)
        os.write(fd, json.dumps(payload).encode("utf-8"))
        logger.debug("Acquired %s (%s)", lock_path, purpose)
        try:
            yield
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
            logger.debug("Released %s (%s)", lock_path, purpose)
    finally:
        os.close(fd)


def read_lock_holder(lock_path: Path) -> dict:
    """Return the diagnostic payload of the last holder, or {} if unknown."""
    try:
        return json.loads(Path(lock_path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return {}
