"""
Cross-process exclusion for matching runs.

A matching run rewrites memberships and circle cohesion flags, so the
scheduler loop and a manual ``main.py match`` must never overlap. The lock
is an advisory ``flock`` on a small JSON file that also records who holds it.
"""
import os
import fcntl
import json
import time
import logging
import contextlib
from typing import Dict, Optional

from core.exceptions import PipelineLockedError

logger = logging.getLogger(__name__)


class RunLock:
    """Exclusive matching-run lock backed by ``path``.

    ``path`` is made absolute at construction so every holder agrees on the
    file regardless of its working directory.
    """

    def __init__(self, path: str):
        self.path = os.path.abspath(path)
        self._fd: Optional[int] = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    def try_acquire(self, source: str, metadata: Optional[Dict] = None) -> bool:
        """Take the lock without blocking and record the owner.

        Returns False when another holder has it.
        """
        if self.held:
            return True

        os.makedirs(os.path.dirname(self.path), exist_ok=True)
        fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            os.close(fd)
            return False
        except OSError as e:
            os.close(fd)
            logger.error(f"Could not lock {self.path}: {e}")
            return False

        record = {"source": source, "pid": os.getpid(), "acquired_at": time.time(), **(metadata or {})}
        os.ftruncate(fd, 0)
        os.write(fd, json.dumps(record).encode("utf-8"))
        self._fd = fd
        logger.debug(f"Run lock {self.path} taken by {source}")
        return True

    def release(self) -> None:
        if not self.held:
            return
        fd, self._fd = self._fd, None
        try:
            os.ftruncate(fd, 0)
            fcntl.flock(fd, fcntl.LOCK_UN)
        except OSError as e:
            logger.error(f"Error releasing run lock {self.path}: {e}")
        finally:
            os.close(fd)

    def owner(self) -> Optional[Dict]:
        """Owner record of the current holder, or None when free or unreadable."""
        try:
            with open(self.path, "r") as f:
                content = f.read().strip()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning(f"Could not read run lock {self.path}: {e}")
            return None

        if not content:
            return None
        try:
            return json.loads(content)
        except ValueError:
            logger.warning(f"Run lock {self.path} holds a corrupt owner record")
            return None

    @contextlib.contextmanager
    def hold(self, source: str, metadata: Optional[Dict] = None):
        """Hold the lock for the block; raises PipelineLockedError when taken."""
        if not self.try_acquire(source, metadata):
            current = self.owner() or {}
            raise PipelineLockedError(
                f"Matching is already running (source={current.get('source', 'unknown')}, "
                f"pid={current.get('pid', '?')}, lock={self.path})"
            )
        try:
            yield self
        finally:
            self.release()
