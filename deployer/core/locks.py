# deployer/core/locks.py
import os
import fcntl
import threading
from contextlib import contextmanager
from typing import Dict

_thread_locks: Dict[str, threading.Lock] = {}
_registry_lock = threading.Lock()


def _thread_lock(path: str) -> threading.Lock:
    with _registry_lock:
        lk = _thread_locks.get(path)
        if lk is None:
            lk = threading.Lock()
            _thread_locks[path] = lk
        return lk


@contextmanager
def file_lock(path: str):
    """Exclusive lock shared between threads of this process and other
    processes (dashboard, webhook server, CLI) touching the same file."""
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with _thread_lock(path):
        fd = os.open(path, os.O_RDWR | os.O_CREAT, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX)
            yield
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
            os.close(fd)


class TryLock:
    """Non-blocking exclusive lock; ``acquire`` returns False when held elsewhere."""

    def __init__(self, path: str):
        self.path = path
        self._fd = None
        self._tlock = _thread_lock(path)

    def acquire(self) -> bool:
        if not self._tlock.acquire(blocking=False):
            return False
        os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
        fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            os.close(fd)
            self._tlock.release()
            return False
        self._fd = fd
        return True

    def release(self):
        if self._fd is None:
            return
        fcntl.flock(self._fd, fcntl.LOCK_UN)
        os.close(self._fd)
        self._fd = None
        self._tlock.release()
