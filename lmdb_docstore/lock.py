"""
Reentrant single-writer/multi-reader lock.

The LMDB environment is opened with its own locking disabled (``lock=False``),
so single-writer semantics and the exclusion between collection handle
creation and live cursors are enforced here.

Ownership is tracked per thread. A thread holding the write lock may take it
again or take read acquisitions. A thread holding only a read acquisition
cannot upgrade to write: with LMDB's reader table disabled, a commit could
recycle pages its open snapshot still reads.

Waiting writers block new readers (reentrant read acquisitions excepted), so
writers are not starved by a steady flow of readers. Wake-up order among
waiters is left to ``threading.Condition`` and is only best-effort FIFO.
"""

import threading
from contextlib import contextmanager


__all__ = ["ReentrantRWLock"]


class ReentrantRWLock:
    """Reentrant reader/writer lock with writer preference."""

    def __init__(self):
        # type: () -> None
        self._cond = threading.Condition(threading.Lock())
        self._writer = None  # type: int | None
        self._write_depth = 0
        self._readers = {}  # type: dict[int, int]
        self._writers_waiting = 0

    def acquire_write(self):
        # type: () -> None
        """
        Acquire exclusive access, blocking until no other thread holds the lock.

        :raises RuntimeError: If the current thread holds a read acquisition only
        """
        me = threading.get_ident()
        with self._cond:
            if self._writer == me:
                self._write_depth += 1
                return
            if me in self._readers:
                raise RuntimeError("Cannot upgrade a read lock to a write lock")

            self._writers_waiting += 1
            try:
                while self._writer is not None or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1

            self._writer = me
            self._write_depth = 1

    def release_write(self):
        # type: () -> None
        me = threading.get_ident()
        with self._cond:
            if self._writer != me:
                raise RuntimeError("Write lock is not held by the current thread")
            self._write_depth -= 1
            if self._write_depth == 0:
                self._writer = None
                self._cond.notify_all()

    def acquire_read(self):
        # type: () -> None
        """Acquire shared access, blocking while another thread writes or waits to write."""
        me = threading.get_ident()
        with self._cond:
            if self._writer == me or me in self._readers:
                self._readers[me] = self._readers.get(me, 0) + 1
                return

            while self._writer is not None or self._writers_waiting:
                self._cond.wait()
            self._readers[me] = 1

    def release_read(self):
        # type: () -> None
        me = threading.get_ident()
        with self._cond:
            depth = self._readers.get(me)
            if not depth:
                raise RuntimeError("Read lock is not held by the current thread")
            if depth == 1:
                del self._readers[me]
                self._cond.notify_all()
            else:
                self._readers[me] = depth - 1

    @contextmanager
    def write_locked(self):
        # type: () -> Iterator[None]
        self.acquire_write()
        try:
            yield
        finally:
            self.release_write()

    @contextmanager
    def read_locked(self):
        # type: () -> Iterator[None]
        self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @property
    def write_held(self):
        # type: () -> bool
        """True if the current thread holds the write lock."""
        return self._writer == threading.get_ident()

    @property
    def reader_count(self):
        # type: () -> int
        """Number of threads currently holding a read acquisition."""
        with self._cond:
            return len(self._readers)
