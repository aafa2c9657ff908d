import threading
from contextlib import contextmanager


class RWLock:
    """
    Reader/writer lock that prefers writers.

    Any number of readers may hold the lock at once; a writer holds it alone.
    New readers wait while a writer is waiting, so a steady stream of reads
    from the log renderer cannot starve key handling.
    """

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    @contextmanager
    def read_lock(self):
        with self._cond:
            while self._writer or self._waiting_writers:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if not self._readers:
                    self._cond.notify_all()

    @contextmanager
    def write_lock(self):
        with self._cond:
            self._waiting_writers += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._waiting_writers -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class Guarded:
    """A value only reachable through a RWLock."""

    def __init__(self, value):
        self._value = value
        self._lock = RWLock()

    @contextmanager
    def read(self):
        with self._lock.read_lock():
            yield self._value

    @contextmanager
    def write(self):
        with self._lock.write_lock():
            yield self._value
