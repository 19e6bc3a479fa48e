#!/usr/bin/env python

"""
    Keyed in-process locks for Stacks

    Serializes read-check-write sequences touching the same entity inside
    one process. Cross-process safety comes from the conditional updates
    and row locks issued inside each transaction.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import threading
from contextlib import contextmanager

OCCUPANCY = ('occupancy',)


class KeyedLocks:

    def __init__(self):
        self._guard = threading.Lock()
        self._locks = {}
        self._users = {}

    def _acquire_entry(self, key):
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            self._users[key] = self._users.get(key, 0) + 1
            return lock

    def _release_entry(self, key):
        with self._guard:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]

    @contextmanager
    def hold(self, *keys):
        """Acquire every key in a stable order so two callers asking for
        overlapping keys cannot deadlock.
        """
        ordered = sorted(set(keys), key=repr)
        acquired = []
        try:
            for key in ordered:
                lock = self._acquire_entry(key)
                lock.acquire()
                acquired.append((key, lock))
            yield
        finally:
            for key, lock in reversed(acquired):
                lock.release()
                self._release_entry(key)

    def __len__(self):
        with self._guard:
            return len(self._locks)


def copy_key(copy_id):
    return ('copy', copy_id)


def request_key(request_id):
    return ('request', request_id)
