"""Atomic holder for the current configuration snapshot.

Readers call load() and get back whatever object was most recently installed;
they never take a lock. Writers serialize on a small lock that is held only for
the reference swap, so a slow reader (for example one that is busy serializing
a large snapshot to JSON) never delays a writer and vice versa.

Snapshots handed to store() must not be mutated afterwards. A reader that
loaded a snapshot before a swap may keep using it until it drops the reference.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Generic, TypeVar

from .models import ConfigSnapshot

logger = logging.getLogger("routeboard.snapshot")

T = TypeVar("T")


class SnapshotStore(Generic[T]):
    """Brief: Lock-free-read reference cell for immutable snapshots.

    Inputs (constructor):
      - initial: Value returned by load() before the first store().

    Outputs:
      - SnapshotStore instance.

    Example:
      >>> store = SnapshotStore(ConfigSnapshot())
      >>> store.load().providers
      {}
      >>> store.store(ConfigSnapshot())
      >>> store.version
      1
    """

    def __init__(self, initial: T) -> None:
        self._value: T = initial
        self._write_lock = threading.Lock()
        self._version = 0

    def load(self) -> T:
        """Brief: Return the most recently installed snapshot.

        Inputs: none
        Outputs: the current snapshot object (never None once constructed).
        """

        # A single attribute read; the interpreter guarantees it observes
        # either the old or the new reference, never a torn value.
        return self._value

    def store(self, value: T) -> None:
        """Brief: Atomically replace the visible snapshot (last writer wins).

        Inputs:
          - value: New snapshot. Ownership passes to the store.

        Outputs:
          - None.
        """

        with self._write_lock:
            self._value = value
            self._version += 1

    def update(self, fn: Callable[[T], T]) -> T:
        """Brief: Derive and install a new snapshot from the current one.

        Inputs:
          - fn: Pure function mapping the current snapshot to a new one. It runs
            under the write lock, so concurrent update() calls do not lose each
            other's changes. Readers are not blocked while it runs.

        Outputs:
          - The snapshot that was installed.
        """

        with self._write_lock:
            new_value = fn(self._value)
            self._value = new_value
            self._version += 1
            return new_value

    @property
    def version(self) -> int:
        """Number of installs performed since construction."""

        return self._version


def new_config_store(initial: ConfigSnapshot | None = None) -> SnapshotStore[ConfigSnapshot]:
    """Brief: Build a SnapshotStore typed for ConfigSnapshot values.

    Inputs:
      - initial: Optional seed snapshot; defaults to an empty one.

    Outputs:
      - SnapshotStore[ConfigSnapshot].
    """

    seed = initial if initial is not None else ConfigSnapshot()
    logger.debug("Snapshot store created with %d provider(s)", len(seed.providers))
    return SnapshotStore(seed)
