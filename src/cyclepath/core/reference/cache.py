"""Lazily loaded, atomically refreshed reference snapshots."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Iterable

logger = logging.getLogger(__name__)


class ReferenceCache:
    """Base class for read-mostly reference data shared across requests.

    The seed is pulled from ``loader`` on first access and turned into an
    immutable index by :meth:`_build`. :meth:`refresh` builds a complete new
    index before swapping it in, so concurrent readers see either the old
    snapshot or the new one, never a mix.
    """

    name = "reference"

    def __init__(self, loader: Callable[[], Any]) -> None:
        self._loader = loader
        self._lock = threading.Lock()
        self._snapshot: Any = None

    def _build(self, seed: Any) -> Any:
        raise NotImplementedError

    def _current(self) -> Any:
        snapshot = self._snapshot
        if snapshot is not None:
            return snapshot
        with self._lock:
            if self._snapshot is None:
                self._snapshot = self._build(self._loader())
                logger.info("Loaded %s data", self.name)
            return self._snapshot

    @property
    def is_loaded(self) -> bool:
        return self._snapshot is not None

    def prepare(self) -> Any:
        """Load the seed and build a new snapshot without installing it.

        Raises:
            ReferenceDataError: If the seed file cannot be read.
        """
        return self._build(self._loader())

    def swap(self, snapshot: Any) -> None:
        """Install a snapshot built by :meth:`prepare`."""
        with self._lock:
            self._snapshot = snapshot
        logger.info("Refreshed %s data", self.name)

    def refresh(self) -> None:
        """Reload the seed and replace the cached snapshot in one step."""
        self.swap(self.prepare())


def refresh_all(caches: Iterable[ReferenceCache]) -> None:
    """Refresh several caches as one generation.

    Every snapshot is built before any is installed, so a failing seed file
    leaves all caches on their previous data.
    """
    caches = list(caches)
    snapshots = [cache.prepare() for cache in caches]
    for cache, snapshot in zip(caches, snapshots):
        cache.swap(snapshot)
