"""Bounded arena of deep-copied state captures used for rollback."""

from __future__ import annotations

import copy
import itertools
import logging
import threading
from typing import Any
from uuid import uuid4

from command_orchestrator.orchestrator.errors import SnapshotNotFoundError
from command_orchestrator.orchestrator.models import Snapshot
from command_orchestrator.storage.common import utc_now

logger = logging.getLogger(__name__)

DEFAULT_SNAPSHOT_CAPACITY = 10


class SnapshotManager:
    """Own snapshots exclusively; evict the oldest capture once over capacity."""

    def __init__(self, *, capacity: int = DEFAULT_SNAPSHOT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("Snapshot capacity must be >= 1.")
        self.capacity = capacity
        self._snapshots: dict[str, Snapshot] = {}
        self._sequence = itertools.count()
        self._lock = threading.Lock()

    def create_snapshot(self, state: Any, description: str | None = None) -> str:
        """Capture a deep copy of ``state`` and return its id."""

        snapshot = Snapshot(
            id=f"snap_{uuid4().hex}",
            timestamp=utc_now(),
            state=copy.deepcopy(state),
            description=description,
            sequence=next(self._sequence),
        )
        with self._lock:
            self._snapshots[snapshot.id] = snapshot
            while len(self._snapshots) > self.capacity:
                oldest = min(self._snapshots.values(), key=_age_key)
                del self._snapshots[oldest.id]
                logger.debug("Evicted snapshot %s (%s)", oldest.id, oldest.description)
        return snapshot.id

    def restore_snapshot(self, snapshot_id: str) -> Any:
        """Return a copy of the captured state.

        The stored capture stays untouched, so callers may mutate what they get.
        """

        with self._lock:
            snapshot = self._snapshots.get(snapshot_id)
        if snapshot is None:
            raise SnapshotNotFoundError(snapshot_id)
        return copy.deepcopy(snapshot.state)

    def get_snapshot(self, snapshot_id: str) -> Snapshot | None:
        with self._lock:
            return self._snapshots.get(snapshot_id)

    def list_snapshots(self) -> list[Snapshot]:
        """Snapshots newest first."""

        with self._lock:
            snapshots = list(self._snapshots.values())
        return sorted(snapshots, key=_age_key, reverse=True)

    def delete_snapshot(self, snapshot_id: str) -> bool:
        with self._lock:
            return self._snapshots.pop(snapshot_id, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._snapshots.clear()


def _age_key(snapshot: Snapshot) -> tuple[object, int]:
    return (snapshot.timestamp, snapshot.sequence)
