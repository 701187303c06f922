from __future__ import annotations

import allure
import pytest

from command_orchestrator.orchestrator.errors import SnapshotNotFoundError
from command_orchestrator.orchestrator.snapshots import SnapshotManager

pytestmark = [
    allure.epic("Execution"),
    allure.feature("Snapshots"),
]


def test_snapshot_is_deep_copy_on_create_and_restore() -> None:
    manager = SnapshotManager()
    state = {"files": ["a.txt"], "meta": {"rev": 1}}

    snapshot_id = manager.create_snapshot(state, "before audit")
    state["files"].append("b.txt")
    state["meta"]["rev"] = 2

    restored = manager.restore_snapshot(snapshot_id)
    assert restored == {"files": ["a.txt"], "meta": {"rev": 1}}

    restored["files"].clear()
    assert manager.restore_snapshot(snapshot_id) == {"files": ["a.txt"], "meta": {"rev": 1}}


def test_capacity_evicts_oldest_first() -> None:
    manager = SnapshotManager(capacity=10)
    ids = [manager.create_snapshot({"n": index}) for index in range(12)]

    listed = manager.list_snapshots()
    assert len(listed) == 10
    assert manager.get_snapshot(ids[0]) is None
    assert manager.get_snapshot(ids[1]) is None
    assert listed[0].id == ids[-1]
    assert listed[-1].id == ids[2]


def test_restore_unknown_snapshot_raises() -> None:
    manager = SnapshotManager()

    with pytest.raises(SnapshotNotFoundError, match="snap_missing"):
        manager.restore_snapshot("snap_missing")


def test_delete_and_clear() -> None:
    manager = SnapshotManager()
    first = manager.create_snapshot(1)
    manager.create_snapshot(2)

    assert manager.delete_snapshot(first) is True
    assert manager.delete_snapshot(first) is False
    manager.clear()
    assert manager.list_snapshots() == []


def test_capacity_must_be_positive() -> None:
    with pytest.raises(ValueError):
        SnapshotManager(capacity=0)
