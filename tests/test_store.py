"""Tests for the file-backed project store."""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import pytest
import yaml

from taskweave.errors import StaleSnapshot, ValidationError
from taskweave.store import ProjectSnapshot, ProjectStore
from taskweave.tracking import ChangeAction, ChangeEvent, EntityType, Modified
from taskweave.workers import WorkerSession
from tests.utils import EPOCH, make_task


@pytest.fixture
def store(tmp_path: Path) -> ProjectStore:
    return ProjectStore(tmp_path / ".taskweave" / "project.yaml", lock_timeout=1)


class TestProjectStore:
    """Load, commit and version checks."""

    def test_missing_file_is_empty_snapshot(self, store: ProjectStore) -> None:
        snapshot = store.load()
        assert snapshot.version == 0
        assert snapshot.tasks == []
        assert not store.path.exists()

    def test_commit_bumps_version(self, store: ProjectStore) -> None:
        snapshot = store.load()
        snapshot.tasks.append(make_task("A"))
        stored = store.commit(snapshot)
        assert stored.version == 1
        assert store.load().version == 1
        assert [t.id for t in store.load().tasks] == ["A"]

    def test_stale_commit_rejected(self, store: ProjectStore) -> None:
        first = store.load()
        second = store.load()
        store.commit(replace(first, tasks=[make_task("A")]))

        with pytest.raises(StaleSnapshot) as exc_info:
            store.commit(replace(second, tasks=[make_task("B")]))
        assert exc_info.value.expected_version == 0
        assert exc_info.value.found_version == 1
        assert [t.id for t in store.load().tasks] == ["A"]

    def test_full_round_trip(self, store: ProjectStore) -> None:
        snapshot = ProjectSnapshot(
            tasks=[make_task("A", created_at=EPOCH), make_task("B", "A", estimated_duration=15)],
            sessions=[
                WorkerSession(
                    id="w1",
                    session_id="s1",
                    registered_at=EPOCH,
                    last_heartbeat=EPOCH,
                    claimed=["A"],
                )
            ],
            events=[
                ChangeEvent(
                    entity_type=EntityType.TASK,
                    entity_id="A",
                    worker_id="w1",
                    action=ChangeAction.UPDATE,
                    changes=(Modified("depends_on", [], ["X"]),),
                    timestamp=EPOCH,
                )
            ],
        )
        store.commit(snapshot)
        loaded = store.load()
        assert loaded.tasks == snapshot.tasks
        assert loaded.sessions == snapshot.sessions
        assert loaded.events == snapshot.events

    def test_file_is_plain_yaml(self, store: ProjectStore) -> None:
        store.commit(ProjectSnapshot(tasks=[make_task("A")]))
        data = yaml.safe_load(store.path.read_text(encoding="utf-8"))
        assert data["format"] == 1
        assert data["version"] == 1
        assert data["tasks"][0]["status"] == "pending"

    def test_corrupt_file(self, store: ProjectStore) -> None:
        store.path.parent.mkdir(parents=True)
        store.path.write_text("tasks:\n  - title: no id\n", encoding="utf-8")
        with pytest.raises(ValidationError, match="Corrupt project store"):
            store.load()

    def test_update(self, store: ProjectStore) -> None:
        stored = store.update(lambda s: replace(s, tasks=[*s.tasks, make_task("A")]))
        assert stored.version == 1
        assert store.load().task("A") is not None
        assert store.load().task("Z") is None
