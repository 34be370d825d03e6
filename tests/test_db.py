"""Tests for SQLite mission persistence."""

from __future__ import annotations

from pathlib import Path

import pytest

from autolearn.db import Database
from autolearn.models import Mission, MissionStatus
from autolearn.persistence import DatabasePersistence, MemoryPersistence


class TestMissionState:
	def test_empty(self, db: Database) -> None:
		assert db.load_mission() is None

	def test_save_and_load(self, db: Database, planned_mission: Mission) -> None:
		mission = planned_mission.with_artifact("a.md", "body")
		db.save_mission(mission)
		loaded = db.load_mission()
		assert loaded == mission

	def test_save_overwrites(self, db: Database, planned_mission: Mission) -> None:
		db.save_mission(planned_mission)
		failed = planned_mission.with_status(MissionStatus.FAILED)
		db.save_mission(failed)

		loaded = db.load_mission()
		assert loaded is not None
		assert loaded.status is MissionStatus.FAILED
		count = db.conn.execute("SELECT COUNT(*) FROM mission_state").fetchone()[0]
		assert count == 1

	def test_clear(self, db: Database, planned_mission: Mission) -> None:
		db.save_mission(planned_mission)
		db.clear_mission()
		assert db.load_mission() is None

	def test_unreadable_payload_is_discarded(self, db: Database) -> None:
		db.conn.execute(
			"INSERT INTO mission_state (key, mission_id, status, payload, updated_at) VALUES (?, ?, ?, ?, ?)",
			("current", "m1", "EXECUTING", "{not json", "2026-01-01T00:00:00+00:00"),
		)
		db.conn.commit()
		assert db.load_mission() is None

	@pytest.mark.parametrize("payload", ["[]", "42", '"text"', '{"id": "m1", "steps": 3}'])
	def test_non_object_payload_is_discarded(self, db: Database, payload: str) -> None:
		db.conn.execute(
			"INSERT INTO mission_state (key, mission_id, status, payload, updated_at) VALUES (?, ?, ?, ?, ?)",
			("current", "m1", "EXECUTING", payload, "2026-01-01T00:00:00+00:00"),
		)
		db.conn.commit()
		assert db.load_mission() is None

	def test_survives_reopen(self, tmp_path: Path, planned_mission: Mission) -> None:
		path = tmp_path / "autolearn.db"
		with Database(path) as first:
			first.save_mission(planned_mission)
		with Database(path) as second:
			loaded = second.load_mission()
		assert loaded is not None
		assert loaded.id == planned_mission.id


class TestPersistenceAdapters:
	def test_database_persistence(self, db: Database, planned_mission: Mission) -> None:
		store = DatabasePersistence(db)
		store.save(planned_mission)
		assert store.load() == planned_mission
		store.clear()
		assert store.load() is None

	def test_memory_persistence(self, planned_mission: Mission) -> None:
		store = MemoryPersistence()
		store.save(planned_mission)
		store.save(planned_mission)
		assert store.saves == 2
		assert store.load() is planned_mission
		store.clear()
		assert store.load() is None
