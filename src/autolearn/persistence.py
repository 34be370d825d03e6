"""Persistence adapters for the mission snapshot (save/load/clear)."""

from __future__ import annotations

from typing import Protocol

from autolearn.db import Database
from autolearn.models import Mission


class MissionPersistence(Protocol):
	def save(self, mission: Mission) -> None: ...

	def load(self) -> Mission | None: ...

	def clear(self) -> None: ...


class DatabasePersistence:
	"""Stores the snapshot in the SQLite ``mission_state`` table."""

	def __init__(self, db: Database) -> None:
		self._db = db

	def save(self, mission: Mission) -> None:
		self._db.save_mission(mission)

	def load(self) -> Mission | None:
		return self._db.load_mission()

	def clear(self) -> None:
		self._db.clear_mission()


class MemoryPersistence:
	"""Process-local persistence, for ephemeral runs and tests."""

	def __init__(self, mission: Mission | None = None) -> None:
		self.mission = mission
		self.saves = 0

	def save(self, mission: Mission) -> None:
		self.mission = mission
		self.saves += 1

	def load(self) -> Mission | None:
		return self.mission

	def clear(self) -> None:
		self.mission = None
