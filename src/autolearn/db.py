"""SQLite storage for the persisted mission snapshot."""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from autolearn.models import Mission, _now_iso

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS mission_state (
	key TEXT PRIMARY KEY,
	mission_id TEXT NOT NULL,
	status TEXT NOT NULL,
	payload TEXT NOT NULL,
	updated_at TEXT NOT NULL
);
"""

CURRENT_KEY = "current"


class Database:
	"""SQLite database holding the live mission snapshot under a single key."""

	def __init__(self, path: str | Path = ":memory:", *, check_same_thread: bool = True) -> None:
		db_path = str(path)
		self.conn = sqlite3.connect(db_path, check_same_thread=check_same_thread)
		self.conn.row_factory = sqlite3.Row
		logger.debug("Opened database connection: %s", db_path)
		if db_path != ":memory:":
			self.conn.execute("PRAGMA journal_mode=WAL")
			self.conn.execute("PRAGMA busy_timeout=5000")
		self.conn.executescript(SCHEMA_SQL)

	def close(self) -> None:
		logger.debug("Closing database connection")
		self.conn.close()

	def __enter__(self) -> Database:
		return self

	def __exit__(self, *args: object) -> None:
		self.close()

	@contextmanager
	def transaction(self) -> Generator[sqlite3.Connection, None, None]:
		"""Commit on success, roll back on exception."""
		try:
			yield self.conn
		except Exception:
			self.conn.rollback()
			raise
		else:
			self.conn.commit()

	def save_mission(self, mission: Mission, key: str = CURRENT_KEY) -> None:
		payload = json.dumps(mission.to_dict(), separators=(",", ":"))
		with self.transaction() as conn:
			conn.execute(
				"""INSERT INTO mission_state (key, mission_id, status, payload, updated_at)
				VALUES (?, ?, ?, ?, ?)
				ON CONFLICT(key) DO UPDATE SET
				mission_id=excluded.mission_id, status=excluded.status,
				payload=excluded.payload, updated_at=excluded.updated_at""",
				(key, mission.id, mission.status.value, payload, _now_iso()),
			)

	def load_mission(self, key: str = CURRENT_KEY) -> Mission | None:
		row = self.conn.execute(
			"SELECT payload FROM mission_state WHERE key=?", (key,),
		).fetchone()
		if row is None:
			return None
		try:
			return Mission.from_dict(json.loads(row["payload"]))
		except (json.JSONDecodeError, KeyError, ValueError, TypeError, AttributeError) as exc:
			logger.warning("Discarding unreadable mission snapshot %r: %s", key, exc)
			return None

	def clear_mission(self, key: str = CURRENT_KEY) -> None:
		with self.transaction() as conn:
			conn.execute("DELETE FROM mission_state WHERE key=?", (key,))
		logger.info("Cleared persisted mission %r", key)
