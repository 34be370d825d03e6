"""JSONL event stream for post-mission analysis."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, Any

from autolearn.models import Mission, MissionStatus


class EventStream:
	"""Append-only JSONL writer of mission log entries and status changes.

	Subscribe ``record`` to a ``MissionStore``; each call emits only what is
	new since the previous snapshot it saw.
	"""

	def __init__(self, path: Path) -> None:
		self._path = path
		self._file: IO[str] | None = None
		self._mission_id = ""
		self._logs_seen = 0
		self._status: MissionStatus | None = None

	def open(self) -> None:
		self._path.parent.mkdir(parents=True, exist_ok=True)
		self._file = self._path.open("a", encoding="utf-8")

	def close(self) -> None:
		if self._file is not None:
			self._file.close()
			self._file = None

	def emit(self, event_type: str, *, mission_id: str, details: dict[str, Any] | None = None) -> None:
		if self._file is None:
			return
		record = {
			"timestamp": datetime.now(timezone.utc).isoformat(),
			"event_type": event_type,
			"mission_id": mission_id,
			"details": details or {},
		}
		self._file.write(json.dumps(record, separators=(",", ":")) + "\n")
		self._file.flush()

	def record(self, mission: Mission) -> None:
		if mission.id != self._mission_id:
			self._mission_id = mission.id
			self._logs_seen = 0
			self._status = None

		if mission.status is not self._status:
			self.emit(
				"status",
				mission_id=mission.id,
				details={"from": self._status.value if self._status else None, "to": mission.status.value},
			)
			self._status = mission.status

		for entry in mission.logs[self._logs_seen:]:
			self.emit(
				"log",
				mission_id=mission.id,
				details={"id": entry.id, "type": entry.type.value, "message": entry.message, "at": entry.timestamp},
			)
		self._logs_seen = len(mission.logs)
