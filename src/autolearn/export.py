"""Mission export -- stateless text and JSON renderings of a snapshot."""

from __future__ import annotations

import logging
from collections import Counter
from pathlib import Path
from typing import Any

from autolearn.constants import EXPORT_SEPARATOR, REVISION_PREFIX
from autolearn.models import Mission

logger = logging.getLogger(__name__)


def export_filename(mission: Mission) -> str:
	return f"autolearn-mission-{mission.id}.txt"


def export_mission_text(mission: Mission) -> str:
	"""Plain-text dump of the goal and every artifact, in registry order."""
	blocks = [
		f"ARTIFACT {i}: {a.name}\n\n{a.content}\n\n{EXPORT_SEPARATOR}\n"
		for i, a in enumerate(mission.artifacts, start=1)
	]
	return f"MISSION GOAL: {mission.goal}\n\n" + "\n".join(blocks)


def write_export(mission: Mission, directory: str | Path = ".") -> Path:
	path = Path(directory) / export_filename(mission)
	path.parent.mkdir(parents=True, exist_ok=True)
	path.write_text(export_mission_text(mission), encoding="utf-8")
	logger.info("Exported %d artifacts to %s", len(mission.artifacts), path)
	return path


def mission_summary(mission: Mission) -> dict[str, Any]:
	"""JSON-friendly overview: status, progress, step table and counts."""
	return {
		"id": mission.id,
		"goal": mission.goal,
		"status": mission.status.value,
		"progress_pct": round(mission.progress_pct, 1),
		"current_step_index": mission.current_step_index,
		"steps": [
			{"title": s.title, "status": s.status.value, "attempts": s.attempts}
			for s in mission.steps
		],
		"artifact_count": len(mission.artifacts),
		"revisions": sum(1 for a in mission.artifacts if a.name.startswith(REVISION_PREFIX)),
		"logs_by_type": dict(Counter(e.type.value for e in mission.logs)),
	}
