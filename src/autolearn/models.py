"""Data models for mission state."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel

from autolearn.constants import REPAIR_TRACE_HEADER, REVISION_PREFIX


def _now_iso() -> str:
	return datetime.now(timezone.utc).isoformat()


def _new_id() -> str:
	return uuid4().hex[:12]


class MissionStatus(str, Enum):
	IDLE = "IDLE"
	PLANNING = "PLANNING"
	EXECUTING = "EXECUTING"
	VERIFYING = "VERIFYING"
	FIXING = "FIXING"
	RETRYING = "RETRYING"
	COMPLETED = "COMPLETED"
	FAILED = "FAILED"

	@property
	def in_flight(self) -> bool:
		return self in IN_FLIGHT_STATUSES

	@property
	def terminal(self) -> bool:
		return self in (MissionStatus.COMPLETED, MissionStatus.FAILED)


class StepStatus(str, Enum):
	PENDING = "PENDING"
	ACTIVE = "ACTIVE"
	FIXING = "FIXING"
	COMPLETED = "COMPLETED"


class LogType(str, Enum):
	INFO = "INFO"
	PLAN = "PLAN"
	ACTION = "ACTION"
	SYSTEM = "SYSTEM"
	SUCCESS = "SUCCESS"
	ERROR = "ERROR"


IN_FLIGHT_STATUSES: frozenset[MissionStatus] = frozenset({
	MissionStatus.PLANNING,
	MissionStatus.EXECUTING,
	MissionStatus.VERIFYING,
	MissionStatus.FIXING,
	MissionStatus.RETRYING,
})

# Every status the loop may move to from a given status. Resets bypass this
# table: they replace the whole snapshot with a fresh IDLE mission.
TRANSITIONS: dict[MissionStatus, frozenset[MissionStatus]] = {
	MissionStatus.IDLE: frozenset({MissionStatus.PLANNING}),
	MissionStatus.PLANNING: frozenset({MissionStatus.EXECUTING, MissionStatus.FAILED}),
	MissionStatus.EXECUTING: frozenset({
		MissionStatus.EXECUTING,
		MissionStatus.RETRYING,
		MissionStatus.VERIFYING,
		MissionStatus.COMPLETED,
		MissionStatus.FAILED,
	}),
	MissionStatus.VERIFYING: frozenset({
		MissionStatus.EXECUTING,
		MissionStatus.RETRYING,
		MissionStatus.FIXING,
		MissionStatus.FAILED,
	}),
	MissionStatus.FIXING: frozenset({
		MissionStatus.EXECUTING,
		MissionStatus.RETRYING,
		MissionStatus.FAILED,
	}),
	MissionStatus.RETRYING: frozenset({
		MissionStatus.EXECUTING,
		MissionStatus.RETRYING,
		MissionStatus.VERIFYING,
		MissionStatus.FAILED,
	}),
	MissionStatus.COMPLETED: frozenset(),
	MissionStatus.FAILED: frozenset(),
}


class InvalidTransitionError(ValueError):
	"""Raised when a status change is not in TRANSITIONS."""

	def __init__(self, source: MissionStatus, target: MissionStatus) -> None:
		super().__init__(f"Invalid mission transition {source.value} -> {target.value}")
		self.source = source
		self.target = target


# -- Gateway response schemas --


class PlannedStep(BaseModel, extra="ignore"):
	title: str
	description: str = ""


class PlanResult(BaseModel, extra="ignore"):
	"""Validated planner reply."""

	steps: list[PlannedStep]


class ArtifactDraft(BaseModel, extra="ignore"):
	name: str
	content: str
	type: str = "markdown"


class StepResult(BaseModel, extra="ignore"):
	"""Output of an execute or fix call."""

	output: str
	artifact: ArtifactDraft | None = None


class Verdict(BaseModel, extra="ignore"):
	passed: bool
	feedback: str = ""


# -- Mission snapshot --


@dataclass(frozen=True)
class MissionMemory:
	"""Carried with the mission but never mutated by the loop."""

	decision_log: tuple[str, ...] = ()
	learned_context: str = ""


@dataclass(frozen=True)
class Step:
	"""One planned unit of work."""

	id: str = field(default_factory=_new_id)
	title: str = ""
	description: str = ""
	status: StepStatus = StepStatus.PENDING
	attempts: int = 0  # repair cycles consumed


@dataclass(frozen=True)
class LogEntry:
	id: str = field(default_factory=_new_id)
	timestamp: str = field(default_factory=_now_iso)
	message: str = ""
	type: LogType = LogType.INFO


@dataclass(frozen=True)
class Artifact:
	"""A named content blob produced by execution or repair."""

	id: str = field(default_factory=_new_id)
	name: str = ""
	content: str = ""
	type: str = "markdown"  # markdown/plan/code/data/...
	timestamp: str = field(default_factory=_now_iso)


@dataclass(frozen=True)
class Mission:
	"""Immutable mission snapshot.

	Every ``with_*`` method returns a new value; the receiver is never
	modified, so a reader holding a reference always sees a whole snapshot.
	"""

	id: str = field(default_factory=_new_id)
	goal: str = ""
	status: MissionStatus = MissionStatus.IDLE
	current_step_index: int = -1
	steps: tuple[Step, ...] = ()
	logs: tuple[LogEntry, ...] = ()
	artifacts: tuple[Artifact, ...] = ()
	last_execution_output: str = ""
	memory: MissionMemory = field(default_factory=MissionMemory)

	@property
	def progress_pct(self) -> float:
		return max(0, self.current_step_index) / (len(self.steps) or 1) * 100.0

	@property
	def current_step(self) -> Step | None:
		if 0 <= self.current_step_index < len(self.steps):
			return self.steps[self.current_step_index]
		return None

	def with_status(self, status: MissionStatus) -> Mission:
		if status not in TRANSITIONS[self.status]:
			raise InvalidTransitionError(self.status, status)
		return replace(self, status=status)

	def with_log(self, message: str, log_type: LogType = LogType.INFO) -> Mission:
		entry = LogEntry(message=message, type=log_type)
		return replace(self, logs=self.logs + (entry,))

	def with_artifact(self, name: str, content: str, artifact_type: str = "markdown") -> Mission:
		artifact = Artifact(name=name, content=content, type=artifact_type)
		return replace(self, artifacts=self.artifacts + (artifact,))

	def with_step(self, index: int, **changes: Any) -> Mission:
		steps = list(self.steps)
		steps[index] = replace(steps[index], **changes)
		return replace(self, steps=tuple(steps))

	def with_step_completed(self, index: int) -> Mission:
		"""Complete step ``index`` and advance the index past it; never moves backwards."""
		if index != self.current_step_index:
			raise ValueError(f"Cannot complete step {index}; current step is {self.current_step_index}")
		completed = self.with_step(index, status=StepStatus.COMPLETED)
		return replace(completed, current_step_index=index + 1).with_status(MissionStatus.EXECUTING)

	def with_plan(self, planned: list[PlannedStep]) -> Mission:
		"""Materialize planner output; steps are fixed from here on."""
		steps = tuple(Step(title=p.title, description=p.description) for p in planned)
		return replace(self, steps=steps, current_step_index=0).with_status(MissionStatus.EXECUTING)

	def with_output(self, result: StepResult, *, repair: bool = False) -> Mission:
		"""Record an execute/fix result and register its artifact, if any."""
		output = f"{REPAIR_TRACE_HEADER}\n{result.output}" if repair else result.output
		updated = replace(self, last_execution_output=output)
		if result.artifact is not None:
			name = result.artifact.name
			if repair:
				name = REVISION_PREFIX + name
			updated = updated.with_artifact(name, result.artifact.content, result.artifact.type)
		return updated

	def to_dict(self) -> dict[str, Any]:
		return {
			"id": self.id,
			"goal": self.goal,
			"status": self.status.value,
			"current_step_index": self.current_step_index,
			"steps": [
				{
					"id": s.id,
					"title": s.title,
					"description": s.description,
					"status": s.status.value,
					"attempts": s.attempts,
				}
				for s in self.steps
			],
			"logs": [
				{"id": e.id, "timestamp": e.timestamp, "message": e.message, "type": e.type.value}
				for e in self.logs
			],
			"artifacts": [
				{"id": a.id, "name": a.name, "content": a.content, "type": a.type, "timestamp": a.timestamp}
				for a in self.artifacts
			],
			"last_execution_output": self.last_execution_output,
			"memory": {
				"decision_log": list(self.memory.decision_log),
				"learned_context": self.memory.learned_context,
			},
		}

	@classmethod
	def from_dict(cls, data: dict[str, Any]) -> Mission:
		memory = data.get("memory") or {}
		return cls(
			id=str(data["id"]),
			goal=str(data.get("goal", "")),
			status=MissionStatus(data.get("status", MissionStatus.IDLE.value)),
			current_step_index=int(data.get("current_step_index", -1)),
			steps=tuple(
				Step(
					id=s["id"],
					title=s.get("title", ""),
					description=s.get("description", ""),
					status=StepStatus(s.get("status", StepStatus.PENDING.value)),
					attempts=int(s.get("attempts", 0)),
				)
				for s in data.get("steps", [])
			),
			logs=tuple(
				LogEntry(
					id=e["id"],
					timestamp=e["timestamp"],
					message=e.get("message", ""),
					type=LogType(e.get("type", LogType.INFO.value)),
				)
				for e in data.get("logs", [])
			),
			artifacts=tuple(
				Artifact(
					id=a["id"],
					name=a.get("name", ""),
					content=a.get("content", ""),
					type=a.get("type", "markdown"),
					timestamp=a["timestamp"],
				)
				for a in data.get("artifacts", [])
			),
			last_execution_output=str(data.get("last_execution_output", "")),
			memory=MissionMemory(
				decision_log=tuple(memory.get("decision_log", [])),
				learned_context=str(memory.get("learned_context", "")),
			),
		)


def new_mission(goal: str = "") -> Mission:
	"""Fresh IDLE mission with a new id and empty collections."""
	return Mission(goal=goal)
