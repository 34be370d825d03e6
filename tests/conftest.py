"""Shared pytest fixtures and factory functions for autolearn tests."""

from __future__ import annotations

import asyncio
from typing import Any, Callable

import pytest

from autolearn.config import LoopConfig
from autolearn.controller import MissionController
from autolearn.db import Database
from autolearn.models import (
	ArtifactDraft,
	Mission,
	MissionStatus,
	PlannedStep,
	PlanResult,
	Step,
	StepResult,
	Verdict,
	new_mission,
)
from autolearn.persistence import MemoryPersistence
from autolearn.store import MissionStore

FAST_LOOP = LoopConfig(step_delay_seconds=0, idle_poll_seconds=0.01)


class FakeGateway:
	"""Scripted reasoning gateway.

	``verdicts`` are consumed in order and default to a pass once exhausted.
	Setting ``*_error`` makes that call raise. A call named in ``gates``
	blocks until its event is set; ``waiting`` is set when it starts blocking.
	"""

	def __init__(self) -> None:
		self.plan_result = PlanResult(steps=[
			PlannedStep(title="Basics", description="Explain the basics"),
			PlannedStep(title="Practice", description="Give exercises"),
		])
		self.verdicts: list[Verdict] = []
		self.plan_error: Exception | None = None
		self.execute_error: Exception | None = None
		self.verify_error: Exception | None = None
		self.fix_error: Exception | None = None
		self.gates: dict[str, asyncio.Event] = {}
		self.waiting = asyncio.Event()
		self.calls: list[str] = []

	async def _enter(self, name: str) -> None:
		self.calls.append(name)
		gate = self.gates.get(name)
		if gate is not None:
			self.waiting.set()
			await gate.wait()

	async def plan(self, goal: str) -> PlanResult:
		await self._enter("plan")
		if self.plan_error is not None:
			raise self.plan_error
		return self.plan_result

	async def execute(self, step: Step, mission: Mission) -> StepResult:
		await self._enter("execute")
		if self.execute_error is not None:
			raise self.execute_error
		slug = step.title.lower().replace(" ", "-")
		return StepResult(
			output=f"worked on {step.title}",
			artifact=ArtifactDraft(name=f"{slug}.md", content=f"# {step.title}\n"),
		)

	async def verify(self, step: Step, result: StepResult, goal: str) -> Verdict:
		await self._enter("verify")
		if self.verify_error is not None:
			raise self.verify_error
		if self.verdicts:
			return self.verdicts.pop(0)
		return Verdict(passed=True, feedback="looks right")

	async def fix(self, step: Step, result: StepResult, feedback: str) -> StepResult:
		await self._enter("fix")
		if self.fix_error is not None:
			raise self.fix_error
		slug = step.title.lower().replace(" ", "-")
		return StepResult(
			output=f"addressed: {feedback}",
			artifact=ArtifactDraft(name=f"{slug}.md", content=f"# {step.title} (fixed)\n"),
		)


@pytest.fixture()
def db() -> Database:
	"""In-memory Database with schema initialized."""
	return Database(":memory:")


@pytest.fixture()
def gateway() -> FakeGateway:
	return FakeGateway()


@pytest.fixture()
def persistence() -> MemoryPersistence:
	return MemoryPersistence()


@pytest.fixture()
def make_controller(gateway: FakeGateway, persistence: MemoryPersistence) -> Callable[..., MissionController]:
	"""Factory for a controller wired to the fake gateway with no step delay."""

	def _make(**overrides: Any) -> MissionController:
		kwargs: dict[str, Any] = {
			"gateway": gateway,
			"store": MissionStore(),
			"persistence": persistence,
			"config": FAST_LOOP,
		}
		kwargs.update(overrides)
		return MissionController(**kwargs)

	return _make


@pytest.fixture()
def planned_mission() -> Mission:
	"""EXECUTING mission with two planned steps, positioned at step 0."""
	mission = new_mission("Learn Python").with_status(MissionStatus.PLANNING)
	return mission.with_plan([PlannedStep(title="Basics"), PlannedStep(title="Practice")])
