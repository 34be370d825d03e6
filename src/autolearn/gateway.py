"""Reasoning gateway boundary: the four calls the mission loop depends on."""

from __future__ import annotations

from typing import Protocol

from autolearn.models import Mission, PlanResult, Step, StepResult, Verdict


class GatewayError(RuntimeError):
	"""Base class for failures at the reasoning-service boundary."""


class PlanningError(GatewayError):
	pass


class ExecutionError(GatewayError):
	pass


class VerificationError(GatewayError):
	pass


class FixError(GatewayError):
	pass


class ReasoningGateway(Protocol):
	"""Produces plans, step outputs, verdicts and repairs.

	Each call raises its own ``GatewayError`` subclass on any failure
	(transport, quota, malformed reply).
	"""

	async def plan(self, goal: str) -> PlanResult: ...

	async def execute(self, step: Step, mission: Mission) -> StepResult: ...

	async def verify(self, step: Step, result: StepResult, goal: str) -> Verdict: ...

	async def fix(self, step: Step, result: StepResult, feedback: str) -> StepResult: ...
