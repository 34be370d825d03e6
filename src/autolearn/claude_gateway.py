"""Reasoning gateway backed by the Claude CLI (``claude -p``)."""

from __future__ import annotations

import asyncio
import logging
from typing import TypeVar

from pydantic import BaseModel, ValidationError

from autolearn.config import AutoLearnConfig, gateway_subprocess_env
from autolearn.gateway import (
	ExecutionError,
	FixError,
	GatewayError,
	PlanningError,
	VerificationError,
)
from autolearn.json_utils import extract_json_object
from autolearn.models import Mission, PlanResult, Step, StepResult, Verdict

log = logging.getLogger(__name__)

SchemaT = TypeVar("SchemaT", bound=BaseModel)

PLAN_PROMPT = """\
You are planning a learning mission for a general audience.

## Goal
{goal}

## Instructions
Break the goal into at most {max_steps} ordered steps. Each step must be
completable on its own and may build on the artifacts of earlier steps.

Output JSON only:
{{"steps": [{{"title": "short title", "description": "what this step produces"}}]}}\
"""

EXECUTE_PROMPT = """\
You are executing one step of a mission.

## Mission Goal
{goal}

## Step {number}: {title}
{description}

## Earlier Artifacts
{context}

## Instructions
Produce the content for this step. Put the deliverable in the artifact.
Artifact type is one of: markdown, plan, code, data.

Output JSON only:
{{"output": "reasoning trace", "artifact": {{"name": "file-like name", "content": "...", "type": "markdown"}}}}\
"""

VERIFY_PROMPT = """\
You are reviewing the result of one mission step.

## Mission Goal
{goal}

## Step: {title}
{description}

## Result
{output}

## Artifact
{artifact}

## Instructions
Decide whether the result fulfils the step and serves the goal.

Output JSON only:
{{"passed": true/false, "feedback": "one or two sentences"}}\
"""

FIX_PROMPT = """\
You are repairing a mission step that failed review.

## Step: {title}
{description}

## Previous Result
{output}

## Previous Artifact
{artifact}

## Reviewer Feedback
{feedback}

## Instructions
Address every point of the feedback and return the corrected deliverable.

Output JSON only:
{{"output": "what changed", "artifact": {{"name": "file-like name", "content": "...", "type": "markdown"}}}}\
"""


def _artifact_text(result: StepResult) -> str:
	if result.artifact is None:
		return "(none)"
	return f"{result.artifact.name} ({result.artifact.type})\n{result.artifact.content}"


def _prior_context(mission: Mission, max_chars: int) -> str:
	if not mission.artifacts:
		return "(none yet)"
	parts = []
	for artifact in mission.artifacts:
		excerpt = artifact.content[:max_chars]
		parts.append(f"### {artifact.name}\n{excerpt}")
	return "\n\n".join(parts)


def parse_reply(text: str, schema: type[SchemaT], error_cls: type[GatewayError]) -> SchemaT:
	"""Validate a model reply against ``schema`` or raise ``error_cls``."""
	data = extract_json_object(text)
	if data is None:
		raise error_cls(f"No JSON object in reply: {text[:120]!r}")
	try:
		return schema.model_validate(data)
	except ValidationError as exc:
		raise error_cls(f"Malformed reply: {exc.error_count()} validation error(s)") from exc


class ClaudeGateway:
	"""Runs each gateway call as a one-shot ``claude -p`` subprocess."""

	def __init__(self, config: AutoLearnConfig) -> None:
		self._config = config
		self._gw = config.gateway

	async def plan(self, goal: str) -> PlanResult:
		prompt = PLAN_PROMPT.format(goal=goal, max_steps=self._gw.max_plan_steps)
		text = await self._invoke(prompt, PlanningError)
		plan = parse_reply(text, PlanResult, PlanningError)
		if len(plan.steps) > self._gw.max_plan_steps:
			log.warning("Planner returned %d steps; keeping first %d", len(plan.steps), self._gw.max_plan_steps)
			plan = PlanResult(steps=plan.steps[:self._gw.max_plan_steps])
		return plan

	async def execute(self, step: Step, mission: Mission) -> StepResult:
		prompt = EXECUTE_PROMPT.format(
			goal=mission.goal,
			number=mission.current_step_index + 1,
			title=step.title,
			description=step.description,
			context=_prior_context(mission, self._gw.context_chars),
		)
		text = await self._invoke(prompt, ExecutionError)
		return parse_reply(text, StepResult, ExecutionError)

	async def verify(self, step: Step, result: StepResult, goal: str) -> Verdict:
		prompt = VERIFY_PROMPT.format(
			goal=goal,
			title=step.title,
			description=step.description,
			output=result.output,
			artifact=_artifact_text(result),
		)
		text = await self._invoke(prompt, VerificationError)
		return parse_reply(text, Verdict, VerificationError)

	async def fix(self, step: Step, result: StepResult, feedback: str) -> StepResult:
		prompt = FIX_PROMPT.format(
			title=step.title,
			description=step.description,
			output=result.output,
			artifact=_artifact_text(result),
			feedback=feedback,
		)
		text = await self._invoke(prompt, FixError)
		return parse_reply(text, StepResult, FixError)

	async def _invoke(self, prompt: str, error_cls: type[GatewayError]) -> str:
		cmd = [
			self._gw.executable, "-p",
			"--output-format", "text",
			"--max-budget-usd", str(self._gw.budget_per_call_usd),
			"--model", self._gw.model,
			prompt,
		]
		timeout = self._gw.timeout or None
		proc: asyncio.subprocess.Process | None = None
		try:
			proc = await asyncio.create_subprocess_exec(
				*cmd,
				stdout=asyncio.subprocess.PIPE,
				stderr=asyncio.subprocess.PIPE,
				env=gateway_subprocess_env(self._config),
			)
			stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
		except asyncio.TimeoutError:
			if proc is not None:
				try:
					proc.kill()
					await proc.wait()
				except ProcessLookupError:
					pass
			raise error_cls(f"Reasoning call timed out after {self._gw.timeout}s") from None
		except OSError as exc:
			raise error_cls(f"Failed to run {self._gw.executable}: {exc}") from exc

		if proc.returncode != 0:
			detail = stderr.decode(errors="replace").strip()[:300]
			raise error_cls(f"{self._gw.executable} exited with code {proc.returncode}: {detail}")

		output = stdout.decode(errors="replace").strip()
		if not output:
			raise error_cls("Reasoning call returned empty output")
		log.debug("Gateway reply (%d chars)", len(output))
		return output
