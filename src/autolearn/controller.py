"""Mission controller -- plan, execute, verify and repair one mission at a time.

The controller owns the only writer of the mission snapshot: a single asyncio
task running ``_run_loop``. A ``LoopGuard`` keeps that task single-flight no
matter how often the trigger fires. Cancellation is cooperative: before any
gateway result is written, the loop re-reads the live snapshot and stops
without writing if the mission was reset or replaced in the meantime.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from collections.abc import Callable

from autolearn.config import LoopConfig
from autolearn.gateway import GatewayError, ReasoningGateway
from autolearn.guard import LoopGuard
from autolearn.models import (
	LogType,
	Mission,
	MissionStatus,
	StepResult,
	StepStatus,
	new_mission,
)
from autolearn.persistence import MissionPersistence
from autolearn.store import MissionStore

logger = logging.getLogger(__name__)


class MissionAborted(Exception):
	"""The mission was reset or replaced while a gateway call was in flight."""


class MissionController:
	"""Drives the mission state machine against a reasoning gateway."""

	def __init__(
		self,
		gateway: ReasoningGateway,
		store: MissionStore | None = None,
		persistence: MissionPersistence | None = None,
		config: LoopConfig | None = None,
	) -> None:
		self._gateway = gateway
		self._store = store if store is not None else MissionStore()
		self._persistence = persistence
		self._config = config if config is not None else LoopConfig()
		self._guard = LoopGuard()
		self._tasks: set[asyncio.Task[None]] = set()
		self._store.subscribe(self._on_change)

	@property
	def store(self) -> MissionStore:
		return self._store

	@property
	def mission(self) -> Mission:
		return self._store.snapshot

	@property
	def loop_active(self) -> bool:
		return self._guard.active

	def subscribe(self, callback: Callable[[Mission], None]) -> Callable[[], None]:
		return self._store.subscribe(callback)

	# -- Produced interface --

	def start_mission(self, goal: str) -> bool:
		"""Seed a fresh PLANNING mission for ``goal``; the loop starts automatically.

		Returns False (and changes nothing) for a blank goal or while another
		mission is in flight.
		"""
		if not goal or not goal.strip():
			return False
		current = self._store.snapshot
		if current.status.in_flight:
			logger.warning("Ignoring start: mission %s is %s", current.id, current.status.value)
			return False
		mission = new_mission(goal).with_status(MissionStatus.PLANNING)
		logger.info("Starting mission %s: %s", mission.id, goal[:80])
		self._store.replace(mission)
		return True

	def reset_mission(self) -> Mission:
		"""Abort whatever is running and return to a fresh IDLE snapshot."""
		previous = self._store.snapshot
		self._guard.revoke()
		if self._persistence is not None:
			self._persistence.clear()
		fresh = self._store.replace(new_mission())
		logger.info("Mission %s reset (was %s)", previous.id, previous.status.value)
		return fresh

	def resume(self) -> Mission | None:
		"""Load the persisted snapshot, if any; in-flight missions restart automatically."""
		if self._persistence is None:
			return None
		mission = self._persistence.load()
		if mission is None:
			return None
		logger.info("Resuming mission %s in %s", mission.id, mission.status.value)
		self._store.replace(mission)
		return mission

	async def wait_until_settled(self, timeout: float | None = None) -> Mission:
		"""Wait for every loop task to exit and return the final snapshot."""

		async def _drain() -> None:
			while self._tasks:
				await asyncio.wait(set(self._tasks))

		await asyncio.wait_for(_drain(), timeout=timeout)
		return self._store.snapshot

	# -- Trigger and persistence hooks --

	def _on_change(self, mission: Mission) -> None:
		if self._persistence is not None and mission.status is not MissionStatus.IDLE:
			try:
				self._persistence.save(mission)
			except sqlite3.Error:
				logger.exception("Failed to persist mission %s (%s)", mission.id, mission.status.value)
		if mission.status.in_flight and not self._guard.active:
			self._spawn_loop()

	def _spawn_loop(self) -> None:
		try:
			loop = asyncio.get_running_loop()
		except RuntimeError:
			logger.warning("No running event loop; mission loop not started")
			return
		task = loop.create_task(self._run_loop())
		self._tasks.add(task)
		task.add_done_callback(self._task_done)

	def _task_done(self, task: asyncio.Task[None]) -> None:
		self._tasks.discard(task)
		if task.cancelled():
			return
		exc = task.exception()
		if exc is not None:
			logger.error("Mission loop crashed: %s", exc, exc_info=exc)

	# -- Loop --

	async def _run_loop(self) -> None:
		with self._guard.claim() as token:
			if token is None:
				logger.debug("Mission loop already active; trigger ignored")
				return
			mission_id = self._store.snapshot.id
			try:
				await self._drive(mission_id)
			except MissionAborted:
				logger.info("Mission %s aborted; discarding in-flight result", mission_id)

	def _checkpoint(self, mission_id: str) -> Mission:
		"""Return the live snapshot, or raise if this loop's mission is gone."""
		live = self._store.snapshot
		if live.status is MissionStatus.IDLE or live.id != mission_id:
			raise MissionAborted(mission_id)
		return live

	def _commit(self, mission_id: str, fn: Callable[[Mission], Mission]) -> Mission:
		self._checkpoint(mission_id)
		return self._store.update(fn)

	def _fail(self, mission_id: str, message: str) -> None:
		self._commit(
			mission_id,
			lambda m: m.with_log(message, LogType.ERROR).with_status(MissionStatus.FAILED),
		)
		logger.info("Mission %s failed: %s", mission_id, message)

	async def _drive(self, mission_id: str) -> None:
		if self._store.snapshot.status is MissionStatus.PLANNING:
			if not await self._plan(mission_id):
				return

		while True:
			mission = self._store.snapshot
			if mission.id != mission_id or not mission.status.in_flight:
				return

			idx = mission.current_step_index
			if idx < 0:
				await asyncio.sleep(self._config.idle_poll_seconds)
				continue
			if not mission.steps:
				self._fail(mission_id, "Plan contains no steps; nothing to execute.")
				return
			if idx >= len(mission.steps):
				self._commit(
					mission_id,
					lambda m: m.with_log("Mission successful. All goals met.", LogType.SUCCESS)
					.with_status(MissionStatus.COMPLETED),
				)
				logger.info("Mission %s completed (%d steps)", mission_id, len(mission.steps))
				return

			if not await self._run_step(mission_id, idx):
				return
			await asyncio.sleep(self._config.step_delay_seconds)

	async def _plan(self, mission_id: str) -> bool:
		goal = self._store.snapshot.goal
		self._commit(mission_id, lambda m: m.with_log("Developing tactical plan...", LogType.PLAN))
		try:
			plan = await self._gateway.plan(goal)
		except Exception as exc:
			self._checkpoint(mission_id)
			self._report_call_failure("planning", exc)
			self._fail(mission_id, f"Planning failure: {exc}")
			return False
		self._commit(
			mission_id,
			lambda m: m.with_plan(plan.steps).with_log(
				f"Mission initialized. {len(plan.steps)} objectives set.", LogType.SUCCESS,
			),
		)
		logger.info("Mission %s planned with %d steps", mission_id, len(plan.steps))
		return True

	async def _run_step(self, mission_id: str, idx: int) -> bool:
		"""Process the step at ``idx`` once. Returns False when the loop must stop."""
		pending = self._store.snapshot.steps[idx]
		phase = MissionStatus.RETRYING if pending.attempts > 0 else MissionStatus.EXECUTING
		mission = self._commit(
			mission_id,
			lambda m: m.with_log(f"Commencing S{idx + 1}: {pending.title}", LogType.ACTION)
			.with_step(idx, status=StepStatus.ACTIVE)
			.with_status(phase),
		)
		step = mission.steps[idx]

		try:
			result = await self._gateway.execute(step, mission)
			self._commit(mission_id, lambda m: _record_result(m, result))
			self._commit(
				mission_id,
				lambda m: m.with_log("Verifying operational integrity...", LogType.SYSTEM)
				.with_status(MissionStatus.VERIFYING),
			)

			verdict = await self._gateway.verify(step, result, mission.goal)
			if verdict.passed:
				self._commit(
					mission_id,
					lambda m: m.with_log(f"Verification passed: {verdict.feedback}", LogType.SUCCESS)
					.with_step_completed(idx),
				)
				return True

			if step.attempts >= self._config.max_fix_attempts:
				self._commit(
					mission_id,
					lambda m: m.with_log(f"Verification failed: {verdict.feedback}", LogType.ERROR),
				)
				self._fail(
					mission_id,
					f"S{idx + 1} failed verification after {step.attempts} repair attempts.",
				)
				return False

			self._commit(
				mission_id,
				lambda m: m.with_log(f"Verification failed: {verdict.feedback}", LogType.ERROR)
				.with_log("Retrying with corrective logic...", LogType.SYSTEM)
				.with_status(MissionStatus.FIXING),
			)
			fixed = await self._gateway.fix(step, result, verdict.feedback)
			attempts = step.attempts + 1
			self._commit(
				mission_id,
				lambda m: m.with_output(fixed, repair=True)
				.with_step(idx, attempts=attempts, status=StepStatus.FIXING),
			)
			logger.info("Mission %s: S%d repaired (attempt %d)", mission_id, idx + 1, attempts)
			return True
		except MissionAborted:
			raise
		except Exception as exc:
			self._checkpoint(mission_id)
			self._report_call_failure(f"S{idx + 1}", exc)
			self._fail(mission_id, f"Operational Error: {exc}")
			return False

	@staticmethod
	def _report_call_failure(where: str, exc: Exception) -> None:
		if isinstance(exc, GatewayError):
			logger.warning("Gateway call failed during %s: %s", where, exc)
		else:
			logger.exception("Unexpected error during %s", where)


def _record_result(mission: Mission, result: StepResult) -> Mission:
	updated = mission.with_output(result)
	if result.artifact is not None:
		updated = updated.with_log(f"Result committed to registry: {result.artifact.name}", LogType.SUCCESS)
	return updated
