"""Tests for the mission controller loop."""

from __future__ import annotations

import asyncio
import sqlite3

import pytest

from autolearn.gateway import ExecutionError, FixError, PlanningError
from autolearn.models import (
	TRANSITIONS,
	LogType,
	Mission,
	MissionStatus,
	PlanResult,
	StepStatus,
	Verdict,
	new_mission,
)
from autolearn.persistence import MemoryPersistence


def _fail(feedback: str = "missing examples") -> Verdict:
	return Verdict(passed=False, feedback=feedback)


def _one_step(gateway) -> None:
	gateway.plan_result = PlanResult.model_validate({"steps": [{"title": "Basics"}]})


def _messages(mission: Mission) -> list[str]:
	return [e.message for e in mission.logs]


class TestHappyPath:
	@pytest.mark.asyncio
	async def test_two_steps_complete(self, make_controller, gateway) -> None:
		controller = make_controller()
		assert controller.start_mission("Learn Python")

		mission = await controller.wait_until_settled(timeout=5)

		assert mission.status is MissionStatus.COMPLETED
		assert mission.current_step_index == 2
		assert [s.status for s in mission.steps] == [StepStatus.COMPLETED, StepStatus.COMPLETED]
		assert [a.name for a in mission.artifacts] == ["basics.md", "practice.md"]
		assert gateway.calls == ["plan", "execute", "verify", "execute", "verify"]
		assert mission.progress_pct == 100.0

	@pytest.mark.asyncio
	async def test_log_sequence(self, make_controller) -> None:
		controller = make_controller()
		controller.start_mission("Learn Python")
		mission = await controller.wait_until_settled(timeout=5)

		messages = _messages(mission)
		assert messages[0] == "Developing tactical plan..."
		assert messages[1] == "Mission initialized. 2 objectives set."
		assert messages[2] == "Commencing S1: Basics"
		assert "Result committed to registry: basics.md" in messages
		assert "Verifying operational integrity..." in messages
		assert "Verification passed: looks right" in messages
		assert messages[-1] == "Mission successful. All goals met."
		assert mission.logs[0].type is LogType.PLAN
		assert mission.logs[-1].type is LogType.SUCCESS

	@pytest.mark.asyncio
	async def test_last_output_is_latest_result(self, make_controller) -> None:
		controller = make_controller()
		controller.start_mission("Learn Python")
		mission = await controller.wait_until_settled(timeout=5)
		assert mission.last_execution_output == "worked on Practice"


class TestRepair:
	@pytest.mark.asyncio
	async def test_fail_once_then_pass(self, make_controller, gateway) -> None:
		_one_step(gateway)
		gateway.verdicts = [_fail()]
		controller = make_controller()
		controller.start_mission("Learn Python")

		mission = await controller.wait_until_settled(timeout=5)

		assert mission.status is MissionStatus.COMPLETED
		assert mission.steps[0].attempts == 1
		assert gateway.calls == ["plan", "execute", "verify", "fix", "execute", "verify"]
		assert [a.name for a in mission.artifacts] == ["basics.md", "REVISED_basics.md", "basics.md"]
		assert "Verification failed: missing examples" in _messages(mission)
		assert "Retrying with corrective logic..." in _messages(mission)

	@pytest.mark.asyncio
	async def test_two_repairs_then_pass_completes(self, make_controller, gateway) -> None:
		_one_step(gateway)
		gateway.verdicts = [_fail(), _fail()]
		controller = make_controller()
		controller.start_mission("Learn Python")

		mission = await controller.wait_until_settled(timeout=5)

		assert mission.status is MissionStatus.COMPLETED
		assert mission.steps[0].attempts == 2
		assert sum(1 for a in mission.artifacts if a.name.startswith("REVISED_")) == 2

	@pytest.mark.asyncio
	async def test_third_failure_fails_mission(self, make_controller, gateway) -> None:
		_one_step(gateway)
		gateway.verdicts = [_fail(), _fail(), _fail("still wrong")]
		controller = make_controller()
		controller.start_mission("Learn Python")

		mission = await controller.wait_until_settled(timeout=5)

		assert mission.status is MissionStatus.FAILED
		assert mission.steps[0].attempts == 2
		assert gateway.calls.count("fix") == 2
		assert mission.current_step_index == 0
		assert mission.logs[-2].message == "Verification failed: still wrong"
		assert mission.logs[-1].message == "S1 failed verification after 2 repair attempts."
		assert mission.logs[-1].type is LogType.ERROR

	@pytest.mark.asyncio
	async def test_repair_output_carries_trace_header(self, make_controller, gateway) -> None:
		_one_step(gateway)
		gateway.verdicts = [_fail()]
		controller = make_controller()
		seen: list[str] = []
		controller.subscribe(lambda m: seen.append(m.last_execution_output))
		controller.start_mission("Learn Python")
		await controller.wait_until_settled(timeout=5)

		assert "[REPAIR LOG]\naddressed: missing examples" in seen

	@pytest.mark.asyncio
	async def test_retry_phase_is_reported(self, make_controller, gateway) -> None:
		_one_step(gateway)
		gateway.verdicts = [_fail()]
		controller = make_controller()
		statuses: list[MissionStatus] = []
		controller.subscribe(lambda m: statuses.append(m.status))
		controller.start_mission("Learn Python")
		await controller.wait_until_settled(timeout=5)

		assert MissionStatus.FIXING in statuses
		assert MissionStatus.RETRYING in statuses
		assert statuses.index(MissionStatus.FIXING) < statuses.index(MissionStatus.RETRYING)


class TestFailures:
	@pytest.mark.asyncio
	async def test_planning_error(self, make_controller, gateway) -> None:
		gateway.plan_error = PlanningError("quota exhausted")
		controller = make_controller()
		controller.start_mission("Learn Python")

		mission = await controller.wait_until_settled(timeout=5)

		assert mission.status is MissionStatus.FAILED
		assert mission.steps == ()
		assert mission.logs[-1].message == "Planning failure: quota exhausted"
		assert mission.logs[-1].type is LogType.ERROR
		assert [e.type for e in mission.logs].count(LogType.ERROR) == 1
		assert not controller.loop_active

		gateway.plan_error = None
		assert controller.start_mission("Learn Python again")
		retried = await controller.wait_until_settled(timeout=5)
		assert retried.id != mission.id
		assert retried.status is MissionStatus.COMPLETED

	@pytest.mark.asyncio
	async def test_execution_error(self, make_controller, gateway) -> None:
		gateway.execute_error = ExecutionError("transport down")
		controller = make_controller()
		controller.start_mission("Learn Python")

		mission = await controller.wait_until_settled(timeout=5)

		assert mission.status is MissionStatus.FAILED
		assert mission.logs[-1].message == "Operational Error: transport down"
		assert mission.artifacts == ()

	@pytest.mark.asyncio
	async def test_fix_error(self, make_controller, gateway) -> None:
		gateway.verdicts = [_fail()]
		gateway.fix_error = FixError("no capacity")
		controller = make_controller()
		controller.start_mission("Learn Python")

		mission = await controller.wait_until_settled(timeout=5)

		assert mission.status is MissionStatus.FAILED
		assert mission.logs[-1].message == "Operational Error: no capacity"

	@pytest.mark.asyncio
	async def test_unexpected_exception_is_contained(self, make_controller, gateway) -> None:
		gateway.execute_error = ZeroDivisionError("boom")
		controller = make_controller()
		controller.start_mission("Learn Python")

		mission = await controller.wait_until_settled(timeout=5)

		assert mission.status is MissionStatus.FAILED
		assert mission.logs[-1].message == "Operational Error: boom"
		assert not controller.loop_active

	@pytest.mark.asyncio
	async def test_zero_step_plan_fails(self, make_controller, gateway) -> None:
		gateway.plan_result = PlanResult(steps=[])
		controller = make_controller()
		controller.start_mission("Learn Python")

		mission = await controller.wait_until_settled(timeout=5)

		assert mission.status is MissionStatus.FAILED
		assert "Mission initialized. 0 objectives set." in _messages(mission)
		assert mission.logs[-1].message == "Plan contains no steps; nothing to execute."


class TestStartPolicy:
	def test_blank_goal_is_noop(self, make_controller) -> None:
		controller = make_controller()
		before = controller.mission
		assert not controller.start_mission("   ")
		assert controller.mission is before

	@pytest.mark.asyncio
	async def test_start_while_in_flight_is_ignored(self, make_controller, gateway) -> None:
		gateway.gates["plan"] = asyncio.Event()
		controller = make_controller()
		controller.start_mission("First")
		first_id = controller.mission.id

		assert not controller.start_mission("Second")
		assert controller.mission.id == first_id

		gateway.gates["plan"].set()
		await controller.wait_until_settled(timeout=5)

	@pytest.mark.asyncio
	async def test_start_after_completion_creates_new_mission(self, make_controller) -> None:
		controller = make_controller()
		controller.start_mission("First")
		first = await controller.wait_until_settled(timeout=5)

		assert controller.start_mission("Second")
		second = await controller.wait_until_settled(timeout=5)

		assert second.id != first.id
		assert second.goal == "Second"
		assert second.status is MissionStatus.COMPLETED
		assert len(second.artifacts) == 2

	def test_start_without_event_loop_keeps_planning(self, make_controller) -> None:
		controller = make_controller()
		assert controller.start_mission("Learn Python")
		assert controller.mission.status is MissionStatus.PLANNING
		assert not controller.loop_active


class TestReset:
	@pytest.mark.asyncio
	async def test_reset_mid_flight_discards_result(self, make_controller, gateway, persistence) -> None:
		gateway.gates["execute"] = asyncio.Event()
		controller = make_controller()
		controller.start_mission("Learn Python")
		await gateway.waiting.wait()

		fresh = controller.reset_mission()
		gateway.gates["execute"].set()
		mission = await controller.wait_until_settled(timeout=5)

		assert mission is fresh
		assert mission.status is MissionStatus.IDLE
		assert mission.logs == ()
		assert mission.artifacts == ()
		assert persistence.mission is None

	@pytest.mark.asyncio
	@pytest.mark.parametrize("call", ["plan", "verify", "fix"])
	async def test_reset_during_call_writes_nothing(self, make_controller, gateway, persistence, call) -> None:
		gateway.verdicts = [_fail()]
		gateway.gates[call] = asyncio.Event()
		controller = make_controller()
		controller.start_mission("Learn Python")
		await gateway.waiting.wait()

		fresh = controller.reset_mission()
		version = controller.store.version
		gateway.gates[call].set()
		mission = await controller.wait_until_settled(timeout=5)

		assert controller.store.version == version
		assert mission is fresh
		assert persistence.mission is None
		assert not controller.loop_active

	@pytest.mark.asyncio
	@pytest.mark.parametrize("call", ["plan", "execute", "verify", "fix"])
	async def test_reset_during_failing_call_writes_nothing(
		self, make_controller, gateway, persistence, call,
	) -> None:
		gateway.verdicts = [_fail()]
		setattr(gateway, f"{call}_error", ExecutionError("transport down"))
		gateway.gates[call] = asyncio.Event()
		controller = make_controller()
		controller.start_mission("Learn Python")
		await gateway.waiting.wait()

		fresh = controller.reset_mission()
		version = controller.store.version
		gateway.gates[call].set()
		mission = await controller.wait_until_settled(timeout=5)

		assert controller.store.version == version
		assert mission is fresh
		assert mission.logs == ()
		assert persistence.mission is None

	def test_reset_is_idempotent(self, make_controller) -> None:
		controller = make_controller()
		first = controller.reset_mission()
		second = controller.reset_mission()
		assert first.status is MissionStatus.IDLE
		assert second.status is MissionStatus.IDLE
		assert second.goal == ""

	@pytest.mark.asyncio
	async def test_orphaned_loop_cannot_write_into_new_mission(self, make_controller, gateway) -> None:
		_one_step(gateway)
		gate = asyncio.Event()
		gateway.gates["execute"] = gate
		controller = make_controller()
		controller.start_mission("Old goal")
		await gateway.waiting.wait()

		controller.reset_mission()
		del gateway.gates["execute"]
		assert controller.start_mission("New goal")
		gate.set()
		mission = await controller.wait_until_settled(timeout=5)

		assert mission.goal == "New goal"
		assert mission.status is MissionStatus.COMPLETED
		assert [a.name for a in mission.artifacts] == ["basics.md"]
		assert "Commencing S1: Basics" in _messages(mission)
		assert _messages(mission).count("Result committed to registry: basics.md") == 1


class TestSingleFlight:
	@pytest.mark.asyncio
	async def test_extra_triggers_do_not_start_second_loop(self, make_controller, gateway) -> None:
		gateway.gates["plan"] = asyncio.Event()
		controller = make_controller()
		controller.start_mission("Learn Python")
		await gateway.waiting.wait()

		controller._spawn_loop()
		controller._spawn_loop()
		await asyncio.sleep(0)
		gateway.gates["plan"].set()
		mission = await controller.wait_until_settled(timeout=5)

		assert gateway.calls.count("plan") == 1
		assert gateway.calls.count("execute") == 2
		assert mission.status is MissionStatus.COMPLETED


class TestLoopProperties:
	@pytest.mark.asyncio
	async def test_transitions_follow_table(self, make_controller, gateway) -> None:
		gateway.verdicts = [_fail(), Verdict(passed=True), _fail(), _fail(), _fail()]
		controller = make_controller()
		statuses: list[MissionStatus] = [controller.mission.status]
		controller.subscribe(lambda m: statuses.append(m.status))
		controller.start_mission("Learn Python")
		await controller.wait_until_settled(timeout=5)

		for before, after in zip(statuses, statuses[1:]):
			if before is not after:
				assert after in TRANSITIONS[before], f"{before} -> {after}"
		assert statuses[-1] is MissionStatus.FAILED

	@pytest.mark.asyncio
	async def test_step_index_never_moves_backwards(self, make_controller, gateway) -> None:
		gateway.verdicts = [_fail(), Verdict(passed=True), _fail()]
		controller = make_controller()
		indices: list[int] = []
		controller.subscribe(lambda m: indices.append(m.current_step_index))
		controller.start_mission("Learn Python")
		await controller.wait_until_settled(timeout=5)

		assert indices == sorted(indices)
		assert indices[-1] == 2

	@pytest.mark.asyncio
	async def test_artifacts_and_logs_only_grow(self, make_controller, gateway) -> None:
		gateway.verdicts = [_fail()]
		controller = make_controller()
		snapshots: list[Mission] = []
		controller.subscribe(snapshots.append)
		controller.start_mission("Learn Python")
		await controller.wait_until_settled(timeout=5)

		for before, after in zip(snapshots, snapshots[1:]):
			assert after.artifacts[:len(before.artifacts)] == before.artifacts
			assert after.logs[:len(before.logs)] == before.logs


class TestPersistence:
	@pytest.mark.asyncio
	async def test_every_non_idle_update_is_saved(self, make_controller, persistence) -> None:
		controller = make_controller()
		controller.start_mission("Learn Python")
		await controller.wait_until_settled(timeout=5)

		assert persistence.mission is not None
		assert persistence.mission.status is MissionStatus.COMPLETED
		assert persistence.saves == controller.store.version

	@pytest.mark.asyncio
	async def test_failed_save_still_starts_loop(self, make_controller, gateway) -> None:
		class LockedOnce(MemoryPersistence):
			def save(self, mission: Mission) -> None:
				if self.saves == 0:
					self.saves += 1
					raise sqlite3.OperationalError("database is locked")
				super().save(mission)

		persistence = LockedOnce()
		controller = make_controller(persistence=persistence)
		controller.start_mission("Learn Python")

		mission = await controller.wait_until_settled(timeout=5)

		assert gateway.calls[0] == "plan"
		assert mission.status is MissionStatus.COMPLETED
		assert persistence.mission is not None
		assert persistence.mission.status is MissionStatus.COMPLETED

	def test_idle_snapshot_is_not_saved(self, make_controller, persistence) -> None:
		controller = make_controller()
		controller.reset_mission()
		assert persistence.saves == 0

	@pytest.mark.asyncio
	async def test_resume_in_flight_continues_current_step(self, make_controller, gateway, planned_mission) -> None:
		paused = planned_mission.with_status(MissionStatus.VERIFYING)
		controller = make_controller(persistence=MemoryPersistence(paused))

		assert controller.resume() is paused
		mission = await controller.wait_until_settled(timeout=5)

		assert gateway.calls[0] == "execute"
		assert "plan" not in gateway.calls
		assert mission.id == paused.id
		assert mission.status is MissionStatus.COMPLETED

	@pytest.mark.asyncio
	async def test_resume_planning_mission_plans(self, make_controller, gateway) -> None:
		pending = new_mission("Learn Python").with_status(MissionStatus.PLANNING)
		controller = make_controller(persistence=MemoryPersistence(pending))
		controller.resume()
		mission = await controller.wait_until_settled(timeout=5)

		assert gateway.calls[0] == "plan"
		assert mission.status is MissionStatus.COMPLETED

	@pytest.mark.asyncio
	async def test_resume_terminal_mission_does_not_run(self, make_controller, gateway, planned_mission) -> None:
		failed = planned_mission.with_status(MissionStatus.FAILED)
		controller = make_controller(persistence=MemoryPersistence(failed))
		controller.resume()
		mission = await controller.wait_until_settled(timeout=5)

		assert gateway.calls == []
		assert mission.status is MissionStatus.FAILED

	def test_resume_without_saved_mission(self, make_controller) -> None:
		controller = make_controller()
		assert controller.resume() is None
		assert controller.mission.status is MissionStatus.IDLE
