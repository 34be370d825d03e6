"""CLI interface for autolearn."""

from __future__ import annotations

import argparse
import asyncio
import logging
import secrets
import sys
from pathlib import Path

from autolearn.claude_gateway import ClaudeGateway
from autolearn.config import DEFAULT_CONFIG_TOML, AutoLearnConfig, load_config, validate_config
from autolearn.constants import MISSION_TEMPLATES
from autolearn.controller import MissionController
from autolearn.db import Database
from autolearn.event_stream import EventStream
from autolearn.export import write_export
from autolearn.models import Mission, MissionStatus
from autolearn.notifier import MissionNotifications, TelegramNotifier
from autolearn.persistence import DatabasePersistence

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = "autolearn.toml"


def build_parser() -> argparse.ArgumentParser:
	parser = argparse.ArgumentParser(
		prog="autolearn",
		description="AutoLearn - autonomous plan/execute/verify mission runner",
	)
	sub = parser.add_subparsers(dest="command")

	# autolearn run
	run = sub.add_parser("run", help="Start a mission and follow it to the end")
	run.add_argument("goal", nargs="?", default="", help="Mission goal")
	run.add_argument("--template", choices=sorted(MISSION_TEMPLATES), help="Use a built-in goal")
	run.add_argument("--config", default=DEFAULT_CONFIG)

	# autolearn resume
	resume = sub.add_parser("resume", help="Continue the persisted mission")
	resume.add_argument("--config", default=DEFAULT_CONFIG)

	status = sub.add_parser("status", help="Show the persisted mission")
	status.add_argument("--config", default=DEFAULT_CONFIG)

	export = sub.add_parser("export", help="Write the mission's artifacts to a text file")
	export.add_argument("--output", default=".", help="Directory for the export file")
	export.add_argument("--config", default=DEFAULT_CONFIG)

	reset = sub.add_parser("reset", help="Discard the persisted mission")
	reset.add_argument("--config", default=DEFAULT_CONFIG)

	sub.add_parser("templates", help="List built-in mission goals")

	live = sub.add_parser("live", help="Launch the live HTTP dashboard")
	live.add_argument("--config", default=DEFAULT_CONFIG)
	live.add_argument("--host", default=None)
	live.add_argument("--port", type=int, default=None)

	init_cmd = sub.add_parser("init", help="Write a default autolearn.toml")
	init_cmd.add_argument("path", nargs="?", default=".")

	vc = sub.add_parser("validate-config", help="Validate config file semantically")
	vc.add_argument("--config", default=DEFAULT_CONFIG)

	return parser


def _load_config(path: str) -> AutoLearnConfig:
	"""Load ``path``, falling back to defaults when the file does not exist."""
	try:
		config = load_config(path)
	except FileNotFoundError:
		logger.info("No config at %s; using defaults", path)
		config = AutoLearnConfig()
	try:
		logging.getLogger().setLevel(config.logging.level)
	except ValueError:
		logger.warning("Unknown logging.level %r; keeping INFO", config.logging.level)
	return config


class _LogPrinter:
	"""Store subscriber that echoes new mission log lines to stdout."""

	def __init__(self) -> None:
		self._mission_id = ""
		self._printed = 0

	def __call__(self, mission: Mission) -> None:
		if mission.id != self._mission_id:
			self._mission_id = mission.id
			self._printed = 0
		for entry in mission.logs[self._printed:]:
			print(f"[{entry.timestamp[11:19]}] {entry.type.value:<7} {entry.message}", flush=True)
		self._printed = len(mission.logs)


def _open_db(config: AutoLearnConfig, **kwargs: bool) -> Database:
	db_path = config.storage.resolved_db_path
	db_path.parent.mkdir(parents=True, exist_ok=True)
	return Database(db_path, **kwargs)


def _build_controller(config: AutoLearnConfig, db: Database) -> MissionController:
	return MissionController(
		ClaudeGateway(config),
		persistence=DatabasePersistence(db),
		config=config.loop,
	)


async def _follow_mission(config: AutoLearnConfig, goal: str | None) -> Mission:
	"""Start ``goal`` (or resume when None) and wait for the loop to settle."""
	stream: EventStream | None = None
	notifications: MissionNotifications | None = None

	with _open_db(config) as db:
		controller = _build_controller(config, db)
		if config.storage.event_log:
			stream = EventStream(Path(config.storage.event_log).expanduser())
			stream.open()
			controller.subscribe(stream.record)
		tg = config.notifications.telegram
		if tg.enabled:
			notifications = MissionNotifications(TelegramNotifier(tg.bot_token, tg.chat_id), tg)
			controller.subscribe(notifications)
		controller.subscribe(_LogPrinter())

		try:
			if goal is None:
				controller.resume()
			else:
				controller.start_mission(goal)
			return await controller.wait_until_settled()
		finally:
			if notifications is not None:
				await notifications.drain()
			if stream is not None:
				stream.close()


def _print_outcome(mission: Mission) -> int:
	print(f"\nMission {mission.id}: {mission.status.value} ({mission.progress_pct:.0f}%)")
	return 0 if mission.status is MissionStatus.COMPLETED else 1


def cmd_run(args: argparse.Namespace) -> int:
	"""Start a mission and stream its log until it settles."""
	goal = args.goal
	if args.template:
		goal = MISSION_TEMPLATES[args.template][1]
	if not goal.strip():
		print("A goal or --template is required.")
		return 1

	config = _load_config(args.config)
	try:
		mission = asyncio.run(_follow_mission(config, goal))
	except KeyboardInterrupt:
		print("\nInterrupted. Progress is saved; run 'autolearn resume' to continue.")
		return 130
	return _print_outcome(mission)


def cmd_resume(args: argparse.Namespace) -> int:
	"""Resume the persisted mission from its current step."""
	config = _load_config(args.config)
	if not config.storage.resolved_db_path.exists():
		print("No database found. Run 'autolearn run' first.")
		return 1
	try:
		mission = asyncio.run(_follow_mission(config, None))
	except KeyboardInterrupt:
		print("\nInterrupted. Progress is saved; run 'autolearn resume' to continue.")
		return 130
	if mission.status is MissionStatus.IDLE:
		print("No persisted mission to resume.")
		return 1
	return _print_outcome(mission)


def _load_persisted(config: AutoLearnConfig) -> Mission | None:
	db_path = config.storage.resolved_db_path
	if not db_path.exists():
		return None
	with Database(db_path) as db:
		return db.load_mission()


def cmd_status(args: argparse.Namespace) -> int:
	"""Show the persisted mission."""
	mission = _load_persisted(_load_config(args.config))
	if mission is None:
		print("No mission found. Run 'autolearn run' first.")
		return 1

	print(f"Mission {mission.id} [{mission.status.value}] {mission.progress_pct:.0f}%")
	print(f"Goal: {mission.goal}")
	for i, step in enumerate(mission.steps):
		marker = ">" if i == mission.current_step_index else " "
		retries = f" (repairs: {step.attempts})" if step.attempts else ""
		print(f" {marker} S{i + 1} [{step.status.value}] {step.title}{retries}")
	print(f"Artifacts: {len(mission.artifacts)}")
	if mission.logs:
		last = mission.logs[-1]
		print(f"Last log: [{last.type.value}] {last.message}")
	return 0


def cmd_export(args: argparse.Namespace) -> int:
	"""Write the persisted mission's artifacts to a text file."""
	mission = _load_persisted(_load_config(args.config))
	if mission is None:
		print("No mission found. Run 'autolearn run' first.")
		return 1
	path = write_export(mission, args.output)
	print(f"Wrote {path}")
	return 0


def cmd_reset(args: argparse.Namespace) -> int:
	"""Discard the persisted mission."""
	config = _load_config(args.config)
	db_path = config.storage.resolved_db_path
	if not db_path.exists():
		print("Nothing to reset.")
		return 0
	with Database(db_path) as db:
		db.clear_mission()
	print("Mission cleared.")
	return 0


def cmd_templates(args: argparse.Namespace) -> int:
	"""List built-in mission goals."""
	for name, (label, goal) in MISSION_TEMPLATES.items():
		print(f"{name:<16} {label}")
		print(f"{'':<16} {goal}")
	return 0


def cmd_live(args: argparse.Namespace) -> int:
	"""Launch the live HTTP dashboard."""
	import uvicorn

	from autolearn.dashboard.live import LiveDashboard

	config = _load_config(args.config)
	host = args.host or config.dashboard.host
	port = args.port or config.dashboard.port

	db = _open_db(config, check_same_thread=False)
	controller = _build_controller(config, db)
	stream: EventStream | None = None
	if config.storage.event_log:
		stream = EventStream(Path(config.storage.event_log).expanduser())
		stream.open()
		controller.subscribe(stream.record)

	auth_token = secrets.token_urlsafe(32)
	dashboard = LiveDashboard(controller, auth_token=auth_token, resume_on_start=True)
	print(f"Starting live dashboard at http://{host}:{port}")
	print(f"Bearer token: {auth_token}")
	try:
		uvicorn.run(dashboard.app, host=host, port=port, log_level="warning")
	finally:
		if stream is not None:
			stream.close()
		db.close()
	return 0


def cmd_init(args: argparse.Namespace) -> int:
	"""Write a default config file."""
	target = Path(args.path).resolve()
	config_path = target / DEFAULT_CONFIG

	if config_path.exists():
		print(f"Config already exists: {config_path}")
		return 1

	target.mkdir(parents=True, exist_ok=True)
	config_path.write_text(DEFAULT_CONFIG_TOML)
	print(f"Created {config_path}")
	return 0


def cmd_validate_config(args: argparse.Namespace) -> int:
	"""Validate config file semantically."""
	try:
		config = load_config(args.config)
	except FileNotFoundError as exc:
		print(f"Error: {exc}")
		return 1
	issues = validate_config(config)

	errors = [(lvl, msg) for lvl, msg in issues if lvl == "error"]
	warnings = [(lvl, msg) for lvl, msg in issues if lvl == "warning"]

	for level, msg in issues:
		print(f"[{level.upper()}] {msg}")

	if not issues:
		print("Config OK")

	print(f"\n{len(errors)} error(s), {len(warnings)} warning(s)")
	return 1 if errors else 0


COMMANDS = {
	"run": cmd_run,
	"resume": cmd_resume,
	"status": cmd_status,
	"export": cmd_export,
	"reset": cmd_reset,
	"templates": cmd_templates,
	"live": cmd_live,
	"init": cmd_init,
	"validate-config": cmd_validate_config,
}


def main(argv: list[str] | None = None) -> int:
	logging.basicConfig(
		level=logging.INFO,
		format="%(asctime)s %(levelname)s %(name)s: %(message)s",
		datefmt="%H:%M:%S",
		force=True,
	)
	parser = build_parser()
	args = parser.parse_args(argv)

	if args.command is None:
		parser.print_help()
		return 0

	handler = COMMANDS.get(args.command)
	if handler is None:
		print(f"Unknown command: {args.command}")
		return 1

	return handler(args)


if __name__ == "__main__":
	sys.exit(main())
