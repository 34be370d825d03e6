"""TOML configuration loader for autolearn."""

from __future__ import annotations

import logging
import os
import re
import shutil
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from autolearn.constants import IDLE_POLL_SECONDS, MAX_FIX_ATTEMPTS, STEP_DELAY_SECONDS


@dataclass
class LoopConfig:
	"""Mission loop pacing and repair policy."""

	step_delay_seconds: float = STEP_DELAY_SECONDS
	idle_poll_seconds: float = IDLE_POLL_SECONDS
	max_fix_attempts: int = MAX_FIX_ATTEMPTS


@dataclass
class GatewayConfig:
	"""Claude CLI reasoning gateway settings."""

	executable: str = "claude"
	model: str = "sonnet"
	timeout: int = 600  # per call, seconds; 0 disables
	budget_per_call_usd: float = 1.0
	max_plan_steps: int = 6
	context_chars: int = 1500  # prior-artifact excerpt length passed to execute


@dataclass
class StorageConfig:
	db_path: str = "autolearn.db"
	event_log: str = ""  # JSONL path; empty disables

	@property
	def resolved_db_path(self) -> Path:
		return Path(os.path.expanduser(self.db_path))


@dataclass
class DashboardConfig:
	host: str = "127.0.0.1"
	port: int = 8080


@dataclass
class TelegramConfig:
	bot_token: str = ""
	chat_id: str = ""
	on_mission_start: bool = False
	on_mission_end: bool = True

	@property
	def enabled(self) -> bool:
		return bool(self.bot_token and self.chat_id)


@dataclass
class NotificationConfig:
	telegram: TelegramConfig = field(default_factory=TelegramConfig)


@dataclass
class SecurityConfig:
	"""Extra environment variable names passed through to the gateway subprocess."""

	extra_env_keys: list[str] = field(default_factory=list)


@dataclass
class LoggingConfig:
	level: str = "INFO"


@dataclass
class AutoLearnConfig:
	"""Top-level autolearn configuration."""

	loop: LoopConfig = field(default_factory=LoopConfig)
	gateway: GatewayConfig = field(default_factory=GatewayConfig)
	storage: StorageConfig = field(default_factory=StorageConfig)
	dashboard: DashboardConfig = field(default_factory=DashboardConfig)
	notifications: NotificationConfig = field(default_factory=NotificationConfig)
	security: SecurityConfig = field(default_factory=SecurityConfig)
	logging: LoggingConfig = field(default_factory=LoggingConfig)


def _build_loop(data: dict[str, Any]) -> LoopConfig:
	lc = LoopConfig()
	for key in ("step_delay_seconds", "idle_poll_seconds"):
		if key in data:
			setattr(lc, key, float(data[key]))
	if "max_fix_attempts" in data:
		lc.max_fix_attempts = int(data["max_fix_attempts"])
	return lc


def _build_gateway(data: dict[str, Any]) -> GatewayConfig:
	gc = GatewayConfig()
	for key in ("executable", "model"):
		if key in data:
			setattr(gc, key, str(data[key]))
	for key in ("timeout", "max_plan_steps", "context_chars"):
		if key in data:
			setattr(gc, key, int(data[key]))
	if "budget_per_call_usd" in data:
		gc.budget_per_call_usd = float(data["budget_per_call_usd"])
	return gc


def _build_storage(data: dict[str, Any]) -> StorageConfig:
	sc = StorageConfig()
	for key in ("db_path", "event_log"):
		if key in data:
			setattr(sc, key, str(data[key]))
	return sc


def _build_dashboard(data: dict[str, Any]) -> DashboardConfig:
	dc = DashboardConfig()
	if "host" in data:
		dc.host = str(data["host"])
	if "port" in data:
		dc.port = int(data["port"])
	return dc


def _build_notifications(data: dict[str, Any]) -> NotificationConfig:
	nc = NotificationConfig()
	if "telegram" in data:
		tg = data["telegram"]
		tc = TelegramConfig()
		for key in ("bot_token", "chat_id"):
			if key in tg:
				setattr(tc, key, str(tg[key]))
		for key in ("on_mission_start", "on_mission_end"):
			if key in tg:
				setattr(tc, key, bool(tg[key]))
		nc.telegram = tc
	return nc


def _build_security(data: dict[str, Any]) -> SecurityConfig:
	sc = SecurityConfig()
	if "extra_env_keys" in data:
		sc.extra_env_keys = [str(k) for k in data["extra_env_keys"]]
	return sc


def _build_logging(data: dict[str, Any]) -> LoggingConfig:
	lc = LoggingConfig()
	if "level" in data:
		lc.level = str(data["level"]).upper()
	return lc


_ENV_ALLOWLIST = {
	"HOME", "USER", "LOGNAME", "SHELL", "LANG", "LC_ALL", "LC_CTYPE",
	"TERM", "TMPDIR", "TMP", "TEMP", "XDG_RUNTIME_DIR",
	"XDG_CONFIG_HOME", "XDG_DATA_HOME", "XDG_CACHE_HOME",
	"PATH", "PWD",
	# Claude CLI auth lives in its config dir, not in API keys
	"CLAUDE_CONFIG_DIR",
	"PYTHONIOENCODING", "PYTHONUTF8",
}

# Never forwarded, even when listed in [security] extra_env_keys
_ENV_DENYLIST = {
	"ANTHROPIC_API_KEY", "CLAUDECODE",
	"AWS_SECRET_ACCESS_KEY", "AWS_SESSION_TOKEN",
	"GITHUB_TOKEN", "GH_TOKEN",
	"TELEGRAM_BOT_TOKEN",
}


def gateway_subprocess_env(config: AutoLearnConfig) -> dict[str, str]:
	"""Restricted environment for the reasoning CLI subprocess."""
	allowed = (_ENV_ALLOWLIST | set(config.security.extra_env_keys)) - _ENV_DENYLIST
	return {k: v for k, v in os.environ.items() if k in allowed}


def load_config(path: str | Path) -> AutoLearnConfig:
	"""Load an autolearn.toml config file.

	Raises:
		FileNotFoundError: If the config file doesn't exist.
		tomllib.TOMLDecodeError: If the file is not valid TOML.
	"""
	config_path = Path(path)
	if not config_path.exists():
		raise FileNotFoundError(f"Config file not found: {config_path}")

	with open(config_path, "rb") as f:
		data = tomllib.load(f)

	cfg = AutoLearnConfig()
	if "loop" in data:
		cfg.loop = _build_loop(data["loop"])
	if "gateway" in data:
		cfg.gateway = _build_gateway(data["gateway"])
	if "storage" in data:
		cfg.storage = _build_storage(data["storage"])
	if "dashboard" in data:
		cfg.dashboard = _build_dashboard(data["dashboard"])
	if "notifications" in data:
		cfg.notifications = _build_notifications(data["notifications"])
	if "security" in data:
		cfg.security = _build_security(data["security"])
	if "logging" in data:
		cfg.logging = _build_logging(data["logging"])

	tg = cfg.notifications.telegram
	if not tg.bot_token:
		tg.bot_token = os.environ.get("TELEGRAM_BOT_TOKEN", "")
	if not tg.chat_id:
		tg.chat_id = os.environ.get("TELEGRAM_CHAT_ID", "")
	return cfg


_TELEGRAM_TOKEN_RE = re.compile(r"^\d+:[A-Za-z0-9_-]+$")


def validate_config(config: AutoLearnConfig) -> list[tuple[str, str]]:
	"""Semantic checks on a loaded config.

	Returns (level, message) tuples where level is 'error' or 'warning'.
	"""
	issues: list[tuple[str, str]] = []

	if shutil.which(config.gateway.executable) is None:
		issues.append(("error", f"gateway executable not found on PATH: {config.gateway.executable}"))

	if config.loop.step_delay_seconds < 0:
		issues.append(("error", f"loop.step_delay_seconds is negative: {config.loop.step_delay_seconds}"))
	if config.loop.idle_poll_seconds <= 0:
		issues.append(("error", f"loop.idle_poll_seconds must be positive: {config.loop.idle_poll_seconds}"))
	if config.loop.max_fix_attempts < 0:
		issues.append(("error", f"loop.max_fix_attempts is negative: {config.loop.max_fix_attempts}"))

	tg = config.notifications.telegram
	if tg.bot_token and not _TELEGRAM_TOKEN_RE.match(tg.bot_token):
		issues.append(("error", "telegram bot_token format invalid (expected digits:alphanumeric)"))

	if config.gateway.timeout == 0:
		issues.append(("warning", "gateway.timeout is disabled; a hung call stalls the mission"))
	elif config.gateway.timeout < 30:
		issues.append(("warning", f"gateway.timeout is very low: {config.gateway.timeout}s"))

	if logging.getLevelName(config.logging.level) == f"Level {config.logging.level}":
		issues.append(("warning", f"unknown logging.level: {config.logging.level}"))

	return issues


DEFAULT_CONFIG_TOML = """\
[loop]
step_delay_seconds = 1.5
max_fix_attempts = 2

[gateway]
executable = "claude"
model = "sonnet"
timeout = 600

[storage]
db_path = "autolearn.db"
event_log = ""

[dashboard]
host = "127.0.0.1"
port = 8080

[logging]
level = "INFO"
"""
