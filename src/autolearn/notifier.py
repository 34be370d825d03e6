"""Telegram notifications for mission start and end.

Uses an async httpx client. Messages longer than Telegram's limit are split
on line boundaries; send failures are logged and never reach the mission.
"""

from __future__ import annotations

import asyncio
import logging

import httpx

from autolearn.config import TelegramConfig
from autolearn.models import Mission, MissionStatus, StepStatus

logger = logging.getLogger(__name__)

TELEGRAM_MAX_LEN = 4096


class TelegramNotifier:
	"""Sends mission updates to a Telegram chat via the Bot API."""

	def __init__(self, bot_token: str, chat_id: str) -> None:
		self._bot_token = bot_token
		self._chat_id = chat_id
		self._client: httpx.AsyncClient | None = None

	async def _ensure_client(self) -> httpx.AsyncClient:
		if self._client is None:
			self._client = httpx.AsyncClient(timeout=10.0)
		return self._client

	@staticmethod
	def _split_message(text: str, max_len: int = TELEGRAM_MAX_LEN) -> list[str]:
		if len(text) <= max_len:
			return [text]
		parts: list[str] = []
		current = ""
		for line in text.splitlines(keepends=True):
			while len(line) > max_len:
				if current:
					parts.append(current)
					current = ""
				parts.append(line[:max_len])
				line = line[max_len:]
			if len(current) + len(line) > max_len:
				parts.append(current)
				current = ""
			current += line
		if current:
			parts.append(current)
		return parts

	async def send(self, message: str) -> None:
		try:
			client = await self._ensure_client()
			url = f"https://api.telegram.org/bot{self._bot_token}/sendMessage"
			for part in self._split_message(message):
				await client.post(url, json={
					"chat_id": self._chat_id,
					"text": part,
					"disable_web_page_preview": True,
				})
		except httpx.HTTPError as exc:
			logger.warning("Telegram send failed: %s", exc)

	async def close(self) -> None:
		if self._client is not None:
			await self._client.aclose()
			self._client = None

	async def send_mission_start(self, mission: Mission) -> None:
		await self.send(f"Mission started\nGoal: {mission.goal[:200]}")

	async def send_mission_end(self, mission: Mission) -> None:
		done = sum(1 for s in mission.steps if s.status is StepStatus.COMPLETED)
		lines = [
			f"Mission {mission.status.value}",
			f"Goal: {mission.goal[:200]}",
			f"Steps: {done}/{len(mission.steps)}",
			f"Artifacts: {len(mission.artifacts)}",
		]
		if mission.status is MissionStatus.FAILED and mission.logs:
			lines.append(f"Last log: {mission.logs[-1].message[:300]}")
		await self.send("\n".join(lines))


class MissionNotifications:
	"""Store subscriber that turns status transitions into Telegram messages."""

	def __init__(self, notifier: TelegramNotifier, config: TelegramConfig) -> None:
		self._notifier = notifier
		self._config = config
		self._last: tuple[str, MissionStatus] | None = None
		self._pending: set[asyncio.Task[None]] = set()

	def __call__(self, mission: Mission) -> None:
		key = (mission.id, mission.status)
		if key == self._last:
			return
		self._last = key
		if mission.status is MissionStatus.PLANNING and self._config.on_mission_start:
			self._schedule(self._notifier.send_mission_start(mission))
		elif mission.status.terminal and self._config.on_mission_end:
			self._schedule(self._notifier.send_mission_end(mission))

	def _schedule(self, coro: object) -> None:
		try:
			task = asyncio.get_running_loop().create_task(coro)  # type: ignore[arg-type]
		except RuntimeError:
			logger.warning("No running event loop; notification dropped")
			coro.close()  # type: ignore[attr-defined]
			return
		self._pending.add(task)
		task.add_done_callback(self._pending.discard)

	async def drain(self) -> None:
		"""Wait for in-flight notifications, then close the client."""
		if self._pending:
			await asyncio.gather(*self._pending, return_exceptions=True)
		await self._notifier.close()
