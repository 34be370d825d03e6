"""Single-snapshot mission store with copy-on-write updates.

The store holds exactly one immutable ``Mission`` value. Writers replace it
with a new value; readers get whatever value was current at read time and
never observe a partially applied change. Every replacement bumps
``version`` and notifies subscribers once.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from autolearn.models import Mission, new_mission

logger = logging.getLogger(__name__)

Subscriber = Callable[[Mission], None]


class MissionStore:
	"""Holds the live mission snapshot."""

	def __init__(self, initial: Mission | None = None) -> None:
		self._mission = initial if initial is not None else new_mission()
		self._version = 0
		self._subscribers: list[Subscriber] = []
		self._changed = asyncio.Event()

	@property
	def snapshot(self) -> Mission:
		return self._mission

	@property
	def version(self) -> int:
		return self._version

	def replace(self, mission: Mission) -> Mission:
		"""Swap in a whole new snapshot (start/reset/resume)."""
		self._mission = mission
		self._publish()
		return mission

	def update(self, fn: Callable[[Mission], Mission]) -> Mission:
		"""Apply ``fn`` to the current snapshot and store its result."""
		return self.replace(fn(self._mission))

	def subscribe(self, callback: Subscriber) -> Callable[[], None]:
		"""Register a callback for snapshot updates; returns an unsubscribe function."""
		self._subscribers.append(callback)

		def _unsubscribe() -> None:
			if callback in self._subscribers:
				self._subscribers.remove(callback)

		return _unsubscribe

	async def wait_for_change(self, since: int, timeout: float | None = None) -> Mission:
		"""Wait until ``version`` moves past ``since`` and return the snapshot.

		Returns immediately when a newer version already exists. On timeout the
		current snapshot is returned unchanged.
		"""
		while self._version <= since:
			event = self._changed
			try:
				await asyncio.wait_for(event.wait(), timeout=timeout)
			except asyncio.TimeoutError:
				break
		return self._mission

	def _publish(self) -> None:
		self._version += 1
		mission = self._mission
		for callback in list(self._subscribers):
			try:
				callback(mission)
			except Exception:
				logger.exception("Mission store subscriber failed")
		self._changed.set()
		self._changed = asyncio.Event()
