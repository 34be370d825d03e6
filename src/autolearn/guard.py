"""Single-flight guard for the mission loop."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

logger = logging.getLogger(__name__)


class LoopGuard:
	"""Scoped lock guaranteeing at most one active mission loop.

	A claim is identified by a generation number. ``revoke()`` frees the
	guard for a new loop without waiting for the current holder to exit, and
	the old holder's release is then ignored, so it can never clear a newer
	loop's claim.
	"""

	def __init__(self) -> None:
		self._holder: int | None = None
		self._generation = 0

	@property
	def active(self) -> bool:
		return self._holder is not None

	@contextmanager
	def claim(self) -> Iterator[int | None]:
		"""Yield a claim token, or None when another loop holds the guard."""
		if self._holder is not None:
			yield None
			return
		self._generation += 1
		token = self._generation
		self._holder = token
		try:
			yield token
		finally:
			if self._holder == token:
				self._holder = None

	def holds(self, token: int) -> bool:
		return self._holder == token

	def revoke(self) -> None:
		if self._holder is not None:
			logger.debug("Revoking loop guard claim %d", self._holder)
		self._holder = None
