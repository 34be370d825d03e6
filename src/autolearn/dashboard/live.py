"""Live mission dashboard -- REST control surface + WebSocket snapshot push."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from fastapi import Depends, FastAPI, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from autolearn.controller import MissionController
from autolearn.export import export_filename, export_mission_text, mission_summary

logger = logging.getLogger(__name__)

_RATE_LIMIT_MAX = 10
_RATE_LIMIT_WINDOW = 60  # seconds
_BROADCAST_WAIT = 1.0


class StartRequest(BaseModel):
	"""Request body for starting a mission."""

	goal: str


class LiveDashboard:
	"""HTTP front-end for a ``MissionController``.

	Every store update is pushed as a full snapshot to connected WebSocket
	clients. Mission-changing requests go through the controller, so the
	loop stays the only writer during a run.
	"""

	def __init__(self, controller: MissionController, auth_token: str = "", resume_on_start: bool = False) -> None:
		self.controller = controller
		self.auth_token = auth_token
		self._connections: set[WebSocket] = set()
		self._broadcast_task: asyncio.Task[None] | None = None
		self._post_timestamps: dict[str, list[float]] = defaultdict(list)

		@asynccontextmanager
		async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
			if resume_on_start:
				self.controller.resume()
			self._broadcast_task = asyncio.create_task(self._broadcast_loop())
			yield
			if self._broadcast_task:
				self._broadcast_task.cancel()
				try:
					await self._broadcast_task
				except asyncio.CancelledError:
					pass

		self.app = FastAPI(title="AutoLearn Live", lifespan=_lifespan)
		self.app.add_middleware(
			CORSMiddleware,
			allow_origins=["http://127.0.0.1", "http://localhost"],
			allow_methods=["GET", "POST", "DELETE"],
			allow_headers=["Authorization", "Content-Type"],
		)
		self._setup_routes()

	def _snapshot(self) -> dict[str, Any]:
		return self.controller.mission.to_dict()

	def _check_rate_limit(self, client_ip: str) -> None:
		now = time.monotonic()
		cutoff = now - _RATE_LIMIT_WINDOW
		recent = [t for t in self._post_timestamps[client_ip] if t > cutoff]
		if len(recent) >= _RATE_LIMIT_MAX:
			self._post_timestamps[client_ip] = recent
			raise HTTPException(status_code=429, detail="Rate limit exceeded (max 10 starts/min)")
		recent.append(now)
		self._post_timestamps[client_ip] = recent

	def _setup_routes(self) -> None:
		_security = HTTPBearer(auto_error=False)

		async def verify_token(
			credentials: HTTPAuthorizationCredentials | None = Depends(_security),
		) -> None:
			if not self.auth_token:
				return
			if credentials is None:
				raise HTTPException(status_code=401, detail="Missing authorization header")
			if credentials.credentials != self.auth_token:
				raise HTTPException(status_code=401, detail="Invalid token")

		@self.app.websocket("/ws")
		async def ws_endpoint(websocket: WebSocket, token: str = Query(default="")) -> None:
			if self.auth_token and token != self.auth_token:
				await websocket.close(code=4401, reason="Invalid token")
				return
			await websocket.accept()
			self._connections.add(websocket)
			try:
				await websocket.send_json(self._snapshot())
				while True:
					await websocket.receive_text()
			except WebSocketDisconnect:
				pass
			finally:
				self._connections.discard(websocket)

		@self.app.get("/api/mission", dependencies=[Depends(verify_token)])
		async def get_mission() -> dict[str, Any]:
			return self._snapshot()

		@self.app.post("/api/mission", dependencies=[Depends(verify_token)])
		async def start_mission(body: StartRequest, request: Request) -> dict[str, Any]:
			if not body.goal.strip():
				raise HTTPException(status_code=422, detail="goal must not be blank")
			client_ip = request.client.host if request.client else "unknown"
			self._check_rate_limit(client_ip)
			if not self.controller.start_mission(body.goal):
				current = self.controller.mission
				return {"status": "ignored", "reason": f"mission {current.id} is {current.status.value}"}
			return {"status": "ok", "mission_id": self.controller.mission.id}

		@self.app.delete("/api/mission", dependencies=[Depends(verify_token)])
		async def reset_mission() -> dict[str, Any]:
			fresh = self.controller.reset_mission()
			return {"status": "ok", "mission_id": fresh.id}

		@self.app.get("/api/export", dependencies=[Depends(verify_token)])
		async def export() -> PlainTextResponse:
			mission = self.controller.mission
			return PlainTextResponse(
				export_mission_text(mission),
				headers={"Content-Disposition": f'attachment; filename="{export_filename(mission)}"'},
			)

		@self.app.get("/api/summary", dependencies=[Depends(verify_token)])
		async def summary() -> dict[str, Any]:
			return mission_summary(self.controller.mission)

	async def _broadcast_loop(self) -> None:
		"""Push the snapshot to all clients whenever the store version moves."""
		store = self.controller.store
		seen = store.version
		while True:
			await store.wait_for_change(seen, timeout=_BROADCAST_WAIT)
			if store.version == seen:
				continue
			seen = store.version
			if not self._connections:
				continue
			snapshot = self._snapshot()
			for ws in list(self._connections):
				try:
					await ws.send_json(snapshot)
				except Exception:
					logger.debug("Dropping dashboard client after failed send")
					self._connections.discard(ws)
