"""Progress snapshot, long-poll and WebSocket endpoints."""

from __future__ import annotations

import asyncio
import json
import logging

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect
from pydantic import BaseModel

from media_pipeline.progress.async_relay import AsyncProgressRelay
from media_pipeline.progress.events import ProgressSnapshot

logger = logging.getLogger(__name__)

MAX_WAIT_SECONDS = 30.0


class ProgressSnapshotResponse(BaseModel):
    clientId: str
    status: str
    stage: str | None = None
    percent: int = 0
    message: str | None = None
    version: int = 0
    updatedAt: float | None = None

    @classmethod
    def from_snapshot(
        cls, client_id: str, snapshot: ProgressSnapshot | None
    ) -> "ProgressSnapshotResponse":
        if snapshot is None:
            return cls(clientId=client_id, status="idle")
        return cls(**snapshot.to_dict())


class ProgressConnectionManager:
    """Fans relay events for a client id out to every socket watching it."""

    def __init__(self, relay: AsyncProgressRelay):
        self.relay = relay
        self.active_connections: dict[str, list[WebSocket]] = {}
        self._forwarders: dict[str, asyncio.Task] = {}

    async def connect(self, client_id: str, websocket: WebSocket):
        """Register a socket and start relaying events for its client id."""
        await websocket.accept()
        if client_id not in self.active_connections:
            self.active_connections[client_id] = []
            await self._start_forwarding(client_id)
        self.active_connections[client_id].append(websocket)
        logger.info(f"WebSocket connected for client {client_id}")

    def disconnect(self, client_id: str, websocket: WebSocket):
        """Remove a socket; the last one out stops the relay subscription."""
        connections = self.active_connections.get(client_id)
        if connections and websocket in connections:
            connections.remove(websocket)
        if client_id in self.active_connections and not self.active_connections[client_id]:
            del self.active_connections[client_id]
            forwarder = self._forwarders.pop(client_id, None)
            if forwarder is not None:
                forwarder.cancel()
        logger.info(f"WebSocket disconnected for client {client_id}")

    async def broadcast(self, client_id: str, message: dict):
        """Send a message to all connections for a client id."""
        if client_id not in self.active_connections:
            return

        dead_connections = []
        for connection in list(self.active_connections[client_id]):
            try:
                await connection.send_json(message)
            except Exception as e:
                logger.error(f"Error sending to WebSocket: {e}")
                dead_connections.append(connection)

        for connection in dead_connections:
            self.disconnect(client_id, connection)

    async def send_snapshot(self, client_id: str, websocket: WebSocket):
        snapshot = await self.relay.snapshot(client_id)
        payload = ProgressSnapshotResponse.from_snapshot(client_id, snapshot)
        await websocket.send_json({"type": "snapshot", **payload.model_dump()})

    async def _start_forwarding(self, client_id: str):
        subscription = await self.relay.subscribe(client_id)

        async def forward() -> None:
            try:
                while True:
                    event = await subscription.get()
                    await self.broadcast(client_id, event.to_dict())
            finally:
                await subscription.close()

        self._forwarders[client_id] = asyncio.create_task(forward())


async def wait_for_snapshot(
    relay: AsyncProgressRelay, client_id: str, since: int, timeout: float
) -> ProgressSnapshot | None:
    """Return the snapshot once its version passes ``since`` or the timeout ends."""
    subscription = await relay.subscribe(client_id)
    try:
        snapshot = await relay.snapshot(client_id)
        if snapshot is not None and snapshot.version > since:
            return snapshot
        try:
            await asyncio.wait_for(subscription.get(), timeout)
        except asyncio.TimeoutError:
            return snapshot
    finally:
        await subscription.close()
    return await relay.snapshot(client_id)


def create_progress_router(manager: ProgressConnectionManager) -> APIRouter:
    router = APIRouter(prefix="/v1/progress", tags=["progress"])

    @router.get("/{client_id}", response_model=ProgressSnapshotResponse)
    async def get_progress(
        client_id: str,
        since: int | None = Query(None),
        wait: float = Query(0.0, ge=0.0),
    ) -> ProgressSnapshotResponse:
        """Current snapshot; with ``since`` and ``wait`` it long-polls for a newer one."""
        if since is not None and wait > 0:
            snapshot = await wait_for_snapshot(
                manager.relay, client_id, since, min(wait, MAX_WAIT_SECONDS)
            )
        else:
            snapshot = await manager.relay.snapshot(client_id)
        return ProgressSnapshotResponse.from_snapshot(client_id, snapshot)

    @router.websocket("/{client_id}/ws")
    async def progress_websocket(websocket: WebSocket, client_id: str):
        await manager.connect(client_id, websocket)
        try:
            await manager.send_snapshot(client_id, websocket)
            while True:
                try:
                    data = await websocket.receive_text()
                except WebSocketDisconnect:
                    break
                try:
                    message = json.loads(data)
                except json.JSONDecodeError:
                    logger.debug(f"Ignoring non-JSON message from client: {data}")
                    continue
                if isinstance(message, dict) and message.get("type") == "sync":
                    await manager.send_snapshot(client_id, websocket)
        finally:
            manager.disconnect(client_id, websocket)

    return router
