from __future__ import annotations

import logging
from pathlib import Path

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from incident_relay.core.coordinator import LifecycleCoordinator
from incident_relay.domain.errors import NotFound, PersistenceError
from incident_relay.realtime.fanout import FanoutHub

logger = logging.getLogger(__name__)


def create_app(
    coordinator: LifecycleCoordinator,
    hub: FanoutHub,
    static_dir: str | None = None,
) -> FastAPI:
    app = FastAPI(
        title="Incident Relay",
        version="1.0.0",
        description="Incident log: Telegram reports, status actions, realtime dashboard feed.",
    )

    @app.get("/incidents")
    async def list_incidents():
        try:
            incidents = await coordinator.list_incidents()
        except PersistenceError as exc:
            logger.error("Error fetching incidents: %s", exc)
            return JSONResponse(status_code=500, content={"message": "Error fetching incidents."})
        return [i.to_wire() for i in incidents]

    @app.delete("/incidents/{incident_id}")
    async def delete_incident(incident_id: str):
        try:
            await coordinator.delete_incident(incident_id)
        except NotFound:
            return JSONResponse(status_code=404, content={"message": "Incident not found."})
        except PersistenceError as exc:
            logger.error("Error deleting incident %s: %s", incident_id, exc)
            return JSONResponse(status_code=500, content={"message": "Error deleting incident."})
        return {"message": "Incident deleted successfully."}

    @app.websocket("/ws")
    async def realtime(websocket: WebSocket):
        await websocket.accept()
        viewer = await hub.connect(websocket.send_json)
        try:
            # Клиент ничего не шлёт; читаем только чтобы заметить disconnect
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            await hub.disconnect(viewer)

    # Статика дашборда монтируется последней, чтобы не перекрыть API
    if static_dir and Path(static_dir).is_dir():
        app.mount("/", StaticFiles(directory=static_dir, html=True), name="dashboard")
        logger.info("dashboard static files mounted | dir=%s", static_dir)

    return app
