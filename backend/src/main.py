import json
import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Optional

import uvicorn
from fastapi.responses import JSONResponse, StreamingResponse
from fastapi.staticfiles import StaticFiles
from fastapi.middleware.cors import CORSMiddleware
from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from starlette.exceptions import HTTPException
from starlette.websockets import WebSocketState

from models import Subscriber, SubscriberRegistry
from schemas import ErrorResponse, HealthResponse, StatsResponse
from services import SettingsSyncService
from storage import DocumentStore
from utilities import (
    InvalidOrUnpersistable,
    ServerConfig,
    StorageUnavailable,
    make_error,
    make_pong,
    make_settings_event,
    make_sse_comment,
    make_sse_data,
    setup_logging,
    strict_dumps,
)

logger = logging.getLogger(__name__)

# -------------- Push channel loops --------------
async def sse_event_stream(request: Request, service: SettingsSyncService, sub: Subscriber,
                           heartbeat: float) -> AsyncIterator[str]:
    """
    Body of one /api/stream response: the current document first, then every
    accepted write, with a comment line whenever the channel has been idle
    for a heartbeat so a dead peer is noticed.
    """
    handle, _ = await service.subscribe(sub)
    try:
        while sub.connected:
            if await request.is_disconnected():
                break
            doc = await sub.next_document(timeout=heartbeat)
            if doc is None:
                yield make_sse_comment()
                continue
            yield make_sse_data(doc)
    finally:
        service.unsubscribe(handle)

async def subscriber_sender_loop(sub: Subscriber, websocket: WebSocket, heartbeat: float, send_timeout: float):
    """
    Background task per websocket subscriber: read from queue and send over websocket.
    """
    try:
        while sub.connected:
            doc = await sub.next_document(timeout=heartbeat)
            if doc is None:
                continue
            try:
                await asyncio.wait_for(websocket.send_text(strict_dumps(make_settings_event(doc))), send_timeout)
            except Exception as e:
                # (broken pipe / closed / stuck) -> stop
                logger.info("Push to %s failed: %s", sub.label, e)
                break
    except asyncio.CancelledError:
        # Graceful cancellation
        pass
    finally:
        sub.connected = False

async def websocket_receiver_loop(ws: WebSocket):
    """
    Answer client messages until the client goes away.
    """
    try:
        while True:
            data = await ws.receive_text()
            try:
                payload = json.loads(data)
            except json.JSONDecodeError:
                await ws.send_text(json.dumps(make_error(None, "BAD_REQUEST", "invalid json")))
                continue
            if not isinstance(payload, dict):
                await ws.send_text(json.dumps(make_error(None, "BAD_REQUEST", "expected an object")))
                continue
            typ = payload.get("type")
            request_id = payload.get("request_id")
            if typ == "ping":
                await ws.send_text(json.dumps(make_pong(request_id)))
                continue
            # unknown type
            await ws.send_text(json.dumps(make_error(request_id, "BAD_REQUEST", f"unknown type: {typ}")))
    except WebSocketDisconnect:
        pass

class SinglePageStaticFiles(StaticFiles):
    """
    Built front-end: unknown paths outside /api get index.html so client-side
    routes such as /admin load on a direct visit.
    """

    async def get_response(self, path: str, scope):
        try:
            response = await super().get_response(path, scope)
        except HTTPException as e:
            if e.status_code != 404 or path.split("/", 1)[0] == "api":
                raise
            return await super().get_response("index.html", scope)
        if response.status_code == 404 and path.split("/", 1)[0] != "api":
            return await super().get_response("index.html", scope)
        return response

# -------------- App factory --------------
def create_app(config: Optional[ServerConfig] = None,
               service: Optional[SettingsSyncService] = None) -> FastAPI:
    config = config or ServerConfig.from_env()
    if service is None:
        store = DocumentStore(config.settings_path, config.default_settings_path)
        service = SettingsSyncService(store, SubscriberRegistry())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # a failure here aborts startup; there is no mode without a document
        await service.start()
        app.state.started_at = datetime.now(timezone.utc)
        yield
        service.registry.close_all()

    app = FastAPI(title="Status board settings", lifespan=lifespan)
    app.state.config = config
    app.state.service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    # -------------- REST endpoints --------------

    @app.get("/api/settings")
    async def rest_get_settings():
        return service.get_current()

    @app.post("/api/settings", responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}})
    async def rest_replace_settings(request: Request):
        body = await request.body()
        try:
            return await service.replace_raw(body)
        except InvalidOrUnpersistable as e:
            status = 500 if isinstance(e.__cause__, StorageUnavailable) else 400
            return JSONResponse(status_code=status, content={"error": str(e)})

    @app.get("/api/stream")
    async def rest_stream(request: Request):
        sub = Subscriber(f"sse:{request.client.host if request.client else '?'}",
                         queue_size=config.subscriber_queue_size)
        return StreamingResponse(
            sse_event_stream(request, service, sub, config.heartbeat_interval),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
        )

    @app.get("/health", response_model=HealthResponse)
    async def rest_health():
        now = datetime.now(timezone.utc)
        uptime_sec = int((now - app.state.started_at).total_seconds())
        return {"uptime_sec": uptime_sec, "subscribers": len(service.registry)}

    @app.get("/stats", response_model=StatsResponse)
    async def rest_stats():
        return {
            "writes_accepted": service.writes_accepted,
            "writes_rejected": service.writes_rejected,
            "broadcasts": service.registry.broadcasts,
            "subscribers": len(service.registry),
        }

    # -------------- WebSocket handling --------------

    @app.websocket("/ws")
    async def websocket_endpoint(ws: WebSocket):
        await ws.accept()
        sub = Subscriber(f"ws:{ws.client.host if ws.client else '?'}", queue_size=config.subscriber_queue_size)
        handle, _ = await service.subscribe(sub)
        sub.sender_task = asyncio.create_task(
            subscriber_sender_loop(sub, ws, config.heartbeat_interval, config.send_timeout))
        receiver = asyncio.create_task(websocket_receiver_loop(ws))
        try:
            # whichever side ends first ends the connection
            done, _ = await asyncio.wait({sub.sender_task, receiver}, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                if not task.cancelled() and task.exception() is not None:
                    logger.warning("Websocket %s failed: %s", sub.label, task.exception())
        finally:
            receiver.cancel()
            await asyncio.gather(receiver, return_exceptions=True)
            service.unsubscribe(handle)
            await sub.stop()
            # a dead sender leaves the peer connected; close so it reconnects
            if ws.client_state == WebSocketState.CONNECTED and ws.application_state == WebSocketState.CONNECTED:
                try:
                    await ws.close(code=1011)
                except (OSError, RuntimeError, WebSocketDisconnect) as e:
                    logger.debug("Closing websocket %s failed: %s", sub.label, e)

    # -------------- Front-end --------------

    if config.static_dir is not None:
        app.mount("/", SinglePageStaticFiles(directory=str(config.static_dir), html=True), name="static")

    return app

def main():
    config = ServerConfig.from_env()
    setup_logging(config.log_level, config.log_json)
    logger.info("Settings server starting on http://%s:%s", config.host, config.port)
    uvicorn.run(create_app(config), host=config.host, port=config.port, log_config=None)

if __name__ == "__main__":
    main()
