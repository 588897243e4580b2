"""
Hub Relay - API Server

Provides:
- Push channel (WebSocket) for hubs and viewers
- REST query surface for devices and reading history
- Optional MQTT ingress for hubs
"""

import json
import logging
from contextlib import asynccontextmanager

from fastapi import APIRouter, Body, FastAPI, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse

from app.core.config import Settings, get_settings
from app.core.database import create_engine, create_session_maker, create_tables
from app.core.errors import StoreUnavailable, ValidationError
from app.mqtt.main import MQTTBridge
from app.relay.broadcast import BroadcastHub
from app.relay.pipeline import IngestPipeline
from app.relay.queries import QueryService
from app.relay.registry import PresenceRegistry
from app.relay.schemas import DeviceRegistration, dump, envelope
from app.relay.store import ReadingStore

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


# ==================== LIFESPAN ====================

def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the relay application. Components are created per app instance."""
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine = create_engine(settings.database_url)
        if settings.create_tables:
            await create_tables(engine)

        store = ReadingStore(create_session_maker(engine), timeout=settings.store_timeout_seconds)
        registry = PresenceRegistry()
        hub = BroadcastHub(registry, settings.freshness_window, max_pending=settings.viewer_queue_size)
        pipeline = IngestPipeline(registry, hub, store)
        queries = QueryService(
            store,
            registry,
            hub,
            settings.freshness_window,
            max_limit=settings.history_limit_max,
        )

        app.state.registry = registry
        app.state.hub = hub
        app.state.pipeline = pipeline
        app.state.queries = queries

        bridge = None
        if settings.mqtt_enabled:
            bridge = MQTTBridge(
                pipeline,
                broker=settings.mqtt_broker,
                port=settings.mqtt_port,
                topic=settings.mqtt_topic,
            )
            await bridge.start()

        logger.info(f"🚀 Hub relay started (freshness window {settings.freshness_window})")
        try:
            yield
        finally:
            if bridge is not None:
                await bridge.stop()
            await hub.close()
            await pipeline.drain()
            await engine.dispose()
            logger.info("⏹️ Hub relay stopped")

    app = FastAPI(
        title="Hub Relay API",
        description="Live sensor relay for BLE fitness hubs",
        version=VERSION,
        lifespan=lifespan,
    )

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        return JSONResponse({"error": str(exc)}, status_code=400)

    @app.exception_handler(StoreUnavailable)
    async def store_unavailable_handler(request: Request, exc: StoreUnavailable):
        logger.error(f"❌ Store unavailable for {request.url.path}: {exc}")
        return JSONResponse({"error": "Storage temporarily unavailable"}, status_code=503)

    app.include_router(router)
    # Original mobile clients use the /api prefix
    app.include_router(router, prefix="/api", include_in_schema=False)
    app.include_router(system_router)
    return app


# ==================== DEVICES ====================

router = APIRouter(tags=["devices"])


@router.get("/devices")
async def list_devices(
    request: Request,
    device_type: str | None = Query(None, alias="type"),
    connected: bool | None = Query(None),
    limit: int = Query(100),
):
    """Devices with their latest reading. connected=true applies the freshness window."""
    devices = await request.app.state.queries.list_devices(
        device_type=device_type, connected=connected, limit=limit
    )
    return [dump(d) for d in devices]


@router.get("/devices/{device_id}/data")
async def get_device_data(request: Request, device_id: str, limit: int = Query(100)):
    """Most recent readings for a device, newest first."""
    readings = await request.app.state.queries.get_reading_history(device_id, limit=limit)
    return [dump(r) for r in readings]


@router.post("/devices")
async def register_device(request: Request, registration: DeviceRegistration = Body(...)):
    """Register or update a device out of band."""
    device = await request.app.state.queries.register_device(registration)
    return dump(device)


@router.post("/devices/{device_id}/data")
async def record_reading(request: Request, device_id: str, payload: dict = Body(...)):
    """Insert one reading for a device."""
    reading = await request.app.state.queries.record_reading(device_id, payload)
    return dump(reading)


# ==================== PUSH CHANNEL ====================

system_router = APIRouter()


async def _serve_socket(websocket: WebSocket):
    """
    One connection is both a viewer (receives snapshots) and, if it sends
    hub events, a hub. Messages are handled one at a time, in order.
    """
    await websocket.accept()
    app = websocket.app
    hub: BroadcastHub = app.state.hub
    channel = hub.connect(websocket.send_text)

    try:
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(frame.get("code", 1000))

            raw = frame.get("text")
            if raw is None:
                logger.warning(f"⚠️ Binary frame from {channel.name} ignored")
                continue
            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning(f"⚠️ Non-JSON message from {channel.name} ignored")
                continue

            if isinstance(message, dict) and message.get("type") == "get_connected_devices":
                await _reply_connected_devices(app, channel)
            else:
                await app.state.pipeline.handle(message)

    except WebSocketDisconnect:
        pass
    finally:
        hub.disconnect(channel)


async def _reply_connected_devices(app: FastAPI, channel):
    try:
        devices = await app.state.queries.list_devices(connected=True)
    except StoreUnavailable as e:
        logger.error(f"❌ Could not list connected devices: {e}")
        devices = []
    channel.offer(envelope("connected_devices", devices))


system_router.add_api_websocket_route("/ws", _serve_socket)
system_router.add_api_websocket_route("/", _serve_socket)


# ==================== HEALTH CHECK ====================

@system_router.get("/health")
async def health_check(request: Request):
    """Health check endpoint."""
    return {
        "status": "ok",
        "version": VERSION,
        "devices": len(request.app.state.registry),
        "viewers": len(request.app.state.hub),
    }


@system_router.get("/")
async def root():
    """Root endpoint with the endpoint map."""
    return {
        "service": "Hub Relay API",
        "version": VERSION,
        "endpoints": {
            "push_channel": "/ws",
            "devices": "/devices",
            "device_data": "/devices/{device_id}/data",
            "health": "/health",
        }
    }


# ==================== MAIN ====================

if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    logging.basicConfig(level=settings.log_level)
    uvicorn.run(create_app(settings), host=settings.listen_host, port=settings.port)
