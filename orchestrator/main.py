# orchestrator/main.py
# @ai-rules:
# 1. [Pattern]: Everything is built in lifespan() and stored on app.state. No module-level singletons.
# 2. [Pattern]: Redis event log and semantic memory are optional. Missing config or failed connect -> warning, continue.
# 3. [Pattern]: /ws pushes every StatusChange to connected clients via one broadcaster task fed by scheduler.subscribe().
# 4. [Gotcha]: Shutdown order: stop accepting + drain scheduler, then broadcaster, then clients (gateway, tools, memory, redis).
"""
Orchestrator - FastAPI Application

Hosts the event processing core:
- Event ingestion (POST /events) and lookup
- Dual queue scheduler (general + serialized voice)
- Status polling and WebSocket status stream
"""
from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect

from . import __version__
from .config import Settings, load_settings
from .core.executor import TaskExecutor
from .core.router import EventRouter
from .core.scheduler import Scheduler
from .llm import ProviderGateway
from .memory.semantic_memory import SemanticMemory
from .memory.vector_store import VectorStore
from .models import HealthResponse
from .routes import admin_router, agents_router, events_router, status_router
from .state.event_log import EventLog
from .state.redis_client import RedisClient
from .tools.audio import AudioSynthesizer
from .tools.handler import ToolCallHandler

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if os.getenv("DEBUG") else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Squelch noisy loggers
for noisy in ("httpx", "httpcore", "uvicorn.access"):
    logging.getLogger(noisy).setLevel(logging.WARNING)


async def _connect_event_log(settings: Settings) -> tuple[Optional[RedisClient], Optional[EventLog]]:
    if not settings.redis_host:
        logger.info("Event log disabled (REDIS_HOST not set)")
        return None, None
    redis_client = RedisClient(settings.redis_host, settings.redis_port, settings.redis_password)
    try:
        redis = await redis_client.connect()
    except ConnectionError as e:
        logger.warning(f"Event log disabled, Redis unavailable (non-fatal): {e}")
        return None, None
    logger.info("Event log enabled (Redis)")
    return redis_client, EventLog(redis, ttl_seconds=settings.event_log_ttl_seconds)


async def _broadcast_status_changes(app: FastAPI, scheduler: Scheduler) -> None:
    """Forward every StatusChange to all connected /ws clients."""
    clients: set[WebSocket] = app.state.connected_ws_clients
    async for change in scheduler.subscribe():
        if not clients:
            continue
        data = change.model_dump_json()
        disconnected = set()
        for client in clients:
            try:
                await client.send_text(data)
            except Exception:
                disconnected.add(client)
        clients.difference_update(disconnected)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build gateway, tools, memory, executor and scheduler; tear them down on exit."""
    logger.info("Orchestrator starting up...")
    settings: Settings = getattr(app.state, "settings", None) or load_settings()
    app.state.settings = settings

    gateway = ProviderGateway.from_settings(settings)
    await gateway.test_all()
    gateway.start_reprobe_loop()

    memory: Optional[SemanticMemory] = None
    if settings.memory_enabled:
        memory = SemanticMemory(
            project=settings.gcp_project,
            location=settings.gcp_location,
            vector_store=VectorStore(settings.qdrant_url, timeout=settings.memory_timeout),
            timeout=settings.memory_timeout,
        )
        logger.info(f"Semantic memory enabled (Qdrant at {settings.qdrant_url})")
    else:
        logger.info("Semantic memory disabled (MEMORY_ENABLED/GCP_PROJECT not set)")

    tool_handler = ToolCallHandler(
        settings.tool_servers,
        memory=memory,
        voice_id=settings.elevenlabs_voice_id,
        timeout=settings.tool_timeout,
    )
    audio = AudioSynthesizer(
        settings.tool_servers["elevenlabs"],
        default_voice_id=settings.elevenlabs_voice_id,
        timeout=settings.audio_timeout,
    )
    redis_client, event_log = await _connect_event_log(settings)

    executor = TaskExecutor(
        gateway,
        tool_handler=tool_handler,
        audio=audio,
        memory=memory,
        voice_id=settings.elevenlabs_voice_id,
        side_effect_timeout=settings.side_effect_timeout,
    )
    scheduler = Scheduler(
        router=EventRouter(settings.preferences),
        executor=executor,
        gateway=gateway,
        general_concurrency=settings.max_concurrency,
        voice_concurrency=settings.voice_queue_concurrency,
        max_history=settings.max_event_history,
        event_log=event_log,
    )

    app.state.gateway = gateway
    app.state.scheduler = scheduler
    app.state.event_log = event_log
    app.state.connected_ws_clients = set()
    broadcaster = asyncio.create_task(_broadcast_status_changes(app, scheduler))

    logger.info(
        f"Orchestrator ready (general={settings.max_concurrency}, voice={settings.voice_queue_concurrency}, "
        f"providers={[p.value for p in gateway.available_providers()]})"
    )

    yield  # Application runs here

    logger.info("Orchestrator shutting down...")
    await scheduler.shutdown()
    try:
        await asyncio.wait_for(broadcaster, timeout=5.0)
    except asyncio.TimeoutError:
        broadcaster.cancel()
    await gateway.close()
    await tool_handler.close()
    await audio.close()
    if memory is not None:
        await memory.close()
    if redis_client is not None:
        await redis_client.close()
    app.state.scheduler = None
    logger.info("Orchestrator stopped")


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """App factory. Tests pass explicit Settings; production reads the environment."""
    app = FastAPI(
        title="Orchestrator",
        description="Event processing core for the streaming assistant",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings

    # =========================================================================
    # Health Endpoint
    # =========================================================================

    @app.get("/health", response_model=HealthResponse, tags=["health"])
    async def health_check() -> HealthResponse:
        """Liveness/readiness. 503 until the scheduler is up or once shutdown begins."""
        scheduler = getattr(app.state, "scheduler", None)
        if scheduler is None or not scheduler.accepting:
            raise HTTPException(status_code=503, detail="Scheduler not accepting events")
        return HealthResponse()

    # =========================================================================
    # WebSocket Endpoint (status stream)
    # =========================================================================

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        """
        Status stream.

        Sends: StatusChange JSON on every lifecycle transition.
        Receives: {"type": "status"} -> replies with the current status object.
        """
        await websocket.accept()
        clients = getattr(app.state, "connected_ws_clients", set())
        clients.add(websocket)
        logger.info(f"WebSocket client connected ({len(clients)} clients)")
        try:
            while True:
                try:
                    data = await websocket.receive_json()
                except ValueError:
                    logger.debug("Ignoring non-JSON WebSocket frame")
                    continue
                if isinstance(data, dict) and data.get("type") == "status":
                    scheduler = getattr(app.state, "scheduler", None)
                    if scheduler is not None:
                        await websocket.send_json({
                            "type": "status",
                            "status": scheduler.status().model_dump(mode="json"),
                        })
        except WebSocketDisconnect:
            pass
        finally:
            clients.discard(websocket)
            logger.info(f"WebSocket client disconnected ({len(clients)} clients)")

    app.include_router(events_router)
    app.include_router(status_router)
    app.include_router(agents_router)
    app.include_router(admin_router)
    return app


app = create_app()


def run() -> None:
    """Console entry point."""
    import uvicorn

    uvicorn.run(
        "orchestrator.main:app",
        host=os.getenv("ORCHESTRATOR_HOST", "0.0.0.0"),
        port=int(os.getenv("ORCHESTRATOR_PORT", "8742")),
        log_level="debug" if os.getenv("DEBUG") else "info",
    )
