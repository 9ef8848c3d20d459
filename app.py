from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional
import json
import os
import uuid

from fastapi import Depends, FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from backend import CacheBackend, CacheUnavailable, create_cache_backend
from constants import CORS_ORIGINS
from dependencies import build_dedupers, get_cache
from logging_config import get_logger, setup_logging
from presence import PresenceStore
from routers.engagement import engagement_router
from routers.presence import presence_router

# Setup logging
log_level = os.getenv("LOG_LEVEL", "INFO")
log_file = os.getenv("LOG_FILE", None)
setup_logging(log_level=log_level, log_file=log_file)
logger = get_logger(__name__)

# Written by the server on connect; clients may not overwrite them
SERVER_FIELDS = ("connected_at", "ip")


def create_app(cache: Optional[CacheBackend] = None) -> FastAPI:
    """Build the application around one explicitly owned cache handle.

    Request handling order: CORS middleware, route dependencies (cache,
    store, visitor identity), handler, then the CacheUnavailable handler.
    A cache passed in by the caller is not closed on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = cache is None
        app.state.cache = cache if cache is not None else create_cache_backend()
        await app.state.cache.connect()

        app.state.presence = PresenceStore(app.state.cache)
        # Connection ids are not unique across restarts; nothing from a previous run may survive
        await app.state.presence.reset()
        app.state.dedupers = build_dedupers(app.state.cache)
        logger.info("Cache layer ready, presence reset")
        try:
            yield
        finally:
            if owned:
                await app.state.cache.close()
            logger.info("Cache layer shut down")

    app = FastAPI(lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(engagement_router)
    app.include_router(presence_router)

    @app.exception_handler(CacheUnavailable)
    async def cache_unavailable_handler(request: Request, exc: CacheUnavailable):
        logger.error(f"Cache unavailable while handling {request.method} {request.url.path}: {exc}")
        return JSONResponse(status_code=503, content={"detail": "Cache temporarily unavailable"})

    @app.get("/health")
    async def health(cache: CacheBackend = Depends(get_cache)):
        await cache.ping()
        return {"status": "ok"}

    app.add_api_websocket_route("/ws", websocket_endpoint)

    logger.info("FastAPI application initialized")
    return app


async def _send(websocket: WebSocket, message: dict):
    await websocket.send_text(json.dumps(message))


async def websocket_endpoint(websocket: WebSocket):
    """Connection lifecycle: presence is written on connect, merged on each
    ``update`` message and cleared on disconnect.

    Any query parameters become initial metadata.
    """
    presence: PresenceStore = websocket.app.state.presence
    connection_id = None
    client_host = websocket.client.host if websocket.client else "unknown"
    logger.info(f"WebSocket connection attempt from {client_host}")

    try:
        await websocket.accept()
        connection_id = str(uuid.uuid4())

        initial = {
            **dict(websocket.query_params),
            "connected_at": datetime.now().isoformat(),
            "ip": client_host,
        }
        metadata = await presence.set_metadata(connection_id, initial)
        logger.info(f"WebSocket connection {connection_id} accepted from {client_host}")

        await _send(websocket, {
            "type": "system",
            "message": "Connected",
            "connection_id": connection_id,
            "metadata": metadata,
            "online_count": await presence.count(),
            "timestamp": datetime.now().isoformat(),
        })

        while True:
            try:
                data = await websocket.receive_text()
            except WebSocketDisconnect:
                logger.info(f"WebSocket disconnected normally for connection {connection_id}")
                break

            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                message = None
            if not isinstance(message, dict):
                await _send(websocket, {"type": "error", "message": "Messages must be JSON objects"})
                continue

            message_type = message.get("type")
            if message_type == "update":
                update = message.get("data")
                if not isinstance(update, dict):
                    await _send(websocket, {"type": "error", "message": "'data' must be an object"})
                    continue
                update = {k: v for k, v in update.items() if k not in SERVER_FIELDS}
                merged = await presence.set_metadata(connection_id, update)
                await _send(websocket, {"type": "metadata", "connection_id": connection_id, "metadata": merged})
            elif message_type == "get":
                current = await presence.get_metadata(connection_id)
                await _send(websocket, {"type": "metadata", "connection_id": connection_id, "metadata": current})
            else:
                logger.debug(f"Unknown message type {message_type!r} from connection {connection_id}")
                await _send(websocket, {"type": "error", "message": f"Unknown message type: {message_type}"})

    except WebSocketDisconnect:
        logger.info(f"WebSocket {connection_id} disconnected")
    except CacheUnavailable as e:
        logger.error(f"Cache unavailable for WebSocket {connection_id}: {e}")
        try:
            await websocket.close(code=1011, reason="Cache temporarily unavailable")
        except RuntimeError as close_error:
            logger.debug(f"Error closing WebSocket: {close_error}")
    finally:
        if connection_id:
            try:
                await presence.clear_metadata(connection_id)
                logger.info(f"Presence for connection {connection_id} cleared")
            except CacheUnavailable as e:
                logger.error(f"Could not clear presence for {connection_id}: {e}")


app = create_app()
