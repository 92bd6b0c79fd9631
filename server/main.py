"""FastAPI WebSocket server for the expedition card game."""

import json
import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from config import config
from errors import InvalidMessage
from handlers import ConnectionContext, dispatch, handle_disconnect
from logging_config import setup_logging
from models import EventType
from routers.health import router as health_router
from routers.health import set_health_dependencies
from session import SessionRegistry
from transport import ConnectionHub

setup_logging(
    level=config.LOG_LEVEL,
    environment=config.ENVIRONMENT,
)
logger = logging.getLogger(__name__)


# Process-wide registries, created once at startup
registry = SessionRegistry()
hub = ConnectionHub()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    set_health_dependencies(registry=registry, hub=hub)
    logger.info(f"Expedition server started (environment={config.ENVIRONMENT})")

    yield

    logger.info("Shutdown initiated...")
    await hub.close_all()
    registry.sessions.clear()
    registry.bindings.clear()
    logger.info("Shutdown complete")


app = FastAPI(
    title="Expedition Card Game",
    debug=config.DEBUG,
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(health_router)


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await websocket.accept()

    connection_id = str(uuid.uuid4())
    logger.debug(f"WebSocket connected as {connection_id}")

    hub.register(connection_id, websocket)
    ctx = ConnectionContext(websocket=websocket, connection_id=connection_id)

    # Shared dependencies passed to every handler
    handler_deps = dict(
        registry=registry,
        hub=hub,
        settings=config,
    )

    try:
        while True:
            text = await websocket.receive_text()
            if len(text.encode("utf-8")) > config.MAX_MESSAGE_BYTES:
                await hub.send_to(
                    connection_id, EventType.ERROR, InvalidMessage("Message too large").to_payload()
                )
                continue
            try:
                data = json.loads(text)
            except json.JSONDecodeError:
                data = None
            await dispatch(data, ctx, **handler_deps)
    except WebSocketDisconnect:
        logger.debug(f"WebSocket {connection_id} disconnected")
    finally:
        await handle_disconnect(ctx, registry=registry, hub=hub)


def run():
    """Run the server using uvicorn."""
    import uvicorn

    logger.info(f"Starting expedition server on {config.HOST}:{config.PORT}")
    logger.info(f"Debug mode: {config.DEBUG}")

    uvicorn.run(
        "main:app",
        host=config.HOST,
        port=config.PORT,
        reload=config.DEBUG,
        log_level=config.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    run()
