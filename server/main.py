"""FastAPI WebSocket server for Exploding Kittens."""

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

import errors
from config import config
from errors import GameError
from handlers import ConnectionContext, dispatch
from logging_config import connection_id_var, get_logger, setup_logging
from middleware import NoCacheMiddleware
from room import RoomManager
from routers.health import router as health_router, set_health_dependencies
from routers.rooms import router as rooms_router, set_room_manager

# Configure logging based on environment
setup_logging(
    level=config.LOG_LEVEL,
    environment=config.ENVIRONMENT,
)
logger = logging.getLogger(__name__)


room_manager = RoomManager()
_cleanup_task = None


async def _periodic_room_cleanup():
    """Periodic task that closes empty and long-finished rooms."""
    while True:
        try:
            await asyncio.sleep(config.ROOM_CLEANUP_INTERVAL_SECONDS)
            await room_manager.cleanup_empty_rooms()
        except asyncio.CancelledError:
            break
        except Exception as e:
            logger.error(f"Room cleanup failed: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler: start housekeeping, stop it on shutdown."""
    global _cleanup_task
    _cleanup_task = asyncio.create_task(_periodic_room_cleanup())

    set_health_dependencies(room_manager=room_manager, cleanup_task=_cleanup_task)
    set_room_manager(room_manager)

    logger.info(f"Exploding Kittens server started (environment={config.ENVIRONMENT})")

    yield

    logger.info("Shutdown initiated...")
    _cleanup_task.cancel()
    try:
        await _cleanup_task
    except asyncio.CancelledError:
        pass
    await _close_all_websockets()
    await room_manager.shutdown()
    logger.info("Shutdown complete")


async def _close_all_websockets():
    """Close all active WebSocket connections gracefully."""
    for connection_id, websocket in list(room_manager.connections.items()):
        try:
            await websocket.close(code=1001, reason="Server shutting down")
        except Exception as e:
            logger.debug(f"Closing {connection_id} failed: {e}")
    logger.info("All WebSocket connections closed")


app = FastAPI(
    title="Exploding Kittens",
    debug=config.DEBUG,
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(NoCacheMiddleware)
app.include_router(health_router)
app.include_router(rooms_router)


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await websocket.accept()

    connection_id = str(uuid.uuid4())
    connection_id_var.set(connection_id)
    log = get_logger(__name__).with_context(connection_id=connection_id)
    log.debug("WebSocket connected")

    ctx = ConnectionContext(websocket=websocket, connection_id=connection_id)
    room_manager.register_connection(connection_id, websocket)

    try:
        while True:
            try:
                data = await websocket.receive_json()
            except ValueError:
                await websocket.send_json(
                    GameError(errors.INVALID_REQUEST, "Messages must be JSON objects").to_dict()
                )
                continue
            await dispatch(data, ctx, room_manager=room_manager)
    except WebSocketDisconnect:
        log.debug("WebSocket disconnected")
    except Exception:
        log.exception("WebSocket handler crashed")
    finally:
        await room_manager.handle_disconnect(connection_id)


def run():
    """Run the server using uvicorn."""
    import uvicorn

    logger.info(f"Starting Exploding Kittens server on {config.HOST}:{config.PORT}")
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
