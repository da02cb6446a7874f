from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional
import asyncio
import logging

from sleepmonitor.config import settings
from sleepmonitor.database import SleepDatabase, get_database
from sleepmonitor.exceptions import DataIntegrityError, StorageIOError
from sleepmonitor.routers import sleep
from sleepmonitor.schemas.sleep import SleepRecordResponse, SleepSnapshotMessage
from sleepmonitor.services.health_data_service import HealthDataService


# Configure logging
logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
logger = logging.getLogger(__name__)


def create_app(database: Optional[SleepDatabase] = None) -> FastAPI:
    database = database or get_database()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown events"""
        # Startup
        await database.create_all()

        yield

        # Shutdown
        await database.dispose()
        logger.info("Database connections released")

    app = FastAPI(
        title=settings.APP_NAME,
        description="Local sleep session storage with live history updates",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.database = database

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(StorageIOError)
    async def storage_error_handler(request: Request, exc: StorageIOError):
        return JSONResponse(
            status_code=503,
            content={"detail": "Storage temporarily unavailable", "operation": exc.operation},
        )

    @app.exception_handler(DataIntegrityError)
    async def integrity_error_handler(request: Request, exc: DataIntegrityError):
        return JSONResponse(
            status_code=500,
            content={"detail": f"Corrupt sleep data: {exc.message}", "operation": exc.operation},
        )

    # Include routers
    app.include_router(sleep.router, prefix=f"{settings.API_V1_PREFIX}/sleep", tags=["Sleep"])

    @app.get("/")
    async def root():
        return {
            "app": settings.APP_NAME,
            "version": "1.0.0",
            "status": "healthy",
            "docs": "/docs",
        }

    @app.get("/health")
    async def health_check():
        return {"status": "healthy"}

    # ==================== WebSocket Sleep History ====================

    @app.websocket("/ws/sleep")
    async def sleep_history_websocket(
        websocket: WebSocket,
        start_date: Optional[datetime] = Query(None),
    ):
        """
        WebSocket endpoint streaming the live sleep history.

        Server sends the full history once on connect and again after
        every change to it:
            {"type": "snapshot", "records": [{...}, ...]}

        On error:
            {"type": "error", "message": "Error description"}
        """
        await websocket.accept()

        service = HealthDataService(websocket.app.state.database.sleep_store)
        if start_date is None:
            live = service.get_sleep_history()
        else:
            live = service.get_sleep_history_since(start_date)

        async def stream():
            try:
                async for snapshot in live:
                    message = SleepSnapshotMessage(
                        records=[SleepRecordResponse.model_validate(r) for r in snapshot]
                    )
                    await websocket.send_json(message.model_dump(mode="json"))
            except (StorageIOError, DataIntegrityError) as e:
                logger.error(f"Sleep history stream failed: {e}")
                await websocket.send_json({"type": "error", "message": str(e)})
                await websocket.close(code=1011, reason=type(e).__name__)

        stream_task = asyncio.create_task(stream())
        try:
            # Client messages are ignored; receiving only detects the disconnect
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            logger.info("Sleep history WebSocket disconnected")
        finally:
            await live.aclose()
            stream_task.cancel()
            try:
                await stream_task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.error(f"Sleep history stream ended with error: {e}")

    return app


app = create_app()
