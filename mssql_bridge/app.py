"""FastAPI bootstrap wiring the connection pool into the bridge routes."""
from contextlib import asynccontextmanager
import asyncio
from typing import Optional
import logging
import traceback

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from mssql_bridge import __version__
from mssql_bridge.api import attach_to_app
from mssql_bridge.config import BridgeSettings, load_settings
from mssql_bridge.db.connection import EngineFactory, PoolManager, create_mssql_engine
from mssql_bridge.db.queries import QueryExecutor
from mssql_bridge.errors import BridgeError

logger = logging.getLogger(__name__)


def _error_body(exc: BridgeError, expose_details: bool) -> dict:
    body = {"error": exc.message}
    details = exc.details
    if expose_details and exc.http_status >= 500:
        details = ''.join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    if details is not None:
        body["details"] = details
    return body


def create_app(
    settings: Optional[BridgeSettings] = None,
    engine_factory: EngineFactory = create_mssql_engine,
    connect_on_startup: bool = True,
) -> FastAPI:
    settings = settings or load_settings()
    pool = PoolManager(settings, engine_factory=engine_factory)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("MSSQL Bridge starting (port %d, env %s)", settings.port, settings.environment)
        # Connect in the background so the server accepts requests meanwhile
        startup_task = None
        if connect_on_startup:
            startup_task = asyncio.create_task(run_in_threadpool(pool.startup))
        yield
        logger.info("Shutdown signal received: closing MSSQL connection")
        if startup_task is not None:
            # the worker thread cannot be cancelled; let it finish before close
            await startup_task
        await run_in_threadpool(pool.close)

    app = FastAPI(title="MSSQL Bridge", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.pool = pool
    app.state.executor = QueryExecutor(pool)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(BridgeError)
    async def handle_bridge_error(request: Request, exc: BridgeError):
        if exc.http_status >= 500:
            logger.error("Query execution error: %s", exc.message, exc_info=exc)
        else:
            logger.warning("Rejected request: %s", exc.message)
        return JSONResponse(
            status_code=exc.http_status,
            content=_error_body(exc, settings.expose_details),
        )

    attach_to_app(app)
    return app
