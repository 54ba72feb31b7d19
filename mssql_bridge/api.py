"""FastAPI endpoints: health checks and the query bridge."""
import base64
import json
from typing import Any, Dict, List, Optional, Tuple
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from mssql_bridge.config import BridgeSettings
from mssql_bridge.db.connection import PoolManager
from mssql_bridge.db.parameters import build_parameters
from mssql_bridge.db.queries import QueryExecutor, Row
from mssql_bridge.errors import BadRequest, BridgeError, PayloadTooLarge

logger = logging.getLogger(__name__)

router = APIRouter()

ROW_ENCODERS = {
    bytes: lambda value: base64.b64encode(value).decode('ascii'),
    bytearray: lambda value: base64.b64encode(bytes(value)).decode('ascii'),
}


# -------------------------
# Dependencies
# -------------------------
def get_settings(request: Request) -> BridgeSettings:
    return request.app.state.settings


def get_pool(request: Request) -> PoolManager:
    return request.app.state.pool


def get_executor(request: Request) -> QueryExecutor:
    return request.app.state.executor


# -------------------------
# Request parsing
# -------------------------
async def read_payload(request: Request, max_bytes: int) -> Any:
    """Read and decode the JSON body, enforcing the size cap."""
    declared = request.headers.get('content-length')
    if declared and declared.isdigit() and int(declared) > max_bytes:
        raise PayloadTooLarge(f"Request body exceeds {max_bytes} bytes")

    # chunked uploads carry no content-length, so count while reading
    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        if len(body) > max_bytes:
            raise PayloadTooLarge(f"Request body exceeds {max_bytes} bytes")
    if not body:
        raise BadRequest("Query is required")

    try:
        return json.loads(body)
    except ValueError as exc:
        raise BadRequest("Request body must be valid JSON", details=str(exc)) from None


def parse_query_request(payload: Any) -> Tuple[str, Optional[Dict[str, Any]]]:
    """Pull ``query`` and ``parameters`` out of a decoded body."""
    if not isinstance(payload, dict):
        raise BadRequest("Request body must be a JSON object")

    query = payload.get('query')
    if query is None or query == '':
        raise BadRequest("Query is required")
    if not isinstance(query, str):
        raise BadRequest("Query must be a string")

    parameters = payload.get('parameters')
    # Validate now so malformed parameters never reach the pool
    build_parameters(parameters)
    return query, parameters


def encode_rows(rows: List[Row]) -> Any:
    return jsonable_encoder(rows, custom_encoder=ROW_ENCODERS)


# -------------------------
# Routes
# -------------------------
@router.get("/")
def get_root(
    settings: BridgeSettings = Depends(get_settings),
    pool: PoolManager = Depends(get_pool),
):
    body = {
        "status": pool.status,
        "service": settings.service_name,
        "message": "MSSQL Bridge is running",
        "connected": pool.connected,
    }
    if pool.status == 'degraded':
        body["last_error"] = pool.last_error
    return body


@router.get("/health")
def get_health(
    settings: BridgeSettings = Depends(get_settings),
    pool: PoolManager = Depends(get_pool),
):
    body = {
        "status": pool.status,
        "service": settings.service_name,
        "connected": pool.connected,
    }
    if pool.status == 'degraded':
        body["last_error"] = pool.last_error
    return body


@router.post("/")
async def run_query(
    request: Request,
    settings: BridgeSettings = Depends(get_settings),
    executor: QueryExecutor = Depends(get_executor),
):
    payload = await read_payload(request, settings.max_body_bytes)
    query, parameters = parse_query_request(payload)

    try:
        rows = await run_in_threadpool(executor.execute, query, parameters)
    except BridgeError:
        raise
    except Exception as exc:
        raise BridgeError(str(exc) or type(exc).__name__) from exc

    return JSONResponse(content=encode_rows(rows))


def attach_to_app(app) -> None:
    """Include bridge routes on an existing FastAPI app."""
    app.include_router(router)
