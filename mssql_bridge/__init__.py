"""
MSSQL Bridge: HTTP-to-SQL-Server query forwarding.

POST a JSON body ``{"query": ..., "parameters": {...}}`` and get the first
recordset back as a JSON array. One shared connection pool serves every
request.
"""

__version__ = '0.1.0'

# Make key imports available at package level
from mssql_bridge.config import BridgeSettings, load_settings
from mssql_bridge.errors import (
    BadRequest,
    BridgeError,
    PoolConnectionError,
    QueryExecutionError,
)

__all__ = [
    '__version__',
    'BridgeSettings',
    'load_settings',
    'BridgeError',
    'BadRequest',
    'PoolConnectionError',
    'QueryExecutionError',
]
