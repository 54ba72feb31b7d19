"""Database connection pool and query execution for the bridge."""

from mssql_bridge.db.connection import PoolManager, create_mssql_engine
from mssql_bridge.db.queries import QueryExecutor

__all__ = ['PoolManager', 'create_mssql_engine', 'QueryExecutor']
