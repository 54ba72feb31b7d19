"""Ad hoc query execution against the shared pool."""
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple
import logging

from sqlalchemy.exc import DBAPIError, SQLAlchemyError

from mssql_bridge.db.connection import PoolManager
from mssql_bridge.db.parameters import ScalarParameter, build_parameters
from mssql_bridge.errors import QueryExecutionError

logger = logging.getLogger(__name__)

QUERY_LOG_PREVIEW = 100

Row = Dict[str, Any]


def build_statement(query: str, params: Sequence[ScalarParameter]) -> Tuple[str, Optional[Dict[str, Any]]]:
    """
    Return the SQL to send to the driver plus its bind values.

    Without parameters the query goes through untouched. With parameters
    it is wrapped in ``sp_executesql`` so the server binds ``@name``
    placeholders; the query text and every value travel as bind values
    and are never spliced into SQL here.

    Example:
        >>> sql, bind = build_statement("SELECT * FROM t WHERE id = @id", build_parameters({'id': 5}))
        >>> sql
        'EXEC sp_executesql %(stmt)s, %(decl)s, @id = %(p0)s'
    """
    if not params:
        return query, None

    bind: Dict[str, Any] = {
        'stmt': query,
        'decl': ', '.join(p.declaration for p in params),
    }
    assignments = []
    for i, param in enumerate(params):
        key = f"p{i}"
        bind[key] = param.value
        assignments.append(f"@{param.name} = %({key})s")

    sql = "EXEC sp_executesql %(stmt)s, %(decl)s, " + ", ".join(assignments)
    return sql, bind


def to_rows(columns: Sequence[str], records) -> List[Row]:
    """
    Turn positional records into column -> value dicts.

    A column name that appears more than once (``SELECT a.id, b.id``)
    maps to a list holding every value in column order.
    """
    duplicated = {name for name in columns if columns.count(name) > 1}
    rows = []
    for record in records:
        row: Row = {}
        for name, value in zip(columns, record):
            if name in duplicated:
                row.setdefault(name, []).append(value)
            else:
                row[name] = value
        rows.append(row)
    return rows


def driver_message(exc: BaseException) -> str:
    """Best-effort plain message from a driver exception."""
    orig = getattr(exc, 'orig', None) or exc
    args = getattr(orig, 'args', ())
    # pymssql: (error number, b"message...DB-Lib error message ...")
    if len(args) >= 2 and isinstance(args[1], (bytes, bytearray)):
        text = args[1].decode('utf-8', errors='replace')
        return text.split('DB-Lib error message')[0].strip() or str(orig)
    if args and isinstance(args[0], str):
        return args[0]
    return str(orig)


class QueryExecutor:
    """Runs one query per call, each in its own committed transaction."""

    def __init__(self, pool: PoolManager):
        self.pool = pool

    def execute(self, query: str, parameters: Optional[Mapping[str, Any]] = None) -> List[Row]:
        """
        Execute a query and return its first recordset.

        Args:
            query: T-SQL text; parameters are referenced as ``@name``
            parameters: name -> scalar value

        Returns:
            Rows as dicts (column -> value). Empty list when the statement
            returns no rows.

        Raises:
            BadRequest: parameters are not scalar
            PoolConnectionError: no database session could be established
            QueryExecutionError: the driver rejected or failed the query
        """
        params = build_parameters(parameters)
        sql, bind = build_statement(query, params)

        logger.info("Executing query: %s...", query[:QUERY_LOG_PREVIEW])

        engine = None
        try:
            with self.pool.connection() as conn:
                engine = conn.engine
                if bind is None:
                    result = conn.execution_options(no_parameters=True).exec_driver_sql(sql)
                else:
                    result = conn.exec_driver_sql(sql, bind)
                rows = to_rows(list(result.keys()), result) if result.returns_rows else []
        except DBAPIError as exc:
            if exc.connection_invalidated and engine is not None:
                self.pool.mark_disconnected(engine, exc)
            raise QueryExecutionError(driver_message(exc), original=exc) from exc
        except SQLAlchemyError as exc:
            raise QueryExecutionError(str(exc), original=exc) from exc

        logger.info("Query executed successfully, returned %d rows", len(rows))
        return rows
