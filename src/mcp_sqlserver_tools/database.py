"""
Database access - SQL Server over pyodbc, plus row materialization
"""

import asyncio
import json
import logging
import re
from contextlib import closing
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

try:
    import pyodbc
    PYODBC_AVAILABLE = True
except ImportError:
    PYODBC_AVAILABLE = False

log = logging.getLogger(__name__)

Row = Dict[str, Any]

_PARAMETER_NAME = re.compile(r"@?[A-Za-z_][A-Za-z0-9_$#@]*")


class SqlServerDatabase:
    """Opens a fresh connection per operation and releases it on every exit path.

    Blocking driver calls run in a worker thread so the request loop only
    waits at I/O boundaries.
    """

    def __init__(self, connection_string: str, connect: Optional[Callable[[], Any]] = None):
        self.connection_string = connection_string
        self._connect = connect or self._connect_pyodbc

    async def fetch_all(self, sql: str, *params: Any, database: Optional[str] = None) -> List[Row]:
        """Run ``sql`` (optionally after switching to ``database``) and return all rows"""
        return await asyncio.to_thread(self._fetch_all, sql, params, database)

    async def call_procedure(
        self,
        schema: str,
        procedure: str,
        parameters: Dict[str, Any],
        database: Optional[str] = None,
    ) -> List[Row]:
        """Invoke a stored procedure with named parameters"""
        sql, values = build_procedure_call(schema, procedure, parameters)
        return await self.fetch_all(sql, *values, database=database)

    def _fetch_all(self, sql: str, params: Sequence[Any], database: Optional[str]) -> List[Row]:
        with closing(self._connect()) as connection:
            with closing(connection.cursor()) as cursor:
                if database is not None:
                    cursor.execute(f"USE {quote_identifier(database)}")

                log.debug("executing statement with %d parameter(s)", len(params))
                cursor.execute(sql, *params)
                return materialize_rows(cursor)

    def _connect_pyodbc(self):
        if not PYODBC_AVAILABLE:
            raise ImportError("pyodbc is required for SQL Server support. Install with: pip install pyodbc")
        return pyodbc.connect(self.connection_string, autocommit=True)


def materialize_rows(cursor) -> List[Row]:
    """Drain the cursor's first tabular result into a list of column -> value dicts.

    Column order follows the result set. NULL comes back from the driver as
    None and is kept as an explicit key, never dropped.
    """
    # row-count-only results can precede the first result set
    while cursor.description is None:
        if not cursor.nextset():
            return []

    columns = [column[0] for column in cursor.description]
    return [dict(zip(columns, record)) for record in cursor]


def quote_identifier(name: str) -> str:
    """Bracket-quote a SQL Server identifier"""
    return "[" + name.replace("]", "]]") + "]"


def procedure_parameter_value(value: Any) -> str:
    """Raw JSON text of a parameter value, which is what the procedure receives"""
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def build_procedure_call(schema: str, procedure: str, parameters: Dict[str, Any]) -> Tuple[str, List[str]]:
    assignments = []
    values = []
    for name, value in parameters.items():
        if not _PARAMETER_NAME.fullmatch(name):
            raise ValueError(f"Invalid procedure parameter name: {name}")
        if not name.startswith("@"):
            name = "@" + name
        assignments.append(f"{name} = ?")
        values.append(procedure_parameter_value(value))

    sql = f"EXEC {quote_identifier(schema)}.{quote_identifier(procedure)}"
    if assignments:
        sql += " " + ", ".join(assignments)
    return sql, values
