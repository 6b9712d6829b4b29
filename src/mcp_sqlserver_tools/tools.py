"""
Tool handlers for SQL Server introspection and query execution
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .database import SqlServerDatabase
from .errors import InvalidParams
from .registry import ToolRegistry, optional_mapping, optional_str, require_str

DEFAULT_SCHEMA = "dbo"

registry = ToolRegistry()


class _Payload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class TableInfo(_Payload):
    schema_name: str = Field(alias="schema")
    name: str
    type: str


class ColumnInfo(_Payload):
    name: str
    data_type: str
    max_length: Optional[int] = None
    precision: Optional[int] = None
    scale: Optional[int] = None
    is_nullable: bool
    is_identity: bool
    is_primary_key: bool


class ProcedureInfo(_Payload):
    schema_name: str = Field(alias="schema")
    name: str


DATABASES_SQL = "SELECT name FROM sys.databases WHERE database_id > 4"

TABLES_SQL = """
    SELECT t.TABLE_SCHEMA, t.TABLE_NAME, t.TABLE_TYPE
    FROM INFORMATION_SCHEMA.TABLES t
    ORDER BY t.TABLE_SCHEMA, t.TABLE_NAME
"""

COLUMNS_SQL = """
    SELECT
        c.COLUMN_NAME,
        c.DATA_TYPE,
        c.CHARACTER_MAXIMUM_LENGTH,
        c.NUMERIC_PRECISION,
        c.NUMERIC_SCALE,
        c.IS_NULLABLE,
        COLUMNPROPERTY(OBJECT_ID(QUOTENAME(c.TABLE_SCHEMA) + '.' + QUOTENAME(c.TABLE_NAME)), c.COLUMN_NAME, 'IsIdentity') AS IS_IDENTITY,
        CASE WHEN pk.COLUMN_NAME IS NOT NULL THEN 1 ELSE 0 END AS IS_PRIMARY_KEY
    FROM INFORMATION_SCHEMA.COLUMNS c
    LEFT JOIN (
        SELECT ku.TABLE_CATALOG, ku.TABLE_SCHEMA, ku.TABLE_NAME, ku.COLUMN_NAME
        FROM INFORMATION_SCHEMA.TABLE_CONSTRAINTS tc
        JOIN INFORMATION_SCHEMA.KEY_COLUMN_USAGE ku
            ON tc.CONSTRAINT_TYPE = 'PRIMARY KEY'
            AND tc.CONSTRAINT_NAME = ku.CONSTRAINT_NAME
    ) pk
        ON c.TABLE_CATALOG = pk.TABLE_CATALOG
        AND c.TABLE_SCHEMA = pk.TABLE_SCHEMA
        AND c.TABLE_NAME = pk.TABLE_NAME
        AND c.COLUMN_NAME = pk.COLUMN_NAME
    WHERE c.TABLE_SCHEMA = ? AND c.TABLE_NAME = ?
    ORDER BY c.ORDINAL_POSITION
"""

PROCEDURES_SQL = """
    SELECT SCHEMA_NAME(p.schema_id) AS [Schema], p.name AS [Name]
    FROM sys.procedures p
    ORDER BY [Schema], [Name]
"""

PROCEDURE_DEFINITION_SQL = """
    SELECT pm.definition AS [Definition]
    FROM sys.procedures p
    INNER JOIN sys.sql_modules pm ON p.object_id = pm.object_id
    WHERE SCHEMA_NAME(p.schema_id) = ? AND p.name = ?
"""


@registry.tool(
    name="get_databases",
    description="List all available SQL Server databases, response is in jsonrpc 2.0 format",
)
async def get_databases(db: SqlServerDatabase, arguments: Dict[str, Any]) -> Dict[str, Any]:
    rows = await db.fetch_all(DATABASES_SQL)
    return {"databases": [row["name"] for row in rows]}


@registry.tool(
    name="get_tables",
    description="List all tables in a specified database",
    parameters={"database": "Database name"},
    required=["database"],
    missing_message="Database name is required",
)
async def get_tables(db: SqlServerDatabase, arguments: Dict[str, Any]) -> Dict[str, Any]:
    database = require_str(arguments, "database")
    rows = await db.fetch_all(TABLES_SQL, database=database)
    tables = [
        TableInfo(schema_name=row["TABLE_SCHEMA"], name=row["TABLE_NAME"], type=row["TABLE_TYPE"])
        for row in rows
    ]
    return {"tables": [table.to_json() for table in tables]}


@registry.tool(
    name="get_columns",
    description="List all columns in a specified table",
    parameters={
        "database": "Database name",
        "schema": "Optional schema name, defaults to 'dbo'",
        "table": "Table name",
    },
    required=["database", "table"],
    missing_message="Database and Table Parameters are required",
)
async def get_columns(db: SqlServerDatabase, arguments: Dict[str, Any]) -> Dict[str, Any]:
    database = require_str(arguments, "database")
    table = require_str(arguments, "table")
    schema = optional_str(arguments, "schema", DEFAULT_SCHEMA)

    rows = await db.fetch_all(COLUMNS_SQL, schema, table, database=database)
    columns = [
        ColumnInfo(
            name=row["COLUMN_NAME"],
            data_type=row["DATA_TYPE"],
            max_length=row["CHARACTER_MAXIMUM_LENGTH"],
            precision=row["NUMERIC_PRECISION"],
            scale=row["NUMERIC_SCALE"],
            is_nullable=row["IS_NULLABLE"] == "YES",
            is_identity=row["IS_IDENTITY"] == 1,
            is_primary_key=row["IS_PRIMARY_KEY"] == 1,
        )
        for row in rows
    ]
    return {"columns": [column.to_json() for column in columns]}


@registry.tool(
    name="get_procedures",
    description="List all stored procedures in a specified database",
    parameters={
        "database": "Database name",
        "schema": "Optional schema name, defaults to 'dbo'",
    },
    required=["database"],
    missing_message="Database name is required",
)
async def get_procedures(db: SqlServerDatabase, arguments: Dict[str, Any]) -> Dict[str, Any]:
    # schema is advertised but procedures are listed across all schemas
    database = require_str(arguments, "database")
    rows = await db.fetch_all(PROCEDURES_SQL, database=database)
    procedures = [ProcedureInfo(schema_name=row["Schema"], name=row["Name"]) for row in rows]
    return {"procedures": [procedure.to_json() for procedure in procedures]}


@registry.tool(
    name="get_procedure_definition",
    description="Get the definition of a stored procedure",
    parameters={
        "database": "Database name",
        "schema": "Schema name",
        "name": "Procedure name",
    },
    required=["database", "schema", "name"],
    missing_message="Database, schema and procedure name are required",
)
async def get_procedure_definition(db: SqlServerDatabase, arguments: Dict[str, Any]) -> Dict[str, Any]:
    database = require_str(arguments, "database")
    schema = require_str(arguments, "schema")
    name = require_str(arguments, "name")

    rows = await db.fetch_all(PROCEDURE_DEFINITION_SQL, schema, name, database=database)
    if not rows:
        raise InvalidParams("Procedure not found")
    return {"definition": rows[0]["Definition"]}


@registry.tool(
    name="execute_database_query",
    description="Execute a SQL query in the context of a specific database",
    parameters={
        "database": "Database name",
        "query": "SQL query to execute",
    },
    required=["database", "query"],
    missing_message="Parameters are required",
)
async def execute_database_query(db: SqlServerDatabase, arguments: Dict[str, Any]) -> Dict[str, Any]:
    database = require_str(arguments, "database")
    query = require_str(arguments, "query")
    return {"results": await db.fetch_all(query, database=database)}


@registry.tool(
    name="execute_system_query",
    description="Execute a SQL query at the server instance level (no database context required)",
    parameters={"query": "SQL query to execute"},
    required=["query"],
    missing_message="SQL query is required",
)
async def execute_system_query(db: SqlServerDatabase, arguments: Dict[str, Any]) -> Dict[str, Any]:
    query = require_str(arguments, "query")
    return {"results": await db.fetch_all(query)}


@registry.tool(
    name="execute_procedure",
    description="Execute a stored procedure",
    parameters={
        "database": "Database name",
        "schema": "Optional schema name, defaults to 'dbo'",
        "procedure": "Procedure name",
        "parameters": "Dictionary of parameter names and values",
    },
    required=["database", "procedure"],
    missing_message="Database and Procedure Parameters are required",
)
async def execute_procedure(db: SqlServerDatabase, arguments: Dict[str, Any]) -> Dict[str, Any]:
    database = require_str(arguments, "database")
    procedure = require_str(arguments, "procedure")
    schema = optional_str(arguments, "schema", DEFAULT_SCHEMA)
    parameters = optional_mapping(arguments, "parameters")

    rows = await db.call_procedure(schema, procedure, parameters, database=database)
    return {"results": rows}
