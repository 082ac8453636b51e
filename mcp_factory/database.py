"""Build CRUD tool specs and handler fragments from a relational schema.

Schema reading is a strategy chosen once from the connection string
(SqliteIntrospector or PostgresIntrospector, both backed by SQLAlchemy's
inspector). Code generation is pure: build_database_server(conn, tables)
turns reflected tables into:

  health_check                       always, first
  get_<t> / update_<t> / delete_<t>  only with exactly one primary key column
  list_<t> / create_<t>              always

The generated SQL differs by dialect only in placeholders (? vs $1, $2 ...)
and in how results come back (lastrowid/rowcount vs RETURNING *). Values are
always bound; identifiers come from introspection and are quoted here.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import create_engine, inspect
from sqlalchemy.exc import CompileError, SQLAlchemyError

from .errors import IntrospectionError
from .models import (
    ColumnInfo,
    DatabaseDialect,
    JsonSchema,
    JsonSchemaProperty,
    TableInfo,
    ToolSpec,
)
from .naming import deduplicate_names, safe_table_name, unique_identifiers
from .schema_parser import python_type

logger = logging.getLogger(__name__)

POSTGRES_PREFIXES = ("postgres://", "postgresql://")
POSTGRES_SCHEMA = "public"
POSTGRES_EXTRA_HINT = 'install the PostgreSQL driver with: pip install "mcp-factory[postgres]"'

DEFAULT_LIST_LIMIT = 100

# Substrings of the lowercased column type, checked in order
_TYPE_RULES: list[tuple[tuple[str, ...], str]] = [
    (("int", "integer", "serial", "bigint", "smallint"), "integer"),
    (("real", "double", "float", "decimal", "numeric"), "number"),
    (("bool",), "boolean"),
    (("json", "jsonb"), "object"),
    (("array", "[]"), "array"),
]


def detect_dialect(conn: str) -> DatabaseDialect:
    """postgres:// or postgresql:// is PostgreSQL; anything else a SQLite path."""
    if conn.startswith(POSTGRES_PREFIXES):
        return DatabaseDialect.POSTGRESQL
    return DatabaseDialect.SQLITE


def column_json_type(column: ColumnInfo) -> str:
    """JSON Schema type of a column (the ToolSpec projection)."""
    type_lower = column.data_type.lower()
    for needles, json_type in _TYPE_RULES:
        if any(needle in type_lower for needle in needles):
            return json_type
    return "string"


def column_python_type(column: ColumnInfo) -> str:
    """Python annotation of a column (the handler projection)."""
    return python_type(column_json_type(column))


def quote_identifier(name: str) -> str:
    """Double-quote an introspected identifier for both dialects."""
    return '"' + name.replace('"', '""') + '"'


# ---------------------------------------------------------------------------
# Introspection
# ---------------------------------------------------------------------------

@runtime_checkable
class SchemaIntrospector(Protocol):
    """Reads table metadata for one dialect."""

    dialect: DatabaseDialect

    async def get_tables(self) -> list[TableInfo]:
        ...


def _type_name(column_type: Any) -> str:
    # untyped SQLite columns reflect as NullType, which cannot be rendered
    try:
        return str(column_type)
    except CompileError:
        return ""


def _reflect_tables(url: str, schema: Optional[str] = None) -> list[TableInfo]:
    """Reflect every table through SQLAlchemy's inspector. Blocking."""
    engine = create_engine(url)
    try:
        inspector = inspect(engine)
        tables: list[TableInfo] = []
        for table_name in sorted(inspector.get_table_names(schema=schema)):
            pk = inspector.get_pk_constraint(table_name, schema=schema) or {}
            pk_columns = set(pk.get("constrained_columns") or [])

            foreign_keys: dict[str, str] = {}
            for fk in inspector.get_foreign_keys(table_name, schema=schema):
                for local, remote in zip(fk["constrained_columns"], fk["referred_columns"]):
                    foreign_keys[local] = f"{fk['referred_table']}.{remote}"

            columns = [
                ColumnInfo(
                    name=col["name"],
                    data_type=_type_name(col["type"]),
                    is_nullable=bool(col.get("nullable", True)),
                    is_primary_key=col["name"] in pk_columns,
                    default_value=col.get("default"),
                    foreign_key=foreign_keys.get(col["name"]),
                )
                for col in inspector.get_columns(table_name, schema=schema)
            ]
            tables.append(TableInfo(name=table_name, columns=columns, schema_name=schema))
        return tables
    finally:
        engine.dispose()


class SqliteIntrospector:
    """Reflects a SQLite database file."""

    dialect = DatabaseDialect.SQLITE

    def __init__(self, path: str) -> None:
        self.path = path

    async def get_tables(self) -> list[TableInfo]:
        if not Path(self.path).is_file():
            raise IntrospectionError(f"SQLite database not found: {self.path}")
        try:
            return await asyncio.to_thread(_reflect_tables, f"sqlite:///{self.path}")
        except SQLAlchemyError as e:
            raise IntrospectionError(f"Failed to read SQLite schema from {self.path}: {e}") from e


class PostgresIntrospector:
    """Reflects the public schema of a PostgreSQL database."""

    dialect = DatabaseDialect.POSTGRESQL

    def __init__(self, url: str, schema: str = POSTGRES_SCHEMA) -> None:
        self.url = url
        self.schema = schema

    @property
    def sqlalchemy_url(self) -> str:
        # SQLAlchemy only accepts the postgresql:// spelling
        if self.url.startswith("postgres://"):
            return "postgresql://" + self.url[len("postgres://"):]
        return self.url

    async def get_tables(self) -> list[TableInfo]:
        try:
            return await asyncio.to_thread(_reflect_tables, self.sqlalchemy_url, self.schema)
        except ImportError as e:
            raise IntrospectionError(f"PostgreSQL driver unavailable: {e}", POSTGRES_EXTRA_HINT) from e
        except SQLAlchemyError as e:
            raise IntrospectionError(f"Failed to read PostgreSQL schema: {e}") from e


def create_introspector(conn: str) -> SchemaIntrospector:
    """Pick the introspection strategy for a connection string."""
    if detect_dialect(conn) == DatabaseDialect.POSTGRESQL:
        return PostgresIntrospector(conn)
    return SqliteIntrospector(conn)


# ---------------------------------------------------------------------------
# Tool specs
# ---------------------------------------------------------------------------

def _pk_property(table: TableInfo, pk: ColumnInfo, verb: str) -> JsonSchemaProperty:
    return JsonSchemaProperty(
        type=column_json_type(pk),
        description=f"The {pk.name} of the {table.name} record{verb}",
    )


def _data_property(columns: list[ColumnInfo], verb: str) -> JsonSchemaProperty:
    names = ", ".join(c.name for c in columns) or "none"
    return JsonSchemaProperty(
        type="object",
        description=f"Column values {verb} (known columns: {names})",
    )


def table_tool_specs(table: TableInfo, dialect: DatabaseDialect, safe: Optional[str] = None) -> list[ToolSpec]:
    """ToolSpecs for one table, in get/list/create/update/delete order.

    `safe` overrides the name fragment when another table already claimed it.
    """
    safe = safe or safe_table_name(table.name)
    deps = _dialect_dependencies(dialect)
    pk = table.primary_key
    specs: list[ToolSpec] = []

    if pk is not None:
        pk_arg = unique_identifiers([pk.name])[0]
        specs.append(ToolSpec(
            name=f"get_{safe}",
            description=f"Get a single {table.name} record by {pk.name}",
            input_schema=JsonSchema(properties={pk_arg: _pk_property(table, pk, "")}, required=[pk_arg]),
            dependencies=deps,
        ))

    specs.append(ToolSpec(
        name=f"list_{safe}",
        description=f"List {table.name} records with pagination",
        input_schema=JsonSchema(properties={
            "limit": JsonSchemaProperty(
                type="integer", description="Maximum number of records to return", default=DEFAULT_LIST_LIMIT,
            ),
            "offset": JsonSchemaProperty(type="integer", description="Number of records to skip", default=0),
        }),
        dependencies=deps,
    ))

    specs.append(ToolSpec(
        name=f"create_{safe}",
        description=f"Create a new {table.name} record",
        input_schema=JsonSchema(
            properties={"data": _data_property(table.columns, "for the new record")},
            required=["data"],
        ),
        dependencies=deps,
    ))

    if pk is not None:
        pk_arg, data_arg = unique_identifiers([pk.name, "data"])
        specs.append(ToolSpec(
            name=f"update_{safe}",
            description=f"Update an existing {table.name} record",
            input_schema=JsonSchema(
                properties={
                    pk_arg: _pk_property(table, pk, " to update"),
                    data_arg: _data_property(table.non_pk_columns, "to change"),
                },
                required=[pk_arg, data_arg],
            ),
            dependencies=deps,
        ))
        pk_arg = unique_identifiers([pk.name])[0]
        specs.append(ToolSpec(
            name=f"delete_{safe}",
            description=f"Delete a {table.name} record",
            input_schema=JsonSchema(
                properties={pk_arg: _pk_property(table, pk, " to delete")}, required=[pk_arg],
            ),
            dependencies=deps,
        ))

    return specs


def health_check_spec(dialect: DatabaseDialect) -> ToolSpec:
    return ToolSpec(
        name="health_check",
        description="Check database connectivity and list available tables",
        dependencies=_dialect_dependencies(dialect),
    )


def _dialect_dependencies(dialect: DatabaseDialect) -> list[str]:
    return ["asyncpg"] if dialect == DatabaseDialect.POSTGRESQL else []


# ---------------------------------------------------------------------------
# Handler fragments
# ---------------------------------------------------------------------------

class _SqlWriter:
    """Dialect-specific pieces of the generated handler bodies."""

    def __init__(self, dialect: DatabaseDialect) -> None:
        self.dialect = dialect

    @property
    def is_postgres(self) -> bool:
        return self.dialect == DatabaseDialect.POSTGRESQL

    def table_ref(self, table: TableInfo) -> str:
        if self.is_postgres and table.schema_name:
            return f"{quote_identifier(table.schema_name)}.{quote_identifier(table.name)}"
        return quote_identifier(table.name)

    def placeholder(self, index: int) -> str:
        return f"${index}" if self.is_postgres else "?"

    def fetch_one(self, sql: str, args: list[str], target: str) -> list[str]:
        """Lines binding one row (or None) to `target`."""
        if self.is_postgres:
            call_args = ", ".join([repr(sql), *args])
            return [
                "_pool = await get_pool()",
                "async with _pool.acquire() as _conn:",
                f"    {target} = await _conn.fetchrow({call_args})",
            ]
        return [
            "with closing(get_connection()) as _conn:",
            f"    {target} = _conn.execute({sql!r}, ({''.join(a + ', ' for a in args)})).fetchone()",
        ]


def _columns_literal(columns: list[ColumnInfo]) -> str:
    """{'name': '"name"', ...}: the only identifiers user data can reach."""
    return "{" + ", ".join(f"{c.name!r}: {quote_identifier(c.name)!r}" for c in columns) + "}"


def _filtered_values(columns: list[ColumnInfo], data_arg: str) -> list[str]:
    return [
        f"_columns = {_columns_literal(columns)}",
        f"_values = {{k: v for k, v in {data_arg}.items() if k in _columns}}",
        "if not _values:",
        '    return _error("No valid columns provided")',
    ]


def _get_fragment(writer: _SqlWriter, table: TableInfo, pk: ColumnInfo) -> str:
    pk_arg = unique_identifiers([pk.name])[0]
    sql = f"SELECT * FROM {writer.table_ref(table)} WHERE {quote_identifier(pk.name)} = {writer.placeholder(1)}"
    lines = writer.fetch_one(sql, [pk_arg], "_row")
    lines += [
        "if _row is None:",
        '    return _error("Not found")',
        "return _text(dict(_row))",
    ]
    return "\n".join(lines) + "\n"


def _list_fragment(writer: _SqlWriter, table: TableInfo) -> str:
    sql = f"SELECT * FROM {writer.table_ref(table)} LIMIT {writer.placeholder(1)} OFFSET {writer.placeholder(2)}"
    if writer.is_postgres:
        lines = [
            "_pool = await get_pool()",
            "async with _pool.acquire() as _conn:",
            f"    _rows = await _conn.fetch({sql!r}, limit, offset)",
        ]
    else:
        lines = [
            "with closing(get_connection()) as _conn:",
            f"    _rows = _conn.execute({sql!r}, (limit, offset)).fetchall()",
        ]
    lines.append('return _text({"data": [dict(r) for r in _rows], "count": len(_rows)})')
    return "\n".join(lines) + "\n"


def _create_fragment(writer: _SqlWriter, table: TableInfo) -> str:
    lines = _filtered_values(table.columns, "data")
    prefix = f"INSERT INTO {writer.table_ref(table)} ("
    if writer.is_postgres:
        lines += [
            '_placeholders = ", ".join(f"${i}" for i in range(1, len(_values) + 1))',
            f'_sql = {prefix!r} + ", ".join(_columns[k] for k in _values) + ") VALUES (" + _placeholders + ") RETURNING *"',
            "_pool = await get_pool()",
            "async with _pool.acquire() as _conn:",
            "    _row = await _conn.fetchrow(_sql, *_values.values())",
            "return _text(dict(_row) if _row is not None else {})",
        ]
    else:
        lines += [
            '_placeholders = ", ".join("?" for _ in _values)',
            f'_sql = {prefix!r} + ", ".join(_columns[k] for k in _values) + ") VALUES (" + _placeholders + ")"',
            "with closing(get_connection()) as _conn:",
            "    with _conn:",
            "        _cursor = _conn.execute(_sql, tuple(_values.values()))",
            'return _text({"id": _cursor.lastrowid, "changes": _cursor.rowcount})',
        ]
    return "\n".join(lines) + "\n"


def _update_fragment(writer: _SqlWriter, table: TableInfo, pk: ColumnInfo) -> str:
    pk_arg, data_arg = unique_identifiers([pk.name, "data"])
    lines = _filtered_values(table.non_pk_columns, data_arg)
    prefix = f"UPDATE {writer.table_ref(table)} SET "
    where = f" WHERE {quote_identifier(pk.name)} = "
    if writer.is_postgres:
        lines += [
            '_assignments = ", ".join(f"{_columns[k]} = ${i}" for i, k in enumerate(_values, start=1))',
            f'_sql = {prefix!r} + _assignments + {(where + "$")!r} + str(len(_values) + 1) + " RETURNING *"',
            "_pool = await get_pool()",
            "async with _pool.acquire() as _conn:",
            f"    _row = await _conn.fetchrow(_sql, *_values.values(), {pk_arg})",
            "if _row is None:",
            '    return _error("Not found")',
            "return _text(dict(_row))",
        ]
    else:
        lines += [
            '_assignments = ", ".join(f"{_columns[k]} = ?" for k in _values)',
            f"_sql = {prefix!r} + _assignments + {(where + '?')!r}",
            "with closing(get_connection()) as _conn:",
            "    with _conn:",
            f"        _cursor = _conn.execute(_sql, (*_values.values(), {pk_arg}))",
            'return _text({"changes": _cursor.rowcount})',
        ]
    return "\n".join(lines) + "\n"


def _delete_fragment(writer: _SqlWriter, table: TableInfo, pk: ColumnInfo) -> str:
    pk_arg = unique_identifiers([pk.name])[0]
    sql = f"DELETE FROM {writer.table_ref(table)} WHERE {quote_identifier(pk.name)} = {writer.placeholder(1)}"
    if writer.is_postgres:
        lines = [
            "_pool = await get_pool()",
            "async with _pool.acquire() as _conn:",
            f"    _rows = await _conn.fetch({(sql + ' RETURNING *')!r}, {pk_arg})",
            'return _text({"deleted": len(_rows) > 0, "changes": len(_rows)})',
        ]
    else:
        lines = [
            "with closing(get_connection()) as _conn:",
            "    with _conn:",
            f"        _cursor = _conn.execute({sql!r}, ({pk_arg},))",
            'return _text({"deleted": _cursor.rowcount > 0, "changes": _cursor.rowcount})',
        ]
    return "\n".join(lines) + "\n"


def _health_check_fragment(writer: _SqlWriter, tables: list[TableInfo]) -> str:
    table_names = [t.name for t in tables]
    if writer.is_postgres:
        probe = [
            "    _pool = await get_pool()",
            "    async with _pool.acquire() as _conn:",
            '        await _conn.fetchval("SELECT 1")',
        ]
        driver_error = "(asyncpg.PostgresError, OSError, RuntimeError)"
    else:
        probe = [
            "    with closing(get_connection()) as _conn:",
            '        _conn.execute("SELECT 1")',
        ]
        driver_error = "sqlite3.Error"
    lines = [
        "from datetime import datetime, timezone",
        "",
        "try:",
        *probe,
        f"except {driver_error} as _exc:",
        "    return _text({",
        '        "status": "unhealthy",',
        '        "error": str(_exc),',
        '        "timestamp": datetime.now(timezone.utc).isoformat(),',
        "    })",
        "return _text({",
        '    "status": "healthy",',
        '    "server": SERVER_NAME,',
        f'    "database_type": {writer.dialect.value!r},',
        f'    "tables_available": {table_names!r},',
        '    "timestamp": datetime.now(timezone.utc).isoformat(),',
        "})",
    ]
    return "\n".join(lines) + "\n"


def render_setup_code(conn: str, dialect: DatabaseDialect) -> str:
    """Connection helpers for the generated server."""
    if dialect == DatabaseDialect.POSTGRESQL:
        return "\n".join([
            "import asyncio",
            "",
            "import asyncpg",
            "",
            "_pool: Optional[asyncpg.Pool] = None",
            "_pool_lock = asyncio.Lock()",
            "",
            "",
            "async def get_pool() -> asyncpg.Pool:",
            '    """Connection pool, created once on first use from DATABASE_URL."""',
            "    global _pool",
            "    async with _pool_lock:",
            "        if _pool is None:",
            '            database_url = os.environ.get("DATABASE_URL")',
            "            if not database_url:",
            '                raise RuntimeError("Missing required environment variable: DATABASE_URL")',
            "            _pool = await asyncpg.create_pool(database_url)",
            "    return _pool",
        ]) + "\n"
    return "\n".join([
        "import sqlite3",
        "from contextlib import closing",
        "from pathlib import Path",
        "",
        f"DEFAULT_DATABASE_PATH = {conn!r}",
        "",
        "",
        "def get_connection() -> sqlite3.Connection:",
        '    """New connection per call; DATABASE_PATH overrides the generation-time path.',
        "",
        "    Opened read-write without create: a missing file raises",
        "    sqlite3.OperationalError instead of starting an empty database.",
        '    """',
        '    path = Path(os.environ.get("DATABASE_PATH", DEFAULT_DATABASE_PATH)).resolve()',
        '    conn = sqlite3.connect(f"{path.as_uri()}?mode=rw", uri=True)',
        "    conn.row_factory = sqlite3.Row",
        "    return conn",
    ]) + "\n"


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

class DatabaseServer(BaseModel):
    """Everything the database path hands to the assembler."""
    model_config = ConfigDict(frozen=True)

    dialect: DatabaseDialect
    tables: list[TableInfo] = Field(default_factory=list)
    tool_specs: list[ToolSpec] = Field(default_factory=list)
    implementations: dict[str, str] = Field(default_factory=dict)
    setup_code: str = ""
    auth_env_vars: list[str] = Field(default_factory=list)
    dependencies: list[str] = Field(default_factory=list)


def build_database_server(conn: str, tables: list[TableInfo]) -> DatabaseServer:
    """Tool specs, handler fragments and setup code for the given tables. Pure."""
    dialect = detect_dialect(conn)
    writer = _SqlWriter(dialect)

    tool_specs = [health_check_spec(dialect)]
    implementations = {"health_check": _health_check_fragment(writer, tables)}

    # "Users" and "users" both map to users; later tables get users_2, ...
    safe_names = deduplicate_names(tables, lambda t: safe_table_name(t.name))
    for table, safe in zip(tables, safe_names):
        if safe != safe_table_name(table.name):
            logger.warning("Table %s collides with another table name; tools use %s", table.name, safe)
        pk = table.primary_key
        if pk is None:
            logger.warning(
                "Table %s has no single-column primary key; only list/create tools generated",
                table.name,
            )

        tool_specs.extend(table_tool_specs(table, dialect, safe))
        if pk is not None:
            implementations[f"get_{safe}"] = _get_fragment(writer, table, pk)
        implementations[f"list_{safe}"] = _list_fragment(writer, table)
        implementations[f"create_{safe}"] = _create_fragment(writer, table)
        if pk is not None:
            implementations[f"update_{safe}"] = _update_fragment(writer, table, pk)
            implementations[f"delete_{safe}"] = _delete_fragment(writer, table, pk)

    is_postgres = dialect == DatabaseDialect.POSTGRESQL
    return DatabaseServer(
        dialect=dialect,
        tables=tables,
        tool_specs=tool_specs,
        implementations=implementations,
        setup_code=render_setup_code(conn, dialect),
        auth_env_vars=["DATABASE_URL" if is_postgres else "DATABASE_PATH"],
        dependencies=_dialect_dependencies(dialect),
    )
