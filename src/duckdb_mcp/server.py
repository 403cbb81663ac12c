"""FastMCP server exposing a DuckDB database to MCP clients."""

import asyncio
import logging
import os
import signal
from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Annotated

from fastmcp import FastMCP
from fastmcp.exceptions import ResourceError, ToolError
from fastmcp.tools.tool import ToolResult
from mcp.server.lowlevel.helper_types import ReadResourceContents
from mcp.types import CallToolResult
from pydantic import Field
from starlette.requests import Request
from starlette.responses import JSONResponse

from duckdb_mcp.config import Settings, get_settings
from duckdb_mcp.db.connection import DuckDBManager
from duckdb_mcp.models import (
    ANALYZE_QUERY,
    DEFAULT_LIMIT,
    EXECUTE_SQL,
    GENERATE_SQL,
    OPTIMIZE_QUERY_PROMPT,
    SCHEMA_URI,
    SQL_ASSISTANT_PROMPT,
    TABLES_URI,
)
from duckdb_mcp.tools.prompts import optimize_query_prompt, sql_assistant_prompt
from duckdb_mcp.tools.query import _analyze_query, _execute_sql, _generate_sql
from duckdb_mcp.tools.resources import JSON_MIME, _read_schema, _read_tables

SERVER_NAME = "DuckDB Query Server"

INSTRUCTIONS = """
DuckDB query server.

1. Read schema://schema (or schema://tables) to learn the tables and columns.
2. Write a DuckDB SQL statement, or use the sql-assistant prompt / generate-sql tool.
3. Run it with execute-sql (rows are capped by `limit`, default 100).
4. Optionally profile it with analyze-query.
"""


def server_lifespan(
    database: DuckDBManager, db_path: str
) -> Callable[[FastMCP], AbstractAsyncContextManager[None]]:
    """Build the lifespan that owns the database handle.

    The database is opened on startup and closed on shutdown. A manager that
    is already open when the server starts (e.g. in tests) is left to its owner.
    """

    @asynccontextmanager
    async def lifespan(server: FastMCP) -> AsyncIterator[None]:
        logger = logging.getLogger(__name__)
        owns_database = not database.is_open
        if owns_database:
            await database.initialize(db_path)
            logger.info("DuckDB initialized successfully")

        try:
            yield
        finally:
            if owns_database:
                await database.close()

    return lifespan


def _unwrap(result: CallToolResult) -> ToolResult:
    """Convert a handler result to FastMCP's tool result.

    Handled failures are raised as ToolError, which the protocol layer reports
    as an isError result carrying the same text.
    """
    if result.isError:
        raise ToolError("\n".join(c.text for c in result.content if hasattr(c, "text")))
    return ToolResult(content=result.content)


def _serve_resource_reads(server: FastMCP, database: DuckDBManager) -> None:
    """Answer resources/read with the MIME type of each content block.

    FastMCP fixes a resource's MIME type at registration, but the schema
    resources answer with a text/plain diagnostic when introspection fails.
    """
    readers = {SCHEMA_URI: _read_schema, TABLES_URI: _read_tables}

    async def read_resource(uri) -> list[ReadResourceContents]:
        reader = readers.get(str(uri))
        if reader is None:
            raise ResourceError(f"Unknown resource: {uri}")
        contents = await reader(database, str(uri))
        return [ReadResourceContents(content=c.text, mime_type=c.mimeType) for c in contents]

    server._mcp_server.read_resource()(read_resource)


# =============================================================================
# Server Creation
# =============================================================================


def _create_server(
    database: DuckDBManager | None = None, settings: Settings | None = None
) -> FastMCP:
    """Create the MCP server with its resources, tools and prompts.

    Args:
        database: Database manager the handlers share. A new one is created
            when omitted.
        settings: Settings to use instead of the cached global settings.
    """
    settings = settings or get_settings()
    database = database or DuckDBManager()

    server = FastMCP(
        name=SERVER_NAME,
        instructions=INSTRUCTIONS,
        lifespan=server_lifespan(database, settings.database_path),
    )

    # =========================================================================
    # Resources
    # =========================================================================

    @server.resource(SCHEMA_URI, name="database-schema", mime_type=JSON_MIME)
    async def database_schema() -> str:
        """Columns of every table in the main schema, ordered by table and position."""
        contents = await _read_schema(database, SCHEMA_URI)
        return contents[0].text

    @server.resource(TABLES_URI, name="table-list", mime_type=JSON_MIME)
    async def table_list() -> str:
        """Names of the tables in the main schema."""
        contents = await _read_tables(database, TABLES_URI)
        return contents[0].text

    # Listing goes through the registrations above; reads keep per-content MIME types
    _serve_resource_reads(server, database)

    # =========================================================================
    # Tools
    # =========================================================================

    @server.tool(name=EXECUTE_SQL)
    async def execute_sql(
        sql: Annotated[str, Field(description="SQL query to execute against the DuckDB database")],
        limit: Annotated[
            int, Field(ge=1, description="Maximum number of rows to return")
        ] = DEFAULT_LIMIT,
    ):
        """Execute a SQL query and return the rows as JSON."""
        return _unwrap(await _execute_sql(database, sql, limit))

    @server.tool(name=GENERATE_SQL)
    async def generate_sql(
        question: Annotated[str, Field(description="Natural language question to convert to SQL")],
        context: Annotated[
            str | None, Field(description="Additional context about the query")
        ] = None,
    ):
        """Return the schema and question packaged for a model to write SQL from."""
        return _unwrap(await _generate_sql(database, question, context))

    @server.tool(name=ANALYZE_QUERY)
    async def analyze_query(
        sql: Annotated[str, Field(description="SQL query to analyze")],
    ):
        """Profile a query with EXPLAIN ANALYZE."""
        return _unwrap(await _analyze_query(database, sql))

    # =========================================================================
    # Prompts
    # =========================================================================

    @server.prompt(name=SQL_ASSISTANT_PROMPT)
    def sql_assistant(
        question: Annotated[str, Field(description="Natural language question")],
        schema: Annotated[str | None, Field(description="Database schema information")] = None,
    ) -> str:
        """Generate a bare DuckDB SQL statement for a question."""
        return sql_assistant_prompt(question, schema)

    @server.prompt(name=OPTIMIZE_QUERY_PROMPT)
    def optimize_query(
        sql: Annotated[str, Field(description="SQL query to optimize")],
        performance_issues: Annotated[
            str | None, Field(description="Known performance issues")
        ] = None,
    ) -> str:
        """Rewrite a DuckDB query for performance and explain the changes."""
        return optimize_query_prompt(sql, performance_issues)

    # Health check endpoint for HTTP deployments
    @server.custom_route("/health", methods=["GET"])
    async def health_check(request: Request) -> JSONResponse:
        return JSONResponse(
            {
                "status": "healthy",
                "service": "duckdb-mcp",
                "database_open": database.is_open,
            }
        )

    return server


def _configure_logging():
    """Configure logging before anything else.

    Logs go to stderr; stdout belongs to the stdio transport.
    """
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _handle_sigterm(signum, frame):
    # Unwind through the lifespan exactly like Ctrl-C
    raise KeyboardInterrupt


def main(database_path: str | None = None, transport: str | None = None):
    """Run the MCP server.

    Args:
        database_path: Overrides the configured database path
        transport: Overrides the configured transport ('stdio' or 'http')
    """
    _configure_logging()
    logger = logging.getLogger(__name__)

    settings = get_settings()
    if database_path is not None:
        settings = settings.model_copy(update={"database_path": database_path})
    transport = transport or settings.mcp_transport

    database = DuckDBManager()
    mcp = _create_server(database, settings)

    signal.signal(signal.SIGTERM, _handle_sigterm)
    logger.info(f"Starting {SERVER_NAME} ({transport}, database: {settings.database_path})")

    try:
        if transport == "http":
            mcp.run(
                transport="http",
                host=settings.mcp_host,
                port=settings.mcp_port,
                path=settings.mcp_path,
            )
        else:
            # Default: stdio
            mcp.run()
    except KeyboardInterrupt:
        logger.info("Shutting down gracefully...")
    finally:
        # No-op when the lifespan already released the handle
        asyncio.run(database.close())


if __name__ == "__main__":
    main()
