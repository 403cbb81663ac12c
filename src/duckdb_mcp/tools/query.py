"""SQL tools - execute-sql, analyze-query, generate-sql.

Every handler returns a CallToolResult. Database failures are reported with
isError=True and a diagnostic text; they never escape as exceptions.
"""

import json
import logging
from typing import Any

from mcp.types import CallToolResult, TextContent

from duckdb_mcp.db.connection import DuckDBManager
from duckdb_mcp.db.introspection import get_schema
from duckdb_mcp.models import DEFAULT_LIMIT
from duckdb_mcp.sql import extract_sql

logger = logging.getLogger(__name__)


def _text_result(text: str, is_error: bool = False) -> CallToolResult:
    return CallToolResult(content=[TextContent(type="text", text=text)], isError=is_error)


def _to_json(rows: list[dict[str, Any]]) -> str:
    # DuckDB returns dates, decimals and UUIDs as Python objects
    return json.dumps(rows, indent=2, default=str)


async def _execute_sql(
    database: DuckDBManager, sql: str, limit: int = DEFAULT_LIMIT
) -> CallToolResult:
    """Execute a SQL statement and return at most ``limit`` rows as JSON.

    Args:
        database: Open database manager
        sql: SQL text, possibly wrapped in a code fence
        limit: Maximum number of rows returned; applied when fetching, the
            statement itself is executed unchanged

    Returns:
        CallToolResult with the JSON rows, or isError=True with the diagnostic
    """
    final_sql = extract_sql(sql)
    logger.info(f"Executing SQL (limit {limit}): {final_sql}")

    try:
        rows = await database.query(final_sql, max_rows=limit)
    except Exception as e:
        return _text_result(f"SQL execution error: {e}", is_error=True)

    return _text_result(_to_json(rows))


async def _analyze_query(database: DuckDBManager, sql: str) -> CallToolResult:
    """Profile a statement with EXPLAIN ANALYZE and return the plan rows as JSON."""
    explain_query = f"EXPLAIN ANALYZE {extract_sql(sql)}"

    try:
        analysis = await database.query(explain_query)
    except Exception as e:
        return _text_result(f"Query analysis error: {e}", is_error=True)

    return _text_result(_to_json(analysis))


async def _generate_sql(
    database: DuckDBManager, question: str, context: str | None = None
) -> CallToolResult:
    """Package the current schema and a question into a generation payload.

    Does not call the model; the caller feeds the returned text to one.
    """
    try:
        entries = await get_schema(database)
    except Exception as e:
        return _text_result(f"Error generating SQL: {e}", is_error=True)

    schema_text = json.dumps([entry.model_dump() for entry in entries], indent=2)
    return _text_result(
        f"Schema Information:\n{schema_text}\n\n"
        f"Question: {question}\n\n"
        f"Context: {context or 'None'}\n\n"
        "Please generate a SQL query based on this information."
    )
