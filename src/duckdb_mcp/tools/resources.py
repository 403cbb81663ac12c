"""Read-only schema resources.

Both resources report failures through their content (a text/plain diagnostic)
rather than failing the read itself.
"""

import json
import logging

from duckdb_mcp.db.connection import DuckDBManager
from duckdb_mcp.db.introspection import get_schema, get_tables
from duckdb_mcp.models import SCHEMA_URI, TABLES_URI, ResourceContent

logger = logging.getLogger(__name__)

JSON_MIME = "application/json"
TEXT_MIME = "text/plain"


async def _read_schema(database: DuckDBManager, uri: str = SCHEMA_URI) -> list[ResourceContent]:
    """Current table/column metadata of the primary schema as JSON."""
    try:
        entries = await get_schema(database)
    except Exception as e:
        logger.warning(f"Schema introspection failed: {e}")
        return [ResourceContent(uri=uri, mimeType=TEXT_MIME, text=f"Error retrieving schema: {e}")]

    payload = [entry.model_dump() for entry in entries]
    return [ResourceContent(uri=uri, mimeType=JSON_MIME, text=json.dumps(payload, indent=2))]


async def _read_tables(database: DuckDBManager, uri: str = TABLES_URI) -> list[ResourceContent]:
    """Table names of the primary schema as JSON."""
    try:
        tables = await get_tables(database)
    except Exception as e:
        logger.warning(f"Table listing failed: {e}")
        return [ResourceContent(uri=uri, mimeType=TEXT_MIME, text=f"Error retrieving tables: {e}")]

    payload = [table.model_dump() for table in tables]
    return [ResourceContent(uri=uri, mimeType=JSON_MIME, text=json.dumps(payload, indent=2))]
