"""Catalog introspection queries against information_schema."""

from duckdb_mcp.db.connection import DuckDBManager
from duckdb_mcp.models import SchemaEntry, TableEntry

# Only the primary schema is exposed
PRIMARY_SCHEMA = "main"

SCHEMA_QUERY = f"""
SELECT
  table_name,
  column_name,
  data_type,
  is_nullable,
  column_default
FROM
  information_schema.columns
WHERE
  table_schema = '{PRIMARY_SCHEMA}'
ORDER BY
  table_name,
  ordinal_position;
"""

TABLES_QUERY = f"""
SELECT DISTINCT table_name
FROM information_schema.columns
WHERE table_schema = '{PRIMARY_SCHEMA}'
ORDER BY table_name;
"""


async def get_schema(database: DuckDBManager) -> list[SchemaEntry]:
    """Return every column of every table in the primary schema.

    Raises:
        DatabaseError: If the introspection query fails
    """
    rows = await database.query(SCHEMA_QUERY)
    return [SchemaEntry.model_validate(row) for row in rows]


async def get_tables(database: DuckDBManager) -> list[TableEntry]:
    """Return the distinct table names of the primary schema.

    Raises:
        DatabaseError: If the introspection query fails
    """
    rows = await database.query(TABLES_QUERY)
    return [TableEntry.model_validate(row) for row in rows]
