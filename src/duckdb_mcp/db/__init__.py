"""Database connectivity and introspection."""

from duckdb_mcp.db.connection import MEMORY_PATH, DatabaseError, DuckDBManager
from duckdb_mcp.db.introspection import get_schema, get_tables

__all__ = [
    "MEMORY_PATH",
    "DatabaseError",
    "DuckDBManager",
    "get_schema",
    "get_tables",
]
