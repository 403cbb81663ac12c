"""duckdb-mcp - MCP server and Bedrock agent for natural-language queries over DuckDB."""

from duckdb_mcp.agent import AgentNotConnectedError, DuckDBAgent
from duckdb_mcp.db.connection import DuckDBManager
from duckdb_mcp.sql import extract_sql

__all__ = ["AgentNotConnectedError", "DuckDBAgent", "DuckDBManager", "extract_sql"]
