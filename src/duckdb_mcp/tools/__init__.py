"""MCP tool, resource and prompt handlers."""
