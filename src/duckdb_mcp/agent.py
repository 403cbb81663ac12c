"""Agent that answers natural-language questions through the DuckDB MCP server.

Flow for :meth:`DuckDBAgent.call_bedrock`:

1. read the ``schema://schema`` resource
2. stream a SQL statement from Bedrock and assemble it
3. strip code fences from the statement
4. run it with the ``execute-sql`` tool
5. profile it with ``analyze-query`` (best effort)

Every step is awaited before the next one starts.
"""

from __future__ import annotations

import json
import logging
import os
from contextlib import AsyncExitStack
from enum import Enum
from typing import Any

from fastmcp import Client
from fastmcp.client.transports import StdioTransport
from mcp.types import CallToolResult

from duckdb_mcp.config import Settings, get_settings
from duckdb_mcp.llm.bedrock import BedrockStreamer
from duckdb_mcp.models import (
    OPTIMIZE_QUERY_PROMPT,
    SCHEMA_URI,
    TABLES_URI,
    AnalyzeQueryCall,
    ExecuteSqlCall,
    GenerateSqlCall,
    ToolCallRequest,
)
from duckdb_mcp.sql import extract_sql
from duckdb_mcp.tools.prompts import generation_prompt

logger = logging.getLogger(__name__)

OPTIMIZE_MAX_TOKENS = 1500


class AgentError(Exception):
    """Base class for agent errors."""


class AgentNotConnectedError(AgentError):
    """An operation was attempted while the agent is not connected."""

    def __init__(self) -> None:
        super().__init__("MCP client not connected. Call initialize() first.")


class ToolExecutionError(AgentError):
    """A tool returned isError=True where the caller needs a value."""


class ConnectionState(str, Enum):
    """Lifecycle of the agent's connection to the server."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTING = "disconnecting"


class RequestPhase(str, Enum):
    """Step of the request currently in flight."""

    IDLE = "idle"
    AWAITING_SCHEMA = "awaiting_schema"
    AWAITING_GENERATION = "awaiting_generation"
    AWAITING_EXECUTION = "awaiting_execution"
    AWAITING_ANALYSIS = "awaiting_analysis"


def result_text(result: CallToolResult) -> str:
    """Text of the first text block of a tool result ('' if there is none)."""
    for block in result.content:
        text = getattr(block, "text", None)
        if text is not None:
            return text
    return ""


class DuckDBAgent:
    """Client-side orchestrator over the DuckDB MCP server and a Bedrock model.

    Args:
        client: FastMCP client to talk to the server through. Defaults to a
            stdio client spawning the configured server command.
        model: Streaming model backend. Defaults to Bedrock built from settings.
        settings: Settings to use instead of the cached global settings.

    Example:
        agent = DuckDBAgent()
        await agent.initialize()
        try:
            rows = await agent.call_bedrock("How many trips were there in January?")
        finally:
            await agent.disconnect()
    """

    def __init__(
        self,
        client: Client | None = None,
        model: BedrockStreamer | None = None,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or get_settings()
        if client is None:
            client = Client(
                StdioTransport(
                    command=settings.agent_server_command,
                    args=list(settings.agent_server_args),
                    env=dict(os.environ),
                )
            )
        self._client = client
        self._model = model or BedrockStreamer(settings.bedrock_config())
        self._row_limit = settings.default_row_limit
        self._max_tokens = settings.bedrock_max_tokens
        self._exit_stack: AsyncExitStack | None = None

        self.state = ConnectionState.DISCONNECTED
        self.phase = RequestPhase.IDLE
        self.last_sql: str | None = None

    @property
    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    # =========================================================================
    # Connection lifecycle
    # =========================================================================

    async def initialize(self) -> None:
        """Connect to the MCP server.

        Raises:
            Exception: Whatever the transport raised; the agent stays disconnected.
        """
        if self.state != ConnectionState.DISCONNECTED:
            return

        self.state = ConnectionState.CONNECTING
        stack = AsyncExitStack()
        try:
            await stack.enter_async_context(self._client)
        except Exception as e:
            self.state = ConnectionState.DISCONNECTED
            logger.error(f"Failed to connect to MCP server: {e}")
            raise

        self._exit_stack = stack
        self.state = ConnectionState.CONNECTED
        logger.info("Connected to MCP DuckDB server")

    async def disconnect(self) -> None:
        """Close the connection. Does nothing when already disconnected."""
        if self.state != ConnectionState.CONNECTED:
            return

        self.state = ConnectionState.DISCONNECTING
        stack, self._exit_stack = self._exit_stack, None
        try:
            if stack is not None:
                await stack.aclose()
        finally:
            self.state = ConnectionState.DISCONNECTED
            self.phase = RequestPhase.IDLE
        logger.info("Disconnected from MCP server")

    async def __aenter__(self) -> DuckDBAgent:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()

    def _require_connected(self) -> None:
        if self.state != ConnectionState.CONNECTED:
            raise AgentNotConnectedError()

    # =========================================================================
    # Protocol helpers
    # =========================================================================

    async def _call_tool(self, call: ToolCallRequest) -> CallToolResult:
        return await self._client.call_tool_mcp(call.name, call.arguments())

    async def _read_json_resource(self, uri: str) -> Any:
        """Read a resource and parse its first content block as JSON.

        Raises:
            json.JSONDecodeError: If the content is not JSON (e.g. a diagnostic)
        """
        contents = await self._client.read_resource(uri)
        text = getattr(contents[0], "text", "") if contents else ""
        return json.loads(text or "[]")

    # =========================================================================
    # End-to-end question answering
    # =========================================================================

    async def call_bedrock(self, question: str) -> list[dict[str, Any]] | None:
        """Answer a question: schema -> model -> execute-sql -> analyze-query.

        Returns:
            The result rows, or None if the server reported an execution error

        Raises:
            AgentNotConnectedError: If called before initialize()
            json.JSONDecodeError: If the schema or the rows are not valid JSON
        """
        self._require_connected()

        try:
            self.phase = RequestPhase.AWAITING_SCHEMA
            schema_data = await self._read_json_resource(SCHEMA_URI)
            logger.info(f"Schema data retrieved from MCP: {len(schema_data)} columns")

            self.phase = RequestPhase.AWAITING_GENERATION
            raw_sql = await self._generate_sql_with_llm(schema_data, question)
            sql = extract_sql(raw_sql)
            self.last_sql = sql
            logger.info(f"Generated SQL: {sql}")

            self.phase = RequestPhase.AWAITING_EXECUTION
            query_result = await self._call_tool(ExecuteSqlCall(sql=sql, limit=self._row_limit))
            if query_result.isError:
                logger.error(f"SQL execution error: {result_text(query_result)}")
                return None

            results = json.loads(result_text(query_result))
            logger.info(f"Query returned {len(results)} rows")

            self.phase = RequestPhase.AWAITING_ANALYSIS
            await self._analyze_query_performance(sql)

            return results
        except Exception as e:
            logger.error(f"Error in call_bedrock: {e}")
            raise
        finally:
            self.phase = RequestPhase.IDLE

    async def _generate_sql_with_llm(self, schema_data: Any, question: str) -> str:
        schema_text = json.dumps(schema_data, indent=2)
        messages = [{"role": "user", "content": generation_prompt(schema_text, question)}]
        return await self._model.complete(messages, self._max_tokens)

    async def _analyze_query_performance(self, sql: str) -> None:
        """Best effort: failures are logged and never reach the caller."""
        try:
            analysis = await self._call_tool(AnalyzeQueryCall(sql=sql))
            if not analysis.isError:
                logger.info(f"Query analysis:\n{result_text(analysis)}")
            else:
                logger.info(f"Query analysis failed: {result_text(analysis)}")
        except Exception as e:
            logger.info(f"Query analysis not available or failed: {e}")

    # =========================================================================
    # Other operations
    # =========================================================================

    async def get_sql_suggestion(self, question: str, context: str | None = None) -> str:
        """Get the generate-sql payload (schema + question) for a question.

        Raises:
            ToolExecutionError: If the server could not build the payload
        """
        self._require_connected()

        result = await self._call_tool(GenerateSqlCall(question=question, context=context))
        if result.isError:
            raise ToolExecutionError(f"SQL generation error: {result_text(result)}")
        return result_text(result)

    async def get_available_tables(self) -> list[dict[str, Any]]:
        """Read the table-list resource."""
        self._require_connected()
        return await self._read_json_resource(TABLES_URI)

    async def execute_custom_sql(self, sql: str, limit: int | None = None) -> list[dict[str, Any]]:
        """Run caller-supplied SQL through execute-sql.

        Raises:
            ToolExecutionError: If execution failed on the server
            pydantic.ValidationError: If limit is below 1
        """
        self._require_connected()

        limit = self._row_limit if limit is None else limit
        result = await self._call_tool(ExecuteSqlCall(sql=sql, limit=limit))
        if result.isError:
            raise ToolExecutionError(result_text(result))
        return json.loads(result_text(result) or "[]")

    async def optimize_query(self, sql: str, performance_issues: str | None = None) -> str:
        """Ask the model to optimize a query using the optimize-query prompt."""
        self._require_connected()

        arguments = {"sql": sql}
        if performance_issues:
            arguments["performance_issues"] = performance_issues
        prompt = await self._client.get_prompt(OPTIMIZE_QUERY_PROMPT, arguments)

        messages = [
            {"role": message.role, "content": message.content.text}
            for message in prompt.messages
            if getattr(message.content, "text", None)
        ]
        answer = await self._model.complete(messages, OPTIMIZE_MAX_TOKENS)
        return answer.strip()

    async def list_available_resources(self) -> list:
        self._require_connected()
        return await self._client.list_resources()

    async def list_available_tools(self) -> list:
        self._require_connected()
        return await self._client.list_tools()

    async def list_available_prompts(self) -> list:
        self._require_connected()
        return await self._client.list_prompts()
